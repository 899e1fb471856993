"""Ordered class names used to read model output."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

FALLBACK_LABELS: tuple[str, ...] = ("diabetes", "nondiabetes")


@dataclass(frozen=True)
class LabelSet:
    """Immutable label sequence; position i names model output i."""

    labels: tuple[str, ...]

    @classmethod
    def load(cls, resource_text: str | None) -> LabelSet:
        """Parse one label per non-empty line, or fall back when there is no resource."""
        if resource_text is None:
            logger.warning("Label resource unavailable, using fallback labels %s", list(FALLBACK_LABELS))
            return cls(FALLBACK_LABELS)

        labels = tuple(line.strip() for line in resource_text.splitlines() if line.strip())
        logger.info("Labels loaded: %s", list(labels))
        return cls(labels)

    @classmethod
    def from_file(cls, path: str | Path) -> LabelSet:
        """Read a UTF-8 label file. Missing or unreadable files use the fallback."""
        try:
            text: str | None = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read labels from %s: %s", path, exc)
            text = None
        return cls.load(text)

    def __len__(self) -> int:
        return len(self.labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)

    def __getitem__(self, index: int) -> str:
        return self.labels[index]
