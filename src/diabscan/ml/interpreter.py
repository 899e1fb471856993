"""Turn raw model scores into a labeled prediction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from diabscan.errors import LabelMismatchError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from diabscan.ml.labels import LabelSet
    from diabscan.ml.preprocessing import ImageSize


@dataclass(frozen=True)
class PredictionOutcome:
    """Result of one successful prediction.

    ``confidence`` is the raw score of the predicted label; scores are never
    re-normalized, so ``probabilities`` need not sum to 1.
    """

    prediction: str
    confidence: float
    probabilities: Mapping[str, float]
    inference_time_ms: float
    image_size: ImageSize
    processed_size: ImageSize

    def is_confident(self, threshold: float) -> bool:
        return self.confidence > threshold


def select_index(scores: Sequence[float]) -> int:
    """Index of the maximum score; the lowest index wins ties."""
    best = 0
    for index in range(1, len(scores)):
        if scores[index] > scores[best]:
            best = index
    return best


def interpret(
    scores: Sequence[float],
    labels: LabelSet,
    original_size: ImageSize,
    processed_size: ImageSize,
    elapsed: float,
) -> PredictionOutcome:
    """Build a ``PredictionOutcome`` from a score vector.

    Args:
        scores: One score per label, in label order.
        labels: Label set the model was trained with.
        original_size: Decoded image size before resizing.
        processed_size: Size of the tensor fed to the model.
        elapsed: Inference duration in seconds.

    Raises:
        LabelMismatchError: If the number of scores and labels differ, or the
            labels are not unique.
    """
    values = [float(score) for score in scores]
    if len(values) != len(labels):
        raise LabelMismatchError(f"Model produced {len(values)} scores for {len(labels)} labels")
    if not values:
        raise LabelMismatchError("Cannot interpret an empty score vector")
    if len(set(labels)) != len(labels):
        raise LabelMismatchError(f"Labels must be unique, got {list(labels)}")

    index = select_index(values)
    return PredictionOutcome(
        prediction=labels[index],
        confidence=values[index],
        probabilities=dict(zip(labels, values, strict=True)),
        inference_time_ms=elapsed * 1000.0,
        image_size=original_size,
        processed_size=processed_size,
    )
