"""Error types raised by the prediction pipeline.

Every failure aborts only the request that raised it. The HTTP layer turns
these into error responses using ``kind`` and ``stage``.
"""

from __future__ import annotations


class PredictionError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.stage: str | None = None

    @property
    def kind(self) -> str:
        return type(self).__name__

    def describe(self) -> dict[str, str | None]:
        """Return the error description exposed to callers."""
        return {"detail": self.message, "kind": self.kind, "stage": self.stage}


class ResourceLoadError(PredictionError):
    """A label or model resource is missing or corrupt."""


class ModelLoadError(ResourceLoadError):
    """The model binary could not be loaded or is incompatible."""


class DecodeError(PredictionError):
    """The supplied bytes are not a supported or intact image."""


class ShapeMismatchError(PredictionError):
    """The input tensor does not match the model's expected input shape."""


class LabelMismatchError(PredictionError):
    """The label set does not line up with the model output."""


class InferenceError(PredictionError):
    """Unexpected failure while executing the model."""
