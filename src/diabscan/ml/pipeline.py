"""Straight-line prediction pipeline: preprocess -> classify -> interpret."""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from diabscan.errors import LabelMismatchError, PredictionError
from diabscan.ml.interpreter import interpret

if TYPE_CHECKING:
    from diabscan.ml.engine import InferenceEngine
    from diabscan.ml.interpreter import PredictionOutcome
    from diabscan.ml.labels import LabelSet
    from diabscan.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


class PipelineStage(StrEnum):
    PREPROCESSING = "preprocessing"
    INFERRING = "inferring"
    INTERPRETING = "interpreting"


class PredictionPipeline:
    """Binds a label set, a preprocessor, and one engine.

    A pipeline serves one request at a time; it keeps no per-request state.
    """

    def __init__(self, labels: LabelSet, preprocessor: ImagePreprocessor, engine: InferenceEngine) -> None:
        if len(labels) != engine.num_classes:
            raise LabelMismatchError(
                f"{len(labels)} labels {list(labels)} do not match the {engine.num_classes} "
                f"outputs of model '{engine.model_name}'"
            )
        self._labels = labels
        self._preprocessor = preprocessor
        self._engine = engine

    @property
    def labels(self) -> LabelSet:
        return self._labels

    @property
    def engine(self) -> InferenceEngine:
        return self._engine

    def predict(self, image_bytes: bytes) -> PredictionOutcome:
        """Run every stage in order and return the outcome.

        Raises:
            PredictionError: The first stage failure, with ``stage`` set.
        """
        stage = PipelineStage.PREPROCESSING
        try:
            prepared = self._preprocessor.prepare(image_bytes)

            stage = PipelineStage.INFERRING
            start = time.perf_counter()
            scores = self._engine.classify(prepared.tensor)
            elapsed = time.perf_counter() - start

            stage = PipelineStage.INTERPRETING
            outcome = interpret(
                scores,
                self._labels,
                original_size=prepared.original_size,
                processed_size=prepared.processed_size,
                elapsed=elapsed,
            )
        except PredictionError as exc:
            exc.stage = stage.value
            logger.warning("Prediction failed during %s: %s: %s", stage, exc.kind, exc.message)
            raise

        logger.info(
            "Prediction: %s (confidence=%.4f, inference=%.1fms, image=%s)",
            outcome.prediction,
            outcome.confidence,
            outcome.inference_time_ms,
            outcome.image_size,
        )
        return outcome

    def close(self) -> None:
        self._engine.close()
