"""ONNX inference engine for the two-class image classifier.

One engine owns one ``InferenceSession``. It performs a single synchronous
inference per call and has no internal locking: callers that need parallel
throughput load several engines (see ``InferencePool``).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from onnxruntime import InferenceSession

from diabscan.errors import InferenceError, ModelLoadError, ShapeMismatchError
from diabscan.ml.preprocessing import CHANNELS, INPUT_SIZE

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from numpy.typing import NDArray
    from onnxruntime import SessionOptions

logger = logging.getLogger(__name__)

EXPECTED_INPUT_SHAPE: tuple[int, int, int, int] = (1, INPUT_SIZE, INPUT_SIZE, CHANNELS)


def _is_compatible(declared: Sequence[Any], expected: Sequence[int]) -> bool:
    """Compare an ONNX declared shape against a concrete one.

    Symbolic or missing dimensions (strings / None) match anything.
    """
    if len(declared) != len(expected):
        return False
    return all(not isinstance(dim, int) or dim == want for dim, want in zip(declared, expected, strict=True))


class InferenceEngine:
    """Loaded classifier exposing ``classify(tensor) -> scores``."""

    def __init__(self, session: InferenceSession, model_name: str) -> None:
        self._session: InferenceSession | None = session
        self._model_name = model_name

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if len(inputs) != 1 or len(outputs) < 1:
            raise ModelLoadError(
                f"Model '{model_name}' must have one input and at least one output, "
                f"got {len(inputs)} inputs and {len(outputs)} outputs"
            )

        self._input_name: str = inputs[0].name
        input_shape = list(inputs[0].shape)
        if not _is_compatible(input_shape, EXPECTED_INPUT_SHAPE):
            raise ModelLoadError(
                f"Model '{model_name}' expects input shape {input_shape}, "
                f"incompatible with {list(EXPECTED_INPUT_SHAPE)}"
            )

        output_shape = list(outputs[0].shape)
        if len(output_shape) != 2 or not isinstance(output_shape[1], int) or output_shape[1] < 1:
            raise ModelLoadError(f"Model '{model_name}' has unsupported output shape {output_shape}")
        self._num_classes: int = output_shape[1]

    @classmethod
    def load(
        cls,
        model_path: str | Path,
        *,
        providers: Sequence[str | tuple[str, dict[str, object]]] | None = None,
        session_options: SessionOptions | None = None,
    ) -> InferenceEngine:
        """Load an ONNX model from disk.

        Raises:
            ModelLoadError: If the file is missing, unreadable, or its
                input/output signature does not fit the classifier contract.
        """
        path = Path(model_path)
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")

        try:
            session = InferenceSession(
                str(path),
                sess_options=session_options,
                providers=list(providers) if providers is not None else ["CPUExecutionProvider"],
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {path}: {exc}") from exc

        engine = cls(session, model_name=path.stem)
        logger.info("Loaded model %s (%d classes)", path, engine.num_classes)
        return engine

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        return self._model_name

    @property
    def num_classes(self) -> int:
        return self._num_classes

    @property
    def closed(self) -> bool:
        return self._session is None

    def classify(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on one image tensor.

        Args:
            tensor: HxWx3 float32 tensor, or the same with a leading batch
                dimension of 1.

        Returns:
            1-D score vector, one entry per class, exactly as the model emits it.

        Raises:
            ShapeMismatchError: If the tensor does not match the model input.
            InferenceError: If the engine is closed, the runtime fails, or the
                model emits NaN or infinite scores.
        """
        if self._session is None:
            raise InferenceError(f"Engine for '{self._model_name}' is closed")

        batch = tensor[np.newaxis, ...] if tensor.ndim == len(EXPECTED_INPUT_SHAPE) - 1 else tensor
        if batch.shape != EXPECTED_INPUT_SHAPE:
            raise ShapeMismatchError(
                f"Input tensor shape {tuple(tensor.shape)} does not match expected {EXPECTED_INPUT_SHAPE}"
            )

        try:
            outputs = self._session.run(None, {self._input_name: batch.astype(np.float32, copy=False)})
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.shape[0] != self._num_classes:
            raise InferenceError(f"Model returned {scores.shape[0]} scores, expected {self._num_classes}")
        if not np.all(np.isfinite(scores)):
            raise InferenceError(f"Model returned non-finite scores {scores.tolist()}")
        return scores

    def close(self) -> None:
        """Release the underlying session."""
        if self._session is not None:
            self._session = None
            logger.info("Released session for %s", self._model_name)

    def __enter__(self) -> InferenceEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
