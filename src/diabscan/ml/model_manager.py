"""Model manager: locate or download the ONNX model and build engines.

Handles resolving the model file (local path first, Hugging Face Hub
download as fallback), execution provider selection, and session options.
Engines are loaded once at startup; there is no eviction.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError
from onnxruntime import SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from diabscan.errors import ModelLoadError
from diabscan.ml.engine import InferenceEngine

if TYPE_CHECKING:
    from diabscan.config import Settings

logger = logging.getLogger(__name__)


class OnnxModelManager:
    """Resolves the configured model and creates inference engines for it."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._model_path: Path | None = None

        self._providers = self._build_providers()

    # -- Public API ---------------------------------------------------------

    def ensure_model(self) -> Path:
        """Return the local model path, downloading it from the Hub if needed.

        Raises:
            ModelLoadError: If the model is neither on disk nor downloadable.
        """
        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        local = Path(self._settings.model_path)
        if local.is_file():
            self._model_path = local
            return local

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise ModelLoadError(f"Model file not found: {local} (and DIABSCAN_MODEL_REPO_ID is not set)")

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=self._settings.model_filename,
                    local_dir=str(self._models_dir),
                )
            )
        except (HfHubHTTPError, OSError, ValueError) as exc:
            raise ModelLoadError(f"Could not download {self._settings.model_filename} from {repo_id}: {exc}") from exc

        self._model_path = downloaded
        logger.info("Downloaded %s to %s", self._settings.model_filename, downloaded)
        return downloaded

    def load_engine(self) -> InferenceEngine:
        """Load a fresh engine with its own session."""
        return InferenceEngine.load(
            self.ensure_model(),
            providers=self._providers,
            session_options=self._build_session_options(),
        )

    def load_engines(self, count: int) -> list[InferenceEngine]:
        """Load ``count`` independent engines, releasing all of them on failure."""
        engines: list[InferenceEngine] = []
        try:
            for _ in range(count):
                engines.append(self.load_engine())
        except ModelLoadError:
            for engine in engines:
                engine.close()
            raise
        return engines

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
