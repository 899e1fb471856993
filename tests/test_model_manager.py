"""Tests for the ONNX model manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_session

from diabscan.config import Settings
from diabscan.errors import ModelLoadError
from diabscan.ml.model_manager import OnnxModelManager

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/diabscan_test_models",
        "model_path": "/tmp/diabscan_test_models/absent.onnx",
        "model_repo_id": None,
        "model_filename": "mbv3_diabetes_2class.onnx",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model resolution
# ---------------------------------------------------------------------------


class TestEnsureModel:
    @patch("diabscan.ml.model_manager.hf_hub_download")
    def test_local_model_skips_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "mbv3_diabetes_2class.onnx"
        model_file.touch()
        mgr = OnnxModelManager(_make_settings(model_path=str(model_file), model_repo_id="someone/diabscan"))

        path = mgr.ensure_model()

        mock_download.assert_not_called()
        assert path == model_file

    @patch("diabscan.ml.model_manager.hf_hub_download")
    def test_missing_model_without_repo_raises(self, mock_download: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings())

        with pytest.raises(ModelLoadError, match="DIABSCAN_MODEL_REPO_ID"):
            mgr.ensure_model()
        mock_download.assert_not_called()

    @patch("diabscan.ml.model_manager.hf_hub_download")
    def test_downloads_from_hub_when_missing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "mbv3_diabetes_2class.onnx")
        mgr = OnnxModelManager(
            _make_settings(
                models_dir=str(tmp_path),
                model_path=str(tmp_path / "absent.onnx"),
                model_repo_id="someone/diabscan",
            )
        )

        path = mgr.ensure_model()

        mock_download.assert_called_once_with(
            repo_id="someone/diabscan",
            filename="mbv3_diabetes_2class.onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "mbv3_diabetes_2class.onnx"

    @patch("diabscan.ml.model_manager.hf_hub_download")
    def test_download_result_is_reused(self, mock_download: MagicMock, tmp_path: Path) -> None:
        downloaded = tmp_path / "mbv3_diabetes_2class.onnx"
        downloaded.touch()
        mock_download.return_value = str(downloaded)
        mgr = OnnxModelManager(
            _make_settings(models_dir=str(tmp_path), model_path=str(tmp_path / "absent.onnx"), model_repo_id="x/y")
        )

        mgr.ensure_model()
        mgr.ensure_model()

        mock_download.assert_called_once()

    @patch("diabscan.ml.model_manager.hf_hub_download")
    def test_download_failure_raises_model_load_error(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.side_effect = OSError("connection refused")
        mgr = OnnxModelManager(
            _make_settings(models_dir=str(tmp_path), model_path=str(tmp_path / "absent.onnx"), model_repo_id="x/y")
        )

        with pytest.raises(ModelLoadError, match="Could not download"):
            mgr.ensure_model()


# ---------------------------------------------------------------------------
# Engine loading
# ---------------------------------------------------------------------------


class TestLoadEngines:
    @patch("diabscan.ml.engine.InferenceSession")
    def test_each_engine_gets_its_own_session(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "mbv3_diabetes_2class.onnx"
        model_file.touch()
        mock_session_cls.side_effect = lambda *args, **kwargs: make_session()
        mgr = OnnxModelManager(_make_settings(model_path=str(model_file)))

        engines = mgr.load_engines(3)

        assert len(engines) == 3
        assert mock_session_cls.call_count == 3
        assert len({id(engine) for engine in engines}) == 3

    @patch("diabscan.ml.engine.InferenceSession")
    def test_partial_failure_closes_loaded_engines(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "mbv3_diabetes_2class.onnx"
        model_file.touch()
        mock_session_cls.side_effect = [make_session(), RuntimeError("out of memory")]
        mgr = OnnxModelManager(_make_settings(model_path=str(model_file)))

        with patch("diabscan.ml.engine.InferenceEngine.close") as mock_close, pytest.raises(ModelLoadError):
            mgr.load_engines(2)

        mock_close.assert_called_once()

    def test_missing_model_never_creates_session(self) -> None:
        mgr = OnnxModelManager(_make_settings())
        with patch("diabscan.ml.engine.InferenceSession") as mock_session_cls, pytest.raises(ModelLoadError):
            mgr.load_engine()
        mock_session_cls.assert_not_called()


# ---------------------------------------------------------------------------
# Providers and session options
# ---------------------------------------------------------------------------


class TestRuntimeOptions:
    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="openvino"))
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_session_options_use_thread_settings(self) -> None:
        mgr = OnnxModelManager(_make_settings(intra_op_threads=4, inter_op_threads=2))
        opts = mgr._build_session_options()
        assert opts.intra_op_num_threads == 4
        assert opts.inter_op_num_threads == 2
