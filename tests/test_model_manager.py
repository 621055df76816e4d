"""Tests for the ONNX model manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from peoplesorter.config import Settings
from peoplesorter.ml.model_manager import MODEL_REGISTRY, OnnxModelManager, get_spec, lightest_model

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/peoplesorter_test_models",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = MODEL_REGISTRY["yolov8n"]
        assert spec.name == "yolov8n"
        assert spec.task == "object_detection"
        assert spec.input_size == 640

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            get_spec("nonexistent_model")

    def test_lightest_model_is_nano(self) -> None:
        assert lightest_model().name == "yolov8n"
        assert all(lightest_model().params_millions <= spec.params_millions for spec in MODEL_REGISTRY.values())


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock) -> None:
        mock_download.return_value = "/tmp/peoplesorter_test_models/yolov8n.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        path = mgr.ensure_downloaded("yolov8n")

        mock_download.assert_called_once_with(
            repo_id="peoplesorter/peoplesorter-models",
            filename="yolov8n.onnx",
            subfolder=None,
            local_dir="/tmp/peoplesorter_test_models",
        )
        assert path == Path("/tmp/peoplesorter_test_models/yolov8n.onnx")

    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "yolov8n.onnx"
        model_file.touch()

        settings = _make_settings(models_dir=str(tmp_path))
        mgr = OnnxModelManager(settings)
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["yolov8n"] = model_file

        path = mgr.ensure_downloaded("yolov8n")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_download_errors_propagate(self, mock_download: MagicMock) -> None:
        mock_download.side_effect = OSError("offline")
        mgr = OnnxModelManager(_make_settings())
        with pytest.raises(OSError, match="offline"):
            mgr.get_session("yolov8n")
        assert mgr.get_loaded_models() == []

    @patch("peoplesorter.ml.model_manager.InferenceSession")
    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/peoplesorter_test_models/yolov8n.onnx"
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session

        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        session1 = mgr.get_session("yolov8n")
        session2 = mgr.get_session("yolov8n")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("peoplesorter.ml.model_manager.InferenceSession")
    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/peoplesorter_test_models/yolov8n.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)

        assert mgr.get_loaded_models() == []
        mgr.get_session("yolov8n")
        assert mgr.get_loaded_models() == ["yolov8n"]

    def test_provider_building_cpu(self) -> None:
        settings = _make_settings(device="cpu")
        mgr = OnnxModelManager(settings)
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        settings = _make_settings(device="cuda")
        mgr = OnnxModelManager(settings)
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        settings = _make_settings(device="openvino")
        mgr = OnnxModelManager(settings)
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("peoplesorter.ml.model_manager.InferenceSession")
    @patch("peoplesorter.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/peoplesorter_test_models/yolov8n.onnx"
        settings = _make_settings()
        mgr = OnnxModelManager(settings)
        mgr.get_session("yolov8n")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self) -> None:
        settings = _make_settings()
        mgr = OnnxModelManager(settings)
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
