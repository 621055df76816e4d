"""Model manager: download, load and cache ONNX detector models.

Handles downloading detector weights from HuggingFace and creating and
caching ONNX InferenceSessions for them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from peoplesorter.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is downloaded and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    OBJECT_DETECTION = "object_detection"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX detector."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    params_millions: float
    input_size: int = 640


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "yolov8n": ModelSpec(
        name="yolov8n",
        repo_id="peoplesorter/peoplesorter-models",
        filename="yolov8n.onnx",
        subfolder=None,
        task=ModelTask.OBJECT_DETECTION,
        license="AGPL-3.0",
        params_millions=3.2,
    ),
    "yolov8s": ModelSpec(
        name="yolov8s",
        repo_id="peoplesorter/peoplesorter-models",
        filename="yolov8s.onnx",
        subfolder=None,
        task=ModelTask.OBJECT_DETECTION,
        license="AGPL-3.0",
        params_millions=11.2,
    ),
    "yolov8m": ModelSpec(
        name="yolov8m",
        repo_id="peoplesorter/peoplesorter-models",
        filename="yolov8m.onnx",
        subfolder=None,
        task=ModelTask.OBJECT_DETECTION,
        license="AGPL-3.0",
        params_millions=25.9,
    ),
}


def lightest_model() -> ModelSpec:
    """Return the registered detector with the fewest parameters."""
    return min(MODEL_REGISTRY.values(), key=lambda spec: spec.params_millions)


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads, loads and caches ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Download a model from HuggingFace if not already present locally."""
        spec = get_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

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


def get_spec(model_name: str) -> ModelSpec:
    """Look up a registered detector by name."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None
