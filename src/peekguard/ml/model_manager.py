"""Model manager: locate, download, load and cache the detector ONNX model.

The model file is looked up in ``models_dir``. When it is missing and a
Hugging Face repository is configured, it is downloaded from there.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from peekguard.errors import InferenceError

if TYPE_CHECKING:
    from peekguard.config import Settings

logger = logging.getLogger(__name__)


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_available(self) -> Path:
        """Ensure the model file exists locally and return its path."""
        ...

    def get_session(self) -> InferenceSession:
        """Return the cached or newly created InferenceSession."""
        ...

    def is_loaded(self) -> bool:
        """Return whether a session is currently loaded."""
        ...

    def shutdown(self) -> None:
        """Drop the cached session."""
        ...


class OnnxModelManager:
    """Locates and loads the face detector ONNX model, caching one session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def model_name(self) -> str:
        return Path(self._settings.model_filename).stem

    def ensure_available(self) -> Path:
        """Return the local model path, downloading it from Hugging Face if configured."""
        local = self._models_dir / self._settings.model_filename
        if local.exists():
            return local

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise InferenceError(f"Model file {local} not found and PEEKGUARD_MODEL_REPO_ID is not set")

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=self._settings.model_filename,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise InferenceError(f"Failed to download {self._settings.model_filename} from {repo_id}") from exc
        logger.info("Downloaded %s to %s", self.model_name, downloaded)
        return downloaded

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating one if needed."""
        with self._lock:
            if self._session is not None:
                return self._session

        model_path = self.ensure_available()
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise InferenceError(f"Failed to load model {model_path}") from exc

        with self._lock:
            # Another thread may have created it while we loaded.
            if self._session is None:
                self._session = session
                logger.info("Loaded session for %s", self.model_name)
            return self._session

    def is_loaded(self) -> bool:
        with self._lock:
            return self._session is not None

    def shutdown(self) -> None:
        with self._lock:
            self._session = None
            logger.info("Model session cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [("CUDAExecutionProvider", {"device_id": 0}), "CPUExecutionProvider"]
        if device == "openvino":
            return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        else:
            opts.graph_optimization_level = GraphOptimizationLevel.ORT_ENABLE_ALL
        return opts
