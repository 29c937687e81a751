"""ONNX model files and sessions.

Model files are fetched over HTTP from a base URL into a local cache
directory, mirroring the registry paths. Sessions are built on first use,
shared by every caller, and optionally evicted after an idle TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import httpx
from onnxruntime import ExecutionMode, GraphOptimizationLevel, InferenceSession, SessionOptions

if TYPE_CHECKING:
    from verifacex.config import Settings

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS: float = 60.0


# ---------------------------------------------------------------------------
# Protocol
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

    def unload_model(self, model_name: str) -> None:
        """Drop the cached session for one model."""
        ...

    def unload_idle_models(self) -> None:
        """Unload models that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    FACE_RECOGNITION = "face_recognition"
    ANTI_SPOOFING = "anti_spoofing"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    path: str
    task: ModelTask

    @property
    def filename(self) -> str:
        return Path(self.path).name


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "retinaface_mv2": ModelSpec(
        name="retinaface_mv2",
        path="detection/retinaface_mv2.onnx",
        task=ModelTask.FACE_DETECTION,
    ),
    "facenet512": ModelSpec(
        name="facenet512",
        path="recognition/facenet512.onnx",
        task=ModelTask.FACE_RECOGNITION,
    ),
    "minifasnet_v2": ModelSpec(
        name="minifasnet_v2",
        path="spoofing/MiniFASNetV2.onnx",
        task=ModelTask.ANTI_SPOOFING,
    ),
    "minifasnet_v1se": ModelSpec(
        name="minifasnet_v1se",
        path="spoofing/MiniFASNetV1SE.onnx",
        task=ModelTask.ANTI_SPOOFING,
    ),
}


def download_file(url: str, destination: Path, client: httpx.Client | None = None) -> Path:
    """Stream ``url`` into ``destination``, renaming into place once complete."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")

    owns_client = client is None
    http = client or httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True)
    try:
        with http.stream("GET", url) as response:
            response.raise_for_status()
            with partial.open("wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    finally:
        if owns_client:
            http.close()

    partial.replace(destination)
    return destination


# ---------------------------------------------------------------------------
# ONNX Runtime session setup
# ---------------------------------------------------------------------------

Provider = str | tuple[str, dict[str, object]]


def execution_providers(device: str, gpu_mem_limit: int) -> list[Provider]:
    """Execution providers for ``device``, always falling back to CPU."""
    if device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO runs its own graph optimizations.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class LoadedModel:
    """A live session together with where it came from."""

    spec: ModelSpec
    path: Path
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> InferenceSession:
        self.last_used = time.monotonic()
        return self.session


class OnnxModelManager:
    """Fetches model files and keeps one InferenceSession per model.

    Each model has its own load lock, so concurrent first requests for one
    model build a single session while different models load in parallel.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir).expanduser()
        self._models_dir.mkdir(parents=True, exist_ok=True)
        self._base_url = settings.model_base_url.rstrip("/") + "/"

        self._providers = execution_providers(settings.device, settings.gpu_mem_limit)
        self._session_options = session_options(settings)

        self._lock = threading.Lock()
        self._load_locks: dict[str, threading.Lock] = {}
        self._loaded: dict[str, LoadedModel] = {}
        self._model_paths: dict[str, Path] = {}

    @property
    def models_dir(self) -> Path:
        return self._models_dir

    def model_path(self, model_name: str) -> Path:
        """Where ``model_name`` lives in the local cache, downloaded or not."""
        return self._models_dir / self._get_spec(model_name).path

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it on first use."""
        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        spec = self._get_spec(model_name)
        local_path = self._models_dir / spec.path
        if not local_path.exists():
            url = self._base_url + spec.path
            logger.info("Downloading %s from %s", model_name, url)
            download_file(url, local_path)
            logger.info("Downloaded %s to %s", model_name, local_path)

        self._model_paths[model_name] = local_path
        return local_path

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the model's session, building it if it is not loaded."""
        loaded = self._loaded.get(model_name)
        if loaded is not None:
            return loaded.touch()

        with self._load_lock(model_name):
            loaded = self._loaded.get(model_name)
            if loaded is None:
                loaded = self._load(model_name)
            return loaded.touch()

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._loaded)

    def unload_model(self, model_name: str) -> None:
        with self._lock:
            if self._loaded.pop(model_name, None) is not None:
                logger.info("Unloaded %s", model_name)

    def unload_idle_models(self) -> None:
        """Drop sessions unused for longer than ``model_ttl`` seconds (0 disables)."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        cutoff = time.monotonic() - ttl
        with self._lock:
            idle = [name for name, loaded in self._loaded.items() if loaded.last_used < cutoff]
            for name in idle:
                del self._loaded[name]
                logger.info("Evicted %s after %ds idle", name, ttl)

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._loaded)
            self._loaded.clear()
        logger.info("Released %d model session(s)", count)

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    def _load_lock(self, model_name: str) -> threading.Lock:
        with self._lock:
            return self._load_locks.setdefault(model_name, threading.Lock())

    def _load(self, model_name: str) -> LoadedModel:
        spec = self._get_spec(model_name)
        path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        loaded = LoadedModel(spec=spec, path=path, session=session)
        with self._lock:
            self._loaded[model_name] = loaded
        logger.info(
            "Loaded %s (%s) with %s",
            model_name,
            spec.task,
            ", ".join(session.get_providers()),
        )
        return loaded
