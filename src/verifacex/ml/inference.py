"""Inference concurrency layer.

Architecture:
    FacePipeline (async) -> NetworkExecutor -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

Network calls are the only suspension points of the pipeline. Requests
beyond the semaphore limit queue with a timeout, then raise TimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol, TypeVar

from verifacex.ml.types import NotInitializedError

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from verifacex.config import Settings
    from verifacex.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NetworkExecutor(Protocol):
    """Runs named models against a single input tensor."""

    async def load(self, model_name: str) -> None:
        """Make the model ready for inference."""
        ...

    async def run(self, model_name: str, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
        """Run the model and return its outputs keyed by output name."""
        ...

    def release(self, model_name: str) -> None:
        """Drop the model's session."""
        ...


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._timeout = settings.inference_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()
        self._closed = False

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor, then releases.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
            NotInitializedError: If the pool has been shut down.
        """
        if self._closed:
            raise NotInitializedError("Inference pool has been shut down")

        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._closed = True
        self._executor.shutdown(wait=True)


def run_session(session: InferenceSession, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
    """Feed ``tensor`` to the session's first input and collect every output."""
    input_name = session.get_inputs()[0].name
    output_names = [output.name for output in session.get_outputs()]
    outputs = session.run(output_names, {input_name: tensor})
    return dict(zip(output_names, outputs, strict=True))


class OnnxNetworkExecutor:
    """NetworkExecutor backed by the model manager's ONNX sessions.

    ONNX Runtime sessions accept concurrent ``run`` calls, so the pipeline
    may issue several requests at once; the pool bounds how many execute.
    """

    def __init__(self, model_manager: ModelManager, pool: InferencePool) -> None:
        self._model_manager = model_manager
        self._pool = pool

    async def load(self, model_name: str) -> None:
        await self._pool.run(self._model_manager.get_session, model_name)

    async def run(self, model_name: str, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
        return await self._pool.run(self._run_sync, model_name, tensor)

    def release(self, model_name: str) -> None:
        self._model_manager.unload_model(model_name)

    def _run_sync(self, model_name: str, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
        # Sessions evicted by TTL are reloaded here, off the event loop.
        session = self._model_manager.get_session(model_name)
        return run_session(session, tensor)
