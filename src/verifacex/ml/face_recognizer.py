"""Face recognition (embedding) models.

Implementation: FaceNet512, NHWC input of 160x160 BGR pixels scaled by
(v - 127.5) / 128, 512-dimensional output.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from verifacex.ml.preprocessing import resize_image
from verifacex.ml.types import NotInitializedError, RecognitionResult

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from verifacex.ml.inference import NetworkExecutor


class FaceRecognizer(Protocol):
    """Protocol for face recognition (embedding) models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 512)."""
        ...

    async def initialize(self) -> None: ...

    async def recognize(self, face: NDArray[np.uint8]) -> RecognitionResult:
        """Generate the embedding of an aligned face crop.

        Args:
            face: HxWx3 RGB uint8 crop of a single face.
        """
        ...

    async def destroy(self) -> None: ...


class FaceNet512Recognizer:
    """FaceNet512 embedder over an injected network executor."""

    input_size: tuple[int, int] = (160, 160)

    def __init__(
        self,
        executor: NetworkExecutor,
        model_name: str = "facenet512",
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._model_name = model_name
        self._logger = logger or logging.getLogger(__name__)
        self._initialized = False

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def embedding_dim(self) -> int:
        return 512

    async def initialize(self) -> None:
        await self._executor.load(self._model_name)
        self._initialized = True
        self._logger.info("%s initialized", self._model_name)

    async def destroy(self) -> None:
        self._initialized = False
        self._executor.release(self._model_name)

    async def recognize(self, face: NDArray[np.uint8]) -> RecognitionResult:
        if not self._initialized:
            raise NotInitializedError(f"{type(self).__name__} session was not initialized")

        tensor = self.preprocess(face)
        outputs = await self._executor.run(self._model_name, tensor)
        embedding = self.postprocess(outputs)
        self._logger.debug("Generated embedding of size %d", embedding.shape[0])
        return RecognitionResult(embedding=embedding)

    def preprocess(self, face: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize, reorder to BGR and normalize into a (1, 160, 160, 3) tensor."""
        height, width = self.input_size
        resized = resize_image(face, height, width)
        bgr = resized[:, :, ::-1].astype(np.float32)
        return np.ascontiguousarray(((bgr - 127.5) / 128.0)[np.newaxis])

    def postprocess(self, outputs: dict[str, NDArray[np.float32]]) -> NDArray[np.float32]:
        if not outputs:
            raise ValueError("Recognizer returned no outputs")
        embedding = np.asarray(next(iter(outputs.values())), dtype=np.float32).ravel()
        if embedding.shape[0] != self.embedding_dim:
            raise ValueError(f"Expected a {self.embedding_dim}-dim embedding, got {embedding.shape[0]}")
        return embedding
