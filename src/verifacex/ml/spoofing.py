"""Anti-spoofing with two MiniFASNet liveness networks.

Each network sees the same face at a different amount of context:
MiniFASNetV2 at 2.7x the face box, MiniFASNetV1SE at 4.0x. Both emit three
logits where index 1 is the live class and indices 0 and 2 are attack
classes. The two softmax outputs are averaged before deciding.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from verifacex.ml.preprocessing import resize_image
from verifacex.ml.types import BoundingBox, NotInitializedError, SpoofResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

    from verifacex.ml.inference import NetworkExecutor

REAL_CLASS_INDEX = 1
INPUT_SIZE: tuple[int, int] = (80, 80)


@dataclass(frozen=True)
class LivenessModel:
    name: str
    scale: float


DEFAULT_LIVENESS_MODELS: tuple[LivenessModel, LivenessModel] = (
    LivenessModel(name="minifasnet_v2", scale=2.7),
    LivenessModel(name="minifasnet_v1se", scale=4.0),
)


def softmax(logits: ArrayLike) -> NDArray[np.float64]:
    """Numerically stable softmax over the last axis."""
    arr = np.asarray(logits, dtype=np.float64)
    shifted = arr - np.max(arr, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def fuse_liveness_scores(logits: Sequence[ArrayLike]) -> SpoofResult:
    """Average the softmax of each network's logits and pick the winning label."""
    if not logits:
        raise ValueError("At least one liveness output is required")

    probs = np.mean([softmax(np.asarray(vec).ravel()) for vec in logits], axis=0)
    if probs.shape[0] <= REAL_CLASS_INDEX:
        raise ValueError(f"Expected at least {REAL_CLASS_INDEX + 1} classes, got {probs.shape[0]}")

    realness = float(probs[REAL_CLASS_INDEX])
    fakeness = float(np.sum(probs) - probs[REAL_CLASS_INDEX])
    real = int(np.argmax(probs)) == REAL_CLASS_INDEX

    return SpoofResult(
        real=real,
        score=realness if real else fakeness,
        realness=realness,
        fakeness=fakeness,
    )


def expand_face_box(
    box: BoundingBox,
    scale: float,
    image_width: int,
    image_height: int,
) -> tuple[int, int, int, int]:
    """Grow ``box`` by ``scale`` about its center and keep it inside the image.

    The scale is first capped so the grown box can fit. A box that spills
    over an edge is shifted back inward rather than clipped, so it keeps
    its size. Returns inclusive pixel bounds x1, y1, x2, y2.
    """
    if box.width <= 0 or box.height <= 0:
        raise ValueError(f"Cannot expand an empty box: {box}")

    scale = min(scale, (image_height - 1) / box.height, (image_width - 1) / box.width)
    new_width = box.width * scale
    new_height = box.height * scale
    center_x = box.x + box.width / 2
    center_y = box.y + box.height / 2

    left = center_x - new_width / 2
    top = center_y - new_height / 2
    right = center_x + new_width / 2
    bottom = center_y + new_height / 2

    if left < 0:
        right -= left
        left = 0
    if top < 0:
        bottom -= top
        top = 0
    if right > image_width - 1:
        left -= right - image_width + 1
        right = image_width - 1
    if bottom > image_height - 1:
        top -= bottom - image_height + 1
        bottom = image_height - 1

    return int(left), int(top), int(right), int(bottom)


class LivenessScorer(Protocol):
    """Protocol for presentation-attack detectors."""

    async def initialize(self) -> None: ...

    async def analyze(self, image: NDArray[np.uint8], box: BoundingBox | None = None) -> SpoofResult:
        """Score the face inside ``box`` (the whole image when None).

        Args:
            image: HxWx3 RGB uint8 source image.
            box: Face box in pixel coordinates of ``image``.
        """
        ...

    async def destroy(self) -> None: ...


class MiniFASNetScorer:
    """Dual MiniFASNet liveness scorer over an injected network executor.

    The verdict is the argmax of the averaged class probabilities. ``threshold``
    is only reported alongside results and does not gate ``real``.
    """

    def __init__(
        self,
        executor: NetworkExecutor,
        models: Sequence[LivenessModel] = DEFAULT_LIVENESS_MODELS,
        threshold: float = 0.5,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._models = tuple(models)
        self._threshold = threshold
        self._logger = logger or logging.getLogger(__name__)
        self._initialized = False

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def model_names(self) -> list[str]:
        return [model.name for model in self._models]

    async def initialize(self) -> None:
        await asyncio.gather(*(self._executor.load(model.name) for model in self._models))
        self._initialized = True
        self._logger.info("Liveness models initialized: %s", ", ".join(self.model_names))

    async def destroy(self) -> None:
        self._initialized = False
        for model in self._models:
            self._executor.release(model.name)

    async def analyze(self, image: NDArray[np.uint8], box: BoundingBox | None = None) -> SpoofResult:
        if not self._initialized:
            raise NotInitializedError(f"{type(self).__name__} session was not initialized")

        height, width = image.shape[:2]
        face_box = box or BoundingBox(x=0, y=0, width=width, height=height)

        outputs = await asyncio.gather(
            *(self._executor.run(model.name, self.preprocess(image, face_box, model.scale)) for model in self._models)
        )
        logits = [self._logits(output) for output in outputs]
        result = fuse_liveness_scores(logits)

        self._logger.debug(
            "Liveness: real=%s realness=%.4f fakeness=%.4f",
            result.real,
            result.realness,
            result.fakeness,
        )
        return result

    def preprocess(self, image: NDArray[np.uint8], box: BoundingBox, scale: float) -> NDArray[np.float32]:
        """Crop the expanded face region into a (1, 3, 80, 80) BGR tensor of raw 0-255 values."""
        height, width = image.shape[:2]
        x1, y1, x2, y2 = expand_face_box(box, scale, width, height)
        crop = image[y1 : y2 + 1, x1 : x2 + 1]

        resized = resize_image(crop, INPUT_SIZE[0], INPUT_SIZE[1])
        bgr = resized[:, :, ::-1].astype(np.float32)
        return np.ascontiguousarray(bgr.transpose(2, 0, 1)[np.newaxis])

    @staticmethod
    def _logits(outputs: dict[str, NDArray[np.float32]]) -> NDArray[np.float32]:
        if not outputs:
            raise ValueError("Liveness model returned no outputs")
        return np.asarray(next(iter(outputs.values())), dtype=np.float32).ravel()
