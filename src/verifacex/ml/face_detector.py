"""Face detection: RetinaFace (MobileNetV2) inference and post-processing.

The network returns per-prior box regressions, class scores and landmark
offsets; everything after inference (decoding, filtering, NMS, selection)
is plain numpy.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING, Protocol

import numpy as np

from verifacex.ml.anchors import AnchorCache
from verifacex.ml.box_codec import decode_boxes, decode_landmarks
from verifacex.ml.detection_filter import select_candidates
from verifacex.ml.face_selector import select_largest_face
from verifacex.ml.nms import apply_nms
from verifacex.ml.preprocessing import resize_image
from verifacex.ml.types import Detection, DetectionBatch, NotInitializedError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from verifacex.config import Settings
    from verifacex.ml.inference import NetworkExecutor

# Per-channel means subtracted from the first, second and third input channel.
CHANNEL_MEANS: tuple[float, float, float] = (104.0, 117.0, 123.0)


@dataclass(frozen=True)
class DetectionConfig:
    """Detection thresholds and the (height, width) network input size."""

    confidence_threshold: float = 0.7
    nms_threshold: float = 0.4
    pre_nms_top_k: int = 5000
    post_nms_top_k: int = 750
    input_size: tuple[int, int] = (320, 320)

    @classmethod
    def from_settings(cls, settings: Settings) -> DetectionConfig:
        return cls(
            confidence_threshold=settings.confidence_threshold,
            nms_threshold=settings.nms_threshold,
            pre_nms_top_k=settings.pre_nms_top_k,
            post_nms_top_k=settings.post_nms_top_k,
            input_size=(settings.detection_input_height, settings.detection_input_width),
        )

    def with_overrides(self, options: DetectionOptions | None) -> DetectionConfig:
        if options is None:
            return self
        overrides = {name: value for name, value in asdict(options).items() if value is not None}
        return replace(self, **overrides)


@dataclass(frozen=True)
class DetectionOptions:
    """Per-call overrides; ``None`` fields keep the detector's configuration."""

    confidence_threshold: float | None = None
    nms_threshold: float | None = None
    pre_nms_top_k: int | None = None
    post_nms_top_k: int | None = None
    input_size: tuple[int, int] | None = None


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    async def initialize(self) -> None: ...

    async def detect(self, image: NDArray[np.uint8], options: DetectionOptions | None = None) -> Detection | None:
        """Detect the primary face in an image.

        Args:
            image: HxWx3 RGB uint8 array.
            options: Per-call overrides of the detection thresholds.

        Returns:
            The largest detected face in pixel coordinates, or None.
        """
        ...

    async def destroy(self) -> None: ...


class RetinaFaceDetector:
    """RetinaFace detector over an injected network executor."""

    def __init__(
        self,
        executor: NetworkExecutor,
        model_name: str = "retinaface_mv2",
        config: DetectionConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._model_name = model_name
        self._config = config or DetectionConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._anchors = AnchorCache()
        self._initialized = False

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def config(self) -> DetectionConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        await self._executor.load(self._model_name)
        input_h, input_w = self._config.input_size
        anchors = self._anchors.get((input_h, input_w))
        self._initialized = True
        self._logger.info(
            "%s initialized: %d anchors for %dx%d",
            self._model_name,
            anchors.shape[0],
            input_w,
            input_h,
        )

    async def destroy(self) -> None:
        self._initialized = False
        self._anchors.clear()
        self._executor.release(self._model_name)

    async def detect(self, image: NDArray[np.uint8], options: DetectionOptions | None = None) -> Detection | None:
        self._ensure_initialized()
        config = self._config.with_overrides(options)

        height, width = image.shape[:2]
        input_h, input_w = config.input_size

        resized = resize_image(image, input_h, input_w)
        tensor = self.preprocess(resized)
        outputs = await self._executor.run(self._model_name, tensor)
        batch = self.postprocess(outputs, config)

        detection = select_largest_face(batch, width, height)
        if detection is None:
            self._logger.debug("No face detected")
        else:
            self._logger.debug(
                "Detected face: confidence=%.1f%%, multiple=%s",
                detection.confidence * 100,
                detection.multiple_faces,
            )
        return detection

    def preprocess(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Build a (1, 3, H, W) mean-subtracted float32 tensor."""
        tensor = image.astype(np.float32) - np.asarray(CHANNEL_MEANS, dtype=np.float32)
        return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis])

    def postprocess(
        self,
        outputs: dict[str, NDArray[np.float32]],
        config: DetectionConfig | None = None,
    ) -> DetectionBatch:
        """Turn raw ``loc``/``conf``/``landmarks`` outputs into kept detections.

        Raises:
            ValueError: If an output is missing or its size does not match the priors.
        """
        self._ensure_initialized()
        config = config or self._config
        priors = self._anchors.get(config.input_size)

        loc = self._output(outputs, "loc", 4)
        conf = self._output(outputs, "conf", 2)
        landmarks = self._output(outputs, "landmarks", 10)

        num_priors = priors.shape[0]
        for name, arr in (("loc", loc), ("conf", conf), ("landmarks", landmarks)):
            if arr.shape[0] != num_priors:
                raise ValueError(f"Output '{name}' has {arr.shape[0]} priors, expected {num_priors}")

        indices = select_candidates(conf, config.confidence_threshold, config.pre_nms_top_k)
        if indices.size == 0:
            return DetectionBatch.empty()

        selected_priors = priors[indices]
        candidates = DetectionBatch(
            boxes=decode_boxes(loc[indices], selected_priors),
            scores=conf[indices, 1],
            landmarks=decode_landmarks(landmarks[indices], selected_priors),
        )
        kept = apply_nms(candidates, config.nms_threshold, config.post_nms_top_k)
        self._logger.debug("%d candidates, %d kept after NMS", len(candidates), len(kept))
        return kept

    @staticmethod
    def _output(outputs: dict[str, NDArray[np.float32]], name: str, width: int) -> NDArray[np.float32]:
        try:
            arr = np.asarray(outputs[name], dtype=np.float32)
        except KeyError:
            raise ValueError(f"Detector output '{name}' missing") from None
        if arr.size % width != 0:
            raise ValueError(f"Detector output '{name}' of size {arr.size} is not a multiple of {width}")
        return arr.reshape(-1, width)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"{type(self).__name__} session was not initialized")
