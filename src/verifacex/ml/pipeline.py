"""Face verification pipeline: detect, align, embed, compare, and check liveness.

``verify`` runs the two images' branches concurrently and joins them before
comparing embeddings; within a branch, embedding and liveness scoring run
concurrently. The pipeline holds no locks: concurrent calls into one
instance are as safe as the underlying NetworkExecutor.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING

from verifacex.ml.alignment import DEFAULT_ROTATION_EPSILON, align_and_crop_face
from verifacex.ml.face_detector import DetectionConfig, RetinaFaceDetector
from verifacex.ml.face_recognizer import FaceNet512Recognizer
from verifacex.ml.spoofing import LivenessModel, MiniFASNetScorer
from verifacex.ml.types import NotInitializedError, RecognitionResult, VerificationResult
from verifacex.ml.verification import CosineVerifier

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray

    from verifacex.config import Settings
    from verifacex.ml.face_detector import DetectionOptions, FaceDetector
    from verifacex.ml.face_recognizer import FaceRecognizer
    from verifacex.ml.inference import NetworkExecutor
    from verifacex.ml.spoofing import LivenessScorer
    from verifacex.ml.types import BoundingBox, Detection, SpoofResult


@dataclass(frozen=True)
class FaceAnalysis:
    """Everything learned about one image."""

    detection: Detection | None
    recognition: RecognitionResult
    spoofing: SpoofResult | None


@dataclass(frozen=True)
class PairFlags:
    face1: bool | None
    face2: bool | None


@dataclass(frozen=True)
class CompactVerification:
    """Verification summary. Spoofing flags are True when an attack was detected."""

    multiple_faces: PairFlags
    spoofing: PairFlags
    verified: bool
    similarity: float


@dataclass(frozen=True)
class FullVerification:
    face1: FaceAnalysis
    face2: FaceAnalysis
    verification: VerificationResult


class FacePipeline:
    """Composes detection, alignment, recognition, verification and anti-spoofing."""

    def __init__(
        self,
        detector: FaceDetector,
        recognizer: FaceRecognizer,
        verifier: CosineVerifier,
        liveness: LivenessScorer | None = None,
        rotation_epsilon: float = DEFAULT_ROTATION_EPSILON,
        logger: logging.Logger | None = None,
    ) -> None:
        self._detector = detector
        self._recognizer = recognizer
        self._verifier = verifier
        self._liveness = liveness
        self._rotation_epsilon = rotation_epsilon
        self._logger = logger or logging.getLogger(__name__)
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings, executor: NetworkExecutor) -> FacePipeline:
        """Build the default RetinaFace / FaceNet512 / MiniFASNet pipeline."""
        liveness: LivenessScorer | None = None
        if settings.spoofing_enabled:
            first, second = settings.spoofing_models
            liveness = MiniFASNetScorer(
                executor,
                models=(LivenessModel(name=first, scale=2.7), LivenessModel(name=second, scale=4.0)),
                threshold=settings.spoofing_threshold,
            )
        return cls(
            detector=RetinaFaceDetector(
                executor,
                model_name=settings.face_detection_model,
                config=DetectionConfig.from_settings(settings),
            ),
            recognizer=FaceNet512Recognizer(executor, model_name=settings.face_recognition_model),
            verifier=CosineVerifier(threshold=settings.verification_threshold),
            liveness=liveness,
            rotation_epsilon=settings.rotation_epsilon,
        )

    @property
    def spoofing_enabled(self) -> bool:
        return self._liveness is not None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        self._logger.info("Initializing face pipeline")
        stages = [self._detector.initialize(), self._recognizer.initialize()]
        if self._liveness is not None:
            stages.append(self._liveness.initialize())
        await asyncio.gather(*stages)
        self._initialized = True
        self._logger.info("Face pipeline ready (spoofing=%s)", self.spoofing_enabled)

    async def destroy(self) -> None:
        self._initialized = False
        async with AsyncExitStack() as stack:
            if self._liveness is not None:
                stack.push_async_callback(self._liveness.destroy)
            stack.push_async_callback(self._recognizer.destroy)
            stack.push_async_callback(self._detector.destroy)
        self._logger.info("Face pipeline released")

    async def detect(self, image: NDArray[np.uint8], options: DetectionOptions | None = None) -> Detection | None:
        self._ensure_initialized()
        return await self._detector.detect(image, options)

    async def recognize(self, face: NDArray[np.uint8]) -> RecognitionResult:
        self._ensure_initialized()
        return await self._recognizer.recognize(face)

    async def analyze_spoofing(self, image: NDArray[np.uint8], box: BoundingBox | None = None) -> SpoofResult | None:
        """Liveness of the face in ``box``; None when anti-spoofing is disabled."""
        self._ensure_initialized()
        if self._liveness is None:
            return None
        return await self._liveness.analyze(image, box)

    def verify_embedding(
        self,
        embedding1: ArrayLike,
        embedding2: ArrayLike,
        threshold: float | None = None,
    ) -> VerificationResult:
        self._ensure_initialized()
        return self._verifier.compare(embedding1, embedding2, threshold)

    async def process_image(self, image: NDArray[np.uint8], options: DetectionOptions | None = None) -> FaceAnalysis:
        """Detect the primary face, then embed its aligned crop and score its liveness."""
        detection = await self.detect(image, options)
        if detection is None:
            return FaceAnalysis(detection=None, recognition=RecognitionResult(), spoofing=None)

        face = align_and_crop_face(image, detection, self._rotation_epsilon)
        recognition, spoofing = await asyncio.gather(
            self.recognize(face),
            self.analyze_spoofing(image, detection.box),
        )
        return FaceAnalysis(detection=detection, recognition=recognition, spoofing=spoofing)

    async def verify(
        self,
        image1: NDArray[np.uint8],
        image2: NDArray[np.uint8],
        *,
        compact: bool = True,
        options: DetectionOptions | None = None,
        threshold: float | None = None,
    ) -> CompactVerification | FullVerification:
        """Decide whether two images show the same person.

        When either image has no detectable face, the result is not verified
        with similarity 0.
        """
        self._ensure_initialized()
        face1, face2 = await asyncio.gather(
            self.process_image(image1, options),
            self.process_image(image2, options),
        )

        if face1.detection is None or face2.detection is None:
            effective = self._verifier.threshold if threshold is None else threshold
            verification = VerificationResult(similarity=0.0, verified=False, threshold=effective)
        else:
            verification = self.verify_embedding(face1.recognition.embedding, face2.recognition.embedding, threshold)

        self._logger.info(
            "Verification %s (similarity=%.4f)",
            "VERIFIED" if verification.verified else "NOT VERIFIED",
            verification.similarity,
        )

        if not compact:
            return FullVerification(face1=face1, face2=face2, verification=verification)

        return CompactVerification(
            multiple_faces=PairFlags(
                face1=face1.detection.multiple_faces if face1.detection else None,
                face2=face2.detection.multiple_faces if face2.detection else None,
            ),
            spoofing=PairFlags(
                face1=_is_spoof(face1.spoofing),
                face2=_is_spoof(face2.spoofing),
            ),
            verified=verification.verified,
            similarity=verification.similarity,
        )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("FacePipeline was not initialized")


def _is_spoof(result: SpoofResult | None) -> bool | None:
    return None if result is None else not result.real
