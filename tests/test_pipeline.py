"""Tests for the face verification pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from verifacex.config import Settings
from verifacex.ml.pipeline import CompactVerification, FacePipeline, FullVerification
from verifacex.ml.types import (
    BoundingBox,
    Detection,
    NotInitializedError,
    RecognitionResult,
    SpoofResult,
)
from verifacex.ml.verification import CosineVerifier

if TYPE_CHECKING:
    from conftest import FakeExecutor

LEVEL_EYES = ((20.0, 30.0), (40.0, 30.0), (30.0, 40.0), (22.0, 50.0), (38.0, 50.0))
LIVE = SpoofResult(real=True, score=0.9, realness=0.9, fakeness=0.1)
ATTACK = SpoofResult(real=False, score=0.8, realness=0.2, fakeness=0.8)


def _detection(multiple_faces: bool = False) -> Detection:
    return Detection(
        box=BoundingBox(x=10, y=20, width=30, height=40),
        confidence=0.95,
        landmarks=LEVEL_EYES,
        multiple_faces=multiple_faces,
    )


def _components(
    detections: list[Detection | None],
    embeddings: list[list[float]],
    liveness: list[SpoofResult] | None = None,
) -> tuple[MagicMock, MagicMock, MagicMock | None]:
    detector = MagicMock()
    detector.initialize = AsyncMock()
    detector.destroy = AsyncMock()
    detector.detect = AsyncMock(side_effect=detections)

    recognizer = MagicMock()
    recognizer.initialize = AsyncMock()
    recognizer.destroy = AsyncMock()
    recognizer.recognize = AsyncMock(
        side_effect=[RecognitionResult(embedding=np.asarray(e, dtype=np.float32)) for e in embeddings]
    )

    scorer = None
    if liveness is not None:
        scorer = MagicMock()
        scorer.initialize = AsyncMock()
        scorer.destroy = AsyncMock()
        scorer.analyze = AsyncMock(side_effect=liveness)
    return detector, recognizer, scorer


async def _pipeline(
    detections: list[Detection | None],
    embeddings: list[list[float]],
    liveness: list[SpoofResult] | None = None,
    threshold: float = 0.7,
) -> tuple[FacePipeline, MagicMock, MagicMock, MagicMock | None]:
    detector, recognizer, scorer = _components(detections, embeddings, liveness)
    pipeline = FacePipeline(detector, recognizer, CosineVerifier(threshold=threshold), scorer)
    await pipeline.initialize()
    return pipeline, detector, recognizer, scorer


def _image() -> np.ndarray:
    return np.zeros((100, 100, 3), dtype=np.uint8)


class TestLifecycle:
    async def test_use_before_initialize_raises(self) -> None:
        detector, recognizer, _ = _components([], [])
        pipeline = FacePipeline(detector, recognizer, CosineVerifier())
        with pytest.raises(NotInitializedError):
            await pipeline.verify(_image(), _image())

    async def test_verify_embedding_after_destroy_raises(self) -> None:
        pipeline, _, _, _ = await _pipeline([], [])
        assert pipeline.verify_embedding([1, 2], [1, 2]).verified is True

        await pipeline.destroy()

        with pytest.raises(NotInitializedError):
            pipeline.verify_embedding([1, 2], [1, 2])

    async def test_destroy_releases_later_stages_when_one_fails(self) -> None:
        pipeline, detector, recognizer, scorer = await _pipeline([], [], liveness=[])
        assert scorer is not None
        detector.destroy.side_effect = RuntimeError("release failed")

        with pytest.raises(RuntimeError, match="release failed"):
            await pipeline.destroy()

        recognizer.destroy.assert_awaited_once()
        scorer.destroy.assert_awaited_once()
        assert not pipeline.is_initialized

    async def test_initialize_and_destroy_every_stage(self) -> None:
        pipeline, detector, recognizer, scorer = await _pipeline([], [], liveness=[])
        assert pipeline.is_initialized
        assert scorer is not None

        await pipeline.destroy()

        for component in (detector, recognizer, scorer):
            component.initialize.assert_awaited_once()
            component.destroy.assert_awaited_once()
        assert not pipeline.is_initialized

    async def test_from_settings_loads_configured_models(self, executor: FakeExecutor) -> None:
        pipeline = FacePipeline.from_settings(Settings(), executor)
        await pipeline.initialize()

        assert pipeline.spoofing_enabled
        assert sorted(executor.loaded) == ["facenet512", "minifasnet_v1se", "minifasnet_v2", "retinaface_mv2"]

    async def test_from_settings_without_spoofing(self, executor: FakeExecutor) -> None:
        pipeline = FacePipeline.from_settings(Settings(spoofing_enabled=False), executor)
        await pipeline.initialize()

        assert not pipeline.spoofing_enabled
        assert sorted(executor.loaded) == ["facenet512", "retinaface_mv2"]


class TestProcessImage:
    async def test_embeds_cropped_face(self) -> None:
        pipeline, _, recognizer, scorer = await _pipeline([_detection()], [[1.0, 0.0]], liveness=[LIVE])

        analysis = await pipeline.process_image(_image())

        face = recognizer.recognize.call_args.args[0]
        assert face.shape == (40, 30, 3)
        assert analysis.spoofing == LIVE
        assert scorer is not None
        assert scorer.analyze.call_args.args[1] == _detection().box

    async def test_no_face_skips_recognition(self) -> None:
        pipeline, _, recognizer, _ = await _pipeline([None], [])

        analysis = await pipeline.process_image(_image())

        assert analysis.detection is None
        assert analysis.recognition.embedding.size == 0
        assert analysis.spoofing is None
        recognizer.recognize.assert_not_called()


class TestVerify:
    async def test_compact_same_person(self) -> None:
        pipeline, _, _, _ = await _pipeline(
            [_detection(), _detection(multiple_faces=True)],
            [[0.6, 0.8], [0.6, 0.8]],
            liveness=[LIVE, ATTACK],
        )

        result = await pipeline.verify(_image(), _image())

        assert isinstance(result, CompactVerification)
        assert result.verified is True
        assert result.similarity == pytest.approx(1.0)
        assert result.multiple_faces.face1 is False
        assert result.multiple_faces.face2 is True
        assert result.spoofing.face1 is False
        assert result.spoofing.face2 is True

    async def test_compact_different_people(self) -> None:
        pipeline, _, _, _ = await _pipeline([_detection(), _detection()], [[1.0, 0.0], [0.0, 1.0]])

        result = await pipeline.verify(_image(), _image())

        assert isinstance(result, CompactVerification)
        assert result.verified is False
        assert result.similarity == pytest.approx(0.0)
        assert result.spoofing.face1 is None

    async def test_missing_face_is_not_verified(self) -> None:
        pipeline, _, recognizer, _ = await _pipeline([_detection(), None], [[1.0, 0.0]], threshold=0.6)

        result = await pipeline.verify(_image(), _image(), compact=False)

        assert isinstance(result, FullVerification)
        assert result.verification.similarity == 0.0
        assert result.verification.verified is False
        assert result.verification.threshold == 0.6
        assert result.face2.detection is None
        assert recognizer.recognize.await_count == 1

    async def test_missing_face_compact_flags_are_none(self) -> None:
        pipeline, _, _, _ = await _pipeline([None, None], [], liveness=[])

        result = await pipeline.verify(_image(), _image())

        assert isinstance(result, CompactVerification)
        assert result.multiple_faces.face1 is None
        assert result.spoofing.face2 is None
        assert result.similarity == 0.0

    async def test_full_result_carries_embeddings(self) -> None:
        pipeline, _, _, _ = await _pipeline(
            [_detection(), _detection()],
            [[1.0, 1.0], [1.0, 0.0]],
            liveness=[LIVE, LIVE],
        )

        result = await pipeline.verify(_image(), _image(), compact=False, threshold=0.5)

        assert isinstance(result, FullVerification)
        np.testing.assert_allclose(result.face1.recognition.embedding, [1.0, 1.0])
        assert result.verification.similarity == pytest.approx(np.sqrt(0.5))
        assert result.verification.verified is True
        assert result.verification.threshold == 0.5
        assert result.face2.spoofing == LIVE

    async def test_analyze_spoofing_disabled_returns_none(self) -> None:
        pipeline, _, _, _ = await _pipeline([], [])
        assert not pipeline.spoofing_enabled
        assert await pipeline.analyze_spoofing(_image()) is None
