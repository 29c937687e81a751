"""Tests for primary-face selection."""

from __future__ import annotations

import numpy as np
import pytest

from verifacex.ml.face_selector import largest_face_index, round_half_up, select_largest_face
from verifacex.ml.types import BoundingBox, DetectionBatch


def _batch(boxes: list[list[float]], scores: list[float] | None = None) -> DetectionBatch:
    arr = np.asarray(boxes, dtype=np.float32)
    n = arr.shape[0]
    landmarks = np.tile(np.array([0.25, 0.5], dtype=np.float32), (n, 5))
    return DetectionBatch(
        boxes=arr,
        scores=np.asarray(scores or [0.9] * n, dtype=np.float32),
        landmarks=landmarks,
    )


class TestLargestFaceIndex:
    def test_ties_resolve_to_first(self) -> None:
        # Areas 10, 50, 50.
        boxes = np.array([[0, 0, 2, 5], [0, 0, 5, 10], [10, 10, 20, 15]], dtype=np.float32)
        assert largest_face_index(boxes) == 1

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            largest_face_index(np.zeros((0, 4)))


class TestRoundHalfUp:
    @pytest.mark.parametrize(("value", "expected"), [(2.5, 3), (2.49, 2), (-0.5, 0), (3.0, 3)])
    def test_rounding(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected


class TestSelectLargestFace:
    def test_empty_batch_returns_none(self) -> None:
        assert select_largest_face(DetectionBatch.empty(), 640, 480) is None

    def test_scales_to_pixels(self) -> None:
        detection = select_largest_face(_batch([[0.1, 0.2, 0.5, 0.6]], [0.93]), 200, 100)

        assert detection is not None
        assert detection.box == BoundingBox(x=20, y=20, width=80, height=40)
        assert detection.confidence == pytest.approx(0.93)
        assert detection.landmarks == ((50, 50),) * 5
        assert detection.multiple_faces is False

    def test_multiple_faces_independent_of_selection(self) -> None:
        detection = select_largest_face(
            _batch([[0.0, 0.0, 0.1, 0.1], [0.2, 0.2, 0.8, 0.8]], [0.99, 0.8]),
            100,
            100,
        )

        assert detection is not None
        assert detection.confidence == pytest.approx(0.8)
        assert detection.box.width == 60
        assert detection.multiple_faces is True

    def test_tiny_box_has_at_least_one_pixel(self) -> None:
        detection = select_largest_face(_batch([[0.1, 0.1, 0.1001, 0.1001]]), 100, 100)

        assert detection is not None
        assert detection.box.width == 1
        assert detection.box.height == 1
