"""Tests for eye-line alignment and face cropping."""

from __future__ import annotations

import math

import cv2
import numpy as np
import pytest

from verifacex.ml.alignment import (
    align_and_crop_face,
    align_face,
    clamp_box,
    crop_face,
    eye_angle,
    rotate_image,
    rotate_points,
)
from verifacex.ml.types import BoundingBox, Detection


def _detection(left_eye: tuple[float, float], right_eye: tuple[float, float], box: BoundingBox) -> Detection:
    return Detection(
        box=box,
        confidence=0.99,
        landmarks=(left_eye, right_eye, (50.0, 60.0), (42.0, 70.0), (58.0, 70.0)),
        multiple_faces=False,
    )


class TestEyeAngle:
    def test_level_eyes(self) -> None:
        assert eye_angle(((10, 20), (30, 20))) == 0.0

    def test_right_eye_lower_is_positive(self) -> None:
        assert eye_angle(((0, 0), (10, 10))) == pytest.approx(45.0)


class TestRotatePoints:
    def test_round_trip(self) -> None:
        corners = BoundingBox(x=12, y=30, width=40, height=25).corners()
        center = (64.0, 48.0)

        restored = rotate_points(rotate_points(corners, center, 23.5), center, -23.5)

        np.testing.assert_allclose(restored, corners, atol=1e-9)

    def test_matches_opencv_rotation_matrix(self) -> None:
        points = np.array([[10.0, 15.0], [70.0, 5.0], [33.0, 90.0]])
        center = (50.0, 40.0)
        angle = 17.0

        matrix = cv2.getRotationMatrix2D(center, angle, 1.0)
        expected = points @ matrix[:, :2].T + matrix[:, 2]

        np.testing.assert_allclose(rotate_points(points, center, angle), expected, atol=1e-9)

    def test_center_is_fixed(self) -> None:
        center = (20.0, 30.0)
        np.testing.assert_allclose(rotate_points(np.array([center]), center, 73.0), [center])


class TestAlignFace:
    def test_small_tilt_is_skipped(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        detection = _detection((40.0, 50.0), (60.0, 50.5), BoundingBox(x=30, y=30, width=40, height=40))

        aligned, aligned_detection = align_face(image, detection, rotation_epsilon=2.0)

        assert aligned is image
        assert aligned_detection is detection

    def test_zero_epsilon_always_rotates(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        detection = _detection((40.0, 50.0), (60.0, 50.5), BoundingBox(x=30, y=30, width=40, height=40))

        aligned, aligned_detection = align_face(image, detection, rotation_epsilon=0.0)

        assert aligned is not image
        assert aligned_detection is not detection

    def test_eyes_are_level_after_alignment(self) -> None:
        image = np.zeros((120, 100, 3), dtype=np.uint8)
        detection = _detection((40.0, 50.0), (60.0, 60.0), BoundingBox(x=25, y=30, width=50, height=60))

        aligned, aligned_detection = align_face(image, detection)

        assert aligned.shape == image.shape
        (_lx, ly), (_rx, ry) = aligned_detection.landmarks[:2]
        assert ly == pytest.approx(ry, abs=1e-9)

    def test_landmarks_follow_the_image(self) -> None:
        image = np.zeros((120, 160, 3), dtype=np.uint8)
        image[60, 50] = 255
        detection = _detection((50.0, 60.0), (70.0, 75.0), BoundingBox(x=40, y=40, width=50, height=60))

        aligned, aligned_detection = align_face(image, detection)

        x, y = aligned_detection.landmarks[0]
        ys, xs = np.nonzero(aligned[:, :, 0])
        assert abs(np.average(xs, weights=aligned[ys, xs, 0]) - x) < 1.0
        assert abs(np.average(ys, weights=aligned[ys, xs, 0]) - y) < 1.0

    def test_box_becomes_axis_aligned_bound(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        detection = _detection((40.0, 40.0), (50.0, 50.0), BoundingBox(x=40, y=40, width=20, height=20))

        _, aligned_detection = align_face(image, detection)

        half_diagonal = 10 * math.sqrt(2)
        box = aligned_detection.box
        assert box.x == pytest.approx(50 - half_diagonal)
        assert box.y == pytest.approx(50 - half_diagonal)
        assert box.width == pytest.approx(2 * half_diagonal)
        assert box.height == pytest.approx(2 * half_diagonal)

    def test_confidence_and_flags_preserved(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        detection = _detection((40.0, 40.0), (50.0, 50.0), BoundingBox(x=40, y=40, width=20, height=20))

        _, aligned_detection = align_face(image, detection)

        assert aligned_detection.confidence == detection.confidence
        assert aligned_detection.multiple_faces is detection.multiple_faces


class TestCrop:
    def test_rotate_image_keeps_size(self) -> None:
        image = np.zeros((48, 64, 3), dtype=np.uint8)
        assert rotate_image(image, (32.0, 24.0), 30.0).shape == (48, 64, 3)

    def test_clamp_box_rounds_outward(self) -> None:
        assert clamp_box(BoundingBox(x=1.4, y=2.6, width=10.2, height=5.1), 100, 100) == (1, 2, 12, 8)

    def test_partially_outside_box_is_clamped(self) -> None:
        image = np.zeros((80, 100, 3), dtype=np.uint8)
        crop = crop_face(image, BoundingBox(x=-10, y=70, width=30, height=30))
        assert crop.shape == (10, 20, 3)

    def test_box_outside_image_raises(self) -> None:
        image = np.zeros((80, 100, 3), dtype=np.uint8)
        with pytest.raises(ValueError, match="outside"):
            crop_face(image, BoundingBox(x=120, y=0, width=10, height=10))

    def test_crop_is_a_copy(self) -> None:
        image = np.zeros((20, 20, 3), dtype=np.uint8)
        crop = crop_face(image, BoundingBox(x=0, y=0, width=5, height=5))
        crop[:] = 255
        assert image.max() == 0

    def test_align_and_crop_without_tilt(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        detection = _detection((15.0, 30.0), (35.0, 30.0), BoundingBox(x=10, y=20, width=30, height=40))

        face = align_and_crop_face(image, detection)

        assert face.shape == (40, 30, 3)

    def test_corner_face_rotated_off_canvas_is_cropped_unrotated(self) -> None:
        image = np.zeros((1000, 1000, 3), dtype=np.uint8)
        image[:30, :30] = 200
        detection = _detection((5.0, 5.0), (25.0, 17.0), BoundingBox(x=0, y=0, width=30, height=30))

        _, rotated = align_face(image, detection)
        assert rotated.box.x2 < 0

        face = align_and_crop_face(image, detection)

        assert face.shape == (30, 30, 3)
        assert face.min() == 200
