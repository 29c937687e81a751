"""Eye-based rotation alignment and cropping of detected faces."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np

from verifacex.ml.types import BoundingBox, Detection

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_EPSILON: float = 2.0


def eye_angle(landmarks: tuple[tuple[float, float], ...]) -> float:
    """Angle in degrees of the line from the left eye (0) to the right eye (1)."""
    (lx, ly), (rx, ry) = landmarks[0], landmarks[1]
    return math.degrees(math.atan2(ry - ly, rx - lx))


def rotate_points(
    points: NDArray[np.floating],
    center: tuple[float, float],
    angle: float,
) -> NDArray[np.float64]:
    """Map (N, 2) points into an image rotated by ``angle`` degrees about ``center``.

    ``cv2.getRotationMatrix2D(center, angle)`` rotates the image; in image
    coordinates that is the standard rotation by ``-angle``, applied here.
    """
    radians = math.radians(-angle)
    cos, sin = math.cos(radians), math.sin(radians)

    pts = np.asarray(points, dtype=np.float64)
    dx = pts[:, 0] - center[0]
    dy = pts[:, 1] - center[1]
    return np.stack(
        (center[0] + dx * cos - dy * sin, center[1] + dx * sin + dy * cos),
        axis=1,
    )


def rotate_image(image: NDArray[np.uint8], center: tuple[float, float], angle: float) -> NDArray[np.uint8]:
    """Rotate ``image`` by ``angle`` degrees about ``center``, keeping its size."""
    height, width = image.shape[:2]
    matrix = cv2.getRotationMatrix2D(center, angle, 1.0)
    return cv2.warpAffine(image, matrix, (width, height))


def align_face(
    image: NDArray[np.uint8],
    detection: Detection,
    rotation_epsilon: float = DEFAULT_ROTATION_EPSILON,
) -> tuple[NDArray[np.uint8], Detection]:
    """Rotate the image so the eyes are level and carry the detection along.

    The box becomes the axis-aligned bound of its rotated corners, which is
    looser than the rotated rectangle. Angles below ``rotation_epsilon``
    degrees leave the image and detection untouched.
    """
    if len(detection.landmarks) < 2:
        return image, detection

    angle = eye_angle(detection.landmarks)
    if abs(angle) < rotation_epsilon:
        logger.debug("Skipping rotation for %.2f degree tilt", angle)
        return image, detection

    height, width = image.shape[:2]
    center = (width / 2, height / 2)
    rotated = rotate_image(image, center, angle)

    corners = rotate_points(detection.box.corners(), center, angle)
    min_x, min_y = corners.min(axis=0)
    max_x, max_y = corners.max(axis=0)
    box = BoundingBox(
        x=float(min_x),
        y=float(min_y),
        width=float(max_x - min_x),
        height=float(max_y - min_y),
    )

    points = rotate_points(np.asarray(detection.landmarks, dtype=np.float64), center, angle)
    landmarks = tuple((float(px), float(py)) for px, py in points)

    logger.debug("Rotated face by %.2f degrees", angle)
    return rotated, detection.with_geometry(box, landmarks)


def clamp_box(box: BoundingBox, width: int, height: int) -> tuple[int, int, int, int]:
    """Clamp a box to the canvas and return integer x0, y0, x1, y1 bounds."""
    x0 = max(0, math.floor(box.x))
    y0 = max(0, math.floor(box.y))
    x1 = min(width, math.ceil(box.x2))
    y1 = min(height, math.ceil(box.y2))
    return x0, y0, x1, y1


def crop_face(image: NDArray[np.uint8], box: BoundingBox) -> NDArray[np.uint8]:
    """Crop ``box`` from ``image`` after clamping it to the image bounds."""
    height, width = image.shape[:2]
    x0, y0, x1, y1 = clamp_box(box, width, height)
    if x1 <= x0 or y1 <= y0:
        raise ValueError(f"Face box {box} lies outside the {width}x{height} image")
    return image[y0:y1, x0:x1].copy()


def align_and_crop_face(
    image: NDArray[np.uint8],
    detection: Detection,
    rotation_epsilon: float = DEFAULT_ROTATION_EPSILON,
) -> NDArray[np.uint8]:
    """Align the face on its eye line, then crop it from the rotated image.

    Faces near a corner can rotate off the canvas; those are cropped from the
    original image without rotation.
    """
    aligned, aligned_detection = align_face(image, detection, rotation_epsilon)
    if aligned is not image:
        height, width = aligned.shape[:2]
        x0, y0, x1, y1 = clamp_box(aligned_detection.box, width, height)
        if x1 <= x0 or y1 <= y0:
            logger.debug("Rotated face box left the image, cropping unrotated")
            return crop_face(image, detection.box)
    return crop_face(aligned, aligned_detection.box)
