"""Primary-face selection and conversion to pixel space."""

from __future__ import annotations

import math

import numpy as np

from verifacex.ml.nms import box_areas
from verifacex.ml.types import BoundingBox, Detection, DetectionBatch


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def largest_face_index(boxes: np.ndarray) -> int:
    """Index of the largest box. Ties resolve to the lowest index."""
    if boxes.shape[0] == 0:
        raise ValueError("Cannot select a face from an empty batch")
    return int(np.argmax(box_areas(boxes)))


def select_largest_face(batch: DetectionBatch, width: int, height: int) -> Detection | None:
    """Pick the largest surviving detection and scale it to a ``width`` x ``height`` image.

    Returns None when the batch is empty. ``multiple_faces`` reflects the
    size of the whole batch, not the selection.
    """
    count = len(batch)
    if count == 0:
        return None

    idx = largest_face_index(batch.boxes)
    x1, y1, x2, y2 = (float(v) for v in batch.boxes[idx])

    box = BoundingBox(
        x=round_half_up(x1 * width),
        y=round_half_up(y1 * height),
        width=max(1, round_half_up((x2 - x1) * width)),
        height=max(1, round_half_up((y2 - y1) * height)),
    )

    points = batch.landmarks[idx].reshape(5, 2)
    landmarks = tuple((round_half_up(float(px) * width), round_half_up(float(py) * height)) for px, py in points)

    return Detection(
        box=box,
        confidence=float(batch.scores[idx]),
        landmarks=landmarks,
        multiple_faces=count > 1,
    )
