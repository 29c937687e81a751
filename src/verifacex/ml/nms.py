"""Greedy non-maximum suppression over normalized boxes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from verifacex.ml.types import DetectionBatch


def box_areas(boxes: NDArray[np.floating]) -> NDArray[np.floating]:
    """Area of (N, 4) corner-form boxes. Coordinates are continuous, so no +1."""
    return (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])


def iou_one_to_many(box: NDArray[np.floating], boxes: NDArray[np.floating]) -> NDArray[np.float64]:
    """IoU of one box against each of ``boxes``; a zero union yields 0."""
    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    union = area + box_areas(boxes) - inter

    iou = np.zeros(boxes.shape[0], dtype=np.float64)
    np.divide(inter, union, out=iou, where=union != 0)
    return iou


def non_maximum_suppression(
    boxes: NDArray[np.floating],
    scores: NDArray[np.floating],
    threshold: float,
) -> list[int]:
    """Greedy NMS. Returns kept indices ordered by descending score.

    A box is suppressed by a kept box when their IoU is strictly greater
    than ``threshold``. Equal scores keep input order.
    """
    num = scores.shape[0]
    if boxes.shape != (num, 4):
        raise ValueError(f"Expected boxes of shape ({num}, 4), got {boxes.shape}")
    if num == 0:
        return []

    order = np.argsort(-scores, kind="stable")
    suppressed = np.zeros(num, dtype=bool)
    keep: list[int] = []

    for i in order:
        if suppressed[i]:
            continue
        keep.append(int(i))

        overlaps = iou_one_to_many(boxes[i], boxes) > threshold
        overlaps[i] = False
        suppressed |= overlaps

    return keep


def apply_nms(batch: DetectionBatch, threshold: float, top_k: int) -> DetectionBatch:
    """Suppress overlapping detections and keep at most ``top_k`` of the rest."""
    if len(batch) == 0:
        return batch
    keep = non_maximum_suppression(batch.boxes, batch.scores, threshold)
    return batch.take(keep[:top_k])
