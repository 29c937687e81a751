"""Prior (anchor) box generation for RetinaFace-style detectors."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

STEPS: tuple[int, ...] = (8, 16, 32)
MIN_SIZES: tuple[tuple[int, ...], ...] = ((16, 32), (64, 128), (256, 512))


def generate_anchors(
    image_size: tuple[int, int],
    steps: Sequence[int] = STEPS,
    min_sizes: Sequence[Sequence[int]] = MIN_SIZES,
) -> NDArray[np.float32]:
    """Generate priors for an input of ``(height, width)``.

    Returns a (num_priors, 4) float32 array of (cx, cy, w, h) in normalized
    coordinates. Rows are ordered feature map, then cell row, then cell
    column, then box size, which is the order the network flattens its
    outputs in.
    """
    height, width = image_size
    if height <= 0 or width <= 0:
        raise ValueError(f"Invalid anchor input size: {image_size}")
    if len(steps) != len(min_sizes):
        raise ValueError("steps and min_sizes must have the same length")

    levels: list[NDArray[np.float32]] = []
    for step, sizes in zip(steps, min_sizes, strict=True):
        map_h = math.ceil(height / step)
        map_w = math.ceil(width / step)
        rows, cols = np.meshgrid(np.arange(map_h), np.arange(map_w), indexing="ij")

        num_sizes = len(sizes)
        cx = np.repeat((cols.ravel() + 0.5) * step / width, num_sizes)
        cy = np.repeat((rows.ravel() + 0.5) * step / height, num_sizes)
        size_arr = np.asarray(sizes, dtype=np.float64)
        sw = np.tile(size_arr / width, map_h * map_w)
        sh = np.tile(size_arr / height, map_h * map_w)

        levels.append(np.stack((cx, cy, sw, sh), axis=1).astype(np.float32))

    return np.concatenate(levels, axis=0)


class AnchorCache:
    """Caches generated priors per ``(height, width)`` input resolution."""

    def __init__(self) -> None:
        self._cache: dict[tuple[int, int], NDArray[np.float32]] = {}

    def get(self, image_size: tuple[int, int]) -> NDArray[np.float32]:
        key = (int(image_size[0]), int(image_size[1]))
        anchors = self._cache.get(key)
        if anchors is None:
            anchors = generate_anchors(key)
            anchors.flags.writeable = False
            self._cache[key] = anchors
            logger.debug("Generated %d anchors for %dx%d", anchors.shape[0], key[1], key[0])
        return anchors

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, image_size: object) -> bool:
        return image_size in self._cache

    def __len__(self) -> int:
        return len(self._cache)
