"""Confidence filtering and pre-NMS truncation of raw detector outputs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

FACE_CLASS_INDEX = 1


def select_candidates(
    conf: NDArray[np.float32],
    threshold: float,
    top_k: int,
) -> NDArray[np.intp]:
    """Return indices of priors whose face score passes ``threshold``.

    Scores must be strictly greater than the threshold. When more than
    ``top_k`` priors pass, the ``top_k`` highest scores are kept; equal
    scores keep prior order. An empty result means no face.

    Args:
        conf: Class scores, shape (N, 2) as background, face.
        threshold: Minimum face score (exclusive).
        top_k: Maximum number of candidates handed to NMS.
    """
    if conf.ndim != 2 or conf.shape[1] != 2:
        raise ValueError(f"Expected confidences of shape (N, 2), got {conf.shape}")
    if top_k < 1:
        raise ValueError(f"top_k must be positive, got {top_k}")

    scores = conf[:, FACE_CLASS_INDEX]
    passing = np.flatnonzero(scores > threshold)

    if passing.size > top_k:
        order = np.argsort(-scores[passing], kind="stable")[:top_k]
        passing = passing[order]

    return passing
