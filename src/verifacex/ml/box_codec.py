"""Decoding of detector regression outputs against priors."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

VARIANCES: tuple[float, float] = (0.1, 0.2)


def _check_shapes(pred: NDArray[np.float32], priors: NDArray[np.float32], width: int) -> None:
    if pred.ndim != 2 or pred.shape[1] != width:
        raise ValueError(f"Expected predictions of shape (N, {width}), got {pred.shape}")
    if priors.ndim != 2 or priors.shape[1] != 4:
        raise ValueError(f"Expected priors of shape (N, 4), got {priors.shape}")
    if pred.shape[0] != priors.shape[0]:
        raise ValueError(f"Prediction count {pred.shape[0]} does not match prior count {priors.shape[0]}")


def decode_boxes(
    loc: NDArray[np.float32],
    priors: NDArray[np.float32],
    variances: tuple[float, float] = VARIANCES,
) -> NDArray[np.float32]:
    """Undo the offset encoding of box regression.

    Args:
        loc: Box regression, shape (N, 4) as dx, dy, dw, dh.
        priors: Priors in center form, shape (N, 4) as cx, cy, w, h.
        variances: Center and size variances used at train time.

    Returns:
        Boxes in corner form, shape (N, 4) as xmin, ymin, xmax, ymax.
    """
    _check_shapes(loc, priors, 4)

    centers = priors[:, :2] + loc[:, :2] * variances[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * variances[1])

    half = sizes / 2
    return np.concatenate((centers - half, centers + half), axis=1)


def decode_landmarks(
    predictions: NDArray[np.float32],
    priors: NDArray[np.float32],
    variances: tuple[float, float] = VARIANCES,
) -> NDArray[np.float32]:
    """Decode five-point landmark offsets, shape (N, 10), against their priors.

    Landmarks are center offsets only: each point is scaled by the center
    variance and the prior size, with no exponential term.
    """
    _check_shapes(predictions, priors, 10)

    points = predictions.reshape(-1, 5, 2)
    centers = priors[:, np.newaxis, :2]
    sizes = priors[:, np.newaxis, 2:]
    decoded = centers + points * variances[0] * sizes
    return decoded.reshape(-1, 10)
