"""Result types shared across the face pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class NotInitializedError(RuntimeError):
    """Raised when a component is used before initialize() or after destroy()."""


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel space of the source image."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def corners(self) -> NDArray[np.float64]:
        """Return the four corners as a (4, 2) array: TL, TR, BL, BR."""
        return np.array(
            [
                [self.x, self.y],
                [self.x2, self.y],
                [self.x, self.y2],
                [self.x2, self.y2],
            ],
            dtype=np.float64,
        )


@dataclass(frozen=True)
class DetectionBatch:
    """Decoded detections in normalized [0, 1] image coordinates.

    ``boxes`` is (N, 4) as xmin, ymin, xmax, ymax; ``scores`` is (N,);
    ``landmarks`` is (N, 10) as five interleaved x, y pairs.
    """

    boxes: NDArray[np.float32]
    scores: NDArray[np.float32]
    landmarks: NDArray[np.float32]

    @classmethod
    def empty(cls) -> DetectionBatch:
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            landmarks=np.zeros((0, 10), dtype=np.float32),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def take(self, indices: NDArray[np.intp] | list[int]) -> DetectionBatch:
        idx = np.asarray(indices, dtype=np.intp)
        return DetectionBatch(
            boxes=self.boxes[idx],
            scores=self.scores[idx],
            landmarks=self.landmarks[idx],
        )


@dataclass(frozen=True)
class Detection:
    """The primary face found in an image.

    Landmarks are five (x, y) points: left eye, right eye, nose,
    left mouth corner, right mouth corner.
    """

    box: BoundingBox
    confidence: float
    landmarks: tuple[tuple[float, float], ...]
    multiple_faces: bool

    def with_geometry(self, box: BoundingBox, landmarks: tuple[tuple[float, float], ...]) -> Detection:
        return replace(self, box=box, landmarks=landmarks)


@dataclass(frozen=True)
class RecognitionResult:
    """Face embedding produced by the recognizer (empty when no face was found)."""

    embedding: NDArray[np.float32] = field(default_factory=lambda: np.zeros((0,), dtype=np.float32))


@dataclass(frozen=True)
class VerificationResult:
    similarity: float
    verified: bool
    threshold: float


@dataclass(frozen=True)
class SpoofResult:
    """Fused liveness decision. ``score`` is the confidence of the winning label."""

    real: bool
    score: float
    realness: float
    fakeness: float
