"""Cosine-similarity verification of face embeddings."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

from verifacex.ml.types import VerificationResult

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

DEFAULT_VERIFICATION_THRESHOLD: float = 0.7


class CosineVerifier:
    """Decides whether two embeddings belong to the same person."""

    def __init__(
        self,
        threshold: float = DEFAULT_VERIFICATION_THRESHOLD,
        logger: logging.Logger | None = None,
    ) -> None:
        self._threshold = threshold
        self._logger = logger or logging.getLogger(__name__)

    @property
    def threshold(self) -> float:
        return self._threshold

    def compare(
        self,
        embedding1: ArrayLike,
        embedding2: ArrayLike,
        threshold: float | None = None,
    ) -> VerificationResult:
        """Compare two embeddings.

        Args:
            embedding1: First embedding vector.
            embedding2: Second embedding vector, same length as the first.
            threshold: Overrides the configured threshold for this call.

        Returns:
            The cosine similarity and whether it reaches the threshold
            (inclusive). A zero-norm embedding yields similarity 0.

        Raises:
            ValueError: If the embeddings differ in length.
        """
        effective_threshold = self._threshold if threshold is None else threshold

        a = np.asarray(embedding1, dtype=np.float64).ravel()
        b = np.asarray(embedding2, dtype=np.float64).ravel()
        if a.shape != b.shape:
            raise ValueError(f"Embedding length mismatch: {a.shape[0]} vs {b.shape[0]}")

        dot = float(np.dot(a, b))
        norm_a = float(np.dot(a, a))
        norm_b = float(np.dot(b, b))

        if norm_a == 0 or norm_b == 0:
            self._logger.debug("Zero-norm embedding, returning zero similarity")
            return VerificationResult(similarity=0.0, verified=False, threshold=effective_threshold)

        similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
        verified = similarity >= effective_threshold

        self._logger.debug(
            "Cosine similarity %.6f (threshold %.3f, verified=%s)",
            similarity,
            effective_threshold,
            verified,
        )
        return VerificationResult(similarity=similarity, verified=verified, threshold=effective_threshold)
