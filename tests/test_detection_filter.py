"""Tests for confidence filtering and pre-NMS truncation."""

from __future__ import annotations

import numpy as np
import pytest

from verifacex.ml.detection_filter import select_candidates


def _conf(scores: list[float]) -> np.ndarray:
    face = np.asarray(scores, dtype=np.float32)
    return np.stack((1 - face, face), axis=1)


class TestSelectCandidates:
    def test_threshold_is_exclusive(self) -> None:
        conf = _conf([0.7, 0.71, 0.2, 0.9])
        assert select_candidates(conf, 0.7, 10).tolist() == [1, 3]

    def test_returns_prior_order_when_under_top_k(self) -> None:
        conf = _conf([0.8, 0.95, 0.75])
        assert select_candidates(conf, 0.5, 10).tolist() == [0, 1, 2]

    def test_top_k_keeps_highest_scores(self) -> None:
        conf = _conf([0.8, 0.95, 0.75, 0.9])
        assert select_candidates(conf, 0.5, 2).tolist() == [1, 3]

    def test_top_k_ties_keep_prior_order(self) -> None:
        conf = _conf([0.9, 0.8, 0.9, 0.9])
        assert select_candidates(conf, 0.5, 2).tolist() == [0, 2]

    def test_nothing_passing_is_empty(self) -> None:
        conf = _conf([0.1, 0.2, 0.3])
        result = select_candidates(conf, 0.7, 10)
        assert result.size == 0

    def test_empty_input(self) -> None:
        assert select_candidates(np.zeros((0, 2), dtype=np.float32), 0.5, 10).size == 0

    def test_bad_shape_raises(self) -> None:
        with pytest.raises(ValueError, match=r"shape \(N, 2\)"):
            select_candidates(np.zeros((4, 3), dtype=np.float32), 0.5, 10)

    def test_non_positive_top_k_raises(self) -> None:
        with pytest.raises(ValueError, match="top_k"):
            select_candidates(_conf([0.9]), 0.5, 0)
