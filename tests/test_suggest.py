from __future__ import annotations

import numpy as np
import pytest

from sharpframe.scoring.suggest import suggest_threshold, threshold_for_count


def test_suggest_threshold_uses_upper_quartile() -> None:
    suggestion = suggest_threshold([10.0, 20.0, 30.0, 40.0, 50.0])

    assert suggestion.threshold == pytest.approx(40.0)
    assert suggestion.frame_count == 2


def test_suggest_threshold_empty_scores() -> None:
    suggestion = suggest_threshold([])

    assert suggestion.threshold == 0.0
    assert suggestion.frame_count == 0


def test_suggest_threshold_all_equal_keeps_everything() -> None:
    suggestion = suggest_threshold([7.5, 7.5, 7.5])

    assert suggestion.threshold == 7.5
    assert suggestion.frame_count == 3


def test_suggest_threshold_moves_off_the_maximum() -> None:
    suggestion = suggest_threshold([1.0, 5.0, 5.0, 5.0])

    assert suggestion.threshold == pytest.approx(3.0)
    assert suggestion.frame_count == 3


def test_suggest_threshold_moves_off_the_minimum() -> None:
    suggestion = suggest_threshold([1.0, 1.0, 1.0, 1.0, 5.0])

    assert suggestion.threshold == pytest.approx(3.0)
    assert suggestion.frame_count == 1


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_suggest_threshold_strictly_inside_range(seed: int) -> None:
    scores = np.random.default_rng(seed).exponential(scale=50.0, size=37).tolist()
    suggestion = suggest_threshold(scores)

    assert min(scores) < suggestion.threshold < max(scores)
    assert suggestion.frame_count == sum(1 for score in scores if score >= suggestion.threshold)


def test_threshold_for_count_returns_nth_sharpest_score() -> None:
    scores = [10.0, 50.0, 30.0, 20.0, 40.0]

    assert threshold_for_count(scores, 0) == 50.0
    assert threshold_for_count(scores, 2) == 30.0
    assert threshold_for_count(scores, 99) == 10.0
    assert threshold_for_count([], 3) == 0.0
