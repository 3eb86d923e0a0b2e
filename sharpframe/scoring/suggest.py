from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

DEFAULT_SUGGESTED_PERCENTILE = 75.0


@dataclass(slots=True, frozen=True)
class ThresholdSuggestion:
    threshold: float
    frame_count: int


def suggest_threshold(
    scores: Sequence[float],
    percentile: float = DEFAULT_SUGGESTED_PERCENTILE,
) -> ThresholdSuggestion:
    """Suggest a starting threshold from the score distribution.

    The threshold is the linear-interpolated ``percentile`` of the scores,
    kept strictly inside ``(min, max)`` whenever the scores are not all equal.
    The frame count is the number of scores at or above it.
    """

    if len(scores) == 0:
        return ThresholdSuggestion(threshold=0.0, frame_count=0)

    values = np.asarray(scores, dtype=np.float64)
    lowest = float(values.min())
    highest = float(values.max())
    if lowest == highest:
        return ThresholdSuggestion(threshold=lowest, frame_count=len(values))

    threshold = float(np.percentile(values, percentile))
    if threshold >= highest:
        below = values[values < highest]
        threshold = (highest + float(below.max())) / 2.0
    elif threshold <= lowest:
        above = values[values > lowest]
        threshold = (lowest + float(above.min())) / 2.0

    return ThresholdSuggestion(
        threshold=threshold,
        frame_count=int(np.count_nonzero(values >= threshold)),
    )


def threshold_for_count(scores: Sequence[float], target_count: int) -> float:
    """Return the score of the ``target_count``-th sharpest frame (0-based, clamped).

    Using it as a threshold keeps roughly ``target_count`` frames.
    """

    if len(scores) == 0:
        return 0.0

    ordered = sorted((float(score) for score in scores), reverse=True)
    index = min(max(target_count, 0), len(ordered) - 1)
    return ordered[index]
