from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Iterable, Sequence

from sharpframe.models import AnalysisResult, FrameScore

Selection = tuple[int, ...]


@dataclass(slots=True, frozen=True)
class ThresholdPolicy:
    """Keep frames at or above ``threshold``, spaced and capped."""

    threshold: float
    min_distance: int = 1
    max_frames: int | None = None

    def __post_init__(self) -> None:
        if self.min_distance < 1:
            raise ValueError(f"min_distance must be >= 1, got {self.min_distance}.")
        if self.max_frames is not None and self.max_frames < 0:
            raise ValueError(f"max_frames must be >= 0, got {self.max_frames}.")


@dataclass(slots=True, frozen=True)
class BatchPolicy:
    """Best frame of each window of ``batch_size``, skipping ``batch_buffer`` frames between windows."""

    batch_size: int
    batch_buffer: int = 0

    def __post_init__(self) -> None:
        if self.batch_size < 2:
            raise ValueError(f"batch_size must be >= 2, got {self.batch_size}.")
        if self.batch_buffer < 0:
            raise ValueError(f"batch_buffer must be >= 0, got {self.batch_buffer}.")


@dataclass(slots=True, frozen=True)
class BestNPolicy:
    n: int

    def __post_init__(self) -> None:
        if self.n < 1:
            raise ValueError(f"n must be >= 1, got {self.n}.")


@dataclass(slots=True, frozen=True)
class TopPercentagePolicy:
    percentage: float

    def __post_init__(self) -> None:
        if not 1 <= self.percentage <= 100:
            raise ValueError(f"percentage must be between 1 and 100, got {self.percentage}.")


@dataclass(slots=True, frozen=True)
class ManualPolicy:
    indices: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "indices", tuple(int(index) for index in self.indices))


SelectionPolicy = ThresholdPolicy | BatchPolicy | BestNPolicy | TopPercentagePolicy | ManualPolicy

SELECTION_MODES = ("threshold", "batch", "best_n", "top_percentage", "manual")


def select(source: AnalysisResult | Sequence[FrameScore] | Sequence[float], policy: SelectionPolicy) -> Selection:
    """Map analysis scores to strictly increasing indices into the scored frame sequence."""

    scores = _scores_of(source)
    if not scores:
        return ()

    if isinstance(policy, ThresholdPolicy):
        return _select_threshold(scores, policy)
    if isinstance(policy, BatchPolicy):
        return _select_batches(scores, policy)
    if isinstance(policy, BestNPolicy):
        return _select_best_n(scores, policy.n)
    if isinstance(policy, TopPercentagePolicy):
        return _select_best_n(scores, percentage_count(len(scores), policy.percentage))
    if isinstance(policy, ManualPolicy):
        return _select_manual(scores, policy.indices)

    raise TypeError(f"Unsupported selection policy: {type(policy).__name__}")


def percentage_count(total: int, percentage: float) -> int:
    """``ceil(total * percentage / 100)`` without float rounding surprises."""

    return math.ceil(Fraction(total) * Fraction(str(percentage)) / 100)


def policy_from_options(mode: str, **options: Any) -> SelectionPolicy:
    """Build a policy from a mode name and loosely typed options (CLI and config input)."""

    normalized = mode.lower().strip().replace("-", "_")
    if normalized == "threshold":
        if options.get("threshold") is None:
            raise ValueError("Threshold mode requires a threshold value.")
        return ThresholdPolicy(
            threshold=float(options["threshold"]),
            min_distance=int(options.get("min_distance") or 1),
            max_frames=int(options["max_frames"]) if options.get("max_frames") is not None else None,
        )
    if normalized == "batch":
        return BatchPolicy(
            batch_size=int(options["batch_size"]),
            batch_buffer=int(options.get("batch_buffer") or 0),
        )
    if normalized == "best_n":
        return BestNPolicy(n=int(options["best_n"]))
    if normalized == "top_percentage":
        return TopPercentagePolicy(percentage=float(options["top_percentage"]))
    if normalized == "manual":
        return ManualPolicy(indices=tuple(options.get("indices") or ()))

    msg = f"Unsupported selection mode '{mode}'. Expected one of: {', '.join(SELECTION_MODES)}."
    raise ValueError(msg)


def frame_numbers_for(result: AnalysisResult, selection: Iterable[int]) -> list[int]:
    return [result.frames[index].frame_index for index in selection]


def selection_summary(result: AnalysisResult, selection: Sequence[int]) -> dict[str, Any]:
    """Counts and score stats for reporting a selection before export."""

    picked = [result.frames[index] for index in selection]
    sharpness = [frame.sharpness for frame in picked]
    return {
        "selected_count": len(picked),
        "analyzed_count": len(result.frames),
        "indices": list(selection),
        "frame_numbers": [frame.frame_index for frame in picked],
        "mean_sharpness": round(sum(sharpness) / len(sharpness), 4) if sharpness else 0.0,
        "min_sharpness": round(min(sharpness), 4) if sharpness else 0.0,
    }


def _scores_of(source: AnalysisResult | Sequence[FrameScore] | Sequence[float]) -> list[float]:
    items = source.frames if isinstance(source, AnalysisResult) else source
    return [item.sharpness if isinstance(item, FrameScore) else float(item) for item in items]


def _select_threshold(scores: list[float], policy: ThresholdPolicy) -> Selection:
    candidates = [index for index, score in enumerate(scores) if score >= policy.threshold]

    if policy.min_distance > 1:
        spaced: list[int] = []
        for index in candidates:
            if spaced and index - spaced[-1] < policy.min_distance:
                continue
            spaced.append(index)
        candidates = spaced

    if policy.max_frames is not None and len(candidates) > policy.max_frames:
        ranked = sorted(candidates, key=lambda index: (-scores[index], index))
        candidates = sorted(ranked[: policy.max_frames])

    return tuple(candidates)


def _select_batches(scores: list[float], policy: BatchPolicy) -> Selection:
    step = policy.batch_size + policy.batch_buffer
    picks: list[int] = []
    for start in range(0, len(scores), step):
        window = range(start, min(start + policy.batch_size, len(scores)))
        # max() keeps the first of equal scores, so ties go to the earliest index
        picks.append(max(window, key=lambda index: scores[index]))
    return tuple(picks)


def _select_best_n(scores: list[float], n: int) -> Selection:
    ranked = sorted(range(len(scores)), key=lambda index: (-scores[index], index))
    return tuple(sorted(ranked[: max(n, 0)]))


def _select_manual(scores: list[float], indices: Iterable[int]) -> Selection:
    return tuple(sorted({index for index in indices if 0 <= index < len(scores)}))
