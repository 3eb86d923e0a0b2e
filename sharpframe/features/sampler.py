from __future__ import annotations

import math

from sharpframe.errors import InvalidRange, InvalidStride
from sharpframe.models import SampledFrame


def sample_frames(
    total_frames: int,
    fps: float,
    stride: int = 1,
    time_range: tuple[float, float] | None = None,
    duration_seconds: float | None = None,
) -> list[SampledFrame]:
    """Return the frames to score: every ``stride``-th frame inside the optional time range.

    The range is clamped to ``[0, duration]`` first; an empty range after
    clamping is an error. A video without frames yields an empty list.
    """

    if stride < 1:
        raise InvalidStride(stride)
    if total_frames <= 0:
        return []

    rate = _resolve_rate(total_frames, fps, duration_seconds)
    if rate is None:
        return _sample_without_rate(total_frames, stride, time_range)

    duration = duration_seconds if duration_seconds and duration_seconds > 0 else total_frames / rate
    start_frame, end_frame = 0, total_frames
    if time_range is not None:
        start_seconds, end_seconds = _clamp_range(time_range, upper=duration)
        start_frame = math.floor(start_seconds * rate)
        end_frame = min(total_frames, math.ceil(end_seconds * rate))

    return [
        SampledFrame(frame_index=index, timestamp_seconds=index / rate)
        for index in range(start_frame, end_frame, stride)
    ]


def _resolve_rate(total_frames: int, fps: float, duration_seconds: float | None) -> float | None:
    if fps > 0:
        return fps
    if duration_seconds and duration_seconds > 0:
        return total_frames / duration_seconds
    return None


def _sample_without_rate(
    total_frames: int,
    stride: int,
    time_range: tuple[float, float] | None,
) -> list[SampledFrame]:
    # no usable frame rate: spread timestamps linearly over the requested range
    if time_range is None:
        start_seconds, end_seconds = 0.0, 0.0
    else:
        start_seconds, end_seconds = _clamp_range(time_range, upper=None)

    span = end_seconds - start_seconds
    return [
        SampledFrame(
            frame_index=index,
            timestamp_seconds=start_seconds + (index / total_frames) * span,
        )
        for index in range(0, total_frames, stride)
    ]


def _clamp_range(time_range: tuple[float, float], upper: float | None) -> tuple[float, float]:
    start_seconds, end_seconds = (max(float(value), 0.0) for value in time_range)
    if upper is not None:
        start_seconds = min(start_seconds, upper)
        end_seconds = min(end_seconds, upper)
    elif not math.isfinite(end_seconds):
        raise InvalidRange(start_seconds, end_seconds)

    if start_seconds >= end_seconds:
        raise InvalidRange(start_seconds, end_seconds)
    return start_seconds, end_seconds
