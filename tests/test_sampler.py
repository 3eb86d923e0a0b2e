from __future__ import annotations

import pytest

from sharpframe.errors import InvalidRange, InvalidStride
from sharpframe.features.sampler import sample_frames


def test_sample_frames_every_frame_with_timestamps() -> None:
    frames = sample_frames(total_frames=5, fps=10.0)

    assert [frame.frame_index for frame in frames] == [0, 1, 2, 3, 4]
    assert [frame.timestamp_seconds for frame in frames] == pytest.approx([0.0, 0.1, 0.2, 0.3, 0.4])


def test_sample_frames_applies_stride() -> None:
    frames = sample_frames(total_frames=10, fps=25.0, stride=3)

    assert [frame.frame_index for frame in frames] == [0, 3, 6, 9]


def test_sample_frames_restricts_to_time_range() -> None:
    frames = sample_frames(total_frames=100, fps=10.0, time_range=(2.0, 4.0), duration_seconds=10.0)

    assert frames[0].frame_index == 20
    assert frames[-1].frame_index == 39
    assert len(frames) == 20


def test_sample_frames_clamps_range_to_duration() -> None:
    frames = sample_frames(total_frames=100, fps=10.0, time_range=(-5.0, 1000.0), duration_seconds=10.0)

    assert len(frames) == 100
    assert frames[0].frame_index == 0
    assert frames[-1].frame_index == 99


@pytest.mark.parametrize("time_range", [(3.0, 3.0), (5.0, 2.0), (12.0, 20.0)])
def test_sample_frames_rejects_empty_range(time_range: tuple[float, float]) -> None:
    with pytest.raises(InvalidRange):
        sample_frames(total_frames=100, fps=10.0, time_range=time_range, duration_seconds=10.0)


def test_sample_frames_rejects_zero_stride() -> None:
    with pytest.raises(InvalidStride, match="stride must be >= 1"):
        sample_frames(total_frames=10, fps=10.0, stride=0)


def test_sample_frames_without_frames_is_empty() -> None:
    assert sample_frames(total_frames=0, fps=30.0) == []


def test_sample_frames_derives_rate_from_duration_when_fps_missing() -> None:
    frames = sample_frames(total_frames=50, fps=0.0, duration_seconds=5.0, stride=10)

    assert [frame.frame_index for frame in frames] == [0, 10, 20, 30, 40]
    assert [frame.timestamp_seconds for frame in frames] == pytest.approx([0.0, 1.0, 2.0, 3.0, 4.0])


def test_sample_frames_interpolates_timestamps_without_any_rate() -> None:
    frames = sample_frames(total_frames=4, fps=0.0, time_range=(2.0, 4.0))

    assert [frame.frame_index for frame in frames] == [0, 1, 2, 3]
    assert [frame.timestamp_seconds for frame in frames] == pytest.approx([2.0, 2.5, 3.0, 3.5])


@pytest.mark.parametrize("total_frames,stride", [(1, 1), (7, 2), (100, 7), (301, 30)])
def test_sample_frames_indices_strictly_increasing_and_in_bounds(total_frames: int, stride: int) -> None:
    frames = sample_frames(total_frames=total_frames, fps=29.97, stride=stride)
    indices = [frame.frame_index for frame in frames]

    assert indices == sorted(set(indices))
    assert all(0 <= index < total_frames for index in indices)
    assert len(indices) == -(-total_frames // stride)


def test_sample_frames_without_rate_rejects_open_ended_range() -> None:
    with pytest.raises(InvalidRange):
        sample_frames(total_frames=4, fps=0.0, time_range=(1.0, float("inf")))
