from __future__ import annotations

import threading
import time

import pytest

from conftest import FakeDecoder
from sharpframe.errors import (
    AnalysisCancelled,
    AnalysisInProgress,
    DecodeError,
    InvalidStride,
    NoFramesSampled,
    UnreadableVideo,
)
from sharpframe.models import ProgressSnapshot
from sharpframe.session import AnalysisSession, AnalysisState, ProgressChannel, analyze


def test_analyze_completes_with_ordered_scores_and_suggestion() -> None:
    decoder = FakeDecoder([float(value) for value in (5, 40, 10, 80, 20, 60, 30, 70, 15, 50)])
    session = AnalysisSession(decoder)
    channel = session.progress_channel()

    result = session.analyze("clip.mp4", stride=2, parallelism=2, on_progress=channel)

    assert session.state is AnalysisState.COMPLETED
    assert session.result is result
    assert session.error is None
    assert [frame.frame_index for frame in result.frames] == [0, 2, 4, 6, 8]
    assert result.stride == 2
    assert result.video_path == "clip.mp4"
    assert min(result.scores) < result.suggested_threshold < max(result.scores)
    assert result.suggested_frame_count == sum(1 for s in result.scores if s >= result.suggested_threshold)

    snapshots = channel.drain()
    assert [snapshot.completed for snapshot in snapshots] == [1, 2, 3, 4, 5]
    assert snapshots[-1].percentage == 100.0


def test_analyze_respects_time_range() -> None:
    decoder = FakeDecoder([1.0] * 50, fps=10.0)

    result = analyze(decoder, "clip.mp4", time_range=(1.0, 2.0))

    assert [frame.frame_index for frame in result.frames] == list(range(10, 20))
    assert result.time_range == (1.0, 2.0)


def test_analyze_reruns_are_identical() -> None:
    amplitudes = [float(value) for value in range(1, 13)]

    first = analyze(FakeDecoder(amplitudes), "clip.mp4", parallelism=4)
    second = analyze(FakeDecoder(amplitudes), "clip.mp4", parallelism=1)

    assert first == second


def test_analyze_without_frames_fails() -> None:
    session = AnalysisSession(FakeDecoder([]))

    with pytest.raises(NoFramesSampled):
        session.analyze("empty.mp4")

    assert session.state is AnalysisState.FAILED
    assert isinstance(session.error, NoFramesSampled)
    assert session.result is None


def test_analyze_decode_failure_discards_previous_result() -> None:
    decoder = FakeDecoder([1.0, 2.0, 3.0, 4.0])
    session = AnalysisSession(decoder)
    session.analyze("clip.mp4")
    assert session.result is not None

    decoder.failing_frames = {2}
    with pytest.raises(DecodeError):
        session.analyze("clip.mp4")

    assert session.state is AnalysisState.FAILED
    assert session.result is None


def test_analyze_invalid_stride_fails() -> None:
    session = AnalysisSession(FakeDecoder([1.0, 2.0]))

    with pytest.raises(InvalidStride):
        session.analyze("clip.mp4", stride=0)

    assert session.state is AnalysisState.FAILED


def test_second_request_is_rejected_and_cancel_unwinds_first() -> None:
    gate = threading.Event()
    decoder = FakeDecoder([1.0] * 6, gate=gate)
    session = AnalysisSession(decoder)
    outcome: dict[str, BaseException] = {}

    def _worker() -> None:
        try:
            session.analyze("clip.mp4", parallelism=1)
        except BaseException as exc:  # collected for assertions below
            outcome["error"] = exc

    thread = threading.Thread(target=_worker)
    thread.start()
    try:
        assert decoder.decode_started.wait(timeout=5)
        assert session.state is AnalysisState.RUNNING

        with pytest.raises(AnalysisInProgress):
            session.analyze("other.mp4")

        assert session.cancel() is True
        deadline = time.monotonic() + 5
        while session.state is AnalysisState.RUNNING and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        gate.set()
        thread.join(timeout=5)

    assert isinstance(outcome.get("error"), AnalysisCancelled)
    assert session.state is AnalysisState.CANCELLED
    assert session.result is None


def test_cancel_without_running_analysis() -> None:
    assert AnalysisSession(FakeDecoder([1.0])).cancel() is False


def test_session_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError, match="Unsupported scoring backend"):
        AnalysisSession(FakeDecoder([1.0]), backend="gpu")  # type: ignore[arg-type]


def test_progress_channel_keeps_latest_when_full() -> None:
    channel = ProgressChannel(maxsize=2)
    for completed in (1, 2, 3):
        channel(ProgressSnapshot(completed=completed, total=3, percentage=100.0 * completed / 3))

    assert channel.latest().completed == 3
    assert [snapshot.completed for snapshot in channel] == [2, 3]
    assert channel.drain() == []


def test_analyze_rejects_invalid_stride_before_probing() -> None:
    decoder = FakeDecoder([1.0, 2.0])

    def _unreadable(video_path: str):
        raise UnreadableVideo(video_path, "moov atom not found")

    decoder.probe = _unreadable
    session = AnalysisSession(decoder)

    with pytest.raises(InvalidStride):
        session.analyze("broken.mp4", stride=0)

    assert session.state is AnalysisState.FAILED
