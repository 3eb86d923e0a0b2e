from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Iterator

from sharpframe.errors import AnalysisCancelled, AnalysisInProgress, InvalidStride, NoFramesSampled
from sharpframe.features.sampler import sample_frames
from sharpframe.features.sharpness import ProgressCallback, ScoringBackend, score_all
from sharpframe.ingest.decode import VideoDecoder
from sharpframe.models import AnalysisResult, ProgressSnapshot
from sharpframe.scoring.suggest import DEFAULT_SUGGESTED_PERCENTILE, suggest_threshold

logger = logging.getLogger(__name__)


class AnalysisState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProgressChannel:
    """Bounded buffer of progress snapshots; pass it as ``on_progress`` and poll it.

    When full, the oldest snapshot is dropped.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._snapshots: deque[ProgressSnapshot] = deque(maxlen=max(maxsize, 1))
        self._latest: ProgressSnapshot | None = None
        self._lock = threading.Lock()

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            self._snapshots.append(snapshot)
            self._latest = snapshot

    def latest(self) -> ProgressSnapshot | None:
        with self._lock:
            return self._latest

    def drain(self) -> list[ProgressSnapshot]:
        with self._lock:
            drained = list(self._snapshots)
            self._snapshots.clear()
        return drained

    def __iter__(self) -> Iterator[ProgressSnapshot]:
        return iter(self.drain())


class AnalysisSession:
    """Owns at most one live analysis result for a caller.

    Runs one analysis at a time (a second request while running is rejected
    with ``AnalysisInProgress``). Starting an analysis drops the previous
    result; a failed or cancelled run leaves no result behind.
    """

    def __init__(
        self,
        decoder: VideoDecoder,
        *,
        backend: ScoringBackend = "numpy",
        suggested_percentile: float = DEFAULT_SUGGESTED_PERCENTILE,
    ) -> None:
        if backend not in ("numpy", "opencv"):
            raise ValueError(f"Unsupported scoring backend '{backend}'. Expected one of: numpy, opencv.")
        self.decoder = decoder
        self.backend = backend
        self.suggested_percentile = suggested_percentile
        self._state = AnalysisState.IDLE
        self._result: AnalysisResult | None = None
        self._error: BaseException | None = None
        self._cancel_event: threading.Event | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> AnalysisState:
        return self._state

    @property
    def result(self) -> AnalysisResult | None:
        return self._result

    @property
    def error(self) -> BaseException | None:
        return self._error

    @staticmethod
    def progress_channel(maxsize: int = 64) -> ProgressChannel:
        return ProgressChannel(maxsize=maxsize)

    def analyze(
        self,
        video_path: str | Path,
        stride: int = 1,
        parallelism: int = 0,
        time_range: tuple[float, float] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        cancel_event = self._start()
        source = str(video_path)
        logger.info("Analysis started for %s (stride=%d, range=%s)", source, stride, time_range)

        try:
            result = self._run(source, stride, parallelism, time_range, on_progress, cancel_event)
        except (AnalysisCancelled, KeyboardInterrupt):
            self._finish(AnalysisState.CANCELLED)
            logger.info("Analysis cancelled for %s", source)
            raise
        except Exception as exc:
            self._finish(AnalysisState.FAILED, error=exc)
            logger.error("Analysis failed for %s: %s", source, exc)
            raise

        self._finish(AnalysisState.COMPLETED, result=result)
        logger.info(
            "Analysis completed for %s: %d frames, suggested threshold %.3f (%d frames)",
            source,
            len(result.frames),
            result.suggested_threshold,
            result.suggested_frame_count,
        )
        return result

    def cancel(self) -> bool:
        """Request cancellation of the running analysis; returns False when nothing is running."""

        with self._lock:
            if self._state is not AnalysisState.RUNNING or self._cancel_event is None:
                return False
            self._cancel_event.set()
            return True

    def _start(self) -> threading.Event:
        with self._lock:
            if self._state is AnalysisState.RUNNING:
                raise AnalysisInProgress()
            self._state = AnalysisState.RUNNING
            self._result = None
            self._error = None
            self._cancel_event = threading.Event()
            return self._cancel_event

    def _finish(
        self,
        state: AnalysisState,
        *,
        result: AnalysisResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            self._state = state
            self._result = result
            self._error = error
            self._cancel_event = None

    def _run(
        self,
        video_path: str,
        stride: int,
        parallelism: int,
        time_range: tuple[float, float] | None,
        on_progress: ProgressCallback | None,
        cancel_event: threading.Event,
    ) -> AnalysisResult:
        if stride < 1:
            raise InvalidStride(stride)
        metadata = self.decoder.probe(video_path)
        frames = sample_frames(
            total_frames=metadata.total_frames,
            fps=metadata.fps,
            stride=stride,
            time_range=time_range,
            duration_seconds=metadata.duration_seconds,
        )
        if not frames:
            raise NoFramesSampled(video_path)
        if cancel_event.is_set():
            raise AnalysisCancelled()

        scores = score_all(
            frames,
            decode=lambda frame_index: self.decoder.decode_frame(video_path, frame_index),
            parallelism=parallelism,
            on_progress=on_progress,
            cancel_event=cancel_event,
            backend=self.backend,
        )
        suggestion = suggest_threshold([score.sharpness for score in scores], percentile=self.suggested_percentile)

        return AnalysisResult(
            metadata=metadata,
            frames=tuple(scores),
            suggested_threshold=suggestion.threshold,
            suggested_frame_count=suggestion.frame_count,
            video_path=video_path,
            stride=stride,
            time_range=time_range,
        )


def analyze(
    decoder: VideoDecoder,
    video_path: str | Path,
    stride: int = 1,
    parallelism: int = 0,
    time_range: tuple[float, float] | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    backend: ScoringBackend = "numpy",
    suggested_percentile: float = DEFAULT_SUGGESTED_PERCENTILE,
) -> AnalysisResult:
    """Run one analysis on a throwaway session."""

    session = AnalysisSession(decoder, backend=backend, suggested_percentile=suggested_percentile)
    return session.analyze(
        video_path,
        stride=stride,
        parallelism=parallelism,
        time_range=time_range,
        on_progress=on_progress,
    )
