from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Literal, Sequence

import numpy as np

from sharpframe.errors import AnalysisCancelled, DecodeError, DecoderUnavailable
from sharpframe.models import FrameScore, ProgressSnapshot, SampledFrame

logger = logging.getLogger(__name__)

ScoringBackend = Literal["numpy", "opencv"]
ProgressCallback = Callable[[ProgressSnapshot], None]

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)
CANCEL_POLL_SECONDS = 0.1


def laplacian_variance(
    image: np.ndarray,
    *,
    backend: ScoringBackend = "numpy",
    cv2_module: Any | None = None,
) -> float:
    """Variance of the 4-neighbour Laplacian over interior pixels.

    Border pixels are ignored. Images smaller than 3x3 have no interior and
    score 0.0. The ``opencv`` backend applies the same kernel through
    ``cv2.Laplacian`` and yields numerically compatible values.
    """

    gray = _as_gray(image)
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0

    if backend == "opencv":
        response = _laplacian_opencv(gray, cv2_module=cv2_module)
    elif backend == "numpy":
        response = _laplacian_numpy(gray)
    else:
        raise ValueError(f"Unsupported scoring backend '{backend}'. Expected one of: numpy, opencv.")

    return float(response.var())


def score_all(
    frames: Sequence[SampledFrame],
    decode: Callable[[int], np.ndarray],
    parallelism: int = 0,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    backend: ScoringBackend = "numpy",
) -> list[FrameScore]:
    """Decode and score every sampled frame on a worker pool.

    Fails fast: the first decode failure cancels outstanding work and raises
    ``DecodeError``. Setting ``cancel_event`` abandons the run with
    ``AnalysisCancelled``. Results come back sorted by frame index.
    """

    total = len(frames)
    if total == 0:
        return []

    cancel_event = cancel_event or threading.Event()
    stop_event = threading.Event()
    workers = resolve_parallelism(parallelism, total)
    logger.info("Scoring %d frames with %d workers (%s backend)", total, workers, backend)

    def _score_one(frame: SampledFrame) -> FrameScore | None:
        if cancel_event.is_set() or stop_event.is_set():
            return None

        try:
            image = decode(frame.frame_index)
        except (DecodeError, DecoderUnavailable):
            raise
        except Exception as exc:
            raise DecodeError(frame.frame_index, frame.timestamp_seconds, str(exc)) from exc

        return FrameScore(
            frame_index=frame.frame_index,
            timestamp_seconds=frame.timestamp_seconds,
            sharpness=laplacian_variance(image, backend=backend),
        )

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sharpness")
    results: list[FrameScore] = []
    try:
        pending: set[Future[FrameScore | None]] = {executor.submit(_score_one, frame) for frame in frames}
        while pending:
            done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            if cancel_event.is_set():
                raise AnalysisCancelled()

            for future in done:
                if cancel_event.is_set():
                    raise AnalysisCancelled()
                score = future.result()
                if score is None:
                    raise AnalysisCancelled()

                results.append(score)
                if on_progress is not None:
                    completed = len(results)
                    on_progress(
                        ProgressSnapshot(
                            completed=completed,
                            total=total,
                            percentage=100.0 * completed / total,
                        )
                    )
    except BaseException as exc:
        stop_event.set()
        # in-flight decodes finish on their own; only queued work is dropped
        executor.shutdown(wait=False, cancel_futures=True)
        if isinstance(exc, AnalysisCancelled):
            logger.info("Scoring cancelled after %d/%d frames", len(results), total)
        else:
            logger.debug("Scoring aborted after %d/%d frames: %s", len(results), total, exc)
        raise

    executor.shutdown(wait=True)
    results.sort(key=lambda score: score.frame_index)
    return results


def resolve_parallelism(parallelism: int, frame_count: int) -> int:
    available = os.cpu_count() or 1
    requested = available if parallelism <= 0 else min(parallelism, available)
    return max(1, min(requested, frame_count))


def _as_gray(image: np.ndarray) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim == 3:
        if array.shape[2] == 1:
            return array[:, :, 0].astype(np.float64)
        return array[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS
    if array.ndim != 2:
        raise ValueError(f"Expected a 2D grayscale or 3D color image, got shape {array.shape}.")
    return array.astype(np.float64)


def _laplacian_numpy(gray: np.ndarray) -> np.ndarray:
    center = gray[1:-1, 1:-1]
    return (
        gray[:-2, 1:-1]
        + gray[2:, 1:-1]
        + gray[1:-1, :-2]
        + gray[1:-1, 2:]
        - 4.0 * center
    )


def _laplacian_opencv(gray: np.ndarray, cv2_module: Any | None = None) -> np.ndarray:
    if cv2_module is None:
        import cv2 as cv2_module

    # ksize=1 is the [[0, 1, 0], [1, -4, 1], [0, 1, 0]] kernel
    response = cv2_module.Laplacian(gray, cv2_module.CV_64F, ksize=1)
    return response[1:-1, 1:-1]
