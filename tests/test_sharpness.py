from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from conftest import stripes
from sharpframe.errors import AnalysisCancelled, DecodeError
from sharpframe.features.sharpness import laplacian_variance, resolve_parallelism, score_all
from sharpframe.models import SampledFrame


def _frames(count: int) -> list[SampledFrame]:
    return [SampledFrame(frame_index=index, timestamp_seconds=index / 10.0) for index in range(count)]


def test_laplacian_variance_flat_image_is_zero() -> None:
    assert laplacian_variance(np.full((16, 16), 128, dtype=np.uint8)) == 0.0


def test_laplacian_variance_tiny_image_is_zero() -> None:
    assert laplacian_variance(np.array([[0, 255], [255, 0]], dtype=np.uint8)) == 0.0


def test_laplacian_variance_ignores_border_pixels() -> None:
    image = np.zeros((3, 4), dtype=np.float64)
    image[1, 1] = 1.0

    # interior responses are -4 and 1
    assert laplacian_variance(image) == pytest.approx(6.25)


def test_laplacian_variance_sharper_image_scores_higher() -> None:
    sharp = stripes(200.0, size=32)
    blurred = sharp.copy()
    blurred[:, 1:-1] = (sharp[:, :-2] + sharp[:, 1:-1] + sharp[:, 2:]) / 3.0

    assert laplacian_variance(sharp) > laplacian_variance(blurred)


def test_laplacian_variance_color_input_uses_luma() -> None:
    gray = stripes(90.0, size=12)
    color = np.stack([gray, gray, gray], axis=-1)

    assert laplacian_variance(color) == pytest.approx(laplacian_variance(gray))


def test_laplacian_variance_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError, match="Unsupported scoring backend"):
        laplacian_variance(stripes(1.0), backend="sobel")  # type: ignore[arg-type]


def test_laplacian_variance_opencv_backend_matches_numpy() -> None:
    pytest.importorskip("cv2")
    image = np.random.default_rng(7).integers(0, 256, size=(48, 64), dtype=np.uint8)

    expected = laplacian_variance(image, backend="numpy")
    assert laplacian_variance(image, backend="opencv") == pytest.approx(expected, rel=1e-9)


def test_score_all_returns_scores_sorted_by_frame_index() -> None:
    amplitudes = [10.0, 40.0, 20.0, 30.0, 5.0, 50.0]
    # earlier frames finish last so completion order differs from frame order
    delays = {0: 0.05, 1: 0.03, 2: 0.01}

    def decode(frame_index: int) -> np.ndarray:
        if frame_index in delays:
            time.sleep(delays[frame_index])
        return stripes(amplitudes[frame_index])

    scores = score_all(_frames(len(amplitudes)), decode, parallelism=4)

    assert [score.frame_index for score in scores] == list(range(len(amplitudes)))
    assert [score.sharpness for score in scores] == [laplacian_variance(stripes(a)) for a in amplitudes]


def test_score_all_reports_monotonic_progress_to_completion() -> None:
    snapshots = []
    score_all(_frames(8), lambda index: stripes(float(index)), parallelism=3, on_progress=snapshots.append)

    assert [snapshot.completed for snapshot in snapshots] == list(range(1, 9))
    assert all(snapshot.total == 8 for snapshot in snapshots)
    percentages = [snapshot.percentage for snapshot in snapshots]
    assert percentages == sorted(percentages)
    assert percentages[-1] == 100.0


def test_score_all_fails_fast_on_decode_error() -> None:
    snapshots = []

    def decode(frame_index: int) -> np.ndarray:
        if frame_index == 3:
            raise DecodeError(frame_index, details="corrupt packet")
        return stripes(1.0)

    with pytest.raises(DecodeError) as exc_info:
        score_all(_frames(20), decode, parallelism=1, on_progress=snapshots.append)

    assert exc_info.value.frame_index == 3
    assert len(snapshots) < 20


def test_score_all_wraps_unexpected_decode_failures() -> None:
    def decode(frame_index: int) -> np.ndarray:
        raise OSError("pipe closed")

    with pytest.raises(DecodeError, match="pipe closed") as exc_info:
        score_all(_frames(1), decode)

    assert exc_info.value.frame_index == 0


def test_score_all_cancelled_before_start() -> None:
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(AnalysisCancelled):
        score_all(_frames(5), lambda index: stripes(1.0), cancel_event=cancel_event)


def test_score_all_stops_reporting_progress_after_cancel() -> None:
    cancel_event = threading.Event()
    snapshots = []

    def on_progress(snapshot) -> None:
        snapshots.append(snapshot)
        cancel_event.set()

    with pytest.raises(AnalysisCancelled):
        score_all(
            _frames(10),
            lambda index: stripes(1.0),
            parallelism=1,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

    assert len(snapshots) == 1


def test_score_all_empty_input() -> None:
    assert score_all([], lambda index: stripes(1.0)) == []


def test_score_all_is_deterministic() -> None:
    rng = np.random.default_rng(3)
    images = [rng.integers(0, 256, size=(20, 20), dtype=np.uint8) for _ in range(6)]

    first = score_all(_frames(6), lambda index: images[index], parallelism=3)
    second = score_all(_frames(6), lambda index: images[index], parallelism=2)

    assert first == second


def test_resolve_parallelism_bounds() -> None:
    assert resolve_parallelism(0, 1) == 1
    assert resolve_parallelism(64, 2) <= 2
    assert resolve_parallelism(-1, 1000) >= 1
