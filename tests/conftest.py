from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Sequence

import numpy as np

from sharpframe.errors import DecodeError, EncodeError
from sharpframe.models import VideoMetadata


def stripes(amplitude: float, size: int = 8) -> np.ndarray:
    """Vertical stripes whose Laplacian variance grows with ``amplitude``."""

    image = np.zeros((size, size), dtype=np.float64)
    image[:, ::2] = amplitude
    return image


class FakeDecoder:
    """In-memory stand-in for the ffmpeg decoder, driven by per-frame amplitudes."""

    def __init__(
        self,
        amplitudes: Sequence[float],
        *,
        fps: float = 10.0,
        failing_frames: set[int] | None = None,
        failing_rgb_frames: set[int] | None = None,
        failing_encode_frames: set[int] | None = None,
        delay_for: dict[int, float] | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.amplitudes = list(amplitudes)
        self.metadata = VideoMetadata(
            duration_seconds=len(self.amplitudes) / fps,
            fps=fps,
            width=8,
            height=8,
            total_frames=len(self.amplitudes),
        )
        self.failing_frames = failing_frames or set()
        self.failing_rgb_frames = failing_rgb_frames or set()
        self.failing_encode_frames = failing_encode_frames or set()
        self.delay_for = delay_for or {}
        self.gate = gate
        self.decode_started = threading.Event()
        self.decoded: list[int] = []
        self.written: list[Path] = []
        self._lock = threading.Lock()

    def probe(self, video_path: str) -> VideoMetadata:
        return self.metadata

    def decode_frame(self, video_path: str, frame_index: int) -> np.ndarray:
        self.decode_started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if frame_index in self.delay_for:
            time.sleep(self.delay_for[frame_index])
        if frame_index in self.failing_frames:
            raise DecodeError(frame_index, frame_index / self.metadata.fps, "synthetic failure")
        with self._lock:
            self.decoded.append(frame_index)
        return stripes(self.amplitudes[frame_index])

    def decode_frame_rgb(self, video_path: str, frame_index: int) -> np.ndarray:
        if frame_index in self.failing_rgb_frames:
            raise DecodeError(frame_index, frame_index / self.metadata.fps, "synthetic failure")
        gray = stripes(self.amplitudes[frame_index]).astype(np.uint8)
        return np.stack([gray, gray, gray], axis=-1)

    def encode_still(self, image: np.ndarray, image_format: str, destination: str | Path) -> None:
        path = Path(destination)
        if any(f"{index:06d}" in path.name for index in self.failing_encode_frames):
            raise EncodeError(str(path), "synthetic failure")
        path.write_bytes(image.tobytes())
        self.written.append(path)
