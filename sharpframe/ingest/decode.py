from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from sharpframe.config import DecoderSettings
from sharpframe.errors import DecodeError, DecoderUnavailable, EncodeError
from sharpframe.ingest.probe import probe_video
from sharpframe.models import VideoMetadata

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}


class VideoDecoder(Protocol):
    """Capabilities the analysis and export stages need from a video backend."""

    def probe(self, video_path: str) -> VideoMetadata: ...

    def decode_frame(self, video_path: str, frame_index: int) -> np.ndarray: ...

    def decode_frame_rgb(self, video_path: str, frame_index: int) -> np.ndarray: ...

    def encode_still(self, image: np.ndarray, image_format: str, destination: str | Path) -> None: ...


class FfmpegDecoder:
    """Decode single frames with ffmpeg into numpy buffers and write stills with OpenCV."""

    def __init__(self, settings: DecoderSettings | None = None, *, jpeg_quality: int = 95) -> None:
        self.settings = settings or DecoderSettings()
        self.jpeg_quality = jpeg_quality
        self._metadata: dict[str, VideoMetadata] = {}
        self._lock = threading.Lock()

    def probe(self, video_path: str) -> VideoMetadata:
        key = str(Path(video_path).expanduser().resolve())
        with self._lock:
            cached = self._metadata.get(key)
        if cached is not None:
            return cached

        metadata = probe_video(
            key,
            ffprobe_path=self.settings.ffprobe_path,
            timeout_seconds=self.settings.timeout_seconds,
        )
        with self._lock:
            self._metadata[key] = metadata
        return metadata

    def decode_frame(self, video_path: str, frame_index: int) -> np.ndarray:
        metadata = self.probe(video_path)
        raw = self._read_raw_frame(video_path, frame_index, metadata, pix_fmt="gray")
        return _buffer_to_image(raw, metadata, channels=1, frame_index=frame_index)

    def decode_frame_rgb(self, video_path: str, frame_index: int) -> np.ndarray:
        metadata = self.probe(video_path)
        raw = self._read_raw_frame(video_path, frame_index, metadata, pix_fmt="rgb24")
        return _buffer_to_image(raw, metadata, channels=3, frame_index=frame_index)

    def encode_still(self, image: np.ndarray, image_format: str, destination: str | Path) -> None:
        write_still(image, image_format, destination, jpeg_quality=self.jpeg_quality)

    def _read_raw_frame(
        self,
        video_path: str,
        frame_index: int,
        metadata: VideoMetadata,
        *,
        pix_fmt: str,
    ) -> bytes:
        timestamp_seconds = frame_index / metadata.fps
        command = build_frame_command(
            ffmpeg_path=self.settings.ffmpeg_path,
            video_path=str(Path(video_path).expanduser().resolve()),
            timestamp_seconds=timestamp_seconds,
            pix_fmt=pix_fmt,
            hwaccel=self.settings.hwaccel,
        )

        try:
            completed = subprocess.run(
                command,
                check=True,
                capture_output=True,
                timeout=self.settings.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise DecoderUnavailable(
                f"ffmpeg executable was not found ({self.settings.ffmpeg_path}). Install FFmpeg so it is available on PATH."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise DecodeError(frame_index, timestamp_seconds, f"ffmpeg timed out after {self.settings.timeout_seconds}s.") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
            details = f"ffmpeg stderr: {stderr}" if stderr else ""
            raise DecodeError(frame_index, timestamp_seconds, details) from exc

        return completed.stdout


def build_frame_command(
    *,
    ffmpeg_path: str,
    video_path: str,
    timestamp_seconds: float,
    pix_fmt: str,
    hwaccel: str | None = None,
) -> list[str]:
    command = [ffmpeg_path, "-v", "error", "-nostdin"]
    if hwaccel:
        command.extend(["-hwaccel", hwaccel])
    command.extend(
        [
            "-ss",
            f"{timestamp_seconds:.6f}",
            "-i",
            video_path,
            "-frames:v",
            "1",
            "-f",
            "rawvideo",
            "-pix_fmt",
            pix_fmt,
            "pipe:1",
        ]
    )
    return command


def normalize_image_format(image_format: str) -> str:
    normalized = image_format.lower().strip().lstrip(".")
    if normalized not in IMAGE_FORMATS:
        raise ValueError(f"Unsupported image format '{image_format}'. Expected one of: png, jpg.")
    return IMAGE_FORMATS[normalized]


def write_still(
    image: np.ndarray,
    image_format: str,
    destination: str | Path,
    *,
    jpeg_quality: int = 95,
    cv2_module: Any | None = None,
) -> None:
    """Write an RGB or grayscale buffer to PNG/JPEG."""

    if cv2_module is None:
        import cv2 as cv2_module

    extension = normalize_image_format(image_format)
    path = Path(destination)

    bgr = cv2_module.cvtColor(image, cv2_module.COLOR_RGB2BGR) if image.ndim == 3 else image
    params = [cv2_module.IMWRITE_JPEG_QUALITY, int(jpeg_quality)] if extension == "jpg" else []

    try:
        written = cv2_module.imwrite(str(path), bgr, params)
    except cv2_module.error as exc:
        raise EncodeError(str(path), str(exc)) from exc
    if not written:
        raise EncodeError(str(path), "OpenCV refused to write the image.")


def _buffer_to_image(raw: bytes, metadata: VideoMetadata, *, channels: int, frame_index: int) -> np.ndarray:
    expected = metadata.width * metadata.height * channels
    if len(raw) < expected:
        raise DecodeError(
            frame_index,
            frame_index / metadata.fps,
            f"ffmpeg returned {len(raw)} bytes, expected {expected}.",
        )

    buffer = np.frombuffer(raw[:expected], dtype=np.uint8)
    if channels == 1:
        return buffer.reshape(metadata.height, metadata.width)
    return buffer.reshape(metadata.height, metadata.width, channels)
