from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from sharpframe.errors import DecoderUnavailable, UnreadableVideo
from sharpframe.models import VideoMetadata

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0


def probe_video(video_path: str | Path, ffprobe_path: str = "ffprobe", timeout_seconds: int = 60) -> VideoMetadata:
    """Probe the first video stream via ffprobe and normalize it to VideoMetadata."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise UnreadableVideo(str(source_path), "File does not exist.")

    payload = _run_ffprobe(source_path, ffprobe_path=ffprobe_path, timeout_seconds=timeout_seconds)
    metadata = _normalize_probe_payload(source_path, payload)
    logger.debug(
        "Probed %s: %dx%d @ %.3f fps, %d frames, %.3fs",
        source_path,
        metadata.width,
        metadata.height,
        metadata.fps,
        metadata.total_frames,
        metadata.duration_seconds,
    )
    return metadata


def _run_ffprobe(video_path: Path, ffprobe_path: str = "ffprobe", timeout_seconds: int = 60) -> dict[str, Any]:
    command = [
        ffprobe_path,
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,r_frame_rate,avg_frame_rate,duration,nb_frames:format=duration",
        "-print_format",
        "json",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError as exc:
        raise DecoderUnavailable(
            f"ffprobe executable was not found ({ffprobe_path}). Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise UnreadableVideo(str(video_path), f"ffprobe timed out after {timeout_seconds}s.") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if "error while loading shared libraries" in stderr:
            raise DecoderUnavailable(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f"ffprobe stderr: {stderr}" if stderr else ""
        raise UnreadableVideo(str(video_path), details) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise UnreadableVideo(str(video_path), "ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> VideoMetadata:
    streams = payload.get("streams") or []
    if not streams:
        raise UnreadableVideo(str(video_path), "No video stream found.")

    stream = streams[0]
    format_entry = payload.get("format", {})

    width = _to_int(stream.get("width"))
    height = _to_int(stream.get("height"))
    if not width or not height:
        raise UnreadableVideo(str(video_path), "Video stream reports no frame size.")

    fps = _parse_frame_rate(stream.get("r_frame_rate")) or _parse_frame_rate(stream.get("avg_frame_rate")) or DEFAULT_FPS
    duration = _to_float(stream.get("duration"))
    if duration is None:
        duration = _to_float(format_entry.get("duration")) or 0.0

    total_frames = _to_int(stream.get("nb_frames"))
    if total_frames is None:
        total_frames = int(duration * fps)

    return VideoMetadata(
        duration_seconds=max(duration, 0.0),
        fps=fps,
        width=width,
        height=height,
        total_frames=max(total_frames, 0),
    )


def _parse_frame_rate(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None

    text = str(raw_value)
    if "/" in text:
        numerator, _, denominator = text.partition("/")
        den = float(denominator)
        if den == 0:
            return None
        rate = float(numerator) / den
    else:
        rate = float(text)
    return rate if rate > 0 else None


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
