from __future__ import annotations


class SharpFrameError(Exception):
    """Base class for analysis, decoding and export failures."""


class InvalidStride(SharpFrameError, ValueError):
    def __init__(self, stride: int) -> None:
        super().__init__(f"Sample stride must be >= 1, got {stride}.")
        self.stride = stride


class InvalidRange(SharpFrameError, ValueError):
    def __init__(self, start_seconds: float, end_seconds: float) -> None:
        super().__init__(
            f"Invalid time range after clamping to the video duration: "
            f"start={start_seconds:.3f}s end={end_seconds:.3f}s."
        )
        self.start_seconds = start_seconds
        self.end_seconds = end_seconds


class NoFramesSampled(SharpFrameError, ValueError):
    def __init__(self, video_path: str) -> None:
        super().__init__(f"No frames could be sampled from video: {video_path}")
        self.video_path = video_path


class DecoderUnavailable(SharpFrameError, RuntimeError):
    """The ffmpeg/ffprobe executable could not be started."""


class UnreadableVideo(SharpFrameError, RuntimeError):
    def __init__(self, video_path: str, details: str = "") -> None:
        suffix = f" {details}" if details else ""
        super().__init__(f"Unable to read video metadata: {video_path}.{suffix}")
        self.video_path = video_path


class DecodeError(SharpFrameError, RuntimeError):
    def __init__(self, frame_index: int, timestamp_seconds: float | None = None, details: str = "") -> None:
        at = f" at {timestamp_seconds:.3f}s" if timestamp_seconds is not None else ""
        suffix = f" {details}" if details else ""
        super().__init__(f"Failed to decode frame {frame_index}{at}.{suffix}")
        self.frame_index = frame_index
        self.timestamp_seconds = timestamp_seconds


class EncodeError(SharpFrameError, RuntimeError):
    def __init__(self, destination: str, details: str = "") -> None:
        suffix = f" {details}" if details else ""
        super().__init__(f"Failed to write still image: {destination}.{suffix}")
        self.destination = destination


class OutputDirError(SharpFrameError, RuntimeError):
    def __init__(self, output_dir: str, details: str = "") -> None:
        suffix = f" {details}" if details else ""
        super().__init__(f"Output directory is not usable: {output_dir}.{suffix}")
        self.output_dir = output_dir


class AnalysisInProgress(SharpFrameError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("An analysis is already running for this session.")


class AnalysisCancelled(SharpFrameError):
    """Raised to unwind a cancelled analysis; callers treat it as an outcome, not a failure."""
