from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class VideoMetadata:
    """Stream properties reported by the decoder for one video."""

    duration_seconds: float
    fps: float
    width: int
    height: int
    total_frames: int


@dataclass(slots=True, frozen=True)
class SampledFrame:
    frame_index: int
    timestamp_seconds: float


@dataclass(slots=True, frozen=True)
class FrameScore:
    """Sharpness of one sampled frame; 0.0 means a flat image."""

    frame_index: int
    timestamp_seconds: float
    sharpness: float


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    completed: int
    total: int
    percentage: float


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    """Complete, ordered scoring output of one analysis run."""

    metadata: VideoMetadata
    frames: tuple[FrameScore, ...]
    suggested_threshold: float
    suggested_frame_count: int
    video_path: str = ""
    stride: int = 1
    time_range: tuple[float, float] | None = None

    @property
    def scores(self) -> list[float]:
        return [frame.sharpness for frame in self.frames]

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["frames"] = [asdict(frame) for frame in self.frames]
        payload["time_range"] = list(self.time_range) if self.time_range else None
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AnalysisResult:
        raw_range = payload.get("time_range")
        return cls(
            metadata=VideoMetadata(**payload["metadata"]),
            frames=tuple(
                FrameScore(
                    frame_index=int(row["frame_index"]),
                    timestamp_seconds=float(row["timestamp_seconds"]),
                    sharpness=float(row["sharpness"]),
                )
                for row in payload.get("frames", [])
            ),
            suggested_threshold=float(payload["suggested_threshold"]),
            suggested_frame_count=int(payload["suggested_frame_count"]),
            video_path=str(payload.get("video_path", "")),
            stride=int(payload.get("stride", 1)),
            time_range=(float(raw_range[0]), float(raw_range[1])) if raw_range else None,
        )


@dataclass(slots=True)
class ExportEntry:
    frame_index: int
    timestamp_seconds: float
    path: str
    success: bool
    error: str | None = None


@dataclass(slots=True)
class ExportManifest:
    """Per-file outcome of one export, used for user-facing reporting."""

    output_dir: str
    image_format: str
    entries: list[ExportEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def success_count(self) -> int:
        return sum(1 for entry in self.entries if entry.success)

    @property
    def failures(self) -> list[ExportEntry]:
        return [entry for entry in self.entries if not entry.success]
