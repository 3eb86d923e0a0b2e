from __future__ import annotations

import csv
import json
import logging
import os
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Iterable

from sharpframe.errors import DecodeError, DecoderUnavailable, EncodeError, OutputDirError
from sharpframe.ingest.decode import VideoDecoder, normalize_image_format
from sharpframe.models import ExportEntry, ExportManifest, FrameScore, SampledFrame

logger = logging.getLogger(__name__)

MIN_FILENAME_DIGITS = 6

SelectedFrame = FrameScore | SampledFrame | tuple[int, float]


def export_frames(
    decoder: VideoDecoder,
    video_path: str | Path,
    selected: Iterable[SelectedFrame],
    output_dir: str | Path,
    image_format: str = "png",
    *,
    total_frames: int | None = None,
) -> ExportManifest:
    """Write one still per selected frame; a failed frame is recorded, not fatal."""

    extension = normalize_image_format(image_format)
    resolved_output_dir = ensure_output_dir(output_dir)
    frames = [_as_pair(item) for item in selected]

    width = filename_width(total_frames if total_frames is not None else max((index for index, _ in frames), default=0))
    manifest = ExportManifest(output_dir=str(resolved_output_dir), image_format=extension)

    for frame_index, timestamp_seconds in frames:
        destination = resolved_output_dir / frame_filename(frame_index, extension, width)
        try:
            image = decoder.decode_frame_rgb(str(video_path), frame_index)
            decoder.encode_still(image, extension, destination)
        except DecoderUnavailable:
            raise
        except Exception as exc:
            failure: Exception = exc
            if not isinstance(exc, (DecodeError, EncodeError)):
                failure = DecodeError(frame_index, timestamp_seconds, str(exc))
            logger.warning("Export of frame %d failed: %s", frame_index, failure)
            manifest.entries.append(
                ExportEntry(
                    frame_index=frame_index,
                    timestamp_seconds=timestamp_seconds,
                    path=str(destination),
                    success=False,
                    error=str(failure),
                )
            )
            continue

        manifest.entries.append(
            ExportEntry(
                frame_index=frame_index,
                timestamp_seconds=timestamp_seconds,
                path=str(destination),
                success=True,
            )
        )

    logger.info(
        "Exported %d/%d frames to %s",
        manifest.success_count,
        manifest.total,
        resolved_output_dir,
    )
    return manifest


def ensure_output_dir(output_dir: str | Path) -> Path:
    path = Path(output_dir).expanduser()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputDirError(str(path), str(exc)) from exc

    if not path.is_dir():
        raise OutputDirError(str(path), "Path exists and is not a directory.")
    if not os.access(path, os.W_OK):
        raise OutputDirError(str(path), "Directory is not writable.")
    return path.resolve()


def filename_width(total_frames: int) -> int:
    return max(MIN_FILENAME_DIGITS, len(str(max(total_frames, 0))))


def frame_filename(frame_index: int, extension: str, width: int = MIN_FILENAME_DIGITS) -> str:
    return f"frame_{frame_index:0{width}d}.{extension}"


def default_export_dir(base_dir: str | Path, video_path: str | Path, today: date | None = None) -> Path:
    """``<base>/<video stem>_frames_<YYYY-MM-DD>``."""

    stem = Path(video_path).stem or "video"
    stamp = (today or date.today()).isoformat()
    return Path(base_dir) / f"{stem}_frames_{stamp}"


def write_manifest(
    manifest: ExportManifest,
    output_dir: str | Path | None = None,
    *,
    basename: str = "export_manifest",
) -> dict[str, Path]:
    """Persist the export manifest as JSON and CSV next to the stills."""

    resolved_output_dir = Path(output_dir or manifest.output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"

    payload = {
        "output_dir": manifest.output_dir,
        "image_format": manifest.image_format,
        "total": manifest.total,
        "success_count": manifest.success_count,
        "entries": [asdict(entry) for entry in manifest.entries],
    }
    json_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    _write_csv(manifest, csv_path)

    return {
        "json": json_path,
        "csv": csv_path,
    }


def _write_csv(manifest: ExportManifest, path: Path) -> None:
    fields = ["frame_index", "timestamp_seconds", "path", "success", "error"]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for entry in manifest.entries:
            writer.writerow(
                {
                    "frame_index": entry.frame_index,
                    "timestamp_seconds": f"{entry.timestamp_seconds:.3f}",
                    "path": entry.path,
                    "success": "yes" if entry.success else "no",
                    "error": entry.error or "",
                }
            )


def _as_pair(item: SelectedFrame) -> tuple[int, float]:
    if isinstance(item, (FrameScore, SampledFrame)):
        return item.frame_index, item.timestamp_seconds
    frame_index, timestamp_seconds = item
    return int(frame_index), float(timestamp_seconds)
