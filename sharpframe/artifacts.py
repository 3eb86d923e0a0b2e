from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

from sharpframe.models import AnalysisResult

logger = logging.getLogger(__name__)


def analysis_artifact_path(
    cache_dir: str | Path,
    video_path: str | Path,
    stride: int,
    time_range: tuple[float, float] | None = None,
) -> Path:
    """Cache location of an analysis run, keyed by video path, stride and range.

    The directory is the video stem plus a short hash of the resolved path, so
    same-named videos in different folders never share an entry.
    """

    source_path = Path(video_path).expanduser().resolve()
    digest = hashlib.sha1(str(source_path).encode("utf-8")).hexdigest()[:8]
    name = f"analysis_s{stride}"
    if time_range is not None:
        name += f"_{time_range[0]:.3f}-{time_range[1]:.3f}"
    return Path(cache_dir).expanduser().resolve() / "analysis" / f"{source_path.stem}-{digest}" / f"{name}.json"


def save_analysis(result: AnalysisResult, path: str | Path) -> Path:
    artifact_path = Path(path)
    artifact_path.parent.mkdir(parents=True, exist_ok=True)
    artifact_path.write_text(json.dumps(result.to_payload(), indent=2, sort_keys=True), encoding="utf-8")
    logger.debug("Saved analysis artifact to %s", artifact_path)
    return artifact_path


def load_analysis(path: str | Path) -> AnalysisResult:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict) or "frames" not in payload:
        raise ValueError(f"Not an analysis artifact: {path}")

    try:
        return AnalysisResult.from_payload(payload)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed analysis artifact {path}: {exc}") from exc


def matches_request(
    result: AnalysisResult,
    video_path: str | Path,
    stride: int,
    time_range: tuple[float, float] | None = None,
) -> bool:
    """True when a cached result was produced for this video, stride and range."""

    if not result.video_path:
        return False
    recorded = Path(result.video_path).expanduser().resolve()
    return (
        recorded == Path(video_path).expanduser().resolve()
        and result.stride == stride
        and result.time_range == time_range
    )
