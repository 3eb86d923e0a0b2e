from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from sharpframe.artifacts import analysis_artifact_path, load_analysis, matches_request, save_analysis
from sharpframe.config import Settings, load_settings
from sharpframe.errors import AnalysisCancelled
from sharpframe.ingest.decode import FfmpegDecoder, VideoDecoder
from sharpframe.ingest.preview import frame_preview_data_uri
from sharpframe.logging_config import configure_logging
from sharpframe.models import AnalysisResult, ProgressSnapshot
from sharpframe.propose.exporter import default_export_dir, export_frames, write_manifest
from sharpframe.selection.policies import SelectionPolicy, policy_from_options, select, selection_summary
from sharpframe.session import AnalysisSession

app = typer.Typer(help="Extract the sharpest frames of a video for photogrammetry and 3D reconstruction.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Ingest commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_EXIT_CODE = 130


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except BaseException:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _frame_progress_printer(step_index: int, total_steps: int) -> Callable[[ProgressSnapshot], None]:
    last_decile = -1

    def _print(snapshot: ProgressSnapshot) -> None:
        nonlocal last_decile
        decile = int(snapshot.percentage // 10)
        if decile <= last_decile:
            return
        last_decile = decile
        typer.echo(
            f"[{step_index}/{total_steps}]   {snapshot.completed}/{snapshot.total} frames ({snapshot.percentage:.1f}%)",
            err=True,
        )

    return _print


def _load_cached_analysis(
    path: Path,
    step_index: int,
    total_steps: int,
    *,
    video_path: Path,
    stride: int,
    time_range: tuple[float, float] | None,
) -> AnalysisResult | None:
    if not path.exists():
        return None

    try:
        result = load_analysis(path)
    except Exception as exc:
        logger.warning("Failed to load cached analysis at %s (%s); recomputing step.", path, exc)
        return None

    if not matches_request(result, video_path, stride, time_range):
        logger.warning("Cached analysis at %s belongs to another video or request; recomputing step.", path)
        return None

    typer.echo(f"[{step_index}/{total_steps}] Analyze sharpness cached: {path}", err=True)
    return result


def _bootstrap(config_path: Path, verbose: bool = False) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging, verbose=verbose)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _build_decoder(settings: Settings) -> FfmpegDecoder:
    return FfmpegDecoder(settings.decoder, jpeg_quality=settings.export.jpeg_quality)


def _fail(exc: BaseException) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _cancelled() -> typer.Exit:
    typer.echo("Analysis cancelled.", err=True)
    return typer.Exit(code=CANCELLED_EXIT_CODE)


def _time_range(start: float | None, end: float | None) -> tuple[float, float] | None:
    if start is None and end is None:
        return None
    return (start if start is not None else 0.0, end if end is not None else float("inf"))


def _parse_indices(raw: str | None) -> tuple[int, ...]:
    if not raw:
        return ()
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise ValueError(f"Manual indices must be comma-separated integers, got '{raw}'.") from exc


def _build_policy(
    settings: Settings,
    result: AnalysisResult,
    *,
    mode: str | None,
    threshold: float | None,
    min_distance: int | None,
    max_frames: int | None,
    batch_size: int | None,
    batch_buffer: int | None,
    best_n: int | None,
    top_percentage: float | None,
    indices: str | None,
) -> SelectionPolicy:
    defaults = settings.selection
    resolved_threshold = threshold if threshold is not None else defaults.threshold
    return policy_from_options(
        mode or defaults.mode,
        threshold=resolved_threshold if resolved_threshold is not None else result.suggested_threshold,
        min_distance=min_distance if min_distance is not None else defaults.min_distance,
        max_frames=max_frames if max_frames is not None else defaults.max_frames,
        batch_size=batch_size if batch_size is not None else defaults.batch_size,
        batch_buffer=batch_buffer if batch_buffer is not None else defaults.batch_buffer,
        best_n=best_n if best_n is not None else defaults.best_n,
        top_percentage=top_percentage if top_percentage is not None else defaults.top_percentage,
        indices=_parse_indices(indices),
    )


def _analyze_video(
    settings: Settings,
    decoder: VideoDecoder,
    video_path: Path,
    *,
    stride: int | None,
    parallelism: int | None,
    time_range: tuple[float, float] | None,
    backend: str | None,
    use_cache: bool,
    step_index: int,
    total_steps: int,
) -> tuple[AnalysisResult, Path]:
    video_path = video_path.expanduser().resolve()
    resolved_stride = stride if stride is not None else settings.analysis.stride
    artifact_path = analysis_artifact_path(settings.pipeline.cache_dir, video_path, resolved_stride, time_range)

    cached = None
    if use_cache:
        cached = _load_cached_analysis(
            artifact_path,
            step_index,
            total_steps,
            video_path=video_path,
            stride=resolved_stride,
            time_range=time_range,
        )
    if cached is not None:
        return cached, artifact_path

    session = AnalysisSession(
        decoder,
        backend=backend or settings.analysis.backend,
        suggested_percentile=settings.analysis.suggested_percentile,
    )
    result = _run_with_progress(
        step_index,
        total_steps,
        "Analyze sharpness",
        lambda: session.analyze(
            video_path,
            stride=resolved_stride,
            parallelism=parallelism if parallelism is not None else settings.analysis.parallelism,
            time_range=time_range,
            on_progress=_frame_progress_printer(step_index, total_steps),
        ),
    )
    save_analysis(result, artifact_path)
    return result, artifact_path


def _analysis_summary(result: AnalysisResult, artifact_path: Path) -> dict[str, Any]:
    return {
        "status": "ok",
        "video_path": result.video_path,
        "analysis_path": str(artifact_path),
        "metadata": asdict(result.metadata),
        "analyzed_count": len(result.frames),
        "suggested_threshold": round(result.suggested_threshold, 4),
        "suggested_frame_count": result.suggested_frame_count,
    }


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(
    video_path: str,
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Print video metadata (duration, fps, size, frame count) as JSON."""

    settings = _bootstrap(config_path)
    try:
        metadata = _build_decoder(settings).probe(video_path)
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    logger.info("Probe completed for %s", video_path)
    typer.echo(json.dumps({"status": "ok", "video_path": video_path, **asdict(metadata)}, indent=2))


@app.command()
def analyze(
    video_path: Path,
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
    stride: int | None = typer.Option(None, help="Analyze every N-th frame (defaults to analysis.stride)."),
    parallelism: int | None = typer.Option(None, help="Worker count (<=0 uses all CPUs)."),
    start: float | None = typer.Option(None, help="Start of the analyzed range in seconds."),
    end: float | None = typer.Option(None, help="End of the analyzed range in seconds."),
    backend: str | None = typer.Option(None, help="Scoring backend: numpy or opencv."),
    use_cache: bool = typer.Option(True, help="Reuse a cached analysis for the same video, stride and range."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Score sampled frames for sharpness and cache the analysis result."""

    settings = _bootstrap(config_path, verbose)
    try:
        result, artifact_path = _analyze_video(
            settings,
            _build_decoder(settings),
            video_path,
            stride=stride,
            parallelism=parallelism,
            time_range=_time_range(start, end),
            backend=backend,
            use_cache=use_cache,
            step_index=1,
            total_steps=1,
        )
    except (AnalysisCancelled, KeyboardInterrupt) as exc:
        raise _cancelled() from exc
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(_analysis_summary(result, artifact_path), indent=2))


@app.command("select")
def select_frames(
    analysis_path: Path = typer.Argument(..., help="Path to an analysis JSON artifact."),
    mode: str | None = typer.Option(None, help="threshold, batch, best_n, top_percentage or manual."),
    threshold: float | None = typer.Option(None, help="Sharpness threshold (defaults to the suggested threshold)."),
    min_distance: int | None = typer.Option(None, help="Minimum index gap between selected frames."),
    max_frames: int | None = typer.Option(None, help="Cap on frames kept in threshold mode."),
    batch_size: int | None = typer.Option(None, help="Window size in batch mode."),
    batch_buffer: int | None = typer.Option(None, help="Frames skipped between windows in batch mode."),
    best_n: int | None = typer.Option(None, help="Number of frames in best_n mode."),
    top_percentage: float | None = typer.Option(None, help="Percentage of frames in top_percentage mode."),
    indices: str | None = typer.Option(None, help="Comma-separated indices for manual mode."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Apply a selection policy to a cached analysis and print the chosen frames."""

    settings = _bootstrap(config_path)
    try:
        result = load_analysis(analysis_path)
        policy = _build_policy(
            settings,
            result,
            mode=mode,
            threshold=threshold,
            min_distance=min_distance,
            max_frames=max_frames,
            batch_size=batch_size,
            batch_buffer=batch_buffer,
            best_n=best_n,
            top_percentage=top_percentage,
            indices=indices,
        )
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    selection = select(result, policy)
    typer.echo(json.dumps({"policy": type(policy).__name__, **selection_summary(result, selection)}, indent=2))


@app.command("export")
def export(
    analysis_path: Path = typer.Argument(..., help="Path to an analysis JSON artifact."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for exported stills."),
    image_format: str | None = typer.Option(None, "--format", help="png or jpg (defaults to export.image_format)."),
    video_path: Path | None = typer.Option(None, "--video", help="Override the source video recorded in the analysis."),
    mode: str | None = typer.Option(None, help="threshold, batch, best_n, top_percentage or manual."),
    threshold: float | None = typer.Option(None, help="Sharpness threshold (defaults to the suggested threshold)."),
    min_distance: int | None = typer.Option(None, help="Minimum index gap between selected frames."),
    max_frames: int | None = typer.Option(None, help="Cap on frames kept in threshold mode."),
    batch_size: int | None = typer.Option(None, help="Window size in batch mode."),
    batch_buffer: int | None = typer.Option(None, help="Frames skipped between windows in batch mode."),
    best_n: int | None = typer.Option(None, help="Number of frames in best_n mode."),
    top_percentage: float | None = typer.Option(None, help="Percentage of frames in top_percentage mode."),
    indices: str | None = typer.Option(None, help="Comma-separated indices for manual mode."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Select frames from a cached analysis and write them as stills."""

    settings = _bootstrap(config_path)
    try:
        result = load_analysis(analysis_path)
        source = video_path or Path(result.video_path)
        policy = _build_policy(
            settings,
            result,
            mode=mode,
            threshold=threshold,
            min_distance=min_distance,
            max_frames=max_frames,
            batch_size=batch_size,
            batch_buffer=batch_buffer,
            best_n=best_n,
            top_percentage=top_percentage,
            indices=indices,
        )
        selection = select(result, policy)
        target_dir = output_dir or default_export_dir(settings.pipeline.output_dir, source)
        manifest = export_frames(
            _build_decoder(settings),
            source,
            [result.frames[index] for index in selection],
            target_dir,
            image_format or settings.export.image_format,
            total_frames=result.metadata.total_frames,
        )
        manifest_paths = write_manifest(manifest)
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok" if not manifest.failures else "partial",
                "output_dir": manifest.output_dir,
                "exported": f"{manifest.success_count}/{manifest.total}",
                "failed_frames": [entry.frame_index for entry in manifest.failures],
                "manifest": {key: str(path) for key, path in manifest_paths.items()},
            },
            indent=2,
        )
    )


@app.command()
def preview(
    video_path: str,
    frame_index: int,
    max_width: int = typer.Option(800, help="Downscale previews wider than this (<=0 disables resize)."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Print a JPEG data URI of one frame."""

    settings = _bootstrap(config_path)
    try:
        uri = frame_preview_data_uri(_build_decoder(settings), video_path, frame_index, max_width=max_width)
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(uri)


@app.command("run")
def run_pipeline(
    video_path: Path,
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for exported stills."),
    image_format: str | None = typer.Option(None, "--format", help="png or jpg (defaults to export.image_format)."),
    stride: int | None = typer.Option(None, help="Analyze every N-th frame (defaults to analysis.stride)."),
    parallelism: int | None = typer.Option(None, help="Worker count (<=0 uses all CPUs)."),
    start: float | None = typer.Option(None, help="Start of the analyzed range in seconds."),
    end: float | None = typer.Option(None, help="End of the analyzed range in seconds."),
    backend: str | None = typer.Option(None, help="Scoring backend: numpy or opencv."),
    mode: str | None = typer.Option(None, help="threshold, batch, best_n, top_percentage or manual."),
    threshold: float | None = typer.Option(None, help="Sharpness threshold (defaults to the suggested threshold)."),
    min_distance: int | None = typer.Option(None, help="Minimum index gap between selected frames."),
    max_frames: int | None = typer.Option(None, help="Cap on frames kept in threshold mode."),
    batch_size: int | None = typer.Option(None, help="Window size in batch mode."),
    batch_buffer: int | None = typer.Option(None, help="Frames skipped between windows in batch mode."),
    best_n: int | None = typer.Option(None, help="Number of frames in best_n mode."),
    top_percentage: float | None = typer.Option(None, help="Percentage of frames in top_percentage mode."),
    use_cache: bool = typer.Option(True, help="Reuse a cached analysis for the same video, stride and range."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SHARPFRAME_CONFIG",
        help="Path to YAML configuration file.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Probe, analyze, select and export the sharpest frames of a video."""

    settings = _bootstrap(config_path, verbose)
    resolved_video_path = video_path.expanduser().resolve()
    total_steps = 4

    try:
        if not resolved_video_path.exists():
            raise FileNotFoundError(f"Video file not found: {resolved_video_path}")

        decoder = _build_decoder(settings)
        metadata = _run_with_progress(1, total_steps, "Probe video", lambda: decoder.probe(str(resolved_video_path)))

        result, artifact_path = _analyze_video(
            settings,
            decoder,
            resolved_video_path,
            stride=stride,
            parallelism=parallelism,
            time_range=_time_range(start, end),
            backend=backend,
            use_cache=use_cache,
            step_index=2,
            total_steps=total_steps,
        )

        def _select() -> tuple[int, ...]:
            policy = _build_policy(
                settings,
                result,
                mode=mode,
                threshold=threshold,
                min_distance=min_distance,
                max_frames=max_frames,
                batch_size=batch_size,
                batch_buffer=batch_buffer,
                best_n=best_n,
                top_percentage=top_percentage,
                indices=None,
            )
            return select(result, policy)

        selection = _run_with_progress(3, total_steps, "Select frames", _select)

        target_dir = output_dir or default_export_dir(settings.pipeline.output_dir, resolved_video_path)
        manifest = _run_with_progress(
            4,
            total_steps,
            "Export frames",
            lambda: export_frames(
                decoder,
                resolved_video_path,
                [result.frames[index] for index in selection],
                target_dir,
                image_format or settings.export.image_format,
                total_frames=metadata.total_frames,
            ),
        )
        manifest_paths = write_manifest(manifest)
    except (AnalysisCancelled, KeyboardInterrupt) as exc:
        raise _cancelled() from exc
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok" if not manifest.failures else "partial",
                "video_path": str(resolved_video_path),
                "analysis_path": str(artifact_path),
                "analyzed_count": len(result.frames),
                "suggested_threshold": round(result.suggested_threshold, 4),
                "selected_count": len(selection),
                "exported": f"{manifest.success_count}/{manifest.total}",
                "output_dir": manifest.output_dir,
                "manifest": {key: str(path) for key, path in manifest_paths.items()},
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
