from __future__ import annotations

import base64
from typing import Any

import numpy as np

from sharpframe.errors import EncodeError
from sharpframe.ingest.decode import VideoDecoder

DEFAULT_PREVIEW_WIDTH = 800


def frame_preview_data_uri(
    decoder: VideoDecoder,
    video_path: str,
    frame_index: int,
    *,
    max_width: int = DEFAULT_PREVIEW_WIDTH,
    jpeg_quality: int = 85,
    cv2_module: Any | None = None,
) -> str:
    """Render one frame as a downscaled JPEG data URI for quick inspection."""

    if cv2_module is None:
        import cv2 as cv2_module

    frame = decoder.decode_frame_rgb(video_path, frame_index)
    resized = _resize_for_preview(frame=frame, max_width=max_width, cv2_module=cv2_module)
    bgr = cv2_module.cvtColor(resized, cv2_module.COLOR_RGB2BGR)

    ok, encoded = cv2_module.imencode(".jpg", bgr, [cv2_module.IMWRITE_JPEG_QUALITY, int(jpeg_quality)])
    if not ok:
        raise EncodeError(f"preview of frame {frame_index}", "JPEG encoding failed.")

    payload = base64.b64encode(np.asarray(encoded).tobytes()).decode("ascii")
    return f"data:image/jpeg;base64,{payload}"


def _resize_for_preview(frame: np.ndarray, max_width: int, cv2_module: Any) -> np.ndarray:
    if max_width <= 0:
        return frame

    height, width = frame.shape[:2]
    if width <= max_width:
        return frame

    scale = max_width / float(width)
    target_height = max(int(height * scale), 1)
    return cv2_module.resize(frame, (max_width, target_height), interpolation=cv2_module.INTER_AREA)
