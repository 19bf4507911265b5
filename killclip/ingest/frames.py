from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Iterable, Iterator

import numpy as np

from killclip.errors import ExternalCollaboratorError
from killclip.models import PixelBuffer

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


def iter_video_frames(
    video_path: str | Path,
    frame_rate: float = 5.0,
    scale_width: int = 1280,
    *,
    cv2_module: Any | None = None,
) -> Iterator[tuple[int, PixelBuffer]]:
    """Yield ``(frame_index, PixelBuffer)`` pairs resampled to ``frame_rate``.

    ``frame_index`` is the sampling slot the frame falls in, so
    ``frame_index / frame_rate`` is its timestamp on the source timeline
    (rounded down to the slot). Sources slower than ``frame_rate`` skip slots.
    Frames are downscaled to ``scale_width`` and converted to RGB before they
    are yielded.
    """

    cv2 = cv2_module or _import_cv2()
    source_path = Path(video_path)

    capture = cv2.VideoCapture(str(source_path))
    if not capture.isOpened():
        raise ExternalCollaboratorError(f"Unable to open video for frame extraction: {source_path}")

    native_fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
    if native_fps <= 0:
        native_fps = frame_rate
        logger.warning("Video %s reports no frame rate; assuming %.2f fps", source_path, native_fps)

    next_index = 0
    native_index = 0
    try:
        while True:
            ok, frame = capture.read()
            if not ok:
                break

            slot = math.floor(native_index / native_fps * frame_rate + _EPSILON)
            native_index += 1
            if slot < next_index:
                continue

            resized = resize_for_width(frame=frame, scale_width=scale_width, cv2_module=cv2)
            yield slot, PixelBuffer.from_array(bgr_to_rgb(resized))
            next_index = slot + 1
    finally:
        capture.release()


def estimate_sampled_frame_count(video_path: str | Path, frame_rate: float, *, cv2_module: Any | None = None) -> int:
    """Best-effort count of frames :func:`iter_video_frames` will yield; 0 when unknown."""

    cv2 = cv2_module or _import_cv2()
    capture = cv2.VideoCapture(str(video_path))
    try:
        if not capture.isOpened():
            return 0
        native_fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
        native_frames = float(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
    finally:
        capture.release()

    if native_fps <= 0 or native_frames <= 0:
        return 0
    return int(math.ceil(native_frames / native_fps * frame_rate))


def read_frames_at(
    video_path: str | Path,
    frame_indices: Iterable[int],
    frame_rate: float,
    scale_width: int,
    *,
    cv2_module: Any | None = None,
) -> dict[int, PixelBuffer]:
    """Fetch specific sampled frames by seeking to ``index / frame_rate``."""

    cv2 = cv2_module or _import_cv2()
    capture = cv2.VideoCapture(str(video_path))
    if not capture.isOpened():
        raise ExternalCollaboratorError(f"Unable to open video for frame capture: {video_path}")

    frames: dict[int, PixelBuffer] = {}
    try:
        for frame_index in sorted(set(frame_indices)):
            capture.set(cv2.CAP_PROP_POS_MSEC, frame_index / frame_rate * 1000.0)
            ok, frame = capture.read()
            if not ok:
                logger.warning("Could not read frame %d from %s", frame_index, video_path)
                continue
            resized = resize_for_width(frame=frame, scale_width=scale_width, cv2_module=cv2)
            frames[frame_index] = PixelBuffer.from_array(bgr_to_rgb(resized))
    finally:
        capture.release()

    return frames


def save_frame_image(path: str | Path, buffer: PixelBuffer, *, cv2_module: Any | None = None) -> Path:
    """Write an RGB buffer to an image file (format chosen by suffix)."""

    cv2 = cv2_module or _import_cv2()
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    raw = np.frombuffer(buffer.data, dtype=np.uint8) if isinstance(buffer.data, bytes) else np.asarray(buffer.data)
    pixels = raw.astype(np.uint8, copy=False).reshape(buffer.height, buffer.width, buffer.channels)
    if not cv2.imwrite(str(target), bgr_to_rgb(pixels)):
        raise ExternalCollaboratorError(f"Failed to write frame image: {target}")
    return target


def load_image(path: str | Path, *, cv2_module: Any | None = None) -> PixelBuffer:
    """Decode a still image into an RGB PixelBuffer."""

    cv2 = cv2_module or _import_cv2()
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise ExternalCollaboratorError(f"Unable to decode image: {path}")
    return PixelBuffer.from_array(bgr_to_rgb(image))


def resize_for_width(frame: np.ndarray, scale_width: int, cv2_module: Any) -> np.ndarray:
    """Downscale to ``scale_width`` keeping aspect ratio with an even height; never upscales."""

    height, width = frame.shape[:2]
    if scale_width <= 0 or width <= scale_width:
        return frame

    target_height = max(2, int(round(height * scale_width / width / 2.0)) * 2)
    return cv2_module.resize(frame, (scale_width, target_height), interpolation=cv2_module.INTER_AREA)


def bgr_to_rgb(frame: np.ndarray) -> np.ndarray:
    if frame.ndim != 3 or frame.shape[2] < 3:
        return frame
    return np.ascontiguousarray(frame[:, :, 2::-1])


def _import_cv2() -> Any:
    try:
        import cv2
    except ImportError as exc:
        raise ExternalCollaboratorError("OpenCV (opencv-python) is required for frame extraction.") from exc
    return cv2
