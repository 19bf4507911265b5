from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from killclip.errors import ExternalCollaboratorError
from killclip.ingest.frames import (
    bgr_to_rgb,
    estimate_sampled_frame_count,
    iter_video_frames,
    load_image,
    resize_for_width,
    save_frame_image,
)
from killclip.models import PixelBuffer


class _FakeCapture:
    def __init__(self, frames: list[np.ndarray], fps: float, opened: bool = True) -> None:
        self._frames = list(frames)
        self._fps = fps
        self._opened = opened
        self.released = False

    def isOpened(self) -> bool:
        return self._opened

    def get(self, prop: int) -> float:
        if prop == _FakeCv2.CAP_PROP_FPS:
            return self._fps
        if prop == _FakeCv2.CAP_PROP_FRAME_COUNT:
            return float(len(self._frames))
        return 0.0

    def read(self):
        if not self._frames:
            return False, None
        return True, self._frames.pop(0)

    def release(self) -> None:
        self.released = True


class _FakeCv2:
    INTER_AREA = 3
    CAP_PROP_FPS = 5
    CAP_PROP_FRAME_COUNT = 7
    CAP_PROP_POS_MSEC = 0
    IMREAD_COLOR = 1

    def __init__(self, capture: _FakeCapture | None = None) -> None:
        self.capture = capture
        self.resized_to: list[tuple[int, int]] = []
        self.written: dict[str, np.ndarray] = {}

    def VideoCapture(self, path: str) -> _FakeCapture:
        assert self.capture is not None
        return self.capture

    def resize(self, frame, dims, interpolation):
        self.resized_to.append(dims)
        target_w, target_h = dims
        return np.zeros((target_h, target_w, frame.shape[2]), dtype=frame.dtype)

    def imwrite(self, path: str, image: np.ndarray) -> bool:
        self.written[path] = image
        return True

    def imread(self, path: str, flags: int):
        return self.written.get(path)


def _numbered_frames(count: int) -> list[np.ndarray]:
    frames = []
    for idx in range(count):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[:, :, 0] = idx
        frames.append(frame)
    return frames


def test_resize_skips_when_width_already_small() -> None:
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    fake_cv2 = _FakeCv2()

    assert resize_for_width(frame, 1280, fake_cv2) is frame
    assert fake_cv2.resized_to == []


def test_resize_keeps_aspect_with_even_height() -> None:
    frame = np.zeros((1080, 1920, 3), dtype=np.uint8)
    fake_cv2 = _FakeCv2()

    resized = resize_for_width(frame, 1280, fake_cv2)

    assert resized.shape[:2] == (720, 1280)
    assert fake_cv2.resized_to == [(1280, 720)]


def test_bgr_to_rgb_swaps_channels() -> None:
    frame = np.zeros((1, 1, 3), dtype=np.uint8)
    frame[0, 0] = (10, 20, 30)

    assert bgr_to_rgb(frame)[0, 0].tolist() == [30, 20, 10]


def test_iter_video_frames_resamples_to_target_rate() -> None:
    # 30 fps source sampled at 5 fps keeps every sixth frame.
    capture = _FakeCapture(_numbered_frames(30), fps=30.0)

    frames = list(iter_video_frames("match.mp4", 5.0, 1280, cv2_module=_FakeCv2(capture)))

    assert [index for index, _ in frames] == [0, 1, 2, 3, 4]
    # The source marker lives in BGR channel 0, which becomes RGB channel 2.
    assert [int(np.asarray(buffer.data)[0, 0, 2]) for _, buffer in frames] == [0, 6, 12, 18, 24]
    assert capture.released is True


def test_iter_video_frames_keeps_every_frame_of_slower_source() -> None:
    capture = _FakeCapture(_numbered_frames(4), fps=2.0)

    frames = list(iter_video_frames("slow.mp4", 5.0, 1280, cv2_module=_FakeCv2(capture)))

    # Slots on the 5 fps timeline: 0.0s, 0.4s, 1.0s, 1.4s.
    assert [index for index, _ in frames] == [0, 2, 5, 7]


def test_iter_video_frames_raises_when_video_cannot_open() -> None:
    capture = _FakeCapture([], fps=30.0, opened=False)

    with pytest.raises(ExternalCollaboratorError, match="Unable to open video"):
        list(iter_video_frames("missing.mp4", cv2_module=_FakeCv2(capture)))


def test_estimate_sampled_frame_count() -> None:
    capture = _FakeCapture(_numbered_frames(60), fps=30.0)

    assert estimate_sampled_frame_count("match.mp4", 5.0, cv2_module=_FakeCv2(capture)) == 10


def test_saved_image_loads_back_as_rgb(tmp_path: Path) -> None:
    fake_cv2 = _FakeCv2()
    array = np.zeros((2, 2, 3), dtype=np.uint8)
    array[:, :] = (255, 0, 0)
    target = tmp_path / "shots" / "kill.png"

    save_frame_image(target, PixelBuffer.from_array(array), cv2_module=fake_cv2)
    loaded = load_image(target, cv2_module=fake_cv2)

    assert fake_cv2.written[str(target)][0, 0].tolist() == [0, 0, 255]
    assert np.asarray(loaded.data)[0, 0].tolist() == [255, 0, 0]
    assert target.parent.is_dir()


def test_load_image_raises_when_undecodable(tmp_path: Path) -> None:
    with pytest.raises(ExternalCollaboratorError, match="Unable to decode image"):
        load_image(tmp_path / "nothing.png", cv2_module=_FakeCv2())
