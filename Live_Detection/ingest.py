from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import cv2
import numpy as np

from .config import SourceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]


class FrameSource(Protocol):
    def has_new_frame(self) -> bool:
        ...

    def read(self) -> Optional[np.ndarray]:
        ...

    def release(self) -> None:
        ...


def open_capture(*, video: Optional[str] = None, webcam: Optional[int] = None, rtsp: Optional[str] = None) -> cv2.VideoCapture:
    sources = [video is not None, webcam is not None, rtsp is not None]
    if sum(bool(s) for s in sources) != 1:
        raise ValueError("Exactly one of video/webcam/rtsp must be provided.")

    if video is not None:
        cap = cv2.VideoCapture(video)
    elif rtsp is not None:
        cap = cv2.VideoCapture(rtsp)
    else:
        cap = cv2.VideoCapture(int(webcam))

    if not cap.isOpened():
        raise RuntimeError("Failed to open video source.")
    return cap


def get_capture_info(cap: cv2.VideoCapture) -> CaptureInfo:
    fps = cap.get(cv2.CAP_PROP_FPS)
    if fps is None or fps <= 0:
        fps_val = None
    else:
        fps_val = float(fps)

    w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
    h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
    w_val = int(w) if w and w > 0 else None
    h_val = int(h) if h and h > 0 else None

    return CaptureInfo(fps=fps_val, width=w_val, height=h_val)


class VideoCaptureSource:
    """
    Frame source over an OpenCV capture.

    `has_new_frame()` grabs the next frame; `read()` decodes the grabbed frame
    once and returns None until another frame is grabbed, so a stale frame is
    never handed out twice.
    """

    def __init__(self, cap: Any, *, loop: bool = False) -> None:
        self.cap = cap
        self.loop = loop
        self._grabbed = False
        self.frames_read = 0

    @classmethod
    def from_config(cls, source: SourceConfig) -> "VideoCaptureSource":
        cap = open_capture(video=source.video, webcam=source.webcam, rtsp=source.rtsp)
        return cls(cap, loop=bool(source.loop_video and source.video))

    def has_new_frame(self) -> bool:
        if self._grabbed:
            return True
        if self.cap is None:
            return False
        ok = bool(self.cap.grab())
        if not ok and self.loop:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok = bool(self.cap.grab())
        self._grabbed = ok
        return ok

    def read(self) -> Optional[np.ndarray]:
        if not self._grabbed:
            return None
        self._grabbed = False
        ok, frame = self.cap.retrieve()
        if not ok or frame is None or frame.size == 0:
            logger.warning("Failed to decode grabbed frame")
            return None
        self.frames_read += 1
        return frame

    @property
    def exhausted(self) -> bool:
        return self.cap is None or (not self._grabbed and not self.cap.isOpened())

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self._grabbed = False
