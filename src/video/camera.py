"""Camera frame sources backed by OpenCV.

`CameraFrameSource` wraps a `cv2.VideoCapture` that somebody else opened; it never
releases it. `open_camera` is the scoped owner used by the CLI.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Union

import cv2
import numpy as np

from src.config import FRAME_HEIGHT, FRAME_WIDTH
from src.utils.log import get_logger

logger = get_logger(__name__)


class CameraFrameSource:
    """Callable returning the latest frame of an open capture, or None."""

    def __init__(self, cap: "cv2.VideoCapture"):
        self.cap = cap

    def __call__(self) -> Optional[np.ndarray]:
        if self.cap is None or not self.cap.isOpened():
            logger.warning("摄像头未打开")
            return None
        ok, frame = self.cap.read()
        if not ok or frame is None:
            logger.warning("读取视频帧失败")
            return None
        return frame


@contextmanager
def open_camera(
    device: Union[int, str] = 0,
    width: int = FRAME_WIDTH,
    height: int = FRAME_HEIGHT,
) -> Iterator["cv2.VideoCapture"]:
    """Open a camera (index or URL/path) and always release it on exit."""
    cap = cv2.VideoCapture(device)
    if not cap.isOpened():
        cap.release()
        raise RuntimeError(f"Failed to open camera: {device}")
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(width))
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(height))
    logger.info(f"摄像头已打开: {device} ({width}x{height})")
    try:
        yield cap
    finally:
        cap.release()
        logger.info("摄像头已释放")
