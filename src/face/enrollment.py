from __future__ import annotations

import threading
import time

from dataclasses import dataclass
from typing import Callable, List, Optional

from src.config import CAPTURE_COUNT, CAPTURE_INTERVAL_SECONDS
from src.face.aggregator import aggregate_descriptors
from src.face.errors import EnrollmentAborted
from src.face.extractor import DescriptorExtractor
from src.face.gallery import EnrollmentStore
from src.face.types import FaceDescriptor, FrameSource
from src.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class EnrollmentConfig:
    capture_count: int = CAPTURE_COUNT
    # Pause before every capture so consecutive frames differ slightly.
    interval_seconds: float = CAPTURE_INTERVAL_SECONDS


@dataclass
class EnrollmentResult:
    user_key: str
    descriptor: Optional[FaceDescriptor] = None
    captures: int = 0
    saved: bool = False
    cancelled: bool = False


class FaceEnroller:
    """Captures several frames one after another, averages their descriptors and stores the result.

    The camera stays owned by the caller; this class only pulls frames from `frame_source`.
    """

    def __init__(
        self,
        extractor: DescriptorExtractor,
        store: EnrollmentStore,
        config: Optional[EnrollmentConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.extractor = extractor
        self.store = store
        self.config = config or EnrollmentConfig()
        self._sleep = sleep
        if int(self.config.capture_count) < 1:
            raise ValueError(f"capture_count must be >= 1, got {self.config.capture_count}")

    def capture(
        self,
        frame_source: FrameSource,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Optional[List[FaceDescriptor]]:
        """Collect `capture_count` descriptors; None if cancelled between captures.

        Raises:
            EnrollmentAborted: a capture had no detectable face.
        """
        total = int(self.config.capture_count)
        buffer: List[FaceDescriptor] = []
        logger.info(f"开始采集 {total} 张图像...")

        for i in range(total):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"采集已取消 ({i}/{total})")
                return None
            if self.config.interval_seconds > 0:
                self._sleep(float(self.config.interval_seconds))
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"采集已取消 ({i}/{total})")
                return None

            try:
                frame = frame_source()
            except Exception as e:
                logger.warning(f"读取视频帧失败: {e}")
                frame = None

            descriptor = self.extractor.extract(frame) if frame is not None else None
            if descriptor is None:
                logger.error(f"第 {i + 1}/{total} 次采集未检测到人脸，请保持人脸可见")
                raise EnrollmentAborted(i + 1, total)

            buffer.append(descriptor)
            if on_progress is not None:
                on_progress(i + 1, total)

        return buffer

    def enroll(
        self,
        user_key: str,
        frame_source: FrameSource,
        name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> EnrollmentResult:
        key = str(user_key)
        buffer = self.capture(frame_source, cancel_event=cancel_event, on_progress=on_progress)
        if buffer is None:
            return EnrollmentResult(user_key=key, cancelled=True)

        # LengthMismatch propagates: a changed detector config mid-session is a setup error.
        averaged = aggregate_descriptors(buffer)
        saved = bool(self.store.save_enrollment(key, averaged, name=name))
        if saved:
            logger.info(f"✅ 用户 {key} 注册完成: {len(buffer)} 张训练图像, descriptor 长度 {len(averaged)}")
        else:
            logger.error(f"❌ 用户 {key} 注册失败: 保存人脸数据出错")
        return EnrollmentResult(user_key=key, descriptor=averaged, captures=len(buffer), saved=saved)
