"""Verification decision: one live capture against one stored enrollment.

An attempt moves idle -> capturing -> accepted | rejected and is final. A new try
is a new `VerificationAttempt`. Every failure (nothing enrolled, no face, not
comparable, low similarity) maps to `rejected`; `reason` is informational only.
"""
from __future__ import annotations

import time

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from src.config import CAMERA_WARMUP_SECONDS, DEFAULT_SOURCE_TAG, SIMILARITY_THRESHOLD
from src.face.comparator import SimilarityComparator
from src.face.errors import NoEnrollmentOnFile
from src.face.extractor import DescriptorExtractor
from src.face.gallery import EnrollmentStore, VerificationEvent, VerificationEventLog
from src.face.types import FaceDescriptor, FrameSource
from src.utils.log import get_logger

logger = get_logger(__name__)


class VerificationState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DecisionReason(str, Enum):
    MATCH = "match"
    NO_ENROLLMENT = "no_enrollment"
    NO_FACE = "no_face"
    LENGTH_MISMATCH = "length_mismatch"
    BELOW_THRESHOLD = "below_threshold"


@dataclass
class VerifierConfig:
    threshold: float = SIMILARITY_THRESHOLD
    # Wait before the single capture so the camera can settle.
    warmup_seconds: float = CAMERA_WARMUP_SECONDS
    source_tag: str = DEFAULT_SOURCE_TAG


@dataclass
class VerificationResult:
    user_key: str
    state: VerificationState
    reason: DecisionReason
    similarity: Optional[float] = None

    @property
    def accepted(self) -> bool:
        return self.state == VerificationState.ACCEPTED


def decide(
    stored: Optional[FaceDescriptor],
    live: Optional[FaceDescriptor],
    comparator: SimilarityComparator,
    threshold: float = SIMILARITY_THRESHOLD,
) -> Tuple[VerificationState, DecisionReason, Optional[float]]:
    """Pure accept/reject decision. Returns (state, reason, similarity)."""
    if stored is None:
        return VerificationState.REJECTED, DecisionReason.NO_ENROLLMENT, None
    if live is None:
        return VerificationState.REJECTED, DecisionReason.NO_FACE, None

    similarity = comparator.compare(stored, live)
    if len(stored) != len(live):
        return VerificationState.REJECTED, DecisionReason.LENGTH_MISMATCH, similarity
    if similarity >= float(threshold):
        return VerificationState.ACCEPTED, DecisionReason.MATCH, similarity
    return VerificationState.REJECTED, DecisionReason.BELOW_THRESHOLD, similarity


class VerificationAttempt:
    """A single, non-retryable verification of `user_key`."""

    def __init__(
        self,
        user_key: str,
        store: EnrollmentStore,
        extractor: DescriptorExtractor,
        comparator: SimilarityComparator,
        event_log: Optional[VerificationEventLog] = None,
        config: Optional[VerifierConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.user_key = str(user_key)
        self.store = store
        self.extractor = extractor
        self.comparator = comparator
        self.event_log = event_log
        self.config = config or VerifierConfig()
        self._sleep = sleep
        self._clock = clock
        self.state = VerificationState.IDLE
        self.result: Optional[VerificationResult] = None

    def _finish(
        self, state: VerificationState, reason: DecisionReason, similarity: Optional[float]
    ) -> VerificationResult:
        self.state = state
        self.result = VerificationResult(self.user_key, state, reason, similarity)
        return self.result

    def _record_event(self, similarity: float, source_tag: str) -> None:
        if self.event_log is None:
            return
        event = VerificationEvent(
            user_key=self.user_key,
            source_tag=source_tag,
            face_verified=True,
            rfid_verified=True,
            similarity=float(similarity),
            at=self._clock(),
        )
        try:
            self.event_log.append(event)
        except Exception as e:
            # Fire-and-forget: the decision stands even if the audit write fails.
            logger.error(f"记录验证事件失败 ({self.user_key}): {e}")

    def run(self, frame_source: FrameSource, source_tag: Optional[str] = None) -> VerificationResult:
        if self.state != VerificationState.IDLE:
            raise RuntimeError(f"Verification attempt for {self.user_key} already ran (state={self.state.value})")
        self.state = VerificationState.CAPTURING
        tag = str(source_tag or self.config.source_tag)

        try:
            stored = self.store.require_enrollment(self.user_key)
        except NoEnrollmentOnFile:
            logger.warning(f"用户 {self.user_key} 未注册人脸，拒绝")
            return self._finish(VerificationState.REJECTED, DecisionReason.NO_ENROLLMENT, None)

        if self.config.warmup_seconds > 0:
            self._sleep(float(self.config.warmup_seconds))

        try:
            frame = frame_source()
        except Exception as e:
            logger.warning(f"读取视频帧失败: {e}")
            frame = None

        live = self.extractor.extract(frame) if frame is not None else None
        state, reason, similarity = decide(stored, live, self.comparator, self.config.threshold)

        if state == VerificationState.ACCEPTED:
            logger.info(f"✅ 验证通过: {self.user_key} (相似度: {similarity:.4f})")
            self._record_event(similarity, tag)
        elif reason == DecisionReason.NO_FACE:
            logger.warning(f"摄像头中未检测到人脸，拒绝: {self.user_key}")
        else:
            logger.warning(
                f"验证失败: {self.user_key} ({reason.value}, 相似度: {similarity:.4f}, 阈值: {self.config.threshold})"
            )
        return self._finish(state, reason, similarity)


class FaceVerifier:
    """Factory for fresh verification attempts sharing the same collaborators."""

    def __init__(
        self,
        store: EnrollmentStore,
        extractor: DescriptorExtractor,
        comparator: Optional[SimilarityComparator] = None,
        event_log: Optional[VerificationEventLog] = None,
        config: Optional[VerifierConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.extractor = extractor
        self.comparator = comparator or SimilarityComparator()
        self.event_log = event_log
        self.config = config or VerifierConfig()
        self._sleep = sleep

    def new_attempt(self, user_key: str) -> VerificationAttempt:
        return VerificationAttempt(
            user_key,
            store=self.store,
            extractor=self.extractor,
            comparator=self.comparator,
            event_log=self.event_log,
            config=self.config,
            sleep=self._sleep,
        )

    def verify(self, user_key: str, frame_source: FrameSource, source_tag: Optional[str] = None) -> VerificationResult:
        return self.new_attempt(user_key).run(frame_source, source_tag=source_tag)
