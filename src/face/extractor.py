from __future__ import annotations

import time

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from src.config import DETECT_TIMEOUT_SECONDS
from src.face.provider import KeypointProvider, detect_faces
from src.face.types import DetectedFace, FaceDescriptor
from src.utils.log import get_logger

logger = get_logger(__name__)

FaceSelector = Callable[[Sequence[DetectedFace]], DetectedFace]


def select_first_detected(faces: Sequence[DetectedFace]) -> DetectedFace:
    return faces[0]


def select_largest(faces: Sequence[DetectedFace]) -> DetectedFace:
    return max(faces, key=lambda f: f.area)


def select_highest_confidence(faces: Sequence[DetectedFace]) -> DetectedFace:
    return max(faces, key=lambda f: f.score if f.score is not None else float("-inf"))


SELECTION_POLICIES: Dict[str, FaceSelector] = {
    "first_detected": select_first_detected,
    "largest": select_largest,
    "highest_confidence": select_highest_confidence,
}


@dataclass
class ExtractorConfig:
    # Which face to use when several are detected. `first_detected` ignores size/score.
    selection_policy: str = "first_detected"
    detect_timeout: Optional[float] = DETECT_TIMEOUT_SECONDS


class DescriptorExtractor:
    """Turns one frame into a `FaceDescriptor` by flattening keypoints as [x0, y0, x1, y1, ...]."""

    def __init__(
        self,
        provider: KeypointProvider,
        config: Optional[ExtractorConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.config = config or ExtractorConfig()
        if self.config.selection_policy not in SELECTION_POLICIES:
            raise ValueError(
                f"Unknown selection policy {self.config.selection_policy!r}; "
                f"expected one of {sorted(SELECTION_POLICIES)}"
            )
        self._select = SELECTION_POLICIES[self.config.selection_policy]
        self._clock = clock

    def describe(self, faces: Sequence[DetectedFace]) -> Optional[FaceDescriptor]:
        """Build a descriptor from an already obtained detection result."""
        if not faces:
            return None
        face = self._select(faces)
        if not face.keypoints:
            # A face without landmarks cannot be compared with anything.
            return None
        return FaceDescriptor.from_keypoints(face.keypoints, captured_at=self._clock())

    def extract(self, frame: np.ndarray) -> Optional[FaceDescriptor]:
        """Detect and describe; returns None when no face is found (not an error)."""
        faces = detect_faces(self.provider, frame, timeout=self.config.detect_timeout)
        descriptor = self.describe(faces)
        if descriptor is None:
            logger.info("未检测到人脸")
            return None

        if len(faces) > 1:
            logger.debug(f"检测到 {len(faces)} 张人脸，按 {self.config.selection_policy} 选择")
        logger.debug(f"descriptor 长度: {len(descriptor)}")
        return descriptor
