from __future__ import annotations

import time

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

# Returns the next frame (HxWxC BGR array) or None when the camera has nothing to give.
FrameSource = Callable[[], Optional[np.ndarray]]


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    # Only the order of keypoints matters downstream; the name is informational.
    name: str = ""


@dataclass(frozen=True)
class DetectedFace:
    """One face as returned by a keypoint provider."""

    keypoints: Tuple[Keypoint, ...]
    # Optional extras some providers report; used only by non-default selection policies.
    bbox: Optional[Tuple[float, float, float, float]] = None
    score: Optional[float] = None

    @property
    def area(self) -> float:
        if self.bbox is not None:
            x1, y1, x2, y2 = self.bbox
            return max(0.0, float(x2) - float(x1)) * max(0.0, float(y2) - float(y1))
        if not self.keypoints:
            return 0.0
        xs = [kp.x for kp in self.keypoints]
        ys = [kp.y for kp in self.keypoints]
        return (max(xs) - min(xs)) * (max(ys) - min(ys))


@dataclass(frozen=True)
class FaceDescriptor:
    """Flattened keypoint vector of one capture (or an average of several).

    `captured_at` is wall-clock time in seconds since the epoch.
    """

    values: Tuple[float, ...]
    captured_at: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))

    def __len__(self) -> int:
        return len(self.values)

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    @classmethod
    def from_keypoints(cls, keypoints: Sequence[Keypoint], captured_at: Optional[float] = None) -> "FaceDescriptor":
        values = []
        for kp in keypoints:
            values.append(float(kp.x))
            values.append(float(kp.y))
        if captured_at is None:
            captured_at = time.time()
        return cls(values=tuple(values), captured_at=float(captured_at))


def frame_size(frame) -> Tuple[int, int]:
    """Return (width, height) of an HxW[xC] frame; (0, 0) for None or degenerate input."""
    if frame is None:
        return 0, 0
    shape = getattr(frame, "shape", None)
    if shape is None or len(shape) < 2:
        return 0, 0
    return int(shape[1]), int(shape[0])


def is_valid_frame(frame) -> bool:
    w, h = frame_size(frame)
    return w > 0 and h > 0
