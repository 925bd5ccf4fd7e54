from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.config import DISTANCE_SCALE
from src.face.types import FaceDescriptor
from src.utils.log import get_logger
from src.utils.math import clamp01, euclidean_distance

logger = get_logger(__name__)


@dataclass
class ComparatorConfig:
    # normalized = distance / (len(values) * distance_scale). Assumes pixel
    # coordinates at the capture resolution; recalibrate for another detector.
    distance_scale: float = DISTANCE_SCALE


class SimilarityComparator:
    """Similarity in [0, 1] from the Euclidean distance between keypoint vectors.

    Descriptors of different (or zero) length are not comparable and score 0.0,
    so verification fails closed instead of raising.
    """

    def __init__(self, config: Optional[ComparatorConfig] = None):
        self.config = config or ComparatorConfig()
        if float(self.config.distance_scale) <= 0.0:
            raise ValueError(f"distance_scale must be positive, got {self.config.distance_scale}")

    def normalized_distance(self, a: FaceDescriptor, b: FaceDescriptor) -> float:
        d = euclidean_distance(a.values, b.values)
        return d / (len(a.values) * float(self.config.distance_scale))

    def compare(self, a: FaceDescriptor, b: FaceDescriptor) -> float:
        if len(a.values) != len(b.values):
            logger.warning(f"descriptor 长度不一致: {len(a.values)} vs {len(b.values)}，视为不匹配")
            return 0.0
        if not a.values:
            return 0.0
        return clamp01(1.0 - self.normalized_distance(a, b))


def compare_descriptors(a: FaceDescriptor, b: FaceDescriptor, distance_scale: float = DISTANCE_SCALE) -> float:
    return SimilarityComparator(ComparatorConfig(distance_scale=distance_scale)).compare(a, b)
