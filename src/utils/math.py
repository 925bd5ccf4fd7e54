from __future__ import annotations

from typing import Sequence

import numpy as np


def as_vector(values: Sequence[float]) -> np.ndarray:
    """Flatten a sequence of numbers into a 1D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance for 1D vectors of equal length."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape != vb.shape:
        raise ValueError(f"Shape mismatch: {va.shape} vs {vb.shape}")
    return float(np.sqrt(np.sum((va - vb) ** 2)))


def clamp01(x: float) -> float:
    if not np.isfinite(x):
        return 0.0
    if x < 0.0:
        return 0.0
    if x > 1.0:
        return 1.0
    return float(x)
