from __future__ import annotations

import time

from typing import Callable, Optional, Sequence

import numpy as np

from src.face.errors import EmptyBatch, LengthMismatch
from src.face.types import FaceDescriptor


def aggregate_descriptors(
    descriptors: Sequence[FaceDescriptor],
    clock: Callable[[], float] = time.time,
    captured_at: Optional[float] = None,
) -> FaceDescriptor:
    """Element-wise mean of same-length descriptors captured in one session.

    The result is stamped with the aggregation time, not any input's time.
    Raises `EmptyBatch` for no input and `LengthMismatch` when lengths differ;
    nothing is truncated or padded.
    """
    descriptors = list(descriptors)
    if not descriptors:
        raise EmptyBatch("Cannot aggregate an empty batch of descriptors")

    lengths = {len(d) for d in descriptors}
    if len(lengths) != 1:
        raise LengthMismatch(f"Descriptor lengths differ: {sorted(lengths)}")

    mat = np.stack([d.as_array() for d in descriptors], axis=0)
    mean = np.mean(mat, axis=0)
    if captured_at is None:
        captured_at = clock()
    return FaceDescriptor(values=tuple(float(v) for v in mean), captured_at=float(captured_at))
