from typing import Any, Dict, Optional

from src.face.types import FaceDescriptor


def serialize_descriptor(descriptor: FaceDescriptor) -> Dict:
    """Serialize a descriptor into the stored JSON shape `{descriptor, timestamp}`.

    timestamp: integer milliseconds since the epoch.
    """
    return {
        "descriptor": [float(v) for v in descriptor.values],
        "timestamp": int(round(float(descriptor.captured_at) * 1000.0)),
    }


def deserialize_descriptor(data: Any) -> Optional[FaceDescriptor]:
    """Inverse of `serialize_descriptor`; returns None for missing or malformed records.

    A bare list of numbers is accepted as a descriptor without timestamp.
    """
    if data is None:
        return None
    if isinstance(data, (list, tuple)):
        values, ts_ms = data, 0
    elif isinstance(data, dict):
        values = data.get("descriptor")
        ts_ms = data.get("timestamp") or 0
    else:
        return None
    if not values:
        return None
    try:
        return FaceDescriptor(values=tuple(float(v) for v in values), captured_at=float(ts_ms) / 1000.0)
    except (TypeError, ValueError):
        return None


def serialize_result(result) -> Dict:
    """Serialize a VerificationResult-like object for JSON output."""
    ed = {
        "user_key": str(getattr(result, "user_key", "")),
        "state": str(getattr(getattr(result, "state", None), "value", getattr(result, "state", ""))),
        "reason": str(getattr(getattr(result, "reason", None), "value", getattr(result, "reason", ""))),
        "accepted": bool(getattr(result, "accepted", False)),
    }
    sim = getattr(result, "similarity", None)
    ed["similarity"] = round(float(sim), 4) if sim is not None else None
    return ed
