"""Persistence collaborators: enrolled descriptors and the verification audit log.

One user owns at most one enrollment; saving overwrites the descriptor wholesale.
Concurrent writers for the same user are not coordinated (last writer wins).
"""
from __future__ import annotations

import json
import os
import threading
import time

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from src.config import ENROLLMENT_SCHEMA_VERSION
from src.face.errors import NoEnrollmentOnFile
from src.face.types import FaceDescriptor
from src.utils.log import get_logger
from src.utils.serializer import deserialize_descriptor, serialize_descriptor

logger = get_logger(__name__)


@dataclass
class StoreConfig:
    # File name for persisted enrollments.
    filename: str = "enrollments.json"
    # Append-only verification events (one JSON object per line).
    events_filename: str = "verification_events.jsonl"
    # Schema version to support future migrations.
    schema_version: str = ENROLLMENT_SCHEMA_VERSION


@dataclass
class VerificationEvent:
    user_key: str
    source_tag: str
    face_verified: bool = True
    rfid_verified: bool = True
    similarity: Optional[float] = None
    at: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "user_key": str(self.user_key),
            "source_tag": str(self.source_tag),
            "face_verified": bool(self.face_verified),
            "rfid_verified": bool(self.rfid_verified),
            "similarity": float(self.similarity) if self.similarity is not None else None,
            "at": float(self.at),
        }


class EnrollmentStore(ABC):
    """Interface: load / overwrite the enrollment descriptor of a user."""

    @abstractmethod
    def load_enrollment(self, user_key: str) -> Optional[FaceDescriptor]:
        """Stored descriptor of `user_key`, or None when nothing usable is on file."""
        pass

    def require_enrollment(self, user_key: str) -> FaceDescriptor:
        descriptor = self.load_enrollment(user_key)
        if descriptor is None:
            raise NoEnrollmentOnFile(f"No face enrolled for {user_key}")
        return descriptor

    @abstractmethod
    def save_enrollment(self, user_key: str, descriptor: FaceDescriptor, name: Optional[str] = None) -> bool:
        """Overwrite the descriptor of `user_key`; False when it could not be persisted."""
        pass


class VerificationEventLog(ABC):
    """Interface: append-only audit log of successful verifications."""

    @abstractmethod
    def append(self, event: VerificationEvent) -> None:
        pass


class InMemoryEnrollmentStore(EnrollmentStore):
    def __init__(self):
        self.records: Dict[str, Dict] = {}

    def load_enrollment(self, user_key: str) -> Optional[FaceDescriptor]:
        rec = self.records.get(str(user_key))
        if not rec:
            return None
        return deserialize_descriptor(rec.get("face_embedding"))

    def save_enrollment(self, user_key: str, descriptor: FaceDescriptor, name: Optional[str] = None) -> bool:
        rec = dict(self.records.get(str(user_key)) or {"id": str(user_key)})
        if name is not None:
            rec["name"] = str(name)
        rec["face_embedding"] = serialize_descriptor(descriptor)
        self.records[str(user_key)] = rec
        return True


class InMemoryVerificationLog(VerificationEventLog):
    def __init__(self):
        self.events: List[VerificationEvent] = []

    def append(self, event: VerificationEvent) -> None:
        self.events.append(event)


class JsonEnrollmentStore(EnrollmentStore):
    """Enrollments kept in a single JSON document under `data_dir`.

    Layout: {"schema_version": ..., "users": {user_key: {"id", "name", "face_embedding"}}}.
    Fields other than name/face_embedding of an existing record are preserved.
    """

    def __init__(self, data_dir: Path, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.data_dir / self.config.filename

    def _read(self) -> Dict[str, Dict]:
        fp = self.path
        if not fp.exists():
            return {}
        with open(fp, "r", encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict) and data.get("schema_version") == self.config.schema_version:
            return data.get("users", {}) or {}

        # Unversioned: plain {user_key: record} mapping.
        if isinstance(data, dict) and "schema_version" not in data:
            return {str(k): v for k, v in data.items() if isinstance(v, dict)}

        # Unknown layout: leave the file as it is.
        raise ValueError(f"未知的图库格式: {fp}")

    def _write(self, users: Dict[str, Dict]) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fp = self.path
        tmp = fp.with_suffix(fp.suffix + ".tmp")
        data = {"schema_version": self.config.schema_version, "users": users}
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, fp)
        return fp

    def load_enrollment(self, user_key: str) -> Optional[FaceDescriptor]:
        try:
            users = self._read()
        except (OSError, ValueError) as e:
            logger.error(f"读取图库失败: {e}")
            return None
        rec = users.get(str(user_key))
        if not rec:
            return None
        return deserialize_descriptor(rec.get("face_embedding"))

    def save_enrollment(self, user_key: str, descriptor: FaceDescriptor, name: Optional[str] = None) -> bool:
        key = str(user_key)
        with self._lock:
            try:
                users = self._read()
                existing = users.get(key)
                rec = dict(existing or {"id": key})
                if name is not None:
                    rec["name"] = str(name)
                rec["face_embedding"] = serialize_descriptor(descriptor)
                users[key] = rec
                fp = self._write(users)
            except (OSError, ValueError) as e:
                logger.error(f"保存 {key} 的人脸数据失败: {e}")
                return False
        action = "更新" if existing else "新增"
        logger.info(f"{action}用户 {key}: descriptor 长度 {len(descriptor)} -> {fp}")
        return True


class JsonlVerificationLog(VerificationEventLog):
    def __init__(self, data_dir: Path, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.data_dir / self.config.events_filename

    def append(self, event: VerificationEvent) -> None:
        rec = event.to_dict()
        if not rec["at"]:
            rec["at"] = time.time()
        with self._lock:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")

    def read_all(self) -> List[Dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
