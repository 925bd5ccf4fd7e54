from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.config import SIMILARITY_THRESHOLD
from src.face.comparator import SimilarityComparator
from src.face.extractor import DescriptorExtractor
from src.face.gallery import InMemoryEnrollmentStore, InMemoryVerificationLog, VerificationEventLog
from src.face.provider import StaticKeypointProvider
from src.face.types import DetectedFace, FaceDescriptor, Keypoint
from src.face.verifier import (
    DecisionReason,
    FaceVerifier,
    VerificationAttempt,
    VerificationState,
    VerifierConfig,
    decide,
)


def _frame() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


def _face_from_values(values) -> DetectedFace:
    pts = np.asarray(values, dtype=float).reshape(-1, 2)
    return DetectedFace(keypoints=tuple(Keypoint(x=float(x), y=float(y)) for x, y in pts))


class _SpyComparator(SimilarityComparator):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def compare(self, a, b):
        self.calls += 1
        return super().compare(a, b)


class _FailingLog(VerificationEventLog):
    def append(self, event):
        raise OSError("disk full")


def _make_verifier(stored_values, live_faces, event_log=None, comparator=None):
    store = InMemoryEnrollmentStore()
    if stored_values is not None:
        store.save_enrollment("tag-1", FaceDescriptor(values=tuple(stored_values), captured_at=1.0), name="Ada")
    extractor = DescriptorExtractor(StaticKeypointProvider(live_faces))
    return FaceVerifier(
        store,
        extractor,
        comparator=comparator or _SpyComparator(),
        event_log=event_log if event_log is not None else InMemoryVerificationLog(),
        config=VerifierConfig(warmup_seconds=0.0),
    )


def test_threshold_constant():
    assert SIMILARITY_THRESHOLD == 0.75


def test_matching_face_is_accepted_and_logged_once():
    log = InMemoryVerificationLog()
    verifier = _make_verifier([0.0] * 20, [_face_from_values([0.0] * 20)], event_log=log)
    result = verifier.verify("tag-1", _frame, source_tag="rfid")

    assert result.state == VerificationState.ACCEPTED
    assert result.accepted
    assert result.similarity == 1.0
    assert len(log.events) == 1
    event = log.events[0]
    assert event.user_key == "tag-1"
    assert event.source_tag == "rfid"
    assert event.face_verified and event.rfid_verified


def test_distant_face_is_rejected_without_event():
    log = InMemoryVerificationLog()
    verifier = _make_verifier([0.0] * 20, [_face_from_values([1000.0] * 20)], event_log=log)
    result = verifier.verify("tag-1", _frame)

    assert result.state == VerificationState.REJECTED
    assert result.reason == DecisionReason.BELOW_THRESHOLD
    assert result.similarity == pytest.approx(0.0)
    assert log.events == []


def test_no_face_rejects_without_comparison_or_event():
    log = InMemoryVerificationLog()
    spy = _SpyComparator()
    verifier = _make_verifier([0.0] * 20, [], event_log=log, comparator=spy)
    result = verifier.verify("tag-1", _frame)

    assert result.state == VerificationState.REJECTED
    assert result.reason == DecisionReason.NO_FACE
    assert spy.calls == 0
    assert log.events == []


def test_missing_enrollment_rejects_without_capture_or_comparison():
    spy = _SpyComparator()
    frames_read = []
    verifier = _make_verifier(None, [_face_from_values([0.0] * 20)], comparator=spy)

    def _frames():
        frames_read.append(1)
        return _frame()

    result = verifier.verify("tag-1", _frames)
    assert result.state == VerificationState.REJECTED
    assert result.reason == DecisionReason.NO_ENROLLMENT
    assert spy.calls == 0
    assert frames_read == []


def test_length_mismatch_fails_closed():
    verifier = _make_verifier([0.0] * 20, [_face_from_values([0.0] * 12)])
    result = verifier.verify("tag-1", _frame)
    assert result.state == VerificationState.REJECTED
    assert result.reason == DecisionReason.LENGTH_MISMATCH
    assert result.similarity == 0.0


def test_similarity_equal_to_threshold_is_accepted():
    # distance 50 over 2 values -> similarity exactly 0.75
    verifier = _make_verifier([0.0, 0.0], [_face_from_values([50.0, 0.0])])
    result = verifier.verify("tag-1", _frame)
    assert result.similarity == 0.75
    assert result.accepted


def test_unreadable_camera_is_rejected():
    verifier = _make_verifier([0.0] * 20, [_face_from_values([0.0] * 20)])

    def _broken():
        raise RuntimeError("camera unplugged")

    assert verifier.verify("tag-1", _broken).reason == DecisionReason.NO_FACE
    assert verifier.verify("tag-1", lambda: None).reason == DecisionReason.NO_FACE


def test_event_log_failure_does_not_change_outcome():
    verifier = _make_verifier([0.0] * 20, [_face_from_values([0.0] * 20)], event_log=_FailingLog())
    assert verifier.verify("tag-1", _frame).accepted


def test_attempt_is_single_use():
    verifier = _make_verifier([0.0] * 20, [_face_from_values([0.0] * 20)])
    attempt = verifier.new_attempt("tag-1")
    assert attempt.state == VerificationState.IDLE
    attempt.run(_frame)
    assert attempt.state == VerificationState.ACCEPTED
    with pytest.raises(RuntimeError):
        attempt.run(_frame)


def test_attempt_waits_for_camera_warmup():
    sleeps = []
    store = InMemoryEnrollmentStore()
    store.save_enrollment("tag-1", FaceDescriptor(values=(0.0, 0.0)))
    attempt = VerificationAttempt(
        "tag-1",
        store=store,
        extractor=DescriptorExtractor(StaticKeypointProvider([_face_from_values([0.0, 0.0])])),
        comparator=SimilarityComparator(),
        config=VerifierConfig(warmup_seconds=1.0),
        sleep=sleeps.append,
    )
    assert attempt.run(_frame).accepted
    assert sleeps == [1.0]


def test_decision_is_a_pure_function():
    comparator = SimilarityComparator()
    stored = FaceDescriptor(values=tuple(float(i) for i in range(20)))
    live = FaceDescriptor(values=tuple(float(i) + 3.0 for i in range(20)))
    outcomes = {decide(stored, live, comparator, 0.75) for _ in range(5)}
    assert len(outcomes) == 1
    assert decide(None, live, comparator)[1] == DecisionReason.NO_ENROLLMENT
    assert decide(stored, None, comparator)[1] == DecisionReason.NO_FACE
