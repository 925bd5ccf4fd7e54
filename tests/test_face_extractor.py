from __future__ import annotations

import sys
import time

from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.face.extractor import DescriptorExtractor, ExtractorConfig
from src.face.provider import (
    InsightFaceKeypointProvider,
    KeypointProvider,
    ProviderConfig,
    StaticKeypointProvider,
    detect_faces,
)
from src.face.types import DetectedFace, Keypoint


def _frame(w: int = 640, h: int = 480) -> np.ndarray:
    return np.zeros((h, w, 3), dtype=np.uint8)


def _face(points, bbox=None, score=None) -> DetectedFace:
    return DetectedFace(keypoints=tuple(Keypoint(x=x, y=y) for x, y in points), bbox=bbox, score=score)


class _CountingProvider(KeypointProvider):
    def __init__(self, faces=()):
        self.faces = list(faces)
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        return list(self.faces)


class _SlowProvider(KeypointProvider):
    def detect(self, frame):
        time.sleep(1.0)
        return [_face([(1.0, 2.0)])]


class _BrokenProvider(KeypointProvider):
    def detect(self, frame):
        raise RuntimeError("model not loaded")


def test_keypoints_flatten_in_provider_order():
    provider = StaticKeypointProvider([_face([(10.0, 20.0), (30.0, 40.0), (5.5, 6.5)])])
    extractor = DescriptorExtractor(provider, clock=lambda: 42.0)
    d = extractor.extract(_frame())
    assert d is not None
    assert d.values == (10.0, 20.0, 30.0, 40.0, 5.5, 6.5)
    assert d.captured_at == 42.0


def test_no_face_returns_none():
    assert DescriptorExtractor(StaticKeypointProvider([])).extract(_frame()) is None


def test_first_detected_face_wins_by_default():
    small_first = _face([(0.0, 0.0), (1.0, 1.0)], bbox=(0, 0, 1, 1), score=0.2)
    large_second = _face([(100.0, 100.0), (300.0, 300.0)], bbox=(100, 100, 300, 300), score=0.9)
    d = DescriptorExtractor(StaticKeypointProvider([small_first, large_second])).extract(_frame())
    assert d.values == (0.0, 0.0, 1.0, 1.0)


@pytest.mark.parametrize("policy", ["largest", "highest_confidence"])
def test_alternative_selection_policies(policy: str):
    small_first = _face([(0.0, 0.0), (1.0, 1.0)], bbox=(0, 0, 1, 1), score=0.2)
    large_second = _face([(100.0, 100.0), (300.0, 300.0)], bbox=(100, 100, 300, 300), score=0.9)
    extractor = DescriptorExtractor(
        StaticKeypointProvider([small_first, large_second]), ExtractorConfig(selection_policy=policy)
    )
    assert extractor.extract(_frame()).values == (100.0, 100.0, 300.0, 300.0)


def test_unknown_selection_policy_is_rejected():
    with pytest.raises(ValueError):
        DescriptorExtractor(StaticKeypointProvider([]), ExtractorConfig(selection_policy="best"))


@pytest.mark.parametrize("frame", [None, np.zeros((0, 640, 3), dtype=np.uint8), np.zeros((480, 0, 3), dtype=np.uint8)])
def test_degenerate_frames_never_reach_provider(frame):
    provider = _CountingProvider([_face([(1.0, 1.0)])])
    assert DescriptorExtractor(provider).extract(frame) is None
    assert provider.calls == 0


def test_detection_timeout_is_treated_as_no_face():
    st = time.time()
    assert detect_faces(_SlowProvider(), _frame(), timeout=0.05) == []
    assert time.time() - st < 0.9


def test_provider_error_is_treated_as_no_face():
    assert detect_faces(_BrokenProvider(), _frame(), timeout=1.0) == []
    assert detect_faces(_BrokenProvider(), _frame(), timeout=None) == []
    assert DescriptorExtractor(_BrokenProvider()).extract(_frame()) is None


class _FakeFaceAnalysis:
    """Mimics insightface FaceAnalysis.get(): objects with bbox/kps/det_score."""

    def __init__(self, faces):
        self.faces = faces

    def get(self, img):
        return self.faces


def test_insightface_adapter_exposes_kps_as_keypoints():
    kps = np.array([[100, 120], [140, 121], [120, 140], [105, 160], [138, 161]], dtype=np.float32)
    app = _FakeFaceAnalysis(
        [
            SimpleNamespace(bbox=np.array([90, 100, 150, 180], dtype=np.float32), kps=kps, det_score=0.93),
            SimpleNamespace(bbox=np.array([0, 0, 10, 10], dtype=np.float32), kps=None, det_score=0.5),
        ]
    )
    faces = InsightFaceKeypointProvider(app=app).detect(_frame())
    assert len(faces) == 1
    face = faces[0]
    assert [kp.name for kp in face.keypoints] == ["left_eye", "right_eye", "nose", "mouth_left", "mouth_right"]
    assert [(kp.x, kp.y) for kp in face.keypoints] == [tuple(map(float, p)) for p in kps]
    assert face.bbox == (90.0, 100.0, 150.0, 180.0)
    assert face.score == pytest.approx(0.93)

    d = DescriptorExtractor(InsightFaceKeypointProvider(app=app)).extract(_frame())
    assert len(d) == 10


def test_face_without_keypoints_is_treated_as_no_face():
    provider = StaticKeypointProvider([DetectedFace(keypoints=(), bbox=(0.0, 0.0, 50.0, 50.0), score=0.9)])
    assert DescriptorExtractor(provider).extract(_frame()) is None


def test_model_loading_is_not_charged_to_detection_timeout(monkeypatch: pytest.MonkeyPatch):
    kps = np.array([[100, 120], [140, 121], [120, 140], [105, 160], [138, 161]], dtype=np.float32)
    loads = []

    def slow_load(self, providers, ctx_id, det_size):
        loads.append(self.config.model_name)
        time.sleep(0.5)
        return _FakeFaceAnalysis([SimpleNamespace(bbox=None, kps=kps, det_score=0.9)])

    monkeypatch.setattr(InsightFaceKeypointProvider, "_load_app", slow_load)
    provider = InsightFaceKeypointProvider(ProviderConfig(model_name="slow-load-test", device="cpu"))
    extractor = DescriptorExtractor(provider, ExtractorConfig(detect_timeout=0.2))

    d = extractor.extract(_frame())
    assert d is not None
    assert len(d) == 10
    assert loads == ["slow-load-test"]


def test_unloadable_model_is_treated_as_no_face():
    class _UnloadableProvider(_CountingProvider):
        def prepare(self):
            raise RuntimeError("model files missing")

    provider = _UnloadableProvider([_face([(1.0, 1.0)])])
    assert detect_faces(provider, _frame(), timeout=1.0) == []
    assert provider.calls == 0


def test_provider_interface_is_abstract():
    with pytest.raises(TypeError):
        KeypointProvider()
