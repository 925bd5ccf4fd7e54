"""Keypoint providers: the external detector seen through a minimal contract.

A provider maps one frame to zero or more `DetectedFace`, each an ordered list of
2-D keypoints. `detect_faces` is the only entry point the rest of the core uses:
it guards degenerate frames, bounds the call with a timeout and turns any provider
failure into "no faces".
"""
from __future__ import annotations

import concurrent.futures

from abc import ABC, abstractmethod

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.config import DETECT_TIMEOUT_SECONDS, FRAME_WIDTH
from src.face.types import DetectedFace, Keypoint, frame_size, is_valid_frame
from src.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)

# InsightFace 5 点关键点顺序（图像视角）
INSIGHTFACE_KEYPOINT_NAMES: Tuple[str, ...] = ("left_eye", "right_eye", "nose", "mouth_left", "mouth_right")

_FACEAPP_CACHE: Dict[Tuple, Any] = {}


class KeypointProvider(ABC):
    """Abstract interface for keypoint detectors."""

    def prepare(self) -> None:
        """Load models ahead of the first `detect`; a no-op for providers without one."""
        return None

    @abstractmethod
    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        """Return the faces found in a BGR frame (H, W, 3), possibly none."""
        pass


class StaticKeypointProvider(KeypointProvider):
    """Returns a fixed list of faces for every frame (replay / fixtures)."""

    def __init__(self, faces: Sequence[DetectedFace] = ()):
        self.faces = list(faces)

    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        return list(self.faces)


def detect_faces(
    provider: KeypointProvider,
    frame: np.ndarray,
    timeout: Optional[float] = DETECT_TIMEOUT_SECONDS,
) -> List[DetectedFace]:
    """Run `provider.detect` on a frame; never raises.

    Degenerate frames are not handed to the provider. Timeouts and provider errors
    are logged and reported as an empty result.
    """
    if not is_valid_frame(frame):
        w, h = frame_size(frame)
        logger.warning(f"视频帧尺寸无效: {w}x{h}，跳过检测")
        return []

    # Model loading is not part of the detection budget.
    try:
        provider.prepare()
    except Exception as e:
        logger.warning(f"人脸检测模型不可用: {e}")
        return []

    if timeout is None:
        try:
            faces = provider.detect(frame)
        except Exception as e:
            logger.warning(f"人脸检测失败: {e}")
            return []
        return list(faces or [])

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(provider.detect, frame)
    try:
        faces = future.result(timeout=float(timeout))
    except concurrent.futures.TimeoutError:
        logger.warning(f"人脸检测超时 ({float(timeout):.1f}s)")
        return []
    except Exception as e:
        logger.warning(f"人脸检测失败: {e}")
        return []
    finally:
        # A timed-out call keeps running in its worker; do not block on it.
        executor.shutdown(wait=False)

    logger.debug(f"检测结果: {len(faces or [])} 张人脸")
    return list(faces or [])


@dataclass
class ProviderConfig:
    model_name: str = "buffalo_l"
    det_size: int = FRAME_WIDTH
    # 'auto' picks CUDA when onnxruntime exposes it.
    device: str = "auto"


def _select_onnx_providers(device: str) -> Tuple[List[str], int]:
    if device == "cpu":
        return ["CPUExecutionProvider"], -1
    try:
        import onnxruntime as ort

        avail = ort.get_available_providers()
    except Exception:
        avail = []
    if "CUDAExecutionProvider" in avail:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"], 0
    if device == "gpu":
        logger.warning("请求 GPU 但 onnxruntime 未提供 CUDAExecutionProvider，回退到 CPU")
    return ["CPUExecutionProvider"], -1


class InsightFaceKeypointProvider(KeypointProvider):
    """InsightFace detector exposing its 5-point landmarks (`face.kps`) as keypoints.

    Only the detection module is loaded; recognition embeddings are not used.
    An already prepared `FaceAnalysis`-like object may be passed as `app`.
    """

    def __init__(self, config: Optional[ProviderConfig] = None, app: Any = None):
        self.config = config or ProviderConfig()
        self._app = app

    def _ensure_app(self):
        if self._app is not None:
            return self._app

        providers, ctx_id = _select_onnx_providers(self.config.device)
        det_size = (int(self.config.det_size), int(self.config.det_size))
        key = (str(self.config.model_name), tuple(providers), int(ctx_id), det_size)
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            self._app = cached
            return cached

        try:
            app = self._load_app(providers, ctx_id, det_size)
        except Exception as e:
            logger.error(f"模型初始化失败: {e}")
            raise
        logger.info(f"已加载 InsightFace 检测模型: {self.config.model_name} ({providers[0]})")
        _FACEAPP_CACHE[key] = app
        self._app = app
        return app

    def _load_app(self, providers: List[str], ctx_id: int, det_size: Tuple[int, int]):
        from insightface.app import FaceAnalysis

        with suppress_fds():
            app = FaceAnalysis(
                name=self.config.model_name,
                providers=providers,
                allowed_modules=["detection"],
            )
            app.prepare(ctx_id=ctx_id, det_size=det_size)
        return app

    def prepare(self) -> None:
        self._ensure_app()

    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        app = self._ensure_app()
        out: List[DetectedFace] = []
        for f in app.get(frame) or []:
            kps = getattr(f, "kps", None)
            if kps is None:
                continue
            pts = np.asarray(kps, dtype=np.float64).reshape(-1, 2)
            keypoints = tuple(
                Keypoint(
                    x=float(x),
                    y=float(y),
                    name=INSIGHTFACE_KEYPOINT_NAMES[i] if i < len(INSIGHTFACE_KEYPOINT_NAMES) else f"kp{i}",
                )
                for i, (x, y) in enumerate(pts)
            )
            bbox = getattr(f, "bbox", None)
            score = getattr(f, "det_score", None)
            out.append(
                DetectedFace(
                    keypoints=keypoints,
                    bbox=tuple(float(v) for v in np.asarray(bbox).reshape(-1)[:4]) if bbox is not None else None,
                    score=float(score) if score is not None else None,
                )
            )
        return out
