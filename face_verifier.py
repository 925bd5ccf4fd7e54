"""命令行入口：人脸注册（多帧平均）与人脸验证（单帧比对）。

核心实现位于 `src/face/`；此文件负责打开/释放摄像头并组装各组件。
"""

from __future__ import annotations

import argparse
import json
import sys
import time

from pathlib import Path

from src.config import (
    CAMERA_WARMUP_SECONDS,
    CAPTURE_COUNT,
    CAPTURE_INTERVAL_SECONDS,
    DATA_DIR,
    DEFAULT_SOURCE_TAG,
    DETECT_TIMEOUT_SECONDS,
    DISTANCE_SCALE,
    SIMILARITY_THRESHOLD,
)
from src.face.comparator import ComparatorConfig, SimilarityComparator
from src.face.enrollment import EnrollmentConfig, FaceEnroller
from src.face.errors import EnrollmentAborted
from src.face.extractor import SELECTION_POLICIES, DescriptorExtractor, ExtractorConfig
from src.face.gallery import JsonEnrollmentStore, JsonlVerificationLog
from src.face.provider import InsightFaceKeypointProvider, ProviderConfig
from src.face.verifier import FaceVerifier, VerifierConfig
from src.utils.log import get_logger, set_verbosity
from src.utils.serializer import serialize_result
from src.video.camera import CameraFrameSource, open_camera

logger = get_logger(__name__)


def _camera_device(value: str):
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="人脸注册与验证（基于关键点 descriptor）")
    parser.add_argument("--data-dir", "-d", default=DATA_DIR, help=f"人脸数据目录（默认 {DATA_DIR}）")
    parser.add_argument("--camera", "-c", type=_camera_device, default=0, help="摄像头索引或视频流地址")
    parser.add_argument("--model", default="buffalo_l", help="InsightFace 模型名称（默认 buffalo_l）")
    parser.add_argument("--det-size", type=int, default=640, help="InsightFace det_size（默认 640）")
    parser.add_argument("--device", default="auto", choices=["auto", "cpu", "gpu"], help="计算设备")
    parser.add_argument(
        "--selection-policy",
        default="first_detected",
        choices=sorted(SELECTION_POLICIES),
        help="多张人脸时的选择策略（默认 first_detected）",
    )
    parser.add_argument("--detect-timeout", type=float, default=DETECT_TIMEOUT_SECONDS, help="单次检测超时（秒）")
    parser.add_argument("--distance-scale", type=float, default=DISTANCE_SCALE, help="距离归一化尺度")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="输出调试日志")

    sub = parser.add_subparsers(dest="command", required=True)

    p_enroll = sub.add_parser("enroll", help="注册/更新用户人脸")
    p_enroll.add_argument("user_key", help="用户标识（如 RFID 标签）")
    p_enroll.add_argument("--name", default=None, help="用户姓名")
    p_enroll.add_argument("--captures", "-n", type=int, default=CAPTURE_COUNT, help="采集次数")
    p_enroll.add_argument("--interval", "-i", type=float, default=CAPTURE_INTERVAL_SECONDS, help="采集间隔（秒）")

    p_verify = sub.add_parser("verify", help="验证用户人脸")
    p_verify.add_argument("user_key", help="用户标识（如 RFID 标签）")
    p_verify.add_argument("--source-tag", default=DEFAULT_SOURCE_TAG, help="事件来源标记")
    p_verify.add_argument("--threshold", "-t", type=float, default=SIMILARITY_THRESHOLD, help="相似度阈值")
    p_verify.add_argument("--warmup", type=float, default=CAMERA_WARMUP_SECONDS, help="摄像头预热等待（秒）")
    p_verify.add_argument("--output-json", "-j", default=None, help="验证结果 JSON 输出路径")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_verbosity(args.verbose)

    data_dir = Path(args.data_dir)
    store = JsonEnrollmentStore(data_dir)
    provider = InsightFaceKeypointProvider(
        ProviderConfig(model_name=args.model, det_size=int(args.det_size), device=str(args.device))
    )
    # 先加载模型：检测超时只覆盖推理，不包含模型下载/初始化
    try:
        provider.prepare()
    except Exception:
        return 1
    extractor = DescriptorExtractor(
        provider,
        ExtractorConfig(selection_policy=args.selection_policy, detect_timeout=float(args.detect_timeout)),
    )

    with open_camera(args.camera) as cap:
        frames = CameraFrameSource(cap)

        if args.command == "enroll":
            enroller = FaceEnroller(
                extractor,
                store,
                EnrollmentConfig(capture_count=int(args.captures), interval_seconds=float(args.interval)),
            )
            try:
                result = enroller.enroll(
                    args.user_key,
                    frames,
                    name=args.name,
                    on_progress=lambda i, n: logger.info(f"采集进度: {i}/{n}"),
                )
            except EnrollmentAborted as e:
                logger.error(f"注册中止: {e}")
                return 1
            return 0 if result.saved else 1

        verifier = FaceVerifier(
            store,
            extractor,
            comparator=SimilarityComparator(ComparatorConfig(distance_scale=float(args.distance_scale))),
            event_log=JsonlVerificationLog(data_dir),
            config=VerifierConfig(
                threshold=float(args.threshold),
                warmup_seconds=float(args.warmup),
                source_tag=str(args.source_tag),
            ),
        )
        result = verifier.verify(args.user_key, frames)

    if args.output_json:
        with open(args.output_json, "w", encoding="utf-8") as f:
            json.dump(serialize_result(result), f, ensure_ascii=False, indent=2)
        logger.info(f"验证结果已保存至: {args.output_json}")
    return 0 if result.accepted else 1


if __name__ == "__main__":
    st = time.time()
    code = main()
    ed = time.time()
    logger.info(f"总耗时: {ed - st:.2f} 秒")
    sys.exit(code)
