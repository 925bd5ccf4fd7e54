import os

# ====== Verification ======
# 相似度阈值：>= 即视为同一人（与已存储的阈值保持兼容，勿随意修改）
SIMILARITY_THRESHOLD = float(os.getenv("FACE_SIMILARITY_THRESHOLD", "0.75"))

# 距离归一化尺度：normalized = d / (len(values) * DISTANCE_SCALE)
# 经验值，隐含了检测器坐标单位（640x480 像素空间）的假设，换检测器需重新标定
DISTANCE_SCALE = float(os.getenv("FACE_DISTANCE_SCALE", "100.0"))

# ====== Capture plan ======
CAPTURE_COUNT = 5
CAPTURE_INTERVAL_SECONDS = 0.5
CAMERA_WARMUP_SECONDS = 1.0
DETECT_TIMEOUT_SECONDS = 5.0

FRAME_WIDTH = 640
FRAME_HEIGHT = 480

# ====== Persistence ======
DATA_DIR = os.getenv("FACE_DATA_DIR", "data/faces")
ENROLLMENT_SCHEMA_VERSION = "v1"
DEFAULT_SOURCE_TAG = "rfid"
