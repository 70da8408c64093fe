import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("FACE_DATA_DIR", str(BASE_DIR / "data")))
LOG_DIR = Path(os.getenv("FACE_LOG_DIR", str(BASE_DIR / "logs")))
DB_PATH = DATA_DIR / "attendance.db"

LOG_FILE = LOG_DIR / "face_checkin.log"
LOG_LEVEL = os.getenv("FACE_LOG_LEVEL", "INFO").strip().upper()
LOG_MAX_BYTES = _int_env("FACE_LOG_MAX_BYTES", 2_000_000)
LOG_BACKUP_COUNT = _int_env("FACE_LOG_BACKUP_COUNT", 5)

# Webcam settings. Width/height/fps are the ideal constraints; the camera
# falls back to device defaults when they cannot be honoured.
CAMERA_INDEX = _int_env("FACE_CAMERA_INDEX", 0)
FRAME_WIDTH = _int_env("FACE_FRAME_WIDTH", 1280)
FRAME_HEIGHT = _int_env("FACE_FRAME_HEIGHT", 720)
FRAME_FPS = _int_env("FACE_FRAME_FPS", 30)
CAMERA_PROBE_READS = _int_env("FACE_CAMERA_PROBE_READS", 6)
POLL_INTERVAL_SECONDS = _float_env("FACE_POLL_INTERVAL_SECONDS", 0.1)
JPEG_QUALITY = _int_env("FACE_JPEG_QUALITY", 90)

# Detector settings
FACE_DETECTION_THRESHOLD = _float_env("FACE_DETECTION_THRESHOLD", 0.8)
MIN_FACE_SIZE = _int_env("FACE_MIN_FACE_SIZE", 60)

# Quality gate
MIN_FACE_WIDTH_RATIO = _float_env("FACE_MIN_FACE_WIDTH_RATIO", 0.25)
MAX_FACE_WIDTH_RATIO = _float_env("FACE_MAX_FACE_WIDTH_RATIO", 0.70)
CENTER_TOLERANCE_RATIO = _float_env("FACE_CENTER_TOLERANCE_RATIO", 0.15)
MIN_POSE_RATIO = _float_env("FACE_MIN_POSE_RATIO", 0.5)
MAX_POSE_RATIO = _float_env("FACE_MAX_POSE_RATIO", 2.0)
DISTANCE_PENALTY = 20.0
CENTERING_PENALTY = 20.0
HEAD_POSE_PENALTY = 30.0

# Stability tracker (frames)
ENROLL_STABILITY_FRAMES = _int_env("FACE_ENROLL_STABILITY_FRAMES", 15)
SCAN_STABILITY_FRAMES = _int_env("FACE_SCAN_STABILITY_FRAMES", 3)
STABILITY_COOLDOWN_FRAMES = _int_env("FACE_STABILITY_COOLDOWN_FRAMES", 20)

# Recognition settings (euclidean distance between descriptors)
MATCH_DISTANCE_THRESHOLD = _float_env("FACE_MATCH_DISTANCE_THRESHOLD", 0.6)

# Attendance settings
ATTENDANCE_COOLDOWN_SECONDS = _float_env("FACE_ATTENDANCE_COOLDOWN_SECONDS", 30.0)
LATE_GRACE_MINUTES = _int_env("FACE_LATE_GRACE_MINUTES", 5)

# Shell overlay
DRAW_LANDMARKS = _bool_env("FACE_DRAW_LANDMARKS", False)
