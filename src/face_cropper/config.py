"""Project-wide configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(os.environ.get("FACE_CROPPER_PROJECT_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

DB_PATH = PROJECT_ROOT / "face_cropper.duckdb"
OUTPUT_DIR = Path(os.environ.get("FACE_CROPPER_OUTPUT_DIR", PROJECT_ROOT / "output"))

# Face detection – InsightFace
DETECTOR_MODEL_NAME = os.environ.get("FACE_CROPPER_DETECTOR_MODEL", "buffalo_l")
DETECTOR_DEVICE = os.environ.get("FACE_CROPPER_DEVICE", "cpu")
DETECTOR_INPUT_SIZE = (640, 640)

# Detection dispatch
WORKER_TIMEOUT_SECONDS = float(os.environ.get("FACE_CROPPER_WORKER_TIMEOUT", "30"))
RETRY_BASE_DELAY_SECONDS = float(os.environ.get("FACE_CROPPER_RETRY_BASE_DELAY", "1"))
REDUCED_RESOLUTION_FACTOR = 0.5
DEFAULT_CONFIDENCE = 0.8

# Face quality (Laplacian variance)
QUALITY_HIGH_THRESHOLD = 1000.0
QUALITY_MEDIUM_THRESHOLD = 300.0
QUALITY_MAX_DIMENSION = 1024

# Input validation
MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
MIN_IMAGE_DIMENSION = 50
MAX_IMAGE_DIMENSION = 8192

# Workspace
PAGE_SIZE = int(os.environ.get("FACE_CROPPER_PAGE_SIZE", "20"))
HISTORY_LIMIT = 50
AUTO_CLEANUP_AGE_SECONDS = float(os.environ.get("FACE_CROPPER_AUTO_CLEANUP_AGE", "300"))
MEMORY_MODE = os.environ.get("FACE_CROPPER_MEMORY_MODE", "manual")
PROCESSING_TIMES_WINDOW = 50
RECENT_SETTINGS_LIMIT = 10

# Cropping
EYE_LINE_RATIO = 0.35
DEFAULT_NAMING_TEMPLATE = "face_{original}_{index}"
MIN_OUTPUT_DIMENSION = 64
MAX_OUTPUT_DIMENSION = 2048

SIZE_PRESETS: dict[str, tuple[int, int]] = {
    "linkedin": (400, 400),
    "passport": (413, 531),
    "instagram": (1080, 1080),
    "idcard": (332, 498),
    "avatar": (512, 512),
    "headshot": (600, 800),
}
