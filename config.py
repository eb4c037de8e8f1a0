import os
import platformdirs
from pathlib import Path

APP_NAME   = "ChunkRelay"
APP_AUTHOR = "ChunkRelay"

BASE_DIR = Path(platformdirs.user_data_dir(APP_NAME, APP_AUTHOR))
TMP_DIR  = BASE_DIR / "tmp"   # One <job id>.mp4 per in-flight job

FASTAPI_PORT = int(os.environ.get("CHUNK_RELAY_PORT", "5001"))

# Pipeline limits
DEADLINE_FLOOR_SECONDS = 30
DEADLINE_MULTIPLIER    = 2
STALL_SAMPLE_INTERVAL  = 1.0
STALL_SAMPLE_LIMIT     = 5
SEEK_TOLERANCE_SECONDS = 0.5
FETCH_TIMEOUT_SECONDS  = 60
UPLOAD_TIMEOUT_SECONDS = 120

# Output profile
INPUT_FORMAT        = "mp4"
AUDIO_CODEC         = "aac"
OUTPUT_MOVFLAGS     = "frag_keyframe+empty_moov"
OUTPUT_EXTENSION    = ".mp4"
OUTPUT_CONTENT_TYPE = "video/mp4"

# Storage sink
S3_BUCKET          = os.environ.get("S3_BUCKET", "")
AWS_REGION         = os.environ.get("AWS_REGION", "us-east-1")
UPLOAD_URL_EXPIRES = int(os.environ.get("UPLOAD_URL_EXPIRES", "3600"))

# Source credentials
SOURCE_COOKIE_HEADER = os.environ.get("SOURCE_COOKIE_HEADER")
SOURCE_COOKIES_FILE  = os.environ.get("SOURCE_COOKIES_FILE")
SOURCE_USER_AGENT    = os.environ.get(
    "SOURCE_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
)
