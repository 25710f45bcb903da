# mediaclean/settings.py
from pathlib import Path
import os
from datetime import timedelta

BASE_DIR = Path(os.getenv("MEDIACLEAN_HOME", Path.cwd())).resolve()
UPLOAD_DIR = Path(os.getenv("MEDIACLEAN_UPLOAD_DIR", BASE_DIR / "uploads"))
OUTPUT_DIR = Path(os.getenv("MEDIACLEAN_OUTPUT_DIR", BASE_DIR / "outputs"))
LIBRARY_DIR = Path(os.getenv("MEDIACLEAN_LIBRARY_DIR", BASE_DIR / "library"))

MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 500 * 1024 * 1024))
# cleaned outputs and uploads older than this are purged
RETENTION = timedelta(minutes=int(os.getenv("MEDIACLEAN_RETENTION_MINUTES", 30)))

# HTTP API bind address for scripts/serve.py
HOST = os.getenv("MEDIACLEAN_HOST", "127.0.0.1")
PORT = int(os.getenv("MEDIACLEAN_PORT", 8000))

# External tools
FFMPEG = os.getenv("MEDIACLEAN_FFMPEG", "ffmpeg")
FFPROBE = os.getenv("MEDIACLEAN_FFPROBE", "ffprobe")
EXIFTOOL = os.getenv("MEDIACLEAN_EXIFTOOL", "exiftool")
# auto: run the exiftool straggler pass after a remux only when exiftool is on PATH
EXIFTOOL_PASS = os.getenv("MEDIACLEAN_EXIFTOOL_PASS", "auto").lower()

# Sliding window of in-flight sanitizations in a batch
BATCH_CONCURRENCY = int(os.getenv("MEDIACLEAN_BATCH_CONCURRENCY", 2))
CACHE_MAX_ENTRIES = int(os.getenv("MEDIACLEAN_CACHE_MAX_ENTRIES", 50))

# Re-encode targets (bits per second)
VIDEO_BITRATE_FLOOR = 2_000_000
VIDEO_BITRATE_CEILING = 12_000_000
AUDIO_BITRATE = 128_000

IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif",
    ".tif", ".tiff", ".gif", ".bmp",
    ".raw", ".dng", ".cr2", ".nef", ".arw",
}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".avi", ".mkv", ".webm"}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS


def ensure_dirs() -> None:
    for d in (UPLOAD_DIR, OUTPUT_DIR):
        d.mkdir(parents=True, exist_ok=True)
