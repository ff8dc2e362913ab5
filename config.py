from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/calendar.db")

# GTFS Static
# Leave empty to disable the scheduled refresh; feeds can still be uploaded.
GTFS_STATIC_URL: str = os.getenv("GTFS_STATIC_URL", "")
GTFS_REFRESH_HOURS: int = int(os.getenv("GTFS_REFRESH_HOURS", "24"))

# Uploads
MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "100"))

# API
INGEST_API_KEY: str = os.getenv("INGEST_API_KEY", "")  # empty → ingest endpoints are open
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
