import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Hosted backend (row API, storage, realtime). Empty URL selects the in-memory backend.
GATEWAY_URL = os.getenv("GATEWAY_URL", "")
GATEWAY_KEY = os.getenv("GATEWAY_KEY", "")
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "10"))

# Public clinic site whose pages are previewed and extracted
SITE_BASE_URL = os.getenv("SITE_BASE_URL", "http://localhost:8080")

# Table names
BLOCKS_TABLE = os.getenv("BLOCKS_TABLE", "blocks")
PAGE_VERSIONS_TABLE = os.getenv("PAGE_VERSIONS_TABLE", "block_page_versions")
CONTENT_RECORDS_TABLE = os.getenv("CONTENT_RECORDS_TABLE", "content_blocks")
WEBSITE_CONTENT_TABLE = os.getenv("WEBSITE_CONTENT_TABLE", "website_content")

# Object storage
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "website-content")
# Stem of the logo object; the uploaded file's extension is appended
LOGO_PATH = os.getenv("LOGO_PATH", "eyefem-logo")
LOGO_DEFAULT_EXTENSION = os.getenv("LOGO_DEFAULT_EXTENSION", "png")

# Content extraction defaults
EXTRACT_WAIT_MS = int(os.getenv("EXTRACT_WAIT_MS", "2000"))
EXTRACT_EXCLUDE_PATHS = _env_list("EXTRACT_EXCLUDE_PATHS", "admin,appointment")

# Editor
LEGACY_ELEMENT_EDITOR = _env_bool("LEGACY_ELEMENT_EDITOR", True)
CHANGE_DEBOUNCE_SECONDS = float(os.getenv("CHANGE_DEBOUNCE_SECONDS", "1.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
