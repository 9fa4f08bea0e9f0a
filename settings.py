# settings.py
"""Runtime configuration, read once from the environment (and an optional .env file)."""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "10000"))
RENDER = bool(os.getenv("RENDER"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Storage ---
CACHE_DIR = os.path.abspath(os.getenv("CACHE_DIR", "cache"))
DOWNLOADS_DIR = os.path.abspath(os.getenv("DOWNLOADS_DIR", "downloads"))

# --- Browser ---
CHROME_PATH = os.getenv("CHROME_PATH", "")
PROXY_URL = os.getenv("PROXY_URL", "")  # e.g. http://127.0.0.1:7890 or socks5://127.0.0.1:1080
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000"))
PAGE_SETTLE_DELAY = float(os.getenv("PAGE_SETTLE_DELAY", "3"))
SCROLL_MAX_ROUNDS = int(os.getenv("SCROLL_MAX_ROUNDS", "10"))
SCROLL_DELAY = float(os.getenv("SCROLL_DELAY", "1"))

# --- Scraping ---
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "2"))
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "2"))
MAX_GALLERY_LINKS = int(os.getenv("MAX_GALLERY_LINKS", "10"))
MAX_IMAGES = int(os.getenv("MAX_IMAGES", "0"))  # 0 = no cap
IMAGE_DOMAINS = _env_list("IMAGE_DOMAINS")  # empty = accept any host
SEARCH_PAGE_FALLBACK = _env_bool("SEARCH_PAGE_FALLBACK", "true")
DEMO_FALLBACK = _env_bool("DEMO_FALLBACK", "false")

# --- Downloads ---
DOWNLOAD_TIMEOUT = int(os.getenv("DOWNLOAD_TIMEOUT", "30"))


def get_base_url() -> str:
    return os.getenv("RENDER_EXTERNAL_URL") or f"http://localhost:{PORT}"
