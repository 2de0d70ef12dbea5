import os
from pathlib import Path

# load_dotenv() runs before the constants below read os.environ.
from dotenv import load_dotenv
load_dotenv()

ROOT_DIR = Path(__file__).resolve().parent


def _env_path(name: str, default: str) -> Path:
    path = Path(os.environ.get(name, default))
    return path if path.is_absolute() else ROOT_DIR / path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


PORT: int = int(os.environ.get("PORT", "3000"))
# Public base URL used when building archive links, e.g. https://invites.example.com
CURRENT_URL: str = os.environ.get("CURRENT_URL", "").rstrip("/")

# The font file is not shipped; without it stamping falls back to Helvetica.
FONT_PATH: Path = _env_path("FONT_PATH", "fonts/padmaa-Medium-0.5.ttf")
OUTPUT_FOLDER: Path = _env_path("OUTPUT_FOLDER", "public/invitations")
UPLOAD_FOLDER: Path = _env_path("UPLOAD_FOLDER", "uploads")
PUBLIC_PATH: str = "/invitations"

RENDER_SCALE: float = float(os.environ.get("RENDER_SCALE", "1.2"))
DEFAULT_FONT_SIZE: float = float(os.environ.get("DEFAULT_FONT_SIZE", "18"))

CORS_ORIGINS: list[str] = [
    origin.strip() for origin in os.environ.get("CORS_ORIGINS", "*").split(",") if origin.strip()
]

CLEANUP_TIME: str = os.environ.get("CLEANUP_TIME", "02:00")

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
LOG_JSON: bool = _env_bool("LOG_JSON", False)


def ensure_folders() -> None:
    OUTPUT_FOLDER.mkdir(parents=True, exist_ok=True)
    UPLOAD_FOLDER.mkdir(parents=True, exist_ok=True)
