"""Project-level configuration, path helpers and runtime settings."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "field_chat.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]

# History bounds per conversation kind
TEAM_HISTORY_LIMIT = 100
DIRECT_HISTORY_LIMIT = 200
SUBMISSION_HISTORY_LIMIT = 50

CHAT_BUCKET = "chat"
LEGACY_CSV_BUCKET = "submission-csvs"

SIGNED_URL_TTL_SECONDS = 60 * 60 * 4
PREVIEW_SIGNED_URL_TTL_SECONDS = 60 * 60
PREVIEW_MAX_BYTES = 3_000_000
PREVIEW_MAX_ROWS = 60
PREVIEW_MAX_COLS = 20

OFFICE_VIEWER_URL = "https://view.officeapps.live.com/op/embed.aspx"


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass(frozen=True)
class ChatSettings:
    """Runtime settings for the messaging core."""

    backend_url: str = "http://localhost:8000"
    storage_host_suffixes: tuple[str, ...] = ("supabase.co", "localhost")
    # Bare keys are tried against these buckets in order: legacy first, then current
    attachment_buckets: tuple[str, ...] = (LEGACY_CSV_BUCKET, CHAT_BUCKET)
    signed_url_ttl_seconds: int = SIGNED_URL_TTL_SECONDS
    preview_max_bytes: int = PREVIEW_MAX_BYTES
    preview_max_rows: int = PREVIEW_MAX_ROWS
    preview_max_cols: int = PREVIEW_MAX_COLS
    preview_scratch_dir: str = tempfile.gettempdir()
    preview_timeout: float = 30.0
    api_host: str = "localhost"
    api_port: int = 8000


def _get_env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back on bad values."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Read a comma-separated list from the environment."""
    value = os.getenv(name)
    if not value:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


def load_settings() -> ChatSettings:
    """Load ChatSettings from environment variables."""
    defaults = ChatSettings()
    return ChatSettings(
        backend_url=os.getenv("BACKEND_URL", defaults.backend_url).rstrip("/"),
        storage_host_suffixes=_get_env_list(
            "STORAGE_HOST_SUFFIXES", defaults.storage_host_suffixes
        ),
        attachment_buckets=_get_env_list(
            "ATTACHMENT_BUCKETS", defaults.attachment_buckets
        ),
        signed_url_ttl_seconds=_get_env_int(
            "SIGNED_URL_TTL_SECONDS", defaults.signed_url_ttl_seconds
        ),
        preview_max_bytes=_get_env_int("PREVIEW_MAX_BYTES", defaults.preview_max_bytes),
        preview_max_rows=_get_env_int("PREVIEW_MAX_ROWS", defaults.preview_max_rows),
        preview_max_cols=_get_env_int("PREVIEW_MAX_COLS", defaults.preview_max_cols),
        preview_scratch_dir=os.getenv("PREVIEW_SCRATCH_DIR", defaults.preview_scratch_dir),
        preview_timeout=float(_get_env_int("PREVIEW_TIMEOUT", int(defaults.preview_timeout))),
        api_host=os.getenv("API_HOST", defaults.api_host),
        api_port=_get_env_int("API_PORT", defaults.api_port),
    )
