from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent

DEFAULT_UPLOAD_DIR = PROJECT_ROOT / "upload_images"
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "clickfit.db"
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_MAX_FILES = 10
DEFAULT_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

# Room for boundaries and part headers on top of the raw file bytes.
MULTIPART_OVERHEAD = 64 * 1024

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    environment: str
    host: str
    port: int
    upload_dir: Path
    max_file_size: int
    max_files: int
    allowed_mime_types: frozenset[str]
    allowed_extensions: frozenset[str]
    cors_origin: str
    db_path: Path
    seed_demo_user: bool
    log_level: str

    @property
    def debug(self) -> bool:
        """Development mode exposes exception details in 500 responses."""
        return self.environment != "production"

    @property
    def max_request_bytes(self) -> int:
        return self.max_files * self.max_file_size + MULTIPART_OVERHEAD


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _read_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _read_list(
    env: Mapping[str, str], name: str, default: tuple[str, ...]
) -> frozenset[str]:
    raw = env.get(name)
    if not raw:
        return frozenset(default)
    items = {chunk.strip().lower() for chunk in raw.split(",")}
    return frozenset(item for item in items if item)


def _normalize_extensions(extensions: frozenset[str]) -> frozenset[str]:
    return frozenset(ext if ext.startswith(".") else f".{ext}" for ext in extensions)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the process environment (and a local .env file).

    Passing ``env`` explicitly skips the .env lookup, which keeps tests
    independent of the developer's machine.
    """
    if env is None:
        load_dotenv()
        env = os.environ
    return Settings(
        environment=(env.get("CLICKFIT_ENV") or "development").strip().lower(),
        host=env.get("ROBYN_HOST") or "127.0.0.1",
        port=_read_int(env, "ROBYN_PORT", 3000),
        upload_dir=Path(env.get("CLICKFIT_UPLOAD_DIR") or DEFAULT_UPLOAD_DIR),
        max_file_size=_read_int(env, "MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
        max_files=_read_int(env, "CLICKFIT_MAX_FILES", DEFAULT_MAX_FILES),
        allowed_mime_types=_read_list(
            env, "CLICKFIT_ALLOWED_MIME_TYPES", DEFAULT_MIME_TYPES
        ),
        allowed_extensions=_normalize_extensions(
            _read_list(env, "CLICKFIT_ALLOWED_EXTENSIONS", DEFAULT_EXTENSIONS)
        ),
        cors_origin=env.get("FRONTEND_URL") or "*",
        db_path=Path(env.get("CLICKFIT_DB_PATH") or DEFAULT_DB_PATH),
        seed_demo_user=_read_flag(env, "CLICKFIT_SEED_DEMO_USER", True),
        log_level=(env.get("CLICKFIT_LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once; Robyn keeps its own access logging."""
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
