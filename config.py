"""Settings for the IGDB reference-data sync, read from the environment.

Values come from process environment variables, optionally seeded from a
``.env`` file next to this module.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Final, Mapping, TypeVar
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)

_Number = TypeVar("_Number", int, float)


def _env_text(name: str) -> str:
    value = os.environ.get(name)
    return value.strip() if value else ""


def _env_path(name: str, default: Path) -> Path:
    text = _env_text(name)
    path = Path(text).expanduser() if text else default
    return path.resolve() if path.is_absolute() else path


def _positive(
    raw: str | None, default: _Number, cast: Callable[[float], _Number]
) -> _Number:
    """Return ``raw`` parsed as a positive number, else ``default``."""

    text = (raw or "").strip()
    if not text:
        return default
    try:
        number = cast(float(text))
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    return _positive(value, default, int)


def _coerce_positive_float(value: str | None, default: float) -> float:
    return _positive(value, default, float)


LOG_DIR_PATH: Final[Path] = _env_path("LOG_DIR", BASE_DIR / "logs")
LOG_FILE_PATH: Final[Path] = _env_path("LOG_FILE", LOG_DIR_PATH / "igdb_sync.log")
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

# MariaDB connection parts; only used when at least one of them is set.
_MARIADB_KEYS: Final[tuple[str, ...]] = (
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
)
DB_HOST: Final[str] = _env_text("DB_HOST") or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 3306)
DB_NAME: Final[str] = _env_text("DB_NAME") or "tt_game_liste"
DB_USER: Final[str] = _env_text("DB_USER")
DB_PASSWORD: Final[str] = _env_text("DB_PASSWORD")
DB_SSL_CA: Final[str] = _env_text("DB_SSL_CA")

SQLITE_PATH: Final[Path] = BASE_DIR / "reference_data.db"


def _build_db_dsn() -> str:
    """Pick the database: ``DATABASE_URL``, then MariaDB, then SQLite."""

    explicit = _env_text("DATABASE_URL")
    if explicit:
        return explicit

    if not any(_env_text(key) for key in _MARIADB_KEYS):
        return f"sqlite:///{SQLITE_PATH.as_posix()}"

    credentials = ""
    if DB_USER:
        credentials = DB_USER
        if DB_PASSWORD:
            credentials += f":{quote_plus(DB_PASSWORD)}"
        credentials += "@"
    query = f"?ssl_ca={quote_plus(DB_SSL_CA)}" if DB_SSL_CA else ""
    return f"mariadb://{credentials}{DB_HOST}:{DB_PORT}/{DB_NAME}{query}"


DB_DSN: Final[str] = _build_db_dsn()
DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

DEFAULT_IGDB_USER_AGENT: Final[str] = "TT-Game-Liste/1.0 (support@example.com)"
IGDB_USER_AGENT: Final[str] = _env_text("IGDB_USER_AGENT") or DEFAULT_IGDB_USER_AGENT
IGDB_CLIENT_ID: Final[str] = _env_text("IGDB_CLIENT_ID")
IGDB_CLIENT_SECRET: Final[str] = _env_text("IGDB_CLIENT_SECRET")

# IGDB rejects pages above 500 records; larger values are clamped by the client.
IGDB_BATCH_SIZE: Final[int] = _coerce_positive_int(os.environ.get("IGDB_BATCH_SIZE"), 500)
IGDB_MAX_RETRIES: Final[int] = _coerce_positive_int(os.environ.get("IGDB_MAX_RETRIES"), 3)
IGDB_RATE_LIMIT_WAIT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("IGDB_RATE_LIMIT_WAIT"), 1.0
)

APP_SECRET_KEY: Final[str] = _env_text("APP_SECRET_KEY") or "dev-secret"


def missing_igdb_credentials(settings: Mapping[str, Any] | None = None) -> list[str]:
    """Return the names of the Twitch credentials absent from ``settings``.

    ``settings`` defaults to this module's values; the CLI passes ``app.config``.
    """

    if settings is None:
        settings = {
            "IGDB_CLIENT_ID": IGDB_CLIENT_ID,
            "IGDB_CLIENT_SECRET": IGDB_CLIENT_SECRET,
        }
    missing = [
        name
        for name in ("IGDB_CLIENT_ID", "IGDB_CLIENT_SECRET")
        if not str(settings.get(name) or "").strip()
    ]
    if missing:
        logger.error("Missing required IGDB credentials; set %s.", " and ".join(missing))
    return missing


__all__ = [
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DEFAULT_IGDB_USER_AGENT",
    "IGDB_BATCH_SIZE",
    "IGDB_CLIENT_ID",
    "IGDB_CLIENT_SECRET",
    "IGDB_MAX_RETRIES",
    "IGDB_RATE_LIMIT_WAIT_SECONDS",
    "IGDB_USER_AGENT",
    "LOG_FILE",
    "SQLITE_PATH",
    "missing_igdb_credentials",
]
