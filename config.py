"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

try:  # pragma: no cover - optional dependency for local development
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - python-dotenv is optional
    load_dotenv = None  # type: ignore[assignment]

if load_dotenv is not None:
    load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_percentage(value: str | None, default: float) -> float:
    """Return ``value`` as a score in ``[0, 100]`` or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    if numeric < 0 or numeric > 100:
        return default
    return numeric


def _coerce_truthy_env(value: str | None) -> bool:
    """Return ``True`` when ``value`` represents an affirmative flag."""

    if value is None:
        return False
    text = value.strip().lower()
    return text in {"1", "true", "yes", "on"}


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    override = _clean_text(os.environ.get("DATABASE_URL"))
    if override:
        return override

    sqlite_path = _path_from(None, BASE_DIR / "backlog_explorer.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()
DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)
DB_ECHO: Final[bool] = _coerce_truthy_env(os.environ.get("DB_ECHO"))

DEFAULT_IGDB_USER_AGENT: Final[str] = "BacklogExplorer/1.0 (support@example.com)"
IGDB_USER_AGENT: Final[str] = (
    _clean_text(os.environ.get("IGDB_USER_AGENT")) or DEFAULT_IGDB_USER_AGENT
)

IGDB_CLIENT_ID: Final[str] = _clean_text(
    os.environ.get("IGDB_CLIENT_ID") or os.environ.get("TWITCH_CLIENT_ID")
)
IGDB_CLIENT_SECRET: Final[str] = _clean_text(
    os.environ.get("IGDB_CLIENT_SECRET") or os.environ.get("TWITCH_CLIENT_SECRET")
)
IGDB_ACCESS_TOKEN: Final[str] = _clean_text(
    os.environ.get("IGDB_ACCESS_TOKEN") or os.environ.get("TWITCH_APP_ACCESS_TOKEN")
)
IGDB_ENABLED: bool = True
IGDB_SEARCH_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("IGDB_SEARCH_LIMIT"), 10
)

RAWG_API_KEY: Final[str] = _clean_text(os.environ.get("RAWG_API_KEY"))
RAWG_ENABLED: Final[bool] = bool(RAWG_API_KEY)

MATCH_STRATEGIES: Final[tuple[str, ...]] = ("containment", "token_set", "edit_distance")


def _resolve_match_strategy(value: str | None) -> str:
    text = _clean_text(value).lower().replace("-", "_")
    if not text:
        return "containment"
    if text not in MATCH_STRATEGIES:
        logger.warning(
            "Unknown MATCH_STRATEGY %r; using containment matching.", value
        )
        return "containment"
    return text


MATCH_STRATEGY: Final[str] = _resolve_match_strategy(os.environ.get("MATCH_STRATEGY"))
MATCH_THRESHOLD: Final[float] = _coerce_percentage(
    os.environ.get("MATCH_THRESHOLD"), 90.0
)

MIGRATION_BATCH_DELAY_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("MIGRATION_BATCH_DELAY"), 0.5
)

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"
TRUST_USER_HEADER: Final[bool] = _coerce_truthy_env(os.environ.get("TRUST_USER_HEADER"))


def validate_igdb_credentials() -> bool:
    """Ensure IGDB credentials are configured and update ``IGDB_ENABLED``."""

    global IGDB_ENABLED

    if IGDB_ACCESS_TOKEN and IGDB_CLIENT_ID:
        IGDB_ENABLED = True
        return IGDB_ENABLED

    missing = [
        name
        for name, value in (
            ("IGDB_CLIENT_ID", IGDB_CLIENT_ID),
            ("IGDB_CLIENT_SECRET", IGDB_CLIENT_SECRET),
        )
        if not value
    ]

    IGDB_ENABLED = not missing
    if missing:
        logger.error(
            "Missing required IGDB credentials; set %s.", " and ".join(missing)
        )

    return IGDB_ENABLED


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")


_validate_settings()


__all__ = [
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DB_ECHO",
    "DEFAULT_IGDB_USER_AGENT",
    "IGDB_ACCESS_TOKEN",
    "IGDB_CLIENT_ID",
    "IGDB_CLIENT_SECRET",
    "IGDB_ENABLED",
    "IGDB_SEARCH_LIMIT",
    "IGDB_USER_AGENT",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "MATCH_STRATEGIES",
    "MATCH_STRATEGY",
    "MATCH_THRESHOLD",
    "MIGRATION_BATCH_DELAY_SECONDS",
    "RAWG_API_KEY",
    "RAWG_ENABLED",
    "TRUST_USER_HEADER",
    "validate_igdb_credentials",
]
