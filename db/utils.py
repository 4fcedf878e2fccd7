"""Shared helpers for working with the library database."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterator

try:  # pragma: no cover - optional dependency
    import sqlite3
except ImportError:  # pragma: no cover - environments without sqlite bindings
    sqlite3 = None  # type: ignore[assignment]

from flask import g, has_app_context
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from urllib.parse import unquote, urlparse

db_lock = Lock()
"""Module-level lock serializing bulk write passes such as the batch migration."""


class DatabaseEngine:
    """Wrapper exposing context-managed SQLAlchemy connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Return the underlying SQLAlchemy :class:`~sqlalchemy.engine.Engine`."""

        return self._engine

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a SQLAlchemy :class:`~sqlalchemy.engine.Connection`."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        """Dispose the underlying engine's connection pool."""

        self._engine.dispose()


_fallback_engine: DatabaseEngine | None = None


def set_fallback_engine(engine: DatabaseEngine | None) -> None:
    """Configure the engine returned when no Flask app context is active."""

    global _fallback_engine
    _fallback_engine = engine


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    """Apply timeout tuning and constraint enforcement to SQLite connections."""

    if sqlite3 is None or not isinstance(conn, sqlite3.Connection):
        return conn

    busy_timeout_ms = None
    if busy_timeout is not None:
        busy_timeout_ms = int(max(busy_timeout, 0) * 1000)
        if busy_timeout_ms <= 0:
            busy_timeout_ms = None

    pragmas: tuple[tuple[str, str | int | float | None, bool], ...] = (
        ("busy_timeout", busy_timeout_ms, False),
        ("journal_mode", "WAL", True),
        ("foreign_keys", "ON", False),
    )

    for name, value, fetch_result in pragmas:
        if value is None:
            continue
        try:
            cursor = conn.execute(f"PRAGMA {name}={value}")
            if fetch_result:
                cursor.fetchone()
        except sqlite3.OperationalError:  # pragma: no cover - best effort only
            continue

    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Extract a filesystem path from a ``sqlite:///`` DSN string."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Unsupported DSN scheme for SQLite resolver: {parsed.scheme}")

    path = unquote(parsed.path or "")
    # ``sqlite:///name.db`` is relative, ``sqlite:////abs/name.db`` absolute.
    if path.startswith("/"):
        path = path[1:]
    if parsed.netloc and parsed.netloc not in {"", "localhost"}:
        path = f"//{parsed.netloc}/{path}"

    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = candidate.resolve()
    return os.fspath(candidate)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` configured from ``dsn``."""

    parsed = urlparse(dsn)
    connect_args: dict[str, object] = {}
    effective_timeout = timeout if timeout is not None else 5.0

    if parsed.scheme == "sqlite":
        sqlite_path = _resolve_sqlite_path_from_dsn(dsn)
        normalized_dsn = f"sqlite:///{sqlite_path}"
        connect_args["check_same_thread"] = False
    else:
        normalized_dsn = dsn

    engine = create_engine(
        normalized_dsn,
        future=True,
        echo=echo,
        pool_size=pool_size,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        connect_args=connect_args,
    )

    if parsed.scheme == "sqlite" and sqlite3 is not None:

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, connection_record):  # type: ignore[override]
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    return DatabaseEngine(engine)


def get_db(
    engine_factory: Callable[[], DatabaseEngine] | None = None,
    *,
    context_key: str = 'db',
) -> DatabaseEngine:
    """Return the active :class:`DatabaseEngine`, creating one if necessary."""

    global _fallback_engine

    if has_app_context():
        if not hasattr(g, context_key):
            if engine_factory is not None:
                setattr(g, context_key, engine_factory())
            elif _fallback_engine is not None:
                setattr(g, context_key, _fallback_engine)
            else:
                raise RuntimeError('Database connection is not configured')
        value = getattr(g, context_key)
        if isinstance(value, DatabaseEngine):
            return value
        raise RuntimeError('Database connection is not configured correctly')

    if _fallback_engine is None:
        if engine_factory is None:
            raise RuntimeError('Database connection is not configured')
        _fallback_engine = engine_factory()
    return _fallback_engine
