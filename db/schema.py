"""Table definitions for the game library and dialect-aware upsert helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.sql.dml import Insert

from db.utils import DatabaseEngine

PROVIDER_LEGACY = "legacy"
PROVIDER_CURRENT = "current"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

games = Table(
    "games",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("provider", String(32), nullable=False),
    Column("external_id", String(64), nullable=False),
    Column("title", String(512), nullable=False),
    Column("description", Text),
    Column("cover_image", Text),
    Column("rating", Float),
    Column("release_date", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), default=utcnow, onupdate=utcnow),
    UniqueConstraint("provider", "external_id", name="uq_games_provider_external_id"),
)

user_games = Table(
    "user_games",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("game_id", Integer, ForeignKey("games.id"), nullable=False),
    Column("status", String(64), nullable=False, default="Not Started"),
    Column("progress", Integer, nullable=False, default=0),
    Column("platforms", JSON, nullable=False, default=list),
    Column("custom_image", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), default=utcnow, onupdate=utcnow),
    UniqueConstraint("user_id", "game_id", name="uq_user_games_user_game"),
)

genres = Table(
    "genres",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)

platforms = Table(
    "platforms",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)

game_genres = Table(
    "game_genres",
    metadata,
    Column("game_id", Integer, ForeignKey("games.id"), primary_key=True),
    Column("genre_id", Integer, ForeignKey("genres.id"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)

game_platforms = Table(
    "game_platforms",
    metadata,
    Column("game_id", Integer, ForeignKey("games.id"), primary_key=True),
    Column("platform_id", Integer, ForeignKey("platforms.id"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)

migration_attempts = Table(
    "migration_attempts",
    metadata,
    Column("legacy_game_id", Integer, ForeignKey("games.id"), primary_key=True),
    Column("stage", String(32), nullable=False),
    Column("target_game_id", Integer),
    Column("external_id", String(64)),
    Column("triggered_by", String(64)),
    Column("error", Text),
    Column("updated_at", DateTime(timezone=True), default=utcnow, onupdate=utcnow),
)


def create_schema(engine: DatabaseEngine) -> None:
    """Create every table that does not exist yet."""

    metadata.create_all(engine.engine)


def upsert_statement(
    conn: Connection,
    table: Table,
    values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    *,
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
) -> Insert:
    """Return an INSERT that tolerates a unique-key conflict on ``conflict_columns``.

    With ``update_columns`` the conflicting row is overwritten with the new
    values (last writer wins); without them the insert is skipped.
    """

    dialect = conn.dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(table).values(values)
    elif dialect == "postgresql":
        stmt = postgresql_insert(table).values(values)
    elif dialect in {"mysql", "mariadb"}:
        stmt = mysql_insert(table).values(values)
        if update_columns:
            return stmt.on_duplicate_key_update(
                {name: stmt.inserted[name] for name in update_columns}
            )
        # MySQL has no DO NOTHING; rewriting a key column onto itself is a no-op.
        key = conflict_columns[0]
        return stmt.on_duplicate_key_update({key: table.c[key]})
    else:
        raise ValueError(f"Unsupported dialect for upsert: {dialect}")

    if update_columns:
        return stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={name: stmt.excluded[name] for name in update_columns},
        )
    return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))


__all__ = [
    "PROVIDER_CURRENT",
    "PROVIDER_LEGACY",
    "create_schema",
    "game_genres",
    "game_platforms",
    "games",
    "genres",
    "metadata",
    "migration_attempts",
    "platforms",
    "upsert_statement",
    "user_games",
    "utcnow",
]
