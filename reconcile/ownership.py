"""Move user ownership rows from a legacy game record to its canonical record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from db.schema import user_games, utcnow
from db.utils import DatabaseEngine
from reconcile.models import OwnershipRecord

logger = logging.getLogger(__name__)


@dataclass
class OwnershipMigrationSummary:
    """Per-user outcome of an ownership migration."""

    moved: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.moved) + len(self.dropped) + len(self.failed)


def list_ownership(conn: Connection, game_id: int) -> list[OwnershipRecord]:
    rows = conn.execute(
        select(user_games).where(user_games.c.game_id == game_id).order_by(user_games.c.id)
    ).mappings()
    return [OwnershipRecord.from_row(row) for row in rows]


def find_ownership(conn: Connection, user_id: str, game_id: int) -> OwnershipRecord | None:
    row = (
        conn.execute(
            select(user_games).where(
                user_games.c.user_id == user_id,
                user_games.c.game_id == game_id,
            )
        )
        .mappings()
        .first()
    )
    return OwnershipRecord.from_row(row) if row is not None else None


def _drop_old(conn: Connection, record: OwnershipRecord) -> None:
    conn.execute(
        delete(user_games).where(
            user_games.c.id == record.id,
            user_games.c.user_id == record.user_id,
        )
    )


def _migrate_one(
    engine: DatabaseEngine, record: OwnershipRecord, new_game_id: int
) -> str:
    """Re-point or drop ``record`` in its own transaction; return the outcome."""

    try:
        with engine.begin() as conn:
            if find_ownership(conn, record.user_id, new_game_id) is not None:
                _drop_old(conn, record)
                return "dropped"
            conn.execute(
                update(user_games)
                .where(
                    user_games.c.id == record.id,
                    user_games.c.user_id == record.user_id,
                )
                .values(game_id=new_game_id, updated_at=utcnow())
            )
    except IntegrityError:
        # Only a concurrent claim on the canonical row lets the legacy row go.
        with engine.begin() as conn:
            if find_ownership(conn, record.user_id, new_game_id) is None:
                raise
            _drop_old(conn, record)
        return "dropped"
    return "moved"


def migrate_ownership(
    engine: DatabaseEngine, old_game_id: int, new_game_id: int
) -> OwnershipMigrationSummary:
    """Re-point every ownership row of ``old_game_id`` at ``new_game_id``.

    When a user already owns ``new_game_id`` the existing row wins unchanged
    and the legacy row is deleted. Each user is handled in a separate
    transaction; a failure is logged and the remaining users still migrate.
    Failure to list the rows at all propagates.
    """

    summary = OwnershipMigrationSummary()
    if old_game_id == new_game_id:
        return summary

    with engine.sa_connection() as conn:
        records = list_ownership(conn, old_game_id)

    if not records:
        logger.info("No ownership rows found for game %s", old_game_id)
        return summary

    logger.info(
        "Migrating %d ownership rows from game %s to %s",
        len(records),
        old_game_id,
        new_game_id,
    )
    for record in records:
        try:
            outcome = _migrate_one(engine, record, new_game_id)
        except SQLAlchemyError:
            logger.exception(
                "Failed to migrate ownership row %s for user %s",
                record.id,
                record.user_id,
            )
            summary.failed.append(record.user_id)
            continue
        if outcome == "dropped":
            logger.info(
                "User %s already owns game %s; deleted legacy row %s",
                record.user_id,
                new_game_id,
                record.id,
            )
            summary.dropped.append(record.user_id)
        else:
            summary.moved.append(record.user_id)
    return summary


__all__ = [
    "OwnershipMigrationSummary",
    "find_ownership",
    "list_ownership",
    "migrate_ownership",
]
