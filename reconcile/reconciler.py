"""Map a resolved provider candidate onto a canonical local game record."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.engine import Connection

from db.schema import PROVIDER_CURRENT, games, upsert_statement, utcnow
from helpers import coerce_external_id, has_text
from providers.base import ExternalCandidate
from reconcile.models import GameRecord

logger = logging.getLogger(__name__)

_UPSERT_COLUMNS = ("title", "description", "cover_image", "rating", "release_date", "updated_at")


def get_game(conn: Connection, game_id: int) -> GameRecord | None:
    row = conn.execute(select(games).where(games.c.id == game_id)).mappings().first()
    return GameRecord.from_row(row) if row is not None else None


def find_game_by_external_id(
    conn: Connection, provider: str, external_id: str
) -> GameRecord | None:
    row = (
        conn.execute(
            select(games).where(
                games.c.provider == provider,
                games.c.external_id == coerce_external_id(external_id),
            )
        )
        .mappings()
        .first()
    )
    return GameRecord.from_row(row) if row is not None else None


def _pick(primary: object, fallback: object) -> object:
    if isinstance(primary, str):
        return primary.strip() if has_text(primary) else fallback
    return primary if primary is not None else fallback


def build_game_values(
    candidate: ExternalCandidate, fallback: GameRecord | None = None
) -> dict[str, object]:
    """Return ``games`` column values for ``candidate``, defaulting to ``fallback``."""

    return {
        "provider": PROVIDER_CURRENT,
        "external_id": coerce_external_id(candidate.id),
        "title": _pick(candidate.name, fallback.title if fallback else None) or "",
        "description": _pick(candidate.summary, fallback.description if fallback else None),
        "cover_image": _pick(candidate.cover_image, fallback.cover_image if fallback else None),
        "rating": _pick(candidate.rating, fallback.rating if fallback else None),
        "release_date": _pick(
            candidate.release_date, fallback.release_date if fallback else None
        ),
        "created_at": utcnow(),
        "updated_at": utcnow(),
    }


def reconcile_record(
    conn: Connection,
    candidate: ExternalCandidate,
    fallback: GameRecord | None = None,
) -> int:
    """Return the id of the current-provider record for ``candidate``.

    An existing row for ``(current, candidate.id)`` is reused untouched.
    Otherwise a row is upserted on the ``(provider, external_id)`` constraint,
    so two concurrent resolutions of the same game still leave a single row.
    Database errors propagate.
    """

    existing = find_game_by_external_id(conn, PROVIDER_CURRENT, candidate.id)
    if existing is not None:
        logger.info(
            "Found existing current-provider game %s for external id %s",
            existing.id,
            candidate.id,
        )
        return existing.id

    values = build_game_values(candidate, fallback)
    conn.execute(
        upsert_statement(
            conn,
            games,
            values,
            conflict_columns=("provider", "external_id"),
            update_columns=_UPSERT_COLUMNS,
        )
    )
    created = find_game_by_external_id(conn, PROVIDER_CURRENT, candidate.id)
    if created is None:  # pragma: no cover - the upsert either inserts or updates
        raise RuntimeError(f"game for external id {candidate.id} vanished after upsert")
    logger.info("Created current-provider game %s (%r)", created.id, created.title)
    return created.id


__all__ = [
    "build_game_values",
    "find_game_by_external_id",
    "get_game",
    "reconcile_record",
]
