"""Genre and platform lookup persistence and additive tag merging."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import Table, insert, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from db.schema import (
    game_genres,
    game_platforms,
    genres,
    platforms,
    upsert_statement,
    utcnow,
)
from helpers import _dedupe_preserve_order, _normalize_lookup_name

logger = logging.getLogger(__name__)


class LookupServiceError(RuntimeError):
    """Base class for lookup service errors."""


class LookupNotFoundError(LookupServiceError):
    """Raised when an unknown lookup relation is requested."""


LOOKUP_RELATIONS: tuple[Mapping[str, Any], ...] = (
    {
        "response_key": "genres",
        "lookup_table": genres,
        "join_table": game_genres,
        "join_column": "genre_id",
    },
    {
        "response_key": "platforms",
        "lookup_table": platforms,
        "join_table": game_platforms,
        "join_column": "platform_id",
    },
)

LOOKUP_RELATIONS_BY_KEY: dict[str, Mapping[str, Any]] = {
    relation["response_key"]: relation for relation in LOOKUP_RELATIONS
}


def _relation(key: str) -> Mapping[str, Any]:
    try:
        return LOOKUP_RELATIONS_BY_KEY[key]
    except KeyError:
        raise LookupNotFoundError(f"unknown lookup relation: {key}") from None


def _coerce_int(value: Any) -> int | None:
    """Best-effort conversion of ``value`` to ``int``."""

    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def normalize_lookup_names(raw_names: Iterable[Any]) -> list[str]:
    """Return trimmed, case-insensitively de-duplicated names.

    Accepts plain strings or ``{"name": ...}`` mappings as returned by the
    metadata providers.
    """

    names: list[str] = []
    for raw in raw_names or []:
        value = raw.get("name") if isinstance(raw, Mapping) else raw
        name = _normalize_lookup_name(value)
        if name:
            names.append(name)
    return _dedupe_preserve_order(names)


def ensure_lookup_entries(conn: Connection, table: Table, names: Sequence[str]) -> None:
    """Insert every name missing from ``table``; existing names are left alone."""

    if not names:
        return
    conn.execute(
        upsert_statement(
            conn,
            table,
            [{"name": name, "created_at": utcnow()} for name in names],
            conflict_columns=("name",),
        )
    )


def lookup_ids_for_names(
    conn: Connection, table: Table, names: Sequence[str]
) -> dict[str, int]:
    """Return ``{casefolded name: id}`` for the entries of ``table`` matching ``names``.

    Keys are casefolded: case-insensitive collations (MySQL, MariaDB) return
    the stored spelling rather than the requested one.
    """

    if not names:
        return {}
    rows = conn.execute(
        select(table.c.id, table.c.name).where(table.c.name.in_(list(names)))
    ).mappings()
    resolved: dict[str, int] = {}
    for row in rows:
        lookup_id = _coerce_int(row.get("id"))
        if lookup_id is None:
            continue
        resolved[str(row.get("name")).casefold()] = lookup_id
    return resolved


def linked_lookup_ids(conn: Connection, relation: Mapping[str, Any], game_id: int) -> set[int]:
    join_table: Table = relation["join_table"]
    lookup_column = join_table.c[relation["join_column"]]
    rows = conn.execute(
        select(lookup_column).where(join_table.c.game_id == game_id)
    ).scalars()
    return {value for value in (_coerce_int(row) for row in rows) if value is not None}


def merge_lookup_links(
    conn: Connection,
    relation_key: str,
    raw_names: Iterable[Any],
    game_id: int,
) -> list[int]:
    """Attach the named lookups to ``game_id`` without removing existing links.

    Returns the lookup ids that were newly linked.
    """

    relation = _relation(relation_key)
    names = normalize_lookup_names(raw_names)
    if not names:
        return []

    try:
        ensure_lookup_entries(conn, relation["lookup_table"], names)
        ids_by_name = lookup_ids_for_names(conn, relation["lookup_table"], names)
        existing = linked_lookup_ids(conn, relation, game_id)

        missing: list[int] = []
        for name in names:
            lookup_id = ids_by_name.get(name.casefold())
            if lookup_id is None:
                logger.warning("Lookup %r missing from %s after insert", name, relation_key)
                continue
            if lookup_id in existing or lookup_id in missing:
                continue
            missing.append(lookup_id)

        if missing:
            conn.execute(
                insert(relation["join_table"]),
                [
                    {
                        "game_id": game_id,
                        relation["join_column"]: lookup_id,
                        "created_at": utcnow(),
                    }
                    for lookup_id in missing
                ],
            )
    except SQLAlchemyError as exc:
        raise LookupServiceError(
            f"failed to merge {relation_key} for game {game_id}: {exc}"
        ) from exc

    if missing:
        logger.info("Linked %d new %s to game %s", len(missing), relation_key, game_id)
    else:
        logger.debug("No new %s to link to game %s", relation_key, game_id)
    return missing


def merge_genres(conn: Connection, external_genres: Iterable[Any], game_id: int) -> list[int]:
    return merge_lookup_links(conn, "genres", external_genres, game_id)


def merge_platforms(
    conn: Connection, external_platforms: Iterable[Any], game_id: int
) -> list[int]:
    return merge_lookup_links(conn, "platforms", external_platforms, game_id)


def list_game_lookups(conn: Connection, game_id: int) -> dict[str, list[str]]:
    """Return the genre and platform names currently linked to ``game_id``."""

    payload: dict[str, list[str]] = {}
    for relation in LOOKUP_RELATIONS:
        lookup_table: Table = relation["lookup_table"]
        join_table: Table = relation["join_table"]
        rows = conn.execute(
            select(lookup_table.c.name)
            .join(join_table, join_table.c[relation["join_column"]] == lookup_table.c.id)
            .where(join_table.c.game_id == game_id)
            .order_by(lookup_table.c.name)
        ).scalars()
        payload[relation["response_key"]] = [str(name) for name in rows]
    return payload


__all__ = [
    "LOOKUP_RELATIONS",
    "LookupNotFoundError",
    "LookupServiceError",
    "ensure_lookup_entries",
    "linked_lookup_ids",
    "list_game_lookups",
    "lookup_ids_for_names",
    "merge_genres",
    "merge_lookup_links",
    "merge_platforms",
    "normalize_lookup_names",
]
