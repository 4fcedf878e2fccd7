"""Human tie-break when several local records may denote one external game.

Nothing here chooses automatically: candidates are gathered and handed to the
user, and the only results are the option the user picked or a cancellation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Connection

from db.schema import PROVIDER_CURRENT, games
from helpers import coerce_external_id
from reconcile.matching import normalize_title
from reconcile.models import GameOption, GameRecord


class DisambiguationError(ValueError):
    """Raised when a selection does not refer to one of the offered options."""


@dataclass(frozen=True)
class DisambiguationRequest:
    open: bool
    candidates: tuple[GameOption, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "open": self.open,
            "candidates": [option.to_dict() for option in self.candidates],
        }


def find_candidates(conn: Connection, external_id: str, title: str) -> list[GameRecord]:
    """Return local records that plausibly correspond to ``external_id``.

    That is the current-provider row for the id (if any) plus every non-current row
    whose normalized title equals the normalized ``title``.
    """

    records: list[GameRecord] = []
    normalized_id = coerce_external_id(external_id)
    if normalized_id:
        rows = conn.execute(
            select(games)
            .where(
                games.c.provider == PROVIDER_CURRENT,
                games.c.external_id == normalized_id,
            )
            .order_by(games.c.id)
        ).mappings()
        records.extend(GameRecord.from_row(row) for row in rows)

    wanted = normalize_title(title)
    if wanted:
        rows = conn.execute(
            select(games).where(games.c.provider != PROVIDER_CURRENT).order_by(games.c.id)
        ).mappings()
        for row in rows:
            if normalize_title(row.get("title")) == wanted:
                records.append(GameRecord.from_row(row))
    return records


def build_request(records: list[GameRecord]) -> DisambiguationRequest:
    """Open a request when more than one record is a plausible match."""

    options = tuple(GameOption.from_record(record) for record in records)
    return DisambiguationRequest(open=len(options) > 1, candidates=options)


def select_option(request: DisambiguationRequest, selected_id: Any) -> GameOption | None:
    """Return the option the user picked; ``None`` means the user cancelled."""

    if selected_id in (None, ""):
        return None
    if isinstance(selected_id, bool):
        raise DisambiguationError(f"invalid game selection: {selected_id!r}")
    try:
        wanted = int(selected_id)
    except (TypeError, ValueError):
        raise DisambiguationError(f"invalid game selection: {selected_id!r}") from None
    for option in request.candidates:
        if option.id == wanted:
            return option
    raise DisambiguationError(f"game {wanted} was not offered for selection")


__all__ = [
    "DisambiguationError",
    "DisambiguationRequest",
    "build_request",
    "find_candidates",
    "select_option",
]
