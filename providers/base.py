"""Uniform contract shared by the game-metadata provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from helpers import _dedupe_preserve_order, _parse_iterable, coerce_external_id


class MetadataProviderError(RuntimeError):
    """Raised when a provider request fails or returns an unusable payload."""


@dataclass(frozen=True)
class ExternalCandidate:
    """A game as described by an external metadata provider."""

    id: str
    name: str
    summary: str = ""
    cover_image: str = ""
    rating: float | None = None
    release_date: str = ""
    genres: tuple[str, ...] = field(default_factory=tuple)
    platforms: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ExternalCandidate":
        """Build a candidate from a normalized provider payload."""

        rating = payload.get("rating")
        try:
            rating_value = float(rating) if rating not in (None, "") else None
        except (TypeError, ValueError):
            rating_value = None
        return cls(
            id=coerce_external_id(payload.get("id")),
            name=str(payload.get("name") or "").strip(),
            summary=str(payload.get("summary") or "").strip(),
            cover_image=str(payload.get("cover_image") or "").strip(),
            rating=rating_value,
            release_date=str(payload.get("release_date") or "").strip(),
            genres=tuple(_dedupe_preserve_order(_parse_iterable(payload.get("genres")))),
            platforms=tuple(
                _dedupe_preserve_order(_parse_iterable(payload.get("platforms")))
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "summary": self.summary,
            "cover_image": self.cover_image,
            "rating": self.rating,
            "release_date": self.release_date,
            "genres": [{"name": name} for name in self.genres],
            "platforms": [{"name": name} for name in self.platforms],
        }


@runtime_checkable
class MetadataProvider(Protocol):
    """Search-by-title and details-by-id over one metadata source."""

    name: str

    def search_games(self, title: str, *, limit: int = 10) -> list[ExternalCandidate]:
        """Return candidates for ``title`` in provider relevance order."""
        ...

    def fetch_game_details(self, external_id: str) -> ExternalCandidate | None:
        """Return the candidate identified by ``external_id`` or ``None``."""
        ...


__all__ = ["ExternalCandidate", "MetadataProvider", "MetadataProviderError"]
