"""Value objects shared by the reconciliation pipeline."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping


class MigrationStage(str, enum.Enum):
    """Stages a single legacy record passes through while being migrated."""

    LEGACY = "legacy"
    RESOLVING = "resolving"
    NO_MATCH = "no_match"
    RESOLVED = "resolved"
    RECONCILED = "reconciled"
    OWNERSHIP_MIGRATED = "ownership_migrated"
    TAGGED = "tagged"

    @property
    def is_terminal(self) -> bool:
        return self in {MigrationStage.NO_MATCH, MigrationStage.TAGGED}


@dataclass(frozen=True)
class GameRecord:
    id: int
    provider: str
    external_id: str
    title: str
    description: str | None = None
    cover_image: str | None = None
    rating: float | None = None
    release_date: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "GameRecord":
        rating = row.get("rating")
        return cls(
            id=int(row["id"]),
            provider=str(row["provider"]),
            external_id=str(row["external_id"]),
            title=str(row["title"]),
            description=row.get("description"),
            cover_image=row.get("cover_image"),
            rating=float(rating) if rating is not None else None,
            release_date=row.get("release_date"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.created_at is not None:
            payload["created_at"] = self.created_at.isoformat()
        return payload


@dataclass(frozen=True)
class OwnershipRecord:
    id: int
    user_id: str
    game_id: int
    status: str
    progress: int
    platforms: list[str] = field(default_factory=list)
    custom_image: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OwnershipRecord":
        platforms = row.get("platforms") or []
        return cls(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            game_id=int(row["game_id"]),
            status=str(row["status"]),
            progress=int(row["progress"] or 0),
            platforms=[str(p) for p in platforms],
            custom_image=row.get("custom_image"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GameOption:
    """A local record offered to the user during disambiguation."""

    id: int
    title: str
    provider: str | None = None
    background_image: str | None = None
    release_date: str | None = None

    @classmethod
    def from_record(cls, record: GameRecord) -> "GameOption":
        return cls(
            id=record.id,
            title=record.title,
            provider=record.provider,
            background_image=record.cover_image,
            release_date=record.release_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = ["GameOption", "GameRecord", "MigrationStage", "OwnershipRecord"]
