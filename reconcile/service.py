"""Legacy-to-current provider migration and the add-game flow.

A migration attempt walks ``LEGACY -> RESOLVING -> (NO_MATCH | RESOLVED) ->
RECONCILED -> OWNERSHIP_MIGRATED -> TAGGED``. The stage reached is written to
``migration_attempts`` after every step. Completed steps are never rolled
back: a later attempt re-resolves the title and the reconciler's lookup-first
check finds the canonical record created earlier.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from db.schema import (
    PROVIDER_CURRENT,
    migration_attempts,
    upsert_statement,
    user_games,
    utcnow,
)
from db.utils import DatabaseEngine
from lookups.service import LookupServiceError, merge_genres, merge_platforms
from providers.base import ExternalCandidate, MetadataProvider, MetadataProviderError
from reconcile.disambiguation import (
    DisambiguationRequest,
    build_request,
    find_candidates,
    select_option,
)
from reconcile.models import GameRecord, MigrationStage, OwnershipRecord
from reconcile.ownership import find_ownership, migrate_ownership
from reconcile.reconciler import get_game, reconcile_record
from reconcile.resolver import IdentityResolver

logger = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    """Infrastructure failure that stopped a migration at ``stage``."""

    def __init__(self, message: str, *, stage: MigrationStage, game_id: int) -> None:
        super().__init__(message)
        self.stage = stage
        self.game_id = game_id


class GameNotFoundError(LookupError):
    """Raised when a provider or local record cannot be located."""


class DisambiguationRequired(Exception):
    """Raised when the user has to choose between several local records."""

    def __init__(self, request: DisambiguationRequest) -> None:
        super().__init__("multiple local games match this external game")
        self.request = request


class MigrationService:
    """Entry point for migrating legacy records and adding games to a library."""

    def __init__(
        self,
        engine: DatabaseEngine,
        current_provider: MetadataProvider,
        *,
        legacy_provider: MetadataProvider | None = None,
        search_limit: int = 10,
        strategy: str = "containment",
        threshold: float = 90.0,
    ) -> None:
        self.engine = engine
        self.current_provider = current_provider
        self.legacy_provider = legacy_provider
        self.resolver = IdentityResolver(
            current_provider,
            search_limit=search_limit,
            strategy=strategy,
            threshold=threshold,
        )

    # -- lookups -----------------------------------------------------------

    def load_game(self, game_id: int) -> GameRecord | None:
        with self.engine.sa_connection() as conn:
            return get_game(conn, game_id)

    def last_stage(self, legacy_game_id: int) -> MigrationStage | None:
        attempt = self.attempt(legacy_game_id)
        return MigrationStage(attempt["stage"]) if attempt else None

    def attempt(self, legacy_game_id: int) -> dict[str, Any] | None:
        with self.engine.sa_connection() as conn:
            row = (
                conn.execute(
                    select(migration_attempts).where(
                        migration_attempts.c.legacy_game_id == legacy_game_id
                    )
                )
                .mappings()
                .first()
            )
        return dict(row) if row is not None else None

    # -- migration ---------------------------------------------------------

    def migrate_to_igdb(
        self, game: GameRecord | int, *, acting_user_id: str | None = None
    ) -> GameRecord | None:
        """Return the canonical current-provider record for ``game``.

        ``None`` means the game could not be migrated (no match, or a provider
        or database failure that was logged); the legacy record is unchanged
        in that case. Unexpected errors propagate.
        """

        record = self.load_game(game) if isinstance(game, int) else game
        if record is None:
            logger.warning("Cannot migrate unknown game %s", game)
            return None
        if record.provider == PROVIDER_CURRENT:
            return record

        self._record_stage(record.id, MigrationStage.RESOLVING, acting_user_id=acting_user_id)
        try:
            candidate = self.resolver.resolve(record.title)
        except MetadataProviderError as exc:
            logger.error(
                "Search failed while migrating %r (stage %s): %s",
                record.title,
                MigrationStage.RESOLVING.value,
                exc,
            )
            self._record_stage(
                record.id,
                MigrationStage.RESOLVING,
                acting_user_id=acting_user_id,
                error=str(exc),
            )
            return None

        if candidate is None:
            self._record_stage(record.id, MigrationStage.NO_MATCH, acting_user_id=acting_user_id)
            return None

        try:
            return self._run_pipeline(record, candidate, acting_user_id=acting_user_id)
        except MigrationError as exc:
            logger.error(
                "Migration of %r stopped after stage %s: %s",
                record.title,
                exc.stage.value,
                exc,
            )
            self._record_stage(
                record.id,
                exc.stage,
                acting_user_id=acting_user_id,
                external_id=candidate.id,
                error=str(exc),
            )
            return None

    def _run_pipeline(
        self,
        record: GameRecord,
        candidate: ExternalCandidate,
        *,
        acting_user_id: str | None,
    ) -> GameRecord:
        stage = MigrationStage.RESOLVED
        self._record_stage(
            record.id, stage, acting_user_id=acting_user_id, external_id=candidate.id
        )

        try:
            with self.engine.begin() as conn:
                target_id = reconcile_record(conn, candidate, record)
        except SQLAlchemyError as exc:
            raise MigrationError(str(exc), stage=stage, game_id=record.id) from exc
        stage = MigrationStage.RECONCILED
        self._record_stage(
            record.id,
            stage,
            acting_user_id=acting_user_id,
            external_id=candidate.id,
            target_game_id=target_id,
        )

        try:
            summary = migrate_ownership(self.engine, record.id, target_id)
        except SQLAlchemyError as exc:
            raise MigrationError(str(exc), stage=stage, game_id=record.id) from exc
        if summary.failed:
            logger.error(
                "Ownership migration for %r failed for users: %s",
                record.title,
                ", ".join(summary.failed),
            )
        stage = MigrationStage.OWNERSHIP_MIGRATED
        self._record_stage(
            record.id,
            stage,
            acting_user_id=acting_user_id,
            external_id=candidate.id,
            target_game_id=target_id,
        )

        tag_error: str | None = None
        if candidate.genres:
            logger.info("Adding %d genres for %r", len(candidate.genres), record.title)
            try:
                with self.engine.begin() as conn:
                    merge_genres(conn, candidate.genres, target_id)
            except (LookupServiceError, SQLAlchemyError) as exc:
                logger.error("Genre merge failed for %r: %s", record.title, exc)
                tag_error = str(exc)
        if tag_error is None:
            stage = MigrationStage.TAGGED
        self._record_stage(
            record.id,
            stage,
            acting_user_id=acting_user_id,
            external_id=candidate.id,
            target_game_id=target_id,
            error=tag_error,
        )

        try:
            canonical = self.load_game(target_id)
        except SQLAlchemyError as exc:
            raise MigrationError(str(exc), stage=stage, game_id=record.id) from exc
        if canonical is None:  # pragma: no cover - rows are never deleted
            raise MigrationError(
                f"canonical game {target_id} disappeared", stage=stage, game_id=record.id
            )
        logger.info(
            "Migrated %r (game %s) to current-provider game %s",
            record.title,
            record.id,
            canonical.id,
        )
        return canonical

    def _record_stage(
        self,
        legacy_game_id: int,
        stage: MigrationStage,
        *,
        acting_user_id: str | None = None,
        external_id: str | None = None,
        target_game_id: int | None = None,
        error: str | None = None,
    ) -> None:
        values = {
            "legacy_game_id": legacy_game_id,
            "stage": stage.value,
            "external_id": external_id,
            "target_game_id": target_game_id,
            "triggered_by": acting_user_id,
            "error": error,
            "updated_at": utcnow(),
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    upsert_statement(
                        conn,
                        migration_attempts,
                        values,
                        conflict_columns=("legacy_game_id",),
                        update_columns=tuple(k for k in values if k != "legacy_game_id"),
                    )
                )
        except SQLAlchemyError:
            logger.exception(
                "Failed to record migration stage %s for game %s",
                stage.value,
                legacy_game_id,
            )

    # -- add-game flow -----------------------------------------------------

    def add_game(
        self,
        acting_user_id: str,
        external_id: str,
        *,
        status: str = "Not Started",
        progress: int = 0,
        platforms: Iterable[str] = (),
        custom_image: str | None = None,
        selected_game_id: Any = None,
    ) -> tuple[GameRecord, OwnershipRecord, bool]:
        """Add the current-provider game ``external_id`` to a user's library.

        Returns ``(game, ownership, created)``. Raises
        :class:`DisambiguationRequired` when several local records could be the
        same game and no ``selected_game_id`` was given.
        """

        candidate = self.current_provider.fetch_game_details(external_id)
        if candidate is None:
            raise GameNotFoundError(f"game {external_id} not found")

        with self.engine.sa_connection() as conn:
            records = find_candidates(conn, candidate.id, candidate.name)
        request = build_request(records)

        chosen: GameRecord | None = None
        if request.open:
            if selected_game_id in (None, ""):
                raise DisambiguationRequired(request)
            option = select_option(request, selected_game_id)
            chosen = next(record for record in records if record.id == option.id)
        elif records:
            chosen = records[0]

        if chosen is not None and chosen.provider != PROVIDER_CURRENT:
            self._record_stage(chosen.id, MigrationStage.RESOLVING, acting_user_id=acting_user_id)
            chosen = self._run_pipeline(chosen, candidate, acting_user_id=acting_user_id)

        with self.engine.begin() as conn:
            game_id = reconcile_record(conn, candidate)
            merge_genres(conn, candidate.genres, game_id)
            merge_platforms(conn, candidate.platforms, game_id)

        with self.engine.begin() as conn:
            existing = find_ownership(conn, acting_user_id, game_id)
            if existing is None:
                conn.execute(
                    upsert_statement(
                        conn,
                        user_games,
                        {
                            "user_id": acting_user_id,
                            "game_id": game_id,
                            "status": status,
                            "progress": max(0, min(int(progress), 100)),
                            "platforms": [str(p) for p in platforms],
                            "custom_image": custom_image,
                            "created_at": utcnow(),
                            "updated_at": utcnow(),
                        },
                        conflict_columns=("user_id", "game_id"),
                    )
                )
            ownership = find_ownership(conn, acting_user_id, game_id)
            game = get_game(conn, game_id)

        if ownership is None or game is None:  # pragma: no cover - just written above
            raise RuntimeError(f"failed to add game {game_id} for user {acting_user_id}")
        created = existing is None
        if created:
            logger.info("User %s added game %s (%r)", acting_user_id, game.id, game.title)
        return game, ownership, created

    # -- details -----------------------------------------------------------

    def describe(
        self, record: GameRecord, *, acting_user_id: str | None = None
    ) -> tuple[GameRecord, str, dict[str, Any]]:
        """Return ``(record, source, details)`` for display.

        Legacy records are migrated first; when that is not possible the legacy
        provider's details are used, and the stored fields after that.
        """

        if record.provider != PROVIDER_CURRENT:
            migrated = self.migrate_to_igdb(record, acting_user_id=acting_user_id)
            if migrated is not None:
                record = migrated
            else:
                details = self._legacy_details(record)
                if details is not None:
                    return record, "legacy", details.to_dict()
                return record, "stored", _stored_details(record)

        try:
            details = self.current_provider.fetch_game_details(record.external_id)
        except MetadataProviderError as exc:
            logger.warning("Falling back to stored details for %r: %s", record.title, exc)
            details = None
        if details is None:
            return record, "stored", _stored_details(record)
        return record, "current", details.to_dict()

    def _legacy_details(self, record: GameRecord) -> ExternalCandidate | None:
        if self.legacy_provider is None:
            return None
        try:
            details = self.legacy_provider.fetch_game_details(record.external_id)
            if details is None:
                results = self.legacy_provider.search_games(record.title, limit=1)
                details = results[0] if results else None
        except MetadataProviderError as exc:
            logger.warning("Legacy details unavailable for %r: %s", record.title, exc)
            return None
        return details


def _stored_details(record: GameRecord) -> dict[str, Any]:
    return ExternalCandidate(
        id=record.external_id,
        name=record.title,
        summary=record.description or "",
        cover_image=record.cover_image or "",
        rating=record.rating,
        release_date=record.release_date or "",
    ).to_dict()


__all__ = [
    "DisambiguationRequired",
    "GameNotFoundError",
    "MigrationError",
    "MigrationService",
]
