"""Game migration, details and library API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request

from db.utils import get_db
from lookups.service import LookupServiceError
from providers.base import MetadataProviderError
from reconcile.disambiguation import DisambiguationError, build_request, find_candidates
from reconcile.service import (
    DisambiguationRequired,
    GameNotFoundError,
    MigrationError,
    MigrationService,
)
from routes.api_utils import (
    APIError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    UpstreamServiceError,
    acting_user_id,
    handle_api_errors,
)

games_blueprint = Blueprint("games", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide the shared migration service to the game endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"games routes missing context value: {key}")
    return _context[key]


def _service() -> MigrationService:
    return _ctx("migration_service")


def _load_or_404(game_id: int):
    record = _service().load_game(game_id)
    if record is None:
        raise NotFoundError(f"game {game_id} not found")
    return record


@games_blueprint.route('/api/games/<int:game_id>/migrate', methods=['POST'])
@handle_api_errors
def api_migrate_game(game_id: int):
    user_id = acting_user_id()
    record = _load_or_404(game_id)
    migrated = _service().migrate_to_igdb(record, acting_user_id=user_id)
    return jsonify(
        {
            'game': migrated.to_dict() if migrated is not None else None,
            'migrated': migrated is not None and migrated.id != record.id,
        }
    )


@games_blueprint.route('/api/games/<int:game_id>/migration')
@handle_api_errors
def api_migration_status(game_id: int):
    acting_user_id()
    _load_or_404(game_id)
    attempt = _service().attempt(game_id)
    if attempt is None:
        return jsonify({'stage': None})
    return jsonify(
        {
            'stage': attempt['stage'],
            'external_id': attempt['external_id'],
            'target_game_id': attempt['target_game_id'],
            'error': attempt['error'],
        }
    )


@games_blueprint.route('/api/games/<int:game_id>/details')
@handle_api_errors
def api_game_details(game_id: int):
    user_id = acting_user_id()
    record = _load_or_404(game_id)
    record, source, details = _service().describe(record, acting_user_id=user_id)
    return jsonify({'game': record.to_dict(), 'source': source, 'details': details})


@games_blueprint.route('/api/games/disambiguation')
@handle_api_errors
def api_disambiguation_candidates():
    acting_user_id()
    external_id = (request.args.get('external_id') or '').strip()
    title = (request.args.get('title') or '').strip()
    if not external_id and not title:
        raise BadRequestError('external_id or title is required')
    with get_db().sa_connection() as conn:
        records = find_candidates(conn, external_id, title)
    return jsonify(build_request(records).to_dict())


def _parse_progress(value: Any) -> int:
    if value in (None, ''):
        return 0
    try:
        progress = int(value)
    except (TypeError, ValueError):
        raise BadRequestError('progress must be an integer') from None
    if progress < 0 or progress > 100:
        raise BadRequestError('progress must be between 0 and 100')
    return progress


@games_blueprint.route('/api/library', methods=['POST'])
@handle_api_errors
def api_add_game():
    user_id = acting_user_id()
    payload = request.get_json(silent=True)
    if not isinstance(payload, Mapping):
        raise BadRequestError('JSON body required')

    external_id = str(payload.get('external_id') or '').strip()
    if not external_id:
        raise BadRequestError('external_id is required')
    platforms = payload.get('platforms') or []
    if not isinstance(platforms, list):
        raise BadRequestError('platforms must be a list')

    try:
        game, ownership, created = _service().add_game(
            user_id,
            external_id,
            status=str(payload.get('status') or 'Not Started'),
            progress=_parse_progress(payload.get('progress')),
            platforms=[str(p) for p in platforms],
            custom_image=payload.get('custom_image') or None,
            selected_game_id=payload.get('selected_game_id'),
        )
    except DisambiguationRequired as exc:
        raise ConflictError(
            'Multiple games found; choose one.',
            payload={'disambiguation': exc.request.to_dict()},
        ) from exc
    except DisambiguationError as exc:
        raise BadRequestError(str(exc)) from exc
    except GameNotFoundError as exc:
        raise NotFoundError(str(exc)) from exc
    except MetadataProviderError as exc:
        raise UpstreamServiceError(str(exc)) from exc
    except (MigrationError, LookupServiceError) as exc:
        raise APIError(str(exc)) from exc

    body = {'game': game.to_dict(), 'ownership': ownership.to_dict()}
    return jsonify(body), 201 if created else 200


__all__ = ["configure", "games_blueprint"]
