"""Flask application factory and service client initialization."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Mapping

from flask import Flask

import config as app_config
from db import schema as db_schema
from db import utils as db_utils
from igdb.client import IGDBClient
from providers.base import MetadataProvider
from rawg.client import RAWGClient
from reconcile.service import MigrationService
from routes import games as routes_games

logger = logging.getLogger(__name__)


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def configure_logging(flask_app: Flask, log_file: str | None = None) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(log_file or app_config.LOG_FILE)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger.setLevel(log_level)


def build_migration_service(
    engine: db_utils.DatabaseEngine,
    *,
    current_provider: MetadataProvider | None = None,
    legacy_provider: MetadataProvider | None = None,
) -> MigrationService:
    """Return a :class:`MigrationService` wired from configuration."""

    if current_provider is None:
        app_config.validate_igdb_credentials()
        current_provider = IGDBClient(
            client_id=app_config.IGDB_CLIENT_ID,
            client_secret=app_config.IGDB_CLIENT_SECRET,
            access_token=app_config.IGDB_ACCESS_TOKEN,
            user_agent=app_config.IGDB_USER_AGENT,
        )
    if legacy_provider is None and app_config.RAWG_ENABLED:
        legacy_provider = RAWGClient(app_config.RAWG_API_KEY)
    return MigrationService(
        engine,
        current_provider,
        legacy_provider=legacy_provider,
        search_limit=app_config.IGDB_SEARCH_LIMIT,
        strategy=app_config.MATCH_STRATEGY,
        threshold=app_config.MATCH_THRESHOLD,
    )


def create_app(
    settings: Mapping[str, Any] | None = None,
    *,
    engine: db_utils.DatabaseEngine | None = None,
    current_provider: MetadataProvider | None = None,
    legacy_provider: MetadataProvider | None = None,
) -> Flask:
    """Return a configured Flask application instance."""

    flask_app = Flask(__name__)
    flask_app.secret_key = app_config.APP_SECRET_KEY
    flask_app.config['TRUST_USER_HEADER'] = app_config.TRUST_USER_HEADER
    flask_app.config.update(settings or {})

    configure_logging(flask_app, flask_app.config.get('LOG_FILE'))

    if engine is None:
        engine = db_utils.build_engine_from_dsn(
            flask_app.config.get('DB_DSN', app_config.DB_DSN),
            timeout=app_config.DB_CONNECT_TIMEOUT_SECONDS,
            echo=app_config.DB_ECHO,
        )
    db_schema.create_schema(engine)
    db_utils.set_fallback_engine(engine)

    service = build_migration_service(
        engine,
        current_provider=current_provider,
        legacy_provider=legacy_provider,
    )
    flask_app.extensions['migration_service'] = service

    routes_games.configure({'migration_service': service})
    if 'games' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_games.games_blueprint)

    logger.info("Backlog Explorer initialised with database %s", engine.engine.url)
    return flask_app
