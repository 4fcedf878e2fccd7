import pytest
from flask import Flask, g
from sqlalchemy import select, text

from db import schema as db_schema
from db import utils as db_utils
from tests.app_helpers import sqlite_dsn


def test_sqlite_connections_enforce_foreign_keys(engine):
    with engine.sa_connection() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
        assert conn.execute(text("PRAGMA journal_mode")).scalar_one().lower() == "wal"


def test_build_engine_resolves_relative_sqlite_paths(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    engine = db_utils.build_engine_from_dsn("sqlite:///relative.db")
    try:
        assert engine.engine.url.database == str((tmp_path / "relative.db").resolve())
    finally:
        engine.dispose()


def test_sqlite_resolver_rejects_other_schemes():
    with pytest.raises(ValueError):
        db_utils._resolve_sqlite_path_from_dsn("postgresql://localhost/games")


def test_get_db_uses_fallback_engine(tmp_path):
    with pytest.raises(RuntimeError):
        db_utils.get_db()

    engine = db_utils.build_engine_from_dsn(sqlite_dsn(tmp_path))
    db_utils.set_fallback_engine(engine)
    try:
        assert db_utils.get_db() is engine
        with Flask(__name__).app_context():
            assert db_utils.get_db() is engine
            assert g.db is engine
    finally:
        engine.dispose()


def test_get_db_prefers_factory_inside_app_context(tmp_path):
    engine = db_utils.build_engine_from_dsn(sqlite_dsn(tmp_path))
    try:
        with Flask(__name__).app_context():
            assert db_utils.get_db(lambda: engine) is engine
            assert db_utils.get_db() is engine
    finally:
        engine.dispose()


def test_upsert_statement_skip_and_update(engine):
    values = {
        "provider": db_schema.PROVIDER_CURRENT,
        "external_id": "9001",
        "title": "Hollow Knight",
        "created_at": db_schema.utcnow(),
    }
    conflict = ("provider", "external_id")
    with engine.begin() as conn:
        conn.execute(db_schema.upsert_statement(conn, db_schema.games, values, conflict_columns=conflict))
        conn.execute(
            db_schema.upsert_statement(
                conn,
                db_schema.games,
                {**values, "title": "Ignored"},
                conflict_columns=conflict,
            )
        )
        skipped = conn.execute(select(db_schema.games.c.title)).scalars().all()
        conn.execute(
            db_schema.upsert_statement(
                conn,
                db_schema.games,
                {**values, "title": "Hollow Knight: Voidheart"},
                conflict_columns=conflict,
                update_columns=("title",),
            )
        )
        updated = conn.execute(select(db_schema.games.c.title)).scalars().all()

    assert skipped == ["Hollow Knight"]
    assert updated == ["Hollow Knight: Voidheart"]
