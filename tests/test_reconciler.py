from db.schema import PROVIDER_CURRENT, PROVIDER_LEGACY
from reconcile import reconciler
from reconcile.reconciler import (
    build_game_values,
    find_game_by_external_id,
    get_game,
    reconcile_record,
)
from tests.app_helpers import candidate, count_games, insert_game


def test_reconcile_creates_record_with_legacy_fallbacks(engine):
    legacy_id = insert_game(
        engine,
        external_id="4200",
        title="Hollow Knight",
        description="Legacy description",
        cover_image="https://media.rawg.io/hk.jpg",
        rating=87.0,
    )
    with engine.sa_connection() as conn:
        legacy = get_game(conn, legacy_id)

    with engine.begin() as conn:
        new_id = reconcile_record(
            conn, candidate(9001, "Hollow Knight", release_date="2017-02-24"), legacy
        )
        created = get_game(conn, new_id)

    assert new_id != legacy_id
    assert created.provider == PROVIDER_CURRENT
    assert created.external_id == "9001"
    assert created.title == "Hollow Knight"
    assert created.description == "Legacy description"
    assert created.cover_image == "https://media.rawg.io/hk.jpg"
    assert created.rating == 87.0
    assert created.release_date == "2017-02-24"


def test_reconcile_prefers_candidate_fields():
    values = build_game_values(
        candidate(9001, "Hollow Knight", summary="Descend.", rating=90),
        None,
    )

    assert values["provider"] == PROVIDER_CURRENT
    assert values["description"] == "Descend."
    assert values["rating"] == 90.0
    assert values["cover_image"] is None


def test_reconcile_is_idempotent(engine):
    match = candidate(9001, "Hollow Knight")

    with engine.begin() as conn:
        first = reconcile_record(conn, match)
    with engine.begin() as conn:
        second = reconcile_record(conn, match)

    assert first == second
    assert count_games(engine, provider=PROVIDER_CURRENT, external_id="9001") == 1


def test_reconcile_reuses_existing_record_untouched(engine):
    existing_id = insert_game(
        engine,
        provider=PROVIDER_CURRENT,
        external_id="9001",
        title="Hollow Knight (curated)",
    )

    with engine.begin() as conn:
        game_id = reconcile_record(conn, candidate("9001.0", "Hollow Knight"))
        record = get_game(conn, game_id)

    assert game_id == existing_id
    assert record.title == "Hollow Knight (curated)"


def test_find_game_by_external_id_is_provider_scoped(engine):
    insert_game(engine, provider=PROVIDER_LEGACY, external_id="9001", title="Other")

    with engine.sa_connection() as conn:
        assert find_game_by_external_id(conn, PROVIDER_CURRENT, "9001") is None
        assert find_game_by_external_id(conn, PROVIDER_LEGACY, 9001).title == "Other"


def test_reconcile_converges_when_row_appears_before_insert(engine, monkeypatch):
    existing_id = insert_game(
        engine,
        provider=PROVIDER_CURRENT,
        external_id="9001",
        title="Hollow Knight",
    )

    real_find = reconciler.find_game_by_external_id
    calls = []

    def miss_once(conn, provider, external_id):
        calls.append(external_id)
        if len(calls) == 1:
            return None
        return real_find(conn, provider, external_id)

    monkeypatch.setattr(reconciler, "find_game_by_external_id", miss_once)

    with engine.begin() as conn:
        game_id = reconcile_record(conn, candidate(9001, "Hollow Knight", summary="Descend."))
        record = get_game(conn, game_id)

    assert len(calls) == 2
    assert game_id == existing_id
    assert record.description == "Descend."
    assert count_games(engine, provider=PROVIDER_CURRENT, external_id="9001") == 1
