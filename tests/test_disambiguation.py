import pytest

from db.schema import PROVIDER_CURRENT
from reconcile.disambiguation import (
    DisambiguationError,
    build_request,
    find_candidates,
    select_option,
)
from tests.app_helpers import insert_game


def test_find_candidates_combines_current_and_legacy_title_matches(engine):
    current_id = insert_game(
        engine, provider=PROVIDER_CURRENT, external_id="1942", title="The Witcher 3: Wild Hunt"
    )
    legacy_id = insert_game(engine, external_id="3328", title="The Witcher 3 - Wild Hunt")
    insert_game(engine, external_id="10", title="The Witcher 3: Wild Hunt - Blood and Wine")
    insert_game(engine, provider=PROVIDER_CURRENT, external_id="1", title="The Witcher 3")

    with engine.sa_connection() as conn:
        records = find_candidates(conn, "1942", "The Witcher 3: Wild Hunt")

    assert [record.id for record in records] == [current_id, legacy_id]


def test_single_candidate_does_not_open_request(engine):
    legacy_id = insert_game(engine, external_id="3328", title="Celeste")

    with engine.sa_connection() as conn:
        request = build_request(find_candidates(conn, "", "Celeste"))

    assert request.open is False
    assert [option.id for option in request.candidates] == [legacy_id]
    assert build_request([]).to_dict() == {"open": False, "candidates": []}


def test_request_serializes_options(engine):
    insert_game(
        engine,
        provider=PROVIDER_CURRENT,
        external_id="9001",
        title="Hollow Knight",
        cover_image="https://images.igdb.com/hk.jpg",
        release_date="2017-02-24",
    )
    insert_game(engine, external_id="4200", title="Hollow Knight")

    with engine.sa_connection() as conn:
        payload = build_request(find_candidates(conn, "9001", "Hollow Knight")).to_dict()

    assert payload["open"] is True
    assert payload["candidates"][0] == {
        "id": 1,
        "title": "Hollow Knight",
        "provider": PROVIDER_CURRENT,
        "background_image": "https://images.igdb.com/hk.jpg",
        "release_date": "2017-02-24",
    }


def test_select_option(engine):
    first = insert_game(engine, provider=PROVIDER_CURRENT, external_id="9001", title="Hollow Knight")
    second = insert_game(engine, external_id="4200", title="Hollow Knight")
    with engine.sa_connection() as conn:
        request = build_request(find_candidates(conn, "9001", "Hollow Knight"))

    assert select_option(request, None) is None
    assert select_option(request, "") is None
    assert select_option(request, second).id == second
    assert select_option(request, str(first)).id == first
    with pytest.raises(DisambiguationError):
        select_option(request, 12345)
    with pytest.raises(DisambiguationError):
        select_option(request, "not-a-number")


def test_select_option_rejects_booleans(engine):
    first = insert_game(engine, provider=PROVIDER_CURRENT, external_id="9001", title="Hollow Knight")
    insert_game(engine, external_id="4200", title="Hollow Knight")
    with engine.sa_connection() as conn:
        request = build_request(find_candidates(conn, "9001", "Hollow Knight"))

    assert first == 1
    with pytest.raises(DisambiguationError):
        select_option(request, True)


def test_find_candidates_includes_other_non_current_providers(engine):
    legacy_id = insert_game(engine, external_id="4200", title="Hollow Knight")
    other_id = insert_game(engine, provider="steam", external_id="367520", title="Hollow Knight")

    with engine.sa_connection() as conn:
        records = find_candidates(conn, "", "Hollow Knight")

    assert [record.id for record in records] == [legacy_id, other_id]
