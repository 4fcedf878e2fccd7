import io
import json
from urllib.error import HTTPError

import pytest

from igdb.client import (
    IGDBClient,
    IGDBError,
    IGDBUnauthorizedError,
    cover_url_from_cover,
    escape_search_term,
)


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeOpener:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return FakeResponse(response)


def _http_error(code, body=b"", headers=None):
    return HTTPError("https://api.igdb.com/v4/games", code, "error", headers or {}, io.BytesIO(body))


WITCHER_PAYLOAD = {
    "id": 1942,
    "name": "The Witcher 3: Wild Hunt",
    "summary": "Geralt of Rivia...",
    "aggregated_rating": 92.4,
    "first_release_date": 1431993600,
    "cover": {"image_id": "co1wyy"},
    "genres": [{"name": "Role-playing (RPG)"}, {"name": "Adventure"}],
    "platforms": [{"name": "PC (Microsoft Windows)"}],
}


def _client(opener, *, sleep=lambda _: None, **kwargs):
    kwargs.setdefault("client_id", "client")
    kwargs.setdefault("access_token", "token")
    return IGDBClient(opener=opener, sleep=sleep, env={}, **kwargs)


def test_search_games_builds_query_and_normalizes():
    opener = FakeOpener([WITCHER_PAYLOAD])
    client = _client(opener)

    results = client.search_games('The Witcher "3"', limit=5)

    request = opener.requests[0]
    assert request.full_url == "https://api.igdb.com/v4/games"
    assert request.data.decode("utf-8").startswith('search "The Witcher \\"3\\""; fields ')
    assert request.data.decode("utf-8").endswith("limit 5;")
    assert request.get_header("Client-id") == "client"
    assert request.get_header("Authorization") == "Bearer token"

    assert len(results) == 1
    witcher = results[0]
    assert witcher.id == "1942"
    assert witcher.name == "The Witcher 3: Wild Hunt"
    assert witcher.rating == 92.0
    assert witcher.release_date == "2015-05-19"
    assert witcher.cover_image == (
        "https://images.igdb.com/igdb/image/upload/t_cover_big/co1wyy.jpg"
    )
    assert witcher.genres == ("Role-playing (RPG)", "Adventure")
    assert witcher.platforms == ("PC (Microsoft Windows)",)


def test_normalize_game_fallbacks():
    client = _client(FakeOpener())

    candidate = client.normalize_game(
        {"id": "7", "name": "Obscure", "storyline": "Long ago", "total_rating": 70.6}
    )

    assert candidate.summary == "Long ago"
    assert candidate.rating == 71.0
    assert candidate.release_date == ""
    assert client.normalize_game({"id": "abc", "name": "Broken"}) is None


def test_search_skips_blank_titles():
    opener = FakeOpener()

    assert _client(opener).search_games("   ") == []
    assert opener.requests == []


def test_rate_limited_requests_are_retried():
    sleeps = []
    opener = FakeOpener(_http_error(429, headers={"Retry-After": "2"}), [WITCHER_PAYLOAD])
    client = _client(opener, sleep=sleeps.append)

    results = client.search_games("The Witcher 3")

    assert [candidate.id for candidate in results] == ["1942"]
    assert sleeps == [2.0]
    assert len(opener.requests) == 2


def test_rate_limit_gives_up_after_max_retries():
    opener = FakeOpener(*[_http_error(429) for _ in range(2)])
    client = _client(opener, max_retries=2)

    with pytest.raises(IGDBError, match="429"):
        client.search_games("The Witcher 3")


def test_http_errors_raise_igdb_error():
    opener = FakeOpener(_http_error(500, body=b"upstream exploded"))

    with pytest.raises(IGDBError, match="500 upstream exploded"):
        _client(opener).search_games("The Witcher 3")


def test_invalid_json_raises():
    class BrokenResponse(FakeResponse):
        def read(self):
            return b"not json"

    client = _client(lambda request: BrokenResponse(None))

    with pytest.raises(IGDBError, match="invalid JSON"):
        client.search_games("The Witcher 3")


def test_credentials_are_exchanged_once():
    opener = FakeOpener({"access_token": "fresh"}, [WITCHER_PAYLOAD], [])
    client = IGDBClient(
        client_id="client", client_secret="secret", opener=opener, env={}
    )

    assert client.fetch_game_details("1942").id == "1942"
    assert client.fetch_game_details(1942.0) is None

    token_request, first, second = opener.requests
    assert token_request.full_url == IGDBClient.TOKEN_URL
    assert b"grant_type=client_credentials" in token_request.data
    assert first.get_header("Authorization") == "Bearer fresh"
    assert second.get_header("Authorization") == "Bearer fresh"
    assert b"where id = 1942;" in first.data


def test_missing_credentials():
    client = IGDBClient(opener=FakeOpener(), env={})

    with pytest.raises(IGDBError, match="missing twitch client credentials"):
        client.search_games("Hollow Knight")


def test_credentials_fall_back_to_environment():
    opener = FakeOpener({"access_token": "env-token"}, [])
    client = IGDBClient(
        opener=opener,
        env={"TWITCH_CLIENT_ID": "env-client", "TWITCH_CLIENT_SECRET": "env-secret"},
    )

    client.search_games("Hollow Knight")

    assert opener.requests[1].get_header("Client-id") == "env-client"


def test_fetch_game_details_rejects_non_numeric_ids():
    with pytest.raises(IGDBError):
        _client(FakeOpener()).fetch_game_details("hollow-knight")


def test_cover_url_from_cover():
    assert cover_url_from_cover("abc") == (
        "https://images.igdb.com/igdb/image/upload/t_cover_big/abc.jpg"
    )
    assert cover_url_from_cover(
        {"url": "//images.igdb.com/igdb/image/upload/t_thumb/xyz.jpg"}
    ) == "https://images.igdb.com/igdb/image/upload/t_cover_big/xyz.jpg"
    assert cover_url_from_cover(None) == ""


def test_escape_search_term():
    assert escape_search_term(' Say "hi" \\ ') == 'Say \\"hi\\" \\\\'


def test_rejected_token_is_exchanged_and_request_retried():
    opener = FakeOpener(
        _http_error(401, body=b"invalid token"),
        {"access_token": "fresh"},
        [WITCHER_PAYLOAD],
        [],
    )
    client = IGDBClient(
        client_id="client",
        client_secret="secret",
        access_token="stale",
        opener=opener,
        env={},
    )

    results = client.search_games("The Witcher 3")
    client.search_games("Hollow Knight")

    urls = [request.full_url for request in opener.requests]
    assert urls == [
        "https://api.igdb.com/v4/games",
        IGDBClient.TOKEN_URL,
        "https://api.igdb.com/v4/games",
        "https://api.igdb.com/v4/games",
    ]
    assert opener.requests[0].get_header("Authorization") == "Bearer stale"
    assert opener.requests[2].get_header("Authorization") == "Bearer fresh"
    assert opener.requests[3].get_header("Authorization") == "Bearer fresh"
    assert [candidate.id for candidate in results] == ["1942"]


def test_token_is_exchanged_only_once_per_request():
    opener = FakeOpener(
        _http_error(401, body=b"invalid token"),
        {"access_token": "fresh"},
        _http_error(401, body=b"still invalid"),
    )
    client = IGDBClient(
        client_id="client",
        client_secret="secret",
        access_token="stale",
        opener=opener,
        env={},
    )

    with pytest.raises(IGDBUnauthorizedError, match="401 still invalid"):
        client.search_games("The Witcher 3")
    assert len(opener.requests) == 3
