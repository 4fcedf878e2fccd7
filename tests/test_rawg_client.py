import io
import json
from urllib.error import HTTPError
from urllib.parse import parse_qs, urlparse

import pytest

from rawg.client import RAWGClient, RAWGError


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _opener(outcome, requests):
    def opener(request):
        requests.append(request)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)

    return opener


GTA_PAYLOAD = {
    "id": 3498,
    "name": "Grand Theft Auto V",
    "description_raw": "Rockstar Games went bigger...",
    "background_image": "https://media.rawg.io/media/games/gta5.jpg",
    "metacritic": 92,
    "released": "2013-09-17",
    "genres": [{"id": 4, "name": "Action"}],
    "platforms": [{"platform": {"id": 4, "name": "PC"}}, {"platform": {"name": "PlayStation 5"}}],
}


def test_search_games_normalizes_results():
    requests = []
    client = RAWGClient("rawg-key", opener=_opener({"results": [GTA_PAYLOAD]}, requests))

    results = client.search_games("GTA V", limit=3)

    query = parse_qs(urlparse(requests[0].full_url).query)
    assert query == {"key": ["rawg-key"], "search": ["GTA V"], "page_size": ["3"]}
    assert len(results) == 1
    gta = results[0]
    assert gta.id == "3498"
    assert gta.summary == "Rockstar Games went bigger..."
    assert gta.cover_image.endswith("gta5.jpg")
    assert gta.rating == 92.0
    assert gta.release_date == "2013-09-17"
    assert gta.genres == ("Action",)
    assert gta.platforms == ("PC", "PlayStation 5")


def test_fetch_game_details():
    requests = []
    client = RAWGClient("rawg-key", opener=_opener(GTA_PAYLOAD, requests))

    details = client.fetch_game_details("3498")

    assert urlparse(requests[0].full_url).path == "/api/games/3498"
    assert details.name == "Grand Theft Auto V"


def test_missing_game_returns_none():
    error = HTTPError("https://api.rawg.io/api/games/1", 404, "Not Found", {}, io.BytesIO())
    client = RAWGClient("rawg-key", opener=_opener(error, []))

    assert client.fetch_game_details("1") is None


def test_server_errors_raise():
    error = HTTPError("https://api.rawg.io/api/games", 500, "Server Error", {}, io.BytesIO())
    client = RAWGClient("rawg-key", opener=_opener(error, []))

    with pytest.raises(RAWGError, match="500"):
        client.search_games("GTA V")
    with pytest.raises(RAWGError, match="500"):
        client.fetch_game_details("3498")


def test_missing_api_key():
    requests = []
    client = RAWGClient("", opener=_opener({}, requests))

    with pytest.raises(RAWGError, match="not configured"):
        client.search_games("GTA V")
    assert requests == []
    assert client.search_games("") == []
