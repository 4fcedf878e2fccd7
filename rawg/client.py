"""RAWG client used as the legacy metadata provider."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping

from urllib.error import HTTPError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from helpers import _format_first_release_date, coerce_external_id
from providers.base import ExternalCandidate, MetadataProviderError

logger = logging.getLogger(__name__)


class RAWGError(MetadataProviderError):
    """Raised when the RAWG API cannot be queried."""


class RAWGClient:
    """Read-only access to the RAWG catalogue."""

    name = "rawg"

    BASE_URL = "https://api.rawg.io/api"

    def __init__(
        self,
        api_key: str,
        *,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[[Any], Any] | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen

    def search_games(self, title: str, *, limit: int = 10) -> list[ExternalCandidate]:
        text = str(title or "").strip()
        if not text:
            return []
        payload = self._get("/games", {"search": text, "page_size": max(1, int(limit))})
        results: list[ExternalCandidate] = []
        items = payload.get("results") if isinstance(payload, Mapping) else None
        for item in items or []:
            candidate = self.normalize_game(item)
            if candidate is not None:
                results.append(candidate)
        return results

    def fetch_game_details(self, external_id: str) -> ExternalCandidate | None:
        normalized = coerce_external_id(external_id)
        if not normalized:
            raise RAWGError(f"invalid RAWG id: {external_id!r}")
        payload = self._get(f"/games/{quote(normalized)}", {}, allow_missing=True)
        if payload is None:
            return None
        return self.normalize_game(payload)

    @staticmethod
    def normalize_game(item: Any) -> ExternalCandidate | None:
        if not isinstance(item, Mapping):
            return None
        external_id = coerce_external_id(item.get("id"))
        if not external_id:
            logger.warning("Skipping RAWG entry with invalid id %s", item.get("id"))
            return None
        return ExternalCandidate.from_mapping(
            {
                "id": external_id,
                "name": item.get("name"),
                "summary": item.get("description_raw") or "",
                "cover_image": item.get("background_image") or "",
                "rating": item.get("metacritic"),
                "release_date": _format_first_release_date(item.get("released")),
                "genres": item.get("genres"),
                "platforms": item.get("platforms"),
            }
        )

    def _get(
        self, path: str, params: Mapping[str, Any], *, allow_missing: bool = False
    ) -> Any:
        if not self._api_key:
            raise RAWGError("RAWG API key is not configured")
        query = urlencode({"key": self._api_key, **params})
        request = self._request_factory(f"{self.BASE_URL}{path}?{query}", method="GET")
        request.add_header("Accept", "application/json")
        try:
            with self._opener(request) as response:
                body = response.read()
        except HTTPError as exc:
            if allow_missing and exc.code == 404:
                return None
            raise RAWGError(f"RAWG request failed: {exc.code} {exc.reason}") from exc
        except Exception as exc:  # pragma: no cover - network failures surfaced
            raise RAWGError(f"failed to query RAWG: {exc}") from exc
        try:
            return json.loads(body.decode("utf-8")) if body else {}
        except ValueError as exc:
            raise RAWGError("invalid JSON response from RAWG") from exc


__all__ = ["RAWGClient", "RAWGError"]
