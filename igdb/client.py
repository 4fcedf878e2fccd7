"""IGDB client used as the current metadata provider."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Mapping

from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from helpers import _format_first_release_date, coerce_external_id
from providers.base import ExternalCandidate, MetadataProviderError

logger = logging.getLogger(__name__)


__all__ = [
    "IGDBClient",
    "IGDBError",
    "IGDBUnauthorizedError",
    "cover_url_from_cover",
    "escape_search_term",
]


GAME_FIELDS = (
    "id,name,summary,storyline,first_release_date,aggregated_rating,"
    "total_rating,cover.image_id,cover.url,genres.name,platforms.name"
)


class IGDBError(MetadataProviderError):
    """Raised when the IGDB API cannot be queried."""


class IGDBUnauthorizedError(IGDBError):
    """Raised when IGDB rejects the access token with HTTP 401."""


def cover_url_from_cover(value: Any, size: str = "t_cover_big") -> str:
    """Return the IGDB image URL for a cover payload or identifier."""

    image_id: str | None = None
    if isinstance(value, Mapping):
        raw_id = value.get("image_id")
        if isinstance(raw_id, str):
            image_id = raw_id.strip()
        elif raw_id is not None:
            image_id = str(raw_id).strip()
        if not image_id:
            raw_url = value.get("url")
            if isinstance(raw_url, str) and raw_url.strip():
                url = raw_url.strip().replace("t_thumb", size)
                return f"https:{url}" if url.startswith("//") else url
    elif isinstance(value, str):
        image_id = value.strip()
    elif value is not None:
        image_id = str(value).strip()
    if not image_id:
        return ""
    size_key = str(size).strip() if size else "t_cover_big"
    if not size_key:
        size_key = "t_cover_big"
    return "https://images.igdb.com/igdb/image/upload/" f"{size_key}/{image_id}.jpg"


def escape_search_term(title: str) -> str:
    """Escape ``title`` for use inside an Apicalypse ``search`` clause."""

    return str(title).replace("\\", "\\\\").replace('"', '\\"').strip()


class IGDBClient:
    """High level helper that manages IGDB authentication and game lookups."""

    name = "igdb"

    BASE_URL = "https://api.igdb.com/v4"
    TOKEN_URL = "https://id.twitch.tv/oauth2/token"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        access_token: str | None = None,
        user_agent: str | None = None,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[[Any], Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._access_token = (access_token or "").strip()
        self._user_agent = (user_agent or "").strip()
        self._max_retries = max(1, int(max_retries)) if max_retries else 3
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory
        self._opener = opener
        self._sleep = sleep or time.sleep
        self._env = env if env is not None else os.environ

    @property
    def user_agent(self) -> str:
        if self._user_agent:
            return self._user_agent
        env_agent = self._env.get("IGDB_USER_AGENT")
        if env_agent:
            return env_agent.strip()
        return "BacklogExplorer/1.0 (support@example.com)"

    def exchange_twitch_credentials(self) -> tuple[str, str]:
        """Return a Twitch access token paired with the resolved client id."""

        resolved_client_id = (self._client_id or self._env.get("TWITCH_CLIENT_ID") or "").strip()
        resolved_client_secret = (
            self._client_secret or self._env.get("TWITCH_CLIENT_SECRET") or ""
        ).strip()
        if not resolved_client_id or not resolved_client_secret:
            raise IGDBError("missing twitch client credentials")

        payload = urlencode(
            {
                "client_id": resolved_client_id,
                "client_secret": resolved_client_secret,
                "grant_type": "client_credentials",
            }
        ).encode("utf-8")

        request = self._resolve_request_factory()(
            self.TOKEN_URL,
            data=payload,
            method="POST",
        )
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        data = self._request_json(
            request,
            error_prefix="failed to obtain twitch token",
            generic_error="failed to obtain twitch token",
            allow_rate_limit=False,
        )

        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise IGDBError("missing access token in twitch response")
        return str(token), resolved_client_id

    def _credentials(self) -> tuple[str, str]:
        if not self._access_token or not self._client_id:
            token, client_id = self.exchange_twitch_credentials()
            self._access_token = token
            self._client_id = client_id
        return self._access_token, self._client_id

    def search_games(self, title: str, *, limit: int = 10) -> list[ExternalCandidate]:
        """Return up to ``limit`` IGDB games for ``title`` in relevance order."""

        term = escape_search_term(title)
        if not term:
            return []
        bounded = max(1, min(int(limit), 500))
        query = f'search "{term}"; fields {GAME_FIELDS}; limit {bounded};'
        payload = self._post("games", query, generic_error="failed to search IGDB games")

        results: list[ExternalCandidate] = []
        for item in payload or []:
            candidate = self.normalize_game(item)
            if candidate is not None:
                results.append(candidate)
        logger.debug("IGDB search for %r returned %d candidates", title, len(results))
        return results

    def fetch_game_details(self, external_id: str) -> ExternalCandidate | None:
        """Return the IGDB game identified by ``external_id``."""

        normalized = coerce_external_id(external_id)
        try:
            numeric_id = int(normalized)
        except (TypeError, ValueError):
            raise IGDBError(f"invalid IGDB id: {external_id!r}")

        query = f"fields {GAME_FIELDS}; where id = {numeric_id}; limit 1;"
        payload = self._post("games", query, generic_error="failed to query IGDB game")
        for item in payload or []:
            candidate = self.normalize_game(item)
            if candidate is not None:
                return candidate
        return None

    def normalize_game(self, item: Mapping[str, Any]) -> ExternalCandidate | None:
        """Return an :class:`ExternalCandidate` for an IGDB game payload."""

        if not isinstance(item, Mapping):
            return None

        raw_id = item.get("id")
        try:
            igdb_id = int(str(raw_id).strip())
        except (TypeError, ValueError):
            logger.warning("Skipping IGDB entry with invalid id %s", raw_id)
            return None

        summary = item.get("summary") or item.get("storyline") or ""
        rating = item.get("aggregated_rating")
        if rating in (None, ""):
            rating = item.get("total_rating")
        try:
            rating_value = round(float(rating)) if rating not in (None, "") else None
        except (TypeError, ValueError):
            rating_value = None

        return ExternalCandidate.from_mapping(
            {
                "id": igdb_id,
                "name": item.get("name"),
                "summary": summary,
                "cover_image": cover_url_from_cover(item.get("cover")),
                "rating": rating_value,
                "release_date": _format_first_release_date(item.get("first_release_date")),
                "genres": item.get("genres"),
                "platforms": item.get("platforms"),
            }
        )

    def _post(self, endpoint: str, query: str, *, generic_error: str) -> Any:
        for attempt in range(2):
            access_token, client_id = self._credentials()
            request = self._resolve_request_factory()(
                f"{self.BASE_URL}/{endpoint}",
                data=query.encode("utf-8"),
                method="POST",
            )
            self._apply_headers(request, client_id, access_token)
            try:
                return self._request_json(
                    request,
                    error_prefix="IGDB request failed",
                    generic_error=generic_error,
                )
            except IGDBUnauthorizedError:
                if attempt:
                    raise
                # Expired app tokens are exchanged again once per request.
                logger.info("IGDB rejected the access token; requesting a new one")
                self._access_token = ""
        return []

    def _apply_headers(self, request: Any, client_id: str, access_token: str) -> None:
        request.add_header("Client-ID", client_id)
        request.add_header("Authorization", f"Bearer {access_token}")
        request.add_header("Accept", "application/json")
        request.add_header("Content-Type", "text/plain")
        request.add_header("User-Agent", self.user_agent)

    def _resolve_request_factory(self) -> Callable[..., Any]:
        return self._request_factory or Request

    def _resolve_opener(self) -> Callable[[Any], Any]:
        return self._opener or urlopen

    def _request_json(
        self,
        request: Any,
        *,
        error_prefix: str,
        generic_error: str,
        allow_rate_limit: bool = True,
    ) -> Any:
        opener = self._resolve_opener()
        attempts = self._max_retries if allow_rate_limit else 1
        for attempt in range(attempts):
            try:
                with opener(request) as response:
                    body = response.read()
            except HTTPError as exc:
                if allow_rate_limit and exc.code == 429 and attempt + 1 < attempts:
                    delay = self._retry_delay(exc)
                    if delay > 0:
                        self._sleep(delay)
                    continue
                if exc.code == 401:
                    raise IGDBUnauthorizedError(_format_http_error(error_prefix, exc)) from exc
                raise IGDBError(_format_http_error(error_prefix, exc)) from exc
            except Exception as exc:  # pragma: no cover - network failures surfaced
                raise IGDBError(f"{generic_error}: {exc}") from exc
            try:
                text = body.decode("utf-8") if body else ""
            except UnicodeDecodeError:  # pragma: no cover - unexpected decoding failures
                text = ""
            try:
                return json.loads(text) if text else []
            except ValueError as exc:
                raise IGDBError("invalid JSON response from IGDB") from exc
        return []

    def _retry_delay(self, error: HTTPError) -> float:
        headers = getattr(error, "headers", None)
        if headers is not None:
            for key in ("Retry-After", "retry-after"):
                value = headers.get(key)
                if value:
                    try:
                        delay = float(value)
                        if delay > 0:
                            return delay
                    except (TypeError, ValueError):
                        continue
        return self._rate_limit_wait


def _format_http_error(prefix: str, error: HTTPError) -> str:
    message = f"{prefix}: {error.code}"
    error_message = ""
    try:
        error_body = error.read()
    except Exception:  # pragma: no cover - best effort to capture error body
        error_body = b""
    if error_body:
        error_message = error_body.decode("utf-8", errors="replace").strip()
    if not error_message and error.reason:
        error_message = str(error.reason)
    if error_message:
        message = f"{message} {error_message}"
    return message
