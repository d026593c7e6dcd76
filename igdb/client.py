"""HTTP access to the IGDB v4 API (Apicalypse queries over POST)."""

from __future__ import annotations

import json
import logging
import os
import time
from http.client import HTTPException
from typing import Any, Callable, Iterable, Mapping

from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from sync.errors import RateLimited, SourceUnavailable

logger = logging.getLogger(__name__)

IGDB_MAX_PAGE_SIZE = 500
DEFAULT_USER_AGENT = "TT-Game-Liste/1.0 (support@example.com)"


def resolve_igdb_page_size(batch_size: Any, *, max_page_size: int = IGDB_MAX_PAGE_SIZE) -> int:
    """Clamp ``batch_size`` to ``1..max_page_size``; junk means the maximum."""

    try:
        size = int(batch_size)
    except (TypeError, ValueError):
        return max_page_size
    return min(size, max_page_size) if size > 0 else max_page_size


def build_query(
    *,
    fields: Iterable[str] | None = None,
    where: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    sort: str | None = None,
) -> str:
    """Render an Apicalypse body such as ``fields id,name; limit 500;``."""

    clauses = []
    if fields is not None:
        clauses.append(f"fields {','.join(fields)};")
    if where:
        clauses.append(f"where {where};")
    if limit is not None:
        clauses.append(f"limit {int(limit)};")
    if offset is not None:
        clauses.append(f"offset {max(0, int(offset))};")
    if sort:
        clauses.append(f"sort {sort};")
    return " ".join(clauses)


def _first_env(env: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return ""


class IGDBClient:
    """Authenticated IGDB requests with token refresh and 429 back-off.

    The Twitch app token is requested lazily on the first call. Transport
    hooks (``request_factory``, ``opener``, ``sleep``) can be swapped so tests
    never touch the network.
    """

    BASE_URL = "https://api.igdb.com/v4"
    TOKEN_URL = "https://id.twitch.tv/oauth2/token"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        access_token: str | None = None,
        user_agent: str | None = None,
        max_page_size: int = IGDB_MAX_PAGE_SIZE,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[[Any], Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        env = os.environ if env is None else env
        self._client_id = (client_id or "").strip() or _first_env(
            env, "IGDB_CLIENT_ID", "TWITCH_CLIENT_ID"
        )
        self._client_secret = (client_secret or "").strip() or _first_env(
            env, "IGDB_CLIENT_SECRET", "TWITCH_CLIENT_SECRET"
        )
        self._access_token = (access_token or "").strip()
        self._user_agent = (
            (user_agent or "").strip()
            or _first_env(env, "IGDB_USER_AGENT")
            or DEFAULT_USER_AGENT
        )
        self._max_page_size = max_page_size if max_page_size > 0 else IGDB_MAX_PAGE_SIZE
        self._max_retries = max(1, int(max_retries or 1))
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen
        self._sleep = sleep or time.sleep

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def max_page_size(self) -> int:
        return self._max_page_size

    def exchange_twitch_credentials(self) -> tuple[str, str]:
        """Trade the client id/secret for an app token; return ``(token, client_id)``."""

        if not (self._client_id and self._client_secret):
            raise SourceUnavailable("missing twitch client credentials")

        form = urlencode(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            }
        )
        request = self._request_factory(self.TOKEN_URL, data=form.encode("utf-8"), method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        payload = self._send(request, "twitch token request failed", retry_rate_limit=False)
        token = payload.get("access_token") if isinstance(payload, Mapping) else None
        if not token:
            raise SourceUnavailable("missing access token in twitch response")

        self._access_token = str(token)
        logger.debug("Obtained IGDB access token for client %s", self._client_id)
        return self._access_token, self._client_id

    def access_token(self, *, force_refresh: bool = False) -> str:
        if force_refresh or not self._access_token:
            self.exchange_twitch_credentials()
        return self._access_token

    def post(self, endpoint: str, body: str) -> Any:
        """Send ``body`` to ``endpoint`` and return the decoded JSON.

        A 401 answer refreshes the token once when a client secret is known.
        """

        endpoint = endpoint.strip("/")
        try:
            return self._post_once(endpoint, body, self.access_token())
        except SourceUnavailable as exc:
            if exc.status != 401 or not self._client_secret:
                raise
        logger.info("IGDB rejected the access token; requesting a new one")
        return self._post_once(endpoint, body, self.access_token(force_refresh=True))

    def count(self, endpoint: str, *, where: str | None = None) -> int:
        payload = self.post(f"{endpoint.strip('/')}/count", build_query(where=where))

        # IGDB answers {"count": N}; multiquery-style proxies wrap it in a list.
        if isinstance(payload, list) and payload:
            payload = payload[0]
        value = payload.get("count") if isinstance(payload, Mapping) else None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise SourceUnavailable(f"invalid count payload from IGDB: {payload!r}") from None

    def fetch(
        self,
        endpoint: str,
        *,
        fields: Iterable[str],
        limit: int,
        offset: int = 0,
        where: str | None = None,
        sort: str | None = "id asc",
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` records of ``endpoint`` starting at ``offset``."""

        query = build_query(
            fields=fields,
            where=where,
            limit=resolve_igdb_page_size(limit, max_page_size=self._max_page_size),
            offset=offset,
            sort=sort,
        )
        payload = self.post(endpoint, query)
        if not isinstance(payload, list):
            raise SourceUnavailable(f"unexpected IGDB payload for {endpoint}: {payload!r}")
        return [record for record in payload if isinstance(record, Mapping)]

    def _post_once(self, endpoint: str, body: str, token: str) -> Any:
        request = self._request_factory(
            f"{self.BASE_URL}/{endpoint}", data=body.encode("utf-8"), method="POST"
        )
        for header, value in (
            ("Client-ID", self._client_id),
            ("Authorization", f"Bearer {token}"),
            ("Accept", "application/json"),
            ("User-Agent", self._user_agent),
        ):
            request.add_header(header, value)
        return self._send(request, f"IGDB {endpoint} request failed")

    def _send(self, request: Any, context: str, *, retry_rate_limit: bool = True) -> Any:
        attempts = self._max_retries if retry_rate_limit else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._opener(request) as response:
                    raw = response.read()
                break
            except HTTPError as exc:
                message = _describe_http_error(context, exc)
                if exc.code != 429 or not retry_rate_limit:
                    raise SourceUnavailable(message, status=exc.code) from exc
                delay = self._retry_delay(exc)
                if attempt >= attempts:
                    raise RateLimited(message, retry_after=delay) from exc
                logger.warning(
                    "IGDB rate limit hit; retrying in %.2fs (attempt %s/%s)",
                    delay,
                    attempt,
                    attempts,
                )
                self._sleep(delay)
            except (URLError, HTTPException, OSError) as exc:
                raise SourceUnavailable(f"{context}: {exc}") from exc

        text = raw.decode("utf-8", errors="replace").strip() if raw else ""
        if not text:
            return []
        try:
            return json.loads(text)
        except ValueError as exc:
            raise SourceUnavailable("invalid JSON response from IGDB") from exc

    def _retry_delay(self, error: HTTPError) -> float:
        """Seconds to wait before retrying a 429, from the response headers."""

        headers = error.headers or {}
        retry_after = _positive_float(headers.get("Retry-After"))
        if retry_after:
            return retry_after
        reset_at = _positive_float(headers.get("X-RateLimit-Reset"))
        if reset_at and reset_at > time.time():
            return reset_at - time.time()
        return self._rate_limit_wait


def _positive_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _describe_http_error(context: str, error: HTTPError) -> str:
    try:
        detail = (error.read() or b"").decode("utf-8", errors="replace").strip()
    except (AttributeError, OSError, ValueError):  # pragma: no cover - closed body
        detail = ""
    detail = detail or str(error.reason or "")
    return f"{context}: {error.code} {detail}".rstrip()


__all__ = [
    "DEFAULT_USER_AGENT",
    "IGDBClient",
    "IGDB_MAX_PAGE_SIZE",
    "build_query",
    "resolve_igdb_page_size",
]
