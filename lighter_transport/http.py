"""HTTP transport for Lighter REST endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from . import __version__
from .config import RetryPolicy
from .errors import (
    AuthRejected,
    DecodeError,
    RateLimited,
    ResponseError,
    TransportConnectionError,
    TransportError,
    TransportTimeout,
)
from .sink import HTTP_RETRY, EventSink, NullSink

_LOGGER = logging.getLogger(__name__)

USER_AGENT = f"lighter-transport/{__version__}"
AUTH_REJECT_STATUSES = frozenset({401, 403})

# Returns the headers and JSON body for one attempt.
PrepareRequest = Callable[[], Awaitable[tuple[dict[str, str], Any]]]


@dataclass(frozen=True)
class HttpResponse:
    """Successful HTTP response with its JSON body decoded."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    text: str = ""


def create_session(
    *,
    limit_per_host: int = 10,
    keepalive_timeout: float = 90.0,
) -> aiohttp.ClientSession:
    """Create a pooled ClientSession suitable for sharing across requests.

    Must be called from a running event loop.
    """
    connector = aiohttp.TCPConnector(
        limit_per_host=limit_per_host,
        keepalive_timeout=keepalive_timeout,
    )
    return aiohttp.ClientSession(connector=connector)


def _decode_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError as err:
        raise DecodeError("Response body is not valid JSON", raw=text) from err


def _error_message(text: str) -> str:
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return text


def _retry_after(headers: Mapping[str, str]) -> float | None:
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class LighterHttpClient:
    """HTTP client wrapper with retry, backoff and error classification.

    The aiohttp session is owned by the caller and may be shared by many
    clients and concurrent requests.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        api_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
        request_timeout: float = 30.0,
        event_sink: EventSink | None = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._policy = retry_policy or RetryPolicy()
        self._request_timeout = request_timeout
        self._sink = event_sink or NullSink()

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        custom_auth = any(name.lower() == "authorization" for name in extra or {})
        if self._api_key and not custom_auth:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if extra:
            headers.update(extra)
        return headers

    async def execute(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> HttpResponse:
        """Send one request, retrying transient failures.

        Args:
            method: HTTP method
            path: Endpoint path relative to the base URL
            body: JSON-serializable request body
            headers: Extra request headers
            deadline: Overall time budget in seconds across all attempts

        Raises:
            TransportError: Transient failure that outlived the retry policy
            RateLimited: 429 responses that outlived the retry policy
            AuthRejected: 401/403 responses
            ResponseError: Any other non-2xx response
            DecodeError: 2xx response with a non-JSON body
        """
        extra = dict(headers or {})

        async def prepare() -> tuple[dict[str, str], Any]:
            return extra, body

        return await self.send(method, path, prepare, deadline=deadline)

    async def send(
        self,
        method: str,
        path: str,
        prepare: PrepareRequest,
        *,
        deadline: float | None = None,
    ) -> HttpResponse:
        """Send a request whose headers and body are rebuilt per attempt."""
        url = self._url(path)
        loop = asyncio.get_running_loop()
        expires = loop.time() + deadline if deadline is not None else None
        policy = self._policy
        retry = 0

        while True:
            timeout = self._attempt_timeout(loop, expires)
            extra, payload = await prepare()
            try:
                return await self._attempt(
                    method, url, self._headers(extra), payload, timeout
                )
            except TransportError as err:
                if err.status is not None and not policy.is_retryable_status(
                    err.status
                ):
                    raise
                last_error = err

            if retry >= policy.max_retries:
                _LOGGER.error(
                    "%s %s failed after %d retries: %s",
                    method,
                    url,
                    retry,
                    last_error,
                )
                raise last_error

            retry += 1
            delay = policy.backoff_delay(retry)
            if isinstance(last_error, RateLimited) and last_error.retry_after:
                if last_error.retry_after > policy.max_delay:
                    _LOGGER.warning(
                        "%s %s: venue asked to wait %.1fs, above the %.1fs cap",
                        method,
                        url,
                        last_error.retry_after,
                        policy.max_delay,
                    )
                    raise last_error
                delay = max(delay, last_error.retry_after)
            if expires is not None and loop.time() + delay >= expires:
                _LOGGER.warning(
                    "%s %s: deadline leaves no room for retry %d", method, url, retry
                )
                raise last_error

            _LOGGER.warning(
                "%s %s failed: %s. Retrying in %.3fs (attempt %d/%d)",
                method,
                url,
                last_error,
                delay,
                retry,
                policy.max_retries,
            )
            self._sink.record(
                HTTP_RETRY,
                method=method,
                url=url,
                retry=retry,
                delay=delay,
                status=last_error.status,
            )
            await asyncio.sleep(delay)

    def _attempt_timeout(
        self, loop: asyncio.AbstractEventLoop, expires: float | None
    ) -> float:
        if expires is None:
            return self._request_timeout
        remaining = expires - loop.time()
        if remaining <= 0:
            raise TransportTimeout("Request deadline exceeded")
        return min(self._request_timeout, remaining)

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        payload: Any,
        timeout: float,
    ) -> HttpResponse:
        _LOGGER.debug("Sending %s request to %s", method, url)
        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                return self._handle_response(resp.status, resp.headers, text)
        except TimeoutError as err:
            raise TransportTimeout(f"{method} {url} timed out") from err
        except aiohttp.ClientError as err:
            raise TransportConnectionError(f"{method} {url} failed: {err}") from err

    def _handle_response(
        self, status: int, headers: Mapping[str, str], text: str
    ) -> HttpResponse:
        if 200 <= status < 300:
            return HttpResponse(
                status=status,
                headers=dict(headers),
                body=_decode_body(text),
                text=text,
            )
        if status == 429:
            raise RateLimited(retry_after=_retry_after(headers))

        message = _error_message(text)
        if status in AUTH_REJECT_STATUSES:
            raise AuthRejected(status, message)
        if status >= 500 or self._policy.is_retryable_status(status):
            raise TransportError(f"HTTP {status}: {message}", status=status)
        raise ResponseError(status, message)

    async def get(
        self, path: str, *, headers: Mapping[str, str] | None = None
    ) -> Any:
        return (await self.execute("GET", path, headers=headers)).body

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        return (await self.execute("POST", path, body=body, headers=headers)).body

    async def put(
        self,
        path: str,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        return (await self.execute("PUT", path, body=body, headers=headers)).body

    async def delete(
        self, path: str, *, headers: Mapping[str, str] | None = None
    ) -> Any:
        return (await self.execute("DELETE", path, headers=headers)).body
