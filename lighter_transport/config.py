"""Configuration values consumed by the transport core.

Values are supplied by the caller as plain data; nothing here reads the
environment or the filesystem.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import urlsplit

from .errors import ConfigError

DEFAULT_BASE_URL = "https://api.lighter.xyz"
DEFAULT_WS_URL = "wss://ws.lighter.xyz"


def default_retryable_status(status: int) -> bool:
    """Return True for 429 and 5xx responses."""
    return status == 429 or 500 <= status <= 599


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and backoff settings for HTTP requests.

    Attributes:
        max_retries: Retries issued after the initial attempt
        base_delay: Delay before the first retry (seconds)
        max_delay: Upper bound for the exponential part of the delay (seconds)
        jitter: Upper bound of the random delay added to each backoff (seconds)
        retryable_status: Predicate deciding whether a status is transient
    """

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 10.0
    jitter: float = 0.025
    retryable_status: Callable[[int], bool] = field(
        default=default_retryable_status, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ConfigError("backoff delays must be >= 0")

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        delay = min(self.base_delay * (2 ** (retry - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def is_retryable_status(self, status: int) -> bool:
        """Check a response status against the retry predicate."""
        return self.retryable_status(status)


class AuthPlacement(Enum):
    """Where authentication material is attached to a request."""

    HEADERS = "headers"
    BODY = "body"


def _check_url(url: str, schemes: tuple[str, ...], label: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in schemes or not parts.netloc:
        raise ConfigError(f"Invalid {label} URL: {url!r}")
    return url


@dataclass(frozen=True)
class ClientConfig:
    """Settings for the REST transport and the stream session.

    Attributes:
        base_url: REST base URL, may include a version path
        ws_url: Streaming endpoint URL
        api_key: Optional bearer token sent with REST calls
        request_timeout: Per-attempt HTTP timeout (seconds)
        max_retries: Retries after the initial HTTP attempt
        backoff_base: First HTTP retry delay (seconds)
        backoff_max: Cap on the exponential HTTP delay (seconds)
        backoff_jitter: Random delay added to each HTTP retry (seconds)
        reconnect_attempts: Stream reconnect ceiling before giving up
        reconnect_base_delay: First stream reconnect delay (seconds)
        reconnect_max_delay: Cap on the stream reconnect delay (seconds)
        heartbeat_timeout: Silence window before a stream is considered dead
        ping_interval: Protocol ping interval (seconds)
        ping_timeout: Protocol pong deadline (seconds)
        connect_timeout: WebSocket opening handshake timeout (seconds)
        auth_placement: Header or body placement of auth material
    """

    base_url: str = DEFAULT_BASE_URL
    ws_url: str = DEFAULT_WS_URL
    api_key: str | None = field(default=None, repr=False)
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base: float = 0.1
    backoff_max: float = 10.0
    backoff_jitter: float = 0.025
    reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    heartbeat_timeout: float | None = 60.0
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 20.0
    connect_timeout: float = 15.0
    auth_placement: AuthPlacement = AuthPlacement.HEADERS

    def __post_init__(self) -> None:
        _check_url(self.base_url, ("http", "https"), "base")
        _check_url(self.ws_url, ("ws", "wss"), "WebSocket")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be > 0")
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.reconnect_attempts < 0:
            raise ConfigError("reconnect_attempts must be >= 0")
        if self.heartbeat_timeout is not None and self.heartbeat_timeout <= 0:
            raise ConfigError("heartbeat_timeout must be > 0 or None")

    def with_api_key(self, api_key: str) -> ClientConfig:
        return replace(self, api_key=api_key)

    def with_base_url(self, url: str) -> ClientConfig:
        return replace(self, base_url=url)

    def with_ws_url(self, url: str) -> ClientConfig:
        return replace(self, ws_url=url)

    def with_timeout(self, timeout: float) -> ClientConfig:
        return replace(self, request_timeout=timeout)

    def with_max_retries(self, max_retries: int) -> ClientConfig:
        return replace(self, max_retries=max_retries)

    def retry_policy(self) -> RetryPolicy:
        """Build the HTTP retry policy described by this config."""
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
            jitter=self.backoff_jitter,
        )
