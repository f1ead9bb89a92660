"""Client error types for Lighter venue interactions."""

from __future__ import annotations

from typing import Any


class LighterClientError(Exception):
    """Base error for Lighter client failures."""

    # Set by the authenticated layer to the nonce used on the failing attempt.
    nonce: int | None = None


class TransportError(LighterClientError):
    """Transient network or server failure, retryable per policy."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransportTimeout(TransportError):
    """Timeout while communicating with the venue."""


class TransportConnectionError(TransportError):
    """Network connection to the venue failed."""


class HandshakeError(TransportConnectionError):
    """WebSocket handshake failed."""


class RateLimited(TransportError):
    """The venue answered 429 Too Many Requests."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=429)
        self.retry_after = retry_after


class ResponseError(LighterClientError):
    """Non-retryable HTTP response error from the venue."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"API error: {status} - {message}")
        self.status = status
        self.message = message


class AuthRejected(ResponseError):
    """The venue rejected the request signature, nonce or credentials."""


class SigningError(LighterClientError):
    """Local key material or signing backend failure."""


class DecodeError(LighterClientError):
    """Malformed payload received from the venue."""

    def __init__(self, message: str, *, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class StreamError(LighterClientError):
    """Error frame decoded from the stream.

    Raised to the consumer without terminating the session.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        subscription_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.subscription_id = subscription_id


class StreamClosed(LighterClientError):
    """Stream session exhausted its reconnect budget."""


class ConfigError(LighterClientError, ValueError):
    """Invalid client configuration."""
