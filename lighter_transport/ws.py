"""WebSocket connection helper for the Lighter streaming endpoint."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    HandshakeError,
    TransportConnectionError,
    TransportTimeout,
)


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = 20,
    ping_timeout: float | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open a WebSocket connection.

    The websockets library answers protocol pings and closes the connection
    when a pong misses ``ping_timeout``.

    Args:
        url: ws:// or wss:// endpoint
        ping_interval: Interval for ping frames, None disables pings
        ping_timeout: Pong deadline, None disables the check
        timeout: Opening handshake timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                ping_timeout=ping_timeout,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TransportTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise HandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise TransportConnectionError("WebSocket connection failed") from err
