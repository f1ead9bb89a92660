"""WebSocket client wrapper for the Lighter stream."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from .errors import TransportConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class WsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class WsMessage:
    """Normalized WebSocket message payload."""

    type: WsMessageType
    data: str | None = None


class LighterWsClient:
    """Wrapper around the websockets library connection."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = 20,
        ping_timeout: float | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the stream endpoint."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket.

        Raises:
            TransportConnectionError: If not connected or the connection dropped
        """
        if self._ws is None:
            raise TransportConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise TransportConnectionError("WebSocket closed while sending") from err

    async def ping(self) -> None:
        """Send a protocol ping and wait for the matching pong.

        Raises:
            TransportConnectionError: If not connected or the connection dropped
        """
        if self._ws is None:
            raise TransportConnectionError("WebSocket is not connected")
        try:
            pong_waiter = await self._ws.ping()
            await pong_waiter
        except ConnectionClosed as err:
            raise TransportConnectionError("WebSocket closed while pinging") from err

    def __aiter__(self) -> AsyncIterator[WsMessage]:
        if self._ws is None:
            raise TransportConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[WsMessage]:
        if self._ws is None:
            raise TransportConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield WsMessage(type=WsMessageType.CLOSED)
        except Exception:
            yield WsMessage(type=WsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield WsMessage(type=WsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> WsMessage | None:
        """Normalize raw frames; binary frames carrying UTF-8 JSON become TEXT."""
        if isinstance(msg, str):
            return WsMessage(WsMessageType.TEXT, msg)
        if isinstance(msg, (bytes, bytearray, memoryview)):
            try:
                return WsMessage(WsMessageType.TEXT, bytes(msg).decode("utf-8"))
            except UnicodeDecodeError:
                return None
        return None

