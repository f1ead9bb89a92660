"""Tests for LighterWsClient WebSocket wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosed

from lighter_transport.errors import TransportConnectionError
from lighter_transport.ws_client import LighterWsClient, WsMessage, WsMessageType

STREAM_URL = "wss://ws.example.com/stream"


class AsyncIteratorMock:
    """Helper class to create a proper async iterator mock."""

    def __init__(self, items: list, *, raise_on_iter: Exception | None = None):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self._items):
            if self._raise_on_iter is not None:
                raise self._raise_on_iter
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


async def connected_client(mock_ws) -> LighterWsClient:
    with patch(
        "lighter_transport.ws_client.connect_websocket",
        return_value=mock_ws,
    ):
        client = LighterWsClient()
        await client.connect(STREAM_URL)
    return client


class TestWsMessage:
    """Tests for WsMessage dataclass."""

    def test_closed_message_has_no_data(self):
        """Test creating a closed message."""
        msg = WsMessage(type=WsMessageType.CLOSED)
        assert msg.type == WsMessageType.CLOSED
        assert msg.data is None

    def test_message_is_frozen(self):
        """Test that messages are immutable."""
        msg = WsMessage(type=WsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestLighterWsClientConnect:
    """Tests for LighterWsClient.connect()."""

    async def test_connect_success(self):
        """Test successful WebSocket connection."""
        mock_ws = AsyncMock()

        with patch(
            "lighter_transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = LighterWsClient()
            await client.connect(STREAM_URL, ping_interval=10, timeout=5.0)

            mock_connect.assert_called_once_with(
                STREAM_URL,
                ping_interval=10,
                ping_timeout=20,
                timeout=5.0,
            )
            assert client.connected

    async def test_connect_propagates_errors(self):
        """Test that connection errors are propagated."""
        with patch(
            "lighter_transport.ws_client.connect_websocket",
            side_effect=TransportConnectionError("Connection failed"),
        ):
            client = LighterWsClient()
            with pytest.raises(TransportConnectionError, match="Connection failed"):
                await client.connect(STREAM_URL)
            assert not client.connected


class TestLighterWsClientClose:
    """Tests for LighterWsClient.close()."""

    async def test_close_connected(self):
        """Test closing a connected client."""
        mock_ws = AsyncMock()
        client = await connected_client(mock_ws)

        await client.close()

        mock_ws.close.assert_called_once()
        assert not client.connected

    async def test_close_not_connected(self):
        """Test closing when not connected (no error)."""
        await LighterWsClient().close()


class TestLighterWsClientSendJson:
    """Tests for LighterWsClient.send_json()."""

    async def test_send_json_success(self):
        """Test sending JSON payload."""
        mock_ws = AsyncMock()
        client = await connected_client(mock_ws)

        await client.send_json({"type": "subscribe", "channel": "trades"})

        mock_ws.send.assert_called_once_with(
            '{"type": "subscribe", "channel": "trades"}'
        )

    async def test_send_json_not_connected(self):
        """Test send_json raises when not connected."""
        with pytest.raises(TransportConnectionError, match="not connected"):
            await LighterWsClient().send_json({"type": "ping"})

    async def test_send_json_after_drop(self):
        """Test a closed connection surfaces as TransportConnectionError."""
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)
        client = await connected_client(mock_ws)

        with pytest.raises(TransportConnectionError, match="closed"):
            await client.send_json({"type": "ping"})


class TestLighterWsClientPing:
    """Tests for LighterWsClient.ping()."""

    async def test_ping_waits_for_pong(self):
        """Test ping returns once the pong waiter resolves."""
        pong_waiter = asyncio.get_running_loop().create_future()
        pong_waiter.set_result(0.01)
        mock_ws = AsyncMock()
        mock_ws.ping.return_value = pong_waiter
        client = await connected_client(mock_ws)

        await client.ping()

        mock_ws.ping.assert_awaited_once()

    async def test_ping_without_pong_blocks(self):
        """Test ping does not return while the pong is outstanding."""
        mock_ws = AsyncMock()
        mock_ws.ping.return_value = asyncio.get_running_loop().create_future()
        client = await connected_client(mock_ws)

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.05):
                await client.ping()

    async def test_ping_on_closed_connection(self):
        """Test a closed connection surfaces as TransportConnectionError."""
        mock_ws = AsyncMock()
        mock_ws.ping.side_effect = ConnectionClosed(None, None)
        client = await connected_client(mock_ws)

        with pytest.raises(TransportConnectionError, match="pinging"):
            await client.ping()

    async def test_ping_not_connected(self):
        with pytest.raises(TransportConnectionError, match="not connected"):
            await LighterWsClient().ping()


class TestLighterWsClientIteration:
    """Tests for LighterWsClient async iteration."""

    def test_iter_not_connected(self):
        """Test iteration raises when not connected."""
        with pytest.raises(TransportConnectionError, match="not connected"):
            aiter(LighterWsClient())

    async def test_iter_graceful_close(self):
        """Test iteration emits CLOSED on graceful completion."""
        client = await connected_client(AsyncIteratorMock(["hello", "world"]))

        messages = [msg async for msg in client]

        assert [m.type for m in messages] == [
            WsMessageType.TEXT,
            WsMessageType.TEXT,
            WsMessageType.CLOSED,
        ]
        assert messages[0].data == "hello"

    async def test_iter_connection_closed(self):
        """Test iteration handles ConnectionClosed."""
        client = await connected_client(
            AsyncIteratorMock(["a"], raise_on_iter=ConnectionClosed(None, None))
        )

        messages = [msg async for msg in client]

        assert [m.type for m in messages] == [WsMessageType.TEXT, WsMessageType.CLOSED]

    async def test_iter_unexpected_error(self):
        """Test iteration handles unexpected errors."""
        client = await connected_client(
            AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))
        )

        messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == WsMessageType.ERROR

    async def test_iter_decodes_binary_json(self):
        """Test UTF-8 binary frames are delivered as text."""
        client = await connected_client(
            AsyncIteratorMock(["text1", b'{"type":"pong"}', b"\xff\xfe", "text2"])
        )

        messages = [msg async for msg in client]

        text = [m.data for m in messages if m.type == WsMessageType.TEXT]
        assert text == ["text1", '{"type":"pong"}', "text2"]


class TestLighterWsClientNormalization:
    """Tests for LighterWsClient message normalization."""

    def test_normalize_string_message(self):
        """Test normalizing a plain string."""
        result = LighterWsClient._normalize_message("hello world")
        assert result == WsMessage(WsMessageType.TEXT, "hello world")

    def test_normalize_invalid_utf8_returns_none(self):
        """Test undecodable binary frames are skipped."""
        assert LighterWsClient._normalize_message(b"\xff\xfe") is None

    def test_normalize_unknown_object(self):
        """Test unknown frame objects are skipped."""
        assert LighterWsClient._normalize_message(object()) is None
