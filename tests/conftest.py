"""Pytest configuration and fixtures for lighter_transport tests."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lighter_transport.errors import TransportConnectionError
from lighter_transport.ws_client import WsMessage, WsMessageType

# Well-known test vectors; never use these keys for real funds.
TEST_PRIVATE_KEY = "0x" + "00" * 31 + "01"
TEST_ADDRESS = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
TEST_MNEMONIC_ADDRESS_0 = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

# Stand-alone signing program: message on stdin, hex signature on stdout.
SIGNER_SCRIPT = """
import sys
import time
from eth_account import Account
from eth_account.messages import encode_defunct
time.sleep(float(sys.argv[2]))
message = sys.stdin.buffer.read()
signed = Account.sign_message(encode_defunct(primitive=message), private_key=sys.argv[1])
sys.stdout.write("0x" + bytes(signed.signature).hex())
"""


def external_command(key: str, delay: float = 0.0) -> list[str]:
    """Command line for a signing program that waits ``delay`` seconds first."""
    return [sys.executable, "-c", SIGNER_SCRIPT, key, str(delay)]


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    headers: dict[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data serialized as the body when text_data is not given
        text_data: Raw body returned from text()
        headers: Response headers

    Returns:
        Configured AsyncMock response usable as an async context manager
    """
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}

    if text_data is None:
        text_data = json.dumps(json_data) if json_data is not None else ""
    response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeWsClient:
    """In-memory stand-in for LighterWsClient driven by a FakeStreamServer."""

    def __init__(self, server: FakeStreamServer) -> None:
        self.server = server
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.pings = 0
        self.connect_kwargs: dict[str, Any] = {}
        self._inbox: asyncio.Queue[WsMessage] = asyncio.Queue()

    async def connect(self, url: str, **kwargs: Any) -> None:
        self.server.attempts += 1
        self.connect_kwargs = {"url": url, **kwargs}
        if self.server.refuse_all or self.server.refuse > 0:
            if self.server.refuse > 0:
                self.server.refuse -= 1
            raise TransportConnectionError("Connection refused")
        self.server.connections.append(self)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(WsMessage(WsMessageType.CLOSED))

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise TransportConnectionError("WebSocket is not connected")
        self.sent.append(payload)

    async def ping(self) -> None:
        if self.closed:
            raise TransportConnectionError("WebSocket is not connected")
        self.pings += 1
        if not self.server.answer_pings:
            # A dead peer never sends the pong.
            await asyncio.Event().wait()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            msg = await self._inbox.get()
            yield msg
            if msg.type is not WsMessageType.TEXT:
                return

    # Server side helpers

    def push(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(WsMessage(WsMessageType.TEXT, json.dumps(frame)))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(WsMessage(WsMessageType.TEXT, text))

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(WsMessage(WsMessageType.CLOSED))

    def sent_of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == msg_type]


class FakeStreamServer:
    """Records every connection a StreamSession opens."""

    def __init__(self) -> None:
        self.connections: list[FakeWsClient] = []
        self.attempts = 0
        self.refuse = 0
        self.refuse_all = False
        self.answer_pings = True

    def client_factory(self) -> FakeWsClient:
        return FakeWsClient(self)

    @property
    def current(self) -> FakeWsClient:
        return self.connections[-1]


@pytest.fixture
def stream_server() -> Iterator[FakeStreamServer]:
    """Patch the session's WebSocket client with an in-memory server."""
    server = FakeStreamServer()
    with patch(
        "lighter_transport.session.LighterWsClient",
        side_effect=server.client_factory,
    ):
        yield server


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)
