"""Streaming session manager for the Lighter WebSocket endpoint.

This module owns one WebSocket connection and handles:
- Connection state machine
- The desired-subscription table and its replay after every (re)connect
- Reconnect with exponential backoff up to a ceiling
- Heartbeat: application pings answered, silent connections pinged and torn
  down only when the pong never arrives
- Routing inbound frames to the consumer, dropping stale subscriptions

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTING ...
                                          \\-> CLOSED (close() or budget spent)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Any

from .config import ClientConfig
from .errors import (
    DecodeError,
    LighterClientError,
    StreamClosed,
    StreamError,
    TransportConnectionError,
)
from .protocol import (
    CONTROL_TYPES,
    ERROR,
    PING,
    StreamEvent,
    SubscriptionIntent,
    build_pong,
    build_subscribe,
    build_unsubscribe,
    error_details,
    parse_frame,
    to_event,
)
from .sink import (
    STREAM_DECODE_ERROR,
    STREAM_DROPPED,
    STREAM_RECONNECT,
    STREAM_STATE,
    EventSink,
    NullSink,
)
from .ws_client import LighterWsClient, WsMessage, WsMessageType

_LOGGER = logging.getLogger(__name__)


class StreamState(Enum):
    """Connection states of a ``StreamSession``."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


# Queue marker: the caller closed the session.
_END = object()


async def _receive(messages: AsyncIterator[WsMessage]) -> WsMessage | None:
    """Next message from the connection, None once the iterator is exhausted."""
    try:
        return await anext(messages)
    except StopAsyncIteration:
        return None


class StreamSession:
    """High-level session manager for the venue stream.

    Usage:
        session = StreamSession("wss://ws.lighter.xyz")
        await session.connect()
        await session.subscribe(
            SubscriptionIntent("orderbook", {"symbol": "BTC-USDC", "depth": 10})
        )
        async for event in session:
            handle(event)
        await session.close()
    """

    def __init__(
        self,
        url: str,
        *,
        reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        heartbeat_timeout: float | None = 60.0,
        ping_interval: float | None = 20.0,
        ping_timeout: float | None = 20.0,
        connect_timeout: float = 15.0,
        event_sink: EventSink | None = None,
    ) -> None:
        """Initialize session.

        Args:
            url: Streaming endpoint
            reconnect_attempts: Reconnect ceiling before the session closes
            reconnect_base_delay: First reconnect delay (seconds)
            reconnect_max_delay: Maximum reconnect delay (seconds)
            heartbeat_timeout: Silence window before the connection is
                considered dead, None disables the check
            ping_interval: Protocol ping interval (seconds)
            ping_timeout: Protocol pong deadline (seconds)
            connect_timeout: Opening handshake timeout (seconds)
            event_sink: Optional structured event collaborator
        """
        self.url = url

        self._reconnect_attempts = reconnect_attempts
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._heartbeat_timeout = heartbeat_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._connect_timeout = connect_timeout
        self._sink = event_sink or NullSink()

        # Connection state
        self._ws: LighterWsClient | None = None
        self._state = StreamState.DISCONNECTED
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._terminal_error: StreamClosed | None = None

        # Subscription table, insertion ordered; mutated only by subscribe/unsubscribe
        self._subscriptions: dict[str, SubscriptionIntent] = {}

        # Delivery
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._dropped_frames = 0
        self._decode_errors = 0

        self._state_callback: Callable[[StreamState], None] | None = None

    @classmethod
    def from_config(
        cls, config: ClientConfig, *, event_sink: EventSink | None = None
    ) -> StreamSession:
        return cls(
            config.ws_url,
            reconnect_attempts=config.reconnect_attempts,
            reconnect_base_delay=config.reconnect_base_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            heartbeat_timeout=config.heartbeat_timeout,
            ping_interval=config.ping_interval,
            ping_timeout=config.ping_timeout,
            connect_timeout=config.connect_timeout,
            event_sink=event_sink,
        )

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is StreamState.CONNECTED

    @property
    def subscriptions(self) -> tuple[SubscriptionIntent, ...]:
        """Currently desired subscriptions in insertion order."""
        return tuple(self._subscriptions.values())

    @property
    def dropped_frames(self) -> int:
        """Frames discarded because their subscription id was not active."""
        return self._dropped_frames

    @property
    def decode_errors(self) -> int:
        """Malformed frames that were logged and skipped."""
        return self._decode_errors

    def on_connection_state_changed(
        self, callback: Callable[[StreamState], None]
    ) -> None:
        """Register callback for connection state changes."""
        self._state_callback = callback

    async def connect(self) -> None:
        """Open the connection and replay the subscription table.

        A failed initial connect leaves the session DISCONNECTED and raises;
        retrying it is the caller's decision. Calling this while connected or
        while a reconnect is in progress does nothing.

        Raises:
            TransportTimeout: Opening handshake timed out
            HandshakeError: Server refused the WebSocket upgrade
            TransportConnectionError: Network failure
        """
        if self._state in (
            StreamState.CONNECTING,
            StreamState.CONNECTED,
            StreamState.RECONNECTING,
        ):
            return

        if self._state is StreamState.CLOSED:
            self._queue = asyncio.Queue()
            self._terminal_error = None
        self._closing = False

        try:
            await self._open()
        except LighterClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.url, err)
            self._set_state(StreamState.DISCONNECTED)
            raise

        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Close the session; pending and future ``next_event`` calls end."""
        _LOGGER.info("[%s] Closing session", self.url)
        self._closing = True

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._discard_ws()
        self._set_state(StreamState.CLOSED)
        self._queue.put_nowait(_END)

    async def __aenter__(self) -> StreamSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, intent: SubscriptionIntent) -> str:
        """Add ``intent`` to the table and send it when connected.

        Re-subscribing an existing id replaces it in place.

        Returns:
            The subscription id
        """
        self._subscriptions[intent.id] = intent
        _LOGGER.debug(
            "[%s] Subscribe %s id=%s", self.url, intent.channel, intent.id
        )
        if self._state is StreamState.CONNECTED:
            await self._send(build_subscribe(intent))
        return intent.id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription; unknown ids are ignored."""
        intent = self._subscriptions.pop(subscription_id, None)
        if intent is None:
            _LOGGER.debug(
                "[%s] Unsubscribe for unknown id=%s ignored", self.url, subscription_id
            )
            return
        if self._state is StreamState.CONNECTED:
            await self._send(build_unsubscribe(intent))

    # -------------------------------------------------------------------------
    # Public API: Events
    # -------------------------------------------------------------------------

    async def next_event(self) -> StreamEvent | None:
        """Wait for the next event.

        Returns:
            The next event, or None once the caller has closed the session

        Raises:
            StreamError: The server sent an error frame; the session stays up
            StreamClosed: The reconnect budget was exhausted
            TransportConnectionError: The session was never connected
        """
        while True:
            if self._queue.empty():
                if self._terminal_error is not None:
                    raise self._terminal_error
                if self._state is StreamState.CLOSED:
                    return None
                if self._state is StreamState.DISCONNECTED:
                    raise TransportConnectionError("Stream session is not connected")

            item = await self._queue.get()
            if item is _END:
                return None
            if isinstance(item, (StreamError, StreamClosed)):
                raise item
            if item.subscription_id not in self._subscriptions:
                # Unsubscribed after the frame was queued.
                self._drop(item)
                continue
            return item

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Iterate events until the session is closed."""
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: StreamState) -> None:
        """Update connection state and notify observers."""
        if self._state is state:
            return
        _LOGGER.debug("[%s] State: %s → %s", self.url, self._state.value, state.value)
        self._state = state
        self._sink.record(STREAM_STATE, url=self.url, state=state.value)
        if self._state_callback:
            self._state_callback(state)

    async def _open(self) -> None:
        """Connect, mark CONNECTED and replay subscriptions."""
        self._set_state(StreamState.CONNECTING)
        _LOGGER.info("[%s] Connecting", self.url)

        ws = LighterWsClient()
        await ws.connect(
            self.url,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_timeout,
            timeout=self._connect_timeout,
        )
        self._ws = ws
        self._set_state(StreamState.CONNECTED)

        # Snapshot before the first await; later subscribes send directly.
        intents = list(self._subscriptions.values())
        for intent in intents:
            if self._subscriptions.get(intent.id) is not intent:
                continue
            try:
                await ws.send_json(build_subscribe(intent))
            except LighterClientError:
                await self._discard_ws()
                raise
        if intents:
            _LOGGER.info("[%s] Replayed %d subscriptions", self.url, len(intents))

    async def _discard_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.url)
        except LighterClientError as err:
            _LOGGER.debug("[%s] WebSocket close failed: %s", self.url, err)

    async def _run(self) -> None:
        """Pump frames from the live connection, reconnecting on loss."""
        try:
            while True:
                await self._pump()
                if self._closing:
                    return
                if not await self._reconnect():
                    return
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Listener cancelled", self.url)
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected listener error: %s", self.url, err)
            await self._discard_ws()
            self._fail(StreamClosed(f"Stream listener failed: {err}"), err)

    async def _reconnect(self) -> bool:
        """Reconnect with exponential backoff; False once the budget is spent."""
        self._set_state(StreamState.RECONNECTING)
        await self._discard_ws()

        last_error: LighterClientError | None = None
        for attempt in range(1, self._reconnect_attempts + 1):
            delay = min(
                self._reconnect_base_delay * (2 ** (attempt - 1)),
                self._reconnect_max_delay,
            )
            _LOGGER.info(
                "[%s] Reconnecting in %.1fs (attempt %d/%d)",
                self.url,
                delay,
                attempt,
                self._reconnect_attempts,
            )
            self._sink.record(STREAM_RECONNECT, url=self.url, attempt=attempt, delay=delay)
            await asyncio.sleep(delay)
            if self._closing:
                return False

            try:
                await self._open()
                return True
            except LighterClientError as err:
                last_error = err
                _LOGGER.warning(
                    "[%s] Reconnect attempt %d failed: %s", self.url, attempt, err
                )
                self._set_state(StreamState.RECONNECTING)

        _LOGGER.error(
            "[%s] Giving up after %d reconnect attempts",
            self.url,
            self._reconnect_attempts,
        )
        self._fail(
            StreamClosed(
                f"Stream closed after {self._reconnect_attempts} failed reconnect attempts"
            ),
            last_error,
        )
        return False

    def _fail(self, error: StreamClosed, cause: BaseException | None) -> None:
        error.__cause__ = cause
        self._terminal_error = error
        self._set_state(StreamState.CLOSED)
        self._queue.put_nowait(error)

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _pump(self) -> None:
        """Read frames until the connection closes, errors or goes silent."""
        ws = self._ws
        if ws is None:
            return

        messages = aiter(ws)
        message_count = 0
        # The pending receive outlives a silence window so the iterator is
        # never cancelled mid-read.
        receive: asyncio.Task[WsMessage | None] | None = None
        try:
            while True:
                if receive is None:
                    receive = asyncio.create_task(_receive(messages))
                done, _ = await asyncio.wait({receive}, timeout=self._heartbeat_timeout)
                if not done:
                    if await self._still_alive(ws):
                        continue
                    return

                msg = receive.result()
                receive = None
                if msg is None:
                    return
                if not await self._dispatch(msg, message_count):
                    return
                message_count += 1
        finally:
            if receive is not None:
                receive.cancel()

    async def _still_alive(self, ws: LighterWsClient) -> bool:
        """Ping a silent connection; False when no pong arrives in time."""
        _LOGGER.debug(
            "[%s] No frames for %.1fs, sending ping", self.url, self._heartbeat_timeout
        )
        try:
            async with asyncio.timeout(self._heartbeat_timeout):
                await ws.ping()
        except TimeoutError:
            _LOGGER.warning(
                "[%s] No pong within %.1fs, connection considered dead",
                self.url,
                self._heartbeat_timeout,
            )
            return False
        except LighterClientError as err:
            _LOGGER.warning("[%s] Heartbeat ping failed: %s", self.url, err)
            return False
        return True

    async def _dispatch(self, msg: WsMessage, message_count: int) -> bool:
        """Handle one message; False once the connection is finished."""
        if msg.type is WsMessageType.CLOSED:
            if not self._closing:
                _LOGGER.info(
                    "[%s] WebSocket closed by server (%d messages)",
                    self.url,
                    message_count,
                )
            return False
        if msg.type is WsMessageType.ERROR:
            _LOGGER.error("[%s] WebSocket error", self.url)
            return False

        await self._handle_text(msg.data)
        return True

    async def _handle_text(self, raw: str | None) -> None:
        try:
            frame = parse_frame(raw if raw is not None else "")
        except DecodeError as err:
            self._decode_errors += 1
            _LOGGER.warning("[%s] Skipping malformed frame: %s", self.url, err)
            self._sink.record(STREAM_DECODE_ERROR, url=self.url, error=str(err))
            return

        msg_type = frame["type"]
        if msg_type == PING:
            await self._send(build_pong(frame.get("id")))
            return
        if msg_type in CONTROL_TYPES:
            _LOGGER.debug("[%s] %s id=%s", self.url, msg_type, frame.get("id"))
            return
        if msg_type == ERROR:
            code, message = error_details(frame)
            _LOGGER.warning("[%s] Error frame code=%s: %s", self.url, code, message)
            self._queue.put_nowait(
                StreamError(message, code=code, subscription_id=frame.get("id"))
            )
            return

        event = to_event(frame)
        if event.subscription_id not in self._subscriptions:
            self._drop(event)
            return
        self._queue.put_nowait(event)

    def _drop(self, event: StreamEvent) -> None:
        self._dropped_frames += 1
        _LOGGER.debug(
            "[%s] Dropped %s frame for inactive id=%s",
            self.url,
            event.type,
            event.subscription_id,
        )
        self._sink.record(
            STREAM_DROPPED,
            url=self.url,
            subscription_id=event.subscription_id,
            channel=event.channel,
        )

    async def _send(self, frame: dict[str, Any]) -> bool:
        """Send a frame on the live connection.

        Returns:
            True if sent, False when disconnected or the send failed
        """
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send_json(frame)
            return True
        except LighterClientError as err:
            _LOGGER.warning("[%s] Failed to send %s: %s", self.url, frame["type"], err)
            return False
