"""Wire formats for signed REST payloads and stream frames.

Stream frames share one envelope in both directions::

    {"id": ..., "type": ..., "channel": ..., "data": ..., "timestamp": ...}

For subscription traffic ``id`` is the client-chosen subscription id, which the
venue echoes back on every data frame for that subscription.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import DecodeError, SigningError

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"
SUBSCRIBED = "subscribed"
UNSUBSCRIBED = "unsubscribed"
PING = "ping"
PONG = "pong"
ERROR = "error"

CONTROL_TYPES = frozenset({SUBSCRIBED, UNSUBSCRIBED, PING, PONG})


def now_ms() -> int:
    return int(time.time() * 1000)


def canonical_message(payload: Any, nonce: int, timestamp: int) -> bytes:
    """Serialize the bytes a signer signs for an authenticated request.

    Compact JSON with sorted keys so both sides derive identical bytes.

    Raises:
        SigningError: If the payload cannot be serialized
    """
    document = {"nonce": nonce, "payload": payload, "timestamp": timestamp}
    try:
        text = json.dumps(
            document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
    except (TypeError, ValueError) as err:
        raise SigningError("Payload is not JSON serializable") from err
    return text.encode("utf-8")


@dataclass(frozen=True)
class SubscriptionIntent:
    """A desired subscription: channel, parameters and client-assigned id."""

    channel: str
    params: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class StreamEvent:
    """Decoded inbound data frame."""

    subscription_id: str | None
    channel: str | None
    type: str
    data: Any = None
    timestamp: int | None = None


def build_frame(
    *,
    msg_type: str,
    msg_id: str | None = None,
    channel: str | None = None,
    data: Any = None,
) -> dict[str, Any]:
    """Build an outbound stream envelope."""
    return {
        "id": msg_id or str(uuid.uuid4()),
        "type": msg_type,
        "channel": channel,
        "data": data if data is not None else {},
        "timestamp": now_ms(),
    }


def build_subscribe(intent: SubscriptionIntent) -> dict[str, Any]:
    return build_frame(
        msg_type=SUBSCRIBE,
        msg_id=intent.id,
        channel=intent.channel,
        data=dict(intent.params),
    )


def build_unsubscribe(intent: SubscriptionIntent) -> dict[str, Any]:
    return build_frame(msg_type=UNSUBSCRIBE, msg_id=intent.id, channel=intent.channel)


def build_pong(ping_id: str | None = None) -> dict[str, Any]:
    return build_frame(msg_type=PONG, msg_id=ping_id)


def parse_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode one inbound frame into its envelope dict.

    Raises:
        DecodeError: If the frame is not a JSON object with a string ``type``
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as err:
        raise DecodeError("Frame is not valid JSON", raw=raw) from err
    if not isinstance(frame, dict):
        raise DecodeError("Frame is not a JSON object", raw=raw)
    if not isinstance(frame.get("type"), str):
        raise DecodeError("Frame has no type", raw=raw)
    msg_id = frame.get("id")
    if msg_id is not None and not isinstance(msg_id, str):
        frame["id"] = str(msg_id)
    return frame


def to_event(frame: Mapping[str, Any]) -> StreamEvent:
    """Convert a parsed data frame into a ``StreamEvent``."""
    timestamp = frame.get("timestamp")
    return StreamEvent(
        subscription_id=frame.get("id"),
        channel=frame.get("channel"),
        type=frame["type"],
        data=frame.get("data"),
        timestamp=timestamp if isinstance(timestamp, int) else None,
    )


def error_details(frame: Mapping[str, Any]) -> tuple[int | str | None, str]:
    """Extract ``(code, message)`` from an error frame."""
    data = frame.get("data")
    if isinstance(data, Mapping):
        return data.get("code"), str(data.get("message") or "Stream error")
    if isinstance(data, str) and data:
        return None, data
    return None, "Stream error"
