"""Nonce generation for signed requests.

Nonces are unique per signing identity and strictly increasing in issue order.
By default a nonce is a millisecond timestamp scaled by ``COUNTER_SPAN`` plus a
per-millisecond counter, so a restarted process never reissues a value handed
out in an earlier millisecond. An identity can instead be pinned to a
venue-issued sequence with :meth:`NonceSource.synchronise`.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

COUNTER_SPAN = 1000
MAX_NONCE = 2**64 - 1


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(slots=True)
class _IdentityState:
    last: int = 0
    pinned: bool = False
    issued: bool = False


class NonceSource:
    """Thread-safe per-identity nonce generator.

    Usage:
        nonces = NonceSource()
        nonce = nonces.next(signer.address)
    """

    def __init__(self, *, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, _IdentityState] = {}

    def next(self, identity: str) -> int:
        """Issue the next nonce for ``identity``."""
        key = identity.lower()
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = _IdentityState()
            candidate = state.last + 1
            if not state.pinned:
                candidate = max(candidate, self._clock() * COUNTER_SPAN)
            if candidate > MAX_NONCE:
                raise OverflowError(f"Nonce space exhausted for {identity}")
            state.last = candidate
            state.issued = True
            return candidate

    def synchronise(self, identity: str, next_nonce: int) -> None:
        """Pin ``identity`` so the next issued nonce is ``next_nonce``.

        A value of 0 means the venue has no sequence yet and is ignored.
        """
        if next_nonce == 0:
            return
        with self._lock:
            self._states[identity.lower()] = _IdentityState(
                last=next_nonce - 1, pinned=True
            )

    def peek(self, identity: str) -> int | None:
        """Return the last nonce issued for ``identity``, if any."""
        with self._lock:
            state = self._states.get(identity.lower())
            if state is None or not state.issued:
                return None
            return state.last

    def reset(self, identity: str) -> None:
        """Forget ``identity`` and return it to clock seeding."""
        with self._lock:
            self._states.pop(identity.lower(), None)
