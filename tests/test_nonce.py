"""Tests for NonceSource."""

from __future__ import annotations

import asyncio
import threading

import pytest

from lighter_transport.nonce import COUNTER_SPAN, MAX_NONCE, NonceSource

ALICE = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
BOB = "0x2B5AD5c4795c026514f8317c7a215E218DcCD6cF"


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestOrdering:
    """Test per-identity ordering."""

    def test_strictly_increasing(self) -> None:
        """Test sequential nonces strictly increase."""
        source = NonceSource()
        nonces = [source.next(ALICE) for _ in range(1000)]
        assert all(a < b for a, b in zip(nonces, nonces[1:]))

    def test_seeded_from_clock(self) -> None:
        """Test the first nonce is the clock scaled by the counter span."""
        clock = FakeClock()
        source = NonceSource(clock=clock)

        assert source.next(ALICE) == clock.now * COUNTER_SPAN
        assert source.next(ALICE) == clock.now * COUNTER_SPAN + 1

    def test_clock_going_backwards(self) -> None:
        """Test a clock step backwards never reissues a nonce."""
        clock = FakeClock()
        source = NonceSource(clock=clock)
        first = source.next(ALICE)

        clock.now -= 60_000

        assert source.next(ALICE) == first + 1

    def test_clock_jump_forward(self) -> None:
        """Test a later millisecond moves the sequence forward."""
        clock = FakeClock()
        source = NonceSource(clock=clock)
        source.next(ALICE)

        clock.now += 5

        assert source.next(ALICE) == clock.now * COUNTER_SPAN

    def test_identities_are_independent(self) -> None:
        """Test identities do not share a sequence."""
        clock = FakeClock()
        source = NonceSource(clock=clock)

        a1 = source.next(ALICE)
        b1 = source.next(BOB)

        assert a1 == b1 == clock.now * COUNTER_SPAN

    def test_identity_is_case_insensitive(self) -> None:
        """Test checksummed and lowercased addresses share a sequence."""
        source = NonceSource()
        first = source.next(ALICE)
        assert source.next(ALICE.lower()) == first + 1

    def test_overflow(self) -> None:
        """Test exhausting the 64-bit space raises."""
        source = NonceSource()
        source.synchronise(ALICE, MAX_NONCE)
        assert source.next(ALICE) == MAX_NONCE
        with pytest.raises(OverflowError):
            source.next(ALICE)


class TestSynchronise:
    """Test pinning to a venue-issued sequence."""

    def test_pinned_sequence(self) -> None:
        """Test synchronise sets the next nonce exactly."""
        source = NonceSource()
        source.next(ALICE)

        source.synchronise(ALICE, 42)

        assert source.next(ALICE) == 42
        assert source.next(ALICE) == 43

    def test_zero_is_ignored(self) -> None:
        """Test a zero hint keeps clock seeding."""
        clock = FakeClock()
        source = NonceSource(clock=clock)
        source.synchronise(ALICE, 0)
        assert source.next(ALICE) == clock.now * COUNTER_SPAN

    def test_peek_and_reset(self) -> None:
        """Test peek reports the last issued nonce and reset forgets it."""
        source = NonceSource()
        assert source.peek(ALICE) is None

        source.synchronise(ALICE, 10)
        assert source.peek(ALICE) is None
        source.next(ALICE)
        assert source.peek(ALICE) == 10

        source.reset(ALICE)
        assert source.peek(ALICE) is None
        assert source.next(ALICE) > 10


class TestConcurrency:
    """Test uniqueness under concurrent use."""

    def test_threads_get_unique_nonces(self) -> None:
        """Test concurrent threads never share a nonce."""
        source = NonceSource()
        results: dict[int, list[int]] = {}
        start = threading.Barrier(8)

        def worker(n: int) -> None:
            start.wait()
            results[n] = [source.next(ALICE) for _ in range(500)]

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        issued = [nonce for values in results.values() for nonce in values]
        assert len(issued) == len(set(issued)) == 8 * 500
        for values in results.values():
            assert values == sorted(values)

    async def test_concurrent_tasks(self) -> None:
        """Test nonces minted from worker threads in one loop stay unique."""
        source = NonceSource()

        nonces = await asyncio.gather(
            *(asyncio.to_thread(source.next, ALICE) for _ in range(200))
        )

        assert len(set(nonces)) == 200
