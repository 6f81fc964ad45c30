"""Once and dual-close tests.

Test coverage:
- Once fires for exactly one caller
- DualCloseWrapper closes after both halves, exactly once, under contention
- new_dual_closer pass-through and wrapping rules
"""

from __future__ import annotations

import itertools
import random
import threading
from unittest import mock

import pytest

from procterm.closer import DualCloser, DualCloseWrapper, Once, new_dual_closer


class CountingCloser:
    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self.calls += 1


# =============================================================================
# Once
# =============================================================================


class TestOnce:
    """Single-fire latch."""

    def test_fires_once(self):
        once = Once()
        assert once.fired is False
        assert once.fire() is True
        assert once.fire() is False
        assert once.fired is True

    def test_concurrent_fire(self):
        once = Once()
        winners = []
        barrier = threading.Barrier(16)

        def race():
            barrier.wait()
            if once.fire():
                winners.append(threading.get_ident())

        threads = [threading.Thread(target=race) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1


# =============================================================================
# DualCloseWrapper
# =============================================================================


class TestDualCloseWrapper:
    """Underlying close fires once both halves are reported."""

    def test_close_alone_does_not_close(self):
        inner = CountingCloser()
        wrapper = DualCloseWrapper(inner)
        wrapper.close()
        wrapper.close()
        assert inner.calls == 0
        assert wrapper.closed is False

    def test_close_write_alone_does_not_close(self):
        inner = CountingCloser()
        wrapper = DualCloseWrapper(inner)
        wrapper.close_write()
        wrapper.close_write()
        assert inner.calls == 0

    @pytest.mark.parametrize("order", [("close", "close_write"), ("close_write", "close")])
    def test_both_halves_close(self, order):
        inner = CountingCloser()
        wrapper = DualCloseWrapper(inner)
        getattr(wrapper, order[0])()
        assert inner.calls == 0
        getattr(wrapper, order[1])()
        assert inner.calls == 1
        assert wrapper.closed is True

    def test_repeated_calls_after_close(self):
        inner = CountingCloser()
        wrapper = DualCloseWrapper(inner)
        for _ in range(3):
            wrapper.close()
            wrapper.close_write()
        assert inner.calls == 1

    def test_every_interleaving_closes_once(self):
        """All orderings of two closes and two close_writes."""
        calls = ["close", "close", "close_write", "close_write"]
        for ordering in set(itertools.permutations(calls)):
            inner = CountingCloser()
            wrapper = DualCloseWrapper(inner)
            seen = set()
            for name in ordering:
                getattr(wrapper, name)()
                seen.add(name)
                # never before both operations happened
                assert inner.calls == (1 if len(seen) == 2 else 0)
            assert inner.calls == 1

    def test_concurrent_closes(self):
        for _ in range(20):
            inner = CountingCloser()
            wrapper = DualCloseWrapper(inner)
            names = ["close"] * 8 + ["close_write"] * 8
            random.shuffle(names)
            barrier = threading.Barrier(len(names))

            def run(name: str) -> None:
                barrier.wait()
                getattr(wrapper, name)()

            threads = [threading.Thread(target=run, args=(n,)) for n in names]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert inner.calls == 1

    def test_close_error_reaches_completing_call_only(self):
        inner = mock.Mock()
        inner.close.side_effect = OSError("boom")
        wrapper = DualCloseWrapper(inner)

        wrapper.close()
        with pytest.raises(OSError, match="boom"):
            wrapper.close_write()
        # already completed; no second attempt
        wrapper.close()
        wrapper.close_write()
        inner.close.assert_called_once()


# =============================================================================
# new_dual_closer
# =============================================================================


class TestNewDualCloser:
    """Factory rules."""

    def test_none(self):
        assert new_dual_closer(None) is None

    def test_dual_closer_passes_through(self):
        class Duplex:
            def close(self):
                pass

            def close_write(self):
                pass

        duplex = Duplex()
        assert isinstance(duplex, DualCloser)
        assert new_dual_closer(duplex) is duplex

    def test_plain_closer_is_wrapped(self):
        inner = CountingCloser()
        wrapped = new_dual_closer(inner)
        assert isinstance(wrapped, DualCloseWrapper)
        assert wrapped.closer is inner
