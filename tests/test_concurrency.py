"""
Unit tests for the rate limiter, keyed locks and background dispatcher
"""
import asyncio
import threading
import pytest

from app.core.background import BackgroundDispatcher
from app.core.locks import KeyedLocks
from app.core.rate_limit import AtomicCounter, RateLimiter


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for the per-key hard-reset limiter"""

    @pytest.mark.unit
    def test_capacity_then_refusal(self):
        limiter = RateLimiter(capacity=10, window_seconds=60, clock=ManualClock())

        assert all(limiter.try_consume("1.2.3.4:/otp") for _ in range(10))
        assert limiter.try_consume("1.2.3.4:/otp") is False
        assert limiter.remaining("1.2.3.4:/otp") == 0

    @pytest.mark.unit
    def test_keys_are_independent(self):
        limiter = RateLimiter(capacity=1, window_seconds=60, clock=ManualClock())

        assert limiter.try_consume("1.2.3.4:/a")
        assert limiter.try_consume("1.2.3.4:/b")
        assert limiter.try_consume("5.6.7.8:/a")
        assert len(limiter) == 3

    @pytest.mark.unit
    def test_hard_reset_after_window(self):
        """Full capacity returns only once the window has fully passed"""
        clock = ManualClock()
        limiter = RateLimiter(capacity=2, window_seconds=60, clock=clock)
        limiter.try_consume("k")
        limiter.try_consume("k")

        clock.now += 60
        assert limiter.try_consume("k") is False

        clock.now += 1
        assert limiter.try_consume("k") is True
        assert limiter.remaining("k") == 1

    @pytest.mark.unit
    def test_unknown_key_has_full_budget(self):
        limiter = RateLimiter(capacity=5)
        assert limiter.remaining("never-seen") == 5
        assert len(limiter) == 0

    @pytest.mark.unit
    def test_no_overspend_across_threads(self):
        """Concurrent consumers never get more than the capacity"""
        limiter = RateLimiter(capacity=50, window_seconds=60, clock=ManualClock())
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                if limiter.try_consume("shared"):
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(granted) == 50

    @pytest.mark.unit
    def test_compare_and_set(self):
        counter = AtomicCounter(3)

        assert counter.compare_and_set(3, 2) is True
        assert counter.compare_and_set(3, 1) is False
        assert counter.get() == 2


class TestKeyedLocks:
    """Tests for per-key serialization"""

    @pytest.mark.unit
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        events = []

        async def critical(name):
            async with locks.hold("application:1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(critical("a"), critical("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.unit
    async def test_different_keys_do_not_block(self):
        locks = KeyedLocks()

        async with locks.hold("application:1"):
            assert locks.is_locked("application:1")
            assert not locks.is_locked("application:2")
            async with locks.hold("application:2"):
                assert locks.is_locked("application:2")


class TestBackgroundDispatcher:
    """Tests for fire-and-forget jobs"""

    @pytest.mark.unit
    async def test_success_and_failure_are_counted(self):
        dispatcher = BackgroundDispatcher(max_concurrency=2)

        async def ok():
            await asyncio.sleep(0)

        async def boom():
            raise RuntimeError("crm down")

        dispatcher.submit("ok", ok)
        dispatcher.submit("boom", boom)
        await dispatcher.drain()

        assert dispatcher.stats() == {"submitted": 2, "succeeded": 1, "failed": 1, "pending": 0}

    @pytest.mark.unit
    async def test_submit_does_not_wait(self):
        dispatcher = BackgroundDispatcher()
        started = asyncio.Event()
        release = asyncio.Event()

        async def job():
            started.set()
            await release.wait()

        dispatcher.submit("slow", job)
        assert dispatcher.pending == 1

        await started.wait()
        release.set()
        await dispatcher.drain()
        assert dispatcher.succeeded == 1

    @pytest.mark.unit
    async def test_concurrency_is_bounded(self):
        dispatcher = BackgroundDispatcher(max_concurrency=2)
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for i in range(6):
            dispatcher.submit(f"job-{i}", job)
        await dispatcher.drain()

        assert peak == 2
        assert dispatcher.succeeded == 6

    @pytest.mark.unit
    async def test_drain_cancels_stragglers(self):
        dispatcher = BackgroundDispatcher()

        async def forever():
            await asyncio.sleep(60)

        dispatcher.submit("forever", forever)
        await dispatcher.drain(timeout=0.01)

        assert dispatcher.failed == 1
        assert dispatcher.pending == 0

    @pytest.mark.unit
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            BackgroundDispatcher(max_concurrency=0)
