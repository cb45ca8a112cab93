import threading
import time

from judicial_analytics.services.orchestrator import BatchOrchestrator, RateLimiter
from judicial_analytics.types import RegenerationOutcome


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_burst_then_refill(self):
        clock = ManualClock()
        limiter = RateLimiter(rate_per_minute=60, burst=2, clock=clock)

        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

        clock.now += 1.0
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_unlimited(self):
        limiter = RateLimiter(rate_per_minute=0)
        assert all(limiter.try_acquire() for _ in range(1000))
        assert limiter.acquire(timeout=0)

    def test_acquire_times_out(self):
        limiter = RateLimiter(rate_per_minute=1, burst=1)
        assert limiter.acquire(timeout=0.1)
        assert not limiter.acquire(timeout=0.1)

    def test_acquire_returns_on_cancel(self):
        cancel = threading.Event()
        limiter = RateLimiter(rate_per_minute=1, burst=1, cancel_event=cancel)
        limiter.try_acquire()
        cancel.set()
        assert not limiter.acquire()

    def test_per_call_cancel_event_unblocks_waiter(self):
        limiter = RateLimiter(rate_per_minute=1, burst=1)
        limiter.try_acquire()
        cancel = threading.Event()
        results = []

        waiter = threading.Thread(target=lambda: results.append(limiter.acquire(cancel_event=cancel)))
        waiter.start()
        time.sleep(0.1)
        cancel.set()
        waiter.join(2)

        assert not waiter.is_alive()
        assert results == [False]


class TestBatchOrchestrator:
    def test_tallies_outcomes(self):
        statuses = {"a": "generated", "b": "withheld", "c": "cached", "d": "generated"}

        def regenerate(judge_id, force):
            return RegenerationOutcome(judge_id=judge_id, status=statuses[judge_id])

        report = BatchOrchestrator(regenerate, concurrency=2).run(["a", "b", "c", "d"])

        assert report.total == 4
        assert report.succeeded == 2
        assert report.withheld == 1
        assert report.from_cache == 1
        assert report.failed == 0
        assert report.cancelled == 0

    def test_failures_are_isolated(self):
        def regenerate(judge_id, force):
            if judge_id == "bad":
                raise RuntimeError("gateway exploded")
            if judge_id == "soft":
                return RegenerationOutcome(judge_id=judge_id, status="failed", error="timeout")
            return RegenerationOutcome(judge_id=judge_id, status="generated")

        report = BatchOrchestrator(regenerate, concurrency=3).run(["ok1", "bad", "soft", "ok2"])

        assert report.succeeded == 2
        assert report.failed == 2
        assert {f["judge_id"]: f["error"] for f in report.failures} == {
            "bad": "gateway exploded",
            "soft": "timeout",
        }

    def test_force_is_passed_through(self):
        seen = []

        def regenerate(judge_id, force):
            seen.append(force)
            return RegenerationOutcome(judge_id=judge_id, status="generated")

        BatchOrchestrator(regenerate).run(["a", "b"], force=True)
        assert seen == [True, True]

    def test_dry_run_does_no_work(self):
        calls = []

        def regenerate(judge_id, force):
            calls.append(judge_id)
            return RegenerationOutcome(judge_id=judge_id, status="generated")

        report = BatchOrchestrator(regenerate).run(["a", "b", "c"], dry_run=True)

        assert calls == []
        assert report.dry_run
        assert report.total == 3
        assert report.succeeded == 0

    def test_concurrency_is_bounded(self):
        active = []
        peak = []
        lock = threading.Lock()

        def regenerate(judge_id, force):
            with lock:
                active.append(judge_id)
                peak.append(len(active))
            time.sleep(0.05)
            with lock:
                active.remove(judge_id)
            return RegenerationOutcome(judge_id=judge_id, status="generated")

        report = BatchOrchestrator(regenerate, concurrency=2).run([f"j{i}" for i in range(8)])

        assert report.succeeded == 8
        assert max(peak) <= 2

    def test_cancel_stops_dispatch_and_finishes_in_flight(self):
        started = threading.Event()
        release = threading.Event()

        def regenerate(judge_id, force):
            if judge_id == "j0":
                started.set()
                release.wait(5)
            return RegenerationOutcome(judge_id=judge_id, status="generated")

        orchestrator = BatchOrchestrator(regenerate, concurrency=1)
        holder = {}
        worker = threading.Thread(target=lambda: holder.setdefault("report", orchestrator.run(
            [f"j{i}" for i in range(5)])))
        worker.start()

        assert started.wait(5)
        orchestrator.cancel()
        release.set()
        worker.join(5)

        report = holder["report"]
        assert report.succeeded == 1
        assert report.cancelled == 4
        assert report.failed == 0

    def test_cancelled_outcomes_are_tallied(self):
        def regenerate(judge_id, force):
            return RegenerationOutcome(judge_id=judge_id, status="cancelled")

        report = BatchOrchestrator(regenerate).run(["a", "b"])
        assert report.cancelled == 2
        assert report.failed == 0
