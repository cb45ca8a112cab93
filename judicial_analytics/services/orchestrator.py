"""
Batch regeneration across a population of judges.

A bounded worker pool runs one judge per task. A shared token bucket
limits external calls across all workers. Cancellation stops dispatching
new judges; judges already running finish.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

from ..types import BatchReport, RegenerationOutcome

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe token bucket refilled at rate_per_minute."""

    def __init__(self, rate_per_minute: float, burst: int = 10,
                 clock: Callable[[], float] = time.monotonic,
                 cancel_event: Optional[threading.Event] = None):
        self.rate_per_second = rate_per_minute / 60.0 if rate_per_minute > 0 else 0.0
        self.capacity = max(1, burst)
        self.clock = clock
        self.cancel_event = cancel_event
        self._tokens = float(self.capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def unlimited(self) -> bool:
        return self.rate_per_second <= 0

    def _refill(self):
        now = self.clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
            self._updated = now

    def try_acquire(self) -> bool:
        if self.unlimited:
            return True
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Block until a token is available. False on timeout or cancellation.

        cancel_event overrides the limiter-wide event for this call.
        """
        if self.unlimited:
            return True
        cancel_event = cancel_event or self.cancel_event
        if cancel_event is not None and cancel_event.is_set():
            return False
        deadline = None if timeout is None else self.clock() + timeout
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return True
                wait_for = (1 - self._tokens) / self.rate_per_second

            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    return False
                wait_for = min(wait_for, remaining)
            if cancel_event is not None:
                if cancel_event.wait(wait_for):
                    return False
            else:
                time.sleep(wait_for)


class BatchOrchestrator:
    """Runs a per-judge regenerate function over many judges."""

    def __init__(self, regenerate: Callable[[str, bool], RegenerationOutcome],
                 concurrency: int = 4, cancel_event: Optional[threading.Event] = None):
        self.regenerate = regenerate
        self.concurrency = max(1, concurrency)
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self):
        logger.info("Batch cancellation requested")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _run_one(self, judge_id: str, force: bool) -> RegenerationOutcome:
        start = time.monotonic()
        try:
            outcome = self.regenerate(judge_id, force)
        except Exception as e:
            logger.warning(f"Regeneration failed for judge {judge_id}: {e}")
            outcome = RegenerationOutcome(judge_id=judge_id, status="failed", error=str(e))
        outcome.elapsed = time.monotonic() - start
        return outcome

    def run(self, judge_ids: Iterable[str], force: bool = False, dry_run: bool = False) -> BatchReport:
        judge_ids = list(judge_ids)
        report = BatchReport(total=len(judge_ids), dry_run=dry_run)
        start = time.monotonic()

        if dry_run:
            logger.info(f"Dry run: would regenerate {len(judge_ids)} judges")
            report.elapsed = time.monotonic() - start
            return report

        logger.info(f"Regenerating {len(judge_ids)} judges (concurrency={self.concurrency}, force={force})")
        slots = threading.BoundedSemaphore(self.concurrency)
        futures = []

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="batch") as executor:
            for index, judge_id in enumerate(judge_ids):
                if not self._wait_for_slot(slots):
                    report.cancelled = len(judge_ids) - index
                    logger.info(f"Batch cancelled, {report.cancelled} judges not dispatched")
                    break
                future = executor.submit(self._run_one, judge_id, force)
                future.add_done_callback(lambda _: slots.release())
                futures.append(future)
            wait(futures)

        for future in futures:
            self._tally(report, future.result())

        report.elapsed = time.monotonic() - start
        logger.info(
            f"Batch complete: {report.succeeded} generated, {report.withheld} withheld, "
            f"{report.from_cache} cached, {report.failed} failed, {report.cancelled} cancelled "
            f"in {report.elapsed:.1f}s"
        )
        return report

    def _wait_for_slot(self, slots: threading.BoundedSemaphore) -> bool:
        while not self.cancel_event.is_set():
            if slots.acquire(timeout=0.1):
                if self.cancel_event.is_set():
                    slots.release()
                    return False
                return True
        return False

    @staticmethod
    def _tally(report: BatchReport, outcome: RegenerationOutcome):
        if outcome.status == "generated":
            report.succeeded += 1
        elif outcome.status == "withheld":
            report.withheld += 1
        elif outcome.status == "cached":
            report.from_cache += 1
        elif outcome.status == "cancelled":
            report.cancelled += 1
        else:
            report.failed += 1
            report.failures.append({"judge_id": outcome.judge_id, "error": outcome.error or "unknown error"})
