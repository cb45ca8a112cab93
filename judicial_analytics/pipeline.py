"""
Analytics generation pipeline and read path.

Generation for one judge runs strictly in sequence:
gateway -> gatekeeper -> metrics -> confidence -> narrative -> cache.
Reads go to the cache first and fall back to generation only on a miss;
stale hits are served immediately while a refresh runs in the background.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .baselines import BaselineProvider, DatabaseBaselineProvider, StaticBaselineTable
from .config import AnalyticsConfig
from .confidence import ConfidenceClassifier, ConfidenceStrategy, case_count_confidence
from .errors import AnalyticsError, GenerationCancelledError, InsufficientSampleError, JudgeNotFoundError
from .gatekeeper import GateReport, SampleGatekeeper
from .metrics import compute_category_metrics
from .models import db
from .services.cache import TieredCacheManager, build_cache
from .services.case_gateway import CaseDataGateway, CaseLoad, build_gateway
from .services.cost_tracker import CostTracker
from .services.narrative import NarrativeAdapter, build_narrative_adapter
from .services.orchestrator import BatchOrchestrator, RateLimiter
from .types import (
    AdmissionStatus,
    AnalyticsLookup,
    AnalyticsResult,
    BatchReport,
    CaseCategory,
    CaseRecord,
    CategoryResult,
    LookupState,
    RegenerationOutcome,
    utcnow,
)

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Generates, caches and serves judge analytics."""

    def __init__(
        self,
        config: AnalyticsConfig,
        gateway: CaseDataGateway,
        cache: TieredCacheManager,
        baselines: BaselineProvider = None,
        narrative: NarrativeAdapter = None,
        rate_limiter: RateLimiter = None,
        cost_tracker: CostTracker = None,
        confidence_strategy: ConfidenceStrategy = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.gateway = gateway
        self.cache = cache
        self.baselines = baselines or StaticBaselineTable()
        self.narrative = narrative
        self.rate_limiter = rate_limiter
        self.cost_tracker = cost_tracker
        self.clock = clock
        self.gatekeeper = SampleGatekeeper(config.thresholds)
        self.classifier = ConfidenceClassifier(config.thresholds, config.metrics, confidence_strategy)
        self._refresh_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="analytics-refresh")
        self._batch: Optional[BatchOrchestrator] = None
        self._batch_lock = threading.Lock()

    # Computation

    def compute(self, judge_id: str, load: CaseLoad, jurisdiction: Optional[str] = None,
                now: Optional[datetime] = None) -> AnalyticsResult:
        """Gate, measure and classify one judge's records."""
        now = now or self.clock()
        report = self.gatekeeper.evaluate(load.records, now)

        try:
            self.gatekeeper.ensure_admitted(report)
        except InsufficientSampleError as e:
            logger.info(f"Analytics withheld for judge {judge_id}: {e.reason}")
            return self._build_result(judge_id, report, load, now, {}, {},
                                      withheld_reason=e.reason, reason_code=e.reason_code)

        by_category: Dict[CaseCategory, List[CaseRecord]] = {}
        for record in load.records:
            if record.is_decided:
                by_category.setdefault(record.category, []).append(record)
        baselines = self.resolve_baselines(judge_id, report.admitted_categories(), jurisdiction, now)
        return self._build_result(judge_id, report, load, now, by_category, baselines)

    def resolve_baselines(self, judge_id: str, categories: List[CaseCategory], jurisdiction: Optional[str],
                          now: datetime) -> Dict[CaseCategory, Optional[float]]:
        """Peer baseline per category, excluding the judge's own cases."""
        as_of = now.date()
        return {
            category: self.baselines.rate_for(category, jurisdiction, exclude_judge=judge_id, as_of=as_of)
            for category in categories
        }

    def _build_result(self, judge_id: str, report: GateReport, load: CaseLoad, now: datetime,
                      by_category: Dict[CaseCategory, List[CaseRecord]],
                      baselines: Dict[CaseCategory, Optional[float]],
                      withheld_reason: Optional[str] = None, reason_code: Optional[str] = None) -> AnalyticsResult:
        categories = {}
        for category, gate in report.categories.items():
            metrics = None
            rate = None
            if gate.admitted and report.admitted:
                metrics = compute_category_metrics(
                    by_category.get(category, []),
                    self.config.metrics.trend_noise_threshold,
                    baselines.get(category),
                    self.config.metrics.value_min_cases,
                )
                rate = metrics.settlement_rate
            confidence, tier = self.classifier.assess(gate.decided, rate)
            categories[category] = CategoryResult(
                category=category,
                status=gate.status,
                sample_size=gate.decided,
                recent_sample_size=gate.recent,
                with_outcome=gate.with_outcome,
                confidence=confidence,
                quality_tier=tier,
                reason=gate.reason,
                metrics=metrics,
            )

        return AnalyticsResult(
            judge_id=judge_id,
            generated_at=now,
            status=report.status,
            total_cases=report.total_cases,
            total_decided=report.total_decided,
            total_recent=report.total_recent,
            overall_confidence=case_count_confidence(report.total_decided),
            categories=categories,
            withheld_reason=withheld_reason,
            reason_code=reason_code,
            data_quality=load.quality,
        )

    # Generation

    def _throttle(self, cancel_event: Optional[threading.Event] = None):
        if self.rate_limiter is not None and not self.rate_limiter.acquire(cancel_event=cancel_event):
            raise GenerationCancelledError("batch cancelled while waiting for the rate limiter")

    def _generate(self, judge_id: str, cancel_event: Optional[threading.Event] = None) -> AnalyticsResult:
        start = time.monotonic()
        self._throttle(cancel_event)
        judge = self.gateway.get_judge(judge_id)
        if judge is None:
            raise JudgeNotFoundError(f"unknown judge {judge_id}")

        self._throttle(cancel_event)
        load = self.gateway.load_cases(judge_id)
        fetched = time.monotonic()

        result = self.compute(judge_id, load, judge.jurisdiction)
        if not result.withheld and self.narrative is not None:
            self.narrative.augment(result, cancel_event=cancel_event)

        self.cache.put(judge_id, result)
        logger.debug(
            f"Generated analytics for judge {judge_id}: status={result.status.value} "
            f"fetch={fetched - start:.2f}s total={time.monotonic() - start:.2f}s"
        )
        return result

    def generate(self, judge_id: str, cancel_event: Optional[threading.Event] = None) -> AnalyticsResult:
        """Generate and store, deduplicating concurrent calls for the same judge."""
        return self.cache.run_exclusive(judge_id, lambda: self._generate(judge_id, cancel_event))

    # Read path

    def _lookup_from_result(self, judge_id: str, result: AnalyticsResult, source: str,
                            stale: bool = False) -> AnalyticsLookup:
        state = LookupState.WITHHELD if result.withheld else LookupState.READY
        return AnalyticsLookup(judge_id=judge_id, state=state, result=result, stale=stale, source=source)

    def get_or_generate(self, judge_id: str, generate: bool = True) -> AnalyticsLookup:
        hit = self.cache.get(judge_id)
        if hit is not None:
            if hit.stale:
                self._schedule_refresh(judge_id)
            return self._lookup_from_result(judge_id, hit.result, hit.tier, hit.stale)

        if not generate:
            return AnalyticsLookup(judge_id=judge_id, state=LookupState.NOT_CACHED)

        try:
            result = self.generate(judge_id)
        except JudgeNotFoundError as e:
            return AnalyticsLookup(judge_id=judge_id, state=LookupState.NOT_CACHED, error=str(e))
        except AnalyticsError as e:
            logger.warning(f"Analytics generation failed for judge {judge_id}: {e}")
            return AnalyticsLookup(judge_id=judge_id, state=LookupState.FAILED, error=str(e))
        return self._lookup_from_result(judge_id, result, "generated")

    def lookup(self, judge_id: str) -> AnalyticsLookup:
        """Cache-only read."""
        return self.get_or_generate(judge_id, generate=False)

    def _schedule_refresh(self, judge_id: str):
        if self.cache.is_in_flight(judge_id):
            return
        logger.info(f"Serving stale analytics for judge {judge_id}, refreshing in background")
        self._refresh_executor.submit(self.regenerate, judge_id, True)

    # Trigger interface

    def regenerate(self, judge_id: str, force: bool = False,
                   cancel_event: Optional[threading.Event] = None) -> RegenerationOutcome:
        if not force:
            hit = self.cache.get(judge_id)
            if hit is not None and not hit.stale:
                return RegenerationOutcome(judge_id=judge_id, status="cached")

        start = time.monotonic()
        try:
            result = self.generate(judge_id, cancel_event)
        except GenerationCancelledError as e:
            logger.info(f"Regeneration cancelled for judge {judge_id}")
            return RegenerationOutcome(judge_id=judge_id, status="cancelled", error=str(e),
                                       elapsed=time.monotonic() - start)
        except AnalyticsError as e:
            logger.warning(f"Regeneration failed for judge {judge_id}: {e}")
            return RegenerationOutcome(judge_id=judge_id, status="failed", error=str(e),
                                       elapsed=time.monotonic() - start)
        return RegenerationOutcome(
            judge_id=judge_id,
            status="withheld" if result.status == AdmissionStatus.WITHHELD else "generated",
            elapsed=time.monotonic() - start,
        )

    def regenerate_population(self, limit: Optional[int] = None, concurrency: Optional[int] = None,
                              force: bool = False, dry_run: bool = False,
                              judge_ids: Optional[List[str]] = None) -> BatchReport:
        if judge_ids is None:
            self._throttle()
            judge_ids = [j.id for j in self.gateway.list_judges(limit)]
        elif limit:
            judge_ids = judge_ids[:limit]

        cancel_event = threading.Event()
        orchestrator = BatchOrchestrator(
            lambda judge_id, force: self.regenerate(judge_id, force, cancel_event),
            concurrency or self.config.batch.concurrency,
            cancel_event=cancel_event,
        )
        with self._batch_lock:
            self._batch = orchestrator
        try:
            return orchestrator.run(judge_ids, force=force, dry_run=dry_run)
        finally:
            with self._batch_lock:
                self._batch = None

    def cancel_batch(self) -> bool:
        with self._batch_lock:
            if self._batch is None:
                return False
            self._batch.cancel()
            return True

    # Maintenance

    def list_stale(self, limit: Optional[int] = None):
        return self.cache.list_stale(limit)

    def clear_stale(self, older_than_hours: Optional[int] = None) -> int:
        return self.cache.clear_stale(older_than_hours)

    def usage(self) -> dict:
        if self.cost_tracker is None:
            return {}
        return self.cost_tracker.get_stats()

    def close(self):
        self._refresh_executor.shutdown(wait=True)
        self.cache.shutdown()
        if self.narrative is not None:
            self.narrative.shutdown()


def build_service(config: AnalyticsConfig = None) -> AnalyticsService:
    """Wire every component from one configuration."""
    config = config or AnalyticsConfig.from_env()
    db.init_db(config.db_path)

    gateway = build_gateway(config.gateway, config.db_path)
    cache = build_cache(config.cache, config.db_path)
    rate_limiter = RateLimiter(config.batch.rate_limit_per_minute, config.batch.rate_limit_burst)
    cost_tracker = CostTracker(config.narrative.daily_budget_usd, db_path=config.db_path)
    narrative = build_narrative_adapter(config.narrative, cost_tracker, rate_limiter)

    if config.gateway.backend == "sqlite":
        baselines = DatabaseBaselineProvider(db_path=config.db_path)
    else:
        baselines = StaticBaselineTable()

    return AnalyticsService(
        config,
        gateway=gateway,
        cache=cache,
        baselines=baselines,
        narrative=narrative,
        rate_limiter=rate_limiter,
        cost_tracker=cost_tracker,
    )
