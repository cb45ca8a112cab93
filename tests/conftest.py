import threading
from datetime import date, datetime, timedelta, timezone
from itertools import cycle

import pytest

from judicial_analytics.config import AnalyticsConfig
from judicial_analytics.models import db
from judicial_analytics.pipeline import AnalyticsService
from judicial_analytics.services.cache import MemoryTier, SqliteTier, TieredCacheManager
from judicial_analytics.services.case_gateway import CaseDataGateway
from judicial_analytics.types import CaseRecord, Judge

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)

DEFAULT_OUTCOMES = {
    "civil": ("settled", "judgment"),
    "criminal": ("plea", "convicted"),
    "family": ("settled", "dismissed"),
    "probate": ("settled", "granted"),
    "other": ("settled", "other"),
}


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_rows(count, category="civil", judge_id="judge-1", start=date(2021, 1, 1), span_days=1200,
              outcomes=None, motions=None, decided=True, prefix=None):
    """Deterministic raw case rows spread evenly over span_days."""
    outcome_cycle = cycle(outcomes or DEFAULT_OUTCOMES[category])
    motion_cycle = cycle(motions) if motions else None
    prefix = prefix or f"{judge_id}-{category}"
    rows = []
    for i in range(count):
        decision = start + timedelta(days=(i * span_days) // max(count, 1))
        rows.append({
            "id": f"{prefix}-{i:05d}",
            "judge_id": judge_id,
            "case_type": category,
            "outcome": next(outcome_cycle) if decided else None,
            "motion_outcome": next(motion_cycle) if motion_cycle else None,
            "filing_date": (decision - timedelta(days=100 + i % 50)).isoformat(),
            "decision_date": decision.isoformat() if decided else None,
            "case_value": None,
        })
    return rows


def to_records(rows):
    return [CaseRecord.from_dict(r) for r in rows]


def admitted_rows(judge_id="judge-1"):
    """847 decided cases, 654 of them inside a five-year window ending at NOW."""
    return (
        make_rows(300, "civil", judge_id, start=date(2021, 1, 1), span_days=1200)
        + make_rows(300, "criminal", judge_id, start=date(2021, 1, 1), span_days=1200)
        + make_rows(54, "family", judge_id, start=date(2021, 1, 1), span_days=1200)
        + make_rows(193, "family", judge_id, start=date(2015, 1, 1), span_days=1500, prefix=f"{judge_id}-old")
    )


class FakeGateway(CaseDataGateway):
    """In-memory gateway that counts calls."""

    def __init__(self, rows_by_judge=None, judges=None, error=None, delay=0.0):
        super().__init__(case_limit=100000)
        self.rows_by_judge = rows_by_judge or {}
        self.judges = judges or {
            judge_id: Judge(id=judge_id, name=f"Judge {judge_id}", jurisdiction="CA")
            for judge_id in self.rows_by_judge
        }
        self.error = error
        self.delay = delay
        self.load_calls = 0
        self._lock = threading.Lock()

    def _fetch_rows(self, judge_id, start=None, end=None, decided_only=False):
        with self._lock:
            self.load_calls += 1
        if self.delay:
            threading.Event().wait(self.delay)
        if self.error is not None:
            raise self.error
        rows = list(self.rows_by_judge.get(judge_id, []))
        if decided_only:
            rows = [r for r in rows if r.get("decision_date")]
        if start:
            rows = [r for r in rows if r.get("decision_date") and r["decision_date"] >= start]
        if end:
            rows = [r for r in rows if r.get("decision_date") and r["decision_date"] <= end]
        return rows

    def get_judge(self, judge_id):
        return self.judges.get(judge_id)

    def list_judges(self, limit=None):
        judges = sorted(self.judges.values(), key=lambda j: j.id)
        return judges[:limit] if limit else judges


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "analytics.db"
    db.init_db(path)
    return path


@pytest.fixture
def config(db_path):
    config = AnalyticsConfig()
    config.db_path = db_path
    return config


@pytest.fixture
def cache(db_path, clock):
    manager = TieredCacheManager([MemoryTier(), SqliteTier(db_path)], freshness_hours=2160, clock=clock)
    yield manager
    manager.shutdown()


@pytest.fixture
def make_service(config, cache, clock):
    services = []

    def _make(gateway, narrative=None, **kwargs):
        service = AnalyticsService(config, gateway=gateway, cache=cache, narrative=narrative,
                                   clock=clock, **kwargs)
        services.append(service)
        return service

    yield _make
    for service in services:
        service._refresh_executor.shutdown(wait=True)
