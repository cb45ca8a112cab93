"""
Jurisdiction baselines for peer comparison.

A baseline is the settlement rate a judge's category rate is compared
against. The static table ships reasonable defaults; the database provider
computes rates from the decided cases of the judge's peers in the same
jurisdiction.
"""
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import MalformedRecordError
from .models import db
from .types import CaseCategory, CaseRecord, Outcome

logger = logging.getLogger(__name__)

# Settlement rates by category across state trial courts
DEFAULT_BASELINES = {
    CaseCategory.CIVIL: 0.62,
    CaseCategory.FAMILY: 0.45,
    CaseCategory.PROBATE: 0.30,
    CaseCategory.OTHER: 0.35,
}

# judge_id -> category -> [settled, decided]
JudgeCounts = Dict[str, Dict[CaseCategory, list]]


class BaselineProvider(ABC):
    """Supplies the baseline settlement rate for a category."""

    @abstractmethod
    def rate_for(self, category: CaseCategory, jurisdiction: Optional[str] = None,
                 exclude_judge: Optional[str] = None, as_of: Optional[date] = None) -> Optional[float]:
        pass


class StaticBaselineTable(BaselineProvider):
    """Fixed per-category rates with optional per-jurisdiction overrides."""

    def __init__(self, defaults: Dict[CaseCategory, float] = None,
                 overrides: Dict[str, Dict[CaseCategory, float]] = None):
        self.defaults = dict(DEFAULT_BASELINES if defaults is None else defaults)
        self.overrides = overrides or {}

    def rate_for(self, category, jurisdiction=None, exclude_judge=None, as_of=None):
        if jurisdiction and category in self.overrides.get(jurisdiction, {}):
            return self.overrides[jurisdiction][category]
        return self.defaults.get(category)


class DatabaseBaselineProvider(BaselineProvider):
    """
    Jurisdiction settlement rates computed from the case table.

    Per-judge counts are cached in process for `ttl_seconds`, keyed by
    jurisdiction and window start. The judge being compared is left out of
    the pool. Categories with fewer than `min_cases` peer cases, and any
    jurisdiction whose query fails, fall back to `fallback`.
    """

    def __init__(self, db_path: Path = None, fallback: BaselineProvider = None,
                 lookback_years: int = 3, min_cases: int = 30, ttl_seconds: int = 3600):
        self.db_path = db_path
        self.fallback = fallback or StaticBaselineTable()
        self.lookback_years = lookback_years
        self.min_cases = min_cases
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[Tuple[str, str], Tuple[float, JudgeCounts]] = {}
        self._lock = threading.Lock()

    def rate_for(self, category, jurisdiction=None, exclude_judge=None, as_of=None):
        if jurisdiction:
            as_of = as_of or date.today()
            since = as_of.replace(year=as_of.year - self.lookback_years, day=min(as_of.day, 28))
            counts = self._jurisdiction_counts(jurisdiction, since)
            settled = decided = 0
            for judge_id, by_category in counts.items():
                if judge_id == exclude_judge or category not in by_category:
                    continue
                settled += by_category[category][0]
                decided += by_category[category][1]
            if decided >= self.min_cases:
                return round(settled / decided, 4)
        return self.fallback.rate_for(category, jurisdiction, exclude_judge, as_of)

    def _jurisdiction_counts(self, jurisdiction: str, since: date) -> JudgeCounts:
        key = (jurisdiction, since.isoformat())
        with self._lock:
            cached = self._cache.get(key)
            if cached and time.monotonic() - cached[0] < self.ttl_seconds:
                return cached[1]

        try:
            rows = db.list_decided_for_jurisdiction(jurisdiction, since.isoformat(), db_path=self.db_path)
        except sqlite3.Error as e:
            logger.warning(f"Baseline query failed for {jurisdiction}, using fallback rates: {e}")
            return {}

        counts: JudgeCounts = {}
        for row in rows:
            try:
                record = CaseRecord.from_dict(row)
            except MalformedRecordError:
                continue
            settled_decided = counts.setdefault(row.get("judge_id"), {}).setdefault(record.category, [0, 0])
            settled_decided[1] += 1
            if record.outcome == Outcome.SETTLED:
                settled_decided[0] += 1

        logger.debug(f"Loaded baseline counts for {jurisdiction} since {since}: {len(rows)} cases, {len(counts)} judges")
        with self._lock:
            self._cache[key] = (time.monotonic(), counts)
        return counts
