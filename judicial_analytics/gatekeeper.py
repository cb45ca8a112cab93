"""
Sample Gatekeeper.

Decides whether a judge (and each case category) has enough decided cases
for metrics to be statistically meaningful. Nothing downstream runs for a
judge that fails the global minimum.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from .config import SampleThresholds
from .errors import InsufficientSampleError
from .types import AdmissionStatus, CaseCategory, CaseRecord, Outcome

logger = logging.getLogger(__name__)

BELOW_GLOBAL_MINIMUM = "below_global_minimum"


def _years_back(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def recency_cutoff(now: datetime, years: int, mode: str = "rolling") -> date:
    """First decision date counted as recent."""
    if mode == "calendar":
        return date(now.year - (years - 1), 1, 1)
    return _years_back(now.date(), years)


@dataclass
class CategoryGate:
    category: CaseCategory
    decided: int = 0
    recent: int = 0
    with_outcome: int = 0
    status: AdmissionStatus = AdmissionStatus.WITHHELD
    reason: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.status == AdmissionStatus.ADMITTED


@dataclass
class GateReport:
    status: AdmissionStatus
    total_cases: int
    total_decided: int
    total_recent: int
    recency_cutoff: date
    reason: Optional[str] = None
    reason_code: Optional[str] = None
    categories: Dict[CaseCategory, CategoryGate] = field(default_factory=dict)

    @property
    def admitted(self) -> bool:
        return self.status == AdmissionStatus.ADMITTED

    def admitted_categories(self) -> List[CaseCategory]:
        return [c for c, gate in self.categories.items() if gate.admitted]


class SampleGatekeeper:
    """Applies the sample-size thresholds to one judge's case set."""

    def __init__(self, thresholds: SampleThresholds):
        self.thresholds = thresholds

    def evaluate(self, records: Iterable[CaseRecord], now: datetime) -> GateReport:
        t = self.thresholds
        cutoff = recency_cutoff(now, t.recency_window_years, t.recency_mode)

        gates: Dict[CaseCategory, CategoryGate] = {}
        total_cases = total_decided = total_recent = 0

        for record in records:
            total_cases += 1
            gate = gates.get(record.category)
            if gate is None:
                gate = gates[record.category] = CategoryGate(category=record.category)
            if not record.is_decided:
                continue
            total_decided += 1
            gate.decided += 1
            if record.outcome is not None and record.outcome != Outcome.OTHER:
                gate.with_outcome += 1
            if record.decision_date >= cutoff:
                total_recent += 1
                gate.recent += 1

        globally_admitted = total_decided >= t.min_global_cases
        global_reason = None
        if not globally_admitted:
            global_reason = f"below global minimum ({total_decided} < {t.min_global_cases})"

        for gate in gates.values():
            if gate.decided < t.min_sample_size:
                gate.status = AdmissionStatus.WITHHELD
                gate.reason = f"below category minimum ({gate.decided} < {t.min_sample_size})"
            elif not globally_admitted:
                gate.status = AdmissionStatus.WITHHELD
                gate.reason = global_reason
            else:
                gate.status = AdmissionStatus.ADMITTED

        report = GateReport(
            status=AdmissionStatus.ADMITTED if globally_admitted else AdmissionStatus.WITHHELD,
            total_cases=total_cases,
            total_decided=total_decided,
            total_recent=total_recent,
            recency_cutoff=cutoff,
            reason=global_reason,
            reason_code=None if globally_admitted else BELOW_GLOBAL_MINIMUM,
            categories=gates,
        )
        logger.debug(
            f"Gate: {total_decided} decided, {total_recent} recent, "
            f"{len(report.admitted_categories())}/{len(gates)} categories admitted"
        )
        return report

    @staticmethod
    def ensure_admitted(report: GateReport):
        """Raise InsufficientSampleError if the judge is withheld."""
        if not report.admitted:
            raise InsufficientSampleError(report.reason, report.reason_code)
