"""
Data model for judge analytics.

Case records are immutable inputs read from the case data gateway.
Analytics results are produced by the pipeline and serialized into the
cache tiers, so every result type round-trips through to_dict/from_dict.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import MalformedRecordError


class CaseCategory(str, Enum):
    """Case categories analytics are broken down by."""
    CIVIL = "civil"
    CRIMINAL = "criminal"
    FAMILY = "family"
    PROBATE = "probate"
    OTHER = "other"


class Outcome(str, Enum):
    """Normalized case disposition."""
    SETTLED = "settled"
    DISMISSED = "dismissed"
    JUDGMENT = "judgment"
    PLEA = "plea"
    CONVICTED = "convicted"
    ACQUITTED = "acquitted"
    GRANTED = "granted"
    DENIED = "denied"
    WITHDRAWN = "withdrawn"
    OTHER = "other"


class MotionOutcome(str, Enum):
    """Ruling on the motion attached to a case, if any."""
    GRANTED = "granted"
    DENIED = "denied"
    PARTIAL = "partial"
    MOOT = "moot"


class AdmissionStatus(str, Enum):
    ADMITTED = "admitted"
    WITHHELD = "withheld"


class QualityTier(str, Enum):
    """How statistically trustworthy a metric is."""
    LOW = "LOW"
    GOOD = "GOOD"
    HIGH = "HIGH"


TIER_RANK = {QualityTier.LOW: 0, QualityTier.GOOD: 1, QualityTier.HIGH: 2}


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class LookupState(str, Enum):
    """Caller-visible state of a judge's analytics."""
    READY = "ready"
    WITHHELD = "withheld"
    NOT_CACHED = "not_cached"
    FAILED = "failed"


_ALL_OUTCOMES = frozenset(Outcome)

OUTCOMES_BY_CATEGORY = {
    CaseCategory.CIVIL: frozenset({
        Outcome.SETTLED, Outcome.DISMISSED, Outcome.JUDGMENT, Outcome.WITHDRAWN, Outcome.OTHER,
    }),
    CaseCategory.CRIMINAL: frozenset({
        Outcome.PLEA, Outcome.CONVICTED, Outcome.ACQUITTED, Outcome.DISMISSED,
        Outcome.WITHDRAWN, Outcome.OTHER,
    }),
    CaseCategory.FAMILY: frozenset({
        Outcome.SETTLED, Outcome.DISMISSED, Outcome.JUDGMENT, Outcome.WITHDRAWN, Outcome.OTHER,
    }),
    CaseCategory.PROBATE: frozenset({
        Outcome.SETTLED, Outcome.DISMISSED, Outcome.JUDGMENT, Outcome.GRANTED, Outcome.DENIED,
        Outcome.WITHDRAWN, Outcome.OTHER,
    }),
    CaseCategory.OTHER: _ALL_OUTCOMES,
}

# Free-text case type patterns, checked in order
CATEGORY_PATTERNS = {
    CaseCategory.CRIMINAL: [
        r'criminal', r'felony', r'misdemeanor', r'\bcr\b', r'infraction',
    ],
    CaseCategory.FAMILY: [
        r'family', r'custody', r'divorce', r'dissolution', r'adoption', r'child support',
    ],
    CaseCategory.PROBATE: [
        r'probate', r'estate', r'\bwills?\b', r'\btrusts?\b', r'guardianship', r'conservatorship',
    ],
    CaseCategory.CIVIL: [
        r'civil', r'tort', r'contract', r'personal injury', r'\bcv\b', r'small claims',
        r'unlawful detainer', r'breach',
    ],
}

# Free-text disposition patterns, checked in order (more specific first)
OUTCOME_PATTERNS = {
    Outcome.SETTLED: [r'\bsettle', r'\bcompromise'],
    Outcome.PLEA: [r'\bplea\b', r'pleaded guilty', r'pled guilty'],
    Outcome.ACQUITTED: [r'\bacquit', r'not guilty'],
    Outcome.CONVICTED: [r'\bconvict', r'\bguilty\b', r'\bsentenced\b'],
    Outcome.WITHDRAWN: [r'\bwithdrawn\b', r'\babandoned\b'],
    Outcome.DISMISSED: [r'\bdismiss'],
    Outcome.JUDGMENT: [r'\bjudgment\b', r'\bverdict\b', r'\bdecided\b'],
    Outcome.GRANTED: [r'\bgranted\b', r'\bapproved\b'],
    Outcome.DENIED: [r'\bdenied\b', r'\brejected\b'],
}

MOTION_OUTCOME_PATTERNS = {
    MotionOutcome.PARTIAL: [r'granted in part', r'denied in part', r'partially'],
    MotionOutcome.MOOT: [r'\bmoot\b', r'\bwithdrawn\b'],
    MotionOutcome.GRANTED: [r'\bgranted\b', r'\bgranting\b', r'\bsustained\b'],
    MotionOutcome.DENIED: [r'\bdenied\b', r'\bdenying\b', r'\boverruled\b'],
}

_CATEGORY_RE = {k: re.compile('|'.join(v), re.IGNORECASE) for k, v in CATEGORY_PATTERNS.items()}
_OUTCOME_RE = {k: re.compile('|'.join(v), re.IGNORECASE) for k, v in OUTCOME_PATTERNS.items()}
_MOTION_RE = {k: re.compile('|'.join(v), re.IGNORECASE) for k, v in MOTION_OUTCOME_PATTERNS.items()}


def normalize_category(value: Any) -> CaseCategory:
    """Map a free-text case type to a category. Unknown types become OTHER."""
    if isinstance(value, CaseCategory):
        return value
    text = (value or "").strip().lower()
    if not text:
        return CaseCategory.OTHER
    try:
        return CaseCategory(text)
    except ValueError:
        pass
    for category, pattern in _CATEGORY_RE.items():
        if pattern.search(text):
            return category
    return CaseCategory.OTHER


def normalize_outcome(value: Any) -> Optional[Outcome]:
    """Map a free-text disposition to an Outcome. Blank input gives None."""
    if isinstance(value, Outcome):
        return value
    text = (value or "").strip().lower()
    if not text:
        return None
    try:
        return Outcome(text)
    except ValueError:
        pass
    for outcome, pattern in _OUTCOME_RE.items():
        if pattern.search(text):
            return outcome
    return Outcome.OTHER


def normalize_motion_outcome(value: Any) -> Optional[MotionOutcome]:
    """Map a free-text ruling to a MotionOutcome. Unrecognized text gives None."""
    if isinstance(value, MotionOutcome):
        return value
    text = (value or "").strip().lower()
    if not text:
        return None
    try:
        return MotionOutcome(text)
    except ValueError:
        pass
    for outcome, pattern in _MOTION_RE.items():
        if pattern.search(text):
            return outcome
    return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a date, datetime or ISO string. Raises ValueError on bad input."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp into an aware UTC datetime."""
    ts = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Judge:
    id: str
    name: str
    court_id: Optional[str] = None
    court_name: Optional[str] = None
    jurisdiction: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Judge':
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            court_id=data.get("court_id"),
            court_name=data.get("court_name"),
            jurisdiction=data.get("jurisdiction"),
        )


@dataclass(frozen=True)
class CaseRecord:
    """A single case decided (or pending) before a judge."""
    id: str
    judge_id: str
    category: CaseCategory
    decision_date: Optional[date] = None
    outcome: Optional[Outcome] = None
    filing_date: Optional[date] = None
    motion_outcome: Optional[MotionOutcome] = None
    monetary_value: Optional[float] = None

    @property
    def is_decided(self) -> bool:
        return self.decision_date is not None

    @property
    def days_to_decision(self) -> Optional[int]:
        if self.filing_date is None or self.decision_date is None:
            return None
        days = (self.decision_date - self.filing_date).days
        return days if days >= 0 else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CaseRecord':
        """
        Build a validated record from a raw row.

        Accepts the gateway's column names (case_type, status, case_value)
        as well as the field names. Raises MalformedRecordError when the
        record cannot be used.
        """
        record_id = data.get("id")
        if not record_id:
            raise MalformedRecordError("missing case id")
        record_id = str(record_id)
        judge_id = data.get("judge_id")
        if not judge_id:
            raise MalformedRecordError("missing judge id", record_id)

        category = normalize_category(data.get("category") or data.get("case_type"))

        try:
            decision_date = parse_date(data.get("decision_date"))
            filing_date = parse_date(data.get("filing_date"))
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"unparseable date: {e}", record_id)

        outcome = normalize_outcome(data.get("outcome") or data.get("status"))
        if decision_date is not None and outcome is None:
            raise MalformedRecordError("decided case has no outcome", record_id)
        if outcome is not None and outcome not in OUTCOMES_BY_CATEGORY[category]:
            raise MalformedRecordError(
                f"outcome {outcome.value!r} not valid for {category.value} case", record_id
            )

        value = data.get("monetary_value", data.get("case_value"))
        try:
            monetary_value = float(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            raise MalformedRecordError(f"bad monetary value {value!r}", record_id)

        return cls(
            id=record_id,
            judge_id=str(judge_id),
            category=category,
            decision_date=decision_date,
            outcome=outcome if decision_date is not None else None,
            filing_date=filing_date,
            motion_outcome=normalize_motion_outcome(data.get("motion_outcome")),
            monetary_value=monetary_value,
        )


@dataclass
class DataQualityReport:
    """Records skipped during loading, and whether the load hit the case limit."""
    total_rows: int = 0
    skipped: int = 0
    skipped_ids: List[str] = field(default_factory=list)
    reasons: Dict[str, int] = field(default_factory=dict)
    truncated: bool = False
    case_limit: Optional[int] = None

    def record_skip(self, error: MalformedRecordError):
        self.skipped += 1
        if error.record_id:
            self.skipped_ids.append(error.record_id)
        key = str(error).split(":")[0]
        self.reasons[key] = self.reasons.get(key, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "skipped": self.skipped,
            "skipped_ids": list(self.skipped_ids),
            "reasons": dict(self.reasons),
            "truncated": self.truncated,
            "case_limit": self.case_limit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DataQualityReport':
        return cls(
            total_rows=data.get("total_rows", 0),
            skipped=data.get("skipped", 0),
            skipped_ids=list(data.get("skipped_ids", [])),
            reasons=dict(data.get("reasons", {})),
            truncated=data.get("truncated", False),
            case_limit=data.get("case_limit"),
        )


@dataclass
class TrendResult:
    direction: TrendDirection
    earlier_rate: Optional[float] = None
    later_rate: Optional[float] = None
    delta: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "earlier_rate": self.earlier_rate,
            "later_rate": self.later_rate,
            "delta": self.delta,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrendResult':
        return cls(
            direction=TrendDirection(data["direction"]),
            earlier_rate=data.get("earlier_rate"),
            later_rate=data.get("later_rate"),
            delta=data.get("delta"),
        )


@dataclass
class BaselineComparison:
    """Judge rate against the jurisdiction/category baseline."""
    baseline_rate: float
    deviation: float
    standard_error: float
    within_one_se: bool

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaselineComparison':
        return cls(
            baseline_rate=data["baseline_rate"],
            deviation=data["deviation"],
            standard_error=data["standard_error"],
            within_one_se=bool(data["within_one_se"]),
        )


@dataclass
class ValueBracket:
    """Outcome rates for decided cases whose monetary value falls in [min_value, max_value)."""
    label: str
    min_value: float
    max_value: Optional[float]
    case_count: int
    settlement_rate: Optional[float]
    dismissal_rate: Optional[float]
    judgment_rate: Optional[float]
    standard_error: float
    avg_days_to_decision: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValueBracket':
        return cls(
            label=data["label"],
            min_value=data["min_value"],
            max_value=data.get("max_value"),
            case_count=data["case_count"],
            settlement_rate=data.get("settlement_rate"),
            dismissal_rate=data.get("dismissal_rate"),
            judgment_rate=data.get("judgment_rate"),
            standard_error=data.get("standard_error", 0.0),
            avg_days_to_decision=data.get("avg_days_to_decision"),
        )


@dataclass
class ValueAnalysis:
    """
    Settlement patterns across case value brackets.

    high_value covers cases of $250K and up, low_value cases under $50K.
    settlement_value_correlation is the point-biserial correlation between
    log10(value) and settling, None when either side has no variance.
    """
    sample_size: int
    brackets: List[ValueBracket] = field(default_factory=list)
    high_value_settlement_rate: Optional[float] = None
    low_value_settlement_rate: Optional[float] = None
    settlement_value_correlation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_size": self.sample_size,
            "brackets": [b.to_dict() for b in self.brackets],
            "high_value_settlement_rate": self.high_value_settlement_rate,
            "low_value_settlement_rate": self.low_value_settlement_rate,
            "settlement_value_correlation": self.settlement_value_correlation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValueAnalysis':
        return cls(
            sample_size=data["sample_size"],
            brackets=[ValueBracket.from_dict(b) for b in data.get("brackets", [])],
            high_value_settlement_rate=data.get("high_value_settlement_rate"),
            low_value_settlement_rate=data.get("low_value_settlement_rate"),
            settlement_value_correlation=data.get("settlement_value_correlation"),
        )


@dataclass
class CategoryMetrics:
    settlement_rate: Optional[float]
    motion_grant_rate: Optional[float]
    motion_sample_size: int
    avg_days_to_decision: Optional[float]
    median_days_to_decision: Optional[float]
    trend: TrendResult
    baseline: Optional[BaselineComparison] = None
    value_analysis: Optional[ValueAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settlement_rate": self.settlement_rate,
            "motion_grant_rate": self.motion_grant_rate,
            "motion_sample_size": self.motion_sample_size,
            "avg_days_to_decision": self.avg_days_to_decision,
            "median_days_to_decision": self.median_days_to_decision,
            "trend": self.trend.to_dict(),
            "baseline": self.baseline.to_dict() if self.baseline else None,
            "value_analysis": self.value_analysis.to_dict() if self.value_analysis else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CategoryMetrics':
        baseline = data.get("baseline")
        value_analysis = data.get("value_analysis")
        return cls(
            settlement_rate=data.get("settlement_rate"),
            motion_grant_rate=data.get("motion_grant_rate"),
            motion_sample_size=data.get("motion_sample_size", 0),
            avg_days_to_decision=data.get("avg_days_to_decision"),
            median_days_to_decision=data.get("median_days_to_decision"),
            trend=TrendResult.from_dict(data["trend"]),
            baseline=BaselineComparison.from_dict(baseline) if baseline else None,
            value_analysis=ValueAnalysis.from_dict(value_analysis) if value_analysis else None,
        )


@dataclass
class CategoryResult:
    category: CaseCategory
    status: AdmissionStatus
    sample_size: int
    recent_sample_size: int
    with_outcome: int
    confidence: float
    quality_tier: QualityTier
    reason: Optional[str] = None
    metrics: Optional[CategoryMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "status": self.status.value,
            "sample_size": self.sample_size,
            "recent_sample_size": self.recent_sample_size,
            "with_outcome": self.with_outcome,
            "confidence": self.confidence,
            "quality_tier": self.quality_tier.value,
            "reason": self.reason,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CategoryResult':
        metrics = data.get("metrics")
        return cls(
            category=CaseCategory(data["category"]),
            status=AdmissionStatus(data["status"]),
            sample_size=data["sample_size"],
            recent_sample_size=data["recent_sample_size"],
            with_outcome=data.get("with_outcome", 0),
            confidence=data["confidence"],
            quality_tier=QualityTier(data["quality_tier"]),
            reason=data.get("reason"),
            metrics=CategoryMetrics.from_dict(metrics) if metrics else None,
        )


@dataclass
class Narrative:
    text: str
    citations: List[str]
    disclaimer: str
    provider: str
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "citations": list(self.citations),
            "disclaimer": self.disclaimer,
            "provider": self.provider,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Narrative':
        return cls(
            text=data["text"],
            citations=list(data.get("citations", [])),
            disclaimer=data["disclaimer"],
            provider=data["provider"],
            model=data.get("model"),
        )


@dataclass
class AnalyticsResult:
    """Statistical profile of one judge."""
    judge_id: str
    generated_at: datetime
    status: AdmissionStatus
    total_cases: int
    total_decided: int
    total_recent: int
    overall_confidence: float
    categories: Dict[CaseCategory, CategoryResult] = field(default_factory=dict)
    withheld_reason: Optional[str] = None
    reason_code: Optional[str] = None
    narrative: Optional[Narrative] = None
    narrative_unavailable: bool = False
    narrative_errors: List[str] = field(default_factory=list)
    data_quality: DataQualityReport = field(default_factory=DataQualityReport)

    @property
    def withheld(self) -> bool:
        return self.status == AdmissionStatus.WITHHELD

    def admitted_categories(self) -> List[CategoryResult]:
        return [c for c in self.categories.values() if c.status == AdmissionStatus.ADMITTED]

    def lowest_tier(self) -> QualityTier:
        """Lowest quality tier among admitted categories (LOW if none)."""
        admitted = self.admitted_categories()
        if not admitted:
            return QualityTier.LOW
        return min((c.quality_tier for c in admitted), key=TIER_RANK.get)

    def metric_values(self) -> Dict[str, Any]:
        """
        Flatten exposed metrics into citation keys like "civil.settlement_rate".

        Only admitted categories contribute, and None values are omitted.
        """
        values: Dict[str, Any] = {"overall.total_decided": self.total_decided}
        if self.withheld:
            return values
        values["overall.total_recent"] = self.total_recent
        values["overall.confidence"] = self.overall_confidence
        for result in self.admitted_categories():
            prefix = result.category.value
            values[f"{prefix}.sample_size"] = result.sample_size
            values[f"{prefix}.recent_sample_size"] = result.recent_sample_size
            values[f"{prefix}.confidence"] = result.confidence
            values[f"{prefix}.quality_tier"] = result.quality_tier.value
            m = result.metrics
            if m is None:
                continue
            candidates = {
                "settlement_rate": m.settlement_rate,
                "motion_grant_rate": m.motion_grant_rate,
                "motion_sample_size": m.motion_sample_size or None,
                "avg_days_to_decision": m.avg_days_to_decision,
                "median_days_to_decision": m.median_days_to_decision,
                "trend": m.trend.direction.value,
            }
            if m.baseline is not None:
                candidates["baseline_rate"] = m.baseline.baseline_rate
                candidates["baseline_deviation"] = m.baseline.deviation
            if m.value_analysis is not None:
                va = m.value_analysis
                candidates["valued_sample_size"] = va.sample_size
                candidates["high_value_settlement_rate"] = va.high_value_settlement_rate
                candidates["low_value_settlement_rate"] = va.low_value_settlement_rate
                candidates["settlement_value_correlation"] = va.settlement_value_correlation
            for name, value in candidates.items():
                if value is not None:
                    values[f"{prefix}.{name}"] = value
        return values

    def to_dict(self) -> Dict[str, Any]:
        return {
            "judge_id": self.judge_id,
            "generated_at": self.generated_at.isoformat(),
            "status": self.status.value,
            "total_cases": self.total_cases,
            "total_decided": self.total_decided,
            "total_recent": self.total_recent,
            "overall_confidence": self.overall_confidence,
            "categories": {k.value: v.to_dict() for k, v in self.categories.items()},
            "withheld_reason": self.withheld_reason,
            "reason_code": self.reason_code,
            "narrative": self.narrative.to_dict() if self.narrative else None,
            "narrative_unavailable": self.narrative_unavailable,
            "narrative_errors": list(self.narrative_errors),
            "data_quality": self.data_quality.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalyticsResult':
        narrative = data.get("narrative")
        return cls(
            judge_id=data["judge_id"],
            generated_at=parse_timestamp(data["generated_at"]),
            status=AdmissionStatus(data["status"]),
            total_cases=data["total_cases"],
            total_decided=data["total_decided"],
            total_recent=data["total_recent"],
            overall_confidence=data["overall_confidence"],
            categories={
                CaseCategory(k): CategoryResult.from_dict(v)
                for k, v in data.get("categories", {}).items()
            },
            withheld_reason=data.get("withheld_reason"),
            reason_code=data.get("reason_code"),
            narrative=Narrative.from_dict(narrative) if narrative else None,
            narrative_unavailable=bool(data.get("narrative_unavailable", False)),
            narrative_errors=list(data.get("narrative_errors", [])),
            data_quality=DataQualityReport.from_dict(data.get("data_quality") or {}),
        )


@dataclass
class AnalyticsLookup:
    """What a caller gets back when asking for a judge's analytics."""
    judge_id: str
    state: LookupState
    result: Optional[AnalyticsResult] = None
    stale: bool = False
    source: Optional[str] = None  # tier name, or "generated"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "judge_id": self.judge_id,
            "state": self.state.value,
            "stale": self.stale,
            "source": self.source,
            "error": self.error,
            "analytics": self.result.to_dict() if self.result else None,
        }


@dataclass
class RegenerationOutcome:
    """Result of one regenerate call. status: generated, withheld, cached, cancelled or failed."""
    judge_id: str
    status: str
    error: Optional[str] = None
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class BatchReport:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    withheld: int = 0
    from_cache: int = 0
    cancelled: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    elapsed: float = 0.0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "withheld": self.withheld,
            "from_cache": self.from_cache,
            "cancelled": self.cancelled,
            "failures": list(self.failures),
            "elapsed": round(self.elapsed, 3),
            "dry_run": self.dry_run,
        }
