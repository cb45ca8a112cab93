"""
Metric calculators.

Pure functions over a list of case records. No I/O, no clock: the same
input always gives the same output.
"""
import math
from typing import List, Optional, Sequence

import numpy as np

from .types import (
    BaselineComparison,
    CaseRecord,
    CategoryMetrics,
    MotionOutcome,
    Outcome,
    TrendDirection,
    TrendResult,
    ValueAnalysis,
    ValueBracket,
)

RATE_PRECISION = 4
DAYS_PRECISION = 1

# (label, lower bound inclusive, upper bound exclusive or None)
VALUE_BRACKETS = (
    ("Under $10K", 0, 10_000),
    ("$10K - $25K", 10_000, 25_000),
    ("$25K - $50K", 25_000, 50_000),
    ("$50K - $100K", 50_000, 100_000),
    ("$100K - $250K", 100_000, 250_000),
    ("$250K - $500K", 250_000, 500_000),
    ("$500K - $1M", 500_000, 1_000_000),
    ("$1M - $5M", 1_000_000, 5_000_000),
    ("$5M+", 5_000_000, None),
)
HIGH_VALUE_FLOOR = 250_000
LOW_VALUE_CEILING = 50_000


def _ratio(numerator: int, denominator: int) -> Optional[float]:
    if denominator == 0:
        return None
    return round(numerator / denominator, RATE_PRECISION)


def decided(records: Sequence[CaseRecord]) -> List[CaseRecord]:
    return [r for r in records if r.is_decided]


def settlement_rate(records: Sequence[CaseRecord]) -> Optional[float]:
    """Settled / decided, or None when nothing is decided."""
    done = decided(records)
    settled = sum(1 for r in done if r.outcome == Outcome.SETTLED)
    return _ratio(settled, len(done))


def motion_grant_rate(records: Sequence[CaseRecord]) -> Optional[float]:
    """Granted / records with a motion ruling. Partial and moot are not granted."""
    ruled = [r for r in records if r.motion_outcome is not None]
    granted = sum(1 for r in ruled if r.motion_outcome == MotionOutcome.GRANTED)
    return _ratio(granted, len(ruled))


def decision_durations(records: Sequence[CaseRecord]) -> List[int]:
    """Days from filing to decision for records with both dates."""
    return [r.days_to_decision for r in records if r.days_to_decision is not None]


def average_days(durations: Sequence[int]) -> Optional[float]:
    if not durations:
        return None
    return round(float(np.mean(durations)), DAYS_PRECISION)


def median_days(durations: Sequence[int]) -> Optional[float]:
    if not durations:
        return None
    return round(float(np.median(durations)), DAYS_PRECISION)


def temporal_trend(records: Sequence[CaseRecord], noise_threshold: float) -> TrendResult:
    """
    Compare settlement rates across two equal-width halves of the decision
    date range.

    The later half's rate minus the earlier half's is the delta. A delta
    within +/- noise_threshold is stable, as is any range that cannot be
    split into two non-empty halves.
    """
    done = decided(records)
    if not done:
        return TrendResult(direction=TrendDirection.STABLE)

    first = min(r.decision_date for r in done)
    last = max(r.decision_date for r in done)
    if first == last:
        return TrendResult(direction=TrendDirection.STABLE)

    midpoint = first + (last - first) / 2
    earlier = [r for r in done if r.decision_date < midpoint]
    later = [r for r in done if r.decision_date >= midpoint]
    if not earlier or not later:
        return TrendResult(direction=TrendDirection.STABLE)

    earlier_rate = settlement_rate(earlier)
    later_rate = settlement_rate(later)
    delta = round(later_rate - earlier_rate, RATE_PRECISION)

    if delta > noise_threshold:
        direction = TrendDirection.INCREASING
    elif delta < -noise_threshold:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE

    return TrendResult(
        direction=direction,
        earlier_rate=earlier_rate,
        later_rate=later_rate,
        delta=delta,
    )


def binomial_standard_error(p: float, n: int) -> float:
    """sqrt(p(1-p)/n); 0 for an empty sample."""
    if n <= 0:
        return 0.0
    p = min(max(p, 0.0), 1.0)
    return math.sqrt(p * (1 - p) / n)


def compare_to_baseline(rate: Optional[float], baseline_rate: Optional[float],
                        sample_size: int) -> Optional[BaselineComparison]:
    """Signed deviation of a judge's rate from the baseline, with its standard error."""
    if rate is None or baseline_rate is None:
        return None
    deviation = round(rate - baseline_rate, RATE_PRECISION)
    se = round(binomial_standard_error(baseline_rate, sample_size), RATE_PRECISION)
    return BaselineComparison(
        baseline_rate=baseline_rate,
        deviation=deviation,
        standard_error=se,
        within_one_se=abs(deviation) <= se,
    )


def _outcome_rate(records: Sequence[CaseRecord], outcome: Outcome) -> Optional[float]:
    return _ratio(sum(1 for r in records if r.outcome == outcome), len(records))


def settlement_value_correlation(records: Sequence[CaseRecord]) -> Optional[float]:
    """Pearson correlation of log10(value) with settled (1) / not settled (0)."""
    if len(records) < 2:
        return None
    values = np.log10([r.monetary_value for r in records])
    settled = np.array([1.0 if r.outcome == Outcome.SETTLED else 0.0 for r in records])
    if np.std(values) == 0 or np.std(settled) == 0:
        return None
    return round(float(np.corrcoef(values, settled)[0, 1]), RATE_PRECISION)


def value_analysis(records: Sequence[CaseRecord], min_cases: int = 30) -> Optional[ValueAnalysis]:
    """
    Outcome rates by case value bracket.

    Only decided records with a positive monetary value count. Returns None
    when fewer than min_cases such records exist. Empty brackets are left out.
    """
    valued = [r for r in decided(records) if r.monetary_value is not None and r.monetary_value > 0]
    if len(valued) < max(min_cases, 1):
        return None

    brackets = []
    for label, low, high in VALUE_BRACKETS:
        members = [r for r in valued if r.monetary_value >= low and (high is None or r.monetary_value < high)]
        if not members:
            continue
        rate = settlement_rate(members)
        brackets.append(ValueBracket(
            label=label,
            min_value=low,
            max_value=high,
            case_count=len(members),
            settlement_rate=rate,
            dismissal_rate=_outcome_rate(members, Outcome.DISMISSED),
            judgment_rate=_outcome_rate(members, Outcome.JUDGMENT),
            standard_error=round(binomial_standard_error(rate, len(members)), RATE_PRECISION),
            avg_days_to_decision=average_days(decision_durations(members)),
        ))

    return ValueAnalysis(
        sample_size=len(valued),
        brackets=brackets,
        high_value_settlement_rate=settlement_rate([r for r in valued if r.monetary_value >= HIGH_VALUE_FLOOR]),
        low_value_settlement_rate=settlement_rate([r for r in valued if r.monetary_value < LOW_VALUE_CEILING]),
        settlement_value_correlation=settlement_value_correlation(valued),
    )


def compute_category_metrics(records: Sequence[CaseRecord], noise_threshold: float,
                             baseline_rate: Optional[float] = None, value_min_cases: int = 30) -> CategoryMetrics:
    """All metrics for one category's records."""
    done = decided(records)
    rate = settlement_rate(done)
    durations = decision_durations(done)
    return CategoryMetrics(
        settlement_rate=rate,
        motion_grant_rate=motion_grant_rate(done),
        motion_sample_size=sum(1 for r in done if r.motion_outcome is not None),
        avg_days_to_decision=average_days(durations),
        median_days_to_decision=median_days(durations),
        trend=temporal_trend(done, noise_threshold),
        baseline=compare_to_baseline(rate, baseline_rate, len(done)),
        value_analysis=value_analysis(done, value_min_cases),
    )
