from datetime import date

import pytest

from judicial_analytics.metrics import (
    average_days,
    binomial_standard_error,
    compare_to_baseline,
    compute_category_metrics,
    median_days,
    motion_grant_rate,
    settlement_rate,
    temporal_trend,
    value_analysis,
)
from judicial_analytics.types import TrendDirection

from tests.conftest import make_rows, to_records


class TestRates:
    def test_settlement_rate(self):
        records = to_records(make_rows(10, outcomes=("settled", "settled", "judgment", "dismissed", "settled")))
        assert settlement_rate(records) == 0.6

    def test_settlement_rate_is_bounded(self):
        assert settlement_rate(to_records(make_rows(8, outcomes=("settled",)))) == 1.0
        assert settlement_rate(to_records(make_rows(8, outcomes=("judgment",)))) == 0.0

    def test_empty_denominators_give_none(self):
        assert settlement_rate([]) is None
        assert settlement_rate(to_records(make_rows(5, decided=False))) is None
        assert motion_grant_rate(to_records(make_rows(5))) is None

    def test_motion_grant_rate_counts_only_granted(self):
        records = to_records(make_rows(8, motions=("granted", "denied", "granted in part", "granted")))
        assert motion_grant_rate(records) == 0.5

    def test_rates_are_rounded(self):
        records = to_records(make_rows(3, outcomes=("settled", "judgment", "judgment")))
        assert settlement_rate(records) == 0.3333


class TestDurations:
    def test_average_and_median(self):
        assert average_days([10, 20, 60]) == 30.0
        assert median_days([10, 20, 60]) == 20.0
        assert median_days([10, 20]) == 15.0

    def test_no_durations(self):
        assert average_days([]) is None
        assert median_days([]) is None


class TestTemporalTrend:
    def _split(self, earlier_outcomes, later_outcomes):
        earlier = make_rows(20, start=date(2020, 1, 1), span_days=300, outcomes=earlier_outcomes, prefix="a")
        later = make_rows(20, start=date(2022, 1, 1), span_days=300, outcomes=later_outcomes, prefix="b")
        return to_records(earlier + later)

    def test_increasing(self):
        trend = temporal_trend(self._split(("judgment",), ("settled",)), 0.05)
        assert trend.direction == TrendDirection.INCREASING
        assert trend.earlier_rate == 0.0
        assert trend.later_rate == 1.0
        assert trend.delta == 1.0

    def test_decreasing(self):
        trend = temporal_trend(self._split(("settled",), ("settled", "judgment")), 0.05)
        assert trend.direction == TrendDirection.DECREASING
        assert trend.delta == -0.5

    def test_change_within_noise_is_stable(self):
        earlier = ("settled",) * 10 + ("judgment",) * 10
        later = ("settled",) * 11 + ("judgment",) * 9
        trend = temporal_trend(self._split(earlier, later), 0.1)
        assert trend.direction == TrendDirection.STABLE
        assert trend.delta == pytest.approx(0.05)

    def test_single_date_is_stable(self):
        records = to_records(make_rows(10, span_days=0))
        trend = temporal_trend(records, 0.05)
        assert trend.direction == TrendDirection.STABLE
        assert trend.delta is None

    def test_empty_is_stable(self):
        assert temporal_trend([], 0.05).direction == TrendDirection.STABLE


class TestBaselineComparison:
    def test_standard_error(self):
        assert binomial_standard_error(0.5, 100) == pytest.approx(0.05)
        assert binomial_standard_error(0.5, 0) == 0.0

    def test_deviation_and_significance(self):
        comparison = compare_to_baseline(0.70, 0.62, 300)
        assert comparison.deviation == 0.08
        assert comparison.standard_error == 0.028
        assert comparison.within_one_se is False

        close = compare_to_baseline(0.63, 0.62, 300)
        assert close.within_one_se is True

    def test_missing_baseline(self):
        assert compare_to_baseline(0.5, None, 100) is None
        assert compare_to_baseline(None, 0.5, 100) is None


class TestComputeCategoryMetrics:
    def test_deterministic(self):
        records = to_records(make_rows(60, motions=("granted", "denied")))
        assert compute_category_metrics(records, 0.05, 0.62) == compute_category_metrics(records, 0.05, 0.62)

    def test_undecided_records_are_ignored(self):
        decided = make_rows(30, prefix="d", motions=("granted",))
        pending = make_rows(30, decided=False, prefix="p", motions=("denied",))
        metrics = compute_category_metrics(to_records(decided + pending), 0.05)

        assert metrics.settlement_rate == 0.5
        assert metrics.motion_grant_rate == 1.0
        assert metrics.motion_sample_size == 30
        assert metrics.baseline is None

    def test_durations_from_filing_dates(self):
        metrics = compute_category_metrics(to_records(make_rows(50)), 0.05)
        # make_rows files each case 100 + (i % 50) days before its decision
        assert metrics.avg_days_to_decision == 124.5
        assert metrics.median_days_to_decision == 124.5


def valued_rows():
    """20 low-value cases mostly going to judgment, 20 high-value cases mostly settling."""
    low = make_rows(20, prefix="low", outcomes=("judgment", "judgment", "judgment", "settled"))
    high = make_rows(20, prefix="high", outcomes=("settled", "settled", "settled", "dismissed"))
    for row in low:
        row["case_value"] = 20_000
    for row in high:
        row["case_value"] = 600_000
    return low + high


class TestValueAnalysis:
    def test_brackets(self):
        analysis = value_analysis(to_records(valued_rows()), min_cases=30)

        assert analysis.sample_size == 40
        assert [b.label for b in analysis.brackets] == ["$10K - $25K", "$500K - $1M"]
        low, high = analysis.brackets
        assert low.case_count == 20
        assert low.settlement_rate == 0.25
        assert low.judgment_rate == 0.75
        assert low.dismissal_rate == 0.0
        assert low.standard_error == 0.0968
        assert high.settlement_rate == 0.75
        assert high.dismissal_rate == 0.25
        assert high.max_value == 1_000_000

    def test_high_and_low_value_rates(self):
        analysis = value_analysis(to_records(valued_rows()), min_cases=30)
        assert analysis.high_value_settlement_rate == 0.75
        assert analysis.low_value_settlement_rate == 0.25
        assert analysis.settlement_value_correlation == 0.5

    def test_open_ended_top_bracket(self):
        rows = make_rows(30, outcomes=("settled", "judgment"))
        for row in rows:
            row["case_value"] = 12_000_000
        analysis = value_analysis(to_records(rows), min_cases=30)

        assert [b.label for b in analysis.brackets] == ["$5M+"]
        assert analysis.brackets[0].max_value is None
        assert analysis.low_value_settlement_rate is None
        # a single value has no variance to correlate
        assert analysis.settlement_value_correlation is None

    def test_too_few_valued_cases(self):
        records = to_records(valued_rows())
        assert value_analysis(records, min_cases=41) is None
        assert value_analysis(to_records(make_rows(60)), min_cases=30) is None

    def test_undecided_and_zero_values_are_ignored(self):
        extra = make_rows(10, decided=False, prefix="open") + make_rows(10, prefix="zero")
        for row in extra:
            row["case_value"] = 0 if row["id"].startswith("zero") else 20_000
        analysis = value_analysis(to_records(valued_rows() + extra), min_cases=30)
        assert analysis.sample_size == 40

    def test_attached_to_category_metrics(self):
        metrics = compute_category_metrics(to_records(valued_rows()), 0.05, value_min_cases=30)
        assert metrics.value_analysis.sample_size == 40
        assert compute_category_metrics(to_records(valued_rows()), 0.05).value_analysis is not None
        assert compute_category_metrics(to_records(make_rows(40)), 0.05).value_analysis is None
