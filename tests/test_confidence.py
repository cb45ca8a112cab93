import pytest

from judicial_analytics.config import MetricConfig, SampleThresholds
from judicial_analytics.confidence import (
    ConfidenceClassifier,
    ConfidenceStrategy,
    WilsonIntervalConfidence,
    case_count_confidence,
    classify_quality,
    wilson_interval,
)
from judicial_analytics.types import QualityTier


class TestWilson:
    def test_interval_contains_rate(self):
        low, high = wilson_interval(0.3, 100)
        assert low < 0.3 < high
        assert 0.0 <= low and high <= 1.0

    def test_empty_sample_is_uninformative(self):
        assert wilson_interval(0.5, 0) == (0.0, 1.0)

    @pytest.mark.parametrize("n,expected", [(40, 70.4), (100, 80.8), (300, 88.8)])
    def test_scores(self, n, expected):
        assert WilsonIntervalConfidence().score(0.5, n) == expected

    def test_score_grows_with_sample_size(self):
        strategy = WilsonIntervalConfidence()
        scores = [strategy.score(0.4, n) for n in (15, 40, 100, 500, 2000)]
        assert scores == sorted(scores)

    def test_unknown_rate_scores_as_half(self):
        strategy = WilsonIntervalConfidence()
        assert strategy.score(None, 100) == strategy.score(0.5, 100)

    def test_zero_sample_scores_zero(self):
        assert WilsonIntervalConfidence().score(0.5, 0) == 0.0


class TestClassifyQuality:
    def setup_method(self):
        self.thresholds = SampleThresholds()
        self.metrics = MetricConfig()

    @pytest.mark.parametrize("n,confidence,tier", [
        (300, 85.0, QualityTier.HIGH),
        (40, 80.0, QualityTier.HIGH),
        (39, 95.0, QualityTier.GOOD),
        (300, 75.0, QualityTier.GOOD),
        (20, 50.0, QualityTier.GOOD),
        (14, 99.0, QualityTier.LOW),
        (0, 0.0, QualityTier.LOW),
    ])
    def test_rules(self, n, confidence, tier):
        assert classify_quality(n, confidence, self.thresholds, self.metrics) == tier

    def test_pure(self):
        first = [classify_quality(n, c, self.thresholds, self.metrics) for n in range(0, 200, 7) for c in (50, 75, 90)]
        second = [classify_quality(n, c, self.thresholds, self.metrics) for n in range(0, 200, 7) for c in (50, 75, 90)]
        assert first == second

    def test_high_tier_respects_twice_minimum(self):
        thresholds = SampleThresholds(min_sample_size=30, good_sample_size=40)
        assert classify_quality(50, 90.0, thresholds, self.metrics) == QualityTier.GOOD
        assert classify_quality(60, 90.0, thresholds, self.metrics) == QualityTier.HIGH


class TestCaseCountConfidence:
    @pytest.mark.parametrize("total,expected", [
        (1500, 93.0),
        (1000, 93.0),
        (847, 85.0),
        (500, 75.0),
        (250, 54.5),
        (0, 40.0),
    ])
    def test_tiers(self, total, expected):
        assert case_count_confidence(total) == expected


class FixedConfidence(ConfidenceStrategy):
    name = "fixed"

    def score(self, rate, sample_size):
        return 90.0


class TestConfidenceClassifier:
    def test_default_strategy(self):
        classifier = ConfidenceClassifier(SampleThresholds(), MetricConfig())
        assert classifier.assess(300, 0.5) == (88.8, QualityTier.HIGH)

    def test_strategy_is_pluggable(self):
        classifier = ConfidenceClassifier(SampleThresholds(), MetricConfig(), FixedConfidence())
        assert classifier.assess(40, 0.1) == (90.0, QualityTier.HIGH)
        assert classifier.assess(10, 0.1) == (90.0, QualityTier.LOW)
