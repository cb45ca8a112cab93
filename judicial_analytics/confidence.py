"""
Confidence scoring and quality tiers.

The confidence score is pluggable; the default scores the width of the 95%
Wilson interval around a category's settlement rate. Quality tiers depend
only on (sample size, confidence).
"""
import math
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .config import MetricConfig, SampleThresholds
from .types import QualityTier

Z_95 = 1.96


def wilson_interval(p: float, n: int, z: float = Z_95) -> Tuple[float, float]:
    """Wilson score interval for a proportion p observed over n trials."""
    if n <= 0:
        return 0.0, 1.0
    denominator = 1 + z * z / n
    center = (p + z * z / (2 * n)) / denominator
    spread = z * math.sqrt((p * (1 - p) + z * z / (4 * n)) / n) / denominator
    return max(0.0, center - spread), min(1.0, center + spread)


class ConfidenceStrategy(ABC):
    """Maps (rate, sample size) to a 0-100 confidence score."""

    name: str = "base"

    @abstractmethod
    def score(self, rate: Optional[float], sample_size: int) -> float:
        pass


class WilsonIntervalConfidence(ConfidenceStrategy):
    """100 x (1 - width of the 95% Wilson interval)."""

    name = "wilson"

    def __init__(self, z: float = Z_95):
        self.z = z

    def score(self, rate: Optional[float], sample_size: int) -> float:
        if sample_size <= 0:
            return 0.0
        p = 0.5 if rate is None else min(max(rate, 0.0), 1.0)
        low, high = wilson_interval(p, sample_size, self.z)
        value = 100.0 * (1.0 - (high - low))
        return round(min(100.0, max(0.0, value)), 1)


def classify_quality(sample_size: int, confidence: float,
                     thresholds: SampleThresholds, metric_config: MetricConfig) -> QualityTier:
    """First matching rule wins."""
    if sample_size < thresholds.min_sample_size:
        return QualityTier.LOW
    if sample_size >= thresholds.high_tier_sample_size and confidence >= metric_config.high_confidence:
        return QualityTier.HIGH
    if confidence >= metric_config.good_confidence:
        return QualityTier.GOOD
    if sample_size >= thresholds.min_sample_size:
        return QualityTier.GOOD
    return QualityTier.LOW


def case_count_confidence(total_decided: int) -> float:
    """Judge-level confidence from total case volume."""
    if total_decided >= 1000:
        return 93.0
    if total_decided >= 750:
        return 85.0
    if total_decided >= 500:
        return 75.0
    return round(min(69.0, 40 + (total_decided / 500) * 29), 1)


class ConfidenceClassifier:
    """Scores a category and assigns its quality tier."""

    def __init__(self, thresholds: SampleThresholds, metric_config: MetricConfig,
                 strategy: ConfidenceStrategy = None):
        self.thresholds = thresholds
        self.metric_config = metric_config
        self.strategy = strategy or WilsonIntervalConfidence()

    def assess(self, sample_size: int, rate: Optional[float]) -> Tuple[float, QualityTier]:
        confidence = self.strategy.score(rate, sample_size)
        return confidence, classify_quality(sample_size, confidence, self.thresholds, self.metric_config)
