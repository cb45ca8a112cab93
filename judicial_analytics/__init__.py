"""
Judge analytics computation engine.

Components:
- SampleGatekeeper: decides whether a judge has enough decided cases
- Metric calculators: settlement, motion grant, time to decision, trend, baseline
- ConfidenceClassifier: confidence score and LOW/GOOD/HIGH quality tier
- TieredCacheManager: memory, Redis and SQLite tiers with read-through fallback
- NarrativeAdapter: optional generated summaries with citation checks
- BatchOrchestrator: regeneration across all judges
"""
from .config import AnalyticsConfig
from .pipeline import AnalyticsService, build_service
from .types import AnalyticsResult, CaseCategory, CaseRecord, LookupState, QualityTier

__version__ = "1.0.0"
