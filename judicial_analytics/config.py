"""
Analytics Configuration.

Centralizes every threshold, window, and connection setting used by the
analytics engine. The configuration is built once (from the environment or a
JSON file) and passed explicitly into each component.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import json
import os


# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DB_PATH = DATA_DIR / "judicial_analytics.db"

RECENCY_MODES = ("rolling", "calendar")
SECRET_FIELDS = ("anthropic_api_key", "openai_api_key", "token")


def _without_secrets(values: Dict) -> Dict:
    return {k: v for k, v in values.items() if k not in SECRET_FIELDS}


@dataclass
class SampleThresholds:
    """Minimum case volumes for a metric to be statistically meaningful."""
    # Per-category decided cases required before any metric is computed
    min_sample_size: int = 15

    # Per-category decided cases for the HIGH quality tier
    good_sample_size: int = 40

    # Total decided cases required before anything is exposed
    min_global_cases: int = 500

    # Trailing window for the "recent" sample
    recency_window_years: int = 5

    # "rolling": cutoff is generation time minus N years
    # "calendar": current calendar year plus the N-1 previous years
    recency_mode: str = "rolling"

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.recency_mode not in RECENCY_MODES:
            raise ValueError(
                f"recency_mode must be one of {RECENCY_MODES}, got {self.recency_mode!r}"
            )

    @property
    def high_tier_sample_size(self) -> int:
        return max(self.good_sample_size, 2 * self.min_sample_size)


@dataclass
class MetricConfig:
    """Configuration for the metric calculators."""
    # Absolute rate change (0.05 = 5 percentage points) treated as noise
    trend_noise_threshold: float = 0.05

    # Decided cases with a monetary value needed before value brackets are reported
    value_min_cases: int = 30

    # Quality tier thresholds on the 0-100 confidence score
    high_confidence: float = 80.0
    good_confidence: float = 70.0


@dataclass
class CacheConfig:
    """Configuration for the tiered analytics cache."""
    # Entries older than this are served with stale=True
    freshness_hours: int = 2160

    # Ephemeral tier lifetime (90 days)
    ephemeral_ttl_seconds: int = 60 * 60 * 24 * 90

    # Ephemeral tier backend: "redis", "memory" or "none"
    ephemeral_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "judge:analytics"

    # In-process tier size bound
    memory_max_entries: int = 1000


@dataclass
class NarrativeConfig:
    """Configuration for narrative augmentation."""
    enabled: bool = False

    # Providers tried in order
    providers: List[str] = field(default_factory=lambda: ["anthropic", "openai"])

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    max_tokens: int = 400

    # Per-call timeout
    timeout_seconds: float = 30.0

    # Daily spending limit in USD (0 disables the budget)
    daily_budget_usd: float = 50.0


@dataclass
class GatewayConfig:
    """Configuration for the case data gateway."""
    # "sqlite" reads the local case table, "http" calls a case data service
    backend: str = "sqlite"
    base_url: str = ""
    token: str = ""
    timeout_seconds: float = 30.0
    page_size: int = 500

    # Maximum records fetched for one judge
    case_limit: int = 5000


@dataclass
class BatchConfig:
    """Configuration for batch regeneration."""
    concurrency: int = 4

    # Shared quota for external calls (gateway + narrative)
    rate_limit_per_minute: int = 120
    rate_limit_burst: int = 10


@dataclass
class AnalyticsConfig:
    """Master configuration for the analytics engine."""
    thresholds: SampleThresholds = field(default_factory=SampleThresholds)
    metrics: MetricConfig = field(default_factory=MetricConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    db_path: Path = DB_PATH

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "thresholds": dict(self.thresholds.__dict__),
            "metrics": dict(self.metrics.__dict__),
            "cache": dict(self.cache.__dict__),
            "narrative": _without_secrets(self.narrative.__dict__),
            "gateway": _without_secrets(self.gateway.__dict__),
            "batch": dict(self.batch.__dict__),
            "db_path": str(self.db_path),
        }

    def save(self, path: Path):
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def from_dict(cls, data: Dict) -> 'AnalyticsConfig':
        config = cls()
        for section in ("thresholds", "metrics", "cache", "narrative", "gateway", "batch"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
        if data.get("db_path"):
            config.db_path = Path(data["db_path"])
        config.thresholds.validate()
        return config

    @classmethod
    def load(cls, path: Path) -> 'AnalyticsConfig':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'AnalyticsConfig':
        """Build configuration from environment variables, read once."""
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        config = cls()
        t = config.thresholds
        t.min_sample_size = int(get("ANALYTICS_MIN_SAMPLE_SIZE", str(t.min_sample_size)))
        t.good_sample_size = int(get("ANALYTICS_GOOD_SAMPLE_SIZE", str(t.good_sample_size)))
        t.min_global_cases = int(get("ANALYTICS_MIN_GLOBAL_CASES", str(t.min_global_cases)))
        t.recency_window_years = int(get("ANALYTICS_RECENCY_WINDOW_YEARS", str(t.recency_window_years)))
        t.recency_mode = get("ANALYTICS_RECENCY_MODE", t.recency_mode)
        t.validate()

        m = config.metrics
        m.trend_noise_threshold = float(get("ANALYTICS_TREND_NOISE_THRESHOLD", str(m.trend_noise_threshold)))
        m.value_min_cases = int(get("ANALYTICS_VALUE_MIN_CASES", str(m.value_min_cases)))

        c = config.cache
        c.freshness_hours = int(get("ANALYTICS_FRESHNESS_HOURS", str(c.freshness_hours)))
        c.ephemeral_ttl_seconds = int(get("ANALYTICS_EPHEMERAL_TTL_SECONDS", str(c.ephemeral_ttl_seconds)))
        c.redis_url = get("REDIS_URL", c.redis_url)
        c.ephemeral_backend = get("ANALYTICS_EPHEMERAL_BACKEND", "redis" if env.get("REDIS_URL") else c.ephemeral_backend)

        n = config.narrative
        n.enabled = get("ANALYTICS_NARRATIVE_ENABLED", "0").lower() in ("1", "true", "yes")
        providers = get("ANALYTICS_NARRATIVE_PROVIDERS")
        if providers:
            n.providers = [p.strip() for p in providers.split(",") if p.strip()]
        n.anthropic_api_key = get("ANTHROPIC_API_KEY")
        n.anthropic_model = get("AI_MODEL", n.anthropic_model)
        n.openai_api_key = get("OPENAI_API_KEY")
        n.openai_model = get("OPENAI_MODEL", n.openai_model)
        n.max_tokens = int(get("AI_MAX_TOKENS_PER_SUMMARY", str(n.max_tokens)))
        n.timeout_seconds = float(get("ANALYTICS_NARRATIVE_TIMEOUT", str(n.timeout_seconds)))
        n.daily_budget_usd = float(get("AI_DAILY_BUDGET_USD", str(n.daily_budget_usd)))

        g = config.gateway
        g.backend = get("CASE_GATEWAY_BACKEND", g.backend)
        g.base_url = get("CASE_GATEWAY_URL", g.base_url)
        g.token = get("CASE_GATEWAY_TOKEN", g.token)
        g.timeout_seconds = float(get("CASE_GATEWAY_TIMEOUT", str(g.timeout_seconds)))
        g.case_limit = int(get("JUDGE_ANALYTICS_CASE_LIMIT", str(g.case_limit)))

        b = config.batch
        b.concurrency = int(get("ANALYTICS_BATCH_CONCURRENCY", str(b.concurrency)))
        b.rate_limit_per_minute = int(get("ANALYTICS_RATE_LIMIT_PER_MINUTE", str(b.rate_limit_per_minute)))

        db_path = get("ANALYTICS_DB_PATH")
        if db_path:
            config.db_path = Path(db_path)
        return config
