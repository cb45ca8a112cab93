"""AI usage accounting with a daily spending limit."""
import logging
import sqlite3
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..models import db
from ..types import utcnow

logger = logging.getLogger(__name__)

# USD per 1M tokens
MODEL_PRICING = {
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}


def calculate_cost(model: Optional[str], input_tokens: int, output_tokens: int) -> float:
    """Cost in USD for token usage. Unknown models cost 0."""
    pricing = MODEL_PRICING.get(model or "")
    if not pricing:
        return 0.0
    return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]


@dataclass
class UsageRecord:
    provider: str
    model: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    success: bool = True
    judge_id: Optional[str] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=lambda: utcnow().isoformat())


class CostTracker:
    """Thread-safe daily spend counter, persisted to the ai_usage table."""

    def __init__(self, daily_budget_usd: float = 50.0, db_path: Path = None, persist: bool = True):
        self.daily_budget_usd = daily_budget_usd
        self.db_path = db_path
        self.persist = persist
        self._lock = threading.Lock()
        self._daily_spent = 0.0
        self._calls = 0
        self._last_reset_date = utcnow().date().isoformat()

        if self.persist:
            self._daily_spent = self._load_today_spend()

        logger.info(f"CostTracker initialized with daily_budget=${daily_budget_usd}")

    def _today_start(self) -> str:
        today = utcnow().date()
        return datetime(today.year, today.month, today.day, tzinfo=timezone.utc).isoformat()

    def _load_today_spend(self) -> float:
        try:
            return float(db.usage_since(self._today_start(), db_path=self.db_path)["cost_usd"])
        except sqlite3.Error as e:
            logger.warning(f"Could not load today's AI spend: {e}")
            return 0.0

    def _reset_daily_if_needed(self):
        today = utcnow().date().isoformat()
        if today != self._last_reset_date:
            logger.info(f"New day, resetting daily AI spend from ${self._daily_spent:.2f} to $0.00")
            self._daily_spent = 0.0
            self._calls = 0
            self._last_reset_date = today

    def can_spend(self, estimated_cost: float = 0.0) -> bool:
        """False once the daily budget is exhausted. A budget of 0 disables the check."""
        if self.daily_budget_usd <= 0:
            return True
        with self._lock:
            self._reset_daily_if_needed()
            return self._daily_spent + estimated_cost < self.daily_budget_usd

    def record(self, usage: UsageRecord) -> UsageRecord:
        if not usage.cost_usd:
            usage.cost_usd = calculate_cost(usage.model, usage.input_tokens, usage.output_tokens)
        with self._lock:
            self._reset_daily_if_needed()
            self._daily_spent += usage.cost_usd
            self._calls += 1
            spent = self._daily_spent

        if self.daily_budget_usd > 0 and spent >= self.daily_budget_usd:
            logger.warning(f"Daily AI budget exhausted: ${spent:.4f} of ${self.daily_budget_usd:.2f}")

        if self.persist:
            try:
                db.insert_usage(asdict(usage), db_path=self.db_path)
            except sqlite3.Error as e:
                logger.warning(f"Failed to persist AI usage record: {e}")
        return usage

    def get_remaining_budget(self) -> float:
        with self._lock:
            self._reset_daily_if_needed()
            return max(0.0, self.daily_budget_usd - self._daily_spent)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._reset_daily_if_needed()
            stats = {
                "date": self._last_reset_date,
                "calls": self._calls,
                "daily_spent": round(self._daily_spent, 6),
                "daily_budget": self.daily_budget_usd,
                "remaining_budget": round(max(0.0, self.daily_budget_usd - self._daily_spent), 6),
            }
        if self.persist:
            try:
                stats["today"] = db.usage_since(self._today_start(), db_path=self.db_path)
            except sqlite3.Error as e:
                logger.warning(f"Could not read AI usage: {e}")
        return stats
