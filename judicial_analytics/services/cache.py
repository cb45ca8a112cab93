"""
Tiered cache for analytics results.

Tiers are consulted in order (fastest first). A hit from a later tier is
copied back into the earlier tiers in the background. Any tier failure is
treated as a miss on read and logged on write; the durable tier is the
source of truth for staleness reports and eviction.
"""
import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import redis

from ..config import CacheConfig
from ..errors import CachePersistenceError
from ..models import db
from ..types import AnalyticsResult, CaseCategory, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def cache_key(judge_id: str, category: Optional[CaseCategory] = None) -> str:
    if category is None:
        return judge_id
    return f"{judge_id}:{CaseCategory(category).value}"


@dataclass
class CacheEntry:
    key: str
    payload: Dict[str, Any]
    tier: str
    created_at: datetime
    updated_at: datetime


@dataclass
class CacheHit:
    result: AnalyticsResult
    tier: str
    created_at: datetime
    stale: bool = False


class CacheTier(ABC):
    """Uniform get/put/delete contract for one storage tier."""

    name = "base"
    durable = False

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def put(self, key: str, payload: Dict[str, Any], now: datetime):
        pass

    @abstractmethod
    def delete(self, key: str):
        pass


class MemoryTier(CacheTier):
    """In-process LRU with a hard TTL."""

    name = "memory"

    def __init__(self, max_entries: int = 1000, ttl_seconds: int = 60 * 60 * 24 * 90):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires, entry = item
            if time.monotonic() >= expires:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def put(self, key, payload, now):
        entry = CacheEntry(key=key, payload=payload, tier=self.name, created_at=now, updated_at=now)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                entry.created_at = existing[1].created_at
            self._entries[key] = (time.monotonic() + self.ttl_seconds, entry)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def delete(self, key):
        with self._lock:
            for k in [k for k in self._entries if k == key or k.startswith(f"{key}:")]:
                del self._entries[k]

    def __len__(self):
        return len(self._entries)


class RedisTier(CacheTier):
    """
    Ephemeral tier backed by Redis.

    If Redis cannot be reached at construction the tier stays permanently
    unavailable and every read is a miss.
    """

    name = "redis"

    def __init__(self, redis_url: str = None, client=None, ttl_seconds: int = 60 * 60 * 24 * 90,
                 key_prefix: str = "judge:analytics"):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self._client = client
        if self._client is None and redis_url:
            self._connect()

    def _connect(self):
        try:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
            self._client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable at {self.redis_url}, ephemeral tier disabled: {e}")
            self._client = None

    @property
    def available(self) -> bool:
        return self._client is not None

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def get(self, key):
        if not self._client:
            return None
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return CacheEntry(
                key=key,
                payload=data["payload"],
                tier=self.name,
                created_at=parse_timestamp(data["created_at"]),
                updated_at=parse_timestamp(data["updated_at"]),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Unreadable redis entry for {key}: {e}")
            return None

    def put(self, key, payload, now):
        if not self._client:
            return
        existing = self.get(key)
        body = json.dumps({
            "payload": payload,
            "created_at": (existing.created_at if existing else now).isoformat(),
            "updated_at": now.isoformat(),
        })
        try:
            self._client.set(self._key(key), body, ex=self.ttl_seconds)
        except redis.RedisError as e:
            raise CachePersistenceError(f"redis set failed for {key}: {e}") from e

    def delete(self, key):
        if not self._client:
            return
        try:
            self._client.delete(self._key(key))
            for k in self._client.scan_iter(match=f"{self._key(key)}:*"):
                self._client.delete(k)
        except redis.RedisError as e:
            raise CachePersistenceError(f"redis delete failed for {key}: {e}") from e


class SqliteTier(CacheTier):
    """Durable tier: the judge_analytics_cache table."""

    name = "sqlite"
    durable = True

    def __init__(self, db_path: Path = None):
        self.db_path = db_path

    def get(self, key):
        row = db.get_analytics_cache(key, db_path=self.db_path)
        if not row:
            return None
        return CacheEntry(
            key=key,
            payload=json.loads(row["analytics"]),
            tier=self.name,
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def put(self, key, payload, now):
        try:
            db.upsert_analytics_cache(key, json.dumps(payload), now.isoformat(), db_path=self.db_path)
        except sqlite3.Error as e:
            raise CachePersistenceError(f"sqlite upsert failed for {key}: {e}") from e

    def delete(self, key):
        try:
            db.delete_analytics_cache(key, db_path=self.db_path)
        except sqlite3.Error as e:
            raise CachePersistenceError(f"sqlite delete failed for {key}: {e}") from e

    def list_older_than(self, cutoff: datetime, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return db.list_stale_analytics(cutoff.isoformat(), limit, db_path=self.db_path)

    def clear_stale(self, cutoff: datetime) -> int:
        return db.clear_stale_analytics(cutoff.isoformat(), db_path=self.db_path)


class TieredCacheManager:
    """Read-through cache over an ordered list of tiers."""

    def __init__(self, tiers: List[CacheTier], freshness_hours: int = 2160,
                 clock: Callable[[], datetime] = utcnow, backfill_workers: int = 2):
        self.tiers = list(tiers)
        self.freshness = timedelta(hours=freshness_hours)
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=backfill_workers, thread_name_prefix="cache-backfill")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    @property
    def durable_tier(self) -> Optional[SqliteTier]:
        for tier in self.tiers:
            if tier.durable:
                return tier
        return None

    def is_stale(self, timestamp: datetime) -> bool:
        return self.clock() - timestamp > self.freshness

    def get(self, judge_id: str, category: Optional[CaseCategory] = None) -> Optional[CacheHit]:
        """First usable hit across the tiers, or None."""
        key = cache_key(judge_id, category)
        for index, tier in enumerate(self.tiers):
            try:
                entry = tier.get(key)
            except Exception as e:
                logger.warning(f"Cache tier {tier.name} read failed for {key}: {e}")
                continue
            if entry is None:
                continue

            try:
                result = AnalyticsResult.from_dict(entry.payload)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding unreadable {tier.name} entry for {key}: {e}")
                continue

            if index > 0:
                self._backfill(self.tiers[:index], key, entry)

            stale = self.is_stale(entry.updated_at)
            logger.debug(f"Cache hit for {key} from {tier.name} (stale={stale})")
            return CacheHit(result=result, tier=tier.name, created_at=entry.updated_at, stale=stale)
        return None

    def put(self, judge_id: str, result: AnalyticsResult,
            category: Optional[CaseCategory] = None) -> List[str]:
        """Write to every tier. Returns the names of tiers written."""
        key = cache_key(judge_id, category)
        return self._write(self.tiers, key, result.to_dict(), self.clock())

    def invalidate(self, judge_id: str):
        key = cache_key(judge_id)
        for tier in self.tiers:
            try:
                tier.delete(key)
            except CachePersistenceError as e:
                logger.warning(f"Cache invalidation failed on {tier.name}: {e}")

    def _write(self, tiers: List[CacheTier], key: str, payload: Dict[str, Any], now: datetime) -> List[str]:
        written = []
        for tier in tiers:
            try:
                tier.put(key, payload, now)
                written.append(tier.name)
            except CachePersistenceError as e:
                logger.warning(f"Cache write failed on {tier.name}: {e}")
        return written

    def _backfill(self, tiers: List[CacheTier], key: str, entry: CacheEntry):
        future = self._executor.submit(self._write, tiers, key, entry.payload, entry.updated_at)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._backfill_done)

    def _backfill_done(self, future: Future):
        with self._pending_lock:
            self._pending.discard(future)
        if future.exception() is not None:
            logger.warning(f"Cache backfill failed: {future.exception()}")

    def drain(self, timeout: Optional[float] = None):
        """Wait for pending backfills."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def is_in_flight(self, judge_id: str) -> bool:
        with self._inflight_lock:
            return judge_id in self._inflight

    def run_exclusive(self, judge_id: str, fn: Callable[[], Any]) -> Any:
        """
        Run fn with at most one call in flight per judge.

        Concurrent callers for the same judge wait and receive the first
        caller's result (or exception).
        """
        with self._inflight_lock:
            future = self._inflight.get(judge_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[judge_id] = future

        if not owner:
            logger.debug(f"Joining in-flight generation for judge {judge_id}")
            return future.result()

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(judge_id, None)

    def list_stale(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        tier = self.durable_tier
        if tier is None:
            return []
        return tier.list_older_than(self.clock() - self.freshness, limit)

    def clear_stale(self, older_than_hours: Optional[int] = None) -> int:
        tier = self.durable_tier
        if tier is None:
            return 0
        age = timedelta(hours=older_than_hours) if older_than_hours is not None else self.freshness
        removed = tier.clear_stale(self.clock() - age)
        logger.info(f"Cleared {removed} stale analytics cache entries")
        return removed

    def shutdown(self):
        self._executor.shutdown(wait=True)


def build_cache(config: CacheConfig, db_path: Path = None,
                clock: Callable[[], datetime] = utcnow) -> TieredCacheManager:
    tiers: List[CacheTier] = []
    if config.memory_max_entries > 0 and config.ephemeral_backend != "none":
        tiers.append(MemoryTier(config.memory_max_entries, config.ephemeral_ttl_seconds))
    if config.ephemeral_backend == "redis":
        tiers.append(RedisTier(
            redis_url=config.redis_url,
            ttl_seconds=config.ephemeral_ttl_seconds,
            key_prefix=config.key_prefix,
        ))
    tiers.append(SqliteTier(db_path))
    return TieredCacheManager(tiers, freshness_hours=config.freshness_hours, clock=clock)
