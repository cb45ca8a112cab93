"""Case data gateways: where a judge's case records come from."""
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from ..config import GatewayConfig
from ..errors import GatewayUnavailableError, MalformedRecordError
from ..models import db
from ..types import CaseCategory, CaseRecord, DataQualityReport, Judge

logger = logging.getLogger(__name__)


@dataclass
class CaseLoad:
    """All usable records for a judge plus what was skipped."""
    records: List[CaseRecord] = field(default_factory=list)
    quality: DataQualityReport = field(default_factory=DataQualityReport)


class CaseDataGateway(ABC):
    """Read-only access to judges and their case records."""

    def __init__(self, case_limit: int = 5000):
        self.case_limit = case_limit

    @abstractmethod
    def _fetch_rows(self, judge_id: str, start: Optional[str] = None, end: Optional[str] = None,
                    decided_only: bool = False) -> List[Dict[str, Any]]:
        """
        Raw rows, at most case_limit + 1 of them. The extra row only signals
        that the judge has more than case_limit records. Raises GatewayUnavailableError.
        """

    @abstractmethod
    def get_judge(self, judge_id: str) -> Optional[Judge]:
        pass

    @abstractmethod
    def list_judges(self, limit: Optional[int] = None) -> List[Judge]:
        pass

    def _parse(self, judge_id: str, rows: List[Dict[str, Any]]) -> CaseLoad:
        load = CaseLoad()
        load.quality.case_limit = self.case_limit
        if len(rows) > self.case_limit:
            load.quality.truncated = True
            rows = rows[:self.case_limit]
            logger.warning(f"Case limit {self.case_limit} reached for judge {judge_id}, older records not loaded")
        load.quality.total_rows = len(rows)
        for row in rows:
            try:
                load.records.append(CaseRecord.from_dict(row))
            except MalformedRecordError as e:
                load.quality.record_skip(e)
                logger.debug(f"Skipping case {e.record_id}: {e}")
        if load.quality.skipped:
            logger.warning(f"Skipped {load.quality.skipped} malformed of {len(rows)} case records")
        return load

    def load_cases(self, judge_id: str) -> CaseLoad:
        """Every record for the judge, decided or not."""
        return self._parse(judge_id, self._fetch_rows(judge_id))

    def list_decided_cases(self, judge_id: str, category: Optional[CaseCategory] = None,
                           start: Optional[date] = None, end: Optional[date] = None) -> List[CaseRecord]:
        """Decided records ordered by decision date then id. An empty list is not an error."""
        rows = self._fetch_rows(
            judge_id,
            start=start.isoformat() if start else None,
            end=end.isoformat() if end else None,
            decided_only=True,
        )
        records = [r for r in self._parse(judge_id, rows).records if r.is_decided]
        if category is not None:
            records = [r for r in records if r.category == category]
        return sorted(records, key=lambda r: (r.decision_date, r.id))


class SqliteCaseGateway(CaseDataGateway):
    """Reads the local judges and cases tables."""

    def __init__(self, db_path: Path = None, case_limit: int = 5000):
        super().__init__(case_limit)
        self.db_path = db_path

    def _fetch_rows(self, judge_id, start=None, end=None, decided_only=False):
        try:
            return db.list_cases_for_judge(
                judge_id, start=start, end=end, decided_only=decided_only,
                limit=self.case_limit + 1, db_path=self.db_path,
            )
        except sqlite3.Error as e:
            raise GatewayUnavailableError(f"case database unavailable: {e}") from e

    def get_judge(self, judge_id):
        try:
            row = db.get_judge(judge_id, db_path=self.db_path)
        except sqlite3.Error as e:
            raise GatewayUnavailableError(f"case database unavailable: {e}") from e
        return Judge.from_dict(row) if row else None

    def list_judges(self, limit=None):
        try:
            rows = db.list_judges(limit, db_path=self.db_path)
        except sqlite3.Error as e:
            raise GatewayUnavailableError(f"case database unavailable: {e}") from e
        return [Judge.from_dict(r) for r in rows]


class HttpCaseGateway(CaseDataGateway):
    """Client for a case data service exposing paginated JSON endpoints."""

    def __init__(self, base_url: str, token: str = None, timeout: float = 30.0,
                 page_size: int = 500, case_limit: int = 5000, session: requests.Session = None):
        super().__init__(case_limit)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.headers["User-Agent"] = "judicial-analytics/1.0"

    @classmethod
    def from_config(cls, config: GatewayConfig) -> 'HttpCaseGateway':
        return cls(
            base_url=config.base_url,
            token=config.token,
            timeout=config.timeout_seconds,
            page_size=config.page_size,
            case_limit=config.case_limit,
        )

    def _get(self, endpoint: str, params: dict = None) -> Optional[dict]:
        """GET a JSON document. Returns None on 404."""
        url = f"{self.base_url}/{endpoint}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise GatewayUnavailableError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise GatewayUnavailableError(f"GET {url} returned invalid JSON") from e

    def _get_paginated(self, endpoint: str, params: dict) -> List[dict]:
        results: List[dict] = []
        params = dict(params)
        params["page_size"] = min(self.page_size, self.case_limit + 1)
        params["page"] = 1

        while len(results) <= self.case_limit:
            data = self._get(endpoint, dict(params))
            if not data:
                break
            results.extend(data.get("results", []))
            if not data.get("next"):
                break
            params["page"] += 1

        return results[:self.case_limit + 1]

    def _fetch_rows(self, judge_id, start=None, end=None, decided_only=False):
        params = {}
        if start:
            params["decided_after"] = start
        if end:
            params["decided_before"] = end
        if decided_only:
            params["decided"] = "true"
        return self._get_paginated(f"judges/{judge_id}/cases", params)

    def get_judge(self, judge_id):
        data = self._get(f"judges/{judge_id}")
        return Judge.from_dict(data) if data else None

    def list_judges(self, limit=None):
        params = {"limit": limit} if limit else None
        data = self._get("judges", params) or {}
        return [Judge.from_dict(j) for j in data.get("results", [])]


def build_gateway(config: GatewayConfig, db_path: Path = None) -> CaseDataGateway:
    if config.backend == "http":
        if not config.base_url:
            raise ValueError("CASE_GATEWAY_URL is required for the http gateway")
        return HttpCaseGateway.from_config(config)
    return SqliteCaseGateway(db_path=db_path, case_limit=config.case_limit)
