import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config import DB_PATH

SCHEMA = """
create table if not exists judges(
  id text primary key,
  name text not null,
  court_id text,
  court_name text,
  jurisdiction text
);

create table if not exists cases(
  id text primary key,
  judge_id text not null,
  case_type text,
  outcome text,
  motion_outcome text,
  filing_date text,
  decision_date text,
  case_value real
);

create index if not exists idx_cases_judge on cases(judge_id, decision_date);

create table if not exists judge_analytics_cache(
  judge_id text primary key,
  analytics text not null,
  created_at text not null,
  updated_at text not null
);

create index if not exists idx_analytics_cache_updated on judge_analytics_cache(updated_at);

create table if not exists ai_usage(
  id integer primary key autoincrement,
  created_at text not null,
  judge_id text,
  provider text not null,
  model text,
  input_tokens integer default 0,
  output_tokens integer default 0,
  cost_usd real default 0,
  success integer default 1,
  error text
);

create index if not exists idx_ai_usage_created on ai_usage(created_at)
"""


def get_conn(db_path: Optional[Path] = None):
    """Open a connection to the analytics database."""
    path = Path(db_path or DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def connection(db_path: Optional[Path] = None):
    conn = get_conn(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[Path] = None):
    with connection(db_path) as conn:
        with conn:
            for stmt in SCHEMA.strip().split(";"):
                if stmt.strip():
                    conn.execute(stmt)


# Judges and cases

def upsert_judge(judge: Dict[str, Any], db_path: Optional[Path] = None):
    with connection(db_path) as conn:
        with conn:
            conn.execute(
                "insert into judges(id,name,court_id,court_name,jurisdiction) values(?,?,?,?,?) "
                "on conflict(id) do update set name=excluded.name, court_id=excluded.court_id, "
                "court_name=excluded.court_name, jurisdiction=excluded.jurisdiction",
                (judge["id"], judge.get("name") or "", judge.get("court_id"),
                 judge.get("court_name"), judge.get("jurisdiction")),
            )


def list_judges(limit: Optional[int] = None, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    sql = "select * from judges order by id"
    params: tuple = ()
    if limit:
        sql += " limit ?"
        params = (limit,)
    with connection(db_path) as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def get_judge(judge_id: str, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    with connection(db_path) as conn:
        row = conn.execute("select * from judges where id=?", (judge_id,)).fetchone()
    return dict(row) if row else None


def _column_value(name: str, value: Any) -> Any:
    # Dates are stored as ISO text
    if value is not None and name.endswith("_date"):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


def insert_cases(cases: Iterable[Dict[str, Any]], db_path: Optional[Path] = None) -> int:
    fields = ["id", "judge_id", "case_type", "outcome", "motion_outcome",
              "filing_date", "decision_date", "case_value"]
    placeholders = ",".join(["?"] * len(fields))
    updates = ", ".join(f"{f}=excluded.{f}" for f in fields[1:])
    count = 0
    with connection(db_path) as conn:
        with conn:
            for case in cases:
                conn.execute(
                    f"insert into cases({','.join(fields)}) values({placeholders}) "
                    f"on conflict(id) do update set {updates}",
                    [_column_value(f, case.get(f)) for f in fields],
                )
                count += 1
    return count


def list_cases_for_judge(
    judge_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    decided_only: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
    db_path: Optional[Path] = None,
) -> List[Dict[str, Any]]:
    """Raw case rows for a judge, most recent decision first, undecided last."""
    where = ["judge_id = ?"]
    params: List[Any] = [judge_id]
    if decided_only:
        where.append("decision_date is not null")
    if start:
        where.append("decision_date >= ?")
        params.append(start)
    if end:
        where.append("decision_date <= ?")
        params.append(end)

    sql = f"select * from cases where {' and '.join(where)} order by decision_date is null, decision_date desc, id"
    if limit:
        sql += " limit ? offset ?"
        params.extend([limit, offset])
    with connection(db_path) as conn:
        return [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]


def list_decided_for_jurisdiction(
    jurisdiction: str,
    since: Optional[str] = None,
    limit: int = 10000,
    db_path: Optional[Path] = None,
) -> List[Dict[str, Any]]:
    """Decided case rows across every judge in a jurisdiction."""
    sql = (
        "select c.* from cases c join judges j on j.id = c.judge_id "
        "where j.jurisdiction = ? and c.decision_date is not null"
    )
    params: List[Any] = [jurisdiction]
    if since:
        sql += " and c.decision_date >= ?"
        params.append(since)
    sql += " order by c.decision_date desc limit ?"
    params.append(limit)
    with connection(db_path) as conn:
        return [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]


# Analytics cache

def upsert_analytics_cache(key: str, analytics: str, now: str, db_path: Optional[Path] = None):
    with connection(db_path) as conn:
        with conn:
            conn.execute(
                "insert into judge_analytics_cache(judge_id,analytics,created_at,updated_at) values(?,?,?,?) "
                "on conflict(judge_id) do update set analytics=excluded.analytics, updated_at=excluded.updated_at",
                (key, analytics, now, now),
            )


def get_analytics_cache(key: str, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    with connection(db_path) as conn:
        row = conn.execute("select * from judge_analytics_cache where judge_id=?", (key,)).fetchone()
    return dict(row) if row else None


def delete_analytics_cache(key: str, db_path: Optional[Path] = None) -> int:
    """Delete a judge's entry and any per-category entries under it."""
    with connection(db_path) as conn:
        with conn:
            cur = conn.execute(
                "delete from judge_analytics_cache where judge_id=? or judge_id like ?",
                (key, f"{key}:%"),
            )
            return cur.rowcount


def list_stale_analytics(older_than: str, limit: Optional[int] = None,
                         db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    sql = (
        "select judge_id, created_at, updated_at from judge_analytics_cache "
        "where updated_at < ? order by updated_at"
    )
    params: List[Any] = [older_than]
    if limit:
        sql += " limit ?"
        params.append(limit)
    with connection(db_path) as conn:
        return [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]


def clear_stale_analytics(older_than: str, db_path: Optional[Path] = None) -> int:
    with connection(db_path) as conn:
        with conn:
            cur = conn.execute("delete from judge_analytics_cache where updated_at < ?", (older_than,))
            return cur.rowcount


# AI usage

def insert_usage(usage: Dict[str, Any], db_path: Optional[Path] = None):
    with connection(db_path) as conn:
        with conn:
            conn.execute(
                "insert into ai_usage(created_at,judge_id,provider,model,input_tokens,output_tokens,cost_usd,success,error) "
                "values(?,?,?,?,?,?,?,?,?)",
                (usage["created_at"], usage.get("judge_id"), usage["provider"], usage.get("model"),
                 usage.get("input_tokens", 0), usage.get("output_tokens", 0), usage.get("cost_usd", 0.0),
                 int(usage.get("success", True)), usage.get("error")),
            )


def usage_since(since: str, db_path: Optional[Path] = None) -> Dict[str, Any]:
    """Aggregate AI usage recorded at or after `since`."""
    with connection(db_path) as conn:
        totals = conn.execute(
            "select count(*) as calls, coalesce(sum(success),0) as successes, "
            "coalesce(sum(input_tokens),0) as input_tokens, coalesce(sum(output_tokens),0) as output_tokens, "
            "coalesce(sum(cost_usd),0) as cost_usd from ai_usage where created_at >= ?",
            (since,),
        ).fetchone()
        by_provider = conn.execute(
            "select provider, count(*) as calls, coalesce(sum(cost_usd),0) as cost_usd "
            "from ai_usage where created_at >= ? group by provider order by provider",
            (since,),
        ).fetchall()
    summary = dict(totals)
    summary["by_provider"] = [dict(r) for r in by_provider]
    return summary
