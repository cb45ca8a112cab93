from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .pipeline import AnalyticsService, build_service
from .types import LookupState

# Load environment variables from .env file
load_dotenv()

app = FastAPI(title="Judicial Analytics Engine")

_service: Optional[AnalyticsService] = None

LOOKUP_STATUS_CODES = {
    LookupState.READY: 200,
    LookupState.WITHHELD: 200,
    LookupState.NOT_CACHED: 404,
    LookupState.FAILED: 502,
}


def get_service() -> AnalyticsService:
    """Lazily build the analytics service from the environment."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


def configure_service(service: Optional[AnalyticsService]):
    global _service
    _service = service


class RegenerateBody(BaseModel):
    limit: Optional[int] = None
    concurrency: Optional[int] = None
    force: bool = False
    dry_run: bool = False


@app.get("/v1/health")
def health():
    get_service()
    return {"ok": True}


@app.get("/v1/judges/{judge_id}/analytics")
def judge_analytics(judge_id: str, generate: bool = True):
    """
    Analytics for one judge.

    Served from cache when present (possibly stale, refreshed in the
    background). On a miss the analytics are generated unless
    generate=false.
    """
    lookup = get_service().get_or_generate(judge_id, generate=generate)
    return JSONResponse(status_code=LOOKUP_STATUS_CODES[lookup.state], content=lookup.to_dict())


@app.post("/v1/judges/{judge_id}/analytics/regenerate")
def regenerate_judge(judge_id: str, force: bool = True):
    outcome = get_service().regenerate(judge_id, force=force)
    status_code = 502 if outcome.status == "failed" else 200
    return JSONResponse(status_code=status_code, content=outcome.to_dict())


@app.post("/v1/analytics/regenerate")
def regenerate_population(body: RegenerateBody):
    if body.concurrency is not None and body.concurrency < 1:
        raise HTTPException(status_code=400, detail="concurrency must be at least 1")
    report = get_service().regenerate_population(
        limit=body.limit,
        concurrency=body.concurrency,
        force=body.force,
        dry_run=body.dry_run,
    )
    return report.to_dict()


@app.post("/v1/analytics/regenerate/cancel")
def cancel_regeneration():
    return {"cancelled": get_service().cancel_batch()}


@app.get("/v1/analytics/stale")
def stale_analytics(limit: int = 100):
    entries = get_service().list_stale(limit)
    return {"count": len(entries), "entries": entries}


@app.get("/v1/analytics/usage")
def analytics_usage():
    return get_service().usage()
