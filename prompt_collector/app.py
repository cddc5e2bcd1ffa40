# prompt_collector/app.py
"""
HTTP surface: the ingestion endpoint plus read-only projections over the store.

Env vars:
- SCHEDULER_ENABLED (default: true): run background insight/rollup/retention jobs
"""
import os
import time
from contextlib import asynccontextmanager
from typing import Optional, List

# Load .env BEFORE any package imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, Path, Query
from fastapi.responses import JSONResponse, Response, PlainTextResponse
from pydantic import BaseModel, Field

from prompt_collector.orchestrator import PromptOrchestrator
from prompt_collector.errors import (
    CollectorError, ValidationError, NotFoundError, ForeignKeyError, MinerBusyError,
)
from prompt_collector import monitoring
from prompt_collector import db as dbmod
from prompt_collector import insights as _insights
from prompt_collector import tasks

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes")

# Initialize DB tables on startup
dbmod.init_db()

# instantiate orchestrator once
orchestrator = PromptOrchestrator()
scheduler = tasks.build_scheduler()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if SCHEDULER_ENABLED:
        scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()


app = FastAPI(title="Prompt Collector API", lifespan=lifespan)

_STATUS_FOR = {
    ValidationError: 400,
    NotFoundError: 404,
    ForeignKeyError: 409,
    MinerBusyError: 409,
}


def _error_response(err: CollectorError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_FOR.items() if isinstance(err, cls)), 500)
    return JSONResponse(
        status_code=status,
        content={"status": "error", "error_code": err.error_code, "message": err.message},
    )


@app.exception_handler(CollectorError)
async def collector_error_handler(request: Request, exc: CollectorError):
    return _error_response(exc)


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class PromptRequest(BaseModel):
    content: str
    context: Optional[str] = None
    tags: Optional[List[str]] = None
    conversation_id: Optional[str] = None


class ImproveRequest(BaseModel):
    content: str
    goal: Optional[str] = None


class ResponseRequest(BaseModel):
    content: str
    tokens_used: Optional[int] = None
    user_rating: Optional[int] = Field(default=None, ge=1, le=5)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.post("/api/prompts")
def create_prompt(req: PromptRequest):
    """
    POST /api/prompts
    Body: { "content": "...", "context": "...", "tags": ["..."] }
    """
    monitoring.logger.info("Received /api/prompts request", extra={"prompt_preview": req.content[:200]})
    try:
        resp = orchestrator.analyze_and_store(
            req.content, context=req.context, tags=req.tags, conversation_id=req.conversation_id,
        )
    except CollectorError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in /api/prompts handler")
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error_code": "E_INTERNAL",
                "message": "Internal server error",
                "details": {"exception": str(e)},
            },
        )
    return JSONResponse(status_code=200, content={"status": "success", **resp})


@app.post("/api/prompts/improve")
def improve_prompt(req: ImproveRequest):
    return {"status": "success", **orchestrator.improve(req.content, req.goal)}


@app.get("/api/prompts")
def list_prompts(limit: int = Query(50, ge=0), offset: int = Query(0, ge=0)):
    return {"status": "success", "prompts": dbmod.list_recent(limit=limit, offset=offset)}


@app.get("/api/prompts/{prompt_id}")
def get_prompt(prompt_id: str = Path(..., description="Prompt ID to fetch")):
    rec = orchestrator.prompt_with_responses(prompt_id)
    if not rec:
        return _error_response(NotFoundError(f"prompt {prompt_id} not found"))
    return {"status": "success", "prompt": rec}


@app.post("/api/prompts/{prompt_id}/responses")
def add_response(req: ResponseRequest, prompt_id: str = Path(...)):
    response_id = dbmod.save_response({"prompt_id": prompt_id, **req.model_dump()})
    return {"status": "success", "id": response_id}


@app.get("/api/quality")
def quality(days: int = Query(30, ge=1, le=3650)):
    return {"status": "success", "days": days, "metrics": dbmod.quality_metrics_by_day(days)}


@app.get("/api/stats")
def stats():
    return {"status": "success", **dbmod.basic_stats()}


@app.get("/api/insights")
def list_insights(limit: int = Query(100, ge=0)):
    return {"status": "success", "insights": dbmod.list_unacknowledged_insights(limit=limit)}


@app.post("/api/insights/generate")
def generate_insights():
    generated = _insights.generate_insights()
    return {"status": "success", "insights": [i.model_dump(mode="json") for i in generated]}


@app.post("/api/insights/{insight_id}/acknowledge")
def acknowledge_insight(insight_id: str = Path(...)):
    dbmod.acknowledge_insight(insight_id)
    return {"status": "success", "id": insight_id}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
