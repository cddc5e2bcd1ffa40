# prompt_collector/db.py
"""
Persistent store for prompts, responses, insights and daily metric rollups.

Env vars:
- DATABASE_URL (default: sqlite:///./prompt_collector.db)
- MAX_PAGE_SIZE (default: 1000): upper bound for any list query

Concurrency: every mutating operation runs inside `_writer()`, which holds one
process-wide lock and applies the whole operation as a single transaction.
Reads open their own session and never take the lock; on SQLite the
connection runs in WAL mode so readers only ever see committed state.
"""
import os
import json
import time
import uuid
import datetime
import threading
from contextlib import contextmanager
from typing import Optional, Dict, Any, List, Iterator, Union

from sqlalchemy import create_engine, event, func, desc
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError

from prompt_collector import monitoring
from prompt_collector.errors import (
    CollectorError, StorageError, ValidationError, NotFoundError, ForeignKeyError,
)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./prompt_collector.db")
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "1000"))

COMPLEXITY_TIERS = ("simple", "moderate", "complex")

# basic_stats flags up to 5 of the last 20 prompts scoring below this
NEEDS_IMPROVEMENT_BELOW = 7.0
NEEDS_IMPROVEMENT_WINDOW = 20


def _sqlite_pragmas(dbapi_conn, _conn_record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA foreign_keys=ON")
    cur.execute("PRAGMA busy_timeout=30000")
    cur.close()


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    eng = create_engine(url, connect_args=connect_args)
    if url.startswith("sqlite"):
        event.listen(eng, "connect", _sqlite_pragmas)
    return eng


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# single writer lane for the whole process
_write_lock = threading.Lock()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Create tables if they don't exist."""
    import prompt_collector.models  # noqa: F401  registers tables on Base
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        monitoring.logger.exception("DB init failed")
        raise StorageError(f"DB init failed: {e}") from e


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


@contextmanager
def _writer(operation: str) -> Iterator[Session]:
    """Serialize a write and apply it atomically; roll back on any failure."""
    start = time.time()
    with _write_lock:
        db: Session = SessionLocal()
        try:
            yield db
            db.commit()
        except CollectorError as e:
            db.rollback()
            monitoring.inc_store_error(operation, e.error_code)
            raise
        except SQLAlchemyError as e:
            db.rollback()
            monitoring.inc_store_error(operation, StorageError.error_code)
            monitoring.logger.exception("DB write failed", extra={"operation": operation})
            raise StorageError(f"{operation} failed: {e}") from e
        finally:
            db.close()
            monitoring.observe_store_write(start, operation)


@contextmanager
def _reader(operation: str) -> Iterator[Session]:
    db: Session = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        monitoring.inc_store_error(operation, StorageError.error_code)
        monitoring.logger.exception("DB read failed", extra={"operation": operation})
        raise StorageError(f"{operation} failed: {e}") from e
    finally:
        db.close()


def _coerce_timestamp(ts_raw: Any) -> datetime.datetime:
    if isinstance(ts_raw, str):
        # Parse ISO format string, strip trailing 'Z' if present
        ts_raw = ts_raw.rstrip("Z")
        try:
            ts_raw = datetime.datetime.fromisoformat(ts_raw)
        except ValueError:
            raise ValidationError(f"timestamp is not ISO-8601: {ts_raw!r}")
    if isinstance(ts_raw, datetime.datetime):
        if ts_raw.tzinfo is not None:
            ts_raw = ts_raw.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return ts_raw
    return _utcnow()


def _iso(ts: Optional[datetime.datetime]) -> Optional[str]:
    return ts.isoformat() if hasattr(ts, "isoformat") else ts


def _loads(raw: Optional[str], default: Any) -> Any:
    return json.loads(raw) if raw else default


def _prompt_to_dict(rec) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "content": rec.content,
        "timestamp": _iso(rec.timestamp),
        "context": rec.context,
        "conversation_id": rec.conversation_id,
        "quality_score": rec.quality_score,
        "complexity": rec.complexity,
        "technique_used": rec.technique_used,
        "metadata": _loads(rec.metadata_json, {}),
    }


def _response_to_dict(rec) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "prompt_id": rec.prompt_id,
        "content": rec.content,
        "timestamp": _iso(rec.timestamp),
        "tokens_used": rec.tokens_used,
        "user_rating": rec.user_rating,
    }


def _insight_to_dict(rec) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "created_at": _iso(rec.created_at),
        "type": rec.type,
        "severity": rec.severity,
        "title": rec.title,
        "description": rec.description,
        "evidence": _loads(rec.evidence_json, {}),
        "prompt_ids": _loads(rec.prompt_ids_json, []),
        "acknowledged": bool(rec.acknowledged),
    }


def _check_page(limit: int, offset: int) -> int:
    if limit < 0 or offset < 0:
        raise ValidationError("limit and offset must be non-negative")
    return min(limit, MAX_PAGE_SIZE)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def save_prompt(record: Dict[str, Any]) -> str:
    """
    Insert a new prompt with empty analysis fields and return its generated id.
    record keys:
      - content (str, required, non-blank)
      - context, conversation_id, metadata (dict) optional
      - timestamp (datetime or iso str) optional; if missing set now
    """
    from prompt_collector.models import PromptRecord

    content = record.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content is required and must be non-empty")

    ts = _coerce_timestamp(record.get("timestamp"))
    prompt_id = str(uuid.uuid4())
    with _writer("save_prompt") as db:
        db.add(PromptRecord(
            id=prompt_id,
            content=content,
            timestamp=ts,
            context=record.get("context"),
            conversation_id=record.get("conversation_id"),
            metadata_json=json.dumps(record["metadata"]) if record.get("metadata") else None,
        ))
    return prompt_id


def update_analysis(prompt_id: str, quality_score: float, complexity: str, technique: str) -> None:
    from prompt_collector.models import PromptRecord

    if complexity not in COMPLEXITY_TIERS:
        raise ValidationError(f"unknown complexity tier: {complexity!r}")
    if isinstance(quality_score, bool) or not isinstance(quality_score, (int, float)):
        raise ValidationError(f"quality_score must be a number: {quality_score!r}")
    # NaN fails this comparison too
    if not 0.0 <= quality_score <= 10.0:
        raise ValidationError(f"quality_score out of range: {quality_score}")
    if not isinstance(technique, str) or not technique.strip():
        raise ValidationError("technique is required and must be non-empty")

    with _writer("update_analysis") as db:
        updated = (
            db.query(PromptRecord)
            .filter(PromptRecord.id == prompt_id)
            .update(
                {
                    PromptRecord.quality_score: quality_score,
                    PromptRecord.complexity: complexity,
                    PromptRecord.technique_used: technique,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise NotFoundError(f"prompt {prompt_id} not found")


def list_recent(limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
    """Newest first. `limit` is capped at MAX_PAGE_SIZE."""
    from prompt_collector.models import PromptRecord

    limit = _check_page(limit, offset)
    with _reader("list_recent") as db:
        rows = (
            db.query(PromptRecord)
            .order_by(PromptRecord.timestamp.desc(), PromptRecord.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return [_prompt_to_dict(r) for r in rows]


def get_prompt(prompt_id: str) -> Optional[Dict[str, Any]]:
    from prompt_collector.models import PromptRecord

    with _reader("get_prompt") as db:
        rec = db.get(PromptRecord, prompt_id)
        return _prompt_to_dict(rec) if rec else None


def delete_prompts_older_than(days: int) -> int:
    """Retention cleanup: drop prompts (and their responses) older than `days`. Returns prompts removed."""
    from prompt_collector.models import PromptRecord, ResponseRecord

    if days < 0:
        raise ValidationError("days must be non-negative")
    cutoff = _utcnow() - datetime.timedelta(days=days)
    with _writer("delete_prompts_older_than") as db:
        old_ids = db.query(PromptRecord.id).filter(PromptRecord.timestamp < cutoff)
        db.query(ResponseRecord).filter(
            ResponseRecord.prompt_id.in_(old_ids.scalar_subquery())
        ).delete(synchronize_session=False)
        removed = (
            db.query(PromptRecord)
            .filter(PromptRecord.timestamp < cutoff)
            .delete(synchronize_session=False)
        )
    monitoring.logger.info("Retention cleanup", extra={"removed": removed, "days": days})
    return removed


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

def save_response(record: Dict[str, Any]) -> str:
    """record keys: prompt_id, content (required); tokens_used, user_rating (1-5) optional."""
    from prompt_collector.models import PromptRecord, ResponseRecord

    prompt_id = record.get("prompt_id")
    content = record.get("content")
    if not prompt_id:
        raise ValidationError("prompt_id is required")
    if not isinstance(content, str):
        raise ValidationError("content is required")
    rating = record.get("user_rating")
    if rating is not None and not (isinstance(rating, int) and 1 <= rating <= 5):
        raise ValidationError("user_rating must be an integer between 1 and 5")

    response_id = str(uuid.uuid4())
    with _writer("save_response") as db:
        if db.get(PromptRecord, prompt_id) is None:
            raise ForeignKeyError(f"prompt {prompt_id} does not exist")
        db.add(ResponseRecord(
            id=response_id,
            prompt_id=prompt_id,
            content=content,
            timestamp=_coerce_timestamp(record.get("timestamp")),
            tokens_used=record.get("tokens_used"),
            user_rating=rating,
        ))
    return response_id


def get_responses_by_prompt(prompt_id: str) -> List[Dict[str, Any]]:
    from prompt_collector.models import ResponseRecord

    with _reader("get_responses_by_prompt") as db:
        rows = (
            db.query(ResponseRecord)
            .filter(ResponseRecord.prompt_id == prompt_id)
            .order_by(ResponseRecord.timestamp)
            .limit(MAX_PAGE_SIZE)
            .all()
        )
        return [_response_to_dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

def quality_metrics_by_day(window_days: int = 30) -> List[Dict[str, Any]]:
    """
    Average quality and count of scored prompts per calendar day (UTC) within the
    trailing window, most recent day first.
    """
    from prompt_collector.models import PromptRecord

    since = _utcnow() - datetime.timedelta(days=window_days)
    day = func.date(PromptRecord.timestamp)
    with _reader("quality_metrics_by_day") as db:
        rows = (
            db.query(
                day.label("date"),
                func.avg(PromptRecord.quality_score).label("average_quality"),
                func.count(PromptRecord.id).label("count"),
            )
            .filter(PromptRecord.quality_score.isnot(None))
            .filter(PromptRecord.timestamp >= since)
            .group_by(day)
            .order_by(desc("date"))
            .all()
        )
        return [
            {"date": str(r.date), "average_quality": float(r.average_quality), "count": int(r.count)}
            for r in rows
        ]


def basic_stats() -> Dict[str, Any]:
    from prompt_collector.models import PromptRecord

    now = _utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    with _reader("basic_stats") as db:
        total = db.query(func.count(PromptRecord.id)).scalar() or 0
        avg = (
            db.query(func.avg(PromptRecord.quality_score))
            .filter(PromptRecord.quality_score.isnot(None))
            .scalar()
        )
        today = (
            db.query(func.count(PromptRecord.id))
            .filter(PromptRecord.timestamp >= midnight)
            .scalar()
        ) or 0
        dist_rows = (
            db.query(PromptRecord.complexity, func.count(PromptRecord.id))
            .filter(PromptRecord.complexity.isnot(None))
            .group_by(PromptRecord.complexity)
            .all()
        )
        recent = (
            db.query(PromptRecord)
            .order_by(PromptRecord.timestamp.desc(), PromptRecord.id.desc())
            .limit(10)
            .all()
        )
        window = (
            db.query(PromptRecord.id, PromptRecord.content, PromptRecord.quality_score)
            .order_by(PromptRecord.timestamp.desc(), PromptRecord.id.desc())
            .limit(NEEDS_IMPROVEMENT_WINDOW)
            .all()
        )
        weak = [
            r for r in window
            if r.quality_score is not None and r.quality_score < NEEDS_IMPROVEMENT_BELOW
        ][:5]
        return {
            "total_count": int(total),
            "average_quality": round(float(avg), 1) if avg is not None else 0.0,
            "today_count": int(today),
            "complexity_distribution": {c: int(n) for c, n in dist_rows},
            "recent_activity": [
                {
                    "id": r.id,
                    "timestamp": _iso(r.timestamp),
                    "quality_score": r.quality_score,
                    "complexity": r.complexity,
                }
                for r in recent
            ],
            "needs_improvement": [
                {"id": r.id, "preview": r.content[:60], "quality_score": r.quality_score}
                for r in weak
            ],
        }


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

def save_insight(insight: Dict[str, Any]) -> Dict[str, Any]:
    """Persist one insight; returns it with the assigned id and created_at."""
    from prompt_collector.models import InsightRecord

    for key in ("type", "severity", "title"):
        if not insight.get(key):
            raise ValidationError(f"insight {key} is required")

    rec = InsightRecord(
        id=str(uuid.uuid4()),
        created_at=_utcnow(),
        type=insight["type"],
        severity=insight["severity"],
        title=insight["title"],
        description=insight.get("description"),
        evidence_json=json.dumps(insight.get("evidence") or {}),
        prompt_ids_json=json.dumps(list(insight.get("prompt_ids") or [])[:10]),
        acknowledged=bool(insight.get("acknowledged", False)),
    )
    with _writer("save_insight") as db:
        db.add(rec)
        db.flush()
        saved = _insight_to_dict(rec)
    return saved


def list_unacknowledged_insights(limit: int = 100) -> List[Dict[str, Any]]:
    from prompt_collector.models import InsightRecord

    limit = _check_page(limit, 0)
    with _reader("list_unacknowledged_insights") as db:
        rows = (
            db.query(InsightRecord)
            .filter(InsightRecord.acknowledged.is_(False))
            .order_by(InsightRecord.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_insight_to_dict(r) for r in rows]


def acknowledge_insight(insight_id: str) -> None:
    from prompt_collector.models import InsightRecord

    with _writer("acknowledge_insight") as db:
        updated = (
            db.query(InsightRecord)
            .filter(InsightRecord.id == insight_id)
            .update({InsightRecord.acknowledged: True}, synchronize_session=False)
        )
        if updated == 0:
            raise NotFoundError(f"insight {insight_id} not found")


# ---------------------------------------------------------------------------
# Metric rollups
# ---------------------------------------------------------------------------

def upsert_metric(date: Union[str, datetime.date], name: str, value: float,
                  metadata: Optional[Dict[str, Any]] = None) -> None:
    """Insert or replace the (date, name) rollup row."""
    from prompt_collector.models import MetricPoint

    day = date.isoformat() if isinstance(date, datetime.date) else str(date)
    if not name:
        raise ValidationError("metric name is required")

    with _writer("upsert_metric") as db:
        row = (
            db.query(MetricPoint)
            .filter(MetricPoint.date == day, MetricPoint.metric_name == name)
            .one_or_none()
        )
        meta = json.dumps(metadata) if metadata else None
        if row is None:
            db.add(MetricPoint(date=day, metric_name=name, metric_value=float(value), metadata_json=meta))
        else:
            row.metric_value = float(value)
            row.metadata_json = meta


def get_metrics(name: str, days: int = 30) -> List[Dict[str, Any]]:
    from prompt_collector.models import MetricPoint

    since = (_utcnow().date() - datetime.timedelta(days=days)).isoformat()
    with _reader("get_metrics") as db:
        rows = (
            db.query(MetricPoint)
            .filter(MetricPoint.metric_name == name, MetricPoint.date >= since)
            .order_by(MetricPoint.date.desc())
            .limit(MAX_PAGE_SIZE)
            .all()
        )
        return [
            {
                "date": r.date,
                "metric_name": r.metric_name,
                "value": r.metric_value,
                "metadata": _loads(r.metadata_json, {}),
            }
            for r in rows
        ]


def prompt_stats_for_day(day: datetime.date) -> Dict[str, Any]:
    """Count and average quality of prompts whose timestamp falls on `day` (UTC)."""
    from prompt_collector.models import PromptRecord

    start = datetime.datetime.combine(day, datetime.time.min)
    end = start + datetime.timedelta(days=1)
    with _reader("prompt_stats_for_day") as db:
        count, avg = (
            db.query(func.count(PromptRecord.id), func.avg(PromptRecord.quality_score))
            .filter(PromptRecord.timestamp >= start, PromptRecord.timestamp < end)
            .one()
        )
        return {"count": int(count or 0), "average_quality": float(avg) if avg is not None else None}
