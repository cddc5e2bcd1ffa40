# prompt_collector/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Float, Boolean,
    ForeignKey, CheckConstraint, UniqueConstraint,
)
import datetime

from prompt_collector.db import Base


def _utcnow() -> datetime.datetime:
    # naive UTC; SQLite does not keep tzinfo
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class PromptRecord(Base):
    __tablename__ = "prompts"
    __table_args__ = (
        CheckConstraint("complexity IN ('simple', 'moderate', 'complex')", name="ck_prompts_complexity"),
    )

    id = Column(String(36), primary_key=True)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=_utcnow, nullable=False, index=True)
    context = Column(Text, nullable=True)
    conversation_id = Column(String(128), nullable=True, index=True)
    quality_score = Column(Float, nullable=True, index=True)
    complexity = Column(String(16), nullable=True)
    technique_used = Column(String(64), nullable=True)
    metadata_json = Column(Text, nullable=True)


class ResponseRecord(Base):
    __tablename__ = "responses"
    __table_args__ = (
        CheckConstraint("user_rating BETWEEN 1 AND 5", name="ck_responses_rating"),
    )

    id = Column(String(36), primary_key=True)
    prompt_id = Column(String(36), ForeignKey("prompts.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=_utcnow, nullable=False)
    tokens_used = Column(Integer, nullable=True)
    user_rating = Column(Integer, nullable=True)


class InsightRecord(Base):
    __tablename__ = "insights"
    __table_args__ = (
        CheckConstraint("severity IN ('info', 'suggestion', 'warning')", name="ck_insights_severity"),
    )

    id = Column(String(36), primary_key=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    type = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    evidence_json = Column(Text, nullable=True)
    prompt_ids_json = Column(Text, nullable=True)
    acknowledged = Column(Boolean, default=False, nullable=False)


class MetricPoint(Base):
    __tablename__ = "metrics"
    __table_args__ = (
        UniqueConstraint("date", "metric_name", name="uq_metrics_date_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    metric_name = Column(String(64), nullable=False)
    metric_value = Column(Float, nullable=False)
    metadata_json = Column(Text, nullable=True)
