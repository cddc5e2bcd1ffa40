# prompt_collector/tasks.py
"""
Background task bodies and the default schedule.

Env vars:
- RETENTION_DAYS (default: 90)
- MAINTENANCE_LOCK_TIMEOUT (default: 30): seconds retention cleanup waits for a running miner pass
"""

import os
import datetime
import threading
from typing import Any, Dict, List, Optional

from prompt_collector import db as dbmod
from prompt_collector import insights as _insights
from prompt_collector import monitoring
from prompt_collector.scheduler import CronTrigger, Scheduler

RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "90"))
MAINTENANCE_LOCK_TIMEOUT = float(os.getenv("MAINTENANCE_LOCK_TIMEOUT", "30"))

GENERATE_INSIGHTS = "generate_insights"
ROLLUP_METRICS = "rollup_metrics"
RETENTION_CLEANUP = "retention_cleanup"


def generate_insights_task(cancel_event: Optional[threading.Event] = None) -> List[Any]:
    return _insights.generate_insights(cancel_event=cancel_event)


def retention_cleanup_task(cancel_event: Optional[threading.Event] = None,
                           days: Optional[int] = None) -> Optional[int]:
    """Delete prompts older than the retention window. Never overlaps a miner pass."""
    days = RETENTION_DAYS if days is None else days
    if not _insights.maintenance_lock.acquire(timeout=MAINTENANCE_LOCK_TIMEOUT):
        monitoring.logger.warning("Retention cleanup skipped: insight miner still running")
        return None
    try:
        return dbmod.delete_prompts_older_than(days)
    finally:
        _insights.maintenance_lock.release()


def rollup_metrics_task(cancel_event: Optional[threading.Event] = None,
                        day: Optional[datetime.date] = None) -> Dict[str, Any]:
    """Upsert the per-day rollups (prompt_count, average_quality) for `day` (default: yesterday, UTC)."""
    if day is None:
        day = datetime.datetime.now(datetime.timezone.utc).date() - datetime.timedelta(days=1)
    stats = dbmod.prompt_stats_for_day(day)
    dbmod.upsert_metric(day, "prompt_count", stats["count"])
    if stats["average_quality"] is not None:
        dbmod.upsert_metric(day, "average_quality", round(stats["average_quality"], 2))
    return stats


def build_scheduler() -> Scheduler:
    scheduler = Scheduler()
    scheduler.register(GENERATE_INSIGHTS, lambda stop: generate_insights_task(cancel_event=stop))
    scheduler.register(ROLLUP_METRICS, lambda stop: rollup_metrics_task(cancel_event=stop))
    scheduler.register(RETENTION_CLEANUP, lambda stop: retention_cleanup_task(cancel_event=stop))

    scheduler.add_trigger(CronTrigger(hour=2, minute=0), GENERATE_INSIGHTS)
    scheduler.add_trigger(CronTrigger(hour=0, minute=5), ROLLUP_METRICS)
    scheduler.add_trigger(CronTrigger(hour=3, minute=0, weekday=6), RETENTION_CLEANUP)
    return scheduler
