# prompt_collector/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# Sentry is only wired up when a DSN is configured
try:
    import sentry_sdk
    _HAS_SENTRY = True
except ImportError:
    _HAS_SENTRY = False

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "prompt-collector", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN and _HAS_SENTRY:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "collector_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "collector_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

PROMPTS_ANALYZED = Counter(
    "collector_prompts_analyzed_total",
    "Prompts analyzed and stored",
    ["complexity"],
)

QUALITY_SCORE = Histogram(
    "collector_quality_score",
    "Distribution of prompt quality scores",
    buckets=(1, 2, 3, 4, 5, 6, 7, 8, 9, 10),
)

ANALYZE_LATENCY = Histogram(
    "collector_analyze_and_store_latency_seconds",
    "Latency of analyze + store for one prompt",
)

STORE_WRITE_LATENCY = Histogram(
    "collector_store_write_latency_seconds",
    "Time spent holding the store writer lane",
    ["operation"],
)

STORE_ERRORS = Counter(
    "collector_store_errors_total",
    "Store operations that failed",
    ["operation", "error_code"],
)

INSIGHTS_GENERATED = Counter(
    "collector_insights_generated_total",
    "Insights produced by the miner",
    ["type"],
)

DETECTOR_FAILURES = Counter(
    "collector_insight_detector_failures_total",
    "Insight detectors that raised during a miner pass",
    ["detector"],
)

TASK_RUNS = Counter(
    "collector_scheduled_task_runs_total",
    "Scheduled task executions",
    ["task", "outcome"],
)

LAST_MINER_WINDOW = Gauge(
    "collector_last_miner_window_size",
    "Prompts considered in the last miner pass",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def observe_analysis(start_ts: float, complexity: str, quality_score: float):
    try:
        ANALYZE_LATENCY.observe(time.time() - start_ts)
        PROMPTS_ANALYZED.labels(complexity=complexity).inc()
        QUALITY_SCORE.observe(quality_score)
    except Exception:
        pass


def observe_store_write(start_ts: float, operation: str):
    try:
        STORE_WRITE_LATENCY.labels(operation=operation).observe(time.time() - start_ts)
    except Exception:
        pass


def inc_store_error(operation: str, error_code: str):
    try:
        STORE_ERRORS.labels(operation=operation, error_code=error_code).inc()
    except Exception:
        pass


def inc_insight(insight_type: str):
    try:
        INSIGHTS_GENERATED.labels(type=insight_type).inc()
    except Exception:
        pass


def inc_detector_failure(detector: str):
    try:
        DETECTOR_FAILURES.labels(detector=detector).inc()
    except Exception:
        pass


def inc_task_run(task: str, outcome: str):
    try:
        TASK_RUNS.labels(task=task, outcome=outcome).inc()
    except Exception:
        pass


def set_miner_window(n: int):
    try:
        LAST_MINER_WINDOW.set(n)
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
