# prompt_collector/insights.py
"""
Insight Miner: batch pass over recent prompt history that detects trends and
persists them as Insight records.

Provides:
- MinerConfig: window size and thresholds
- generate_insights(config, cancel_event) -> list[Insight]
- the individual detectors (each takes a DataFrame of recent prompts, newest first)

Env vars:
- INSIGHT_WINDOW (default: 500): number of most recent prompts considered

Each detector is independent: an exception in one is logged and counted and
the pass continues with the next. Every detector checks its own minimum sample
size before doing any ratio math. Insights are saved as soon as their detector
finishes, so a cancelled pass keeps what it already produced. A draft whose
save fails is logged and dropped; the remaining drafts and detectors still run.
"""

import os
import re
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from prompt_collector import db as dbmod
from prompt_collector import monitoring
from prompt_collector.errors import MinerBusyError, StorageError
from prompt_collector.processors.keywords import CONTEXT_USAGE, STOP_WORDS, SignalDetector
from prompt_collector.schemas import Insight, InsightDraft

INSIGHT_WINDOW = int(os.getenv("INSIGHT_WINDOW", "500"))

# Held for a whole miner pass; retention cleanup waits on it too.
maintenance_lock = threading.Lock()

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class MinerConfig:
    window: int = INSIGHT_WINDOW
    cohort_size: int = 50
    min_scored_for_trend: int = 10
    trend_delta: float = 0.5
    min_for_distribution: int = 20
    simple_share_limit: float = 80.0
    complex_share_limit: float = 60.0
    context_share_floor: float = 30.0
    short_prompt_chars: int = 20
    long_prompt_chars: int = 1000
    short_share_limit: float = 0.3
    long_share_limit: float = 0.2
    min_for_usage: int = 50
    daily_usage_limit: float = 50.0
    min_word_count: int = 3
    context_detector: SignalDetector = CONTEXT_USAGE


def _to_df(prompts: List[Dict[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(
        prompts,
        columns=["id", "content", "timestamp", "quality_score", "complexity"],
    ).copy()
    df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce", format="ISO8601")
    df["quality_score"] = pd.to_numeric(df["quality_score"], errors="coerce")
    df["content"] = df["content"].fillna("").astype(str)
    return df


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_quality_trend(df: pd.DataFrame, config: MinerConfig) -> List[InsightDraft]:
    scored = df[df["quality_score"].notna()]
    if len(scored) < config.min_scored_for_trend:
        return []

    n = config.cohort_size
    recent = scored.iloc[:n]
    older = scored.iloc[n:2 * n]
    if older.empty:
        # nothing to compare against yet
        return []

    recent_score = float(recent["quality_score"].mean())
    older_score = float(older["quality_score"].mean())
    evidence = {"recentScore": recent_score, "olderScore": older_score, "sampleSize": int(len(scored))}

    if recent_score <= older_score - config.trend_delta:
        return [InsightDraft(
            type="quality_decline",
            severity="warning",
            title="Prompt Quality Declining",
            description=(
                f"Your recent prompts have an average quality score of {recent_score:.1f}, "
                f"down from {older_score:.1f}. Consider adding more context and examples to your prompts."
            ),
            evidence=evidence,
            prompt_ids=scored["id"].iloc[:10].tolist(),
        )]
    if recent_score >= older_score + config.trend_delta:
        return [InsightDraft(
            type="quality_improvement",
            severity="info",
            title="Prompt Quality Improving",
            description=(
                f"Great job! Your recent prompts have an average quality score of {recent_score:.1f}, "
                f"up from {older_score:.1f}."
            ),
            evidence=evidence,
        )]
    return []


def detect_complexity_skew(df: pd.DataFrame, config: MinerConfig) -> List[InsightDraft]:
    classified = df[df["complexity"].notna()]
    total = len(classified)
    if total < config.min_for_distribution:
        return []

    distribution = {k: int(v) for k, v in classified["complexity"].value_counts().items()}
    simple_pct = distribution.get("simple", 0) / total * 100
    complex_pct = distribution.get("complex", 0) / total * 100

    insights: List[InsightDraft] = []
    if simple_pct > config.simple_share_limit:
        insights.append(InsightDraft(
            type="complexity_suggestion",
            severity="suggestion",
            title="Consider More Detailed Prompts",
            description=(
                f"{simple_pct:.0f}% of your prompts are classified as simple. Adding more context, "
                "examples, or constraints could improve response quality."
            ),
            evidence={"complexityDistribution": distribution, "simplePercent": simple_pct},
        ))
    if complex_pct > config.complex_share_limit:
        insights.append(InsightDraft(
            type="complexity_warning",
            severity="suggestion",
            title="Many Complex Prompts Detected",
            description=(
                f"{complex_pct:.0f}% of your prompts are complex. Consider breaking down complex requests "
                "into smaller, more focused prompts for better results."
            ),
            evidence={"complexityDistribution": distribution, "complexPercent": complex_pct},
        ))
    return insights


def detect_context_usage(df: pd.DataFrame, config: MinerConfig) -> List[InsightDraft]:
    total = len(df)
    if total < config.min_for_distribution:
        return []

    has_context = df["content"].map(config.context_detector.detect).astype(bool)
    usage_pct = float(has_context.sum()) / total * 100
    if usage_pct >= config.context_share_floor:
        return []

    lacking = df[~has_context & (df["content"].str.len() > 50)]
    return [InsightDraft(
        type="context_suggestion",
        severity="suggestion",
        title="Add More Context to Your Prompts",
        description=(
            f"Only {usage_pct:.0f}% of your prompts include context. Adding background information "
            "can significantly improve response quality."
        ),
        evidence={"contextUsagePercent": usage_pct, "totalPrompts": total},
        prompt_ids=lacking["id"].iloc[:5].tolist(),
    )]


def detect_length_distribution(df: pd.DataFrame, config: MinerConfig) -> List[InsightDraft]:
    total = len(df)
    if total < config.min_for_distribution:
        return []

    lengths = df["content"].str.len()
    avg_length = float(lengths.mean())
    short = df[lengths < config.short_prompt_chars]
    long_ = df[lengths > config.long_prompt_chars]

    insights: List[InsightDraft] = []
    if len(short) / total > config.short_share_limit:
        insights.append(InsightDraft(
            type="length_warning",
            severity="warning",
            title="Many Short Prompts Detected",
            description=(
                f"{len(short) / total * 100:.0f}% of your prompts are very short "
                f"(< {config.short_prompt_chars} characters). Short prompts often lead to generic responses."
            ),
            evidence={"shortPromptsCount": int(len(short)), "totalPrompts": total, "avgLength": avg_length},
            prompt_ids=short["id"].iloc[:5].tolist(),
        ))
    if len(long_) / total > config.long_share_limit:
        insights.append(InsightDraft(
            type="length_suggestion",
            severity="info",
            title="Consider Breaking Down Long Prompts",
            description=(
                f"{len(long_) / total * 100:.0f}% of your prompts are very long "
                f"(> {config.long_prompt_chars} characters). Consider breaking them into smaller, focused requests."
            ),
            evidence={"longPromptsCount": int(len(long_)), "totalPrompts": total, "avgLength": avg_length},
        ))
    return insights


def common_words(contents: List[str], min_count: int = 3) -> List[Tuple[str, int]]:
    """Tokens longer than 3 chars, stop words removed, seen at least `min_count` times; most frequent first."""
    freq: Counter = Counter()
    for content in contents:
        words = _NON_WORD.sub(" ", content.lower()).split()
        freq.update(w for w in words if len(w) > 3 and w not in STOP_WORDS)
    return [(w, c) for w, c in freq.most_common() if c >= min_count]


def detect_usage_patterns(df: pd.DataFrame, config: MinerConfig) -> List[InsightDraft]:
    total = len(df)
    if total < config.min_for_usage:
        return []

    insights: List[InsightDraft] = []

    per_day = df["timestamp"].dropna().dt.date.value_counts()
    if not per_day.empty:
        avg_daily = float(per_day.mean())
        if avg_daily > config.daily_usage_limit:
            insights.append(InsightDraft(
                type="usage_pattern",
                severity="info",
                title="High Daily Usage Detected",
                description=(
                    f"You're averaging {avg_daily:.0f} prompts per day. Consider creating templates "
                    "for common requests to save time."
                ),
                evidence={"avgDailyPrompts": avg_daily, "totalDays": int(len(per_day))},
            ))

    words = [w for w, _ in common_words(df["content"].tolist(), config.min_word_count)]
    if words:
        insights.append(InsightDraft(
            type="pattern_detection",
            severity="info",
            title="Common Prompt Patterns Found",
            description=(
                f"You frequently use these terms: {', '.join(words[:5])}. "
                "Consider creating templates for these common requests."
            ),
            evidence={"commonWords": words[:10]},
        ))
    return insights


Detector = Callable[[pd.DataFrame, MinerConfig], List[InsightDraft]]

DETECTORS: List[Tuple[str, Detector]] = [
    ("quality_trend", detect_quality_trend),
    ("complexity_skew", detect_complexity_skew),
    ("context_usage", detect_context_usage),
    ("length_distribution", detect_length_distribution),
    ("usage_patterns", detect_usage_patterns),
]


# ---------------------------------------------------------------------------
# Miner pass
# ---------------------------------------------------------------------------

def _load_window(window: int) -> List[Dict[str, Any]]:
    prompts: List[Dict[str, Any]] = []
    while len(prompts) < window:
        page = dbmod.list_recent(limit=min(dbmod.MAX_PAGE_SIZE, window - len(prompts)), offset=len(prompts))
        if not page:
            break
        prompts.extend(page)
    return prompts


def generate_insights(config: Optional[MinerConfig] = None,
                      cancel_event: Optional[threading.Event] = None,
                      detectors: Optional[List[Tuple[str, Detector]]] = None) -> List[Insight]:
    """
    Run one miner pass and return every saved insight (with id and created_at).
    Raises MinerBusyError if another pass is already running.
    """
    if config is None:
        config = MinerConfig()
    if detectors is None:
        detectors = DETECTORS

    if not maintenance_lock.acquire(blocking=False):
        raise MinerBusyError("an insight miner pass is already running")
    try:
        prompts = _load_window(config.window)
        monitoring.set_miner_window(len(prompts))
        df = _to_df(prompts)

        saved: List[Insight] = []
        for name, detector in detectors:
            if cancel_event is not None and cancel_event.is_set():
                monitoring.logger.info("Insight miner cancelled", extra={"before_detector": name})
                break
            try:
                drafts = detector(df, config)
            except Exception:
                monitoring.inc_detector_failure(name)
                monitoring.logger.exception("Insight detector failed", extra={"detector": name})
                continue
            for draft in drafts:
                try:
                    stored = dbmod.save_insight(draft.model_dump())
                except StorageError:
                    monitoring.logger.exception(
                        "Saving insight failed", extra={"detector": name, "insight_type": draft.type}
                    )
                    continue
                saved.append(Insight(**stored))
                monitoring.inc_insight(draft.type)

        monitoring.logger.info(
            "Insight miner pass complete",
            extra={"window": len(prompts), "insights": len(saved)},
        )
        return saved
    finally:
        maintenance_lock.release()
