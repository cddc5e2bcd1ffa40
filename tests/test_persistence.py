# tests/test_persistence.py
"""
Tests for the prompt store: prompts, responses, insights, daily rollups.
Uses a disposable SQLite DB per test for isolation.
"""
import datetime
import threading

import pytest

from prompt_collector import db as dbmod
from prompt_collector.errors import (
    StorageError, ValidationError, NotFoundError, ForeignKeyError,
)


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'test_prompts.db'}")
    dbmod.init_db()
    yield


def _now():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def test_saved_prompt_starts_without_analysis():
    pid = dbmod.save_prompt({"content": "fix this", "metadata": {"tags": ["bug"]}})
    rec = dbmod.get_prompt(pid)
    assert rec["content"] == "fix this"
    assert rec["quality_score"] is None
    assert rec["complexity"] is None
    assert rec["technique_used"] is None
    assert rec["metadata"] == {"tags": ["bug"]}


def test_update_analysis_sets_all_fields():
    pid = dbmod.save_prompt({"content": "fix this"})
    dbmod.update_analysis(pid, 6.1, "simple", "Zero-Shot")
    rec = dbmod.get_prompt(pid)
    assert rec["quality_score"] == 6.1
    assert rec["complexity"] == "simple"
    assert rec["technique_used"] == "Zero-Shot"


def test_blank_content_is_rejected_and_nothing_written():
    for bad in ("", "   \n\t"):
        with pytest.raises(ValidationError):
            dbmod.save_prompt({"content": bad})
    assert dbmod.list_recent() == []


def test_validation_error_is_a_storage_error():
    with pytest.raises(StorageError) as exc:
        dbmod.save_prompt({"content": ""})
    assert exc.value.error_code == "E_VALIDATION"


def test_update_unknown_id_raises_and_creates_nothing():
    with pytest.raises(NotFoundError):
        dbmod.update_analysis("no-such-id", 5.0, "simple", "Zero-Shot")
    assert dbmod.get_prompt("no-such-id") is None
    assert dbmod.list_recent() == []


def test_update_rejects_bad_tier_and_score():
    pid = dbmod.save_prompt({"content": "fix this"})
    with pytest.raises(ValidationError):
        dbmod.update_analysis(pid, 5.0, "gigantic", "Zero-Shot")
    with pytest.raises(ValidationError):
        dbmod.update_analysis(pid, 11.0, "simple", "Zero-Shot")
    for bad_score in (None, "7.5", float("nan"), True):
        with pytest.raises(ValidationError):
            dbmod.update_analysis(pid, bad_score, "simple", "Zero-Shot")
    for bad_technique in (None, "", "   "):
        with pytest.raises(ValidationError):
            dbmod.update_analysis(pid, 5.0, "simple", bad_technique)
    rec = dbmod.get_prompt(pid)
    assert rec["quality_score"] is None
    assert rec["technique_used"] is None


def test_response_for_unknown_prompt_raises_and_inserts_nothing():
    with pytest.raises(ForeignKeyError):
        dbmod.save_response({"prompt_id": "ghost", "content": "hello"})
    assert dbmod.get_responses_by_prompt("ghost") == []


def test_responses_roundtrip_and_rating_bounds():
    pid = dbmod.save_prompt({"content": "explain recursion"})
    rid = dbmod.save_response({"prompt_id": pid, "content": "it calls itself", "tokens_used": 12, "user_rating": 5})
    rows = dbmod.get_responses_by_prompt(pid)
    assert [r["id"] for r in rows] == [rid]
    assert rows[0]["tokens_used"] == 12
    assert rows[0]["user_rating"] == 5

    with pytest.raises(ValidationError):
        dbmod.save_response({"prompt_id": pid, "content": "x", "user_rating": 0})
    assert len(dbmod.get_responses_by_prompt(pid)) == 1


def test_list_recent_orders_newest_first_and_pages():
    now = _now()
    ids = [
        dbmod.save_prompt({"content": f"prompt {i}", "timestamp": now - datetime.timedelta(minutes=i)})
        for i in range(5)
    ]
    assert [r["id"] for r in dbmod.list_recent()] == ids
    assert [r["id"] for r in dbmod.list_recent(limit=2)] == ids[:2]
    assert [r["id"] for r in dbmod.list_recent(limit=2, offset=2)] == ids[2:4]

    with pytest.raises(ValidationError):
        dbmod.list_recent(limit=-1)


def test_list_recent_is_capped(monkeypatch):
    monkeypatch.setattr(dbmod, "MAX_PAGE_SIZE", 3)
    for i in range(5):
        dbmod.save_prompt({"content": f"prompt {i}"})
    assert len(dbmod.list_recent(limit=100)) == 3


def test_timestamp_accepts_iso_strings():
    pid = dbmod.save_prompt({"content": "hello", "timestamp": "2026-01-02T03:04:05Z"})
    assert dbmod.get_prompt(pid)["timestamp"].startswith("2026-01-02T03:04:05")
    with pytest.raises(ValidationError):
        dbmod.save_prompt({"content": "hello", "timestamp": "yesterday-ish"})


def test_quality_metrics_by_day_groups_scored_prompts():
    now = _now()
    plan = [
        (now, 8.0), (now, 6.0),
        (now - datetime.timedelta(days=1), 5.0),
        (now - datetime.timedelta(days=2), 7.0), (now - datetime.timedelta(days=2), 9.0),
        (now - datetime.timedelta(days=40), 1.0),  # outside the window
    ]
    for ts, score in plan:
        pid = dbmod.save_prompt({"content": "some prompt", "timestamp": ts})
        dbmod.update_analysis(pid, score, "simple", "Zero-Shot")
    dbmod.save_prompt({"content": "never analyzed", "timestamp": now})

    rows = dbmod.quality_metrics_by_day(30)
    assert [r["date"] for r in rows] == [
        now.date().isoformat(),
        (now - datetime.timedelta(days=1)).date().isoformat(),
        (now - datetime.timedelta(days=2)).date().isoformat(),
    ]
    assert [r["count"] for r in rows] == [2, 1, 2]
    assert rows[0]["average_quality"] == pytest.approx(7.0)
    assert rows[2]["average_quality"] == pytest.approx(8.0)


def test_basic_stats():
    assert dbmod.basic_stats()["total_count"] == 0
    assert dbmod.basic_stats()["average_quality"] == 0.0

    for score, tier in [(4.0, "simple"), (6.0, "simple"), (8.0, "complex")]:
        pid = dbmod.save_prompt({"content": "a prompt"})
        dbmod.update_analysis(pid, score, tier, "Zero-Shot")
    dbmod.save_prompt({"content": "unscored"})

    stats = dbmod.basic_stats()
    assert stats["total_count"] == 4
    assert stats["today_count"] == 4
    assert stats["average_quality"] == 6.0
    assert stats["complexity_distribution"] == {"simple": 2, "complex": 1}
    assert len(stats["recent_activity"]) == 4
    # scores below 7 among the most recent prompts
    assert sorted(p["quality_score"] for p in stats["needs_improvement"]) == [4.0, 6.0]
    assert all(p["preview"] == "a prompt" for p in stats["needs_improvement"])


def test_needs_improvement_lists_at_most_five():
    for _ in range(8):
        pid = dbmod.save_prompt({"content": "x" * 100})
        dbmod.update_analysis(pid, 3.0, "simple", "Zero-Shot")
    weak = dbmod.basic_stats()["needs_improvement"]
    assert len(weak) == 5
    assert all(len(p["preview"]) == 60 for p in weak)


def test_same_timestamp_pages_are_stable():
    now = _now()
    ids = [dbmod.save_prompt({"content": f"prompt {i}", "timestamp": now}) for i in range(6)]
    paged = [r["id"] for r in dbmod.list_recent(limit=3)] + [r["id"] for r in dbmod.list_recent(limit=3, offset=3)]
    assert paged == sorted(ids, reverse=True)
    assert [r["id"] for r in dbmod.basic_stats()["recent_activity"]] == sorted(ids, reverse=True)


def test_retention_deletes_old_prompts_and_their_responses():
    old = dbmod.save_prompt({"content": "old", "timestamp": _now() - datetime.timedelta(days=100)})
    dbmod.save_response({"prompt_id": old, "content": "old answer"})
    fresh = dbmod.save_prompt({"content": "fresh"})

    assert dbmod.delete_prompts_older_than(90) == 1
    assert dbmod.get_prompt(old) is None
    assert dbmod.get_responses_by_prompt(old) == []
    assert dbmod.get_prompt(fresh) is not None


def test_insights_save_list_acknowledge():
    saved = dbmod.save_insight({
        "type": "length_warning",
        "severity": "warning",
        "title": "Many Short Prompts Detected",
        "description": "short",
        "evidence": {"shortPromptsCount": 12},
        "prompt_ids": [f"p{i}" for i in range(15)],
    })
    assert saved["id"]
    assert saved["created_at"]
    assert saved["acknowledged"] is False
    assert len(saved["prompt_ids"]) == 10

    listed = dbmod.list_unacknowledged_insights()
    assert [i["id"] for i in listed] == [saved["id"]]
    assert listed[0]["evidence"] == {"shortPromptsCount": 12}

    dbmod.acknowledge_insight(saved["id"])
    assert dbmod.list_unacknowledged_insights() == []

    with pytest.raises(NotFoundError):
        dbmod.acknowledge_insight("missing")


def test_upsert_metric_keeps_one_row_per_day_and_name():
    today = _now().date()
    dbmod.upsert_metric(today, "prompt_count", 3)
    dbmod.upsert_metric(today, "prompt_count", 7, metadata={"source": "rollup"})
    dbmod.upsert_metric(today, "average_quality", 6.5)

    rows = dbmod.get_metrics("prompt_count")
    assert len(rows) == 1
    assert rows[0]["value"] == 7.0
    assert rows[0]["date"] == today.isoformat()
    assert rows[0]["metadata"] == {"source": "rollup"}


def test_concurrent_writers_never_expose_partial_analysis():
    errors = []
    stop = threading.Event()

    def writer(n):
        try:
            for i in range(10):
                pid = dbmod.save_prompt({"content": f"writer {n} prompt {i}"})
                dbmod.update_analysis(pid, 5.0, "moderate", "Chain of Thought")
        except Exception as e:  # surfaced below
            errors.append(e)

    def reader():
        while not stop.is_set():
            for rec in dbmod.list_recent(limit=100):
                fields = (rec["quality_score"], rec["complexity"], rec["technique_used"])
                if any(f is None for f in fields) and any(f is not None for f in fields):
                    errors.append(AssertionError(f"torn analysis on {rec['id']}"))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    watcher = threading.Thread(target=reader)
    watcher.start()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    stop.set()
    watcher.join()

    assert errors == []
    rows = dbmod.list_recent(limit=1000)
    assert len(rows) == 80
    assert all(r["quality_score"] == 5.0 for r in rows)
