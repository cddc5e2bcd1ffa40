# tests/test_api_prompts_endpoint.py
"""
Tests for the HTTP surface. Uses a disposable SQLite DB per test; the
background scheduler is not started because the client is not used as a
context manager.
"""
import pytest
from fastapi.testclient import TestClient

from prompt_collector.app import app
from prompt_collector import db as dbmod
from prompt_collector import insights

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'test_api.db'}")
    dbmod.init_db()
    yield


def test_create_and_fetch_prompt():
    r = client.post("/api/prompts", json={"content": "fix this", "tags": ["bug"]})
    assert r.status_code == 200
    j = r.json()
    assert j["status"] == "success"
    assert j["complexity"] == "simple"
    assert [i["type"] for i in j["issues"]] == ["too_broad"]

    r2 = client.get(f"/api/prompts/{j['id']}")
    assert r2.status_code == 200
    prompt = r2.json()["prompt"]
    assert prompt["content"] == "fix this"
    assert prompt["quality_score"] == j["quality_score"]
    assert prompt["responses"] == []


def test_blank_prompt_returns_validation_envelope():
    r = client.post("/api/prompts", json={"content": "   "})
    assert r.status_code == 400
    assert r.json()["status"] == "error"
    assert r.json()["error_code"] == "E_VALIDATION"


def test_missing_content_is_rejected_by_schema():
    r = client.post("/api/prompts", json={"context": "nothing else"})
    assert r.status_code == 422


def test_prompt_not_found():
    r = client.get("/api/prompts/nonexistent-id")
    assert r.status_code == 404
    assert r.json()["error_code"] == "E_NOT_FOUND"


def test_list_prompts_newest_first():
    first = client.post("/api/prompts", json={"content": "first prompt here"}).json()["id"]
    second = client.post("/api/prompts", json={"content": "second prompt here"}).json()["id"]
    r = client.get("/api/prompts", params={"limit": 10})
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["prompts"]] == [second, first]


def test_responses_endpoint():
    pid = client.post("/api/prompts", json={"content": "explain recursion"}).json()["id"]
    r = client.post(f"/api/prompts/{pid}/responses", json={"content": "it calls itself", "user_rating": 5})
    assert r.status_code == 200
    assert client.get(f"/api/prompts/{pid}").json()["prompt"]["responses"][0]["user_rating"] == 5

    r = client.post("/api/prompts/ghost/responses", json={"content": "orphan"})
    assert r.status_code == 409
    assert r.json()["error_code"] == "E_FOREIGN_KEY"

    r = client.post(f"/api/prompts/{pid}/responses", json={"content": "x", "user_rating": 6})
    assert r.status_code == 422


def test_improve_endpoint():
    r = client.post("/api/prompts/improve", json={"content": "fix this", "goal": "green build"})
    assert r.status_code == 200
    assert len(r.json()["suggestions"]) == 5
    assert client.get("/api/prompts").json()["prompts"] == []


def test_quality_and_stats_endpoints():
    client.post("/api/prompts", json={"content": "fix this"})
    client.post("/api/prompts", json={"content": "fix that"})

    q = client.get("/api/quality", params={"days": 7}).json()
    assert q["days"] == 7
    assert len(q["metrics"]) == 1
    assert q["metrics"][0]["count"] == 2

    s = client.get("/api/stats").json()
    assert s["total_count"] == 2
    assert s["today_count"] == 2
    assert s["complexity_distribution"] == {"simple": 2}


def test_generate_list_and_acknowledge_insights():
    for _ in range(25):
        client.post("/api/prompts", json={"content": "fix it"})

    r = client.post("/api/insights/generate")
    assert r.status_code == 200
    generated = r.json()["insights"]
    assert "length_warning" in [i["type"] for i in generated]

    listed = client.get("/api/insights").json()["insights"]
    assert {i["id"] for i in listed} == {i["id"] for i in generated}

    target = listed[0]["id"]
    assert client.post(f"/api/insights/{target}/acknowledge").status_code == 200
    remaining = client.get("/api/insights").json()["insights"]
    assert target not in [i["id"] for i in remaining]

    r = client.post("/api/insights/missing/acknowledge")
    assert r.status_code == 404


def test_generate_while_miner_running_conflicts():
    assert insights.maintenance_lock.acquire(blocking=False)
    try:
        r = client.post("/api/insights/generate")
    finally:
        insights.maintenance_lock.release()
    assert r.status_code == 409
    assert r.json()["error_code"] == "E_MINER_BUSY"
