"""
Tests for the ledger HTTP endpoints.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from questledger.common.exceptions import StorageUnavailable
from questledger.config import Settings
from questledger.database.init_db import create_engine_for_url, create_schema, create_session_factory
from questledger.main import create_app

BASE = "/api/v1/ledger"


def completion_payload(**overrides):
    payload = {
        "learner_id": "learner-1",
        "source_unit_id": "q1",
        "title": "Crystal Addition",
        "category": "math",
        "difficulty": "easy",
        "was_correct": True,
        "coins_awarded": 10,
        "xp_awarded": 50,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def session_factory(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"

    async def prepare():
        engine = create_engine_for_url(url)
        await create_schema(engine)
        await engine.dispose()

    asyncio.run(prepare())
    # The app's own engine connects inside the test client's event loop
    return create_session_factory(create_engine_for_url(url))


@pytest.fixture
def client(session_factory):
    app = create_app(config=Settings(LEDGER_TIMEZONE="UTC"), session_factory=session_factory)
    with TestClient(app) as client:
        yield client


def test_report_completion_credits_reward(client):
    response = client.post(f"{BASE}/completions", json=completion_payload(event_id="e-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["message"] == "Completion credited"
    assert body["data"]["event_id"] == "e-1"
    assert body["data"]["credited"] is True
    assert body["data"]["balance"] == {"learner_id": "learner-1", "coins": 10, "xp": 50}
    assert body["data"]["summary"]["total_quests_completed"] == 1
    assert "first-quest" in body["data"]["summary"]["unlocked_badges"]


def test_duplicate_delivery_is_not_an_error(client):
    client.post(f"{BASE}/completions", json=completion_payload(event_id="e-1"))
    response = client.post(f"{BASE}/completions", json=completion_payload(event_id="e-1"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["record"] == "duplicate_rejected"
    assert data["credited"] is False
    assert data["coins_awarded"] == 0

    balance = client.get(f"{BASE}/learners/learner-1/balance").json()["data"]
    assert balance["coins"] == 10


def test_unknown_category_is_rejected(client):
    response = client.post(f"{BASE}/completions", json=completion_payload(category="art"))

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "invalid_event"
    assert "category" in body["details"]


def test_missing_field_is_rejected(client):
    payload = completion_payload()
    del payload["learner_id"]

    response = client.post(f"{BASE}/completions", json=payload)

    assert response.status_code == 422
    assert response.json()["message"] == "Validation error"


def test_negative_reward_is_rejected(client):
    response = client.post(f"{BASE}/completions", json=completion_payload(coins_awarded=-5))

    assert response.status_code == 422


def test_read_endpoints(client):
    client.post(f"{BASE}/completions", json=completion_payload(source_unit_id="q1"))
    client.post(f"{BASE}/completions", json=completion_payload(source_unit_id="m-g1-1", category="science"))

    summary = client.get(f"{BASE}/learners/learner-1/summary").json()["data"]
    assert summary["total_quests_completed"] == 2
    assert summary["quests_by_category"]["science"] == 1
    assert summary["current_streak"] == 1
    assert summary["unlocked_trophies"] == ["trophy-g1-1"]

    completions = client.get(f"{BASE}/learners/learner-1/completions", params={"limit": 1}).json()["data"]
    assert len(completions) == 1

    badges = client.get(f"{BASE}/learners/learner-1/badges").json()["data"]
    assert badges["worlds"]["g1"]["unlocked"] == 1
    assert any(row["id"] == "first-quest" and row["unlocked"] for row in badges["badges"])


def test_completions_limit_is_bounded(client):
    response = client.get(f"{BASE}/learners/learner-1/completions", params={"limit": 0})

    assert response.status_code == 422


def test_unknown_learner_gets_defaults(client):
    summary = client.get(f"{BASE}/learners/nobody/summary").json()["data"]
    balance = client.get(f"{BASE}/learners/nobody/balance").json()["data"]

    assert summary["total_quests_completed"] == 0
    assert summary["last_completed_date"] is None
    assert balance == {"learner_id": "nobody", "coins": 0, "xp": 0}


def test_reconcile_endpoint(client):
    client.post(f"{BASE}/completions", json=completion_payload())

    response = client.post(f"{BASE}/learners/learner-1/reconcile", params={"strict": True})

    assert response.status_code == 200
    assert response.json()["data"]["total_xp"] == 50


def test_storage_outage_maps_to_service_unavailable(session_factory):
    app = create_app(config=Settings(LEDGER_TIMEZONE="UTC"), session_factory=session_factory)
    ledger = MagicMock()
    ledger.complete = AsyncMock(side_effect=StorageUnavailable("commit timed out", outcome_unknown=True))
    app.state.ledger_service = ledger

    with TestClient(app) as client:
        response = client.post(f"{BASE}/completions", json=completion_payload(event_id="e-9"))

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    body = response.json()
    assert body["code"] == "storage_unavailable"
    assert body["details"] == {"outcome_unknown": True, "retry_with_same_ids": True}


def test_oversized_event_id_is_rejected(client):
    response = client.post(f"{BASE}/completions", json=completion_payload(event_id="e" * 65))

    assert response.status_code == 422
    assert client.get(f"{BASE}/learners/learner-1/balance").json()["data"]["coins"] == 0


def test_event_id_reused_for_another_unit_is_rejected(client):
    client.post(f"{BASE}/completions", json=completion_payload(event_id="e-1", source_unit_id="q1"))
    response = client.post(
        f"{BASE}/completions", json=completion_payload(event_id="e-1", source_unit_id="q2", coins_awarded=99)
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "invalid_event"
    assert "event_id" in body["details"]
    assert client.get(f"{BASE}/learners/learner-1/balance").json()["data"]["coins"] == 10
