# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for /api/enemy-ai/* endpoints.

Tests run against the FastAPI router with a real EnemyAIStack.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routers.enemy_ai import router
from enemy_ai.stack import EnemyAIStack

pytestmark = pytest.mark.unit


@pytest.fixture
def app():
    """FastAPI app with the enemy AI router."""
    app = FastAPI()
    app.include_router(router)
    return app


@pytest.fixture
def stack():
    s = EnemyAIStack()
    s.set_player_position((0.0, 0.0, 10.0))
    s.register_agent("e1", (0.0, 0.0, 0.0))
    return s


@pytest.fixture
def client(app, stack):
    app.state.enemy_ai_stack = stack
    return TestClient(app)


@pytest.fixture
def client_no_stack(app):
    return TestClient(app)


def _proposal(**overrides) -> dict:
    body = {
        "agent_id": "tuner",
        "tier": 2,
        "proposal_type": "modify",
        "target_system": "combat",
        "payload": {"accuracy": 0.5},
        "confidence": 0.9,
    }
    body.update(overrides)
    return body


class TestNoStack:

    def test_status_unavailable(self, client_no_stack):
        resp = client_no_stack.get("/api/enemy-ai/governance/status")
        assert resp.status_code == 503

    def test_tick_unavailable(self, client_no_stack):
        assert client_no_stack.post("/api/enemy-ai/tick").status_code == 503


class TestProposals:

    def test_fair_proposal_passes(self, client):
        resp = client.post("/api/enemy-ai/proposals", json=_proposal())
        assert resp.status_code == 200
        data = resp.json()
        assert data["passed"] is True
        assert data["message"] == "All governance checks passed"

    def test_unfair_proposal_rejected(self, client):
        resp = client.post(
            "/api/enemy-ai/proposals",
            json=_proposal(tier=1, payload={"reactionTimeMs": 100}, confidence=1.0),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["passed"] is False
        assert data["message"].startswith("[Balance Sentinel]")
        assert data["details"]["rule"] == "balance_sentinel"

    def test_invalid_tier(self, client):
        resp = client.post("/api/enemy-ai/proposals", json=_proposal(tier=7))
        assert resp.status_code == 422

    def test_history(self, client):
        client.post("/api/enemy-ai/proposals", json=_proposal())
        client.post("/api/enemy-ai/proposals", json=_proposal(confidence=0.1))
        data = client.get("/api/enemy-ai/proposals").json()
        assert data["count"] == 2
        assert [p["approved"] for p in data["proposals"]] == [True, False]
        assert client.get("/api/enemy-ai/proposals?limit=1").json()["count"] == 1


class TestGovernance:

    def test_status(self, client):
        data = client.get("/api/enemy-ai/governance/status").json()
        assert data["phase"] == "init"
        assert data["balance"]["enabled"] is True
        assert "tactics" in data["subsystems"]

    def test_phase_changes(self, client):
        resp = client.post("/api/enemy-ai/governance/phase", json={"action": "start"})
        assert resp.json() == {"phase": "running"}
        resp = client.post("/api/enemy-ai/governance/phase", json={"action": "pause"})
        assert resp.json() == {"phase": "paused"}

    def test_illegal_phase_change(self, client):
        resp = client.post("/api/enemy-ai/governance/phase", json={"action": "pause"})
        assert resp.status_code == 409

    def test_unknown_action(self, client):
        resp = client.post("/api/enemy-ai/governance/phase", json={"action": "explode"})
        assert resp.status_code == 422


class TestWorld:

    def test_partial_update(self, client, stack):
        resp = client.post(
            "/api/enemy-ai/world",
            json={"player_position": [1.0, 2.0, 3.0], "weather": "rain"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["weather"] == "rain"
        assert data["player_position"] == [1.0, 2.0, 3.0]
        assert data["time_of_day"] == 12.0
        assert stack.world.player_position == (1.0, 2.0, 3.0)

    def test_out_of_range(self, client):
        resp = client.post("/api/enemy-ai/world", json={"time_of_day": 30})
        assert resp.status_code == 422


class TestAgents:

    def test_update_agent(self, client):
        resp = client.post("/api/enemy-ai/agents/e1/update", json={"dt": 0.1})
        assert resp.status_code == 200
        data = resp.json()
        assert data["agent_id"] == "e1"
        assert data["new_state"] == "engage"

    def test_update_without_body(self, client):
        assert client.post("/api/enemy-ai/agents/e1/update").status_code == 200

    def test_unknown_agent(self, client):
        resp = client.post("/api/enemy-ai/agents/ghost/update")
        assert resp.status_code == 404


class TestTick:

    def test_tick_before_start(self, client):
        data = client.post("/api/enemy-ai/tick").json()
        assert data == {"phase": "init", "tick": 0, "results": []}

    def test_tick_running(self, client):
        client.post("/api/enemy-ai/governance/phase", json={"action": "start"})
        data = client.post("/api/enemy-ai/tick", json={"dt": 0.1}).json()
        assert data["tick"] == 1
        assert [r["agent_id"] for r in data["results"]] == ["e1"]

    def test_snapshot(self, client):
        data = client.get("/api/enemy-ai/snapshot").json()
        assert set(data["agents"]) == {"e1"}
        assert data["chair"]["phase"] == "init"
