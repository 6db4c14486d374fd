# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for the FastAPI app factory."""

import pytest
from fastapi.testclient import TestClient

from app.main import app as module_app
from app.main import create_app
from enemy_ai.stack import EnemyAIStack

pytestmark = pytest.mark.unit


class TestCreateApp:

    def test_given_stack_is_served(self):
        stack = EnemyAIStack()
        stack.register_agent("e1", (0.0, 0.0, 0.0))
        client = TestClient(create_app(stack))
        data = client.get("/api/enemy-ai/snapshot").json()
        assert set(data["agents"]) == {"e1"}

    def test_fresh_stack_by_default(self):
        app = create_app()
        assert isinstance(app.state.enemy_ai_stack, EnemyAIStack)
        assert app.state.enemy_ai_stack.agent_ids() == []

    def test_module_app_routes(self):
        paths = {route.path for route in module_app.routes}
        assert "/api/enemy-ai/tick" in paths
        assert "/api/enemy-ai/governance/status" in paths
