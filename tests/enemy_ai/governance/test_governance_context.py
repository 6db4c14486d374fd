# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Unit tests for GovernanceContext -- chair and sentinel wired together."""

from __future__ import annotations

import pytest

from enemy_ai.comms.event_bus import EventBus, drain
from enemy_ai.enums import ProposalType
from enemy_ai.governance import BalanceSentinel, GovernanceContext, SimulationChair

pytestmark = pytest.mark.unit


def _submit(gov: GovernanceContext, payload, confidence: float = 1.0, tier: int = 1):
    return gov.submit(
        agent_id="tuner",
        tier=tier,
        proposal_type=ProposalType.MODIFY,
        target_system="combat",
        payload=payload,
        confidence=confidence,
    )


class TestWiring:
    def test_sentinel_installed_as_block_rule(self):
        gov = GovernanceContext()
        assert gov.chair.rules[-1].id == "balance_sentinel"

    def test_shared_event_bus(self):
        bus = EventBus()
        gov = GovernanceContext(event_bus=bus)
        assert gov.chair.event_bus is bus

    def test_existing_chair_bus_wins(self):
        chair = SimulationChair(event_bus=EventBus())
        gov = GovernanceContext(chair=chair, event_bus=EventBus())
        assert gov.event_bus is chair.event_bus
        assert gov.chair is chair


class TestSubmit:
    @pytest.mark.parametrize(
        "payload",
        [
            {"reactionTimeMs": 120},
            {"accuracy": 0.95},
            {"damage": 40},
        ],
    )
    def test_unfair_values_rejected_at_full_confidence(self, payload):
        gov = GovernanceContext()
        result = _submit(gov, payload)
        assert result.passed is False
        assert result.message.startswith("[Balance Sentinel] Balance violation:")
        assert result.details["rule"] == "balance_sentinel"

    def test_approved_difficulty_moves_baseline(self):
        gov = GovernanceContext()
        assert _submit(gov, {"difficulty_multiplier": 1.1}).passed
        assert gov.sentinel.difficulty_multiplier == pytest.approx(1.1)
        assert _submit(gov, {"difficulty_multiplier": 1.2}).passed
        assert gov.sentinel.difficulty_multiplier == pytest.approx(1.2)

    def test_rejected_difficulty_keeps_baseline(self):
        gov = GovernanceContext()
        assert not _submit(gov, {"difficulty_multiplier": 2.0}).passed
        assert gov.sentinel.difficulty_multiplier == 1.0

    def test_timestamp_from_chair_clock(self, clock):
        clock.advance(42.0)
        gov = GovernanceContext(chair=SimulationChair(clock=clock))
        _submit(gov, {"accuracy": 0.5})
        assert gov.chair.proposal_history()[-1].timestamp == 42.0

    def test_rejection_published_once(self):
        gov = GovernanceContext()
        q = gov.event_bus.subscribe("proposal_rejected")
        _submit(gov, {"damage": 40})
        (msg,) = drain(q)
        assert msg["data"]["rule"] == "balance_sentinel"


class TestStatus:
    def test_status_shape(self):
        gov = GovernanceContext(sentinel=BalanceSentinel())
        _submit(gov, {"detection_range": 150})
        status = gov.status()
        assert status["phase"] == "init"
        assert status["current_tick"] == 0
        assert status["subsystems"]["tactics"]["healthy"] is True
        assert status["balance"]["enabled"] is True
        assert status["balance"]["violation_count"] == 1
        assert status["balance"]["metrics"]["fairness_index"] == 1.0

    def test_snapshot_has_both_parts(self):
        data = GovernanceContext().to_snapshot()
        assert set(data) == {"chair", "sentinel"}
