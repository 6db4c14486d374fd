# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Unit tests for TacticsEngine -- rule matching, cooldowns, governed rules."""

from __future__ import annotations

import pytest

from enemy_ai.enums import Comparator, TacticType, Weather
from enemy_ai.governance import GovernanceContext
from enemy_ai.simulation.tactics import (
    DEFAULT_RULES,
    TacticContext,
    TacticRule,
    TacticsEngine,
    _cond,
    compare,
    confidence_for,
)
from enemy_ai.snapshots import SnapshotError

pytestmark = pytest.mark.unit


def _ctx(agent_id: str = "e1", **overrides) -> TacticContext:
    base = dict(
        agent_id=agent_id,
        health=100.0,
        max_health=100.0,
        position=(0.0, 0.0, 0.0),
        player_position=(0.0, 0.0, 30.0),
        distance_to_player=30.0,
    )
    base.update(overrides)
    return TacticContext(**base)


@pytest.fixture
def engine(clock):
    return TacticsEngine(seed=7, clock=clock)


class TestRuleSelection:
    def test_critically_wounded_retreats(self, engine):
        result = engine.evaluate(_ctx(health=15.0))
        assert result.tactic == TacticType.RETREAT_REGROUP
        assert result.rule_id == "retreat_low_health"
        assert result.should_retreat is True
        assert result.should_call_backup is True
        assert result.target_position == pytest.approx((0.0, 0.0, -20.0))

    def test_numerical_advantage_flanks(self, engine):
        result = engine.evaluate(_ctx(ally_count=3))
        assert result.tactic == TacticType.PINCER
        assert result.should_retreat is False
        assert result.should_call_backup is False

    def test_no_match_falls_back_to_assault(self, engine):
        result = engine.evaluate(_ctx(player_position=(0.0, 0.0, 5.0), distance_to_player=5.0))
        assert result.tactic == TacticType.DIRECT_ASSAULT
        assert result.rule_id == "default_assault"
        assert result.target_position == pytest.approx((0.0, 0.0, 5.0))

    def test_rain_sets_ambush_past_player(self, engine):
        result = engine.evaluate(_ctx(weather=Weather.RAIN))
        assert result.tactic == TacticType.AMBUSH_SETUP
        assert result.target_position == pytest.approx((0.0, 0.0, 60.0))

    def test_same_position_has_no_destination(self, engine):
        result = engine.evaluate(_ctx(player_position=(0.0, 0.0, 0.0), distance_to_player=0.0))
        assert result.target_position is None

    def test_last_tactic_tracked(self, engine):
        assert engine.get_last_tactic("e1") is None
        engine.evaluate(_ctx(health=15.0))
        assert engine.get_last_tactic("e1") == TacticType.RETREAT_REGROUP

    def test_pincer_side_is_seeded(self, clock):
        a = TacticsEngine(seed=11, clock=clock)
        b = TacticsEngine(seed=11, clock=clock)
        for i in range(5):
            ctx = _ctx(agent_id=f"e{i}", ally_count=3)
            assert a.evaluate(ctx).target_position == b.evaluate(ctx).target_position


class TestCooldowns:
    def test_rule_skipped_during_cooldown(self, engine, clock):
        assert engine.evaluate(_ctx(health=15.0)).rule_id == "retreat_low_health"
        assert engine.evaluate(_ctx(health=15.0)).rule_id == "default_assault"
        clock.advance(30.0)
        assert engine.evaluate(_ctx(health=15.0)).rule_id == "retreat_low_health"

    def test_cooldowns_are_per_agent(self, engine):
        engine.evaluate(_ctx("e1", health=15.0))
        assert engine.evaluate(_ctx("e2", health=15.0)).rule_id == "retreat_low_health"

    def test_clear_and_forget(self, engine):
        engine.evaluate(_ctx(health=15.0))
        engine.clear_cooldowns()
        assert engine.evaluate(_ctx(health=15.0)).rule_id == "retreat_low_health"
        engine.forget("e1")
        assert engine.get_last_tactic("e1") is None
        assert engine.evaluate(_ctx(health=15.0)).rule_id == "retreat_low_health"


class TestHelpers:
    def test_numeric_compare(self):
        assert compare(0.1, Comparator.LT, 0.2)
        assert compare(3, Comparator.GE, 3)
        assert not compare(3, Comparator.GT, 3)

    def test_string_compare_is_equality_only(self):
        assert compare("rain", Comparator.EQ, "rain")
        assert not compare("rain", Comparator.EQ, "fog")
        assert compare("rain", Comparator.LT, "fog")
        assert not compare("rain", Comparator.GT, "rain")

    def test_confidence(self):
        high = DEFAULT_RULES[0]
        assert confidence_for(high, 1) == pytest.approx(0.95)
        fallback = DEFAULT_RULES[-1]
        assert confidence_for(fallback, 0) == pytest.approx(0.4)
        assert confidence_for(fallback, 5) < confidence_for(fallback, 0)


def _rule(rule_id: str = "hold_in_fog", name: str = "Hold in fog") -> TacticRule:
    return TacticRule(
        rule_id, name,
        (_cond("weather", "==", "fog"),),
        TacticType.DEFENSIVE_HOLD, 85, 5,
    )


class TestRuleManagement:
    def test_add_rule_requires_governance(self, engine):
        assert engine.add_rule(_rule()) is False
        assert all(r.id != "hold_in_fog" for r in engine.get_rules())

    def test_approved_rule_installed_in_priority_order(self, clock):
        governance = GovernanceContext()
        engine = TacticsEngine(governance=governance, clock=clock)
        assert engine.add_rule(_rule()) is True
        priorities = [r.priority for r in engine.get_rules()]
        assert priorities == sorted(priorities, reverse=True)
        assert engine.evaluate(_ctx(weather=Weather.FOG)).tactic == TacticType.DEFENSIVE_HOLD
        history = governance.chair.proposal_history()
        assert history[-1].target_system == "tactics"
        assert history[-1].approved is True

    def test_cheating_rule_rejected(self, clock):
        engine = TacticsEngine(governance=GovernanceContext(), clock=clock)
        assert engine.add_rule(_rule("cheat", "Omniscient flank")) is False
        assert all(r.id != "cheat" for r in engine.get_rules())

    def test_remove_rule(self, engine):
        assert engine.remove_rule("ambush_rain") is True
        assert engine.remove_rule("ambush_rain") is False
        assert engine.evaluate(_ctx(weather=Weather.RAIN)).tactic != TacticType.AMBUSH_SETUP


class TestTacticsSnapshot:
    def test_round_trip_keeps_rules_and_cooldowns(self, engine, clock):
        engine.evaluate(_ctx(health=15.0))
        restored = TacticsEngine.from_snapshot(engine.to_snapshot(), clock=clock)
        assert [r.id for r in restored.get_rules()] == [r.id for r in engine.get_rules()]
        assert restored.get_last_tactic("e1") == TacticType.RETREAT_REGROUP
        assert restored.evaluate(_ctx(health=15.0)).rule_id == "default_assault"

    def test_malformed_snapshot_leaves_state(self, engine):
        engine.evaluate(_ctx(health=15.0))
        before = engine.to_snapshot()
        with pytest.raises(SnapshotError):
            engine.load_snapshot({"rules": "nope"})
        assert engine.to_snapshot() == before
