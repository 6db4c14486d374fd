# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Unit tests for BalanceSentinel -- fair-play limits, metrics, profiles."""

from __future__ import annotations

import pytest

from enemy_ai.enums import ProposalType, ViolationSeverity, ViolationType
from enemy_ai.governance import AgentProposal, BalanceSentinel, EnemyBalanceProfile
from enemy_ai.governance.sentinel import extract_values, snake
from enemy_ai.snapshots import SnapshotError

pytestmark = pytest.mark.unit


def _proposal(payload) -> AgentProposal:
    return AgentProposal(
        agent_id="tuner",
        tier=1,
        proposal_type=ProposalType.MODIFY,
        target_system="combat",
        payload=payload,
        confidence=1.0,
    )


@pytest.fixture
def sentinel():
    return BalanceSentinel(player_max_health=100.0)


class TestKeyExtraction:
    def test_snake(self):
        assert snake("reactionTimeMs") == "reaction_time_ms"
        assert snake("accuracy") == "accuracy"

    def test_nested_and_camel_case(self):
        values = extract_values({"enemy": {"stats": [{"reactionTime": 150, "baseDamage": 30}]}})
        assert values == {"reaction_time_ms": 150, "damage": 30}

    def test_first_occurrence_wins(self):
        values = extract_values({"accuracy": 0.5, "inner": {"accuracy": 0.99}})
        assert values["accuracy"] == 0.5

    def test_non_mapping_payload(self):
        assert extract_values("just text") == {}


class TestSevereLimits:
    @pytest.mark.parametrize(
        "payload, kind",
        [
            ({"reaction_time_ms": 150}, ViolationType.REACTION_TOO_FAST),
            ({"accuracy": 0.9}, ViolationType.ACCURACY_TOO_HIGH),
            ({"damage": 30}, ViolationType.DAMAGE_TOO_HIGH),
            ({"difficultyMultiplier": 1.8}, ViolationType.DIFFICULTY_SPIKE),
            ({"mode": "aimbot"}, ViolationType.UNFAIR_ADVANTAGE),
        ],
    )
    def test_rejected_even_at_full_confidence(self, sentinel, payload, kind):
        result = sentinel.validate_proposal(_proposal(payload))
        assert result.passed is False
        assert result.message.startswith("Balance violation:")
        (violation,) = result.details["violations"]
        assert violation.type == kind
        assert violation.severity == ViolationSeverity.SEVERE

    def test_elite_accuracy_cap(self, sentinel):
        assert sentinel.validate_proposal(_proposal({"enemy_type": "elite_guard", "accuracy": 0.8})).passed
        assert not sentinel.validate_proposal(_proposal({"enemy_type": "elite_guard", "accuracy": 0.9})).passed
        assert not sentinel.validate_proposal(_proposal({"enemy_type": "grunt", "accuracy": 0.8})).passed

    def test_damage_cap_scales_with_player_health(self):
        sentinel = BalanceSentinel(player_max_health=200.0)
        assert sentinel.max_damage == 50.0
        assert sentinel.validate_proposal(_proposal({"damage": 30})).passed


class TestModerateAndMinor:
    def test_single_moderate_passes_with_warning(self, sentinel):
        result = sentinel.validate_proposal(_proposal({"detection_range": 150}))
        assert result.passed is True
        assert result.message == "Passed with 1 warnings"

    def test_three_moderates_fail(self, sentinel):
        result = sentinel.validate_proposal(_proposal({
            "detection_range": 150,
            "simultaneous_attackers": 5,
            "difficulty_multiplier": 1.3,
        }))
        assert result.passed is False
        assert result.message == "Too many moderate balance violations"
        assert len(result.details["violations"]) == 3

    def test_near_limit_is_minor(self, sentinel):
        result = sentinel.validate_proposal(_proposal({"reaction_time_ms": 210, "accuracy": 0.65}))
        assert result.passed is True
        severities = {v.severity for v in result.details["violations"]}
        assert severities == {ViolationSeverity.MINOR}

    def test_clean_payload(self, sentinel):
        result = sentinel.validate_proposal(_proposal({"reaction_time_ms": 400, "accuracy": 0.4}))
        assert result.passed is True
        assert result.message == "Balance check passed"

    def test_difficulty_measured_from_baseline(self, sentinel):
        sentinel.note_difficulty(1.25)
        assert sentinel.validate_proposal(_proposal({"difficulty_multiplier": 1.3})).message == (
            "Balance check passed"
        )
        assert sentinel.difficulty_multiplier == 1.25


class TestControl:
    def test_disabled_passes_everything(self, sentinel):
        sentinel.disable()
        result = sentinel.validate_proposal(_proposal({"reaction_time_ms": 1}))
        assert result.passed is True
        assert result.message == "Balance Sentinel disabled"
        sentinel.enable()
        assert sentinel.validate_proposal(_proposal({"reaction_time_ms": 1})).passed is False

    def test_violation_log(self, sentinel, log_messages):
        sentinel.validate_proposal(_proposal({"detection_range": 150, "accuracy": 0.65}))
        assert sentinel.violation_count == 2
        assert [v.type for v in sentinel.violations(1)] == [ViolationType.DETECTION_TOO_FAR]
        assert any("Balance moderate" in m for m in log_messages)
        assert not any("Balance minor" in m for m in log_messages)
        sentinel.clear_violations()
        assert sentinel.violation_count == 0
        assert sentinel.violations() == []


class TestFairness:
    def test_index_is_rolling_mean(self, sentinel):
        assert sentinel.update_metrics(player_win_rate=0.2).fairness_index == pytest.approx(0.7)
        assert sentinel.update_metrics(player_win_rate=0.6).fairness_index == pytest.approx(0.85)

    def test_all_penalties(self, sentinel):
        metrics = sentinel.update_metrics(player_death_rate=3.0, player_win_rate=0.1, difficulty_score=90.0)
        assert metrics.fairness_index == pytest.approx(0.4)

    def test_index_cannot_be_set_directly(self, sentinel):
        assert sentinel.update_metrics(fairness_index=0.0, bogus=1.0).fairness_index == 1.0

    def test_get_metrics_is_a_copy(self, sentinel):
        sentinel.get_metrics().player_win_rate = 0.0
        assert sentinel.get_metrics().player_win_rate == 0.6


class TestProfiles:
    def test_fair_profile_stored(self, sentinel):
        profile = EnemyBalanceProfile("grunt", 15.0, 100.0, 60.0, 350.0, 0.5)
        assert sentinel.register_enemy_profile(profile) == []
        assert sentinel.get_enemy_profile("grunt") == profile

    def test_unfair_profile_refused(self, sentinel):
        profile = EnemyBalanceProfile("sniper", 60.0, 100.0, 90.0, 350.0, 0.5)
        violations = sentinel.register_enemy_profile(profile)
        assert violations[0].type == ViolationType.DAMAGE_TOO_HIGH
        assert sentinel.get_enemy_profile("sniper") is None

    def test_moderate_profile_kept(self, sentinel):
        profile = EnemyBalanceProfile("scout", 10.0, 80.0, 140.0, 300.0, 0.5)
        violations = sentinel.register_enemy_profile(profile)
        assert [v.severity for v in violations] == [ViolationSeverity.MODERATE]
        assert sentinel.get_enemy_profile("scout") is not None


class TestSentinelSnapshot:
    def test_round_trip(self, sentinel):
        sentinel.update_metrics(player_win_rate=0.3)
        sentinel.note_difficulty(1.2)
        sentinel.register_enemy_profile(EnemyBalanceProfile("grunt", 15.0, 100.0, 60.0, 350.0, 0.5))
        sentinel.disable()
        data = sentinel.to_snapshot()
        restored = BalanceSentinel()
        restored.load_snapshot(data)
        assert restored.to_snapshot() == data
        assert restored.enabled is False
        assert restored.difficulty_multiplier == 1.2

    def test_malformed_snapshot_leaves_state(self, sentinel):
        sentinel.note_difficulty(1.1)
        before = sentinel.to_snapshot()
        with pytest.raises(SnapshotError):
            sentinel.load_snapshot({"enabled": "maybe", "difficulty_multiplier": -1})
        assert sentinel.to_snapshot() == before
