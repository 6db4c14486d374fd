# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Unit tests for SquadCoordinator -- roles, tactics, player read, difficulty."""

from __future__ import annotations

import math

import pytest

from enemy_ai.enums import CounterTactic, SquadRole, SquadTacticType
from enemy_ai.governance import GovernanceContext
from enemy_ai.simulation.squads import (
    PlayerAction,
    SquadCoordinator,
    flanking_routes,
    reaction_speed,
    role_for,
)
from enemy_ai.snapshots import SnapshotError

pytestmark = pytest.mark.unit


def _actions(kind: str, count: int, interval: float = 0.5, success: bool = True, start: float = 0.0):
    return [PlayerAction(kind, start + i * interval, success) for i in range(count)]


@pytest.fixture
def coord():
    c = SquadCoordinator()
    c.create_squad("alpha", ["a", "b", "c", "d"])
    return c


class TestRoles:
    def test_five_member_roles(self):
        roles = [role_for(i, 5) for i in range(5)]
        assert roles == [
            SquadRole.LEADER,
            SquadRole.FLANKER,
            SquadRole.MEDIC,
            SquadRole.POINTMAN,
            SquadRole.SUPPRESSOR,
        ]

    def test_small_squads(self):
        assert [role_for(i, 3) for i in range(3)] == [
            SquadRole.LEADER, SquadRole.POINTMAN, SquadRole.SUPPRESSOR,
        ]
        assert [role_for(i, 2) for i in range(2)] == [SquadRole.LEADER, SquadRole.POINTMAN]

    def test_roles_on_creation(self, coord):
        assert coord.get_squad("alpha").roles == {
            "a": SquadRole.LEADER,
            "b": SquadRole.FLANKER,
            "c": SquadRole.POINTMAN,
            "d": SquadRole.SUPPRESSOR,
        }

    def test_survivors_reassigned_when_leader_dies(self, coord):
        coord.report_casualty("alpha", "a")
        assert coord.get_squad("alpha").roles == {
            "b": SquadRole.LEADER,
            "c": SquadRole.POINTMAN,
            "d": SquadRole.SUPPRESSOR,
        }

    def test_duplicate_members_collapse(self):
        c = SquadCoordinator()
        squad = c.create_squad("s", ["x", "y", "x"])
        assert [m.id for m in squad.members] == ["x", "y"]

    def test_squad_of(self, coord):
        assert coord.squad_of("c") == "alpha"
        assert coord.squad_of("z") is None


class TestFormation:
    def test_formation_center_follows_alive_members(self, coord):
        for mid, x in (("a", 0.0), ("b", 2.0), ("c", 4.0), ("d", 6.0)):
            coord.update_member_position("alpha", mid, (x, 0.0, 0.0))
        assert coord.get_squad("alpha").formation_center == pytest.approx((3.0, 0.0, 0.0))
        coord.report_casualty("alpha", "d")
        assert coord.get_squad("alpha").formation_center == pytest.approx((2.0, 0.0, 0.0))


class TestTactics:
    def test_two_alive_retreat(self, coord):
        coord.report_casualty("alpha", "c")
        coord.report_casualty("alpha", "d")
        tactic = coord.plan_tactic("alpha", (0.0, 0.0, 20.0))
        assert tactic.type == SquadTacticType.RETREAT
        assert tactic.flanking_routes == []

    def test_full_squad_surrounds_average_player(self, coord):
        tactic = coord.plan_tactic("alpha", (0.0, 0.0, 20.0))
        assert tactic.type == SquadTacticType.SURROUND
        assert len(tactic.flanking_routes) == 3
        assert tactic.suppression_targets == [(0.0, 0.0, 20.0)]

    def test_skilled_player_gets_flanked(self, coord):
        coord.get_squad("alpha").player_skill = 0.8
        assert coord.plan_tactic("alpha", (0.0, 0.0, 20.0)).type == SquadTacticType.FLANK

    def test_unknown_squad(self, coord):
        assert coord.plan_tactic("ghost", (0.0, 0.0, 0.0)) is None
        assert coord.coordinate_flanking("ghost") == {}

    def test_route_geometry(self):
        routes = flanking_routes((0.0, 0.0, 0.0), (0.0, 0.0, 20.0), 4)
        assert len(routes) == 3
        for route in routes:
            assert route[0] == (0.0, 0.0, 0.0)
            assert route[-1] == (0.0, 0.0, 20.0)
        assert routes[1][1] == pytest.approx((10.0, 0.0, 10.0))
        assert routes[0][1] == pytest.approx((5.0, 0.0, 10.0 - 8.660254))

    @staticmethod
    def _line_frame(origin, target, waypoint):
        """(along, across) coordinates of *waypoint* relative to the approach line."""
        dx, dz = target[0] - origin[0], target[2] - origin[2]
        length = math.hypot(dx, dz)
        ux, uz = dx / length, dz / length
        rx, rz = waypoint[0] - origin[0], waypoint[2] - origin[2]
        return rx * ux + rz * uz, rx * uz - rz * ux

    @pytest.mark.parametrize("heading_deg", [0.0, 45.0, 90.0, 180.0, 270.0])
    def test_routes_rotate_with_approach(self, heading_deg):
        origin = (3.0, 0.0, -2.0)
        rad = math.radians(heading_deg)
        target = (origin[0] + 20.0 * math.cos(rad), 0.0, origin[2] + 20.0 * math.sin(rad))
        routes = flanking_routes(origin, target, 3)
        frames = [self._line_frame(origin, target, r[1]) for r in routes]
        assert frames[1] == pytest.approx((10.0, 10.0), abs=1e-9)
        assert frames[0] == pytest.approx((10.0 - 8.660254, 5.0), abs=1e-6)
        assert frames[2] == pytest.approx((10.0 + 8.660254, 5.0), abs=1e-6)

    def test_eastward_lateral_waypoint_is_off_the_target(self):
        routes = flanking_routes((0.0, 0.0, 0.0), (20.0, 0.0, 0.0), 3)
        assert routes[1][1] == pytest.approx((10.0, 0.0, -10.0))
        assert routes[1][1] != pytest.approx((20.0, 0.0, 0.0))

    def test_flankers_get_routes(self, coord):
        tactic = coord.plan_tactic("alpha", (0.0, 0.0, 20.0))
        assignments = coord.coordinate_flanking("alpha")
        assert assignments == {"b": tactic.flanking_routes[0]}


class TestFireSafety:
    def test_mate_in_line_blocks(self, coord):
        coord.update_member_position("alpha", "a", (0.0, 0.0, 0.0))
        coord.update_member_position("alpha", "b", (0.5, 0.0, 10.0))
        for mid in ("c", "d"):
            coord.update_member_position("alpha", mid, (30.0, 0.0, 0.0))
        assert coord.is_fire_safe("alpha", "a", (0.0, 0.0, 20.0)) is False

    def test_clear_line(self, coord):
        coord.update_member_position("alpha", "a", (0.0, 0.0, 0.0))
        for mid in ("b", "c", "d"):
            coord.update_member_position("alpha", mid, (5.0, 0.0, 10.0))
        assert coord.is_fire_safe("alpha", "a", (0.0, 0.0, 20.0)) is True

    def test_dead_mates_do_not_block(self, coord):
        coord.update_member_position("alpha", "a", (0.0, 0.0, 0.0))
        for mid in ("b", "c", "d"):
            coord.update_member_position("alpha", mid, (0.0, 0.0, 10.0))
            coord.report_casualty("alpha", mid)
        assert coord.is_fire_safe("alpha", "a", (0.0, 0.0, 20.0)) is True

    def test_unknowns(self, coord):
        assert coord.is_fire_safe("ghost", "a", (0.0, 0.0, 1.0)) is True
        assert coord.is_fire_safe("alpha", "stranger", (0.0, 0.0, 1.0)) is False


class TestReinforcements:
    def test_called_once_at_half_strength(self, coord):
        assert coord.call_reinforcements("alpha", ["bravo", "charlie"]) == []
        coord.report_casualty("alpha", "c")
        coord.report_casualty("alpha", "d")
        called = coord.call_reinforcements("alpha", ["alpha", "bravo", "charlie", "delta"])
        assert called == ["bravo", "charlie"]
        assert coord.get_squad("alpha").reinforcements_pending is True
        assert coord.call_reinforcements("alpha", ["bravo"]) == []


class TestPlayerRead:
    def test_not_enough_history(self, coord):
        for action in _actions("stealth", 4):
            coord.record_player_action(action)
        prediction = coord.predict_player_behavior()
        assert prediction.likely_action == "unknown"
        assert prediction.counter == CounterTactic.HOLD

    def test_majority_predicts_and_counters(self, coord):
        for action in _actions("stealth", 6) + _actions("aggressive", 2, start=10.0):
            coord.record_player_action(action)
        prediction = coord.counter_player("alpha")
        assert prediction.likely_action == "stealth"
        assert prediction.confidence == pytest.approx(0.75)
        assert prediction.counter == CounterTactic.SPREAD_SEARCH
        assert coord.get_squad("alpha").current_tactic.type == SquadTacticType.SURROUND

    def test_flanking_player_turns_flankers_into_suppressors(self, coord):
        for action in _actions("flanking", 5):
            coord.record_player_action(action)
        coord.counter_player("alpha")
        roles = coord.get_squad("alpha").roles
        assert SquadRole.FLANKER not in roles.values()
        assert roles["b"] == SquadRole.SUPPRESSOR

    def test_low_confidence_is_ignored(self, coord):
        for i, kind in enumerate(("stealth", "aggressive", "ranged", "melee", "flanking")):
            coord.record_player_action(PlayerAction(kind, float(i), True))
        assert coord.counter_player("alpha") is None

    def test_history_is_bounded(self, coord):
        for action in _actions("ranged", 60):
            coord.record_player_action(action)
        assert len(coord.player_history) == 50

    def test_reaction_speed(self):
        assert reaction_speed(_actions("x", 1)) == 0.5
        assert reaction_speed(_actions("x", 3, interval=0.5)) == pytest.approx(1.0)
        assert reaction_speed(_actions("x", 3, interval=1.25)) == pytest.approx(0.5)
        assert reaction_speed(_actions("x", 3, interval=3.0)) == 0.0

    def test_assess_skill(self, coord):
        skill = coord.assess_player_skill("alpha", _actions("ranged", 4))
        assert skill == pytest.approx(0.5 + 0.3 / 4 + 0.2)
        assert coord.get_squad("alpha").player_skill == pytest.approx(skill)
        assert coord.assess_player_skill("alpha", []) == 0.5


class TestDifficulty:
    def test_refused_without_governance(self, coord):
        coord.get_squad("alpha").player_skill = 0.8
        assert coord.adapt_difficulty("alpha") is False
        assert coord.get_difficulty_multiplier() == 1.0
        assert coord.get_squad("alpha").current_tactic.type == SquadTacticType.FLANK

    def test_unchanged_target_needs_no_approval(self, coord):
        assert coord.adapt_difficulty("alpha") is True
        assert coord.get_difficulty_multiplier() == 1.0

    def test_approved_change_applies(self):
        governance = GovernanceContext()
        coord = SquadCoordinator(governance=governance)
        coord.create_squad("alpha", ["a", "b", "c"])
        coord.get_squad("alpha").player_skill = 0.9
        assert coord.adapt_difficulty("alpha") is True
        assert coord.get_difficulty_multiplier() == pytest.approx(1.3)
        assert governance.sentinel.difficulty_multiplier == pytest.approx(1.3)

        coord.get_squad("alpha").player_skill = 0.1
        assert coord.adapt_difficulty("alpha") is True
        assert coord.get_difficulty_multiplier() == pytest.approx(0.7)
        assert coord.get_squad("alpha").current_tactic.type == SquadTacticType.ASSAULT

    def test_rejected_change_keeps_multiplier(self):
        governance = GovernanceContext()
        governance.chair.update_subsystem_health("squad", False)
        coord = SquadCoordinator(governance=governance)
        coord.create_squad("alpha", ["a", "b", "c"])
        coord.get_squad("alpha").player_skill = 0.9
        assert coord.adapt_difficulty("alpha") is False
        assert coord.get_difficulty_multiplier() == 1.0


class TestSquadSnapshot:
    def test_round_trip(self, coord):
        coord.update_member_position("alpha", "a", (1.0, 0.0, 2.0))
        coord.plan_tactic("alpha", (0.0, 0.0, 20.0))
        coord.report_casualty("alpha", "d")
        for action in _actions("stealth", 3):
            coord.record_player_action(action)
        data = coord.to_snapshot()
        restored = SquadCoordinator.from_snapshot(data)
        assert restored.to_snapshot() == data
        assert restored.get_squad("alpha").roles == coord.get_squad("alpha").roles

    def test_malformed_snapshot_leaves_state(self, coord):
        before = coord.to_snapshot()
        with pytest.raises(SnapshotError):
            coord.load_snapshot({"squads": {"alpha": {"members": [{"id": 3}]}}})
        assert coord.to_snapshot() == before
