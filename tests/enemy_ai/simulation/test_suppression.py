# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Unit tests for SuppressionService -- fire integration, levels, pinning."""

from __future__ import annotations

import pytest

from enemy_ai.config import settings
from enemy_ai.enums import SuppressionLevel
from enemy_ai.simulation.suppression import (
    EFFECTS,
    FireSource,
    SuppressionService,
    level_for,
    weapon_value,
)

pytestmark = pytest.mark.unit

SHOOTER = (20.0, 0.0, 0.0)


def _sustained_fire(svc: SuppressionService, target: str, ticks: int, start: int = 1) -> int:
    tick = start
    for tick in range(start, start + ticks):
        svc.on_incoming_fire(target, "player", SHOOTER, "lmg", tick)
        svc.update(target, tick)
    return tick


class TestLevels:
    @pytest.mark.parametrize("intensity,level", [
        (0.0, SuppressionLevel.NONE),
        (0.19, SuppressionLevel.NONE),
        (0.2, SuppressionLevel.LIGHT),
        (0.4, SuppressionLevel.MEDIUM),
        (0.65, SuppressionLevel.HEAVY),
        (0.85, SuppressionLevel.PINNED),
        (1.0, SuppressionLevel.PINNED),
    ])
    def test_thresholds(self, intensity, level):
        assert level_for(intensity) == level

    def test_level_is_monotonic_in_intensity(self):
        levels = [level_for(i / 100) for i in range(101)]
        assert all(a <= b for a, b in zip(levels, levels[1:]))

    def test_unknown_weapon_has_default_value(self):
        assert weapon_value("railgun") == 0.1
        assert weapon_value("explosive") == 0.4


class TestFireSource:
    def test_rounds_per_second_is_windowed(self):
        src = FireSource("p", (0, 0, 0), "rifle", start_tick=0, last_shot_tick=0)
        for tick in range(0, 20):
            src.record_shot(tick, 20)
        assert src.rounds_per_second == pytest.approx(20.0)
        # Shots older than the window fall out
        src.record_shot(60, 20)
        assert src.rounds_per_second == pytest.approx(1.0)

    def test_window_follows_tick_rate(self):
        src = FireSource("p", (0, 0, 0), "rifle", start_tick=0, last_shot_tick=0)
        for tick in range(1, 21):
            src.record_shot(tick, 10)
        assert src.rounds_per_second == pytest.approx(10.0)

    def test_rate_winds_down_between_shots(self):
        svc = SuppressionService(ticks_per_second=20)
        for tick in range(1, 21):
            svc.on_incoming_fire("e1", "player", SHOOTER, "rifle", tick)
        (source,) = svc.get_state("e1").sources
        assert source.rounds_per_second == pytest.approx(20.0)
        svc.update("e1", 25)
        assert source.rounds_per_second == pytest.approx(15.0)
        svc.update("e1", 29)
        assert source.rounds_per_second == pytest.approx(11.0)

    def test_tick_rate_defaults_to_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "ticks_per_second", 5)
        assert SuppressionService().ticks_per_second == 5
        assert SuppressionService(ticks_per_second=30).ticks_per_second == 30


class TestIntegration:
    def test_no_fire_no_suppression(self):
        svc = SuppressionService()
        svc.register("e1")
        svc.update("e1", 1)
        assert svc.get_level("e1") == SuppressionLevel.NONE
        assert not svc.is_suppressed("e1")

    def test_sustained_fire_pins(self):
        svc = SuppressionService()
        _sustained_fire(svc, "e1", 30)
        assert svc.is_pinned("e1")
        assert svc.get_level("e1") == SuppressionLevel.PINNED
        assert svc.get_effects("e1") == EFFECTS[SuppressionLevel.PINNED]

    def test_pinned_blocks_return_fire_after_limit(self):
        svc = SuppressionService()
        _sustained_fire(svc, "e1", 15)
        assert svc.is_pinned("e1")
        assert svc.can_return_fire("e1")
        _sustained_fire(svc, "e1", 60, start=16)
        assert not svc.can_return_fire("e1")

    def test_suppression_decays_without_fire(self):
        svc = SuppressionService()
        last = _sustained_fire(svc, "e1", 30)
        for tick in range(last + 1, last + 300):
            svc.update("e1", tick)
        assert svc.get_level("e1") == SuppressionLevel.NONE
        assert svc.can_return_fire("e1")
        assert svc.get_state("e1").sources == []

    def test_intensity_always_in_range(self):
        svc = SuppressionService()
        for tick in range(1, 200):
            for _ in range(5):
                svc.on_incoming_fire("e1", f"s{tick % 3}", SHOOTER, "explosive", tick)
            svc.on_near_miss("e1", SHOOTER, 0.0, "explosive", tick)
            svc.update("e1", tick)
            state = svc.get_state("e1")
            assert 0.0 <= state.intensity <= 1.0
            assert 0.0 <= state.accumulated <= 1.0

    def test_near_miss_beyond_radius_is_ignored(self):
        svc = SuppressionService()
        svc.register("e1")
        svc.on_near_miss("e1", SHOOTER, 6.0, "sniper", 1)
        assert svc.get_state("e1").accumulated == 0.0
        svc.on_near_miss("e1", SHOOTER, 1.0, "sniper", 1)
        assert svc.get_state("e1").accumulated == pytest.approx(0.2 * 0.8 * 1.5)

    def test_cover_reduces_accumulation(self):
        svc = SuppressionService()
        svc.on_incoming_fire("e1", "p", SHOOTER, "explosive", 1)
        before = svc.get_state("e1").accumulated
        svc.apply_cover("e1", True, 0.8)
        assert svc.get_state("e1").accumulated == pytest.approx(before * 0.6)

    def test_cover_ignored_when_not_in_cover(self):
        svc = SuppressionService()
        svc.on_incoming_fire("e1", "p", SHOOTER, "explosive", 1)
        before = svc.get_state("e1").accumulated
        svc.apply_cover("e1", False, 0.8)
        assert svc.get_state("e1").accumulated == before


class TestQueries:
    def test_unknown_entity_defaults(self):
        svc = SuppressionService()
        assert svc.get_level("ghost") == SuppressionLevel.NONE
        assert svc.get_intensity("ghost") == 0.0
        assert svc.can_return_fire("ghost")
        assert svc.accuracy_modifier("ghost") == 1.0
        assert svc.movement_modifier("ghost") == 1.0
        assert svc.morale_drain("ghost") == 0.0

    def test_modifiers_follow_effects(self):
        svc = SuppressionService()
        _sustained_fire(svc, "e1", 30)
        assert svc.accuracy_modifier("e1") == pytest.approx(0.2)
        assert svc.movement_modifier("e1") == pytest.approx(0.1)

    def test_estimate_suppressive_fire(self):
        svc = SuppressionService()
        assert svc.estimate_suppressive_fire("pistol", 1) == SuppressionLevel.NONE
        assert svc.estimate_suppressive_fire("lmg", 20) == SuppressionLevel.PINNED

    def test_squad_status(self):
        svc = SuppressionService()
        for eid in ("a", "b", "c", "d"):
            svc.register(eid)
        status = svc.squad_status(["a", "b", "c", "d"])
        assert status.can_advance
        _sustained_fire(svc, "a", 30)
        status = svc.squad_status(["a", "b", "c", "d"])
        assert status.pinned == ("a",)
        assert not status.can_advance

    def test_half_suppressed_cannot_advance(self):
        svc = SuppressionService()
        for eid in ("a", "b"):
            svc.register(eid)
        svc.get_state("a").level = SuppressionLevel.LIGHT
        assert not svc.squad_status(["a", "b"]).can_advance


class TestSnapshot:
    def test_round_trip(self):
        svc = SuppressionService()
        _sustained_fire(svc, "e1", 12)
        svc.register("e2")
        data = svc.to_snapshot()
        restored = SuppressionService.from_snapshot(data)
        assert restored.to_snapshot() == data
        assert restored.get_level("e1") == svc.get_level("e1")

    def test_restored_service_continues_identically(self):
        svc = SuppressionService()
        last = _sustained_fire(svc, "e1", 12)
        restored = SuppressionService.from_snapshot(svc.to_snapshot())
        for s in (svc, restored):
            _sustained_fire(s, "e1", 5, start=last + 1)
        assert restored.get_intensity("e1") == svc.get_intensity("e1")
