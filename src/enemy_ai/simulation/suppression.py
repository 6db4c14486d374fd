# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""SuppressionService — incoming-fire pressure, pinning and its penalties.

Every tick, each registered entity integrates the fire coming from its
active sources into an accumulated value, the smoothed intensity chases
that value, and the suppression level is the highest threshold the
intensity has crossed:

    none < 0.20 <= light < 0.40 <= medium < 0.65 <= heavy < 0.85 <= pinned

Each level carries an effect bundle (accuracy / movement / vision
penalties, morale drain, and which actions remain possible).  A pinned
entity cannot return fire until it has been pinned for 40 ticks.

Fire rate per source is a windowed shot count: the number of shots seen in
the last second of ticks (``settings.ticks_per_second``), refreshed on every
update so a silent source winds down before it goes stale.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace

from loguru import logger

from ..config import settings
from ..enums import SuppressionLevel
from ..geometry import Vec3, clamp
from ..snapshots import SuppressionSnapshot, validate_snapshot

# A source with no shots for this many ticks stops contributing
_STALE_TICKS = 10
# Fire sustained longer than this many ticks gets the bonus
_SUSTAINED_TICKS = 20
_SUSTAINED_BONUS = 1.5
# Fraction of incoming pressure integrated per tick
_INTEGRATION = 0.1
_DECAY_PER_TICK = 0.02
_INTENSITY_SMOOTHING = 0.2
# Pinned entities may return fire while pinned_ticks is below this
_PINNED_RETURN_TICKS = 40
# Near misses inside this radius add suppression
_NEAR_MISS_RADIUS = 5.0
_NEAR_MISS_SCALE = 1.5

THRESHOLDS: tuple[tuple[SuppressionLevel, float], ...] = (
    (SuppressionLevel.PINNED, 0.85),
    (SuppressionLevel.HEAVY, 0.65),
    (SuppressionLevel.MEDIUM, 0.4),
    (SuppressionLevel.LIGHT, 0.2),
)

WEAPON_SUPPRESSION: dict[str, float] = {
    "pistol": 0.05,
    "smg": 0.08,
    "rifle": 0.12,
    "shotgun": 0.15,
    "sniper": 0.2,
    "lmg": 0.1,
    "explosive": 0.4,
}
DEFAULT_WEAPON_SUPPRESSION = 0.1


@dataclass(frozen=True)
class SuppressionEffects:
    accuracy_penalty: float = 0.0
    movement_penalty: float = 0.0
    morale_drain: float = 0.0  # morale lost per tick
    vision_penalty: float = 0.0
    can_ads: bool = True
    can_sprint: bool = True
    can_vault: bool = True


EFFECTS: dict[SuppressionLevel, SuppressionEffects] = {
    SuppressionLevel.NONE: SuppressionEffects(),
    SuppressionLevel.LIGHT: SuppressionEffects(0.15, 0.1, 0.5, 0.1, True, True, True),
    SuppressionLevel.MEDIUM: SuppressionEffects(0.35, 0.25, 1.5, 0.25, True, False, True),
    SuppressionLevel.HEAVY: SuppressionEffects(0.55, 0.5, 3.0, 0.4, False, False, False),
    SuppressionLevel.PINNED: SuppressionEffects(0.8, 0.9, 5.0, 0.6, False, False, False),
}


def weapon_value(weapon_class: str) -> float:
    return WEAPON_SUPPRESSION.get(weapon_class, DEFAULT_WEAPON_SUPPRESSION)


def level_for(intensity: float) -> SuppressionLevel:
    """Highest level whose threshold *intensity* has reached."""
    for level, threshold in THRESHOLDS:
        if intensity >= threshold:
            return level
    return SuppressionLevel.NONE


@dataclass
class FireSource:
    source_id: str
    position: Vec3
    weapon_class: str
    start_tick: int
    last_shot_tick: int
    shot_ticks: deque[int] = field(default_factory=deque)
    rounds_per_second: float = 0.0

    def record_shot(self, tick: int, ticks_per_second: int) -> None:
        self.last_shot_tick = tick
        self.shot_ticks.append(tick)
        self.refresh_rate(tick, ticks_per_second)

    def refresh_rate(self, tick: int, ticks_per_second: int) -> None:
        """Count the shots that landed within the last second of ticks."""
        while self.shot_ticks and tick - self.shot_ticks[0] >= ticks_per_second:
            self.shot_ticks.popleft()
        self.rounds_per_second = float(len(self.shot_ticks))


@dataclass
class SuppressionState:
    entity_id: str
    level: SuppressionLevel = SuppressionLevel.NONE
    intensity: float = 0.0
    accumulated: float = 0.0
    sources: list[FireSource] = field(default_factory=list)
    last_update_tick: int = 0
    effects: SuppressionEffects = EFFECTS[SuppressionLevel.NONE]
    is_pinned: bool = False
    pinned_ticks: int = 0
    can_return: bool = True


@dataclass(frozen=True)
class SquadSuppressionStatus:
    suppressed_count: int
    pinned: tuple[str, ...]
    can_advance: bool


class SuppressionService:
    """Per-entity suppression tracking driven by incoming fire."""

    def __init__(self, ticks_per_second: int | None = None) -> None:
        self.ticks_per_second = ticks_per_second or settings.ticks_per_second
        self._states: dict[str, SuppressionState] = {}

    def register(self, entity_id: str) -> SuppressionState:
        state = SuppressionState(entity_id=entity_id)
        self._states[entity_id] = state
        return state

    def unregister(self, entity_id: str) -> None:
        self._states.pop(entity_id, None)

    def get_state(self, entity_id: str) -> SuppressionState | None:
        return self._states.get(entity_id)

    def _ensure(self, entity_id: str) -> SuppressionState:
        state = self._states.get(entity_id)
        if state is None:
            state = self.register(entity_id)
        return state

    # -- Core update -----------------------------------------------------

    def update(self, entity_id: str, tick: int) -> SuppressionState:
        state = self._ensure(entity_id)

        state.sources = [s for s in state.sources if tick - s.last_shot_tick < _STALE_TICKS]

        incoming = 0.0
        for source in state.sources:
            source.refresh_rate(tick, self.ticks_per_second)
            bonus = _SUSTAINED_BONUS if tick - source.start_tick > _SUSTAINED_TICKS else 1.0
            incoming += weapon_value(source.weapon_class) * source.rounds_per_second * bonus

        if incoming > 0:
            state.accumulated = min(1.0, state.accumulated + incoming * _INTEGRATION)
        else:
            state.accumulated = max(0.0, state.accumulated - _DECAY_PER_TICK)

        state.intensity += (state.accumulated - state.intensity) * _INTENSITY_SMOOTHING
        state.intensity = clamp(state.intensity, 0.0, 1.0)

        previous = state.level
        state.level = level_for(state.intensity)
        state.effects = EFFECTS[state.level]
        if state.level != previous:
            logger.debug(f"{entity_id} suppression {previous.name} -> {state.level.name}")

        if state.level == SuppressionLevel.PINNED:
            state.is_pinned = True
            state.pinned_ticks += 1
            state.can_return = state.pinned_ticks < _PINNED_RETURN_TICKS
        else:
            state.is_pinned = False
            state.pinned_ticks = 0
            state.can_return = True

        state.last_update_tick = tick
        return state

    # -- Incoming fire ---------------------------------------------------

    def on_incoming_fire(
        self,
        target_id: str,
        source_id: str,
        source_position: Vec3,
        weapon_class: str,
        tick: int,
    ) -> None:
        state = self._ensure(target_id)
        source = next((s for s in state.sources if s.source_id == source_id), None)
        if source is None:
            source = FireSource(
                source_id=source_id,
                position=tuple(source_position),
                weapon_class=weapon_class,
                start_tick=tick,
                last_shot_tick=tick,
            )
            state.sources.append(source)

        source.position = tuple(source_position)
        source.weapon_class = weapon_class
        source.record_shot(tick, self.ticks_per_second)

        state.accumulated = min(1.0, state.accumulated + weapon_value(weapon_class))

    def on_near_miss(
        self,
        target_id: str,
        source_position: Vec3,
        miss_distance: float,
        weapon_class: str,
        tick: int,
    ) -> None:
        """Closer misses suppress harder; nothing beyond 5 m."""
        state = self._ensure(target_id)
        factor = max(0.0, 1.0 - miss_distance / _NEAR_MISS_RADIUS)
        spike = weapon_value(weapon_class) * factor * _NEAR_MISS_SCALE
        state.accumulated = min(1.0, state.accumulated + spike)

    def apply_cover(self, entity_id: str, in_cover: bool, quality: float) -> None:
        state = self._states.get(entity_id)
        if state is None or not in_cover:
            return
        quality = clamp(quality, 0.0, 1.0)
        state.accumulated *= 1.0 - quality * 0.5
        state.effects = replace(
            state.effects, morale_drain=state.effects.morale_drain * (1.0 - quality * 0.3)
        )

    # -- Queries ---------------------------------------------------------

    def is_suppressed(self, entity_id: str) -> bool:
        state = self._states.get(entity_id)
        return state.level != SuppressionLevel.NONE if state else False

    def is_pinned(self, entity_id: str) -> bool:
        state = self._states.get(entity_id)
        return state.is_pinned if state else False

    def get_level(self, entity_id: str) -> SuppressionLevel:
        state = self._states.get(entity_id)
        return state.level if state else SuppressionLevel.NONE

    def get_intensity(self, entity_id: str) -> float:
        state = self._states.get(entity_id)
        return state.intensity if state else 0.0

    def get_effects(self, entity_id: str) -> SuppressionEffects:
        state = self._states.get(entity_id)
        return state.effects if state else EFFECTS[SuppressionLevel.NONE]

    def can_return_fire(self, entity_id: str) -> bool:
        state = self._states.get(entity_id)
        return state.can_return if state else True

    def accuracy_modifier(self, entity_id: str) -> float:
        return 1.0 - self.get_effects(entity_id).accuracy_penalty

    def movement_modifier(self, entity_id: str) -> float:
        return 1.0 - self.get_effects(entity_id).movement_penalty

    def morale_drain(self, entity_id: str) -> float:
        return self.get_effects(entity_id).morale_drain

    def estimate_suppressive_fire(self, weapon_class: str, burst_ticks: int) -> SuppressionLevel:
        """Level a target would likely reach under a planned burst."""
        intensity = min(1.0, weapon_value(weapon_class) * burst_ticks * 0.5)
        return level_for(intensity)

    def squad_status(self, entity_ids: list[str]) -> SquadSuppressionStatus:
        suppressed = 0
        pinned: list[str] = []
        for eid in entity_ids:
            state = self._states.get(eid)
            if state is None:
                continue
            if state.level != SuppressionLevel.NONE:
                suppressed += 1
            if state.is_pinned:
                pinned.append(eid)
        can_advance = not pinned and suppressed < len(entity_ids) / 2
        return SquadSuppressionStatus(suppressed, tuple(pinned), can_advance)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._states

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        states = {}
        for eid, s in self._states.items():
            states[eid] = {
                "entity_id": s.entity_id,
                "level": s.level,
                "intensity": s.intensity,
                "accumulated": s.accumulated,
                "sources": [
                    {
                        "source_id": src.source_id,
                        "position": src.position,
                        "weapon_class": src.weapon_class,
                        "start_tick": src.start_tick,
                        "last_shot_tick": src.last_shot_tick,
                        "shot_ticks": list(src.shot_ticks),
                        "rounds_per_second": src.rounds_per_second,
                    }
                    for src in s.sources
                ],
                "last_update_tick": s.last_update_tick,
                "effects": vars(s.effects),
                "is_pinned": s.is_pinned,
                "pinned_ticks": s.pinned_ticks,
                "can_return": s.can_return,
            }
        return SuppressionSnapshot(states=states).model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(SuppressionSnapshot, data, "suppression")
        states: dict[str, SuppressionState] = {}
        for eid, m in snap.states.items():
            states[eid] = SuppressionState(
                entity_id=m.entity_id,
                level=m.level,
                intensity=m.intensity,
                accumulated=m.accumulated,
                sources=[
                    FireSource(
                        source_id=src.source_id,
                        position=src.position,
                        weapon_class=src.weapon_class,
                        start_tick=src.start_tick,
                        last_shot_tick=src.last_shot_tick,
                        shot_ticks=deque(src.shot_ticks),
                        rounds_per_second=src.rounds_per_second,
                    )
                    for src in m.sources
                ],
                last_update_tick=m.last_update_tick,
                effects=SuppressionEffects(**m.effects.model_dump()),
                is_pinned=m.is_pinned,
                pinned_ticks=m.pinned_ticks,
                can_return=m.can_return,
            )
        self._states = states

    @classmethod
    def from_snapshot(cls, data: dict) -> SuppressionService:
        svc = cls()
        svc.load_snapshot(data)
        return svc
