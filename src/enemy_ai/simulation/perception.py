# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""PerceptionService — per-agent sight, hearing and target memory.

Each agent carries a PerceptionState whose effective sight range is
recomputed from the world conditions every update:

    sight   = base_sight * weather_sight * time_of_day * (0.5 + 0.5 * lighting)
    hearing = base_hearing * weather_hearing

Sight is a cone on the x/z ground plane; hearing is a sphere scaled by the
player's noise level.  A remembered target position expires after
``memory_duration`` seconds and the alert level bleeds off slowly.

Unknown agent ids never raise: boolean checks are False, probability is 0
and lookups return None.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from ..enums import Stance, Weather
from ..geometry import Vec3, clamp, distance, signed_angle_to
from ..snapshots import PerceptionSnapshot, validate_snapshot

# Base ranges in metres / degrees / seconds
BASE_SIGHT_RANGE = 30.0
SIGHT_CONE_ANGLE = 120.0
BASE_HEARING_RADIUS = 20.0
MEMORY_DURATION = 60.0
SEARCH_DURATION = 30.0

# (sight multiplier, hearing multiplier)
WEATHER_MODIFIERS: dict[Weather, tuple[float, float]] = {
    Weather.CLEAR: (1.0, 1.0),
    Weather.FOG: (0.4, 1.0),
    Weather.RAIN: (0.7, 0.6),
    Weather.SNOW: (0.6, 0.8),
    Weather.STORM: (0.3, 0.4),
}

STANCE_MODIFIERS: dict[Stance, float] = {
    Stance.STANDING: 1.0,
    Stance.CROUCHING: 0.6,
    Stance.PRONE: 0.3,
}

_DAY = 1.0
_DUSK = 0.7
_NIGHT = 0.4
_DAWN = 0.7

# Alert gained on a confirmed sighting
_SIGHTING_ALERT = 0.3
# Alert lost per second of decay
_ALERT_DECAY = 0.01


def time_of_day_modifier(hour: float) -> float:
    """Sight multiplier for an hour in [0, 24)."""
    if 6 <= hour < 18:
        return _DAY
    if 18 <= hour < 20:
        return _DUSK
    if hour >= 20 or hour < 5:
        return _NIGHT
    return _DAWN


@dataclass(frozen=True)
class PerceptionModifiers:
    """World conditions that shape what an agent can sense."""

    weather: Weather = Weather.CLEAR
    time_of_day: float = 12.0
    lighting: float = 1.0
    player_noise: float = 0.0
    player_stance: Stance = Stance.STANDING


@dataclass
class PerceptionState:
    sight_range: float = BASE_SIGHT_RANGE
    sight_cone_angle: float = SIGHT_CONE_ANGLE
    hearing_radius: float = BASE_HEARING_RADIUS
    last_known_position: Optional[Vec3] = None
    last_seen_time: float = 0.0
    alert_level: float = 0.0
    memory_duration: float = MEMORY_DURATION
    search_duration: float = SEARCH_DURATION


@dataclass
class PerceptionConfig:
    base_sight_range: float = BASE_SIGHT_RANGE
    sight_cone_angle: float = SIGHT_CONE_ANGLE
    base_hearing_radius: float = BASE_HEARING_RADIUS
    memory_duration: float = MEMORY_DURATION
    search_duration: float = SEARCH_DURATION
    weather_modifiers: dict[Weather, tuple[float, float]] = field(
        default_factory=lambda: dict(WEATHER_MODIFIERS)
    )
    stance_modifiers: dict[Stance, float] = field(
        default_factory=lambda: dict(STANCE_MODIFIERS)
    )


class PerceptionService:
    """Tracks perception state for every registered agent."""

    def __init__(
        self,
        config: PerceptionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PerceptionConfig()
        self._clock = clock
        self._states: dict[str, PerceptionState] = {}

    def initialize(self, agent_id: str) -> PerceptionState:
        cfg = self.config
        state = PerceptionState(
            sight_range=cfg.base_sight_range,
            sight_cone_angle=cfg.sight_cone_angle,
            hearing_radius=cfg.base_hearing_radius,
            memory_duration=cfg.memory_duration,
            search_duration=cfg.search_duration,
        )
        self._states[agent_id] = state
        return state

    def get_state(self, agent_id: str) -> PerceptionState | None:
        return self._states.get(agent_id)

    def update(self, agent_id: str, modifiers: PerceptionModifiers) -> PerceptionState:
        """Recompute effective ranges from world conditions.

        Initialises the agent on demand.
        """
        state = self._states.get(agent_id)
        if state is None:
            state = self.initialize(agent_id)

        sight_mult, hearing_mult = self.config.weather_modifiers.get(
            modifiers.weather, (1.0, 1.0)
        )
        light_mult = 0.5 + clamp(modifiers.lighting, 0.0, 1.0) * 0.5
        state.sight_range = (
            self.config.base_sight_range
            * sight_mult
            * time_of_day_modifier(modifiers.time_of_day)
            * light_mult
        )
        state.hearing_radius = self.config.base_hearing_radius * hearing_mult
        return state

    def can_see(self, agent_id: str, position: Vec3, target: Vec3, facing: Vec3) -> bool:
        state = self._states.get(agent_id)
        if state is None:
            return False
        if distance(position, target) > state.sight_range:
            return False
        angle = signed_angle_to(position, target, facing)
        return abs(angle) <= state.sight_cone_angle / 2.0

    def can_hear(self, agent_id: str, position: Vec3, target: Vec3, noise: float) -> bool:
        state = self._states.get(agent_id)
        if state is None:
            return False
        return distance(position, target) <= state.hearing_radius * noise

    def detection_probability(
        self,
        agent_id: str,
        position: Vec3,
        target: Vec3,
        modifiers: PerceptionModifiers,
    ) -> float:
        """Graded detection chance in [0, 1].

        Informational only; can_see / can_hear decide detection.
        """
        state = self._states.get(agent_id)
        if state is None:
            return 0.0
        d = distance(position, target)
        if state.sight_range > 0:
            probability = max(0.0, 1.0 - d / state.sight_range)
        else:
            probability = 0.0
        probability *= self.config.stance_modifiers.get(modifiers.player_stance, 1.0)
        probability += modifiers.player_noise * 0.3
        probability += state.alert_level * 0.2
        return clamp(probability, 0.0, 1.0)

    def set_last_known(self, agent_id: str, position: Vec3) -> None:
        state = self._states.get(agent_id)
        if state is None:
            return
        state.last_known_position = tuple(position)
        state.last_seen_time = self._clock()
        state.alert_level = min(1.0, state.alert_level + _SIGHTING_ALERT)

    def get_last_known(self, agent_id: str) -> Vec3 | None:
        state = self._states.get(agent_id)
        return state.last_known_position if state else None

    def alert(self, agent_id: str, amount: float) -> None:
        """Raise an agent's alert level, e.g. from a squad-mate's callout."""
        state = self._states.get(agent_id)
        if state is None:
            return
        state.alert_level = clamp(state.alert_level + amount, 0.0, 1.0)

    def decay_memory(self, agent_id: str, dt: float) -> None:
        state = self._states.get(agent_id)
        if state is None:
            return
        if state.last_known_position is not None:
            elapsed = self._clock() - state.last_seen_time
            if elapsed > state.memory_duration:
                logger.debug(f"{agent_id} lost track of target after {elapsed:.1f}s")
                state.last_known_position = None
        state.alert_level = max(0.0, state.alert_level - dt * _ALERT_DECAY)

    def clear(self, agent_id: str) -> None:
        self._states.pop(agent_id, None)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._states

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        snap = PerceptionSnapshot(
            states={aid: vars(s) for aid, s in self._states.items()}
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        """Replace all state with a validated snapshot."""
        snap = validate_snapshot(PerceptionSnapshot, data, "perception")
        states: dict[str, PerceptionState] = {}
        for aid, m in snap.states.items():
            states[aid] = PerceptionState(**m.model_dump())
        self._states = states

    @classmethod
    def from_snapshot(
        cls,
        data: dict,
        config: PerceptionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> PerceptionService:
        svc = cls(config=config, clock=clock)
        svc.load_snapshot(data)
        return svc
