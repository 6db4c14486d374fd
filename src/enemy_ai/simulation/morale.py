# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""MoraleService -- per-entity morale and fear with group propagation.

Morale ranges from 0 (broken) to 100 (fully confident); fear from 0 to 100.
Every negative morale change also adds half its size as fear.

Events carry a fixed impact scaled by magnitude.  Negative events spread
fear to group-mates within the event radius (default 20 m), falling off by
half every 10 m and capped at 70% of the original hit.  A frightened
group-mate past its panic threshold may panic (seeded 30% chance) and lose
a further 10 morale.

Losing the group leader, either by ``remove`` or by a leader_killed event,
hits every survivor with a flat -20.

Behaviour thresholds (effective morale = morale - 0.3 * fear):
  - < panic threshold      flee
  - < surrender threshold  surrender
  - fear > 80              panic
  - morale > 70, fear < 30 can rally others
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from ..config import settings
from ..enums import MoraleEventType
from ..geometry import Vec3, clamp, distance
from ..rng import SeededRng
from ..snapshots import MoraleSnapshot, validate_snapshot

MORALE_IMPACTS: dict[MoraleEventType, float] = {
    MoraleEventType.ALLY_KILLED: -15,
    MoraleEventType.ALLY_WOUNDED: -8,
    MoraleEventType.LEADER_KILLED: -30,
    MoraleEventType.ENEMY_KILLED: 20,
    MoraleEventType.TOOK_DAMAGE: -5,
    MoraleEventType.NEAR_MISS: -3,
    MoraleEventType.OUTNUMBERED: -10,
    MoraleEventType.REINFORCEMENTS: 25,
    MoraleEventType.EXPLOSION_NEARBY: -12,
    MoraleEventType.SUPPRESSED: -8,
    MoraleEventType.FLANKED: -15,
    MoraleEventType.AMBUSHED: -20,
    MoraleEventType.VICTORY: 30,
    MoraleEventType.RETREAT_ORDER: -10,
}

DEFAULT_BASE_MORALE = 70.0
DEFAULT_PANIC_THRESHOLD = 25.0
DEFAULT_SURRENDER_THRESHOLD = 10.0

# Fear propagation
FEAR_RADIUS = 20.0
_FEAR_FALLOFF = 0.5  # multiplier per 10 m
_FEAR_MAX_SPREAD = 0.7
_FEAR_RECOVERY = 2.0  # per second
_PANIC_SPREAD_CHANCE = 0.3
_PANIC_HIT = -10.0

# Morale recovery toward base, per second
_MORALE_RECOVERY = 1.0

# Penalties to group-mates when someone in the group dies
_ALLY_CASUALTY_PENALTY = -10.0
_LEADER_CASUALTY_PENALTY = -20.0

# Rally
_RALLY_MIN_LEADER_MORALE = 50.0
_RALLY_MEMBER_CEILING = 60.0
_RALLY_BONUS_FACTOR = 0.3
_RALLY_FEAR_RELIEF = 20.0

PERMANENT = -1.0


@dataclass
class MoraleModifier:
    id: str
    source: str
    value: float
    duration: float = PERMANENT  # seconds; -1 never expires
    stackable: bool = False


@dataclass
class MoraleState:
    entity_id: str
    base_morale: float = DEFAULT_BASE_MORALE
    current_morale: float = DEFAULT_BASE_MORALE
    fear_level: float = 0.0
    panic_threshold: float = DEFAULT_PANIC_THRESHOLD
    surrender_threshold: float = DEFAULT_SURRENDER_THRESHOLD
    modifiers: list[MoraleModifier] = field(default_factory=list)


@dataclass(frozen=True)
class MoraleEvent:
    kind: MoraleEventType
    target_id: str
    magnitude: float = 1.0
    source_id: Optional[str] = None
    radius: Optional[float] = None


@dataclass(frozen=True)
class MoraleBehavior:
    should_flee: bool = False
    should_surrender: bool = False
    should_panic: bool = False
    should_rally: bool = False
    combat_effectiveness: float = 1.0


@dataclass(frozen=True)
class RallyResult:
    success: bool
    affected: int


def combat_effectiveness(state: MoraleState) -> float:
    """Multiplier in [0.3, 1.0]; fear counts half as much as morale."""
    morale_effect = state.current_morale / 100.0
    fear_effect = 1.0 - state.fear_level / 200.0
    return max(0.3, min(1.0, morale_effect * fear_effect))


class MoraleService:
    """Tracks morale and fear for every registered entity and group."""

    def __init__(self, seed: int | None = None) -> None:
        self._states: dict[str, MoraleState] = {}
        # group_id -> ordered member ids
        self._groups: dict[str, list[str]] = {}
        self._leaders: dict[str, str] = {}
        self._positions: dict[str, Vec3] = {}
        self._rng = SeededRng(settings.morale_seed if seed is None else seed)

    # -- Entities --------------------------------------------------------

    def register(
        self,
        entity_id: str,
        base_morale: float = DEFAULT_BASE_MORALE,
        panic_threshold: float = DEFAULT_PANIC_THRESHOLD,
        surrender_threshold: float = DEFAULT_SURRENDER_THRESHOLD,
    ) -> MoraleState:
        base = clamp(base_morale, 0.0, 100.0)
        state = MoraleState(
            entity_id=entity_id,
            base_morale=base,
            current_morale=base,
            panic_threshold=panic_threshold,
            surrender_threshold=surrender_threshold,
        )
        self._states[entity_id] = state
        return state

    def remove(self, entity_id: str) -> None:
        """Forget an entity; a removed leader demoralises the whole group."""
        self._states.pop(entity_id, None)
        self._positions.pop(entity_id, None)
        for group_id, members in self._groups.items():
            if entity_id in members:
                members.remove(entity_id)
            if self._leaders.get(group_id) == entity_id:
                del self._leaders[group_id]
                logger.info(f"Group {group_id} lost its leader {entity_id}")
                for member_id in members:
                    self._apply_change(member_id, _LEADER_CASUALTY_PENALTY)

    def get_state(self, entity_id: str) -> MoraleState | None:
        return self._states.get(entity_id)

    def get_morale(self, entity_id: str) -> float:
        """Current morale; the default base morale for unknown entities."""
        state = self._states.get(entity_id)
        return state.current_morale if state else DEFAULT_BASE_MORALE

    def set_position(self, entity_id: str, position: Vec3) -> None:
        self._positions[entity_id] = tuple(position)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._states

    # -- Groups ----------------------------------------------------------

    def create_group(self, group_id: str, member_ids: list[str], leader_id: str | None = None) -> None:
        self._groups[group_id] = list(dict.fromkeys(member_ids))
        self._leaders.pop(group_id, None)
        if leader_id is not None and leader_id in member_ids:
            self._leaders[group_id] = leader_id

    def add_to_group(self, group_id: str, entity_id: str) -> None:
        members = self._groups.setdefault(group_id, [])
        if entity_id not in members:
            members.append(entity_id)

    def remove_group(self, group_id: str) -> None:
        self._groups.pop(group_id, None)
        self._leaders.pop(group_id, None)

    def get_group_members(self, group_id: str) -> list[str]:
        return list(self._groups.get(group_id, []))

    def get_leader(self, group_id: str) -> str | None:
        return self._leaders.get(group_id)

    def get_group_morale(self, group_id: str) -> float:
        members = self._groups.get(group_id)
        if not members:
            return 0.0
        total = sum(self._states[m].current_morale for m in members if m in self._states)
        return total / len(members)

    def _groupmates(self, entity_id: str) -> list[str]:
        seen: dict[str, None] = {}
        for members in self._groups.values():
            if entity_id in members:
                for m in members:
                    if m != entity_id:
                        seen[m] = None
        return list(seen)

    # -- Events ----------------------------------------------------------

    def process_event(self, event: MoraleEvent) -> None:
        if event.target_id not in self._states:
            return
        impact = MORALE_IMPACTS[event.kind] * event.magnitude
        self._apply_change(event.target_id, impact)

        if impact < 0:
            radius = event.radius if event.radius is not None else FEAR_RADIUS
            self._propagate_fear(event.target_id, abs(impact), radius)

        if event.kind == MoraleEventType.LEADER_KILLED:
            self._group_casualty(event.target_id, _LEADER_CASUALTY_PENALTY)
        elif event.kind == MoraleEventType.ALLY_KILLED:
            self._group_casualty(event.target_id, _ALLY_CASUALTY_PENALTY)

    def _apply_change(self, entity_id: str, change: float) -> None:
        state = self._states.get(entity_id)
        if state is None:
            return
        state.current_morale = clamp(state.current_morale + change, 0.0, 100.0)
        if change < 0:
            state.fear_level = clamp(state.fear_level + abs(change) * 0.5, 0.0, 100.0)

    def _propagate_fear(self, source_id: str, base_fear: float, radius: float) -> None:
        origin = self._positions.get(source_id)
        for member_id in self._groupmates(source_id):
            member = self._states.get(member_id)
            if member is None:
                continue
            pos = self._positions.get(member_id)
            # Unknown positions count as standing at the edge of the radius
            d = distance(origin, pos) if origin is not None and pos is not None else radius
            if d > radius:
                continue
            transfer = base_fear * (_FEAR_FALLOFF ** (d / 10.0)) * _FEAR_MAX_SPREAD
            member.fear_level = clamp(member.fear_level + transfer, 0.0, 100.0)
            if member.fear_level > member.panic_threshold and self._rng.chance(_PANIC_SPREAD_CHANCE):
                logger.debug(f"Panic spread from {source_id} to {member_id}")
                self._apply_change(member_id, _PANIC_HIT)

    def _group_casualty(self, witness_id: str, penalty: float) -> None:
        for member_id in self._groupmates(witness_id):
            self._apply_change(member_id, penalty)

    # -- Behaviour -------------------------------------------------------

    def evaluate_behavior(self, entity_id: str) -> MoraleBehavior:
        state = self._states.get(entity_id)
        if state is None:
            return MoraleBehavior()
        effective = state.current_morale - state.fear_level * 0.3
        return MoraleBehavior(
            should_flee=effective < state.panic_threshold,
            should_surrender=effective < state.surrender_threshold,
            should_panic=state.fear_level > 80,
            should_rally=state.current_morale > 70 and state.fear_level < 30,
            combat_effectiveness=combat_effectiveness(state),
        )

    # -- Recovery --------------------------------------------------------

    def update(self, dt: float) -> None:
        for state in self._states.values():
            if state.current_morale < state.base_morale:
                state.current_morale = min(state.base_morale, state.current_morale + dt * _MORALE_RECOVERY)
            if state.fear_level > 0:
                state.fear_level = max(0.0, state.fear_level - dt * _FEAR_RECOVERY)

            kept = []
            for mod in state.modifiers:
                if mod.duration == PERMANENT:
                    kept.append(mod)
                    continue
                mod.duration -= dt
                if mod.duration > 0:
                    kept.append(mod)
            state.modifiers = kept

    # -- Modifiers -------------------------------------------------------

    def apply_modifier(self, entity_id: str, modifier: MoraleModifier) -> None:
        """Add a timed modifier; non-stackable ones refresh in place."""
        state = self._states.get(entity_id)
        if state is None:
            return
        if not modifier.stackable:
            existing = next((m for m in state.modifiers if m.source == modifier.source), None)
            if existing is not None:
                existing.value = modifier.value
                existing.duration = modifier.duration
                return
        state.modifiers.append(modifier)
        self._apply_change(entity_id, modifier.value)

    def remove_modifier(self, entity_id: str, modifier_id: str) -> None:
        state = self._states.get(entity_id)
        if state is None:
            return
        for i, mod in enumerate(state.modifiers):
            if mod.id == modifier_id:
                del state.modifiers[i]
                self._apply_change(entity_id, -mod.value)
                return

    # -- Rally -----------------------------------------------------------

    def attempt_rally(self, leader_id: str, group_id: str) -> RallyResult:
        leader = self._states.get(leader_id)
        if leader is None or leader.current_morale < _RALLY_MIN_LEADER_MORALE:
            return RallyResult(False, 0)
        members = self._groups.get(group_id)
        if not members:
            return RallyResult(False, 0)

        bonus = leader.current_morale * _RALLY_BONUS_FACTOR
        affected = 0
        for member_id in members:
            if member_id == leader_id:
                continue
            state = self._states.get(member_id)
            if state is not None and state.current_morale < _RALLY_MEMBER_CEILING:
                self._apply_change(member_id, bonus)
                state.fear_level = max(0.0, state.fear_level - _RALLY_FEAR_RELIEF)
                affected += 1
        if affected:
            logger.debug(f"{leader_id} rallied {affected} members of {group_id}")
        return RallyResult(affected > 0, affected)

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        states = {}
        for eid, s in self._states.items():
            states[eid] = {
                "entity_id": s.entity_id,
                "base_morale": s.base_morale,
                "current_morale": s.current_morale,
                "fear_level": s.fear_level,
                "panic_threshold": s.panic_threshold,
                "surrender_threshold": s.surrender_threshold,
                "modifiers": [vars(m) for m in s.modifiers],
            }
        snap = MoraleSnapshot(
            states=states,
            groups=self._groups,
            leaders=self._leaders,
            positions=self._positions,
            rng_state=self._rng.state,
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(MoraleSnapshot, data, "morale")
        states: dict[str, MoraleState] = {}
        for eid, m in snap.states.items():
            states[eid] = MoraleState(
                entity_id=m.entity_id,
                base_morale=m.base_morale,
                current_morale=m.current_morale,
                fear_level=m.fear_level,
                panic_threshold=m.panic_threshold,
                surrender_threshold=m.surrender_threshold,
                modifiers=[MoraleModifier(**mod.model_dump()) for mod in m.modifiers],
            )
        self._states = states
        self._groups = {gid: list(members) for gid, members in snap.groups.items()}
        self._leaders = dict(snap.leaders)
        self._positions = dict(snap.positions)
        self._rng.state = snap.rng_state

    @classmethod
    def from_snapshot(cls, data: dict) -> MoraleService:
        svc = cls()
        svc.load_snapshot(data)
        return svc
