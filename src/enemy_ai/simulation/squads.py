# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""SquadCoordinator — squad-level roles, tactics and player read.

Architecture
------------
Each squad is an ordered list of members.  Roles are a pure function of
the alive members' order:

  - index 0                      leader
  - index 1 (4+ alive)           flanker
  - last index (3+ alive)        suppressor
  - index 2 (5+ alive)           medic
  - everyone else                pointman

Roles are reassigned whenever a member dies, so the order of the
survivors alone decides who leads.

Tactics:
  - ``plan_tactic`` picks retreat / surround / flank from the alive count
    and the player-skill estimate and lays out up to three flanking routes
    (origin, a lateral waypoint at -60/0/+60 degrees, target).
  - ``coordinate_flanking`` hands those routes to the alive flankers.
  - ``is_fire_safe`` keeps members out of each other's line of fire.

Player read:
  The coordinator keeps the last 50 player actions.  The majority action
  over the last 20 predicts the player's next move and maps to a counter
  (stealth -> spread search, aggressive -> defensive formation, ...).
  ``adapt_difficulty`` turns the skill estimate into a difficulty
  multiplier, which is a governed change and only applies on approval.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from loguru import logger

from ..enums import CounterTactic, ProposalType, SquadRole, SquadTacticType
from ..geometry import ORIGIN, Vec3, centroid, point_segment_distance
from ..snapshots import SquadSnapshot, validate_snapshot

if TYPE_CHECKING:
    from ..governance.context import GovernanceContext

AGENT_ID = "squad_coordinator"

PLAYER_HISTORY_SIZE = 50
PREDICTION_WINDOW = 20
MIN_ACTIONS_FOR_PREDICTION = 5
COUNTER_CONFIDENCE = 0.4

# Members closer than this to a line of fire block the shot
FRIENDLY_FIRE_TOLERANCE = 2.0
MAX_FLANK_ROUTES = 3
MAX_REINFORCEMENT_SQUADS = 2

# Reaction-speed normalisation, mean interval between player actions
_FAST_INTERVAL_MS = 500.0
_SLOW_INTERVAL_MS = 2000.0

COUNTERS: dict[str, CounterTactic] = {
    "stealth": CounterTactic.SPREAD_SEARCH,
    "aggressive": CounterTactic.DEFENSIVE_FORMATION,
    "ranged": CounterTactic.CLOSE_DISTANCE,
    "melee": CounterTactic.MAINTAIN_DISTANCE,
    "flanking": CounterTactic.WATCH_FLANKS,
}

_COUNTER_TACTIC: dict[CounterTactic, SquadTacticType] = {
    CounterTactic.SPREAD_SEARCH: SquadTacticType.SURROUND,
    CounterTactic.DEFENSIVE_FORMATION: SquadTacticType.HOLD,
    CounterTactic.CLOSE_DISTANCE: SquadTacticType.ASSAULT,
    CounterTactic.MAINTAIN_DISTANCE: SquadTacticType.FLANK,
}


@dataclass
class SquadMember:
    id: str
    role: SquadRole = SquadRole.POINTMAN
    position: Vec3 = ORIGIN
    health: float = 100.0
    max_health: float = 100.0
    is_alive: bool = True


@dataclass
class SquadTactic:
    type: SquadTacticType = SquadTacticType.HOLD
    primary_target: Vec3 = ORIGIN
    flanking_routes: list[list[Vec3]] = field(default_factory=list)
    suppression_targets: list[Vec3] = field(default_factory=list)


@dataclass
class SquadState:
    squad_id: str
    members: list[SquadMember] = field(default_factory=list)
    current_tactic: SquadTactic = field(default_factory=SquadTactic)
    player_skill: float = 0.5
    reinforcements_pending: bool = False
    formation_center: Vec3 = ORIGIN

    @property
    def alive_members(self) -> list[SquadMember]:
        return [m for m in self.members if m.is_alive]

    @property
    def roles(self) -> dict[str, SquadRole]:
        """Role of every alive member."""
        return {m.id: m.role for m in self.members if m.is_alive}

    def get_member(self, member_id: str) -> SquadMember | None:
        return next((m for m in self.members if m.id == member_id), None)


@dataclass(frozen=True)
class PlayerAction:
    kind: str
    timestamp: float  # seconds
    success: bool
    position: Optional[Vec3] = None


@dataclass(frozen=True)
class PredictedBehavior:
    likely_action: str
    confidence: float
    counter: CounterTactic


UNKNOWN_PREDICTION = PredictedBehavior("unknown", 0.2, CounterTactic.HOLD)


def role_for(index: int, count: int) -> SquadRole:
    """Role for the member at *index* among *count* alive members."""
    if index == 0:
        return SquadRole.LEADER
    if count >= 4 and index == 1:
        return SquadRole.FLANKER
    if count >= 3 and index == count - 1:
        return SquadRole.SUPPRESSOR
    if count >= 5 and index == 2:
        return SquadRole.MEDIC
    return SquadRole.POINTMAN


def reaction_speed(actions: list[PlayerAction]) -> float:
    """1.0 for a 500 ms mean action interval, 0.0 for 2000 ms or slower."""
    if len(actions) < 2:
        return 0.5
    total = sum(actions[i].timestamp - actions[i - 1].timestamp for i in range(1, len(actions)))
    mean_ms = total / (len(actions) - 1) * 1000.0
    span = _SLOW_INTERVAL_MS - _FAST_INTERVAL_MS
    return max(0.0, min(1.0, 1.0 - (mean_ms - _FAST_INTERVAL_MS) / span))


def flanking_routes(origin: Vec3, target: Vec3, count: int) -> list[list[Vec3]]:
    """Up to three routes bending -60, 0 and +60 degrees around the midpoint.

    Angles are relative to the approach line, with 0 being the lateral
    direction, so routes rotate with the origin->target heading.
    """
    dx = target[0] - origin[0]
    dz = target[2] - origin[2]
    d = math.hypot(dx, dz)
    flank_distance = d * 0.5
    mid_x = (origin[0] + target[0]) / 2.0
    mid_z = (origin[2] + target[2]) / 2.0
    lateral = math.atan2(dz, dx) - math.pi / 2.0
    routes = []
    for i in range(min(count, MAX_FLANK_ROUTES)):
        angle = lateral + (i - 1) * (math.pi / 3.0)
        waypoint = (
            mid_x + math.cos(angle) * flank_distance,
            origin[1],
            mid_z + math.sin(angle) * flank_distance,
        )
        routes.append([tuple(origin), waypoint, tuple(target)])
    return routes


class SquadCoordinator:
    """Squad brain: roles, tactics, reinforcements and difficulty."""

    def __init__(self, governance: GovernanceContext | None = None) -> None:
        self.governance = governance
        self._squads: dict[str, SquadState] = {}
        self._player_history: deque[PlayerAction] = deque(maxlen=PLAYER_HISTORY_SIZE)
        self._difficulty_multiplier = 1.0

    # -- Squad lifecycle -------------------------------------------------

    def create_squad(self, squad_id: str, member_ids: list[str]) -> SquadState:
        squad = SquadState(
            squad_id=squad_id,
            members=[SquadMember(id=mid) for mid in dict.fromkeys(member_ids)],
        )
        self.assign_roles(squad)
        self._squads[squad_id] = squad
        logger.info(f"Squad {squad_id} formed with {len(squad.members)} members")
        return squad

    def get_squad(self, squad_id: str) -> SquadState | None:
        return self._squads.get(squad_id)

    def squad_ids(self) -> list[str]:
        return list(self._squads)

    def disband_squad(self, squad_id: str) -> None:
        if self._squads.pop(squad_id, None) is not None:
            logger.info(f"Squad {squad_id} disbanded")

    def squad_of(self, member_id: str) -> str | None:
        for squad in self._squads.values():
            if squad.get_member(member_id) is not None:
                return squad.squad_id
        return None

    # -- Roles -----------------------------------------------------------

    def assign_roles(self, squad: SquadState) -> None:
        alive = squad.alive_members
        for index, member in enumerate(alive):
            member.role = role_for(index, len(alive))

    # -- Member updates --------------------------------------------------

    def update_member_position(self, squad_id: str, member_id: str, position: Vec3) -> None:
        squad = self._squads.get(squad_id)
        if squad is None:
            return
        member = squad.get_member(member_id)
        if member is not None:
            member.position = tuple(position)
        alive = squad.alive_members
        if alive:
            squad.formation_center = centroid([m.position for m in alive])

    def update_member_health(self, squad_id: str, member_id: str, health: float, max_health: float) -> None:
        squad = self._squads.get(squad_id)
        member = squad.get_member(member_id) if squad else None
        if member is not None:
            member.health = health
            member.max_health = max_health

    def report_casualty(self, squad_id: str, member_id: str) -> None:
        squad = self._squads.get(squad_id)
        if squad is None:
            return
        member = squad.get_member(member_id)
        if member is None or not member.is_alive:
            return
        member.is_alive = False
        member.health = 0.0
        self.assign_roles(squad)
        alive = squad.alive_members
        if alive:
            squad.formation_center = centroid([m.position for m in alive])
        logger.info(f"Squad {squad_id} lost {member_id}; {len(alive)} remain")

    # -- Player skill & difficulty --------------------------------------

    def assess_player_skill(self, squad_id: str, actions: list[PlayerAction]) -> float:
        squad = self._squads.get(squad_id)
        if squad is None or not actions:
            return 0.5
        success_rate = sum(1 for a in actions if a.success) / len(actions)
        variety = len({a.kind for a in actions}) / max(1, len(actions))
        skill = success_rate * 0.5 + variety * 0.3 + reaction_speed(actions) * 0.2
        squad.player_skill = max(0.0, min(1.0, skill))
        return squad.player_skill

    def adapt_difficulty(self, squad_id: str) -> bool:
        """Request a difficulty change from the squad's skill estimate.

        Returns True when governance approved the new multiplier.
        """
        squad = self._squads.get(squad_id)
        if squad is None:
            return False
        skill = squad.player_skill
        if skill > 0.7:
            target = 1.3
        elif skill < 0.3:
            target = 0.7
        else:
            target = 1.0

        if skill > 0.6:
            squad.current_tactic.type = SquadTacticType.FLANK
        elif skill < 0.4:
            squad.current_tactic.type = SquadTacticType.ASSAULT

        if target == self._difficulty_multiplier:
            return True
        if self.governance is None:
            logger.warning(f"Difficulty change for {squad_id} refused: no governance attached")
            return False
        result = self.governance.submit(
            agent_id=AGENT_ID,
            tier=2,
            proposal_type=ProposalType.MODIFY,
            target_system="squad",
            payload={"squad_id": squad_id, "difficulty_multiplier": target},
            confidence=0.9,
        )
        if not result.passed:
            logger.warning(f"Difficulty change for {squad_id} rejected: {result.message}")
            return False
        logger.info(f"Difficulty multiplier {self._difficulty_multiplier:g} -> {target:g}")
        self._difficulty_multiplier = target
        return True

    def get_difficulty_multiplier(self) -> float:
        return self._difficulty_multiplier

    # -- Tactics ---------------------------------------------------------

    def plan_tactic(self, squad_id: str, player_position: Vec3) -> SquadTactic | None:
        squad = self._squads.get(squad_id)
        if squad is None:
            return None
        target = tuple(player_position)
        alive = squad.alive_members
        if len(alive) <= 2:
            squad.current_tactic = SquadTactic(SquadTacticType.RETREAT, target)
            return squad.current_tactic

        if len(alive) >= 4 and squad.player_skill < 0.6:
            kind = SquadTacticType.SURROUND
        else:
            kind = SquadTacticType.FLANK

        squad.current_tactic = SquadTactic(
            type=kind,
            primary_target=target,
            flanking_routes=flanking_routes(squad.formation_center, target, len(alive)),
            suppression_targets=[target],
        )
        return squad.current_tactic

    def coordinate_flanking(self, squad_id: str) -> dict[str, list[Vec3]]:
        squad = self._squads.get(squad_id)
        if squad is None:
            return {}
        routes = squad.current_tactic.flanking_routes
        flankers = [m for m in squad.alive_members if m.role == SquadRole.FLANKER]
        return {f.id: routes[i] for i, f in enumerate(flankers) if i < len(routes)}

    def call_reinforcements(self, squad_id: str, nearby_squad_ids: list[str]) -> list[str]:
        """Ask for help once the squad is down to half strength."""
        squad = self._squads.get(squad_id)
        if squad is None or squad.reinforcements_pending:
            return []
        if len(squad.alive_members) > len(squad.members) * 0.5:
            return []
        squad.reinforcements_pending = True
        called = [sid for sid in nearby_squad_ids if sid != squad_id][:MAX_REINFORCEMENT_SQUADS]
        logger.info(f"Squad {squad_id} calling reinforcements from {called}")
        return called

    def is_fire_safe(
        self,
        squad_id: str,
        shooter_id: str,
        target: Vec3,
        shooter_position: Vec3 | None = None,
    ) -> bool:
        """False if a living squad-mate stands within 2 m of the line of fire."""
        squad = self._squads.get(squad_id)
        if squad is None:
            return True
        if shooter_position is None:
            shooter = squad.get_member(shooter_id)
            if shooter is None:
                return False
            shooter_position = shooter.position
        for member in squad.alive_members:
            if member.id == shooter_id:
                continue
            if point_segment_distance(member.position, shooter_position, target) < FRIENDLY_FIRE_TOLERANCE:
                return False
        return True

    # -- Player prediction ----------------------------------------------

    def record_player_action(self, action: PlayerAction) -> None:
        self._player_history.append(action)

    @property
    def player_history(self) -> list[PlayerAction]:
        return list(self._player_history)

    def predict_player_behavior(self) -> PredictedBehavior:
        if len(self._player_history) < MIN_ACTIONS_FOR_PREDICTION:
            return UNKNOWN_PREDICTION
        window = list(self._player_history)[-PREDICTION_WINDOW:]
        counts: dict[str, int] = {}
        for action in window:
            counts[action.kind] = counts.get(action.kind, 0) + 1

        likely, best = "unknown", 0
        for kind, count in counts.items():
            if count > best:
                likely, best = kind, count
        confidence = best / min(PREDICTION_WINDOW, len(self._player_history))
        return PredictedBehavior(likely, confidence, COUNTERS.get(likely, CounterTactic.HOLD))

    def counter_player(self, squad_id: str) -> PredictedBehavior | None:
        """Apply the predicted counter to a squad when confident enough."""
        squad = self._squads.get(squad_id)
        if squad is None:
            return None
        prediction = self.predict_player_behavior()
        if prediction.confidence < COUNTER_CONFIDENCE:
            return None
        if prediction.counter == CounterTactic.WATCH_FLANKS:
            for member in squad.members:
                if member.role == SquadRole.FLANKER:
                    member.role = SquadRole.SUPPRESSOR
        elif prediction.counter in _COUNTER_TACTIC:
            squad.current_tactic.type = _COUNTER_TACTIC[prediction.counter]
        logger.debug(f"Squad {squad_id} countering {prediction.likely_action} with {prediction.counter.value}")
        return prediction

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        squads = {}
        for sid, s in self._squads.items():
            squads[sid] = {
                "squad_id": s.squad_id,
                "members": [vars(m) for m in s.members],
                "current_tactic": vars(s.current_tactic),
                "player_skill": s.player_skill,
                "reinforcements_pending": s.reinforcements_pending,
                "formation_center": s.formation_center,
            }
        snap = SquadSnapshot(
            squads=squads,
            player_history=[vars(a) for a in self._player_history],
            difficulty_multiplier=self._difficulty_multiplier,
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(SquadSnapshot, data, "squad")
        squads: dict[str, SquadState] = {}
        for sid, m in snap.squads.items():
            tactic = m.current_tactic
            squads[sid] = SquadState(
                squad_id=m.squad_id,
                members=[SquadMember(**mem.model_dump()) for mem in m.members],
                current_tactic=SquadTactic(
                    type=tactic.type,
                    primary_target=tactic.primary_target,
                    flanking_routes=[list(route) for route in tactic.flanking_routes],
                    suppression_targets=list(tactic.suppression_targets),
                ),
                player_skill=m.player_skill,
                reinforcements_pending=m.reinforcements_pending,
                formation_center=m.formation_center,
            )
        self._squads = squads
        self._player_history = deque(
            (PlayerAction(**a.model_dump()) for a in snap.player_history),
            maxlen=PLAYER_HISTORY_SIZE,
        )
        self._difficulty_multiplier = snap.difficulty_multiplier

    @classmethod
    def from_snapshot(cls, data: dict, governance: GovernanceContext | None = None) -> SquadCoordinator:
        coordinator = cls(governance=governance)
        coordinator.load_snapshot(data)
        return coordinator
