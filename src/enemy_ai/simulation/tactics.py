# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""TacticsEngine — data-driven tactic selection from a prioritised rule table.

A TacticRule is a list of conditions over the agent's TacticContext plus the
tactic to run when all of them hold.  ``evaluate`` picks the highest
priority rule that matches and is off cooldown for that agent, then turns
the tactic into a destination:

  direct_assault    5 m toward the player
  flank_left/right  15 m sideways + 5 m forward
  pincer            20 m sideways (seeded side) + 10 m forward
  retreat_regroup   20 m away from the player
  ambush_setup      30 m past the player along the line of approach
  high_ground       10 m sideways and 5 m up
  suppressive_fire  2 m back
  bait_and_switch   8 m forward
  defensive_hold    stay put

New rules are proposals: ``add_rule`` sends them through governance and
only installs the ones that are approved.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Union

from loguru import logger

from ..config import settings
from ..enums import Comparator, ConditionAttribute, ProposalType, TacticType, Weather
from ..geometry import Vec3, ground_direction
from ..rng import SeededRng
from ..snapshots import TacticsSnapshot, validate_snapshot

if TYPE_CHECKING:
    from ..governance.context import GovernanceContext

AGENT_ID = "tactics_engine"


@dataclass(frozen=True)
class TacticCondition:
    attribute: ConditionAttribute
    comparator: Comparator
    value: Union[float, str]


@dataclass(frozen=True)
class TacticRule:
    id: str
    name: str
    conditions: tuple[TacticCondition, ...]
    tactic: TacticType
    priority: float
    cooldown_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "conditions": [
                {"attribute": c.attribute.value, "comparator": c.comparator.value, "value": c.value}
                for c in self.conditions
            ],
            "tactic": self.tactic.value,
            "priority": self.priority,
            "cooldown_seconds": self.cooldown_seconds,
        }


def _cond(attribute: str, comparator: str, value) -> TacticCondition:
    return TacticCondition(ConditionAttribute(attribute), Comparator(comparator), value)


FALLBACK_RULE = TacticRule(
    "default_assault", "Direct assault (default)", (), TacticType.DIRECT_ASSAULT, 10, 0
)

DEFAULT_RULES: tuple[TacticRule, ...] = (
    TacticRule(
        "retreat_low_health", "Retreat when critically wounded",
        (_cond("health", "<", 0.2),),
        TacticType.RETREAT_REGROUP, 100, 30,
    ),
    TacticRule(
        "retreat_low_morale", "Retreat when morale broken",
        (_cond("morale", "<", 20),),
        TacticType.RETREAT_REGROUP, 95, 30,
    ),
    TacticRule(
        "retreat_outnumbered", "Retreat when heavily outnumbered",
        (_cond("allies", "<", 1), _cond("enemies", ">=", 3)),
        TacticType.RETREAT_REGROUP, 90, 45,
    ),
    TacticRule(
        "flank_with_allies", "Flank when have numerical advantage",
        (_cond("allies", ">=", 2), _cond("distance", ">", 15)),
        TacticType.PINCER, 70, 20,
    ),
    TacticRule(
        "flank_single", "Solo flank when player distracted",
        (_cond("enemies", ">=", 2), _cond("distance", ">", 20)),
        TacticType.FLANK_LEFT, 60, 15,
    ),
    TacticRule(
        "ambush_night", "Set ambush at night",
        (_cond("time", "<", 6), _cond("distance", ">", 30)),
        TacticType.AMBUSH_SETUP, 75, 60,
    ),
    TacticRule(
        "ambush_rain", "Ambush in rain (reduced visibility)",
        (_cond("weather", "==", "rain"), _cond("distance", ">", 25)),
        TacticType.AMBUSH_SETUP, 70, 60,
    ),
    TacticRule(
        "high_ground_hills", "Seek high ground in hills",
        (_cond("terrain", "==", "hills"), _cond("distance", ">", 20)),
        TacticType.HIGH_GROUND, 65, 30,
    ),
    TacticRule(
        "defensive_wounded", "Hold defensive when wounded",
        (_cond("health", "<", 0.5), _cond("cover", "==", 1)),
        TacticType.DEFENSIVE_HOLD, 80, 10,
    ),
    FALLBACK_RULE,
)


@dataclass(frozen=True)
class TacticContext:
    agent_id: str
    health: float
    max_health: float
    position: Vec3
    player_position: Vec3
    morale: float = 70.0
    ally_count: int = 0
    enemy_count: int = 1
    distance_to_player: float = 0.0
    has_cover: bool = False
    weather: Weather = Weather.CLEAR
    time_of_day: float = 12.0
    terrain: str = "plains"

    @property
    def health_fraction(self) -> float:
        return self.health / self.max_health if self.max_health > 0 else 0.0


@dataclass(frozen=True)
class TacticResult:
    tactic: TacticType
    target_position: Optional[Vec3]
    should_call_backup: bool
    should_retreat: bool
    confidence: float
    reasoning: str
    rule_id: str = ""


def _context_value(attribute: ConditionAttribute, ctx: TacticContext) -> Union[float, str]:
    if attribute == ConditionAttribute.HEALTH:
        return ctx.health_fraction
    if attribute == ConditionAttribute.MORALE:
        return ctx.morale
    if attribute == ConditionAttribute.ALLIES:
        return ctx.ally_count
    if attribute == ConditionAttribute.ENEMIES:
        return ctx.enemy_count
    if attribute == ConditionAttribute.DISTANCE:
        return ctx.distance_to_player
    if attribute == ConditionAttribute.COVER:
        return 1 if ctx.has_cover else 0
    if attribute == ConditionAttribute.WEATHER:
        return ctx.weather.value
    if attribute == ConditionAttribute.TIME:
        return ctx.time_of_day
    if attribute == ConditionAttribute.TERRAIN:
        return ctx.terrain
    return 0


def compare(actual: Union[float, str], comparator: Comparator, expected: Union[float, str]) -> bool:
    """Apply *comparator*; string operands only support equality.

    For strings, ``==`` tests equality and every other comparator tests
    inequality.
    """
    if isinstance(actual, str) or isinstance(expected, str):
        if comparator == Comparator.EQ:
            return actual == expected
        return actual != expected
    if comparator == Comparator.LT:
        return actual < expected
    if comparator == Comparator.GT:
        return actual > expected
    if comparator == Comparator.EQ:
        return actual == expected
    if comparator == Comparator.LE:
        return actual <= expected
    if comparator == Comparator.GE:
        return actual >= expected
    return False


def rule_matches(rule: TacticRule, ctx: TacticContext) -> bool:
    return all(
        compare(_context_value(c.attribute, ctx), c.comparator, c.value)
        for c in rule.conditions
    )


def should_call_backup(ctx: TacticContext, tactic: TacticType) -> bool:
    if ctx.ally_count < ctx.enemy_count:
        return True
    if tactic == TacticType.PINCER and ctx.ally_count < 2:
        return True
    return ctx.health_fraction < 0.3


def confidence_for(rule: TacticRule, matching: int) -> float:
    """Higher priority raises confidence; more matching rules lower it."""
    return min(0.95, (rule.priority / 100.0) * (1.0 / (1.0 + matching * 0.1)) + 0.3)


class TacticsEngine:
    """Selects per-agent tactics from an ordered, governed rule table."""

    def __init__(
        self,
        governance: GovernanceContext | None = None,
        seed: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        rules: tuple[TacticRule, ...] | list[TacticRule] = DEFAULT_RULES,
    ) -> None:
        self.governance = governance
        self._rng = SeededRng(settings.tactics_seed if seed is None else seed)
        self._clock = clock
        self._rules: list[TacticRule] = sorted(rules, key=lambda r: -r.priority)
        self._cooldowns: dict[tuple[str, str], float] = {}
        self._last_tactics: dict[str, TacticType] = {}

    # -- Evaluation ------------------------------------------------------

    def evaluate(self, ctx: TacticContext) -> TacticResult:
        now = self._clock()
        applicable: list[TacticRule] = []
        for rule in self._rules:
            used_at = self._cooldowns.get((ctx.agent_id, rule.id))
            if used_at is not None and now - used_at < rule.cooldown_seconds:
                continue
            if rule_matches(rule, ctx):
                applicable.append(rule)

        # Stable: equal priorities keep table order
        applicable.sort(key=lambda r: -r.priority)
        if applicable:
            selected = applicable[0]
        else:
            selected = next((r for r in self._rules if r.id == FALLBACK_RULE.id), FALLBACK_RULE)

        self._cooldowns[(ctx.agent_id, selected.id)] = now
        self._last_tactics[ctx.agent_id] = selected.tactic

        result = TacticResult(
            tactic=selected.tactic,
            target_position=self._destination(selected.tactic, ctx),
            should_call_backup=should_call_backup(ctx, selected.tactic),
            should_retreat=selected.tactic == TacticType.RETREAT_REGROUP,
            confidence=confidence_for(selected, len(applicable)),
            reasoning=f"Selected {selected.name} (priority {selected.priority:g})",
            rule_id=selected.id,
        )
        logger.debug(f"{ctx.agent_id}: {result.reasoning}")
        return result

    def _destination(self, tactic: TacticType, ctx: TacticContext) -> Vec3 | None:
        pos, player = ctx.position, ctx.player_position
        direction = ground_direction(pos, player)
        if direction is None:
            return None
        dx, dz, _ = direction
        # Perpendicular (left of the line to the player)
        px, pz = -dz, dx
        x, y, z = pos

        if tactic == TacticType.DIRECT_ASSAULT:
            return (x + dx * 5, y, z + dz * 5)
        if tactic == TacticType.FLANK_LEFT:
            return (x + px * 15 + dx * 5, y, z + pz * 15 + dz * 5)
        if tactic == TacticType.FLANK_RIGHT:
            return (x - px * 15 + dx * 5, y, z - pz * 15 + dz * 5)
        if tactic == TacticType.PINCER:
            side = 1 if self._rng.random() > 0.5 else -1
            return (x + px * 20 * side + dx * 10, y, z + pz * 20 * side + dz * 10)
        if tactic == TacticType.RETREAT_REGROUP:
            return (x - dx * 20, y, z - dz * 20)
        if tactic == TacticType.AMBUSH_SETUP:
            return (player[0] + dx * 30, y, player[2] + dz * 30)
        if tactic == TacticType.HIGH_GROUND:
            return (x + px * 10, y + 5, z + pz * 10)
        if tactic == TacticType.SUPPRESSIVE_FIRE:
            return (x - dx * 2, y, z - dz * 2)
        if tactic == TacticType.BAIT_AND_SWITCH:
            return (x + dx * 8, y, z + dz * 8)
        return None

    # -- Rule management -------------------------------------------------

    def add_rule(self, rule: TacticRule) -> bool:
        """Propose a new rule; install it only if governance approves."""
        if self.governance is None:
            logger.warning(f"Tactic rule {rule.id} rejected: no governance attached")
            return False
        result = self.governance.submit(
            agent_id=AGENT_ID,
            tier=2,
            proposal_type=ProposalType.ADD,
            target_system="tactics",
            payload=rule.to_dict(),
            confidence=0.9,
        )
        if not result.passed:
            logger.warning(f"Tactic rule {rule.id} rejected: {result.message}")
            return False
        self._rules.append(rule)
        self._rules.sort(key=lambda r: -r.priority)
        logger.info(f"Tactic rule {rule.id} installed (priority {rule.priority:g})")
        return True

    def remove_rule(self, rule_id: str) -> bool:
        for i, rule in enumerate(self._rules):
            if rule.id == rule_id:
                del self._rules[i]
                return True
        return False

    def get_rules(self) -> list[TacticRule]:
        return list(self._rules)

    def get_last_tactic(self, agent_id: str) -> TacticType | None:
        return self._last_tactics.get(agent_id)

    def clear_cooldowns(self) -> None:
        self._cooldowns.clear()

    def forget(self, agent_id: str) -> None:
        """Drop cooldowns and last tactic for a removed agent."""
        self._last_tactics.pop(agent_id, None)
        for key in [k for k in self._cooldowns if k[0] == agent_id]:
            del self._cooldowns[key]

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        snap = TacticsSnapshot(
            rules=[rule.to_dict() for rule in self._rules],
            rng_state=self._rng.state,
            cooldowns=[
                {"agent_id": a, "rule_id": r, "used_at": t}
                for (a, r), t in self._cooldowns.items()
            ],
            last_tactics=self._last_tactics,
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(TacticsSnapshot, data, "tactics")
        rules = [
            TacticRule(
                id=r.id,
                name=r.name,
                conditions=tuple(
                    TacticCondition(c.attribute, c.comparator, c.value) for c in r.conditions
                ),
                tactic=r.tactic,
                priority=r.priority,
                cooldown_seconds=r.cooldown_seconds,
            )
            for r in snap.rules
        ]
        self._rules = sorted(rules, key=lambda r: -r.priority)
        self._rng.state = snap.rng_state
        self._cooldowns = {(c.agent_id, c.rule_id): c.used_at for c in snap.cooldowns}
        self._last_tactics = dict(snap.last_tactics)

    @classmethod
    def from_snapshot(
        cls,
        data: dict,
        governance: GovernanceContext | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> TacticsEngine:
        engine = cls(governance=governance, clock=clock)
        engine.load_snapshot(data)
        return engine
