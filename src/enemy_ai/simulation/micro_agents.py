# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""MicroAgentEvaluator — four internal drives resolved into one behaviour.

Each enemy runs four small evaluators against the same CombatContext:

  aggression  -- how often to attack and how much risk to accept
  tactics     -- which way the agent leans (flank, push, suppress, ...)
  perception  -- how alert it is and how hard it searches
  morale      -- panic, will to fight, surrender threshold

``resolve`` runs all four and arbitrates in a fixed order: morale overrides
tactics, tactics overrides aggression.  Resolution is a pure function of
(weights, context), so identical inputs always give identical behaviour.

Weights adapt slowly from combat outcomes via ``update_weights``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from ..enums import Action, CombatOutcome, MovementStyle, TacticLean
from ..geometry import clamp
from ..snapshots import MicroAgentSnapshot, validate_snapshot


@dataclass
class MicroAgentWeights:
    aggression_base: float = 0.5
    health_weight: float = 0.3
    ally_weight: float = 0.4
    flank_preference: float = 0.6
    cover_preference: float = 0.7
    casualty_impact: float = 0.2
    duration_decay: float = 0.05


@dataclass(frozen=True)
class CombatContext:
    """Value snapshot of an agent's combat situation."""

    health: float
    max_health: float
    ally_count: int = 0
    enemy_count: int = 1
    threat_level: float = 0.0
    combat_duration: float = 0.0
    recent_casualties: int = 0
    distance_to_player: float = 0.0
    has_cover: bool = False
    is_outnumbered: bool = False

    @property
    def health_fraction(self) -> float:
        if self.max_health <= 0:
            return 0.0
        return clamp(self.health / self.max_health, 0.0, 1.0)


@dataclass(frozen=True)
class AggressionOutput:
    attack_frequency: float = 0.5
    risk_tolerance: float = 0.5
    target_priority: tuple[str, ...] = ("player",)


@dataclass(frozen=True)
class TacticsOutput:
    recommended: TacticLean = TacticLean.DEFEND
    movement: MovementStyle = MovementStyle.CAUTIOUS
    use_coordination: bool = False


@dataclass(frozen=True)
class PerceptionWillOutput:
    alertness: float = 0.5
    search_intensity: float = 0.5
    tracking_accuracy: float = 0.5


@dataclass(frozen=True)
class MoraleOutput:
    panic_level: float = 0.0
    will_to_fight: float = 1.0
    surrender_threshold: float = 0.15


@dataclass
class MicroAgentOutputs:
    aggression: AggressionOutput = field(default_factory=AggressionOutput)
    tactics: TacticsOutput = field(default_factory=TacticsOutput)
    perception: PerceptionWillOutput = field(default_factory=PerceptionWillOutput)
    morale: MoraleOutput = field(default_factory=MoraleOutput)


@dataclass(frozen=True)
class ResolvedBehavior:
    action: Action
    intensity: float
    coordination: bool
    priority: float


HOLD = ResolvedBehavior(Action.HOLD, 0.5, False, 0.0)

_LEAN_TO_ACTION: dict[TacticLean, Action] = {
    TacticLean.FLANK: Action.FLANK,
    TacticLean.PUSH: Action.ATTACK,
    TacticLean.SUPPRESS: Action.ATTACK,
    TacticLean.DEFEND: Action.DEFEND,
    TacticLean.RETREAT: Action.RETREAT,
}

# Panic above this forces a retreat
_PANIC_RETREAT = 0.7


class MicroAgentEvaluator:
    """Holds per-agent weights and the latest evaluator outputs."""

    def __init__(self) -> None:
        self._weights: dict[str, MicroAgentWeights] = {}
        self._outputs: dict[str, MicroAgentOutputs] = {}

    def initialize(self, agent_id: str, weights: MicroAgentWeights | None = None) -> MicroAgentOutputs:
        self._weights[agent_id] = replace(weights) if weights else MicroAgentWeights()
        outputs = MicroAgentOutputs()
        self._outputs[agent_id] = outputs
        return outputs

    def get_outputs(self, agent_id: str) -> MicroAgentOutputs | None:
        return self._outputs.get(agent_id)

    def get_weights(self, agent_id: str) -> MicroAgentWeights | None:
        return self._weights.get(agent_id)

    def clear(self, agent_id: str) -> None:
        self._weights.pop(agent_id, None)
        self._outputs.pop(agent_id, None)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._outputs

    # -- Evaluators ------------------------------------------------------

    def evaluate_aggression(self, agent_id: str, ctx: CombatContext) -> AggressionOutput:
        outputs = self._outputs.get(agent_id)
        if outputs is None:
            return AggressionOutput()
        w = self._weights[agent_id]
        health = ctx.health_fraction
        advantage = ctx.ally_count / max(1, ctx.enemy_count)
        threat = clamp(ctx.threat_level, 0.0, 1.0)

        aggression = w.aggression_base
        aggression -= (1.0 - health) * w.health_weight
        aggression += (advantage - 1.0) * w.ally_weight
        aggression -= threat * 0.2
        aggression = clamp(aggression, 0.0, 1.0)

        if threat > 0.7:
            priority = ("player", "allies")
        else:
            priority = ("weakest", "player")
        outputs.aggression = AggressionOutput(aggression, aggression * health, priority)
        return outputs.aggression

    def evaluate_tactics(self, agent_id: str, ctx: CombatContext) -> TacticsOutput:
        outputs = self._outputs.get(agent_id)
        if outputs is None:
            return TacticsOutput()
        w = self._weights[agent_id]
        has_advantage = ctx.ally_count > ctx.enemy_count

        if ctx.health_fraction < 0.3:
            lean, movement = TacticLean.RETREAT, MovementStyle.EVASIVE
        elif has_advantage and w.flank_preference > 0.5:
            lean, movement = TacticLean.FLANK, MovementStyle.AGGRESSIVE
        elif ctx.has_cover and w.cover_preference > 0.5:
            lean, movement = TacticLean.SUPPRESS, MovementStyle.CAUTIOUS
        elif has_advantage:
            lean, movement = TacticLean.PUSH, MovementStyle.AGGRESSIVE
        else:
            lean, movement = TacticLean.DEFEND, MovementStyle.CAUTIOUS

        outputs.tactics = TacticsOutput(lean, movement, ctx.ally_count > 1)
        return outputs.tactics

    def evaluate_perception(self, agent_id: str, ctx: CombatContext) -> PerceptionWillOutput:
        outputs = self._outputs.get(agent_id)
        if outputs is None:
            return PerceptionWillOutput()
        threat = clamp(ctx.threat_level, 0.0, 1.0)
        outputs.perception = PerceptionWillOutput(
            alertness=min(1.0, 0.3 + threat * 0.7),
            search_intensity=0.8 if ctx.distance_to_player > 20 else 0.4,
            tracking_accuracy=clamp(1.0 - ctx.distance_to_player / 50.0, 0.3, 1.0),
        )
        return outputs.perception

    def evaluate_morale(self, agent_id: str, ctx: CombatContext) -> MoraleOutput:
        outputs = self._outputs.get(agent_id)
        if outputs is None:
            return MoraleOutput()
        w = self._weights[agent_id]

        panic = ctx.recent_casualties * w.casualty_impact
        panic += ctx.combat_duration * w.duration_decay
        panic += 0.2 if ctx.is_outnumbered else 0.0
        panic = clamp(panic, 0.0, 1.0)

        will = max(0.0, 1.0 - panic - (1.0 - ctx.health_fraction) * 0.3)
        outputs.morale = MoraleOutput(panic, will, 0.15 + panic * 0.1)
        return outputs.morale

    # -- Arbitration -----------------------------------------------------

    def resolve(self, agent_id: str, ctx: CombatContext) -> ResolvedBehavior:
        """Run every evaluator and pick one behaviour.

        Morale overrides tactics, which overrides aggression.  Unknown
        agents hold.
        """
        outputs = self._outputs.get(agent_id)
        if outputs is None:
            return HOLD

        self.evaluate_aggression(agent_id, ctx)
        self.evaluate_tactics(agent_id, ctx)
        self.evaluate_perception(agent_id, ctx)
        self.evaluate_morale(agent_id, ctx)

        if outputs.morale.will_to_fight < outputs.morale.surrender_threshold:
            return ResolvedBehavior(Action.SURRENDER, 0.0, False, 10.0)
        if outputs.morale.panic_level > _PANIC_RETREAT:
            return ResolvedBehavior(Action.RETREAT, 1.0, False, 9.0)

        action = _LEAN_TO_ACTION.get(outputs.tactics.recommended, Action.HOLD)
        frequency = outputs.aggression.attack_frequency
        return ResolvedBehavior(action, frequency, outputs.tactics.use_coordination, frequency * 5.0)

    def update_weights(self, agent_id: str, outcome: CombatOutcome) -> None:
        """Nudge weights after a combat outcome."""
        w = self._weights.get(agent_id)
        if w is None:
            return
        if outcome in (CombatOutcome.HIT, CombatOutcome.KILL):
            w.aggression_base = min(1.0, w.aggression_base + 0.05)
        elif outcome == CombatOutcome.MISS:
            w.aggression_base = max(0.0, w.aggression_base - 0.02)
        elif outcome == CombatOutcome.DAMAGED:
            w.aggression_base = max(0.0, w.aggression_base - 0.1)
            w.cover_preference = min(1.0, w.cover_preference + 0.1)

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        outputs = {}
        for aid, o in self._outputs.items():
            outputs[aid] = {
                "aggression": vars(o.aggression),
                "tactics": vars(o.tactics),
                "perception": vars(o.perception),
                "morale": vars(o.morale),
            }
        snap = MicroAgentSnapshot(
            weights={aid: vars(w) for aid, w in self._weights.items()},
            outputs=outputs,
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(MicroAgentSnapshot, data, "micro_agents")
        weights = {aid: MicroAgentWeights(**m.model_dump()) for aid, m in snap.weights.items()}
        outputs: dict[str, MicroAgentOutputs] = {}
        for aid, m in snap.outputs.items():
            outputs[aid] = MicroAgentOutputs(
                aggression=AggressionOutput(
                    m.aggression.attack_frequency,
                    m.aggression.risk_tolerance,
                    tuple(m.aggression.target_priority),
                ),
                tactics=TacticsOutput(
                    m.tactics.recommended, m.tactics.movement, m.tactics.use_coordination
                ),
                perception=PerceptionWillOutput(**m.perception.model_dump()),
                morale=MoraleOutput(**m.morale.model_dump()),
            )
        for aid in outputs:
            weights.setdefault(aid, MicroAgentWeights())
        self._weights = weights
        self._outputs = outputs

    @classmethod
    def from_snapshot(cls, data: dict) -> MicroAgentEvaluator:
        svc = cls()
        svc.load_snapshot(data)
        return svc
