# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""SimulationChair — tick integrity, phase control and proposal gating.

The chair never adds content.  It owns:

- the simulation phase (init -> running <-> paused, anything -> shutdown)
- the tick counter and per-tick timing against a 16 ms budget
- health records for every subsystem a proposal may target
- an ordered list of governance rules every AgentProposal must pass

Rules have a severity.  The first failing ``block`` rule rejects the
proposal with ``[rule name] message``; failing ``warn`` rules are only
published.  Every proposal, approved or not, is logged.

Events (published on the EventBus):
  phase_change, tick_begin, tick_end, performance_warning,
  proposal_approved, proposal_rejected, proposal_warning,
  subsystem_unhealthy, subsystem_recovered, rule_added, rule_removed
"""

from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from loguru import logger

from ..comms.event_bus import EventBus
from ..config import settings
from ..enums import Phase, ProposalType, RuleSeverity
from ..snapshots import ChairSnapshot, validate_snapshot

DEFAULT_SUBSYSTEMS: tuple[str, ...] = (
    "world",
    "player",
    "combat",
    "economy",
    "faction",
    "npc",
    "quest",
    "enemy_ai",
    "perception",
    "suppression",
    "micro_agents",
    "tactics",
    "morale",
    "memory",
    "squad",
)

CONFIDENCE_BY_TIER: dict[int, float] = {1: 0.95, 2: 0.80, 3: 0.70}

UNSEEDED_RANDOM_MARKERS: tuple[str, ...] = (
    "Math.random()",
    "random.random()",
    "random.randint(",
    "unseeded_random",
)

PROTECTED_FIELDS: frozenset[str] = frozenset({"id", "version", "checksum", "created_at", "createdAt"})

CHEATING_PATTERNS: tuple[str, ...] = (
    "omniscient",
    "perfect_accuracy",
    "instant_reaction",
    "see_through_walls",
    "unlimited_resources",
    "god_mode",
)


class PhaseTransitionError(RuntimeError):
    """Raised on an illegal simulation phase transition."""

    def __init__(self, current: Phase, requested: Phase) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move to {requested.value} from phase {current.value}")


@dataclass(frozen=True)
class GovernanceResult:
    passed: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentProposal:
    agent_id: str
    tier: int
    proposal_type: ProposalType
    target_system: str
    payload: Any
    confidence: float
    timestamp: float = 0.0
    approved: Optional[bool] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "tier": self.tier,
            "proposal_type": self.proposal_type.value,
            "target_system": self.target_system,
            "payload": self.payload,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "approved": self.approved,
            "rejection_reason": self.rejection_reason,
        }


@dataclass
class SubsystemMetrics:
    avg_tick_time_ms: float = 0.0
    peak_tick_time_ms: float = 0.0
    memory_usage: float = 0.0
    entity_count: int = 0


@dataclass
class SubsystemState:
    subsystem_id: str
    healthy: bool = True
    last_update_tick: int = 0
    metrics: SubsystemMetrics = field(default_factory=SubsystemMetrics)


@dataclass
class TickContext:
    tick: int
    dt: float
    started_at: float
    subsystems: dict[str, SubsystemState]


@dataclass
class GovernanceRule:
    id: str
    name: str
    check: Callable[[AgentProposal, TickContext], GovernanceResult]
    severity: RuleSeverity = RuleSeverity.BLOCK


def payload_text(payload: Any) -> str:
    """Stable JSON text of a payload for substring checks."""
    return json.dumps(payload, sort_keys=True, default=str)


def iter_keys(payload: Any) -> Iterator[str]:
    """Every mapping key anywhere inside *payload*."""
    if isinstance(payload, dict):
        for key, value in payload.items():
            yield str(key)
            yield from iter_keys(value)
    elif isinstance(payload, (list, tuple)):
        for item in payload:
            yield from iter_keys(item)


# -- Core rules ---------------------------------------------------------------

def check_determinism(proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
    text = payload_text(proposal.payload)
    found = [m for m in UNSEEDED_RANDOM_MARKERS if m in text]
    if found:
        return GovernanceResult(False, "Proposal contains unseeded randomness", {"markers": found})
    return GovernanceResult(True, "Determinism OK")


def proposal_in_bounds(proposal: AgentProposal) -> bool:
    """Known tier and a confidence inside [0, 1]."""
    return proposal.tier in CONFIDENCE_BY_TIER and 0.0 <= proposal.confidence <= 1.0


def check_confidence(proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
    if proposal.tier not in CONFIDENCE_BY_TIER:
        return GovernanceResult(False, f"Unknown tier {proposal.tier}", {"tier": proposal.tier})
    if not 0.0 <= proposal.confidence <= 1.0:
        return GovernanceResult(
            False,
            f"Confidence {proposal.confidence:g} outside [0, 1]",
            {"confidence": proposal.confidence},
        )
    threshold = CONFIDENCE_BY_TIER[proposal.tier]
    if proposal.confidence >= threshold:
        return GovernanceResult(True, f"Confidence {proposal.confidence:g} meets threshold {threshold:g}")
    return GovernanceResult(
        False,
        f"Confidence {proposal.confidence:g} below threshold {threshold:g}",
        {"threshold": threshold},
    )


def check_tick_safety(proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
    target = ctx.subsystems.get(proposal.target_system)
    if target is None:
        return GovernanceResult(False, f"Target system {proposal.target_system} not found")
    if not target.healthy and proposal.proposal_type == ProposalType.MODIFY:
        return GovernanceResult(False, "Cannot modify unhealthy system")
    return GovernanceResult(True, "Tick safety OK")


def check_schema_stability(proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
    if proposal.proposal_type != ProposalType.MODIFY:
        return GovernanceResult(True, "Schema stability OK")
    touched = sorted({k for k in iter_keys(proposal.payload) if k in PROTECTED_FIELDS})
    if touched:
        return GovernanceResult(False, "Proposal modifies protected schema fields", {"fields": touched})
    return GovernanceResult(True, "Schema stability OK")


def check_fair_ai(proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
    text = payload_text(proposal.payload).lower()
    found = [p for p in CHEATING_PATTERNS if p in text]
    if found:
        return GovernanceResult(False, "Proposal contains cheating AI patterns", {"patterns": found})
    return GovernanceResult(True, "Fair AI OK")


def core_rules() -> list[GovernanceRule]:
    return [
        GovernanceRule("determinism", "Determinism Check", check_determinism),
        GovernanceRule("confidence_threshold", "Confidence Threshold", check_confidence),
        GovernanceRule("tick_safety", "Tick Safety Check", check_tick_safety),
        GovernanceRule("schema_stability", "Schema Stability Check", check_schema_stability),
        GovernanceRule("no_cheating_ai", "Fair AI Check", check_fair_ai),
    ]


class SimulationChair:
    """Top-level governance authority for the simulation loop."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        subsystems: tuple[str, ...] = DEFAULT_SUBSYSTEMS,
        tick_budget_ms: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.event_bus = event_bus or EventBus()
        self.tick_budget_ms = settings.tick_budget_ms if tick_budget_ms is None else tick_budget_ms
        self._clock = clock
        self._timer = timer
        self._phase = Phase.INIT
        self._tick = 0
        self._subsystems: dict[str, SubsystemState] = {
            sid: SubsystemState(subsystem_id=sid) for sid in subsystems
        }
        self._rules: list[GovernanceRule] = core_rules()
        self._history: list[AgentProposal] = []
        self._tick_times: deque[float] = deque(maxlen=settings.tick_history_size)

    # -- Phase -----------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def current_tick(self) -> int:
        return self._tick

    def now(self) -> float:
        return self._clock()

    def _set_phase(self, new: Phase) -> None:
        old = self._phase
        self._phase = new
        self.event_bus.publish("phase_change", {"from": old.value, "to": new.value})
        logger.info(f"Simulation phase {old.value} -> {new.value}")

    def start(self) -> None:
        if self._phase not in (Phase.INIT, Phase.PAUSED):
            raise PhaseTransitionError(self._phase, Phase.RUNNING)
        self._set_phase(Phase.RUNNING)

    def pause(self) -> None:
        if self._phase != Phase.RUNNING:
            raise PhaseTransitionError(self._phase, Phase.PAUSED)
        self._set_phase(Phase.PAUSED)

    def shutdown(self) -> None:
        self._set_phase(Phase.SHUTDOWN)

    # -- Ticks -----------------------------------------------------------

    def begin_tick(self, dt: float) -> TickContext:
        self._tick += 1
        ctx = TickContext(
            tick=self._tick,
            dt=dt,
            started_at=self._timer(),
            subsystems=dict(self._subsystems),
        )
        self.event_bus.publish("tick_begin", {"tick": self._tick, "dt": dt})
        return ctx

    def end_tick(self, ctx: TickContext) -> float:
        """Close a tick and return its duration in milliseconds."""
        elapsed_ms = (self._timer() - ctx.started_at) * 1000.0
        self._tick_times.append(elapsed_ms)
        if elapsed_ms > self.tick_budget_ms:
            logger.warning(
                f"Tick {ctx.tick} took {elapsed_ms:.1f}ms (budget {self.tick_budget_ms:g}ms)"
            )
            self.event_bus.publish("performance_warning", {
                "tick": ctx.tick,
                "tick_time_ms": elapsed_ms,
                "threshold_ms": self.tick_budget_ms,
            })
        self.event_bus.publish("tick_end", {"tick": ctx.tick, "tick_time_ms": elapsed_ms})
        return elapsed_ms

    def _context(self) -> TickContext:
        return TickContext(
            tick=self._tick, dt=0.0, started_at=self._timer(), subsystems=dict(self._subsystems)
        )

    # -- Proposals -------------------------------------------------------

    def submit_proposal(self, proposal: AgentProposal) -> GovernanceResult:
        """Run every rule in order; the first failing block rule rejects."""
        ctx = self._context()
        warnings: list[str] = []
        for rule in self._rules:
            result = rule.check(proposal, ctx)
            if result.passed:
                continue
            if rule.severity == RuleSeverity.BLOCK:
                proposal.approved = False
                proposal.rejection_reason = f"[{rule.name}] {result.message}"
                self._record(proposal)
                logger.warning(
                    f"Proposal from {proposal.agent_id} -> {proposal.target_system} rejected: "
                    f"{proposal.rejection_reason}"
                )
                self.event_bus.publish("proposal_rejected", {
                    "proposal": proposal.to_dict(),
                    "rule": rule.id,
                    "reason": result.message,
                })
                return GovernanceResult(
                    False, proposal.rejection_reason, {"rule": rule.id, **result.details}
                )
            if rule.severity == RuleSeverity.WARN:
                warnings.append(f"[{rule.name}] {result.message}")
                self.event_bus.publish("proposal_warning", {
                    "proposal": proposal.to_dict(),
                    "rule": rule.id,
                    "reason": result.message,
                })

        proposal.approved = True
        self._record(proposal)
        self.event_bus.publish("proposal_approved", {"proposal": proposal.to_dict()})
        logger.debug(f"Proposal from {proposal.agent_id} -> {proposal.target_system} approved")
        return GovernanceResult(True, "All governance checks passed", {"warnings": warnings})

    def _record(self, proposal: AgentProposal) -> None:
        # Out-of-range proposals never enter the persisted history
        if not proposal_in_bounds(proposal):
            logger.warning(
                f"Not recording out-of-range proposal from {proposal.agent_id} "
                f"(tier={proposal.tier}, confidence={proposal.confidence:g})"
            )
            return
        self._history.append(proposal)

    def proposal_history(self, limit: int = 100) -> list[AgentProposal]:
        return self._history[-limit:] if limit > 0 else []

    # -- Rules -----------------------------------------------------------

    def add_rule(self, rule: GovernanceRule) -> None:
        self._rules.append(rule)
        self.event_bus.publish("rule_added", {"rule_id": rule.id})

    def remove_rule(self, rule_id: str) -> bool:
        for i, rule in enumerate(self._rules):
            if rule.id == rule_id:
                del self._rules[i]
                self.event_bus.publish("rule_removed", {"rule_id": rule_id})
                return True
        return False

    @property
    def rules(self) -> list[GovernanceRule]:
        return list(self._rules)

    # -- Subsystem health ------------------------------------------------

    def update_subsystem_health(self, subsystem_id: str, healthy: bool, **metrics: Any) -> None:
        state = self._subsystems.get(subsystem_id)
        if state is None:
            return
        was_healthy = state.healthy
        state.healthy = healthy
        state.last_update_tick = self._tick
        for key, value in metrics.items():
            if hasattr(state.metrics, key):
                setattr(state.metrics, key, value)

        if was_healthy and not healthy:
            logger.warning(f"Subsystem {subsystem_id} unhealthy")
            self.event_bus.publish("subsystem_unhealthy", {
                "subsystem": subsystem_id,
                "metrics": vars(state.metrics),
            })
        elif not was_healthy and healthy:
            logger.info(f"Subsystem {subsystem_id} recovered")
            self.event_bus.publish("subsystem_recovered", {"subsystem": subsystem_id})

    def get_subsystem_health(self, subsystem_id: str) -> SubsystemState | None:
        return self._subsystems.get(subsystem_id)

    def all_subsystem_health(self) -> dict[str, SubsystemState]:
        return dict(self._subsystems)

    def performance_metrics(self) -> dict:
        times = list(self._tick_times)
        return {
            "avg_tick_time_ms": sum(times) / len(times) if times else 0.0,
            "peak_tick_time_ms": max(times) if times else 0.0,
            "current_tick": self._tick,
            "healthy_subsystems": sum(1 for s in self._subsystems.values() if s.healthy),
            "total_subsystems": len(self._subsystems),
        }

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        snap = ChairSnapshot(
            phase=self._phase,
            current_tick=self._tick,
            subsystems={
                sid: {
                    "subsystem_id": s.subsystem_id,
                    "healthy": s.healthy,
                    "last_update_tick": s.last_update_tick,
                    "metrics": vars(s.metrics),
                }
                for sid, s in self._subsystems.items()
            },
            proposal_history=[p.to_dict() for p in self._history],
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        """Restore phase, tick, health and history; rules are not persisted."""
        snap = validate_snapshot(ChairSnapshot, data, "chair")
        self._phase = snap.phase
        self._tick = snap.current_tick
        self._subsystems = {
            sid: SubsystemState(
                subsystem_id=s.subsystem_id,
                healthy=s.healthy,
                last_update_tick=s.last_update_tick,
                metrics=SubsystemMetrics(**s.metrics.model_dump()),
            )
            for sid, s in snap.subsystems.items()
        }
        self._history = [AgentProposal(**p.model_dump()) for p in snap.proposal_history]
