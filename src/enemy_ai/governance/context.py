# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""GovernanceContext — one chair, one sentinel, one submit call.

Components that change simulation rules or difficulty take a context in
their constructor and route every change through :meth:`submit`.
"""

from __future__ import annotations

from typing import Any

from ..comms.event_bus import EventBus
from ..enums import ProposalType, RuleSeverity
from .chair import AgentProposal, GovernanceResult, GovernanceRule, SimulationChair
from .sentinel import BalanceSentinel, extract_values


class GovernanceContext:
    """Owns the chair and sentinel; installs the sentinel as a block rule."""

    def __init__(
        self,
        chair: SimulationChair | None = None,
        sentinel: BalanceSentinel | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        if chair is not None:
            self.event_bus = chair.event_bus
            self.chair = chair
        else:
            self.event_bus = event_bus or EventBus()
            self.chair = SimulationChair(event_bus=self.event_bus)
        self.sentinel = sentinel or BalanceSentinel()
        self.chair.add_rule(GovernanceRule(
            id="balance_sentinel",
            name="Balance Sentinel",
            check=self.sentinel.check,
            severity=RuleSeverity.BLOCK,
        ))

    def submit(
        self,
        agent_id: str,
        tier: int,
        proposal_type: ProposalType,
        target_system: str,
        payload: Any,
        confidence: float,
    ) -> GovernanceResult:
        proposal = AgentProposal(
            agent_id=agent_id,
            tier=tier,
            proposal_type=proposal_type,
            target_system=target_system,
            payload=payload,
            confidence=confidence,
            timestamp=self.chair.now(),
        )
        result = self.chair.submit_proposal(proposal)
        if result.passed:
            multiplier = extract_values(payload).get("difficulty_multiplier")
            if isinstance(multiplier, (int, float)) and not isinstance(multiplier, bool):
                self.sentinel.note_difficulty(float(multiplier))
        return result

    def status(self) -> dict:
        """Combined chair and sentinel view for dashboards."""
        return {
            "phase": self.chair.phase.value,
            "current_tick": self.chair.current_tick,
            "performance": self.chair.performance_metrics(),
            "subsystems": {
                sid: {"healthy": s.healthy, "last_update_tick": s.last_update_tick}
                for sid, s in self.chair.all_subsystem_health().items()
            },
            "balance": {
                "enabled": self.sentinel.enabled,
                "metrics": vars(self.sentinel.get_metrics()),
                "difficulty_multiplier": self.sentinel.difficulty_multiplier,
                "violation_count": self.sentinel.violation_count,
            },
        }

    def to_snapshot(self) -> dict:
        return {"chair": self.chair.to_snapshot(), "sentinel": self.sentinel.to_snapshot()}
