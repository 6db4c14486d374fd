# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Governance layer: SimulationChair, BalanceSentinel and their context."""

from .chair import (
    AgentProposal,
    GovernanceResult,
    GovernanceRule,
    PhaseTransitionError,
    SimulationChair,
    TickContext,
)
from .context import GovernanceContext
from .sentinel import BalanceSentinel, BalanceViolation, EnemyBalanceProfile

__all__ = [
    "AgentProposal",
    "BalanceSentinel",
    "BalanceViolation",
    "EnemyBalanceProfile",
    "GovernanceContext",
    "GovernanceResult",
    "GovernanceRule",
    "PhaseTransitionError",
    "SimulationChair",
    "TickContext",
]
