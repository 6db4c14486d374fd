# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Per-agent and per-squad enemy AI services.

Each service owns its own per-entity state and exposes snapshot
export/import.  The orchestrator in ``enemy_ai.stack`` drives them.
"""

from .cover import CoverObject, CoverSystem
from .micro_agents import CombatContext, MicroAgentEvaluator, MicroAgentWeights, ResolvedBehavior
from .morale import MoraleEvent, MoraleService
from .perception import PerceptionModifiers, PerceptionService
from .social_memory import SocialMemoryLedger, derive_disposition
from .squads import PlayerAction, SquadCoordinator
from .suppression import SuppressionService
from .tactics import TacticContext, TacticResult, TacticRule, TacticsEngine

__all__ = [
    "CombatContext",
    "CoverObject",
    "CoverSystem",
    "MicroAgentEvaluator",
    "MicroAgentWeights",
    "MoraleEvent",
    "MoraleService",
    "PerceptionModifiers",
    "PerceptionService",
    "PlayerAction",
    "ResolvedBehavior",
    "SocialMemoryLedger",
    "SquadCoordinator",
    "SuppressionService",
    "TacticContext",
    "TacticResult",
    "TacticRule",
    "TacticsEngine",
    "derive_disposition",
]
