# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Enemy AI — layered adversarial NPC decision stack.

This package contains the per-agent sensing, suppression, micro-agent
drive resolution, tactics rule engine, morale and social memory services,
the squad coordinator, and the governance layer that gates every
AI-originated parameter change before it reaches the simulation.

The orchestrator (``enemy_ai.stack.EnemyAIStack``) wires these together
into one tick-driven loop.
"""

__version__ = "0.1.0"
