# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Runtime settings for the enemy AI stack.

Values come from ``ENEMY_AI_*`` environment variables or a local ``.env``
file.  Import the shared instance::

    from enemy_ai.config import settings
    settings.tick_budget_ms
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnemyAISettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ENEMY_AI_",
        env_file=".env",
        extra="ignore",
    )

    # Tick loop
    tick_budget_ms: float = Field(default=16.0, gt=0)
    ticks_per_second: int = Field(default=20, gt=0)
    tick_history_size: int = Field(default=100, gt=0)

    # Orchestrator context building
    ally_scan_radius: float = Field(default=30.0, ge=0)

    # Fairness
    player_max_health: float = Field(default=100.0, gt=0)

    # Deterministic sequences
    tactics_seed: int = 12345
    morale_seed: int = 4242

    log_level: str = "INFO"


settings = EnemyAISettings()
