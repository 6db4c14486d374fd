# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""API routers for the enemy AI service."""

from app.routers.enemy_ai import router as enemy_ai_router

__all__ = ["enemy_ai_router"]
