# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""FastAPI application hosting the enemy AI stack.

Run with::

    uvicorn app.main:app
"""

from __future__ import annotations

import sys

from fastapi import FastAPI
from loguru import logger

from enemy_ai import __version__
from enemy_ai.config import settings
from enemy_ai.stack import EnemyAIStack
from app.routers import enemy_ai_router


def create_app(stack: EnemyAIStack | None = None) -> FastAPI:
    """Build the app with *stack* (or a fresh one) on ``app.state``."""
    app = FastAPI(title="Enemy AI", version=__version__)
    app.include_router(enemy_ai_router)
    app.state.enemy_ai_stack = stack or EnemyAIStack()
    return app


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


configure_logging()
app = create_app()
