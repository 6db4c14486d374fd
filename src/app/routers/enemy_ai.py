# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Enemy AI API -- governed proposals, world context, per-agent updates."""

from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from loguru import logger
from pydantic import BaseModel, Field

from enemy_ai.enums import ProposalType, Stance, Weather
from enemy_ai.governance import PhaseTransitionError

router = APIRouter(prefix="/api/enemy-ai", tags=["enemy-ai"])


class ProposalRequest(BaseModel):
    agent_id: str
    tier: int = Field(ge=1, le=3)
    proposal_type: ProposalType
    target_system: str
    payload: Any = None
    confidence: float = Field(ge=0.0, le=1.0)


class PhaseRequest(BaseModel):
    action: Literal["start", "pause", "shutdown"]


class WorldUpdate(BaseModel):
    player_position: Optional[tuple[float, float, float]] = None
    player_noise: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    player_stance: Optional[Stance] = None
    weather: Optional[Weather] = None
    time_of_day: Optional[float] = Field(default=None, ge=0.0, lt=24.0)
    lighting: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    terrain: Optional[str] = None


class UpdateRequest(BaseModel):
    dt: float = Field(default=0.05, gt=0.0)


def _get_stack(request: Request):
    """Retrieve the EnemyAIStack attached to the app."""
    stack = getattr(request.app.state, "enemy_ai_stack", None)
    if stack is None:
        raise HTTPException(503, "Enemy AI stack not available")
    return stack


@router.post("/proposals")
async def submit_proposal(request: Request, body: ProposalRequest):
    """Submit a change proposal through governance."""
    stack = _get_stack(request)
    result = stack.governance.submit(
        agent_id=body.agent_id,
        tier=body.tier,
        proposal_type=body.proposal_type,
        target_system=body.target_system,
        payload=body.payload,
        confidence=body.confidence,
    )
    return jsonable_encoder({
        "passed": result.passed,
        "message": result.message,
        "details": result.details,
    })


@router.get("/proposals")
async def list_proposals(request: Request, limit: int = 50):
    """Most recent proposals, oldest first."""
    stack = _get_stack(request)
    history = stack.chair.proposal_history(limit)
    return {"proposals": jsonable_encoder([p.to_dict() for p in history]), "count": len(history)}


@router.get("/governance/status")
async def governance_status(request: Request):
    stack = _get_stack(request)
    return jsonable_encoder(stack.governance.status())


@router.post("/governance/phase")
async def change_phase(request: Request, body: PhaseRequest):
    """Start, pause or shut down the simulation."""
    stack = _get_stack(request)
    try:
        getattr(stack, body.action)()
    except PhaseTransitionError as exc:
        raise HTTPException(409, str(exc))
    return {"phase": stack.chair.phase.value}


@router.post("/world")
async def update_world(request: Request, body: WorldUpdate):
    """Apply world context fields that are present in the request."""
    stack = _get_stack(request)
    if body.player_position is not None:
        stack.set_player_position(body.player_position)
    if body.player_noise is not None:
        stack.set_player_noise(body.player_noise)
    if body.player_stance is not None:
        stack.set_player_stance(body.player_stance)
    stack.set_world_context(
        weather=body.weather,
        time_of_day=body.time_of_day,
        lighting=body.lighting,
        terrain=body.terrain,
    )
    return jsonable_encoder(vars(stack.world))


@router.post("/agents/{agent_id}/update")
async def update_agent(request: Request, agent_id: str, body: UpdateRequest | None = None):
    """Run one AI update for a single agent."""
    stack = _get_stack(request)
    dt = body.dt if body is not None else UpdateRequest().dt
    result = stack.update(agent_id, dt)
    if result is None:
        raise HTTPException(404, f"Agent {agent_id} not found")
    return jsonable_encoder(result)


@router.post("/tick")
async def tick(request: Request, body: UpdateRequest | None = None):
    """Advance the whole stack one tick; a no-op unless running."""
    stack = _get_stack(request)
    dt = body.dt if body is not None else UpdateRequest().dt
    results = stack.tick(dt)
    return {
        "phase": stack.chair.phase.value,
        "tick": stack.chair.current_tick,
        "results": jsonable_encoder(results),
    }


@router.get("/snapshot")
async def snapshot(request: Request):
    stack = _get_stack(request)
    logger.debug("Exporting enemy AI snapshot")
    return stack.snapshot()
