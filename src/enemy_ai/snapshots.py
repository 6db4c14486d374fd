# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Snapshot schemas — the import boundary for persisted service state.

Each service exports its state as a JSON-compatible dict built from one of
these models and imports it back through ``validate_snapshot``.  The whole
payload is validated before any service state is touched, so a malformed
blob is rejected and reported, never partially applied.

The storage backend treats the dicts as opaque blobs.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .enums import (
    AgentState,
    Comparator,
    ConditionAttribute,
    Disposition,
    MemoryEventType,
    Phase,
    ProposalType,
    SquadRole,
    Stance,
    SquadTacticType,
    SuppressionLevel,
    TacticLean,
    TacticType,
    MovementStyle,
    Weather,
)

SNAPSHOT_VERSION = 1

Vec3Model = tuple[float, float, float]
UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]


class SnapshotError(ValueError):
    """Raised when a persisted snapshot fails validation at import."""

    def __init__(self, service: str, errors: list[dict]) -> None:
        self.service = service
        self.errors = errors
        super().__init__(f"Malformed {service} snapshot ({len(errors)} errors)")


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


# -- Perception ---------------------------------------------------------------

class PerceptionStateModel(_Strict):
    sight_range: float = Field(ge=0.0)
    sight_cone_angle: float = Field(ge=0.0, le=360.0)
    hearing_radius: float = Field(ge=0.0)
    last_known_position: Optional[Vec3Model] = None
    last_seen_time: float = 0.0
    alert_level: UnitFloat
    memory_duration: float = Field(ge=0.0)
    search_duration: float = Field(ge=0.0)


class PerceptionSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    states: dict[str, PerceptionStateModel] = {}


# -- Suppression --------------------------------------------------------------

class FireSourceModel(_Strict):
    source_id: str
    position: Vec3Model
    weapon_class: str
    start_tick: int
    last_shot_tick: int
    shot_ticks: list[int] = []
    rounds_per_second: float = Field(ge=0.0)


class SuppressionEffectsModel(_Strict):
    accuracy_penalty: UnitFloat
    movement_penalty: UnitFloat
    morale_drain: float = Field(ge=0.0)
    vision_penalty: UnitFloat
    can_ads: bool
    can_sprint: bool
    can_vault: bool


class SuppressionStateModel(_Strict):
    entity_id: str
    level: SuppressionLevel
    intensity: UnitFloat
    accumulated: UnitFloat
    sources: list[FireSourceModel] = []
    last_update_tick: int = 0
    effects: SuppressionEffectsModel
    is_pinned: bool = False
    pinned_ticks: int = Field(default=0, ge=0)
    can_return: bool = True


class SuppressionSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    states: dict[str, SuppressionStateModel] = {}


# -- Micro-agents -------------------------------------------------------------

class MicroAgentWeightsModel(_Strict):
    aggression_base: UnitFloat
    health_weight: float = Field(ge=0.0)
    ally_weight: float = Field(ge=0.0)
    flank_preference: UnitFloat
    cover_preference: UnitFloat
    casualty_impact: float = Field(ge=0.0)
    duration_decay: float = Field(ge=0.0)


class AggressionOutputModel(_Strict):
    attack_frequency: UnitFloat
    risk_tolerance: UnitFloat
    target_priority: tuple[str, ...]


class TacticsOutputModel(_Strict):
    recommended: TacticLean
    movement: MovementStyle
    use_coordination: bool


class PerceptionWillOutputModel(_Strict):
    alertness: UnitFloat
    search_intensity: UnitFloat
    tracking_accuracy: UnitFloat


class MoraleOutputModel(_Strict):
    panic_level: UnitFloat
    will_to_fight: UnitFloat
    surrender_threshold: UnitFloat


class MicroAgentOutputsModel(_Strict):
    aggression: AggressionOutputModel
    tactics: TacticsOutputModel
    perception: PerceptionWillOutputModel
    morale: MoraleOutputModel


class MicroAgentSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    weights: dict[str, MicroAgentWeightsModel] = {}
    outputs: dict[str, MicroAgentOutputsModel] = {}


# -- Tactics engine -----------------------------------------------------------

class TacticConditionModel(_Strict):
    attribute: ConditionAttribute
    comparator: Comparator
    value: float | str


class TacticRuleModel(_Strict):
    id: str
    name: str
    conditions: tuple[TacticConditionModel, ...] = ()
    tactic: TacticType
    priority: float
    cooldown_seconds: float = Field(ge=0.0)


class CooldownModel(_Strict):
    agent_id: str
    rule_id: str
    used_at: float


class TacticsSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    rules: list[TacticRuleModel]
    rng_state: int = Field(ge=0)
    cooldowns: list[CooldownModel] = []
    last_tactics: dict[str, TacticType] = {}


# -- Morale -------------------------------------------------------------------

class MoraleModifierModel(_Strict):
    id: str
    source: str
    value: float
    duration: float
    stackable: bool = False


class MoraleStateModel(_Strict):
    entity_id: str
    base_morale: float = Field(ge=0.0, le=100.0)
    current_morale: float = Field(ge=0.0, le=100.0)
    fear_level: float = Field(ge=0.0, le=100.0)
    panic_threshold: float = Field(ge=0.0, le=100.0)
    surrender_threshold: float = Field(ge=0.0, le=100.0)
    modifiers: list[MoraleModifierModel] = []


class MoraleSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    states: dict[str, MoraleStateModel] = {}
    groups: dict[str, list[str]] = {}
    leaders: dict[str, str] = {}
    positions: dict[str, Vec3Model] = {}
    rng_state: int = Field(ge=0)


# -- Social memory ------------------------------------------------------------

class MemoryEventModel(_Strict):
    id: str
    kind: MemoryEventType
    timestamp: float
    actor_id: str
    importance: UnitFloat
    emotional_impact: float = Field(ge=-1.0, le=1.0)
    target_id: Optional[str] = None
    location: Optional[Vec3Model] = None
    details: dict[str, Any] = {}


class RelationshipModel(_Strict):
    target_id: str
    trust: float = Field(ge=-100.0, le=100.0)
    familiarity: float = Field(ge=0.0, le=100.0)
    last_interaction: float
    memories: list[str] = []
    disposition: Disposition


class LocationMemoryModel(_Strict):
    location_id: str
    name: str
    position: Vec3Model
    visit_count: int = Field(ge=0)
    last_visit: float
    associations: list[str] = []
    danger: UnitFloat


class PersonalityTraitsModel(_Strict):
    forgiveness: UnitFloat
    gratitude: UnitFloat
    suspicion: UnitFloat
    memory_strength: UnitFloat


class NPCMemoryModel(_Strict):
    entity_id: str
    short_term: list[MemoryEventModel] = []
    long_term: list[MemoryEventModel] = []
    relationships: dict[str, RelationshipModel] = {}
    known_locations: dict[str, LocationMemoryModel] = {}
    personality: PersonalityTraitsModel


class SocialMemorySnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    memories: dict[str, NPCMemoryModel] = {}
    event_counter: int = Field(default=0, ge=0)
    global_log: list[MemoryEventModel] = []


# -- Squads -------------------------------------------------------------------

class SquadMemberModel(_Strict):
    id: str
    role: SquadRole
    position: Vec3Model
    health: float
    max_health: float
    is_alive: bool


class SquadTacticModel(_Strict):
    type: SquadTacticType
    primary_target: Vec3Model
    flanking_routes: list[list[Vec3Model]] = []
    suppression_targets: list[Vec3Model] = []


class SquadStateModel(_Strict):
    squad_id: str
    members: list[SquadMemberModel]
    current_tactic: SquadTacticModel
    player_skill: UnitFloat
    reinforcements_pending: bool = False
    formation_center: Vec3Model


class PlayerActionModel(_Strict):
    kind: str
    timestamp: float
    success: bool
    position: Optional[Vec3Model] = None


class SquadSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    squads: dict[str, SquadStateModel] = {}
    player_history: list[PlayerActionModel] = []
    difficulty_multiplier: float = Field(default=1.0, gt=0.0)


# -- Governance ---------------------------------------------------------------

class SubsystemMetricsModel(_Strict):
    avg_tick_time_ms: float = 0.0
    peak_tick_time_ms: float = 0.0
    memory_usage: float = 0.0
    entity_count: int = 0


class SubsystemStateModel(_Strict):
    subsystem_id: str
    healthy: bool
    last_update_tick: int = 0
    metrics: SubsystemMetricsModel = SubsystemMetricsModel()


class ProposalModel(_Strict):
    agent_id: str
    tier: int = Field(ge=1, le=3)
    proposal_type: ProposalType
    target_system: str
    payload: Any = None
    confidence: UnitFloat
    timestamp: float = 0.0
    approved: Optional[bool] = None
    rejection_reason: Optional[str] = None


class ChairSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    phase: Phase
    current_tick: int = Field(ge=0)
    subsystems: dict[str, SubsystemStateModel] = {}
    proposal_history: list[ProposalModel] = []


class BalanceMetricsModel(_Strict):
    player_death_rate: float = Field(ge=0.0)
    average_combat_duration: float = Field(ge=0.0)
    player_win_rate: UnitFloat
    difficulty_score: float = Field(ge=0.0, le=100.0)
    fairness_index: UnitFloat


class EnemyProfileModel(_Strict):
    enemy_type: str
    base_damage: float
    base_health: float
    detection_range: float
    reaction_time_ms: float
    accuracy: UnitFloat
    group_size: int = Field(ge=1)


class SentinelSnapshot(_Strict):
    version: int = SNAPSHOT_VERSION
    enabled: bool = True
    metrics: BalanceMetricsModel
    fairness_window: list[float] = []
    difficulty_multiplier: float = Field(default=1.0, gt=0.0)
    enemy_profiles: dict[str, EnemyProfileModel] = {}
    violation_count: int = Field(default=0, ge=0)


# -- Orchestrator -------------------------------------------------------------

class AgentModel(_Strict):
    id: str
    position: Vec3Model
    facing: Vec3Model
    health: float = Field(ge=0.0)
    max_health: float = Field(gt=0.0)
    faction: str
    squad_id: Optional[str] = None
    state: AgentState
    weapon_class: str = "rifle"
    engaged_since: Optional[float] = None
    recent_casualties: int = Field(default=0, ge=0)


class WorldModel(_Strict):
    player_position: Vec3Model
    player_noise: UnitFloat
    player_stance: Stance
    weather: Weather
    time_of_day: float = Field(ge=0.0, lt=24.0)
    lighting: UnitFloat
    terrain: str


class StackSnapshot(_Strict):
    """Envelope for the whole stack; service payloads validate separately."""

    version: int = SNAPSHOT_VERSION
    time: float = Field(ge=0.0)
    agents: dict[str, AgentModel] = {}
    world: WorldModel
    perception: dict[str, Any]
    suppression: dict[str, Any]
    micro_agents: dict[str, Any]
    tactics: dict[str, Any]
    morale: dict[str, Any]
    memory: dict[str, Any]
    squads: dict[str, Any]
    chair: dict[str, Any]
    sentinel: dict[str, Any]


M = TypeVar("M", bound=BaseModel)


def validate_snapshot(model: type[M], data: Any, service: str) -> M:
    """Validate *data* against *model* or raise SnapshotError.

    Nothing is applied here; callers build fresh state from the returned
    model only after this succeeds.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.error(f"Rejected {service} snapshot: {exc.error_count()} validation errors")
        raise SnapshotError(service, exc.errors(include_url=False)) from exc
