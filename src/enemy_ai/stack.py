# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""EnemyAIStack — wires the enemy AI services into one tick loop.

Per agent, every update runs the layers in a fixed order:

    perception -> combat context -> micro-agent resolution
               -> tactic rule -> squad tactic -> state + target

``tick(dt)`` drives every registered agent inside a chair tick:

    1. begin_tick on the SimulationChair
    2. perception, micro-agents and tactics for every agent
    3. squad position sync (every member position lands before planning)
    4. one tactic plan per squad
    5. target resolution per agent
    6. suppression update
    7. morale and memory decay
    8. end_tick (overruns publish performance_warning)

Nothing runs unless the chair phase is RUNNING.

All services share a simulation clock that only advances in ``tick``, so a
snapshot taken between ticks restores to the same observable state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .comms.event_bus import EventBus
from .config import settings
from .enums import (
    Action,
    AgentState,
    CombatOutcome,
    MemoryEventType,
    MoraleEventType,
    Phase,
    SquadRole,
    Stance,
    SuppressionLevel,
    Weather,
)
from .geometry import ORIGIN, Vec3, clamp, distance
from .governance.context import GovernanceContext
from .governance.chair import TickContext
from .simulation.cover import CoverSystem
from .simulation.micro_agents import CombatContext, MicroAgentEvaluator, MicroAgentWeights, ResolvedBehavior
from .simulation.morale import MoraleEvent, MoraleService
from .simulation.perception import PerceptionModifiers, PerceptionService, PerceptionState
from .simulation.social_memory import PersonalityTraits, SocialMemoryLedger
from .simulation.squads import PlayerAction, SquadCoordinator, SquadState, SquadTactic
from .simulation.suppression import SuppressionService
from .simulation.tactics import TacticContext, TacticResult, TacticsEngine
from .snapshots import (
    ChairSnapshot,
    SentinelSnapshot,
    StackSnapshot,
    validate_snapshot,
)

# Alert level above which an undetected agent is "aware"
_AWARE_ALERT = 0.3
# Alert shared with squad-mates when one member spots the player
_CALLOUT_ALERT = 0.2


@dataclass
class Agent:
    id: str
    position: Vec3
    facing: Vec3 = (0.0, 0.0, 1.0)
    health: float = 100.0
    max_health: float = 100.0
    faction: str = "hostile"
    squad_id: Optional[str] = None
    state: AgentState = AgentState.IDLE
    weapon_class: str = "rifle"
    engaged_since: Optional[float] = None
    recent_casualties: int = 0

    @property
    def is_alive(self) -> bool:
        return self.health > 0


@dataclass
class WorldContext:
    player_position: Vec3 = ORIGIN
    player_noise: float = 0.0
    player_stance: Stance = Stance.STANDING
    weather: Weather = Weather.CLEAR
    time_of_day: float = 12.0
    lighting: float = 1.0
    terrain: str = "plains"

    def modifiers(self) -> PerceptionModifiers:
        return PerceptionModifiers(
            weather=self.weather,
            time_of_day=self.time_of_day,
            lighting=self.lighting,
            player_noise=self.player_noise,
            player_stance=self.player_stance,
        )


@dataclass(frozen=True)
class AIUpdateResult:
    agent_id: str
    new_state: AgentState
    behavior: ResolvedBehavior
    tactic: Optional[TacticResult]
    target_position: Optional[Vec3]
    squad_tactic: Optional[SquadTactic]
    can_fire: bool = True


@dataclass
class _Decision:
    """Per-agent working record inside one update."""

    agent: Agent
    perception: PerceptionState
    can_see: bool
    can_hear: bool
    behavior: ResolvedBehavior
    tactic: TacticResult
    squad_tactic: Optional[SquadTactic] = None


class EnemyAIStack:
    """Owns every enemy AI service and the agents they track."""

    def __init__(
        self,
        governance: GovernanceContext | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.governance = governance or GovernanceContext(event_bus=event_bus)
        self.event_bus = self.governance.event_bus
        self._time = 0.0

        self.perception = PerceptionService(clock=self.now)
        self.suppression = SuppressionService()
        self.micro_agents = MicroAgentEvaluator()
        self.tactics = TacticsEngine(governance=self.governance, clock=self.now)
        self.morale = MoraleService()
        self.memory = SocialMemoryLedger(clock=self.now)
        self.squads = SquadCoordinator(governance=self.governance)
        self.cover = CoverSystem()

        self.world = WorldContext()
        self._agents: dict[str, Agent] = {}

    # -- Clock -----------------------------------------------------------

    def now(self) -> float:
        """Simulation time in seconds."""
        return self._time

    @property
    def chair(self):
        return self.governance.chair

    @property
    def sentinel(self):
        return self.governance.sentinel

    # -- Agents ----------------------------------------------------------

    def register_agent(
        self,
        agent_id: str,
        position: Vec3,
        facing: Vec3 = (0.0, 0.0, 1.0),
        health: float = 100.0,
        max_health: float = 100.0,
        faction: str = "hostile",
        weapon_class: str = "rifle",
        weights: MicroAgentWeights | None = None,
        personality: PersonalityTraits | None = None,
    ) -> Agent:
        """Create an agent and its per-service state together."""
        agent = Agent(
            id=agent_id,
            position=tuple(position),
            facing=tuple(facing),
            health=health,
            max_health=max_health,
            faction=faction,
            weapon_class=weapon_class,
        )
        self._agents[agent_id] = agent
        self.perception.initialize(agent_id)
        self.micro_agents.initialize(agent_id, weights)
        self.suppression.register(agent_id)
        self.morale.register(agent_id)
        self.morale.set_position(agent_id, agent.position)
        self.memory.register(agent_id, personality)
        return agent

    def remove_agent(self, agent_id: str) -> None:
        """Drop an agent from every service; its squad records the casualty."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return
        if agent.squad_id is not None:
            self.squads.report_casualty(agent.squad_id, agent_id)
        self.perception.clear(agent_id)
        self.micro_agents.clear(agent_id)
        self.suppression.unregister(agent_id)
        self.morale.remove(agent_id)
        self.memory.remove(agent_id)
        self.tactics.forget(agent_id)
        self.cover.forget(agent_id)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def move_agent(self, agent_id: str, position: Vec3, facing: Vec3 | None = None) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        agent.position = tuple(position)
        if facing is not None:
            agent.facing = tuple(facing)
        self.morale.set_position(agent_id, agent.position)

    # -- Squads ----------------------------------------------------------

    def create_squad(self, squad_id: str, agent_ids: list[str]) -> SquadState:
        members = [aid for aid in agent_ids if aid in self._agents]
        squad = self.squads.create_squad(squad_id, members)
        for aid in members:
            agent = self._agents[aid]
            agent.squad_id = squad_id
            self.squads.update_member_position(squad_id, aid, agent.position)
            self.squads.update_member_health(squad_id, aid, agent.health, agent.max_health)
        leader = next((m.id for m in squad.members if m.role == SquadRole.LEADER), None)
        self.morale.create_group(squad_id, members, leader)
        return squad

    def disband_squad(self, squad_id: str) -> None:
        self.squads.disband_squad(squad_id)
        self.morale.remove_group(squad_id)
        for agent in self._agents.values():
            if agent.squad_id == squad_id:
                agent.squad_id = None

    def adapt_difficulty(self, squad_id: str) -> bool:
        return self.squads.adapt_difficulty(squad_id)

    # -- World -----------------------------------------------------------

    def set_player_position(self, position: Vec3) -> None:
        self.world.player_position = tuple(position)

    def set_player_noise(self, noise: float) -> None:
        self.world.player_noise = clamp(noise, 0.0, 1.0)

    def set_player_stance(self, stance: Stance) -> None:
        self.world.player_stance = stance

    def set_world_context(
        self,
        weather: Weather | None = None,
        time_of_day: float | None = None,
        lighting: float | None = None,
        terrain: str | None = None,
    ) -> None:
        """Update only the fields that are given."""
        if weather is not None:
            self.world.weather = weather
        if time_of_day is not None:
            self.world.time_of_day = time_of_day % 24.0
        if lighting is not None:
            self.world.lighting = clamp(lighting, 0.0, 1.0)
        if terrain is not None:
            self.world.terrain = terrain

    def record_player_action(self, action: PlayerAction) -> None:
        self.squads.record_player_action(action)

    # -- Per-agent layers ------------------------------------------------

    def _sense(self, agent: Agent, dt: float) -> tuple[PerceptionState, bool, bool]:
        state = self.perception.update(agent.id, self.world.modifiers())
        self.perception.decay_memory(agent.id, dt)
        player = self.world.player_position
        can_see = self.perception.can_see(agent.id, agent.position, player, agent.facing)
        can_hear = self.perception.can_hear(agent.id, agent.position, player, self.world.player_noise)
        if can_see or can_hear:
            self.perception.set_last_known(agent.id, player)
        if can_see and agent.squad_id is not None:
            self._callout(agent)
        return state, can_see, can_hear

    def _callout(self, spotter: Agent) -> None:
        for other in self._agents.values():
            if other.id != spotter.id and other.squad_id == spotter.squad_id:
                self.perception.alert(other.id, _CALLOUT_ALERT)

    def _allies_in_range(self, agent: Agent) -> list[Agent]:
        radius = settings.ally_scan_radius
        return [
            other for other in self._agents.values()
            if other.id != agent.id
            and other.faction == agent.faction
            and other.is_alive
            and distance(agent.position, other.position) <= radius
        ]

    def _decide(self, agent: Agent, dt: float) -> _Decision:
        perception, can_see, can_hear = self._sense(agent, dt)
        player = self.world.player_position
        allies = self._allies_in_range(agent)
        d = distance(agent.position, player)
        in_cover = self.cover.update_agent(agent.id, agent.position, player) > 0.0
        enemy_count = 1

        combat = CombatContext(
            health=agent.health,
            max_health=agent.max_health,
            ally_count=len(allies),
            enemy_count=enemy_count,
            threat_level=perception.alert_level,
            combat_duration=self._time - agent.engaged_since if agent.engaged_since is not None else 0.0,
            recent_casualties=agent.recent_casualties,
            distance_to_player=d,
            has_cover=in_cover,
            is_outnumbered=len(allies) < enemy_count,
        )
        behavior = self.micro_agents.resolve(agent.id, combat)
        behavior = self._apply_morale(agent, behavior)

        tactic = self.tactics.evaluate(TacticContext(
            agent_id=agent.id,
            health=agent.health,
            max_health=agent.max_health,
            position=agent.position,
            player_position=player,
            morale=self.morale.get_morale(agent.id),
            ally_count=len(allies),
            enemy_count=enemy_count,
            distance_to_player=d,
            has_cover=in_cover,
            weather=self.world.weather,
            time_of_day=self.world.time_of_day,
            terrain=self.world.terrain,
        ))
        return _Decision(agent, perception, can_see, can_hear, behavior, tactic)

    def _apply_morale(self, agent: Agent, behavior: ResolvedBehavior) -> ResolvedBehavior:
        """Broken morale overrides whatever the micro-agents chose."""
        if agent.id not in self.morale:
            return behavior
        morale = self.morale.evaluate_behavior(agent.id)
        if morale.should_surrender and behavior.action != Action.SURRENDER:
            return ResolvedBehavior(Action.SURRENDER, 0.0, False, 10.0)
        if morale.should_flee and behavior.action not in (Action.SURRENDER, Action.RETREAT):
            return ResolvedBehavior(Action.RETREAT, 1.0, False, 9.0)
        return behavior

    def _sync_squad_position(self, agent: Agent) -> None:
        if agent.squad_id is not None:
            self.squads.update_member_position(agent.squad_id, agent.id, agent.position)

    def _plan_squad(self, squad_id: str) -> SquadTactic | None:
        history = self.squads.player_history
        if history:
            self.squads.assess_player_skill(squad_id, history)
        tactic = self.squads.plan_tactic(squad_id, self.world.player_position)
        self.squads.counter_player(squad_id)
        called = self.squads.call_reinforcements(
            squad_id, [sid for sid in self.squads.squad_ids() if sid != squad_id]
        )
        if called:
            self.event_bus.publish("reinforcements_called", {"squad_id": squad_id, "squads": called})
            # Help is on the way for the squad that asked
            for member_id in self.morale.get_group_members(squad_id):
                self.morale.process_event(MoraleEvent(MoraleEventType.REINFORCEMENTS, member_id))
        return tactic

    @staticmethod
    def _next_state(d: _Decision) -> AgentState:
        action = d.behavior.action
        if action == Action.SURRENDER:
            return AgentState.SURRENDER
        if action == Action.RETREAT:
            return AgentState.RETREAT
        if d.can_see:
            return AgentState.FLANK if action == Action.FLANK else AgentState.ENGAGE
        if d.can_hear or d.perception.last_known_position is not None:
            return AgentState.SEARCHING
        if d.perception.alert_level > _AWARE_ALERT:
            return AgentState.AWARE
        return AgentState.IDLE

    def _target(self, d: _Decision, state: AgentState) -> Vec3 | None:
        agent = d.agent
        action = d.behavior.action
        last_known = d.perception.last_known_position
        if action == Action.SURRENDER:
            return None
        if action == Action.RETREAT:
            return d.tactic.target_position if d.tactic.should_retreat else None

        if action in (Action.ATTACK, Action.FLANK):
            if d.can_see or last_known is not None:
                if d.squad_tactic is not None and agent.squad_id is not None:
                    route = self.squads.coordinate_flanking(agent.squad_id).get(agent.id)
                    if route:
                        return route[1]
            # Only aim at where the player was actually sensed
            if d.can_see:
                return self.world.player_position
            return last_known

        if state == AgentState.SEARCHING:
            return last_known
        return None

    def _can_fire(self, agent: Agent, target: Vec3 | None) -> bool:
        if not self.suppression.can_return_fire(agent.id):
            return False
        if agent.squad_id is None or target is None:
            return True
        return self.squads.is_fire_safe(agent.squad_id, agent.id, target, agent.position)

    def _finish(self, d: _Decision) -> AIUpdateResult:
        agent = d.agent
        new_state = self._next_state(d)
        if new_state != agent.state:
            logger.debug(f"{agent.id}: {agent.state.value} -> {new_state.value}")
        agent.state = new_state
        if new_state in (AgentState.ENGAGE, AgentState.FLANK):
            if agent.engaged_since is None:
                agent.engaged_since = self._time
        elif new_state == AgentState.IDLE:
            agent.engaged_since = None
            agent.recent_casualties = 0

        target = self._target(d, new_state)
        return AIUpdateResult(
            agent_id=agent.id,
            new_state=new_state,
            behavior=d.behavior,
            tactic=d.tactic,
            target_position=target,
            squad_tactic=d.squad_tactic,
            can_fire=self._can_fire(agent, target),
        )

    def update(self, agent_id: str, dt: float) -> AIUpdateResult | None:
        """Run every layer for one agent.  None for unknown ids."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        d = self._decide(agent, dt)
        if agent.squad_id is not None and self.squads.get_squad(agent.squad_id) is not None:
            self._sync_squad_position(agent)
            d.squad_tactic = self._plan_squad(agent.squad_id)
        return self._finish(d)

    # -- Tick loop -------------------------------------------------------

    def tick(self, dt: float) -> list[AIUpdateResult]:
        """Advance the whole stack by *dt* seconds."""
        if self.chair.phase != Phase.RUNNING:
            return []
        self._time += dt
        ctx: TickContext = self.chair.begin_tick(dt)

        decisions = [self._decide(agent, dt) for agent in list(self._agents.values())]

        for d in decisions:
            self._sync_squad_position(d.agent)

        squad_tactics = {sid: self._plan_squad(sid) for sid in self.squads.squad_ids()}

        results = []
        for d in decisions:
            if d.agent.squad_id is not None:
                d.squad_tactic = squad_tactics.get(d.agent.squad_id)
            results.append(self._finish(d))

        for agent_id in list(self._agents):
            self._update_suppression(agent_id, ctx.tick)

        self.morale.update(dt)
        self.memory.update(dt)
        self.chair.end_tick(ctx)
        return results

    def _update_suppression(self, agent_id: str, tick: int) -> None:
        was_pinned = self.suppression.is_pinned(agent_id)
        state = self.suppression.update(agent_id, tick)
        quality = self.cover.get_cover_quality(agent_id)
        self.suppression.apply_cover(agent_id, quality > 0.0, quality)
        if state.level == SuppressionLevel.PINNED and not was_pinned:
            self.morale.process_event(MoraleEvent(MoraleEventType.SUPPRESSED, agent_id))

    def start(self) -> None:
        self.chair.start()

    def pause(self) -> None:
        self.chair.pause()

    def shutdown(self) -> None:
        self.chair.shutdown()

    # -- Combat feedback -------------------------------------------------

    def on_hit(self, agent_id: str) -> None:
        """*agent_id* landed a shot."""
        self.micro_agents.update_weights(agent_id, CombatOutcome.HIT)

    def on_miss(self, agent_id: str) -> None:
        self.micro_agents.update_weights(agent_id, CombatOutcome.MISS)

    def on_damaged(self, agent_id: str, damage: float, attacker_id: str | None = None) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        agent.health = max(0.0, agent.health - damage)
        self.micro_agents.update_weights(agent_id, CombatOutcome.DAMAGED)
        self.morale.process_event(MoraleEvent(MoraleEventType.TOOK_DAMAGE, agent_id))
        if agent.squad_id is not None:
            self.squads.update_member_health(agent.squad_id, agent_id, agent.health, agent.max_health)
        if attacker_id is not None:
            self.memory.record_event(
                agent_id,
                MemoryEventType.WAS_ATTACKED,
                attacker_id,
                importance=0.7,
                emotional_impact=-0.5,
                location=agent.position,
                details={"damage": damage},
            )
        if agent.engaged_since is None:
            agent.engaged_since = self._time

    def on_killed(self, agent_id: str, killer_id: str | None = None) -> None:
        """Remove a dead agent and let its group react."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        squad_id = agent.squad_id
        survivors = [
            a for a in self._agents.values()
            if squad_id is not None and a.squad_id == squad_id and a.id != agent_id
        ]
        was_leader = squad_id is not None and self.morale.get_leader(squad_id) == agent_id
        if not was_leader:
            # Leader deaths are handled by the morale service on removal
            self.morale.process_event(MoraleEvent(MoraleEventType.ALLY_KILLED, agent_id))
        for survivor in survivors:
            survivor.recent_casualties += 1
            if killer_id is not None:
                self.memory.record_event(
                    survivor.id,
                    MemoryEventType.WITNESSED_MURDER,
                    killer_id,
                    importance=0.9,
                    emotional_impact=-0.8,
                    target_id=agent_id,
                    location=agent.position,
                )
        if killer_id is not None:
            self.micro_agents.update_weights(killer_id, CombatOutcome.KILL)
        self.event_bus.publish("agent_killed", {"agent_id": agent_id, "squad_id": squad_id})
        self.remove_agent(agent_id)

    def on_incoming_fire(
        self,
        target_id: str,
        source_id: str,
        source_position: Vec3,
        weapon_class: str = "rifle",
        miss_distance: float | None = None,
    ) -> None:
        """Shots fired at *target_id*; a miss distance also counts as a near miss."""
        if target_id not in self._agents:
            return
        tick = self.chair.current_tick
        self.suppression.on_incoming_fire(target_id, source_id, source_position, weapon_class, tick)
        if miss_distance is not None:
            self.suppression.on_near_miss(target_id, source_position, miss_distance, weapon_class, tick)
            self.morale.process_event(MoraleEvent(MoraleEventType.NEAR_MISS, target_id))

    # -- Queries ---------------------------------------------------------

    def get_perception_state(self, agent_id: str) -> PerceptionState | None:
        return self.perception.get_state(agent_id)

    def get_squad_state(self, squad_id: str) -> SquadState | None:
        return self.squads.get_squad(squad_id)

    def get_difficulty_multiplier(self) -> float:
        return self.squads.get_difficulty_multiplier()

    # -- Snapshots -------------------------------------------------------

    def snapshot(self) -> dict:
        snap = StackSnapshot(
            time=self._time,
            agents={aid: vars(a) for aid, a in self._agents.items()},
            world=vars(self.world),
            perception=self.perception.to_snapshot(),
            suppression=self.suppression.to_snapshot(),
            micro_agents=self.micro_agents.to_snapshot(),
            tactics=self.tactics.to_snapshot(),
            morale=self.morale.to_snapshot(),
            memory=self.memory.to_snapshot(),
            squads=self.squads.to_snapshot(),
            chair=self.chair.to_snapshot(),
            sentinel=self.sentinel.to_snapshot(),
        )
        return snap.model_dump(mode="json")

    def restore(self, data: dict) -> None:
        """Replace all state from a snapshot.

        Every service payload is validated into fresh objects first; the
        live stack is only swapped once all of them succeed.  Cover
        objects are map data and are kept.
        """
        snap = validate_snapshot(StackSnapshot, data, "stack")
        perception = PerceptionService.from_snapshot(snap.perception, clock=self.now)
        suppression = SuppressionService.from_snapshot(snap.suppression)
        micro_agents = MicroAgentEvaluator.from_snapshot(snap.micro_agents)
        tactics = TacticsEngine.from_snapshot(snap.tactics, governance=self.governance, clock=self.now)
        morale = MoraleService.from_snapshot(snap.morale)
        memory = SocialMemoryLedger.from_snapshot(snap.memory, clock=self.now)
        squads = SquadCoordinator.from_snapshot(snap.squads, governance=self.governance)
        validate_snapshot(ChairSnapshot, snap.chair, "chair")
        validate_snapshot(SentinelSnapshot, snap.sentinel, "sentinel")

        self.chair.load_snapshot(snap.chair)
        self.sentinel.load_snapshot(snap.sentinel)
        self.perception = perception
        self.suppression = suppression
        self.micro_agents = micro_agents
        self.tactics = tactics
        self.morale = morale
        self.memory = memory
        self.squads = squads
        self._agents = {aid: Agent(**a.model_dump()) for aid, a in snap.agents.items()}
        self.world = WorldContext(**snap.world.model_dump())
        self._time = snap.time
        logger.info(f"Restored enemy AI stack with {len(self._agents)} agents at t={self._time:g}s")
