# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""SocialMemoryLedger — episodic memory, trust and grudges per NPC.

Each registered NPC keeps:
- a short-term buffer (last 20 events, forgotten after an hour)
- a long-term store (up to 100 events whose importance, scaled by the
  NPC's memory strength, reached 0.5)
- a directed relationship per other actor (trust, familiarity, disposition)
- known locations with a smoothed danger rating

Trust moves by a fixed impact per event kind, amplified by personality and
emotional weight.  Disposition is always re-derived from (trust,
familiarity) via ``derive_disposition``; it is never set directly.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from ..enums import Disposition, MemoryEventType
from ..geometry import Vec3, clamp
from ..snapshots import SocialMemorySnapshot, validate_snapshot

TRUST_IMPACTS: dict[MemoryEventType, float] = {
    MemoryEventType.RECEIVED_GIFT: 15,
    MemoryEventType.WAS_HEALED: 25,
    MemoryEventType.WAS_SAVED: 40,
    MemoryEventType.SHARED_MEAL: 10,
    MemoryEventType.HELPED_IN_COMBAT: 30,
    MemoryEventType.RECEIVED_COMPLIMENT: 5,
    MemoryEventType.TRADE_FAIR: 8,
    MemoryEventType.WAS_ATTACKED: -40,
    MemoryEventType.WAS_ROBBED: -50,
    MemoryEventType.WAS_INSULTED: -15,
    MemoryEventType.WITNESSED_MURDER: -30,
    MemoryEventType.BETRAYED: -60,
    MemoryEventType.TRADE_UNFAIR: -20,
    MemoryEventType.PROPERTY_DAMAGED: -25,
    MemoryEventType.FIRST_MEETING: 0,
    MemoryEventType.CONVERSATION: 3,
    MemoryEventType.WITNESSED_EVENT: 0,
    MemoryEventType.LOCATION_VISITED: 0,
}

SHORT_TERM_CAPACITY = 20
LONG_TERM_CAPACITY = 100
SHORT_TERM_SECONDS = 3600.0
PROMOTION_THRESHOLD = 0.5
RELATIONSHIP_BACKLOG = 20
GLOBAL_LOG_CAPACITY = 1000

# Per hour since the last interaction
_TRUST_DECAY = 0.01
_FAMILIARITY_DECAY = 0.005

_FAMILIARITY_GAIN = 5.0
_DAY_SECONDS = 86400.0

# A memory this bad makes the observer afraid of the actor
_FEAR_IMPACT = -20.0
_TRUST_THRESHOLD = 20.0


def derive_disposition(trust: float, familiarity: float) -> Disposition:
    """Disposition for a (trust, familiarity) pair; first match wins."""
    if trust < -60:
        return Disposition.NEMESIS
    if trust < -30:
        return Disposition.ENEMY
    if trust < -10:
        return Disposition.RIVAL
    if familiarity < 20:
        return Disposition.STRANGER
    if trust < 20:
        return Disposition.ACQUAINTANCE
    if trust < 50:
        return Disposition.FRIEND
    return Disposition.CLOSE_FRIEND


@dataclass
class PersonalityTraits:
    """Four traits (0.0-1.0) that shape how an NPC remembers."""

    forgiveness: float = 0.5  # how quickly grudges fade
    gratitude: float = 0.5  # how much positive events matter
    suspicion: float = 0.3  # initial distrust of strangers
    memory_strength: float = 0.7  # how well memories persist


@dataclass
class MemoryEvent:
    id: str
    kind: MemoryEventType
    timestamp: float
    actor_id: str
    importance: float
    emotional_impact: float
    target_id: Optional[str] = None
    location: Optional[Vec3] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Relationship:
    target_id: str
    trust: float = 0.0
    familiarity: float = 0.0
    last_interaction: float = 0.0
    memories: deque[str] = field(default_factory=lambda: deque(maxlen=RELATIONSHIP_BACKLOG))
    disposition: Disposition = Disposition.STRANGER


@dataclass
class LocationMemory:
    location_id: str
    name: str
    position: Vec3
    visit_count: int = 0
    last_visit: float = 0.0
    associations: list[str] = field(default_factory=list)
    danger: float = 0.0


@dataclass
class NPCMemory:
    entity_id: str
    personality: PersonalityTraits = field(default_factory=PersonalityTraits)
    short_term: deque[MemoryEvent] = field(default_factory=lambda: deque(maxlen=SHORT_TERM_CAPACITY))
    long_term: list[MemoryEvent] = field(default_factory=list)
    relationships: dict[str, Relationship] = field(default_factory=dict)
    known_locations: dict[str, LocationMemory] = field(default_factory=dict)


@dataclass(frozen=True)
class MemoryFilter:
    kind: Optional[MemoryEventType] = None
    actor_id: Optional[str] = None
    min_importance: Optional[float] = None
    max_age: Optional[float] = None  # seconds


class SocialMemoryLedger:
    """Memory and relationship store for every registered NPC."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._memories: dict[str, NPCMemory] = {}
        self._global_log: deque[MemoryEvent] = deque(maxlen=GLOBAL_LOG_CAPACITY)
        self._event_counter = 0

    # -- Entities --------------------------------------------------------

    def register(self, entity_id: str, personality: PersonalityTraits | None = None) -> NPCMemory:
        memory = NPCMemory(entity_id=entity_id, personality=personality or PersonalityTraits())
        self._memories[entity_id] = memory
        return memory

    def remove(self, entity_id: str) -> None:
        self._memories.pop(entity_id, None)

    def get_memory(self, entity_id: str) -> NPCMemory | None:
        return self._memories.get(entity_id)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._memories

    @property
    def global_log(self) -> list[MemoryEvent]:
        return list(self._global_log)

    # -- Recording -------------------------------------------------------

    def record_event(
        self,
        observer_id: str,
        kind: MemoryEventType,
        actor_id: str,
        importance: float = 0.5,
        emotional_impact: float = 0.0,
        target_id: str | None = None,
        location: Vec3 | None = None,
        details: dict[str, Any] | None = None,
    ) -> MemoryEvent | None:
        """Store an event in *observer_id*'s memory and update trust.

        Returns the stored event, or None for an unknown observer.
        """
        memory = self._memories.get(observer_id)
        if memory is None:
            return None

        self._event_counter += 1
        now = self._clock()
        event = MemoryEvent(
            id=f"mem_{self._event_counter}",
            kind=kind,
            timestamp=now,
            actor_id=actor_id,
            importance=clamp(importance, 0.0, 1.0),
            emotional_impact=clamp(emotional_impact, -1.0, 1.0),
            target_id=target_id,
            location=tuple(location) if location is not None else None,
            details=dict(details or {}),
        )

        memory.short_term.append(event)

        if event.importance * memory.personality.memory_strength >= PROMOTION_THRESHOLD:
            memory.long_term.append(event)
            if len(memory.long_term) > LONG_TERM_CAPACITY:
                weakest = min(memory.long_term, key=lambda e: self._retention(e, now))
                memory.long_term.remove(weakest)

        if actor_id != observer_id:
            self._update_relationship(memory, actor_id, event)

        self._global_log.append(event)
        return event

    @staticmethod
    def _retention(event: MemoryEvent, now: float) -> float:
        """Importance weighted by recency over a day."""
        return event.importance * (1.0 - (now - event.timestamp) / _DAY_SECONDS)

    def _update_relationship(self, memory: NPCMemory, other_id: str, event: MemoryEvent) -> None:
        rel = memory.relationships.get(other_id)
        if rel is None:
            rel = Relationship(
                target_id=other_id,
                trust=-memory.personality.suspicion * 20.0,
                last_interaction=event.timestamp,
            )
            memory.relationships[other_id] = rel

        change = TRUST_IMPACTS.get(event.kind, 0.0)
        if change > 0:
            change *= memory.personality.gratitude + 0.5
        else:
            change *= 2.0 - memory.personality.forgiveness
        change *= 1.0 + abs(event.emotional_impact)

        rel.trust = clamp(rel.trust + change, -100.0, 100.0)
        rel.familiarity = min(100.0, rel.familiarity + _FAMILIARITY_GAIN)
        rel.last_interaction = event.timestamp
        rel.memories.append(event.id)

        previous = rel.disposition
        rel.disposition = derive_disposition(rel.trust, rel.familiarity)
        if rel.disposition != previous:
            logger.debug(
                f"{memory.entity_id} now sees {other_id} as {rel.disposition.value} "
                f"(trust {rel.trust:.1f})"
            )

    # -- Relationship queries -------------------------------------------

    def get_relationship(self, entity_id: str, other_id: str) -> Relationship | None:
        memory = self._memories.get(entity_id)
        return memory.relationships.get(other_id) if memory else None

    def get_trust(self, entity_id: str, other_id: str) -> float:
        rel = self.get_relationship(entity_id, other_id)
        return rel.trust if rel else 0.0

    def get_disposition(self, entity_id: str, other_id: str) -> Disposition:
        rel = self.get_relationship(entity_id, other_id)
        return rel.disposition if rel else Disposition.STRANGER

    def should_trust(self, entity_id: str, other_id: str) -> bool:
        return self.get_trust(entity_id, other_id) > _TRUST_THRESHOLD

    def should_fear(self, entity_id: str, other_id: str) -> bool:
        return any(
            TRUST_IMPACTS[e.kind] < _FEAR_IMPACT
            for e in self.recall_events(entity_id, MemoryFilter(actor_id=other_id))
        )

    # -- Memory queries --------------------------------------------------

    def recall_events(self, entity_id: str, flt: MemoryFilter | None = None) -> list[MemoryEvent]:
        """Short- and long-term events matching *flt*, each listed once."""
        memory = self._memories.get(entity_id)
        if memory is None:
            return []
        flt = flt or MemoryFilter()
        now = self._clock()
        seen: set[str] = set()
        results: list[MemoryEvent] = []
        for event in list(memory.short_term) + memory.long_term:
            if event.id in seen:
                continue
            seen.add(event.id)
            if flt.kind is not None and event.kind != flt.kind:
                continue
            if flt.actor_id is not None and event.actor_id != flt.actor_id:
                continue
            if flt.min_importance is not None and event.importance < flt.min_importance:
                continue
            if flt.max_age is not None and now - event.timestamp > flt.max_age:
                continue
            results.append(event)
        return results

    def has_memory_of(self, entity_id: str, other_id: str, kind: MemoryEventType | None = None) -> bool:
        return bool(self.recall_events(entity_id, MemoryFilter(kind=kind, actor_id=other_id)))

    def most_recent_memory(self, entity_id: str, other_id: str) -> MemoryEvent | None:
        events = self.recall_events(entity_id, MemoryFilter(actor_id=other_id))
        if not events:
            return None
        return max(events, key=lambda e: e.timestamp)

    # -- Locations -------------------------------------------------------

    def record_location_visit(
        self,
        entity_id: str,
        location_id: str,
        name: str,
        position: Vec3,
        danger: float = 0.0,
    ) -> None:
        memory = self._memories.get(entity_id)
        if memory is None:
            return
        loc = memory.known_locations.get(location_id)
        if loc is None:
            loc = LocationMemory(location_id=location_id, name=name, position=tuple(position))
            memory.known_locations[location_id] = loc
        loc.visit_count += 1
        loc.last_visit = self._clock()
        loc.danger = clamp(loc.danger * 0.8 + clamp(danger, 0.0, 1.0) * 0.2, 0.0, 1.0)

    def get_known_locations(self, entity_id: str) -> list[LocationMemory]:
        memory = self._memories.get(entity_id)
        return list(memory.known_locations.values()) if memory else []

    # -- Decay -----------------------------------------------------------

    def update(self, dt: float) -> None:
        now = self._clock()
        for memory in self._memories.values():
            kept = [e for e in memory.short_term if now - e.timestamp < SHORT_TERM_SECONDS]
            if len(kept) != len(memory.short_term):
                memory.short_term = deque(kept, maxlen=SHORT_TERM_CAPACITY)

            for rel in memory.relationships.values():
                hours = (now - rel.last_interaction) / 3600.0
                if rel.trust > 0:
                    rel.trust = max(0.0, rel.trust - _TRUST_DECAY * hours * dt)
                elif rel.trust < 0:
                    rate = _TRUST_DECAY * memory.personality.forgiveness
                    rel.trust = min(0.0, rel.trust + rate * hours * dt)
                rel.familiarity = max(0.0, rel.familiarity - _FAMILIARITY_DECAY * hours * dt)
                rel.disposition = derive_disposition(rel.trust, rel.familiarity)

    # -- Snapshots -------------------------------------------------------

    @staticmethod
    def _event_dict(e: MemoryEvent) -> dict:
        return {
            "id": e.id,
            "kind": e.kind,
            "timestamp": e.timestamp,
            "actor_id": e.actor_id,
            "importance": e.importance,
            "emotional_impact": e.emotional_impact,
            "target_id": e.target_id,
            "location": e.location,
            "details": e.details,
        }

    def to_snapshot(self) -> dict:
        memories = {}
        for eid, m in self._memories.items():
            memories[eid] = {
                "entity_id": m.entity_id,
                "short_term": [self._event_dict(e) for e in m.short_term],
                "long_term": [self._event_dict(e) for e in m.long_term],
                "relationships": {
                    oid: {
                        "target_id": r.target_id,
                        "trust": r.trust,
                        "familiarity": r.familiarity,
                        "last_interaction": r.last_interaction,
                        "memories": list(r.memories),
                        "disposition": r.disposition,
                    }
                    for oid, r in m.relationships.items()
                },
                "known_locations": {lid: vars(loc) for lid, loc in m.known_locations.items()},
                "personality": vars(m.personality),
            }
        snap = SocialMemorySnapshot(
            memories=memories,
            event_counter=self._event_counter,
            global_log=[self._event_dict(e) for e in self._global_log],
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(SocialMemorySnapshot, data, "memory")

        def event(m) -> MemoryEvent:
            return MemoryEvent(**m.model_dump())

        memories: dict[str, NPCMemory] = {}
        for eid, m in snap.memories.items():
            memories[eid] = NPCMemory(
                entity_id=m.entity_id,
                personality=PersonalityTraits(**m.personality.model_dump()),
                short_term=deque((event(e) for e in m.short_term), maxlen=SHORT_TERM_CAPACITY),
                long_term=[event(e) for e in m.long_term],
                relationships={
                    oid: Relationship(
                        target_id=r.target_id,
                        trust=r.trust,
                        familiarity=r.familiarity,
                        last_interaction=r.last_interaction,
                        memories=deque(r.memories, maxlen=RELATIONSHIP_BACKLOG),
                        disposition=r.disposition,
                    )
                    for oid, r in m.relationships.items()
                },
                known_locations={
                    lid: LocationMemory(**loc.model_dump()) for lid, loc in m.known_locations.items()
                },
            )
        self._memories = memories
        self._event_counter = snap.event_counter
        self._global_log = deque((event(e) for e in snap.global_log), maxlen=GLOBAL_LOG_CAPACITY)

    @classmethod
    def from_snapshot(cls, data: dict, clock: Callable[[], float] = time.monotonic) -> SocialMemoryLedger:
        ledger = cls(clock=clock)
        ledger.load_snapshot(data)
        return ledger
