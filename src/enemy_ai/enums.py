# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Closed kinds used across the enemy AI stack.

Every "kind" string that crosses a service boundary is one of these enums
so that adding a member is a checked change wherever it is matched.
"""

from __future__ import annotations

import enum
from enum import IntEnum


class AgentState(enum.Enum):
    IDLE = "idle"
    AWARE = "aware"
    SEARCHING = "searching"
    ENGAGE = "engage"
    FLANK = "flank"
    RETREAT = "retreat"
    SURRENDER = "surrender"


# -- Perception --------------------------------------------------------------

class Weather(enum.Enum):
    CLEAR = "clear"
    FOG = "fog"
    RAIN = "rain"
    SNOW = "snow"
    STORM = "storm"


class Stance(enum.Enum):
    STANDING = "standing"
    CROUCHING = "crouching"
    PRONE = "prone"


# -- Suppression --------------------------------------------------------------

class SuppressionLevel(IntEnum):
    """Ordered suppression levels; a higher value is always worse."""
    NONE = 0
    LIGHT = 1
    MEDIUM = 2
    HEAVY = 3
    PINNED = 4


# -- Micro-agents -------------------------------------------------------------

class TacticLean(enum.Enum):
    FLANK = "flank"
    PUSH = "push"
    SUPPRESS = "suppress"
    DEFEND = "defend"
    RETREAT = "retreat"


class MovementStyle(enum.Enum):
    AGGRESSIVE = "aggressive"
    CAUTIOUS = "cautious"
    EVASIVE = "evasive"


class Action(enum.Enum):
    ATTACK = "attack"
    FLANK = "flank"
    DEFEND = "defend"
    RETREAT = "retreat"
    SURRENDER = "surrender"
    SEARCH = "search"
    HOLD = "hold"


class CombatOutcome(enum.Enum):
    HIT = "hit"
    MISS = "miss"
    DAMAGED = "damaged"
    KILL = "kill"


# -- Tactics engine -----------------------------------------------------------

class TacticType(enum.Enum):
    DIRECT_ASSAULT = "direct_assault"
    FLANK_LEFT = "flank_left"
    FLANK_RIGHT = "flank_right"
    PINCER = "pincer"
    RETREAT_REGROUP = "retreat_regroup"
    AMBUSH_SETUP = "ambush_setup"
    SUPPRESSIVE_FIRE = "suppressive_fire"
    BAIT_AND_SWITCH = "bait_and_switch"
    HIGH_GROUND = "high_ground"
    DEFENSIVE_HOLD = "defensive_hold"


class ConditionAttribute(enum.Enum):
    HEALTH = "health"
    MORALE = "morale"
    ALLIES = "allies"
    ENEMIES = "enemies"
    DISTANCE = "distance"
    COVER = "cover"
    WEATHER = "weather"
    TIME = "time"
    TERRAIN = "terrain"


class Comparator(enum.Enum):
    LT = "<"
    GT = ">"
    EQ = "=="
    LE = "<="
    GE = ">="


# -- Morale -------------------------------------------------------------------

class MoraleEventType(enum.Enum):
    ALLY_KILLED = "ally_killed"
    ALLY_WOUNDED = "ally_wounded"
    LEADER_KILLED = "leader_killed"
    ENEMY_KILLED = "enemy_killed"
    TOOK_DAMAGE = "took_damage"
    NEAR_MISS = "near_miss"
    OUTNUMBERED = "outnumbered"
    REINFORCEMENTS = "reinforcements"
    EXPLOSION_NEARBY = "explosion_nearby"
    SUPPRESSED = "suppressed"
    FLANKED = "flanked"
    AMBUSHED = "ambushed"
    VICTORY = "victory"
    RETREAT_ORDER = "retreat_order"


# -- Social memory ------------------------------------------------------------

class MemoryEventType(enum.Enum):
    # Positive
    RECEIVED_GIFT = "received_gift"
    WAS_HEALED = "was_healed"
    WAS_SAVED = "was_saved"
    SHARED_MEAL = "shared_meal"
    HELPED_IN_COMBAT = "helped_in_combat"
    RECEIVED_COMPLIMENT = "received_compliment"
    TRADE_FAIR = "trade_fair"
    # Negative
    WAS_ATTACKED = "was_attacked"
    WAS_ROBBED = "was_robbed"
    WAS_INSULTED = "was_insulted"
    WITNESSED_MURDER = "witnessed_murder"
    BETRAYED = "betrayed"
    TRADE_UNFAIR = "trade_unfair"
    PROPERTY_DAMAGED = "property_damaged"
    # Neutral
    FIRST_MEETING = "first_meeting"
    CONVERSATION = "conversation"
    WITNESSED_EVENT = "witnessed_event"
    LOCATION_VISITED = "location_visited"


class Disposition(enum.Enum):
    STRANGER = "stranger"
    ACQUAINTANCE = "acquaintance"
    FRIEND = "friend"
    CLOSE_FRIEND = "close_friend"
    RIVAL = "rival"
    ENEMY = "enemy"
    NEMESIS = "nemesis"


# -- Squads -------------------------------------------------------------------

class SquadRole(enum.Enum):
    LEADER = "leader"
    POINTMAN = "pointman"
    FLANKER = "flanker"
    SUPPRESSOR = "suppressor"
    MEDIC = "medic"
    SNIPER = "sniper"


class SquadTacticType(enum.Enum):
    ASSAULT = "assault"
    FLANK = "flank"
    SURROUND = "surround"
    AMBUSH = "ambush"
    RETREAT = "retreat"
    HOLD = "hold"


class CounterTactic(enum.Enum):
    SPREAD_SEARCH = "spread_search"
    DEFENSIVE_FORMATION = "defensive_formation"
    CLOSE_DISTANCE = "close_distance"
    MAINTAIN_DISTANCE = "maintain_distance"
    WATCH_FLANKS = "watch_flanks"
    HOLD = "hold"


# -- Governance ---------------------------------------------------------------

class Phase(enum.Enum):
    INIT = "init"
    RUNNING = "running"
    PAUSED = "paused"
    SHUTDOWN = "shutdown"


class ProposalType(enum.Enum):
    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"


class RuleSeverity(enum.Enum):
    BLOCK = "block"
    WARN = "warn"
    INFO = "info"


class ViolationSeverity(IntEnum):
    MINOR = 1
    MODERATE = 2
    SEVERE = 3


class ViolationType(enum.Enum):
    DAMAGE_TOO_HIGH = "damage_too_high"
    REACTION_TOO_FAST = "reaction_too_fast"
    ACCURACY_TOO_HIGH = "accuracy_too_high"
    DETECTION_TOO_FAR = "detection_too_far"
    UNFAIR_ADVANTAGE = "unfair_advantage"
    DIFFICULTY_SPIKE = "difficulty_spike"
