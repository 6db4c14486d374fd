# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""BalanceSentinel — fair-play limits for enemy AI changes.

Every proposal payload is walked for the values that decide whether a
fight is fair.  Keys are matched anywhere in the payload, in snake_case or
camelCase:

  reaction_time_ms        >= 200 ms                       severe
  accuracy                <= 0.70 (0.85 for elite types)  severe
  damage                  <= 25% of player max health     severe
  detection_range         <= 100 m                        moderate
  simultaneous_attackers  <= 3                            moderate
  difficulty_multiplier   rise <= 0.1 per step            moderate (severe > 0.5)
  cheating keywords       omniscient, wallhack, ...       severe

A value within 10% of its cap is a minor warning.  Any severe violation,
or three moderate ones, fails the proposal.

The sentinel also keeps a rolling fairness index from reported player
metrics and a registry of validated enemy profiles.
"""

from __future__ import annotations

import json
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from loguru import logger

from ..config import settings
from ..enums import ViolationSeverity, ViolationType
from ..snapshots import SentinelSnapshot, validate_snapshot
from .chair import AgentProposal, GovernanceResult, TickContext

MIN_REACTION_TIME_MS = 200.0
MAX_STANDARD_ACCURACY = 0.7
MAX_ELITE_ACCURACY = 0.85
MAX_DETECTION_RANGE = 100.0
MAX_DAMAGE_FRACTION = 0.25
MAX_SIMULTANEOUS_ATTACKERS = 3
MAX_DIFFICULTY_STEP = 0.1
SEVERE_DIFFICULTY_STEP = 0.5

# Fraction of a cap that counts as "close to the limit"
_MINOR_MARGIN = 0.1
_MODERATE_LIMIT = 3

CHEATING_KEYWORDS: tuple[str, ...] = ("omniscient", "wallhack", "aimbot", "perfect_prediction")

# Fairness index
FAIRNESS_WINDOW = 20
MAX_PLAYER_DEATH_RATE = 2.0
MIN_PLAYER_WIN_RATE = 0.4
HIGH_DIFFICULTY_SCORE = 80.0

_VIOLATION_LOG_SIZE = 500

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


# Accepted payload spellings for each checked value
_ALIASES: dict[str, str] = {
    "reaction_time": "reaction_time_ms",
    "reaction_time_ms": "reaction_time_ms",
    "accuracy": "accuracy",
    "damage": "damage",
    "base_damage": "damage",
    "detection_range": "detection_range",
    "simultaneous_attackers": "simultaneous_attackers",
    "difficulty_multiplier": "difficulty_multiplier",
    "enemy_type": "enemy_type",
}


@dataclass(frozen=True)
class BalanceViolation:
    type: ViolationType
    severity: ViolationSeverity
    details: str
    suggested_fix: Optional[str] = None


@dataclass
class BalanceMetrics:
    player_death_rate: float = 0.0  # deaths per hour
    average_combat_duration: float = 30.0  # seconds
    player_win_rate: float = 0.6
    difficulty_score: float = 50.0  # 0-100
    fairness_index: float = 1.0


@dataclass
class EnemyBalanceProfile:
    enemy_type: str
    base_damage: float
    base_health: float
    detection_range: float
    reaction_time_ms: float
    accuracy: float
    group_size: int = 1


def _walk(payload: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(payload, dict):
        for key, value in payload.items():
            yield snake(str(key)), value
            yield from _walk(value)
    elif isinstance(payload, (list, tuple)):
        for item in payload:
            yield from _walk(item)


def extract_values(payload: Any) -> dict[str, Any]:
    """Checked values found anywhere in *payload*; first occurrence wins."""
    found: dict[str, Any] = {}
    for key, value in _walk(payload):
        canonical = _ALIASES.get(key)
        if canonical is not None and canonical not in found:
            found[canonical] = value
    return found


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BalanceSentinel:
    """Validates proposals against fair-play limits."""

    def __init__(self, player_max_health: float | None = None) -> None:
        self.player_max_health = (
            settings.player_max_health if player_max_health is None else player_max_health
        )
        self.metrics = BalanceMetrics()
        self._fairness_window: deque[float] = deque(maxlen=FAIRNESS_WINDOW)
        self._profiles: dict[str, EnemyBalanceProfile] = {}
        self._violations: deque[BalanceViolation] = deque(maxlen=_VIOLATION_LOG_SIZE)
        self._violation_count = 0
        self._difficulty_multiplier = 1.0
        self.enabled = True

    # -- Limits ----------------------------------------------------------

    @property
    def max_damage(self) -> float:
        return self.player_max_health * MAX_DAMAGE_FRACTION

    @staticmethod
    def accuracy_cap(enemy_type: str | None) -> float:
        if enemy_type and "elite" in enemy_type.lower():
            return MAX_ELITE_ACCURACY
        return MAX_STANDARD_ACCURACY

    def check_values(self, values: dict[str, Any], text: str = "") -> list[BalanceViolation]:
        """Violations for a set of canonical values plus free payload text."""
        violations: list[BalanceViolation] = []
        enemy_type = values.get("enemy_type")
        enemy_type = enemy_type if isinstance(enemy_type, str) else None

        reaction = _number(values.get("reaction_time_ms"))
        if reaction is not None:
            if reaction < MIN_REACTION_TIME_MS:
                violations.append(BalanceViolation(
                    ViolationType.REACTION_TOO_FAST, ViolationSeverity.SEVERE,
                    f"Reaction time {reaction:g}ms is below human capability ({MIN_REACTION_TIME_MS:g}ms)",
                    f"Set reaction_time_ms >= {MIN_REACTION_TIME_MS:g}",
                ))
            elif reaction < MIN_REACTION_TIME_MS * (1 + _MINOR_MARGIN):
                violations.append(BalanceViolation(
                    ViolationType.REACTION_TOO_FAST, ViolationSeverity.MINOR,
                    f"Reaction time {reaction:g}ms is close to the floor",
                ))

        accuracy = _number(values.get("accuracy"))
        if accuracy is not None:
            cap = self.accuracy_cap(enemy_type)
            if accuracy > cap:
                violations.append(BalanceViolation(
                    ViolationType.ACCURACY_TOO_HIGH, ViolationSeverity.SEVERE,
                    f"Accuracy {accuracy:g} exceeds fair limit ({cap:g})",
                    f"Set accuracy <= {cap:g}",
                ))
            elif accuracy > cap * (1 - _MINOR_MARGIN):
                violations.append(BalanceViolation(
                    ViolationType.ACCURACY_TOO_HIGH, ViolationSeverity.MINOR,
                    f"Accuracy {accuracy:g} is close to the limit ({cap:g})",
                ))

        damage = _number(values.get("damage"))
        if damage is not None:
            cap = self.max_damage
            if damage > cap:
                violations.append(BalanceViolation(
                    ViolationType.DAMAGE_TOO_HIGH, ViolationSeverity.SEVERE,
                    f"Damage {damage:g} exceeds fair limit ({cap:g})",
                    f"Set damage <= {cap:g}",
                ))
            elif damage > cap * (1 - _MINOR_MARGIN):
                violations.append(BalanceViolation(
                    ViolationType.DAMAGE_TOO_HIGH, ViolationSeverity.MINOR,
                    f"Damage {damage:g} is close to the limit ({cap:g})",
                ))

        detection = _number(values.get("detection_range"))
        if detection is not None:
            if detection > MAX_DETECTION_RANGE:
                violations.append(BalanceViolation(
                    ViolationType.DETECTION_TOO_FAR, ViolationSeverity.MODERATE,
                    f"Detection range {detection:g}m exceeds fair limit ({MAX_DETECTION_RANGE:g}m)",
                    f"Set detection_range <= {MAX_DETECTION_RANGE:g}",
                ))
            elif detection > MAX_DETECTION_RANGE * (1 - _MINOR_MARGIN):
                violations.append(BalanceViolation(
                    ViolationType.DETECTION_TOO_FAR, ViolationSeverity.MINOR,
                    f"Detection range {detection:g}m is close to the limit",
                ))

        attackers = _number(values.get("simultaneous_attackers"))
        if attackers is not None:
            if attackers > MAX_SIMULTANEOUS_ATTACKERS:
                violations.append(BalanceViolation(
                    ViolationType.UNFAIR_ADVANTAGE, ViolationSeverity.MODERATE,
                    f"{attackers:g} simultaneous attackers exceeds fair limit ({MAX_SIMULTANEOUS_ATTACKERS})",
                    f"Limit to {MAX_SIMULTANEOUS_ATTACKERS} attackers",
                ))
            elif attackers > MAX_SIMULTANEOUS_ATTACKERS * (1 - _MINOR_MARGIN):
                violations.append(BalanceViolation(
                    ViolationType.UNFAIR_ADVANTAGE, ViolationSeverity.MINOR,
                    f"{attackers:g} simultaneous attackers is at the limit",
                ))

        multiplier = _number(values.get("difficulty_multiplier"))
        if multiplier is not None:
            increase = multiplier - self._difficulty_multiplier
            if increase > MAX_DIFFICULTY_STEP:
                severity = (
                    ViolationSeverity.SEVERE if increase > SEVERE_DIFFICULTY_STEP
                    else ViolationSeverity.MODERATE
                )
                violations.append(BalanceViolation(
                    ViolationType.DIFFICULTY_SPIKE, severity,
                    f"Difficulty increase {increase * 100:.1f}% exceeds limit ({MAX_DIFFICULTY_STEP * 100:.0f}%)",
                    "Apply gradual difficulty scaling",
                ))

        lowered = text.lower()
        for keyword in CHEATING_KEYWORDS:
            if keyword in lowered:
                violations.append(BalanceViolation(
                    ViolationType.UNFAIR_ADVANTAGE, ViolationSeverity.SEVERE,
                    f"Proposal contains cheating pattern: {keyword}",
                    "Remove unfair AI advantages",
                ))
        return violations

    @staticmethod
    def verdict(violations: list[BalanceViolation]) -> GovernanceResult:
        severe = [v for v in violations if v.severity == ViolationSeverity.SEVERE]
        moderate = [v for v in violations if v.severity == ViolationSeverity.MODERATE]
        if severe:
            return GovernanceResult(
                False, f"Balance violation: {severe[0].details}", {"violations": severe}
            )
        if len(moderate) >= _MODERATE_LIMIT:
            return GovernanceResult(
                False, "Too many moderate balance violations", {"violations": moderate}
            )
        if violations:
            return GovernanceResult(
                True, f"Passed with {len(violations)} warnings", {"violations": violations}
            )
        return GovernanceResult(True, "Balance check passed")

    # -- Proposals -------------------------------------------------------

    def validate_proposal(self, proposal: AgentProposal) -> GovernanceResult:
        if not self.enabled:
            return GovernanceResult(True, "Balance Sentinel disabled")
        values = extract_values(proposal.payload)
        text = json.dumps(proposal.payload, default=str)
        violations = self.check_values(values, text)
        self._log(violations)
        return self.verdict(violations)

    def check(self, proposal: AgentProposal, ctx: TickContext) -> GovernanceResult:
        """Chair rule adapter."""
        return self.validate_proposal(proposal)

    def _log(self, violations: list[BalanceViolation]) -> None:
        for v in violations:
            self._violations.append(v)
            self._violation_count += 1
            if v.severity >= ViolationSeverity.MODERATE:
                logger.warning(f"Balance {v.severity.name.lower()}: {v.details}")

    # -- Difficulty ------------------------------------------------------

    @property
    def difficulty_multiplier(self) -> float:
        return self._difficulty_multiplier

    def note_difficulty(self, multiplier: float) -> None:
        """Record an approved difficulty multiplier as the new baseline."""
        self._difficulty_multiplier = multiplier

    # -- Metrics ---------------------------------------------------------

    def update_metrics(self, **changes: float) -> BalanceMetrics:
        for key, value in changes.items():
            if key == "fairness_index" or not hasattr(self.metrics, key):
                continue
            setattr(self.metrics, key, value)
        self._fairness_window.append(self._instant_fairness())
        self.metrics.fairness_index = sum(self._fairness_window) / len(self._fairness_window)
        return self.metrics

    def _instant_fairness(self) -> float:
        score = 1.0
        if self.metrics.player_death_rate > MAX_PLAYER_DEATH_RATE:
            score -= 0.2
        if self.metrics.player_win_rate < MIN_PLAYER_WIN_RATE:
            score -= 0.3
        if self.metrics.difficulty_score > HIGH_DIFFICULTY_SCORE:
            score -= 0.1
        return max(0.0, score)

    def get_metrics(self) -> BalanceMetrics:
        return BalanceMetrics(**vars(self.metrics))

    # -- Enemy profiles --------------------------------------------------

    def register_enemy_profile(self, profile: EnemyBalanceProfile) -> list[BalanceViolation]:
        """Validate and store a profile; severe violations keep it out."""
        violations = self.check_values({
            "enemy_type": profile.enemy_type,
            "reaction_time_ms": profile.reaction_time_ms,
            "accuracy": profile.accuracy,
            "damage": profile.base_damage,
            "detection_range": profile.detection_range,
        }, profile.enemy_type)
        self._log(violations)
        if any(v.severity == ViolationSeverity.SEVERE for v in violations):
            logger.warning(f"Enemy profile {profile.enemy_type} refused")
        else:
            self._profiles[profile.enemy_type] = profile
        return violations

    def get_enemy_profile(self, enemy_type: str) -> EnemyBalanceProfile | None:
        return self._profiles.get(enemy_type)

    # -- Control ---------------------------------------------------------

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        logger.warning("Balance Sentinel disabled")
        self.enabled = False

    def violations(self, limit: int = 50) -> list[BalanceViolation]:
        items = list(self._violations)
        return items[-limit:] if limit > 0 else []

    @property
    def violation_count(self) -> int:
        return self._violation_count

    def clear_violations(self) -> None:
        self._violations.clear()
        self._violation_count = 0

    # -- Snapshots -------------------------------------------------------

    def to_snapshot(self) -> dict:
        snap = SentinelSnapshot(
            enabled=self.enabled,
            metrics=vars(self.metrics),
            fairness_window=list(self._fairness_window),
            difficulty_multiplier=self._difficulty_multiplier,
            enemy_profiles={k: vars(p) for k, p in self._profiles.items()},
            violation_count=self._violation_count,
        )
        return snap.model_dump(mode="json")

    def load_snapshot(self, data: dict) -> None:
        snap = validate_snapshot(SentinelSnapshot, data, "sentinel")
        self.enabled = snap.enabled
        self.metrics = BalanceMetrics(**snap.metrics.model_dump())
        self._fairness_window = deque(snap.fairness_window, maxlen=FAIRNESS_WINDOW)
        self._difficulty_multiplier = snap.difficulty_multiplier
        self._profiles = {
            k: EnemyBalanceProfile(**p.model_dump()) for k, p in snap.enemy_profiles.items()
        }
        self._violation_count = snap.violation_count
