# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""SeededRng — tiny linear congruential generator with snapshot-able state.

Tactic side selection and panic cascades must replay identically after a
snapshot restore, so their randomness lives in a single integer.
"""

from __future__ import annotations

_MULTIPLIER = 1103515245
_INCREMENT = 12345
_MASK = 0x7FFFFFFF


class SeededRng:
    """Deterministic pseudo-random sequence in [0, 1]."""

    def __init__(self, seed: int = 12345) -> None:
        self.state = int(seed) & _MASK

    def random(self) -> float:
        self.state = (self.state * _MULTIPLIER + _INCREMENT) & _MASK
        return self.state / _MASK

    def chance(self, probability: float) -> bool:
        return self.random() < probability
