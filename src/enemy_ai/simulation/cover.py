"""CoverSystem -- cover objects and per-agent cover quality.

Agents positioned near cover objects (walls, vehicles, rubble) are treated
as in cover.  Quality depends on how close the agent is to the cover centre
and, when an attacker position is known, whether the cover lies between the
agent and the attacker.

Quality ranges from 0.0 (no cover) to 0.8 (heavy cover) and feeds the
suppression service's cover mitigation and the tactics engine's cover flag.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ..geometry import Vec3

# Hard ceiling on cover quality
MAX_COVER = 0.8


@dataclass
class CoverObject:
    """A cover-providing object on the map."""

    position: Vec3
    radius: float = 2.0  # how far the cover effect extends
    cover_value: float = 0.5  # base quality (0.0-0.8)


class CoverSystem:
    """Tracks cover objects and computes cover quality for agents."""

    def __init__(self) -> None:
        self._cover_objects: list[CoverObject] = []
        self._agent_cover: dict[str, float] = {}  # agent_id -> cover quality

    def add_cover(self, cover: CoverObject) -> None:
        self._cover_objects.append(cover)

    def add_cover_point(self, position: Vec3, radius: float = 2.0, cover_value: float = 0.5) -> CoverObject:
        """Add a cover point at the given position.

        Returns the created CoverObject.
        """
        cp = CoverObject(position=tuple(position), radius=radius, cover_value=cover_value)
        self._cover_objects.append(cp)
        return cp

    @property
    def cover_objects(self) -> list[CoverObject]:
        return list(self._cover_objects)

    def quality_at(self, position: Vec3, attacker: Vec3 | None = None) -> float:
        """Best cover quality available at *position*.

        With an *attacker*, only cover on the attacker's side counts.
        """
        best = 0.0
        for cover in self._cover_objects:
            dx = position[0] - cover.position[0]
            dz = position[2] - cover.position[2]
            dist = math.hypot(dx, dz)
            if dist > cover.radius:
                continue
            if attacker is not None:
                ax = attacker[0] - position[0]
                az = attacker[2] - position[2]
                cx = cover.position[0] - position[0]
                cz = cover.position[2] - position[2]
                # Cover must be roughly between agent and attacker
                if ax * cx + az * cz <= 0:
                    continue
            proximity_factor = 1.0 - (dist / cover.radius) if cover.radius > 0 else 1.0
            best = max(best, cover.cover_value * proximity_factor)
        return min(best, MAX_COVER)

    def update_agent(self, agent_id: str, position: Vec3, attacker: Vec3 | None = None) -> float:
        """Recompute and cache cover quality for one agent."""
        quality = self.quality_at(position, attacker)
        if quality > 0.0:
            self._agent_cover[agent_id] = quality
        else:
            self._agent_cover.pop(agent_id, None)
        return quality

    def get_cover_quality(self, agent_id: str) -> float:
        """Cached cover quality for an agent; 0.0 when not in cover."""
        return self._agent_cover.get(agent_id, 0.0)

    def has_cover(self, agent_id: str) -> bool:
        return self._agent_cover.get(agent_id, 0.0) > 0.0

    def forget(self, agent_id: str) -> None:
        self._agent_cover.pop(agent_id, None)

    def reset(self) -> None:
        """Clear all cover state."""
        self._cover_objects.clear()
        self._agent_cover.clear()
