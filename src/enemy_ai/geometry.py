# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Vector helpers shared by the enemy AI services.

Positions are plain ``(x, y, z)`` tuples so they are copied by value when
passed between services.  ``y`` is elevation; the ground plane is x/z.
"""

from __future__ import annotations

import math

Vec3 = tuple[float, float, float]

ORIGIN: Vec3 = (0.0, 0.0, 0.0)


def vec3(value) -> Vec3:
    """Coerce a 3-sequence or ``{"x", "y", "z"}`` mapping into a Vec3."""
    if isinstance(value, dict):
        return (
            float(value.get("x", 0.0)),
            float(value.get("y", 0.0)),
            float(value.get("z", 0.0)),
        )
    x, y, z = value
    return (float(x), float(y), float(z))


def distance(a: Vec3, b: Vec3) -> float:
    """Full 3D euclidean distance."""
    return math.sqrt((b[0] - a[0]) ** 2 + (b[1] - a[1]) ** 2 + (b[2] - a[2]) ** 2)


def ground_distance(a: Vec3, b: Vec3) -> float:
    """Distance on the x/z ground plane, ignoring elevation."""
    return math.hypot(b[0] - a[0], b[2] - a[2])


def wrap_degrees(angle: float) -> float:
    """Wrap an angle in degrees into [-180, 180]."""
    while angle > 180.0:
        angle -= 360.0
    while angle < -180.0:
        angle += 360.0
    return angle


def signed_angle_to(origin: Vec3, target: Vec3, facing: Vec3) -> float:
    """Signed ground-plane angle (degrees) between *facing* and the line to *target*."""
    target_angle = math.degrees(math.atan2(target[2] - origin[2], target[0] - origin[0]))
    facing_angle = math.degrees(math.atan2(facing[2], facing[0]))
    return wrap_degrees(target_angle - facing_angle)


def ground_direction(a: Vec3, b: Vec3) -> tuple[float, float, float] | None:
    """Unit (dx, dz) direction from *a* to *b* plus the ground distance.

    Returns None when the two points coincide on the ground plane.
    """
    dx = b[0] - a[0]
    dz = b[2] - a[2]
    d = math.hypot(dx, dz)
    if d == 0.0:
        return None
    return dx / d, dz / d, d


def point_segment_distance(p: Vec3, start: Vec3, end: Vec3) -> float:
    """Ground-plane distance from *p* to the segment start→end."""
    dx = end[0] - start[0]
    dz = end[2] - start[2]
    length_sq = dx * dx + dz * dz
    if length_sq == 0.0:
        return math.hypot(p[0] - start[0], p[2] - start[2])
    t = ((p[0] - start[0]) * dx + (p[2] - start[2]) * dz) / length_sq
    t = max(0.0, min(1.0, t))
    cx = start[0] + t * dx
    cz = start[2] + t * dz
    return math.hypot(p[0] - cx, p[2] - cz)


def centroid(points: list[Vec3]) -> Vec3:
    """Arithmetic mean of *points*; the origin for an empty list."""
    if not points:
        return ORIGIN
    n = len(points)
    return (
        sum(p[0] for p in points) / n,
        sum(p[1] for p in points) / n,
        sum(p[2] for p in points) / n,
    )


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
