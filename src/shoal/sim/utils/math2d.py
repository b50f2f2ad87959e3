from __future__ import annotations

import math


def _normalize_xy_f(x: float, y: float) -> tuple[float, float]:
    magnitude_sq = x * x + y * y
    if magnitude_sq == 0.0:
        return 0.0, 0.0
    inv = 1.0 / math.sqrt(magnitude_sq)
    return x * inv, y * inv


def _direction_from_heading(heading: float) -> tuple[float, float]:
    return math.sin(heading), math.cos(heading)


def _heading_from_direction(x: float, y: float) -> float:
    # Inverse of _direction_from_heading: x pairs with sin, y with cos.
    return math.atan2(x, y)
