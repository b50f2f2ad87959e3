from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class TickMetrics:
    tick: int
    population: int
    rules_applied: int
    neighbor_checks: int
    cohesion_links: int
    alignment_links: int
    separation_links: int
    wraps: int
    average_speed: float
    polarization: float
    tick_duration_ms: float = 0.0
