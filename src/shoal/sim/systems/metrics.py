from __future__ import annotations

import math
from typing import Iterable

from ..core.agent import Agent
from ..types.metrics import TickMetrics
from .flocking import StepStats


def population_stats(agents: Iterable[Agent]) -> tuple[int, float, float]:
    """Return population, mean speed and polarization.

    Polarization is the length of the mean heading unit vector: 1.0 when every agent
    points the same way, near 0.0 for a disordered flock.
    """
    population = 0
    speed_sum = 0.0
    dir_x = 0.0
    dir_y = 0.0
    for agent in agents:
        population += 1
        speed_sum += agent.speed
        dir_x += math.sin(agent.heading)
        dir_y += math.cos(agent.heading)
    if population == 0:
        return 0, 0.0, 0.0
    return population, speed_sum / population, math.hypot(dir_x, dir_y) / population


def create_metrics(
    tick: int,
    step_stats: StepStats,
    duration_ms: float,
    stats: tuple[int, float, float],
) -> TickMetrics:
    population, average_speed, polarization = stats
    return TickMetrics(
        tick=tick,
        population=population,
        rules_applied=step_stats.rules_applied,
        neighbor_checks=step_stats.neighbor_checks,
        cohesion_links=step_stats.cohesion_links,
        alignment_links=step_stats.alignment_links,
        separation_links=step_stats.separation_links,
        wraps=step_stats.wraps,
        average_speed=average_speed,
        polarization=polarization,
        tick_duration_ms=duration_ms,
    )
