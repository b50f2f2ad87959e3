from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..core.agent import Agent
from ..core.config import FlockingParams
from ..core.rng import RandomSource
from ..core.store import AgentStore, FlockSnapshot
from ..utils.math2d import _direction_from_heading, _heading_from_direction, _normalize_xy_f

# An agent is wrapped once a coordinate passes the domain edge plus WRAP_MARGIN,
# and re-enters at the opposite edge plus REENTRY_MARGIN.
WRAP_MARGIN = 10.0
REENTRY_MARGIN = 5.0


@dataclass(frozen=True, slots=True)
class AgentDraws:
    apply_rules: bool
    slow_down: bool


@dataclass(slots=True)
class StepStats:
    rules_applied: int = 0
    neighbor_checks: int = 0
    cohesion_links: int = 0
    alignment_links: int = 0
    separation_links: int = 0
    wraps: int = 0


def draw_tick(rng: RandomSource, count: int, params: FlockingParams) -> List[AgentDraws]:
    """Consume the random draws for one tick, two per agent in index order.

    The rule draw comes before the drift draw for each agent, which is the order a
    sequential update loop would consume them in.
    """
    draws: List[AgentDraws] = []
    rule_probability = params.rule_probability
    for _ in range(count):
        apply_rules = rng.next_float() < rule_probability
        slow_down = rng.next_int(2) == 1
        draws.append(AgentDraws(apply_rules=apply_rules, slow_down=slow_down))
    return draws


def steer(
    index: int,
    snapshot: FlockSnapshot,
    params: FlockingParams,
    stats: Optional[StepStats] = None,
) -> float:
    """Blend cohesion, alignment and separation into a new heading for one agent.

    Every other agent is classified against all three bands using the open interval
    ``min < d < max``; a single neighbor may feed several rules. The blend starts from
    the agent's own heading vector and each rule with at least one neighbor adds its
    normalized direction scaled by the rule weight.
    """
    positions = snapshot.positions
    headings = snapshot.headings
    pos_x, pos_y = positions[index]

    cohesion = params.cohesion
    alignment = params.alignment
    separation = params.separation
    coh_min, coh_max = cohesion.min_distance, cohesion.max_distance
    ali_min, ali_max = alignment.min_distance, alignment.max_distance
    sep_min, sep_max = separation.min_distance, separation.max_distance

    coh_x = coh_y = 0.0
    ali_x = ali_y = 0.0
    sep_x = sep_y = 0.0
    c = a = s = 0

    for j, (other_x, other_y) in enumerate(positions):
        if j == index:
            continue
        dx = pos_x - other_x
        dy = pos_y - other_y
        dist = math.hypot(dx, dy)
        if coh_min < dist < coh_max:
            coh_x += other_x
            coh_y += other_y
            c += 1
        if ali_min < dist < ali_max:
            other_theta = headings[j]
            ali_x += math.sin(other_theta)
            ali_y += math.cos(other_theta)
            a += 1
        if sep_min < dist < sep_max:
            # sep_min >= 0, so dist > 0 here.
            sep_x += dx / dist
            sep_y += dy / dist
            s += 1

    desired_x, desired_y = _direction_from_heading(headings[index])

    if c > 0:
        center_x = coh_x / c
        center_y = coh_y / c
        vx, vy = _normalize_xy_f(center_x - pos_x, center_y - pos_y)
        desired_x += vx * cohesion.weight
        desired_y += vy * cohesion.weight

    if a > 0:
        vx, vy = _normalize_xy_f(ali_x / a, ali_y / a)
        desired_x += vx * alignment.weight
        desired_y += vy * alignment.weight

    if s > 0:
        vx, vy = _normalize_xy_f(sep_x, sep_y)
        desired_x += vx * separation.weight
        desired_y += vy * separation.weight

    if stats is not None:
        stats.neighbor_checks += len(positions) - 1
        stats.cohesion_links += c
        stats.alignment_links += a
        stats.separation_links += s

    return _heading_from_direction(desired_x, desired_y)


def advance(agent: Agent, draws: AgentDraws, params: FlockingParams, width: float, height: float) -> int:
    """Apply speed drift, move along the heading and wrap. Returns the number of wrapped axes."""
    agent.speed *= params.slow_factor if draws.slow_down else params.fast_factor
    speed = agent.speed
    heading = agent.heading
    x = agent.position.x + speed * math.sin(heading)
    y = agent.position.y + speed * math.cos(heading)

    bound_x = width + WRAP_MARGIN
    bound_y = height + WRAP_MARGIN
    wrapped = 0
    if y < -bound_y:
        y = height + REENTRY_MARGIN
        wrapped += 1
    if x > bound_x:
        x = -(width + REENTRY_MARGIN)
        wrapped += 1
    if y > bound_y:
        y = -(height + REENTRY_MARGIN)
        wrapped += 1
    if x < -bound_x:
        x = width + REENTRY_MARGIN
        wrapped += 1
    agent.position.update(x, y)
    return wrapped


def _resolve_order(order: Optional[Iterable[int]], count: int) -> Sequence[int]:
    if order is None:
        return range(count)
    indices = list(order)
    if sorted(indices) != list(range(count)):
        raise ValueError(f"order must be a permutation of 0..{count - 1}")
    return indices


def apply_draws(
    store: AgentStore,
    params: FlockingParams,
    draws: Sequence[AgentDraws],
    order: Optional[Iterable[int]] = None,
) -> StepStats:
    """Advance every agent by one tick using pre-drawn random decisions.

    All neighbor reads go through a snapshot taken before any agent is mutated, so
    the result does not depend on ``order``.
    """
    params.validate()
    if len(draws) != len(store):
        raise ValueError(f"expected {len(store)} draws, got {len(draws)}")
    snapshot = store.capture()
    width = store.width
    height = store.height
    stats = StepStats()
    for index in _resolve_order(order, len(store)):
        agent = store[index]
        agent_draws = draws[index]
        if agent_draws.apply_rules:
            stats.rules_applied += 1
            agent.heading = steer(index, snapshot, params, stats)
        stats.wraps += advance(agent, agent_draws, params, width, height)
    return stats


def step(
    store: AgentStore,
    params: FlockingParams,
    rng: RandomSource,
    order: Optional[Iterable[int]] = None,
) -> StepStats:
    params.validate()
    draws = draw_tick(rng, len(store), params)
    return apply_draws(store, params, draws, order)
