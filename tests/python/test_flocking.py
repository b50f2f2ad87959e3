from __future__ import annotations

import math

import pytest
from pygame.math import Vector2

from shoal.sim.core.agent import Agent
from shoal.sim.core.config import BandConfig, FlockingParams
from shoal.sim.core.rng import DeterministicRng
from shoal.sim.core.store import AgentStore
from shoal.sim.systems import flocking
from shoal.sim.systems.flocking import AgentDraws

WIDTH = 400.0
HEIGHT = 300.0


def _store(*agents: tuple[float, float, float], speed: float = 1.0) -> AgentStore:
    return AgentStore(
        [
            Agent(id=index, position=Vector2(x, y), speed=speed, heading=heading)
            for index, (x, y, heading) in enumerate(agents)
        ],
        WIDTH,
        HEIGHT,
    )


def _neutral_params(**overrides) -> FlockingParams:
    values = {"rule_probability": 1.0, "slow_factor": 1.0, "fast_factor": 1.0}
    values.update(overrides)
    return FlockingParams(**values)


def _forced(count: int) -> list[AgentDraws]:
    return [AgentDraws(apply_rules=True, slow_down=False) for _ in range(count)]


class _ScriptedRng:
    def __init__(self, floats: list[float], ints: list[int]):
        self.floats = list(floats)
        self.ints = list(ints)
        self.calls: list[str] = []

    def next_float(self) -> float:
        self.calls.append("float")
        return self.floats.pop(0)

    def next_range(self, low: float, high: float) -> float:
        self.calls.append("range")
        return low + (high - low) * self.floats.pop(0)

    def next_int(self, max_value: int) -> int:
        self.calls.append("int")
        return self.ints.pop(0)


def test_draw_tick_consumes_rule_then_drift_per_agent():
    rng = _ScriptedRng(floats=[0.69, 0.7], ints=[1, 0])

    draws = flocking.draw_tick(rng, 2, FlockingParams())

    assert rng.calls == ["float", "int", "float", "int"]
    assert draws == [
        AgentDraws(apply_rules=True, slow_down=True),
        AgentDraws(apply_rules=False, slow_down=False),
    ]


def test_cohesion_and_alignment_rotate_pair_toward_each_other():
    store = _store((0.0, 0.0, 0.0), (30.0, 0.0, 0.0))

    stats = flocking.apply_draws(store, _neutral_params(), _forced(2))

    left, right = store[0], store[1]
    assert left.heading == pytest.approx(math.atan2(0.01, 1.02))
    assert right.heading == pytest.approx(math.atan2(-0.01, 1.02))
    assert 0.0 < left.heading < 0.05
    assert -0.05 < right.heading < 0.0
    assert stats.cohesion_links == 2
    assert stats.alignment_links == 2
    assert stats.separation_links == 0
    assert stats.rules_applied == 2
    assert stats.neighbor_checks == 2


def test_separation_pushes_close_agents_apart():
    params = _neutral_params(separation=BandConfig(1.0, 20.0, 0.03))
    store = _store((0.0, 0.0, 0.0), (2.0, 0.0, 0.0))
    before = store.capture()

    stats = flocking.apply_draws(store, params, _forced(2))

    assert stats.separation_links == 2
    assert stats.cohesion_links == 0
    for index, other in ((0, 1), (1, 0)):
        own_x, own_y = before.positions[index]
        other_x, other_y = before.positions[other]
        heading = store[index].heading
        dot = (own_x - other_x) * math.sin(heading) + (own_y - other_y) * math.cos(heading)
        assert dot > 0.0
    assert store[0].heading == pytest.approx(math.atan2(-0.03, 1.0))


def test_band_edges_are_exclusive():
    store = _store((0.0, 0.0, 0.0), (20.0, 0.0, 0.0))

    stats = flocking.apply_draws(store, _neutral_params(), _forced(2))

    assert stats.cohesion_links == 0
    assert stats.alignment_links == 0
    assert stats.separation_links == 0
    assert store[0].heading == 0.0


def test_cancelled_contributions_do_not_produce_nan():
    store = _store(
        (0.0, 0.0, 0.0),
        (30.0, 0.0, math.pi / 2),
        (-30.0, 0.0, -math.pi / 2),
    )

    flocking.apply_draws(store, _neutral_params(), _forced(3))

    heading = store[0].heading
    assert math.isfinite(heading)
    assert heading == pytest.approx(0.0, abs=1e-12)


def test_skipped_rules_keep_heading_and_still_drift_speed():
    store = _store((0.0, 0.0, 0.4), (30.0, 0.0, 1.1), speed=2.0)
    draws = [AgentDraws(apply_rules=False, slow_down=True), AgentDraws(apply_rules=False, slow_down=False)]

    stats = flocking.apply_draws(store, FlockingParams(), draws)

    assert store[0].heading == 0.4
    assert store[1].heading == 1.1
    assert store[0].speed == pytest.approx(2.0 * 0.999)
    assert store[1].speed == pytest.approx(2.0 * 1.001)
    assert stats.rules_applied == 0
    assert stats.neighbor_checks == 0


def test_position_integrates_sin_cos_of_new_heading():
    store = _store((10.0, -20.0, 0.3), speed=2.0)

    flocking.apply_draws(store, _neutral_params(), [AgentDraws(apply_rules=False, slow_down=False)])

    assert store[0].position.x == pytest.approx(10.0 + 2.0 * math.sin(0.3))
    assert store[0].position.y == pytest.approx(-20.0 + 2.0 * math.cos(0.3))


def test_wrap_resets_to_fixed_reentry_offset():
    store = _store((WIDTH + 11.0, 0.0, 0.0), speed=1e-3)

    stats = flocking.step(store, _neutral_params(), DeterministicRng(1))

    assert store[0].position.x == -(WIDTH + 5.0)
    assert stats.wraps == 1


@pytest.mark.parametrize(
    "start, heading, expected",
    [
        ((-(WIDTH + 10.5), 0.0), 0.0, (WIDTH + 5.0, None)),
        ((0.0, HEIGHT + 10.5), 0.0, (None, -(HEIGHT + 5.0))),
        ((0.0, -(HEIGHT + 10.5)), math.pi, (None, HEIGHT + 5.0)),
    ],
)
def test_wrap_each_edge(start, heading, expected):
    store = _store((start[0], start[1], heading))

    flocking.apply_draws(store, _neutral_params(), [AgentDraws(apply_rules=False, slow_down=False)])

    expected_x, expected_y = expected
    if expected_x is not None:
        assert store[0].position.x == expected_x
    if expected_y is not None:
        assert store[0].position.y == expected_y


def test_both_axes_wrap_in_the_same_tick():
    store = _store((WIDTH + 20.0, HEIGHT + 20.0, 0.0))

    stats = flocking.apply_draws(store, _neutral_params(), [AgentDraws(apply_rules=False, slow_down=False)])

    assert store[0].position.x == -(WIDTH + 5.0)
    assert store[0].position.y == -(HEIGHT + 5.0)
    assert stats.wraps == 2


def test_lone_agent_moves_in_a_straight_line():
    store = _store((0.0, 0.0, 0.5))
    rng = DeterministicRng(3)

    for _ in range(10):
        stats = flocking.step(store, _neutral_params(), rng)
        assert stats.cohesion_links == stats.alignment_links == stats.separation_links == 0

    agent = store[0]
    assert agent.heading == pytest.approx(0.5)
    assert agent.position.x == pytest.approx(10.0 * math.sin(0.5))
    assert agent.position.y == pytest.approx(10.0 * math.cos(0.5))


def test_processing_order_does_not_change_the_result():
    params = FlockingParams()
    forward = AgentStore.initialize(40, 60.0, 40.0, 1.0, DeterministicRng(21))
    backward = AgentStore.initialize(40, 60.0, 40.0, 1.0, DeterministicRng(21))
    rng = DeterministicRng(99)

    for _ in range(5):
        draws = flocking.draw_tick(rng, 40, params)
        flocking.apply_draws(forward, params, draws)
        flocking.apply_draws(backward, params, draws, order=reversed(range(40)))

    assert forward.capture() == backward.capture()
    assert [a.speed for a in forward] == [a.speed for a in backward]


def test_step_matches_explicit_draws():
    params = FlockingParams()
    via_step = AgentStore.initialize(25, 50.0, 50.0, 1.0, DeterministicRng(8))
    via_draws = AgentStore.initialize(25, 50.0, 50.0, 1.0, DeterministicRng(8))

    flocking.step(via_step, params, DeterministicRng(4))
    flocking.apply_draws(via_draws, params, flocking.draw_tick(DeterministicRng(4), 25, params))

    assert via_step.capture() == via_draws.capture()


def test_invariants_hold_over_many_ticks():
    params = FlockingParams()
    store = AgentStore.initialize(60, 80.0, 60.0, 1.0, DeterministicRng(17))
    rng = DeterministicRng(18)

    for _ in range(300):
        flocking.step(store, params, rng)
        assert len(store) == 60
        for agent in store:
            assert agent.speed > 0.0
            assert abs(agent.position.x) <= 80.0 + flocking.WRAP_MARGIN
            assert abs(agent.position.y) <= 60.0 + flocking.WRAP_MARGIN


@pytest.mark.parametrize(
    "params",
    [
        FlockingParams(cohesion=BandConfig(50.0, 20.0, 0.01)),
        FlockingParams(alignment=BandConfig(20.0, 20.0, 0.01)),
        FlockingParams(separation=BandConfig(-1.0, 20.0, 0.01)),
        FlockingParams(rule_probability=1.5),
        FlockingParams(slow_factor=0.0),
        FlockingParams(fast_factor=-1.0),
    ],
)
def test_step_rejects_malformed_params(params):
    store = _store((0.0, 0.0, 0.0))
    with pytest.raises(ValueError):
        flocking.step(store, params, DeterministicRng(1))


def test_apply_draws_rejects_bad_order_and_draw_count():
    store = _store((0.0, 0.0, 0.0), (5.0, 5.0, 0.0))
    with pytest.raises(ValueError):
        flocking.apply_draws(store, FlockingParams(), _forced(1))
    with pytest.raises(ValueError):
        flocking.apply_draws(store, FlockingParams(), _forced(2), order=[0, 0])


def test_apply_draws_rejects_malformed_params():
    store = _store((0.0, 0.0, 0.0), (30.0, 0.0, 0.0))
    params = FlockingParams(cohesion=BandConfig(50.0, 20.0, 0.01))

    with pytest.raises(ValueError, match="cohesion"):
        flocking.apply_draws(store, params, _forced(2))
    assert store[1].position == Vector2(30.0, 0.0)
