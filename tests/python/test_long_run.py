import pytest

from shoal.sim.core.config import SimulationConfig
from shoal.sim.core.world import World


@pytest.mark.slow
def test_long_run_flock_stays_bounded():
    config = SimulationConfig()
    world = World(config)

    history = [world.step(tick) for tick in range(3000)]

    final_metrics = history[-1]
    average_tick_ms = sum(m.tick_duration_ms for m in history) / len(history)
    summary = (
        f"final_polarization={final_metrics.polarization:.3f}, "
        f"avg_speed={final_metrics.average_speed:.4f}, "
        f"avg_tick_ms={average_tick_ms:.2f}"
    )

    assert final_metrics.population == config.population, summary
    assert all(agent.speed > 0 for agent in world.agents), summary
    for agent in world.agents:
        assert abs(agent.position.x) <= config.width + 10.0, summary
        assert abs(agent.position.y) <= config.height + 10.0, summary
    assert 0.0 <= final_metrics.polarization <= 1.0, summary
