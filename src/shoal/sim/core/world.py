from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, List

from .agent import Agent
from .config import SimulationConfig
from .rng import DeterministicRng, RandomSource
from .store import AgentStore
from ..systems import flocking, metrics as metrics_system
from ..systems.flocking import StepStats
from ..types.metrics import TickMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata, SnapshotWorld

logger = logging.getLogger(__name__)


class World:
    """Tick driver: owns the config, the random source and the agent store."""

    def __init__(self, config: SimulationConfig, rng: RandomSource | None = None):
        config.validate()
        self._config = config
        self._owns_rng = rng is None
        self._rng: RandomSource = DeterministicRng(config.seed) if rng is None else rng
        self._metrics: TickMetrics | None = None
        self._store = self._bootstrap_population()

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def store(self) -> AgentStore:
        return self._store

    @property
    def agents(self) -> List[Agent]:
        return list(self._store)

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    def reset(self) -> None:
        if self._owns_rng:
            self._rng.reset()  # type: ignore[attr-defined]
        else:
            logger.debug("reset with an injected random source; the stream is not rewound")
        self._metrics = None
        self._store = self._bootstrap_population()

    def step(self, tick: int) -> TickMetrics:
        start = perf_counter()
        step_stats = flocking.step(self._store, self._config.flocking, self._rng)
        elapsed_ms = (perf_counter() - start) * 1000.0
        stats = metrics_system.population_stats(self._store)
        metrics = metrics_system.create_metrics(tick, step_stats, elapsed_ms, stats)
        self._metrics = metrics
        return metrics

    def snapshot(self, tick: int) -> Snapshot:
        metrics = self._metrics if self._metrics is not None else self._snapshot_metrics_from_state(tick)
        config = self._config
        metadata = SnapshotMetadata(
            width=config.width,
            height=config.height,
            sim_dt=config.time_step,
            tick_rate=0.0 if config.time_step <= 0 else 1.0 / config.time_step,
            seed=config.seed,
            config_version=config.config_version,
            focus_id=self._store.focus.id,
        )
        return Snapshot(
            tick=tick,
            metrics=metrics,
            agents=[self._agent_snapshot(agent) for agent in self._store],
            world=SnapshotWorld(width=config.width, height=config.height),
            metadata=metadata,
        )

    def _bootstrap_population(self) -> AgentStore:
        config = self._config
        store = AgentStore.initialize(
            config.population, config.width, config.height, config.initial_speed, self._rng
        )
        logger.info(
            "spawned %d agents in a %.1f x %.1f domain (seed %s)",
            len(store),
            config.width * 2,
            config.height * 2,
            config.seed,
        )
        return store

    @staticmethod
    def _agent_snapshot(agent: Agent) -> Dict[str, Any]:
        return {
            "id": agent.id,
            "x": agent.position.x,
            "y": agent.position.y,
            "heading": agent.heading,
            "speed": agent.speed,
            "focus": agent.is_focus,
        }

    def _snapshot_metrics_from_state(self, tick: int) -> TickMetrics:
        stats = metrics_system.population_stats(self._store)
        return metrics_system.create_metrics(tick, StepStats(), 0.0, stats)
