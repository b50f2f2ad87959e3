from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from pygame.math import Vector2

from .agent import Agent
from .rng import RandomSource

TWO_PI = 2.0 * math.pi


@dataclass(frozen=True, slots=True)
class FlockSnapshot:
    """Positions and headings of every agent, frozen at the start of a tick."""

    positions: Tuple[Tuple[float, float], ...]
    headings: Tuple[float, ...]

    def __len__(self) -> int:
        return len(self.positions)


class AgentStore:
    """Fixed-size, ordered agent collection over the domain [-width, width] x [-height, height]."""

    def __init__(self, agents: List[Agent], width: float, height: float):
        if not agents:
            raise ValueError("an agent store needs at least one agent")
        if width <= 0 or height <= 0:
            raise ValueError(f"domain must have positive extents, got {width}x{height}")
        self._agents = agents
        self._width = float(width)
        self._height = float(height)

    @classmethod
    def initialize(
        cls,
        count: int,
        width: float,
        height: float,
        initial_speed: float,
        rng: RandomSource,
    ) -> "AgentStore":
        if count <= 0:
            raise ValueError(f"population count must be positive, got {count}")
        if width <= 0 or height <= 0:
            raise ValueError(f"domain must have positive extents, got {width}x{height}")
        if initial_speed <= 0:
            raise ValueError(f"initial speed must be positive, got {initial_speed}")
        agents: List[Agent] = []
        for index in range(count):
            x = rng.next_range(-width, width)
            y = rng.next_range(-height, height)
            heading = rng.next_range(0.0, TWO_PI)
            agents.append(Agent(id=index, position=Vector2(x, y), speed=initial_speed, heading=heading))
        return cls(agents, width, height)

    @property
    def width(self) -> float:
        return self._width

    @property
    def height(self) -> float:
        return self._height

    @property
    def focus(self) -> Agent:
        return self._agents[0]

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[Agent]:
        return iter(self._agents)

    def __getitem__(self, index: int) -> Agent:
        return self._agents[index]

    def capture(self) -> FlockSnapshot:
        return FlockSnapshot(
            positions=tuple((agent.position.x, agent.position.y) for agent in self._agents),
            headings=tuple(agent.heading for agent in self._agents),
        )
