from __future__ import annotations

import random
from typing import Protocol


class RandomSource(Protocol):
    def next_float(self) -> float: ...

    def next_range(self, low: float, high: float) -> float: ...

    def next_int(self, max_value: int) -> int: ...


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)

    @property
    def seed(self) -> int:
        return self._seed

    def reset(self) -> None:
        self._random.seed(self._seed)

    def next_float(self) -> float:
        return self._random.random()

    def next_range(self, low: float, high: float) -> float:
        # Half-open [low, high); random.uniform may return high.
        return low + (high - low) * self._random.random()

    def next_int(self, max_value: int) -> int:
        return self._random.randrange(max_value)
