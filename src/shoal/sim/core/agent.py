from __future__ import annotations

from dataclasses import dataclass

from pygame.math import Vector2


@dataclass(slots=True)
class Agent:
    id: int
    position: Vector2
    speed: float
    heading: float

    @property
    def is_focus(self) -> bool:
        return self.id == 0
