from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import AsyncIterator, Deque, Dict, List, Optional, Protocol

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from ..sim.core.config import AppConfig
from ..sim.core.world import World

logger = logging.getLogger(__name__)


class SnapshotSink(Protocol):
    async def send_text(self, data: str) -> None: ...


@dataclass(frozen=True)
class FrameMessage:
    tick: int
    text: str


class FrameBuffer:
    """Recent serialized frames, oldest first, never longer than ``limit``."""

    def __init__(self, limit: int):
        self._frames: Deque[FrameMessage] = deque(maxlen=max(1, limit))

    def __len__(self) -> int:
        return len(self._frames)

    def ticks(self) -> List[int]:
        return [frame.tick for frame in self._frames]

    def push(self, frame: FrameMessage) -> None:
        self._frames.append(frame)

    def after(self, tick: int) -> List[FrameMessage]:
        return [frame for frame in self._frames if frame.tick > tick]

    def drop_through(self, tick: int) -> None:
        while self._frames and self._frames[0].tick <= tick:
            self._frames.popleft()

    def clear(self) -> None:
        self._frames.clear()


class FlockController:
    """Steps a World on an asyncio task and fans frames out to websocket viewers.

    Each viewer has a cursor (the last tick sent to it); frames every viewer has
    already received are dropped, and with no viewers nothing is buffered.
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self.world = World(config.simulation)
        self.broadcast_interval = max(1, config.broadcast_interval)
        self.running = False
        self.tick = 0
        self.speed_multiplier = 1.0
        self.frames = FrameBuffer(config.frame_buffer_limit)
        self._cursors: Dict[SnapshotSink, int] = {}
        self._world_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def viewers(self) -> List[SnapshotSink]:
        return list(self._cursors)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        self.running = True

    async def shutdown(self) -> None:
        self.running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def reset(self) -> None:
        async with self._world_lock:
            self.world.reset()
            self.tick = 0
        self.frames.clear()
        for viewer in self._cursors:
            self._cursors[viewer] = -1
        logger.debug("flock reset")
        await self.publish()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.config.simulation.time_step / self.speed_multiplier)
            if not self.running:
                continue
            async with self._world_lock:
                self.world.step(self.tick)
                self.tick += 1
            if self.tick % self.broadcast_interval == 0:
                await self.publish()

    def frame(self) -> FrameMessage:
        snapshot = self.world.snapshot(self.tick)
        message = {
            "type": "snapshot",
            "tick": snapshot.tick,
            "metrics": asdict(snapshot.metrics),
            "world": asdict(snapshot.world),
            "metadata": asdict(snapshot.metadata),
            "agents": snapshot.agents,
        }
        return FrameMessage(tick=snapshot.tick, text=json.dumps(message))

    async def attach(self, viewer: SnapshotSink) -> None:
        self._cursors[viewer] = -1
        self.frames.push(self.frame())
        await self._deliver(viewer)
        self._trim()

    def detach(self, viewer: SnapshotSink) -> None:
        self._cursors.pop(viewer, None)

    def acknowledge(self, tick: int) -> None:
        self.frames.drop_through(tick)

    async def publish(self) -> None:
        if not self._cursors:
            return
        self.frames.push(self.frame())
        for viewer in list(self._cursors):
            await self._deliver(viewer)
        self._trim()

    async def _deliver(self, viewer: SnapshotSink) -> None:
        cursor = self._cursors.get(viewer)
        if cursor is None:
            return
        try:
            for frame in self.frames.after(cursor):
                await viewer.send_text(frame.text)
                cursor = frame.tick
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.info("dropping viewer after failed send: %s", exc)
            self.detach(viewer)
            return
        if viewer in self._cursors:
            self._cursors[viewer] = cursor

    def _trim(self) -> None:
        if self._cursors:
            self.frames.drop_through(min(self._cursors.values()))
        else:
            self.frames.clear()


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    controller = FlockController(config or AppConfig())

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await controller.start()
        try:
            yield
        finally:
            await controller.shutdown()

    app = FastAPI(title="Shoal Flocking Simulation", lifespan=lifespan)
    app.state.controller = controller

    @app.get("/api/status")
    async def status() -> JSONResponse:
        return JSONResponse(
            {
                "running": controller.running,
                "tick": controller.tick,
                "population": len(controller.world.store),
                "viewers": len(controller.viewers),
            }
        )

    @app.get("/api/snapshot")
    async def current_snapshot() -> JSONResponse:
        return JSONResponse(json.loads(controller.frame().text))

    @app.post("/api/control/{action}")
    async def control(action: str) -> JSONResponse:
        if action == "start":
            controller.running = True
        elif action == "stop":
            controller.running = False
        elif action == "reset":
            await controller.reset()
        else:
            return JSONResponse({"error": f"unknown action {action!r}"}, status_code=404)
        return JSONResponse({"running": controller.running, "tick": controller.tick})

    @app.post("/api/speed")
    async def set_speed(payload: dict) -> JSONResponse:
        controller.speed_multiplier = max(0.1, min(5.0, float(payload.get("multiplier", 1.0))))
        return JSONResponse({"multiplier": controller.speed_multiplier})

    @app.websocket("/ws")
    async def stream(websocket: WebSocket) -> None:
        await websocket.accept()
        await controller.attach(websocket)
        try:
            while True:
                try:
                    message = json.loads(await websocket.receive_text())
                except json.JSONDecodeError:
                    continue
                if isinstance(message, dict) and message.get("type") == "ack":
                    tick = message.get("tick")
                    if isinstance(tick, int):
                        controller.acknowledge(tick)
        except WebSocketDisconnect:
            pass
        finally:
            controller.detach(websocket)

    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the flocking simulation over HTTP and websockets")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with simulation and server settings")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config = AppConfig.from_yaml(args.config) if args.config else AppConfig()
    uvicorn.run(create_app(config), host=args.host, port=args.port)


__all__ = ["FlockController", "FrameBuffer", "create_app", "main"]
