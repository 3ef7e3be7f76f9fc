"""
FastAPI server for simulator-controller communication.
Serves the simulator's telemetry WebSocket and a small HTTP status API.
"""

import asyncio
import time
import logging
from collections import Counter
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool
import uvicorn

from control.control_loop import ControlLoop


def _get_bridge_logger() -> logging.Logger:
    log_path = Path(__file__).resolve().parents[1] / "tmp" / "logs" / "mpc_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    bridge_logger = logging.getLogger("mpc_bridge")
    bridge_logger.setLevel(logging.INFO)

    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path)
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)
        bridge_logger.propagate = False

    return bridge_logger


logger = _get_bridge_logger()


class BridgeStats:
    """Counters shared by all connections (observability only)."""

    def __init__(self):
        self.started_at = time.time()
        self.connections_total = 0
        self.connections_active = 0
        self.cycles: Counter = Counter()

    def snapshot(self) -> dict:
        return {
            "uptime_s": time.time() - self.started_at,
            "connections_total": self.connections_total,
            "connections_active": self.connections_active,
            "cycles": dict(self.cycles),
        }


def create_app(loop_factory: Callable[[], ControlLoop]) -> FastAPI:
    """
    Build the bridge application.

    Args:
        loop_factory: Creates a fresh ControlLoop for each simulator connection

    Returns:
        FastAPI app
    """
    app = FastAPI(title="MPC Tracker Bridge Server")
    stats = BridgeStats()
    app.state.stats = stats

    async def _serve(websocket: WebSocket):
        await websocket.accept()
        loop = loop_factory()
        stats.connections_total += 1
        stats.connections_active += 1
        logger.info("Connected (client=%s)", websocket.client)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                frame = message.get("text")
                if frame is None:
                    # Binary frames carry no simulator events
                    stats.cycles["ignored_binary"] += 1
                    continue
                # Frames of one connection are handled strictly in order.
                outgoing = await run_in_threadpool(loop.handle_frame, frame)
                if outgoing is None:
                    continue
                stats.cycles[outgoing.kind] += 1
                if outgoing.delay_s > 0.0:
                    # Actuation latency
                    await asyncio.sleep(outgoing.delay_s)
                await websocket.send_text(outgoing.text)
        except WebSocketDisconnect as e:
            logger.info("Disconnected (code=%s)", e.code)
        finally:
            stats.connections_active -= 1

    @app.websocket("/")
    async def telemetry_root(websocket: WebSocket):
        await _serve(websocket)

    @app.websocket("/socket.io/")
    async def telemetry_socketio(websocket: WebSocket):
        await _serve(websocket)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "connections_active": stats.connections_active,
        }

    @app.get("/api/stats")
    async def get_stats():
        """Cycle outcome counters across all connections."""
        return stats.snapshot()

    return app


def run_server(loop_factory: Callable[[], ControlLoop], host: str = "0.0.0.0", port: int = 4567,
               log_level: Optional[str] = None):
    """Run the bridge server."""
    logger.info("Starting MPC Tracker Bridge Server on %s:%s", host, port)
    print(f"Starting MPC Tracker Bridge Server on {host}:{port}")
    print("Endpoints:")
    print("  WS   /            - Simulator telemetry / steer events")
    print("  WS   /socket.io/  - Same, Socket.IO path")
    print("  GET  /api/health  - Health check")
    print("  GET  /api/stats   - Cycle counters")

    uvicorn.run(create_app(loop_factory), host=host, port=port,
                log_level=(log_level or "info").lower())
