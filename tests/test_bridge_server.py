"""
Tests for the bridge server: simulator WebSocket and HTTP status endpoints.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from bridge.protocol import MANUAL_MESSAGE
from bridge.server import create_app
from control.control_loop import ControlLoop, ControlLoopConfig

TELEMETRY = "42" + json.dumps(["telemetry", {
    "ptsx": [1, 2, 3, 4, 5],
    "ptsy": [1, 2, 3, 4, 5],
    "x": 0.0,
    "y": 0.0,
    "psi": 0.0,
    "speed": 10.0,
}])


class StubOptimizer:
    def solve(self, state, coeffs):
        return [0.0] * 6 + [-0.436332, 0.3], [1.0], [0.0]


def _make_client(latency_s):
    loops = []

    def factory():
        loop = ControlLoop(StubOptimizer(), config=ControlLoopConfig(latency_s=latency_s))
        loops.append(loop)
        return loop

    test_client = TestClient(create_app(factory))
    test_client.loops = loops
    return test_client


@pytest.fixture
def client():
    with _make_client(0.0) as test_client:
        yield test_client


@pytest.fixture
def delayed_client():
    with _make_client(0.3) as test_client:
        yield test_client


class TestWebSocket:

    def test_telemetry_gets_steer_reply(self, client):
        with client.websocket_connect("/") as ws:
            ws.send_text(TELEMETRY)
            reply = ws.receive_text()
        event, data = json.loads(reply[2:])
        assert event == "steer"
        assert data["steering_angle"] == 1.0
        assert data["throttle"] == 0.3

    def test_manual_mode_gets_manual_reply(self, client):
        with client.websocket_connect("/socket.io/") as ws:
            ws.send_text('42["telemetry",null]')
            assert ws.receive_text() == MANUAL_MESSAGE

    def test_replies_follow_frame_order(self, client):
        with client.websocket_connect("/") as ws:
            ws.send_text("2")  # ignored, no reply
            ws.send_text('42["telemetry",null]')
            ws.send_text(TELEMETRY)
            assert ws.receive_text() == MANUAL_MESSAGE
            assert ws.receive_text().startswith('42["steer"')

    def test_each_connection_gets_its_own_loop(self, client):
        with client.websocket_connect("/") as ws:
            ws.send_text(TELEMETRY)
            ws.receive_text()
        with client.websocket_connect("/") as ws:
            ws.send_text(TELEMETRY)
            ws.receive_text()
        assert len(client.loops) == 2
        assert client.loops[0] is not client.loops[1]


    def test_binary_frames_are_ignored(self, client):
        with client.websocket_connect("/") as ws:
            ws.send_bytes(b"\x00\x01")
            ws.send_text('42["telemetry",null]')
            assert ws.receive_text() == MANUAL_MESSAGE
            ws.send_text(TELEMETRY)
            assert ws.receive_text().startswith('42["steer"')

        assert client.get("/api/stats").json()["cycles"]["ignored_binary"] == 1


class TestActuationLatency:
    """Steer replies wait for the configured latency without blocking the server."""

    def test_steer_reply_is_delayed(self, delayed_client):
        with delayed_client.websocket_connect("/") as ws:
            start = time.monotonic()
            ws.send_text(TELEMETRY)
            reply = ws.receive_text()
            elapsed = time.monotonic() - start
        assert reply.startswith('42["steer"')
        assert elapsed >= 0.3

    def test_manual_reply_is_not_delayed(self, delayed_client):
        with delayed_client.websocket_connect("/") as ws:
            start = time.monotonic()
            ws.send_text('42["telemetry",null]')
            assert ws.receive_text() == MANUAL_MESSAGE
            assert time.monotonic() - start < 0.3

    def test_pending_steer_does_not_hold_other_connections(self, delayed_client):
        with delayed_client.websocket_connect("/") as first, \
                delayed_client.websocket_connect("/") as second:
            start = time.monotonic()
            first.send_text(TELEMETRY)
            second.send_text('42["telemetry",null]')

            assert second.receive_text() == MANUAL_MESSAGE
            manual_elapsed = time.monotonic() - start
            assert first.receive_text().startswith('42["steer"')
            steer_elapsed = time.monotonic() - start

        assert manual_elapsed < 0.3
        assert steer_elapsed >= 0.3


class TestStatusApi:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_stats_count_cycles(self, client):
        with client.websocket_connect("/") as ws:
            ws.send_text(TELEMETRY)
            ws.receive_text()
            ws.send_text('42["telemetry",null]')
            ws.receive_text()

        stats = client.get("/api/stats").json()
        assert stats["connections_total"] == 1
        assert stats["cycles"] == {"steer": 1, "manual": 1}
        assert stats["uptime_s"] >= 0.0
