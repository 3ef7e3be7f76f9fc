"""
Simulator message protocol.

The simulator speaks Socket.IO over a WebSocket: event frames start with
"42" ("4" = message, "2" = event) followed by a JSON array
`[event_name, event_data]`. A frame whose data is null means the simulator
is in manual driving mode.
"""

from __future__ import annotations

import json
from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from data.formats.data_format import ControlResponse, Telemetry
from trajectory.frames import Pose, WorldPoints

EVENT_PREFIX = "42"
TELEMETRY_EVENT = "telemetry"
STEER_EVENT = "steer"
MANUAL_EVENT = "manual"

MANUAL_MESSAGE = EVENT_PREFIX + json.dumps([MANUAL_EVENT, {}], separators=(",", ":"))


class MalformedMessageError(ValueError):
    """Frame payload does not decode into the expected telemetry shape."""


class ChannelClosed(Exception):
    """The peer disconnected."""


class DuplexChannel(Protocol):
    """Blocking text channel to the simulator."""

    def receive(self) -> str:
        """Return the next frame; raise ChannelClosed on disconnect."""
        ...

    def send(self, text: str) -> None:
        ...


class TelemetryPayload(BaseModel):
    """Validated `telemetry` event data."""

    model_config = ConfigDict(extra="ignore")

    ptsx: List[float]
    ptsy: List[float]
    x: float
    y: float
    psi: float
    speed: float
    steering_angle: Optional[float] = None
    throttle: Optional[float] = None

    @model_validator(mode="after")
    def _check_lengths(self):
        if len(self.ptsx) != len(self.ptsy):
            raise ValueError(f"ptsx/ptsy lengths differ: {len(self.ptsx)} != {len(self.ptsy)}")
        return self

    def to_telemetry(self) -> Telemetry:
        return Telemetry(
            waypoints=WorldPoints(self.ptsx, self.ptsy),
            pose=Pose(self.x, self.y, self.psi),
            speed=self.speed,
            steering_angle=self.steering_angle,
            throttle=self.throttle,
        )


def is_event_frame(frame: str) -> bool:
    """True for Socket.IO event frames ("42..."); pings and handshakes are not events."""
    return len(frame) > 2 and frame.startswith(EVENT_PREFIX)


def extract_payload(frame: str) -> str:
    """
    Return the JSON array payload of an event frame, or "" when there is no data.

    Any frame mentioning null, or lacking a `[ ... }]` span, is treated as having
    no telemetry data.
    """
    if "null" in frame:
        return ""
    start = frame.find("[")
    end = frame.rfind("}]")
    if start != -1 and end != -1 and end > start:
        return frame[start:end + 2]
    return ""


def parse_event(payload: str) -> tuple[str, object]:
    """
    Decode a payload into (event_name, event_data).

    Raises:
        MalformedMessageError: on invalid JSON or a shape other than [str, data]
    """
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"invalid JSON payload: {e}") from e
    if not isinstance(decoded, list) or len(decoded) != 2 or not isinstance(decoded[0], str):
        raise MalformedMessageError("payload is not an [event, data] pair")
    return decoded[0], decoded[1]


def parse_telemetry(data: object) -> Telemetry:
    """Validate telemetry event data."""
    try:
        return TelemetryPayload.model_validate(data).to_telemetry()
    except ValidationError as e:
        raise MalformedMessageError(f"invalid telemetry: {e.error_count()} error(s): {e}") from e


def encode_event(event: str, data: dict) -> str:
    return EVENT_PREFIX + json.dumps([event, data], separators=(",", ":"))


def encode_steer(response: ControlResponse) -> str:
    """Encode a control response as a `steer` event frame."""
    return encode_event(STEER_EVENT, response.to_payload())
