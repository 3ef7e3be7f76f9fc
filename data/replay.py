"""
Data replay utility for tracker recordings.
Feeds recorded telemetry back through the control loop for offline debugging.
"""

import h5py
import json
import numpy as np
from pathlib import Path
from typing import Iterator, List, Optional

from bridge.protocol import ChannelClosed, TELEMETRY_EVENT, encode_event
from data.formats.data_format import Telemetry
from trajectory.frames import Pose, WorldPoints


class DataReplay:
    """Replay recorded tracker data."""

    def __init__(self, recording_file: str):
        """
        Initialize data replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        """Load recording metadata."""
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}

    def __len__(self) -> int:
        if "cycle/timestamps" not in self.h5_file:
            return 0
        return len(self.h5_file["cycle/timestamps"])

    def get_outcomes(self) -> List[str]:
        if "cycle/outcome" not in self.h5_file:
            return []
        return list(self.h5_file["cycle/outcome"].asstr()[...])

    def get_telemetry(self) -> Iterator[Telemetry]:
        """
        Get recorded telemetry iterator.

        Yields:
            Telemetry in recording order
        """
        if "telemetry/pose" not in self.h5_file:
            return

        ptsx = self.h5_file["telemetry/ptsx"]
        ptsy = self.h5_file["telemetry/ptsy"]
        poses = self.h5_file["telemetry/pose"]
        speeds = self.h5_file["telemetry/speed"]
        steering = self.h5_file["telemetry/steering_angle"]
        throttle = self.h5_file["telemetry/throttle"]

        for i in range(len(poses)):
            x, y, psi = (float(v) for v in poses[i])
            yield Telemetry(
                waypoints=WorldPoints(np.asarray(ptsx[i]), np.asarray(ptsy[i])),
                pose=Pose(x, y, psi),
                speed=float(speeds[i]),
                steering_angle=_optional(steering[i]),
                throttle=_optional(throttle[i]),
            )

    def get_frames(self) -> Iterator[str]:
        """Yield recorded telemetry re-encoded as simulator event frames."""
        for telemetry in self.get_telemetry():
            yield encode_event(TELEMETRY_EVENT, telemetry_to_payload(telemetry))

    def close(self):
        """Close recording file."""
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ReplayChannel:
    """Blocking channel that serves recorded frames and collects the replies."""

    def __init__(self, frames):
        self._frames = iter(frames)
        self.sent: List[str] = []

    def receive(self) -> str:
        try:
            return next(self._frames)
        except StopIteration:
            raise ChannelClosed("end of recording") from None

    def send(self, text: str) -> None:
        self.sent.append(text)


def telemetry_to_payload(telemetry: Telemetry) -> dict:
    """Inverse of the telemetry parser: event data as the simulator sends it."""
    ptsx, ptsy = telemetry.waypoints.to_lists()
    payload = {
        "ptsx": ptsx,
        "ptsy": ptsy,
        "x": telemetry.pose.x,
        "y": telemetry.pose.y,
        "psi": telemetry.pose.psi,
        "speed": telemetry.speed,
    }
    if telemetry.steering_angle is not None:
        payload["steering_angle"] = telemetry.steering_angle
    if telemetry.throttle is not None:
        payload["throttle"] = telemetry.throttle
    return payload


def _optional(value) -> Optional[float]:
    value = float(value)
    return None if np.isnan(value) else value
