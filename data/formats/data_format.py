"""
Data format definitions for the tracker pipeline and its recordings.
"""

from dataclasses import dataclass, field
from typing import Optional, List
import numpy as np

from trajectory.frames import Pose, VehiclePoints, WorldPoints


@dataclass(frozen=True)
class Telemetry:
    """One telemetry event from the simulator."""
    waypoints: WorldPoints  # reference path (world frame)
    pose: Pose
    speed: float
    # Current actuator state reported by the simulator (not used by the controller)
    steering_angle: Optional[float] = None
    throttle: Optional[float] = None


@dataclass(frozen=True)
class ControlState:
    """Controller state, vehicle frame. x, y and psi are zero by construction."""
    x: float
    y: float
    psi: float
    v: float
    cte: float   # cross-track error
    epsi: float  # heading error

    def as_vector(self) -> np.ndarray:
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi], dtype=np.float64)


@dataclass(frozen=True)
class ControlSolution:
    """Optimizer output with named fields."""
    steering: float  # normalized optimizer units (radians of wheel angle)
    throttle: float  # final units
    predicted: VehiclePoints


@dataclass(frozen=True)
class ControlResponse:
    """Outgoing steer message content."""
    steering_angle: float
    throttle: float
    predicted: VehiclePoints  # mpc_x / mpc_y
    reference: VehiclePoints  # next_x / next_y

    def to_payload(self) -> dict:
        mpc_x, mpc_y = self.predicted.to_lists()
        next_x, next_y = self.reference.to_lists()
        return {
            "steering_angle": float(self.steering_angle),
            "throttle": float(self.throttle),
            "mpc_x": mpc_x,
            "mpc_y": mpc_y,
            "next_x": next_x,
            "next_y": next_y,
        }


@dataclass
class CycleRecord:
    """Everything recorded for one telemetry cycle."""
    timestamp: float
    telemetry: Telemetry
    outcome: str  # "steer", "fallback", "fit_error", "optimizer_failure"
    state: Optional[ControlState] = None
    coeffs: Optional[np.ndarray] = None
    response: Optional[ControlResponse] = None
    duration_s: float = 0.0
    notes: List[str] = field(default_factory=list)
