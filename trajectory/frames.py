"""
Coordinate frames for the reference path.

Points are carried in explicitly tagged containers so that world-frame values
from the simulator cannot be mixed with vehicle-frame values by accident.
Vehicle frame: origin at the car, x-axis along the car heading.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import ClassVar, Tuple

import numpy as np


@dataclass(frozen=True)
class Pose:
    """Vehicle pose in world frame at one telemetry instant."""
    x: float
    y: float
    psi: float  # heading (radians), not required to be wrapped


@dataclass(frozen=True, eq=False)
class _FramePoints:
    xs: np.ndarray
    ys: np.ndarray

    frame: ClassVar[str] = ""

    def __post_init__(self):
        xs = np.asarray(self.xs, dtype=np.float64).reshape(-1)
        ys = np.asarray(self.ys, dtype=np.float64).reshape(-1)
        if xs.shape != ys.shape:
            raise ValueError(
                f"{self.frame} points need matching x/y lengths, got {xs.size} and {ys.size}"
            )
        object.__setattr__(self, "xs", xs)
        object.__setattr__(self, "ys", ys)

    def __len__(self) -> int:
        return int(self.xs.size)

    def __iter__(self):
        return iter(zip(self.xs.tolist(), self.ys.tolist()))

    def to_lists(self) -> Tuple[list, list]:
        return self.xs.tolist(), self.ys.tolist()


@dataclass(frozen=True, eq=False)
class WorldPoints(_FramePoints):
    """Ordered points in the simulator's global frame."""
    frame: ClassVar[str] = "world"


@dataclass(frozen=True, eq=False)
class VehiclePoints(_FramePoints):
    """Ordered points in the vehicle frame."""
    frame: ClassVar[str] = "vehicle"


def map_to_vehicle(x: float, y: float, pose: Pose) -> Tuple[float, float]:
    """Translate by -(px, py) then rotate by -psi."""
    dx = x - pose.x
    dy = y - pose.y
    cos_psi = math.cos(pose.psi)
    sin_psi = math.sin(pose.psi)
    return cos_psi * dx + sin_psi * dy, -sin_psi * dx + cos_psi * dy


def to_vehicle_frame(points: WorldPoints, pose: Pose) -> VehiclePoints:
    """
    Convert world-frame waypoints into the frame centered on the vehicle.

    Args:
        points: Waypoints in world frame (order preserved)
        pose: Vehicle pose in world frame

    Returns:
        VehiclePoints with the same ordering
    """
    if not isinstance(points, WorldPoints):
        raise TypeError(f"expected WorldPoints, got {type(points).__name__}")
    dx = points.xs - pose.x
    dy = points.ys - pose.y
    cos_psi = math.cos(pose.psi)
    sin_psi = math.sin(pose.psi)
    return VehiclePoints(cos_psi * dx + sin_psi * dy, -sin_psi * dx + cos_psi * dy)


def to_world_frame(points: VehiclePoints, pose: Pose) -> WorldPoints:
    """Inverse of to_vehicle_frame: rotate by +psi then translate by (px, py)."""
    if not isinstance(points, VehiclePoints):
        raise TypeError(f"expected VehiclePoints, got {type(points).__name__}")
    cos_psi = math.cos(pose.psi)
    sin_psi = math.sin(pose.psi)
    xs = cos_psi * points.xs - sin_psi * points.ys + pose.x
    ys = sin_psi * points.xs + cos_psi * points.ys + pose.y
    return WorldPoints(xs, ys)
