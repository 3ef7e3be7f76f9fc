"""
Control state assembly in vehicle frame.

The vehicle sits at the origin of its own frame with zero heading, so the
errors only need the fitted reference polynomial evaluated at x = 0.
"""

import math
from typing import Sequence

from data.formats.data_format import ControlState
from trajectory.polynomial import polyeval, polyeval_derivative


def cross_track_error(coeffs: Sequence[float]) -> float:
    """Lateral offset of the fitted path from the vehicle (f(0) - y, y = 0)."""
    return polyeval(coeffs, 0.0) - 0.0


def heading_error(coeffs: Sequence[float]) -> float:
    """Negative arctangent of the path slope at the vehicle."""
    return -math.atan(polyeval_derivative(coeffs, 0.0))


def build_control_state(coeffs: Sequence[float], speed: float) -> ControlState:
    """
    Build the controller state for one cycle.

    Args:
        coeffs: Vehicle-frame reference polynomial (ascending powers)
        speed: Measured vehicle speed

    Returns:
        ControlState with x = y = psi = 0
    """
    return ControlState(
        x=0.0,
        y=0.0,
        psi=0.0,
        v=float(speed),
        cte=cross_track_error(coeffs),
        epsi=heading_error(coeffs),
    )
