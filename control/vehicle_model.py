"""
Kinematic bicycle model in the reference-tracking form used by the MPC.
"""

import math
from typing import Sequence, Tuple

from trajectory.polynomial import polyeval, polyeval_derivative


# Distance between the front axle and the center of gravity of the simulated car.
DEFAULT_LF = 2.67


class KinematicModel:
    """
    Kinematic bicycle model with cross-track and heading error states.

    State: (x, y, psi, v, cte, epsi). Positive steering turns counter-clockwise.
    """

    def __init__(self, lf: float = DEFAULT_LF):
        """
        Initialize the model.

        Args:
            lf: Front axle to center of gravity distance (meters)
        """
        if lf <= 0.0:
            raise ValueError(f"lf must be positive, got {lf}")
        self.lf = lf

    def update(self, state: Tuple[float, float, float, float, float, float],
               steering: float, accel: float, dt: float,
               coeffs: Sequence[float]) -> Tuple[float, float, float, float, float, float]:
        """
        Advance the state by one step.

        Args:
            state: Current (x, y, psi, v, cte, epsi)
            steering: Wheel angle (radians)
            accel: Longitudinal acceleration command
            dt: Time step (seconds)
            coeffs: Reference path polynomial (vehicle frame at t=0)

        Returns:
            New (x, y, psi, v, cte, epsi)
        """
        x, y, psi, v, _cte, epsi = state
        f_x = polyeval(coeffs, x)
        psi_des = math.atan(polyeval_derivative(coeffs, x))

        yaw_step = v / self.lf * steering * dt
        new_x = x + v * math.cos(psi) * dt
        new_y = y + v * math.sin(psi) * dt
        new_psi = psi + yaw_step
        new_v = v + accel * dt
        new_cte = (f_x - y) - v * math.sin(epsi) * dt
        new_epsi = (psi - psi_des) + yaw_step
        return new_x, new_y, new_psi, new_v, new_cte, new_epsi
