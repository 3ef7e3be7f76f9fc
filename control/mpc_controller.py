"""
Trajectory optimizer boundary and the default MPC (Model Predictive Control) solver.

The control loop only talks to an optimizer through `solve_control`, which
decodes the optimizer's flat output vector into a named-field ControlSolution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

from control.actuation import DEFAULT_MAX_STEER_RAD
from control.vehicle_model import DEFAULT_LF, KinematicModel
from data.formats.data_format import ControlSolution, ControlState
from trajectory.frames import VehiclePoints

logger = logging.getLogger(__name__)

# Output layout of the flat optimizer vector: predicted state at t+1, then actuations at t.
STATE_SIZE = 6
STEERING_INDEX = 6
THROTTLE_INDEX = 7


class OptimizerFailure(RuntimeError):
    """The optimizer could not produce a solution for the given state."""


class TrajectoryOptimizer(Protocol):
    def solve(self, state: np.ndarray,
              coeffs: np.ndarray) -> Tuple[Sequence[float], Sequence[float], Sequence[float]]:
        """Return (flat output vector, predicted x, predicted y)."""
        ...


def solve_control(optimizer: TrajectoryOptimizer, state: ControlState,
                  coeffs: Sequence[float]) -> ControlSolution:
    """
    Run the optimizer and decode its output.

    Args:
        optimizer: Any object implementing TrajectoryOptimizer
        state: Vehicle-frame control state
        coeffs: Vehicle-frame reference polynomial

    Returns:
        ControlSolution with raw steering, throttle and the predicted trajectory

    Raises:
        OptimizerFailure: if the optimizer fails or returns an unusable result
    """
    try:
        output, xs, ys = optimizer.solve(state.as_vector(), np.asarray(coeffs, dtype=np.float64))
        output = np.asarray(output, dtype=np.float64).reshape(-1)
    except OptimizerFailure:
        raise
    except Exception as e:
        # The optimizer is opaque; any error it raises fails this cycle only.
        raise OptimizerFailure(f"optimizer raised {type(e).__name__}: {e}") from e

    if output.size <= THROTTLE_INDEX:
        raise OptimizerFailure(
            f"optimizer output has {output.size} values, need at least {THROTTLE_INDEX + 1}"
        )
    steering = float(output[STEERING_INDEX])
    throttle = float(output[THROTTLE_INDEX])
    if not (np.isfinite(steering) and np.isfinite(throttle)):
        raise OptimizerFailure("optimizer returned non-finite actuations")
    try:
        predicted = VehiclePoints(np.asarray(xs), np.asarray(ys))
    except (ValueError, TypeError) as e:
        raise OptimizerFailure(str(e)) from e
    return ControlSolution(steering=steering, throttle=throttle, predicted=predicted)


@dataclass
class MPCConfig:
    """Configuration for the default MPC solver."""

    horizon: int = 10  # N, number of predicted states
    dt: float = 0.1  # seconds between states
    lf: float = DEFAULT_LF
    ref_v: float = 50.0  # target speed (simulator units)
    max_steer_rad: float = DEFAULT_MAX_STEER_RAD
    max_throttle: float = 1.0
    max_iterations: int = 200

    # Cost weights
    w_cte: float = 2000.0
    w_epsi: float = 2000.0
    w_v: float = 1.0
    w_delta: float = 5.0
    w_a: float = 5.0
    w_delta_rate: float = 200.0
    w_a_rate: float = 10.0


class MPCController:
    """
    Kinematic-model MPC solved by single shooting over the actuation sequence.

    Decision variables are N-1 steering angles followed by N-1 accelerations,
    bounded by the actuator limits; states are obtained by rolling out the
    model, so only box constraints remain.
    """

    def __init__(self, config: MPCConfig | None = None):
        self.config = config or MPCConfig()
        if self.config.horizon < 2:
            raise ValueError(f"horizon must be at least 2, got {self.config.horizon}")
        self.model = KinematicModel(lf=self.config.lf)

    def _rollout(self, state: np.ndarray, u: np.ndarray, coeffs: np.ndarray) -> np.ndarray:
        cfg = self.config
        steps = cfg.horizon - 1
        states = np.empty((cfg.horizon, STATE_SIZE))
        states[0] = state
        current = tuple(float(s) for s in state)
        for t in range(steps):
            current = self.model.update(current, u[t], u[steps + t], cfg.dt, coeffs)
            states[t + 1] = current
        return states

    def _cost(self, u: np.ndarray, state: np.ndarray, coeffs: np.ndarray) -> float:
        cfg = self.config
        steps = cfg.horizon - 1
        states = self._rollout(state, u, coeffs)
        delta = u[:steps]
        accel = u[steps:]

        cost = cfg.w_cte * np.sum(states[:, 4] ** 2)
        cost += cfg.w_epsi * np.sum(states[:, 5] ** 2)
        cost += cfg.w_v * np.sum((states[:, 3] - cfg.ref_v) ** 2)
        cost += cfg.w_delta * np.sum(delta ** 2) + cfg.w_a * np.sum(accel ** 2)
        cost += cfg.w_delta_rate * np.sum(np.diff(delta) ** 2)
        cost += cfg.w_a_rate * np.sum(np.diff(accel) ** 2)
        return float(cost)

    def solve(self, state: np.ndarray,
              coeffs: np.ndarray) -> Tuple[list, list, list]:
        """
        Solve for the actuation sequence.

        Args:
            state: (x, y, psi, v, cte, epsi)
            coeffs: Reference polynomial, ascending powers

        Returns:
            (flat output vector, predicted x, predicted y). The flat vector is
            the predicted state at t+1 followed by the first steering and
            throttle values.
        """
        cfg = self.config
        state = np.asarray(state, dtype=np.float64).reshape(-1)
        coeffs = np.asarray(coeffs, dtype=np.float64).reshape(-1)
        if state.size != STATE_SIZE:
            raise OptimizerFailure(f"state must have {STATE_SIZE} values, got {state.size}")
        if not (np.all(np.isfinite(state)) and np.all(np.isfinite(coeffs))):
            raise OptimizerFailure("non-finite state or coefficients")

        steps = cfg.horizon - 1
        bounds = ([(-cfg.max_steer_rad, cfg.max_steer_rad)] * steps
                  + [(-cfg.max_throttle, cfg.max_throttle)] * steps)
        result = minimize(
            self._cost,
            np.zeros(2 * steps),
            args=(state, coeffs),
            method="L-BFGS-B",
            bounds=bounds,
            options={"maxiter": cfg.max_iterations},
        )
        if not (np.all(np.isfinite(result.x)) and np.isfinite(result.fun)):
            raise OptimizerFailure(f"solver diverged: {result.message}")
        if not result.success:
            logger.debug("MPC solve ended early (cost=%.3f): %s", result.fun, result.message)

        states = self._rollout(state, result.x, coeffs)
        output = states[1].tolist() + [float(result.x[0]), float(result.x[steps])]
        return output, states[1:, 0].tolist(), states[1:, 1].tolist()


def build_mpc_controller(config: dict) -> MPCController:
    """Build the default optimizer from the `mpc` and `actuation` config sections."""
    mpc_cfg = config.get("mpc", {}) or {}
    actuation_cfg = config.get("actuation", {}) or {}
    defaults = MPCConfig()
    return MPCController(
        MPCConfig(
            horizon=int(mpc_cfg.get("horizon", defaults.horizon)),
            dt=float(mpc_cfg.get("dt", defaults.dt)),
            lf=float(mpc_cfg.get("lf", defaults.lf)),
            ref_v=float(mpc_cfg.get("ref_v", defaults.ref_v)),
            max_steer_rad=float(actuation_cfg.get("max_steer_rad", defaults.max_steer_rad)),
            max_throttle=float(mpc_cfg.get("max_throttle", defaults.max_throttle)),
            max_iterations=int(mpc_cfg.get("max_iterations", defaults.max_iterations)),
            w_cte=float(mpc_cfg.get("w_cte", defaults.w_cte)),
            w_epsi=float(mpc_cfg.get("w_epsi", defaults.w_epsi)),
            w_v=float(mpc_cfg.get("w_v", defaults.w_v)),
            w_delta=float(mpc_cfg.get("w_delta", defaults.w_delta)),
            w_a=float(mpc_cfg.get("w_a", defaults.w_a)),
            w_delta_rate=float(mpc_cfg.get("w_delta_rate", defaults.w_delta_rate)),
            w_a_rate=float(mpc_cfg.get("w_a_rate", defaults.w_a_rate)),
        )
    )
