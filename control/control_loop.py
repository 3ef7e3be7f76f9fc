"""
Per-connection control loop: telemetry frame in, actuator command out.

One frame is processed at a time and every cycle starts from scratch; nothing
computed for one telemetry message is reused for the next.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from bridge.protocol import (
    MANUAL_MESSAGE,
    TELEMETRY_EVENT,
    ChannelClosed,
    DuplexChannel,
    MalformedMessageError,
    encode_steer,
    extract_payload,
    is_event_frame,
    parse_event,
    parse_telemetry,
)
from control.actuation import ActuationCodec
from control.mpc_controller import OptimizerFailure, TrajectoryOptimizer, solve_control
from control.state_builder import build_control_state
from data.formats.data_format import ControlResponse, CycleRecord, Telemetry
from trajectory.frames import VehiclePoints, to_vehicle_frame
from trajectory.polynomial import FitError, polyfit

logger = logging.getLogger(__name__)

SLOW_CYCLE_SECONDS = 0.2


class LoopState(Enum):
    AWAITING_MESSAGE = "awaiting_message"
    PARSING_TELEMETRY = "parsing_telemetry"
    COMPUTING_STATE = "computing_state"
    AWAITING_SOLUTION = "awaiting_solution"
    ENCODING_RESPONSE = "encoding_response"


@dataclass
class ControlLoopConfig:
    """Configuration for the control loop."""

    polynomial_degree: int = 3
    latency_s: float = 0.1  # artificial actuation latency before each steer message
    ack_skipped_cycles: bool = True  # answer skipped cycles with the manual ack
    fallback_on_optimizer_failure: bool = True
    fallback_steering: float = 0.0
    fallback_throttle: float = 0.0


@dataclass(frozen=True)
class OutgoingMessage:
    """A frame to send after `delay_s` seconds."""
    text: str
    delay_s: float
    kind: str  # "steer", "fallback", "manual", "skip_ack"


class ControlLoop:
    """
    Telemetry-to-actuation pipeline for a single simulator connection.

    handle_frame() never raises for per-cycle problems; malformed frames, fit
    failures and optimizer failures are logged, counted and mapped to the
    configured skip/fallback behavior.
    """

    def __init__(self, optimizer: TrajectoryOptimizer, codec: Optional[ActuationCodec] = None,
                 config: Optional[ControlLoopConfig] = None, recorder=None):
        """
        Initialize control loop.

        Args:
            optimizer: Trajectory optimizer used each cycle
            codec: Actuation codec (default calibration if None)
            config: Loop configuration
            recorder: Optional object with record(CycleRecord)
        """
        self.optimizer = optimizer
        self.codec = codec or ActuationCodec()
        self.config = config or ControlLoopConfig()
        self.recorder = recorder
        self.state = LoopState.AWAITING_MESSAGE
        self.stats: Counter = Counter()

    def _transition(self, state: LoopState) -> None:
        logger.debug("[LOOP] %s -> %s", self.state.value, state.value)
        self.state = state

    def compute(self, telemetry: Telemetry) -> ControlResponse:
        """
        Run the pipeline for one telemetry event.

        Raises:
            FitError: too few or degenerate reference waypoints
            OptimizerFailure: the optimizer produced no usable solution
        """
        return self._compute(telemetry)

    def _compute(self, telemetry: Telemetry, record: Optional[CycleRecord] = None) -> ControlResponse:
        self._transition(LoopState.COMPUTING_STATE)
        reference = to_vehicle_frame(telemetry.waypoints, telemetry.pose)
        coeffs = polyfit(reference.xs, reference.ys, self.config.polynomial_degree)
        state = build_control_state(coeffs, telemetry.speed)
        if record is not None:
            record.coeffs = coeffs
            record.state = state

        self._transition(LoopState.AWAITING_SOLUTION)
        solution = solve_control(self.optimizer, state, coeffs)

        self._transition(LoopState.ENCODING_RESPONSE)
        steering, throttle = self.codec.encode(solution.steering, solution.throttle)
        return ControlResponse(
            steering_angle=steering,
            throttle=throttle,
            predicted=solution.predicted,
            reference=reference,
        )

    def _fallback_response(self, telemetry: Telemetry) -> ControlResponse:
        return ControlResponse(
            steering_angle=self.config.fallback_steering,
            throttle=self.config.fallback_throttle,
            predicted=VehiclePoints(np.empty(0), np.empty(0)),
            reference=to_vehicle_frame(telemetry.waypoints, telemetry.pose),
        )

    def _skip(self, reason: str) -> Optional[OutgoingMessage]:
        self.stats[reason] += 1
        if self.config.ack_skipped_cycles:
            return OutgoingMessage(MANUAL_MESSAGE, 0.0, "skip_ack")
        return None

    def _record(self, record: CycleRecord, response: Optional[ControlResponse],
                duration_s: float) -> None:
        if self.recorder is None:
            return
        record.response = response
        record.duration_s = duration_s
        try:
            self.recorder.record(record)
        except Exception as e:
            # Recording never fails a control cycle.
            logger.error(f"Failed to record cycle: {type(e).__name__}: {e}")

    def handle_frame(self, frame: str) -> Optional[OutgoingMessage]:
        """
        Process one incoming frame.

        Returns:
            The message to send (with its send delay), or None to send nothing
        """
        try:
            return self._handle_frame(frame)
        finally:
            self._transition(LoopState.AWAITING_MESSAGE)

    def _handle_frame(self, frame: str) -> Optional[OutgoingMessage]:
        if not is_event_frame(frame):
            self.stats["ignored"] += 1
            return None

        self._transition(LoopState.PARSING_TELEMETRY)
        payload = extract_payload(frame)
        if not payload:
            self.stats["manual"] += 1
            return OutgoingMessage(MANUAL_MESSAGE, 0.0, "manual")

        try:
            event, data = parse_event(payload)
            if event != TELEMETRY_EVENT:
                self.stats["manual"] += 1
                return OutgoingMessage(MANUAL_MESSAGE, 0.0, "manual")
            telemetry = parse_telemetry(data)
        except MalformedMessageError as e:
            logger.warning(f"[SKIP] malformed frame: {e}")
            return self._skip("malformed")

        cycle_start = time.perf_counter()
        record = CycleRecord(timestamp=time.time(), telemetry=telemetry, outcome="steer")
        try:
            response = self._compute(telemetry, record)
            kind = "steer"
        except FitError as e:
            logger.warning(f"[SKIP] reference fit failed ({len(telemetry.waypoints)} waypoints): {e}")
            record.outcome = "fit_error"
            record.notes.append(str(e))
            self._record(record, None, time.perf_counter() - cycle_start)
            return self._skip("fit_error")
        except OptimizerFailure as e:
            record.notes.append(str(e))
            if not self.config.fallback_on_optimizer_failure:
                logger.warning(f"[SKIP] optimizer failure: {e}")
                record.outcome = "optimizer_failure"
                self._record(record, None, time.perf_counter() - cycle_start)
                return self._skip("optimizer_failure")
            logger.warning(f"[FALLBACK] optimizer failure, sending neutral command: {e}")
            response = self._fallback_response(telemetry)
            kind = "fallback"
            record.outcome = "fallback"

        duration = time.perf_counter() - cycle_start
        if duration > SLOW_CYCLE_SECONDS:
            logger.warning("[SLOW] control cycle duration=%.3fs", duration)
        self._record(record, response, duration)
        self.stats[kind] += 1
        logger.debug(
            "[%s] steering=%.4f throttle=%.4f", kind.upper(), response.steering_angle, response.throttle
        )
        return OutgoingMessage(encode_steer(response), self.config.latency_s, kind)

    def run(self, channel: DuplexChannel, sleep: Callable[[float], None] = time.sleep) -> None:
        """
        Blocking receive/handle/sleep/send loop until the channel closes.

        The latency delay blocks this loop, so each connection needs its own
        thread when several are served this way.
        """
        logger.info("Control loop started")
        try:
            while True:
                frame = channel.receive()
                outgoing = self.handle_frame(frame)
                if outgoing is None:
                    continue
                if outgoing.delay_s > 0.0:
                    sleep(outgoing.delay_s)
                channel.send(outgoing.text)
        except ChannelClosed:
            logger.info("Control loop stopped: channel closed")


def build_control_loop_config(config: dict) -> ControlLoopConfig:
    """Build the loop config from the `control` config section."""
    control_cfg = config.get("control", {}) or {}
    return ControlLoopConfig(
        polynomial_degree=int(control_cfg.get("polynomial_degree", 3)),
        latency_s=float(control_cfg.get("latency_ms", 100)) / 1000.0,
        ack_skipped_cycles=bool(control_cfg.get("ack_skipped_cycles", True)),
        fallback_on_optimizer_failure=bool(control_cfg.get("fallback_on_optimizer_failure", True)),
        fallback_steering=float(control_cfg.get("fallback_steering", 0.0)),
        fallback_throttle=float(control_cfg.get("fallback_throttle", 0.0)),
    )
