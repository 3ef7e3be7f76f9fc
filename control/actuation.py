"""
Conversion between optimizer actuations and simulator actuator commands.
"""

from dataclasses import dataclass


# Max physical steering angle of the simulated car (25 degrees).
DEFAULT_MAX_STEER_RAD = 0.436332


@dataclass
class ActuationConfig:
    """Actuator calibration."""
    max_steer_rad: float = DEFAULT_MAX_STEER_RAD


class ActuationCodec:
    """
    Maps the optimizer's wheel angle to the simulator's steering input.

    The simulator expects steering in [-1, 1] with positive meaning a
    clockwise turn, while the optimizer's model turns counter-clockwise for a
    positive angle. Throttle passes through unchanged.
    """

    def __init__(self, config: ActuationConfig | None = None):
        self.config = config or ActuationConfig()
        if self.config.max_steer_rad <= 0.0:
            raise ValueError(f"max_steer_rad must be positive, got {self.config.max_steer_rad}")

    def encode_steering(self, raw_steering: float) -> float:
        return float(raw_steering) / -self.config.max_steer_rad

    def decode_steering(self, steering_command: float) -> float:
        return float(steering_command) * -self.config.max_steer_rad

    def encode_throttle(self, raw_throttle: float) -> float:
        return float(raw_throttle)

    def encode(self, raw_steering: float, raw_throttle: float) -> tuple[float, float]:
        return self.encode_steering(raw_steering), self.encode_throttle(raw_throttle)


def build_actuation_codec(config: dict) -> ActuationCodec:
    """Build the codec from the `actuation` config section."""
    actuation_cfg = config.get("actuation", {}) or {}
    return ActuationCodec(
        ActuationConfig(
            max_steer_rad=float(actuation_cfg.get("max_steer_rad", DEFAULT_MAX_STEER_RAD)),
        )
    )
