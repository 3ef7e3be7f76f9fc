"""
Main tracker integration script.
Connects the simulator bridge, the reference-path pipeline and the MPC.
"""

import time
import sys
from pathlib import Path
from typing import Optional
import logging
import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from bridge.client import BridgeClient
from bridge.server import run_server
from control.actuation import build_actuation_codec
from control.control_loop import ControlLoop, build_control_loop_config
from control.mpc_controller import build_mpc_controller
from data.recorder import DataRecorder
from data.replay import DataReplay, ReplayChannel

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Log to stderr and tmp/logs/mpc_stack.log."""
    log_dir = Path(__file__).parent / 'tmp' / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'mpc_stack.log'

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(str(log_file))
        ]
    )


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = Path(__file__).parent / "config" / "mpc_stack_config.yaml"
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def build_control_loop(config: dict, recorder: Optional[DataRecorder] = None) -> ControlLoop:
    """Create a control loop (one per connection) from the config dict."""
    return ControlLoop(
        optimizer=build_mpc_controller(config),
        codec=build_actuation_codec(config),
        config=build_control_loop_config(config),
        recorder=recorder,
    )


class MPCStack:
    """Owns the configuration, the optional recorder and the serving mode."""

    def __init__(self, config_path: Optional[str] = None, record_data: Optional[bool] = None,
                 recording_dir: Optional[str] = None, latency_ms: Optional[float] = None):
        """
        Initialize the tracker stack.

        Args:
            config_path: YAML config path (default: config/mpc_stack_config.yaml)
            record_data: Record control cycles to HDF5 (None: use `recording.enabled`)
            recording_dir: Directory for recordings (overrides config)
            latency_ms: Artificial actuation latency (overrides config)
        """
        self.config = load_config(config_path)
        control_cfg = self.config.get("control") or {}
        self.config["control"] = control_cfg
        if latency_ms is not None:
            control_cfg["latency_ms"] = float(latency_ms)

        recording_cfg = self.config.get("recording", {}) or {}
        self.recorder: Optional[DataRecorder] = None
        if record_data is None:
            record_data = bool(recording_cfg.get("enabled", False))
        if record_data:
            self.recorder = DataRecorder(
                recording_dir or recording_cfg.get("dir", "data/recordings"),
                polynomial_degree=int(control_cfg.get("polynomial_degree", 3)),
            )
            logger.info(f"Data recording enabled: {self.recorder.output_file}")
        else:
            logger.info("Data recording disabled")

    def new_control_loop(self) -> ControlLoop:
        return build_control_loop(self.config, recorder=self.recorder)

    def serve(self, host: Optional[str] = None, port: Optional[int] = None, log_level: str = "INFO"):
        """Serve simulator connections until interrupted."""
        server_cfg = self.config.get("server", {}) or {}
        host = host or server_cfg.get("host", "0.0.0.0")
        port = int(port or server_cfg.get("port", 4567))
        try:
            run_server(self.new_control_loop, host=host, port=port, log_level=log_level)
        finally:
            self.stop()

    def replay(self, recording_file: str) -> list:
        """
        Run a recording through the control loop without latency.

        Returns:
            Frames the loop would have sent
        """
        with DataReplay(recording_file) as replay:
            logger.info(f"Replaying {len(replay)} cycles from {recording_file}")
            channel = ReplayChannel(replay.get_frames())
            start = time.time()
            self.new_control_loop().run(channel, sleep=lambda _delay: None)
        logger.info(f"Replay produced {len(channel.sent)} messages in {time.time() - start:.2f}s")
        return channel.sent

    def stop(self):
        if self.recorder is not None:
            self.recorder.close()


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run MPC trajectory tracker')
    parser.add_argument('--config', type=str, default=None,
                       help='Path to configuration YAML file (default: config/mpc_stack_config.yaml)')
    parser.add_argument('--host', type=str, default=None,
                       help='Bind address for the simulator WebSocket')
    parser.add_argument('--port', type=int, default=None,
                       help='Port for the simulator WebSocket (default: 4567)')
    parser.add_argument('--latency_ms', type=float, default=None,
                       help='Artificial actuation latency in milliseconds (default: 100)')
    parser.add_argument('--record', action='store_true', default=None,
                       help='Record control cycles to HDF5 (default: recording.enabled in config)')
    parser.add_argument('--no-record', dest='record', action='store_false',
                       help='Disable data recording')
    parser.set_defaults(record=None)
    parser.add_argument('--recording_dir', type=str, default=None,
                       help='Directory for recordings')
    parser.add_argument('--replay', type=str, default=None,
                       help='Replay an HDF5 recording through the controller and exit')
    parser.add_argument('--status', type=str, nargs='?', const='http://localhost:4567', default=None,
                       help='Print stats of a running bridge (default URL: http://localhost:4567)')
    parser.add_argument('--log-level', type=str, default='INFO',
                       help='Logging level (DEBUG, INFO, WARNING, ERROR)')

    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.status is not None:
        client = BridgeClient(args.status)
        if not client.health_check():
            logger.error(f"Bridge server is not available at {args.status}")
            sys.exit(1)
        print(yaml.safe_dump(client.get_stats() or {}, sort_keys=True))
        return

    stack = MPCStack(
        config_path=args.config,
        record_data=False if args.replay is not None else args.record,
        recording_dir=args.recording_dir,
        latency_ms=args.latency_ms,
    )

    if args.replay is not None:
        sent = stack.replay(args.replay)
        for message in sent:
            print(message)
        return

    stack.serve(host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
