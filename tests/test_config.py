"""
Tests for configuration loading and stack wiring.
"""

import json

import yaml

from bridge.protocol import MANUAL_MESSAGE
from control.control_loop import ControlLoop
from data.formats.data_format import CycleRecord, Telemetry
from data.recorder import DataRecorder
import mpc_stack
from mpc_stack import MPCStack, build_control_loop, load_config
from trajectory.frames import Pose, WorldPoints


def test_default_config_file_loads():
    config = load_config()
    assert config["server"]["port"] == 4567
    assert config["control"]["latency_ms"] == 100
    assert config["control"]["polynomial_degree"] == 3
    assert config["actuation"]["max_steer_rad"] == 0.436332


def test_missing_config_falls_back_to_defaults(tmp_path):
    assert load_config(str(tmp_path / "missing.yaml")) == {}


def test_empty_config_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)) == {}


def test_build_control_loop_applies_sections():
    loop = build_control_loop({
        "control": {"latency_ms": 20, "polynomial_degree": 2},
        "actuation": {"max_steer_rad": 0.5},
        "mpc": {"horizon": 5},
    })
    assert isinstance(loop, ControlLoop)
    assert loop.config.latency_s == 0.02
    assert loop.config.polynomial_degree == 2
    assert loop.codec.config.max_steer_rad == 0.5
    assert loop.optimizer.config.horizon == 5
    assert loop.optimizer.config.max_steer_rad == 0.5


def test_latency_override(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"control": {"latency_ms": 100}}))
    stack = MPCStack(config_path=str(path), latency_ms=0)
    assert stack.new_control_loop().config.latency_s == 0.0
    assert stack.recorder is None


def test_replay_runs_recording_through_controller(tmp_path):
    recorder = DataRecorder(str(tmp_path), recording_name="session")
    telemetry = Telemetry(
        waypoints=WorldPoints([0.0, 10.0, 20.0, 30.0, 40.0], [0.0, 0.0, 0.0, 0.0, 0.0]),
        pose=Pose(-5.0, 0.0, 0.0),
        speed=10.0,
    )
    recorder.record(CycleRecord(timestamp=1.0, telemetry=telemetry, outcome="steer"))
    recorder.record(CycleRecord(
        timestamp=2.0,
        telemetry=Telemetry(waypoints=WorldPoints([1.0], [1.0]), pose=Pose(0.0, 0.0, 0.0), speed=0.0),
        outcome="fit_error",
    ))
    recorder.close()

    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({"mpc": {"horizon": 5, "max_iterations": 50}}))
    stack = MPCStack(config_path=str(config_path))
    sent = stack.replay(str(tmp_path / "session.h5"))

    assert len(sent) == 2
    event, data = json.loads(sent[0][2:])
    assert event == "steer"
    assert abs(data["steering_angle"]) < 0.05
    assert sent[1] == MANUAL_MESSAGE


def _write_recording(directory, name="session"):
    recorder = DataRecorder(str(directory), recording_name=name)
    recorder.record(CycleRecord(
        timestamp=1.0,
        telemetry=Telemetry(
            waypoints=WorldPoints([0.0, 10.0, 20.0, 30.0], [0.0, 0.0, 0.0, 0.0]),
            pose=Pose(-5.0, 0.0, 0.0),
            speed=10.0,
        ),
        outcome="steer",
    ))
    recorder.close()
    return directory / f"{name}.h5"


def _recording_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "mpc": {"horizon": 5, "max_iterations": 50},
        "recording": {"enabled": True, "dir": str(tmp_path / "recordings")},
    }))
    return path


def test_recording_enabled_from_config(tmp_path):
    stack = MPCStack(config_path=str(_recording_config(tmp_path)))
    assert stack.recorder is not None
    stack.stop()


def test_explicit_no_record_overrides_config(tmp_path):
    stack = MPCStack(config_path=str(_recording_config(tmp_path)), record_data=False)
    assert stack.recorder is None
    assert not (tmp_path / "recordings").exists()


def test_replay_cli_never_opens_a_recorder(tmp_path, monkeypatch, capsys):
    recording = _write_recording(tmp_path / "input")
    config_path = _recording_config(tmp_path)
    monkeypatch.setattr(mpc_stack, "configure_logging", lambda level: None)
    monkeypatch.setattr("sys.argv", [
        "mpc_stack.py", "--config", str(config_path), "--replay", str(recording),
    ])

    mpc_stack.main()

    assert not (tmp_path / "recordings").exists()
    assert capsys.readouterr().out.startswith('42["steer"')
