"""
Data recorder for the tracker.
Records telemetry, control state, reference fit and outgoing commands per cycle.
"""

import h5py
import numpy as np
import json
import threading
import logging
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from .formats.data_format import CycleRecord

logger = logging.getLogger(__name__)

_VLEN_FLOAT = h5py.vlen_dtype(np.dtype("float64"))
_STR = h5py.string_dtype(encoding="utf-8")


class DataRecorder:
    """Records control cycles to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 polynomial_degree: int = 3, flush_every: int = 30):
        """
        Initialize data recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            polynomial_degree: Degree of the recorded reference fit
            flush_every: Number of buffered cycles written per flush
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"
        self.num_coeffs = polynomial_degree + 1

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        self.frame_buffer: List[CycleRecord] = []
        self.frame_buffer_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self.flush_every = max(1, int(flush_every))
        self.frame_count = 0
        self.closed = False

        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
            "polynomial_degree": polynomial_degree,
        }

    def _create_datasets(self):
        """Create extensible HDF5 datasets."""
        max_shape = (None,)
        f = self.h5_file

        f.create_dataset("cycle/timestamps", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("cycle/outcome", shape=(0,), maxshape=max_shape, dtype=_STR)
        f.create_dataset("cycle/duration_s", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("cycle/notes", shape=(0,), maxshape=max_shape, dtype=_STR)

        # Raw telemetry (world frame)
        f.create_dataset("telemetry/ptsx", shape=(0,), maxshape=max_shape, dtype=_VLEN_FLOAT)
        f.create_dataset("telemetry/ptsy", shape=(0,), maxshape=max_shape, dtype=_VLEN_FLOAT)
        f.create_dataset("telemetry/pose", shape=(0, 3), maxshape=(None, 3), dtype=np.float64)
        f.create_dataset("telemetry/speed", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("telemetry/steering_angle", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("telemetry/throttle", shape=(0,), maxshape=max_shape, dtype=np.float64)

        # Controller internals (vehicle frame), NaN when the cycle was skipped
        f.create_dataset("control/state", shape=(0, 6), maxshape=(None, 6), dtype=np.float64)
        f.create_dataset("control/coeffs", shape=(0, self.num_coeffs),
                         maxshape=(None, self.num_coeffs), dtype=np.float64)
        f.create_dataset("control/steering", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("control/throttle", shape=(0,), maxshape=max_shape, dtype=np.float64)
        f.create_dataset("control/mpc_x", shape=(0,), maxshape=max_shape, dtype=_VLEN_FLOAT)
        f.create_dataset("control/mpc_y", shape=(0,), maxshape=max_shape, dtype=_VLEN_FLOAT)

    def record(self, record: CycleRecord):
        """Buffer one cycle; flushes every `flush_every` cycles."""
        if self.closed:
            raise ValueError("recorder is closed")
        with self.frame_buffer_lock:
            self.frame_buffer.append(record)
            should_flush = len(self.frame_buffer) >= self.flush_every
        if should_flush:
            self.flush()

    @staticmethod
    def _optional(value: Optional[float]) -> float:
        return float("nan") if value is None else float(value)

    def flush(self):
        """Write buffered cycles to disk."""
        with self._write_lock:
            self._write_buffered()

    def _write_buffered(self):
        with self.frame_buffer_lock:
            frames = list(self.frame_buffer)
        if not frames:
            return

        f = self.h5_file
        start = self.frame_count
        end = start + len(frames)
        for name in _dataset_names(f):
            ds = f[name]
            ds.resize((end,) + ds.shape[1:])

        nan_state = np.full(6, np.nan)
        nan_coeffs = np.full(self.num_coeffs, np.nan)
        for i, rec in enumerate(frames, start=start):
            tel = rec.telemetry
            f["cycle/timestamps"][i] = rec.timestamp
            f["cycle/outcome"][i] = rec.outcome
            f["cycle/duration_s"][i] = rec.duration_s
            f["cycle/notes"][i] = "; ".join(rec.notes)

            f["telemetry/ptsx"][i] = tel.waypoints.xs
            f["telemetry/ptsy"][i] = tel.waypoints.ys
            f["telemetry/pose"][i] = [tel.pose.x, tel.pose.y, tel.pose.psi]
            f["telemetry/speed"][i] = tel.speed
            f["telemetry/steering_angle"][i] = self._optional(tel.steering_angle)
            f["telemetry/throttle"][i] = self._optional(tel.throttle)

            f["control/state"][i] = rec.state.as_vector() if rec.state is not None else nan_state
            if rec.coeffs is not None and len(rec.coeffs) == self.num_coeffs:
                f["control/coeffs"][i] = rec.coeffs
            else:
                f["control/coeffs"][i] = nan_coeffs
            if rec.response is not None:
                f["control/steering"][i] = rec.response.steering_angle
                f["control/throttle"][i] = rec.response.throttle
                f["control/mpc_x"][i] = rec.response.predicted.xs
                f["control/mpc_y"][i] = rec.response.predicted.ys
            else:
                f["control/steering"][i] = np.nan
                f["control/throttle"][i] = np.nan
                f["control/mpc_x"][i] = np.empty(0)
                f["control/mpc_y"][i] = np.empty(0)

        f.flush()
        self.frame_count = end
        # Cycles leave the buffer only once written; a failed write is retried on the next flush.
        with self.frame_buffer_lock:
            del self.frame_buffer[:len(frames)]

    def close(self):
        """Flush remaining cycles, write metadata and close the file."""
        if self.closed:
            return
        self.flush()
        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["num_cycles"] = self.frame_count
        self.h5_file.attrs["metadata"] = json.dumps(self.metadata)
        self.h5_file.close()
        self.closed = True
        logger.info(f"Recording saved: {self.output_file} ({self.frame_count} cycles)")


def _dataset_names(h5_file) -> List[str]:
    names: List[str] = []
    h5_file.visititems(lambda name, obj: names.append(name) if isinstance(obj, h5py.Dataset) else None)
    return names
