"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import threading
import time

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.config import Config
from models.frame import Frame, PixelFormat


INPUT_SIZE = 64
LABELS = ["stop", "yield", "speed_limit_50"]


class FakeBackend:
    """
    In-memory inference backend returning canned outputs.

    Attributes:
        outputs: List of arrays returned by every run, or a callable taking the batch.
        fail_load: Raise from load().
        fail_runs: Raise from run().
        gate: If set, run() blocks until the event is set.
    """

    def __init__(self, outputs=None):
        self.outputs = outputs if outputs is not None else [np.zeros((1, 4 + len(LABELS), 0), np.float32)]
        self.fail_load = False
        self.fail_runs = False
        self.delay = 0.0
        self.gate = None
        self.entered = threading.Event()

        self.load_calls = []
        self.run_calls = 0
        self.unload_calls = 0
        self.batch_shapes = []

    def load(self, model_path):
        if self.fail_load:
            raise RuntimeError("corrupt model archive")
        self.load_calls.append(model_path)

    def run(self, batch):
        self.run_calls += 1
        self.batch_shapes.append(tuple(batch.shape))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_runs:
            raise RuntimeError("delegate crashed")
        if callable(self.outputs):
            return self.outputs(batch)
        return [np.array(o, copy=True) for o in self.outputs]

    def unload(self):
        self.unload_calls += 1


def yolov8_output(candidates, num_classes=len(LABELS)):
    """
    Build a channel-first yolov8 output (1, 4 + C, N).

    Args:
        candidates: Iterable of (cx, cy, w, h, class_id, score) in input pixels.
    """
    candidates = list(candidates)
    out = np.zeros((1, 4 + num_classes, len(candidates)), dtype=np.float32)
    for n, (cx, cy, w, h, class_id, score) in enumerate(candidates):
        out[0, :4, n] = (cx, cy, w, h)
        out[0, 4 + class_id, n] = score
    return out


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def model_file(tmp_path):
    """A model artifact on disk; the fake backend never parses it."""
    path = tmp_path / "signs.ptl"
    path.write_bytes(b"\x00fake-model")
    return str(path)


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "model": {
            "path": "models/signs.ptl",
            "input_size": [INPUT_SIZE, INPUT_SIZE],
            "latency_budget_ms": 1000,
            "max_consecutive_failures": 5,
            "stop_grace_period_s": 1.0,
        },
        "preprocess": {
            "resize_mode": "letterbox",
            "pool_size": 2,
        },
        "postprocess": {
            "output_layout": "yolov8",
            "output_transposed": True,
            "confidence_threshold": 0.5,
            "nms_iou_threshold": 0.45,
            "labels": list(LABELS),
        },
        "tracking": {
            "match_iou_threshold": 0.3,
            "confirm_hits": 3,
            "expire_misses": 5,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


@pytest.fixture
def make_config(valid_config):
    """Factory building a Config with per-section overrides."""
    def _make(**sections):
        d = {k: dict(v) if isinstance(v, dict) else v for k, v in valid_config.items()}
        for section, values in sections.items():
            if isinstance(values, dict):
                d.setdefault(section, {}).update(values)
            else:
                d[section] = values
        return Config.from_dict(d)
    return _make


@pytest.fixture
def make_frame():
    """Factory building BGR frames filled with a constant color."""
    counter = {"index": 0}

    def _make(width=INPUT_SIZE, height=INPUT_SIZE, color=(0, 0, 0), orientation=0, timestamp=None):
        counter["index"] += 1
        image = np.zeros((height, width, 3), dtype=np.uint8)
        image[:, :] = color
        return Frame.from_numpy(
            image,
            timestamp=timestamp if timestamp is not None else float(counter["index"]),
            pixel_format=PixelFormat.BGR888,
            orientation=orientation,
            frame_index=counter["index"],
        )
    return _make


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
model:
  path: "models/signs.ptl"
  input_size: [320, 320]

postprocess:
  confidence_threshold: 0.5
  labels: ["stop", "yield"]

tracking:
  confirm_hits: 3
  expire_misses: 5

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir
