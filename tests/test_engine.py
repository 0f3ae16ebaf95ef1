"""
Tests for the inference engine and backends.
"""

import threading

import numpy as np
import pytest

from conftest import FakeBackend
from inference import InferenceEngine, TorchScriptBackend, create_backend
from inference.torchscript_backend import _to_numpy_list
from models.config import ModelConfig
from models.errors import ConfigError, InferenceError, ModelLoadError


INPUT_SHAPE = (3, 8, 8)


def make_engine(backend=None, budget_ms=1000.0):
    return InferenceEngine(backend or FakeBackend([np.ones((1, 5))]), INPUT_SHAPE, latency_budget_ms=budget_ms)


def zeros():
    return np.zeros(INPUT_SHAPE, dtype=np.float32)


class TestLoad:
    def test_load_once(self, model_file):
        backend = FakeBackend()
        engine = make_engine(backend)

        engine.load(model_file)

        assert engine.is_loaded
        assert engine.model_path == model_file
        assert backend.load_calls == [model_file]

    def test_second_load_rejected(self, model_file):
        backend = FakeBackend()
        engine = make_engine(backend)
        engine.load(model_file)

        with pytest.raises(ModelLoadError, match="already loaded"):
            engine.load(model_file)
        assert len(backend.load_calls) == 1

    def test_missing_file(self, tmp_path):
        backend = FakeBackend()
        engine = make_engine(backend)

        with pytest.raises(ModelLoadError, match="not found"):
            engine.load(str(tmp_path / "missing.ptl"))

        assert backend.load_calls == []
        assert not engine.is_loaded

    def test_backend_failure_wrapped(self, model_file):
        backend = FakeBackend()
        backend.fail_load = True
        engine = make_engine(backend)

        with pytest.raises(ModelLoadError, match="corrupt model archive") as exc_info:
            engine.load(model_file)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not engine.is_loaded

    def test_load_after_unload_rejected(self, model_file):
        engine = make_engine()
        engine.load(model_file)
        engine.unload()

        with pytest.raises(ModelLoadError):
            engine.load(model_file)


class TestRun:
    def test_run_returns_raw_output(self, model_file):
        backend = FakeBackend([np.arange(6).reshape(1, 6)])
        engine = make_engine(backend)
        engine.load(model_file)

        raw = engine.run(zeros())

        assert raw.primary.tolist() == [[0, 1, 2, 3, 4, 5]]
        assert raw.latency_ms >= 0
        assert backend.batch_shapes == [(1,) + INPUT_SHAPE]
        assert engine.run_count == 1

    def test_shape_mismatch(self, model_file):
        backend = FakeBackend()
        engine = make_engine(backend)
        engine.load(model_file)

        with pytest.raises(InferenceError, match="shape mismatch"):
            engine.run(np.zeros((3, 16, 16), dtype=np.float32))
        assert backend.run_calls == 0

    def test_dtype_mismatch(self, model_file):
        engine = make_engine()
        engine.load(model_file)

        with pytest.raises(InferenceError, match="float32"):
            engine.run(np.zeros(INPUT_SHAPE, dtype=np.float64))

    def test_run_before_load(self):
        with pytest.raises(InferenceError, match="not loaded"):
            make_engine().run(zeros())

    def test_backend_error_wrapped(self, model_file):
        backend = FakeBackend()
        backend.fail_runs = True
        engine = make_engine(backend)
        engine.load(model_file)

        with pytest.raises(InferenceError, match="delegate crashed"):
            engine.run(zeros())

    def test_empty_outputs(self, model_file):
        engine = make_engine(FakeBackend([]))
        engine.load(model_file)

        with pytest.raises(InferenceError, match="no outputs"):
            engine.run(zeros())

    def test_over_budget_logged(self, model_file, caplog):
        backend = FakeBackend([np.ones(3)])
        backend.delay = 0.02
        engine = make_engine(backend, budget_ms=1.0)
        engine.load(model_file)

        engine.run(zeros())

        assert engine.over_budget_count == 1
        assert engine.last_latency_ms > 1.0
        assert "budget" in caplog.text


class TestUnload:
    def test_unload_is_idempotent(self, model_file):
        backend = FakeBackend()
        engine = make_engine(backend)
        engine.load(model_file)

        assert engine.unload() is True
        assert engine.unload() is True
        assert backend.unload_calls == 1
        assert not engine.is_loaded

    def test_unload_without_load(self):
        backend = FakeBackend()
        engine = make_engine(backend)

        assert engine.unload() is True
        assert backend.unload_calls == 0

    def test_run_after_unload(self, model_file):
        engine = make_engine()
        engine.load(model_file)
        engine.unload()

        with pytest.raises(InferenceError):
            engine.run(zeros())

    def test_release_deferred_until_run_finishes(self, model_file):
        """A run in flight keeps the model alive until it returns."""
        backend = FakeBackend([np.ones(3)])
        backend.gate = threading.Event()
        engine = make_engine(backend)
        engine.load(model_file)

        results = []
        worker = threading.Thread(target=lambda: results.append(engine.run(zeros())))
        worker.start()
        assert backend.entered.wait(timeout=2.0)

        released = engine.unload(timeout=0.05)

        assert released is False
        assert backend.unload_calls == 0

        backend.gate.set()
        worker.join(timeout=2.0)

        assert len(results) == 1
        assert backend.unload_calls == 1
        assert not engine.is_loaded

    def test_unload_waits_for_short_run(self, model_file):
        backend = FakeBackend([np.ones(3)])
        backend.gate = threading.Event()
        engine = make_engine(backend)
        engine.load(model_file)

        worker = threading.Thread(target=lambda: engine.run(zeros()))
        worker.start()
        assert backend.entered.wait(timeout=2.0)
        threading.Timer(0.05, backend.gate.set).start()

        assert engine.unload(timeout=2.0) is True
        worker.join(timeout=2.0)
        assert backend.unload_calls == 1


class TestBackends:
    def test_create_torchscript_backend(self):
        backend = create_backend(ModelConfig(backend="torchscript", device="cpu"))
        assert isinstance(backend, TorchScriptBackend)
        assert backend.cfg.device == "cpu"

    def test_create_unknown_backend(self):
        with pytest.raises(ConfigError):
            create_backend(ModelConfig(backend="tflite"))

    def test_to_numpy_list_flattens(self):
        out = (np.ones(2), [np.zeros(3), {"boxes": np.ones((1, 4))}])

        arrays = _to_numpy_list(out)

        assert [a.shape for a in arrays] == [(2,), (3,), (1, 4)]

    def test_torchscript_roundtrip(self, tmp_path):
        torch = pytest.importorskip("torch")

        class Doubler(torch.nn.Module):
            def forward(self, x):
                return x * 2

        path = str(tmp_path / "doubler.pt")
        torch.jit.script(Doubler()).save(path)

        engine = InferenceEngine(TorchScriptBackend(), INPUT_SHAPE)
        engine.load(path)
        raw = engine.run(np.ones(INPUT_SHAPE, dtype=np.float32))
        engine.unload()

        assert raw.primary.shape == (1,) + INPUT_SHAPE
        assert raw.primary.max() == pytest.approx(2.0)
