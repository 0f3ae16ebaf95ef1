"""
Inference engine: owns one backend and the model it loaded.

The engine is the only component that touches the model format. It enforces
the input shape, serializes forward passes, tracks latency against a budget
and guarantees that releasing the model never races an in-flight run.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Optional, Tuple, Union

import numpy as np

from models.config import ModelConfig
from models.errors import ConfigError, InferenceError, ModelLoadError
from preprocessing.tensor import Tensor
from .backend import InferenceBackend, RawOutput
from .torchscript_backend import TorchScriptBackend, TorchScriptConfig


BACKENDS = ("torchscript",)


def create_backend(model_cfg: ModelConfig) -> InferenceBackend:
    """Build the backend named by model.backend."""
    if model_cfg.backend == "torchscript":
        return TorchScriptBackend(TorchScriptConfig(device=model_cfg.device))
    raise ConfigError(f"model.backend must be one of: {', '.join(BACKENDS)}")


class InferenceEngine:
    """
    Load-once wrapper around an InferenceBackend.

    Example:
        engine = InferenceEngine(backend, input_shape=(3, 640, 640))
        engine.load("models/signs.ptl")
        raw = engine.run(tensor)
        engine.unload(timeout=2.0)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        input_shape: Tuple[int, int, int],
        latency_budget_ms: float = 100.0,
    ):
        self.backend = backend
        self.input_shape = tuple(input_shape)
        self.latency_budget_ms = latency_budget_ms

        self._run_lock = threading.Lock()
        self._state = threading.Condition()
        self._loaded = False
        self._closing = False
        self._in_flight = False
        self._release_deferred = False
        self._model_path: Optional[str] = None

        self.run_count = 0
        self.over_budget_count = 0
        self.last_latency_ms = 0.0

    @property
    def is_loaded(self) -> bool:
        with self._state:
            return self._loaded

    @property
    def model_path(self) -> Optional[str]:
        return self._model_path

    def load(self, model_path: str) -> None:
        """
        Load the model artifact. Blocking; called once per engine.

        Raises:
            ModelLoadError: If the file is missing, the backend rejects it,
                or the engine was already loaded or unloaded.
        """
        with self._state:
            if self._closing:
                raise ModelLoadError("Engine has been unloaded and cannot load again")
            if self._loaded:
                raise ModelLoadError(f"Model already loaded: {self._model_path}")

        if not model_path or not os.path.isfile(model_path):
            raise ModelLoadError(f"Model file not found: {model_path}")

        start = time.perf_counter()
        try:
            self.backend.load(model_path)
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {model_path}: {e}") from e
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        with self._state:
            self._loaded = True
            self._model_path = model_path
        logging.info(f"Model loaded in {elapsed_ms:.0f} ms: {model_path} (input={self.input_shape})")

    def run(self, tensor: Union[Tensor, np.ndarray]) -> RawOutput:
        """
        Run one forward pass. Calls are serialized per engine.

        Raises:
            InferenceError: On shape/dtype mismatch, when not loaded, or on backend failure.
        """
        data = tensor.data if isinstance(tensor, Tensor) else tensor
        frame_index = tensor.frame_index if isinstance(tensor, Tensor) else 0

        if tuple(data.shape) != self.input_shape:
            raise InferenceError(
                f"Input shape mismatch: got {tuple(data.shape)}, expected {self.input_shape}"
            )
        if data.dtype != np.float32:
            raise InferenceError(f"Input dtype must be float32, got {data.dtype}")

        with self._run_lock:
            with self._state:
                if not self._loaded or self._closing:
                    raise InferenceError("Engine is not loaded")
                self._in_flight = True

            release_now = False
            start = time.perf_counter()
            try:
                outputs = self.backend.run(data[np.newaxis])
                outputs = [np.asarray(o) for o in (outputs or [])]
            except Exception as e:
                raise InferenceError(f"Inference failed: {e}") from e
            finally:
                with self._state:
                    self._in_flight = False
                    release_now = self._release_deferred and self._loaded
                    if release_now:
                        self._loaded = False
                    self._state.notify_all()
                if release_now:
                    logging.info("In-flight inference finished, releasing deferred model")
                    self._release_backend()

        if not outputs:
            raise InferenceError("Backend returned no outputs")

        latency_ms = (time.perf_counter() - start) * 1000.0
        self.run_count += 1
        self.last_latency_ms = latency_ms
        if latency_ms > self.latency_budget_ms:
            self.over_budget_count += 1
            logging.warning(
                f"Inference took {latency_ms:.1f} ms (budget {self.latency_budget_ms:.0f} ms)"
            )

        return RawOutput(outputs=outputs, latency_ms=latency_ms, frame_index=frame_index)

    def unload(self, timeout: Optional[float] = None) -> bool:
        """
        Release the model. Idempotent.

        Waits up to `timeout` seconds for an in-flight run. If the run is still
        going after that, the release is deferred to the end of that run.

        Returns:
            True if no model is held on return, False if release was deferred.
        """
        with self._state:
            self._closing = True
            if not self._loaded:
                return True

            finished = self._state.wait_for(lambda: not self._in_flight, timeout=timeout)
            if not finished:
                self._release_deferred = True
                logging.warning(
                    f"Inference still running after {timeout}s, deferring model release"
                )
                return False
            if not self._loaded:
                return True
            self._loaded = False

        self._release_backend()
        return True

    def _release_backend(self) -> None:
        try:
            self.backend.unload()
        except Exception as e:
            logging.warning(f"Error unloading backend: {e}")
        logging.info(f"Model unloaded: {self._model_path}")
