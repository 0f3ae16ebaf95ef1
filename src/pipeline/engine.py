"""
Pipeline orchestrator for the sign recognition system.

This module wires preprocessing, inference, decoding and tracking into a
single synchronous `process_frame` call and owns the lifecycle of the model
and the tensor buffers.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from inference import InferenceBackend, InferenceEngine, create_backend
from models.config import Config
from models.errors import (
    EngineUnavailable,
    InferenceError,
    PipelineError,
    PreprocessError,
)
from models.frame import Frame
from models.track import TrackState
from postprocessing import DetectionDecoder, LabelTable
from preprocessing import Preprocessor
from tracking import SignTracker


@dataclass
class PipelineStats:
    """Runtime statistics for the pipeline."""
    frames_processed: int = 0
    frames_dropped: int = 0
    preprocess_failures: int = 0
    inference_failures: int = 0
    unexpected_failures: int = 0
    consecutive_inference_failures: int = 0
    last_latency_ms: float = 0.0
    over_budget_count: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frames_processed": self.frames_processed,
            "frames_dropped": self.frames_dropped,
            "preprocess_failures": self.preprocess_failures,
            "inference_failures": self.inference_failures,
            "unexpected_failures": self.unexpected_failures,
            "last_latency_ms": round(self.last_latency_ms, 2),
            "over_budget_count": self.over_budget_count,
            "uptime_s": round(time.time() - self.start_time, 1),
        }


class PipelineOrchestrator:
    """
    Runs frames through Preprocessor -> InferenceEngine -> DetectionDecoder -> SignTracker.

    This orchestrator:
    - Loads the model once in `start` and refuses to restart after `stop`
    - Drops frames that fail preprocessing or inference instead of raising
    - Raises EngineUnavailable once inference keeps failing
    - Returns only Confirmed tracks to the caller

    Example:
        orchestrator = PipelineOrchestrator()
        orchestrator.start("models/signs.ptl", config)
        tracks = orchestrator.process_frame(frame)
        orchestrator.stop()
    """

    def __init__(self, backend: Optional[InferenceBackend] = None):
        """
        Args:
            backend: Backend to run the model on. Built from model.backend when omitted.
        """
        self._backend = backend
        self._state_lock = threading.Lock()
        self._frame_lock = threading.Lock()
        self._running = False
        self._stopped = False
        self._unavailable: Optional[EngineUnavailable] = None

        self.config: Optional[Config] = None
        self.stats = PipelineStats()
        self._preprocessor: Optional[Preprocessor] = None
        self._engine: Optional[InferenceEngine] = None
        self._decoder: Optional[DetectionDecoder] = None
        self._tracker: Optional[SignTracker] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tracker(self) -> Optional[SignTracker]:
        return self._tracker

    def start(self, model_path: Optional[str], config: Union[Config, Dict[str, Any]]) -> None:
        """
        Validate the config, build the stages and load the model.

        Args:
            model_path: Path to the model artifact; falls back to model.path.
            config: Config object or raw config dict.

        Raises:
            ConfigError: If the configuration is invalid.
            ModelLoadError: If the model cannot be loaded. The pipeline stays stopped.
            PipelineError: If the pipeline was already stopped.
        """
        with self._state_lock:
            if self._running:
                logging.warning("Pipeline already running, ignoring start()")
                return
            if self._stopped:
                raise PipelineError("Pipeline has been stopped and cannot be restarted")

            cfg = config if isinstance(config, Config) else Config.from_dict(config)
            cfg.validate()
            model_path = model_path or cfg.model.path

            labels = LabelTable.from_config(cfg.postprocess)
            backend = self._backend if self._backend is not None else create_backend(cfg.model)
            engine = InferenceEngine(
                backend,
                input_shape=cfg.model.input_shape,
                latency_budget_ms=cfg.model.latency_budget_ms,
            )
            decoder = DetectionDecoder(
                cfg.postprocess,
                labels,
                input_size=(cfg.model.input_size[0], cfg.model.input_size[1]),
            )
            tracker = SignTracker.from_config(cfg.tracking)
            preprocessor = Preprocessor(cfg.model, cfg.preprocess)

            # Load the model last; on failure only the buffer pool needs releasing
            try:
                engine.load(model_path)
            except Exception:
                preprocessor.close()
                raise

            self.config = cfg
            self._engine = engine
            self._preprocessor = preprocessor
            self._decoder = decoder
            self._tracker = tracker
            self.stats = PipelineStats()
            self._running = True

        logging.info(f"Pipeline started: model={model_path}, input={cfg.model.input_shape}")

    def process_frame(self, frame: Frame) -> List[TrackState]:
        """
        Run one frame through the pipeline.

        Returns:
            Confirmed tracks after this frame. For a dropped frame, the
            confirmed tracks as they were before it.

        Raises:
            EngineUnavailable: After too many consecutive inference failures.
        """
        if not self._running:
            logging.warning("process_frame called while pipeline is not running")
            return []
        if self._unavailable is not None:
            raise EngineUnavailable(str(self._unavailable))

        with self._frame_lock:
            try:
                if not self._running:
                    logging.warning("process_frame called while pipeline is not running")
                    return []
                return self._process(frame)
            except EngineUnavailable:
                raise
            except Exception as e:
                self.stats.unexpected_failures += 1
                self.stats.frames_dropped += 1
                logging.exception(f"Unexpected error on frame {getattr(frame, 'frame_index', None)}: {e}")
                return self._confirmed()
            finally:
                if self._stopped:
                    # stop() gave up waiting for this frame
                    self._teardown(timeout=0)

    def _process(self, frame: Frame) -> List[TrackState]:
        try:
            tensor = self._preprocessor.prepare(frame)
        except PreprocessError as e:
            self.stats.preprocess_failures += 1
            self.stats.frames_dropped += 1
            logging.warning(f"Dropping frame {frame.frame_index}: {e}")
            return self._confirmed()

        try:
            raw = self._engine.run(tensor)
            detections = self._decoder.decode(raw, tensor.transform, timestamp=frame.timestamp)
        except InferenceError as e:
            self._record_inference_failure(frame, e)
            return self._confirmed()

        self.stats.consecutive_inference_failures = 0
        self.stats.last_latency_ms = raw.latency_ms
        self.stats.over_budget_count = self._engine.over_budget_count

        tracks = self._tracker.update(detections, timestamp=frame.timestamp)
        self.stats.frames_processed += 1

        if self.stats.frames_processed % 30 == 0:
            logging.debug(
                f"[TRACK] frame={frame.frame_index} detections={len(detections)} "
                f"confirmed={[t.track_id for t in tracks]}"
            )
        self._handle_periodic_tasks()
        return tracks

    def _record_inference_failure(self, frame: Frame, error: InferenceError) -> None:
        self.stats.inference_failures += 1
        self.stats.frames_dropped += 1
        self.stats.consecutive_inference_failures += 1

        limit = self.config.model.max_consecutive_failures
        failures = self.stats.consecutive_inference_failures
        if failures >= limit:
            self._unavailable = EngineUnavailable(
                f"Inference failed {failures} times in a row, last error: {error}"
            )
            logging.error(str(self._unavailable))
            raise self._unavailable from error

        logging.warning(f"Dropping frame {frame.frame_index} ({failures}/{limit}): {error}")

    def _confirmed(self) -> List[TrackState]:
        return self._tracker.get_confirmed_states() if self._tracker is not None else []

    def _handle_periodic_tasks(self) -> None:
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.pipeline.stats_log_interval:
            logging.info(f"Pipeline stats: {self.stats.to_dict()}")
            self.stats.last_stats_log_time = now

    def stop(self) -> None:
        """
        Stop the pipeline and release the model and buffers. Idempotent.

        Waits up to model.stop_grace_period_s for an in-flight frame; if it
        is still running, releasing is left to that frame.
        """
        with self._state_lock:
            if self._stopped:
                return
            was_running = self._running
            self._running = False
            self._stopped = True

        if not was_running:
            logging.info("Pipeline stopped before it was started")
            return

        grace = self.config.model.stop_grace_period_s
        if self._frame_lock.acquire(timeout=grace):
            try:
                self._teardown(timeout=grace)
            finally:
                self._frame_lock.release()
        else:
            logging.warning(f"Frame still in flight after {grace}s, deferring release")
            self._engine.unload(timeout=0)

        logging.info(f"Pipeline stopped: {self.stats.to_dict()}")

    def _teardown(self, timeout: Optional[float]) -> None:
        if self._engine is not None:
            self._engine.unload(timeout=timeout)
        if self._preprocessor is not None:
            self._preprocessor.close()

    def __enter__(self) -> "PipelineOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
