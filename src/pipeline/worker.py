"""
Background worker feeding frames into a PipelineOrchestrator.

Camera callbacks hand frames over with `submit`, which never blocks. The
worker keeps a single pending slot biased toward the newest frame, so a
slow model drops stale frames instead of queueing them.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from models.errors import EngineUnavailable
from models.frame import Frame
from models.track import TrackState
from .engine import PipelineOrchestrator


ResultCallback = Callable[[Frame, List[TrackState]], None]
ErrorCallback = Callable[[Exception], None]


class FrameWorker:
    """
    Single worker thread per orchestrator with latest-frame-wins handoff.

    Example:
        worker = FrameWorker(orchestrator)
        worker.add_result_callback(lambda frame, tracks: print(tracks))
        worker.start()
        worker.submit(frame)   # from the camera thread
        worker.stop(timeout=2.0)
    """

    def __init__(self, orchestrator: PipelineOrchestrator, name: str = "frame-worker"):
        self.orchestrator = orchestrator
        self.name = name

        self._lock = threading.Lock()
        self._pending: Optional[Frame] = None
        self._wakeup = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._result_callbacks: List[ResultCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

        self.submitted_count = 0
        self.dropped_count = 0
        self.processed_count = 0
        self.error: Optional[Exception] = None

    def add_result_callback(self, callback: ResultCallback) -> None:
        """Add a callback taking (frame, confirmed_tracks)."""
        self._result_callbacks.append(callback)

    def add_error_callback(self, callback: ErrorCallback) -> None:
        """Add a callback taking the exception that stopped the worker."""
        self._error_callbacks.append(callback)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            logging.warning(f"{self.name} already running")
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logging.info(f"{self.name} started")

    def submit(self, frame: Frame) -> bool:
        """
        Offer a frame to the worker. Never blocks and never raises.

        Returns:
            False if the worker is stopped and the frame was discarded.
        """
        if self._stopped.is_set():
            return False
        with self._lock:
            if self._pending is not None:
                self.dropped_count += 1
            self._pending = frame
            self.submitted_count += 1
        self._wakeup.set()
        return True

    def _take_pending(self) -> Optional[Frame]:
        with self._lock:
            frame, self._pending = self._pending, None
            return frame

    def _run(self) -> None:
        while not self._stopped.is_set():
            self._wakeup.wait(timeout=0.1)
            self._wakeup.clear()

            frame = self._take_pending()
            if frame is None:
                continue

            try:
                tracks = self.orchestrator.process_frame(frame)
            except EngineUnavailable as e:
                logging.error(f"{self.name} stopping: {e}")
                self.error = e
                self._stopped.set()
                self._notify_error(e)
                break
            except Exception as e:
                logging.exception(f"{self.name} dropping frame after unexpected error: {e}")
                with self._lock:
                    self.dropped_count += 1
                continue

            self.processed_count += 1
            for callback in self._result_callbacks:
                try:
                    callback(frame, tracks)
                except Exception as e:
                    logging.warning(f"Result callback error: {e}")

        dropped = self._take_pending()
        if dropped is not None:
            with self._lock:
                self.dropped_count += 1

    def _notify_error(self, error: Exception) -> None:
        for callback in self._error_callbacks:
            try:
                callback(error)
            except Exception as e:
                logging.warning(f"Error callback error: {e}")

    def stop(self, timeout: Optional[float] = None, stop_orchestrator: bool = True) -> None:
        """
        Signal the worker thread, join it, and optionally stop the orchestrator.

        Args:
            timeout: Seconds to wait for the thread; defaults to model.stop_grace_period_s.
            stop_orchestrator: Also call orchestrator.stop().
        """
        if timeout is None and self.orchestrator.config is not None:
            timeout = self.orchestrator.config.model.stop_grace_period_s

        self._stopped.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logging.warning(f"{self.name} did not finish within {timeout}s")

        if stop_orchestrator:
            self.orchestrator.stop()

        logging.info(
            f"{self.name} stopped: submitted={self.submitted_count}, "
            f"processed={self.processed_count}, dropped={self.dropped_count}"
        )
