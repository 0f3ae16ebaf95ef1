"""
Traffic sign recognition host application.

Reads frames from a camera, video file or RTSP stream, runs them through the
sign recognition pipeline on a background worker and logs confirmed signs.

Usage:
    python src/main.py --config config/config.yaml --model models/signs.ptl --display

Arguments:
    --config: Path to configuration file
    --model: Model artifact (overrides model.path)
    --source: Camera index, video file or stream URL (overrides source.device_id)
    --display: Show confirmed signs in an OpenCV window
    --max-frames: Stop after this many frames have been read
"""

import os
import sys
import argparse
import logging
import threading
import time
import yaml
import cv2
import numpy as np
from typing import Dict, Any, List, Optional, Set, Tuple

from models.config import Config
from models.errors import ConfigError, EngineUnavailable, ModelLoadError
from models.frame import Frame
from models.track import TrackState
from observation import FrameSourceAdapter, OpenCVSource, OpenCVSourceConfig
from ops.logging import setup_logging
from pipeline import FrameWorker, PipelineOrchestrator

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_MODEL_ERROR = 2
EXIT_ENGINE_UNAVAILABLE = 3


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        config_dir = os.path.dirname(config_path)
        base_path = os.path.join(config_dir, "default.yaml")
        local_overrides_path = os.path.join(config_dir, "config.yaml")

        merged: Dict[str, Any] = {}
        if os.path.exists(base_path):
            merged = _read_yaml(base_path)
        if os.path.exists(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(local_overrides_path))

        # Finally apply explicit config_path if it's not one of the layered files
        layered = {os.path.abspath(base_path), os.path.abspath(local_overrides_path)}
        if os.path.exists(config_path) and os.path.abspath(config_path) not in layered:
            merged = _deep_merge(merged, _read_yaml(config_path))

        return merged
    except (OSError, yaml.YAMLError, ConfigError) as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    for section in ("model", "postprocess"):
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    try:
        Config.from_dict(config).validate()
    except ConfigError as e:
        return False, str(e)
    return True, None


def _parse_device(value: str):
    """Camera indices are ints, everything else is a path or URL."""
    return int(value) if value.isdigit() else value


def draw_tracks(image: np.ndarray, tracks: List[TrackState]) -> np.ndarray:
    """Draw confirmed tracks on a BGR image."""
    COLOR_CONFIRMED = (0, 255, 0)  # Green
    COLOR_COASTING = (0, 165, 255)  # Orange

    h, w = image.shape[:2]
    font = cv2.FONT_HERSHEY_SIMPLEX
    for track in tracks:
        x1, y1, x2, y2 = track.bbox.to_pixels(w, h)
        color = COLOR_COASTING if track.miss_count > 0 else COLOR_CONFIRMED
        label = f"#{track.track_id} {track.label} {track.confidence:.2f}"

        cv2.rectangle(image, (x1, y1), (x2, y2), color, 2)
        (tw, th), _ = cv2.getTextSize(label, font, 0.5, 1)
        cv2.rectangle(image, (x1, y1 - th - 6), (x1 + tw + 4, y1), color, -1)
        cv2.putText(image, label, (x1 + 2, y1 - 4), font, 0.5, (255, 255, 255), 1)
    return image


class SignReporter:
    """Result callback logging each track once when it is first confirmed."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reported: Set[int] = set()
        self.latest: List[TrackState] = []

    def __call__(self, frame: Frame, tracks: List[TrackState]) -> None:
        with self._lock:
            self.latest = tracks
            for track in tracks:
                if track.track_id in self._reported:
                    continue
                self._reported.add(track.track_id)
                logging.info(
                    f"Sign confirmed: #{track.track_id} {track.label} "
                    f"(confidence={track.confidence:.2f}, frame={frame.frame_index})"
                )

    def snapshot(self) -> List[TrackState]:
        with self._lock:
            return list(self.latest)


def run_loop(
    source: OpenCVSource,
    worker: FrameWorker,
    reporter: SignReporter,
    display: bool = False,
    max_frames: Optional[int] = None,
    max_read_failures: int = 10,
) -> None:
    """Read frames and hand them to the worker until the source ends or the worker stops."""
    adapter = FrameSourceAdapter()
    frames_read = 0
    consecutive_failures = 0

    while worker.is_alive:
        frame = source.read()
        if frame is None:
            if source.is_file:
                break
            consecutive_failures += 1
            if consecutive_failures >= max_read_failures:
                logging.error(f"Too many consecutive failures ({consecutive_failures}), stopping")
                break
            logging.warning(f"Frame read failed ({consecutive_failures}/{max_read_failures})")
            time.sleep(0.5)
            continue

        consecutive_failures = 0
        frames_read += 1
        worker.submit(frame)

        if display:
            upright = cv2.cvtColor(adapter.to_canonical(frame), cv2.COLOR_RGB2BGR)
            cv2.imshow("Sign Recognition", draw_tracks(upright, reporter.snapshot()))
            if cv2.waitKey(1) & 0xFF == ord("q"):
                break

        if max_frames is not None and frames_read >= max_frames:
            logging.info(f"Reached --max-frames={max_frames}")
            break


def main(argv: Optional[List[str]] = None) -> int:
    """Main application function."""
    parser = argparse.ArgumentParser(description="Traffic Sign Recognition Pipeline")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    parser.add_argument("--model", type=str, default=None,
                        help="Model artifact (overrides model.path)")
    parser.add_argument("--source", type=str, default=None,
                        help="Camera index, video file or stream URL")
    parser.add_argument("--display", action="store_true",
                        help="Enable visual display")
    parser.add_argument("--max-frames", type=int, default=None,
                        help="Stop after N frames")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.model:
        config.setdefault("model", {})["path"] = args.model
    if args.source is not None:
        config.setdefault("source", {})["device_id"] = _parse_device(args.source)

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return EXIT_CONFIG_ERROR

    cfg = Config.from_dict(config)
    setup_logging(cfg.log_path, cfg.log_level)
    logging.info("Starting Traffic Sign Recognition Pipeline")

    orchestrator = PipelineOrchestrator()
    try:
        orchestrator.start(cfg.model.path, cfg)
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except ModelLoadError as e:
        logging.error(f"Model load failed: {e}")
        return EXIT_MODEL_ERROR

    reporter = SignReporter()
    worker = FrameWorker(orchestrator)
    worker.add_result_callback(reporter)
    source = OpenCVSource(OpenCVSourceConfig.from_source_config(cfg.source))

    try:
        source.open()
        logging.info(f"Source info: {source.get_video_info()}")
        worker.start()
        run_loop(
            source,
            worker,
            reporter,
            display=args.display,
            max_frames=args.max_frames,
            max_read_failures=cfg.pipeline.max_consecutive_read_failures,
        )
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    except RuntimeError as e:
        logging.error(f"Source error: {e}")
    finally:
        worker.stop()
        source.close()
        if args.display:
            cv2.destroyAllWindows()

    if isinstance(worker.error, EngineUnavailable):
        logging.error(f"Inference engine unavailable: {worker.error}")
        return EXIT_ENGINE_UNAVAILABLE

    logging.info(f"Pipeline finished: {orchestrator.stats.to_dict()}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
