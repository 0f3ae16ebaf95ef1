"""
OpenCV-based observation source.

Supports:
- USB webcams (device_id as int, e.g., 0)
- RTSP/IP cameras (device_id as str URL)
- Video files (device_id as file path)

Frames are emitted as BGR888 Frame snapshots tagged with the configured
orientation; rotation happens later in the frame source adapter.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlparse, urlunparse

import cv2
import numpy as np

from models.config import SourceConfig
from models.frame import Frame, PixelFormat
from .base import ObservationSource, ObservationConfig


def sanitize_url(device_id: Union[int, str]) -> str:
    """Mask credentials in stream URLs before logging them."""
    if not isinstance(device_id, str) or "@" not in device_id:
        return str(device_id)
    parsed = urlparse(device_id)
    netloc = f"***@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse((parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment))


@dataclass
class OpenCVSourceConfig(ObservationConfig):
    """
    Configuration for OpenCV-based observation sources.

    Attributes:
        device_id: Camera index (int), RTSP URL (str), or file path (str).
        resolution: Requested capture resolution (USB cameras only).
        fps: Requested capture rate (USB cameras only).
        rtsp_transport: Transport protocol for RTSP ("tcp" or "udp").
        buffer_size: OpenCV capture buffer size (reduces latency for live feeds).
        max_retries: Maximum retries for camera initialization.
    """
    device_id: Union[int, str] = 0
    resolution: Optional[Tuple[int, int]] = None
    fps: Optional[int] = None
    rtsp_transport: str = "tcp"
    buffer_size: int = 1
    max_retries: int = 3

    @classmethod
    def from_source_config(cls, cfg: SourceConfig, source_id: str = "camera") -> "OpenCVSourceConfig":
        """Adapter: Create OpenCVSourceConfig from the typed source section."""
        return cls(
            source_id=source_id,
            orientation=cfg.orientation,
            device_id=cfg.device_id,
            resolution=tuple(cfg.resolution) if cfg.resolution else None,
            fps=cfg.fps,
            rtsp_transport=cfg.rtsp_transport,
            max_retries=cfg.max_retries,
        )


class OpenCVSource(ObservationSource):
    """
    OpenCV-based observation source for cameras and video files.

    Wraps cv2.VideoCapture to provide frames as Frame objects and
    reconnects camera streams after transient read failures.
    """

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self._opencv_config = config
        self._cap: Optional[cv2.VideoCapture] = None
        self._consecutive_failures = 0

    @property
    def device_id(self) -> Union[int, str]:
        return self._opencv_config.device_id

    @property
    def is_rtsp(self) -> bool:
        return isinstance(self.device_id, str) and (
            self.device_id.startswith("rtsp://") or
            self.device_id.startswith("rtsps://")
        )

    @property
    def is_file(self) -> bool:
        return (
            isinstance(self.device_id, str) and
            not self.is_rtsp and
            os.path.exists(self.device_id)
        )

    def open(self) -> None:
        if self._is_open:
            return

        self._initialize(retry_count=0)
        self._is_open = True
        self._frame_index = 0

        logging.info(
            f"OpenCVSource opened: source_id={self.source_id}, "
            f"device={sanitize_url(self.device_id)}, orientation={self._opencv_config.orientation}"
        )

    def _initialize(self, retry_count: int = 0) -> None:
        """Initialize or reinitialize the capture device."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None

        if retry_count > 0:
            wait_time = min(2 ** retry_count, 10)
            logging.info(
                f"Retrying initialization (attempt {retry_count + 1}/"
                f"{self._opencv_config.max_retries}) after {wait_time}s"
            )
            time.sleep(wait_time)

        if self.is_rtsp:
            os.environ["OPENCV_FFMPEG_CAPTURE_OPTIONS"] = (
                f"rtsp_transport;{self._opencv_config.rtsp_transport}"
            )

        self._cap = cv2.VideoCapture(self.device_id)

        if not self._cap.isOpened():
            if retry_count < self._opencv_config.max_retries - 1:
                logging.warning(f"Failed to open device {sanitize_url(self.device_id)}, retrying...")
                return self._initialize(retry_count + 1)
            raise RuntimeError(
                f"Failed to open device {sanitize_url(self.device_id)} after "
                f"{self._opencv_config.max_retries} attempts"
            )

        if isinstance(self.device_id, int) and self._opencv_config.resolution:
            w, h = self._opencv_config.resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            if self._opencv_config.fps:
                self._cap.set(cv2.CAP_PROP_FPS, self._opencv_config.fps)
            self._cap.set(cv2.CAP_PROP_BUFFERSIZE, self._opencv_config.buffer_size)

        self._consecutive_failures = 0

    def read(self) -> Optional[Frame]:
        if not self._is_open or self._cap is None:
            return None

        ret, image = self._cap.read()

        if not ret or image is None:
            self._consecutive_failures += 1

            if self.is_file:
                logging.info("End of video file reached")
                return None

            if self._consecutive_failures > 3:
                logging.error("Too many consecutive read failures")
                return None

            logging.warning(
                f"Failed to read frame (failures: {self._consecutive_failures}), reinitializing..."
            )
            try:
                self._initialize()
            except RuntimeError:
                logging.error("Reinitialization failed")
                return None
            ret, image = self._cap.read()
            if not ret or image is None:
                return None

        self._consecutive_failures = 0
        self._frame_index += 1
        return self._to_frame(image)

    def _to_frame(self, image: np.ndarray) -> Frame:
        if image.ndim == 2:
            fmt = PixelFormat.GRAY8
        elif image.shape[2] == 4:
            fmt = PixelFormat.BGRA8888
        else:
            fmt = PixelFormat.BGR888
        return Frame.from_numpy(
            image,
            timestamp=time.time(),
            pixel_format=fmt,
            orientation=self._opencv_config.orientation,
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        if self._is_open:
            logging.info(f"OpenCVSource closed: source_id={self.source_id}")
        self._is_open = False

    def get_video_info(self) -> Dict[str, Any]:
        """Get information about the video source."""
        if self._cap is None or not self._cap.isOpened():
            return {}

        return {
            "width": int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": self._cap.get(cv2.CAP_PROP_FPS),
            "frame_count": int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)) if self.is_file else None,
        }
