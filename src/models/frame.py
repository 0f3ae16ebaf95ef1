"""
Frame model for captured camera frames.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np


class PixelFormat(str, Enum):
    """Pixel layouts accepted from the host camera subsystem."""
    RGB888 = "RGB888"
    BGR888 = "BGR888"
    RGBA8888 = "RGBA8888"
    BGRA8888 = "BGRA8888"
    GRAY8 = "GRAY8"
    NV21 = "NV21"
    I420 = "I420"

    @property
    def is_yuv(self) -> bool:
        return self in (PixelFormat.NV21, PixelFormat.I420)

    @property
    def channels(self) -> int:
        """Channels per pixel in the packed buffer (1 for planar YUV)."""
        if self in (PixelFormat.RGBA8888, PixelFormat.BGRA8888):
            return 4
        if self in (PixelFormat.RGB888, PixelFormat.BGR888):
            return 3
        return 1

    def buffer_shape(self, width: int, height: int) -> Tuple[int, ...]:
        """Expected numpy shape of a buffer holding one frame in this format."""
        if self.is_yuv:
            return (height * 3 // 2, width)
        if self.channels == 1:
            return (height, width)
        return (height, width, self.channels)


VALID_ORIENTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class Frame:
    """
    Immutable snapshot of a captured camera frame.

    Attributes:
        data: Pixel buffer, read-only, shaped per ``pixel_format``.
        width: Frame width in pixels (sensor orientation).
        height: Frame height in pixels (sensor orientation).
        pixel_format: Layout of ``data``.
        timestamp: Capture time in seconds.
        orientation: Clockwise rotation (degrees) needed to make the image upright.
        frame_index: Sequential frame number since the source opened.
        source: Identifier of the camera/video source.
    """
    data: np.ndarray
    width: int
    height: int
    pixel_format: PixelFormat
    timestamp: float
    orientation: int = 0
    frame_index: int = 0
    source: str = "camera"

    @classmethod
    def from_numpy(
        cls,
        image: np.ndarray,
        timestamp: float,
        pixel_format: PixelFormat = PixelFormat.BGR888,
        orientation: int = 0,
        frame_index: int = 0,
        source: str = "camera",
    ) -> "Frame":
        """Create a Frame from a packed image array (H, W[, C])."""
        h, w = image.shape[:2]
        if pixel_format.is_yuv:
            h = h * 2 // 3
        data = np.array(image, copy=True)
        data.setflags(write=False)
        return cls(
            data=data,
            width=w,
            height=h,
            pixel_format=pixel_format,
            timestamp=timestamp,
            orientation=orientation,
            frame_index=frame_index,
            source=source,
        )

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height) as captured."""
        return (self.width, self.height)

    @property
    def upright_size(self) -> Tuple[int, int]:
        """Return (width, height) after applying orientation."""
        if self.orientation in (90, 270):
            return (self.height, self.width)
        return (self.width, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0 or self.data.size == 0
