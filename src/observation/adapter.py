"""
Frame source adapter.

Turns raw camera buffers handed over by the host platform into immutable
Frame snapshots, and converts Frames into the canonical image representation
(upright, RGB, uint8, HxWx3) consumed by the preprocessor.
"""

from __future__ import annotations

import logging
from typing import Union

import cv2
import numpy as np

from models.errors import PreprocessError
from models.frame import Frame, PixelFormat, VALID_ORIENTATIONS


BufferLike = Union[bytes, bytearray, memoryview, np.ndarray]

_TO_RGB = {
    PixelFormat.BGR888: cv2.COLOR_BGR2RGB,
    PixelFormat.RGBA8888: cv2.COLOR_RGBA2RGB,
    PixelFormat.BGRA8888: cv2.COLOR_BGRA2RGB,
    PixelFormat.GRAY8: cv2.COLOR_GRAY2RGB,
    PixelFormat.NV21: cv2.COLOR_YUV2RGB_NV21,
    PixelFormat.I420: cv2.COLOR_YUV2RGB_I420,
}

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def parse_pixel_format(value: Union[str, PixelFormat]) -> PixelFormat:
    """Resolve a pixel format tag, raising PreprocessError for unknown tags."""
    if isinstance(value, PixelFormat):
        return value
    try:
        return PixelFormat(str(value).upper())
    except ValueError as e:
        raise PreprocessError(f"Unsupported pixel format: {value!r}") from e


class FrameSourceAdapter:
    """
    Adapter between the host camera callback and the pipeline.

    Example:
        adapter = FrameSourceAdapter()
        frame = adapter.wrap(buf, 640, 480, "NV21", timestamp=t, orientation=90)
        rgb = adapter.to_canonical(frame)
    """

    def wrap(
        self,
        buffer: BufferLike,
        width: int,
        height: int,
        pixel_format: Union[str, PixelFormat],
        timestamp: float,
        orientation: int = 0,
        frame_index: int = 0,
        source: str = "camera",
    ) -> Frame:
        """
        Validate a raw buffer and snapshot it into a read-only Frame.

        Raises:
            PreprocessError: If dimensions, format, orientation or buffer size are invalid.
        """
        fmt = parse_pixel_format(pixel_format)
        if width <= 0 or height <= 0:
            raise PreprocessError(f"Frame dimensions must be positive, got {width}x{height}")
        if orientation not in VALID_ORIENTATIONS:
            raise PreprocessError(f"Unsupported orientation: {orientation}")
        if fmt.is_yuv and (width % 2 or height % 2):
            raise PreprocessError(f"{fmt.value} frames need even dimensions, got {width}x{height}")

        if isinstance(buffer, np.ndarray):
            if buffer.dtype != np.uint8:
                raise PreprocessError(f"Pixel buffer must be uint8, got {buffer.dtype}")
            arr = buffer.reshape(-1)
        else:
            arr = np.frombuffer(buffer, dtype=np.uint8)

        shape = fmt.buffer_shape(width, height)
        expected = int(np.prod(shape))
        if arr.size != expected:
            raise PreprocessError(
                f"Buffer size {arr.size} does not match {fmt.value} {width}x{height} "
                f"(expected {expected} bytes)"
            )

        data = arr.reshape(shape).copy()
        data.setflags(write=False)
        return Frame(
            data=data,
            width=width,
            height=height,
            pixel_format=fmt,
            timestamp=timestamp,
            orientation=orientation,
            frame_index=frame_index,
            source=source,
        )

    def to_canonical(self, frame: Frame) -> np.ndarray:
        """
        Convert a Frame into an upright RGB uint8 image.

        Raises:
            PreprocessError: If the frame is empty or its buffer does not match its format.
        """
        if frame.is_empty:
            raise PreprocessError(f"Empty frame (index={frame.frame_index})")

        fmt = parse_pixel_format(frame.pixel_format)
        if frame.orientation not in VALID_ORIENTATIONS:
            raise PreprocessError(f"Unsupported orientation: {frame.orientation}")

        expected = fmt.buffer_shape(frame.width, frame.height)
        if tuple(frame.data.shape) != expected:
            raise PreprocessError(
                f"Buffer shape {tuple(frame.data.shape)} does not match {fmt.value} "
                f"{frame.width}x{frame.height}"
            )

        try:
            if fmt == PixelFormat.RGB888:
                image = frame.data
            else:
                image = cv2.cvtColor(frame.data, _TO_RGB[fmt])

            rotation = _ROTATIONS.get(frame.orientation)
            if rotation is not None:
                image = cv2.rotate(image, rotation)
        except cv2.error as e:
            raise PreprocessError(f"Color conversion failed for {fmt.value}: {e}") from e

        logging.debug(
            f"Canonical frame {frame.frame_index}: {fmt.value} {frame.width}x{frame.height} "
            f"rot={frame.orientation} -> {image.shape[1]}x{image.shape[0]}"
        )
        return image
