"""
Observation layer: frame sources and the frame source adapter.

Sources produce Frame snapshots; the adapter validates raw host buffers and
converts Frames into canonical upright RGB images for the preprocessor.
"""

from .adapter import FrameSourceAdapter, parse_pixel_format
from .base import ObservationSource, ObservationConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig

__all__ = [
    "FrameSourceAdapter",
    "parse_pixel_format",
    "ObservationSource",
    "ObservationConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
]
