"""
Typed models for the traffic sign pipeline.
"""

from .frame import Frame, PixelFormat
from .detection import Detection, BoundingBox
from .track import Track, TrackState, TrackStatus
from .errors import (
    PipelineError,
    ConfigError,
    ModelLoadError,
    PreprocessError,
    InferenceError,
    EngineUnavailable,
)
from .config import (
    Config,
    ModelConfig,
    PreprocessConfig,
    PostprocessConfig,
    TrackingConfig,
    SourceConfig,
    PipelineSettings,
)

__all__ = [
    # Frame
    "Frame",
    "PixelFormat",
    # Detection
    "Detection",
    "BoundingBox",
    # Tracking
    "Track",
    "TrackState",
    "TrackStatus",
    # Errors
    "PipelineError",
    "ConfigError",
    "ModelLoadError",
    "PreprocessError",
    "InferenceError",
    "EngineUnavailable",
    # Config
    "Config",
    "ModelConfig",
    "PreprocessConfig",
    "PostprocessConfig",
    "TrackingConfig",
    "SourceConfig",
    "PipelineSettings",
]
