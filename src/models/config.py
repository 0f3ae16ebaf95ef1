"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigError
from .frame import VALID_ORIENTATIONS


MODEL_BACKENDS = ("torchscript",)
RESIZE_MODES = ("letterbox", "stretch")
CHANNEL_ORDERS = ("RGB", "BGR")
OUTPUT_LAYOUTS = ("yolov8", "yolov5", "classifier")
BOX_FORMATS = ("cxcywh", "xyxy")
BOX_COORDINATES = ("pixels", "normalized")
SCORE_ACTIVATIONS = ("none", "sigmoid", "softmax")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _normalize_labels(raw: Any) -> Optional[Dict[int, str]]:
    """Accept a list (index = class id) or a mapping with int-like keys."""
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        return {i: str(name) for i, name in enumerate(raw)}
    if isinstance(raw, dict):
        try:
            return {int(k): str(v) for k, v in raw.items()}
        except (TypeError, ValueError) as e:
            raise ConfigError(f"postprocess.labels keys must be integers: {e}") from e
    raise ConfigError("postprocess.labels must be a list or a mapping")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class ModelConfig:
    """Model artifact and inference engine configuration."""
    path: str = ""
    backend: str = "torchscript"
    input_size: List[int] = field(default_factory=lambda: [640, 640])
    channels: int = 3
    channel_order: str = "RGB"
    device: str = "cpu"
    latency_budget_ms: float = 100.0
    max_consecutive_failures: int = 5
    stop_grace_period_s: float = 2.0

    @property
    def input_shape(self) -> tuple:
        """Expected tensor shape (C, H, W)."""
        return (self.channels, int(self.input_size[1]), int(self.input_size[0]))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        return cls(
            path=d.get("path", "") or "",
            backend=d.get("backend", "torchscript"),
            input_size=list(d.get("input_size", [640, 640])),
            channels=d.get("channels", 3),
            channel_order=d.get("channel_order", "RGB"),
            device=d.get("device", "cpu"),
            latency_budget_ms=d.get("latency_budget_ms", 100.0),
            max_consecutive_failures=d.get("max_consecutive_failures", 5),
            stop_grace_period_s=d.get("stop_grace_period_s", 2.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "backend": self.backend,
            "input_size": list(self.input_size),
            "channels": self.channels,
            "channel_order": self.channel_order,
            "device": self.device,
            "latency_budget_ms": self.latency_budget_ms,
            "max_consecutive_failures": self.max_consecutive_failures,
            "stop_grace_period_s": self.stop_grace_period_s,
        }


@dataclass
class PreprocessConfig:
    """Resize and normalization policy for the model input tensor."""
    resize_mode: str = "letterbox"
    pad_value: int = 114
    scale: float = 1.0 / 255.0
    mean: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    std: List[float] = field(default_factory=lambda: [1.0, 1.0, 1.0])
    pool_size: int = 2

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PreprocessConfig":
        return cls(
            resize_mode=d.get("resize_mode", "letterbox"),
            pad_value=d.get("pad_value", 114),
            scale=d.get("scale", 1.0 / 255.0),
            mean=list(d.get("mean", [0.0, 0.0, 0.0])),
            std=list(d.get("std", [1.0, 1.0, 1.0])),
            pool_size=d.get("pool_size", 2),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resize_mode": self.resize_mode,
            "pad_value": self.pad_value,
            "scale": self.scale,
            "mean": list(self.mean),
            "std": list(self.std),
            "pool_size": self.pool_size,
        }


@dataclass
class PostprocessConfig:
    """Decoding, thresholding and NMS configuration."""
    output_layout: str = "yolov8"
    box_format: str = "cxcywh"
    box_coordinates: str = "pixels"
    score_activation: str = "none"
    output_transposed: Optional[bool] = None
    confidence_threshold: float = 0.5
    nms_iou_threshold: float = 0.45
    class_agnostic_nms: bool = False
    max_detections: int = 100
    labels: Optional[Dict[int, str]] = None
    labels_file: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PostprocessConfig":
        return cls(
            output_layout=d.get("output_layout", "yolov8"),
            box_format=d.get("box_format", "cxcywh"),
            box_coordinates=d.get("box_coordinates", "pixels"),
            score_activation=d.get("score_activation", "none"),
            output_transposed=d.get("output_transposed"),
            confidence_threshold=d.get("confidence_threshold", 0.5),
            nms_iou_threshold=d.get("nms_iou_threshold", 0.45),
            class_agnostic_nms=d.get("class_agnostic_nms", False),
            max_detections=d.get("max_detections", 100),
            labels=_normalize_labels(d.get("labels")),
            labels_file=d.get("labels_file"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "output_layout": self.output_layout,
            "box_format": self.box_format,
            "box_coordinates": self.box_coordinates,
            "score_activation": self.score_activation,
            "confidence_threshold": self.confidence_threshold,
            "nms_iou_threshold": self.nms_iou_threshold,
            "class_agnostic_nms": self.class_agnostic_nms,
            "max_detections": self.max_detections,
        }
        if self.output_transposed is not None:
            d["output_transposed"] = self.output_transposed
        if self.labels is not None:
            d["labels"] = dict(self.labels)
        if self.labels_file is not None:
            d["labels_file"] = self.labels_file
        return d


@dataclass
class TrackingConfig:
    """Tracker/debouncer configuration."""
    match_iou_threshold: float = 0.3
    confirm_hits: int = 3
    expire_misses: int = 5
    class_aware: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrackingConfig":
        return cls(
            match_iou_threshold=d.get("match_iou_threshold", 0.3),
            confirm_hits=d.get("confirm_hits", 3),
            expire_misses=d.get("expire_misses", 5),
            class_aware=d.get("class_aware", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_iou_threshold": self.match_iou_threshold,
            "confirm_hits": self.confirm_hits,
            "expire_misses": self.expire_misses,
            "class_aware": self.class_aware,
        }


@dataclass
class SourceConfig:
    """Frame source used by the CLI host."""
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [1280, 720])
    fps: int = 30
    orientation: int = 0
    max_retries: int = 3
    rtsp_transport: str = "tcp"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourceConfig":
        return cls(
            device_id=d.get("device_id", 0),
            resolution=list(d.get("resolution", [1280, 720])),
            fps=d.get("fps", 30),
            orientation=d.get("orientation", 0) or 0,
            max_retries=d.get("max_retries", 3),
            rtsp_transport=d.get("rtsp_transport", "tcp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "resolution": list(self.resolution),
            "fps": self.fps,
            "orientation": self.orientation,
            "max_retries": self.max_retries,
            "rtsp_transport": self.rtsp_transport,
        }


@dataclass
class PipelineSettings:
    """Orchestrator housekeeping."""
    stats_log_interval: float = 60.0
    max_consecutive_read_failures: int = 10

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineSettings":
        return cls(
            stats_log_interval=d.get("stats_log_interval", 60.0),
            max_consecutive_read_failures=d.get("max_consecutive_read_failures", 10),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats_log_interval": self.stats_log_interval,
            "max_consecutive_read_failures": self.max_consecutive_read_failures,
        }


@dataclass
class Config:
    """
    Complete pipeline configuration.

    This is a typed representation of the YAML config structure.
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    postprocess: PostprocessConfig = field(default_factory=PostprocessConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    log_path: str = "logs/sign_pipeline.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        if not isinstance(d, dict):
            raise ConfigError("Configuration must be a mapping")
        return cls(
            model=ModelConfig.from_dict(d.get("model") or {}),
            preprocess=PreprocessConfig.from_dict(d.get("preprocess") or {}),
            postprocess=PostprocessConfig.from_dict(d.get("postprocess") or {}),
            tracking=TrackingConfig.from_dict(d.get("tracking") or {}),
            source=SourceConfig.from_dict(d.get("source") or {}),
            pipeline=PipelineSettings.from_dict(d.get("pipeline") or {}),
            log_path=d.get("log_path", "logs/sign_pipeline.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or logging)."""
        return {
            "model": self.model.to_dict(),
            "preprocess": self.preprocess.to_dict(),
            "postprocess": self.postprocess.to_dict(),
            "tracking": self.tracking.to_dict(),
            "source": self.source.to_dict(),
            "pipeline": self.pipeline.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }

    def validate(self) -> None:
        """
        Check value ranges and enum options.

        Raises:
            ConfigError: On the first invalid value found.
        """
        m = self.model
        if m.backend not in MODEL_BACKENDS:
            raise ConfigError(f"model.backend must be one of: {', '.join(MODEL_BACKENDS)}")
        if not isinstance(m.input_size, list) or len(m.input_size) != 2:
            raise ConfigError("model.input_size must be a list of [width, height]")
        if not all(isinstance(x, int) and x > 0 for x in m.input_size):
            raise ConfigError("model.input_size values must be positive integers")
        if m.channels not in (1, 3):
            raise ConfigError("model.channels must be 1 or 3")
        if m.channel_order not in CHANNEL_ORDERS:
            raise ConfigError(f"model.channel_order must be one of: {', '.join(CHANNEL_ORDERS)}")
        if not _is_number(m.latency_budget_ms) or m.latency_budget_ms <= 0:
            raise ConfigError("model.latency_budget_ms must be a positive number")
        if not isinstance(m.max_consecutive_failures, int) or m.max_consecutive_failures <= 0:
            raise ConfigError("model.max_consecutive_failures must be a positive integer")
        if not _is_number(m.stop_grace_period_s) or m.stop_grace_period_s < 0:
            raise ConfigError("model.stop_grace_period_s must be a non-negative number")

        p = self.preprocess
        if p.resize_mode not in RESIZE_MODES:
            raise ConfigError(f"preprocess.resize_mode must be one of: {', '.join(RESIZE_MODES)}")
        if not isinstance(p.pad_value, int) or not (0 <= p.pad_value <= 255):
            raise ConfigError("preprocess.pad_value must be an integer in [0, 255]")
        if not _is_number(p.scale) or p.scale <= 0:
            raise ConfigError("preprocess.scale must be a positive number")
        if len(p.mean) != m.channels or len(p.std) != m.channels:
            raise ConfigError("preprocess.mean and preprocess.std must have one value per channel")
        if not all(_is_number(v) for v in p.mean):
            raise ConfigError("preprocess.mean values must be numbers")
        if not all(_is_number(v) and v > 0 for v in p.std):
            raise ConfigError("preprocess.std values must be positive numbers")
        if not isinstance(p.pool_size, int) or p.pool_size <= 0:
            raise ConfigError("preprocess.pool_size must be a positive integer")

        pp = self.postprocess
        if pp.output_layout not in OUTPUT_LAYOUTS:
            raise ConfigError(f"postprocess.output_layout must be one of: {', '.join(OUTPUT_LAYOUTS)}")
        if pp.box_format not in BOX_FORMATS:
            raise ConfigError(f"postprocess.box_format must be one of: {', '.join(BOX_FORMATS)}")
        if pp.box_coordinates not in BOX_COORDINATES:
            raise ConfigError(f"postprocess.box_coordinates must be one of: {', '.join(BOX_COORDINATES)}")
        if pp.score_activation not in SCORE_ACTIVATIONS:
            raise ConfigError(f"postprocess.score_activation must be one of: {', '.join(SCORE_ACTIVATIONS)}")
        if pp.output_transposed is not None and not isinstance(pp.output_transposed, bool):
            raise ConfigError("postprocess.output_transposed must be true, false or omitted")
        if not _is_number(pp.confidence_threshold) or not (0 <= pp.confidence_threshold <= 1):
            raise ConfigError("postprocess.confidence_threshold must be between 0 and 1")
        if not _is_number(pp.nms_iou_threshold) or not (0 < pp.nms_iou_threshold <= 1):
            raise ConfigError("postprocess.nms_iou_threshold must be between 0 and 1")
        if not isinstance(pp.max_detections, int) or pp.max_detections <= 0:
            raise ConfigError("postprocess.max_detections must be a positive integer")
        if pp.labels is None and not pp.labels_file:
            raise ConfigError("postprocess.labels or postprocess.labels_file is required")

        t = self.tracking
        if not _is_number(t.match_iou_threshold) or not (0 < t.match_iou_threshold < 1):
            raise ConfigError("tracking.match_iou_threshold must be between 0 and 1, exclusive")
        if not isinstance(t.confirm_hits, int) or t.confirm_hits <= 0:
            raise ConfigError("tracking.confirm_hits must be a positive integer")
        if not isinstance(t.expire_misses, int) or t.expire_misses <= 0:
            raise ConfigError("tracking.expire_misses must be a positive integer")

        if self.source.orientation not in VALID_ORIENTATIONS:
            raise ConfigError("source.orientation must be one of: 0, 90, 180, 270")
        if not _is_number(self.pipeline.stats_log_interval) or self.pipeline.stats_log_interval <= 0:
            raise ConfigError("pipeline.stats_log_interval must be a positive number")

        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")
