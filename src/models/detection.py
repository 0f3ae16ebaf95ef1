"""
Detection models for traffic sign detection results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in normalized [0, 1] image coordinates.

    Attributes:
        x1: Left edge.
        y1: Top edge.
        x2: Right edge.
        y2: Bottom edge.
    """
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def x(self) -> float:
        return self.x1

    @property
    def y(self) -> float:
        return self.y1

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x1, self.y1, self.x2, self.y2)

    def as_xywh(self) -> Tuple[float, float, float, float]:
        """Return as (x, y, width, height) tuple."""
        return (self.x1, self.y1, self.width, self.height)

    def to_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Scale to integer pixel (x1, y1, x2, y2) for an image of the given size."""
        return (
            int(round(self.x1 * width)),
            int(round(self.y1 * height)),
            int(round(self.x2 * width)),
            int(round(self.y2 * height)),
        )

    def clipped(self) -> "BoundingBox":
        """Return a copy clipped to the unit square."""
        return BoundingBox(
            x1=min(max(self.x1, 0.0), 1.0),
            y1=min(max(self.y1, 0.0), 1.0),
            x2=min(max(self.x2, 0.0), 1.0),
            y2=min(max(self.y2, 0.0), 1.0),
        )

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over Union with another box, in [0, 1]."""
        ix1 = max(self.x1, other.x1)
        iy1 = max(self.y1, other.y1)
        ix2 = min(self.x2, other.x2)
        iy2 = min(self.y2, other.y2)

        if ix2 <= ix1 or iy2 <= iy1:
            return 0.0

        intersection = (ix2 - ix1) * (iy2 - iy1)
        union = self.area + other.area - intersection
        if union <= 0:
            return 0.0
        return intersection / union

    @classmethod
    def from_tuple(cls, t: Tuple[float, float, float, float]) -> "BoundingBox":
        """Create from (x1, y1, x2, y2) tuple."""
        return cls(x1=float(t[0]), y1=float(t[1]), x2=float(t[2]), y2=float(t[3]))

    @classmethod
    def from_xywh(cls, x: float, y: float, w: float, h: float) -> "BoundingBox":
        """Create from (x, y, width, height) format."""
        return cls(x1=x, y1=y, x2=x + w, y2=y + h)


@dataclass(frozen=True)
class Detection:
    """
    A single traffic sign detection for one frame.

    Attributes:
        class_id: Class index reported by the model.
        label: Human-readable sign label.
        confidence: Detection confidence score (0-1).
        bbox: Bounding box in normalized coordinates of the upright frame.
        timestamp: Capture timestamp of the frame the detection came from.
    """
    class_id: int
    label: str
    confidence: float
    bbox: BoundingBox
    timestamp: float = 0.0

    @property
    def center(self) -> Tuple[float, float]:
        return self.bbox.center

    def to_dict(self) -> dict:
        x, y, w, h = self.bbox.as_xywh()
        return {
            "class_id": self.class_id,
            "label": self.label,
            "confidence": self.confidence,
            "bbox": {"x": x, "y": y, "w": w, "h": h},
            "timestamp": self.timestamp,
        }
