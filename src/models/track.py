"""
Track models for sign tracking state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .detection import BoundingBox, Detection


class TrackStatus(str, Enum):
    """Lifecycle state of a track."""
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


@dataclass
class Track:
    """
    A sign tracked across video frames. Mutated only by the tracker.

    Attributes:
        track_id: Unique identifier for this track.
        detection: Most recent matched detection.
        first_seen: Timestamp of the detection that created the track.
        last_seen: Timestamp of the latest matched detection.
        hit_count: Consecutive matched frames while tentative, total matches after.
        miss_count: Consecutive frames without a match.
        status: Current lifecycle state.
    """
    track_id: int
    detection: Detection
    first_seen: float
    last_seen: float
    hit_count: int = 1
    miss_count: int = 0
    status: TrackStatus = TrackStatus.TENTATIVE

    @property
    def bbox(self) -> BoundingBox:
        return self.detection.bbox

    @property
    def class_id(self) -> int:
        return self.detection.class_id

    @property
    def label(self) -> str:
        return self.detection.label

    @property
    def is_confirmed(self) -> bool:
        return self.status == TrackStatus.CONFIRMED


@dataclass(frozen=True)
class TrackState:
    """
    Immutable snapshot of a track handed to callers.

    Attributes:
        track_id: Unique identifier for this track.
        class_id: Class index of the sign.
        label: Sign label.
        confidence: Confidence of the latest matched detection.
        bbox: Normalized bounding box.
        hit_count: Matched frames so far.
        miss_count: Consecutive unmatched frames.
        first_seen: Timestamp the track was created.
        last_seen: Timestamp of the latest match.
    """
    track_id: int
    class_id: int
    label: str
    confidence: float
    bbox: BoundingBox
    hit_count: int
    miss_count: int
    first_seen: float
    last_seen: float

    @classmethod
    def from_track(cls, track: Track) -> "TrackState":
        """Create immutable snapshot from a Track."""
        return cls(
            track_id=track.track_id,
            class_id=track.detection.class_id,
            label=track.detection.label,
            confidence=track.detection.confidence,
            bbox=track.detection.bbox,
            hit_count=track.hit_count,
            miss_count=track.miss_count,
            first_seen=track.first_seen,
            last_seen=track.last_seen,
        )

    @property
    def xywh(self) -> Tuple[float, float, float, float]:
        return self.bbox.as_xywh()
