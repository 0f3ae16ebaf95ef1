"""
Tensor and letterbox transform models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Geometry of the resize from the canonical frame into the model input.

    Attributes:
        src_width: Width of the upright canonical frame.
        src_height: Height of the upright canonical frame.
        input_width: Model input width.
        input_height: Model input height.
        scale_x: Horizontal scale applied to the frame.
        scale_y: Vertical scale applied to the frame.
        pad_x: Left padding in model input pixels.
        pad_y: Top padding in model input pixels.
    """
    src_width: int
    src_height: int
    input_width: int
    input_height: int
    scale_x: float
    scale_y: float
    pad_x: float = 0.0
    pad_y: float = 0.0

    @classmethod
    def identity(cls, width: int, height: int) -> "LetterboxTransform":
        return cls(
            src_width=width,
            src_height=height,
            input_width=width,
            input_height=height,
            scale_x=1.0,
            scale_y=1.0,
        )

    def to_normalized(self, boxes: np.ndarray) -> np.ndarray:
        """
        Map (N, 4) xyxy boxes from model input pixels to normalized frame coordinates.

        The result is not clipped.
        """
        out = np.empty_like(boxes, dtype=np.float64)
        out[:, [0, 2]] = (boxes[:, [0, 2]] - self.pad_x) / self.scale_x / self.src_width
        out[:, [1, 3]] = (boxes[:, [1, 3]] - self.pad_y) / self.scale_y / self.src_height
        return out


@dataclass
class Tensor:
    """
    A model input tensor borrowed from a buffer pool slot.

    The data array is reused for later frames; do not keep it beyond the
    current frame cycle.
    """
    data: np.ndarray
    slot: int
    transform: LetterboxTransform
    timestamp: float = 0.0
    frame_index: int = 0

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)
