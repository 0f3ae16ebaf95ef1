"""
Fixed-size buffer pool for per-frame tensors.

Each slot owns a uint8 canvas (H, W, C) used for resizing/letterboxing and a
float32 tensor (C, H, W) handed to the inference engine. Slots are handed out
round-robin so no per-frame allocation happens after construction.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np


class TensorPool:
    """Round-robin pool of preallocated canvas/tensor pairs."""

    def __init__(self, input_shape: Tuple[int, int, int], slots: int = 2):
        """
        Args:
            input_shape: Tensor shape (C, H, W).
            slots: Number of buffer pairs to preallocate.
        """
        if slots <= 0:
            raise ValueError("slots must be positive")
        c, h, w = input_shape
        self.input_shape = (c, h, w)
        self._slots = slots
        self._canvases: List[np.ndarray] = [np.zeros((h, w, c), dtype=np.uint8) for _ in range(slots)]
        self._tensors: List[np.ndarray] = [np.zeros((c, h, w), dtype=np.float32) for _ in range(slots)]
        self._cursor = 0
        self._released = False

    @property
    def slots(self) -> int:
        return self._slots

    @property
    def released(self) -> bool:
        return self._released

    def acquire(self) -> int:
        """Return the next slot index."""
        if self._released:
            raise RuntimeError("Buffer pool has been released")
        slot = self._cursor
        self._cursor = (self._cursor + 1) % self._slots
        return slot

    def canvas(self, slot: int) -> np.ndarray:
        return self._canvases[slot]

    def tensor(self, slot: int) -> np.ndarray:
        return self._tensors[slot]

    def reset(self) -> None:
        """Zero every buffer and rewind the cursor."""
        if self._released:
            return
        for canvas in self._canvases:
            canvas.fill(0)
        for tensor in self._tensors:
            tensor.fill(0.0)
        self._cursor = 0

    def release(self) -> None:
        """Drop all buffers. Safe to call multiple times."""
        if self._released:
            return
        self._canvases = []
        self._tensors = []
        self._released = True
        logging.debug("Tensor pool released")
