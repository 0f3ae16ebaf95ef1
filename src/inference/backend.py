"""
Inference backend interface.

A backend wraps one model runtime behind three calls: load, run, unload.
Backends receive a batched (1, C, H, W) float32 array and return the raw model
outputs as numpy arrays; decoding is the postprocessor's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Protocol

import numpy as np


@dataclass
class RawOutput:
    """Outputs of a single forward pass, consumed within the same frame cycle."""
    outputs: List[np.ndarray] = field(default_factory=list)
    latency_ms: float = 0.0
    frame_index: int = 0

    @property
    def primary(self) -> np.ndarray:
        """The first output tensor, which carries detections for all supported layouts."""
        return self.outputs[0]


class InferenceBackend(Protocol):
    def load(self, model_path: str) -> None:
        ...

    def run(self, batch: np.ndarray) -> List[np.ndarray]:
        ...

    def unload(self) -> None:
        ...
