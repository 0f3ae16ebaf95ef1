"""
Pipeline module for the sign recognition system.

The pipeline orchestrates the full processing flow:
- Frame preprocessing into model tensors
- Inference and detection decoding
- Tracking and debouncing into confirmed signs
- Background frame handoff via FrameWorker
"""

from .engine import PipelineOrchestrator, PipelineStats
from .worker import FrameWorker

__all__ = [
    "PipelineOrchestrator",
    "PipelineStats",
    "FrameWorker",
]
