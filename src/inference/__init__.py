"""
Inference layer: backend interface, bundled backends and the engine wrapper.
"""

from .backend import InferenceBackend, RawOutput
from .engine import InferenceEngine, create_backend
from .torchscript_backend import TorchScriptBackend, TorchScriptConfig

__all__ = [
    "InferenceBackend",
    "RawOutput",
    "InferenceEngine",
    "create_backend",
    "TorchScriptBackend",
    "TorchScriptConfig",
]
