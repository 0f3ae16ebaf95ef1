"""
Exception taxonomy for the sign pipeline.

Per-frame errors (PreprocessError, InferenceError) are recovered by the
orchestrator; startup errors (ConfigError, ModelLoadError) are surfaced to
the caller and prevent the pipeline from starting.
"""


class PipelineError(Exception):
    """Base pipeline exception."""


class ConfigError(PipelineError):
    """Raised when configuration values are invalid."""


class ModelLoadError(PipelineError):
    """Raised when the model artifact cannot be loaded."""


class PreprocessError(PipelineError):
    """Raised when a frame cannot be converted into a model tensor."""


class InferenceError(PipelineError):
    """Raised when a forward pass fails or gets a malformed tensor."""


class EngineUnavailable(PipelineError):
    """Raised after too many consecutive inference failures."""
