"""Error taxonomy shared by every engine.

Configuration errors are fatal to the call and never retried. Usage errors
mean the caller invoked an operation in the wrong state. Device acquisition
failures are not errors: they are reported through ``DeviceMode``.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all airunner errors."""


class ConfigurationError(PipelineError):
    """Model missing, shape contract violated, or bad model file."""


class ModelNotLoadedError(ConfigurationError):
    """An engine was used before ``load_model`` succeeded."""

    def __init__(self, what: str = "Model"):
        super().__init__(f"{what} not loaded.")


class ModelFileNotFoundError(ConfigurationError, FileNotFoundError):
    """Model path does not exist."""


class ShapeMismatchError(ConfigurationError):
    """Tensor shape does not match the model's declared contract."""


class UsageError(PipelineError):
    """Operation called out of order; distinct from configuration errors."""


class InvalidStateError(UsageError):
    """Operation is not valid in the component's current state."""


class IndexOutOfRangeError(UsageError, IndexError):
    """Candidate index outside the stored candidate set."""


class InvalidInputError(PipelineError, ValueError):
    """Caller-supplied image cannot be processed (undecodable, too small)."""
