"""Pipeline compilation and execution."""

from .artifact import (
    FORMAT_VERSION,
    STAGE_ORDER,
    PipelineArtifact,
    ValidationResult,
    load_artifact,
    validate,
)
from .compiler import PipelineCompiler
from .runtime import PipelineRuntime, RuntimeStats

__all__ = [
    "FORMAT_VERSION",
    "STAGE_ORDER",
    "PipelineArtifact",
    "PipelineCompiler",
    "PipelineRuntime",
    "RuntimeStats",
    "ValidationResult",
    "load_artifact",
    "validate",
]
