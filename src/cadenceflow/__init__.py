"""cadenceflow - adaptive real-time frame interpolation.

Detects the accelerator tier, resolves a quality preset to pipeline
parameters, compiles them into a declarative pipeline artifact, and manages
the artifact's lifecycle against a playback engine.
"""

__version__ = "1.0.0"

from .config import Config
from .core.types import (
    CadenceDecision,
    HardwareProfile,
    HardwareTier,
    PipelineParameters,
    PipelineState,
    PipelineStatus,
    QualityPreset,
    ScalingAlgorithm,
)
from .exceptions import (
    AttachError,
    CadenceflowError,
    CompilationError,
    DetectionError,
    InvalidParametersError,
    InvalidTransitionError,
)
from .hardware import HardwareDetector, detect_hardware, recommended_parameters
from .orchestrator import PipelineOrchestrator
from .presets import resolve

__all__ = [
    "__version__",
    "AttachError",
    "CadenceDecision",
    "CadenceflowError",
    "CompilationError",
    "Config",
    "DetectionError",
    "HardwareDetector",
    "HardwareProfile",
    "HardwareTier",
    "InvalidParametersError",
    "InvalidTransitionError",
    "PipelineOrchestrator",
    "PipelineParameters",
    "PipelineState",
    "PipelineStatus",
    "QualityPreset",
    "ScalingAlgorithm",
    "detect_hardware",
    "recommended_parameters",
    "resolve",
]
