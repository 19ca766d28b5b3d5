"""Core types shared across cadenceflow components."""

from .types import (
    CadenceDecision,
    GPUVendor,
    HardwareProfile,
    HardwareTier,
    PerformanceMetrics,
    PipelineParameters,
    PipelineState,
    PipelineStatus,
    QualityPreset,
    ScalingAlgorithm,
)

__all__ = [
    "CadenceDecision",
    "GPUVendor",
    "HardwareProfile",
    "HardwareTier",
    "PerformanceMetrics",
    "PipelineParameters",
    "PipelineState",
    "PipelineStatus",
    "QualityPreset",
    "ScalingAlgorithm",
]
