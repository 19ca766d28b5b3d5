"""Core type definitions for the cadenceflow interpolation pipeline.

This module provides the value types passed between components:
- HardwareProfile: accelerator vendor, tier and VRAM
- PipelineParameters: resolved processing parameters
- CadenceDecision: true source cadence and interpolation multiplier
- PipelineStatus / PerformanceMetrics: the status surface

Example usage:

    >>> from cadenceflow.core.types import PipelineParameters, ScalingAlgorithm
    >>> params = PipelineParameters(
    ...     target_height=720,
    ...     scene_threshold=0.15,
    ...     model_id="rife-v4.6",
    ...     uhd_mode=False,
    ...     scaling=ScalingAlgorithm.SPLINE36,
    ... )
    >>> params.to_dict()["scaling"]
    'spline36'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, TypeAlias, Union

import numpy as np
from numpy.typing import NDArray

from ..exceptions import InvalidParametersError


# =============================================================================
# Type Aliases
# =============================================================================

ImageArray: TypeAlias = NDArray[np.uint8]
FloatImageArray: TypeAlias = NDArray[np.float32]
Size: TypeAlias = Tuple[int, int]  # width, height
PathLike: TypeAlias = Union[str, Path]


# =============================================================================
# Enumerations
# =============================================================================


class GPUVendor(str, Enum):
    """GPU vendor identification."""

    NVIDIA = "nvidia"
    AMD = "amd"
    INTEL = "intel"
    UNKNOWN = "unknown"


class HardwareTier(str, Enum):
    """Coarse accelerator capability classes used to pick defaults."""

    UNSUPPORTED = "unsupported"
    ENTRY = "entry"  # RTX 2060, GTX 1660 Ti
    MID = "mid"  # RTX 3060, 4060
    HIGH = "high"  # RTX 3070+, 4070+


class QualityPreset(str, Enum):
    """User-facing quality/performance trade-off."""

    FAST = "fast"
    BALANCED = "balanced"
    BEAUTY = "beauty"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union[str, "QualityPreset"]) -> "QualityPreset":
        """Accept an enum member or a case-insensitive name."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise InvalidParametersError(
                f"Unknown quality preset: {value!r}",
                field_name="quality_preset",
                value=value,
                valid_values=[p.value for p in cls],
                cause=e,
            ) from e


class ScalingAlgorithm(str, Enum):
    """Resampling kernels available to the scale and colour stages."""

    BILINEAR = "bilinear"
    SPLINE36 = "spline36"
    LANCZOS = "lanczos"
    MITCHELL = "mitchell"


class PipelineState(str, Enum):
    """Lifecycle states of the interpolation pipeline."""

    DISABLED = "disabled"
    ENABLING = "enabling"
    ENABLED = "enabled"
    DISABLING = "disabling"


# =============================================================================
# Hardware
# =============================================================================


@dataclass(frozen=True)
class HardwareProfile:
    """Result of probing the accelerator once per session.

    Attributes:
        vendor: GPU vendor
        tier: Capability tier derived from the device name
        vram_mb: Dedicated memory in megabytes (0 when unknown)
        accelerator_api_available: Whether the Vulkan loader was found
        name: Device name as reported by the driver
        device_index: Index of the selected device
    """

    vendor: GPUVendor = GPUVendor.UNKNOWN
    tier: HardwareTier = HardwareTier.UNSUPPORTED
    vram_mb: int = 0
    accelerator_api_available: bool = False
    name: str = "Unknown"
    device_index: int = 0

    @classmethod
    def unsupported(cls) -> "HardwareProfile":
        """Profile used when probing is impossible."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "vendor": self.vendor.value,
            "tier": self.tier.value,
            "vram_mb": self.vram_mb,
            "accelerator_api_available": self.accelerator_api_available,
            "name": self.name,
            "device_index": self.device_index,
        }


# =============================================================================
# Pipeline parameters
# =============================================================================


@dataclass(frozen=True)
class PipelineParameters:
    """Concrete parameters driving one compiled pipeline.

    Attributes:
        target_height: Processing height; sources taller than this are
            downscaled before synthesis and restored afterwards
        scene_threshold: Scene-change sensitivity in [0, 1] (lower = more
            cuts detected)
        model_id: Frame-synthesis model identifier
        uhd_mode: Enable the model's high-resolution mode
        scaling: Resampling kernel for colour conversion and rescaling
    """

    target_height: int
    scene_threshold: float
    model_id: str
    uhd_mode: bool = False
    scaling: ScalingAlgorithm = ScalingAlgorithm.SPLINE36

    def __post_init__(self) -> None:
        """Validate and normalise field values."""
        if isinstance(self.target_height, bool) or not isinstance(self.target_height, int):
            raise InvalidParametersError(
                "target_height must be an integer",
                field_name="target_height",
                value=self.target_height,
            )
        if self.target_height <= 0:
            raise InvalidParametersError(
                f"target_height must be positive, got {self.target_height}",
                field_name="target_height",
                value=self.target_height,
            )
        try:
            threshold = float(self.scene_threshold)
        except (TypeError, ValueError) as e:
            raise InvalidParametersError(
                "scene_threshold must be a number",
                field_name="scene_threshold",
                value=self.scene_threshold,
                cause=e,
            ) from e
        if not 0.0 <= threshold <= 1.0:
            raise InvalidParametersError(
                f"scene_threshold must be between 0 and 1, got {threshold}",
                field_name="scene_threshold",
                value=threshold,
            )
        object.__setattr__(self, "scene_threshold", threshold)

        if not self.model_id or not isinstance(self.model_id, str):
            raise InvalidParametersError(
                "model_id must be a non-empty string",
                field_name="model_id",
                value=self.model_id,
            )

        if not isinstance(self.scaling, ScalingAlgorithm):
            try:
                scaling = ScalingAlgorithm(str(self.scaling).lower())
            except ValueError as e:
                raise InvalidParametersError(
                    f"Unknown scaling algorithm: {self.scaling!r}",
                    field_name="scaling",
                    value=self.scaling,
                    valid_values=[s.value for s in ScalingAlgorithm],
                    cause=e,
                ) from e
            object.__setattr__(self, "scaling", scaling)

        object.__setattr__(self, "uhd_mode", bool(self.uhd_mode))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            "target_height": self.target_height,
            "scene_threshold": self.scene_threshold,
            "model_id": self.model_id,
            "uhd_mode": self.uhd_mode,
            "scaling": self.scaling.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineParameters":
        """Create parameters from a mapping, rejecting missing fields."""
        required = ("target_height", "scene_threshold", "model_id")
        missing = [key for key in required if key not in data]
        if missing:
            raise InvalidParametersError(
                f"Missing pipeline parameters: {', '.join(missing)}",
                field_name=missing[0],
            )
        return cls(
            target_height=data["target_height"],
            scene_threshold=data["scene_threshold"],
            model_id=data["model_id"],
            uhd_mode=data.get("uhd_mode", False),
            scaling=data.get("scaling", ScalingAlgorithm.SPLINE36),
        )


# =============================================================================
# Cadence
# =============================================================================


@dataclass(frozen=True)
class CadenceDecision:
    """True source cadence and the interpolation it implies.

    Attributes:
        source_fps: Nominal container frame rate
        true_fps: Recovered as-authored frame rate
        target_fps: Output frame rate as an exact fraction
        multiplier: Output frames per true source frame
        pulldown_removed: Whether duplicated frames were dropped
        method: How the decision was reached (``duplicate_search``,
            ``fixed_pattern``, ``nominal``)
    """

    source_fps: float
    true_fps: float
    target_fps: Fraction
    multiplier: float
    pulldown_removed: bool = False
    method: str = "nominal"

    @property
    def target_fps_float(self) -> float:
        """Target frame rate as a float."""
        return float(self.target_fps)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_fps": round(self.source_fps, 3),
            "true_fps": round(self.true_fps, 3),
            "target_fps": [self.target_fps.numerator, self.target_fps.denominator],
            "multiplier": self.multiplier,
            "pulldown_removed": self.pulldown_removed,
            "method": self.method,
        }


# =============================================================================
# Status surface
# =============================================================================


@dataclass
class PerformanceMetrics:
    """Playback performance snapshot.

    ``current_fps`` is ``None`` when the engine could not report a valid
    value; ``estimated_fps`` then carries the expected rate.
    """

    current_fps: Optional[float] = None
    estimated_fps: float = 0.0
    dropped_frames: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "current_fps": self.current_fps,
            "estimated_fps": self.estimated_fps,
            "dropped_frames": self.dropped_frames,
        }


@dataclass
class PipelineStatus:
    """Snapshot of the orchestrator exposed to UIs."""

    state: PipelineState
    preset: QualityPreset
    parameters: Optional[PipelineParameters] = None
    last_error: Optional[str] = None
    live_artifact_id: Optional[str] = None
    output_fps: Optional[float] = None
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "state": self.state.value,
            "preset": self.preset.value,
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "last_error": self.last_error,
            "live_artifact_id": self.live_artifact_id,
            "output_fps": self.output_fps,
            "updated_at": self.updated_at.isoformat(),
        }
