"""Quality preset resolution.

Maps a QualityPreset (or user-custom values) to concrete PipelineParameters.
Resolution is deterministic and performs no I/O.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Union

from .core.types import (
    HardwareProfile,
    PipelineParameters,
    QualityPreset,
    ScalingAlgorithm,
)
from .exceptions import InvalidParametersError
from .hardware import FULL_MODEL, LITE_MODEL

logger = logging.getLogger(__name__)


# Quality rises with target height and model weight; sensitivity to cuts
# rises as the threshold falls. Only Beauty enables UHD mode.
PRESET_TABLE: Dict[QualityPreset, PipelineParameters] = {
    QualityPreset.FAST: PipelineParameters(
        target_height=540,
        scene_threshold=0.20,
        model_id=LITE_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.BILINEAR,
    ),
    QualityPreset.BALANCED: PipelineParameters(
        target_height=720,
        scene_threshold=0.15,
        model_id=FULL_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.SPLINE36,
    ),
    QualityPreset.BEAUTY: PipelineParameters(
        target_height=1080,
        scene_threshold=0.10,
        model_id=FULL_MODEL,
        uhd_mode=True,
        scaling=ScalingAlgorithm.LANCZOS,
    ),
}

CustomValues = Union[PipelineParameters, Mapping[str, Any]]


def resolve(
    preset: Union[QualityPreset, str],
    profile: Optional[HardwareProfile] = None,
    custom: Optional[CustomValues] = None,
) -> PipelineParameters:
    """Resolve a preset to pipeline parameters.

    Args:
        preset: Preset enum member or its name
        profile: Detected hardware; the fixed presets do not depend on it,
            it is accepted so callers can resolve uniformly
        custom: Parameter values used verbatim for ``Custom``

    Returns:
        Resolved PipelineParameters

    Raises:
        InvalidParametersError: For unknown presets or malformed custom values
    """
    preset = QualityPreset.parse(preset)

    if preset is not QualityPreset.CUSTOM:
        return PRESET_TABLE[preset]

    if custom is None:
        raise InvalidParametersError(
            "Custom preset selected but no custom parameters were supplied",
            field_name="custom_parameters",
        )
    if isinstance(custom, PipelineParameters):
        return custom
    if not isinstance(custom, Mapping):
        raise InvalidParametersError(
            f"Custom parameters must be a mapping, got {type(custom).__name__}",
            field_name="custom_parameters",
        )

    params = PipelineParameters.from_dict(custom)
    logger.debug(f"Resolved custom parameters: {params.to_dict()}")
    return params


def preset_table() -> Dict[str, Dict[str, Any]]:
    """All fixed presets as plain dictionaries, for display."""
    return {preset.value: params.to_dict() for preset, params in PRESET_TABLE.items()}
