"""Stage descriptions making up a compiled pipeline.

Each builder returns a plain dictionary with every value literal, in the
fixed order of ``artifact.STAGE_ORDER``.
"""

from typing import Any, Dict, List

from ..config import Config
from ..core.types import PipelineParameters
from ..processors.cadence import CadenceSettings
from ..processors.colorspace import kernel_for
from ..synthesis.registry import BackendSpec

MATRIX = "bt709"
REDUCED_SCALE = 0.5

StageDict = Dict[str, Any]


def cadence_stage(config: Config) -> StageDict:
    settings = CadenceSettings(
        duplicate_threshold=config.duplicate_threshold,
        sample_frames=config.cadence_sample_frames,
    )
    return {"name": "cadence", "settings": settings.to_dict()}


def to_working_stage(params: PipelineParameters, config: Config) -> StageDict:
    return {
        "name": "to_working",
        "input_format": config.output_format,
        "working_format": "rgb_f32",
        "chroma_kernel": kernel_for(params.scaling),
        "matrix": MATRIX,
    }


def downscale_stage(params: PipelineParameters, config: Config) -> StageDict:
    """Applied only when the source is taller than ``max_height``.

    ``max_height`` is the preset's target height. The real-time ceiling is
    recorded alongside it; above the ceiling synthesis also runs at reduced
    internal scale (see ``synthesize``).
    """
    return {
        "name": "downscale",
        "conditional": True,
        "max_height": params.target_height,
        "realtime_height_ceiling": config.realtime_height_ceiling,
        "kernel": kernel_for(params.scaling, fast=True),
        "even_dimensions": True,
    }


def scene_detect_stage(params: PipelineParameters) -> StageDict:
    return {
        "name": "scene_detect",
        "threshold": params.scene_threshold,
        "method": "luma_diff",
        "on_boundary": "repeat",
    }


def synthesize_stage(
    params: PipelineParameters,
    backend: BackendSpec,
    hardware_index: int,
    config: Config,
) -> StageDict:
    return {
        "name": "synthesize",
        "backend": backend.name,
        "degraded": backend.degraded,
        "model_id": params.model_id,
        "model_path": str(backend.model_path) if backend.model_path else None,
        "device_index": hardware_index,
        "fp16": config.use_fp16,
        "uhd_mode": params.uhd_mode,
        "multiplier_source": "cadence",
        "realtime_height_ceiling": config.realtime_height_ceiling,
        "reduced_scale": REDUCED_SCALE,
    }


def upscale_stage(params: PipelineParameters) -> StageDict:
    """Restores the dimensions recorded by ``downscale`` when it applied."""
    return {
        "name": "upscale",
        "conditional": True,
        "follows": "downscale",
        "kernel": kernel_for(params.scaling),
    }


def to_output_stage(params: PipelineParameters, config: Config) -> StageDict:
    return {
        "name": "to_output",
        "output_format": config.output_format,
        "chroma_kernel": kernel_for(params.scaling),
        "matrix": MATRIX,
    }


def lookahead_stage(config: Config) -> StageDict:
    return {"name": "lookahead", "capacity": config.lookahead_frames, "policy": "fifo"}


def build_stages(
    params: PipelineParameters,
    backend: BackendSpec,
    hardware_index: int,
    config: Config,
) -> List[StageDict]:
    """All stages in execution order."""
    return [
        cadence_stage(config),
        to_working_stage(params, config),
        downscale_stage(params, config),
        scene_detect_stage(params),
        synthesize_stage(params, backend, hardware_index, config),
        upscale_stage(params),
        to_output_stage(params, config),
        lookahead_stage(config),
    ]
