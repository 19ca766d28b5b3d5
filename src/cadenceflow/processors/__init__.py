"""Frame processors used by the compiled pipeline."""

from .cadence import (
    CadenceDetector,
    CadenceResult,
    CadenceSettings,
    Decimator,
    decide_cadence,
    frame_difference,
    map_output_rate,
)
from .frame_buffer import LookaheadBuffer
from .scene_change import SceneChangeDetector

__all__ = [
    "CadenceDetector",
    "CadenceResult",
    "CadenceSettings",
    "Decimator",
    "LookaheadBuffer",
    "SceneChangeDetector",
    "decide_cadence",
    "frame_difference",
    "map_output_rate",
]
