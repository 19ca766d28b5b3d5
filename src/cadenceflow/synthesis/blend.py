"""Temporal blend synthesizer.

Degraded fallback used only when no model backend is available: the new
frame is a weighted average of its neighbours.
"""

import cv2

from ..core.types import FloatImageArray
from .base import FrameSynthesizer


class BlendSynthesizer(FrameSynthesizer):
    """Linear cross-fade between the two neighbouring frames."""

    name = "blend"

    def synthesize(
        self,
        frame0: FloatImageArray,
        frame1: FloatImageArray,
        timestep: float,
    ) -> FloatImageArray:
        timestep = min(max(float(timestep), 0.0), 1.0)
        return cv2.addWeighted(frame0, 1.0 - timestep, frame1, timestep, 0.0)
