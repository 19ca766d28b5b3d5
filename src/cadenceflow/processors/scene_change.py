"""Scene-change detection between consecutive working frames.

A boundary between two frames suppresses synthesis for that pair: blending
across a cut produces ghosting, so the earlier frame is repeated instead.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from ..core.types import FloatImageArray

logger = logging.getLogger(__name__)

METHODS = ("luma_diff", "histogram")
_ANALYSIS_WIDTH = 160


class SceneChangeDetector:
    """Marks scene boundaries at a sensitivity threshold.

    ``luma_diff`` scores a pair by the mean absolute luma difference;
    ``histogram`` by one minus the histogram intersection of the RGB
    channels. Either score lies in [0, 1] and a boundary is reported when
    it exceeds ``threshold`` (lower threshold = more cuts detected).

    Example:
        >>> detector = SceneChangeDetector(threshold=0.15)
        >>> detector.is_boundary(frame_a, frame_b)
        False
    """

    def __init__(self, threshold: float = 0.15, method: str = "luma_diff"):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
        if method not in METHODS:
            raise ValueError(f"Unknown scene detection method '{method}'. Must be one of: {METHODS}")
        self.threshold = threshold
        self.method = method
        self.boundaries = 0

    def score(self, frame1: FloatImageArray, frame2: FloatImageArray) -> float:
        """Change score between two RGB float frames."""
        if self.method == "histogram":
            return self._histogram_score(frame1, frame2)
        return self._luma_score(frame1, frame2)

    def is_boundary(self, frame1: FloatImageArray, frame2: FloatImageArray) -> bool:
        """Whether a scene cut lies between the two frames."""
        score = self.score(frame1, frame2)
        boundary = score > self.threshold
        if boundary:
            self.boundaries += 1
            logger.debug(f"Scene change: score {score:.3f} > {self.threshold:.3f}")
        return boundary

    @staticmethod
    def _small_luma(frame: FloatImageArray) -> np.ndarray:
        luma = cv2.cvtColor(frame, cv2.COLOR_RGB2GRAY)
        height, width = luma.shape
        if width > _ANALYSIS_WIDTH:
            luma = cv2.resize(
                luma,
                (_ANALYSIS_WIDTH, max(1, round(height * _ANALYSIS_WIDTH / width))),
                interpolation=cv2.INTER_AREA,
            )
        return luma

    def _luma_score(self, frame1: FloatImageArray, frame2: FloatImageArray) -> float:
        return float(cv2.absdiff(self._small_luma(frame1), self._small_luma(frame2)).mean())

    @staticmethod
    def _histogram_score(frame1: FloatImageArray, frame2: FloatImageArray) -> float:
        hist1 = np.concatenate([
            cv2.calcHist([frame1], [c], None, [64], [0.0, 1.0001]).ravel() for c in range(3)
        ])
        hist2 = np.concatenate([
            cv2.calcHist([frame2], [c], None, [64], [0.0, 1.0001]).ravel() for c in range(3)
        ])
        hist1 /= max(hist1.sum(), 1.0)
        hist2 /= max(hist2.sum(), 1.0)
        return float(1.0 - np.minimum(hist1, hist2).sum())


def create_scene_detector(threshold: float, method: Optional[str] = None) -> SceneChangeDetector:
    """Factory used by the pipeline runtime."""
    return SceneChangeDetector(threshold=threshold, method=method or "luma_diff")
