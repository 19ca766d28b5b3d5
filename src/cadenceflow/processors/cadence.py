"""Cadence detection and pulldown removal.

Recovers the as-authored frame rate of a stream whose container rate may
include duplicated frames (3:2 pulldown), and maps it to an output rate
and interpolation multiplier.

Detection works on a sample window of live frames:

- 60 fps containers (59-61): keep every second frame, then search each
  5-frame cycle for a duplicate. Duplicates found means 24 fps film
  (23.976); none means genuine 30 fps. Without frame similarity a fixed
  3-of-5 pattern is applied and 23.976 is assumed.
- 30 fps streams (29.5-30.5): 5-frame duplicate search directly.
- Anything else is trusted as-is.

Example:
    >>> detector = CadenceDetector(CadenceSettings())
    >>> result = detector.decide(59.94, sample_frames)
    >>> result.decision.multiplier
    2.5
"""

import logging
import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..core.types import CadenceDecision, ImageArray
from ..exceptions import CadenceAmbiguous

logger = logging.getLogger(__name__)


FILM_FPS = 23.976
NTSC_VIDEO_FPS = 30.0
# Used when a stream reports no usable frame rate
ASSUMED_FPS = 24.0

# (low, high, target fps, multiplier); open intervals, first match wins
FPS_MAPPING: Tuple[Tuple[float, float, int, float], ...] = (
    (23.5, 24.5, 60, 2.5),
    (29.5, 30.5, 60, 2.0),
    (24.5, 25.5, 50, 2.0),
)
DEFAULT_MULTIPLIER = 2.0

# Width of the grayscale copy used for frame comparison
COMPARE_WIDTH = 64


# =============================================================================
# Settings
# =============================================================================

@dataclass
class CadenceSettings:
    """Parameters of the cadence stage.

    All values are literal so they can be embedded in a compiled artifact.

    Attributes:
        container_range: Nominal rates treated as 60 fps containers
        video_range: Nominal rates treated as 30 fps video
        select_cycle: First-pass decimation cycle for 60 fps containers
        select_offsets: Offsets kept by the first pass
        cycle: Duplicate search cycle length
        duplicate_threshold: Normalised difference below which a frame is a
            duplicate of its predecessor
        sample_frames: Frames collected before deciding
        fallback_cycle: Fixed-pattern cycle when similarity is unavailable
        fallback_offsets: Offsets kept by the fixed pattern
        use_similarity: Whether frame comparison may be used
        fps_mapping: Ordered (low, high, target fps, multiplier) table
    """
    container_range: Tuple[float, float] = (59.0, 61.0)
    video_range: Tuple[float, float] = (29.5, 30.5)
    select_cycle: int = 2
    select_offsets: Tuple[int, ...] = (0,)
    cycle: int = 5
    duplicate_threshold: float = 0.01
    sample_frames: int = 60
    fallback_cycle: int = 5
    fallback_offsets: Tuple[int, ...] = (0, 2, 4)
    use_similarity: bool = True
    fps_mapping: Tuple[Tuple[float, float, int, float], ...] = field(default=FPS_MAPPING)

    def __post_init__(self) -> None:
        self.container_range = tuple(self.container_range)
        self.video_range = tuple(self.video_range)
        self.select_offsets = tuple(self.select_offsets)
        self.fallback_offsets = tuple(self.fallback_offsets)
        self.fps_mapping = tuple(tuple(row) for row in self.fps_mapping)
        if self.cycle < 2:
            raise ValueError(f"cycle must be at least 2, got {self.cycle}")
        if self.sample_frames < self.cycle:
            raise ValueError("sample_frames must cover at least one cycle")
        if not 0.0 <= self.duplicate_threshold <= 1.0:
            raise ValueError("duplicate_threshold must be between 0 and 1")
        for offsets, cycle in ((self.select_offsets, self.select_cycle),
                               (self.fallback_offsets, self.fallback_cycle)):
            if not offsets or any(not 0 <= o < cycle for o in offsets):
                raise ValueError(f"offsets {offsets} do not fit cycle {cycle}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            "container_range": list(self.container_range),
            "video_range": list(self.video_range),
            "select_cycle": self.select_cycle,
            "select_offsets": list(self.select_offsets),
            "cycle": self.cycle,
            "duplicate_threshold": self.duplicate_threshold,
            "sample_frames": self.sample_frames,
            "fallback_cycle": self.fallback_cycle,
            "fallback_offsets": list(self.fallback_offsets),
            "use_similarity": self.use_similarity,
            "fps_mapping": [list(row) for row in self.fps_mapping],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CadenceSettings":
        """Create settings from a dictionary."""
        return cls(**data)


# =============================================================================
# Frame comparison / mapping
# =============================================================================

def _compare_copy(frame: ImageArray) -> np.ndarray:
    """Small grayscale float copy of a frame for comparison."""
    if frame.ndim == 3 and frame.shape[2] == 3:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    elif frame.ndim == 3:
        gray = frame[:, :, 0]
    else:
        gray = frame
    height, width = gray.shape[:2]
    if width > COMPARE_WIDTH:
        new_height = max(1, round(height * COMPARE_WIDTH / width))
        gray = cv2.resize(gray, (COMPARE_WIDTH, new_height), interpolation=cv2.INTER_AREA)
    gray = gray.astype(np.float32)
    if frame.dtype == np.uint8:
        gray /= 255.0
    return gray


def frame_difference(a: ImageArray, b: ImageArray) -> float:
    """Normalised mean absolute difference between two frames (0 = identical)."""
    return float(cv2.absdiff(_compare_copy(a), _compare_copy(b)).mean())


def map_output_rate(
    true_fps: float,
    mapping: Sequence[Sequence[float]] = FPS_MAPPING,
) -> Tuple[Fraction, float]:
    """Map a true frame rate to (target fps, multiplier)."""
    for low, high, target, multiplier in mapping:
        if low < true_fps < high:
            return Fraction(int(target)), float(multiplier)
    return Fraction(round(true_fps * 2)), DEFAULT_MULTIPLIER


# =============================================================================
# Streaming decimation
# =============================================================================

class Decimator:
    """Applies a decimation pattern to a frame stream.

    Two optional passes run in order: a fixed ``(cycle, offsets)`` selection,
    then a duplicate pass dropping the most similar frame of every
    ``drop_cycle`` frames. Frames are pushed one at a time; kept frames are
    returned as soon as their cycle is complete.
    """

    def __init__(
        self,
        select: Optional[Tuple[int, Sequence[int]]] = None,
        drop_cycle: Optional[int] = None,
    ):
        self.select = (select[0], frozenset(select[1])) if select else None
        self.drop_cycle = drop_cycle
        self._index = 0
        self._pending: List[ImageArray] = []
        self._pending_diffs: List[float] = []
        self._previous: Optional[ImageArray] = None
        self.frames_in = 0
        self.frames_out = 0

    @property
    def passthrough(self) -> bool:
        return self.select is None and self.drop_cycle is None

    def push(self, frame: ImageArray) -> List[ImageArray]:
        """Feed one frame, returning the frames released by it."""
        self.frames_in += 1
        index = self._index
        self._index += 1

        if self.select is not None:
            cycle, offsets = self.select
            if index % cycle not in offsets:
                return []

        if self.drop_cycle is None:
            self.frames_out += 1
            return [frame]

        diff = float("inf") if self._previous is None else frame_difference(self._previous, frame)
        self._previous = frame
        self._pending.append(frame)
        self._pending_diffs.append(diff)
        if len(self._pending) < self.drop_cycle:
            return []

        drop = int(np.argmin(self._pending_diffs))
        released = [f for i, f in enumerate(self._pending) if i != drop]
        self._pending = []
        self._pending_diffs = []
        self.frames_out += len(released)
        return released

    def flush(self) -> List[ImageArray]:
        """Release frames of an incomplete trailing cycle."""
        released = self._pending
        self._pending = []
        self._pending_diffs = []
        self.frames_out += len(released)
        return released

    def describe(self) -> Dict[str, Any]:
        return {
            "select": [self.select[0], sorted(self.select[1])] if self.select else None,
            "drop_cycle": self.drop_cycle,
        }


# =============================================================================
# Detector
# =============================================================================

@dataclass
class CadenceResult:
    """Decision plus the decimator that realises it on the live stream."""
    decision: CadenceDecision
    decimator: Decimator


class CadenceDetector:
    """Decides the true cadence of a stream from a sample window."""

    def __init__(self, settings: Optional[CadenceSettings] = None):
        self.settings = settings or CadenceSettings()

    def decide(self, nominal_fps: float, frames: Sequence[ImageArray]) -> CadenceResult:
        """Determine true cadence from sampled frames.

        Never raises for ambiguous input: falls back to the fixed 3-of-5
        pattern for 60 fps containers, to ``ASSUMED_FPS`` when the nominal
        rate is missing or not finite, and to the nominal rate otherwise.
        """
        s = self.settings
        try:
            if not math.isfinite(nominal_fps) or nominal_fps <= 0:
                raise CadenceAmbiguous(f"unusable nominal rate {nominal_fps!r}", nominal_fps=nominal_fps)
            if s.container_range[0] < nominal_fps < s.container_range[1]:
                return self._decide_container(nominal_fps, frames)
            if s.video_range[0] < nominal_fps < s.video_range[1]:
                return self._decide_video(nominal_fps, frames)
        except CadenceAmbiguous as e:
            logger.warning(f"Cadence ambiguous ({e}), using default pattern")
            return self._fallback(nominal_fps)

        logger.info(f"Native frame rate {nominal_fps:.3f}fps")
        return self._result(nominal_fps, nominal_fps, Decimator(), removed=False, method="nominal")

    def _decide_container(self, nominal_fps: float, frames: Sequence[ImageArray]) -> CadenceResult:
        s = self.settings
        if not s.use_similarity:
            logger.warning("Frame similarity unavailable, using fixed decimation pattern")
            return self._fixed_pattern(nominal_fps)

        selected = [f for i, f in enumerate(frames) if i % s.select_cycle in s.select_offsets]
        if self._has_duplicates(selected):
            logger.info(f"{nominal_fps:.3f}fps container -> {FILM_FPS}fps: pulldown removed")
            return self._result(
                nominal_fps, FILM_FPS,
                Decimator(select=(s.select_cycle, s.select_offsets), drop_cycle=s.cycle),
                removed=True, method="duplicate_search",
            )

        logger.info(f"{nominal_fps:.3f}fps container -> {NTSC_VIDEO_FPS}fps: no pulldown")
        return self._result(
            nominal_fps, NTSC_VIDEO_FPS,
            Decimator(select=(s.select_cycle, s.select_offsets)),
            removed=False, method="duplicate_search",
        )

    def _decide_video(self, nominal_fps: float, frames: Sequence[ImageArray]) -> CadenceResult:
        s = self.settings
        if not s.use_similarity:
            return self._result(nominal_fps, nominal_fps, Decimator(), removed=False, method="nominal")

        if self._has_duplicates(frames):
            logger.info(f"{nominal_fps:.3f}fps -> {FILM_FPS}fps: 3:2 pulldown removed")
            return self._result(
                nominal_fps, FILM_FPS, Decimator(drop_cycle=s.cycle),
                removed=True, method="duplicate_search",
            )
        return self._result(nominal_fps, nominal_fps, Decimator(), removed=False, method="duplicate_search")

    def _has_duplicates(self, frames: Sequence[ImageArray]) -> bool:
        """Whether most complete cycles contain a duplicate frame."""
        s = self.settings
        cycles = len(frames) // s.cycle
        if cycles == 0:
            raise CadenceAmbiguous(
                f"{len(frames)} frames do not fill a {s.cycle}-frame cycle"
            )

        try:
            diffs = [float("inf")] + [
                frame_difference(frames[i - 1], frames[i]) for i in range(1, cycles * s.cycle)
            ]
        except cv2.error as e:
            raise CadenceAmbiguous(f"frame comparison failed: {e}") from e

        with_duplicate = sum(
            1 for c in range(cycles)
            if min(diffs[c * s.cycle:(c + 1) * s.cycle]) < s.duplicate_threshold
        )
        logger.debug(f"{with_duplicate}/{cycles} cycles contain a duplicate frame")
        return with_duplicate * 2 >= cycles

    def _fixed_pattern(self, nominal_fps: float) -> CadenceResult:
        s = self.settings
        return self._result(
            nominal_fps, FILM_FPS,
            Decimator(select=(s.fallback_cycle, s.fallback_offsets)),
            removed=True, method="fixed_pattern",
        )

    def _fallback(self, nominal_fps: float) -> CadenceResult:
        s = self.settings
        if not math.isfinite(nominal_fps) or nominal_fps <= 0:
            return self._result(ASSUMED_FPS, ASSUMED_FPS, Decimator(), removed=False, method="nominal")
        if s.container_range[0] < nominal_fps < s.container_range[1]:
            return self._fixed_pattern(nominal_fps)
        return self._result(nominal_fps, nominal_fps, Decimator(), removed=False, method="nominal")

    def _result(
        self,
        nominal_fps: float,
        true_fps: float,
        decimator: Decimator,
        removed: bool,
        method: str,
    ) -> CadenceResult:
        target, multiplier = map_output_rate(true_fps, self.settings.fps_mapping)
        decision = CadenceDecision(
            source_fps=nominal_fps,
            true_fps=true_fps,
            target_fps=target,
            multiplier=multiplier,
            pulldown_removed=removed,
            method=method,
        )
        logger.info(
            f"Cadence: {true_fps:.3f}fps -> {float(target):g}fps (x{multiplier:g}, {method})"
        )
        return CadenceResult(decision=decision, decimator=decimator)


def decide_cadence(
    nominal_fps: float,
    frames: Sequence[ImageArray],
    settings: Optional[CadenceSettings] = None,
) -> CadenceDecision:
    """Convenience wrapper returning only the decision."""
    return CadenceDetector(settings).decide(nominal_fps, frames).decision
