"""Execution of a compiled pipeline artifact.

The runtime consumes decoded engine frames one at a time and fills the
lookahead buffer with output frames at the target rate:

    engine frame -> cadence (sample, then decimate) -> to_working
      -> downscale? -> scene_detect -> synthesize -> upscale? -> to_output
      -> lookahead

Example:
    >>> runtime = PipelineRuntime.from_file(artifact_path)
    >>> runtime.start(nominal_fps=59.94, width=1920, height=1080)
    >>> for frame in frames:
    ...     runtime.push(frame)
    ...     for out in runtime.drain():
    ...         render(out)
    >>> runtime.flush()
"""

import logging
import math
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.types import CadenceDecision, FloatImageArray, ImageArray, Size
from ..exceptions import ArtifactStorageError, SynthesisError
from ..processors import colorspace
from ..processors.cadence import CadenceDetector, CadenceSettings, Decimator
from ..processors.frame_buffer import LookaheadBuffer
from ..processors.scene_change import create_scene_detector
from ..synthesis.base import FrameSynthesizer, SynthesisOptions
from ..synthesis.registry import SynthesisRegistry, default_registry
from .artifact import PipelineArtifact, load_artifact, validate

logger = logging.getLogger(__name__)


@dataclass
class RuntimeStats:
    """Counters for one stream."""
    frames_in: int = 0
    frames_kept: int = 0
    frames_out: int = 0
    frames_synthesized: int = 0
    scene_boundaries: int = 0
    frames_evicted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class PipelineRuntime:
    """Executes one artifact against a live frame stream.

    Not thread-safe: a single playback thread pushes frames. Output frames
    may be consumed from another thread through ``drain()``.
    """

    def __init__(self, artifact: PipelineArtifact, registry: Optional[SynthesisRegistry] = None):
        result = validate(artifact)
        if not result.valid:
            raise ArtifactStorageError(
                f"Invalid artifact {artifact.artifact_id}: {'; '.join(result.errors)}",
                path=str(artifact.path) if artifact.path else None,
            )
        self.artifact = artifact
        self.registry = registry or default_registry()

        self._cadence = CadenceSettings.from_dict(artifact.stage("cadence")["settings"])
        self._to_working = artifact.stage("to_working")
        self._downscale = artifact.stage("downscale")
        self._scene = artifact.stage("scene_detect")
        self._synth_stage = artifact.stage("synthesize")
        self._upscale = artifact.stage("upscale")
        self._to_output = artifact.stage("to_output")
        self.buffer: LookaheadBuffer[ImageArray] = LookaheadBuffer(artifact.stage("lookahead")["capacity"])

        self.decision: Optional[CadenceDecision] = None
        self.stats = RuntimeStats()
        self._synthesizer: Optional[FrameSynthesizer] = None
        self._started = False
        self._reset_stream()

    @classmethod
    def from_file(cls, path: Union[str, Path], registry: Optional[SynthesisRegistry] = None) -> "PipelineRuntime":
        """Load an artifact file and build a runtime for it."""
        return cls(load_artifact(path), registry=registry)

    @property
    def artifact_id(self) -> str:
        return self.artifact.artifact_id

    @property
    def input_format(self) -> str:
        """Pixel format the artifact expects from the engine."""
        return self._to_working["input_format"]

    @property
    def output_format(self) -> str:
        return self._to_output["output_format"]

    @property
    def output_fps(self) -> Optional[float]:
        """Target output rate, known once the cadence is decided."""
        return self.decision.target_fps_float if self.decision else None

    def _reset_stream(self) -> None:
        self._nominal_fps = 0.0
        self._source_size: Size = (0, 0)
        self._working_size: Size = (0, 0)
        self._sample: List[ImageArray] = []
        self._decimator: Optional[Decimator] = None
        self._step = Fraction(1, 2)
        self._next_position = Fraction(0)
        self._index = -1
        self._previous: Optional[FloatImageArray] = None
        self.buffer.clear()

    # -------------------------------------------------------------------------
    # Stream lifecycle
    # -------------------------------------------------------------------------

    def start(self, nominal_fps: float, width: int, height: int) -> None:
        """Prepare for a new stream; a new source restarts cadence detection.

        A missing or non-finite ``nominal_fps`` is accepted; cadence
        detection then falls back to its assumed rate.

        Raises:
            ValueError: If the frame geometry is not positive
            SynthesisError: If the synthesis backend cannot be prepared
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid stream geometry: {width}x{height}")
        if not math.isfinite(nominal_fps) or nominal_fps <= 0:
            logger.warning(f"Unusable frame rate {nominal_fps!r}, cadence detection will assume one")

        self._reset_stream()
        self.decision = None
        self.stats = RuntimeStats()
        self._nominal_fps = float(nominal_fps)
        self._source_size = (int(width), int(height))

        max_height = self._downscale["max_height"]
        if height > max_height:
            self._working_size = colorspace.fit_height(self._source_size, max_height)
            logger.info(f"Downscaling {width}x{height} -> {self._working_size[0]}x{self._working_size[1]}")
        else:
            self._working_size = self._source_size

        self.prepare(height)
        self._scene_detector = create_scene_detector(self._scene["threshold"], self._scene.get("method"))
        self._started = True
        logger.debug(f"Runtime {self.artifact_id} started for {width}x{height}@{nominal_fps:.3f}")

    def prepare(self, height: Optional[int] = None) -> None:
        """Create the synthesis backend and load its model.

        ``height`` is the source height when known; it selects the reduced
        internal scale. A backend already prepared for the same scale is kept.

        Raises:
            SynthesisError: If the backend is unavailable or its model fails to load
        """
        scale = self._scale_for(height)
        if self._synthesizer is not None and self._synthesizer.options.scale == scale:
            return
        self.close_synthesizer()

        options = SynthesisOptions(
            model_id=self._synth_stage["model_id"],
            model_path=Path(self._synth_stage["model_path"]) if self._synth_stage.get("model_path") else None,
            device_index=self._synth_stage["device_index"],
            fp16=self._synth_stage["fp16"],
            scale=scale,
            uhd_mode=self._synth_stage["uhd_mode"],
        )
        synthesizer = self.registry.create(self._synth_stage["backend"], options)
        try:
            synthesizer.load()
        except SynthesisError:
            synthesizer.close()
            raise
        self._synthesizer = synthesizer

    def _scale_for(self, height: Optional[int]) -> float:
        if height is not None and height > self._synth_stage["realtime_height_ceiling"]:
            return self._synth_stage["reduced_scale"]
        return 1.0

    @property
    def downscaled(self) -> bool:
        return self._working_size != self._source_size

    def push(self, frame: ImageArray) -> int:
        """Feed one decoded frame. Returns the number of frames produced."""
        if not self._started:
            raise RuntimeError("PipelineRuntime.start() must be called before push()")
        self.stats.frames_in += 1

        if self._decimator is None:
            self._sample.append(frame)
            if len(self._sample) < self._cadence.sample_frames:
                return 0
            return self._decide_and_release()

        produced = 0
        for kept in self._decimator.push(frame):
            produced += self._process(kept)
        return produced

    def flush(self) -> int:
        """End of stream: release held frames and emit the final frame."""
        if not self._started:
            return 0
        produced = 0
        if self._decimator is None:
            produced += self._decide_and_release()
        for kept in self._decimator.flush():
            produced += self._process(kept)
        if self._previous is not None and self._next_position <= self._index:
            produced += self._emit(self._previous)
            self._next_position += self._step
        return produced

    def drain(self) -> List[ImageArray]:
        """Output frames ready for display, oldest first."""
        return self.buffer.drain()

    def close_synthesizer(self) -> None:
        if self._synthesizer is not None:
            self._synthesizer.close()
            self._synthesizer = None

    def close(self) -> None:
        """Release the backend and buffered frames."""
        self.close_synthesizer()
        self.buffer.clear()
        self._started = False

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _decide_and_release(self) -> int:
        result = CadenceDetector(self._cadence).decide(self._nominal_fps, self._sample)
        self.decision = result.decision
        self._decimator = result.decimator
        self._step = 1 / Fraction(self.decision.multiplier).limit_denominator(1000)

        sample, self._sample = self._sample, []
        produced = 0
        for frame in sample:
            for kept in self._decimator.push(frame):
                produced += self._process(kept)
        return produced

    def _prepare(self, frame: ImageArray) -> FloatImageArray:
        working = colorspace.to_working(
            frame, self._to_working["input_format"], self._to_working["chroma_kernel"]
        )
        if self.downscaled:
            working = colorspace.resize(working, self._working_size, self._downscale["kernel"])
        return working

    def _process(self, frame: ImageArray) -> int:
        """Synthesize every output position between the previous and this frame."""
        self.stats.frames_kept += 1
        current = self._prepare(frame)
        self._index += 1

        if self._previous is None:
            self._previous = current
            return 0

        start = self._index - 1
        boundary = self._scene_detector.is_boundary(self._previous, current)
        if boundary:
            self.stats.scene_boundaries += 1

        produced = 0
        while self._next_position < self._index:
            timestep = float(self._next_position - start)
            if timestep == 0.0 or boundary:
                out = self._previous
            else:
                out = self._synthesizer.synthesize(self._previous, current, timestep)
                self.stats.frames_synthesized += 1
            produced += self._emit(out)
            self._next_position += self._step

        self._previous = current
        return produced

    def _emit(self, working: FloatImageArray) -> int:
        if self.downscaled:
            working = colorspace.resize(working, self._source_size, self._upscale["kernel"])
        frame = colorspace.from_working(
            working, self._to_output["output_format"], self._to_output["chroma_kernel"]
        )
        if not self.buffer.put(frame):
            self.stats.frames_evicted += 1
        self.stats.frames_out += 1
        return 1

    def describe(self) -> Dict[str, Any]:
        """Current runtime state for diagnostics."""
        return {
            "artifact_id": self.artifact_id,
            "backend": self._synth_stage["backend"],
            "decision": self.decision.to_dict() if self.decision else None,
            "decimation": self._decimator.describe() if self._decimator else None,
            "source_size": list(self._source_size),
            "working_size": list(self._working_size),
            "stats": self.stats.to_dict(),
        }
