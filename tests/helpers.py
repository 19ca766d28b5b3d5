"""Test doubles and synthetic frame generators shared by the test modules."""
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from cadenceflow.engine.base import (
    EngineEvent,
    EngineNotification,
    EngineResult,
    PlaybackEngine,
)
from cadenceflow.pipeline.artifact import PipelineArtifact


# ============================================================================
# Fake playback engine
# ============================================================================

class FakeEngine(PlaybackEngine):
    """In-memory engine recording attach/detach calls.

    ``attach_result`` / ``detach_result`` may be an EngineResult or an
    exception instance to raise.
    """

    def __init__(self) -> None:
        super().__init__()
        self.attach_result: object = EngineResult.success()
        self.detach_result: object = EngineResult.success()
        self.fps: object = 59.8
        self.dropped = 0
        self.attached: Optional[PipelineArtifact] = None
        self.attach_calls: List[PipelineArtifact] = []
        self.detach_calls = 0
        self.on_attach: Optional[Callable[[PipelineArtifact], None]] = None

    def attach(self, artifact: PipelineArtifact) -> EngineResult:
        self.attach_calls.append(artifact)
        if self.on_attach is not None:
            self.on_attach(artifact)
        if isinstance(self.attach_result, Exception):
            raise self.attach_result
        if self.attach_result.ok:
            self.attached = artifact
        return self.attach_result

    def detach(self) -> EngineResult:
        self.detach_calls += 1
        if isinstance(self.detach_result, Exception):
            raise self.detach_result
        if self.detach_result.ok:
            self.attached = None
        return self.detach_result

    def current_output_fps(self) -> float:
        if isinstance(self.fps, Exception):
            raise self.fps
        return self.fps

    def dropped_frames(self) -> int:
        return self.dropped

    def emit(
        self,
        event: EngineEvent,
        source: str = "clip.mkv",
        message: str = "",
        artifact_id: Optional[str] = None,
    ) -> None:
        self._emit(EngineNotification(event, source=source, message=message, artifact_id=artifact_id))


# ============================================================================
# Frame generators
# ============================================================================

def noise_frames(count: int, width: int = 64, height: int = 48, seed: int = 0) -> List[np.ndarray]:
    """Distinct random BGR frames."""
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 256, (height, width, 3), dtype=np.uint8) for _ in range(count)]


def gradient_frames(count: int, width: int = 64, height: int = 48, start: int = 40, step: int = 2) -> List[np.ndarray]:
    """Flat frames whose level rises slowly: no scene changes, no duplicates."""
    return [np.full((height, width, 3), start + step * i, dtype=np.uint8) for i in range(count)]


def telecined_30(film_frames: int, seed: int = 0) -> List[np.ndarray]:
    """30fps video carrying 3:2 pulldown 24fps film.

    Every group of four film frames becomes five video frames, the third
    one repeated.
    """
    film = noise_frames(film_frames, seed=seed)
    video = []
    for i in range(0, film_frames - film_frames % 4, 4):
        a, b, c, d = film[i:i + 4]
        video.extend([a, b, c, c, d])
    return video


def telecined_60(film_frames: int, seed: int = 0) -> List[np.ndarray]:
    """A 60fps container carrying pulldown film, every video frame doubled."""
    return [f for frame in telecined_30(film_frames, seed) for f in (frame, frame)]


def native_30_in_60(video_frames: int, seed: int = 0) -> List[np.ndarray]:
    """A 60fps container carrying genuine 30fps video."""
    return [f for frame in noise_frames(video_frames, seed=seed) for f in (frame, frame)]


def artifact_files(directory: Path) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(directory.glob("cadenceflow_*.json"))
