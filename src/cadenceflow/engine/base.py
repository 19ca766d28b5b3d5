"""Playback engine interface.

The orchestrator talks to the media engine only through this contract:
attach/detach a compiled artifact, read the measured output rate, and
receive source-load notifications as callbacks.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..pipeline.artifact import PipelineArtifact

logger = logging.getLogger(__name__)


class EngineEvent(Enum):
    """Events raised by the engine.

    ``FILTER_FAILED`` means an attached pipeline stopped working during
    playback; the engine has already removed it and plays on unfiltered.
    """

    SOURCE_LOAD_STARTED = "source_load_started"
    SOURCE_LOAD_COMPLETED = "source_load_completed"
    SOURCE_LOAD_FAILED = "source_load_failed"
    FILTER_FAILED = "filter_failed"


@dataclass
class EngineNotification:
    """Event delivered to subscribers, on the engine's thread.

    Attributes:
        event: Event type
        source: Media source (path or URL) the event refers to
        message: Human-readable detail, e.g. the failure reason
        artifact_id: Pipeline artifact concerned, for filter events
        timestamp: Unix timestamp when the event occurred
    """

    event: EngineEvent
    source: str = ""
    message: str = ""
    artifact_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class EngineResult:
    """Outcome of an attach or detach request."""

    ok: bool
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "EngineResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, message: str) -> "EngineResult":
        return cls(ok=False, message=message)


EngineCallback = Callable[[EngineNotification], None]


def valid_fps(value: Optional[float]) -> Optional[float]:
    """A reported frame rate, or None if it is missing, non-finite or <= 0."""
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


class PlaybackEngine(ABC):
    """Media engine able to run a compiled pipeline.

    Subclasses implement attach/detach/current_output_fps and call
    ``_emit`` for source and filter events. Subscription management is shared.

    Attributes:
        pixel_format: Layout of the frames the engine hands to an attached
            pipeline (``bgr24`` or ``yuv420p``)
    """

    pixel_format: str = "bgr24"

    def __init__(self) -> None:
        self._listeners: List[EngineCallback] = []
        self._listener_lock = threading.Lock()

    @abstractmethod
    def attach(self, artifact: PipelineArtifact) -> EngineResult:
        """Install the artifact as the engine's video filter."""

    @abstractmethod
    def detach(self) -> EngineResult:
        """Remove the installed filter, if any."""

    @abstractmethod
    def current_output_fps(self) -> float:
        """Measured output frame rate; 0.0 or NaN when unknown."""

    def dropped_frames(self) -> int:
        """Frames dropped since the current source loaded."""
        return 0

    def subscribe(self, callback: EngineCallback) -> Callable[[], None]:
        """Subscribe to engine events.

        Returns:
            Unsubscribe function.
        """
        with self._listener_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._listener_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, notification: EngineNotification) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)

        for callback in listeners:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Error in engine event callback: {e}")
