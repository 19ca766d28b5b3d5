"""Playback engine interface and adapters."""

from .base import (
    EngineCallback,
    EngineEvent,
    EngineNotification,
    EngineResult,
    PlaybackEngine,
    valid_fps,
)
from .opencv import OpenCVPlaybackEngine

__all__ = [
    "EngineCallback",
    "EngineEvent",
    "EngineNotification",
    "EngineResult",
    "OpenCVPlaybackEngine",
    "PlaybackEngine",
    "valid_fps",
]
