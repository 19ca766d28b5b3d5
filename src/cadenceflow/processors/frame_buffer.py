"""Lookahead frame buffer for pipeline output."""

import threading
from collections import deque
from typing import Deque, Dict, Generic, List, Optional, TypeVar

FrameT = TypeVar("FrameT")


class LookaheadBuffer(Generic[FrameT]):
    """Thread-safe bounded FIFO of produced frames.

    Never blocks the producer: when full, the oldest frame is evicted and
    counted as dropped. Frames leave only by consumption or eviction.

    Example:
        >>> buffer = LookaheadBuffer(capacity=100)
        >>> buffer.put(frame)
        >>> ready = buffer.drain()
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._frames: Deque[FrameT] = deque()
        self._lock = threading.Lock()
        self._total_in = 0
        self._total_out = 0
        self._evicted = 0

    def put(self, frame: FrameT) -> bool:
        """Append a frame. Returns False if an old frame had to be evicted."""
        with self._lock:
            evicted = False
            if len(self._frames) >= self.capacity:
                self._frames.popleft()
                self._evicted += 1
                evicted = True
            self._frames.append(frame)
            self._total_in += 1
            return not evicted

    def get(self) -> Optional[FrameT]:
        """Oldest frame, or None when empty."""
        with self._lock:
            if not self._frames:
                return None
            self._total_out += 1
            return self._frames.popleft()

    def drain(self) -> List[FrameT]:
        """Remove and return every buffered frame in order."""
        with self._lock:
            frames = list(self._frames)
            self._frames.clear()
            self._total_out += len(frames)
            return frames

    def clear(self) -> None:
        with self._lock:
            self._frames.clear()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def evicted(self) -> int:
        """Frames dropped because the buffer was full."""
        with self._lock:
            return self._evicted

    def get_stats(self) -> Dict[str, int]:
        """Get buffer statistics."""
        with self._lock:
            return {
                "capacity": self.capacity,
                "current_size": len(self._frames),
                "total_in": self._total_in,
                "total_out": self._total_out,
                "evicted": self._evicted,
            }
