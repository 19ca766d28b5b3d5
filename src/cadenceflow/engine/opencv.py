"""OpenCV-backed playback engine.

Decodes a file or stream with ``cv2.VideoCapture`` on a playback thread and
runs the attached pipeline artifact on every frame. Attached artifacts are
loaded from their files with ``PipelineRuntime.from_file``, so the engine
depends on nothing but the artifact itself.

Example:
    >>> engine = OpenCVPlaybackEngine(frame_sink=display)
    >>> engine.subscribe(on_event)
    >>> engine.load("episode01.mkv")
    >>> engine.wait()
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional

import cv2
import numpy as np

from ..exceptions import ArtifactStorageError, SynthesisError, format_user_message
from ..pipeline.artifact import PipelineArtifact
from ..pipeline.runtime import PipelineRuntime
from ..processors.cadence import ASSUMED_FPS
from ..processors.colorspace import PIXEL_FORMATS
from ..synthesis.registry import SynthesisRegistry
from .base import EngineEvent, EngineNotification, EngineResult, PlaybackEngine, valid_fps

logger = logging.getLogger(__name__)

FrameSink = Callable[[np.ndarray], None]
_DETACH = object()

# Errors an attached pipeline can raise on the playback thread
FILTER_ERRORS = (SynthesisError, ValueError, cv2.error)


class OpenCVPlaybackEngine(PlaybackEngine):
    """Playback engine decoding with OpenCV.

    Attach validates the artifact and prepares its synthesis backend right
    away; the prepared pipeline is swapped in at the next frame boundary on
    the playback thread. A pipeline that fails during playback is removed
    and reported with ``EngineEvent.FILTER_FAILED``.
    """

    def __init__(
        self,
        frame_sink: Optional[FrameSink] = None,
        registry: Optional[SynthesisRegistry] = None,
        realtime: bool = False,
        fps_window_seconds: float = 2.0,
        pixel_format: str = "bgr24",
    ):
        super().__init__()
        if pixel_format not in PIXEL_FORMATS:
            raise ValueError(f"Unsupported pixel format '{pixel_format}'. Must be one of: {PIXEL_FORMATS}")
        self.frame_sink = frame_sink
        self.registry = registry
        self.realtime = realtime
        self.fps_window_seconds = fps_window_seconds
        self.pixel_format = pixel_format

        self._lock = threading.Lock()
        self._pending: object = None
        self._runtime: Optional[PipelineRuntime] = None
        self._output_times: Deque[float] = deque()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._source = ""
        self._stream_info = (0.0, 0, 0)
        self.frames_decoded = 0
        self.frames_rendered = 0

    # -------------------------------------------------------------------------
    # PlaybackEngine
    # -------------------------------------------------------------------------

    def attach(self, artifact: PipelineArtifact) -> EngineResult:
        if artifact.path is None:
            return EngineResult.failure(f"Artifact {artifact.artifact_id} has no backing file")
        try:
            runtime = PipelineRuntime.from_file(artifact.path, registry=self.registry)
        except ArtifactStorageError as e:
            return EngineResult.failure(f"Could not load artifact: {e.message}")

        if runtime.input_format != self.pixel_format or runtime.output_format != self.pixel_format:
            return EngineResult.failure(
                f"Artifact uses {runtime.input_format} -> {runtime.output_format} frames, "
                f"engine delivers {self.pixel_format}"
            )

        _, _, height = self._stream_info
        try:
            runtime.prepare(height or None)
        except SynthesisError as e:
            runtime.close()
            return EngineResult.failure(f"Could not prepare synthesis backend: {e.message}")

        with self._lock:
            previous, self._pending = self._pending, runtime
        if isinstance(previous, PipelineRuntime):
            previous.close()
        logger.info(f"Artifact {artifact.artifact_id} queued for attach")
        return EngineResult.success()

    def detach(self) -> EngineResult:
        with self._lock:
            if self._runtime is None and self._pending in (None, _DETACH):
                self._pending = None
                return EngineResult.success("No filter attached")
            if isinstance(self._pending, PipelineRuntime):
                self._pending.close()
            self._pending = _DETACH
        return EngineResult.success()

    def current_output_fps(self) -> float:
        with self._lock:
            times = list(self._output_times)
        if len(times) < 2 or times[-1] <= times[0]:
            return 0.0
        return (len(times) - 1) / (times[-1] - times[0])

    def dropped_frames(self) -> int:
        with self._lock:
            runtime = self._runtime
        return runtime.stats.frames_evicted if runtime else 0

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def attached_artifact_id(self) -> Optional[str]:
        with self._lock:
            return self._runtime.artifact_id if self._runtime else None

    def load(self, source: str) -> None:
        """Start playing a source on a background thread."""
        self.stop()
        self._stop.clear()
        self._source = str(source)
        self._thread = threading.Thread(target=self._play, name="cadenceflow-playback", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop playback and wait for the playback thread."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for playback to finish. Returns False on timeout."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def close(self) -> None:
        self.stop()
        with self._lock:
            runtime, self._runtime = self._runtime, None
            pending, self._pending = self._pending, None
        for held in (runtime, pending):
            if isinstance(held, PipelineRuntime):
                held.close()

    def _play(self) -> None:
        source = self._source
        self._emit(EngineNotification(EngineEvent.SOURCE_LOAD_STARTED, source=source))

        capture = cv2.VideoCapture(source)
        if not capture.isOpened():
            self._emit(EngineNotification(
                EngineEvent.SOURCE_LOAD_FAILED, source=source, message=f"Cannot open {source}",
            ))
            return

        try:
            fps = valid_fps(capture.get(cv2.CAP_PROP_FPS))
            width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
            if fps is None:
                logger.warning(f"{source} reports no usable frame rate, assuming {ASSUMED_FPS:g}fps")
                fps = ASSUMED_FPS
            if self.pixel_format == "yuv420p" and (width % 2 or height % 2):
                self._emit(EngineNotification(
                    EngineEvent.SOURCE_LOAD_FAILED, source=source,
                    message=f"{source} is {width}x{height}; yuv420p needs even dimensions",
                ))
                return

            self._stream_info = (fps, width, height)
            self.frames_decoded = 0
            self.frames_rendered = 0
            with self._lock:
                self._output_times.clear()
                # a filter kept from the previous source restarts on this one
                if self._runtime is not None and self._pending is None:
                    self._pending = self._runtime
                    self._runtime = None
            logger.info(f"Loaded {source}: {width}x{height}@{fps:.3f}fps")
            self._emit(EngineNotification(EngineEvent.SOURCE_LOAD_COMPLETED, source=source))

            interval = 1.0 / fps
            while not self._stop.is_set():
                ok, frame = capture.read()
                if not ok:
                    break
                self.frames_decoded += 1
                if self.pixel_format == "yuv420p":
                    frame = cv2.cvtColor(frame, cv2.COLOR_BGR2YUV_I420)
                self._apply_pending()
                self._deliver(self._run_filter(frame), interval)

            self._apply_pending()
            runtime = self._runtime
            if runtime is not None and not self._stop.is_set():
                try:
                    runtime.flush()
                except FILTER_ERRORS as e:
                    self._drop_filter(runtime, e)
                else:
                    self._deliver(runtime.drain(), interval)
        finally:
            capture.release()
            logger.info(f"Playback of {source} ended after {self.frames_decoded} frames")

    def _apply_pending(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
            if pending is None:
                return
            old, self._runtime = self._runtime, None
            self._output_times.clear()
        if old is not None:
            old.close()

        if isinstance(pending, PipelineRuntime):
            fps, width, height = self._stream_info
            try:
                pending.start(fps, width, height)
            except FILTER_ERRORS as e:
                self._drop_filter(pending, e)
                return
            with self._lock:
                self._runtime = pending
        logger.debug(f"Filter {'attached' if self._runtime else 'detached'} at frame {self.frames_decoded}")

    def _run_filter(self, frame: np.ndarray) -> List[np.ndarray]:
        runtime = self._runtime
        if runtime is None:
            return [frame]
        try:
            runtime.push(frame)
        except FILTER_ERRORS as e:
            self._drop_filter(runtime, e)
            return [frame]
        return runtime.drain()

    def _drop_filter(self, runtime: PipelineRuntime, error: Exception) -> None:
        """Remove a failed pipeline and report it to subscribers."""
        message = format_user_message(error)
        logger.error(f"Pipeline {runtime.artifact_id} failed, continuing without interpolation: {message}")
        with self._lock:
            if self._runtime is runtime:
                self._runtime = None
        runtime.close()
        self._emit(EngineNotification(
            EngineEvent.FILTER_FAILED,
            source=self._source,
            message=f"Interpolation stopped: {message}",
            artifact_id=runtime.artifact_id,
        ))

    def _deliver(self, frames: list, interval: float) -> None:
        if not frames:
            return
        runtime = self._runtime
        output_fps = runtime.output_fps if runtime and runtime.output_fps else 1.0 / interval
        for frame in frames:
            if self.frame_sink is not None:
                self.frame_sink(frame)
            self.frames_rendered += 1
            now = time.monotonic()
            with self._lock:
                self._output_times.append(now)
                while self._output_times and now - self._output_times[0] > self.fps_window_seconds:
                    self._output_times.popleft()
            if self.realtime:
                time.sleep(1.0 / output_fps)
