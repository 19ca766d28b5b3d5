"""Pipeline orchestrator.

State machine owning the live pipeline artifact::

    Disabled --enable--> Enabling --ok--> Enabled --disable--> Disabling --> Disabled
                             |                                     ^
                             +--------------failure----------------+ (to Disabled)

Transitions run one at a time under a single lock. Engine notifications
arrive on the engine's thread; they are queued and handled by whichever
thread holds the lock when its transition ends, or immediately when the
lock is free. Every failure path releases artifact storage and ends in
``Disabled``, including a pipeline the engine drops during playback
(``EngineEvent.FILTER_FAILED``).

Example:
    >>> orchestrator = PipelineOrchestrator(engine, compiler, store, profile, config)
    >>> orchestrator.enable()
    >>> orchestrator.change_preset("beauty")
    >>> orchestrator.status().state
    <PipelineState.ENABLED: 'enabled'>
    >>> orchestrator.close()
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Mapping, Optional, Union

from .config import Config
from .core.types import (
    HardwareProfile,
    PerformanceMetrics,
    PipelineParameters,
    PipelineState,
    PipelineStatus,
    QualityPreset,
)
from .engine.base import EngineEvent, EngineNotification, EngineResult, PlaybackEngine, valid_fps
from .exceptions import (
    ArtifactStorageError,
    AttachError,
    CadenceflowError,
    CompilationError,
    InvalidTransitionError,
    format_user_message,
)
from .hardware import default_preset_for
from .persistence.artifact_store import ArtifactStore
from .pipeline.artifact import PipelineArtifact
from .pipeline.compiler import PipelineCompiler
from .presets import resolve
from .utils.logging import get_logger

logger = get_logger("orchestrator")

ENABLED_ESTIMATED_FPS = 60.0
DISABLED_ESTIMATED_FPS = 24.0

CustomValues = Union[PipelineParameters, Mapping[str, Any]]


class PipelineOrchestrator:
    """Enables, disables and reconfigures the interpolation pipeline.

    Attributes:
        engine: Playback engine the artifact is attached to
        compiler: Builds artifacts from parameters
        store: Artifact storage used for cleanup and sweeps
        profile: Hardware detected at startup
        settings: Application configuration
    """

    def __init__(
        self,
        engine: PlaybackEngine,
        compiler: PipelineCompiler,
        store: ArtifactStore,
        profile: HardwareProfile,
        settings: Optional[Config] = None,
        sweep_on_start: bool = True,
    ):
        self.engine = engine
        self.compiler = compiler
        self.store = store
        self.profile = profile
        self.settings = settings or Config()

        self._lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._events: "queue.Queue[EngineNotification]" = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cadenceflow-compile")

        self._state = PipelineState.DISABLED
        self._preset = self.settings.quality_preset or default_preset_for(profile.tier)
        self._custom: Optional[CustomValues] = self.settings.custom_or_none
        self._parameters: Optional[PipelineParameters] = None
        self._live: Optional[PipelineArtifact] = None
        self._last_error: Optional[str] = None
        self._source: Optional[str] = None
        self._updated_at = datetime.now()

        self._sweeper: Optional[threading.Timer] = None
        self._sweeper_stopped = threading.Event()
        self._closed = False

        self._unsubscribe = engine.subscribe(self._on_engine_event)
        logger.info(
            f"Orchestrator ready: tier {profile.tier.value}, preset {self._preset.value}",
            device=profile.name,
        )
        if sweep_on_start:
            self.sweep()

    # =========================================================================
    # Serialization
    # =========================================================================

    @contextmanager
    def _transition(self, operation: str) -> Iterator[None]:
        if self._closed:
            raise InvalidTransitionError("Orchestrator is closed", operation=operation, state=self.state.value)
        # fail fast instead of queueing behind a pending transition
        self._require_settled(operation)
        try:
            with self._lock:
                yield
        finally:
            self._drain_events()

    def _drain_events(self) -> None:
        while not self._events.empty():
            if not self._lock.acquire(blocking=False):
                # the current holder drains on release
                return
            try:
                while True:
                    try:
                        notification = self._events.get_nowait()
                    except queue.Empty:
                        break
                    self._handle_event_locked(notification)
            finally:
                self._lock.release()

    def _set_state(self, state: PipelineState, **fields: Any) -> None:
        with self._status_lock:
            old = self._state
            self._state = state
            for name, value in fields.items():
                setattr(self, f"_{name}", value)
            self._updated_at = datetime.now()
        if old != state:
            logger.transition(old.value, state.value)

    def _require_settled(self, operation: str) -> None:
        state = self.state
        if state in (PipelineState.ENABLING, PipelineState.DISABLING):
            raise InvalidTransitionError(
                f"Cannot {operation} while the pipeline is {state.value}",
                operation=operation,
                state=state.value,
            )

    # =========================================================================
    # Operations
    # =========================================================================

    def enable(self, params: Optional[PipelineParameters] = None) -> PipelineArtifact:
        """Compile, validate and attach a pipeline.

        Args:
            params: Parameters to use; defaults to the current preset

        Returns:
            The live artifact

        Raises:
            InvalidTransitionError: While another transition is pending
            InvalidParametersError: If the current preset cannot be resolved
            CompilationError: If the artifact could not be built
            AttachError: If the engine rejected the artifact
        """
        with self._transition("enable"):
            return self._enable_locked(params)

    def disable(self) -> None:
        """Detach the live pipeline and release its storage.

        No-op when already disabled.

        Raises:
            InvalidTransitionError: While another transition is pending
            AttachError: If detaching failed (state still ends Disabled)
        """
        with self._transition("disable"):
            self._disable_locked()

    def change_preset(
        self,
        preset: Union[QualityPreset, str],
        custom: Optional[CustomValues] = None,
    ) -> Optional[PipelineArtifact]:
        """Switch preset; recompiles when enabled.

        The preset is validated before anything changes. When enabled, the
        old pipeline is disabled and a new one enabled as one operation; if
        the new enable fails the pipeline stays disabled.

        Returns:
            The new live artifact, or None when disabled

        Raises:
            InvalidParametersError: Preset or custom values invalid; nothing changes
            InvalidTransitionError: While another transition is pending
            CompilationError, AttachError: The new enable failed
        """
        preset = QualityPreset.parse(preset)
        custom_values = custom if custom is not None else self._custom
        params = resolve(preset, self.profile, custom_values if preset is QualityPreset.CUSTOM else None)

        with self._transition("change preset"):
            with self._status_lock:
                self._preset = preset
                if custom is not None:
                    self._custom = custom
            logger.info(f"Preset changed to {preset.value}", parameters=params.to_dict())

            if self._state is PipelineState.DISABLED:
                return None
            self._disable_locked()
            return self._enable_locked(params)

    def sweep(self) -> List[str]:
        """Remove stale artifact files, never the live one.

        Returns:
            Paths removed
        """
        with self._status_lock:
            live_id = self._live.artifact_id if self._live else None
        removed = self.store.sweep(live_ids=[live_id])
        return [str(p) for p in removed]

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Run ``sweep()`` periodically on a background timer."""
        interval = interval or self.settings.sweep_interval_seconds
        self.stop_sweeper()
        self._sweeper_stopped.clear()

        def tick() -> None:
            if self._sweeper_stopped.is_set():
                return
            try:
                self.sweep()
            except ArtifactStorageError as e:
                logger.warning(f"Background sweep failed: {e}")
            schedule()

        def schedule() -> None:
            if self._sweeper_stopped.is_set():
                return
            timer = threading.Timer(interval, tick)
            timer.daemon = True
            self._sweeper = timer
            timer.start()

        schedule()
        logger.debug(f"Sweeper started, interval {interval}s")

    def stop_sweeper(self) -> None:
        self._sweeper_stopped.set()
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def state(self) -> PipelineState:
        with self._status_lock:
            return self._state

    @property
    def preset(self) -> QualityPreset:
        with self._status_lock:
            return self._preset

    @property
    def live_artifact(self) -> Optional[PipelineArtifact]:
        with self._status_lock:
            return self._live

    def status(self) -> PipelineStatus:
        """Snapshot for UIs. Never blocks on a running transition."""
        with self._status_lock:
            state = self._state
            status = PipelineStatus(
                state=state,
                preset=self._preset,
                parameters=self._parameters,
                last_error=self._last_error,
                live_artifact_id=self._live.artifact_id if self._live else None,
                updated_at=self._updated_at,
            )
        if state is PipelineState.ENABLED:
            status.output_fps = self._engine_fps()
        return status

    def metrics(self) -> PerformanceMetrics:
        """Playback performance; unknown engine values are reported as None."""
        enabled = self.state is PipelineState.ENABLED
        return PerformanceMetrics(
            current_fps=self._engine_fps(),
            estimated_fps=ENABLED_ESTIMATED_FPS if enabled else DISABLED_ESTIMATED_FPS,
            dropped_frames=self.engine.dropped_frames(),
        )

    def _engine_fps(self) -> Optional[float]:
        try:
            return valid_fps(self.engine.current_output_fps())
        except Exception as e:
            logger.debug(f"Engine did not report output fps: {e}")
            return None

    # =========================================================================
    # Transitions (lock held)
    # =========================================================================

    def _resolve_current(self) -> PipelineParameters:
        preset = self._preset
        return resolve(preset, self.profile, self._custom if preset is QualityPreset.CUSTOM else None)

    def _enable_locked(self, params: Optional[PipelineParameters]) -> PipelineArtifact:
        if self._state is PipelineState.ENABLED and self._live is not None:
            if params is not None and params != self._parameters:
                raise InvalidTransitionError(
                    "Pipeline is already enabled with other parameters; "
                    "disable it or change the preset instead",
                    operation="enable",
                    state=self._state.value,
                )
            logger.debug("Enable requested while enabled, nothing to do")
            return self._live
        self._require_settled("enable")

        if params is None:
            params = self._resolve_current()

        self._set_state(PipelineState.ENABLING)
        artifact: Optional[PipelineArtifact] = None
        attach_attempted = False
        try:
            future = self._executor.submit(self.compiler.compile, params, self.profile.device_index)
            artifact = future.result()

            result = self.compiler.validate(artifact)
            if not result.valid:
                raise CompilationError(
                    f"Pipeline artifact is invalid: {'; '.join(result.errors)}",
                    stage="validate",
                )

            attach_attempted = True
            attach = self._call_engine("attach", artifact)
            if not attach.ok:
                raise AttachError(
                    f"Engine rejected the pipeline: {attach.message or 'unknown reason'}",
                    artifact_id=artifact.artifact_id,
                    operation="attach",
                )
        except CadenceflowError as e:
            self._rollback(artifact, attach_attempted)
            self._set_state(PipelineState.DISABLED, live=None, last_error=format_user_message(e))
            logger.error(f"Enable failed: {e}")
            raise

        self._set_state(PipelineState.ENABLED, live=artifact, parameters=params, last_error=None)
        logger.info("Pipeline enabled", artifact_id=artifact.artifact_id, model=params.model_id)
        return artifact

    def _disable_locked(self) -> None:
        if self._state is PipelineState.DISABLED:
            return
        self._require_settled("disable")

        artifact = self._live
        self._log_metrics(artifact)
        self._set_state(PipelineState.DISABLING)
        detach_error: Optional[AttachError] = None
        try:
            detach = self._call_engine("detach")
            if not detach.ok:
                detach_error = AttachError(
                    f"Engine failed to detach the pipeline: {detach.message or 'unknown reason'}",
                    artifact_id=artifact.artifact_id if artifact else None,
                    operation="detach",
                )
        except AttachError as e:
            detach_error = e
        finally:
            if artifact is not None:
                self._release(artifact)
            self._set_state(
                PipelineState.DISABLED,
                live=None,
                last_error=format_user_message(detach_error) if detach_error else None,
            )

        if detach_error is not None:
            logger.error(f"Detach failed: {detach_error}")
            raise detach_error
        logger.info("Pipeline disabled")

    def _log_metrics(self, artifact: Optional[PipelineArtifact]) -> None:
        artifact_id = artifact.artifact_id if artifact else None
        fps = self._engine_fps()
        if fps is not None:
            logger.metric("output_fps", round(fps, 2), unit="fps", artifact_id=artifact_id)
        try:
            dropped = self.engine.dropped_frames()
        except Exception as e:
            logger.debug(f"Engine did not report dropped frames: {e}")
            return
        logger.metric("dropped_frames", dropped, artifact_id=artifact_id)

    def _call_engine(self, operation: str, *args: Any) -> EngineResult:
        try:
            result = getattr(self.engine, operation)(*args)
        except CadenceflowError as e:
            raise AttachError(f"Engine {operation} failed: {e.message}", operation=operation, cause=e) from e
        except Exception as e:
            raise AttachError(f"Engine {operation} failed: {e}", operation=operation, cause=e) from e
        if not isinstance(result, EngineResult):
            result = EngineResult(ok=bool(result))
        return result

    def _rollback(self, artifact: Optional[PipelineArtifact], attach_attempted: bool) -> None:
        if attach_attempted:
            try:
                detach = self._call_engine("detach")
                if not detach.ok:
                    logger.warning(f"Rollback detach reported failure: {detach.message}")
            except AttachError as e:
                logger.warning(f"Rollback detach failed: {e}")
        if artifact is not None:
            self._release(artifact)

    def _release(self, artifact: PipelineArtifact) -> None:
        try:
            self.store.delete(artifact.artifact_id)
        except ArtifactStorageError as e:
            logger.warning(f"Could not delete artifact {artifact.artifact_id}, sweep will retry: {e}")

    # =========================================================================
    # Engine events
    # =========================================================================

    def _on_engine_event(self, notification: EngineNotification) -> None:
        self._events.put(notification)
        self._drain_events()

    def _handle_event_locked(self, notification: EngineNotification) -> None:
        event = notification.event
        if event is EngineEvent.SOURCE_LOAD_STARTED:
            with self._status_lock:
                self._source = notification.source
            logger.info(f"Loading source {notification.source}")

        elif event is EngineEvent.SOURCE_LOAD_FAILED:
            message = notification.message or f"Failed to load {notification.source}"
            with self._status_lock:
                self._last_error = message
            logger.warning(message)

        elif event is EngineEvent.SOURCE_LOAD_COMPLETED:
            logger.info(f"Source loaded {notification.source}")
            if not self.settings.auto_enable_on_load or self._closed:
                return
            if self._state is not PipelineState.DISABLED:
                return
            try:
                self._enable_locked(None)
            except CadenceflowError as e:
                logger.error(f"Automatic enable failed: {format_user_message(e)}")

        elif event is EngineEvent.FILTER_FAILED:
            self._filter_failed_locked(notification)

    def _filter_failed_locked(self, notification: EngineNotification) -> None:
        """The engine dropped the live pipeline; release it and end Disabled."""
        artifact = self._live
        if self._state is not PipelineState.ENABLED or artifact is None:
            return
        if notification.artifact_id and notification.artifact_id != artifact.artifact_id:
            logger.debug(f"Ignoring failure of superseded artifact {notification.artifact_id}")
            return

        message = notification.message or "Pipeline failed during playback"
        self._set_state(PipelineState.DISABLING)
        self._release(artifact)
        self._set_state(PipelineState.DISABLED, live=None, last_error=message)
        logger.error(f"Pipeline stopped by the engine: {message}", artifact_id=artifact.artifact_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Stop the sweeper, disable the pipeline and stop the worker."""
        if self._closed:
            return
        self.stop_sweeper()
        self._unsubscribe()
        try:
            self.disable()
        except CadenceflowError as e:
            logger.warning(f"Disable during shutdown failed: {e}")
        self._closed = True
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "PipelineOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
