"""Tests for the pipeline orchestrator state machine."""

import logging
import math
import os
import threading
import time

import pytest

from cadenceflow.core.types import PipelineState, QualityPreset
from cadenceflow.engine.base import EngineEvent, EngineResult
from cadenceflow.exceptions import (
    AttachError,
    CompilationError,
    InvalidParametersError,
    InvalidTransitionError,
)
from cadenceflow.orchestrator import (
    DISABLED_ESTIMATED_FPS,
    ENABLED_ESTIMATED_FPS,
    PipelineOrchestrator,
)
from cadenceflow.pipeline.compiler import PipelineCompiler
from cadenceflow.presets import resolve

from helpers import artifact_files


@pytest.fixture
def orchestrator(engine, compiler, store, mid_profile, config):
    orch = PipelineOrchestrator(engine, compiler, store, mid_profile, config)
    yield orch
    orch.close()


def make_stale(path):
    stamp = time.time() - 2 * 3600
    os.utime(path, (stamp, stamp))


class TestEnableDisable:
    """Tests for the basic lifecycle."""

    def test_initial_state(self, orchestrator):
        status = orchestrator.status()
        assert status.state == PipelineState.DISABLED
        assert status.preset == QualityPreset.BALANCED
        assert status.live_artifact_id is None

    def test_configured_preset_overrides_tier_default(self, engine, compiler, store, mid_profile, config):
        config.quality_preset = QualityPreset.BEAUTY
        with PipelineOrchestrator(engine, compiler, store, mid_profile, config) as orch:
            assert orch.preset == QualityPreset.BEAUTY

    def test_enable(self, orchestrator, engine, config):
        artifact = orchestrator.enable()

        status = orchestrator.status()
        assert status.state == PipelineState.ENABLED
        assert status.live_artifact_id == artifact.artifact_id
        assert status.parameters == resolve("balanced")
        assert status.last_error is None
        assert engine.attached is artifact
        assert artifact_files(config.artifact_dir) == [artifact.path]

    def test_enable_with_explicit_parameters(self, orchestrator):
        artifact = orchestrator.enable(resolve("beauty"))
        assert artifact.parameters.uhd_mode is True

    def test_enable_when_enabled_is_noop(self, orchestrator, engine, config):
        first = orchestrator.enable()
        second = orchestrator.enable()
        assert second is first
        assert len(engine.attach_calls) == 1
        assert len(artifact_files(config.artifact_dir)) == 1

    def test_enable_with_other_parameters_while_enabled(self, orchestrator, engine):
        first = orchestrator.enable()
        with pytest.raises(InvalidTransitionError):
            orchestrator.enable(resolve("beauty"))
        assert orchestrator.state == PipelineState.ENABLED
        assert orchestrator.status().live_artifact_id == first.artifact_id
        assert orchestrator.enable(first.parameters) is first
        assert len(engine.attach_calls) == 1

    def test_disable(self, orchestrator, engine, config):
        artifact = orchestrator.enable()
        orchestrator.disable()

        assert orchestrator.state == PipelineState.DISABLED
        assert orchestrator.live_artifact is None
        assert engine.attached is None
        assert not artifact.path.exists()

    def test_disable_twice_is_noop(self, orchestrator, engine):
        orchestrator.enable()
        orchestrator.disable()
        orchestrator.disable()
        assert engine.detach_calls == 1
        assert orchestrator.state == PipelineState.DISABLED

    def test_disable_when_never_enabled(self, orchestrator, engine):
        orchestrator.disable()
        assert engine.detach_calls == 0

    def test_at_most_one_artifact_across_cycles(self, orchestrator, config):
        for preset in ("fast", "balanced", "beauty"):
            orchestrator.change_preset(preset)
            orchestrator.enable()
            assert len(artifact_files(config.artifact_dir)) == 1
        orchestrator.disable()
        assert artifact_files(config.artifact_dir) == []


class TestFailures:
    """Every failure ends Disabled with storage released."""

    def test_compilation_error(self, engine, store, strict_registry, mid_profile, config):
        compiler = PipelineCompiler(store, strict_registry, config)
        with PipelineOrchestrator(engine, compiler, store, mid_profile, config) as orch:
            with pytest.raises(CompilationError):
                orch.enable()

            status = orch.status()
            assert status.state == PipelineState.DISABLED
            assert status.live_artifact_id is None
            assert "No frame-synthesis backend" in status.last_error
            assert engine.attach_calls == []
            assert artifact_files(config.artifact_dir) == []

    def test_engine_rejects_attach(self, orchestrator, engine, config):
        engine.attach_result = EngineResult.failure("filter graph error")
        with pytest.raises(AttachError) as exc_info:
            orchestrator.enable()

        assert "filter graph error" in exc_info.value.message
        assert orchestrator.state == PipelineState.DISABLED
        assert engine.detach_calls == 1
        assert artifact_files(config.artifact_dir) == []

    def test_engine_raises_on_attach(self, orchestrator, engine, config):
        engine.attach_result = RuntimeError("engine crashed")
        with pytest.raises(AttachError):
            orchestrator.enable()
        assert orchestrator.state == PipelineState.DISABLED
        assert artifact_files(config.artifact_dir) == []

    def test_detach_failure_still_disables(self, orchestrator, engine, config):
        orchestrator.enable()
        engine.detach_result = EngineResult.failure("busy")

        with pytest.raises(AttachError):
            orchestrator.disable()
        status = orchestrator.status()
        assert status.state == PipelineState.DISABLED
        assert "busy" in status.last_error
        assert artifact_files(config.artifact_dir) == []

    def test_recovers_after_failure(self, orchestrator, engine):
        engine.attach_result = EngineResult.failure("no")
        with pytest.raises(AttachError):
            orchestrator.enable()
        engine.attach_result = EngineResult.success()
        orchestrator.enable()
        assert orchestrator.status().last_error is None


class TestChangePreset:
    """Tests for reconfiguration."""

    def test_while_disabled_only_records(self, orchestrator, engine, config):
        assert orchestrator.change_preset("fast") is None
        assert orchestrator.preset == QualityPreset.FAST
        assert orchestrator.state == PipelineState.DISABLED
        assert engine.attach_calls == []
        assert artifact_files(config.artifact_dir) == []

    def test_while_enabled_recompiles(self, orchestrator, engine, config):
        old = orchestrator.enable()
        new = orchestrator.change_preset(QualityPreset.BEAUTY)

        assert new.artifact_id != old.artifact_id
        assert not old.path.exists()
        assert artifact_files(config.artifact_dir) == [new.path]
        assert engine.attached is new
        assert orchestrator.status().parameters.target_height == 1080

    def test_custom_values(self, orchestrator):
        orchestrator.enable()
        artifact = orchestrator.change_preset("custom", {
            "target_height": 600, "scene_threshold": 0.25, "model_id": "rife-v4.6-lite",
        })
        assert artifact.parameters.target_height == 600
        assert orchestrator.preset == QualityPreset.CUSTOM

    def test_invalid_preset_changes_nothing(self, orchestrator, engine):
        live = orchestrator.enable()
        with pytest.raises(InvalidParametersError):
            orchestrator.change_preset("ultra")
        with pytest.raises(InvalidParametersError):
            orchestrator.change_preset("custom", {"target_height": -1})

        assert orchestrator.state == PipelineState.ENABLED
        assert orchestrator.preset == QualityPreset.BALANCED
        assert orchestrator.live_artifact is live
        assert len(engine.attach_calls) == 1

    def test_failed_reenable_stays_disabled(self, orchestrator, engine, config):
        old = orchestrator.enable()
        engine.attach_result = EngineResult.failure("out of memory")

        with pytest.raises(AttachError):
            orchestrator.change_preset("beauty")

        assert orchestrator.state == PipelineState.DISABLED
        assert engine.attached is None
        assert len(engine.attach_calls) == 2
        assert engine.attach_calls[0] is old
        assert artifact_files(config.artifact_dir) == []


class TestConcurrency:
    """Tests for transition serialization."""

    def test_disable_during_enable_rejected(self, orchestrator, engine):
        errors = []

        def reenter(artifact):
            try:
                orchestrator.disable()
            except InvalidTransitionError as e:
                errors.append(e)

        engine.on_attach = reenter
        orchestrator.enable()

        assert len(errors) == 1
        assert errors[0].details["state"] == "enabling"
        assert orchestrator.state == PipelineState.ENABLED

    def test_status_readable_during_transition(self, orchestrator, engine):
        seen = []
        engine.on_attach = lambda artifact: seen.append(orchestrator.status().state)
        orchestrator.enable()
        assert seen == [PipelineState.ENABLING]

    def test_concurrent_enables_leave_one_artifact(self, orchestrator, engine, config):
        barrier = threading.Barrier(4)
        outcomes = []

        def worker():
            barrier.wait()
            try:
                outcomes.append(orchestrator.enable().artifact_id)
            except InvalidTransitionError:
                outcomes.append(None)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        ids = {o for o in outcomes if o is not None}
        assert len(ids) == 1
        assert len(engine.attach_calls) == 1
        assert len(artifact_files(config.artifact_dir)) == 1

    def test_closed_rejects_operations(self, engine, compiler, store, mid_profile, config):
        orch = PipelineOrchestrator(engine, compiler, store, mid_profile, config)
        artifact = orch.enable()
        orch.close()

        assert not artifact.path.exists()
        with pytest.raises(InvalidTransitionError):
            orch.enable()
        orch.close()


class TestEngineEvents:
    """Tests for engine notifications."""

    def test_auto_enable_on_load(self, orchestrator, engine):
        engine.emit(EngineEvent.SOURCE_LOAD_STARTED)
        engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED)
        assert orchestrator.state == PipelineState.ENABLED
        assert len(engine.attach_calls) == 1

    def test_auto_enable_disabled(self, engine, compiler, store, mid_profile, config):
        config.auto_enable_on_load = False
        with PipelineOrchestrator(engine, compiler, store, mid_profile, config) as orch:
            engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED)
            assert orch.state == PipelineState.DISABLED

    def test_second_load_keeps_pipeline(self, orchestrator, engine):
        orchestrator.enable()
        engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED, source="next.mkv")
        assert len(engine.attach_calls) == 1

    def test_event_during_transition_is_deferred(self, orchestrator, engine):
        engine.on_attach = lambda artifact: engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED)
        orchestrator.enable()
        assert orchestrator.state == PipelineState.ENABLED
        assert len(engine.attach_calls) == 1

    def test_load_failure_recorded(self, orchestrator, engine):
        engine.emit(EngineEvent.SOURCE_LOAD_FAILED, source="bad.mkv", message="Cannot open bad.mkv")
        status = orchestrator.status()
        assert status.last_error == "Cannot open bad.mkv"
        assert status.state == PipelineState.DISABLED

    def test_auto_enable_failure_is_contained(self, orchestrator, engine, config):
        engine.attach_result = EngineResult.failure("nope")
        engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED)
        assert orchestrator.state == PipelineState.DISABLED
        assert "nope" in orchestrator.status().last_error
        assert artifact_files(config.artifact_dir) == []

    def test_filter_failure_disables(self, orchestrator, engine, config):
        artifact = orchestrator.enable()
        engine.emit(
            EngineEvent.FILTER_FAILED,
            message="Interpolation stopped: model crashed",
            artifact_id=artifact.artifact_id,
        )
        status = orchestrator.status()
        assert status.state == PipelineState.DISABLED
        assert status.live_artifact_id is None
        assert status.last_error == "Interpolation stopped: model crashed"
        assert artifact_files(config.artifact_dir) == []

    def test_filter_failure_of_replaced_artifact_ignored(self, orchestrator, engine, config):
        artifact = orchestrator.enable()
        engine.emit(EngineEvent.FILTER_FAILED, message="old", artifact_id="0" * 32)
        assert orchestrator.state == PipelineState.ENABLED
        assert orchestrator.status().live_artifact_id == artifact.artifact_id
        assert len(artifact_files(config.artifact_dir)) == 1

    def test_filter_failure_while_disabled_ignored(self, orchestrator, engine):
        engine.emit(EngineEvent.FILTER_FAILED, message="late")
        assert orchestrator.state == PipelineState.DISABLED
        assert orchestrator.status().last_error is None

    def test_unsubscribed_on_close(self, engine, compiler, store, mid_profile, config):
        orch = PipelineOrchestrator(engine, compiler, store, mid_profile, config)
        orch.close()
        engine.emit(EngineEvent.SOURCE_LOAD_COMPLETED)
        assert engine.attach_calls == []


class TestMetrics:
    """Tests for the status surface."""

    def test_estimated_fps(self, orchestrator):
        assert orchestrator.metrics().estimated_fps == DISABLED_ESTIMATED_FPS
        orchestrator.enable()
        assert orchestrator.metrics().estimated_fps == ENABLED_ESTIMATED_FPS

    def test_current_fps_reported(self, orchestrator, engine):
        engine.dropped = 3
        metrics = orchestrator.metrics()
        assert metrics.current_fps == pytest.approx(59.8)
        assert metrics.dropped_frames == 3

    @pytest.mark.parametrize("value", [math.nan, math.inf, 0.0, -5.0, None, "fast"])
    def test_invalid_fps_is_none(self, orchestrator, engine, value):
        engine.fps = value
        metrics = orchestrator.metrics()
        assert metrics.current_fps is None
        assert metrics.estimated_fps == DISABLED_ESTIMATED_FPS

    def test_engine_error_is_none(self, orchestrator, engine):
        engine.fps = RuntimeError("not playing")
        assert orchestrator.metrics().current_fps is None

    def test_status_output_fps_when_enabled(self, orchestrator):
        assert orchestrator.status().output_fps is None
        orchestrator.enable()
        assert orchestrator.status().output_fps == pytest.approx(59.8)

    def test_disable_logs_playback_metrics(self, orchestrator, engine, caplog):
        engine.dropped = 4
        artifact = orchestrator.enable()
        with caplog.at_level(logging.INFO, logger="cadenceflow"):
            orchestrator.disable()
        metrics = {
            record.extra_fields["metric_name"]: record.extra_fields
            for record in caplog.records
            if getattr(record, "extra_fields", {}).get("metric_name")
        }
        assert metrics["output_fps"]["metric_value"] == pytest.approx(59.8)
        assert metrics["dropped_frames"]["metric_value"] == 4
        assert metrics["dropped_frames"]["artifact_id"] == artifact.artifact_id


class TestSweep:
    """Tests for stale artifact cleanup."""

    def test_sweep_skips_live(self, orchestrator, compiler, config):
        live = orchestrator.enable()
        stale = compiler.compile(resolve("fast"))
        make_stale(live.path)
        make_stale(stale.path)

        removed = orchestrator.sweep()
        assert removed == [str(stale.path)]
        assert live.path.exists()

    def test_sweep_on_start(self, engine, compiler, store, mid_profile, config):
        stale = compiler.compile(resolve("fast"))
        make_stale(stale.path)
        with PipelineOrchestrator(engine, compiler, store, mid_profile, config):
            assert not stale.path.exists()

    def test_background_sweeper(self, orchestrator, compiler):
        stale = compiler.compile(resolve("fast"))
        make_stale(stale.path)
        orchestrator.start_sweeper(interval=0.05)
        deadline = time.time() + 5
        while stale.path.exists() and time.time() < deadline:
            time.sleep(0.02)
        orchestrator.stop_sweeper()
        assert not stale.path.exists()
