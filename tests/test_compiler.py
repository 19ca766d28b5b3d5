"""Tests for backend discovery, pipeline compilation and artifact validation."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cadenceflow.config import Config
from cadenceflow.core.types import PipelineParameters, ScalingAlgorithm
from cadenceflow.exceptions import ArtifactStorageError, CompilationError, SynthesisError
from cadenceflow.persistence.artifact_store import ArtifactStore
from cadenceflow.pipeline.artifact import (
    FORMAT_NAME,
    STAGE_ORDER,
    PipelineArtifact,
    load_artifact,
    validate,
)
from cadenceflow.pipeline.compiler import PipelineCompiler
from cadenceflow.presets import resolve
from cadenceflow.synthesis.base import SynthesisOptions
from cadenceflow.synthesis.blend import BlendSynthesizer
from cadenceflow.synthesis.registry import SynthesisRegistry
from cadenceflow.synthesis.rife import RIFESynthesizer

from helpers import artifact_files


@pytest.fixture
def balanced():
    return resolve("balanced")


class TestSynthesisRegistry:
    """Tests for backend discovery."""

    def test_blend_fallback_when_no_model(self, registry):
        backend = registry.discover("rife-v4.6")
        assert backend.name == "blend"
        assert backend.degraded is True
        assert backend.model_path is None

    def test_no_fallback_raises(self, strict_registry):
        with pytest.raises(CompilationError) as exc_info:
            strict_registry.discover("rife-v4.6")
        assert exc_info.value.details["stage"] == "synthesize"

    def test_model_backend_preferred(self, config):
        config.model_dir.mkdir(parents=True)
        model = config.model_dir / "rife-v4.6.pt"
        model.write_bytes(b"torchscript")
        registry = SynthesisRegistry(config.model_dir, allow_blend_fallback=True)

        with patch.object(RIFESynthesizer, "is_available", return_value=True):
            backend = registry.discover("rife-v4.6")
        assert backend.name == "rife"
        assert backend.model_path == model
        assert backend.degraded is False

    def test_create_blend(self, registry):
        synth = registry.create("blend", SynthesisOptions(model_id="rife-v4.6"))
        assert isinstance(synth, BlendSynthesizer)

    def test_create_unknown(self, registry):
        with pytest.raises(SynthesisError):
            registry.create("dain", SynthesisOptions(model_id="dain"))

    def test_create_unavailable(self, registry):
        with patch.object(RIFESynthesizer, "is_available", return_value=False):
            with pytest.raises(SynthesisError):
                registry.create("rife", SynthesisOptions(model_id="rife-v4.6", model_path=Path("x.pt")))

    def test_rife_requires_model_path(self):
        with pytest.raises(SynthesisError):
            RIFESynthesizer(SynthesisOptions(model_id="rife-v4.6"))

    def test_rife_uhd_halves_scale(self):
        synth = RIFESynthesizer(SynthesisOptions(model_id="m", model_path=Path("m.pt"), scale=0.5, uhd_mode=True))
        assert synth.effective_scale == 0.25

    def test_register_custom_backend(self, registry):
        registry.register("copy", BlendSynthesizer)
        assert "copy" in registry.names()


class TestPipelineCompiler:
    """Tests for compile()."""

    def test_compile_writes_artifact(self, compiler, balanced, config):
        artifact = compiler.compile(balanced, hardware_index=0)

        assert artifact.path is not None
        assert artifact.path.exists()
        assert artifact.path.parent == config.artifact_dir
        assert artifact.path.name == f"cadenceflow_{artifact.artifact_id}.json"
        assert artifact.parameters == balanced

    def test_stage_order(self, compiler, balanced):
        artifact = compiler.compile(balanced)
        assert tuple(s["name"] for s in artifact.stages) == STAGE_ORDER

    def test_parameters_embedded_as_literals(self, compiler, balanced, config):
        artifact = compiler.compile(balanced, hardware_index=1)

        downscale = artifact.stage("downscale")
        assert downscale["max_height"] == 720
        assert downscale["kernel"] == "linear"
        assert downscale["conditional"] is True

        assert artifact.stage("scene_detect")["threshold"] == pytest.approx(0.15)
        assert artifact.stage("to_working")["chroma_kernel"] == "cubic"
        assert artifact.stage("upscale")["kernel"] == "cubic"
        assert artifact.stage("lookahead")["capacity"] == config.lookahead_frames

        synth = artifact.stage("synthesize")
        assert synth["model_id"] == "rife-v4.6"
        assert synth["device_index"] == 1
        assert synth["uhd_mode"] is False
        assert synth["backend"] == "blend"
        assert synth["degraded"] is True

        cadence = artifact.stage("cadence")["settings"]
        assert cadence["sample_frames"] == config.cadence_sample_frames
        assert cadence["duplicate_threshold"] == config.duplicate_threshold

    def test_downscale_records_realtime_ceiling(self, store, registry, config):
        beauty_config = Config.from_dict({**config.to_dict(), "realtime_height_ceiling": 900})
        artifact = PipelineCompiler(store, registry, beauty_config).compile(resolve("beauty"))
        downscale = artifact.stage("downscale")
        assert downscale["max_height"] == 1080
        assert downscale["realtime_height_ceiling"] == 900
        assert artifact.stage("synthesize")["realtime_height_ceiling"] == 900

    def test_file_is_self_contained(self, compiler):
        artifact = compiler.compile(resolve("beauty"))
        with open(artifact.path, encoding="utf-8") as f:
            document = json.load(f)
        assert document["format"] == FORMAT_NAME
        assert document["parameters"]["uhd_mode"] is True

        loaded = load_artifact(artifact.path)
        assert loaded.artifact_id == artifact.artifact_id
        assert loaded.stages == artifact.stages

    def test_unique_ids(self, compiler, balanced):
        first = compiler.compile(balanced)
        second = compiler.compile(balanced)
        assert first.artifact_id != second.artifact_id
        assert first.path != second.path

    def test_no_backend_fails_without_file(self, store, strict_registry, config, balanced):
        compiler = PipelineCompiler(store, strict_registry, config)
        with pytest.raises(CompilationError):
            compiler.compile(balanced)
        assert artifact_files(config.artifact_dir) == []

    def test_write_failure(self, tmp_path, registry, config, balanced):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        compiler = PipelineCompiler(ArtifactStore(blocker), registry, config)

        with pytest.raises(CompilationError) as exc_info:
            compiler.compile(balanced)
        assert exc_info.value.details["stage"] == "write"
        assert isinstance(exc_info.value.cause, ArtifactStorageError)

    def test_rejects_non_parameters(self, compiler):
        with pytest.raises(CompilationError):
            compiler.compile({"target_height": 720})

    def test_rejects_negative_index(self, compiler, balanced):
        with pytest.raises(CompilationError):
            compiler.compile(balanced, hardware_index=-1)

    def test_validate_detects_missing_file(self, compiler, balanced):
        artifact = compiler.compile(balanced)
        assert compiler.validate(artifact).valid
        artifact.path.unlink()
        result = compiler.validate(artifact)
        assert not result.valid
        assert "does not exist" in result.errors[0]


class TestArtifactValidation:
    """Tests for structural validation."""

    @pytest.fixture
    def document(self, compiler):
        return compiler.compile(PipelineParameters(480, 0.2, "rife-v4.6-lite", False, ScalingAlgorithm.MITCHELL)).to_dict()

    def test_valid_with_degraded_warning(self, document):
        result = validate(document)
        assert result.valid
        assert result.warnings == ["Synthesis uses the temporal blend fallback"]

    def test_wrong_format(self, document):
        document["format"] = "vapoursynth"
        assert not validate(document).valid

    def test_wrong_version(self, document):
        document["format_version"] = 2
        assert not validate(document).valid

    def test_reordered_stages(self, document):
        stages = document["stages"]
        stages[2], stages[3] = stages[3], stages[2]
        result = validate(document)
        assert not result.valid
        assert "Stage order" in result.errors[0]

    def test_missing_stage_key(self, document):
        del document["stages"][4]["model_id"]
        assert not validate(document).valid

    def test_model_backend_needs_model_path(self, document):
        synth = document["stages"][4]
        synth["backend"] = "rife"
        synth["model_path"] = None
        assert not validate(document).valid

    def test_bad_parameters(self, document):
        document["parameters"]["scene_threshold"] = 3.0
        assert not validate(document).valid

    def test_not_an_object(self):
        assert not validate([]).valid

    def test_artifact_instance(self, compiler):
        artifact = compiler.compile(resolve("fast"))
        assert isinstance(artifact, PipelineArtifact)
        assert validate(artifact).valid
        assert artifact.backend == "blend"

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "cadenceflow_bad.json"
        path.write_text("{not json")
        with pytest.raises(ArtifactStorageError):
            load_artifact(path)

    def test_load_invalid_document(self, tmp_path, document):
        document["stages"] = []
        path = tmp_path / "cadenceflow_empty.json"
        path.write_text(json.dumps(document))
        with pytest.raises(ArtifactStorageError):
            load_artifact(path)

    def test_load_missing(self, tmp_path):
        with pytest.raises(ArtifactStorageError):
            load_artifact(tmp_path / "cadenceflow_missing.json")
