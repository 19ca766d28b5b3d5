"""Shared pytest fixtures for cadenceflow tests."""
import logging

import pytest

from cadenceflow.config import Config
from cadenceflow.core.types import GPUVendor, HardwareProfile, HardwareTier
from cadenceflow.persistence.artifact_store import ArtifactStore
from cadenceflow.pipeline.compiler import PipelineCompiler
from cadenceflow.synthesis.registry import SynthesisRegistry
from cadenceflow.utils import logging as cf_logging

from helpers import FakeEngine


@pytest.fixture(autouse=True)
def reset_cadenceflow_logging():
    """Undo handlers installed by configure_logging between tests."""
    yield
    root = logging.getLogger(cf_logging.ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
    cf_logging._log_config = None


# ============================================================================
# Configuration / storage
# ============================================================================

@pytest.fixture
def config(tmp_path) -> Config:
    """Small sample window, large lookahead so tests can drain at the end."""
    return Config(
        artifact_dir=tmp_path / "artifacts",
        model_dir=tmp_path / "models",
        cadence_sample_frames=10,
        lookahead_frames=500,
        use_fp16=False,
    )


@pytest.fixture
def registry(config) -> SynthesisRegistry:
    """Registry with no model files: always resolves to the blend fallback."""
    return SynthesisRegistry(config.model_dir, allow_blend_fallback=True)


@pytest.fixture
def strict_registry(config) -> SynthesisRegistry:
    """Registry with no model files and no fallback: compilation fails."""
    return SynthesisRegistry(config.model_dir, allow_blend_fallback=False)


@pytest.fixture
def store(config) -> ArtifactStore:
    return ArtifactStore(config.artifact_dir, config.retention_seconds)


@pytest.fixture
def compiler(store, registry, config) -> PipelineCompiler:
    return PipelineCompiler(store, registry, config)


# ============================================================================
# Hardware / engine
# ============================================================================

@pytest.fixture
def mid_profile() -> HardwareProfile:
    return HardwareProfile(
        vendor=GPUVendor.NVIDIA,
        tier=HardwareTier.MID,
        vram_mb=8188,
        accelerator_api_available=True,
        name="NVIDIA GeForce RTX 4060",
        device_index=0,
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()
