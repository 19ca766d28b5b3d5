"""Pipeline compiler: PipelineParameters -> PipelineArtifact on disk."""

import logging
import uuid
from typing import TYPE_CHECKING, Optional

from ..config import Config
from ..core.types import PipelineParameters
from ..exceptions import ArtifactStorageError, CompilationError
from ..synthesis.registry import SynthesisRegistry
from .artifact import PipelineArtifact, ValidationResult, validate
from .stages import build_stages

if TYPE_CHECKING:
    from ..persistence.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


class PipelineCompiler:
    """Builds and stores executable pipeline artifacts.

    Example:
        >>> compiler = PipelineCompiler(store, registry, Config())
        >>> artifact = compiler.compile(params, hardware_index=0)
        >>> artifact.path.name
        'cadenceflow_3f2a....json'
    """

    def __init__(
        self,
        store: "ArtifactStore",
        registry: SynthesisRegistry,
        settings: Optional[Config] = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or Config()

    def compile(self, params: PipelineParameters, hardware_index: int = 0) -> PipelineArtifact:
        """Compile parameters into an artifact and write it.

        Raises:
            CompilationError: If no synthesis backend is available, the
                parameters are inconsistent, or the artifact cannot be
                written (no partial file is left)
        """
        if not isinstance(params, PipelineParameters):
            raise CompilationError(
                f"Expected PipelineParameters, got {type(params).__name__}",
                stage="parameters",
            )
        if hardware_index < 0:
            raise CompilationError(f"Invalid hardware index {hardware_index}", stage="synthesize")

        backend = self.registry.discover(params.model_id)
        artifact = PipelineArtifact(
            artifact_id=uuid.uuid4().hex,
            parameters=params,
            stages=build_stages(params, backend, hardware_index, self.settings),
            hardware_index=hardware_index,
        )

        result = self.validate(artifact)
        if not result.valid:
            raise CompilationError(
                f"Compiled artifact failed validation: {'; '.join(result.errors)}",
                stage="validate",
                backend=backend.name,
            )
        for warning in result.warnings:
            logger.warning(warning)

        try:
            self.store.write(artifact)
        except ArtifactStorageError as e:
            raise CompilationError(
                f"Failed to write pipeline artifact: {e.message}",
                stage="write",
                backend=backend.name,
                cause=e,
            ) from e

        logger.info(
            f"Compiled artifact {artifact.artifact_id} "
            f"({params.model_id} via {backend.name}, target {params.target_height}p)"
        )
        return artifact

    def validate(self, artifact: PipelineArtifact) -> ValidationResult:
        """Structural validation; also checks the backing file when written."""
        result = validate(artifact)
        if artifact.path is not None and not artifact.path.exists():
            result.add_error(f"Artifact file {artifact.path} does not exist")
        return result
