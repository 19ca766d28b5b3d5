"""Compiled pipeline artifact.

An artifact is a JSON stage graph with every value resolved. It can be
loaded and executed by ``PipelineRuntime.from_file`` without any other
context.

Document layout::

    {
      "format": "cadenceflow-pipeline",
      "format_version": 1,
      "artifact_id": "3f2a...",
      "created_at": 1767600000.0,
      "hardware_index": 0,
      "parameters": {...},
      "stages": [{"name": "cadence", ...}, ..., {"name": "lookahead", ...}]
    }
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.types import PipelineParameters
from ..exceptions import ArtifactStorageError, InvalidParametersError

logger = logging.getLogger(__name__)

FORMAT_NAME = "cadenceflow-pipeline"
FORMAT_VERSION = 1
ARTIFACT_PREFIX = "cadenceflow_"
ARTIFACT_SUFFIX = ".json"

STAGE_ORDER = (
    "cadence",
    "to_working",
    "downscale",
    "scene_detect",
    "synthesize",
    "upscale",
    "to_output",
    "lookahead",
)
REQUIRED_STAGE_KEYS: Dict[str, tuple] = {
    "cadence": ("settings",),
    "to_working": ("input_format", "chroma_kernel", "matrix"),
    "downscale": ("max_height", "kernel"),
    "scene_detect": ("threshold", "method"),
    "synthesize": ("backend", "model_id", "device_index", "fp16", "uhd_mode",
                   "multiplier_source", "realtime_height_ceiling", "reduced_scale"),
    "upscale": ("kernel",),
    "to_output": ("output_format", "chroma_kernel", "matrix"),
    "lookahead": ("capacity",),
}


@dataclass
class ValidationResult:
    """Result of artifact validation.

    Attributes:
        valid: Whether the artifact is valid.
        errors: List of validation error messages.
        warnings: List of validation warning messages.
    """

    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add a validation error."""
        self.errors.append(message)
        self.valid = False

    def add_warning(self, message: str) -> None:
        """Add a validation warning."""
        self.warnings.append(message)


@dataclass
class PipelineArtifact:
    """A compiled pipeline.

    Attributes:
        artifact_id: Unique identifier (uuid hex)
        parameters: Snapshot of the parameters it was compiled from
        stages: Ordered stage descriptions
        hardware_index: Accelerator index baked into the synthesis stage
        created_at: Unix timestamp of compilation
        path: Backing file, once written
    """

    artifact_id: str
    parameters: PipelineParameters
    stages: List[Dict[str, Any]]
    hardware_index: int = 0
    created_at: float = field(default_factory=time.time)
    path: Optional[Path] = None

    @property
    def file_name(self) -> str:
        return f"{ARTIFACT_PREFIX}{self.artifact_id}{ARTIFACT_SUFFIX}"

    @property
    def backend(self) -> Optional[str]:
        synth = self.stage("synthesize")
        return synth.get("backend") if synth else None

    def stage(self, name: str) -> Optional[Dict[str, Any]]:
        """Stage description by name."""
        for stage in self.stages:
            if stage.get("name") == name:
                return stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON document."""
        return {
            "format": FORMAT_NAME,
            "format_version": FORMAT_VERSION,
            "artifact_id": self.artifact_id,
            "created_at": self.created_at,
            "hardware_index": self.hardware_index,
            "parameters": self.parameters.to_dict(),
            "stages": self.stages,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "PipelineArtifact":
        """Create an artifact from a parsed document."""
        return cls(
            artifact_id=data["artifact_id"],
            parameters=PipelineParameters.from_dict(data["parameters"]),
            stages=list(data["stages"]),
            hardware_index=int(data.get("hardware_index", 0)),
            created_at=float(data.get("created_at", 0.0)),
            path=path,
        )


def validate_document(data: Any) -> ValidationResult:
    """Structural checks on a parsed artifact document."""
    result = ValidationResult()

    if not isinstance(data, dict):
        result.add_error("Artifact is not a JSON object")
        return result

    if data.get("format") != FORMAT_NAME:
        result.add_error(f"Unknown artifact format: {data.get('format')!r}")
    if data.get("format_version") != FORMAT_VERSION:
        result.add_error(
            f"Unsupported format version {data.get('format_version')!r} (expected {FORMAT_VERSION})"
        )
    if not data.get("artifact_id"):
        result.add_error("Artifact has no artifact_id")

    try:
        PipelineParameters.from_dict(data.get("parameters") or {})
    except InvalidParametersError as e:
        result.add_error(f"Invalid parameters: {e}")

    stages = data.get("stages")
    if not isinstance(stages, list) or not stages:
        result.add_error("Artifact has no stages")
        return result

    names = [s.get("name") if isinstance(s, dict) else None for s in stages]
    if tuple(names) != STAGE_ORDER:
        result.add_error(f"Stage order {names} does not match {list(STAGE_ORDER)}")

    for stage in stages:
        if not isinstance(stage, dict):
            continue
        required = REQUIRED_STAGE_KEYS.get(stage.get("name"), ())
        missing = [key for key in required if key not in stage]
        if missing:
            result.add_error(f"Stage '{stage.get('name')}' is missing {missing}")

    synth = next((s for s in stages if isinstance(s, dict) and s.get("name") == "synthesize"), None)
    if synth is not None:
        if synth.get("backend") is None:
            result.add_error("Stage 'synthesize' has no backend")
        if synth.get("backend") == "rife" and not synth.get("model_path"):
            result.add_error("Stage 'synthesize' uses a model backend without a model_path")
        if synth.get("degraded"):
            result.add_warning("Synthesis uses the temporal blend fallback")

    return result


def validate(artifact: Union[PipelineArtifact, Dict[str, Any]]) -> ValidationResult:
    """Validate an artifact or a parsed artifact document."""
    data = artifact.to_dict() if isinstance(artifact, PipelineArtifact) else artifact
    return validate_document(data)


def load_artifact(path: Union[str, Path]) -> PipelineArtifact:
    """Read and validate an artifact file.

    Raises:
        ArtifactStorageError: If the file cannot be read or is not a valid
            artifact
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactStorageError(f"Failed to read artifact {path}: {e}", path=str(path), cause=e) from e

    result = validate_document(data)
    if not result.valid:
        raise ArtifactStorageError(
            f"Invalid artifact {path}: {'; '.join(result.errors)}",
            path=str(path),
        )
    return PipelineArtifact.from_dict(data, path=path)
