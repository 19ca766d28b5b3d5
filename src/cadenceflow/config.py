"""Configuration module for the cadenceflow interpolation pipeline."""
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .core.types import QualityPreset
from .exceptions import ConfigurationError, InvalidParametersError
from .hardware import DetectorConfig

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("bgr24", "yuv420p")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def default_artifact_dir() -> Path:
    """Temporary directory holding compiled pipeline artifacts."""
    return Path(tempfile.gettempdir()) / "cadenceflow"


@dataclass
class Config:
    """Configuration for the interpolation pipeline.

    Attributes:
        quality_preset: Preset to use (None = default for the hardware tier)
        custom_parameters: Parameter values for the Custom preset
        auto_enable_on_load: Enable interpolation when a source finishes loading
        artifact_dir: Directory for compiled pipeline artifacts
        retention_seconds: Age after which the sweep deletes an artifact
        sweep_interval_seconds: Period of the background sweep
        gpu_index: Accelerator index used by the synthesis backend
        model_dir: Directory holding frame-synthesis model files
        allow_blend_fallback: Use temporal blending when no model backend exists
        use_fp16: Run model inference in half precision
        lookahead_frames: Capacity of the output FIFO buffer
        realtime_height_ceiling: Above this source height synthesis runs at
            reduced internal scale
        cadence_sample_frames: Frames sampled for cadence detection
        duplicate_threshold: Normalised difference below which a frame
            counts as a duplicate
        output_format: Pixel format handed back to the playback engine
        tool_search_paths: Directories searched for probe tools and libraries
        log_level: Log level for the cadenceflow logger
        log_format: ``text`` or ``json``
        log_file: Optional rotating log file
    """

    quality_preset: Optional[QualityPreset] = None
    custom_parameters: Dict[str, Any] = field(default_factory=dict)
    auto_enable_on_load: bool = True

    artifact_dir: Path = field(default_factory=default_artifact_dir)
    retention_seconds: float = 3600.0
    sweep_interval_seconds: float = 600.0

    gpu_index: int = 0
    model_dir: Path = field(default_factory=lambda: Path.home() / ".cadenceflow" / "models")
    allow_blend_fallback: bool = True
    use_fp16: bool = True

    lookahead_frames: int = 100
    realtime_height_ceiling: int = 720
    cadence_sample_frames: int = 60
    duplicate_threshold: float = 0.01
    output_format: str = "bgr24"

    tool_search_paths: List[Path] = field(default_factory=list)

    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        """Normalise types and validate values."""
        if self.quality_preset is not None:
            try:
                self.quality_preset = QualityPreset.parse(self.quality_preset)
            except InvalidParametersError as e:
                raise ConfigurationError(
                    f"Invalid quality_preset: {self.quality_preset!r}",
                    config_key="quality_preset",
                    config_value=self.quality_preset,
                    cause=e,
                ) from e

        if self.custom_parameters is None:
            self.custom_parameters = {}
        if not isinstance(self.custom_parameters, dict):
            raise ConfigurationError(
                "custom_parameters must be a mapping",
                config_key="custom_parameters",
            )

        self.artifact_dir = Path(self.artifact_dir).expanduser()
        self.model_dir = Path(self.model_dir).expanduser()
        self.tool_search_paths = [Path(p).expanduser() for p in self.tool_search_paths]

        if self.retention_seconds <= 0:
            raise ConfigurationError("retention_seconds must be positive", "retention_seconds", self.retention_seconds)
        if self.sweep_interval_seconds <= 0:
            raise ConfigurationError(
                "sweep_interval_seconds must be positive", "sweep_interval_seconds", self.sweep_interval_seconds
            )
        if self.gpu_index < 0:
            raise ConfigurationError("gpu_index must be non-negative", "gpu_index", self.gpu_index)
        if self.lookahead_frames < 1:
            raise ConfigurationError("lookahead_frames must be at least 1", "lookahead_frames", self.lookahead_frames)
        if self.realtime_height_ceiling <= 0:
            raise ConfigurationError(
                "realtime_height_ceiling must be positive", "realtime_height_ceiling", self.realtime_height_ceiling
            )
        if self.cadence_sample_frames < 10:
            raise ConfigurationError(
                "cadence_sample_frames must be at least 10", "cadence_sample_frames", self.cadence_sample_frames
            )
        if not 0.0 <= self.duplicate_threshold <= 1.0:
            raise ConfigurationError(
                "duplicate_threshold must be between 0 and 1", "duplicate_threshold", self.duplicate_threshold
            )
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(
                f"output_format must be one of {OUTPUT_FORMATS}", "output_format", self.output_format
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log_level '{self.log_level}'", "log_level", self.log_level)
        self.log_level = self.log_level.upper()
        if self.log_format not in ("text", "json"):
            raise ConfigurationError("log_format must be 'text' or 'json'", "log_format", self.log_format)

    @property
    def custom_or_none(self) -> Optional[Dict[str, Any]]:
        """Custom parameter overrides, or None when none are configured."""
        return self.custom_parameters or None

    def detector_config(self) -> DetectorConfig:
        """Hardware probe settings derived from this configuration."""
        return DetectorConfig(
            search_paths=list(self.tool_search_paths),
            preferred_index=self.gpu_index,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a YAML/JSON friendly dictionary."""
        return {
            "quality_preset": self.quality_preset.value if self.quality_preset else None,
            "custom_parameters": dict(self.custom_parameters),
            "auto_enable_on_load": self.auto_enable_on_load,
            "artifact_dir": str(self.artifact_dir),
            "retention_seconds": self.retention_seconds,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "gpu_index": self.gpu_index,
            "model_dir": str(self.model_dir),
            "allow_blend_fallback": self.allow_blend_fallback,
            "use_fp16": self.use_fp16,
            "lookahead_frames": self.lookahead_frames,
            "realtime_height_ceiling": self.realtime_height_ceiling,
            "cadence_sample_frames": self.cadence_sample_frames,
            "duplicate_threshold": self.duplicate_threshold,
            "output_format": self.output_format,
            "tool_search_paths": [str(p) for p in self.tool_search_paths],
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": self.log_file,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create configuration from a dictionary, rejecting unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                config_key=unknown[0],
            )
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Config":
        """Load configuration from a YAML file.

        A missing file yields the defaults.
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.debug(f"Config file {path} not found, using defaults")
            return cls()
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def save(self, path: Union[str, Path]) -> Path:
        """Write configuration as YAML."""
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        return path


def default_config_path() -> Path:
    """User-level configuration file location."""
    return Path.home() / ".cadenceflow" / "config.yaml"
