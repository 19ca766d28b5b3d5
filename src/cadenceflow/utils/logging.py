"""Structured logging utilities for cadenceflow.

This module provides configurable logging with support for:
- JSON format for machine parsing
- Human-readable text format for interactive use
- Component-specific log levels
- Log rotation for file output
- Structured keyword fields on log calls

Example usage:
    >>> from cadenceflow.utils.logging import get_logger, LogConfig, configure_logging
    >>>
    >>> configure_logging(LogConfig(log_level="DEBUG", log_format="json"))
    >>> logger = get_logger("orchestrator")
    >>> logger.transition("disabled", "enabling", artifact_id="3f2a")
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Literal, Optional

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

ROOT_LOGGER_NAME = "cadenceflow"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class LogConfig:
    """Configuration for cadenceflow logging.

    Attributes:
        log_level: Default log level for all components
        log_format: Output format ('text' or 'json')
        log_file: Optional file path for log output
        component_levels: Component-specific log levels
        max_file_size_mb: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
        include_timestamp: Whether to include timestamps in text output
    """

    log_level: LogLevel = "INFO"
    log_format: LogFormat = "text"
    log_file: Optional[str] = None
    component_levels: Dict[str, LogLevel] = field(default_factory=dict)
    max_file_size_mb: int = 10
    backup_count: int = 5
    include_timestamp: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.log_level.upper() not in _VALID_LEVELS:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. "
                f"Must be one of: {_VALID_LEVELS}"
            )
        if self.log_format not in ("text", "json"):
            raise ValueError(
                f"Invalid log_format '{self.log_format}'. "
                "Must be 'text' or 'json'"
            )
        for component, level in self.component_levels.items():
            if level.upper() not in _VALID_LEVELS:
                raise ValueError(
                    f"Invalid log level '{level}' for component '{component}'."
                )


class JSONFormatter(logging.Formatter):
    """JSON log formatter.

    Outputs one object per line:
    {"timestamp": "...Z", "level": "INFO", "component": "orchestrator",
     "message": "...", "artifact_id": "3f2a"}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name.split(".")[-1],
            "message": record.getMessage(),
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter.

    2026-01-05 10:30:45 | INFO     | orchestrator | Pipeline enabled [artifact_id=3f2a]
    """

    def __init__(self, include_timestamp: bool = True) -> None:
        if include_timestamp:
            fmt = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"
        else:
            fmt = "%(levelname)-8s | %(name)-12s | %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def formatMessage(self, record: logging.LogRecord) -> str:
        """Append structured fields to the rendered message."""
        text = super().formatMessage(record)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            extra_str = ", ".join(f"{k}={v}" for k, v in extra_fields.items())
            text = f"{text} [{extra_str}]"
        return text


class CadenceflowLogger(logging.LoggerAdapter):
    """Logger adapter accepting structured keyword fields.

    Keyword arguments other than the standard logging ones are collected
    into ``extra_fields`` and rendered by the formatters.
    """

    def __init__(
        self,
        logger: logging.Logger,
        component: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(logger, extra or {})
        self.component = component

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Move structured fields into the record's ``extra``."""
        extra_fields = {}
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra_fields[key] = kwargs.pop(key)

        if self.extra:
            extra_fields.update(self.extra)

        kwargs.setdefault("extra", {})
        kwargs["extra"]["extra_fields"] = extra_fields
        return msg, kwargs

    def transition(self, old_state: str, new_state: str, **kwargs: Any) -> None:
        """Log a state machine transition."""
        self.info(
            f"State {old_state} -> {new_state}",
            from_state=old_state,
            to_state=new_state,
            **kwargs,
        )

    def metric(self, metric_name: str, value: float, unit: Optional[str] = None, **kwargs: Any) -> None:
        """Log a metric value."""
        extra = {"metric_name": metric_name, "metric_value": value}
        if unit:
            extra["metric_unit"] = unit
        extra.update(kwargs)
        self.info(f"Metric: {metric_name}={value}{unit or ''}", **extra)


_log_config: Optional[LogConfig] = None
_configured_loggers: Dict[str, CadenceflowLogger] = {}


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Configure handlers and formatters for the cadenceflow logger tree.

    Call once at application startup.
    """
    global _log_config

    if config is None:
        config = LogConfig()
    _log_config = config

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    level = getattr(logging, config.log_level.upper())
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter(include_timestamp=config.include_timestamp)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    for component, component_level in config.component_levels.items():
        logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}").setLevel(
            getattr(logging, component_level.upper())
        )

    root_logger.propagate = False


def configure_from_settings(log_level: str, log_format: str, log_file: Optional[str] = None) -> None:
    """Configure logging from the flat fields of ``cadenceflow.config.Config``."""
    configure_logging(LogConfig(
        log_level=log_level.upper(),  # type: ignore[arg-type]
        log_format=log_format,  # type: ignore[arg-type]
        log_file=log_file,
    ))


def get_logger(component: str) -> CadenceflowLogger:
    """Get a structured logger for a component.

    Example:
        >>> logger = get_logger("compiler")
        >>> logger.info("Compiled artifact", artifact_id="3f2a", stages=8)
    """
    if component in _configured_loggers:
        return _configured_loggers[component]

    base_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
    if _log_config and component in _log_config.component_levels:
        base_logger.setLevel(getattr(logging, _log_config.component_levels[component].upper()))

    logger = CadenceflowLogger(base_logger, component)
    _configured_loggers[component] = logger
    return logger
