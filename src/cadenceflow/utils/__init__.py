"""Utility modules for cadenceflow."""

from .logging import (
    CadenceflowLogger,
    LogConfig,
    configure_from_settings,
    configure_logging,
    get_logger,
)

__all__ = [
    "CadenceflowLogger",
    "LogConfig",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
]
