"""Standardized exception hierarchy for cadenceflow.

Every exception carries a human-readable message suitable for showing to an
end user, an optional dictionary of structured details, and the original
exception (if any) chained as ``__cause__``.

Exception Hierarchy:
    CadenceflowError (base)
    +-- DetectionError
    +-- InvalidParametersError
    +-- CompilationError
    +-- AttachError
    +-- InvalidTransitionError
    +-- ArtifactStorageError
    +-- SynthesisError
    +-- ConfigurationError

    CadenceAmbiguous (internal signal, not a CadenceflowError)
"""

from typing import Any, Dict, List, Optional


class CadenceflowError(Exception):
    """Base exception for all cadenceflow errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        cause: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error type, message, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class DetectionError(CadenceflowError):
    """No accelerator enumeration tool could be reached.

    Non-fatal: callers degrade to the lowest hardware tier.
    """

    def __init__(
        self,
        message: str,
        tools: Optional[List[str]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if tools:
            details["tools"] = tools
        super().__init__(message, details=details, cause=cause)


class InvalidParametersError(CadenceflowError):
    """Malformed pipeline parameters (usually custom overrides).

    The operation that received them is rejected and prior state is kept.
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Optional[Any] = None,
        valid_values: Optional[list] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if field_name:
            details["field"] = field_name
        if value is not None:
            details["value"] = value
        if valid_values:
            details["valid_values"] = valid_values
        super().__init__(message, details=details, cause=cause)


class CompilationError(CadenceflowError):
    """Pipeline artifact could not be built.

    Raised when no frame-synthesis backend is discoverable, the model is
    missing, or the artifact could not be written.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        backend: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if stage:
            details["stage"] = stage
        if backend:
            details["backend"] = backend
        super().__init__(message, details=details, cause=cause)


class AttachError(CadenceflowError):
    """The playback engine rejected an attach or detach request."""

    def __init__(
        self,
        message: str,
        artifact_id: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if artifact_id:
            details["artifact_id"] = artifact_id
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details, cause=cause)


class InvalidTransitionError(CadenceflowError):
    """An orchestrator operation is not legal in the current state.

    Example: ``disable()`` while the pipeline is still ``Enabling``. Retry
    once the pending transition has settled.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        details = {}
        if operation:
            details["operation"] = operation
        if state:
            details["state"] = state
        super().__init__(message, details=details)


class ArtifactStorageError(CadenceflowError):
    """Reading, writing or deleting an artifact file failed."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, details=details, cause=cause)


class SynthesisError(CadenceflowError):
    """A frame-synthesis backend failed while producing a frame."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        model_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if backend:
            details["backend"] = backend
        if model_id:
            details["model_id"] = model_id
        super().__init__(message, details=details, cause=cause)


class ConfigurationError(CadenceflowError):
    """Invalid configuration value or configuration file."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = config_value
        super().__init__(message, details=details, cause=cause)


class CadenceAmbiguous(Exception):
    """Cadence could not be determined from the sampled frames.

    Never escapes the cadence detector: it falls back to the default
    decimation pattern instead.
    """

    def __init__(self, message: str, nominal_fps: Optional[float] = None) -> None:
        super().__init__(message)
        self.nominal_fps = nominal_fps


def format_user_message(error: BaseException) -> str:
    """Return a short message suitable for displaying to an end user."""
    if isinstance(error, CadenceflowError):
        return error.message
    return str(error) or error.__class__.__name__
