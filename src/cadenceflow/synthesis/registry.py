"""Discovery of frame-synthesis backends.

Discovery uses explicit configuration (the model directory) instead of
ambient environment state. The model backend is preferred; the blend
backend is offered only as a configured fallback.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Type

from ..exceptions import CompilationError, SynthesisError
from .base import FrameSynthesizer, SynthesisOptions
from .blend import BlendSynthesizer
from .rife import RIFESynthesizer, model_path_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendSpec:
    """Backend chosen at compile time.

    Attributes:
        name: Registered backend name
        model_path: Resolved model file, None for model-free backends
        degraded: Whether this is the fallback rather than a model backend
    """
    name: str
    model_path: Optional[Path] = None
    degraded: bool = False


class SynthesisRegistry:
    """Registry of synthesis backends with model-directory discovery.

    Example:
        >>> registry = SynthesisRegistry(Path("~/.cadenceflow/models"))
        >>> backend = registry.discover("rife-v4.6")
        >>> synth = registry.create(backend.name, SynthesisOptions("rife-v4.6", backend.model_path))
    """

    MODEL_BACKEND = "rife"
    FALLBACK_BACKEND = "blend"

    def __init__(self, model_dir: Path, allow_blend_fallback: bool = True):
        self.model_dir = Path(model_dir).expanduser()
        self.allow_blend_fallback = allow_blend_fallback
        self._backends: Dict[str, Type[FrameSynthesizer]] = {
            RIFESynthesizer.name: RIFESynthesizer,
            BlendSynthesizer.name: BlendSynthesizer,
        }

    def register(self, name: str, backend: Type[FrameSynthesizer]) -> None:
        """Register or replace a backend class."""
        self._backends[name] = backend
        logger.debug(f"Registered synthesis backend: {name}")

    def names(self) -> List[str]:
        return sorted(self._backends)

    def discover(self, model_id: str) -> BackendSpec:
        """Choose the backend for a model.

        Raises:
            CompilationError: If neither the model backend nor an allowed
                fallback is available
        """
        model_backend = self._backends.get(self.MODEL_BACKEND)
        model_path = model_path_for(self.model_dir, model_id)

        if model_backend is not None and model_backend.is_available():
            if model_path.is_file():
                return BackendSpec(name=self.MODEL_BACKEND, model_path=model_path)
            reason = f"model file {model_path} not found"
        else:
            reason = "model backend not installed"

        if self.allow_blend_fallback and self.FALLBACK_BACKEND in self._backends:
            logger.warning(f"No model backend for {model_id} ({reason}), using temporal blend fallback")
            return BackendSpec(name=self.FALLBACK_BACKEND, degraded=True)

        raise CompilationError(
            f"No frame-synthesis backend available for {model_id}: {reason}",
            stage="synthesize",
            backend=self.MODEL_BACKEND,
        )

    def create(self, name: str, options: SynthesisOptions) -> FrameSynthesizer:
        """Instantiate a registered backend.

        Raises:
            SynthesisError: For unknown or unavailable backends
        """
        backend = self._backends.get(name)
        if backend is None:
            raise SynthesisError(f"Unknown synthesis backend: {name}", backend=name, model_id=options.model_id)
        if not backend.is_available():
            raise SynthesisError(f"Synthesis backend not available: {name}", backend=name, model_id=options.model_id)
        return backend(options)


def default_registry(model_dir: Optional[Path] = None, allow_blend_fallback: bool = True) -> SynthesisRegistry:
    """Registry over the default model directory."""
    if model_dir is None:
        model_dir = Path.home() / ".cadenceflow" / "models"
    return SynthesisRegistry(model_dir, allow_blend_fallback)
