"""Frame-synthesis backend interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.types import FloatImageArray

logger = logging.getLogger(__name__)


@dataclass
class SynthesisOptions:
    """Runtime options handed to a backend when it is created.

    Attributes:
        model_id: Model identifier
        model_path: Model file (None for model-free backends)
        device_index: Accelerator index
        fp16: Half-precision inference
        scale: Internal processing scale (1.0 or reduced for large frames)
        uhd_mode: High-resolution mode of the model
    """
    model_id: str
    model_path: Optional[Path] = None
    device_index: int = 0
    fp16: bool = True
    scale: float = 1.0
    uhd_mode: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


class FrameSynthesizer(ABC):
    """Produces an intermediate frame between two working frames.

    Inputs and output are RGB float32 arrays in [0, 1] of equal shape;
    ``timestep`` in (0, 1) is the position of the new frame between them.
    """

    name: str = "base"

    def __init__(self, options: SynthesisOptions):
        self.options = options

    @classmethod
    def is_available(cls) -> bool:
        """Whether the backend's runtime dependencies are importable."""
        return True

    def load(self) -> None:
        """Acquire backend resources (e.g. the model) before the first frame.

        Raises:
            SynthesisError: If the resources cannot be acquired
        """

    @abstractmethod
    def synthesize(
        self,
        frame0: FloatImageArray,
        frame1: FloatImageArray,
        timestep: float,
    ) -> FloatImageArray:
        """Synthesize the frame at ``timestep`` between ``frame0`` and ``frame1``."""

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "FrameSynthesizer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
