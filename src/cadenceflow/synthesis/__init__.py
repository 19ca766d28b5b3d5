"""Frame-synthesis backends."""

from .base import FrameSynthesizer, SynthesisOptions
from .blend import BlendSynthesizer
from .registry import BackendSpec, SynthesisRegistry, default_registry
from .rife import RIFESynthesizer, is_torch_available

__all__ = [
    "BackendSpec",
    "BlendSynthesizer",
    "FrameSynthesizer",
    "RIFESynthesizer",
    "SynthesisOptions",
    "SynthesisRegistry",
    "default_registry",
    "is_torch_available",
]
