"""RIFE frame synthesis through a TorchScript model.

Models are TorchScript exports placed in the model directory as
``<model_id>.pt`` (e.g. ``rife-v4.6.pt``, ``rife-v4.6-lite.pt``). The model is
treated as a black box with the call contract::

    model(img0, img1, timestep, scale) -> Tensor

where ``img0``/``img1`` are N x 3 x H x W float tensors in [0, 1] with H and W
padded to a multiple of ``32 / scale``, ``timestep`` is an N x 1 x 1 x 1
tensor and the result has the padded input shape.

PyTorch is an optional dependency (``pip install cadenceflow[rife]``) and is
imported lazily.
"""

import logging
import math
from pathlib import Path
from typing import Any, Optional

import numpy as np

from ..core.types import FloatImageArray
from ..exceptions import SynthesisError
from .base import FrameSynthesizer, SynthesisOptions

logger = logging.getLogger(__name__)

MODEL_SUFFIX = ".pt"
_PAD_BASE = 32

_TORCH_AVAILABLE: Optional[bool] = None


def is_torch_available() -> bool:
    """Check if PyTorch can be imported."""
    global _TORCH_AVAILABLE

    if _TORCH_AVAILABLE is not None:
        return _TORCH_AVAILABLE

    try:
        import torch  # noqa: F401
        _TORCH_AVAILABLE = True
    except ImportError as e:
        logger.info(f"PyTorch not available, RIFE backend disabled: {e}")
        _TORCH_AVAILABLE = False

    return _TORCH_AVAILABLE


def model_path_for(model_dir: Path, model_id: str) -> Path:
    """Expected location of a model file."""
    return Path(model_dir) / f"{model_id}{MODEL_SUFFIX}"


class RIFESynthesizer(FrameSynthesizer):
    """Learned frame synthesis with a RIFE TorchScript model."""

    name = "rife"

    def __init__(self, options: SynthesisOptions):
        super().__init__(options)
        if options.model_path is None:
            raise SynthesisError("RIFE backend requires a model file", backend=self.name, model_id=options.model_id)
        self._model: Any = None
        self._device: Any = None
        self._half = False

    @classmethod
    def is_available(cls) -> bool:
        return is_torch_available()

    @property
    def effective_scale(self) -> float:
        """Internal scale after applying UHD mode."""
        scale = self.options.scale
        if self.options.uhd_mode:
            scale *= 0.5
        return scale

    def load(self) -> None:
        """Load the TorchScript model onto the configured device."""
        if self._model is not None:
            return
        if not is_torch_available():
            raise SynthesisError(
                "PyTorch not available. Install with: pip install cadenceflow[rife]",
                backend=self.name,
                model_id=self.options.model_id,
            )

        import torch

        if torch.cuda.is_available():
            self._device = torch.device(f"cuda:{self.options.device_index}")
            self._half = self.options.fp16
        else:
            logger.warning("CUDA not available, RIFE will run on CPU")
            self._device = torch.device("cpu")
            self._half = False

        try:
            model = torch.jit.load(str(self.options.model_path), map_location=self._device)
        except (RuntimeError, OSError, ValueError) as e:
            raise SynthesisError(
                f"Failed to load model {self.options.model_path}: {e}",
                backend=self.name,
                model_id=self.options.model_id,
                cause=e,
            ) from e

        model.eval()
        self._model = model.half() if self._half else model
        logger.info(
            f"Loaded {self.options.model_id} on {self._device} "
            f"(fp16={self._half}, scale={self.effective_scale})"
        )

    def _to_tensor(self, frame: FloatImageArray, padded_h: int, padded_w: int) -> Any:
        import torch

        height, width = frame.shape[:2]
        tensor = torch.from_numpy(np.ascontiguousarray(frame.transpose(2, 0, 1)))
        tensor = tensor.unsqueeze(0).to(self._device)
        tensor = torch.nn.functional.pad(tensor, (0, padded_w - width, 0, padded_h - height))
        return tensor.half() if self._half else tensor

    def synthesize(
        self,
        frame0: FloatImageArray,
        frame1: FloatImageArray,
        timestep: float,
    ) -> FloatImageArray:
        self.load()
        import torch

        height, width = frame0.shape[:2]
        scale = self.effective_scale
        multiple = int(_PAD_BASE / scale)
        padded_h = math.ceil(height / multiple) * multiple
        padded_w = math.ceil(width / multiple) * multiple

        try:
            with torch.inference_mode():
                img0 = self._to_tensor(frame0, padded_h, padded_w)
                img1 = self._to_tensor(frame1, padded_h, padded_w)
                step = torch.full((1, 1, 1, 1), float(timestep), device=self._device, dtype=img0.dtype)
                output = self._model(img0, img1, step, scale)
                output = output[0, :, :height, :width].float().clamp(0.0, 1.0)
                return output.permute(1, 2, 0).cpu().numpy()
        except RuntimeError as e:
            raise SynthesisError(
                f"RIFE inference failed: {e}",
                backend=self.name,
                model_id=self.options.model_id,
                cause=e,
            ) from e

    def close(self) -> None:
        if self._model is None:
            return
        self._model = None
        import torch

        if torch.cuda.is_available():
            torch.cuda.empty_cache()
