"""Colour-space and resampling helpers for the pipeline stages.

The working format is interleaved RGB float32 in [0, 1]. Engine formats are
``bgr24`` (H x W x 3 uint8) and ``yuv420p`` (I420 laid out as a
(H * 3/2) x W uint8 array, the layout ``cv2.COLOR_*_I420`` uses). YUV is
BT.709 limited range.
"""

import logging
from typing import Dict, Tuple

import cv2
import numpy as np

from ..core.types import FloatImageArray, ImageArray, ScalingAlgorithm, Size

logger = logging.getLogger(__name__)


PIXEL_FORMATS = ("bgr24", "yuv420p")

# Resampling kernel names stored in artifacts -> OpenCV flags
INTERPOLATION_FLAGS: Dict[str, int] = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "area": cv2.INTER_AREA,
    "lanczos4": cv2.INTER_LANCZOS4,
}

_KERNEL_FOR_ALGORITHM: Dict[ScalingAlgorithm, str] = {
    ScalingAlgorithm.BILINEAR: "linear",
    ScalingAlgorithm.SPLINE36: "cubic",
    ScalingAlgorithm.LANCZOS: "lanczos4",
    ScalingAlgorithm.MITCHELL: "cubic",
}

# BT.709 luma coefficients
KR, KB = 0.2126, 0.0722
KG = 1.0 - KR - KB


def kernel_for(algorithm: ScalingAlgorithm, fast: bool = False) -> str:
    """Resampling kernel name for a scaling algorithm.

    The fast variant of every algorithm is bilinear.
    """
    if fast:
        return "linear"
    return _KERNEL_FOR_ALGORITHM[ScalingAlgorithm(algorithm)]


def interpolation_flag(kernel: str) -> int:
    """OpenCV interpolation flag for a kernel name."""
    try:
        return INTERPOLATION_FLAGS[kernel]
    except KeyError:
        raise ValueError(
            f"Unknown resampling kernel '{kernel}'. "
            f"Must be one of: {sorted(INTERPOLATION_FLAGS)}"
        ) from None


def frame_size(frame: ImageArray, pixel_format: str) -> Size:
    """(width, height) of a frame in an engine pixel format."""
    if pixel_format == "yuv420p":
        return frame.shape[1], frame.shape[0] * 2 // 3
    return frame.shape[1], frame.shape[0]


def even_size(width: int, height: int) -> Size:
    """Round dimensions down to even values (minimum 2)."""
    return max(2, width - width % 2), max(2, height - height % 2)


def fit_height(size: Size, max_height: int) -> Size:
    """Scale (width, height) to ``max_height`` keeping aspect, even dims."""
    width, height = size
    scale = max_height / height
    return even_size(int(width * scale), max_height)


def resize(frame: np.ndarray, size: Size, kernel: str) -> np.ndarray:
    """Resize to (width, height) with a named kernel."""
    if (frame.shape[1], frame.shape[0]) == tuple(size):
        return frame
    return cv2.resize(frame, tuple(size), interpolation=interpolation_flag(kernel))


# =============================================================================
# Engine format -> working format
# =============================================================================

def _split_i420(frame: ImageArray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    rows, width = frame.shape[:2]
    height = rows * 2 // 3
    flat = frame.reshape(-1)
    luma_size = width * height
    chroma_size = luma_size // 4
    y = flat[:luma_size].reshape(height, width)
    u = flat[luma_size:luma_size + chroma_size].reshape(height // 2, width // 2)
    v = flat[luma_size + chroma_size:luma_size + 2 * chroma_size].reshape(height // 2, width // 2)
    return y, u, v


def yuv420p_to_rgb(frame: ImageArray, chroma_kernel: str = "cubic") -> FloatImageArray:
    """Convert an I420 frame to RGB float32 using BT.709."""
    y, u, v = _split_i420(frame)
    height, width = y.shape
    flag = interpolation_flag(chroma_kernel)
    u = cv2.resize(u.astype(np.float32), (width, height), interpolation=flag)
    v = cv2.resize(v.astype(np.float32), (width, height), interpolation=flag)

    luma = (y.astype(np.float32) - 16.0) / 219.0
    pb = (u - 128.0) / 224.0
    pr = (v - 128.0) / 224.0

    r = luma + 2.0 * (1.0 - KR) * pr
    b = luma + 2.0 * (1.0 - KB) * pb
    g = (luma - KR * r - KB * b) / KG
    rgb = np.stack([r, g, b], axis=-1)
    return np.clip(rgb, 0.0, 1.0).astype(np.float32)


def check_frame(frame: ImageArray, pixel_format: str) -> None:
    """Raise ValueError if the frame layout does not match ``pixel_format``."""
    if pixel_format == "bgr24":
        if frame.ndim != 3 or frame.shape[2] != 3:
            raise ValueError(f"bgr24 frame must be H x W x 3, got shape {frame.shape}")
    elif pixel_format == "yuv420p":
        if frame.ndim != 2:
            raise ValueError(f"yuv420p frame must be a 2-D I420 plane array, got shape {frame.shape}")
        rows, width = frame.shape
        if rows % 3 or width % 2 or (rows * 2 // 3) % 2:
            raise ValueError(f"yuv420p frame shape {frame.shape} is not an even-sized I420 layout")
    else:
        raise ValueError(f"Unsupported pixel format: {pixel_format}")


def to_working(frame: ImageArray, pixel_format: str, chroma_kernel: str = "cubic") -> FloatImageArray:
    """Convert an engine frame to the RGB float32 working format.

    Raises:
        ValueError: If the frame does not have the layout of ``pixel_format``
    """
    check_frame(frame, pixel_format)
    if pixel_format == "bgr24":
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
    return yuv420p_to_rgb(frame, chroma_kernel)


# =============================================================================
# Working format -> engine format
# =============================================================================

def rgb_to_yuv420p(rgb: FloatImageArray, chroma_kernel: str = "cubic") -> ImageArray:
    """Convert RGB float32 to an I420 frame using BT.709."""
    height, width = rgb.shape[:2]
    width, height = even_size(width, height)
    rgb = rgb[:height, :width]
    r, g, b = rgb[:, :, 0], rgb[:, :, 1], rgb[:, :, 2]

    luma = KR * r + KG * g + KB * b
    pb = (b - luma) / (2.0 * (1.0 - KB))
    pr = (r - luma) / (2.0 * (1.0 - KR))

    flag = interpolation_flag(chroma_kernel)
    half = (width // 2, height // 2)
    pb = cv2.resize(pb.astype(np.float32), half, interpolation=flag)
    pr = cv2.resize(pr.astype(np.float32), half, interpolation=flag)

    y = np.clip(np.rint(16.0 + 219.0 * luma), 0, 255).astype(np.uint8)
    u = np.clip(np.rint(128.0 + 224.0 * pb), 0, 255).astype(np.uint8)
    v = np.clip(np.rint(128.0 + 224.0 * pr), 0, 255).astype(np.uint8)
    return np.concatenate([y.reshape(-1), u.reshape(-1), v.reshape(-1)]).reshape(height * 3 // 2, width)


def from_working(rgb: FloatImageArray, pixel_format: str, chroma_kernel: str = "cubic") -> ImageArray:
    """Convert an RGB float32 working frame to an engine frame."""
    if pixel_format == "bgr24":
        out = np.clip(np.rint(rgb * 255.0), 0, 255).astype(np.uint8)
        return cv2.cvtColor(out, cv2.COLOR_RGB2BGR)
    if pixel_format == "yuv420p":
        return rgb_to_yuv420p(rgb, chroma_kernel)
    raise ValueError(f"Unsupported pixel format: {pixel_format}")
