"""Hardware capability detection for cadenceflow.

Probes the installed accelerator once per session and classifies it into a
capability tier. The tier drives the default quality preset and the
recommended pipeline parameters.

Tool discovery uses the directories passed in ``DetectorConfig`` rather
than relying on the process ``PATH`` being prepared beforehand.
"""
import ctypes.util
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .core.types import (
    GPUVendor,
    HardwareProfile,
    HardwareTier,
    PipelineParameters,
    QualityPreset,
    ScalingAlgorithm,
)
from .exceptions import DetectionError

logger = logging.getLogger(__name__)


# =============================================================================
# Tables
# =============================================================================

# Ordered: the first matching substring wins, so specific models come
# before the RTX 40 series catch-all.
TIER_TABLE: Tuple[Tuple[str, HardwareTier], ...] = (
    ("RTX 4090", HardwareTier.HIGH),
    ("RTX 4080", HardwareTier.HIGH),
    ("RTX 4070", HardwareTier.HIGH),
    ("RTX 3090", HardwareTier.HIGH),
    ("RTX 3080", HardwareTier.HIGH),
    ("RTX 3070", HardwareTier.HIGH),
    ("RTX 4060", HardwareTier.MID),
    ("RTX 4050", HardwareTier.MID),
    ("RTX 3060", HardwareTier.MID),
    ("RTX 3050", HardwareTier.MID),
    ("RTX 40", HardwareTier.HIGH),
    ("RTX 20", HardwareTier.ENTRY),
    ("GTX 16", HardwareTier.ENTRY),
)

LITE_MODEL = "rife-v4.6-lite"
FULL_MODEL = "rife-v4.6"

TIER_PARAMETERS: Dict[HardwareTier, PipelineParameters] = {
    HardwareTier.UNSUPPORTED: PipelineParameters(
        target_height=540,
        scene_threshold=0.20,
        model_id=LITE_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.BILINEAR,
    ),
    HardwareTier.ENTRY: PipelineParameters(
        target_height=540,
        scene_threshold=0.20,
        model_id=LITE_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.BILINEAR,
    ),
    HardwareTier.MID: PipelineParameters(
        target_height=720,
        scene_threshold=0.15,
        model_id=FULL_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.SPLINE36,
    ),
    HardwareTier.HIGH: PipelineParameters(
        target_height=1080,
        scene_threshold=0.10,
        model_id=FULL_MODEL,
        uhd_mode=False,
        scaling=ScalingAlgorithm.LANCZOS,
    ),
}

TIER_DEFAULT_PRESET: Dict[HardwareTier, QualityPreset] = {
    HardwareTier.UNSUPPORTED: QualityPreset.FAST,
    HardwareTier.ENTRY: QualityPreset.FAST,
    HardwareTier.MID: QualityPreset.BALANCED,
    HardwareTier.HIGH: QualityPreset.BEAUTY,
}

VULKAN_LIBRARY_NAMES = ("vulkan-1.dll", "libvulkan.so.1", "libvulkan.so", "libvulkan.1.dylib")


# =============================================================================
# Configuration / device records
# =============================================================================

@dataclass
class DetectorConfig:
    """Explicit tool locations for the hardware probe.

    Attributes:
        search_paths: Directories searched for the probe tools and the
            Vulkan loader; empty means the default system lookup
        nvidia_smi: Name of the NVIDIA management CLI
        lspci: Name of the PCI listing tool
        preferred_index: Device index to prefer when several are found
        timeout: Seconds to wait for each probe tool
    """
    search_paths: List[Path] = field(default_factory=list)
    nvidia_smi: str = "nvidia-smi"
    lspci: str = "lspci"
    preferred_index: int = 0
    timeout: float = 10.0

    def __post_init__(self) -> None:
        self.search_paths = [Path(p).expanduser() for p in self.search_paths]
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def which(self, tool: str) -> Optional[str]:
        """Locate a tool on the configured search paths."""
        if self.search_paths:
            return shutil.which(tool, path=os.pathsep.join(str(p) for p in self.search_paths))
        return shutil.which(tool)


@dataclass
class _Device:
    index: int
    name: str
    vendor: GPUVendor
    vram_mb: int = 0


# =============================================================================
# Classification
# =============================================================================

def classify_device(name: str) -> HardwareTier:
    """Map a device name to a capability tier.

    Unrecognized devices classify as ``UNSUPPORTED``.
    """
    upper = name.upper()
    for pattern, tier in TIER_TABLE:
        if pattern in upper:
            return tier
    return HardwareTier.UNSUPPORTED


def recommended_parameters(tier: HardwareTier) -> PipelineParameters:
    """Fixed default parameters for a hardware tier.

    Pure function: the same tier always yields equal parameters.
    """
    return TIER_PARAMETERS[HardwareTier(tier)]


def default_preset_for(tier: HardwareTier) -> QualityPreset:
    """Preset offered by default for a hardware tier."""
    return TIER_DEFAULT_PRESET[HardwareTier(tier)]


def _vendor_from_name(name: str) -> GPUVendor:
    lower = name.lower()
    if any(kw in lower for kw in ("nvidia", "geforce", "quadro", "rtx", "gtx")):
        return GPUVendor.NVIDIA
    if any(kw in lower for kw in ("amd", "radeon")):
        return GPUVendor.AMD
    if "intel" in lower:
        return GPUVendor.INTEL
    return GPUVendor.UNKNOWN


# =============================================================================
# Detector
# =============================================================================

class HardwareDetector:
    """Read-only accelerator probe.

    Example:
        >>> detector = HardwareDetector(DetectorConfig())
        >>> profile = detector.detect_or_fallback()
        >>> profile.tier
        <HardwareTier.HIGH: 'high'>
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()

    def detect(self) -> HardwareProfile:
        """Probe the system and build a HardwareProfile.

        Raises:
            DetectionError: If no enumeration tool could be run
        """
        nvidia_smi = self.config.which(self.config.nvidia_smi)
        lspci = self.config.which(self.config.lspci)

        if nvidia_smi is None and lspci is None:
            raise DetectionError(
                "No GPU enumeration tool found",
                tools=[self.config.nvidia_smi, self.config.lspci],
            )

        devices: List[_Device] = []
        reachable = False

        if nvidia_smi is not None:
            found = self._query_nvidia(nvidia_smi)
            if found is not None:
                reachable = True
                devices.extend(found)

        if lspci is not None:
            found = self._query_lspci(lspci)
            if found is not None:
                reachable = True
                devices.extend(found)

        if not reachable:
            raise DetectionError(
                "GPU enumeration tools could not be run",
                tools=[t for t in (nvidia_smi, lspci) if t],
            )

        api_available = self._vulkan_available()
        device = self._select(devices)
        if device is None:
            logger.info("No GPU found, using unsupported tier")
            return HardwareProfile(accelerator_api_available=api_available)

        profile = HardwareProfile(
            vendor=device.vendor,
            tier=classify_device(device.name) if device.vendor == GPUVendor.NVIDIA else HardwareTier.UNSUPPORTED,
            vram_mb=device.vram_mb,
            accelerator_api_available=api_available,
            name=device.name,
            device_index=device.index,
        )
        logger.info(
            f"Detected {profile.name} ({profile.vendor.value}, {profile.vram_mb}MB) "
            f"-> tier {profile.tier.value}"
        )
        return profile

    def detect_or_fallback(self) -> HardwareProfile:
        """Like detect(), but degrades to the unsupported tier on failure."""
        try:
            return self.detect()
        except DetectionError as e:
            logger.warning(f"Hardware detection unavailable, using lowest tier: {e}")
            return HardwareProfile.unsupported()

    def _select(self, devices: Sequence[_Device]) -> Optional[_Device]:
        if not devices:
            return None
        nvidia = [d for d in devices if d.vendor == GPUVendor.NVIDIA]
        candidates = nvidia or list(devices)
        for device in candidates:
            if device.index == self.config.preferred_index:
                return device
        return max(candidates, key=lambda d: d.vram_mb)

    def _run(self, cmd: List[str]) -> Optional[str]:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except subprocess.TimeoutExpired:
            logger.debug(f"{cmd[0]} timed out")
            return None
        except OSError as e:
            logger.debug(f"{cmd[0]} could not be run: {e}")
            return None

        if result.returncode != 0:
            logger.debug(f"{cmd[0]} failed: {result.stderr}")
            return None
        return result.stdout

    def _query_nvidia(self, executable: str) -> Optional[List[_Device]]:
        output = self._run([
            executable,
            "--query-gpu=index,name,memory.total",
            "--format=csv,noheader,nounits",
        ])
        if output is None:
            return None

        devices = []
        for line in output.strip().split("\n"):
            if not line.strip():
                continue
            parts = [p.strip() for p in line.split(",")]
            if len(parts) < 3:
                continue
            try:
                devices.append(_Device(
                    index=int(parts[0]),
                    name=parts[1],
                    vendor=GPUVendor.NVIDIA,
                    vram_mb=int(float(parts[2])),
                ))
            except ValueError as e:
                logger.debug(f"Failed to parse nvidia-smi line {line!r}: {e}")
        return devices

    def _query_lspci(self, executable: str) -> Optional[List[_Device]]:
        output = self._run([executable, "-nn"])
        if output is None:
            return None

        devices = []
        for line in output.split("\n"):
            lower = line.lower()
            if not any(kw in lower for kw in ("vga", "display", "3d controller")):
                continue
            # nvidia-smi reports these with VRAM
            if "nvidia" in lower:
                continue
            parts = line.split(": ", 1)
            name = parts[1].split(" [")[0].strip() if len(parts) > 1 else line.strip()
            devices.append(_Device(
                index=len(devices),
                name=name,
                vendor=_vendor_from_name(name),
            ))
        return devices

    def _vulkan_available(self) -> bool:
        for directory in self.config.search_paths:
            for name in VULKAN_LIBRARY_NAMES:
                if (directory / name).exists():
                    return True
        return ctypes.util.find_library("vulkan") is not None or \
            ctypes.util.find_library("vulkan-1") is not None


def detect_hardware(config: Optional[DetectorConfig] = None) -> HardwareProfile:
    """Convenience wrapper returning a profile and never raising."""
    return HardwareDetector(config).detect_or_fallback()
