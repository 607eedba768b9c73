"""Compute backend detection.

Each accelerator is probed on its own; a probe that raises is reported as
unsupported and never stops the remaining probes. ``cpu`` and ``auto`` are
always available.

    | Backend | Probe                                           |
    |---------|-------------------------------------------------|
    | cuda    | torch.cuda.is_available() + device name query   |
    | mps     | torch.backends.mps.is_available()               |
    | xpu     | torch.xpu.is_available()                        |
    | npu     | torch.npu.is_available() (plugin registered)    |
"""

import logging
from typing import Callable, Dict, Mapping, Optional, Union

import torch

from depth_studio.errors import CapabilityProbeFailure
from depth_studio.models.catalog import ComputeBackend

logger = logging.getLogger(__name__)

CapabilityMap = Dict[str, bool]
Probe = Callable[[], bool]

# Preference order when resolving "auto"
AUTO_PREFERENCE = (
    ComputeBackend.CUDA,
    ComputeBackend.MPS,
    ComputeBackend.XPU,
    ComputeBackend.NPU,
)


def _probe_cuda() -> bool:
    if not torch.cuda.is_available():
        return False
    torch.cuda.get_device_name(0)
    return True


def _probe_mps() -> bool:
    mps = getattr(torch.backends, "mps", None)
    return bool(mps is not None and mps.is_available())


def _probe_xpu() -> bool:
    xpu = getattr(torch, "xpu", None)
    return bool(xpu is not None and xpu.is_available())


def _probe_npu() -> bool:
    # torch.npu only exists once a vendor plugin (e.g. torch_npu) is imported
    npu = getattr(torch, "npu", None)
    return bool(npu is not None and npu.is_available())


DEFAULT_PROBES: Dict[ComputeBackend, Probe] = {
    ComputeBackend.CUDA: _probe_cuda,
    ComputeBackend.MPS: _probe_mps,
    ComputeBackend.XPU: _probe_xpu,
    ComputeBackend.NPU: _probe_npu,
}


class CapabilityDetector:
    """Probe the runtime for supported compute backends.

    Args:
        probes: Override probe functions per backend (missing ones use defaults)

    Example:
        >>> detector = CapabilityDetector()
        >>> detector.detect()
        {'auto': True, 'cpu': True, 'cuda': False, 'mps': False, ...}
    """

    def __init__(self, probes: Optional[Mapping[ComputeBackend, Probe]] = None):
        self._probes = dict(DEFAULT_PROBES)
        if probes:
            self._probes.update({ComputeBackend.parse(k): v for k, v in probes.items()})

    def detect(self) -> CapabilityMap:
        """Run every probe and return ``backend -> supported``."""
        capabilities: CapabilityMap = {
            ComputeBackend.AUTO.value: True,
            ComputeBackend.CPU.value: True,
        }
        for backend, probe in self._probes.items():
            capabilities[backend.value] = self._run_probe(backend, probe)

        supported = [name for name, ok in capabilities.items() if ok]
        logger.info(f"Detected compute backends: {supported}")
        return capabilities

    @staticmethod
    def _run_probe(backend: ComputeBackend, probe: Probe) -> bool:
        try:
            return bool(probe())
        except Exception as e:
            failure = CapabilityProbeFailure(backend.value, str(e))
            logger.debug(str(failure))
            return False

    def resolve_device(
        self,
        backend: Union[str, ComputeBackend],
        capabilities: Optional[Mapping[str, bool]] = None,
    ) -> str:
        """Torch device string for a backend.

        ``auto`` picks the first supported accelerator, else ``cpu``. Explicit
        backends are returned as-is; an unsupported one fails at load time.
        """
        backend = ComputeBackend.parse(backend)
        if backend != ComputeBackend.AUTO:
            return backend.value

        if capabilities is None:
            capabilities = self.detect()
        for candidate in AUTO_PREFERENCE:
            if capabilities.get(candidate.value):
                return candidate.value
        return ComputeBackend.CPU.value


def detect_capabilities() -> CapabilityMap:
    return CapabilityDetector().detect()


def resolve_device(backend: Union[str, ComputeBackend]) -> str:
    return CapabilityDetector().resolve_device(backend)
