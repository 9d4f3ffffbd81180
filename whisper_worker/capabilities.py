"""Hardware capability probing.

Decides once per worker whether inference can run on an accelerator, at
which precision, and how the CPU fallback should be threaded.
"""

import logging
import os
from typing import Optional

import torch

from .data_models import AdapterInfo, CapabilityProfile, CpuConfig

logger = logging.getLogger(__name__)

# Adapters that are really CPU rasterizers behind a GPU API; slower than
# running the CPU backend directly.
SOFTWARE_ADAPTER_SIGNATURES = ("swiftshader", "llvmpipe", "softpipe", "basic render")

FP16_FEATURE = "shader-f16"


def is_software_adapter(name: Optional[str]) -> bool:
    lowered = (name or "").lower()
    return any(signature in lowered for signature in SOFTWARE_ADAPTER_SIGNATURES)


class CapabilityProber:
    """Probes accelerator availability and configures CPU threading.

    ``probe()`` runs the detection the first time it is called and returns
    the cached profile afterwards. It never raises: any failure while
    querying devices means "no acceleration".

    Attributes:
        isolated: Whether the worker may use all host cores for CPU kernels
    """

    def __init__(self, isolated: bool = True):
        if not isinstance(isolated, bool):
            raise TypeError(
                f"isolated must be bool, got {type(isolated).__name__}"
            )
        self.isolated = isolated
        self._profile: Optional[CapabilityProfile] = None

    @property
    def profile(self) -> Optional[CapabilityProfile]:
        return self._profile

    def probe(self) -> CapabilityProfile:
        """Return the capability profile, probing on first use."""
        if self._profile is None:
            cpu = self.configure_cpu()
            adapter = self.detect_adapter()
            self._profile = CapabilityProfile(adapter=adapter, cpu=cpu)
            if self._profile.accelerated:
                logger.info(
                    f"Accelerator found: {adapter.name} ({adapter.device}), "
                    f"fp16={self._profile.supports_fp16}"
                )
            elif adapter is not None:
                logger.warning(
                    f"Ignoring software adapter '{adapter.name}'; using CPU"
                )
            else:
                logger.info(f"No accelerator found; using CPU with {cpu.num_threads} thread(s)")
        return self._profile

    def configure_cpu(self) -> CpuConfig:
        """Apply CPU threading for the fallback backend.

        Without isolation the worker shares cores with its host, so kernels
        run single-threaded. Otherwise one core is left for the host.
        """
        if self.isolated:
            cores = os.cpu_count() or 2
            num_threads = max(1, cores - 1)
        else:
            num_threads = 1

        try:
            torch.set_num_threads(num_threads)
        except RuntimeError as e:
            logger.warning(f"Could not set CPU thread count to {num_threads}: {e}")

        try:
            simd = torch.backends.cpu.get_cpu_capability()
        except (AttributeError, RuntimeError):
            simd = None

        return CpuConfig(num_threads=num_threads, proxy=self.isolated, simd=simd)

    def detect_adapter(self) -> Optional[AdapterInfo]:
        """Find an accelerator adapter.

        Prefers the high-performance adapter and falls back to the default
        one. Returns None if neither can be obtained.
        """
        return (
            self._request_adapter("high-performance")
            or self._request_adapter(None)
        )

    def _request_adapter(self, power_preference: Optional[str]) -> Optional[AdapterInfo]:
        try:
            if power_preference == "high-performance":
                return self._cuda_adapter()
            return self._mps_adapter()
        except Exception as e:
            logger.warning(
                f"Accelerator detection ({power_preference or 'default'}) failed: {e}"
            )
            return None

    def _cuda_adapter(self) -> Optional[AdapterInfo]:
        if not torch.cuda.is_available() or torch.cuda.device_count() == 0:
            return None

        # largest memory pool wins
        best = max(
            range(torch.cuda.device_count()),
            key=lambda idx: torch.cuda.get_device_properties(idx).total_memory,
        )
        props = torch.cuda.get_device_properties(best)
        features = []
        if (props.major, props.minor) >= (7, 0):
            features.append(FP16_FEATURE)
        if torch.cuda.is_bf16_supported():
            features.append("bf16")

        return AdapterInfo(
            name=props.name,
            vendor="nvidia",
            device=f"cuda:{best}",
            features=features,
            limits={
                "total_memory": props.total_memory,
                "multi_processor_count": props.multi_processor_count,
                "compute_capability": f"{props.major}.{props.minor}",
            },
            is_software=is_software_adapter(props.name),
        )

    def _mps_adapter(self) -> Optional[AdapterInfo]:
        mps = getattr(torch.backends, "mps", None)
        if mps is None or not mps.is_available():
            return None
        return AdapterInfo(
            name="Apple Metal",
            vendor="apple",
            device="mps",
            features=[FP16_FEATURE],
            limits={},
            is_software=False,
        )
