"""Execution-provider probing and device error classification for ONNX Runtime."""
from __future__ import annotations
import logging
from typing import Optional, Tuple

import onnxruntime as ort

logger = logging.getLogger(__name__)

# Preferred order when several device providers are installed
ACCELERATED_PROVIDERS: Tuple[str, ...] = (
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
    "CoreMLExecutionProvider",
)
PORTABLE_PROVIDER = "CPUExecutionProvider"

_BUFFER_SIZE_PATTERNS = (
    "larger than the maximum storage buffer binding size",
    "exceeds the max buffer size",
    "maxbuffersize",
)

_MEMORY_PATTERNS = (
    "out of memory",
    "allocation failed",
    "device lost",
    "buffer allocation",
    "memory exhausted",
    "oom",
    "gpu memory",
    "vram",
    "createbuffer",
    "mapasync",
    "failed to allocate",
    "gpubufferoffset",
    "cudaerrormemoryallocation",
    "cuda_error_out_of_memory",
    "bfcarena",
)


class GPUUtils:
    """Small helper for accelerated provider selection (falls back to CPU when unavailable)."""

    _accelerated_provider: Optional[str] = None
    _probed: bool = False

    @classmethod
    def probe(cls, refresh: bool = False) -> Optional[str]:
        """Return the first usable accelerated provider name, or None. Cached after the first call."""
        if cls._probed and not refresh:
            return cls._accelerated_provider
        cls._accelerated_provider = None
        try:
            available = set(ort.get_available_providers())
        except Exception as exc:
            logger.warning("Could not list ONNX Runtime providers: %s", exc)
            available = set()
        for provider in ACCELERATED_PROVIDERS:
            if provider in available:
                cls._accelerated_provider = provider
                break
        cls._probed = True
        logger.info(
            "Capability probe: accelerated provider=%s (available: %s)",
            cls._accelerated_provider,
            ", ".join(sorted(available)) or "none",
        )
        return cls._accelerated_provider

    @classmethod
    def is_available(cls) -> bool:
        """Return True if an accelerated provider can be used."""
        return cls.probe() is not None

    @classmethod
    def reset(cls):
        cls._accelerated_provider = None
        cls._probed = False


def is_gpu_buffer_size_error(message: Optional[str]) -> bool:
    """Device buffer ceiling exceeded (hard limit, fixed by a smaller model)."""
    if not message:
        return False
    msg = message.lower()
    if any(pattern in msg for pattern in _BUFFER_SIZE_PATTERNS):
        return True
    return "buffer size" in msg and "exceed" in msg


def is_gpu_memory_error(message: Optional[str]) -> bool:
    """Device memory exhaustion (recoverable on the portable backend)."""
    if not message:
        return False
    msg = message.lower()
    return any(pattern in msg for pattern in _MEMORY_PATTERNS)
