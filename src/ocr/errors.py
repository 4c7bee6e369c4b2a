"""
Error types raised by the OCR engine.

Every error carries a machine-readable ``kind`` so callers can tell a
recoverable backend failure from a fatal one without parsing messages.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    OUT_OF_MEMORY = "out_of_memory"
    BUFFER_SIZE_EXCEEDED = "buffer_size_exceeded"
    INITIALIZATION_FAILED = "initialization_failed"
    ENGINE_BUSY = "engine_busy"
    ENGINE_TERMINATED = "engine_terminated"
    CANCELLED = "cancelled"


class OcrError(Exception):
    """Base class for engine errors."""
    kind: ErrorKind = ErrorKind.INITIALIZATION_FAILED


class GpuOutOfMemoryError(OcrError):
    """Accelerated backend ran out of device memory; recoverable on the portable backend."""
    kind = ErrorKind.OUT_OF_MEMORY

    def __init__(self, original_message: str):
        super().__init__(f"GPU out of memory: {original_message}")
        self.original_message = original_message


class GpuBufferSizeError(OcrError):
    """
    Model exceeds the device's maximum buffer size.

    Not retryable with the same model; the caller should retry with a smaller
    model variant (``suggested_variant``).
    """
    kind = ErrorKind.BUFFER_SIZE_EXCEEDED

    def __init__(self, original_message: str, model_variant: Optional[str] = None):
        super().__init__(f"GPU buffer size exceeded: {original_message}")
        self.original_message = original_message
        self.model_variant = model_variant
        self.suggested_variant = "mobile" if model_variant == "server" else None


class EngineInitializationError(OcrError):
    """Model loading or session creation failed for reasons unrelated to resource limits."""
    kind = ErrorKind.INITIALIZATION_FAILED


class EngineBusyError(OcrError):
    """A recognition call is already in flight on this engine."""
    kind = ErrorKind.ENGINE_BUSY


class EngineTerminatedError(OcrError):
    kind = ErrorKind.ENGINE_TERMINATED


class OcrCancelledError(OcrError):
    """Raised at a stage boundary after cancellation was requested."""
    kind = ErrorKind.CANCELLED
