"""
Engine selection and degradation.

States:
    UNINITIALIZED -> DETECTING_CAPABILITIES -> ACCELERATED_READY | FALLBACK_READY
    -> RECOGNIZING -> READY (loop) | TERMINATED

Device memory exhaustion on the accelerated engine downgrades permanently
to the portable engine and retries the call once. A device buffer-size
ceiling during initialization is reported to the caller with a suggested
smaller model variant instead.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Sequence

from src.ocr.base import OcrEngine
from src.ocr.errors import (
    EngineBusyError,
    EngineInitializationError,
    EngineTerminatedError,
    GpuBufferSizeError,
    GpuOutOfMemoryError,
)
from src.ocr.onnx_engine import AcceleratedOnnxEngine, PortableOnnxEngine
from src.pipelines.ocr import CancellationToken, OCRPipeline
from src.processing.gpu_utils import GPUUtils
from utils.config import Config
from utils.models import OcrResult, SeparatorLine
from utils.settings import OcrSettings, validate_model_variant

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    DETECTING_CAPABILITIES = "detecting_capabilities"
    ACCELERATED_READY = "accelerated_ready"
    FALLBACK_READY = "fallback_ready"
    RECOGNIZING = "recognizing"
    READY = "ready"
    TERMINATED = "terminated"


class EnginePreference(str, Enum):
    AUTO = "auto"
    ACCELERATED = "accelerated"
    PORTABLE = "portable"

    @classmethod
    def parse(cls, value) -> "EnginePreference":
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning("Unknown engine preference %r, using auto", value)
            return cls.AUTO


EngineFactory = Callable[[bool, Optional[str]], OcrEngine]


def default_engine_factory(accelerated: bool, provider: Optional[str]) -> OcrEngine:
    """Create an ONNX Runtime engine for the requested backend."""
    if accelerated:
        return AcceleratedOnnxEngine(provider=provider)
    return PortableOnnxEngine()


class EngineSelector:
    """Owns exactly one active engine and swaps it on the defined failures."""

    def __init__(
        self,
        preference=None,
        model_variant: Optional[str] = None,
        engine_factory: Optional[EngineFactory] = None,
        capability_probe: Optional[Callable[[], Optional[str]]] = None,
        pipeline: Optional[OCRPipeline] = None,
    ):
        """
        Args:
            preference: auto | accelerated | portable (default: Config.OCR_ENGINE)
            model_variant: server | mobile (default: Config.OCR_MODEL_VARIANT)
            engine_factory: Builds an engine from (accelerated, provider)
            capability_probe: Returns an accelerated provider name or None
            pipeline: Per-image pipeline
        """
        self.preference = EnginePreference.parse(preference or Config.OCR_ENGINE)
        self.model_variant = validate_model_variant(model_variant or Config.OCR_MODEL_VARIANT)
        self.pipeline = pipeline or OCRPipeline()
        self.fallback_occurred = False

        self._engine_factory = engine_factory or default_engine_factory
        self._capability_probe = capability_probe or GPUUtils.probe
        self._probed = False
        self._accelerated_provider: Optional[str] = None
        self._engine: Optional[OcrEngine] = None
        self._state = EngineState.UNINITIALIZED
        self._lock = threading.Lock()

    # -- introspection -----------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def engine(self) -> Optional[OcrEngine]:
        return self._engine

    @property
    def backend(self) -> Optional[str]:
        return self._engine.name if self._engine is not None else None

    # -- lifecycle -----------------------------------------------------------

    def probe_capabilities(self) -> Optional[str]:
        """Detect an accelerated provider once per selector."""
        if not self._probed:
            self._accelerated_provider = self._capability_probe()
            self._probed = True
        return self._accelerated_provider

    def set_preference(self, preference) -> None:
        """
        Change the backend preference.

        The active engine is released if it no longer matches; the next call
        initializes the preferred one.
        """
        self._check_not_terminated()
        new = EnginePreference.parse(preference)
        if new == self.preference:
            return
        self.preference = new
        if self._engine is not None and self._engine.accelerated != self._wants_accelerated():
            logger.info("Engine preference changed to %s, releasing %s engine", new.value, self._engine.name)
            self._release_engine()
            self._state = EngineState.UNINITIALIZED

    def initialize(self, model_variant: Optional[str] = None) -> OcrEngine:
        """
        Probe capabilities and initialize the preferred engine.

        Raises:
            GpuBufferSizeError: model variant too large for the device
            EngineInitializationError: models could not be loaded
        """
        self._check_not_terminated()
        variant = validate_model_variant(model_variant or self.model_variant)
        self._release_engine()

        self._state = EngineState.DETECTING_CAPABILITIES
        use_accelerated = self._wants_accelerated()
        try:
            engine = self._create_engine(use_accelerated, variant)
        except GpuOutOfMemoryError as e:
            if not use_accelerated:
                self._state = EngineState.UNINITIALIZED
                raise EngineInitializationError(str(e)) from e
            logger.warning("Out of device memory while loading models, switching to portable engine: %s", e)
            self._downgrade()
            engine = self._create_engine(False, variant)

        self._engine = engine
        self.model_variant = variant
        self._state = EngineState.ACCELERATED_READY if engine.accelerated else EngineState.FALLBACK_READY
        return engine

    def terminate(self) -> None:
        """Release the active engine; the selector cannot be used afterwards."""
        self._release_engine()
        self._state = EngineState.TERMINATED

    # -- recognition ---------------------------------------------------------

    def recognize(
        self,
        image,
        settings: Optional[OcrSettings] = None,
        separators: Optional[Sequence[SeparatorLine]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OcrResult:
        """
        Run OCR on one image, downgrading and retrying once on device OOM.

        Raises:
            EngineBusyError: another call is in flight
            EngineTerminatedError: selector was terminated
        """
        if not self._lock.acquire(blocking=False):
            raise EngineBusyError("A recognition call is already in progress")
        try:
            self._check_not_terminated()
            settings = settings or OcrSettings(model_variant=self.model_variant)
            variant = validate_model_variant(settings.model_variant)
            was_downgraded = self.fallback_occurred
            if self._engine is None or not self._engine.is_ready or self.model_variant != variant:
                self.initialize(variant)

            self._state = EngineState.RECOGNIZING
            try:
                result, downgraded = self._run_with_downgrade(image, settings, separators, cancel_token)
            except Exception:
                if self._state == EngineState.RECOGNIZING:
                    self._state = EngineState.READY if self._engine is not None else EngineState.UNINITIALIZED
                raise

            self._state = EngineState.READY
            result.backend = self._engine.name
            # Also covers a downgrade during lazy initialization in this call
            result.fallback_occurred = downgraded or (self.fallback_occurred and not was_downgraded)
            return result
        finally:
            self._lock.release()

    def _run_with_downgrade(self, image, settings, separators, cancel_token):
        try:
            return self.pipeline.run(self._engine, image, settings, separators, cancel_token), False
        except GpuOutOfMemoryError as e:
            if not self._engine.accelerated:
                raise
            logger.warning("Out of device memory during recognition, retrying on portable engine: %s", e)
            self._release_engine()
            self._downgrade()
            self._engine = self._create_engine(False, validate_model_variant(settings.model_variant))
            self._state = EngineState.RECOGNIZING
        return self.pipeline.run(self._engine, image, settings, separators, cancel_token), True

    # -- internals -----------------------------------------------------------

    def _wants_accelerated(self) -> bool:
        if self.preference == EnginePreference.PORTABLE:
            return False
        provider = self.probe_capabilities()
        if provider is None and self.preference == EnginePreference.ACCELERATED:
            logger.warning("Accelerated engine requested but no device provider is available")
        return provider is not None

    def _create_engine(self, accelerated: bool, variant: str) -> OcrEngine:
        engine = self._engine_factory(accelerated, self._accelerated_provider if accelerated else None)
        try:
            engine.initialize(variant)
        except (GpuOutOfMemoryError, GpuBufferSizeError, EngineInitializationError):
            engine.terminate()
            self._state = EngineState.UNINITIALIZED
            raise
        except Exception as e:
            engine.terminate()
            self._state = EngineState.UNINITIALIZED
            raise EngineInitializationError(f"Failed to initialize {engine.name} engine: {e}") from e
        return engine

    def _downgrade(self):
        self.preference = EnginePreference.PORTABLE
        self.fallback_occurred = True

    def _release_engine(self):
        if self._engine is not None:
            self._engine.terminate()
            self._engine = None

    def _check_not_terminated(self):
        if self._state == EngineState.TERMINATED:
            raise EngineTerminatedError("Engine selector has been terminated")
