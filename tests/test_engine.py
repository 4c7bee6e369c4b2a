"""Tests for engine selection and the degradation state machine."""
import threading

import pytest

from src.ocr.errors import (
    EngineBusyError,
    EngineInitializationError,
    EngineTerminatedError,
    ErrorKind,
    GpuBufferSizeError,
    GpuOutOfMemoryError,
)
from src.pipelines.engine import EnginePreference, EngineSelector, EngineState
from src.pipelines.ocr import OCRPipeline
from src.processing.gpu_utils import is_gpu_buffer_size_error, is_gpu_memory_error
from utils.settings import OcrSettings

CUDA = "CUDAExecutionProvider"


def _selector(factory, provider=CUDA, preference="auto"):
    return EngineSelector(
        preference=preference,
        model_variant="server",
        engine_factory=factory,
        capability_probe=lambda: provider,
        pipeline=OCRPipeline(use_fallback=False),
    )


class _Factory:
    """Engine factory recording the engines it builds."""

    def __init__(self, make_engine, accelerated_kwargs=None, portable_kwargs=None):
        self.make_engine = make_engine
        self.accelerated_kwargs = accelerated_kwargs or {}
        self.portable_kwargs = portable_kwargs or {}
        self.created = []

    def __call__(self, accelerated, provider):
        kwargs = self.accelerated_kwargs if accelerated else self.portable_kwargs
        engine = self.make_engine(accelerated=accelerated, **kwargs)
        self.created.append(engine)
        return engine


def test_accelerated_engine_selected_when_available(make_engine):
    selector = _selector(_Factory(make_engine))
    engine = selector.initialize()
    assert engine.accelerated
    assert selector.state == EngineState.ACCELERATED_READY


def test_portable_when_no_provider_or_preferred(make_engine):
    selector = _selector(_Factory(make_engine), provider=None)
    assert not selector.initialize().accelerated
    assert selector.state == EngineState.FALLBACK_READY

    selector = _selector(_Factory(make_engine), preference="portable")
    assert not selector.initialize().accelerated


def test_capabilities_probed_once(make_engine):
    calls = []

    def probe():
        calls.append(1)
        return CUDA

    selector = EngineSelector(engine_factory=_Factory(make_engine), capability_probe=probe,
                              pipeline=OCRPipeline(use_fallback=False))
    selector.initialize()
    selector.initialize()
    assert len(calls) == 1


def test_oom_during_recognition_downgrades_and_retries(make_engine, white_image):
    factory = _Factory(make_engine, accelerated_kwargs={"run_error": GpuOutOfMemoryError("out of memory")})
    selector = _selector(factory)

    result = selector.recognize(white_image)

    assert result.fallback_occurred
    assert result.backend == "portable"
    assert selector.fallback_occurred
    assert selector.preference == EnginePreference.PORTABLE
    assert selector.state == EngineState.READY
    accelerated, portable = factory.created
    assert accelerated.terminated
    assert not portable.accelerated and portable.is_ready

    # Downgrade is permanent
    second = selector.recognize(white_image)
    assert not second.fallback_occurred
    assert len(factory.created) == 2


def test_oom_on_portable_engine_propagates(make_engine, white_image):
    factory = _Factory(make_engine, portable_kwargs={"run_error": GpuOutOfMemoryError("out of memory")})
    selector = _selector(factory, provider=None)
    with pytest.raises(GpuOutOfMemoryError):
        selector.recognize(white_image)
    assert selector.state == EngineState.READY


def test_buffer_size_error_short_circuits_initialization(make_engine):
    error = GpuBufferSizeError("larger than the maximum storage buffer binding size", "server")
    factory = _Factory(make_engine, accelerated_kwargs={"init_error": error})
    selector = _selector(factory)

    with pytest.raises(GpuBufferSizeError) as exc_info:
        selector.initialize()

    assert exc_info.value.kind == ErrorKind.BUFFER_SIZE_EXCEEDED
    assert exc_info.value.suggested_variant == "mobile"
    assert not isinstance(exc_info.value, EngineInitializationError)
    assert selector.state == EngineState.UNINITIALIZED
    assert selector.preference == EnginePreference.AUTO
    assert selector.engine is None
    assert len(factory.created) == 1


def test_generic_init_failure_is_fatal(make_engine):
    factory = _Factory(make_engine, accelerated_kwargs={"init_error": RuntimeError("corrupt model")})
    selector = _selector(factory)

    with pytest.raises(EngineInitializationError) as exc_info:
        selector.initialize()

    assert exc_info.value.kind == ErrorKind.INITIALIZATION_FAILED
    assert selector.state == EngineState.UNINITIALIZED
    assert selector.engine is None
    assert factory.created[0].terminated


def test_oom_during_accelerated_init_downgrades(make_engine):
    factory = _Factory(make_engine, accelerated_kwargs={"init_error": GpuOutOfMemoryError("vram exhausted")})
    selector = _selector(factory)

    engine = selector.initialize()

    assert not engine.accelerated
    assert selector.state == EngineState.FALLBACK_READY
    assert selector.fallback_occurred
    assert selector.preference == EnginePreference.PORTABLE


def test_oom_during_lazy_init_is_reported_on_result(make_engine, white_image):
    factory = _Factory(make_engine, accelerated_kwargs={"init_error": GpuOutOfMemoryError("vram exhausted")})
    selector = _selector(factory)

    result = selector.recognize(white_image)

    assert result.fallback_occurred
    assert result.backend == "portable"
    assert selector.fallback_occurred

    second = selector.recognize(white_image)
    assert not second.fallback_occurred


def test_concurrent_call_is_rejected(make_engine, white_image):
    release = threading.Event()
    entered = threading.Event()
    factory = _Factory(make_engine, portable_kwargs={"block_event": release, "entered_event": entered})
    selector = _selector(factory, provider=None)
    errors = []

    def first_call():
        try:
            selector.recognize(white_image)
        except Exception as e:  # surfaced through the list below
            errors.append(e)

    worker = threading.Thread(target=first_call)
    worker.start()
    assert entered.wait(timeout=5)
    try:
        assert selector.state == EngineState.RECOGNIZING
        with pytest.raises(EngineBusyError):
            selector.recognize(white_image)
    finally:
        release.set()
        worker.join(timeout=5)
    assert errors == []
    assert selector.state == EngineState.READY


def test_terminate_releases_engine(make_engine, white_image):
    factory = _Factory(make_engine)
    selector = _selector(factory)
    selector.recognize(white_image)
    selector.terminate()

    assert selector.state == EngineState.TERMINATED
    assert factory.created[0].terminated
    with pytest.raises(EngineTerminatedError):
        selector.recognize(white_image)


def test_model_variant_change_reinitializes(make_engine, white_image):
    factory = _Factory(make_engine)
    selector = _selector(factory)
    selector.recognize(white_image)
    selector.recognize(white_image, OcrSettings(model_variant="mobile"))

    assert [e.initialized_with for e in factory.created] == [["server"], ["mobile"]]
    assert factory.created[0].terminated
    assert selector.model_variant == "mobile"


def test_set_preference_releases_mismatched_engine(make_engine):
    factory = _Factory(make_engine)
    selector = _selector(factory)
    selector.initialize()
    selector.set_preference("portable")

    assert factory.created[0].terminated
    assert selector.engine is None
    assert selector.state == EngineState.UNINITIALIZED
    assert not selector.initialize().accelerated


def test_error_message_classification():
    assert is_gpu_buffer_size_error("Binding size is larger than the maximum storage buffer binding size")
    assert is_gpu_memory_error("CUDA failure 2: out of memory")
    assert is_gpu_memory_error("BFCArena::AllocateRawInternal Failed to allocate memory")
    assert not is_gpu_memory_error("Invalid model file")
    assert not is_gpu_buffer_size_error(None)
