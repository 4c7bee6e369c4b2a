"""
ONNX Runtime engines for the PaddleOCR v5 detection and recognition models.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import onnxruntime as ort

from src.ocr.base import OcrEngine
from src.ocr.errors import (
    EngineInitializationError,
    EngineTerminatedError,
    GpuBufferSizeError,
    GpuOutOfMemoryError,
)
from src.ocr.recognition import load_dictionary
from src.processing.gpu_utils import (
    PORTABLE_PROVIDER,
    GPUUtils,
    is_gpu_buffer_size_error,
    is_gpu_memory_error,
)
from utils.config import Config

logger = logging.getLogger(__name__)


class DeviceTensorScope:
    """
    Scope owning the device-side buffers of one session run.

    Inputs are bound from host arrays, outputs are allocated on the device
    and copied back to host memory; bindings are cleared on every exit path
    so device memory does not accumulate across calls.

    Usage:
        with DeviceTensorScope(session, "cuda") as scope:
            outputs = scope.run({"x": tensor})
    """

    def __init__(self, session: ort.InferenceSession, device: str = "cpu"):
        self.session = session
        self.device = device
        self.binding = None

    def __enter__(self) -> "DeviceTensorScope":
        self.binding = self.session.io_binding()
        return self

    def run(self, inputs: Dict[str, np.ndarray]) -> List[np.ndarray]:
        for name, value in inputs.items():
            self.binding.bind_cpu_input(name, np.ascontiguousarray(value))
        for output in self.session.get_outputs():
            self.binding.bind_output(output.name, self.device)
        self.session.run_with_iobinding(self.binding)
        return self.binding.copy_outputs_to_cpu()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.binding is not None:
            self.binding.clear_binding_inputs()
            self.binding.clear_binding_outputs()
            self.binding = None
        return False


class OnnxEngine(OcrEngine):
    """Common session handling for the ONNX Runtime backends."""

    name = "onnx"
    accelerated = False

    def __init__(self, model_paths: Optional[Dict[str, Path]] = None):
        """
        Args:
            model_paths: Override for detection/recognition/dictionary paths
                (default: resolved from Config for the model variant)
        """
        self._model_paths = model_paths
        self._variant: Optional[str] = None
        self._det_session: Optional[ort.InferenceSession] = None
        self._rec_session: Optional[ort.InferenceSession] = None
        self._dictionary: List[str] = []
        self._terminated = False

    # -- configuration -----------------------------------------------------

    def providers(self) -> List[str]:
        return [PORTABLE_PROVIDER]

    def session_options(self) -> ort.SessionOptions:
        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        if Config.ORT_INTRA_OP_THREADS > 0:
            options.intra_op_num_threads = Config.ORT_INTRA_OP_THREADS
        return options

    # -- lifecycle -----------------------------------------------------------

    def initialize(self, model_variant: str = "server") -> None:
        paths = self._model_paths or Config.get_model_paths(model_variant)
        self._terminated = False
        try:
            for key in ("detection", "recognition", "dictionary"):
                if not Path(paths[key]).exists():
                    raise FileNotFoundError(f"{key} file not found: {paths[key]}")

            options = self.session_options()
            providers = self.providers()
            self._det_session = ort.InferenceSession(
                str(paths["detection"]), sess_options=options, providers=providers
            )
            self._rec_session = ort.InferenceSession(
                str(paths["recognition"]), sess_options=options, providers=providers
            )
            self._dictionary = load_dictionary(paths["dictionary"])
        except Exception as e:
            self._release()
            raise self._classify_init_error(e, model_variant) from e

        self._variant = model_variant
        logger.info(
            "%s engine ready (%s models, providers: %s, %d symbols)",
            self.name, model_variant, ", ".join(self._det_session.get_providers()), len(self._dictionary),
        )

    def terminate(self) -> None:
        if self._det_session is not None or self._rec_session is not None:
            logger.info("Terminating %s engine", self.name)
        self._release()
        self._terminated = True

    def _release(self):
        self._det_session = None
        self._rec_session = None
        self._dictionary = []
        self._variant = None

    @property
    def is_ready(self) -> bool:
        return self._det_session is not None and self._rec_session is not None

    @property
    def dictionary(self) -> List[str]:
        return self._dictionary

    @property
    def model_variant(self) -> Optional[str]:
        return self._variant

    # -- inference -----------------------------------------------------------

    def run_detection(self, tensor: np.ndarray) -> np.ndarray:
        return self._run(self._det_session, tensor)

    def run_recognition(self, tensor: np.ndarray) -> np.ndarray:
        return self._run(self._rec_session, tensor)

    def _run(self, session: Optional[ort.InferenceSession], tensor: np.ndarray) -> np.ndarray:
        if session is None:
            if self._terminated:
                raise EngineTerminatedError(f"{self.name} engine was terminated")
            raise EngineInitializationError(f"{self.name} engine is not initialized")
        input_name = session.get_inputs()[0].name
        return session.run(None, {input_name: tensor})[0]

    # -- errors --------------------------------------------------------------

    def _classify_init_error(self, error: Exception, model_variant: str) -> Exception:
        message = str(error)
        if is_gpu_buffer_size_error(message):
            return GpuBufferSizeError(message, model_variant)
        if self.accelerated and is_gpu_memory_error(message):
            return GpuOutOfMemoryError(message)
        return EngineInitializationError(f"Failed to initialize {self.name} engine: {message}")


class PortableOnnxEngine(OnnxEngine):
    """CPU execution provider; available everywhere."""

    name = "portable"
    accelerated = False


class AcceleratedOnnxEngine(OnnxEngine):
    """Device execution provider (CUDA, ROCm, DirectML, CoreML) with CPU fallback for unsupported ops."""

    name = "accelerated"
    accelerated = True

    def __init__(self, model_paths: Optional[Dict[str, Path]] = None, provider: Optional[str] = None):
        super().__init__(model_paths)
        self.provider = provider or GPUUtils.probe()

    def providers(self) -> List[str]:
        if not self.provider:
            raise EngineInitializationError("No accelerated execution provider available")
        return [self.provider, PORTABLE_PROVIDER]

    @property
    def output_device(self) -> str:
        # Other providers copy results through host memory
        return "cuda" if self.provider == "CUDAExecutionProvider" else "cpu"

    def _run(self, session: Optional[ort.InferenceSession], tensor: np.ndarray) -> np.ndarray:
        if session is None:
            return super()._run(session, tensor)
        input_name = session.get_inputs()[0].name
        try:
            with DeviceTensorScope(session, self.output_device) as scope:
                return scope.run({input_name: tensor})[0]
        except Exception as e:
            message = str(e)
            if is_gpu_memory_error(message) or is_gpu_buffer_size_error(message):
                raise GpuOutOfMemoryError(message) from e
            raise
