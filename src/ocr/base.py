"""
Engine interface shared by the accelerated and portable inference backends.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np


class OcrEngine(ABC):
    """
    Inference backend for the detection and recognition models.

    Engines run the models only. Pre/post-processing, fallback and layout
    live in the pipeline so every backend produces identical results for
    identical model outputs.
    """

    #: Short backend identifier reported on results
    name: str = "engine"
    #: True if the engine runs on a device execution provider
    accelerated: bool = False

    @abstractmethod
    def initialize(self, model_variant: str = "server") -> None:
        """
        Load the detection/recognition models and the dictionary.

        Raises:
            GpuBufferSizeError: model exceeds the device buffer ceiling
            GpuOutOfMemoryError: device memory exhausted while loading
            EngineInitializationError: any other loading failure
        """
        raise NotImplementedError

    @abstractmethod
    def run_detection(self, tensor: np.ndarray) -> np.ndarray:
        """Run the detection model on a [1, 3, H, W] tensor; returns the host probability map."""
        raise NotImplementedError

    @abstractmethod
    def run_recognition(self, tensor: np.ndarray) -> np.ndarray:
        """Run the recognition model on a [1, 3, 48, W] tensor; returns host [1, T, vocab] scores."""
        raise NotImplementedError

    @abstractmethod
    def terminate(self) -> None:
        """Release sessions and device memory. Safe to call more than once."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        raise NotImplementedError

    @property
    @abstractmethod
    def dictionary(self) -> List[str]:
        """Recognition symbols with "blank" at index 0."""
        raise NotImplementedError

    @property
    def model_variant(self) -> Optional[str]:
        return None
