"""Shared fixtures: a scripted in-memory engine standing in for ONNX Runtime."""
import threading
from typing import List, Optional

import numpy as np
import pytest

from src.ocr.base import OcrEngine

DICTIONARY = ["blank", "h", "i"]


class FakeEngine(OcrEngine):
    """Engine returning canned model outputs; failures injectable per call."""

    def __init__(
        self,
        accelerated: bool = False,
        heatmap_blobs=None,
        recognition_classes=(1, 0, 2),
        init_error: Optional[Exception] = None,
        run_error: Optional[Exception] = None,
        block_event: Optional[threading.Event] = None,
        entered_event: Optional[threading.Event] = None,
    ):
        self.accelerated = accelerated
        self.name = "accelerated" if accelerated else "portable"
        self.heatmap_blobs = heatmap_blobs or []
        self.recognition_classes = recognition_classes
        self.init_error = init_error
        self.run_error = run_error
        self.block_event = block_event
        self.entered_event = entered_event
        self.initialized_with: List[str] = []
        self.terminated = False
        self._ready = False

    def initialize(self, model_variant: str = "server") -> None:
        self.initialized_with.append(model_variant)
        if self.init_error is not None:
            raise self.init_error
        self._ready = True

    def run_detection(self, tensor: np.ndarray) -> np.ndarray:
        if self.entered_event is not None:
            self.entered_event.set()
        if self.block_event is not None:
            self.block_event.wait(timeout=5)
        if self.run_error is not None:
            raise self.run_error
        heatmap = np.zeros((1, 1, tensor.shape[2], tensor.shape[3]), dtype=np.float32)
        for y0, y1, x0, x1 in self.heatmap_blobs:
            heatmap[0, 0, y0:y1, x0:x1] = 0.9
        return heatmap

    def run_recognition(self, tensor: np.ndarray) -> np.ndarray:
        vocab = len(DICTIONARY) + 1
        matrix = np.full((1, len(self.recognition_classes), vocab), np.log(0.05), dtype=np.float32)
        for step, cls in enumerate(self.recognition_classes):
            matrix[0, step, cls] = np.log(0.85)
        return matrix

    def terminate(self) -> None:
        self.terminated = True
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def dictionary(self) -> List[str]:
        return DICTIONARY


@pytest.fixture
def make_engine():
    """Factory for FakeEngine instances."""
    return FakeEngine


@pytest.fixture
def white_image():
    return np.full((64, 128, 3), 255, dtype=np.uint8)
