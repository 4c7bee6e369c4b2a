"""
OCR pipeline: detection -> recognition -> Tesseract fallback -> layout merge.
"""
import logging
import threading
import time
from typing import Any, List, Optional, Sequence

import cv2
import numpy as np

from src.ocr.base import OcrEngine
from src.ocr.detection import postprocess_detection
from src.ocr.errors import OcrCancelledError
from src.ocr.recognition import decode_ctc
from src.ocr.tesseract_ocr import TesseractFallback
from src.pipelines.layout import merge_text_regions
from src.processing.postprocessing import is_blank
from src.processing.preprocessing import (
    ensure_rgb,
    preprocess_for_detection,
    preprocess_for_recognition,
)
from utils.models import (
    DetectedBox,
    FailureReason,
    OcrResult,
    SeparatorLine,
    TextRegion,
)
from utils.settings import OcrSettings

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked between pipeline stages."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = ""):
        if self._event.is_set():
            raise OcrCancelledError(f"OCR cancelled{' after ' + stage if stage else ''}")


class OCRPipeline:
    """Per-image OCR run on a given engine."""

    def __init__(self, fallback: Optional[TesseractFallback] = None, use_fallback: bool = True):
        """
        Initialize OCR pipeline.

        Args:
            fallback: Tesseract fallback (created lazily if None)
            use_fallback: Re-recognize failed regions with Tesseract
        """
        self.use_fallback = use_fallback
        self._fallback = fallback

    @property
    def fallback(self) -> TesseractFallback:
        if self._fallback is None:
            self._fallback = TesseractFallback()
        return self._fallback

    @staticmethod
    def _extract_page_image(page_entry: Any) -> np.ndarray:
        """Return the image array for a page entry (PageImage or ndarray)."""
        image = getattr(page_entry, "image", None)
        if image is None:
            image = page_entry
        if not hasattr(image, "shape"):
            raise ValueError("Expected an image array or PageImage")
        return ensure_rgb(image)

    def detect(self, engine: OcrEngine, image: np.ndarray, settings: OcrSettings) -> List[DetectedBox]:
        """
        Find text boxes in an RGB image.

        Args:
            engine: Initialized engine
            image: RGB image
            settings: OCR settings

        Returns:
            Detected boxes in original image coordinates
        """
        det_input = preprocess_for_detection(image, settings.max_side_len)
        heatmap = engine.run_detection(det_input.tensor)
        boxes = postprocess_detection(heatmap, det_input.frame, settings)
        # Host copy of the map is not needed past this point
        del heatmap
        return boxes

    def recognize_box(self, engine: OcrEngine, image: np.ndarray, box: DetectedBox) -> TextRegion:
        """
        Recognize one detected box.

        Failures local to the region are recorded on the returned region;
        engine errors propagate.
        """
        bounds = box.bounds
        failed = dict(
            bounds=bounds,
            polygon=box.polygon,
            confidence=0.0,
            detection_score=box.score,
            recognition_failed=True,
        )

        try:
            tensor = preprocess_for_recognition(image, box.polygon)
        except (cv2.error, ValueError) as e:
            logger.warning("Preprocessing failed for region at (%.0f, %.0f): %s", bounds.x, bounds.y, e)
            return TextRegion(failure_reason=FailureReason.PREPROCESSING_FAILED, **failed)
        if tensor is None:
            return TextRegion(failure_reason=FailureReason.INVALID_CROP, **failed)

        output = engine.run_recognition(tensor)
        decoded = decode_ctc(output, engine.dictionary)
        del output

        if is_blank(decoded.text):
            failed["confidence"] = decoded.confidence
            return TextRegion(text=decoded.text, failure_reason=FailureReason.EMPTY_TEXT, **failed)

        return TextRegion(
            bounds=bounds,
            polygon=box.polygon,
            text=decoded.text,
            confidence=decoded.confidence,
            detection_score=box.score,
        )

    def run(
        self,
        engine: OcrEngine,
        image: Any,
        settings: Optional[OcrSettings] = None,
        separators: Optional[Sequence[SeparatorLine]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OcrResult:
        """
        Run the full OCR pipeline on one image.

        Args:
            engine: Initialized engine
            image: RGB array or PageImage
            settings: Per-call settings
            separators: User-drawn separator lines for layout merging
            cancel_token: Checked after detection, after each region and after fallback

        Returns:
            OcrResult with merged blocks and raw regions
        """
        settings = settings or OcrSettings()
        token = cancel_token or CancellationToken()
        image = self._extract_page_image(image)
        start = time.time()

        boxes = self.detect(engine, image, settings)
        token.raise_if_cancelled("detection")
        logger.debug("Detected %d text boxes", len(boxes))

        regions: List[TextRegion] = []
        for box in boxes:
            regions.append(self.recognize_box(engine, image, box))
            token.raise_if_cancelled("recognition")

        failed = sum(1 for r in regions if r.recognition_failed)
        if failed and self.use_fallback:
            regions = self.fallback.apply(
                image, regions, should_continue=lambda: token.raise_if_cancelled("recognition")
            )
            token.raise_if_cancelled("fallback")

        blocks = merge_text_regions(regions, separators, settings)
        logger.info(
            "OCR on %s engine: %d regions (%d failed before fallback), %d blocks in %.2fs",
            engine.name, len(regions), failed, len(blocks), time.time() - start,
        )
        return OcrResult(merged_blocks=blocks, raw_regions=regions, backend=engine.name)
