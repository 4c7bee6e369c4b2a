"""
Tesseract OCR fallback for regions the neural recognizer failed on.
"""
import dataclasses
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytesseract
from PIL import Image

from src.processing.postprocessing import join_tesseract_lines
from src.processing.preprocessing import crop_with_padding
from utils.config import Config
from utils.models import RecognitionSource, TextRegion

logger = logging.getLogger(__name__)

FALLBACK_PADDING = 5

_CONFUSABLE = re.compile(r"[0O1lI|]")


def get_min_tesseract_confidence(text: str) -> int:
    """
    Minimum Tesseract confidence required to accept ``text``.

    Short strings are easy to hallucinate, so they need more confidence;
    numeric-majority strings and short strings with confusable glyphs
    (0/O, 1/l/I/|) get a further increase.

    Args:
        text: Candidate text

    Returns:
        Threshold in [35, 80]
    """
    length = len(text)
    if length <= 3:
        threshold = 65
    elif length <= 8:
        threshold = 55
    elif length <= 15:
        threshold = 45
    else:
        threshold = 35

    if length > 0:
        digits = sum(1 for ch in text if ch.isdigit())
        if digits / length > 0.5:
            threshold += 10
        if length <= 8 and _CONFUSABLE.search(text):
            threshold += 5

    return min(threshold, 80)


class TesseractFallback:
    """Best-effort re-recognition of failed regions with Tesseract."""

    def __init__(
        self,
        lang: Optional[str] = None,
        psm: Optional[int] = None,
        padding: int = FALLBACK_PADDING,
        enabled: Optional[bool] = None,
    ):
        """
        Initialize the fallback recognizer.

        Args:
            lang: Tesseract language string (default: Config.TESSERACT_LANG)
            psm: Page segmentation mode (default: Config.TESSERACT_PSM)
            padding: Pixels added around the region before cropping
            enabled: Switch the fallback on/off (default: Config.FALLBACK_ENABLED)
        """
        self.lang = lang or Config.TESSERACT_LANG
        self.psm = psm if psm is not None else Config.TESSERACT_PSM
        self.padding = padding
        self.enabled = Config.FALLBACK_ENABLED if enabled is None else enabled
        if Config.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = Config.TESSERACT_CMD

    def recognize(self, image: np.ndarray) -> Tuple[str, float]:
        """
        Run Tesseract on a crop.

        Args:
            image: RGB crop as numpy array

        Returns:
            Tuple (text, mean word confidence 0-100)
        """
        pil_image = Image.fromarray(image).convert("RGB")
        data = pytesseract.image_to_data(
            pil_image,
            lang=self.lang,
            config=f"--psm {self.psm}",
            output_type=pytesseract.Output.DICT,
        )

        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences: List[float] = []
        for i in range(len(data["text"])):
            word = str(data["text"][i]).strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)
            conf = float(data["conf"][i])
            if conf >= 0:
                confidences.append(conf)

        text = join_tesseract_lines(lines[key] for key in sorted(lines))
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return text, confidence

    def resolve(self, image: np.ndarray, region: TextRegion) -> TextRegion:
        """
        Try to recover one failed region.

        Returns:
            A new region with fallback text if accepted, otherwise ``region``
        """
        if not region.recognition_failed or not self.enabled:
            return region

        crop = crop_with_padding(image, region.bounds, self.padding)
        if crop is None:
            return region

        try:
            text, confidence = self.recognize(crop)
        except pytesseract.TesseractNotFoundError as e:
            logger.warning("Tesseract not installed, disabling fallback: %s", e)
            self.enabled = False
            return region
        except (pytesseract.TesseractError, RuntimeError, ValueError) as e:
            logger.warning("Tesseract fallback failed for region at (%.0f, %.0f): %s",
                           region.bounds.x, region.bounds.y, e)
            return region

        threshold = get_min_tesseract_confidence(text)
        if not text or confidence < threshold:
            logger.debug("Fallback rejected %r (conf %.1f < %d)", text, confidence, threshold)
            return region

        return dataclasses.replace(
            region,
            text=text,
            confidence=float(round(confidence)),
            recognition_failed=False,
            failure_reason=None,
            recognition_source=RecognitionSource.FALLBACK,
        )

    def apply(
        self,
        image: np.ndarray,
        regions: Sequence[TextRegion],
        should_continue: Optional[Callable[[], None]] = None,
    ) -> List[TextRegion]:
        """
        Resolve all failed regions.

        Args:
            image: Original RGB image
            regions: Regions from neural recognition
            should_continue: Optional hook called before each Tesseract run
                (raises to abort)

        Returns:
            New list, same order and length as ``regions``
        """
        resolved: List[TextRegion] = []
        attempted = recovered = 0
        for region in regions:
            if region.recognition_failed and self.enabled:
                if should_continue is not None:
                    should_continue()
                attempted += 1
                new_region = self.resolve(image, region)
                if not new_region.recognition_failed:
                    recovered += 1
                resolved.append(new_region)
            else:
                resolved.append(region)
        if attempted:
            logger.info("Tesseract fallback recovered %d/%d failed regions", recovered, attempted)
        return resolved
