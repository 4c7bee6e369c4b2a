"""
Detection post-processing: DBNet probability map -> scored text boxes.
"""
import logging
from typing import List, Optional

import cv2
import numpy as np

from src.processing.preprocessing import DetectionFrame
from utils.models import DetectedBox
from utils.settings import OcrSettings

logger = logging.getLogger(__name__)

# Components with fewer raw (pre-dilation) pixels than this are noise
MIN_RAW_PIXELS = 10

_HORIZONTAL_KERNEL = np.ones((1, 3), dtype=np.uint8)
_VERTICAL_KERNEL = np.ones((3, 1), dtype=np.uint8)


def squeeze_heatmap(heatmap) -> np.ndarray:
    """Reduce [N, C, H, W] / [C, H, W] model output to a 2-D float32 map (first item)."""
    data = np.asarray(heatmap, dtype=np.float32)
    while data.ndim > 2:
        data = data[0]
    if data.ndim != 2:
        raise ValueError(f"Detection output must be at least 2-D, got shape {np.shape(heatmap)}")
    return data


def dilate_mask(mask: np.ndarray, iterations_h: int, iterations_v: int) -> np.ndarray:
    """
    Asymmetric dilation: bridge glyphs along the text line, keep lines apart.

    Args:
        mask: Binary uint8 mask
        iterations_h: Passes of a 1x3 (horizontal) kernel
        iterations_v: Passes of a 3x1 (vertical) kernel

    Returns:
        Dilated mask
    """
    if iterations_h > 0:
        mask = cv2.dilate(mask, _HORIZONTAL_KERNEL, iterations=iterations_h)
    if iterations_v > 0:
        mask = cv2.dilate(mask, _VERTICAL_KERNEL, iterations=iterations_v)
    return mask


def postprocess_detection(
    heatmap,
    frame: DetectionFrame,
    settings: Optional[OcrSettings] = None,
) -> List[DetectedBox]:
    """
    Convert a text-probability map into scored polygon boxes.

    1. binarize at ``detection_threshold``
    2. dilate (horizontal then vertical) to join characters into lines
    3. label connected components
    4. bounding box and score from the component's raw (undilated) pixels
    5. drop components below ``min_area`` or with too few raw pixels
    6. unclip the box by ``area * unclip_ratio / perimeter``
    7. drop boxes scoring below ``box_threshold``
    8. scale to original image coordinates and clip

    Args:
        heatmap: Probability map (2-D, or batched model output)
        frame: Geometry of the detection input
        settings: OCR settings (defaults if None)

    Returns:
        List of DetectedBox in component label order; empty if no text
    """
    settings = settings or OcrSettings()
    prob = squeeze_heatmap(heatmap)
    map_h, map_w = prob.shape

    # Model output may be smaller than the padded input
    scale_x = frame.scale_x * (frame.width / map_w)
    scale_y = frame.scale_y * (frame.height / map_h)

    raw = (prob > settings.detection_threshold).astype(np.uint8)
    if not raw.any():
        logger.debug("Detection: no pixels above threshold %.2f", settings.detection_threshold)
        return []

    dilated = dilate_mask(raw, settings.dilation_h, settings.dilation_v)
    num_labels, labels = cv2.connectedComponents(dilated, connectivity=settings.connectivity)

    # Per-component statistics over raw pixels only
    raw_mask = raw.astype(bool)
    ys, xs = np.nonzero(raw_mask)
    raw_labels = labels[ys, xs]
    counts = np.bincount(raw_labels, minlength=num_labels)
    sums = np.bincount(raw_labels, weights=prob[ys, xs].astype(np.float64), minlength=num_labels)

    min_x = np.full(num_labels, map_w, dtype=np.int64)
    min_y = np.full(num_labels, map_h, dtype=np.int64)
    max_x = np.full(num_labels, -1, dtype=np.int64)
    max_y = np.full(num_labels, -1, dtype=np.int64)
    np.minimum.at(min_x, raw_labels, xs)
    np.minimum.at(min_y, raw_labels, ys)
    np.maximum.at(max_x, raw_labels, xs)
    np.maximum.at(max_y, raw_labels, ys)

    boxes: List[DetectedBox] = []
    for label in range(1, num_labels):
        count = int(counts[label])
        if count < MIN_RAW_PIXELS:
            continue

        box_w = int(max_x[label] - min_x[label] + 1)
        box_h = int(max_y[label] - min_y[label] + 1)
        area = box_w * box_h
        if area < settings.min_area:
            continue

        score = float(sums[label] / count)
        if score < settings.box_threshold:
            continue

        offset = area * settings.unclip_ratio / (2 * (box_w + box_h))
        x0 = max(0.0, min_x[label] - offset)
        y0 = max(0.0, min_y[label] - offset)
        x1 = min(float(map_w), max_x[label] + 1 + offset)
        y1 = min(float(map_h), max_y[label] + 1 + offset)

        x0 = _clip(x0 * scale_x, frame.original_width)
        x1 = _clip(x1 * scale_x, frame.original_width)
        y0 = _clip(y0 * scale_y, frame.original_height)
        y1 = _clip(y1 * scale_y, frame.original_height)

        boxes.append(DetectedBox(
            polygon=((x0, y0), (x1, y0), (x1, y1), (x0, y1)),
            score=score,
        ))

    logger.debug("Detection: %d components, %d boxes kept", num_labels - 1, len(boxes))
    return boxes


def _clip(value: float, limit: float) -> float:
    return float(max(0.0, min(float(limit), value)))
