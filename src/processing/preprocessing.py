"""
Image preprocessing for the detection and recognition models.
"""
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from utils.models import Bounds, Point


# ImageNet normalization used by the PaddleOCR detection model
DETECTION_MEAN = (0.485, 0.456, 0.406)
DETECTION_STD = (0.229, 0.224, 0.225)

RECOGNITION_TARGET_HEIGHT = 48
RECOGNITION_MAX_WIDTH = 1280
RECOGNITION_MIN_WIDTH = 10


@dataclass(frozen=True)
class DetectionFrame:
    """Geometry linking the detection input tensor back to the original image."""
    width: int  # padded input width
    height: int  # padded input height
    original_width: int
    original_height: int
    scale_x: float  # resized -> original
    scale_y: float


@dataclass
class DetectionInput:
    tensor: np.ndarray  # float32 [1, 3, H, W], BGR
    frame: DetectionFrame


def ensure_rgb(image: np.ndarray) -> np.ndarray:
    """
    Convert grayscale/RGBA input to a contiguous RGB uint8 array.

    Args:
        image: Image as numpy array

    Returns:
        RGB image
    """
    if image is None or image.size == 0:
        raise ValueError("Empty image passed to OCR")
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    elif image.ndim == 3 and image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    elif image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Unexpected image shape: {image.shape}")
    if not image.flags["C_CONTIGUOUS"]:
        image = np.ascontiguousarray(image)
    return image


def preprocess_for_detection(image: np.ndarray, max_side_len: int = 1600) -> DetectionInput:
    """
    Prepare an RGB image for the DBNet detection model.

    Steps: downscale only if the longer side exceeds ``max_side_len``, pad
    to a multiple of 32 with white, normalize with ImageNet mean/std and lay
    out as BGR NCHW (PaddleOCR channel order).

    Args:
        image: RGB image
        max_side_len: Longest side after resizing

    Returns:
        DetectionInput with tensor and frame geometry
    """
    original_height, original_width = image.shape[:2]
    ratio = max_side_len / max(original_width, original_height)
    scale = ratio if ratio < 1 else 1.0

    width = max(1, int(round(original_width * scale)))
    height = max(1, int(round(original_height * scale)))
    if (width, height) != (original_width, original_height):
        resized = cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
    else:
        resized = image

    padded_width = int(math.ceil(width / 32) * 32)
    padded_height = int(math.ceil(height / 32) * 32)
    canvas = np.full((padded_height, padded_width, 3), 255, dtype=np.uint8)
    canvas[:height, :width] = resized

    data = canvas.astype(np.float32) / 255.0
    data = (data - np.array(DETECTION_MEAN, dtype=np.float32)) / np.array(DETECTION_STD, dtype=np.float32)
    # RGB -> BGR, HWC -> CHW
    tensor = data[:, :, ::-1].transpose(2, 0, 1)[np.newaxis, ...]

    frame = DetectionFrame(
        width=padded_width,
        height=padded_height,
        original_width=original_width,
        original_height=original_height,
        scale_x=original_width / width,
        scale_y=original_height / height,
    )
    return DetectionInput(tensor=np.ascontiguousarray(tensor, dtype=np.float32), frame=frame)


def polygon_crop_rect(polygon: Sequence[Point]) -> Optional[Tuple[int, int, int, int]]:
    """Integer crop rectangle (x0, y0, x1, y1) of a polygon, or None if degenerate."""
    xs = [p[0] for p in polygon]
    ys = [p[1] for p in polygon]
    x0 = int(math.floor(min(xs)))
    y0 = int(math.floor(min(ys)))
    x1 = int(math.ceil(max(xs)))
    y1 = int(math.ceil(max(ys)))
    if x1 - x0 <= 0 or y1 - y0 <= 0:
        return None
    return x0, y0, x1, y1


def preprocess_for_recognition(image: np.ndarray, polygon: Sequence[Point]) -> Optional[np.ndarray]:
    """
    Crop a detected region and prepare it for the recognition model.

    The crop is resized to a fixed height of 48 keeping the aspect ratio
    (width clamped to [10, 1280]) and normalized to [-1, 1] in BGR order.

    Returns:
        float32 tensor [1, 3, 48, W], or None when the crop is degenerate
    """
    rect = polygon_crop_rect(polygon)
    if rect is None:
        return None
    x0, y0, x1, y1 = rect
    crop_width = x1 - x0
    crop_height = y1 - y0

    img_h, img_w = image.shape[:2]
    # Parts of the crop outside the image stay white
    crop = np.full((crop_height, crop_width, 3), 255, dtype=np.uint8)
    sx0, sy0 = max(0, x0), max(0, y0)
    sx1, sy1 = min(img_w, x1), min(img_h, y1)
    if sx1 <= sx0 or sy1 <= sy0:
        return None
    crop[sy0 - y0:sy1 - y0, sx0 - x0:sx1 - x0] = image[sy0:sy1, sx0:sx1]

    target_height = RECOGNITION_TARGET_HEIGHT
    target_width = int(round(target_height * crop_width / crop_height))
    target_width = max(RECOGNITION_MIN_WIDTH, min(target_width, RECOGNITION_MAX_WIDTH))

    resized = cv2.resize(crop, (target_width, target_height), interpolation=cv2.INTER_LINEAR)
    data = (resized.astype(np.float32) / 255.0 - 0.5) / 0.5
    tensor = data[:, :, ::-1].transpose(2, 0, 1)[np.newaxis, ...]
    return np.ascontiguousarray(tensor, dtype=np.float32)


def crop_with_padding(image: np.ndarray, bounds: Bounds, padding: int = 5) -> Optional[np.ndarray]:
    """Crop ``bounds`` plus padding, clipped to the image. None if nothing remains."""
    img_h, img_w = image.shape[:2]
    x0 = max(0, int(math.floor(bounds.x - padding)))
    y0 = max(0, int(math.floor(bounds.y - padding)))
    x1 = min(img_w, int(math.ceil(bounds.right + padding)))
    y1 = min(img_h, int(math.ceil(bounds.bottom + padding)))
    if x1 <= x0 or y1 <= y0:
        return None
    return image[y0:y1, x0:x1]
