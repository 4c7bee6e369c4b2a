"""
Text mask rasterization for downstream inpainting.
"""
from typing import Sequence

import cv2
import numpy as np

from utils.models import TextRegion


def generate_mask(width: int, height: int, regions: Sequence[TextRegion], padding: float = 1) -> np.ndarray:
    """
    Rasterize region outlines into a binary mask.

    Each polygon is filled and its outline stroked with thickness
    ``2 * padding`` (round joins and caps), so neighbouring glyph padding
    overlaps cleanly. Regions without a polygon use their bounds grown by
    ``padding``.

    Args:
        width: Mask width
        height: Mask height
        regions: Regions to rasterize
        padding: Pixel padding around each region

    Returns:
        uint8 array [height, width], 255 where text is
    """
    mask = np.zeros((int(height), int(width)), dtype=np.uint8)
    thickness = int(round(2 * padding))

    for region in regions:
        if region.polygon and len(region.polygon) >= 3:
            points = np.round(np.asarray(region.polygon, dtype=np.float64)).astype(np.int32)
            cv2.fillPoly(mask, [points], 255)
            if thickness > 0:
                # Thick cv2 lines are drawn with round caps
                cv2.polylines(mask, [points], isClosed=True, color=255, thickness=thickness, lineType=cv2.LINE_8)
        else:
            b = region.bounds
            x0 = int(np.floor(b.x - padding))
            y0 = int(np.floor(b.y - padding))
            x1 = int(np.ceil(b.right + padding))
            y1 = int(np.ceil(b.bottom + padding))
            cv2.rectangle(mask, (x0, y0), (x1 - 1, y1 - 1), 255, thickness=cv2.FILLED)

    return mask
