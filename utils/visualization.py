"""
Visualization utilities for OCR result overlays.
"""
import cv2
import numpy as np
from typing import List, Optional, Tuple
from utils.models import Alignment, MergedBlock, RecognitionSource, TextRegion


# Color mapping for block alignment
ALIGNMENT_COLORS = {
    Alignment.LEFT: (0, 255, 0),      # Green
    Alignment.CENTER: (0, 0, 255),    # Blue
    Alignment.RIGHT: (255, 165, 0),   # Orange
}

# Color mapping for region recognizer
SOURCE_COLORS = {
    RecognitionSource.NEURAL: (128, 128, 128),   # Gray
    RecognitionSource.FALLBACK: (255, 0, 255),   # Magenta
    RecognitionSource.MANUAL: (0, 255, 255),     # Cyan
}

FAILED_COLOR = (255, 0, 0)  # Red


def get_region_color(region: TextRegion) -> Tuple[int, int, int]:
    """
    Get color for a raw region.

    Args:
        region: Region to get color for

    Returns:
        RGB color tuple
    """
    if region.recognition_failed:
        return FAILED_COLOR
    return SOURCE_COLORS.get(region.recognition_source, (128, 128, 128))


def _draw_label(image: np.ndarray, label: str, x: int, y: int, color: Tuple[int, int, int]):
    (text_width, text_height), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
    top = max(0, y - text_height - 4)
    cv2.rectangle(image, (x, top), (x + text_width, top + text_height + 4), color, -1)
    cv2.putText(image, label, (x, top + text_height + 2), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)


def draw_ocr_overlay(
    image: np.ndarray,
    blocks: List[MergedBlock],
    regions: Optional[List[TextRegion]] = None,
    thickness: int = 2,
) -> np.ndarray:
    """
    Draw merged blocks (and optionally raw region polygons) on an image.

    Args:
        image: RGB image to draw on
        blocks: Merged blocks, labeled with their reading-order index
        regions: Raw regions to outline (failed ones in red)
        thickness: Line thickness

    Returns:
        Image with overlays drawn
    """
    result = image.copy()

    for region in regions or []:
        points = np.round(np.asarray(region.polygon, dtype=np.float64)).astype(np.int32)
        cv2.polylines(result, [points], isClosed=True, color=get_region_color(region), thickness=1)

    for index, block in enumerate(blocks):
        b = block.bounds
        x0, y0 = int(b.x), int(b.y)
        x1, y1 = int(round(b.right)), int(round(b.bottom))
        color = ALIGNMENT_COLORS.get(block.alignment, (0, 255, 0))
        cv2.rectangle(result, (x0, y0), (x1, y1), color, thickness)
        _draw_label(result, f"{index} {block.alignment.value}", x0, y0, color)

    return result


def get_block_info(block: MergedBlock) -> str:
    """
    Get formatted block information string.

    Args:
        block: Merged block to describe

    Returns:
        Formatted info string
    """
    b = block.bounds
    info_lines = [
        f"BBox: ({b.x:.0f}, {b.y:.0f}, {b.right:.0f}, {b.bottom:.0f})",
        f"Lines: {len(block.lines)}",
        f"Alignment: {block.alignment.value}",
        f"Font size: {block.font_size:.1f}",
        f"Confidence: {block.confidence:.1f}",
    ]
    text_preview = block.text[:100] + "..." if len(block.text) > 100 else block.text
    info_lines.append(f"Text: {text_preview}")
    return "\n".join(info_lines)
