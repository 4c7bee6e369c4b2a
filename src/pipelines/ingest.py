"""
Document ingestion: image files and PDF pages as RGB arrays.
"""
import logging
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Union

import fitz  # PyMuPDF
import numpy as np
from PIL import Image

from src.processing.preprocessing import ensure_rgb
from utils.config import Config
from utils.models import PageImage

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}


def pdf_to_images_pymupdf(pdf_path: str, dpi: int = 200, pages: Optional[List[int]] = None) -> List[np.ndarray]:
    """
    Render PDF pages with PyMuPDF (honors the /Rotate metadata).

    Args:
        pdf_path: Path to PDF file
        dpi: Resolution in DPI
        pages: 0-based page indices to render (default: all)

    Returns:
        List of page images as RGB numpy arrays
    """
    zoom = dpi / 72.0  # PyMuPDF uses 72 DPI as base
    mat = fitz.Matrix(zoom, zoom)
    images = []

    with fitz.open(pdf_path) as doc:
        indices = pages if pages is not None else range(doc.page_count)
        for page_id in indices:
            pix = doc[page_id].get_pixmap(matrix=mat)
            img = Image.open(BytesIO(pix.tobytes("ppm")))
            images.append(np.array(img.convert("RGB")))

    return images


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """
    Load image from file.

    Args:
        image_path: Path to image file

    Returns:
        Image as RGB numpy array
    """
    with Image.open(image_path) as img:
        return np.array(img.convert("RGB"))


def ingest_document(
    file_path: Union[str, Path],
    dpi: Optional[int] = None,
    pages: Optional[List[int]] = None,
) -> List[PageImage]:
    """
    Ingest document (PDF or image) and return list of PageImage objects.

    Args:
        file_path: Path to document file
        dpi: Resolution for PDF rendering (default: Config.DPI)
        pages: 0-based PDF pages to render (default: all)

    Returns:
        List of PageImage objects
    """
    if dpi is None:
        dpi = Config.DPI

    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix == ".pdf":
        images = pdf_to_images_pymupdf(str(file_path), dpi=dpi, pages=pages)
        page_ids = list(pages) if pages is not None else list(range(len(images)))
    elif suffix in IMAGE_SUFFIXES:
        images = [load_image(file_path)]
        page_ids = [0]
    else:
        raise ValueError(f"Unsupported file format: {file_path.suffix}")

    result = []
    for page_id, image in zip(page_ids, images):
        image = ensure_rgb(image)
        height, width = image.shape[:2]
        result.append(PageImage(
            image=image,
            page_id=page_id,
            width=width,
            height=height,
            dpi=dpi,
            source=str(file_path),
        ))

    logger.info("Ingested %s: %d page(s)", file_path.name, len(result))
    return result
