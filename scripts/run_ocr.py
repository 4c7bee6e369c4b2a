"""
Run OCR + layout reconstruction on an image or PDF and write the result as JSON.

Usage:
    python scripts/run_ocr.py --input page.png --output out.json
    python scripts/run_ocr.py --input doc.pdf --output out.json --mask-dir masks --engine portable
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.ocr.errors import GpuBufferSizeError, OcrError  # noqa: E402
from src.pipelines.engine import EngineSelector  # noqa: E402
from src.pipelines.ingest import ingest_document  # noqa: E402
from src.processing.mask import generate_mask  # noqa: E402
from utils.config import Config  # noqa: E402
from utils.models import SeparatorLine  # noqa: E402
from utils.settings import OcrSettings  # noqa: E402
from utils.visualization import draw_ocr_overlay, get_block_info  # noqa: E402

logger = logging.getLogger("run_ocr")


def load_separators(path: str | None) -> list:
    """Read separator lines from a JSON list of {start, end} objects."""
    if not path:
        return []
    data = json.loads(Path(path).read_text())
    return [SeparatorLine.from_dict(item) for item in data]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="OCR with layout reconstruction")
    parser.add_argument("--input", required=True, help="Path to image or PDF")
    parser.add_argument("--output", required=True, help="Where to write the JSON result")
    parser.add_argument("--engine", choices=["auto", "accelerated", "portable"], default=None,
                        help="Backend preference (default: OCR_ENGINE)")
    parser.add_argument("--model-variant", choices=["server", "mobile"], default=None)
    parser.add_argument("--dpi", type=int, default=None, help="PDF render resolution")
    parser.add_argument("--settings", help="JSON file with OCR settings")
    parser.add_argument("--separators", help="JSON file with separator lines")
    parser.add_argument("--mask-dir", help="Write a text mask PNG per page")
    parser.add_argument("--mask-padding", type=float, default=1.0)
    parser.add_argument("--overlay-dir", help="Write a debug overlay PNG per page")
    parser.add_argument("--no-fallback", action="store_true", help="Disable the Tesseract fallback")
    parser.add_argument("--log-level", default=Config.LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format='%(asctime)s [%(levelname)s] %(message)s')

    overrides = json.loads(Path(args.settings).read_text()) if args.settings else {}
    if args.model_variant:
        overrides["model_variant"] = args.model_variant
    settings = OcrSettings.from_dict(overrides)
    separators = load_separators(args.separators)

    selector = EngineSelector(preference=args.engine, model_variant=settings.model_variant)
    selector.pipeline.use_fallback = not args.no_fallback

    pages_out = []
    try:
        for page in ingest_document(args.input, dpi=args.dpi):
            try:
                result = selector.recognize(page, settings, separators)
            except GpuBufferSizeError as e:
                if not e.suggested_variant:
                    raise
                logger.warning("%s; retrying with %s models", e, e.suggested_variant)
                settings = settings.merged({"model_variant": e.suggested_variant})
                result = selector.recognize(page, settings, separators)

            if result.fallback_occurred:
                logger.warning("Switched to the portable engine after running out of device memory")

            if logger.isEnabledFor(logging.DEBUG):
                for block in result.merged_blocks:
                    logger.debug("Page %d block:\n%s", page.page_id, get_block_info(block))

            page_out = result.to_dict()
            page_out["page"] = page.page_id
            pages_out.append(page_out)

            stem = f"{Path(args.input).stem}_p{page.page_id}"
            if args.mask_dir:
                mask = generate_mask(page.width, page.height, result.raw_regions, args.mask_padding)
                Path(args.mask_dir).mkdir(parents=True, exist_ok=True)
                Image.fromarray(mask).save(Path(args.mask_dir) / f"{stem}_mask.png")
            if args.overlay_dir:
                overlay = draw_ocr_overlay(page.image, result.merged_blocks, result.raw_regions)
                Path(args.overlay_dir).mkdir(parents=True, exist_ok=True)
                Image.fromarray(overlay).save(Path(args.overlay_dir) / f"{stem}_overlay.png")
    except OcrError as e:
        logger.error("OCR failed (%s): %s", e.kind.value, e)
        return 1
    finally:
        selector.terminate()

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps({"source": args.input, "pages": pages_out}, indent=2, ensure_ascii=False))
    logger.info("Saved OCR result for %d page(s) to %s", len(pages_out), out_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
