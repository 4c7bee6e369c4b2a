"""
Configuration management for the OCR engine.
"""
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


class Config:
    """Configuration class for engine settings."""

    # Model files (PaddleOCR v5 exported to ONNX)
    MODEL_DIR: Path = Path(os.getenv("MODEL_DIR", "models/onnx"))
    OCR_MODEL_VARIANT: str = os.getenv("OCR_MODEL_VARIANT", "server").lower()

    # Engine preference: auto | accelerated | portable
    OCR_ENGINE: str = os.getenv("OCR_ENGINE", "auto").lower()
    ORT_INTRA_OP_THREADS: int = int(os.getenv("ORT_INTRA_OP_THREADS", "0"))

    # Tesseract fallback
    FALLBACK_ENABLED: bool = os.getenv("FALLBACK_ENABLED", "true").lower() == "true"
    TESSERACT_LANG: str = os.getenv("TESSERACT_LANG", "eng")
    TESSERACT_PSM: int = int(os.getenv("TESSERACT_PSM", "6"))
    TESSERACT_CMD: Optional[str] = os.getenv("TESSERACT_CMD")

    # Ingestion
    DPI: int = int(os.getenv("DPI", "200"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Project root directory
    PROJECT_ROOT: Path = Path(__file__).parent.parent

    MODEL_FILES = {
        "server": {
            "detection": "PP-OCRv5_server_det.onnx",
            "recognition": "PP-OCRv5_server_rec.onnx",
        },
        "mobile": {
            "detection": "PP-OCRv5_mobile_det.onnx",
            "recognition": "PP-OCRv5_mobile_rec.onnx",
        },
    }
    DICTIONARY_FILE: str = "ppocrv5_dict.txt"

    @classmethod
    def get_model_paths(cls, variant: Optional[str] = None) -> dict:
        """Resolve detection/recognition/dictionary paths for a model variant."""
        variant = (variant or cls.OCR_MODEL_VARIANT or "server").lower()
        files = cls.MODEL_FILES.get(variant, cls.MODEL_FILES["server"])
        model_dir = cls.MODEL_DIR
        if not model_dir.is_absolute():
            model_dir = cls.PROJECT_ROOT / model_dir
        return {
            "detection": model_dir / files["detection"],
            "recognition": model_dir / files["recognition"],
            "dictionary": model_dir / cls.DICTIONARY_FILE,
        }
