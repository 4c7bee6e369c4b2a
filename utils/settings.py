"""
Per-call OCR settings with validation rules.

Defaults are empirically tuned values, kept as tunable parameters.
"""
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Optional

from utils.config import Config


MODEL_VARIANTS = ("server", "mobile")

# Validation rules: (min, max, step)
PARAM_RULES: Dict[str, tuple] = {
    "max_side_len": (960, 4096, 32),
    "detection_threshold": (0.1, 0.9, 0.05),
    "box_threshold": (0.1, 0.9, 0.05),
    "min_area": (1, 10000, 1),
    "unclip_ratio": (1.0, 3.0, 0.1),
    "dilation_h": (0, 10, 1),
    "dilation_v": (0, 10, 1),
    "column_gap_ratio": (0.5, 5.0, 0.1),
    "paragraph_gap_ratio": (0.1, 2.0, 0.05),
    "same_line_height_ratio": (0.3, 1.5, 0.05),
    "font_size_diff_ratio": (1.1, 3.0, 0.1),
    "max_depth": (1, 50, 1),
}

# camelCase keys as used by the settings payload of the frontend
KEY_ALIASES = {
    "maxSideLen": "max_side_len",
    "detectionThreshold": "detection_threshold",
    "threshold": "detection_threshold",
    "boxThreshold": "box_threshold",
    "minArea": "min_area",
    "unclipRatio": "unclip_ratio",
    "dilationH": "dilation_h",
    "dilationV": "dilation_v",
    "connectivity": "connectivity",
    "columnGapRatio": "column_gap_ratio",
    "verticalCutThreshold": "column_gap_ratio",
    "paragraphGapRatio": "paragraph_gap_ratio",
    "horizontalCutThreshold": "paragraph_gap_ratio",
    "sameLineHeightRatio": "same_line_height_ratio",
    "sameLineThreshold": "same_line_height_ratio",
    "fontSizeDiffRatio": "font_size_diff_ratio",
    "fontSizeDiffThreshold": "font_size_diff_ratio",
    "maxDepth": "max_depth",
    "modelVariant": "model_variant",
    "modelSize": "model_variant",
}


def validate_param(key: str, value: Any) -> Any:
    """Clamp a numeric parameter to its range and round it to its step."""
    rules = PARAM_RULES.get(key)
    if rules is None:
        return value
    low, high, step = rules
    clamped = max(low, min(high, float(value)))
    if isinstance(step, int):
        return int(round(clamped / step) * step)
    decimals = len(str(step).split(".")[1])
    return round(round(clamped / step) * step, decimals)


def validate_model_variant(value: Optional[str]) -> str:
    if value and str(value).lower() in MODEL_VARIANTS:
        return str(value).lower()
    return "server"


@dataclass(frozen=True)
class OcrSettings:
    """Settings injected per recognition call."""
    # Detection preprocessing
    max_side_len: int = 1600
    # Detection post-processing
    detection_threshold: float = 0.3
    box_threshold: float = 0.7
    min_area: int = 100
    unclip_ratio: float = 1.5
    dilation_h: int = 2
    dilation_v: int = 1
    connectivity: int = 8
    # Layout analysis
    column_gap_ratio: float = 1.5
    paragraph_gap_ratio: float = 0.3
    same_line_height_ratio: float = 0.7
    font_size_diff_ratio: Optional[float] = 1.5
    max_depth: int = 10
    # Models
    model_variant: str = Config.OCR_MODEL_VARIANT

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "OcrSettings":
        """
        Build validated settings from a (possibly partial) mapping.

        Accepts snake_case keys and the camelCase names used by the settings
        payload. Missing values take defaults, as do ``None`` values except
        for ``font_size_diff_ratio``; unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = KEY_ALIASES.get(key, key)
            if name not in known:
                continue
            if value is None:
                # None switches the font-size cut off
                if name == "font_size_diff_ratio":
                    values[name] = None
                continue
            if name == "model_variant":
                values[name] = validate_model_variant(value)
            elif name == "connectivity":
                values[name] = 4 if int(value) == 4 else 8
            else:
                values[name] = validate_param(name, value)
        if "model_variant" not in values:
            values["model_variant"] = validate_model_variant(cls.model_variant)
        return cls(**values)

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "OcrSettings":
        """Return a copy with validated overrides applied."""
        base = asdict(self)
        base.update(overrides or {})
        return OcrSettings.from_dict(base)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
