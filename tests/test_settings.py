"""Unit tests for settings validation."""
from utils.settings import OcrSettings, validate_model_variant, validate_param


def test_defaults():
    settings = OcrSettings()
    assert settings.detection_threshold == 0.3
    assert settings.box_threshold == 0.7
    assert settings.min_area == 100
    assert settings.unclip_ratio == 1.5
    assert settings.column_gap_ratio == 1.5
    assert settings.paragraph_gap_ratio == 0.3
    assert settings.same_line_height_ratio == 0.7
    assert settings.max_depth == 10


def test_values_are_clamped_and_stepped():
    assert validate_param("detection_threshold", 0.95) == 0.9
    assert validate_param("detection_threshold", 0.33) == 0.35
    assert validate_param("max_side_len", 1000) == 992
    assert validate_param("min_area", 0) == 1
    assert validate_param("unknown", "x") == "x"


def test_from_dict_accepts_camel_case_and_ignores_unknown_keys():
    settings = OcrSettings.from_dict({
        "boxThreshold": 0.5,
        "verticalCutThreshold": 2.0,
        "sameLineThreshold": 0.5,
        "colorDiffThreshold": 30,
        "connectivity": 4,
    })
    assert settings.box_threshold == 0.5
    assert settings.column_gap_ratio == 2.0
    assert settings.same_line_height_ratio == 0.5
    assert settings.connectivity == 4


def test_model_variant_validation():
    assert validate_model_variant("MOBILE") == "mobile"
    assert validate_model_variant("tiny") == "server"
    assert OcrSettings.from_dict({"modelSize": "mobile"}).model_variant == "mobile"


def test_merged_keeps_disabled_font_size_cut():
    settings = OcrSettings.from_dict({"font_size_diff_ratio": None})
    assert settings.font_size_diff_ratio is None
    merged = settings.merged({"min_area": 50})
    assert merged.font_size_diff_ratio is None
    assert merged.min_area == 50
    # None elsewhere means "use the default"
    assert OcrSettings.from_dict({"min_area": None}).min_area == 100
