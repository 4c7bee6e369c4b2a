"""Unit tests for layout reconstruction (XY-cut, separators, block assembly)."""
import random
from collections import Counter

from utils.models import Alignment, Bounds, FailureReason, SeparatorLine, TextRegion
from utils.settings import OcrSettings
from src.pipelines.layout import (
    create_block,
    enforce_separators,
    find_best_cut,
    infer_alignment,
    merge_text_regions,
    partition_by_separators,
    segments_cross,
    split_into_leaves,
)


def _make_region(x: float, y: float, w: float, h: float, text: str = "text", confidence: float = 90.0) -> TextRegion:
    bounds = Bounds(x, y, w, h)
    return TextRegion(bounds=bounds, polygon=bounds.to_polygon(), text=text, confidence=confidence, detection_score=0.9)


def test_same_line_regions_join_with_single_space():
    a = _make_region(10, 10, 50, 20, "Hello")
    b = _make_region(70, 10, 50, 20, "World")
    blocks = merge_text_regions([b, a])
    assert len(blocks) == 1
    assert blocks[0].text == "Hello World"


def test_existing_whitespace_is_not_doubled():
    a = _make_region(10, 10, 50, 20, "Hello ")
    b = _make_region(70, 10, 50, 20, "World")
    blocks = merge_text_regions([a, b])
    assert blocks[0].text == "Hello World"


def test_adjacent_lines_join_with_newline():
    a = _make_region(10, 10, 100, 20, "Line 1")
    b = _make_region(10, 30, 100, 20, "Line 2")
    blocks = merge_text_regions([a, b])
    assert len(blocks) == 1
    assert blocks[0].text == "Line 1\nLine 2"


def test_large_vertical_gap_splits_blocks():
    a = _make_region(10, 10, 100, 20, "Line 1")
    b = _make_region(10, 200, 100, 20, "Line 2")
    blocks = merge_text_regions([a, b])
    assert len(blocks) >= 2
    assert [blk.text for blk in blocks] == ["Line 1", "Line 2"]


def test_columns_split_before_paragraphs():
    left_top = _make_region(10, 10, 100, 20, "L1")
    left_bottom = _make_region(10, 32, 100, 20, "L2")
    right_top = _make_region(300, 10, 100, 20, "R1")
    right_bottom = _make_region(300, 32, 100, 20, "R2")
    blocks = merge_text_regions([right_bottom, left_top, right_top, left_bottom])
    assert [blk.text for blk in blocks] == ["L1\nL2", "R1\nR2"]


def test_separator_forces_split():
    a = _make_region(90, 10, 60, 20, "Left")
    b = _make_region(150, 10, 60, 20, "Right")
    assert len(merge_text_regions([a, b])) == 1

    separator = SeparatorLine(start=(150, 0), end=(150, 100))
    blocks = merge_text_regions([a, b], separators=[separator])
    assert len(blocks) >= 2
    for block in blocks:
        assert len(block.lines) == 1


def test_separator_outside_regions_has_no_effect():
    a = _make_region(90, 10, 60, 20, "Left")
    b = _make_region(150, 10, 60, 20, "Right")
    separator = SeparatorLine(start=(150, 200), end=(150, 300))
    assert len(merge_text_regions([a, b], separators=[separator])) == 1


def test_segments_cross_requires_proper_intersection():
    assert segments_cross((0, 0), (10, 10), (0, 10), (10, 0))
    # Center lying on the separator
    assert not segments_cross((0, 0), (5, 5), (5, 5), (10, 0))
    # Collinear
    assert not segments_cross((0, 0), (10, 0), (5, 0), (20, 0))
    # Degenerate separator
    assert not segments_cross((0, 0), (10, 10), (5, 5), (5, 5))


def test_separator_endpoint_touching_center_segment_counts():
    assert segments_cross((0, 0), (10, 0), (5, 0), (5, 10))

    a = _make_region(10, 10, 60, 20, "A")
    b = _make_region(80, 10, 60, 20, "B")
    assert [blk.text for blk in merge_text_regions([a, b])] == ["A B"]

    separator = SeparatorLine(start=(75, 0), end=(75, 20))
    blocks = merge_text_regions([a, b], separators=[separator])
    assert [blk.text for blk in blocks] == ["A", "B"]


def test_depth_ceiling_stops_cutting_without_losing_regions():
    regions = [
        _make_region(10, 10, 100, 20, "L1"),
        _make_region(10, 200, 100, 20, "L2"),
        _make_region(10, 300, 100, 20, "L3"),
    ]
    assert [blk.text for blk in merge_text_regions(regions)] == ["L1", "L2", "L3"]

    shallow = merge_text_regions(regions, settings=OcrSettings(max_depth=0))
    assert [blk.text for blk in shallow] == ["L1", "L2\nL3"]
    assert sum(len(blk.lines) for blk in shallow) == 3


def test_partition_groups_in_first_member_order():
    a = _make_region(0, 0, 40, 20, "A")
    b = _make_region(100, 0, 40, 20, "B")
    c = _make_region(0, 50, 40, 20, "C")
    separator = SeparatorLine(start=(70, -100), end=(70, 200))
    groups = partition_by_separators([a, b, c], [separator])
    assert groups == [[a, c], [b]]


def test_enforce_separators_splits_transitively_joined_leaf():
    a = _make_region(0, 0, 40, 20, "A")      # center (20, 10)
    b = _make_region(130, 100, 40, 20, "B")  # center (150, 110)
    c = _make_region(260, 0, 40, 20, "C")    # center (280, 10)
    separator = SeparatorLine(start=(150, 0), end=(150, 20))

    # A-C is crossed, A-B and B-C are not, so grouping joins all three
    assert len(partition_by_separators([a, b, c], [separator])) == 1

    buckets = enforce_separators([a, b, c], [separator])
    assert sorted(len(bucket) for bucket in buckets) == [1, 2]
    for bucket in buckets:
        assert not (a in bucket and c in bucket)
    assert Counter(id(r) for bucket in buckets for r in bucket) == Counter(id(r) for r in [a, b, c])


def test_font_size_cut_separates_heading_from_body():
    title = _make_region(10, 10, 200, 40, "Title")
    body = _make_region(10, 52, 200, 20, "Body text")
    blocks = merge_text_regions([title, body])
    assert [blk.text for blk in blocks] == ["Title", "Body text"]

    no_font_cut = OcrSettings.from_dict({"font_size_diff_ratio": None})
    assert len(merge_text_regions([title, body], settings=no_font_cut)) == 1


def test_find_best_cut_prefers_first_on_ties():
    regions = [_make_region(0, 0, 10, 1), _make_region(20, 0, 10, 1), _make_region(40, 0, 10, 1)]
    bounds = Bounds.union([r.bounds for r in regions])
    assert find_best_cut(regions, bounds, "x", 5) == 15
    assert find_best_cut(regions, bounds, "x", 10) is None


def test_failed_and_blank_regions_are_dropped():
    good = _make_region(10, 10, 50, 20, "ok")
    blank = _make_region(10, 40, 50, 20, "   ")
    failed = TextRegion(
        bounds=Bounds(10, 70, 50, 20),
        polygon=Bounds(10, 70, 50, 20).to_polygon(),
        text="",
        recognition_failed=True,
        failure_reason=FailureReason.EMPTY_TEXT,
    )
    blocks = merge_text_regions([good, blank, failed])
    assert len(blocks) == 1
    assert blocks[0].lines == (good,)
    assert merge_text_regions([blank, failed]) == []


def test_block_bounds_are_exact_union_and_partition_loses_nothing():
    rng = random.Random(7)
    for _ in range(25):
        regions = [
            _make_region(
                rng.randint(0, 800),
                rng.randint(0, 1000),
                rng.randint(10, 200),
                rng.randint(8, 40),
                text=f"r{i}",
                confidence=rng.uniform(0, 100),
            )
            for i in range(rng.randint(1, 30))
        ]
        separators = [SeparatorLine(start=(400, 0), end=(400, 1000))] if rng.random() < 0.5 else []

        leaves = split_into_leaves(regions, separators)
        assert Counter(id(r) for leaf in leaves for r in leaf) == Counter(id(r) for r in regions)

        for block in merge_text_regions(regions, separators):
            lines = block.lines
            assert block.bounds.x == min(r.bounds.x for r in lines)
            assert block.bounds.y == min(r.bounds.y for r in lines)
            assert block.bounds.right == max(r.bounds.right for r in lines)
            assert block.bounds.bottom == max(r.bounds.bottom for r in lines)
            assert block.polygon == block.bounds.to_polygon()


def test_block_statistics_use_means():
    a = _make_region(10, 10, 50, 20, "a", confidence=80)
    b = _make_region(70, 10, 50, 30, "b", confidence=60)
    block = create_block([a, b])
    assert block.confidence == 70
    assert block.font_size == 25


def test_alignment_inference():
    centered = [
        _make_region(50, 10, 100, 20),
        _make_region(0, 40, 200, 20),
        _make_region(70, 70, 60, 20),
    ]
    assert infer_alignment(centered) == Alignment.CENTER

    left = [
        _make_region(10, 10, 100, 20),
        _make_region(10, 40, 200, 20),
        _make_region(10, 70, 60, 20),
    ]
    assert infer_alignment(left) == Alignment.LEFT

    right = [
        _make_region(100, 10, 100, 20),
        _make_region(0, 40, 200, 20),
        _make_region(140, 70, 60, 20),
    ]
    assert infer_alignment(right) == Alignment.RIGHT

    assert infer_alignment([_make_region(10, 10, 100, 20)]) == Alignment.LEFT
