"""
Layout reconstruction: regroup recognized text lines into blocks.

Pipeline:
    1. drop failed / blank regions
    2. split into groups no separator line crosses (union-find)
    3. recursive XY-cut per group (columns, then paragraphs, then font size)
    4. split leaves that still contain a separator-crossed pair
    5. assemble each leaf into a MergedBlock (reading order, alignment)
"""
import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from utils.models import (
    Alignment,
    Bounds,
    MergedBlock,
    Point,
    SeparatorLine,
    TextRegion,
)
from utils.settings import OcrSettings

logger = logging.getLogger(__name__)

# Alignment wins only when its deviation is materially smaller
ALIGNMENT_MARGIN = 0.8


def merge_text_regions(
    regions: Sequence[TextRegion],
    separators: Optional[Sequence[SeparatorLine]] = None,
    settings: Optional[OcrSettings] = None,
) -> List[MergedBlock]:
    """
    Merge text regions into logical blocks.

    Args:
        regions: Recognized regions (raw or user-edited)
        separators: User-drawn cut hints; regions on opposite sides never share a block
        settings: Layout thresholds (defaults if None)

    Returns:
        Blocks in reading order
    """
    settings = settings or OcrSettings()
    leaves = split_into_leaves(regions, separators, settings)
    blocks = [create_block(leaf, settings) for leaf in leaves]
    logger.debug("Layout: %d regions -> %d blocks", sum(len(leaf) for leaf in leaves), len(blocks))
    return blocks


def split_into_leaves(
    regions: Sequence[TextRegion],
    separators: Optional[Sequence[SeparatorLine]] = None,
    settings: Optional[OcrSettings] = None,
) -> List[List[TextRegion]]:
    """
    Partition mergeable regions into leaf zones.

    The multiset of regions across the returned leaves equals the filtered
    input.
    """
    settings = settings or OcrSettings()
    separators = list(separators or [])
    valid = filter_mergeable(regions)
    if not valid:
        return []

    leaves: List[List[TextRegion]] = []
    for group in partition_by_separators(valid, separators):
        for leaf in recursive_xy_cut(group, settings):
            leaves.extend(enforce_separators(leaf, separators))
    return leaves


def filter_mergeable(regions: Sequence[TextRegion]) -> List[TextRegion]:
    """Keep regions that recognized successfully and carry visible text."""
    return [r for r in regions if r.is_mergeable]


# ---------------------------------------------------------------------------
# Separator lines
# ---------------------------------------------------------------------------

def _orientation(a: Point, b: Point, c: Point) -> float:
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def segments_cross(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    """
    True if separator q1-q2 crosses the center segment p1-p2.

    p1 and p2 must lie strictly on opposite sides of the separator's line.
    A separator endpoint lying on p1-p2 counts; a separator collinear with
    p1-p2 or degenerate to a point does not.
    """
    d1 = _orientation(q1, q2, p1)
    d2 = _orientation(q1, q2, p2)
    d3 = _orientation(p1, p2, q1)
    d4 = _orientation(p1, p2, q2)
    if d3 == 0 and d4 == 0:
        return False
    return ((d1 > 0 > d2) or (d1 < 0 < d2)) and ((d3 >= 0 >= d4) or (d3 <= 0 <= d4))


def _center(region: TextRegion) -> Point:
    return region.bounds.center_x, region.bounds.center_y


def is_separated(a: TextRegion, b: TextRegion, separators: Sequence[SeparatorLine]) -> bool:
    """True if any separator crosses the segment between the two region centers."""
    ca, cb = _center(a), _center(b)
    return any(segments_cross(ca, cb, sep.start, sep.end) for sep in separators)


def partition_by_separators(
    regions: Sequence[TextRegion],
    separators: Sequence[SeparatorLine],
) -> List[List[TextRegion]]:
    """
    Group regions that are connected without crossing a separator.

    Union-find over all pairs. Groups are returned in order of their first
    member; members keep input order.
    """
    if not separators:
        return [list(regions)]

    n = len(regions)
    parent = list(range(n))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(n):
        for j in range(i + 1, n):
            if not is_separated(regions[i], regions[j], separators):
                ri, rj = find(i), find(j)
                if ri != rj:
                    parent[max(ri, rj)] = min(ri, rj)

    groups = {}
    for i in range(n):
        groups.setdefault(find(i), []).append(regions[i])
    return list(groups.values())


def enforce_separators(
    leaf: List[TextRegion],
    separators: Sequence[SeparatorLine],
) -> List[List[TextRegion]]:
    """
    Split a leaf so that no separator-crossed pair shares a result.

    Grouping through intermediate regions can still put two separated
    regions together; such leaves are split greedily in reading order.
    """
    if not separators or len(leaf) < 2:
        return [leaf]

    crossed = any(
        is_separated(leaf[i], leaf[j], separators)
        for i in range(len(leaf))
        for j in range(i + 1, len(leaf))
    )
    if not crossed:
        return [leaf]

    buckets: List[List[TextRegion]] = []
    for region in sorted(leaf, key=lambda r: (r.bounds.center_y, r.bounds.center_x)):
        for bucket in buckets:
            if not any(is_separated(region, member, separators) for member in bucket):
                bucket.append(region)
                break
        else:
            buckets.append([region])
    logger.debug("Separator enforcement split a leaf of %d into %d", len(leaf), len(buckets))
    return buckets


# ---------------------------------------------------------------------------
# Recursive XY-cut
# ---------------------------------------------------------------------------

def median_height(regions: Sequence[TextRegion]) -> float:
    """Upper median of region heights (line-height unit for gap thresholds)."""
    if not regions:
        return 20.0
    heights = sorted(r.bounds.height for r in regions)
    return heights[len(heights) // 2]


def find_best_cut(
    regions: Sequence[TextRegion],
    bounds: Bounds,
    axis: str,
    min_gap: float,
) -> Optional[float]:
    """
    Find the widest projection gap along an axis.

    Args:
        regions: Regions to project
        bounds: Union bounds of the regions
        axis: 'x' (columns) or 'y' (paragraphs)
        min_gap: Gaps must be strictly wider than this

    Returns:
        Cut position at the middle of the widest gap, or None
    """
    is_x = axis == "x"
    range_start = bounds.x if is_x else bounds.y
    total = bounds.width if is_x else bounds.height

    projection = np.zeros(int(math.ceil(total)) + 1, dtype=bool)
    for r in regions:
        start = r.bounds.x if is_x else r.bounds.y
        end = r.bounds.right if is_x else r.bounds.bottom
        lo = max(0, int(math.floor(start - range_start)))
        hi = min(len(projection), int(math.ceil(end - range_start)))
        if hi > lo:
            projection[lo:hi] = True

    best_size = 0
    best_cut = None
    gap_start = None
    for i, filled in enumerate(projection):
        if not filled:
            if gap_start is None:
                gap_start = i
        elif gap_start is not None:
            # Only gaps closed by text on both sides count
            size = i - gap_start
            if size > best_size and size > min_gap:
                best_size = size
                best_cut = range_start + gap_start + size / 2
            gap_start = None
    return best_cut


def find_font_size_cut(regions: Sequence[TextRegion], ratio: Optional[float]) -> Optional[float]:
    """
    Find a vertical cut between vertically adjacent regions of very different height.

    Separates headings from body text that sits too close for a gap cut.
    """
    if ratio is None or len(regions) < 2:
        return None

    ordered = sorted(regions, key=lambda r: r.bounds.center_y)
    best_ratio = 0.0
    best_cut = None
    for upper, lower in zip(ordered, ordered[1:]):
        small = min(upper.bounds.height, lower.bounds.height)
        if small <= 0:
            continue
        pair_ratio = max(upper.bounds.height, lower.bounds.height) / small
        if pair_ratio > ratio and pair_ratio > best_ratio:
            best_ratio = pair_ratio
            best_cut = (upper.bounds.bottom + lower.bounds.y) / 2
    return best_cut


def _split_at(regions: Sequence[TextRegion], cut: float, axis: str) -> Tuple[list, list]:
    if axis == "x":
        before = [r for r in regions if r.bounds.center_x < cut]
        after = [r for r in regions if r.bounds.center_x >= cut]
    else:
        before = [r for r in regions if r.bounds.center_y < cut]
        after = [r for r in regions if r.bounds.center_y >= cut]
    return before, after


def recursive_xy_cut(
    regions: Sequence[TextRegion],
    settings: OcrSettings,
    depth: int = 0,
) -> List[List[TextRegion]]:
    """
    Recursively cut a region set into leaf zones.

    Vertical cuts (columns) are tried before horizontal cuts (paragraphs),
    then a font-size cut. A cut leaving one side empty is ignored.

    Args:
        regions: Region set
        settings: Layout thresholds
        depth: Current recursion depth

    Returns:
        Leaf zones, left to right / top to bottom
    """
    regions = list(regions)
    if depth > settings.max_depth or len(regions) < 2:
        return [regions]

    bounds = Bounds.union([r.bounds for r in regions])
    unit = median_height(regions)

    candidates = (
        ("x", lambda: find_best_cut(regions, bounds, "x", unit * settings.column_gap_ratio)),
        ("y", lambda: find_best_cut(regions, bounds, "y", unit * settings.paragraph_gap_ratio)),
        ("y", lambda: find_font_size_cut(regions, settings.font_size_diff_ratio)),
    )
    for axis, find_cut in candidates:
        cut = find_cut()
        if cut is None:
            continue
        first, second = _split_at(regions, cut, axis)
        if not first or not second:
            continue
        return (
            recursive_xy_cut(first, settings, depth + 1)
            + recursive_xy_cut(second, settings, depth + 1)
        )

    return [regions]


# ---------------------------------------------------------------------------
# Block assembly
# ---------------------------------------------------------------------------

def group_lines(regions: Sequence[TextRegion], same_line_ratio: float) -> List[List[TextRegion]]:
    """
    Group regions into visual lines.

    Regions are scanned by vertical center; one starts a new line when its
    center is at least ``same_line_ratio * min(height)`` away from the line's
    first region. Each line is ordered left to right.
    """
    lines: List[List[TextRegion]] = []
    anchor = None
    for region in sorted(regions, key=lambda r: (r.bounds.center_y, r.bounds.x)):
        if anchor is not None:
            limit = same_line_ratio * min(anchor.bounds.height, region.bounds.height)
            if abs(region.bounds.center_y - anchor.bounds.center_y) < limit:
                lines[-1].append(region)
                continue
        lines.append([region])
        anchor = region
    return [sorted(line, key=lambda r: r.bounds.x) for line in lines]


def join_line_text(line: Sequence[TextRegion]) -> str:
    """Join one visual line with single spaces, without doubling existing ones."""
    text = ""
    for i, region in enumerate(line):
        if i == 0:
            text = region.text
        elif (text and text[-1].isspace()) or (region.text and region.text[0].isspace()):
            text += region.text
        else:
            text += " " + region.text
    return text


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation (0 for fewer than two values)."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def infer_alignment(regions: Sequence[TextRegion]) -> Alignment:
    """
    Infer horizontal alignment from edge and center spread.

    Returns:
        CENTER if centers vary clearly less than both edges, RIGHT if right
        edges vary clearly less than left edges and no more than centers,
        LEFT otherwise
    """
    if len(regions) < 2:
        return Alignment.LEFT

    left_std = standard_deviation([r.bounds.x for r in regions])
    center_std = standard_deviation([r.bounds.center_x for r in regions])
    right_std = standard_deviation([r.bounds.right for r in regions])

    if center_std < ALIGNMENT_MARGIN * left_std and center_std < ALIGNMENT_MARGIN * right_std:
        return Alignment.CENTER
    if right_std < ALIGNMENT_MARGIN * left_std and right_std < center_std:
        return Alignment.RIGHT
    return Alignment.LEFT


def create_block(regions: Sequence[TextRegion], settings: Optional[OcrSettings] = None) -> MergedBlock:
    """
    Assemble one leaf zone into a MergedBlock.

    Args:
        regions: Non-empty leaf zone
        settings: Layout thresholds (same-line ratio)

    Returns:
        MergedBlock with lines in reading order
    """
    if not regions:
        raise ValueError("Cannot build a block from an empty zone")
    settings = settings or OcrSettings()

    lines = group_lines(regions, settings.same_line_height_ratio)
    text = "\n".join(join_line_text(line) for line in lines)
    ordered = tuple(region for line in lines for region in line)

    bounds = Bounds.union([r.bounds for r in ordered])
    confidence = sum(r.confidence for r in ordered) / len(ordered)
    font_size = sum(r.bounds.height for r in ordered) / len(ordered)

    return MergedBlock(
        bounds=bounds,
        text=text,
        confidence=confidence,
        font_size=font_size,
        alignment=infer_alignment(ordered),
        lines=ordered,
        polygon=bounds.to_polygon(),
    )
