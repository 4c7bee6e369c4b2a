"""
Data models for the OCR and layout reconstruction pipeline.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Tuple, Sequence
from enum import Enum


Point = Tuple[float, float]


class FailureReason(str, Enum):
    """Why the neural recognizer produced no usable text for a region."""
    EMPTY_TEXT = "empty_text"
    INVALID_CROP = "invalid_crop"
    PREPROCESSING_FAILED = "preprocessing_failed"


class RecognitionSource(str, Enum):
    """Which recognizer produced a region's text."""
    NEURAL = "neural"
    FALLBACK = "fallback"
    MANUAL = "manual"


class Alignment(str, Enum):
    """Inferred horizontal alignment of a text block."""
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned rectangle in image pixels."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_points(cls, points: Sequence[Point]) -> "Bounds":
        """Bounding rectangle of a point list (polygon corners)."""
        xs = [float(p[0]) for p in points]
        ys = [float(p[1]) for p in points]
        return cls(
            x=min(xs),
            y=min(ys),
            width=max(xs) - min(xs),
            height=max(ys) - min(ys),
        )

    @classmethod
    def union(cls, items: Sequence["Bounds"]) -> "Bounds":
        """Exact min/max union of several rectangles."""
        min_x = min(b.x for b in items)
        min_y = min(b.y for b in items)
        max_x = max(b.x + b.width for b in items)
        max_y = max(b.y + b.height for b in items)
        return cls(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)

    def to_polygon(self) -> Tuple[Point, Point, Point, Point]:
        """Corners in TL, TR, BR, BL order."""
        return (
            (self.x, self.y),
            (self.x + self.width, self.y),
            (self.x + self.width, self.y + self.height),
            (self.x, self.y + self.height),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DetectedBox:
    """Text box produced by detection post-processing."""
    polygon: Tuple[Point, Point, Point, Point]
    score: float

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_points(self.polygon)


@dataclass(frozen=True)
class DecodeResult:
    """Output of CTC decoding for one region."""
    text: str
    confidence: float


@dataclass(frozen=True)
class TextRegion:
    """
    One detected text line.

    Regions are immutable: the fallback stage and manual edits produce new
    values with ``dataclasses.replace``. ``text`` is kept untrimmed because
    leading/trailing spaces are used when joining lines.
    """
    bounds: Bounds
    polygon: Tuple[Point, ...]
    text: str = ""
    confidence: float = 0.0  # 0-100
    detection_score: float = 0.0  # 0-1
    recognition_failed: bool = False
    failure_reason: Optional[FailureReason] = None
    recognition_source: RecognitionSource = RecognitionSource.NEURAL

    @classmethod
    def manual(cls, bounds: Bounds, text: str, confidence: float = 100.0) -> "TextRegion":
        """Build a user-authored region."""
        return cls(
            bounds=bounds,
            polygon=bounds.to_polygon(),
            text=text,
            confidence=confidence,
            detection_score=1.0,
            recognition_source=RecognitionSource.MANUAL,
        )

    @property
    def is_mergeable(self) -> bool:
        """True if the region may feed layout merging."""
        return not self.recognition_failed and len(self.text.strip()) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounds": self.bounds.to_dict(),
            "polygon": [list(p) for p in self.polygon],
            "text": self.text,
            "confidence": self.confidence,
            "detectionScore": self.detection_score,
            "recognitionFailed": self.recognition_failed,
            "failureReason": self.failure_reason.value if self.failure_reason else None,
            "recognitionSource": self.recognition_source.value,
        }


@dataclass(frozen=True)
class SeparatorLine:
    """User-drawn cut hint; regions on either side never share a block."""
    start: Point
    end: Point
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SeparatorLine":
        start = data["start"]
        end = data["end"]
        if isinstance(start, dict):
            start = (start["x"], start["y"])
        if isinstance(end, dict):
            end = (end["x"], end["y"])
        return cls(
            start=(float(start[0]), float(start[1])),
            end=(float(end[0]), float(end[1])),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class MergedBlock:
    """Logical text block assembled from one layout leaf zone."""
    bounds: Bounds
    text: str
    confidence: float
    font_size: float
    alignment: Alignment
    lines: Tuple[TextRegion, ...]
    polygon: Tuple[Point, Point, Point, Point]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounds": self.bounds.to_dict(),
            "text": self.text,
            "confidence": self.confidence,
            "fontSize": self.font_size,
            "alignment": self.alignment.value,
            "polygon": [list(p) for p in self.polygon],
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass
class OcrResult:
    """Per-image output handed to downstream consumers."""
    merged_blocks: List[MergedBlock] = field(default_factory=list)
    raw_regions: List[TextRegion] = field(default_factory=list)
    backend: Optional[str] = None
    fallback_occurred: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mergedBlocks": [block.to_dict() for block in self.merged_blocks],
            "rawRegions": [region.to_dict() for region in self.raw_regions],
            "backend": self.backend,
            "fallbackOccurred": self.fallback_occurred,
        }


@dataclass
class PageImage:
    """Ingested page image with metadata."""
    image: Any  # RGB numpy array
    page_id: int
    width: int
    height: int
    dpi: int = 200
    source: Optional[str] = None
