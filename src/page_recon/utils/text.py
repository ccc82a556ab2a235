"""
Text run classification module for page layout reconstruction.

Provides:
- TextItem data model (top-down page geometry plus style and membership flags)
- Pluggable font-style classification
- Chart-label anchor detection
- Crop and drawing-border filtering
- Zone membership and line grouping
- Document font statistics (default, heading and foot fonts)
"""

import re
import logging
from dataclasses import dataclass, field, asdict, replace
from collections import deque
from typing import List, Optional, Tuple, Dict, Any, Sequence

from ..config import TextConfig
from .layout import Zone, ZoneType

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class TextItem:
    """A positioned run of text in top-down page units."""
    text: str
    left: float
    top: float
    right: float
    bottom: float
    font_name: str = ""
    font_size: float = 0.0

    # Style
    bold: bool = False
    italic: bool = False
    small_caps: bool = False
    underline: bool = False
    heading_level: int = 0
    font_signature: str = ""

    # Membership, set by the classification passes
    zone_id: Optional[int] = None
    line: Optional[int] = None
    column: Optional[str] = None

    # Flags
    foot_index: Optional[int] = None
    drawing_number: Optional[int] = None
    is_paragraph_end: bool = False

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2, (self.top + self.bottom) / 2)

    @property
    def is_bare_integer(self) -> bool:
        return self.text.isdigit()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TextItem':
        return cls(**data)


@dataclass
class StyleFlags:
    """Font style derived from a font name."""
    bold: bool = False
    italic: bool = False
    small_caps: bool = False
    underline: bool = False


# ============================================================================
# Style Classification
# ============================================================================

class StyleClassifier:
    """Base class for font-name style classifiers."""

    def classify(self, font_name: str) -> StyleFlags:
        raise NotImplementedError


class RegexStyleClassifier(StyleClassifier):
    """
    Style classifier driven by font-name regular expressions.

    A six-letter subset prefix (``ABCDEF+``) is treated as italic; embedded
    subset fonts in the source documents are almost always the italic cut.
    """

    def __init__(
        self,
        italic: str = r"-It$|Italic|Oblique|^[A-Z]{6}\+",
        bold: str = r"Bold|Semibold",
        small_caps: str = r"SC$",
        underline: str = r"Underline"
    ):
        self.italic = re.compile(italic)
        self.bold = re.compile(bold)
        self.small_caps = re.compile(small_caps)
        self.underline = re.compile(underline)

    def classify(self, font_name: str) -> StyleFlags:
        name = font_name or ""
        return StyleFlags(
            bold=bool(self.bold.search(name)),
            italic=bool(self.italic.search(name)),
            small_caps=bool(self.small_caps.search(name)),
            underline=bool(self.underline.search(name))
        )


def font_signature(font_name: str, size: float, precision: int = 0) -> str:
    """Signature identifying a font face and rounded size."""
    return f"{font_name}_{round(size, precision):g}"


def dominant_signature(lines: Sequence[Sequence[TextItem]]) -> Optional[str]:
    """Signature covering the largest area among the given lines."""
    areas: Dict[str, float] = {}
    for line in lines:
        for item in line:
            areas[item.font_signature] = areas.get(item.font_signature, 0.0) + item.area
    if not areas:
        return None
    return max(areas.items(), key=lambda kv: kv[1])[0]


# ============================================================================
# Item Classifier
# ============================================================================

class ItemClassifier:
    """
    Converts raw text runs into TextItems and places them in zones.

    Passes run in order: augment, find_chart_anchors, filter_items,
    apply_styles, assign_zones, then build_zone_lines.
    """

    def __init__(
        self,
        config: Optional[TextConfig] = None,
        style_classifier: Optional[StyleClassifier] = None
    ):
        self.config = config or TextConfig()
        self.style_classifier = style_classifier or RegexStyleClassifier()
        self._chart_label = re.compile(self.config.chart_label_pattern)

    def augment(self, runs: Sequence[Dict[str, Any]], viewport_height: float) -> List[TextItem]:
        """
        Build TextItems from raw runs.

        Each run carries ``str``, ``transform`` [a, b, c, d, e, f], ``width``,
        ``height`` and ``fontName``. Runs that are blank after trimming are
        discarded.
        """
        items = []
        for run in runs:
            text = (run.get("str") or "").strip()
            if not text:
                continue

            transform = run.get("transform") or [1, 0, 0, 1, 0, 0]
            if len(transform) < 6:
                raise ValueError(f"Malformed text transform: {transform!r}")

            height = float(run.get("height") or abs(transform[3]))
            left = float(transform[4])
            bottom = viewport_height - float(transform[5])

            items.append(TextItem(
                text=text,
                left=left,
                top=bottom - height,
                right=left + float(run.get("width") or 0.0),
                bottom=bottom,
                font_name=run.get("fontName") or "",
                font_size=height
            ))

        return items

    def find_chart_anchors(self, items: List[TextItem]) -> List[Tuple[float, float]]:
        """Centre points of chart labels; sets ``drawing_number`` on each label."""
        anchors = []
        for item in items:
            match = self._chart_label.match(item.text)
            if match:
                item.drawing_number = int(match.group(1))
                anchors.append(item.center)
        if anchors:
            logger.debug(f"Found {len(anchors)} chart label anchor(s)")
        return anchors

    def filter_items(self, items: List[TextItem], crop, borders: Sequence = ()) -> List[TextItem]:
        """Drop items outside the crop range or wholly inside a drawing border."""
        kept = []
        for item in items:
            if crop is not None and not crop.contains(item.left, item.top, item.right, item.bottom):
                continue
            if any(b.encloses(item.left, item.top, item.right, item.bottom) for b in borders):
                continue
            kept.append(item)

        if len(kept) != len(items):
            logger.debug(f"Filtered {len(items) - len(kept)} item(s) outside crop or inside drawings")
        return kept

    def apply_styles(self, items: List[TextItem]) -> List[TextItem]:
        """Set style flags, height-based heading level and font signature."""
        for item in items:
            flags = self.style_classifier.classify(item.font_name)
            item.bold = flags.bold
            item.italic = flags.italic
            item.small_caps = flags.small_caps
            item.underline = flags.underline

            if item.height >= self.config.major_heading_height:
                item.heading_level = 1
            elif item.height >= self.config.heading_height:
                item.heading_level = 2
            else:
                item.heading_level = 0

            item.font_signature = font_signature(
                item.font_name, item.font_size, self.config.signature_precision
            )
        return items

    def assign_zones(self, items: List[TextItem], zones: List[Zone]) -> List[TextItem]:
        """
        Give each item the first zone containing its centre.

        Items in IMAGE zones or in no zone are dropped.
        """
        kept = []
        dropped = 0
        for item in items:
            cx, cy = item.center
            zone = next((z for z in zones if z.bbox.contains_point(cx, cy)), None)
            if zone is None or zone.zone_type == ZoneType.IMAGE:
                dropped += 1
                continue
            item.zone_id = zone.zone_id
            item.column = zone.column.value
            kept.append(item)

        if dropped:
            logger.debug(f"Dropped {dropped} item(s) with no text zone")
        return kept

    def _joins_previous(self, previous: TextItem, item: TextItem) -> bool:
        """A lone "-", or a run of the same height overlapping the run before it."""
        if item.text == "-":
            return True
        return (
            abs(item.height - previous.height) <= self.config.overlap_height_tolerance and
            item.left < previous.right
        )

    def group_lines(self, items: List[TextItem]) -> List[List[TextItem]]:
        """
        Group items into lines by vertical centre proximity, left to right.

        A run that is only "-" is merged into the run before it, as is a run
        of the same height that starts before the previous run ends.
        """
        lines: List[List[TextItem]] = []
        centre = None
        for item in sorted(items, key=lambda i: (i.center[1], i.left)):
            cy = item.center[1]
            if lines and abs(cy - centre) <= self.config.line_tolerance:
                lines[-1].append(item)
            else:
                lines.append([item])
                centre = cy

        result = []
        for index, line in enumerate(lines):
            merged: List[TextItem] = []
            window: deque = deque(maxlen=1)
            for item in sorted(line, key=lambda i: i.left):
                if window and self._joins_previous(window[0], item):
                    previous = window[0]
                    joined = replace(previous, text=previous.text + item.text,
                                     right=max(previous.right, item.right))
                    merged[-1] = joined
                    window.append(joined)
                    continue
                merged.append(item)
                window.append(item)
            for item in merged:
                item.line = index
            result.append(merged)

        return result

    def build_zone_lines(self, items: List[TextItem], zones: List[Zone]):
        """Fill each zone's ``lines`` from the items assigned to it."""
        by_zone: Dict[int, List[TextItem]] = {}
        for item in items:
            by_zone.setdefault(item.zone_id, []).append(item)

        for zone in zones:
            zone.lines = self.group_lines(by_zone.get(zone.zone_id, []))

    def repair_null_texts(self, items: List[TextItem], null_texts: Dict[str, str]) -> List[TextItem]:
        """Restore italic runs split by null glyphs ("Wr in ehi l l" -> "Wringehill")."""
        repaired = 0
        for item in items:
            if not item.italic:
                continue
            text = null_texts.get(re.sub(r"\s+", "", item.text))
            if text is not None and text != item.text:
                item.text = text
                repaired += 1

        if repaired:
            logger.debug(f"Repaired {repaired} italic run(s) with null glyphs")
        return items

    def classify(
        self,
        runs: Sequence[Dict[str, Any]],
        viewport_height: float,
        crop=None,
        borders: Sequence = (),
        null_texts: Optional[Dict[str, str]] = None
    ) -> Tuple[List[TextItem], List[Tuple[float, float]]]:
        """Run augment, anchor, filter, style and repair passes; returns items and anchors."""
        items = self.augment(runs, viewport_height)
        anchors = self.find_chart_anchors(items)
        items = self.filter_items(items, crop, borders)
        self.apply_styles(items)
        if null_texts:
            self.repair_null_texts(items, null_texts)
        return items, anchors



# ============================================================================
# Document Font Statistics
# ============================================================================

FontKey = Tuple[str, float]


@dataclass
class FontStatistics:
    """
    Font usage accumulated over a document.

    The default font is the (font, size) covering the largest area. Sizes
    above the default size are heading sizes, ranked largest first. The foot
    font covers the largest area below the lowest default-font line on each
    page.
    """
    max_level: int = 6
    areas: Dict[FontKey, float] = field(default_factory=dict)
    samples: List[Tuple[int, FontKey, float, float, float]] = field(default_factory=list)

    def add(self, items: Sequence[TextItem], page_number: int = 0):
        for item in items:
            key = (item.font_name, round(item.font_size, 1))
            self.areas[key] = self.areas.get(key, 0.0) + item.area
            self.samples.append((page_number, key, item.top, item.bottom, item.area))

    @property
    def default_font(self) -> Optional[FontKey]:
        if not self.areas:
            return None
        return max(self.areas.items(), key=lambda kv: kv[1])[0]

    @property
    def heading_sizes(self) -> List[float]:
        default = self.default_font
        if default is None:
            return []
        return sorted({size for _, size in self.areas if size > default[1]}, reverse=True)

    def level_for(self, size: float) -> int:
        """Heading level for a font size, 0 when it is not a heading size."""
        size = round(size, 1)
        sizes = self.heading_sizes
        if size not in sizes:
            return 0
        return min(sizes.index(size) + 1, self.max_level)

    @property
    def foot_font(self) -> Optional[FontKey]:
        default = self.default_font
        if default is None:
            return None

        lowest: Dict[int, float] = {}
        for page, key, _, bottom, _ in self.samples:
            if key == default:
                lowest[page] = max(lowest.get(page, bottom), bottom)

        areas: Dict[FontKey, float] = {}
        for page, key, top, _, area in self.samples:
            if page in lowest and top > lowest[page] and key != default:
                areas[key] = areas.get(key, 0.0) + area
        if not areas:
            return None
        return max(areas.items(), key=lambda kv: kv[1])[0]

    def to_dict(self) -> Dict[str, Any]:
        default = self.default_font
        foot = self.foot_font
        return {
            "default_font": list(default) if default else None,
            "foot_font": list(foot) if foot else None,
            "heading_sizes": self.heading_sizes
        }
