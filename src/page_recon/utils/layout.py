"""
Zone segmentation module for page layout reconstruction.

Provides:
- Zone data model (typed rectangular page regions)
- Header / title band and footer separator detection
- Figure, table and text block detection on a binarized bitmap
- Centre-spanning heading merge and block consolidation
- Two-column reading order resolution
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any, Sequence, TYPE_CHECKING
from enum import Enum
import numpy as np

from ..config import SegmentationConfig
from .images import (
    binarize, erase_outside_crop, morph_close, horizontal_lines,
    find_regions, find_components, ink_density, ink_bounds,
    row_ink, column_ink, runs, draw_debug_image
)

if TYPE_CHECKING:
    from .text import TextItem

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class ZoneType(Enum):
    """Types of page zones."""
    HEADER = "header"
    FOOTER = "footer"
    FIGURE = "figure"
    TABLE = "table"
    HEADING = "heading"
    BODY = "body"
    IMAGE = "image"


class ColumnClass(Enum):
    """Horizontal placement of a zone relative to the page centre."""
    LEFT = "left"
    RIGHT = "right"
    SPAN = "span"


class TableSection(Enum):
    """Section of a table a cell belongs to."""
    CAPTION = "caption"
    HEADER = "header"
    BODY = "body"
    NOTES = "notes"


@dataclass
class BoundingBox:
    """Bounding box with coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return max(0, self.width) * max(0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)

    def to_xywh(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.width, self.height)

    @classmethod
    def from_xywh(cls, x: float, y: float, w: float, h: float) -> 'BoundingBox':
        return cls(x, y, x + w, y + h)

    def intersects(self, other: 'BoundingBox') -> bool:
        return not (
            self.x2 < other.x1 or self.x1 > other.x2 or
            self.y2 < other.y1 or self.y1 > other.y2
        )

    def intersection_area(self, other: 'BoundingBox') -> float:
        if not self.intersects(other):
            return 0
        x1 = max(self.x1, other.x1)
        y1 = max(self.y1, other.y1)
        x2 = min(self.x2, other.x2)
        y2 = min(self.y2, other.y2)
        return max(0, x2 - x1) * max(0, y2 - y1)

    def contains_point(self, x: float, y: float) -> bool:
        return self.x1 <= x <= self.x2 and self.y1 <= y <= self.y2

    def contains(self, other: 'BoundingBox') -> bool:
        return (
            self.x1 <= other.x1 and self.y1 <= other.y1 and
            self.x2 >= other.x2 and self.y2 >= other.y2
        )

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        return BoundingBox(
            min(self.x1, other.x1),
            min(self.y1, other.y1),
            max(self.x2, other.x2),
            max(self.y2, other.y2)
        )

    def vertical_overlap(self, other: 'BoundingBox') -> float:
        return min(self.y2, other.y2) - max(self.y1, other.y1)

    def is_near(self, other: 'BoundingBox', tolerance: float) -> bool:
        return (
            abs(self.x1 - other.x1) <= tolerance and
            abs(self.y1 - other.y1) <= tolerance and
            abs(self.x2 - other.x2) <= tolerance and
            abs(self.y2 - other.y2) <= tolerance
        )

    def scaled(self, factor: float) -> 'BoundingBox':
        return BoundingBox(
            self.x1 * factor, self.y1 * factor,
            self.x2 * factor, self.y2 * factor
        )


@dataclass
class Zone:
    """A typed rectangular region of a page."""
    bbox: BoundingBox
    zone_type: ZoneType
    zone_id: int = -1
    column: ColumnClass = ColumnClass.SPAN
    reading_order: Optional[int] = None

    # Table cell membership
    table_id: Optional[int] = None
    section: Optional[TableSection] = None
    row: Optional[int] = None
    col: Optional[int] = None
    has_content: bool = False

    # Content, filled by the text passes
    lines: List[List['TextItem']] = field(default_factory=list)
    html: str = ""
    skip: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_table_cell(self) -> bool:
        return self.zone_type == ZoneType.TABLE and self.table_id is not None

    @property
    def is_page_furniture(self) -> bool:
        return self.zone_type in (ZoneType.HEADER, ZoneType.FOOTER)

    @property
    def items(self) -> List['TextItem']:
        return [item for line in self.lines for item in line]

    def crop_from_image(self, image: np.ndarray) -> np.ndarray:
        """Extract the zone region from an image in the same coordinates."""
        x1, y1 = int(max(0, self.bbox.x1)), int(max(0, self.bbox.y1))
        x2, y2 = int(np.ceil(self.bbox.x2)), int(np.ceil(self.bbox.y2))
        return image[y1:y2, x1:x2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "type": self.zone_type.value,
            "bbox": list(self.bbox.to_tuple()),
            "column": self.column.value,
            "reading_order": self.reading_order,
            "table_id": self.table_id,
            "section": self.section.value if self.section else None,
            "row": self.row,
            "col": self.col,
            "has_content": self.has_content,
            "lines": [[item.to_dict() for item in line] for line in self.lines],
            "html": self.html,
            "skip": self.skip,
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Zone':
        from .text import TextItem

        return cls(
            bbox=BoundingBox(*data["bbox"]),
            zone_type=ZoneType(data["type"]),
            zone_id=data.get("zone_id", -1),
            column=ColumnClass(data.get("column", "span")),
            reading_order=data.get("reading_order"),
            table_id=data.get("table_id"),
            section=TableSection(data["section"]) if data.get("section") else None,
            row=data.get("row"),
            col=data.get("col"),
            has_content=data.get("has_content", False),
            lines=[[TextItem.from_dict(i) for i in line] for line in data.get("lines", [])],
            html=data.get("html", ""),
            skip=data.get("skip", False),
            metadata=dict(data.get("metadata", {}))
        )


@dataclass
class SegmentationResult:
    """Result of zone segmentation for one page bitmap."""
    zones: List[Zone]
    width: int
    height: int
    centre_x: float
    split_y: Optional[int] = None
    page_number: int = 1
    debug_image: Optional[np.ndarray] = None

    @property
    def table_zones(self) -> List[Zone]:
        return [z for z in self.zones if z.zone_type == ZoneType.TABLE]


# Colours (BGR) for the debug visualisation
ZONE_COLORS = {
    ZoneType.HEADER: (255, 0, 255),
    ZoneType.HEADING: (0, 128, 255),
    ZoneType.FOOTER: (128, 0, 128),
    ZoneType.IMAGE: (0, 200, 200),
    ZoneType.FIGURE: (255, 255, 0),
    ZoneType.TABLE: (0, 0, 255),
    ZoneType.BODY: (0, 160, 0),
}


# ============================================================================
# Pure Helpers
# ============================================================================

def blank_row_runs(binary: np.ndarray) -> List[Tuple[int, int]]:
    """
    Blank-row runs read bottom-up as (start, end) pairs, end exclusive.

    The first entry is always the bottom margin; it is empty when ink
    reaches the last row.
    """
    h = binary.shape[0]
    blank = row_ink(binary) == 0
    found = runs(blank)
    found.reverse()

    if not found or found[0][1] != h:
        found.insert(0, (h, h))
    return found


def find_footer_separator(
    run_lengths: Sequence[int],
    gap_min: int = 20,
    ratio: float = 3.5
) -> Optional[int]:
    """
    Index of the body/footnote separator among bottom-up blank-row runs.

    The first run is the bottom margin and is skipped. The separator is the
    first later run that is at least ``gap_min`` rows, or at least ``ratio``
    times the largest run seen before it.

    Returns:
        Index into ``run_lengths``, or None when no gap qualifies
    """
    largest = 0
    for index, length in enumerate(run_lengths):
        if index == 0:
            continue
        if length >= gap_min or (largest > 0 and length >= ratio * largest):
            return index
        largest = max(largest, length)
    return None


def _side(bbox: BoundingBox, centre_x: float) -> ColumnClass:
    if bbox.x1 < centre_x < bbox.x2:
        return ColumnClass.SPAN
    return ColumnClass.LEFT if bbox.center[0] < centre_x else ColumnClass.RIGHT


def _should_merge(a: Zone, b: Zone, centre_x: float, config: SegmentationConfig) -> bool:
    smaller = min(a.bbox.area, b.bbox.area)
    if smaller > 0 and a.bbox.intersection_area(b.bbox) > config.overlap_merge_ratio * smaller:
        return True

    same_line = (
        abs(a.bbox.y1 - b.bbox.y1) <= config.same_line_tolerance and
        abs(a.bbox.y2 - b.bbox.y2) <= config.same_line_tolerance
    )
    return same_line and _side(a.bbox, centre_x) == _side(b.bbox, centre_x)


def consolidate_blocks(
    blocks: List[Zone],
    centre_x: float,
    config: Optional[SegmentationConfig] = None
) -> List[Zone]:
    """
    Merge overlapping and same-line blocks of the same type to a fixed point.

    Running it again on its own output changes nothing.
    """
    config = config or SegmentationConfig()
    merged = list(blocks)

    changed = True
    while changed:
        changed = False
        for i in range(len(merged)):
            for j in range(i + 1, len(merged)):
                a, b = merged[i], merged[j]
                if a.zone_type != b.zone_type:
                    continue
                if _should_merge(a, b, centre_x, config):
                    merged[i] = Zone(
                        bbox=a.bbox.union(b.bbox),
                        zone_type=a.zone_type,
                        metadata={**b.metadata, **a.metadata}
                    )
                    del merged[j]
                    changed = True
                    break
            if changed:
                break

    return merged


def merge_centre_headings(
    blocks: List[Zone],
    centre_x: float
) -> List[Zone]:
    """
    Merge body fragments around the page centre into HEADING blocks.

    Only applies on pages where body blocks sit on both sides of the centre.
    """
    body = [b for b in blocks if b.zone_type == ZoneType.BODY]
    has_left = any(b.bbox.x2 <= centre_x for b in body)
    has_right = any(b.bbox.x1 >= centre_x for b in body)
    if not (has_left and has_right):
        return blocks

    def touches(block: Zone) -> bool:
        return block.bbox.x1 <= centre_x <= block.bbox.x2

    # Union-find over the adjacency graph
    parent = list(range(len(body)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(len(body)):
        for j in range(i + 1, len(body)):
            if body[i].bbox.vertical_overlap(body[j].bbox) <= 0:
                continue
            if touches(body[i]) or touches(body[j]):
                parent[find(i)] = find(j)

    components: Dict[int, List[int]] = {}
    for i in range(len(body)):
        components.setdefault(find(i), []).append(i)

    headings = []
    for members in components.values():
        if not any(body[i].bbox.x1 < centre_x < body[i].bbox.x2 for i in members):
            continue
        bbox = body[members[0]].bbox
        for i in members[1:]:
            bbox = bbox.union(body[i].bbox)
        headings.append(Zone(bbox=bbox, zone_type=ZoneType.HEADING))

    if not headings:
        return blocks

    result = [
        b for b in blocks
        if not (b.zone_type == ZoneType.BODY and any(h.bbox.contains(b.bbox) for h in headings))
    ]
    logger.debug(f"Merged {len(headings)} centre-spanning heading(s)")
    return result + headings


def assign_reading_order(
    blocks: List[Zone],
    centre_x: float,
    config: Optional[SegmentationConfig] = None
) -> List[Zone]:
    """
    Classify blocks LEFT/RIGHT/SPAN and number them in reading order.

    HEADER and FOOTER blocks are not numbered. The returned list holds the
    headers first, then the numbered blocks in order, then the footers.
    """
    config = config or SegmentationConfig()
    margin = config.span_margin

    for block in blocks:
        if block.zone_type in (ZoneType.HEADER, ZoneType.FOOTER, ZoneType.HEADING):
            block.column = ColumnClass.SPAN
        elif block.bbox.x1 < centre_x - margin and block.bbox.x2 > centre_x + margin:
            block.column = ColumnClass.SPAN
        elif block.bbox.center[0] < centre_x:
            block.column = ColumnClass.LEFT
        else:
            block.column = ColumnClass.RIGHT

    headers = [b for b in blocks if b.zone_type == ZoneType.HEADER]
    footers = [b for b in blocks if b.zone_type == ZoneType.FOOTER]
    orderable = sorted(
        (b for b in blocks if not b.is_page_furniture),
        key=lambda b: (b.bbox.y1, b.bbox.x1)
    )

    # Group into horizontal lines by vertical overlap
    lines: List[List[Zone]] = []
    line_bottom = None
    for block in orderable:
        if lines and block.bbox.y1 < line_bottom - config.reading_line_tolerance:
            lines[-1].append(block)
            line_bottom = max(line_bottom, block.bbox.y2)
        else:
            lines.append([block])
            line_bottom = block.bbox.y2

    rank = {ColumnClass.LEFT: 0, ColumnClass.RIGHT: 1, ColumnClass.SPAN: 2}
    ordered = []
    for line in lines:
        ordered.extend(sorted(line, key=lambda b: (rank[b.column], b.bbox.y1, b.bbox.x1)))

    for index, block in enumerate(ordered, start=1):
        block.reading_order = index
    for block in headers + footers:
        block.reading_order = None

    return headers + ordered + footers


# ============================================================================
# Zone Segmenter
# ============================================================================

class ZoneSegmenter:
    """
    Partitions a page bitmap into typed zones.

    Stages run on a working copy of the binarized page; each detected
    header, figure and table region is masked out before the next stage.
    """

    def __init__(self, config: Optional[SegmentationConfig] = None):
        self.config = config or SegmentationConfig()

    def segment(
        self,
        image: np.ndarray,
        page_number: int = 1,
        anchors: Optional[Sequence[Tuple[float, float]]] = None,
        crop: Optional[Tuple[float, float, float, float]] = None,
        debug: bool = False
    ) -> SegmentationResult:
        """
        Segment a page image into zones.

        Args:
            image: Rendered page (BGR, BGRA or grayscale)
            page_number: 1-based page number; page 1 gets title-band handling
            anchors: Figure-label anchor points in pixel coordinates
            crop: Crop rectangle (x1, y1, x2, y2) in pixels; ink outside is erased
            debug: If True, include a debug visualisation

        Returns:
            SegmentationResult with zones in reading order
        """
        anchors = [(float(x), float(y)) for x, y in (anchors or [])]
        binary = erase_outside_crop(binarize(image, self.config.binarize_threshold), crop)
        h, w = binary.shape[:2]

        bounds = ink_bounds(binary)
        if bounds is None:
            logger.info(f"Page {page_number}: blank bitmap, no zones")
            return SegmentationResult(zones=[], width=w, height=h, centre_x=w / 2,
                                      page_number=page_number)

        centre_x = (bounds[0] + bounds[2]) / 2
        working = binary.copy()
        blocks: List[Zone] = []

        header = self._detect_header_band(binary, page_number)
        header_bottom = 0
        if header is not None:
            blocks.append(header)
            header_bottom = int(header.bbox.y2)
            self._mask(working, header.bbox)

        split_y = self._find_footer_split(binary, header_bottom)

        figures = self._detect_figures(working, anchors)
        for zone in figures:
            self._mask(working, zone.bbox)

        tables = self._detect_tables(working)
        for zone in tables:
            self._mask(working, zone.bbox)

        blocks.extend(figures)
        blocks.extend(tables)
        blocks.extend(self._detect_text_blocks(working, anchors, split_y))

        if self.config.heading_merge:
            blocks = merge_centre_headings(blocks, centre_x)
        blocks = consolidate_blocks(blocks, centre_x, self.config)
        zones = assign_reading_order(blocks, centre_x, self.config)

        for zone_id, zone in enumerate(zones):
            zone.zone_id = zone_id

        counts: Dict[str, int] = {}
        for zone in zones:
            counts[zone.zone_type.value] = counts.get(zone.zone_type.value, 0) + 1
        logger.debug(f"Page {page_number}: zones {counts}, split at {split_y}")

        debug_image = self._draw_debug(image, zones) if debug else None

        return SegmentationResult(
            zones=zones,
            width=w,
            height=h,
            centre_x=centre_x,
            split_y=split_y,
            page_number=page_number,
            debug_image=debug_image
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _ink_bands(self, has_ink: np.ndarray) -> List[Tuple[int, int]]:
        """Ink row runs joined across gaps shorter than the band break."""
        bands: List[Tuple[int, int]] = []
        for start, end in runs(has_ink):
            if bands and start - bands[-1][1] < self.config.band_blank_rows:
                bands[-1] = (bands[-1][0], end)
            else:
                bands.append((start, end))
        return bands

    def _detect_header_band(self, binary: np.ndarray, page_number: int) -> Optional[Zone]:
        h = binary.shape[0]
        fraction = (
            self.config.header_scan_fraction_first if page_number == 1
            else self.config.header_scan_fraction
        )
        limit = max(1, int(h * fraction))
        bands = self._ink_bands(row_ink(binary[:limit]) > 0)
        if not bands:
            return None

        start, end = bands[0]
        if page_number == 1:
            first_height = end - start
            for next_start, next_end in bands[1:]:
                if next_start - end >= self.config.title_band_max_gap:
                    break
                tolerance = self.config.title_band_height_tolerance * first_height
                if abs((next_end - next_start) - first_height) > tolerance:
                    break
                end = next_end

        cols = np.flatnonzero(column_ink(binary[start:end]))
        zone_type = ZoneType.HEADING if page_number == 1 else ZoneType.HEADER
        return Zone(
            bbox=BoundingBox(int(cols[0]), start, int(cols[-1]) + 1, end),
            zone_type=zone_type,
            metadata={"source": "header_band"}
        )

    def _find_footer_split(self, binary: np.ndarray, header_bottom: int) -> Optional[int]:
        h = binary.shape[0]
        scan_top = h * (1 - self.config.footer_scan_fraction)

        candidates = []
        for start, end in blank_row_runs(binary):
            if candidates and (start <= header_bottom or start == 0 or start < scan_top):
                break
            candidates.append((start, end))

        index = find_footer_separator(
            [end - start for start, end in candidates],
            gap_min=self.config.footer_gap_min,
            ratio=self.config.footer_gap_ratio
        )
        if index is None:
            logger.debug("No footer separator found")
            return None

        start, end = candidates[index]
        return (start + end) // 2

    def _detect_figures(
        self,
        working: np.ndarray,
        anchors: List[Tuple[float, float]]
    ) -> List[Zone]:
        figures = []
        min_size = self.config.figure_min_size
        anchor_min = self.config.anchor_region_min_size

        for region in find_regions(working):
            framed = region.has_child and region.width > min_size and region.height > min_size
            anchored = (
                region.width >= anchor_min and region.height >= anchor_min and
                any(region.contains_point(x, y) for x, y in anchors)
            )
            if framed or anchored:
                figures.append(Zone(
                    bbox=BoundingBox(region.x, region.y, region.x2, region.y2),
                    zone_type=ZoneType.FIGURE,
                    metadata={"source": "framed" if framed else "anchor"}
                ))

        return figures

    def _detect_tables(self, working: np.ndarray) -> List[Zone]:
        h, w = working.shape[:2]
        length = max(int(w * self.config.table_line_kernel_ratio), self.config.table_line_min_length)
        segments = sorted(find_components(horizontal_lines(working, length)), key=lambda r: r.y)

        cores: List[Dict[str, int]] = []
        for seg in segments:
            if cores and seg.y - cores[-1]["y2"] < self.config.table_core_gap:
                core = cores[-1]
                core["x1"] = min(core["x1"], seg.x)
                core["x2"] = max(core["x2"], seg.x2)
                core["y2"] = max(core["y2"], seg.y2)
                core["lines"] += 1
            else:
                cores.append({"x1": seg.x, "y1": seg.y, "x2": seg.x2, "y2": seg.y2, "lines": 1})

        tables = []
        for core in cores:
            if core["lines"] < self.config.table_min_lines:
                continue
            has_ink = row_ink(working[:, core["x1"]:core["x2"]]) > 0
            top = self._expand(has_ink, core["y1"], -1)
            bottom = self._expand(has_ink, core["y2"] - 1, 1)
            tables.append(Zone(
                bbox=BoundingBox(core["x1"], top, core["x2"], bottom + 1),
                zone_type=ZoneType.TABLE,
                metadata={"rulings": core["lines"]}
            ))

        return tables

    def _expand(self, has_ink: np.ndarray, row: int, step: int) -> int:
        """Walk from ``row`` until a long enough blank run; return the last ink row."""
        limit = self.config.table_expand_blank_rows
        edge = row
        blank = 0
        r = row + step
        while 0 <= r < len(has_ink):
            if has_ink[r]:
                edge = r
                blank = 0
            else:
                blank += 1
                if blank >= limit:
                    break
            r += step
        return edge

    def _detect_text_blocks(
        self,
        working: np.ndarray,
        anchors: List[Tuple[float, float]],
        split_y: Optional[int]
    ) -> List[Zone]:
        merged = morph_close(working, (self.config.text_close_kernel_width, 1))
        merged = morph_close(merged, (1, self.config.text_close_kernel_height))

        blocks = []
        for region in find_regions(merged):
            if region.width * region.height < self.config.min_block_area:
                continue

            density = ink_density(working[region.y:region.y2, region.x:region.x2])
            if density > self.config.image_density:
                zone_type = ZoneType.IMAGE
            elif any(region.contains_point(x, y) for x, y in anchors):
                zone_type = ZoneType.FIGURE
            elif split_y is not None and (region.y + region.y2) / 2 > split_y:
                zone_type = ZoneType.FOOTER
            else:
                zone_type = ZoneType.BODY

            blocks.append(Zone(
                bbox=BoundingBox(region.x, region.y, region.x2, region.y2),
                zone_type=zone_type,
                metadata={"density": round(density, 3)}
            ))

        return blocks

    @staticmethod
    def _mask(working: np.ndarray, bbox: BoundingBox):
        x1, y1 = int(max(0, bbox.x1)), int(max(0, bbox.y1))
        x2, y2 = int(np.ceil(bbox.x2)), int(np.ceil(bbox.y2))
        working[y1:y2, x1:x2] = 0

    def _draw_debug(self, image: np.ndarray, zones: List[Zone]) -> np.ndarray:
        """Draw colour-coded zones with their type and reading order."""
        boxes = [z.bbox.to_xywh() for z in zones]
        labels = [
            f"{z.zone_type.value}:{z.reading_order}" if z.reading_order else z.zone_type.value
            for z in zones
        ]
        colors = [ZONE_COLORS.get(z.zone_type, (128, 128, 128)) for z in zones]
        return draw_debug_image(image, boxes, labels, colors)


# ============================================================================
# Example Usage
# ============================================================================

if __name__ == "__main__":
    import sys
    import cv2

    if len(sys.argv) > 1:
        image = cv2.imread(sys.argv[1], cv2.IMREAD_UNCHANGED)
        if image is None:
            print(f"Failed to load image: {sys.argv[1]}")
            sys.exit(1)

        page_number = int(sys.argv[2]) if len(sys.argv) > 2 else 1
        result = ZoneSegmenter().segment(image, page_number=page_number, debug=True)

        print(f"Found {len(result.zones)} zones (footer split: {result.split_y})")
        for zone in result.zones:
            print(f"  [{zone.reading_order}] {zone.zone_type.value} "
                  f"{zone.column.value}: bbox={zone.bbox.to_tuple()}")

        cv2.imwrite("zones_debug.png", result.debug_image)
        print("Saved debug image to zones_debug.png")
    else:
        print("Usage: python layout.py <page_image> [page_number]")
