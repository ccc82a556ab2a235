"""
Table structure module for page layout reconstruction.

Provides:
- Decomposition of TABLE zones into a cell grid (caption, header, body, notes)
- Ruling detection and white-space river analysis
- Near-duplicate table zone removal
- Assembly of cell fragments into one HTML table per table id
"""

import logging
from typing import List, Optional, Tuple, Dict, Callable
import numpy as np

from ..config import TableConfig
from .images import horizontal_lines, vertical_lines, row_ink, column_ink, ink_density, ink_bounds, runs
from .layout import Zone, ZoneType, TableSection, BoundingBox
from .markup import escape_html

logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================

def dedupe_table_zones(zones: List[Zone], tolerance: float = 5) -> List[Zone]:
    """Drop TABLE zones whose edges all lie within ``tolerance`` of an earlier one."""
    kept: List[Zone] = []
    for zone in zones:
        if zone.zone_type == ZoneType.TABLE and any(
            other.zone_type == ZoneType.TABLE and other.bbox.is_near(zone.bbox, tolerance)
            for other in kept
        ):
            logger.debug(f"Dropping duplicate table zone {zone.bbox.to_tuple()}")
            continue
        kept.append(zone)
    return kept


def merge_dividers(positions: List[float], distance: float) -> List[float]:
    """Collapse divider positions closer than ``distance`` into their mean."""
    merged: List[List[float]] = []
    for pos in sorted(positions):
        if merged and pos - merged[-1][-1] < distance:
            merged[-1].append(pos)
        else:
            merged.append([pos])
    return [sum(group) / len(group) for group in merged]


def _spans(start: int, end: int, dividers: List[float]) -> List[Tuple[int, int]]:
    bounds = [start] + [int(round(d)) for d in dividers] + [end]
    return [(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1) if bounds[i + 1] > bounds[i]]


# ============================================================================
# Table Structure Parser
# ============================================================================

class TableStructureParser:
    """
    Splits a TABLE zone into caption, header, body and notes cells.

    Works on the binarized page in the same pixel coordinates as the zone.
    """

    def __init__(self, config: Optional[TableConfig] = None):
        self.config = config or TableConfig()

    def parse(self, zone: Zone, binary: np.ndarray, table_id: int = 0) -> List[Zone]:
        """
        Parse one table zone.

        Args:
            zone: TABLE zone in pixel coordinates
            binary: Binarized page, ink = 255
            table_id: Identifier shared by every produced cell

        Returns:
            Cell zones, or ``[zone]`` unchanged when it has too few rulings
        """
        region = zone.crop_from_image(binary)
        h, w = region.shape[:2]
        if h == 0 or w == 0:
            return [zone]

        line_mask = horizontal_lines(region, max(1, int(w * self.config.line_kernel_ratio)))
        rulings = runs(row_ink(line_mask) > 0)
        if len(rulings) < self.config.min_rulings:
            logger.debug(f"Table zone with {len(rulings)} rulings kept as a block")
            return [zone]

        # Text-only view for river and density tests
        rule_mask = line_mask | vertical_lines(region, self.config.vertical_line_min_length)
        text = region.copy()
        text[rule_mask > 0] = 0

        first, second, last = rulings[0], rulings[1], rulings[-1]
        header_band = (first[1], second[0])
        body_band = (second[1], last[0])

        columns = self._column_dividers(text, header_band)
        if columns is None:
            columns = self._column_dividers(text, body_band) or []
        column_spans = _spans(0, w, columns)

        interior = [(s + e) / 2 for s, e in rulings[2:-1]]
        if interior:
            row_dividers = merge_dividers(
                [d - body_band[0] for d in interior], self.config.divider_merge_distance
            )
        else:
            row_dividers = self._row_dividers(text[body_band[0]:body_band[1]])
        row_spans = [
            (body_band[0] + s, body_band[0] + e)
            for s, e in _spans(0, body_band[1] - body_band[0], row_dividers)
        ]

        origin = (zone.bbox.x1, zone.bbox.y1)
        cells: List[Zone] = []

        caption = self._block_cell(text, 0, first[0], origin, zone, table_id, TableSection.CAPTION)
        if caption is not None:
            cells.append(caption)

        for col, (x1, x2) in enumerate(column_spans):
            cells.append(self._grid_cell(
                text, (x1, header_band[0], x2, header_band[1]),
                origin, zone, table_id, TableSection.HEADER, 0, col
            ))

        for row, (y1, y2) in enumerate(row_spans):
            for col, (x1, x2) in enumerate(column_spans):
                cells.append(self._grid_cell(
                    text, (x1, y1, x2, y2),
                    origin, zone, table_id, TableSection.BODY, row, col
                ))

        notes = self._block_cell(text, last[1], h, origin, zone, table_id, TableSection.NOTES)
        if notes is not None:
            cells.append(notes)

        logger.debug(
            f"Table {table_id}: {len(rulings)} rulings, {len(column_spans)} columns, "
            f"{len(row_spans)} body rows"
        )
        return cells

    def _column_dividers(self, text: np.ndarray, band: Tuple[int, int]) -> Optional[List[float]]:
        """Vertical river centres inside ``band``, or None when the band has no ink."""
        y1, y2 = band
        strip = text[y1:y2]
        if strip.size == 0 or not strip.any():
            return None

        w = strip.shape[1]
        sparse = column_ink(strip) < self.config.column_river_density * strip.shape[0]
        dividers = [
            (s + e) / 2 for s, e in runs(sparse)
            if e - s >= self.config.column_river_min_width and s > 0 and e < w
        ]
        return merge_dividers(dividers, self.config.divider_merge_distance)

    def _row_dividers(self, body: np.ndarray) -> List[float]:
        """Horizontal river centres inside the body band."""
        if body.size == 0:
            return []

        h, w = body.shape[:2]
        sparse = row_ink(body) < self.config.row_river_density * w
        dividers = [
            (s + e) / 2 for s, e in runs(sparse)
            if e - s >= self.config.row_river_min_height and s > 0 and e < h
        ]
        return merge_dividers(dividers, self.config.divider_merge_distance)

    def _block_cell(
        self,
        text: np.ndarray,
        y1: int,
        y2: int,
        origin: Tuple[float, float],
        zone: Zone,
        table_id: int,
        section: TableSection
    ) -> Optional[Zone]:
        """Caption or notes cell trimmed to its ink, None when blank."""
        if y2 <= y1:
            return None
        bounds = ink_bounds(text[y1:y2])
        if bounds is None:
            return None

        bx1, by1, bx2, by2 = bounds
        return self._make_cell(
            (bx1, y1 + by1, bx2, y1 + by2), origin, zone, table_id, section, 0, 0, True
        )

    def _grid_cell(
        self,
        text: np.ndarray,
        box: Tuple[int, int, int, int],
        origin: Tuple[float, float],
        zone: Zone,
        table_id: int,
        section: TableSection,
        row: int,
        col: int
    ) -> Zone:
        x1, y1, x2, y2 = box
        has_content = ink_density(text[y1:y2, x1:x2]) > self.config.content_density
        return self._make_cell(box, origin, zone, table_id, section, row, col, has_content)

    @staticmethod
    def _make_cell(
        box: Tuple[int, int, int, int],
        origin: Tuple[float, float],
        zone: Zone,
        table_id: int,
        section: TableSection,
        row: int,
        col: int,
        has_content: bool
    ) -> Zone:
        ox, oy = origin
        x1, y1, x2, y2 = box
        return Zone(
            bbox=BoundingBox(ox + x1, oy + y1, ox + x2, oy + y2),
            zone_type=ZoneType.TABLE,
            column=zone.column,
            reading_order=zone.reading_order,
            table_id=table_id,
            section=section,
            row=row,
            col=col,
            has_content=has_content
        )


# ============================================================================
# Table Assembler
# ============================================================================

def _plain_lines(lines) -> str:
    return escape_html(" ".join(item.text for line in lines for item in line))


class TableAssembler:
    """
    Builds one HTML table per table id from its cell zones.

    The table markup is attached to the first cell encountered; every other
    cell of that table is marked ``skip``.
    """

    def __init__(self, render_lines: Optional[Callable] = None):
        self.render_lines = render_lines or _plain_lines

    def assemble(self, zones: List[Zone]) -> int:
        """
        Assemble every table on a page.

        Returns:
            Number of tables assembled
        """
        tables: Dict[int, List[Zone]] = {}
        for zone in zones:
            if zone.is_table_cell:
                tables.setdefault(zone.table_id, []).append(zone)

        for table_id, cells in tables.items():
            first = cells[0]
            first.html = self.build_html(cells)
            first.skip = False
            for cell in cells[1:]:
                cell.skip = True
                cell.html = ""
            logger.debug(f"Assembled table {table_id} from {len(cells)} cells")

        return len(tables)

    def build_html(self, cells: List[Zone]) -> str:
        """Render the cells of one table."""
        caption = [c for c in cells if c.section == TableSection.CAPTION]
        header = [c for c in cells if c.section == TableSection.HEADER]
        body = [c for c in cells if c.section == TableSection.BODY]
        notes = [c for c in cells if c.section == TableSection.NOTES]

        num_cols = max([c.col for c in body + header] or [-1]) + 1
        num_rows = max([c.row for c in body] or [-1]) + 1

        header_row = ["" for _ in range(num_cols)]
        for cell in header:
            header_row[cell.col] = self.render_lines(cell.lines)

        grid = [["" for _ in range(num_cols)] for _ in range(num_rows)]
        for cell in body:
            grid[cell.row][cell.col] = self.render_lines(cell.lines)

        lines = ['<table>']

        caption_lines = [line for c in caption for line in c.lines]
        if caption_lines:
            lines.append(f'  <caption>{self.render_lines(caption_lines)}</caption>')

        if num_cols:
            lines.append('  <thead>')
            lines.append('    <tr>')
            for text in header_row:
                lines.append(f'      <th>{text}</th>')
            lines.append('    </tr>')
            lines.append('  </thead>')

        lines.append('  <tbody>')
        for row in grid:
            lines.append('    <tr>')
            for text in row:
                lines.append(f'      <td>{text}</td>')
            lines.append('    </tr>')
        lines.append('  </tbody>')

        note_lines = [line for c in notes for line in c.lines]
        if note_lines:
            lines.append('  <tfoot>')
            lines.append(f'    <tr><td colspan="{max(1, num_cols)}">')
            lines.extend(f'      {part}' for part in self._notes_html(note_lines))
            lines.append('    </td></tr>')
            lines.append('  </tfoot>')

        lines.append('</table>')
        return "\n".join(lines)

    def _notes_html(self, note_lines) -> List[str]:
        from .footnotes import split_numbered_lines

        leading, entries = split_numbered_lines(note_lines)
        parts = []
        if leading:
            parts.append(f'<p>{self.render_lines(leading)}</p>')
        if entries:
            parts.append('<ol>')
            for number, entry_lines in entries:
                parts.append(f'<li value="{number}">{self.render_lines(entry_lines)}</li>')
            parts.append('</ol>')
        return parts
