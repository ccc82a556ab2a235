"""
Tests for zone segmentation module.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _text_lines(img, x1, x2, y1, y2, pitch=10, thickness=5):
    """Paint rows of 20px "words" separated by small gaps."""
    for y in range(y1, y2, pitch):
        for x in range(x1, x2, 26):
            img[y:y + thickness, x:min(x + 20, x2)] = 0


class TestBoundingBox:
    """Test BoundingBox class."""

    def test_properties(self):
        from page_recon.utils.layout import BoundingBox

        bbox = BoundingBox(10, 20, 110, 70)

        assert bbox.width == 100
        assert bbox.height == 50
        assert bbox.area == 5000
        assert bbox.center == (60, 45)
        assert bbox.to_xywh() == (10, 20, 100, 50)
        assert BoundingBox.from_xywh(10, 20, 100, 50) == bbox

    def test_intersection_area(self):
        from page_recon.utils.layout import BoundingBox

        bbox1 = BoundingBox(0, 0, 100, 100)
        bbox2 = BoundingBox(50, 50, 150, 150)

        assert bbox1.intersection_area(bbox2) == 2500
        assert bbox1.intersection_area(BoundingBox(200, 200, 300, 300)) == 0

    def test_contains_and_union(self):
        from page_recon.utils.layout import BoundingBox

        outer = BoundingBox(0, 0, 100, 100)
        inner = BoundingBox(10, 10, 50, 50)

        assert outer.contains(inner)
        assert not inner.contains(outer)
        assert inner.union(BoundingBox(60, 5, 80, 20)) == BoundingBox(10, 5, 80, 50)

    def test_vertical_overlap(self):
        from page_recon.utils.layout import BoundingBox

        a = BoundingBox(0, 0, 10, 100)
        assert a.vertical_overlap(BoundingBox(50, 80, 60, 120)) == 20
        assert a.vertical_overlap(BoundingBox(50, 150, 60, 200)) < 0

    def test_is_near(self):
        from page_recon.utils.layout import BoundingBox

        a = BoundingBox(0, 0, 100, 100)
        assert a.is_near(BoundingBox(3, 2, 104, 99), 5)
        assert not a.is_near(BoundingBox(10, 0, 100, 100), 5)


class TestZone:
    """Test Zone data model."""

    def test_table_cell_flag(self):
        from page_recon.utils.layout import Zone, ZoneType, BoundingBox

        table = Zone(bbox=BoundingBox(0, 0, 10, 10), zone_type=ZoneType.TABLE)
        assert not table.is_table_cell

        table.table_id = 0
        assert table.is_table_cell

    def test_furniture(self):
        from page_recon.utils.layout import Zone, ZoneType, BoundingBox

        bbox = BoundingBox(0, 0, 10, 10)
        assert Zone(bbox=bbox, zone_type=ZoneType.HEADER).is_page_furniture
        assert Zone(bbox=bbox, zone_type=ZoneType.FOOTER).is_page_furniture
        assert not Zone(bbox=bbox, zone_type=ZoneType.BODY).is_page_furniture

    def test_dict_round_trip(self):
        from page_recon.utils.layout import Zone, ZoneType, ColumnClass, TableSection, BoundingBox

        zone = Zone(
            bbox=BoundingBox(1, 2, 3, 4),
            zone_type=ZoneType.TABLE,
            zone_id=7,
            column=ColumnClass.LEFT,
            reading_order=3,
            table_id=1,
            section=TableSection.BODY,
            row=0,
            col=1,
            has_content=True
        )

        restored = Zone.from_dict(zone.to_dict())

        assert restored.to_dict() == zone.to_dict()
        assert restored.section == TableSection.BODY


class TestFooterSeparator:
    """Test footer separator detection on blank-row runs."""

    def test_absolute_gap(self):
        from page_recon.utils.layout import find_footer_separator

        assert find_footer_separator([40, 2, 25]) == 2

    def test_relative_gap(self):
        """A run 3.5x the largest earlier run counts as separator."""
        from page_recon.utils.layout import find_footer_separator

        assert find_footer_separator([40, 2, 2, 2, 9]) == 4

    def test_bottom_margin_skipped(self):
        from page_recon.utils.layout import find_footer_separator

        assert find_footer_separator([40]) is None
        assert find_footer_separator([40, 2, 3, 4]) is None
        assert find_footer_separator([]) is None

    def test_blank_row_runs(self):
        from page_recon.utils.layout import blank_row_runs

        binary = np.zeros((10, 5), dtype=np.uint8)
        binary[3:5] = 255

        assert blank_row_runs(binary) == [(5, 10), (0, 3)]

    def test_ink_on_last_row(self):
        """An empty bottom margin is inserted when ink reaches the last row."""
        from page_recon.utils.layout import blank_row_runs

        binary = np.zeros((10, 5), dtype=np.uint8)
        binary[3:5] = 255
        binary[9] = 255

        assert blank_row_runs(binary) == [(10, 10), (5, 9), (0, 3)]


class TestConsolidation:
    """Test block merging."""

    def test_same_line_same_side(self):
        from page_recon.utils.layout import consolidate_blocks, Zone, ZoneType, BoundingBox

        blocks = [
            Zone(bbox=BoundingBox(10, 10, 100, 30), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(110, 12, 200, 32), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(10, 10, 100, 30), zone_type=ZoneType.HEADING),
        ]

        merged = consolidate_blocks(blocks, centre_x=300)

        body = [b for b in merged if b.zone_type == ZoneType.BODY]
        assert len(merged) == 2
        assert body[0].bbox == BoundingBox(10, 10, 200, 32)

    def test_opposite_columns_not_merged(self):
        from page_recon.utils.layout import consolidate_blocks, Zone, ZoneType, BoundingBox

        blocks = [
            Zone(bbox=BoundingBox(10, 100, 280, 400), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(320, 100, 590, 400), zone_type=ZoneType.BODY),
        ]

        assert len(consolidate_blocks(blocks, centre_x=300)) == 2

    def test_idempotent(self):
        from page_recon.utils.layout import consolidate_blocks, Zone, ZoneType, BoundingBox

        blocks = [
            Zone(bbox=BoundingBox(10, 10, 100, 30), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(12, 12, 98, 28), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(110, 15, 150, 35), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(10, 200, 100, 300), zone_type=ZoneType.BODY),
        ]

        once = consolidate_blocks(blocks, centre_x=300)
        twice = consolidate_blocks(once, centre_x=300)

        assert [b.bbox for b in once] == [b.bbox for b in twice]
        assert len(once) == 2


class TestHeadingMerge:
    """Test centre-spanning heading merge."""

    def test_fragments_merged(self):
        from page_recon.utils.layout import merge_centre_headings, Zone, ZoneType, BoundingBox

        blocks = [
            Zone(bbox=BoundingBox(10, 100, 280, 400), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(320, 100, 590, 400), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(150, 20, 290, 40), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(295, 20, 450, 40), zone_type=ZoneType.BODY),
        ]

        result = merge_centre_headings(blocks, centre_x=300)

        headings = [b for b in result if b.zone_type == ZoneType.HEADING]
        assert len(headings) == 1
        assert headings[0].bbox == BoundingBox(150, 20, 450, 40)
        assert len(result) == 3

    def test_single_column_untouched(self):
        from page_recon.utils.layout import merge_centre_headings, Zone, ZoneType, BoundingBox

        blocks = [
            Zone(bbox=BoundingBox(10, 100, 590, 400), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(150, 20, 450, 40), zone_type=ZoneType.BODY),
        ]

        assert merge_centre_headings(blocks, centre_x=300) is blocks


class TestReadingOrder:
    """Test reading order resolution."""

    @pytest.fixture
    def blocks(self):
        from page_recon.utils.layout import Zone, ZoneType, BoundingBox

        return [
            Zone(bbox=BoundingBox(10, 700, 590, 750), zone_type=ZoneType.FOOTER),
            Zone(bbox=BoundingBox(10, 320, 590, 400), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(320, 60, 590, 300), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(10, 60, 280, 300), zone_type=ZoneType.BODY),
            Zone(bbox=BoundingBox(100, 30, 500, 50), zone_type=ZoneType.HEADING),
            Zone(bbox=BoundingBox(0, 0, 600, 20), zone_type=ZoneType.HEADER),
        ]

    def test_columns(self, blocks):
        from page_recon.utils.layout import assign_reading_order, ColumnClass

        ordered = assign_reading_order(blocks, centre_x=300)

        assert [b.column for b in ordered] == [
            ColumnClass.SPAN,   # header
            ColumnClass.SPAN,   # heading
            ColumnClass.LEFT,
            ColumnClass.RIGHT,
            ColumnClass.SPAN,   # full-width body
            ColumnClass.SPAN,   # footer
        ]

    def test_order_contiguous(self, blocks):
        from page_recon.utils.layout import assign_reading_order, ZoneType

        ordered = assign_reading_order(blocks, centre_x=300)

        assert ordered[0].zone_type == ZoneType.HEADER
        assert ordered[-1].zone_type == ZoneType.FOOTER
        assert ordered[0].reading_order is None
        assert ordered[-1].reading_order is None
        assert [b.reading_order for b in ordered[1:-1]] == [1, 2, 3, 4]

    def test_left_before_right(self, blocks):
        from page_recon.utils.layout import assign_reading_order

        ordered = assign_reading_order(blocks, centre_x=300)

        assert ordered[2].bbox.x1 == 10
        assert ordered[3].bbox.x1 == 320


class TestZoneSegmenter:
    """Test ZoneSegmenter on synthetic pages."""

    @pytest.fixture
    def two_column_page(self):
        """600x800 page: running header, two text columns and a footnote."""
        img = np.full((800, 600, 3), 255, dtype=np.uint8)
        img[20:30, 50:550] = 0
        _text_lines(img, 50, 280, 200, 500)
        _text_lines(img, 320, 550, 200, 500)
        _text_lines(img, 50, 300, 740, 753, pitch=8, thickness=4)
        return img

    def test_blank_page(self):
        from page_recon.utils.layout import ZoneSegmenter

        img = np.full((200, 100, 3), 255, dtype=np.uint8)
        result = ZoneSegmenter().segment(img)

        assert result.zones == []
        assert result.centre_x == 50

    def test_two_column_page(self, two_column_page):
        from page_recon.utils.layout import ZoneSegmenter, ZoneType, ColumnClass

        result = ZoneSegmenter().segment(two_column_page, page_number=2)

        assert [z.zone_type for z in result.zones] == [
            ZoneType.HEADER, ZoneType.BODY, ZoneType.BODY, ZoneType.FOOTER
        ]
        header, left, right, footer = result.zones
        assert header.reading_order is None
        assert (left.column, left.reading_order) == (ColumnClass.LEFT, 1)
        assert (right.column, right.reading_order) == (ColumnClass.RIGHT, 2)
        assert footer.reading_order is None
        assert 495 < result.split_y < 740
        assert [z.zone_id for z in result.zones] == [0, 1, 2, 3]

    def test_first_page_title_band(self, two_column_page):
        """On the first page the top band is a heading, not a running header."""
        from page_recon.utils.layout import ZoneSegmenter, ZoneType

        result = ZoneSegmenter().segment(two_column_page, page_number=1)

        assert result.zones[0].zone_type == ZoneType.HEADING
        assert result.zones[0].reading_order == 1

    def test_crop_erases_marks(self, two_column_page):
        """Ink outside the crop rectangle produces no zones."""
        from page_recon.utils.layout import ZoneSegmenter

        two_column_page[790:800, 0:10] = 0
        result = ZoneSegmenter().segment(two_column_page, page_number=2, crop=(40, 10, 560, 780))

        assert all(z.bbox.y2 <= 780 for z in result.zones)
        assert len(result.zones) == 4

    def test_framed_figure(self):
        from page_recon.utils.layout import ZoneSegmenter, ZoneType

        img = np.full((800, 600, 3), 255, dtype=np.uint8)
        img[300:303, 100:400] = 0
        img[547:550, 100:400] = 0
        img[300:550, 100:103] = 0
        img[300:550, 397:400] = 0

        result = ZoneSegmenter().segment(img, page_number=2)

        assert len(result.zones) == 1
        assert result.zones[0].zone_type == ZoneType.FIGURE
        assert result.zones[0].bbox.width == 300

    def test_anchor_makes_figure(self):
        from page_recon.utils.layout import ZoneSegmenter, ZoneType

        img = np.full((800, 600, 3), 255, dtype=np.uint8)
        _text_lines(img, 100, 200, 300, 340)

        plain = ZoneSegmenter().segment(img, page_number=2)
        anchored = ZoneSegmenter().segment(img, page_number=2, anchors=[(150, 322)])

        assert [z.zone_type for z in plain.zones] == [ZoneType.BODY]
        assert [z.zone_type for z in anchored.zones] == [ZoneType.FIGURE]

    def test_ruled_table(self):
        from page_recon.utils.layout import ZoneSegmenter

        img = np.full((800, 600, 3), 255, dtype=np.uint8)
        for y in (300, 340, 390):
            img[y:y + 2, 100:500] = 0
        _text_lines(img, 120, 200, 315, 330)
        _text_lines(img, 120, 200, 355, 380)

        result = ZoneSegmenter().segment(img, page_number=2)

        tables = result.table_zones
        assert len(tables) == 1
        assert tables[0].bbox.to_tuple() == (100, 300, 500, 392)
        assert len(result.zones) == 1

    def test_debug_image(self, two_column_page):
        from page_recon.utils.layout import ZoneSegmenter

        result = ZoneSegmenter().segment(two_column_page, page_number=2, debug=True)

        assert result.debug_image is not None
        assert result.debug_image.shape == (800, 600, 3)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
