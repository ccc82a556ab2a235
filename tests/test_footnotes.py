"""
Tests for footnote reference marking and resolution.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _item(text, left=0.0, bottom=110.0, size=10.0):
    from page_recon.utils.text import TextItem
    return TextItem(text=text, left=left, top=bottom - size, right=left + 30, bottom=bottom,
                    font_name="Times", font_size=size, font_signature=f"Times_{size:g}")


def _zone(zone_type, lines, y1=0):
    from page_recon.utils.layout import Zone, BoundingBox
    return Zone(bbox=BoundingBox(0, y1, 600, y1 + 100), zone_type=zone_type, lines=lines)


class TestLeadingNumber:
    """Test reading the number that opens a footer line."""

    def test_plain(self):
        from page_recon.utils.footnotes import leading_number

        number, rest = leading_number([_item("1"), _item("Text")], 1)

        assert number == 1
        assert [i.text for i in rest] == ["Text"]

    def test_spaced_digits(self):
        from page_recon.utils.footnotes import leading_number

        number, rest = leading_number([_item("1 0"), _item("Text")], 10)

        assert number == 10
        assert [i.text for i in rest] == ["Text"]

    def test_digits_across_runs(self):
        from page_recon.utils.footnotes import leading_number

        number, rest = leading_number([_item("1"), _item("0"), _item("Text")], 10)

        assert number == 10
        assert [i.text for i in rest] == ["Text"]

    def test_glued_number(self):
        from page_recon.utils.footnotes import leading_number

        number, rest = leading_number([_item("3See page 4.")], 3)

        assert number == 3
        assert rest[0].text == "See page 4."

    def test_ordinal_is_not_number(self):
        from page_recon.utils.footnotes import leading_number, split_numbered_lines

        assert leading_number([_item("1st century sources")], 1)[0] is None
        assert leading_number([_item("12th")], 12)[0] is None
        assert leading_number([_item("1990s prices")], 1990)[0] is None

        leading, entries = split_numbered_lines([
            [_item("1st century coin hoards")],
            [_item("1"), _item("See Hall.")],
        ])

        assert [[i.text for i in line] for line in leading] == [["1st century coin hoards"]]
        assert [number for number, _ in entries] == [1]

    def test_no_number(self):
        from page_recon.utils.footnotes import leading_number

        assert leading_number([_item("Text")], 1)[0] is None
        assert leading_number([], 1) == (None, [])

    def test_unexpected_number(self):
        from page_recon.utils.footnotes import leading_number

        number, rest = leading_number([_item("7"), _item("x")], 1)

        assert number == 7
        assert [i.text for i in rest] == ["x"]


class TestSplitNumberedLines:
    """Test grouping footer lines into numbered entries."""

    def test_entries_and_leading(self):
        from page_recon.utils.footnotes import split_numbered_lines

        lines = [
            [_item("Note:")],
            [_item("1"), _item("a")],
            [_item("continued")],
            [_item("2"), _item("b")],
            [_item("5"), _item("c")],
        ]

        leading, entries = split_numbered_lines(lines)

        assert [[i.text for i in line] for line in leading] == [["Note:"]]
        assert [n for n, _ in entries] == [1, 2]
        assert [[i.text for i in line] for line in entries[0][1]] == [["a"], ["continued"]]
        # Out-of-sequence number continues the open entry
        assert [[i.text for i in line] for line in entries[1][1]] == [["b"], ["5", "c"]]


class TestFootnoteResolver:
    """Test reference marking and inlining."""

    @pytest.fixture
    def page(self):
        from page_recon.utils.layout import ZoneType

        body = _zone(ZoneType.BODY, [
            [_item("Prices"), _item("1", left=30, bottom=106, size=6), _item("rose", left=40)],
            [_item("sharply", bottom=122), _item("2", left=40, bottom=118, size=6)],
            [_item("as", bottom=134), _item("noted", left=30, bottom=134),
             _item("3", left=60, bottom=130, size=6)],
        ])
        footer = _zone(ZoneType.FOOTER, [
            [_item("1", bottom=710), _item("First note.", left=10, bottom=710)],
            [_item("2", bottom=722), _item("Second note.", left=10, bottom=722)],
            [_item("3", bottom=734), _item("See also page 12.", left=10, bottom=734)],
        ], y1=700)
        return [body, footer]

    def test_mark_references(self, page):
        from page_recon.utils.footnotes import FootnoteResolver

        referenced = FootnoteResolver().mark_references(page)

        assert referenced == [1, 2, 3]
        assert page[0].lines[0][1].foot_index == 1
        # Footer numbers are never references
        assert all(item.foot_index is None for item in page[1].items)

    def test_not_raised_is_not_reference(self):
        from page_recon.utils.footnotes import FootnoteResolver
        from page_recon.utils.layout import ZoneType

        zone = _zone(ZoneType.BODY, [[_item("In"), _item("2020", left=30), _item("prices", left=60)]])

        assert FootnoteResolver().mark_references([zone]) == []

    def test_parse_footer(self, page):
        from page_recon.utils.footnotes import FootnoteResolver

        entries = FootnoteResolver().parse_footer(page[1].lines)

        assert entries == {1: "First note.", 2: "Second note.", 3: "See also page 12."}

    def test_resolve_with_offset(self, page):
        from page_recon.utils.footnotes import FootnoteResolver
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        resolver = FootnoteResolver()
        resolver.mark_references(page)
        ReadingOrderAssembler().render_zone(page[0])

        highest = resolver.resolve(page, offset=4)

        assert highest == 3
        html = page[0].html
        assert '<sup class="footnote-ref" data-ref="5">First note.</sup>' in html
        assert '<sup class="footnote-ref" data-ref="7">See also page 12.</sup>' in html
        assert html.startswith("<p>Prices<sup")

    def test_unresolved_reference_is_plain(self, caplog):
        from page_recon.utils.footnotes import FootnoteResolver
        from page_recon.utils.layout import ZoneType

        body = _zone(ZoneType.BODY, [])
        body.html = '<p>Text<sup class="footnote-ref" data-ref="4"></sup></p>'

        highest = FootnoteResolver().resolve([body])

        assert body.html == "<p>Text4</p>"
        assert highest == 4
        assert "Unresolved" in caplog.text

    def test_unreferenced_footnote_logged(self, page, caplog):
        from page_recon.utils.footnotes import FootnoteResolver

        page[0].html = "<p>No references here</p>"

        FootnoteResolver().resolve(page)

        assert page[0].html == "<p>No references here</p>"
        assert "without a reference" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
