"""
Tests for reading-order assembly of paragraphs, headings and captions.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _item(text, left=50.0, bottom=110.0, width=60.0, font="Times", size=10.0, italic=False, **kwargs):
    from page_recon.utils.text import TextItem, font_signature
    return TextItem(
        text=text,
        left=left,
        top=bottom - size,
        right=left + width,
        bottom=bottom,
        font_name=font,
        font_size=size,
        italic=italic,
        font_signature=font_signature(font, size),
        **kwargs
    )


def _zone(lines, zone_type=None):
    from page_recon.utils.layout import Zone, ZoneType, BoundingBox
    return Zone(bbox=BoundingBox(0, 0, 600, 800), zone_type=zone_type or ZoneType.BODY, lines=lines)


class TestLineGeometry:
    """Test line helper functions."""

    def test_caption_start(self):
        from page_recon.utils.paragraphs import caption_start

        assert caption_start([_item("3"), _item("Income", italic=True)]) == 3
        assert caption_start([_item("3"), _item("Income")]) is None
        assert caption_start([_item("3", italic=True), _item("Income", italic=True)]) is None
        assert caption_start([_item("3")]) is None

    def test_caption_start_ignores_footnote_marks(self):
        from page_recon.utils.paragraphs import caption_start

        marked = _item("3", width=8, foot_index=0)
        assert caption_start([marked, _item("Domesday", italic=True)]) is None
        # Only a leading integer opens a caption
        assert caption_start([_item("The"), _item("3"), _item("Domesday", italic=True)]) is None

    def test_line_signature(self):
        from page_recon.utils.paragraphs import line_signature

        assert line_signature([_item("a"), _item("b")]) == "Times_10"
        assert line_signature([_item("a"), _item("b", font="Arial")]) is None

    def test_median_pitch(self):
        from page_recon.utils.paragraphs import median_pitch

        lines = [[_item("a", bottom=b)] for b in (110, 122, 170, 182)]
        assert median_pitch(lines) == 12
        assert median_pitch([]) == 0


class TestClassifyLines:
    """Test window-based line classification."""

    def test_paragraph_breaks_on_indent(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler, BlockState

        lines = [
            [_item("First", bottom=110)],
            [_item("second", bottom=122)],
            [_item("Indented", left=60, bottom=134)],
        ]

        decisions = ReadingOrderAssembler().classify_lines(lines, "Times_10")

        assert [d.state for d in decisions] == [BlockState.IN_PARAGRAPH] * 3
        assert [d.starts_block for d in decisions] == [True, False, True]

    def test_heading_lines_continue(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler, BlockState

        lines = [
            [_item("Long", font="Times-Bold", size=16, bottom=110)],
            [_item("title", font="Times-Bold", size=16, bottom=130)],
            [_item("Body", bottom=150)],
        ]

        decisions = ReadingOrderAssembler().classify_lines(lines, "Times_10")

        assert [d.state for d in decisions] == [
            BlockState.IN_HEADING, BlockState.IN_HEADING, BlockState.IN_PARAGRAPH
        ]
        assert [d.starts_block for d in decisions] == [True, False, True]
        assert decisions[0].signature == "Times-Bold_16"

    def test_empty(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        assert ReadingOrderAssembler().classify_lines([], None) == []


class TestRenderZone:
    """Test zone rendering."""

    def test_paragraphs(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        zone = _zone([
            [_item("The", bottom=110), _item("typi-", left=120, bottom=110)],
            [_item("cal", bottom=122), _item("government", left=120, bottom=122),
             _item("spends", left=190, bottom=122)],
            [_item("A", left=60, bottom=134), _item("new", left=120, bottom=134)],
        ])

        html = ReadingOrderAssembler().render_zone(zone)

        assert html == "<p>The typical government spends</p>\n<p>A new</p>"
        assert zone.html == html
        assert zone.lines[1][-1].is_paragraph_end
        assert zone.lines[2][-1].is_paragraph_end
        assert not zone.lines[0][-1].is_paragraph_end

    def test_heading(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        zone = _zone([
            [_item("the state of play", font="Times-Bold", size=16, width=100,
                   bottom=100, heading_level=2)],
            [_item("Body one", width=300, bottom=130)],
            [_item("body two", width=300, bottom=142)],
        ])

        html = ReadingOrderAssembler().render_zone(zone)

        assert html == (
            '<heading font-signature="Times-Bold_16" level="2">The State of Play</heading>\n'
            '<p>Body one body two</p>'
        )

    def test_heading_level_from_font_stats(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.text import FontStatistics

        stats = FontStatistics()
        stats.add([
            _item("body", width=500),
            _item("Title", size=20),
            _item("Section", size=16),
        ])
        assembler = ReadingOrderAssembler(font_stats=stats)

        assert assembler.heading_level([_item("Section", size=16)]) == 2
        # Unknown size falls back to the configured default level
        assert assembler.heading_level([_item("Odd", size=13)]) == 3

    def test_caption(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        zone = _zone([
            [_item("3", width=8, bottom=110),
             _item("Household income", left=70, width=200, font="Times-Italic", italic=True, bottom=110)],
            [_item("by region", width=200, font="Times-Italic", italic=True, bottom=122)],
            [_item("Body one", width=300, bottom=170)],
            [_item("body two", width=300, bottom=182)],
        ])

        html = ReadingOrderAssembler().render_zone(zone)

        assert html == (
            '<figure><figcaption data-start="3"><em>Household income by region</em></figcaption></figure>\n'
            '<p>Body one body two</p>'
        )

    def test_footnote_reference_line_is_paragraph(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        zone = _zone([
            [_item("The", width=20), _item("manor", left=75, width=30),
             _item("3", left=106, width=4, size=6, bottom=106, foot_index=0),
             _item("Domesday", left=115, width=50, font="Times-Italic", italic=True)],
        ])

        html = ReadingOrderAssembler(default_signature="Times_10").render_zone(zone)

        assert html.startswith("<p>")
        assert "figcaption" not in html
        assert "<em>Domesday</em>" in html

    def test_body_zone_uses_document_default(self):
        """A bold line alone in a body zone is a heading against the document body font."""
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        lines = [[_item("Wool Trade", font="Times-Bold", size=14)]]

        with_default = ReadingOrderAssembler(default_signature="Times-Roman_10").render_zone(_zone(lines))
        without_default = ReadingOrderAssembler().render_zone(_zone(lines))

        assert with_default.startswith('<heading font-signature="Times-Bold_14"')
        assert "Wool Trade</heading>" in with_default
        assert without_default.startswith("<p>")

    def test_heading_zone_uses_document_default(self):
        """A single-font title zone is a heading only against the document body font."""
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType

        lines = [[_item("annual report", font="Times-Bold", size=20, heading_level=1)]]

        with_default = ReadingOrderAssembler(default_signature="Times_10").render_zone(
            _zone(lines, ZoneType.HEADING)
        )
        without_default = ReadingOrderAssembler().render_zone(_zone(lines, ZoneType.HEADING))

        assert with_default == '<heading font-signature="Times-Bold_20" level="1">Annual Report</heading>'
        assert without_default.startswith("<p>")

    def test_title_case_disabled(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType
        from page_recon.config import AssemblyConfig

        assembler = ReadingOrderAssembler(
            config=AssemblyConfig(title_case_headings=False),
            default_signature="Times_10"
        )
        zone = _zone([[_item("annual report", font="Times-Bold", size=20)]], ZoneType.HEADING)

        assert "annual report</heading>" in assembler.render_zone(zone)

    def test_figure_caption_from_chart_label(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType

        zone = _zone([
            [_item("0", bottom=100), _item("10", left=200, bottom=100)],
            [_item("Chart 2. Exports", bottom=300, drawing_number=2)],
            [_item("Source: ABS", bottom=312)],
        ], ZoneType.FIGURE)

        html = ReadingOrderAssembler().render_zone(zone)

        assert html == '<figure><figcaption data-start="2">Chart 2. Exports Source: ABS</figcaption></figure>'

    def test_figure_without_label(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType

        zone = _zone([[_item("0")]], ZoneType.FIGURE)

        assert ReadingOrderAssembler().render_zone(zone) == "<figure></figure>"

    def test_image_zone(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType

        zone = _zone([], ZoneType.IMAGE)

        assert ReadingOrderAssembler().render_zone(zone) == '<figure class="image"></figure>'

    def test_embedded_drawings(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler
        from page_recon.utils.layout import ZoneType

        src = "data:image/png;base64,iVBORw0KGgo="
        image = _zone([], ZoneType.IMAGE)
        image.metadata["image"] = src
        figure = _zone([[_item("Chart 2. Exports", drawing_number=2)]], ZoneType.FIGURE)
        figure.metadata["image"] = src

        assembler = ReadingOrderAssembler()

        assert assembler.render_zone(image) == f'<figure class="image"><img src="{src}"/></figure>'
        assert assembler.render_zone(figure) == (
            f'<figure><img src="{src}"/><figcaption data-start="2">Chart 2. Exports</figcaption></figure>'
        )

    def test_empty_zone(self):
        from page_recon.utils.paragraphs import ReadingOrderAssembler

        assert ReadingOrderAssembler().render_zone(_zone([])) == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
