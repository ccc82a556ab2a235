"""
Tests for crop range detection and drawing borders.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _op(name, args=None):
    from page_recon.utils.drawing import Operator
    return Operator(name, args)


class TestCropRangeDetector:
    """Test crop range detection."""

    @pytest.fixture
    def mark_stream(self):
        """Trigger colour followed by eight transform/path/stroke mark ticks."""
        offsets = [(20, 30), (0, 0), (560, 730), (0, 0), (0, 0), (0, 0), (0, 0), (0, 0)]
        ops = [_op("setStrokeRGBColor", [0, 0, 0]), _op("save"), _op("setLineWidth", [0.25])]
        for e, f in offsets:
            ops.append(_op("transform", [1, 0, 0, 1, e, f]))
            ops.append(_op("constructPath", [[13, 14], [0, 0, 0, 10]]))
            ops.append(_op("stroke"))
        return ops

    def test_default_when_no_marks(self):
        """Without marks the reference print area is centred on the page."""
        from page_recon.utils.drawing import CropRangeDetector

        crop = CropRangeDetector().detect([], 612, 792)

        gutter = (612 - 595.276) / 2
        assert crop.source == "default"
        assert crop.x1 == pytest.approx(gutter + 2)
        assert crop.x2 == pytest.approx(612 - gutter - 2)
        # Page shorter than the reference height: gutter clamps at 0
        assert crop.y1 == pytest.approx(2)
        assert crop.y2 == pytest.approx(790)

    def test_primary_marks(self, mark_stream):
        """Eight mark ticks give both axes, converted to top-down order."""
        from page_recon.utils.drawing import CropRangeDetector

        crop = CropRangeDetector().detect(mark_stream, 612, 792)

        assert crop.source == "marks"
        assert crop.x1 == pytest.approx(22)
        assert crop.x2 == pytest.approx(578)
        assert crop.y1 == pytest.approx(792 - 760 + 2)
        assert crop.y2 == pytest.approx(792 - 30 - 2)
        assert crop.y1 < crop.y2

    def test_alternate_trigger_colour(self, mark_stream):
        from page_recon.utils.drawing import CropRangeDetector

        mark_stream[0] = _op("setStrokeRGBColor", [6, 6, 12])
        assert CropRangeDetector().detect(mark_stream, 612, 792).source == "marks"

    def test_other_colour_ignored(self, mark_stream):
        from page_recon.utils.drawing import CropRangeDetector

        mark_stream[0] = _op("setStrokeRGBColor", [255, 0, 0])
        assert CropRangeDetector().detect(mark_stream, 612, 792).source == "default"

    def test_single_path(self):
        """One constructPath of eight move/line pairs after a transform."""
        from page_recon.utils.drawing import CropRangeDetector

        coords = [0.0] * 32
        coords[9] = 700
        coords[14] = 600
        coords[16] = 40
        coords[24] = 560
        ops = [
            _op("setStrokeRGBColor", [0, 0, 0]),
            _op("save"),
            _op("setLineWidth", [1]),
            _op("transform", [1, 0, 0, 1, 0, 50]),
            _op("constructPath", [[13, 14] * 8, coords]),
        ]

        crop = CropRangeDetector().detect(ops, 612, 792)

        assert crop.source == "path"
        assert crop.x1 == pytest.approx(40 + 2)
        assert crop.x2 == pytest.approx(560 - 2)
        assert crop.y1 == pytest.approx(792 - 750 + 2)
        assert crop.y2 == pytest.approx(792 - 50 - 2)

    def test_line_pairs_fill_missing_axis(self):
        """A line-pair match giving only y keeps the default x bounds."""
        from page_recon.utils.drawing import CropRangeDetector

        ops = [_op("setStrokeRGBColor", [0, 0, 0])] + [_op("save")] * 6
        ops += [_op("constructPath", [[13, 14], [0, 40, 0, 0, 0, 760]]), _op("stroke")]

        crop = CropRangeDetector().detect(ops, 612, 792)

        gutter = (612 - 595.276) / 2
        assert crop.source == "lines"
        assert crop.y1 == pytest.approx(792 - 760 + 2)
        assert crop.y2 == pytest.approx(792 - 40 - 2)
        assert crop.x1 == pytest.approx(gutter + 2)

    def test_crop_contains(self):
        from page_recon.utils.drawing import CropRange

        crop = CropRange(10, 10, 100, 100)
        assert crop.contains(20, 20, 50, 30)
        assert not crop.contains(5, 20, 50, 30)
        assert crop.scaled(2) == (20, 20, 200, 200)

    def test_crop_round_trip(self):
        from page_recon.utils.drawing import CropRange

        crop = CropRange(1, 2, 3, 4, source="marks")
        assert CropRange.from_dict(crop.to_dict()) == crop


class TestDrawingBorders:
    """Test embedded image and rectangle extraction."""

    def test_embedded_image(self):
        from page_recon.utils.drawing import find_embedded_images

        ops = [
            _op("transform", [200, 0, 0, 150, 50, 60]),
            _op("dependency", ["img1"]),
            _op("paintImageXObject", ["img1", 200, 150]),
        ]

        images = find_embedded_images(ops, 792)

        assert len(images) == 1
        image = images[0]
        assert (image.left, image.right) == (50, 250)
        assert (image.top, image.bottom) == (792 - 210, 792 - 60)
        assert image.kind == "image"

    def test_rectangle_area_filter(self):
        """Only rectangles between 10% and 90% of the crop area are kept."""
        from page_recon.utils.drawing import find_rectangles, CropRangeDetector

        crop = CropRangeDetector().detect([], 612, 792)
        ops = [
            _op("rectangle", [100, 100, 300, 400]),   # ~26% of crop
            _op("rectangle", [100, 100, 20, 20]),     # tiny
        ]

        rects = find_rectangles(ops, crop, 792)

        assert len(rects) == 1
        assert rects[0].left == 100
        assert rects[0].top == pytest.approx(792 - 500)
        assert rects[0].bottom == pytest.approx(792 - 100)

    def test_construct_path_rectangle(self):
        from page_recon.utils.drawing import find_rectangles, CropRangeDetector

        crop = CropRangeDetector().detect([], 612, 792)
        ops = [
            _op("transform", [1, 0, 0, 1, 10, 20]),
            _op("constructPath", [[13, 19], [5, 5, 100, 100, 300, 400]]),
        ]

        rects = find_rectangles(ops, crop, 792)

        assert len(rects) == 1
        assert rects[0].left == pytest.approx(115)
        assert rects[0].right == pytest.approx(415)

    def test_image_frame_dropped(self):
        """A rectangle tightly framing an embedded image is not a drawing border."""
        from page_recon.utils.drawing import find_drawing_borders, CropRangeDetector

        crop = CropRangeDetector().detect([], 612, 792)
        ops = [
            _op("transform", [300, 0, 0, 400, 100, 100]),
            _op("dependency", ["img1"]),
            _op("paintImageXObject", ["img1", 300, 400]),
            _op("transform", [1, 0, 0, 1, 0, 0]),
            _op("rectangle", [98, 98, 306, 406]),
        ]

        borders = find_drawing_borders(ops, crop, 792)

        assert [b.kind for b in borders] == ["image"]

    def test_border_encloses(self):
        from page_recon.utils.drawing import DrawingBorder

        border = DrawingBorder(0, 0, 100, 100)
        assert border.encloses(10, 10, 20, 20)
        assert not border.encloses(90, 90, 120, 95)


class TestNullTexts:
    """Test text recovery from operators with null glyphs."""

    def test_null_glyphs(self):
        from page_recon.utils.drawing import find_null_texts

        glyphs = [{"unicode": c} for c in "Wr"] + [{"unicode": None}] + \
            [{"unicode": c} for c in "inge"] + [{}] + [{"unicode": c} for c in "hill"]
        ops = [
            _op("showText", [glyphs]),
            _op("showText", [[{"unicode": "W"}, -120, {"unicode": "ool"}]]),
            _op("showText", [[{"unicode": None}]]),
            _op("setFont", ["F1", 10]),
        ]

        assert find_null_texts(ops) == {"Wringehill": "Wringehill"}

    def test_first_occurrence_wins(self):
        from page_recon.utils.drawing import find_null_texts

        ops = [
            _op("showText", [[{"unicode": "a"}, {"unicode": None}, {"unicode": " b"}]]),
            _op("showText", [[{"unicode": "ab"}, {"unicode": None}]]),
        ]

        assert find_null_texts(ops) == {"ab": "a b"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
