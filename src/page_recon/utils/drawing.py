"""
Vector-drawing analysis for the page layout reconstruction pipeline.

Provides:
- Operator stream model (opcode name + numeric arguments)
- Crop range detection from printer's crop marks, with fallbacks
- Embedded image and drawing rectangle extraction
- Null-glyph text recovery from showText operators

All output rectangles are in top-down page coordinates.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any, Sequence

from ..config import CropConfig

logger = logging.getLogger(__name__)


# Path construction opcodes used inside constructPath arguments
MOVE_TO = 13
LINE_TO = 14
RECTANGLE = 19

CROP_MARK_COUNT = 8
CROP_PATH_PATTERN = [MOVE_TO, LINE_TO] * CROP_MARK_COUNT


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class Operator:
    """One entry of a page's vector-drawing operator stream."""
    name: str
    args: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Operator':
        return cls(name=data.get("fn") or data.get("name", ""), args=data.get("args"))

    def to_dict(self) -> Dict[str, Any]:
        return {"fn": self.name, "args": self.args}


@dataclass
class CropRange:
    """Printable page rectangle in top-down page coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float
    source: str = "default"

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, left: float, top: float, right: float, bottom: float) -> bool:
        return (
            left >= self.x1 and right <= self.x2 and
            bottom >= self.y1 and top <= self.y2
        )

    def scaled(self, factor: float) -> Tuple[float, float, float, float]:
        """Bounds multiplied by ``factor`` (page units to bitmap pixels)."""
        return (self.x1 * factor, self.y1 * factor, self.x2 * factor, self.y2 * factor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": [self.x1, self.x2],
            "y": [self.y1, self.y2],
            "source": self.source
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CropRange':
        return cls(data["x"][0], data["y"][0], data["x"][1], data["y"][1],
                   source=data.get("source", "default"))


@dataclass
class DrawingBorder:
    """Outline of an embedded image or drawn rectangle."""
    left: float
    top: float
    right: float
    bottom: float
    kind: str = "rectangle"
    operator_index: int = -1

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height

    def encloses(self, left: float, top: float, right: float, bottom: float) -> bool:
        return (
            left >= self.left and right <= self.right and
            top >= self.top and bottom <= self.bottom
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left": self.left,
            "top": self.top,
            "right": self.right,
            "bottom": self.bottom,
            "kind": self.kind,
            "operator_index": self.operator_index
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DrawingBorder':
        return cls(**data)


def normalise_rectangle(
    x0: float, y0: float, x1: float, y1: float,
    viewport_height: float,
    kind: str = "rectangle",
    operator_index: int = -1
) -> DrawingBorder:
    """Convert a cartesian rectangle to a top-down DrawingBorder."""
    if y0 > y1:
        y0, y1 = y1, y0
    if x0 > x1:
        x0, x1 = x1, x0
    return DrawingBorder(
        left=x0,
        top=viewport_height - y1,
        right=x1,
        bottom=viewport_height - y0,
        kind=kind,
        operator_index=operator_index
    )


# ============================================================================
# Crop Range Detection
# ============================================================================

class CropRangeDetector:
    """
    Finds the printable page rectangle from crop marks in the operator stream.

    A crop-mark run starts with a stroke colour change to black (or the
    publisher's dark grey) and is followed by one of three operator layouts:

    1. eight transform + constructPath + stroke triples, one per mark tick;
    2. a single constructPath of eight move/line pairs after a transform;
    3. four constructPath + stroke pairs, two of which give one bound each.

    When nothing matches, a rectangle centred on the reference print area is
    used. Detection never fails.
    """

    def __init__(self, config: Optional[CropConfig] = None):
        self.config = config or CropConfig()
        self._trigger_colors = [tuple(float(v) for v in c) for c in self.config.trigger_colors]

    def detect(
        self,
        operators: Sequence[Operator],
        viewport_width: float,
        viewport_height: float
    ) -> CropRange:
        """
        Detect the crop range of a page.

        Args:
            operators: Vector-drawing operator stream
            viewport_width: Page width in page units
            viewport_height: Page height in page units

        Returns:
            CropRange in top-down coordinates, inset by the configured margin
        """
        x_bounds, y_bounds, source = None, None, "default"

        for index, op in enumerate(operators):
            if not self._is_trigger(op):
                continue

            x_bounds, y_bounds, source = self._match_at(operators, index)
            if x_bounds is not None or y_bounds is not None:
                logger.debug(f"Crop marks matched at operator {index} ({source})")
                break

        if y_bounds is not None:
            # Convert to top-down reading order
            y_bounds = sorted((viewport_height - y_bounds[0], viewport_height - y_bounds[1]))
        if x_bounds is not None:
            x_bounds = sorted(x_bounds)

        if x_bounds is None or y_bounds is None:
            if source == "default":
                logger.info("Crop range not found: using reference print area")
            gutter_x = max(0.0, (viewport_width - self.config.reference_width) / 2)
            gutter_y = max(0.0, (viewport_height - self.config.reference_height) / 2)
            if x_bounds is None:
                x_bounds = [gutter_x, viewport_width - gutter_x]
            if y_bounds is None:
                y_bounds = [gutter_y, viewport_height - gutter_y]

        inset = self.config.inset
        crop = CropRange(
            x1=x_bounds[0] + inset,
            y1=y_bounds[0] + inset,
            x2=x_bounds[1] - inset,
            y2=y_bounds[1] - inset,
            source=source
        )
        logger.debug(
            f"Crop range x: {crop.x1:.2f}-{crop.x2:.2f}; y: {crop.y1:.2f}-{crop.y2:.2f}"
        )
        return crop

    def _is_trigger(self, op: Operator) -> bool:
        if op.name != "setStrokeRGBColor" or not isinstance(op.args, (list, tuple)):
            return False
        if len(op.args) < 3:
            return False
        try:
            color = tuple(float(v) for v in op.args[:3])
        except (TypeError, ValueError):
            return False
        return color in self._trigger_colors

    def _match_at(self, operators: Sequence[Operator], index: int):
        marks = self._find_mark_ticks(operators, index)
        if len(marks) == CROP_MARK_COUNT:
            t = [m.args for m in marks]
            x = [t[0][4], t[0][4] + t[1][4] + t[2][4]]
            y = [t[0][5] + t[1][5], sum(t[i][5] for i in range(6))]
            return x, y, "marks"

        bounds = self._match_single_path(operators, index)
        if bounds is not None:
            return bounds[0], bounds[1], "path"

        x, y = self._match_line_pairs(operators, index)
        if x is not None or y is not None:
            return x, y, "lines"

        return None, None, "default"

    def _find_mark_ticks(self, operators: Sequence[Operator], index: int) -> List[Operator]:
        """Transforms of the mark ticks following a trigger, in stream order."""
        found = []
        for i in range(1, CROP_MARK_COUNT + 1):
            transform_index = index + 3 * i
            path_index = transform_index + 1
            stroke_index = path_index + 1
            if stroke_index >= len(operators):
                continue

            transform = operators[transform_index]
            path = operators[path_index]
            stroke = operators[stroke_index]

            if transform.name != "transform" or path.name != "constructPath":
                continue
            if not isinstance(transform.args, (list, tuple)) or len(transform.args) < 6:
                continue
            if stroke.name != "stroke":
                continue

            opcodes, coords = _path_parts(path.args)
            if opcodes[:2] != [MOVE_TO, LINE_TO] or len(coords) < 4:
                continue
            if coords[2] == 0 or coords[3] == 0:
                found.append(transform)

        return found

    def _match_single_path(self, operators: Sequence[Operator], index: int):
        path_index = index + 4
        if path_index >= len(operators) or operators[path_index].name != "constructPath":
            return None

        opcodes, coords = _path_parts(operators[path_index].args)
        if opcodes != CROP_PATH_PATTERN or len(coords) < 25:
            return None

        transform = operators[index + 3]
        if transform.name != "transform" or not isinstance(transform.args, (list, tuple)):
            return None

        ty = transform.args[5]
        x = [coords[14] - coords[24], coords[14] - coords[16]]
        y = [ty, ty + coords[9]]
        return x, y

    def _match_line_pairs(self, operators: Sequence[Operator], index: int):
        x, y = None, None
        for i in range(1, 5):
            path_index = index + 5 + 2 * i
            stroke_index = path_index + 1
            if stroke_index >= len(operators):
                continue
            if operators[stroke_index].name != "stroke":
                continue
            if operators[path_index].name != "constructPath":
                continue

            _, coords = _path_parts(operators[path_index].args)
            if len(coords) < 6:
                continue
            if path_index - index == 7:
                y = [coords[1], coords[5]]
            elif path_index - index == 11:
                x = [coords[0], coords[4]]
        return x, y


def _path_parts(args: Any) -> Tuple[List[int], List[float]]:
    """Split constructPath arguments into (opcodes, coordinates)."""
    if not isinstance(args, (list, tuple)) or len(args) < 2:
        return [], []
    opcodes, coords = args[0], args[1]
    if not isinstance(opcodes, (list, tuple)) or not isinstance(coords, (list, tuple)):
        return [], []
    return [int(v) for v in opcodes], list(coords)


# ============================================================================
# Embedded Images and Rectangles
# ============================================================================

def find_embedded_images(
    operators: Sequence[Operator],
    viewport_height: float
) -> List[DrawingBorder]:
    """
    Locate painted image XObjects.

    The placement transform sits two operators before the paint operator.
    """
    images = []
    for index, op in enumerate(operators):
        if op.name != "paintImageXObject" or index < 2:
            continue

        transform = operators[index - 2]
        t = transform.args
        if not isinstance(t, (list, tuple)) or len(t) < 6:
            logger.debug(f"Image at operator {index} has no placement transform")
            continue

        images.append(normalise_rectangle(
            t[4], t[5], t[4] + t[0], t[5] + t[3],
            viewport_height,
            kind="image",
            operator_index=index
        ))

    return images


def find_rectangles(
    operators: Sequence[Operator],
    crop: CropRange,
    viewport_height: float,
    embedded_images: Optional[List[DrawingBorder]] = None,
    config: Optional[CropConfig] = None
) -> List[DrawingBorder]:
    """
    Extract drawn rectangles that plausibly outline a drawing.

    Args:
        operators: Operator stream
        crop: Page crop range
        viewport_height: Page height in page units
        embedded_images: Image borders; frames tightly around them are dropped
        config: Crop configuration with area limits

    Returns:
        Rectangles sorted by area, largest first
    """
    config = config or CropConfig()
    embedded_images = embedded_images or []
    origin = (0.0, 0.0)
    raw = []

    for index, op in enumerate(operators):
        if op.name == "transform" and isinstance(op.args, (list, tuple)) and len(op.args) >= 6:
            origin = (op.args[4], op.args[5])

        elif op.name == "rectangle" and isinstance(op.args, (list, tuple)) and len(op.args) >= 4:
            raw.append((origin, (0.0, 0.0), op.args[:4], index))

        elif op.name == "constructPath":
            opcodes, coords = _path_parts(op.args)
            if opcodes[:2] == [MOVE_TO, RECTANGLE] and len(coords) >= 6:
                raw.append((origin, (coords[0], coords[1]), coords[2:6], index))
            elif len(opcodes) > 1 and opcodes[1] == RECTANGLE and len(coords) >= 4:
                raw.append((origin, (0.0, 0.0), coords[0:4], index))
            elif opcodes[:1] == [RECTANGLE] and len(coords) >= 4:
                raw.append((origin, (0.0, 0.0), coords[0:4], index))

    rectangles = []
    for (ox, oy), (mx, my), (x, y, w, h), index in raw:
        x0 = ox + mx + x
        y0 = oy + my + y
        rectangles.append(normalise_rectangle(x0, y0, x0 + w, y0 + h, viewport_height,
                                              operator_index=index))

    crop_area = crop.area
    rectangles = [
        r for r in rectangles
        if config.min_rectangle_fraction * crop_area < r.area < config.max_rectangle_fraction * crop_area
    ]
    rectangles = [
        r for r in rectangles
        if r.left >= crop.x1 and r.right <= crop.x2 and r.top >= crop.y1 and r.bottom <= crop.y2
    ]
    rectangles.sort(key=lambda r: r.area, reverse=True)

    rectangles = [
        r for r in rectangles
        if not any(
            r.encloses(image.left, image.top, image.right, image.bottom) and
            r.area < config.image_frame_ratio * image.area
            for image in embedded_images
        )
    ]

    logger.debug(f"Found {len(rectangles)} drawing rectangle(s)")
    return rectangles


def find_drawing_borders(
    operators: Sequence[Operator],
    crop: CropRange,
    viewport_height: float,
    config: Optional[CropConfig] = None
) -> List[DrawingBorder]:
    """Embedded images followed by drawing rectangles."""
    images = find_embedded_images(operators, viewport_height)
    rectangles = find_rectangles(operators, crop, viewport_height, images, config)
    return images + rectangles


# ============================================================================
# Glyph Gaps
# ============================================================================

def find_null_texts(operators: Sequence[Operator]) -> Dict[str, str]:
    """
    Text of ``showText`` operators with glyphs that carry no unicode value.

    Text extraction turns such glyphs into spaces ("Wr in ehi l l") while
    the operator joins the glyphs that have one ("Wringehill"). Keyed by
    that text with whitespace removed; the first occurrence wins.
    """
    found: Dict[str, str] = {}
    for op in operators:
        if op.name != "showText" or not isinstance(op.args, (list, tuple)) or not op.args:
            continue
        glyphs = op.args[0]
        if not isinstance(glyphs, list):
            continue

        # Numbers between glyphs are spacing adjustments
        chars = [g.get("unicode") for g in glyphs if isinstance(g, dict)]
        if all(chars):
            continue
        text = "".join(c or "" for c in chars)
        key = re.sub(r"\s+", "", text)
        if key:
            found.setdefault(key, text)

    if found:
        logger.debug(f"Found {len(found)} text operator(s) with null glyphs")
    return found
