"""
Image analysis utilities for the page layout reconstruction pipeline.

Provides:
- Grayscale conversion and binarization (ink = foreground)
- Erasing ink outside the crop rectangle
- Rectangular morphological open/close
- Contour and connected-component extraction with bounding boxes
- Ink density and blank-row profiles
- PNG data URIs for embedded drawings
- Debug visualisation
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Optional, List, Sequence
import numpy as np

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class Region:
    """A contour region found in a binary image."""
    x: int
    y: int
    width: int
    height: int
    has_child: bool = False

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    def contains_point(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x2 and self.y <= py <= self.y2


# ============================================================================
# Core Conversion Functions
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert image to grayscale if it's color.

    Args:
        image: Input image (BGR, BGRA or grayscale)

    Returns:
        Grayscale image
    """
    import cv2

    if len(image.shape) == 2:
        return image
    elif len(image.shape) == 3:
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze(axis=2)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def binarize(image: np.ndarray, threshold: int = 200) -> np.ndarray:
    """
    Binarize a page so that ink becomes foreground (255).

    Args:
        image: Input image (any colour layout)
        threshold: Gray level below which a pixel counts as ink

    Returns:
        Binary uint8 image, ink = 255
    """
    import cv2

    gray = to_grayscale(image)
    if gray.dtype != np.uint8:
        gray = np.clip(gray, 0, 255).astype(np.uint8)

    # cv2 keeps values above the threshold as paper; ink is strictly below it
    _, binary = cv2.threshold(gray, threshold - 1, 255, cv2.THRESH_BINARY_INV)
    return binary


def erase_outside_crop(
    binary: np.ndarray,
    crop: Optional[Tuple[float, float, float, float]]
) -> np.ndarray:
    """
    Clear ink outside the crop rectangle (x1, y1, x2, y2) in pixels.

    Returns a new array; the input is left untouched.
    """
    if crop is None:
        return binary

    h, w = binary.shape[:2]
    x1, y1, x2, y2 = crop
    x1 = int(max(0, np.floor(x1)))
    y1 = int(max(0, np.floor(y1)))
    x2 = int(min(w, np.ceil(x2)))
    y2 = int(min(h, np.ceil(y2)))

    result = np.zeros_like(binary)
    if x2 > x1 and y2 > y1:
        result[y1:y2, x1:x2] = binary[y1:y2, x1:x2]
    return result


# ============================================================================
# Morphology
# ============================================================================

def morph_open(binary: np.ndarray, kernel_size: Tuple[int, int]) -> np.ndarray:
    """Morphological opening with a rectangular (width, height) kernel."""
    import cv2

    kw, kh = max(1, int(kernel_size[0])), max(1, int(kernel_size[1]))
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kw, kh))
    return cv2.morphologyEx(binary, cv2.MORPH_OPEN, kernel)


def morph_close(binary: np.ndarray, kernel_size: Tuple[int, int]) -> np.ndarray:
    """Morphological closing with a rectangular (width, height) kernel."""
    import cv2

    kw, kh = max(1, int(kernel_size[0])), max(1, int(kernel_size[1]))
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kw, kh))
    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)


def horizontal_lines(binary: np.ndarray, min_length: int) -> np.ndarray:
    """Keep horizontal strokes at least ``min_length`` pixels long (kernel rounded up to odd)."""
    return morph_open(binary, (int(min_length) | 1, 1))


def vertical_lines(binary: np.ndarray, min_length: int) -> np.ndarray:
    """Keep vertical strokes at least ``min_length`` pixels long (kernel rounded up to odd)."""
    return morph_open(binary, (1, int(min_length) | 1))


# ============================================================================
# Regions
# ============================================================================

def find_regions(binary: np.ndarray, external_only: bool = True) -> List[Region]:
    """
    Extract contour regions with bounding boxes.

    With ``external_only`` the top-level contours are returned and each
    region records whether it encloses a child contour (a framed drawing).

    Args:
        binary: Binary image, ink = 255

    Returns:
        List of Region objects
    """
    import cv2

    if binary.size == 0 or cv2.countNonZero(binary) == 0:
        return []

    mode = cv2.RETR_CCOMP if external_only else cv2.RETR_LIST
    contours, hierarchy = cv2.findContours(binary, mode, cv2.CHAIN_APPROX_SIMPLE)
    if hierarchy is None:
        return []

    regions = []
    for i, cnt in enumerate(contours):
        parent = hierarchy[0][i][3]
        if external_only and parent != -1:
            continue
        x, y, w, h = cv2.boundingRect(cnt)
        has_child = bool(hierarchy[0][i][2] != -1)
        regions.append(Region(int(x), int(y), int(w), int(h), has_child=has_child))

    return regions


def find_components(binary: np.ndarray, min_area: int = 1) -> List[Region]:
    """Connected components of ``binary`` as bounding-box regions."""
    import cv2

    if binary.size == 0:
        return []

    num_labels, _, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=8)

    regions = []
    for i in range(1, num_labels):  # Skip background (label 0)
        x, y, w, h, area = stats[i]
        if area < min_area:
            continue
        regions.append(Region(int(x), int(y), int(w), int(h)))
    return regions


# ============================================================================
# Profiles and Densities
# ============================================================================

def ink_density(binary: np.ndarray) -> float:
    """Fraction of ink pixels in ``binary``."""
    import cv2

    if binary.size == 0:
        return 0.0
    return cv2.countNonZero(binary) / float(binary.size)


def row_ink(binary: np.ndarray) -> np.ndarray:
    """Ink pixel count for each row."""
    return np.count_nonzero(binary, axis=1)


def column_ink(binary: np.ndarray) -> np.ndarray:
    """Ink pixel count for each column."""
    return np.count_nonzero(binary, axis=0)


def runs(mask: Sequence[bool]) -> List[Tuple[int, int]]:
    """
    Contiguous runs of True values as (start, end) pairs, end exclusive.
    """
    values = np.asarray(mask, dtype=bool)
    if values.size == 0:
        return []

    padded = np.concatenate(([False], values, [False]))
    changes = np.flatnonzero(padded[1:] != padded[:-1])
    return [(int(changes[i]), int(changes[i + 1])) for i in range(0, len(changes), 2)]


def ink_bounds(binary: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
    """Bounding box (x1, y1, x2, y2) of all ink, or None for a blank image."""
    rows = np.flatnonzero(row_ink(binary))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(column_ink(binary))
    return (int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1)


# ============================================================================
# Visualisation
# ============================================================================

def draw_debug_image(
    image: np.ndarray,
    boxes: List[Tuple[int, int, int, int]],
    labels: Optional[List[str]] = None,
    colors: Optional[List[Tuple[int, int, int]]] = None,
    thickness: int = 2
) -> np.ndarray:
    """
    Draw labelled rectangles on a copy of the image.

    Args:
        image: Input image
        boxes: List of (x, y, width, height)
        labels: Optional label for each box
        colors: Optional BGR colour for each box

    Returns:
        BGR image with the boxes drawn
    """
    import cv2

    if len(image.shape) == 2:
        debug_img = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        debug_img = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    else:
        debug_img = image.copy()

    for i, (x, y, w, h) in enumerate(boxes):
        color = colors[i] if colors and i < len(colors) else (0, 255, 0)
        cv2.rectangle(debug_img, (int(x), int(y)), (int(x + w), int(y + h)), color, thickness)

        if labels and i < len(labels):
            cv2.putText(
                debug_img,
                labels[i],
                (int(x), max(10, int(y) - 5)),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                color,
                1
            )

    return debug_img


# ============================================================================
# Embedding
# ============================================================================

def encode_png_data_uri(
    image: np.ndarray,
    box: Tuple[float, float, float, float]
) -> Optional[str]:
    """
    PNG data URI of the pixels inside ``box`` (x1, y1, x2, y2).

    Returns None when the box lies outside the image or is empty.
    """
    import base64
    import cv2

    h, w = image.shape[:2]
    x1, y1 = max(0, int(box[0])), max(0, int(box[1]))
    x2, y2 = min(w, int(np.ceil(box[2]))), min(h, int(np.ceil(box[3])))
    if x2 <= x1 or y2 <= y1:
        return None

    ok, encoded = cv2.imencode(".png", image[y1:y2, x1:x2])
    if not ok:
        raise ValueError(f"Could not encode region {box} as PNG")

    return "data:image/png;base64," + base64.b64encode(encoded.tobytes()).decode("ascii")


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

        binary = binarize(image)
        print(f"Ink density: {ink_density(binary):.2%}")
        print(f"Ink bounds: {ink_bounds(binary)}")
        print(f"Top-level regions: {len(find_regions(binary))}")
    else:
        print("Usage: python images.py <page_image>")
