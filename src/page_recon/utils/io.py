"""
I/O utilities for the page layout reconstruction pipeline.

Handles:
- Page dump loading (viewport, text runs, operator stream, bitmap path)
- Bitmap reading and debug image writing
- JSON and HTML output
- Directory management
- Progress tracking
"""

import json
import logging
from pathlib import Path
from typing import List, Union, Optional, Any, Dict, Callable
from dataclasses import dataclass, field

import numpy as np

from .drawing import Operator

logger = logging.getLogger(__name__)


# ============================================================================
# Page Input
# ============================================================================

@dataclass
class PageInput:
    """Everything the pipeline needs for one page."""
    page_number: int
    viewport_width: float
    viewport_height: float
    items: List[Dict[str, Any]] = field(default_factory=list)
    operators: List[Operator] = field(default_factory=list)
    image: Optional[np.ndarray] = None
    image_path: Optional[Path] = None
    render: Optional[Callable[[], np.ndarray]] = None

    def load_bitmap(self) -> np.ndarray:
        """
        Return the page bitmap from memory, the render callable or disk.

        Raises:
            ValueError: If the page has no bitmap source
        """
        if self.image is not None:
            return self.image
        if self.render is not None:
            return self.render()
        if self.image_path is not None:
            return load_image(self.image_path)
        raise ValueError(f"Page {self.page_number} has no bitmap")


def load_page_dump(
    dump_path: Union[str, Path],
    pages: Optional[List[int]] = None
) -> List[PageInput]:
    """
    Load a JSON page dump.

    The dump holds ``pages``: each entry has ``page``, ``viewport`` with
    ``width``/``height``, ``items`` (text runs), ``operators`` (``fn`` and
    ``args``) and ``image``, a bitmap path relative to the dump file.

    Args:
        dump_path: Path to the dump
        pages: Optional 1-indexed page numbers to keep

    Returns:
        List of PageInput objects, bitmaps loaded lazily

    Raises:
        FileNotFoundError: If the dump does not exist
        ValueError: If the dump is malformed
    """
    dump_path = Path(dump_path)
    data = load_json(dump_path)

    if not isinstance(data, dict) or not isinstance(data.get("pages"), list):
        raise ValueError(f"Page dump has no 'pages' list: {dump_path}")

    result = []
    for index, entry in enumerate(data["pages"]):
        try:
            number = int(entry.get("page", index + 1))
            viewport = entry["viewport"]
            page = PageInput(
                page_number=number,
                viewport_width=float(viewport["width"]),
                viewport_height=float(viewport["height"]),
                items=list(entry.get("items", [])),
                operators=[Operator.from_dict(op) for op in entry.get("operators", [])],
                image_path=dump_path.parent / entry["image"] if entry.get("image") else None
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed page entry {index} in {dump_path}: {e}")

        if pages is None or number in pages:
            result.append(page)

    logger.info(f"Loaded {len(result)} page(s) from {dump_path}")
    return result


# ============================================================================
# Bitmaps
# ============================================================================

def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """
    Read a rendered page bitmap, keeping its stored channels (gray, BGR or BGRA).

    Raises:
        FileNotFoundError: If the bitmap is missing
        ValueError: If OpenCV cannot decode it
    """
    import cv2

    image_path = Path(image_path)
    if not image_path.is_file():
        raise FileNotFoundError(f"Page bitmap not found: {image_path}")

    img = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ValueError(f"Could not decode page bitmap: {image_path}")

    logger.debug(f"Read bitmap {image_path.name} {img.shape}")
    return img


def save_image(image: np.ndarray, output_path: Union[str, Path]) -> Path:
    """Write an image, creating parent directories."""
    import cv2

    output_path = ensure_dir(Path(output_path).parent) / Path(output_path).name
    if not cv2.imwrite(str(output_path), image):
        raise ValueError(f"Could not write image: {output_path}")

    logger.debug(f"Wrote image {output_path}")
    return output_path


# ============================================================================
# Results
# ============================================================================

class ResultEncoder(json.JSONEncoder):
    """Encodes numpy scalars and arrays plus anything with ``to_dict``."""

    def default(self, obj):
        if isinstance(obj, np.generic):
            return obj.item()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, Path):
            return obj.as_posix()
        return super().default(obj)


def save_json(data: Any, output_path: Union[str, Path], indent: int = 2) -> Path:
    """Write ``data`` as UTF-8 JSON, non-ASCII text kept as is."""
    output_path = Path(output_path)
    ensure_dir(output_path.parent)
    output_path.write_text(
        json.dumps(data, indent=indent, ensure_ascii=False, cls=ResultEncoder),
        encoding="utf-8"
    )

    logger.debug(f"Wrote JSON {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """
    Read a JSON document (page dump or threshold overrides).

    Raises:
        FileNotFoundError: If the file is missing
        ValueError: If the file is not valid JSON
    """
    json_path = Path(json_path)
    if not json_path.is_file():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    try:
        return json.loads(json_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {json_path}: {e}")


def save_text(text: str, output_path: Union[str, Path]) -> Path:
    """Write the document HTML."""
    output_path = Path(output_path)
    ensure_dir(output_path.parent)
    output_path.write_text(text, encoding="utf-8")
    logger.debug(f"Wrote text {output_path}")
    return output_path


def ensure_dir(path: Union[str, Path]) -> Path:
    """Create ``path`` (and parents) when missing; returns it as a Path."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# Progress Tracking
# ============================================================================

@dataclass
class ProcessingProgress:
    """Pass and page counters for one document run."""
    total_pages: int = 0
    processed_pages: int = 0
    stage: str = ""
    page: int = 0
    errors: List[str] = field(default_factory=list)

    def update(self, stage: str, page: Optional[int] = None):
        if stage != self.stage:
            logger.debug(f"Entering {stage} pass over {self.total_pages} page(s)")
        self.stage = stage
        if page is not None:
            self.page = page

    def complete_page(self):
        self.processed_pages += 1

    def add_error(self, error: str):
        self.errors.append(error)
        logger.error(f"[{self.stage}] {error}")


# ============================================================================
# Example Usage
# ============================================================================

if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1:
        for page in load_page_dump(sys.argv[1]):
            print(f"Page {page.page_number}: {page.viewport_width}x{page.viewport_height}, "
                  f"{len(page.items)} runs, {len(page.operators)} operators, image={page.image_path}")
    else:
        print("Usage: python io.py <page_dump.json>")
