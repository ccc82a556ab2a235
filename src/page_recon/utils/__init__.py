"""
Utility modules for the page layout reconstruction pipeline.
"""

from .io import PageInput, load_page_dump, load_image, save_json, ensure_dir
from .images import binarize, erase_outside_crop, find_regions, ink_density
from .drawing import CropRange, CropRangeDetector, Operator, find_drawing_borders
from .layout import ZoneSegmenter, Zone, ZoneType, ColumnClass, TableSection, BoundingBox
from .tables import TableStructureParser, TableAssembler
from .text import TextItem, ItemClassifier, StyleClassifier, RegexStyleClassifier, FontStatistics
from .paragraphs import ReadingOrderAssembler
from .footnotes import FootnoteResolver
from .worker import SegmentationService, SegmentationError
from .cache import PageCache
from .assembler import DocumentAssembler, Document, PageResult, PageProcessingError

__all__ = [
    # IO
    "PageInput", "load_page_dump", "load_image", "save_json", "ensure_dir",
    # Images
    "binarize", "erase_outside_crop", "find_regions", "ink_density",
    # Drawing
    "CropRange", "CropRangeDetector", "Operator", "find_drawing_borders",
    # Layout
    "ZoneSegmenter", "Zone", "ZoneType", "ColumnClass", "TableSection", "BoundingBox",
    # Tables
    "TableStructureParser", "TableAssembler",
    # Text
    "TextItem", "ItemClassifier", "StyleClassifier", "RegexStyleClassifier", "FontStatistics",
    # Assembly
    "ReadingOrderAssembler", "FootnoteResolver",
    "DocumentAssembler", "Document", "PageResult", "PageProcessingError",
    # Services
    "SegmentationService", "SegmentationError", "PageCache",
]
