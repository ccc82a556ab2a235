"""
Document assembler module for page layout reconstruction.

Provides:
- Page and document result models
- Per-page pipeline orchestration (crop, segmentation, tables, items,
  reading order, footnotes, table assembly)
- Two-pass document processing through the page cache
- Printed page numeral detection and gap filling
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Union
from pathlib import Path

from ..config import PipelineConfig
from .cache import PageCache
from .drawing import CropRange, CropRangeDetector, find_drawing_borders, find_null_texts
from .footnotes import FootnoteResolver
from .images import encode_png_data_uri
from .io import PageInput, ProcessingProgress, save_image
from .layout import Zone, ZoneType
from .paragraphs import ReadingOrderAssembler
from .tables import TableAssembler
from .text import ItemClassifier, FontStatistics, StyleClassifier, font_signature
from .worker import SegmentationService

logger = logging.getLogger(__name__)


class PageProcessingError(RuntimeError):
    """A page failed; wraps the underlying error with the page number."""

    def __init__(self, page_number: int, cause: Exception):
        super().__init__(f"Page {page_number}: {type(cause).__name__}: {cause}")
        self.page_number = page_number
        self.cause = cause


# ============================================================================
# Page Numerals
# ============================================================================

def detect_page_numeral(zones: List[Zone]) -> Optional[int]:
    """Bare integer at either end of a header line, if any."""
    for zone in zones:
        if zone.zone_type != ZoneType.HEADER:
            continue
        for line in zone.lines:
            if not line:
                continue
            for item in (line[0], line[-1]):
                if item.is_bare_integer:
                    return int(item.text)
    return None


def fill_missing_page_numerals(numerals: List[Optional[int]]) -> List[Optional[int]]:
    """
    Fill gaps by counting from the first detected numeral.

    The first known value anchors the sequence: the page at index i gets
    ``first_value - first_index + i`` when it has no numeral. A list with
    no known numeral is returned unchanged.
    """
    known = next((i for i, value in enumerate(numerals) if value is not None), None)
    if known is None:
        return list(numerals)

    start = numerals[known] - known
    return [value if value is not None else start + i for i, value in enumerate(numerals)]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PreparedPage:
    """A page after segmentation and classification, before rendering."""
    page_number: int
    zones: List[Zone]
    crop: CropRange
    scale: float
    numeral: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "zones": [z.to_dict() for z in self.zones],
            "crop": self.crop.to_dict(),
            "scale": self.scale,
            "numeral": self.numeral
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PreparedPage':
        return cls(
            page_number=data["page_number"],
            zones=[Zone.from_dict(z) for z in data["zones"]],
            crop=CropRange.from_dict(data["crop"]),
            scale=data["scale"],
            numeral=data.get("numeral")
        )


@dataclass
class PageResult:
    """Rendered page fragment and its statistics."""
    page_number: int
    numeral: Optional[int] = None
    html: str = ""
    zone_counts: Dict[str, int] = field(default_factory=dict)
    tables: int = 0
    footnotes: int = 0
    processing_time: float = 0.0
    status: str = "success"  # success, failed
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "numeral": self.numeral,
            "status": self.status,
            "error": self.error,
            "zones": self.zone_counts,
            "tables": self.tables,
            "footnotes": self.footnotes,
            "processing_time_seconds": round(self.processing_time, 3)
        }


@dataclass
class Document:
    """Reconstructed document."""
    task_id: str
    source_file: str
    pages: List[PageResult] = field(default_factory=list)
    fonts: Dict[str, Any] = field(default_factory=dict)
    processing_time: float = 0.0
    created_at: str = ""
    schema_version: str = "1.0"

    def __post_init__(self):
        if not self.task_id:
            self.task_id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    @property
    def html(self) -> str:
        return "\n".join(p.html for p in self.pages if p.status == "success")

    @property
    def failed_pages(self) -> List[int]:
        return [p.page_number for p in self.pages if p.status != "success"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "schema_version": self.schema_version,
            "source_file": self.source_file,
            "created_at": self.created_at,
            "fonts": self.fonts,
            "pages": [p.to_dict() for p in self.pages],
            "failed_pages": self.failed_pages,
            "processing_time_seconds": round(self.processing_time, 2)
        }


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the page layout reconstruction pipeline.

    Coordinates:
    - Crop range and drawing border detection
    - Zone segmentation and table parsing (through the segmentation service)
    - Text item classification and zone membership
    - Reading order, footnote and table assembly

    Owns the only state carried between pages: the running footnote offset
    and the last printed page numeral.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        style_classifier: Optional[StyleClassifier] = None,
        service: Optional[SegmentationService] = None,
        cache: Optional[PageCache] = None,
        output_dir: Optional[Union[str, Path]] = None
    ):
        self.config = config or PipelineConfig()
        self.style_classifier = style_classifier
        self.output_dir = Path(output_dir) if output_dir else None

        self.font_stats = FontStatistics(max_level=self.config.assembly.max_heading_level)
        self.footnote_offset = 0
        self.last_numeral: Optional[int] = None

        # Initialize components lazily
        self._service = service
        self._cache = cache
        self._crop_detector = None
        self._item_classifier = None
        self._footnote_resolver = None

    @property
    def service(self) -> SegmentationService:
        if self._service is None:
            self._service = SegmentationService(self.config)
        return self._service

    @property
    def cache(self) -> PageCache:
        if self._cache is None:
            self._cache = PageCache(
                self.config.cache.directory,
                compress_level=self.config.cache.compress_level
            )
        return self._cache

    @property
    def crop_detector(self) -> CropRangeDetector:
        if self._crop_detector is None:
            self._crop_detector = CropRangeDetector(self.config.crop)
        return self._crop_detector

    @property
    def item_classifier(self) -> ItemClassifier:
        if self._item_classifier is None:
            self._item_classifier = ItemClassifier(self.config.text, self.style_classifier)
        return self._item_classifier

    @property
    def footnote_resolver(self) -> FootnoteResolver:
        if self._footnote_resolver is None:
            self._footnote_resolver = FootnoteResolver(self.config.text, self.config.assembly)
        return self._footnote_resolver

    def reset(self):
        """Forget cross-page state before a new document."""
        self.font_stats = FontStatistics(max_level=self.config.assembly.max_heading_level)
        self.footnote_offset = 0
        self.last_numeral = None

    # ------------------------------------------------------------------
    # Page stages
    # ------------------------------------------------------------------

    def prepare_page(self, page: PageInput) -> PreparedPage:
        """
        Crop, segment and classify one page.

        Raises:
            ValueError: If the bitmap or viewport is unusable
            SegmentationError: If the segmentation service fails
        """
        image = page.load_bitmap()
        if image is None or image.size == 0 or image.ndim not in (2, 3):
            raise ValueError(f"Page {page.page_number} has an unusable bitmap")
        if page.viewport_width <= 0 or page.viewport_height <= 0:
            raise ValueError(f"Page {page.page_number} has an invalid viewport")

        h, w = image.shape[:2]
        scale = w / page.viewport_width
        logger.info(f"Preparing page {page.page_number} ({w}x{h}, scale {scale:.2f})")

        crop = self.crop_detector.detect(page.operators, page.viewport_width, page.viewport_height)
        borders = find_drawing_borders(page.operators, crop, page.viewport_height, self.config.crop)

        items, anchors = self.item_classifier.classify(
            page.items, page.viewport_height, crop, borders,
            null_texts=find_null_texts(page.operators)
        )

        crop_px = crop.scaled(scale)
        segmentation = self.service.segment(
            image,
            page_number=page.page_number,
            anchors=[(x * scale, y * scale) for x, y in anchors],
            crop=crop_px,
            debug=self.config.output_debug_images
        )
        zones = self.service.parse_tables(image, segmentation.zones, crop_px)

        if segmentation.debug_image is not None:
            self._save_debug_image(segmentation.debug_image, page.page_number)

        if self.config.assembly.embed_drawings:
            self._embed_drawings(image, zones)

        for zone_id, zone in enumerate(zones):
            zone.zone_id = zone_id
            zone.bbox = zone.bbox.scaled(1 / scale)

        items = self.item_classifier.assign_zones(items, zones)
        self.item_classifier.build_zone_lines(items, zones)
        self.font_stats.add(items, page.page_number)

        numeral = detect_page_numeral(zones)
        if numeral is None:
            logger.debug(f"Page {page.page_number}: no printed numeral in header")

        return PreparedPage(
            page_number=page.page_number,
            zones=zones,
            crop=crop,
            scale=scale,
            numeral=numeral
        )

    def render_page(self, prepared: PreparedPage) -> PageResult:
        """Render a prepared page into its fragment, advancing cross-page state."""
        zones = prepared.zones

        self.footnote_resolver.mark_references(zones)

        default = self.font_stats.default_font
        reader = ReadingOrderAssembler(
            self.config.assembly,
            font_stats=self.font_stats if default else None,
            default_signature=(
                font_signature(default[0], default[1], self.config.text.signature_precision)
                if default else None
            )
        )
        for zone in zones:
            if zone.is_page_furniture or zone.is_table_cell:
                continue
            reader.render_zone(zone)

        footnotes = self.footnote_resolver.resolve(zones, self.footnote_offset)
        self.footnote_offset += footnotes

        tables = TableAssembler(render_lines=reader.render_inline).assemble(zones)

        numeral = prepared.numeral
        if numeral is None:
            numeral = self.last_numeral + 1 if self.last_numeral is not None else prepared.page_number
        self.last_numeral = numeral

        ordered = sorted(
            (z for z in zones
             if not z.is_page_furniture and not z.skip and z.html and z.reading_order is not None),
            key=lambda z: z.reading_order
        )
        fragments = [f'<hr class="page-break" data-start="{numeral}"/>']
        fragments.extend(z.html for z in ordered)

        counts: Dict[str, int] = {}
        for zone in zones:
            counts[zone.zone_type.value] = counts.get(zone.zone_type.value, 0) + 1
            zone.lines = []

        return PageResult(
            page_number=prepared.page_number,
            numeral=numeral,
            html="\n".join(fragments),
            zone_counts=counts,
            tables=tables,
            footnotes=footnotes
        )

    def process_page(self, page: PageInput) -> PageResult:
        """
        Process a single page end to end.

        Raises:
            PageProcessingError: If any stage fails
        """
        start_time = time.time()

        try:
            prepared = self.prepare_page(page)
            result = self.render_page(prepared)
        except Exception as e:
            raise PageProcessingError(page.page_number, e) from e

        result.processing_time = time.time() - start_time
        logger.info(f"Page {page.page_number} processed in {result.processing_time:.2f}s")
        return result

    # ------------------------------------------------------------------
    # Document
    # ------------------------------------------------------------------

    def process_document(self, pages: List[PageInput], source_file: str = "") -> Document:
        """
        Process a complete document in two passes.

        The first pass prepares every page, accumulating font statistics,
        and spills it to the page cache. Missing numerals are then filled
        and the second pass renders each page, evicting its cache entry.

        Raises:
            PageProcessingError: If a page fails and ``skip_failed_pages`` is off
        """
        start_time = time.time()
        self.reset()

        if self.config.max_pages is not None:
            pages = pages[:self.config.max_pages]

        doc = Document(task_id=str(uuid.uuid4()), source_file=source_file)
        progress = ProcessingProgress(total_pages=len(pages))
        failed: Dict[int, PageResult] = {}
        prepared_numbers: List[int] = []
        numerals: List[Optional[int]] = []
        timings: Dict[int, float] = {}

        try:
            for page in pages:
                progress.update("prepare", page.page_number)
                page_start = time.time()
                try:
                    prepared = self.prepare_page(page)
                except Exception as e:
                    failed[page.page_number] = self._handle_failure(page.page_number, e, progress)
                    continue

                self.cache.put(page.page_number, "prepared", prepared.to_dict())
                prepared_numbers.append(page.page_number)
                numerals.append(prepared.numeral)
                timings[page.page_number] = time.time() - page_start
        finally:
            if self._service is not None:
                self._service.stop()

        filled = dict(zip(prepared_numbers, fill_missing_page_numerals(numerals)))
        logger.info(f"Document fonts: {self.font_stats.to_dict()}")

        for page in pages:
            number = page.page_number
            if number in failed:
                doc.pages.append(failed[number])
                continue

            progress.update("render", number)
            page_start = time.time()
            try:
                prepared = PreparedPage.from_dict(self.cache.pop(number, "prepared"))
                prepared.numeral = filled.get(number)
                result = self.render_page(prepared)
            except Exception as e:
                self.cache.evict(number)
                doc.pages.append(self._handle_failure(number, e, progress))
                continue

            result.processing_time = timings.get(number, 0.0) + time.time() - page_start
            logger.info(f"Page {number} processed in {result.processing_time:.2f}s")
            doc.pages.append(result)
            progress.complete_page()

        doc.fonts = self.font_stats.to_dict()
        doc.processing_time = time.time() - start_time
        logger.info(
            f"Processed {progress.processed_pages}/{progress.total_pages} pages "
            f"in {doc.processing_time:.2f}s"
        )
        return doc

    def _handle_failure(self, page_number: int, error: Exception, progress: ProcessingProgress) -> PageResult:
        if isinstance(error, PageProcessingError):
            wrapped = error
        else:
            wrapped = PageProcessingError(page_number, error)
        if not self.config.skip_failed_pages:
            if wrapped is error:
                raise wrapped
            raise wrapped from error

        progress.add_error(str(wrapped))
        return PageResult(page_number=page_number, status="failed", error=str(wrapped))

    def _embed_drawings(self, image, zones: List[Zone]):
        """Attach a PNG data URI of each FIGURE and IMAGE zone, in bitmap pixels."""
        for zone in zones:
            if zone.zone_type not in (ZoneType.FIGURE, ZoneType.IMAGE):
                continue
            uri = encode_png_data_uri(image, zone.bbox.to_tuple())
            if uri is not None:
                zone.metadata["image"] = uri
                logger.debug(f"Embedded {zone.zone_type.value} drawing ({len(uri)} chars)")

    def _save_debug_image(self, image, page_number: int):
        """Save the zone visualisation for a page."""
        if self.output_dir:
            debug_path = self.output_dir / f"debug/page_{page_number:04d}_zones.png"
            save_image(image, debug_path)
            logger.debug(f"Saved debug image: {debug_path}")
