"""
Configuration and constants for the page layout reconstruction pipeline.

This module provides:
- Global logging setup
- Named, overridable thresholds for every heuristic stage
- Environment and JSON-mapping overrides
"""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Optional, List, Dict, Any, Tuple
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("page_recon")


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class CropConfig:
    """Crop-mark detection configuration."""
    # Stroke colours that introduce a run of crop-mark operators
    trigger_colors: List[Tuple[float, float, float]] = field(default_factory=lambda: [
        (0, 0, 0),
        (6, 6, 12),
    ])
    # Reference printed area used when no marks are found
    reference_width: float = 595.276
    reference_height: float = 864.567
    # Shaved off every bound to keep mark ink out of the page
    inset: float = 2.0
    # Drawing rectangles kept between these fractions of the crop area
    min_rectangle_fraction: float = 0.1
    max_rectangle_fraction: float = 0.9
    # A rectangle framing an embedded image is dropped below this area ratio
    image_frame_ratio: float = 1.1


@dataclass
class SegmentationConfig:
    """Zone segmentation configuration (pixel units of the page bitmap)."""
    binarize_threshold: int = 200
    # Header / title band
    header_scan_fraction_first: float = 0.35
    header_scan_fraction: float = 0.20
    band_blank_rows: int = 5
    title_band_max_gap: int = 40
    title_band_height_tolerance: float = 0.30
    # Footer separator
    footer_gap_min: int = 20
    footer_gap_ratio: float = 3.5
    footer_scan_fraction: float = 0.5
    # Figures
    figure_min_size: int = 100
    anchor_region_min_size: int = 20
    # Tables
    table_line_kernel_ratio: float = 0.15
    table_line_min_length: int = 60
    table_core_gap: int = 60
    table_min_lines: int = 2
    table_expand_blank_rows: int = 20
    # Remaining text / image blocks
    text_close_kernel_width: int = 15
    text_close_kernel_height: int = 9
    image_density: float = 0.85
    min_block_area: int = 16
    # Headings, consolidation and reading order
    heading_merge: bool = True
    overlap_merge_ratio: float = 0.95
    same_line_tolerance: int = 10
    reading_line_tolerance: int = 8
    span_margin: int = 10


@dataclass
class TableConfig:
    """Table structure configuration."""
    min_rulings: int = 3
    line_kernel_ratio: float = 0.5
    vertical_line_min_length: int = 15
    column_river_density: float = 0.01
    column_river_min_width: int = 5
    row_river_density: float = 0.02
    row_river_min_height: int = 3
    divider_merge_distance: int = 10
    duplicate_tolerance: int = 5
    content_density: float = 0.005


@dataclass
class TextConfig:
    """Text run classification configuration (page units)."""
    line_tolerance: float = 5.0
    heading_height: float = 15.0
    major_heading_height: float = 20.0
    chart_label_pattern: str = r"^Chart (\d+)\."
    signature_precision: int = 0
    superscript_rise: float = 1.0
    # Same-line runs this close in height that overlap horizontally are one run
    overlap_height_tolerance: float = 0.01


@dataclass
class AssemblyConfig:
    """Reading-order and markup configuration."""
    indent_threshold: float = 5.0
    caption_gap_ratio: float = 1.5
    window_size: int = 3
    max_heading_level: int = 6
    default_heading_level: int = 3
    title_case_headings: bool = True
    # Embed FIGURE and IMAGE regions of the bitmap as PNG data URIs
    embed_drawings: bool = True
    # Dehyphenation word lists
    kept_prefixes: List[str] = field(default_factory=lambda: [
        "all", "anti", "co", "counter", "cross", "ex", "extra", "half",
        "inter", "intra", "mid", "multi", "non", "post", "pre", "pro",
        "pseudo", "quasi", "self", "semi", "sub", "super", "trans",
        "ultra", "well",
    ])
    bound_suffixes: List[str] = field(default_factory=lambda: [
        "able", "al", "ance", "ed", "ence", "er", "es", "ful", "ible",
        "ing", "ion", "ism", "ist", "ity", "ive", "less", "ly", "ment",
        "ness", "ous", "s", "tion",
    ])
    solid_compounds: List[str] = field(default_factory=lambda: [
        "cooperate", "cooperation", "coordinate", "coordination",
        "crossroads", "crossword", "nonetheless", "postscript",
        "preempt", "reelect", "selfsame", "subsection", "transatlantic",
        "wellbeing",
    ])


@dataclass
class WorkerConfig:
    """Segmentation service configuration."""
    in_process: bool = False
    poll_interval: float = 0.5
    shutdown_timeout: float = 5.0


@dataclass
class CacheConfig:
    """Page cache configuration."""
    directory: Optional[str] = None
    compress_level: int = 6


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    crop: CropConfig = field(default_factory=CropConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    table: TableConfig = field(default_factory=TableConfig)
    text: TextConfig = field(default_factory=TextConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    # Global settings
    output_debug_images: bool = False
    skip_failed_pages: bool = True
    max_pages: Optional[int] = None  # None = process all pages


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("PAGE_RECON_DEBUG", "").lower() == "true":
        config.output_debug_images = True

    if os.environ.get("PAGE_RECON_IN_PROCESS", "").lower() == "true":
        config.worker.in_process = True

    cache_dir = os.environ.get("PAGE_RECON_CACHE_DIR")
    if cache_dir:
        config.cache.directory = cache_dir

    return config


def apply_overrides(config: Any, overrides: Dict[str, Any], prefix: str = "") -> Any:
    """
    Apply a nested mapping of overrides onto a config dataclass.

    Args:
        config: Config dataclass instance (modified in place)
        overrides: Mapping of field name to value or nested mapping
        prefix: Dotted path used in error messages

    Returns:
        The same config instance

    Raises:
        ValueError: If a key does not name a config field
    """
    known = {f.name for f in fields(config)}

    for key, value in overrides.items():
        path = f"{prefix}{key}"
        if key not in known:
            raise ValueError(f"Unknown configuration key: {path}")

        current = getattr(config, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ValueError(f"Configuration section {path} expects a mapping")
            apply_overrides(current, value, prefix=f"{path}.")
        else:
            setattr(config, key, value)
            logger.debug(f"Config override {path} = {value!r}")

    return config
