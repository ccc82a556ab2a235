#!/usr/bin/env python
"""
Command-line interface for the Page Layout Reconstruction pipeline.

Usage:
    page-recon --input <page_dump.json> --output <output_dir> [options]

Examples:
    # Reconstruct a document
    page-recon --input pages.json --output ./output

    # Segmentation in the calling process, with zone debug images
    page-recon --input pages.json --output ./output --in-process --debug

    # Tune thresholds from a JSON file
    page-recon --input pages.json --output ./output --config thresholds.json
"""

import sys
from pathlib import Path

# Add src directory to path for imports when running as script
_src_dir = Path(__file__).parent.parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import argparse
import logging
import time
from typing import List

from page_recon import __version__

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("page_recon")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Page Layout Reconstruction - Convert print-layout pages to structured HTML",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Reconstruct a document:
    page-recon --input pages.json --output ./output

  Debug mode with zone visualisation:
    page-recon --input pages.json --output ./output --debug

  Process only specific pages:
    page-recon --input pages.json --output ./output --pages 1-5
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Page dump JSON (viewport, text runs, operators and bitmap per page)"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for generated files"
    )

    # Optional arguments
    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON file of threshold overrides, e.g. {\"segmentation\": {\"footer_gap_min\": 25}}"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (outputs zone debug images)"
    )

    parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run segmentation in the calling process instead of a worker"
    )

    parser.add_argument(
        "--cache-dir",
        type=str,
        default=None,
        help="Spill page intermediates to this directory (default: memory)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_page_range(page_str: str, max_pages: int) -> List[int]:
    """
    Page numbers named by a range string such as ``1-3,5`` or ``7-``.

    Numbers are clipped to 1..max_pages; an open range runs to the last page.

    Raises:
        ValueError: If a part is not a number or a range
    """
    selected = set()

    for part in filter(None, (p.strip() for p in page_str.split(","))):
        first, sep, last = part.partition("-")
        try:
            lo = int(first)
            hi = (int(last) if last.strip() else max_pages) if sep else lo
        except ValueError:
            raise ValueError(f"Invalid page range part: {part!r}")
        selected.update(n for n in range(max(1, lo), min(hi, max_pages) + 1))

    return sorted(selected)


# Import name -> distribution name
REQUIRED_MODULES = {"cv2": "opencv-python-headless", "numpy": "numpy"}


def check_dependencies() -> bool:
    """Log the distributions whose modules cannot be imported."""
    import importlib

    missing = []
    for module, dist in REQUIRED_MODULES.items():
        try:
            importlib.import_module(module)
        except ImportError:
            missing.append(dist)

    if missing:
        logger.error(f"Missing required dependencies: {', '.join(missing)}")
        logger.error("Install with: pip install -e .")
        return False

    return True


def build_config(args):
    """Pipeline configuration from environment, config file and flags."""
    from page_recon.config import get_config, apply_overrides
    from page_recon.utils.io import load_json

    config = get_config()

    if args.config:
        overrides = load_json(args.config)
        if not isinstance(overrides, dict):
            raise ValueError(f"Config file must hold a JSON object: {args.config}")
        apply_overrides(config, overrides)
        logger.info(f"Applied configuration overrides from {args.config}")

    if args.debug:
        config.output_debug_images = True
    if args.in_process:
        config.worker.in_process = True
    if args.cache_dir:
        config.cache.directory = args.cache_dir

    return config


def run_pipeline(args) -> int:
    """Run the page layout reconstruction pipeline."""
    from page_recon.utils.io import load_page_dump, save_json, save_text, ensure_dir
    from page_recon.utils.assembler import DocumentAssembler

    start_time = time.time()

    output_dir = Path(args.output)
    ensure_dir(output_dir)

    config = build_config(args)

    input_path = Path(args.input)
    pages = load_page_dump(input_path)
    if not pages:
        logger.error("No pages to process")
        return 1

    # Filter pages if specified
    if args.pages:
        max_page = max(p.page_number for p in pages)
        selected = parse_page_range(args.pages, max_page)
        pages = [p for p in pages if p.page_number in selected]
        logger.info(f"Processing pages: {selected}")

    assembler = DocumentAssembler(config=config, output_dir=output_dir)

    logger.info("Processing document...")
    try:
        document = assembler.process_document(pages, source_file=str(input_path))
    except Exception as e:
        logger.error(f"Processing failed: {e}")
        if args.debug:
            raise
        return 1

    html_path = save_text(document.html + "\n", output_dir / "document.html")
    json_path = save_json(document.to_dict(), output_dir / "document.json")
    logger.info(f"Saved HTML: {html_path}")
    logger.info(f"Saved JSON: {json_path}")

    # Print summary
    elapsed = time.time() - start_time
    processed = [p for p in document.pages if p.status == "success"]

    if not args.quiet:
        print("\n" + "="*60)
        print("PAGE RECONSTRUCTION COMPLETE")
        print("="*60)
        print(f"Source: {input_path}")
        print(f"Output: {output_dir}")
        print(f"Pages processed: {len(processed)}/{len(document.pages)}")
        if document.failed_pages:
            print(f"Failed pages: {document.failed_pages}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        print("Content:")
        print(f"  Tables: {sum(p.tables for p in processed)}")
        print(f"  Footnotes: {sum(p.footnotes for p in processed)}")
        print(f"  Default font: {document.fonts.get('default_font')}")
        print("="*60)

    return 0 if processed else 1


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    # Check dependencies
    if not check_dependencies():
        sys.exit(1)

    # Run pipeline
    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
