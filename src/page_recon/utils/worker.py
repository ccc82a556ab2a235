"""
Segmentation service.

Pixel-level work (binarization, morphology, contours and table structure)
runs in one long-lived worker process fed through request and response
queues. A lock keeps exactly one request in flight. The service can also
run in-process, which is what tests and small documents use.
"""

import logging
import multiprocessing
import queue
import threading
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from ..config import PipelineConfig
from .images import binarize, erase_outside_crop
from .layout import Zone, ZoneType, ZoneSegmenter, SegmentationResult
from .tables import TableStructureParser, dedupe_table_zones

logger = logging.getLogger(__name__)


class SegmentationError(RuntimeError):
    """Raised when the segmentation worker fails a request or dies."""


# ============================================================================
# Request Handling
# ============================================================================

def parse_tables(
    image: np.ndarray,
    zones: List[Zone],
    crop: Optional[Tuple[float, float, float, float]],
    config: PipelineConfig
) -> List[Zone]:
    """
    Replace every TABLE zone with its cell zones.

    Near-duplicate table zones are dropped first. Tables with too few
    rulings stay as single opaque zones.
    """
    binary = erase_outside_crop(binarize(image, config.segmentation.binarize_threshold), crop)
    parser = TableStructureParser(config.table)

    result: List[Zone] = []
    table_id = 0
    for zone in dedupe_table_zones(zones, config.table.duplicate_tolerance):
        if zone.zone_type != ZoneType.TABLE or zone.table_id is not None:
            result.append(zone)
            continue

        cells = parser.parse(zone, binary, table_id)
        if cells and cells[0] is not zone:
            table_id += 1
        result.extend(cells)

    return result


def handle_request(action: str, payload: dict, config: PipelineConfig) -> Any:
    """Run one segmentation request."""
    if action == "segment":
        segmenter = ZoneSegmenter(config.segmentation)
        return segmenter.segment(
            payload["image"],
            page_number=payload.get("page_number", 1),
            anchors=payload.get("anchors"),
            crop=payload.get("crop"),
            debug=payload.get("debug", False)
        )
    if action == "tables":
        return parse_tables(payload["image"], payload["zones"], payload.get("crop"), config)

    raise ValueError(f"Unknown segmentation action: {action}")


def _serve(requests, responses, config: PipelineConfig):
    """Worker loop: answer requests until the None sentinel arrives."""
    while True:
        message = requests.get()
        if message is None:
            break

        action, payload = message
        try:
            responses.put(("ok", handle_request(action, payload, config)))
        except Exception as e:
            responses.put(("err", f"{type(e).__name__}: {e}"))


# ============================================================================
# Service
# ============================================================================

class SegmentationService:
    """
    Message-passing front end to the segmentation worker.

    Example:
        with SegmentationService(config) as service:
            result = service.segment(image, page_number=1)
    """

    def __init__(self, config: Optional[PipelineConfig] = None, in_process: Optional[bool] = None):
        self.config = config or PipelineConfig()
        self.in_process = self.config.worker.in_process if in_process is None else in_process
        self._lock = threading.Lock()
        self._process = None
        self._requests = None
        self._responses = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def start(self) -> 'SegmentationService':
        if self.in_process or self.is_running:
            return self

        ctx = multiprocessing.get_context("spawn")
        self._requests = ctx.Queue(maxsize=1)
        self._responses = ctx.Queue(maxsize=1)
        self._process = ctx.Process(
            target=_serve,
            args=(self._requests, self._responses, self.config),
            daemon=True
        )
        self._process.start()
        logger.info(f"Started segmentation worker (pid {self._process.pid})")
        return self

    def request(self, action: str, payload: dict) -> Any:
        """
        Send one request and wait for its answer.

        Raises:
            SegmentationError: If the worker reports an error or dies
        """
        with self._lock:
            if self.in_process:
                try:
                    return handle_request(action, payload, self.config)
                except Exception as e:
                    raise SegmentationError(f"{type(e).__name__}: {e}") from e

            if not self.is_running:
                self.start()

            self._requests.put((action, payload))
            status, result = self._receive()

        if status != "ok":
            raise SegmentationError(result)
        return result

    def _receive(self) -> Tuple[str, Any]:
        while True:
            try:
                return self._responses.get(timeout=self.config.worker.poll_interval)
            except queue.Empty:
                if not self._process.is_alive():
                    exitcode = self._process.exitcode
                    self._process = None
                    raise SegmentationError(f"Segmentation worker exited with code {exitcode}")

    def segment(
        self,
        image: np.ndarray,
        page_number: int = 1,
        anchors: Optional[Sequence[Tuple[float, float]]] = None,
        crop: Optional[Tuple[float, float, float, float]] = None,
        debug: bool = False
    ) -> SegmentationResult:
        return self.request("segment", {
            "image": image,
            "page_number": page_number,
            "anchors": list(anchors or []),
            "crop": crop,
            "debug": debug
        })

    def parse_tables(
        self,
        image: np.ndarray,
        zones: List[Zone],
        crop: Optional[Tuple[float, float, float, float]] = None
    ) -> List[Zone]:
        return self.request("tables", {"image": image, "zones": zones, "crop": crop})

    def stop(self):
        """Ask the worker to exit, terminating it if it does not."""
        if self._process is None:
            return

        try:
            self._requests.put(None, timeout=self.config.worker.shutdown_timeout)
        except queue.Full:
            logger.warning("Segmentation worker request queue full at shutdown")

        self._process.join(timeout=self.config.worker.shutdown_timeout)
        if self._process.is_alive():
            logger.warning("Segmentation worker did not exit, terminating")
            self._process.terminate()
            self._process.join(timeout=5)

        self._process = None
        logger.info("Stopped segmentation worker")

    def __enter__(self) -> 'SegmentationService':
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
