"""
Reading-order assembly module.

Turns the ordered lines of a zone into paragraphs, headings and figure
captions. Line classification is a pure pass over a sliding window of the
previously classified lines; rendering then flushes each block to markup.
"""

import logging
import statistics
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from ..config import AssemblyConfig
from .layout import Zone, ZoneType
from .markup import render_lines, title_case_markup
from .text import TextItem, FontStatistics, dominant_signature

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class BlockState(Enum):
    """Kind of block a line belongs to."""
    NONE = "none"
    IN_PARAGRAPH = "paragraph"
    IN_HEADING = "heading"
    IN_CAPTION = "caption"


@dataclass(frozen=True)
class LineDecision:
    """Classification of one line."""
    index: int
    state: BlockState
    starts_block: bool
    signature: Optional[str] = None
    caption_number: Optional[int] = None


@dataclass
class Block:
    """Consecutive lines flushed as one element."""
    state: BlockState
    lines: List[List[TextItem]]
    signature: Optional[str] = None
    caption_number: Optional[int] = None


# ============================================================================
# Line Geometry
# ============================================================================

def line_signature(line: Sequence[TextItem]) -> Optional[str]:
    """The shared font signature of a line, or None when runs differ."""
    signatures = {item.font_signature for item in line}
    return signatures.pop() if len(signatures) == 1 else None


def caption_start(line: Sequence[TextItem]) -> Optional[int]:
    """
    Number of a caption opening: the line starts with an upright bare
    integer followed by an italic run. Footnote reference marks never count.
    """
    if len(line) < 2:
        return None
    first, following = line[0], line[1]
    if first.foot_index is not None or first.italic or not first.is_bare_integer:
        return None
    return int(first.text) if following.italic else None


def embedded_image(zone: Zone) -> str:
    """``<img>`` tag for a drawing embedded during preparation, else empty."""
    src = zone.metadata.get("image")
    return f'<img src="{src}"/>' if src else ""


def median_pitch(lines: Sequence[Sequence[TextItem]]) -> float:
    bottoms = [max(item.bottom for item in line) for line in lines if line]
    pitches = [b - a for a, b in zip(bottoms, bottoms[1:]) if b > a]
    return statistics.median(pitches) if pitches else 0.0


# ============================================================================
# Reading Order Assembler
# ============================================================================

class ReadingOrderAssembler:
    """
    Classifies and renders the lines of each zone.

    Uses the document font statistics, when available, for heading levels
    and for the default signature of every zone.
    """

    def __init__(
        self,
        config: Optional[AssemblyConfig] = None,
        font_stats: Optional[FontStatistics] = None,
        default_signature: Optional[str] = None
    ):
        self.config = config or AssemblyConfig()
        self.font_stats = font_stats
        self.default_signature = default_signature

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_lines(
        self,
        lines: Sequence[Sequence[TextItem]],
        default_signature: Optional[str] = None
    ) -> List[LineDecision]:
        """
        Classify each line given the decisions for the lines before it.

        Args:
            lines: Lines of the zone in reading order
            default_signature: Body signature; lines in any other single
                signature are headings

        Returns:
            One LineDecision per line
        """
        if not lines:
            return []

        margin = min(line[0].left for line in lines if line)
        pitch = median_pitch(lines)
        window: deque = deque(maxlen=max(1, self.config.window_size))
        decisions: List[LineDecision] = []

        for index, line in enumerate(lines):
            previous = window[-1] if window else None
            in_caption = previous is not None and previous.state == BlockState.IN_CAPTION

            if in_caption and pitch > 0:
                gap = max(i.bottom for i in line) - max(i.bottom for i in lines[index - 1])
                if gap > self.config.caption_gap_ratio * pitch:
                    in_caption = False

            number = None if in_caption else caption_start(line)
            signature = line_signature(line)

            if in_caption:
                decision = LineDecision(index, BlockState.IN_CAPTION, False,
                                        caption_number=previous.caption_number)
            elif number is not None:
                decision = LineDecision(index, BlockState.IN_CAPTION, True, caption_number=number)
            elif signature is not None and signature != default_signature:
                continues = (
                    previous is not None and
                    previous.state == BlockState.IN_HEADING and
                    previous.signature == signature
                )
                decision = LineDecision(index, BlockState.IN_HEADING, not continues, signature=signature)
            else:
                indented = line[0].left > margin + self.config.indent_threshold
                continues = previous is not None and previous.state == BlockState.IN_PARAGRAPH
                decision = LineDecision(index, BlockState.IN_PARAGRAPH, indented or not continues)

            decisions.append(decision)
            window.append(decision)

        return decisions

    def group_blocks(
        self,
        lines: Sequence[Sequence[TextItem]],
        decisions: Sequence[LineDecision]
    ) -> List[Block]:
        blocks: List[Block] = []
        for line, decision in zip(lines, decisions):
            if decision.starts_block or not blocks:
                blocks.append(Block(decision.state, [], decision.signature, decision.caption_number))
            blocks[-1].lines.append(list(line))
        return blocks

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_inline(self, lines: Sequence[Sequence[TextItem]]) -> str:
        """Inline markup for lines, used for table cells and footnote bodies."""
        return render_lines(lines, self.config)

    def heading_level(self, line: Sequence[TextItem]) -> int:
        item = max(line, key=lambda i: i.font_size)
        level = 0
        if self.font_stats is not None:
            level = self.font_stats.level_for(item.font_size)
        if not level:
            level = item.heading_level or self.config.default_heading_level
        return min(level, self.config.max_heading_level)

    def render_block(self, block: Block) -> str:
        if block.state == BlockState.IN_HEADING:
            inner = render_lines(block.lines, self.config)
            if self.config.title_case_headings:
                inner = title_case_markup(inner)
            level = self.heading_level(block.lines[0])
            return f'<heading font-signature="{block.signature}" level="{level}">{inner}</heading>'

        if block.state == BlockState.IN_CAPTION:
            lines = [list(line) for line in block.lines]
            number = block.caption_number
            for i, item in enumerate(lines[0]):
                if item.is_bare_integer and int(item.text) == number:
                    lines[0] = lines[0][:i] + lines[0][i + 1:]
                    break
            inner = render_lines([line for line in lines if line], self.config)
            return f'<figure><figcaption data-start="{number}">{inner}</figcaption></figure>'

        block.lines[-1][-1].is_paragraph_end = True
        return f'<p>{render_lines(block.lines, self.config)}</p>'

    def render_figure(self, zone: Zone) -> str:
        """A FIGURE zone: the caption starts at the chart-label line."""
        img = embedded_image(zone)
        start = next(
            (i for i, line in enumerate(zone.lines)
             if any(item.drawing_number is not None for item in line)),
            None
        )
        if start is None:
            return f'<figure>{img}</figure>'

        label = next(item for item in zone.lines[start] if item.drawing_number is not None)
        inner = render_lines(zone.lines[start:], self.config)
        return f'<figure>{img}<figcaption data-start="{label.drawing_number}">{inner}</figcaption></figure>'

    def render_zone(self, zone: Zone) -> str:
        """
        Render one zone to an HTML fragment and store it in ``zone.html``.

        Lines are compared against the document default signature when one
        is known, so a heading segmented into its own block, or a title zone
        in a single font, still reads as a heading. Without document
        statistics the zone's dominant signature is used.
        """
        if zone.zone_type == ZoneType.IMAGE:
            zone.html = f'<figure class="image">{embedded_image(zone)}</figure>'
            return zone.html

        if zone.zone_type == ZoneType.FIGURE:
            zone.html = self.render_figure(zone)
            return zone.html

        default = self.default_signature or dominant_signature(zone.lines)

        decisions = self.classify_lines(zone.lines, default)
        blocks = self.group_blocks(zone.lines, decisions)
        zone.html = "\n".join(self.render_block(block) for block in blocks)

        logger.debug(f"Zone {zone.zone_id}: {len(zone.lines)} lines -> {len(blocks)} blocks")
        return zone.html
