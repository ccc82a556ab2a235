"""
Footnote resolution module.

Marks superscript reference runs in body zones, parses the numbered entries
of the page footer and inlines each resolved body into its reference marker.
"""

import re
import logging
from collections import deque
from dataclasses import replace
from typing import List, Optional, Tuple, Dict, Sequence

from ..config import TextConfig, AssemblyConfig
from .layout import Zone, ZoneType
from .markup import render_lines, escape_html
from .text import TextItem

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r'<sup class="footnote-ref" data-ref="(\d+)"></sup>')
SPACED_DIGITS = re.compile(r"\d+(?: \d+)*")
# Digits glued to a lowercase letter ("1st", "1990s") are not a note number
LEADING_NUMBER = re.compile(r"^(\d+)(?![\da-z])\s*(\S.*)$")

Line = List[TextItem]


# ============================================================================
# Sequential Numbered Lines
# ============================================================================

def leading_number(line: Sequence[TextItem], expected: int) -> Tuple[Optional[int], Line]:
    """
    Read the number opening a line.

    Accepts a first run that is exactly an integer, digits split by spaces
    or across runs ("1 0" for 10), or a number glued to the start of the run
    text. Returns (number, remaining runs); the number is None when the line
    does not open with one.
    """
    if not line:
        return None, []

    first = line[0]
    if SPACED_DIGITS.fullmatch(first.text):
        digits = first.text.replace(" ", "")
        k = 1
        # Digits spread over several runs
        while int(digits) != expected and k < len(line) and line[k].text.isdigit():
            digits += line[k].text
            k += 1
        if int(digits) == expected:
            return expected, list(line[k:])
        return int(first.text.replace(" ", "")), list(line[1:])

    match = LEADING_NUMBER.match(first.text)
    if match:
        rest = replace(first, text=match.group(2))
        return int(match.group(1)), [rest] + list(line[1:])

    return None, list(line)


def split_numbered_lines(lines: Sequence[Sequence[TextItem]]) -> Tuple[List[Line], List[Tuple[int, List[Line]]]]:
    """
    Split lines into numbered entries with an expected index starting at 1.

    A line opening with the expected number starts a new entry. A line with
    another number, or none, continues the open entry; before the first
    entry it is leading text.

    Returns:
        (leading lines, [(number, entry lines)])
    """
    expected = 1
    leading: List[Line] = []
    entries: List[Tuple[int, List[Line]]] = []

    for line in lines:
        if not line:
            continue
        number, rest = leading_number(line, expected)
        if number == expected:
            entries.append((number, [rest] if rest else []))
            expected += 1
        elif entries:
            entries[-1][1].append(list(line))
        else:
            leading.append(list(line))

    return leading, entries


# ============================================================================
# Footnote Resolver
# ============================================================================

class FootnoteResolver:
    """Links superscript references to footer entries on one page."""

    SKIPPED_ZONES = (ZoneType.FOOTER, ZoneType.TABLE, ZoneType.FIGURE)

    def __init__(
        self,
        config: Optional[TextConfig] = None,
        assembly: Optional[AssemblyConfig] = None
    ):
        self.config = config or TextConfig()
        self.assembly = assembly or AssemblyConfig()

    def mark_references(self, zones: List[Zone]) -> List[int]:
        """
        Flag bare-integer runs raised above the run before them.

        Returns:
            Referenced indices in order of appearance
        """
        referenced = []
        for zone in zones:
            if zone.zone_type in self.SKIPPED_ZONES:
                continue
            for line in zone.lines:
                window: deque = deque(maxlen=1)
                for item in line:
                    if window and item.is_bare_integer:
                        if window[0].bottom - item.bottom > self.config.superscript_rise:
                            item.foot_index = int(item.text)
                            referenced.append(item.foot_index)
                    window.append(item)

        if referenced:
            logger.debug(f"Footnote references: {referenced}")
        return referenced

    def parse_footer(self, lines: Sequence[Sequence[TextItem]]) -> Dict[int, str]:
        """Footnote bodies keyed by local index, rendered as inline markup."""
        leading, entries = split_numbered_lines(lines)
        if leading:
            logger.debug(f"Footer has {len(leading)} unnumbered leading line(s)")
        return {
            number: render_lines(body, self.assembly)
            for number, body in entries
        }

    def resolve(self, zones: List[Zone], offset: int = 0) -> int:
        """
        Inline footer bodies into the reference markers of rendered zones.

        Args:
            zones: Page zones with ``html`` already rendered
            offset: Running document offset added to local indices

        Returns:
            Highest local index seen on the page, for advancing the offset
        """
        footers = sorted(
            (z for z in zones if z.zone_type == ZoneType.FOOTER),
            key=lambda z: (z.bbox.y1, z.bbox.x1)
        )
        entries = self.parse_footer([line for z in footers for line in z.lines])

        referenced = set()

        def _inline(match):
            local = int(match.group(1))
            referenced.add(local)
            if local not in entries:
                return escape_html(str(local))
            return (
                f'<sup class="footnote-ref" data-ref="{local + offset}">'
                f'{entries[local]}</sup>'
            )

        for zone in zones:
            if zone.html and not zone.is_page_furniture:
                zone.html = MARKER_PATTERN.sub(_inline, zone.html)

        unresolved = sorted(referenced - set(entries))
        unreferenced = sorted(set(entries) - referenced)
        if unresolved:
            logger.warning(f"Unresolved footnote reference(s): {unresolved}")
        if unreferenced:
            logger.warning(f"Footnote(s) without a reference: {unreferenced}")

        return max(referenced | set(entries), default=0)
