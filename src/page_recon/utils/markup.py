"""
Markup helpers for page fragments.

Provides:
- HTML escaping with URL protection and anchor restoration
- Title casing that leaves protected markup untouched
- Whitespace and punctuation spacing clean-up
- Dehyphenation decisions across line breaks
- Inline run rendering and adjacent tag merging
"""

import re
import logging
from typing import List, Optional, Sequence, Tuple

from ..config import AssemblyConfig

logger = logging.getLogger(__name__)


URL_PATTERN = re.compile(r"(?:https?://|www\.)[^\s<>\"]+")
URL_TRAILING = ".,;:)]"
PLACEHOLDER_PATTERN = re.compile(r"\x00(\d+)\x00")
# Anchors are held whole so URL text is never recased
PROTECTED_MARKUP = re.compile(r"<a\b[^>]*>.*?</a>|<[^>]+>|&#?\w+;", re.DOTALL)

SMALL_WORDS = re.compile(
    r"^(a|an|and|as|at|but|by|en|for|if|in|nor|of|on|or|per|the|to|v\.?|vs\.?|via)$",
    re.IGNORECASE
)
ROMAN_NUMERALS = re.compile(
    r"^(I|II|III|IV|V|VI|VII|VIII|IX|X|XI|XII|XIII|XIV|XV|XVI|XVII|XVIII|XIX|XX|"
    r"XXI|XXII|XXIII|XXIV|XXV|XXX|XL|L|LX|LXX|LXXX|XC|C|CC|CCC|CD|D|DC|DCC|DCCC|"
    r"CM|M|MM|MMM)$",
    re.IGNORECASE
)


# ============================================================================
# Escaping and URL Protection
# ============================================================================

def escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return (text
        .replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", "&apos;")
    )


def protect_urls(text: str) -> Tuple[str, List[str]]:
    """
    Replace URLs with ``\\x00N\\x00`` placeholders.

    Trailing sentence punctuation is left outside the URL.

    Returns:
        (text with placeholders, list of URLs by placeholder index)
    """
    urls: List[str] = []

    def _swap(match):
        url = match.group(0)
        tail = ""
        while url and url[-1] in URL_TRAILING:
            tail = url[-1] + tail
            url = url[:-1]
        urls.append(url)
        return f"\x00{len(urls) - 1}\x00{tail}"

    return URL_PATTERN.sub(_swap, text), urls


def restore_urls(text: str, urls: Sequence[str]) -> str:
    """Turn URL placeholders back into escaped anchors."""
    def _anchor(match):
        url = urls[int(match.group(1))]
        href = url if url.startswith("http") else f"http://{url}"
        return f'<a href="{escape_html(href)}">{escape_html(url)}</a>'

    return PLACEHOLDER_PATTERN.sub(_anchor, text)


def escape_text(text: str) -> str:
    """Escape run text, keeping URLs as anchors."""
    protected, urls = protect_urls(text)
    return restore_urls(escape_html(protected), urls)


# ============================================================================
# Title Case
# ============================================================================

def _capitalise(word: str) -> str:
    return word[:1].upper() + word[1:]


def _title_word(
    part: str,
    first_or_last: bool,
    after_colon: bool,
    source_all_caps: bool
) -> str:
    lower = part.lower()
    has_lower = any(c.islower() for c in part)
    has_upper = any(c.isupper() for c in part)

    # Mixed case (iPhone, McDonald)
    if not source_all_caps and has_lower and has_upper and not ROMAN_NUMERALS.match(part):
        return part

    # Circa dates
    if re.match(r"^c\.?\d", lower):
        return "c." + re.sub(r"^c\.?", "", lower)

    if "-" in part:
        pieces = part.split("-")
        result = []
        for i, piece in enumerate(pieces):
            if ROMAN_NUMERALS.match(piece):
                result.append(piece.upper())
            elif first_or_last or after_colon or i == 0 or i == len(pieces) - 1:
                result.append(_capitalise(piece.lower()))
            elif SMALL_WORDS.match(piece):
                result.append(piece.lower())
            else:
                result.append(_capitalise(piece.lower()))
        return "-".join(result)

    if ROMAN_NUMERALS.match(part):
        return part.upper()

    # Acronyms
    if not source_all_caps and re.match(r"^[A-Z]{2,}$", part):
        return part

    if first_or_last or after_colon:
        return _capitalise(lower)
    if SMALL_WORDS.match(lower):
        return lower
    return _capitalise(lower)


def title_case(text: str) -> str:
    """
    Title-case a heading that may contain ``\\x00N\\x00`` placeholders.

    Small words stay lowercase except at the visual start or end and after a
    colon. Roman numerals are uppercased, circa forms become ``c.1500`` and
    mixed-case words or acronyms are preserved unless the source is all caps.
    """
    if not text:
        return ""

    letters = re.sub(r"[^a-zA-Z]", "", PLACEHOLDER_PATTERN.sub("", text))
    source_all_caps = bool(letters) and letters == letters.upper()

    words = re.sub(r"\s+", " ", text).strip().split(" ")
    visible = [i for i, w in enumerate(words) if PLACEHOLDER_PATTERN.sub("", w).strip()]
    if not visible:
        return " ".join(words)
    first, last = visible[0], visible[-1]

    output = []
    for index, token in enumerate(words):
        after_colon = False
        if index != first:
            for prev in reversed(words[:index]):
                clean = PLACEHOLDER_PATTERN.sub("", prev)
                if clean:
                    after_colon = clean.endswith(":")
                    break

        parts = [p for p in re.split(r"(\x00\d+\x00)", token) if p]
        output.append("".join(
            p if PLACEHOLDER_PATTERN.fullmatch(p)
            else _title_word(p, index in (first, last), after_colon, source_all_caps)
            for p in parts
        ))

    return " ".join(output)


def title_case_markup(html: str) -> str:
    """
    Title-case an inline HTML fragment, leaving tags, anchors and entities
    as they are. Escaped apostrophes are cased as part of their word.
    """
    saved: List[str] = []

    def _hold(match):
        saved.append(match.group(0))
        return f"\x00{len(saved) - 1}\x00"

    held = PROTECTED_MARKUP.sub(_hold, html.replace("&apos;", "'"))
    cased = PLACEHOLDER_PATTERN.sub(lambda m: saved[int(m.group(1))], title_case(held))
    return cased.replace("'", "&apos;")


# ============================================================================
# Spacing, Hyphens and Tags
# ============================================================================

def normalise_spacing(text: str) -> str:
    """Collapse whitespace and drop spaces before , . and after (."""
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r" +([,.])", r"\1", text)
    return re.sub(r"\( +", "(", text)


def dehyphenate(prefix: str, suffix: str, config: Optional[AssemblyConfig] = None) -> bool:
    """
    Decide whether a hyphen at a line break is a real hyphen.

    Args:
        prefix: Word before the hyphen (without the hyphen)
        suffix: Word starting the next line

    Returns:
        True to keep the hyphen, False to join the halves into one word
    """
    config = config or AssemblyConfig()
    head = re.sub(r"^\W+", "", prefix).lower()
    tail = re.sub(r"\W+$", "", suffix).lower()
    if not head or not tail:
        return True

    if head not in config.kept_prefixes:
        return False
    if tail in config.bound_suffixes:
        return False
    if head + tail in config.solid_compounds:
        return False
    return True


def merge_adjacent_tags(html: str) -> str:
    """Join identical inline tags that close and immediately reopen."""
    previous = None
    while previous != html:
        previous = html
        html = re.sub(r"</(em|strong|u)>(\s*)<\1>", r"\2", html)
    return html


def wrap_styles(html: str, italic: bool = False, bold: bool = False, underline: bool = False) -> str:
    if underline:
        html = f"<u>{html}</u>"
    if bold:
        html = f"<strong>{html}</strong>"
    if italic:
        html = f"<em>{html}</em>"
    return html


def footnote_marker(index: int) -> str:
    return f'<sup class="footnote-ref" data-ref="{index}"></sup>'


def render_lines(
    lines: Sequence[Sequence],
    config: Optional[AssemblyConfig] = None,
    styled: bool = True
) -> str:
    """
    Render lines of TextItems as one inline HTML string.

    Runs on a line are joined with spaces. A line ending in a hyphen joins
    the next line's first word according to ``dehyphenate``. Footnote
    reference runs render as empty markers for later resolution.
    """
    config = config or AssemblyConfig()
    pieces: List[str] = []
    glue = ""

    flat = [(line_no, item) for line_no, line in enumerate(lines) for item in line]
    for position, (line_no, item) in enumerate(flat):
        if item.foot_index is not None:
            pieces.append(footnote_marker(item.foot_index))
            glue = " "
            continue

        text = item.text
        following = flat[position + 1] if position + 1 < len(flat) else None
        next_glue = " "

        ends_line = following is not None and following[0] != line_no
        if ends_line and text.endswith("-") and len(text) > 1:
            prefix = text[:-1].split(" ")[-1]
            suffix = following[1].text.split(" ")[0]
            if suffix[:1].isalpha():
                next_glue = ""
                if not dehyphenate(prefix, suffix, config):
                    text = text[:-1]

        html = escape_text(text)
        if styled:
            html = wrap_styles(html, item.italic, item.bold, item.underline)

        pieces.append(glue + html)
        glue = next_glue

    return merge_adjacent_tags(normalise_spacing("".join(pieces)))
