"""Plain-text projection of HTML content.

The projection is the coordinate space for every stored highlight offset.
It walks the DOM in document order, concatenating leaf text, and inserts
exactly one separating space whenever traversal crosses from one block-level
container into a different one.  Alongside the text it records where each
text node's characters fall, so the renderer can map offsets back into the
serialised HTML.
"""

# Pattern: Functional Core (pure functions over HTML strings)

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from itertools import count
from typing import TYPE_CHECKING, Any

from selectolax.lexbor import LexborHTMLParser

if TYPE_CHECKING:
    from collections.abc import Iterator

    from marginalia.models import Span

logger = logging.getLogger(__name__)

# Tags skipped entirely (no visible text)
_STRIP_TAGS = frozenset(
    ("script", "style", "noscript", "template", "head", "title")
)

# Serialised elements whose contents are raw text, never projected
_RAW_TEXT_ELEMENT = re.compile(
    r"<(script|style|noscript|template|title)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)

# Containers whose whitespace-only text children are formatting artefacts
# (indentation between tags).  Deliberately excludes <p>/<h*>: a lone space
# between two inline runs of a paragraph is real content.
_CONTAINER_TAGS = frozenset(
    (
        "html",
        "body",
        "table",
        "tbody",
        "thead",
        "tfoot",
        "tr",
        "td",
        "th",
        "ul",
        "ol",
        "li",
        "dl",
        "dt",
        "dd",
        "div",
        "section",
        "article",
        "aside",
        "header",
        "footer",
        "nav",
        "main",
        "figure",
        "figcaption",
        "blockquote",
    )
)

# Block-level containers for boundary detection.  Crossing from the nearest
# block ancestor of one text node into a different one emits one space.
BLOCK_TAGS: frozenset[str] = frozenset(
    (
        "p",
        "div",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "ul",
        "ol",
        "li",
        "blockquote",
        "pre",
        "hr",
        "table",
        "tr",
        "td",
        "th",
        "thead",
        "tbody",
        "tfoot",
        "article",
        "section",
        "header",
        "footer",
        "nav",
        "aside",
        "figure",
        "figcaption",
        "main",
        "address",
        "dd",
        "dl",
        "dt",
    )
)

# Whitespace pattern matching JS /[\s]+/g - includes \u00a0 (nbsp)
_WHITESPACE_RUN = re.compile(r"[\s\u00a0]+")

# Common HTML entities and their decoded forms
_ENTITY_MAP: dict[str, str] = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&apos;": "'",
    "&nbsp;": "\u00a0",
}


def normalize_text(text: str) -> str:
    """Collapse whitespace runs (newlines, tabs, nbsp) to one space and trim."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs to one space without trimming."""
    return _WHITESPACE_RUN.sub(" ", text)


def is_blank(text: str) -> bool:
    """True for empty or whitespace-only text."""
    return not text or _WHITESPACE_RUN.fullmatch(text) is not None


@dataclass
class TextNodeInfo:
    """A text node's contribution to the projection."""

    html_text: str  # HTML-encoded text (for finding in serialised HTML)
    decoded_text: str  # Decoded text (from text_content)
    collapsed_text: str  # After whitespace collapsing
    char_start: int  # Starting char index in the projection
    char_end: int  # Ending char index (exclusive)
    block_id: int  # Identity of the nearest block-level ancestor
    skipped: int = 0  # Leading collapsed chars merged into the preceding space

    def html_offset(self, collapsed_offset: int) -> int:
        """Offset inside ``html_text`` for an offset inside ``collapsed_text``."""
        return collapsed_to_html_offset(
            self.html_text, self.decoded_text, collapsed_offset + self.skipped
        )


@dataclass
class Projection:
    """Flattened text of an HTML document plus its text-node position map."""

    html: str
    text: str
    nodes: list[TextNodeInfo] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.text)

    def slice(self, span: Span) -> str:
        return self.text[span.start : span.end]

    def matches(self, span: Span, selected_text: str) -> bool:
        """True if *span* is in range and its text normalises to *selected_text*."""
        if span.end > len(self.text):
            return False
        return normalize_text(self.slice(span)) == normalize_text(selected_text)

    def occurrences(self, needle: str) -> Iterator[int]:
        """Yield every start index of *needle* (overlapping matches included)."""
        if not needle:
            return
        pos = self.text.find(needle)
        while pos != -1:
            yield pos
            pos = self.text.find(needle, pos + 1)


def _walk(root: Any) -> tuple[list[str], list[TextNodeInfo]]:
    """Walk the DOM under *root*, returning projected chars and the node map."""
    chars: list[str] = []
    text_nodes: list[TextNodeInfo] = []
    block_ids = count(1)
    last_block: int | None = None
    pending_break = False

    def _emit(node: Any, text: str, block_id: int) -> None:
        nonlocal last_block, pending_break
        collapsed = _WHITESPACE_RUN.sub(" ", text)
        crossing = pending_break or (
            last_block is not None and block_id != last_block
        )
        # One separating space, never doubled against whitespace at the join
        if crossing and chars and chars[-1] != " " and collapsed[0] != " ":
            chars.append(" ")
        skipped = 0
        if chars and chars[-1] == " " and collapsed[0] == " ":
            collapsed = collapsed[1:]
            skipped = 1
            if not collapsed:
                return
        start = len(chars)
        chars.extend(collapsed)
        text_nodes.append(
            TextNodeInfo(
                html_text=node.html,  # HTML-encoded (e.g. "&amp;")
                decoded_text=text,  # Decoded (e.g. "&")
                collapsed_text=collapsed,
                char_start=start,
                char_end=len(chars),
                block_id=block_id,
                skipped=skipped,
            )
        )
        last_block = block_id
        pending_break = False

    def _visit(node: Any, block_id: int) -> None:
        nonlocal pending_break
        tag = node.tag

        # Text node - selectolax uses "-text" as the tag
        if tag == "-text":
            text = node.text_content
            if not text:
                return
            parent = node.parent
            if (
                parent is not None
                and parent.tag in _CONTAINER_TAGS
                and _WHITESPACE_RUN.fullmatch(text)
            ):
                return
            _emit(node, text, block_id)
            return

        if tag in _STRIP_TAGS:
            return

        if tag == "br":
            pending_break = True
            return

        if tag in BLOCK_TAGS:
            block_id = next(block_ids)

        child = node.child
        while child is not None:
            _visit(child, block_id)
            child = child.next

    child = root.child
    while child is not None:
        _visit(child, 0)
        child = child.next

    return chars, text_nodes


def project(html: str) -> Projection:
    """Flatten HTML into the canonical plain-text projection.

    Matching rules:
    - whitespace runs (including ``\\u00a0``) collapse to a single space
    - whitespace-only text nodes inside layout containers are skipped
    - script / style / noscript / template / title are skipped entirely
    - crossing into a different nearest block ancestor, or a ``<br>``,
      inserts one separating space (unless whitespace is already there)

    Pure and deterministic: identical input yields identical output.

    Args:
        html: Clean HTML content (fragment or full document).

    Returns:
        The Projection of *html*.
    """
    if not html:
        return Projection(html=html or "", text="")

    tree = LexborHTMLParser(html)
    body = tree.body
    root = body if body else tree.root
    if root is None:
        return Projection(html=html, text="")

    chars, text_nodes = _walk(root)
    return Projection(html=html, text="".join(chars), nodes=text_nodes)


# ---------------------------------------------------------------------------
# Inverse mapping helpers (projection offset -> serialised HTML offset)
# ---------------------------------------------------------------------------


def inside_tag(html: str, pos: int) -> bool:
    """True if *pos* falls between a ``<`` and its closing ``>``."""
    return html.rfind("<", 0, pos) > html.rfind(">", 0, pos)


def raw_text_ranges(html: str) -> list[tuple[int, int]]:
    """``[start, end)`` of each element whose text never reaches the projection."""
    return [match.span() for match in _RAW_TEXT_ELEMENT.finditer(html)]


def raw_text_end(pos: int, ranges: list[tuple[int, int]]) -> int | None:
    """End of the raw-text element containing *pos*, or None."""
    for start, end in ranges:
        if start <= pos < end:
            return end
    return None


def _find_outside_tags(
    html: str, needle: str, start: int, hidden: list[tuple[int, int]]
) -> int:
    idx = html.find(needle, start)
    while idx != -1:
        hidden_end = raw_text_end(idx, hidden)
        if hidden_end is not None:
            idx = html.find(needle, hidden_end)
        elif inside_tag(html, idx):
            idx = html.find(needle, idx + 1)
        else:
            break
    return idx


def find_text_node_offsets(
    html: str, text_nodes: list[TextNodeInfo]
) -> list[int | None]:
    """Find the offset of each text node's html_text in the serialised HTML.

    Searches sequentially, advancing the search position so matches follow
    document order, and never matches inside tag syntax or inside raw-text
    elements such as ``<script>`` and ``<title>``.

    When selectolax re-encodes characters (e.g. literal ``\\xa0`` becomes
    ``&nbsp;`` in ``node.html``), the entity form will not match the source
    HTML.  In that case we fall back to ``decoded_text`` and update the
    node's ``html_text`` so downstream offset calculations stay consistent.
    A node that cannot be found maps to None.
    """
    offsets: list[int | None] = []
    search_from = 0
    hidden = raw_text_ranges(html)

    for info in text_nodes:
        idx = _find_outside_tags(html, info.html_text, search_from, hidden)
        if idx == -1:
            idx = _find_outside_tags(html, info.decoded_text, search_from, hidden)
            if idx != -1:
                info.html_text = info.decoded_text
        if idx == -1:
            logger.warning(
                "Could not find text node %r in HTML from offset %d",
                info.html_text[:40],
                search_from,
            )
            offsets.append(None)
            continue
        offsets.append(idx)
        search_from = idx + len(info.html_text)

    return offsets


def _html_char_length(html_text: str, html_pos: int, decoded_char: str) -> int:
    """Determine how many chars in *html_text* correspond to one decoded char.

    If ``html_text[html_pos]`` starts an entity (e.g. ``&amp;``), return the
    entity length.  Otherwise return 1.
    """
    if html_pos >= len(html_text):
        return 1

    if html_text[html_pos] == "&":
        for entity, decoded in _ENTITY_MAP.items():
            if html_text.startswith(entity, html_pos) and decoded == decoded_char:
                return len(entity)
        # Numeric entity &#NNN; or &#xHHH;
        semicolon = html_text.find(";", html_pos + 1)
        if (
            semicolon != -1
            and semicolon - html_pos < 12
            and html_text.startswith("&#", html_pos)
        ):
            return semicolon - html_pos + 1
    return 1


def collapsed_to_html_offset(
    html_text: str, decoded_text: str, collapsed_offset: int
) -> int:
    """Map an offset in collapsed-decoded text to an offset in HTML-encoded text.

    Walks the decoded text applying whitespace collapsing while advancing
    through the HTML text to track the corresponding position.
    """
    if collapsed_offset == 0:
        return 0

    collapsed_pos = 0
    decoded_pos = 0
    html_pos = 0
    in_whitespace = False

    while decoded_pos < len(decoded_text) and collapsed_pos < collapsed_offset:
        ch = decoded_text[decoded_pos]
        is_ws = ch == "\u00a0" or ch.isspace()
        html_pos += _html_char_length(html_text, html_pos, ch)
        decoded_pos += 1
        if is_ws:
            if not in_whitespace:
                collapsed_pos += 1
                in_whitespace = True
        else:
            collapsed_pos += 1
            in_whitespace = False

    # Swallow the rest of a whitespace run that collapsed into one char
    while in_whitespace and decoded_pos < len(decoded_text):
        ch = decoded_text[decoded_pos]
        if not (ch == "\u00a0" or ch.isspace()):
            break
        html_pos += _html_char_length(html_text, html_pos, ch)
        decoded_pos += 1

    return html_pos


def decoded_to_collapsed_offset(decoded_text: str, offset: int) -> int:
    """Map a raw offset inside a DOM text node to its collapsed offset."""
    offset = max(0, min(offset, len(decoded_text)))
    return len(_WHITESPACE_RUN.sub(" ", decoded_text[:offset]))
