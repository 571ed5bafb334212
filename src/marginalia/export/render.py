"""Render stored highlights into HTML as ``<mark>`` elements.

Architecture:
    Reuses ``project`` / ``find_text_node_offsets`` from the input pipeline
    for character-position-to-HTML mapping.  Each highlight's span is split
    at every text-node boundary, so every marker opens and closes inside the
    same text node and can never straddle a tag.  Markers are collected as
    ``(offset, tag)`` insertions and applied back-to-front.

Strategies, in order:

1. **Position**: the stored offsets still select the stored text.
2. **Text search**: the stored text occurs contiguously in the projection;
   the occurrence nearest the stored start wins.
3. **Tag-crossing search**: a token regex over the raw HTML tolerating tags
   and whitespace between words.  Only for legacy records whose text no
   longer matches the projection exactly.

A highlight no strategy can place stays stored but unmarked and is reported
in ``RenderResult.failures``.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from selectolax.lexbor import LexborHTMLParser

from marginalia.errors import RenderFallbackExhausted
from marginalia.export.marker_constants import (
    MARKER_CLASS,
    MARKER_CLOSE,
    MARKER_OPEN_TEMPLATE,
    MARKER_POS_TEMPLATE,
    POS_FIRST,
    POS_LAST,
    POS_ONLY,
)
from marginalia.input_pipeline.projection import (
    find_text_node_offsets,
    inside_tag,
    is_blank,
    normalize_text,
    project,
    raw_text_end,
    raw_text_ranges,
)
from marginalia.input_pipeline.reconcile import pick_nearest
from marginalia.models import Span

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import Highlight

logger = logging.getLogger(__name__)

# [start, end) range in the serialised HTML
type _Segment = tuple[int, int]

_TAG = re.compile(r"<[^>]*>")
_TOKEN = re.compile(r"\w+|[^\w\s]")
# Anything that may sit between two tokens of a selection in raw HTML
_TOKEN_GAP = r"(?:\s|&nbsp;|&#160;|<[^>]*>)*"


@dataclass
class RenderResult:
    """Rendered HTML plus which highlights made it on screen."""

    html: str
    rendered_ids: list[str] = field(default_factory=list)
    failures: list[RenderFallbackExhausted] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Segment computation
# ---------------------------------------------------------------------------


class _Claims:
    """HTML ranges already wrapped by a marker."""

    def __init__(self) -> None:
        self._segments: list[_Segment] = []

    def overlaps(self, segment: _Segment) -> bool:
        start, end = segment
        return any(start < c_end and c_start < end for c_start, c_end in self._segments)

    def subtract(self, segment: _Segment) -> list[_Segment]:
        """The parts of *segment* not yet claimed."""
        pieces = [segment]
        for c_start, c_end in self._segments:
            remaining: list[_Segment] = []
            for start, end in pieces:
                if c_end <= start or end <= c_start:
                    remaining.append((start, end))
                    continue
                if start < c_start:
                    remaining.append((start, c_start))
                if c_end < end:
                    remaining.append((c_end, end))
            pieces = remaining
        return pieces

    def add(self, segments: Iterable[_Segment]) -> None:
        self._segments.extend(segments)


def _visible(html: str, segment: _Segment) -> bool:
    start, end = segment
    return end > start and not is_blank(html_module.unescape(html[start:end]))


def _segments_for_span(
    span: Span,
    projection: Projection,
    offsets: list[int | None],
) -> list[_Segment] | None:
    """Split *span* at text-node boundaries, in HTML coordinates.

    Boundary spaces between blocks belong to no text node and are dropped.
    Returns None if a text node the span needs could not be located.
    """
    segments: list[_Segment] = []
    for node, base in zip(projection.nodes, offsets, strict=True):
        lo = max(span.start, node.char_start)
        hi = min(span.end, node.char_end)
        if lo >= hi:
            continue
        if base is None:
            return None
        start = base + node.html_offset(lo - node.char_start)
        end = base + node.html_offset(hi - node.char_start)
        if _visible(projection.html, (start, end)):
            segments.append((start, end))
    return segments


def _token_pattern(token: str) -> str:
    forms = {re.escape(token), re.escape(html_module.escape(token))}
    return "(?:" + "|".join(sorted(forms)) + ")"


def _regex_segments(html: str, text: str, claims: _Claims) -> list[_Segment] | None:
    """Locate *text* in raw HTML allowing tags between tokens.

    Only literal text runs inside the match are returned, so markers never
    wrap a tag.  Matches starting inside tag syntax or a raw-text element
    are rejected.
    """
    tokens = _TOKEN.findall(text)
    if not tokens:
        return None
    pattern = re.compile(_TOKEN_GAP.join(_token_pattern(t) for t in tokens))
    hidden = raw_text_ranges(html)

    for match in pattern.finditer(html):
        start = match.start()
        if inside_tag(html, start) or raw_text_end(start, hidden) is not None:
            continue
        segments: list[_Segment] = []
        cursor = match.start()
        for tag in _TAG.finditer(html, match.start(), match.end()):
            segments.append((cursor, tag.start()))
            cursor = tag.end()
        segments.append((cursor, match.end()))
        segments = [s for s in segments if _visible(html, s)]
        if segments and not any(claims.overlaps(s) for s in segments):
            return segments
    return None


def _locate(
    highlight: Highlight,
    text: str,
    projection: Projection,
    offsets: list[int | None],
) -> list[_Segment] | None:
    """Segments for *highlight* by position, then by contiguous text search."""
    span = highlight.span
    if span.end <= len(projection) and projection.matches(span, text):
        segments = _segments_for_span(span, projection, offsets)
        if segments:
            return segments

    occurrences = list(projection.occurrences(text))
    if occurrences:
        start = pick_nearest(occurrences, highlight.start_offset)
        segments = _segments_for_span(
            Span(start, start + len(text)), projection, offsets
        )
        if segments:
            logger.debug(
                "Highlight %s drifted: rendered at %d instead of %d",
                highlight.id,
                start,
                highlight.start_offset,
            )
            return segments
    return None


# ---------------------------------------------------------------------------
# Marker insertion (back-to-front string insertion)
# ---------------------------------------------------------------------------


def _marker_tags(
    segments: list[_Segment], highlight_id: str, marker_class: str
) -> list[tuple[int, str]]:
    ordered = sorted(segments)
    insertions: list[tuple[int, str]] = []
    for index, (start, end) in enumerate(ordered):
        if len(ordered) == 1:
            pos = MARKER_POS_TEMPLATE.format(POS_ONLY)
        elif index == 0:
            pos = MARKER_POS_TEMPLATE.format(POS_FIRST)
        elif index == len(ordered) - 1:
            pos = MARKER_POS_TEMPLATE.format(POS_LAST)
        else:
            pos = ""
        open_tag = MARKER_OPEN_TEMPLATE.format(
            cls=marker_class, id=html_module.escape(highlight_id), pos=pos
        )
        insertions.append((start, open_tag))
        insertions.append((end, MARKER_CLOSE))
    return insertions


def _apply_insertions(html: str, insertions: list[tuple[int, str]]) -> str:
    # Descending by position; at the same position closing tags are
    # inserted after opening ones so the output reads </mark><mark ...>.
    insertions.sort(key=lambda item: (item[0], item[1] != MARKER_CLOSE), reverse=True)
    result = html
    for pos, tag in insertions:
        result = result[:pos] + tag + result[pos:]
    return result


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render(
    html: str,
    highlights: Iterable[Highlight],
    *,
    enabled: bool = True,
    marker_class: str = MARKER_CLASS,
) -> RenderResult:
    """Wrap every stored highlight in *html* with marker elements.

    Args:
        html: The document's HTML content.
        highlights: Stored highlights for this document.
        enabled: Display toggle; when False the content is returned as-is.
        marker_class: CSS class for marker elements.

    Returns:
        RenderResult with the marked-up HTML, ids of highlights that are on
        screen, and failures for highlights no strategy could place.
    """
    result = RenderResult(html=html)
    highlights = list(highlights)
    if not enabled or not html or not highlights:
        return result

    projection = project(html)
    offsets = find_text_node_offsets(html, projection.nodes)
    claims = _Claims()
    rendered_texts: list[str] = []
    insertions: list[tuple[int, str]] = []

    # Longest first so shorter highlights never pre-empt a longer one
    ordered = sorted(
        highlights, key=lambda h: len(normalize_text(h.selected_text)), reverse=True
    )
    for highlight in ordered:
        highlight_id = str(highlight.id)
        text = normalize_text(highlight.selected_text)
        if not text:
            continue

        segments = _locate(highlight, text, projection, offsets)
        if segments is None:
            if any(text in done for done in rendered_texts):
                result.rendered_ids.append(highlight_id)
                continue
            segments = _regex_segments(html, text, claims)
            if segments is not None:
                logger.debug("Highlight %s placed by tag-crossing search", highlight_id)

        if segments is None:
            failure = RenderFallbackExhausted(highlight_id, text)
            logger.warning("%s", failure)
            result.failures.append(failure)
            continue

        unclaimed = [piece for s in segments for piece in claims.subtract(s)]
        unclaimed = [s for s in unclaimed if _visible(html, s)]
        if unclaimed:
            claims.add(unclaimed)
            insertions.extend(_marker_tags(unclaimed, highlight_id, marker_class))
        rendered_texts.append(text)
        result.rendered_ids.append(highlight_id)

    result.html = _apply_insertions(html, insertions)
    return result


def find_highlight_group(rendered_html: str, text: str) -> str | None:
    """Find the highlight-group id whose marked text starts with *text*.

    Used to scroll to a highlight picked from the reader's library, where
    only the highlight's text is known.
    """
    wanted = normalize_text(text)[:30]
    if not wanted:
        return None

    groups: dict[str, list[str]] = {}
    tree = LexborHTMLParser(rendered_html)
    for mark in tree.css("mark[data-highlight-id]"):
        group_id = mark.attributes.get("data-highlight-id")
        if group_id:
            groups.setdefault(group_id, []).append(mark.text(deep=True))

    marked_texts = {
        group_id: normalize_text(" ".join(parts)) for group_id, parts in groups.items()
    }
    for group_id, marked in marked_texts.items():
        if marked.startswith(wanted):
            return group_id
    for group_id, marked in marked_texts.items():
        if wanted in marked:
            return group_id
    # Loose prefix match for groups rendered from truncated text
    for group_id, marked in marked_texts.items():
        if marked and wanted.startswith(marked[:15]):
            return group_id
    return None
