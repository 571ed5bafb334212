"""Surrounding text for a highlight shown outside its document.

The reader's library lists highlights on their own; each entry shows a
snippet of the text before and after it, cut back to whole words.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from marginalia.highlighting.classify import resolve_span

if TYPE_CHECKING:
    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import Highlight

ELLIPSIS = "..."


@dataclass(frozen=True)
class HighlightContext:
    before: str = ""
    after: str = ""


def highlight_context(
    projection: Projection, highlight: Highlight, context_length: int = 50
) -> HighlightContext:
    """Up to *context_length* characters either side of *highlight*.

    A side cut short of the document edge drops its partial word and is
    marked with an ellipsis.  Drifted highlights are found by their text;
    a highlight that cannot be found has no context.
    """
    span = resolve_span(highlight, projection)
    if span is None:
        return HighlightContext()
    text = projection.text

    before_start = max(0, span.start - context_length)
    before = text[before_start : span.start].strip()
    if before_start > 0:
        _, space, rest = before.partition(" ")
        if space:
            before = rest
        before = ELLIPSIS + before

    after_end = span.end + context_length
    after = text[span.end : after_end].strip()
    if after_end < len(text):
        head, space, _ = after.rpartition(" ")
        if space:
            after = head
        after += ELLIPSIS

    return HighlightContext(before=before, after=after)
