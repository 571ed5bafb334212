"""Anchor an on-screen selection to offsets in the canonical projection.

The DOM the reader selects in may already contain highlight markers, so
its raw offsets are not trustworthy.  Instead the selected text is searched
for in the projection and, when it occurs more than once, the occurrence
closest to where the reader actually clicked wins.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from marginalia.input_pipeline.projection import (
    decoded_to_collapsed_offset,
    normalize_text,
    project,
)
from marginalia.models import Span

if TYPE_CHECKING:
    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import DomPosition

logger = logging.getLogger(__name__)


def local_offset(dom_position: DomPosition) -> int | None:
    """Plain-text offset of a DOM anchor within its interactive region.

    The region is projected with the same rules as the document, so marker
    elements inside it contribute nothing but their text.
    """
    region = project(dom_position.region_html)
    if not region.nodes:
        return None
    index = min(max(dom_position.node_index, 0), len(region.nodes) - 1)
    node = region.nodes[index]
    collapsed = decoded_to_collapsed_offset(node.decoded_text, dom_position.offset)
    within = max(0, collapsed - node.skipped)
    return node.char_start + min(within, len(node.collapsed_text))


def pick_nearest(occurrences: list[int], target: int | None) -> int:
    """Choose the occurrence closest to *target*; ties go to the earliest."""
    if target is None:
        return occurrences[0]
    return min(occurrences, key=lambda pos: (abs(pos - target), pos))


def reconcile(
    selected_text: str,
    dom_position: DomPosition | None,
    projection: Projection,
) -> Span | None:
    """Map a selection to a span in *projection*.

    Args:
        selected_text: Text as reported by the browser selection.
        dom_position: Where the selection was anchored, if known.
        projection: The canonical projection of the document.

    Returns:
        The chosen span, or None if the normalised text does not occur.
    """
    needle = normalize_text(selected_text)
    if not needle:
        return None

    occurrences = list(projection.occurrences(needle))
    if not occurrences:
        logger.info("Selection not found in projection: %r", needle[:40])
        return None

    if len(occurrences) == 1:
        start = occurrences[0]
    else:
        target = local_offset(dom_position) if dom_position is not None else None
        start = pick_nearest(occurrences, target)
        logger.debug(
            "Selection %r has %d occurrences; local offset %s -> %d",
            needle[:40],
            len(occurrences),
            target,
            start,
        )

    return Span(start, start + len(needle))
