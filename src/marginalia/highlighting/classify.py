"""Classify how a candidate selection relates to stored highlights.

Two modes:

- **Position-aware** (the normal case): both the candidate and the stored
  highlight have trustworthy offsets, and the relationship follows from
  interval arithmetic in the projection.
- **Text fallback**: the stored highlight's offsets no longer match its text
  (drift), or the candidate carries no offsets.  Spans are then recovered by
  searching the projection, with substring, prefix and suffix checks guarding
  against matches elsewhere in the document.

Classification never raises.  Ambiguous input resolves to ``NONE`` (which
routes to Create) and is logged at debug.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from marginalia.input_pipeline.projection import is_blank, normalize_text
from marginalia.input_pipeline.reconcile import pick_nearest, reconcile
from marginalia.models import Span

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import Highlight, Selection

logger = logging.getLogger(__name__)

# Shared characters required before two texts count as an edge overlap
MIN_EDGE_OVERLAP = 2


class RelationKind(StrEnum):
    """How a candidate span relates to one (or several) stored highlights."""

    NONE = "none"
    EXACT = "exact"
    OVERLAP = "overlap"
    ADJACENT = "adjacent"
    CONTAINS = "contains"
    CONTAINED_BY = "containedBy"
    SPANS_MULTIPLE = "spansMultiple"


class EdgePosition(StrEnum):
    """Which edge of the outer span the inner span touches."""

    START = "start"
    MIDDLE = "middle"
    END = "end"


@dataclass(frozen=True)
class Relationship:
    """Relationship between a candidate and one stored highlight.

    ``existing_span`` is where the highlight actually sits in the current
    projection: its stored offsets, or the recovered span in text-fallback
    mode.
    """

    kind: RelationKind
    highlight: Highlight | None = None
    position: EdgePosition | None = None
    existing_span: Span | None = None

    @property
    def related(self) -> bool:
        return self.kind is not RelationKind.NONE


_UNRELATED = Relationship(RelationKind.NONE)


@dataclass(frozen=True)
class Classification:
    """The candidate's relationship to a whole highlight set."""

    candidate_span: Span | None
    relationships: tuple[Relationship, ...] = ()

    @property
    def kind(self) -> RelationKind:
        if not self.relationships:
            return RelationKind.NONE
        if len(self.relationships) > 1:
            return RelationKind.SPANS_MULTIPLE
        return self.relationships[0].kind

    @property
    def primary(self) -> Relationship | None:
        """The single related highlight, if exactly one is related."""
        if len(self.relationships) == 1:
            return self.relationships[0]
        return None

    @property
    def highlights(self) -> list[Highlight]:
        return [r.highlight for r in self.relationships if r.highlight is not None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _edge(outer: Span, inner: Span) -> EdgePosition:
    if inner.start == outer.start:
        return EdgePosition.START
    if inner.end == outer.end:
        return EdgePosition.END
    return EdgePosition.MIDDLE


def is_drifted(highlight: Highlight, projection: Projection) -> bool:
    """True if the stored offsets no longer select the stored text."""
    return not projection.matches(highlight.span, highlight.selected_text)


def locate(text: str, projection: Projection, near: int | None = None) -> Span | None:
    """Find *text* in the projection, preferring the occurrence nearest *near*."""
    needle = normalize_text(text)
    occurrences = list(projection.occurrences(needle))
    if not occurrences:
        return None
    start = pick_nearest(occurrences, near)
    return Span(start, start + len(needle))


def resolve_span(highlight: Highlight, projection: Projection) -> Span | None:
    """Where *highlight* sits in the projection, recovering drifted offsets."""
    if not is_drifted(highlight, projection):
        return highlight.span
    span = locate(highlight.selected_text, projection, near=highlight.start_offset)
    if span is None:
        logger.debug(
            "Highlight %s text %r not found in projection",
            highlight.id,
            highlight.selected_text[:40],
        )
    return span


def _text_span(span: Span, projection: Projection) -> Span:
    """*span* without leading or trailing whitespace."""
    start, end = span.start, span.end
    text = projection.text
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return Span(start, end) if end > start else span


def _relate(existing: Span, candidate: Span, projection: Projection) -> Relationship:
    """Interval arithmetic between two trusted spans.

    A stored span padded with whitespace (a Split side such as ``"the "``)
    still matches a candidate selecting just its text.
    """
    visible = _text_span(existing, projection)
    if candidate in (existing, visible):
        return Relationship(RelationKind.EXACT, existing_span=existing)

    if not existing.overlaps(candidate):
        gap_start = min(existing.end, candidate.end)
        gap_end = max(existing.start, candidate.start)
        if is_blank(projection.text[gap_start:gap_end]):
            return Relationship(RelationKind.ADJACENT, existing_span=existing)
        return _UNRELATED

    if existing.covers(candidate):
        position = _edge(existing, candidate)
        if position is EdgePosition.MIDDLE:
            position = _edge(visible, candidate)
        return Relationship(
            RelationKind.CONTAINED_BY,
            position=position,
            existing_span=existing,
        )
    if candidate.covers(existing):
        return Relationship(
            RelationKind.CONTAINS,
            position=_edge(candidate, existing),
            existing_span=existing,
        )
    return Relationship(RelationKind.OVERLAP, existing_span=existing)


def _only_inside(needle: str, outer: Span, projection: Projection) -> Span | None:
    """The occurrence of *needle* inside *outer*, if no occurrence lies outside.

    A needle that also appears elsewhere in the document is ambiguous: there
    is no way to know which one the reader meant.
    """
    inside: Span | None = None
    for pos in projection.occurrences(needle):
        span = Span(pos, pos + len(needle))
        if not outer.covers(span):
            return None
        inside = inside or span
    return inside


def _edge_overlap(left: str, right: str) -> int:
    """Length of the longest suffix of *left* that is a prefix of *right*."""
    for size in range(min(len(left), len(right)) - 1, MIN_EDGE_OVERLAP - 1, -1):
        if left.endswith(right[:size]):
            return size
    return 0


def _classify_text(
    existing: Highlight,
    existing_span: Span,
    candidate: Selection,
    projection: Projection,
) -> Relationship:
    """Text-fallback classification for drifted or offset-less input."""
    stored = normalize_text(existing.selected_text)
    wanted = normalize_text(candidate.text)
    candidate_span = candidate.span

    if candidate_span is None:
        if wanted == stored:
            candidate_span = existing_span
        elif wanted in stored:
            candidate_span = _only_inside(wanted, existing_span, projection)
            if candidate_span is None:
                logger.debug("Ambiguous contained selection %r", wanted[:40])
                return _UNRELATED
        else:
            candidate_span = locate(wanted, projection, near=existing_span.start)
            if candidate_span is None:
                return _UNRELATED

    relationship = _relate(existing_span, candidate_span, projection)
    if relationship.kind is not RelationKind.OVERLAP:
        return relationship

    # Edge overlap needs enough shared text to rule out coincidence
    if candidate_span.start > existing_span.start:
        shared = _edge_overlap(stored, wanted)
    else:
        shared = _edge_overlap(wanted, stored)
    if shared < MIN_EDGE_OVERLAP:
        logger.debug(
            "Edge overlap of %r and %r below minimum", stored[:40], wanted[:40]
        )
        return _UNRELATED
    return relationship


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify(
    existing: Highlight, candidate: Selection, projection: Projection
) -> Relationship:
    """Classify *candidate* against one stored highlight."""
    existing_span = resolve_span(existing, projection)
    if existing_span is None:
        return _UNRELATED

    candidate_span = candidate.span
    if candidate_span is not None and existing_span == existing.span:
        relationship = _relate(existing_span, candidate_span, projection)
    else:
        relationship = _classify_text(existing, existing_span, candidate, projection)

    if not relationship.related:
        return relationship
    return Relationship(
        relationship.kind,
        highlight=existing,
        position=relationship.position,
        existing_span=relationship.existing_span,
    )


def classify_all(
    highlights: Iterable[Highlight],
    candidate: Selection,
    projection: Projection,
) -> Classification:
    """Classify *candidate* against every stored highlight.

    The candidate span is reconciled once (from its own offsets, or by
    searching for its text).  Only related highlights are reported, ordered
    by where they sit in the projection.
    """
    candidate_span = candidate.span
    if candidate_span is None:
        candidate_span = reconcile(candidate.text, candidate.dom_position, projection)
        if candidate_span is not None:
            candidate = candidate.anchored(candidate_span)

    if candidate_span is None:
        return Classification(candidate_span=None)

    related = [
        rel
        for rel in (classify(h, candidate, projection) for h in highlights)
        if rel.related
    ]
    related.sort(key=lambda r: r.existing_span.start if r.existing_span else 0)
    return Classification(candidate_span=candidate_span, relationships=tuple(related))
