"""Plan the storage changes for one highlight interaction.

Planning is pure: given a classification it decides which records to delete
and which drafts to create.  ``marginalia.highlighting.engine`` executes the
plan against storage.

Routing:

============================  =====================
Classification                Action
============================  =====================
none                          CREATE
exact                         ALREADY_HIGHLIGHTED
containedBy(start|end)        SHRINK
containedBy(middle)           SPLIT
overlap, adjacent, contains,  MERGE
spansMultiple
============================  =====================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from marginalia.highlighting.classify import EdgePosition, RelationKind
from marginalia.input_pipeline.projection import is_blank, normalize_text
from marginalia.models import HighlightDraft, Span

if TYPE_CHECKING:
    from uuid import UUID

    from marginalia.highlighting.classify import Classification, Relationship
    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import DocumentKey

logger = logging.getLogger(__name__)


class MutationAction(StrEnum):
    CREATE = "create"
    ALREADY_HIGHLIGHTED = "already_highlighted"
    SHRINK = "shrink"
    SPLIT = "split"
    MERGE = "merge"


@dataclass(frozen=True)
class MutationPlan:
    """Records to delete (in order) and drafts to create afterwards.

    For ``ALREADY_HIGHLIGHTED`` nothing is deleted automatically;
    ``target_ids`` names the highlight the reader may choose to remove.
    """

    action: MutationAction
    delete_ids: tuple[UUID, ...] = ()
    drafts: tuple[HighlightDraft, ...] = ()
    target_ids: tuple[UUID, ...] = ()

    @property
    def changes_storage(self) -> bool:
        return bool(self.delete_ids or self.drafts)


# ---------------------------------------------------------------------------
# Text splicing
# ---------------------------------------------------------------------------


def merge_texts(left: str, right: str) -> str:
    """Join two overlapping texts where *left* starts first in the document.

    Removes the longest suffix of *left* duplicated as a prefix of *right*.
    """
    if right in left:
        return left
    for size in range(min(len(left), len(right)), 0, -1):
        if left.endswith(right[:size]):
            return left + right[size:]
    return left + right


def splice_texts(pieces: list[tuple[Span, str]], projection: Projection) -> str:
    """Successively merge ``(span, text)`` pieces in start order."""
    ordered = sorted(pieces, key=lambda piece: (piece[0].start, -piece[0].end))
    (first_span, text), *rest = ordered
    end = first_span.end
    for span, piece_text in rest:
        if span.end <= end:
            continue
        if span.start >= end:
            text = text + projection.text[end : span.start] + piece_text
        else:
            text = merge_texts(text, piece_text)
        end = span.end
    return text


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _draft(
    span: Span,
    projection: Projection,
    owner_id: UUID,
    document_key: DocumentKey,
    note: str | None,
) -> HighlightDraft | None:
    """A draft for *span*, or None when the span holds only whitespace."""
    text = projection.slice(span)
    if is_blank(text):
        return None
    document_id, sub_document_id = document_key
    return HighlightDraft(
        owner_id=owner_id,
        document_id=document_id,
        sub_document_id=sub_document_id,
        selected_text=text,
        start_offset=span.start,
        end_offset=span.end,
        note=note,
    )


def _remainder_spans(outer: Span, inner: Span) -> list[Span]:
    spans: list[Span] = []
    if inner.start > outer.start:
        spans.append(Span(outer.start, inner.start))
    if inner.end < outer.end:
        spans.append(Span(inner.end, outer.end))
    return spans


def _trimmed(span: Span, projection: Projection, cut: Span) -> Span | None:
    """Drop whitespace from the side of *span* that touches *cut*."""
    start, end = span.start, span.end
    text = projection.text
    if start == cut.end:
        while start < end and text[start].isspace():
            start += 1
    if end == cut.start:
        while end > start and text[end - 1].isspace():
            end -= 1
    return Span(start, end) if end > start else None


def _merged_note(
    relationships: tuple[Relationship, ...], note: str | None = None
) -> str | None:
    notes: list[str] = []
    for rel in relationships:
        existing = rel.highlight.note if rel.highlight else None
        if existing and existing not in notes:
            notes.append(existing)
    if note and note not in notes:
        notes.append(note)
    return "\n\n".join(notes) or None


def plan_mutation(
    classification: Classification,
    projection: Projection,
    owner_id: UUID,
    document_key: DocumentKey,
    note: str | None = None,
) -> MutationPlan | None:
    """Decide the single mutation path for a classified candidate.

    Args:
        classification: Result of ``classify_all`` for the candidate.
        projection: Projection of the document the highlights belong to.
        owner_id: The reader making the selection.
        document_key: ``(document_id, sub_document_id)`` of the document.
        note: Optional note for a newly created highlight.

    Returns:
        The plan, or None if the candidate could not be anchored.
    """
    candidate = classification.candidate_span
    if candidate is None:
        return None

    kind = classification.kind
    primary = classification.primary

    if kind is RelationKind.NONE:
        draft = _draft(candidate, projection, owner_id, document_key, note)
        if draft is None:
            return None
        return MutationPlan(MutationAction.CREATE, drafts=(draft,))

    if kind is RelationKind.EXACT and primary and primary.highlight:
        return MutationPlan(
            MutationAction.ALREADY_HIGHLIGHTED, target_ids=(primary.highlight.id,)
        )

    if (
        kind is RelationKind.CONTAINED_BY
        and primary
        and primary.highlight
        and primary.existing_span
    ):
        existing = primary.highlight
        action = (
            MutationAction.SPLIT
            if primary.position is EdgePosition.MIDDLE
            else MutationAction.SHRINK
        )
        spans = _remainder_spans(primary.existing_span, candidate)
        if action is MutationAction.SHRINK:
            # A shrunk highlight starts and ends on text, not on the gap left
            trimmed = (_trimmed(span, projection, candidate) for span in spans)
            spans = [span for span in trimmed if span is not None]
        drafts = [
            _draft(span, projection, owner_id, document_key, existing.note)
            for span in spans
        ]
        return MutationPlan(
            action,
            delete_ids=(existing.id,),
            drafts=tuple(d for d in drafts if d is not None),
            target_ids=(existing.id,),
        )

    return _plan_merge(
        classification, candidate, projection, owner_id, document_key, note
    )


def _plan_merge(
    classification: Classification,
    candidate: Span,
    projection: Projection,
    owner_id: UUID,
    document_key: DocumentKey,
    note: str | None,
) -> MutationPlan:
    relationships = classification.relationships
    pieces: list[tuple[Span, str]] = [(candidate, projection.slice(candidate))]
    for rel in relationships:
        if rel.highlight is not None and rel.existing_span is not None:
            stored = normalize_text(rel.highlight.selected_text)
            pieces.append((rel.existing_span, stored))

    union = Span(
        min(span.start for span, _ in pieces),
        max(span.end for span, _ in pieces),
    )
    merged_text = splice_texts(pieces, projection)
    expected = projection.slice(union)
    if normalize_text(merged_text) != normalize_text(expected):
        logger.debug(
            "Spliced text %r differs from projection %r; using projection",
            merged_text[:40],
            expected[:40],
        )
        merged_text = expected

    document_id, sub_document_id = document_key
    draft = HighlightDraft(
        owner_id=owner_id,
        document_id=document_id,
        sub_document_id=sub_document_id,
        selected_text=merged_text,
        start_offset=union.start,
        end_offset=union.end,
        note=_merged_note(relationships, note),
    )
    ids = tuple(rel.highlight.id for rel in relationships if rel.highlight)
    return MutationPlan(
        MutationAction.MERGE, delete_ids=ids, drafts=(draft,), target_ids=ids
    )
