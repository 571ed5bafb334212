"""Domain records shared by the projector, classifier, engine and renderer.

These are plain frozen dataclasses so that the pure parts of the engine
never depend on the persistence layer (``marginalia.db.models``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

# (document_id, sub_document_id) - the unit a highlight set belongs to
type DocumentKey = tuple[UUID, UUID | None]


@dataclass(frozen=True)
class Span:
    """A ``[start, end)`` character range in a projection."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end <= self.start:
            msg = f"Invalid span [{self.start}, {self.end})"
            raise ValueError(msg)

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: Span) -> bool:
        return self.start < other.end and other.start < self.end

    def covers(self, other: Span) -> bool:
        """True if *other* lies entirely inside this span."""
        return self.start <= other.start and other.end <= self.end


@dataclass(frozen=True)
class Document:
    """A post, or one chapter of a book, as HTML.

    Owned by the authoring subsystem; the engine only reads it.
    """

    id: UUID
    content: str
    sub_document_id: UUID | None = None

    @property
    def key(self) -> DocumentKey:
        return (self.id, self.sub_document_id)


@dataclass(frozen=True)
class HighlightDraft:
    """A highlight that has not been persisted yet."""

    owner_id: UUID
    document_id: UUID
    selected_text: str
    start_offset: int
    end_offset: int
    sub_document_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        # Validates the offset invariant
        Span(self.start_offset, self.end_offset)

    @property
    def span(self) -> Span:
        return Span(self.start_offset, self.end_offset)


@dataclass(frozen=True)
class Highlight:
    """A stored highlight record.

    Attributes:
        id: Generated by storage.
        owner_id: The reader who made the highlight.
        document_id: The post the highlight belongs to (lookup only).
        selected_text: Text as selected; should normalise to the projection slice.
        start_offset: Inclusive start in the projection.
        end_offset: Exclusive end in the projection.
        sub_document_id: Chapter id for books.
        note: Optional reader note.
        created_at: Creation timestamp (UTC).
    """

    id: UUID
    owner_id: UUID
    document_id: UUID
    selected_text: str
    start_offset: int
    end_offset: int
    created_at: datetime
    sub_document_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        Span(self.start_offset, self.end_offset)

    @property
    def span(self) -> Span:
        return Span(self.start_offset, self.end_offset)

    @property
    def document_key(self) -> DocumentKey:
        return (self.document_id, self.sub_document_id)


@dataclass(frozen=True)
class DomPosition:
    """Where on screen a selection was anchored.

    Attributes:
        region_html: Rendered HTML of the interactive region. May already
            contain highlight markers.
        node_index: Index of the anchor text node within the region, in
            document order, counting only text nodes the projector keeps.
        offset: Character offset of the anchor inside that text node.
    """

    region_html: str
    node_index: int
    offset: int = 0


@dataclass(frozen=True)
class Selection:
    """An ephemeral candidate selection.

    ``start``/``end`` are filled in once the selection has been reconciled
    against the projection.
    """

    text: str
    dom_position: DomPosition | None = None
    start: int | None = None
    end: int | None = None

    @property
    def span(self) -> Span | None:
        if self.start is None or self.end is None:
            return None
        return Span(self.start, self.end)

    def anchored(self, span: Span) -> Selection:
        """Return a copy carrying reconciled offsets."""
        return replace(self, start=span.start, end=span.end)
