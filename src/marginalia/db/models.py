"""SQLModel database models for Marginalia.

Documents (posts) and their chapters are owned by the authoring subsystem;
they are modelled here only so highlights can reference them and cascade
when they are deleted.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
)
from sqlmodel import Field, SQLModel

from marginalia.models import Highlight


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def _timestamptz_column() -> Any:
    """Create a TIMESTAMP WITH TIME ZONE column for PostgreSQL."""
    return Column(DateTime(timezone=True), nullable=False)


def _cascade_fk_column(target: str, *, nullable: bool = False) -> Any:
    """Create a UUID foreign key column with CASCADE DELETE."""
    return Column(Uuid(), ForeignKey(target, ondelete="CASCADE"), nullable=nullable)


class DocumentRecord(SQLModel, table=True):
    """A post.  ``content`` is the HTML the reader sees.

    Attributes:
        id: Primary key UUID, auto-generated.
        title: Post title.
        content: HTML content (empty for books, whose text lives in chapters).
        created_at: Timestamp when the post was created.
    """

    __tablename__ = "document"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(default="", max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )


class ChapterRecord(SQLModel, table=True):
    """One chapter of a book-type post."""

    __tablename__ = "chapter"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    document_id: UUID = Field(sa_column=_cascade_fk_column("document.id"))
    title: str = Field(default="", max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )


class HighlightRecord(SQLModel, table=True):
    """A reader's highlight, anchored by offsets into the plain-text projection.

    Records are never updated in place: changes are delete + insert.

    Attributes:
        id: Primary key UUID, auto-generated.
        owner_id: The reader who made the highlight.
        document_id: The post (CASCADE on delete).
        chapter_id: The chapter for book posts (CASCADE on delete).
        selected_text: The highlighted text.
        start_offset: Inclusive start in the projection.
        end_offset: Exclusive end in the projection.
        note: Optional reader note.
        created_at: Timestamp when the highlight was created.
    """

    __tablename__ = "highlight"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(sa_column=Column(Uuid(), nullable=False))
    document_id: UUID = Field(sa_column=_cascade_fk_column("document.id"))
    chapter_id: UUID | None = Field(
        default=None, sa_column=_cascade_fk_column("chapter.id", nullable=True)
    )
    selected_text: str = Field(sa_column=Column(Text, nullable=False))
    start_offset: int = Field(sa_column=Column(Integer, nullable=False))
    end_offset: int = Field(sa_column=Column(Integer, nullable=False))
    note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )

    __table_args__ = (
        CheckConstraint("start_offset >= 0", name="ck_highlight_start_nonnegative"),
        CheckConstraint(
            "end_offset > start_offset", name="ck_highlight_end_after_start"
        ),
        Index("ix_highlight_owner_document", "owner_id", "document_id"),
        Index("ix_highlight_owner_created", "owner_id", "created_at"),
    )

    def to_domain(self) -> Highlight:
        """Convert to the engine's immutable Highlight record."""
        return Highlight(
            id=self.id,
            owner_id=self.owner_id,
            document_id=self.document_id,
            sub_document_id=self.chapter_id,
            selected_text=self.selected_text,
            start_offset=self.start_offset,
            end_offset=self.end_offset,
            note=self.note,
            created_at=self.created_at,
        )
