"""CRUD operations for highlights.

Provides async database functions plus ``SqlHighlightStore``, the
PostgreSQL implementation of the ``HighlightStore`` protocol.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from marginalia.db.engine import get_session
from marginalia.db.models import HighlightRecord
from marginalia.errors import PersistenceFailure

if TYPE_CHECKING:
    from uuid import UUID

    from marginalia.models import Highlight, HighlightDraft

logger = logging.getLogger(__name__)


async def create_highlight(draft: HighlightDraft) -> HighlightRecord:
    """Insert a highlight.

    Args:
        draft: The highlight to store.

    Returns:
        The created HighlightRecord with generated ID and timestamp.
    """
    async with get_session() as session:
        record = HighlightRecord(
            owner_id=draft.owner_id,
            document_id=draft.document_id,
            chapter_id=draft.sub_document_id,
            selected_text=draft.selected_text,
            start_offset=draft.start_offset,
            end_offset=draft.end_offset,
            note=draft.note,
        )
        session.add(record)
        await session.flush()
        await session.refresh(record)
        return record


async def get_highlight_by_id(highlight_id: UUID) -> HighlightRecord | None:
    async with get_session() as session:
        return await session.get(HighlightRecord, highlight_id)


async def delete_highlight(highlight_id: UUID) -> bool:
    """Delete a highlight.

    Returns:
        True if deleted, False if not found.
    """
    async with get_session() as session:
        record = await session.get(HighlightRecord, highlight_id)
        if not record:
            return False
        await session.delete(record)
        return True


async def list_highlights_for_document(
    owner_id: UUID,
    document_id: UUID,
    chapter_id: UUID | None = None,
) -> list[HighlightRecord]:
    """An owner's highlights for one post or chapter, ordered by start offset."""
    async with get_session() as session:
        statement = select(HighlightRecord).where(
            HighlightRecord.owner_id == owner_id,
            HighlightRecord.document_id == document_id,
        )
        if chapter_id is None:
            statement = statement.where(col(HighlightRecord.chapter_id).is_(None))
        else:
            statement = statement.where(HighlightRecord.chapter_id == chapter_id)
        result = await session.exec(
            statement.order_by(
                col(HighlightRecord.start_offset), col(HighlightRecord.end_offset)
            )
        )
        return list(result.all())


async def list_highlights_for_owner(
    owner_id: UUID, page: int = 1, limit: int = 50
) -> list[HighlightRecord]:
    """An owner's highlights across all posts, newest first (library view)."""
    offset = (max(page, 1) - 1) * limit
    async with get_session() as session:
        result = await session.exec(
            select(HighlightRecord)
            .where(HighlightRecord.owner_id == owner_id)
            .order_by(col(HighlightRecord.created_at).desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.all())


class SqlHighlightStore:
    """HighlightStore backed by PostgreSQL.

    Database errors surface as PersistenceFailure so the engine can apply
    its partial-failure handling without knowing about SQLAlchemy.
    """

    async def create(self, draft: HighlightDraft) -> Highlight:
        try:
            record = await create_highlight(draft)
        except (SQLAlchemyError, ValueError) as exc:
            raise PersistenceFailure("create", detail=str(exc)) from exc
        return record.to_domain()

    async def delete(self, highlight_id: UUID) -> bool:
        try:
            return await delete_highlight(highlight_id)
        except (SQLAlchemyError, ValueError) as exc:
            raise PersistenceFailure("delete", highlight_id, str(exc)) from exc

    async def list_for_document(
        self,
        owner_id: UUID,
        document_id: UUID,
        sub_document_id: UUID | None = None,
    ) -> list[Highlight]:
        records = await list_highlights_for_document(
            owner_id, document_id, sub_document_id
        )
        return [r.to_domain() for r in records]

    async def list_for_owner(
        self, owner_id: UUID, page: int = 1, limit: int = 20
    ) -> list[Highlight]:
        records = await list_highlights_for_owner(owner_id, page, limit)
        return [r.to_domain() for r in records]
