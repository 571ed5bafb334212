"""Tests for highlight CRUD operations against PostgreSQL.

These tests require a running PostgreSQL instance. Set TEST_DATABASE_URL.

Isolation: each test creates its own document and owner via UUID.
"""

from __future__ import annotations

import os
from uuid import UUID, uuid4

import pytest

from marginalia.models import Document, HighlightDraft, Selection

pytestmark = [
    pytest.mark.skipif(
        not os.environ.get("TEST_DATABASE_URL"),
        reason="TEST_DATABASE_URL not set - skipping database integration tests",
    ),
    pytest.mark.integration,
    pytest.mark.usefixtures("db_engine"),
]

_CONTENT = "<p>the quick brown fox jumps over the lazy dog</p>"


async def _create_document(content: str = _CONTENT) -> UUID:
    from marginalia.db import get_session
    from marginalia.db.models import DocumentRecord

    async with get_session() as session:
        record = DocumentRecord(title="Post", content=content)
        session.add(record)
        await session.flush()
        return record.id


def _draft(owner_id: UUID, document_id: UUID, start: int, end: int, text: str):
    return HighlightDraft(
        owner_id=owner_id,
        document_id=document_id,
        selected_text=text,
        start_offset=start,
        end_offset=end,
    )


class TestHighlightCrud:
    async def test_create_and_get(self) -> None:
        from marginalia.db import create_highlight, get_highlight_by_id

        owner_id = uuid4()
        document_id = await _create_document()

        record = await create_highlight(_draft(owner_id, document_id, 4, 9, "quick"))
        fetched = await get_highlight_by_id(record.id)

        assert fetched is not None
        assert fetched.selected_text == "quick"
        assert fetched.created_at.tzinfo is not None

    async def test_list_for_document_ordered(self) -> None:
        from marginalia.db import create_highlight, list_highlights_for_document

        owner_id = uuid4()
        document_id = await _create_document()
        await create_highlight(_draft(owner_id, document_id, 16, 19, "fox"))
        await create_highlight(_draft(owner_id, document_id, 4, 9, "quick"))
        await create_highlight(_draft(uuid4(), document_id, 0, 3, "the"))

        records = await list_highlights_for_document(owner_id, document_id)

        assert [r.selected_text for r in records] == ["quick", "fox"]

    async def test_delete(self) -> None:
        from marginalia.db import create_highlight, delete_highlight

        owner_id = uuid4()
        document_id = await _create_document()
        record = await create_highlight(_draft(owner_id, document_id, 4, 9, "quick"))

        assert await delete_highlight(record.id)
        assert not await delete_highlight(record.id)

    async def test_list_for_owner_newest_first(self) -> None:
        from marginalia.db import create_highlight, list_highlights_for_owner

        owner_id = uuid4()
        first_doc = await _create_document()
        second_doc = await _create_document()
        await create_highlight(_draft(owner_id, first_doc, 4, 9, "quick"))
        await create_highlight(_draft(owner_id, second_doc, 16, 19, "fox"))

        records = await list_highlights_for_owner(owner_id)

        assert [r.selected_text for r in records] == ["fox", "quick"]

    async def test_document_delete_cascades(self) -> None:
        from marginalia.db import create_highlight, get_highlight_by_id, get_session
        from marginalia.db.models import DocumentRecord

        owner_id = uuid4()
        document_id = await _create_document()
        record = await create_highlight(_draft(owner_id, document_id, 4, 9, "quick"))

        async with get_session() as session:
            document = await session.get(DocumentRecord, document_id)
            await session.delete(document)

        assert await get_highlight_by_id(record.id) is None


class TestEngineWithDatabase:
    async def test_split_round_trip(self) -> None:
        from marginalia.db import SqlHighlightStore
        from marginalia.highlighting import HighlightEngine, HighlightRegistry

        owner_id = uuid4()
        document_id = await _create_document()
        document = Document(id=document_id, content=_CONTENT)
        store = SqlHighlightStore()
        engine = HighlightEngine(store, HighlightRegistry(), owner_id, document)

        await engine.submit(Selection(text="quick brown fox"))
        await engine.submit(Selection(text="brown"))

        stored = await store.list_for_document(owner_id, document_id)
        assert [(h.start_offset, h.end_offset) for h in stored] == [(4, 10), (15, 19)]
        assert stored == engine.highlights
