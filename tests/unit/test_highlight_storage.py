"""Tests for HighlightRegistry and InMemoryHighlightStore."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from marginalia.errors import PersistenceFailure
from marginalia.highlighting.registry import HighlightRegistry
from marginalia.models import HighlightDraft
from marginalia.store.memory import InMemoryHighlightStore
from tests.helpers.highlights import SAMPLE_DOCUMENT_ID, SAMPLE_OWNER_ID, make_highlight

if TYPE_CHECKING:
    from marginalia.input_pipeline.projection import Projection

_KEY = (SAMPLE_DOCUMENT_ID, None)


class TestHighlightRegistry:
    def test_load_and_order(self, pangram: Projection) -> None:
        later = make_highlight(pangram, 20, 25)
        earlier = make_highlight(pangram, 4, 9)
        registry = HighlightRegistry()

        registry.load(_KEY, [later, earlier])

        assert registry.for_document(_KEY) == [earlier, later]
        assert len(registry) == 2

    def test_load_replaces(self, pangram: Projection) -> None:
        registry = HighlightRegistry()
        registry.load(_KEY, [make_highlight(pangram, 4, 9)])
        fresh = make_highlight(pangram, 10, 15)

        registry.load(_KEY, [fresh])

        assert registry.for_document(_KEY) == [fresh]

    def test_add_get_remove(self, pangram: Projection) -> None:
        registry = HighlightRegistry()
        highlight = make_highlight(pangram, 4, 9)

        registry.add(highlight)
        assert highlight.id in registry
        assert registry.get(highlight.id) is highlight

        assert registry.remove(highlight.id) is highlight
        assert highlight.id not in registry
        assert registry.remove(highlight.id) is None

    def test_chapters_are_separate(self, pangram: Projection) -> None:
        chapter = uuid4()
        registry = HighlightRegistry()
        post = make_highlight(pangram, 4, 9)
        in_chapter = make_highlight(pangram, 4, 9, sub_document_id=chapter)

        registry.add(post)
        registry.add(in_chapter)

        assert registry.for_document(_KEY) == [post]
        assert registry.for_document((SAMPLE_DOCUMENT_ID, chapter)) == [in_chapter]

    def test_clear(self, pangram: Projection) -> None:
        registry = HighlightRegistry()
        registry.add(make_highlight(pangram, 4, 9))
        registry.clear(_KEY)
        assert registry.for_document(_KEY) == []
        assert len(registry) == 0


def _draft(start: int = 4, end: int = 9, text: str = "quick") -> HighlightDraft:
    return HighlightDraft(
        owner_id=SAMPLE_OWNER_ID,
        document_id=SAMPLE_DOCUMENT_ID,
        selected_text=text,
        start_offset=start,
        end_offset=end,
    )


class TestInMemoryHighlightStore:
    async def test_create_assigns_id_and_timestamp(
        self, store: InMemoryHighlightStore
    ) -> None:
        highlight = await store.create(_draft())

        assert highlight.id is not None
        assert highlight.created_at.tzinfo == UTC
        assert highlight.selected_text == "quick"
        assert store.calls == [("create", highlight.id)]

    async def test_delete(self, store: InMemoryHighlightStore) -> None:
        highlight = await store.create(_draft())
        assert await store.delete(highlight.id)
        assert not await store.delete(highlight.id)

    async def test_list_for_document_sorted(
        self, store: InMemoryHighlightStore
    ) -> None:
        second = await store.create(_draft(10, 15, "brown"))
        first = await store.create(_draft(4, 9, "quick"))

        found = await store.list_for_document(SAMPLE_OWNER_ID, SAMPLE_DOCUMENT_ID)

        assert found == [first, second]

    async def test_list_for_owner_newest_first(self, pangram: Projection) -> None:
        now = datetime.now(UTC)
        old = replace(make_highlight(pangram, 4, 9), created_at=now - timedelta(1))
        new = replace(make_highlight(pangram, 10, 15), created_at=now)
        store = InMemoryHighlightStore([old, new])

        assert await store.list_for_owner(SAMPLE_OWNER_ID) == [new, old]
        assert await store.list_for_owner(SAMPLE_OWNER_ID, page=2, limit=1) == [old]
        assert await store.list_for_owner(uuid4()) == []

    async def test_injected_failure_is_consumed(
        self, store: InMemoryHighlightStore
    ) -> None:
        store.fail_next.append("create")

        with pytest.raises(PersistenceFailure, match="injected failure"):
            await store.create(_draft())
        assert (await store.create(_draft())).selected_text == "quick"

    async def test_delete_failure_names_highlight(
        self, store: InMemoryHighlightStore
    ) -> None:
        highlight = await store.create(_draft())
        store.fail_next.append("delete")

        with pytest.raises(PersistenceFailure) as exc_info:
            await store.delete(highlight.id)

        assert exc_info.value.operation == "delete"
        assert exc_info.value.highlight_id == highlight.id


class TestHighlightDraft:
    def test_rejects_empty_span(self) -> None:
        with pytest.raises(ValueError, match="Invalid span"):
            _draft(5, 5)

    def test_rejects_negative_start(self) -> None:
        with pytest.raises(ValueError, match="Invalid span"):
            _draft(-1, 3)

    def test_stored_highlight_rejects_inverted_span(self, pangram: Projection) -> None:
        with pytest.raises(ValueError, match="Invalid span"):
            make_highlight(pangram, 9, 4, text="quick")
