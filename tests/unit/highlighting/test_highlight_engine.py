"""Tests for HighlightEngine: executing interactions against storage.

Uses InMemoryHighlightStore with injected failures to exercise the
registry-after-confirmation and partial-failure behaviour.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from marginalia.errors import PersistenceFailure, ReconciliationFailure
from marginalia.highlighting.classify import RelationKind
from marginalia.highlighting.engine import HighlightEngine
from marginalia.highlighting.mutations import MutationAction
from marginalia.highlighting.registry import HighlightRegistry
from marginalia.input_pipeline.projection import project
from marginalia.llm.suggestions import Suggestion
from marginalia.models import Document, Selection
from marginalia.store.memory import InMemoryHighlightStore
from tests.helpers.highlights import SAMPLE_DOCUMENT_ID, SAMPLE_OWNER_ID, make_highlight

if TYPE_CHECKING:
    from marginalia.models import Highlight, HighlightDraft


class _GatedStore(InMemoryHighlightStore):
    """Store whose creates wait until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.attempts = 0

    async def create(self, draft: HighlightDraft) -> Highlight:
        self.attempts += 1
        await self.gate.wait()
        return await super().create(draft)


@pytest.fixture
def engine(
    store: InMemoryHighlightStore,
    registry: HighlightRegistry,
    document: Document,
) -> HighlightEngine:
    return HighlightEngine(store, registry, SAMPLE_OWNER_ID, document)


async def _seeded_engine(content: str, spans: list[tuple[int, int]]):
    """Engine over *content* whose store already holds *spans*."""
    projection = project(content)
    store = InMemoryHighlightStore([make_highlight(projection, *s) for s in spans])
    document = Document(id=SAMPLE_DOCUMENT_ID, content=content)
    engine = HighlightEngine(store, HighlightRegistry(), SAMPLE_OWNER_ID, document)
    await engine.load()
    return engine, store


def _texts(engine: HighlightEngine) -> list[str]:
    return [h.selected_text for h in engine.highlights]


class TestLoad:
    async def test_load_reads_only_this_document(self, engine: HighlightEngine) -> None:
        projection = engine.projection
        mine = make_highlight(projection, 4, 9)
        other_doc = make_highlight(projection, 4, 9, document_id=uuid4())
        other_owner = make_highlight(projection, 4, 9, owner_id=uuid4())
        engine.store = InMemoryHighlightStore([mine, other_doc, other_owner])

        loaded = await engine.load()

        assert loaded == [mine]
        assert engine.highlights == [mine]


class TestCreate:
    async def test_create(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        result = await engine.submit(Selection(text="quick brown"))

        assert result is not None
        assert result.ok
        assert result.action is MutationAction.CREATE
        (created,) = result.created
        assert (created.start_offset, created.end_offset) == (4, 15)
        assert created.id in engine.registry
        assert await store.list_for_document(SAMPLE_OWNER_ID, SAMPLE_DOCUMENT_ID) == [
            created
        ]

    async def test_same_selection_twice_is_idempotent(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        first = await engine.submit(Selection(text="quick brown"))
        second = await engine.submit(Selection(text="quick brown"))

        assert first is not None
        assert second is not None
        assert second.action is MutationAction.ALREADY_HIGHLIGHTED
        assert second.target_ids == (first.created[0].id,)
        assert len(engine.highlights) == 1
        assert [op for op, _ in store.calls] == ["create"]

    async def test_unknown_text_is_rejected(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        assert await engine.submit(Selection(text="zebra")) is None
        assert store.calls == []

    def test_inspect_raises_for_unknown_text(self, engine: HighlightEngine) -> None:
        with pytest.raises(ReconciliationFailure):
            engine.inspect(Selection(text="zebra"))

    async def test_inspect_reports_relationship(self, engine: HighlightEngine) -> None:
        await engine.submit(Selection(text="quick brown"))
        classification = engine.inspect(Selection(text="brown"))
        assert classification.kind is RelationKind.CONTAINED_BY

    async def test_busy_engine_ignores_selection(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        engine.busy = True
        assert await engine.submit(Selection(text="fox")) is None
        assert store.calls == []
        assert engine.highlights == []

    async def test_selection_during_pending_create_is_ignored(
        self, document: Document
    ) -> None:
        store = _GatedStore()
        engine = HighlightEngine(store, HighlightRegistry(), SAMPLE_OWNER_ID, document)

        first = asyncio.create_task(engine.submit(Selection(text="quick brown")))
        await asyncio.sleep(0)  # first submit is now waiting on storage
        assert engine.busy
        second = await engine.submit(Selection(text="quick brown"))
        store.gate.set()
        result = await first

        assert second is None
        assert result is not None
        assert result.action is MutationAction.CREATE
        assert store.attempts == 1
        assert not engine.busy
        stored = await store.list_for_document(SAMPLE_OWNER_ID, SAMPLE_DOCUMENT_ID)
        assert len(stored) == 1
        assert len(engine.highlights) == 1


class TestShrinkSplitMerge:
    async def test_shrink(self, engine: HighlightEngine) -> None:
        await engine.submit(Selection(text="quick brown fox"))
        result = await engine.submit(Selection(text="quick"))

        assert result is not None
        assert result.action is MutationAction.SHRINK
        assert _texts(engine) == ["brown fox"]
        assert engine.highlights[0].start_offset == 10

    async def test_split(self, engine: HighlightEngine) -> None:
        await engine.submit(Selection(text="quick brown fox"))
        result = await engine.submit(Selection(text="brown"))

        assert result is not None
        assert result.action is MutationAction.SPLIT
        assert len(result.deleted) == 1
        assert [(h.start_offset, h.end_offset) for h in engine.highlights] == [
            (4, 10),
            (15, 19),
        ]

    async def test_merge_bridges_two_highlights(self) -> None:
        engine, store = await _seeded_engine(
            "<p>the quick fox jumps</p>", [(0, 9), (10, 19)]
        )
        result = await engine.submit(Selection(text="quick fox"))

        assert result is not None
        assert result.action is MutationAction.MERGE
        assert len(result.deleted) == 2
        assert _texts(engine) == ["the quick fox jumps"]
        (merged,) = engine.highlights
        assert (merged.start_offset, merged.end_offset) == (0, 19)
        assert [op for op, _ in store.calls] == ["delete", "delete", "create"]

    async def test_adjacent_selection_merges(self, engine: HighlightEngine) -> None:
        await engine.submit(Selection(text="quick"))
        result = await engine.submit(Selection(text="brown"))

        assert result is not None
        assert result.action is MutationAction.MERGE
        assert _texts(engine) == ["quick brown"]

    async def test_no_overlapping_highlights_after_interactions(
        self, engine: HighlightEngine
    ) -> None:
        for text in ["quick", "fox", "brown", "over the", "lazy dog", "jumps"]:
            await engine.submit(Selection(text=text))

        spans = [h.span for h in engine.highlights]
        for left, right in zip(spans, spans[1:], strict=False):
            assert left.end <= right.start


class TestPersistenceFailure:
    async def test_failure_before_any_step_changes_nothing(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        store.fail_next.append("create")
        result = await engine.submit(Selection(text="fox"))

        assert result is not None
        assert not result.ok
        assert isinstance(result.error, PersistenceFailure)
        assert engine.highlights == []
        assert engine.pending_repairs == []

    async def test_failed_delete_keeps_registry(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        await engine.submit(Selection(text="quick brown fox"))
        store.fail_next.append("delete")
        result = await engine.submit(Selection(text="brown"))

        assert result is not None
        assert result.error is not None
        assert _texts(engine) == ["quick brown fox"]
        assert engine.pending_repairs == []

    async def test_partial_failure_is_queued_and_repaired(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        await engine.submit(Selection(text="quick brown fox"))
        store.fail_next.append("create")
        result = await engine.submit(Selection(text="brown"))

        assert result is not None
        assert result.error is not None
        assert len(result.deleted) == 1
        assert engine.highlights == []
        (repair,) = engine.pending_repairs
        assert len(repair.drafts) == 2

        created = await engine.retry_repairs()

        assert len(created) == 2
        assert engine.pending_repairs == []
        assert _texts(engine) == ["quick ", " fox"]

    async def test_retry_with_nothing_pending(self, engine: HighlightEngine) -> None:
        assert await engine.retry_repairs() == []


class TestDeleteAndNotes:
    async def test_delete(self, engine: HighlightEngine) -> None:
        result = await engine.submit(Selection(text="fox"))
        assert result is not None
        highlight_id = result.created[0].id

        assert await engine.delete(highlight_id)
        assert engine.highlights == []

    async def test_delete_failure(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        result = await engine.submit(Selection(text="fox"))
        assert result is not None
        store.fail_next.append("delete")

        assert not await engine.delete(result.created[0].id)
        assert len(engine.highlights) == 1

    async def test_delete_group(self, engine: HighlightEngine) -> None:
        await engine.submit(Selection(text="quick"))
        await engine.submit(Selection(text="lazy dog"))
        ids = [h.id for h in engine.highlights]

        assert await engine.delete_group(ids) == 2
        assert engine.highlights == []

    async def test_set_note(self, engine: HighlightEngine) -> None:
        result = await engine.submit(Selection(text="fox"))
        assert result is not None
        old = result.created[0]

        updated = await engine.set_note(old.id, "a quick one")

        assert updated is not None
        assert updated.note == "a quick one"
        assert updated.span == old.span
        assert old.id not in engine.registry
        assert engine.highlights == [updated]

    async def test_set_note_unknown_highlight(self, engine: HighlightEngine) -> None:
        assert await engine.set_note(uuid4(), "note") is None


class TestAcceptSuggestion:
    async def test_creates_highlight_with_reason(self, engine: HighlightEngine) -> None:
        created = await engine.accept_suggestion(Suggestion("lazy dog", "vivid"))

        assert created is not None
        assert created.selected_text == "lazy dog"
        assert created.note == "vivid"
        assert (created.start_offset, created.end_offset) == (35, 43)

    async def test_covered_suggestion_is_skipped(
        self, engine: HighlightEngine, store: InMemoryHighlightStore
    ) -> None:
        await engine.submit(Selection(text="the lazy dog"))
        calls = len(store.calls)

        assert await engine.accept_suggestion(Suggestion("lazy dog")) is None
        assert len(store.calls) == calls

    async def test_suggestion_not_in_document(self, engine: HighlightEngine) -> None:
        assert await engine.accept_suggestion(Suggestion("purple cow")) is None
        assert engine.highlights == []


class TestEdgeTrimming:
    """Shrink and Split over "the quick fox"."""

    async def test_shrink_prefix_advances_start(self) -> None:
        engine, _ = await _seeded_engine("<p>the quick fox</p>", [(0, 13)])

        result = await engine.submit(Selection(text="the "))

        assert result is not None
        assert result.action is MutationAction.SHRINK
        (remaining,) = engine.highlights
        assert remaining.selected_text == "quick fox"
        assert (remaining.start_offset, remaining.end_offset) == (4, 13)

    async def test_split_keeps_both_sides(self) -> None:
        engine, _ = await _seeded_engine("<p>the quick fox</p>", [(0, 13)])

        result = await engine.submit(Selection(text="quick"))

        assert result is not None
        assert result.action is MutationAction.SPLIT
        assert _texts(engine) == ["the ", " fox"]

    async def test_reselecting_split_side_is_already_highlighted(self) -> None:
        engine, store = await _seeded_engine("<p>the quick fox</p>", [(0, 13)])
        await engine.submit(Selection(text="quick"))
        left = engine.highlights[0]

        result = await engine.submit(Selection(text="the "))

        assert result is not None
        assert result.action is MutationAction.ALREADY_HIGHLIGHTED
        assert result.target_ids == (left.id,)
        assert result.deleted == []
        assert _texts(engine) == ["the ", " fox"]
        assert left in await store.list_for_document(
            SAMPLE_OWNER_ID, SAMPLE_DOCUMENT_ID
        )

    async def test_trimming_a_padded_side_cuts_at_its_text(self) -> None:
        engine, _ = await _seeded_engine("<p>the quick fox jumps</p>", [(9, 19)])

        result = await engine.submit(Selection(text="fox"))

        assert result is not None
        assert result.action is MutationAction.SHRINK
        (remaining,) = engine.highlights
        assert remaining.selected_text == "jumps"
        assert (remaining.start_offset, remaining.end_offset) == (14, 19)
