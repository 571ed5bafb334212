"""In-memory highlight store.

Implements HighlightStore without a database.  Used by the CLI and by tests;
``fail_next`` lets tests inject storage failures.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from marginalia.errors import PersistenceFailure
from marginalia.models import Highlight

if TYPE_CHECKING:
    from uuid import UUID

    from marginalia.models import HighlightDraft


class InMemoryHighlightStore:
    """Dict-backed implementation of HighlightStore.

    Attributes:
        fail_next: Operations (``"create"`` / ``"delete"``) that should fail
            the next time they are called.  Each entry is consumed once.
    """

    def __init__(self, highlights: list[Highlight] | None = None) -> None:
        self._records: dict[UUID, Highlight] = {h.id: h for h in highlights or []}
        self.fail_next: list[str] = []
        self.calls: list[tuple[str, UUID]] = []

    def _maybe_fail(self, operation: str, highlight_id: UUID | None = None) -> None:
        if operation in self.fail_next:
            self.fail_next.remove(operation)
            raise PersistenceFailure(operation, highlight_id, "injected failure")

    async def create(self, draft: HighlightDraft) -> Highlight:
        self._maybe_fail("create")
        highlight = Highlight(
            id=uuid4(),
            owner_id=draft.owner_id,
            document_id=draft.document_id,
            sub_document_id=draft.sub_document_id,
            selected_text=draft.selected_text,
            start_offset=draft.start_offset,
            end_offset=draft.end_offset,
            note=draft.note,
            created_at=datetime.now(UTC),
        )
        self._records[highlight.id] = highlight
        self.calls.append(("create", highlight.id))
        return highlight

    async def delete(self, highlight_id: UUID) -> bool:
        self._maybe_fail("delete", highlight_id)
        self.calls.append(("delete", highlight_id))
        return self._records.pop(highlight_id, None) is not None

    async def list_for_document(
        self,
        owner_id: UUID,
        document_id: UUID,
        sub_document_id: UUID | None = None,
    ) -> list[Highlight]:
        found = [
            h
            for h in self._records.values()
            if h.owner_id == owner_id
            and h.document_id == document_id
            and h.sub_document_id == sub_document_id
        ]
        return sorted(found, key=lambda h: (h.start_offset, h.end_offset))

    async def list_for_owner(
        self, owner_id: UUID, page: int = 1, limit: int = 20
    ) -> list[Highlight]:
        found = [h for h in self._records.values() if h.owner_id == owner_id]
        found.sort(key=lambda h: h.created_at, reverse=True)
        offset = (max(page, 1) - 1) * limit
        return found[offset : offset + limit]
