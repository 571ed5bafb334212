"""Owned, single-writer collection of highlights per document.

Every reader of a document's highlight list (classifier, renderer, library
view) reads from the registry; only ``HighlightEngine`` writes to it, and
only after storage has confirmed the change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from marginalia.models import DocumentKey, Highlight

logger = logging.getLogger(__name__)


class HighlightRegistry:
    """Highlights keyed by ``(document_id, sub_document_id)``."""

    def __init__(self) -> None:
        self._by_document: dict[DocumentKey, dict[UUID, Highlight]] = {}

    def load(self, key: DocumentKey, highlights: Iterable[Highlight]) -> None:
        """Replace the highlight set for *key* (e.g. after a storage read)."""
        self._by_document[key] = {h.id: h for h in highlights}
        logger.debug("Loaded %d highlights for %s", len(self._by_document[key]), key)

    def for_document(self, key: DocumentKey) -> list[Highlight]:
        """Highlights for *key*, ordered by start offset."""
        records = self._by_document.get(key, {})
        return sorted(records.values(), key=lambda h: (h.start_offset, h.end_offset))

    def get(self, highlight_id: UUID) -> Highlight | None:
        for records in self._by_document.values():
            if highlight_id in records:
                return records[highlight_id]
        return None

    def add(self, highlight: Highlight) -> None:
        self._by_document.setdefault(highlight.document_key, {})[highlight.id] = (
            highlight
        )

    def remove(self, highlight_id: UUID) -> Highlight | None:
        for records in self._by_document.values():
            removed = records.pop(highlight_id, None)
            if removed is not None:
                return removed
        return None

    def clear(self, key: DocumentKey) -> None:
        """Drop everything held for *key* (document or chapter deleted)."""
        self._by_document.pop(key, None)

    def __contains__(self, highlight_id: object) -> bool:
        return any(highlight_id in records for records in self._by_document.values())

    def __len__(self) -> int:
        return sum(len(records) for records in self._by_document.values())
