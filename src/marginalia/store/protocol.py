"""Protocol defining the highlight storage interface.

Both InMemoryHighlightStore and SqlHighlightStore implement this protocol,
allowing them to be used interchangeably by the engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from uuid import UUID

    from marginalia.models import Highlight, HighlightDraft


class HighlightStore(Protocol):
    """Protocol for highlight storage.

    ``create`` and ``delete`` are the only mutating primitives; a highlight
    is never edited in place.
    """

    async def create(self, draft: HighlightDraft) -> Highlight:
        """Persist a draft.

        Args:
            draft: The highlight to store.

        Returns:
            The stored Highlight with its generated id and timestamp.

        Raises:
            PersistenceFailure: If the record could not be written.
        """
        ...

    async def delete(self, highlight_id: UUID) -> bool:
        """Delete a highlight.

        Args:
            highlight_id: The highlight's UUID.

        Returns:
            True if a record was deleted, False if it did not exist.

        Raises:
            PersistenceFailure: If the delete could not be carried out.
        """
        ...

    async def list_for_document(
        self,
        owner_id: UUID,
        document_id: UUID,
        sub_document_id: UUID | None = None,
    ) -> list[Highlight]:
        """An owner's highlights for one document (or chapter), by start offset."""
        ...

    async def list_for_owner(
        self, owner_id: UUID, page: int = 1, limit: int = 20
    ) -> list[Highlight]:
        """An owner's highlights across all documents, newest first."""
        ...
