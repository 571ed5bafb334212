"""Exception taxonomy for the highlighting engine.

None of these escalate to a page-level failure: callers degrade to
"stored but not visually rendered" or simply decline the interaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID


class HighlightError(Exception):
    """Base class for highlighting engine errors."""


class ReconciliationFailure(HighlightError):
    """Selected text could not be located in the current projection.

    The interaction is rejected; nothing is persisted.
    """

    def __init__(self, selected_text: str) -> None:
        self.selected_text = selected_text
        preview = selected_text[:40]
        super().__init__(f"Selected text not found in projection: {preview!r}")


class PersistenceFailure(HighlightError):
    """A storage create/delete call failed.

    Attributes:
        operation: ``"create"`` or ``"delete"``.
        highlight_id: The record being deleted, if any.
    """

    def __init__(
        self,
        operation: str,
        highlight_id: UUID | None = None,
        detail: str = "",
    ) -> None:
        self.operation = operation
        self.highlight_id = highlight_id
        target = f" {highlight_id}" if highlight_id else ""
        msg = f"Highlight {operation}{target} failed"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class RenderFallbackExhausted(HighlightError):
    """No render strategy could locate a stored highlight in the content.

    Reported in ``RenderResult.failures``, never raised to the reader.
    """

    def __init__(self, highlight_id: UUID | str, selected_text: str) -> None:
        self.highlight_id = highlight_id
        self.selected_text = selected_text
        super().__init__(
            f"Highlight {highlight_id} not located in content "
            f"({selected_text[:40]!r})"
        )
