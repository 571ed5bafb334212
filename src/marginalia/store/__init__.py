"""Highlight storage: protocol and in-memory implementation.

The SQL-backed store lives in ``marginalia.db.highlights``.
"""

from marginalia.store.memory import InMemoryHighlightStore
from marginalia.store.protocol import HighlightStore

__all__ = ["HighlightStore", "InMemoryHighlightStore"]
