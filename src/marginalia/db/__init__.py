"""Database module for Marginalia.

Provides async SQLModel operations with PostgreSQL.
"""

from __future__ import annotations

from marginalia.db.bootstrap import (
    get_expected_tables,
    is_db_configured,
    run_alembic_upgrade,
    verify_schema,
)
from marginalia.db.engine import close_db, get_engine, get_session, init_db
from marginalia.db.highlights import (
    SqlHighlightStore,
    create_highlight,
    delete_highlight,
    get_highlight_by_id,
    list_highlights_for_document,
    list_highlights_for_owner,
)
from marginalia.db.models import ChapterRecord, DocumentRecord, HighlightRecord

__all__ = [
    "ChapterRecord",
    "DocumentRecord",
    "HighlightRecord",
    "SqlHighlightStore",
    "close_db",
    "create_highlight",
    "delete_highlight",
    "get_engine",
    "get_expected_tables",
    "get_highlight_by_id",
    "get_session",
    "init_db",
    "is_db_configured",
    "list_highlights_for_document",
    "list_highlights_for_owner",
    "run_alembic_upgrade",
    "verify_schema",
]
