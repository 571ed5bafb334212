"""Command-line utilities for Marginalia.

- ``marginalia-project FILE``: print a document's plain-text projection
- ``marginalia-render FILE HIGHLIGHTS``: render stored highlights into HTML,
  or list them with surrounding text (``--library``)
- ``marginalia-suggest FILE``: ask Claude for highlight suggestions
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from rich.console import Console
from rich.table import Table

from marginalia import setup_logging
from marginalia.config import get_settings
from marginalia.export.context import highlight_context
from marginalia.export.render import render
from marginalia.input_pipeline.projection import project
from marginalia.models import Highlight

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marginalia.input_pipeline.projection import Projection

console = Console()
err_console = Console(stderr=True)

# Placeholder owner/document for highlights loaded from a file
_FILE_OWNER = UUID(int=0)


def _read_html(path: str) -> str:
    file = Path(path)
    if not file.is_file():
        err_console.print(f"[red]Error:[/] no such file '{path}'")
        sys.exit(1)
    return file.read_text(encoding="utf-8")


def load_highlights(path: Path, document_id: UUID | None = None) -> list[Highlight]:
    """Load highlights from a JSON list of records.

    Each record needs ``selected_text``, ``start_offset`` and ``end_offset``;
    ``id``, ``note`` and ``created_at`` are optional.

    Raises:
        ValueError: If the file is not a JSON list or a record is invalid.
    """
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError("Highlights file must contain a JSON list")

    document_id = document_id or uuid4()
    highlights: list[Highlight] = []
    for index, entry in enumerate(data):
        try:
            highlights.append(
                Highlight(
                    id=UUID(entry["id"]) if entry.get("id") else uuid4(),
                    owner_id=_FILE_OWNER,
                    document_id=document_id,
                    selected_text=str(entry["selected_text"]),
                    start_offset=int(entry["start_offset"]),
                    end_offset=int(entry["end_offset"]),
                    note=entry.get("note"),
                    created_at=(
                        datetime.fromisoformat(entry["created_at"])
                        if entry.get("created_at")
                        else datetime.now(UTC)
                    ),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid highlight record #{index}: {exc}") from exc
    return highlights


def _build_project_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marginalia-project",
        description="Print the plain-text projection highlight offsets refer to.",
    )
    parser.add_argument("file", help="HTML file")
    parser.add_argument(
        "--nodes", action="store_true", help="Show the text-node position map"
    )
    return parser


def project_command(argv: Sequence[str] | None = None) -> None:
    """Entry point for ``marginalia-project``."""
    args = _build_project_parser().parse_args(argv)
    setup_logging()
    projection = project(_read_html(args.file))

    if not args.nodes:
        console.print(
            projection.text, markup=False, highlight=False, soft_wrap=True
        )
        return

    table = Table(title=f"{len(projection)} chars, {len(projection.nodes)} nodes")
    table.add_column("start", justify="right")
    table.add_column("end", justify="right")
    table.add_column("block", justify="right")
    table.add_column("text")
    for node in projection.nodes:
        table.add_row(
            str(node.char_start),
            str(node.char_end),
            str(node.block_id),
            node.collapsed_text,
        )
    console.print(table)


def _print_library(projection: Projection, highlights: list[Highlight]) -> None:
    table = Table(title=f"{len(highlights)} highlight(s)")
    table.add_column("before", style="dim", justify="right")
    table.add_column("highlight", style="bold")
    table.add_column("after", style="dim")
    for highlight in sorted(highlights, key=lambda h: h.start_offset):
        context = highlight_context(projection, highlight)
        table.add_row(context.before, highlight.selected_text, context.after)
    console.print(table)


def _build_render_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marginalia-render",
        description="Render stored highlights into an HTML document.",
    )
    parser.add_argument("file", help="HTML file")
    parser.add_argument("highlights", help="JSON list of highlight records")
    parser.add_argument(
        "--hide",
        action="store_true",
        help="Render without highlights (display toggle off)",
    )
    parser.add_argument(
        "--library",
        action="store_true",
        help="List the highlights with their surrounding text instead",
    )
    return parser


def render_command(argv: Sequence[str] | None = None) -> None:
    """Entry point for ``marginalia-render``."""
    args = _build_render_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()
    html = _read_html(args.file)
    try:
        highlights = load_highlights(Path(args.highlights))
    except (OSError, ValueError) as exc:
        err_console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)

    if args.library:
        _print_library(project(html), highlights)
        return

    result = render(
        html,
        highlights,
        enabled=settings.render.enabled and not args.hide,
        marker_class=settings.render.marker_class,
    )
    console.print(result.html, markup=False, highlight=False, soft_wrap=True)

    err_console.print(
        f"[green]{len(result.rendered_ids)}[/] of {len(highlights)} highlight(s) "
        "rendered"
    )
    if result.failures:
        table = Table(title="Not rendered (stored but unmarked)")
        table.add_column("id")
        table.add_column("text")
        for failure in result.failures:
            table.add_row(str(failure.highlight_id), failure.selected_text[:60])
        err_console.print(table)


def _build_suggest_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marginalia-suggest",
        description="Ask Claude which passages of a document to highlight.",
    )
    parser.add_argument("file", help="HTML file")
    parser.add_argument(
        "--highlights", default=None, help="JSON list of existing highlights"
    )
    return parser


def suggest_command(argv: Sequence[str] | None = None) -> None:
    """Entry point for ``marginalia-suggest``."""
    from marginalia.llm.client import SuggestionClient  # noqa: PLC0415
    from marginalia.llm.suggestions import triage_suggestions  # noqa: PLC0415

    args = _build_suggest_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()
    projection = project(_read_html(args.file))
    existing = load_highlights(Path(args.highlights)) if args.highlights else []

    try:
        client = SuggestionClient(
            api_key=settings.llm.api_key.get_secret_value() or None,
            model=settings.llm.model,
            max_suggestions=settings.llm.max_suggestions,
        )
        suggestions = asyncio.run(client.suggest(projection.text))
    except ValueError as exc:
        err_console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)

    offered = triage_suggestions(
        suggestions, existing, projection, limit=settings.llm.max_suggestions
    )
    table = Table(title=f"{len(offered)} suggestion(s)")
    table.add_column("text")
    table.add_column("reason")
    for suggestion in offered:
        table.add_row(suggestion.text, suggestion.reason)
    console.print(table)
