"""Markup rendering of stored highlights."""

from marginalia.export.context import HighlightContext, highlight_context
from marginalia.export.render import RenderResult, find_highlight_group, render

__all__ = [
    "HighlightContext",
    "RenderResult",
    "find_highlight_group",
    "highlight_context",
    "render",
]
