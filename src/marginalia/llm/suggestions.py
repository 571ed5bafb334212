"""AI highlight suggestions: parsing and triage.

The suggestion collaborator is untrusted text-in/text-out.  Its output is
parsed into ``Suggestion`` records and filtered against the reader's stored
highlights before anything is offered or persisted.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from marginalia.input_pipeline.projection import normalize_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import Highlight

logger = logging.getLogger(__name__)

# ```json ... ``` fences the model sometimes wraps its answer in
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class Suggestion:
    """A candidate highlight proposed by the suggestion collaborator."""

    text: str
    reason: str = ""


def parse_suggestions(raw: str) -> list[Suggestion]:
    """Parse the collaborator's JSON answer.

    Accepts ``{"suggestions": [{"text": ..., "reason": ...}]}`` or a bare
    list of the same objects.  Malformed entries are skipped.

    Raises:
        ValueError: If *raw* is not JSON at all.
    """
    body = raw.strip()
    fenced = _FENCE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        data: Any = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Suggestion response is not JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("suggestions", [])
    if not isinstance(data, list):
        raise ValueError("Suggestion response must contain a list")

    suggestions: list[Suggestion] = []
    for entry in data:
        if not isinstance(entry, dict) or not isinstance(entry.get("text"), str):
            logger.debug("Skipping malformed suggestion entry: %r", entry)
            continue
        text = normalize_text(entry["text"])
        if text:
            suggestions.append(Suggestion(text, str(entry.get("reason") or "")))
    return suggestions


def is_covered(text: str, highlights: Iterable[Highlight]) -> bool:
    """True if *text* equals or lies inside a stored highlight's text.

    Only substring containment counts: a suggestion that merely overlaps a
    highlight is not covered.
    """
    needle = normalize_text(text)
    if not needle:
        return True
    return any(needle in normalize_text(h.selected_text) for h in highlights)


def triage_suggestions(
    suggestions: Iterable[Suggestion],
    highlights: Iterable[Highlight],
    projection: Projection,
    limit: int | None = None,
) -> list[Suggestion]:
    """Suggestions worth offering to the reader.

    Drops suggestions already covered by a stored highlight, suggestions
    whose text does not occur in the document, and duplicates.
    """
    stored = list(highlights)
    seen: set[str] = set()
    offered: list[Suggestion] = []
    for suggestion in suggestions:
        key = normalize_text(suggestion.text)
        if key in seen:
            continue
        seen.add(key)
        if is_covered(key, stored):
            logger.debug("Suggestion already highlighted: %r", key[:40])
            continue
        if next(projection.occurrences(key), None) is None:
            logger.info("Suggestion not found in document: %r", key[:40])
            continue
        offered.append(suggestion)
        if limit is not None and len(offered) >= limit:
            break
    return offered
