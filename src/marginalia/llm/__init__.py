"""AI highlight suggestions."""

from marginalia.llm.suggestions import (
    Suggestion,
    is_covered,
    parse_suggestions,
    triage_suggestions,
)

__all__ = ["Suggestion", "is_covered", "parse_suggestions", "triage_suggestions"]
