"""Highlight classification, mutation planning and execution."""

from marginalia.highlighting.classify import (
    Classification,
    EdgePosition,
    Relationship,
    RelationKind,
    classify,
    classify_all,
)
from marginalia.highlighting.engine import HighlightEngine, MutationResult
from marginalia.highlighting.mutations import (
    MutationAction,
    MutationPlan,
    plan_mutation,
)
from marginalia.highlighting.registry import HighlightRegistry

__all__ = [
    "Classification",
    "EdgePosition",
    "HighlightEngine",
    "HighlightRegistry",
    "MutationAction",
    "MutationPlan",
    "MutationResult",
    "RelationKind",
    "Relationship",
    "classify",
    "classify_all",
    "plan_mutation",
]
