"""Input pipeline: HTML projection and selection reconciliation."""

from marginalia.input_pipeline.projection import (
    Projection,
    TextNodeInfo,
    normalize_text,
    project,
)
from marginalia.input_pipeline.reconcile import reconcile

__all__ = [
    "Projection",
    "TextNodeInfo",
    "normalize_text",
    "project",
    "reconcile",
]
