"""Shared fixtures for unit tests."""

from __future__ import annotations

import pytest

from marginalia.highlighting.registry import HighlightRegistry
from marginalia.input_pipeline.projection import Projection, project
from marginalia.models import Document
from marginalia.store.memory import InMemoryHighlightStore
from tests.helpers.highlights import PANGRAM, SAMPLE_DOCUMENT_ID


@pytest.fixture
def pangram() -> Projection:
    """Projection of a one-paragraph pangram."""
    return project(f"<p>{PANGRAM}</p>")


@pytest.fixture
def document() -> Document:
    return Document(id=SAMPLE_DOCUMENT_ID, content=f"<p>{PANGRAM}</p>")


@pytest.fixture
def store() -> InMemoryHighlightStore:
    return InMemoryHighlightStore()


@pytest.fixture
def registry() -> HighlightRegistry:
    return HighlightRegistry()
