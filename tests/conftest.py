"""Shared pytest fixtures for Marginalia tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from marginalia.config import get_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Generator

load_dotenv()


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None]:
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def db_schema_guard() -> Generator[None]:
    """Point the app at TEST_DATABASE_URL and migrate it once per session.

    Not autouse - only database integration tests depend on this.
    """
    from marginalia.db import run_alembic_upgrade

    test_url = os.environ.get("TEST_DATABASE_URL")
    if not test_url:
        pytest.fail(
            "TEST_DATABASE_URL environment variable is required for tests. "
            "Set it to point to a test database (not production!)."
        )
        return

    os.environ["DATABASE__URL"] = test_url
    get_settings.cache_clear()

    try:
        run_alembic_upgrade()
    except RuntimeError as e:
        pytest.fail(str(e))

    yield


@pytest_asyncio.fixture
async def db_engine(db_schema_guard: None) -> AsyncIterator[None]:  # noqa: ARG001
    """Fresh module engine per test, bound to the test's event loop."""
    from marginalia.db import close_db

    await close_db()
    yield
    await close_db()
