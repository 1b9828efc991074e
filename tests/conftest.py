"""
Shared fixtures wired from the test doubles in tests/fakes.py.
"""

from __future__ import annotations

import pytest

from agents.base import SearchError
from app_lib.container import build_services
from config.settings import Settings
from studies.memory import InMemoryTradeStudyStore
from tests.fakes import FakeFetcher, FakePublisher, FakeSearch


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, tavily_api_key=None, database_path=None)


@pytest.fixture
def store() -> InMemoryTradeStudyStore:
    return InMemoryTradeStudyStore.with_demo_data()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def make_services(test_settings, store, publisher):
    """Factory: services wired with fakes; pass model=... for a scripted model."""

    def _make(model=None, search=None, fetcher=None, **overrides):
        return build_services(
            test_settings,
            model=model,
            store=overrides.get("store", store),
            publisher=overrides.get("publisher", publisher),
            search=search or FakeSearch(available=False),
            fetcher=fetcher or FakeFetcher(),
            use_model=False,
        )

    return _make


@pytest.fixture
def failing_search() -> FakeSearch:
    return FakeSearch(error=SearchError("search backend down"))
