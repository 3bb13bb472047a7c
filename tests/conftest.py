from __future__ import annotations

import pytest

from resource_flow.config.settings import ExpectationSettings, RepositorySettings, get_settings
from resource_flow.endpoints.registry import EndpointRegistry
from resource_flow.orchestration import PipelineOrchestrator
from resource_flow.testing import DEFAULT_BASE_URL, InMemoryRepository

# Keeps failing expectation tests fast; passing ones return as soon as satisfied.
TEST_EXPECTATIONS = ExpectationSettings(timeout_seconds=2.0, poll_interval_seconds=0.01)


@pytest.fixture(autouse=True)
def _clear_settings_cache(monkeypatch):
    for name in (
        "RF_REPOSITORY__BASE_URL",
        "RF_REPOSITORY__RETRY_STATUS_FORCELIST",
        "RF_EXPECTATIONS__TIMEOUT_SECONDS",
        "RF_LOGGING__LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def http_client(repository: InMemoryRepository):
    client = repository.client()
    yield client
    client.close()


@pytest.fixture
def endpoints(http_client) -> EndpointRegistry:
    registry = EndpointRegistry(
        http_client,
        repository=RepositorySettings(base_url=DEFAULT_BASE_URL),
        expectations=TEST_EXPECTATIONS,
    )
    registry.register_repository("fcrepo")
    return registry


@pytest.fixture
def orchestrator(endpoints: EndpointRegistry):
    with PipelineOrchestrator(endpoints) as instance:
        yield instance
