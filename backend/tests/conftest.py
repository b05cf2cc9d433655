from __future__ import annotations

import pytest

from backend.app.billing import IntegrationRegistry, IntegrationType
from backend.tests.fakes import FakeChangeGateway, FakeEventLogger, FakeGateway, InMemoryCheckoutRepository


@pytest.fixture
def repository() -> InMemoryCheckoutRepository:
    return InMemoryCheckoutRepository()


@pytest.fixture
def gateway() -> FakeChangeGateway:
    return FakeChangeGateway()


@pytest.fixture
def basic_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def registry(gateway: FakeChangeGateway) -> IntegrationRegistry:
    return IntegrationRegistry({IntegrationType.SANDBOX: lambda integration: gateway})


@pytest.fixture
def basic_registry(basic_gateway: FakeGateway) -> IntegrationRegistry:
    return IntegrationRegistry({IntegrationType.SANDBOX: lambda integration: basic_gateway})


@pytest.fixture
def event_logger() -> FakeEventLogger:
    return FakeEventLogger()
