import pytest

from test_mocks import (
    MOCK_TOKEN_ADDRESS,
    MOCK_TREASURY_PULLER,
    FakeChainGateway,
    FixedClock,
)
from treasury_pull.engine.stores import InMemoryAuthorizationStore
from treasury_pull.engine.strategies import PermitBasedStrategy


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def gateway():
    return FakeChainGateway()


@pytest.fixture
def store(clock):
    return InMemoryAuthorizationStore(clock=clock)


@pytest.fixture
def permit_strategy():
    return PermitBasedStrategy(MOCK_TREASURY_PULLER)


@pytest.fixture
def token_address():
    return MOCK_TOKEN_ADDRESS
