"""
Pytest configuration and shared fixtures for idempotent_functions tests.
"""

import pytest

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.storage.memory import InMemoryPersistenceStore

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLambdaContext:
    """Minimal stand-in for a Lambda context object."""

    def __init__(self, remaining_time_in_millis: int) -> None:
        self.remaining_time_in_millis = remaining_time_in_millis

    def get_remaining_time_in_millis(self) -> int:
        return self.remaining_time_in_millis


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock frozen at START_TIME."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryPersistenceStore:
    """Create a fresh in-memory store sharing the test clock."""
    return InMemoryPersistenceStore(clock=clock)


@pytest.fixture
def config() -> IdempotencyConfig:
    """Config keyed on the order_id field of the payload."""
    return IdempotencyConfig(event_key_jmespath="order_id")


@pytest.fixture
def sample_payload() -> dict:
    """Provide a sample payload for tests."""
    return {"order_id": "ord-123", "amount": 100, "currency": "USD"}


@pytest.fixture
def make_context() -> type[FakeLambdaContext]:
    """Factory for Lambda-like contexts with a given remaining budget."""
    return FakeLambdaContext
