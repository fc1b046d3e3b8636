"""
Shared fixtures for the PIM Engine test suite.
"""

from datetime import datetime, timezone

import pytest

from pim_engine.connectors import MockDirectoryClient
from pim_engine.engine import CompletionPoller


class FakeTime:
    """Manual clock; sleeping advances it instead of blocking."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def utc_now():
    return datetime.now(timezone.utc)


@pytest.fixture
def client():
    """Empty simulated directory."""
    return MockDirectoryClient(principal_id="user-1")


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def poller(client, fake_time):
    """Poller that never really sleeps."""
    return CompletionPoller(client, "user-1", timeout_seconds=30, interval_seconds=5,
                            sleep=fake_time.sleep, clock=fake_time.clock)
