"""Shared fixtures."""

import pytest

from appservice_logs.config import Settings
from appservice_logs.context import SessionContext, Target
from tests.fakes import FakeAuth


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def target():
    return Target("sub-1", "rg-1", "my-app")


@pytest.fixture
def session(target):
    return SessionContext(target)


@pytest.fixture
def fake_auth():
    return FakeAuth()
