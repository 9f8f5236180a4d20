"""Shared fixtures for the test suite."""

import pytest

from rcondispatch.targets import InMemoryTargetDirectory
from tests.fakes import FakeNetwork, make_target


@pytest.fixture
def network() -> FakeNetwork:
    """Provide a scripted network where every target accepts connections."""
    return FakeNetwork()


@pytest.fixture
def directory() -> InMemoryTargetDirectory:
    """Provide a directory holding targets A, B and C."""
    return InMemoryTargetDirectory([make_target("A"), make_target("B"), make_target("C")])
