"""Shared fixtures."""

import pytest

from fakes import TEST_ENV, FakeChainBackend, RecordedSleep
from monoma.config import MonomaConfig


@pytest.fixture()
def config() -> MonomaConfig:
    return MonomaConfig.from_environment(TEST_ENV)


@pytest.fixture()
def backend() -> FakeChainBackend:
    return FakeChainBackend()


@pytest.fixture()
def sleep() -> RecordedSleep:
    return RecordedSleep()
