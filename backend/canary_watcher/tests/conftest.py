"""
Pytest configuration for canary_watcher tests.
"""

import pytest

from canary_watcher.tests.fakes import FakeClock, make_context, make_source


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source():
    return make_source('src-1', name='Lab Blog', tier='TIER_0', trust_weight=1.0)


@pytest.fixture
def ctx(clock, source):
    """Context over in-memory fakes with one active source"""
    return make_context(sources=[source], clock=clock)
