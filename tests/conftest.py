import logging

import pytest
from magicsql.connection import dispose_all_engines


@pytest.fixture(autouse=True)
def dispose_engines():
    """Dispose cached engines after each test to ensure test isolation."""
    yield
    dispose_all_engines()


@pytest.fixture(autouse=True)
def sql_debug_logging(caplog):
    caplog.set_level(logging.DEBUG, logger='magicsql')


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.records',
    'tests.fixtures.sqlite',
]
