import datetime as dt
import os
import sys

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from stet.store import Store  # noqa: E402

FIXED_DAY = dt.date(2024, 3, 15)
FIXED_NOW = dt.datetime(2024, 3, 15, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def temp_db_path(tmp_path):
    """Return a unique SQLite path per test to avoid cross-test contamination."""
    return tmp_path / "test_stet.db"


@pytest.fixture
def store():
    s = Store(':memory:')
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def token_path(tmp_path):
    return str(tmp_path / "auth" / "tokens.json")


@pytest.fixture
def fixed_day():
    return FIXED_DAY


@pytest.fixture
def clock():
    """A settable UTC clock: clock() returns now, clock.now = ... moves it."""
    class Clock:
        def __init__(self):
            self.now = FIXED_NOW

        def __call__(self):
            return self.now
    return Clock()

