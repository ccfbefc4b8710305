"""Shared fixtures for the eligibility lookup test suite.

Provides a Flask test client wired to a temporary SQLite database and the
small reference tables under tests/data/.  Upstream HTTP is never hit:
tests patch the client objects or build their own with a mocked session.
"""

import atexit
import os
import tempfile

import pytest

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

# Point the DB at a temp file BEFORE importing app/models (they read DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["ELIGIBILITY_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Reference tables and credentials, read once at app import
os.environ["TRACTS_PATH"] = os.path.join(DATA_DIR, "tracts.csv")
os.environ["INCOME_LIMITS_PATH"] = os.path.join(DATA_DIR, "income_limits.csv")
os.environ["CLIMATE_ZONES_PATH"] = os.path.join(DATA_DIR, "climate_zones.csv")
os.environ["SMARTY_AUTH_ID"] = "test-auth-id"
os.environ["SMARTY_AUTH_TOKEN"] = "test-auth-token"
os.environ["RATELIMIT_ENABLED"] = "false"
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("INELIGIBLE_ACTION", None)
os.environ.pop("PRIMARY_REGION", None)
os.environ.pop("BATCH_MAX_WORKERS", None)
os.environ.pop("SMOKE_TEST_ON_BOOT", None)

from app import app  # noqa: E402
from models import init_db, _get_db  # noqa: E402
from reference_data import load_reference_data  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_db():
    """Empty the notification log before every test."""
    init_db()
    conn = _get_db()
    conn.execute("DELETE FROM notifications")
    conn.commit()
    conn.close()
    yield


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture(scope="session")
def reference():
    """ReferenceData loaded from tests/data/."""
    return load_reference_data(
        os.path.join(DATA_DIR, "tracts.csv"),
        os.path.join(DATA_DIR, "income_limits.csv"),
        os.path.join(DATA_DIR, "climate_zones.csv"),
    )
