"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any siso import, so the
module-level settings, engine and codec pick them up.
"""

import os
import tempfile

import pytest

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"siso-test-{os.getpid()}.db")

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENCRYPTION_PASSPHRASE", "siso-test-passphrase")
os.environ.setdefault("ADMIN_CODE", "test-admin-code")

# Clear settings cache before any app imports to ensure test env vars are used
from siso.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from siso import models  # noqa: E402,F401
from siso.main import app  # noqa: E402
from siso.storage import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db():
    """Database session on a fresh schema, for service-level tests."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)
