# Pytest configuration for API and service tests.
# Forces a local SQLite DB, disables Redis and the background sweeper, and fixes the JWT secret.
import os
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT secret
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("NESTRENT_JWT_SECRET", "test-secret")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")

import sys
# Ensure the repo root is on sys.path so 'nestrent' resolves without an install
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from nestrent.main import app  # noqa: E402
from nestrent.db import Base, engine  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db() -> Iterator[None]:
    """Create the schema once per session and drop it at the end."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """Function-level isolation: drop and recreate schema before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c
