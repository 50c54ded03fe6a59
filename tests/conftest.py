"""Shared test setup: in-memory SQLite, app with overridden dependencies, fake model."""

import os

os.environ["ENV"] = "test"
os.environ["AUTH_SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_BACKEND"] = "database"

from contextlib import contextmanager  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base, SessionLocal, engine, get_db  # noqa: E402
from app.main import create_app  # noqa: E402
from app.routers.utils.dependencies import get_llm, get_session_factory  # noqa: E402

pytest_plugins = [
    "tests.fixtures.auth_fixtures",
    "tests.fixtures.llm_fixtures",
    "tests.fixtures.session_fixtures",
]


@pytest.fixture(scope="function")
def db():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db):
    """Session factory handing out the test session, so writes are visible to the test."""

    @contextmanager
    def _factory():
        yield db

    return _factory


@pytest.fixture(scope="function")
def api_app(db, session_factory, fake_llm):
    application = create_app(testing=True)

    def _get_db():
        yield db

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    application.dependency_overrides[get_llm] = lambda: fake_llm
    return application


@pytest.fixture(scope="function")
def client(api_app):
    with TestClient(api_app) as test_client:
        yield test_client
