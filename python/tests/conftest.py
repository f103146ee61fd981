"""Pytest configuration and fixtures for LinkRanger tests.

Test isolation strategy:
- Every test gets its own in-memory SQLite database (one shared connection
  via StaticPool, schema from Base.metadata)
- Route tests override get_db with the test session, and the auth bootstrap
  writes through a session factory bound to the same engine
- Model and page-fetch collaborators are replaced on app.state with the
  in-process fakes from tests.support.fakes
- Auth tests use authenticated_client with test JWT tokens
"""

import os
from collections.abc import Generator
from uuid import UUID, uuid4

# Settings are read at app import; provide the required values up front
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWKS_URL", "https://test.supabase.co/auth/v1/.well-known/jwks.json")
os.environ.setdefault("SUPABASE_ISSUER", "https://test.supabase.co/auth/v1")
os.environ.setdefault("SUPABASE_AUDIENCES", "authenticated")
os.environ.setdefault("LINKRANGER_ENV", "test")
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from linkranger.app import create_app, create_bootstrap_callback
from linkranger.auth.middleware import AuthMiddleware
from linkranger.config import clear_settings_cache
from linkranger.db.models import Base
from linkranger.db.session import create_session_factory, get_db
from linkranger.services.apple_notifications import AppleNotificationVerifier
from linkranger.services.rate_limit import RateLimiter
from tests.helpers import create_test_user_id
from tests.support.apple_jws import StaticKeyClient
from tests.support.fakes import FakeFetcher, FakeLLMRouter, make_tagging_context
from tests.support.mock_verifier import MockJwtVerifier


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a database session bound to the per-test database."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_router() -> FakeLLMRouter:
    return FakeLLMRouter()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def tagging_context(fake_router: FakeLLMRouter, fake_fetcher: FakeFetcher):
    return make_tagging_context(fake_router, fake_fetcher)


@pytest.fixture
def apple_key_client() -> StaticKeyClient:
    return StaticKeyClient()


def _install_test_state(app: FastAPI, tagging_context, apple_key_client) -> None:
    # Runs after lifespan startup so it replaces the real clients
    app.state.tagging_context = tagging_context
    app.state.rate_limiter = RateLimiter(redis_client=None)
    app.state.apple_verifier = AppleNotificationVerifier(
        "https://apple.test/keys", key_client=apple_key_client
    )


def _override_db(app: FastAPI, db_session: Session) -> None:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client(
    db_session: Session, tagging_context, apple_key_client
) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication.

    This client does not have auth middleware, suitable for testing
    public endpoints such as /health and the Apple webhook.
    """
    app = create_app(skip_auth_middleware=True)
    _override_db(app, db_session)
    with TestClient(app) as client:
        _install_test_state(app, tagging_context, apple_key_client)
        yield client


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    """Provide a test token verifier."""
    return MockJwtVerifier()


@pytest.fixture
def authenticated_app(session_factory: sessionmaker[Session], db_session: Session) -> FastAPI:
    """Provide a FastAPI app with auth middleware using the test verifier.

    The bootstrap callback writes through the per-test database.
    """
    app = create_app(skip_auth_middleware=True)

    # Manually add auth middleware with our test configuration
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        bootstrap_callback=create_bootstrap_callback(session_factory),
    )
    _override_db(app, db_session)
    return app


@pytest.fixture
def authenticated_client(
    authenticated_app: FastAPI, tagging_context, apple_key_client
) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with auth middleware.

    This client uses MockJwtVerifier and can handle authenticated requests.
    Use auth_headers() to generate valid tokens for requests.
    """
    with TestClient(authenticated_app) as client:
        _install_test_state(authenticated_app, tagging_context, apple_key_client)
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return create_test_user_id()


@pytest.fixture
def random_uuid() -> str:
    """Generate a random UUID string for test data."""
    return str(uuid4())


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
