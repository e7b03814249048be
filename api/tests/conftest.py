"""Pytest configuration and shared fixtures.

This module provides:
- In-memory SQLite database setup (fresh schema per test)
- Async session fixtures for repository/service tests
- A verified fake of the object store uploader
- A Cairo-free PDF converter stub
- FastAPI test clients with real JWT bearer tokens
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test_jwt_secret_key_for_testing_only")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault(
    "LOCAL_STORAGE_DIR", os.path.join(tempfile.gettempdir(), "hire-learn-test-uploads")
)
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("UPLOAD_BACKOFF_INITIAL", "0")
os.environ.setdefault("UPLOAD_BACKOFF_MAX", "0")

from collections.abc import AsyncGenerator, Generator
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from core.auth import create_access_token
from core.config import Settings, clear_settings_cache
from core.database import Base, create_session_maker
from core.wide_event import init_wide_event
from tests.fakes import InMemoryUploader, fake_svg_to_pdf

# =============================================================================
# Test Settings
# =============================================================================

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = "user_test_123456789"
ADMIN_USER_ID = "user_admin_987654321"


@pytest.fixture
def test_settings() -> Settings:
    """Settings for issuance tests: no backoff sleeps, short upload timeout."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        debug=True,
        storage_backend="local",
        object_store_folder="certificates",
        frontend_url="https://hire-learn.test",
        upload_timeout_seconds=1.0,
        upload_max_attempts=3,
        upload_backoff_initial=0,
        upload_backoff_max=0,
        identifier_max_attempts=3,
        certificate_validity_days=None,
    )


@pytest.fixture(autouse=True)
def setup_wide_event():
    """Initialize wide_event context for all tests.

    Services use set_wide_event_fields() which requires context initialization.
    In production this is done by middleware; in tests we do it here.
    """
    init_wide_event()
    yield


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Create a fresh in-memory database engine for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """A plain session on the per-test database.

    Tests that need rows to survive a repository rollback must commit them.
    """
    async with session_maker() as session:
        yield session


# =============================================================================
# Rendering and Storage Fakes
# =============================================================================


@pytest.fixture
def stub_pdf_converter() -> Generator[None]:
    """Render certificates without the system Cairo library."""
    with patch("rendering.certificates.svg_to_pdf", side_effect=fake_svg_to_pdf):
        yield


@pytest.fixture
def fake_uploader() -> InMemoryUploader:
    return InMemoryUploader()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    fake_uploader: InMemoryUploader,
    stub_pdf_converter: None,
) -> AsyncGenerator[FastAPI]:
    """Create FastAPI app configured for testing.

    - Uses the per-test database
    - Stores documents in the in-memory uploader
    - Renders PDFs without Cairo
    """
    # Import here so env vars above are set before Settings is built
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None

    with patch(
        "services.certificates_service.get_uploader", return_value=fake_uploader
    ):
        yield fastapi_app


def _client(app: FastAPI, token: str | None = None) -> AsyncClient:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=headers,
    )


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Unauthenticated async HTTP client."""
    async with _client(app) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def authenticated_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Client holding an employee token for TEST_USER_ID."""
    async with _client(app, create_access_token(TEST_USER_ID)) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def admin_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Client holding an admin token for ADMIN_USER_ID."""
    async with _client(app, create_access_token(ADMIN_USER_ID, role="admin")) as ac:
        yield ac


@pytest.fixture
def test_user_id() -> str:
    return TEST_USER_ID
