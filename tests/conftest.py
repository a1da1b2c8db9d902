import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from app.config import Settings, get_settings
from app.core.database import get_database
from app.main import app
from app.models import feedback, subscription  # noqa: F401 - register tables
from tests.helpers.billing_fakes import SERVICE_ROLE_KEY, WEBHOOK_SECRET


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def options(self, url: str, **kwargs):
        return self.request("OPTIONS", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


class SyncAsyncSession:
    """Async-session facade over a synchronous SQLite session."""

    def __init__(self, factory: sessionmaker[Session]):
        self._session = factory()

    async def execute(self, stmt):
        return self._session.execute(stmt)

    async def commit(self):
        self._session.commit()

    async def rollback(self):
        self._session.rollback()

    def add(self, obj):
        self._session.add(obj)

    def close(self) -> None:
        self._session.close()


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def sync_session_factory():
    """Real in-memory SQLite database with every table created."""
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(sync_session_factory):
    session = SyncAsyncSession(sync_session_factory)
    yield session
    session.close()


@pytest.fixture
def override_db(sync_session_factory):
    """Route the app's database dependency to the SQLite fixture."""

    async def override():
        session = SyncAsyncSession(sync_session_factory)
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_database] = override
    yield sync_session_factory
    app.dependency_overrides.pop(get_database, None)


@pytest.fixture
def test_settings():
    config = Settings(
        _env_file=None,
        stripe_secret_key="sk_test_stub",
        stripe_webhook_secret=WEBHOOK_SECRET,
        supabase_url="https://project.supabase.co",
        supabase_service_role_key=SERVICE_ROLE_KEY,
        resend_api_key="re_test_key",
        feedback_email_to="ops@example.com, founders@example.com",
        default_site_url="https://tutor.example.com",
    )
    app.dependency_overrides[get_settings] = lambda: config
    yield config
    app.dependency_overrides.pop(get_settings, None)
