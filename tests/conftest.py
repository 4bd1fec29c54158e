"""Shared pytest fixtures for the auth API tests."""

from __future__ import annotations

import asyncio
import os
from urllib.parse import parse_qs, urlsplit
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

import httpx
import pytest
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.api.deps import get_dispatcher, get_notifier, get_token_codec
from app.core.tokens import TokenCodec
from app.infrastructure.db import Base, get_db, make_engine, make_session_factory
from app.main import app
from app.repositories.auth_repository import AuthRepository
from app.services.auth import AuthConfig, AuthService
from app.services.email import EmailDeliveryError
from app.services.rate_limit import get_rate_limiters


@compiles(UUID, "sqlite")
def compile_uuid_sqlite(_element, _compiler, **_kw) -> str:
    """Render UUID columns as TEXT for the SQLite test database."""

    return "TEXT"


TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"

test_engine = make_engine(TEST_DATABASE_URL, poolclass=StaticPool)
TestingSessionLocal = make_session_factory(test_engine)


class FakeClock:
    """Controllable UTC clock shared by the codec and the repository."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self.current = value


class FakeNotifier:
    """Records outbound emails instead of calling Resend."""

    def __init__(self) -> None:
        self.login_emails: list[dict[str, str]] = []
        self.welcome_emails: list[str] = []
        self.fail_login = False
        self.fail_welcome = False

    def send_login_credential(self, email: str, link: str, code: str) -> None:
        if self.fail_login:
            raise EmailDeliveryError("Failed to send magic link email")
        self.login_emails.append({"email": email, "link": link, "code": code})

    def send_welcome(self, email: str) -> None:
        if self.fail_welcome:
            raise RuntimeError("resend is down")
        self.welcome_emails.append(email)


class SyncASGITestClient:
    """Synchronous wrapper around httpx.AsyncClient for ASGI apps.

    Cookies are never carried between requests; tests pass them explicitly.
    """

    def __init__(self, asgi_app) -> None:
        transport = httpx.ASGITransport(app=asgi_app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = asyncio.run(self._client.request(method, url, **kwargs))
        self._client.cookies.clear()
        return response

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def __enter__(self) -> "SyncASGITestClient":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        asyncio.run(self._client.aclose())


def set_cookies(response: httpx.Response) -> dict[str, str]:
    """Parse Set-Cookie headers into name -> raw header value."""

    cookies: dict[str, str] = {}
    for header in response.headers.get_list("set-cookie"):
        name = header.split("=", 1)[0].strip()
        cookies[name] = header
    return cookies


def link_params(link: str) -> dict[str, str]:
    """Query parameters of an emailed verify link."""

    return {key: values[0] for key, values in parse_qs(urlsplit(link).query).items()}


def cookie_value(response: httpx.Response, name: str) -> str | None:
    header = set_cookies(response).get(name)
    if header is None:
        return None
    value = header.split(";", 1)[0].split("=", 1)[1]
    return value.strip('"') or None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec("test-secret", clock=clock)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    """Provide a clean database session for each test."""

    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    session: Session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repo(db_session: Session, codec: TokenCodec) -> AuthRepository:
    return AuthRepository(db_session, clock=codec.now)


@pytest.fixture()
def service(repo: AuthRepository, codec: TokenCodec, notifier: FakeNotifier) -> AuthService:
    return AuthService(
        repo,
        codec,
        notifier,
        AuthConfig(app_url="http://app.test"),
        dispatch=lambda fn: fn(),
    )


@pytest.fixture(autouse=True)
def reset_rate_limiters() -> Generator[None, None, None]:
    get_rate_limiters.cache_clear()
    yield
    get_rate_limiters.cache_clear()


@pytest.fixture()
def client(db_session: Session, codec: TokenCodec, notifier: FakeNotifier) -> Generator[SyncASGITestClient, None, None]:
    """Test client wired to the in-memory database, fake clock and fake notifier."""

    def _get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_dispatcher] = lambda: (lambda fn: fn())
    with SyncASGITestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
