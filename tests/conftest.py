"""
Shared fixtures: a throwaway SQLite database per test, an in-memory Redis and
an API client whose mail delivery is captured instead of sent.
"""

import os
import tempfile

_db_fd, _db_path = tempfile.mkstemp(suffix=".db")
os.close(_db_fd)
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_db_path}")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("JWT_ISS", "cardcrm-tests")
os.environ.setdefault("MAIL_SENDER", "noreply@example.com")
os.environ.setdefault("MAIL_HOST", "localhost")
os.environ.setdefault("MAIL_USERNAME", "mailer")
os.environ.setdefault("MAIL_PASSWORD", "mailer")
os.environ.setdefault("OTP__SWEEP_ENABLED", "false")

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient

from app.core.db import Base, SessionLocal, engine
from app.core.redis import get_redis
from app.services import otp
from app.services.email import get_notifier
from main import app


class FakeNotifier:
    """Records what would have been mailed."""

    def __init__(self):
        self.codes: dict[str, list[str]] = {}
        self.welcomed: list[str] = []
        self.fail = False

    async def send_otp(self, email: str, code: str) -> bool:
        if self.fail:
            return False
        self.codes.setdefault(email, []).append(code)
        return True

    async def send_welcome(self, email: str, first_name: str) -> bool:
        self.welcomed.append(email)
        return not self.fail

    def last_code(self, email: str) -> str:
        return self.codes[email][-1]


@pytest_asyncio.fixture(autouse=True)
async def _schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # pooled connections are bound to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with SessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def redis_conn():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fixed_codes(monkeypatch):
    """Make `otp.generate_code` hand out the given codes in order."""

    def _install(*codes: str) -> None:
        pending = iter(codes)
        monkeypatch.setattr(otp, "generate_code", lambda: next(pending))

    return _install


@pytest_asyncio.fixture
async def client(redis_conn, notifier):
    async def _redis_override():
        yield redis_conn

    app.dependency_overrides[get_redis] = _redis_override
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()
