from datetime import datetime, timedelta
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from monitorhub.database import Base
from monitorhub.models import User, Monitor, HealthLog
from monitorhub.services.kv_store import KeyValueStore
from monitorhub.services.narrator import NarratorService


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis. TTLs are recorded, not enforced."""

    def __init__(self, failing: bool = False):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.set_calls: List[str] = []
        self.failing = failing
        self.closed = False

    def _check(self):
        if self.failing:
            raise RedisConnectionError("Connection refused (fake)")

    async def set(self, key, value, nx=False, ex=None):
        self._check()
        self.set_calls.append(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def exists(self, key):
        self._check()
        return 1 if key in self.data else 0

    async def delete(self, key):
        self._check()
        removed = 1 if self.data.pop(key, None) is not None else 0
        self.ttls.pop(key, None)
        return removed

    async def eval(self, script, numkeys, key, token):
        """Only the compare-and-delete release script is understood."""
        self._check()
        if self.data.get(key) != token:
            return 0
        return await self.delete(key)

    async def aclose(self):
        self.closed = True


class RecordingEmailSender:
    """Captures outgoing mail instead of talking SMTP."""

    def __init__(self, succeed: bool = True):
        self.sent = []
        self.succeed = succeed

    async def send_email(self, config, to_address, subject, body, html_body=None):
        self.sent.append({"to": to_address, "subject": subject, "body": body, "html": html_body})
        return self.succeed


class ProbeTargets:
    """Mutable url -> status code map served through httpx.MockTransport."""

    def __init__(self, codes: Optional[Dict[str, int]] = None):
        self.codes = dict(codes or {})
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = self.codes.get(request.url.host, 200)
        return httpx.Response(code, text="ok" if code < 400 else "error")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so concurrent sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'monitorhub-test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def failing_redis():
    return FakeRedis(failing=True)


@pytest.fixture
def kv_store(fake_redis):
    return KeyValueStore(fake_redis, fail_open=True)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def probe_targets():
    return ProbeTargets()


@pytest_asyncio.fixture
async def narrator():
    """Narrator without an API key: always the deterministic fallback."""
    service = NarratorService(api_key=None)
    yield service
    await service.close()


@pytest.fixture
def make_user(session_factory):
    async def _make(name="Ada", email=None, email_alerts=True) -> User:
        async with session_factory() as session:
            user = User(name=name, email=email or f"{name.lower()}@example.com", email_alerts=email_alerts)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user
    return _make


@pytest.fixture
def make_monitor(session_factory):
    async def _make(user: User, url="http://site.test", name=None, status="UP", is_active=True) -> Monitor:
        async with session_factory() as session:
            monitor = Monitor(
                user_id=user.id,
                name=name or url,
                url=url,
                interval=60,
                is_active=is_active,
                status=status,
            )
            session.add(monitor)
            await session.commit()
            await session.refresh(monitor)
            return monitor
    return _make


@pytest.fixture
def add_logs(session_factory):
    """Append health logs oldest first, one minute apart, ending at `end`."""
    async def _add(monitor: Monitor, outcomes: List[bool], end: Optional[datetime] = None, status_code=500):
        end = end or datetime(2024, 1, 1, 12, 0, 0)
        async with session_factory() as session:
            for offset, is_up in enumerate(outcomes):
                session.add(HealthLog(
                    monitor_id=monitor.id,
                    checked_at=end - timedelta(minutes=len(outcomes) - 1 - offset),
                    is_up=is_up,
                    status_code=200 if is_up else status_code,
                    response_time=120,
                    error_message=None if is_up else f"HTTP {status_code}",
                ))
            await session.commit()
    return _add
