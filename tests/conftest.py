import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["ADMIN_PASSWORD"] = "test-password"
os.environ["TG_BOT_TOKEN"] = "123:abc"
os.environ["TG_ADMIN_ID"] = ""
os.environ["BASE_URL"] = "https://s.example"

import httpx
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app, get_bot_client, get_legacy_source

ADMIN_PASSWORD = "test-password"


class FakeLegacySource:
    """SCAN/GET over a dict; the cursor is an offset into the sorted keys."""

    def __init__(self, data: dict[str, str], broken: set[str] | None = None):
        self.data = data
        self.broken = broken or set()
        self.scan_calls = 0

    def scan(self, cursor=0, match=None, count=None):
        self.scan_calls += 1
        keys = sorted(self.data)
        end = cursor + (count or 10)
        next_cursor = end if end < len(keys) else 0
        return next_cursor, keys[cursor:end]

    def get(self, key):
        if key in self.broken:
            raise RedisConnectionError(f"cannot read {key}")
        return self.data.get(key)


class FakeTelegram:
    def __init__(self):
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return httpx.Response(200, json={"ok": True})


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def client(session_factory, telegram):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bot_client] = lambda: telegram
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    client.cookies.set("token", ADMIN_PASSWORD)
    return client


@pytest.fixture
def legacy_source():
    def _install(source: FakeLegacySource):
        app.dependency_overrides[get_legacy_source] = lambda: source
        return source

    return _install
