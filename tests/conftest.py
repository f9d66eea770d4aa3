from __future__ import annotations

import os

# The engine is built at import time; point it at in-memory SQLite first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("USER_SERVICE_URL", None)
os.environ.pop("ADMIN_TOKEN", None)

import uuid  # noqa: E402
from typing import Dict, Iterator, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from redis.exceptions import RedisError  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from diabetes_service import main  # noqa: E402
from diabetes_service.db import engine  # noqa: E402


class FakeRedis:
    """The slice of redis.Redis the service uses, kept in a dict."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisError("redis is down")

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    def set(self, key: str, value: str) -> bool:
        self._check()
        self.store[key] = value
        return True

    def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def ping(self) -> bool:
        self._check()
        return True


@pytest.fixture(autouse=True)
def tables() -> Iterator[None]:
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session() -> Iterator[Session]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr(main, "redis_client", fake)
    return fake


@pytest.fixture
def client(fake_redis: FakeRedis) -> Iterator[TestClient]:
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()
