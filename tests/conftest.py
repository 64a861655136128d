"""Shared fixtures: in-memory SQLite store and a scripted async PostgreSQL stand-in."""

from collections.abc import AsyncIterator, Callable
from typing import Any

import jwt
import pytest
import pytest_asyncio

from intake_ledger.domain.records import IntakeRecord, IntakeType
from intake_ledger.infrastructure.auth import TokenVerifier
from intake_ledger.infrastructure.stores.local_store import LocalRecordStore
from intake_ledger.infrastructure.stores.remote_store import RemoteStoreFactory
from intake_ledger.utils.parameters import AuthConfig
from intake_ledger.utils.timezone_utils import MS_PER_HOUR

JWT_SECRET = "test-secret-key-with-at-least-32-bytes!"
BASE_TS = 1_718_000_000_000

Responder = Callable[[str, tuple[Any, ...]], tuple[list[dict[str, Any]], int]]


def make_token(user_id: str = "user-1", **claims: Any) -> str:
    return jwt.encode({"sub": user_id, **claims}, JWT_SECRET, algorithm="HS256")


def intake(
    record_id: str, amount: float = 250, hours_ago: float = 0, intake_type: str = "water", now: int = BASE_TS
) -> IntakeRecord:
    return IntakeRecord(
        id=record_id,
        type=IntakeType(intake_type),
        amount=amount,
        timestamp=int(now - hours_ago * MS_PER_HOUR),
    )


class FakeCursor:
    def __init__(self, db: "FakeRemoteDatabase") -> None:
        self.db = db
        self.rowcount = -1
        self._rows: list[dict[str, Any]] = []

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False

    async def execute(self, sql: str, params: Any = ()) -> None:
        normalized = " ".join(sql.split())
        params = tuple(params)
        self.db.executed.append((normalized, params))
        if self.db.error is not None:
            raise self.db.error
        self._rows, self.rowcount = self.db.responder(normalized, params)

    async def fetchall(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._rows]


class FakeConnection:
    def __init__(self, db: "FakeRemoteDatabase") -> None:
        self.db = db

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, exc_type: Any, *exc: Any) -> bool:
        if exc_type is None:
            self.db.commits += 1
        return False

    def cursor(self, row_factory: Any = None) -> FakeCursor:
        return FakeCursor(self.db)


class FakeRemoteDatabase:
    """Records every statement and answers with ``responder(sql, params)``."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.commits = 0
        self.error: Exception | None = None
        self.responder: Responder = lambda sql, params: ([], 0)

    async def connect(self) -> FakeConnection:
        return FakeConnection(self)

    def statements(self, fragment: str) -> list[tuple[str, tuple[Any, ...]]]:
        return [item for item in self.executed if fragment in item[0]]


@pytest_asyncio.fixture
async def local_store() -> AsyncIterator[LocalRecordStore]:
    store = await LocalRecordStore.open(":memory:")
    yield store
    await store.close()


@pytest_asyncio.fixture
async def second_local_store() -> AsyncIterator[LocalRecordStore]:
    store = await LocalRecordStore.open(":memory:")
    yield store
    await store.close()


@pytest.fixture
def remote_db() -> FakeRemoteDatabase:
    return FakeRemoteDatabase()


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(jwt_secret=JWT_SECRET)


@pytest.fixture
def remote_factory(remote_db: FakeRemoteDatabase, auth_config: AuthConfig) -> RemoteStoreFactory:
    return RemoteStoreFactory(remote_db.connect, TokenVerifier(auth_config))
