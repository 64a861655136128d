"""Tests for the PostgreSQL record store against a scripted connection."""

import psycopg
import pytest

from conftest import BASE_TS, FakeRemoteDatabase, intake, make_token
from intake_ledger.domain.paging import PageCursor
from intake_ledger.domain.records import LedgerSettings, RecordKind
from intake_ledger.infrastructure.stores.remote_store import RemoteRecordStore, RemoteStoreFactory
from intake_ledger.utils.exceptions import (
    AuthenticationError,
    DuplicateRecordError,
    RecordNotFoundError,
    StorageError,
)


def _intake_row(record_id: str, timestamp: int = BASE_TS, user_id: str = "user-1") -> dict:
    return {
        "id": record_id,
        "user_id": user_id,
        "type": "water",
        "amount": 250.0,
        "timestamp": timestamp,
        "source": "manual",
        "note": None,
    }


@pytest.mark.asyncio
async def test_every_statement_scoped_to_user(remote_db: FakeRemoteDatabase) -> None:
    """Test that reads and writes carry the store's user id."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    remote_db.responder = lambda sql, params: ([], 1)

    await store.add_record(RecordKind.INTAKE, intake("i-1"))
    await store.list_in_window(RecordKind.INTAKE, 0)
    await store.delete_record(RecordKind.INTAKE, "i-1")
    await store.clear(RecordKind.WEIGHT)

    for sql, params in remote_db.executed:
        if "user_id" not in sql or "user-1" not in params:
            raise AssertionError(f"Statement not scoped to user: {sql} {params}")


@pytest.mark.asyncio
async def test_rows_stripped_of_user_id(remote_db: FakeRemoteDatabase) -> None:
    """Test that the owner column never reaches a record or document."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    remote_db.responder = lambda sql, params: ([_intake_row("i-1"), _intake_row("i-2")], 2)

    records = await store.list_all(RecordKind.INTAKE)
    for record in records:
        document = record.to_document()
        if "userId" in document or "user_id" in document or hasattr(record, "user_id"):
            raise AssertionError(f"user_id leaked: {document}")
    if [r.id for r in records] != ["i-1", "i-2"]:
        raise AssertionError(f"Unexpected records: {records}")


@pytest.mark.asyncio
async def test_insert_if_absent_uses_native_upsert(remote_db: FakeRemoteDatabase) -> None:
    """Test ON CONFLICT DO NOTHING RETURNING drives the inserted flag."""
    store = RemoteRecordStore(remote_db.connect, "user-1")

    remote_db.responder = lambda sql, params: ([{"id": "i-1"}], 1)
    inserted = await store.insert_if_absent(RecordKind.INTAKE, intake("i-1"))
    remote_db.responder = lambda sql, params: ([], 0)
    skipped = await store.insert_if_absent(RecordKind.INTAKE, intake("i-1"))

    if not inserted or skipped:
        raise AssertionError(f"Expected (True, False), got ({inserted}, {skipped})")
    if not remote_db.statements("ON CONFLICT (id) DO NOTHING RETURNING id"):
        raise AssertionError("Expected a native insert-if-absent statement")


@pytest.mark.asyncio
async def test_delete_missing_raises(remote_db: FakeRemoteDatabase) -> None:
    """Test that a delete touching no rows is a not-found error."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    with pytest.raises(RecordNotFoundError):
        await store.delete_record(RecordKind.INTAKE, "missing")


@pytest.mark.asyncio
async def test_unique_violation_maps_to_duplicate(remote_db: FakeRemoteDatabase) -> None:
    """Test that a primary key clash surfaces as a duplicate record."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    remote_db.error = psycopg.errors.UniqueViolation("duplicate key")
    with pytest.raises(DuplicateRecordError):
        await store.add_record(RecordKind.INTAKE, intake("i-1"))


@pytest.mark.asyncio
async def test_driver_errors_wrapped(remote_db: FakeRemoteDatabase) -> None:
    """Test that driver failures become storage errors."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    remote_db.error = psycopg.OperationalError("connection lost")
    with pytest.raises(StorageError):
        await store.list_recent(RecordKind.INTAKE, 5)


@pytest.mark.asyncio
async def test_keyset_page_statement(remote_db: FakeRemoteDatabase) -> None:
    """Test that a page after a cursor compares (timestamp, id) as a row value."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    await store.list_page(RecordKind.INTAKE, PageCursor(timestamp=BASE_TS, id="i-9"), 6)

    sql, params = remote_db.executed[-1]
    if "(timestamp, id) < (%s, %s)" not in sql or "ORDER BY timestamp DESC, id DESC" not in sql:
        raise AssertionError(f"Unexpected page statement: {sql}")
    if params != ("user-1", BASE_TS, "i-9", 6):
        raise AssertionError(f"Unexpected page params: {params}")


@pytest.mark.asyncio
async def test_settings_default_when_no_row(remote_db: FakeRemoteDatabase) -> None:
    """Test that a user without saved settings gets the defaults."""
    store = RemoteRecordStore(remote_db.connect, "user-1")
    if await store.get_settings() != LedgerSettings():
        raise AssertionError("Expected default settings")

    remote_db.responder = lambda sql, params: (
        [{"user_id": "user-1", **LedgerSettings(water_limit=1800).model_dump()}],
        1,
    )
    settings = await store.get_settings()
    if settings.water_limit != 1800:
        raise AssertionError(f"Expected water_limit=1800, got {settings.water_limit}")


def test_factory_verifies_credential(remote_factory: RemoteStoreFactory) -> None:
    """Test that the factory scopes stores to the credential subject."""
    store = remote_factory.for_credential(f"Bearer {make_token('user-42')}")
    if store.user_id != "user-42":
        raise AssertionError(f"Expected user-42, got {store.user_id}")

    with pytest.raises(AuthenticationError):
        remote_factory.for_credential("not-a-token")
