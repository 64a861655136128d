"""Tests for storage routing between the local and remote stores."""

import pytest

from conftest import BASE_TS, FakeRemoteDatabase, intake, make_token
from intake_ledger.domain.records import IntakeType, RecordKind, StorageMode
from intake_ledger.infrastructure.stores.local_store import LocalRecordStore
from intake_ledger.infrastructure.stores.remote_store import RemoteRecordStore, RemoteStoreFactory
from intake_ledger.services.router import StorageContext, StorageRouter
from intake_ledger.utils.exceptions import (
    AuthenticationRequiredError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)


@pytest.mark.asyncio
async def test_server_mode_without_credential_fails_closed(
    local_store: LocalRecordStore, remote_factory: RemoteStoreFactory, remote_db: FakeRemoteDatabase
) -> None:
    """Test that server mode never falls back to the local store."""
    router = StorageRouter(local_store, remote_factory)
    context = StorageContext(StorageMode.SERVER)

    with pytest.raises(AuthenticationRequiredError):
        await router.add_record(context, RecordKind.INTAKE, intake("i-1"))

    if await local_store.count(RecordKind.INTAKE) != 0:
        raise AssertionError("Record must not be written locally")
    if remote_db.executed:
        raise AssertionError("No backend call may happen without a credential")


@pytest.mark.asyncio
async def test_context_selects_backend(
    local_store: LocalRecordStore, remote_factory: RemoteStoreFactory
) -> None:
    """Test that mode alone decides which store serves a call."""
    router = StorageRouter(local_store, remote_factory)

    local = router.select(StorageContext("local"))
    remote = router.select(StorageContext(StorageMode.SERVER, make_token("user-7")))

    if local is not local_store:
        raise AssertionError("Local mode must use the local store")
    if not isinstance(remote, RemoteRecordStore) or remote.user_id != "user-7":
        raise AssertionError(f"Server mode must use a user-scoped remote store, got {remote}")


def test_server_mode_without_remote_configured(local_store: LocalRecordStore) -> None:
    """Test that server mode needs a configured remote store."""
    router = StorageRouter(local_store)
    with pytest.raises(StorageError):
        router.select(StorageContext(StorageMode.SERVER, make_token()))


@pytest.mark.asyncio
async def test_crud_through_router(local_store: LocalRecordStore) -> None:
    """Test add, update, list and delete via one surface."""
    router = StorageRouter(local_store)
    context = StorageContext()

    await router.add_record(context, RecordKind.INTAKE, {"id": "i-1", "type": "water", "amount": 200, "timestamp": BASE_TS})
    await router.update_record(context, RecordKind.INTAKE, "i-1", {"amount": 400})
    latest = await router.latest(context, RecordKind.INTAKE)
    if latest is None or latest.amount != 400:
        raise AssertionError(f"Expected updated latest record, got {latest}")

    await router.delete_record(context, RecordKind.INTAKE, "i-1")
    with pytest.raises(RecordNotFoundError):
        await router.delete_record(context, RecordKind.INTAKE, "i-1")


@pytest.mark.asyncio
async def test_mutations_notify_listeners(local_store: LocalRecordStore) -> None:
    """Test that writes notify listeners and reads do not."""
    router = StorageRouter(local_store)
    seen: list[RecordKind] = []
    router.add_listener(lambda kind, context: seen.append(kind))
    context = StorageContext()

    await router.add_record(context, RecordKind.INTAKE, intake("i-1"))
    await router.list_recent(context, RecordKind.INTAKE, 5)
    await router.update_record(context, RecordKind.INTAKE, "i-1", {"note": "cup"})

    if seen != [RecordKind.INTAKE, RecordKind.INTAKE]:
        raise AssertionError(f"Unexpected notifications: {seen}")


@pytest.mark.asyncio
async def test_totals_through_router(local_store: LocalRecordStore) -> None:
    """Test rolling and logical-day totals over routed records."""
    router = StorageRouter(local_store, clock=lambda: BASE_TS)
    context = StorageContext()
    for record in (intake("a", 10, 25), intake("b", 20, 23), intake("c", 30, 1)):
        await router.add_record(context, RecordKind.INTAKE, record)

    rolling = await router.rolling_total(context, IntakeType.WATER)
    if rolling != 50:
        raise AssertionError(f"Expected rolling total 50, got {rolling}")


@pytest.mark.asyncio
async def test_update_settings_stamps_and_validates(local_store: LocalRecordStore) -> None:
    """Test settings changes are merged, stamped and bounded."""
    router = StorageRouter(local_store, clock=lambda: BASE_TS)
    context = StorageContext()

    settings = await router.update_settings(context, {"waterLimit": 2500})
    if settings.water_limit != 2500 or settings.updated_at != BASE_TS:
        raise AssertionError(f"Unexpected settings: {settings}")
    if (await router.get_settings(context)).water_limit != 2500:
        raise AssertionError("Settings change not persisted")

    with pytest.raises(ValidationError):
        await router.update_settings(context, {"day_start_hour": 24})

    with pytest.raises(ValidationError):
        await router.update_settings(context, {"pinHash": "abc"})


@pytest.mark.asyncio
async def test_put_settings_replaces_document(local_store: LocalRecordStore) -> None:
    """Test that put_settings replaces every field and resets omitted ones to defaults."""
    router = StorageRouter(local_store, clock=lambda: BASE_TS)
    context = StorageContext()
    await router.update_settings(context, {"waterLimit": 2500})

    settings = await router.put_settings(context, {"saltLimit": 900})
    if settings.salt_limit != 900 or settings.water_limit != 1000:
        raise AssertionError(f"Unexpected settings: {settings}")
    if settings.updated_at != BASE_TS:
        raise AssertionError("Expected updated_at stamped")
