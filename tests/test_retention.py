"""Tests for data retention."""

import pytest

from conftest import BASE_TS, intake
from intake_ledger.domain.records import EatingRecord, RecordKind
from intake_ledger.infrastructure.stores.local_store import LocalRecordStore
from intake_ledger.services.audit import AuditTrail
from intake_ledger.services.retention import RetentionService
from intake_ledger.utils.parameters import AuditConfig
from intake_ledger.utils.timezone_utils import MS_PER_DAY


async def _seed(store: LocalRecordStore) -> None:
    await store.add_record(RecordKind.INTAKE, intake("recent", hours_ago=1))
    await store.add_record(RecordKind.INTAKE, intake("old", hours_ago=24 * 120))
    await store.add_record(
        RecordKind.EATING, EatingRecord(id="meal", timestamp=BASE_TS - 100 * MS_PER_DAY)
    )


@pytest.mark.asyncio
async def test_stats_and_purge(local_store: LocalRecordStore) -> None:
    """Test that records older than the retention period are purged across kinds."""
    await _seed(local_store)
    audit = AuditTrail(local_store, AuditConfig(flush_delay_seconds=0.01), clock=lambda: BASE_TS)
    service = RetentionService(local_store, audit, clock=lambda: BASE_TS)

    stats = await service.stats(90)
    if stats.total_records != 3 or stats.records_to_delete != 2:
        raise AssertionError(f"Unexpected stats: {stats}")
    if stats.newest_timestamp != BASE_TS - 3_600_000:
        raise AssertionError(f"Unexpected newest timestamp: {stats.newest_timestamp}")

    deleted = await service.purge_old_records(90)
    if deleted != 2:
        raise AssertionError(f"Expected 2 records purged, got {deleted}")
    if await local_store.existing_ids(RecordKind.INTAKE) != {"recent"}:
        raise AssertionError("Only the recent record should remain")

    entries = await audit.list_entries()
    if [e.action for e in entries] != ["data_purge"]:
        raise AssertionError(f"Expected a data_purge audit entry, got {entries}")


@pytest.mark.asyncio
async def test_zero_retention_keeps_everything(local_store: LocalRecordStore) -> None:
    """Test that a retention of 0 days never deletes."""
    await _seed(local_store)
    service = RetentionService(local_store, clock=lambda: BASE_TS)

    if await service.purge_old_records(0) != 0:
        raise AssertionError("Expected nothing purged")
    if (await service.stats(0)).records_to_delete != 0:
        raise AssertionError("Expected nothing scheduled for deletion")


@pytest.mark.asyncio
async def test_delete_all_user_data(local_store: LocalRecordStore) -> None:
    """Test erasing records and audit history."""
    await _seed(local_store)
    audit = AuditTrail(local_store, AuditConfig(flush_delay_seconds=0.01), clock=lambda: BASE_TS)
    audit.record("data_export")
    await audit.flush()

    deleted = await RetentionService(local_store, audit).delete_all_user_data()
    if deleted != 3:
        raise AssertionError(f"Expected 3 records deleted, got {deleted}")

    entries = await audit.list_entries()
    if [e.action for e in entries] != ["data_clear"]:
        raise AssertionError(f"Only the data_clear entry should remain, got {entries}")
