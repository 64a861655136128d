"""Tests for time-windowed intake aggregation."""

import asyncio
from datetime import date, datetime

import pytest
import pytz

from conftest import BASE_TS, intake
from intake_ledger.domain.records import IntakeType, RecordKind
from intake_ledger.infrastructure.stores.local_store import LocalRecordStore
from intake_ledger.services.aggregation import (
    IntakeTotals,
    daily_total,
    day_start_timestamp,
    logical_day,
    rolling_total,
)
from intake_ledger.services.router import StorageContext, StorageRouter
from intake_ledger.utils.parameters import AggregationConfig
from intake_ledger.utils.timezone_utils import MS_PER_HOUR, datetime_to_ms


def _ms(year: int, month: int, day: int, hour: int, minute: int = 0, tz: str = "UTC") -> int:
    return datetime_to_ms(pytz.timezone(tz).localize(datetime(year, month, day, hour, minute)))


def test_rolling_window_excludes_old_records() -> None:
    """Test the 24 hour window and that advancing the clock drops records."""
    records = [intake("a", 10, 25), intake("b", 20, 23), intake("c", 30, 1)]

    total = rolling_total(records, IntakeType.WATER, BASE_TS)
    if total != 50:
        raise AssertionError(f"Expected 50, got {total}")

    later = rolling_total(records, IntakeType.WATER, BASE_TS + 2 * MS_PER_HOUR)
    if later != 30:
        raise AssertionError(f"Expected 30 after two hours, got {later}")


def test_rolling_window_filters_type() -> None:
    """Test that water and salt are summed separately."""
    records = [intake("w", 250, 1), intake("s", 600, 1, intake_type="salt")]
    if rolling_total(records, "salt", BASE_TS) != 600:
        raise AssertionError("Expected salt total 600")
    if rolling_total(records, IntakeType.WATER, BASE_TS) != 250:
        raise AssertionError("Expected water total 250")


def test_day_start_rolls_back_before_cutoff() -> None:
    """Test that 01:45 with a 02:00 day start belongs to the previous day."""
    now = _ms(2024, 3, 10, 1, 45)
    record_ts = _ms(2024, 3, 10, 1, 30)

    cutoff = day_start_timestamp(now, 2)
    if cutoff != _ms(2024, 3, 9, 2, 0):
        raise AssertionError(f"Expected cutoff at 2024-03-09 02:00, got {cutoff}")
    if logical_day(record_ts, 2) != date(2024, 3, 9):
        raise AssertionError("Record at 01:30 must belong to the previous logical day")

    records = [
        intake("night", 100, now=record_ts),
        intake("yesterday-early", 70, now=_ms(2024, 3, 9, 1, 0)),
    ]
    if daily_total(records, IntakeType.WATER, now, 2) != 100:
        raise AssertionError("Only the 01:30 record is in the current logical day")


def test_day_start_after_cutoff_uses_today() -> None:
    """Test that after the day start hour the cutoff is today."""
    now = _ms(2024, 3, 10, 9, 0)
    if day_start_timestamp(now, 2) != _ms(2024, 3, 10, 2, 0):
        raise AssertionError("Expected today's 02:00 cutoff")


def test_day_start_uses_local_wall_clock() -> None:
    """Test that the cutoff follows the configured time zone."""
    tz = "America/Santiago"
    now = _ms(2024, 6, 15, 1, 0, tz)
    cutoff = day_start_timestamp(now, 2, tz)
    if cutoff != _ms(2024, 6, 14, 2, 0, tz):
        raise AssertionError(f"Expected previous local 02:00, got {cutoff}")


def test_invalid_day_start_hour() -> None:
    """Test that an out-of-range hour is rejected."""
    with pytest.raises(ValueError):
        day_start_timestamp(BASE_TS, 24)


@pytest.mark.asyncio
async def test_totals_cache_invalidated_on_mutation(local_store: LocalRecordStore) -> None:
    """Test cached totals refresh after a write through the router."""
    clock = lambda: BASE_TS  # noqa: E731
    router = StorageRouter(local_store, clock=clock)
    totals = IntakeTotals(router, AggregationConfig(), clock=clock)
    context = StorageContext()

    await router.add_record(context, RecordKind.INTAKE, intake("a", 100, 1))
    if await totals.rolling_total(context, IntakeType.WATER) != 100:
        raise AssertionError("Expected initial total 100")

    await local_store.add_record(RecordKind.INTAKE, intake("hidden", 50, 1))
    if await totals.rolling_total(context, IntakeType.WATER) != 100:
        raise AssertionError("Expected cached total before invalidation")

    await router.update_record(context, RecordKind.INTAKE, "a", {"timestamp": BASE_TS - 30 * MS_PER_HOUR})
    if await totals.rolling_total(context, IntakeType.WATER) != 50:
        raise AssertionError("Edit moving a record out of the window must be reflected")


@pytest.mark.asyncio
async def test_refresh_loop_invalidates(local_store: LocalRecordStore) -> None:
    """Test the periodic refresh drops cached totals."""
    now = [BASE_TS]
    router = StorageRouter(local_store, clock=lambda: now[0])
    totals = IntakeTotals(
        router, AggregationConfig(refresh_interval_seconds=0.01), clock=lambda: now[0]
    )
    context = StorageContext()
    await router.add_record(context, RecordKind.INTAKE, intake("a", 30, 23))

    if await totals.rolling_total(context, IntakeType.WATER) != 30:
        raise AssertionError("Expected 30 before the clock advances")

    now[0] += 2 * MS_PER_HOUR
    totals.start()
    await asyncio.sleep(0.05)
    await totals.stop()

    if await totals.rolling_total(context, IntakeType.WATER) != 0:
        raise AssertionError("Expected the record to leave the window after refresh")


@pytest.mark.asyncio
async def test_daily_total_uses_stored_day_start(local_store: LocalRecordStore) -> None:
    """Test the logical-day total reads the day start hour from settings."""
    now = _ms(2024, 3, 10, 3, 0)
    router = StorageRouter(local_store, clock=lambda: now)
    totals = IntakeTotals(router, AggregationConfig(), clock=lambda: now)
    context = StorageContext()
    await router.update_settings(context, {"day_start_hour": 4})
    await router.add_record(context, RecordKind.INTAKE, intake("a", 40, now=_ms(2024, 3, 9, 23, 0)))

    if await totals.daily_total(context, IntakeType.WATER) != 40:
        raise AssertionError("23:00 yesterday is within a day starting at 04:00")
    if await totals.daily_total(context, IntakeType.WATER, day_start_hour=0) != 0:
        raise AssertionError("With a midnight start the record belongs to yesterday")
