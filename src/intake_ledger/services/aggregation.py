"""
Time-windowed intake aggregation.

The window functions are pure: they take records, an explicit "now" and the
window parameters, and never look at which backend produced the records.
``IntakeTotals`` caches results per storage context and relies on a periodic
refresh loop plus mutation notifications to invalidate them.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import date
from typing import TYPE_CHECKING

from intake_ledger.domain.records import IntakeRecord, IntakeType, LedgerRecord, RecordKind
from intake_ledger.utils.parameters import AggregationConfig
from intake_ledger.utils.timezone_utils import (
    MS_PER_HOUR,
    datetime_to_ms,
    local_hour_instant,
    ms_to_datetime,
    now_ms,
    previous_day,
)

if TYPE_CHECKING:
    from intake_ledger.services.router import StorageContext, StorageRouter

logger = logging.getLogger(__name__)


def rolling_window_start(now: int, window_hours: int = 24) -> int:
    """First instant (inclusive) of the rolling window ending at ``now``."""
    return now - window_hours * MS_PER_HOUR


def day_start_timestamp(now: int, day_start_hour: int, timezone_str: str = "UTC") -> int:
    """
    Start of the logical day containing ``now``.

    The cutoff is today's ``day_start_hour:00`` in local wall-clock time; if
    ``now`` is earlier than that, the cutoff rolls back one calendar day.

    Args:
        now: Current instant in epoch milliseconds.
        day_start_hour: Hour of day (0-23) at which a logical day begins.
        timezone_str: Time zone used for wall-clock semantics.

    Returns:
        Cutoff instant in epoch milliseconds.
    """
    if not 0 <= day_start_hour <= 23:
        raise ValueError(f"day_start_hour must be between 0 and 23, got {day_start_hour}")

    local_now = ms_to_datetime(now, timezone_str)
    cutoff = local_hour_instant(local_now.date(), day_start_hour, timezone_str)
    if local_now < cutoff:
        cutoff = local_hour_instant(previous_day(local_now.date()), day_start_hour, timezone_str)
    return datetime_to_ms(cutoff)


def logical_day(timestamp: int, day_start_hour: int, timezone_str: str = "UTC") -> date:
    """Calendar date of the logical day an instant is attributed to."""
    local = ms_to_datetime(timestamp, timezone_str)
    day = local.date()
    if local < local_hour_instant(day, day_start_hour, timezone_str):
        day = previous_day(day)
    return day


def _intake_of_type(
    records: Iterable[LedgerRecord], intake_type: IntakeType | str
) -> list[IntakeRecord]:
    wanted = IntakeType(intake_type).value
    return [r for r in records if isinstance(r, IntakeRecord) and r.type == wanted]


def sum_amounts(records: Iterable[LedgerRecord], intake_type: IntakeType | str, since: int) -> float:
    """Sum ``amount`` over intake records of ``intake_type`` with ``timestamp >= since``."""
    return sum(
        (r.amount for r in _intake_of_type(records, intake_type) if r.timestamp >= since), 0.0
    )


def rolling_total(
    records: Iterable[LedgerRecord],
    intake_type: IntakeType | str,
    now: int,
    window_hours: int = 24,
) -> float:
    """Total intake of ``intake_type`` within the rolling window ending at ``now``."""
    return sum_amounts(records, intake_type, rolling_window_start(now, window_hours))


def daily_total(
    records: Iterable[LedgerRecord],
    intake_type: IntakeType | str,
    now: int,
    day_start_hour: int,
    timezone_str: str = "UTC",
) -> float:
    """Total intake of ``intake_type`` since the start of the current logical day."""
    return sum_amounts(records, intake_type, day_start_timestamp(now, day_start_hour, timezone_str))


CacheKey = tuple[str, str | None, str, str, int]


class IntakeTotals:
    """
    Cached rolling and logical-day totals.

    Cached values are dropped on every refresh tick and whenever the router
    reports a mutation; the next read recomputes from the full record set.
    """

    def __init__(
        self,
        router: "StorageRouter",
        config: AggregationConfig,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.router = router
        self.config = config
        self.clock = clock
        self._cache: dict[CacheKey, float] = {}
        self._refresh_task: asyncio.Task | None = None
        router.add_listener(self.on_mutation)

    def _key(self, context: "StorageContext", window: str, intake_type: IntakeType | str, param: int) -> CacheKey:
        return (
            context.mode.value,
            context.credential,
            window,
            IntakeType(intake_type).value,
            param,
        )

    async def rolling_total(self, context: "StorageContext", intake_type: IntakeType | str) -> float:
        """Rolling-window total for ``intake_type`` in the given context."""
        hours = self.config.rolling_window_hours
        key = self._key(context, "rolling", intake_type, hours)
        if key not in self._cache:
            now = self.clock()
            records = await self.router.list_in_window(
                context,
                RecordKind.INTAKE,
                rolling_window_start(now, hours),
                intake_type=IntakeType(intake_type),
            )
            self._cache[key] = rolling_total(records, intake_type, now, hours)
        return self._cache[key]

    async def daily_total(
        self,
        context: "StorageContext",
        intake_type: IntakeType | str,
        day_start_hour: int | None = None,
    ) -> float:
        """Logical-day total; ``day_start_hour`` defaults to the stored setting."""
        if day_start_hour is None:
            day_start_hour = (await self.router.get_settings(context)).day_start_hour
        key = self._key(context, "daily", intake_type, day_start_hour)
        if key not in self._cache:
            now = self.clock()
            tz = self.config.timezone
            records = await self.router.list_in_window(
                context,
                RecordKind.INTAKE,
                day_start_timestamp(now, day_start_hour, tz),
                intake_type=IntakeType(intake_type),
            )
            self._cache[key] = daily_total(records, intake_type, now, day_start_hour, tz)
        return self._cache[key]

    def invalidate(self) -> None:
        self._cache.clear()

    def on_mutation(self, kind: RecordKind, context: "StorageContext | None") -> None:
        if kind == RecordKind.INTAKE:
            self.invalidate()

    async def run_refresh_loop(self) -> None:
        """Invalidate cached totals every refresh interval until cancelled."""
        interval = self.config.refresh_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.invalidate()
            logger.debug("Intake totals cache invalidated by refresh tick")

    def start(self) -> None:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self.run_refresh_loop())

    async def stop(self) -> None:
        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        try:
            await self._refresh_task
        except asyncio.CancelledError:
            pass
        self._refresh_task = None
