"""Data retention: purging old records and erasing all user data."""

import asyncio
import logging
from collections.abc import Callable

from pydantic import BaseModel

from intake_ledger.domain.records import AuditAction, RecordKind
from intake_ledger.infrastructure.stores.base import ChangeListener, RecordStore
from intake_ledger.services.audit import AuditTrail
from intake_ledger.utils.timezone_utils import MS_PER_DAY, MS_PER_HOUR, now_ms

logger = logging.getLogger(__name__)


class RetentionStats(BaseModel):
    total_records: int
    oldest_timestamp: int | None = None
    newest_timestamp: int | None = None
    records_to_delete: int = 0


class RetentionService:
    """
    Applies a retention period to a record store.

    A retention period of 0 days keeps records forever.
    """

    def __init__(
        self,
        store: RecordStore,
        audit: AuditTrail | None = None,
        clock: Callable[[], int] = now_ms,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.clock = clock
        self.on_change = on_change

    def cutoff(self, retention_days: int) -> int | None:
        if retention_days < 0:
            raise ValueError(f"retention_days must not be negative, got {retention_days}")
        if retention_days == 0:
            return None
        return self.clock() - retention_days * MS_PER_DAY

    async def stats(self, retention_days: int) -> RetentionStats:
        """Record totals and how many records a purge would delete."""
        cutoff = self.cutoff(retention_days)
        total = 0
        to_delete = 0
        oldest: int | None = None
        newest: int | None = None
        for kind in RecordKind:
            timestamps = [r.timestamp for r in await self.store.list_all(kind)]
            if not timestamps:
                continue
            total += len(timestamps)
            oldest = min(timestamps) if oldest is None else min(oldest, min(timestamps))
            newest = max(timestamps) if newest is None else max(newest, max(timestamps))
            if cutoff is not None:
                to_delete += sum(1 for ts in timestamps if ts < cutoff)
        return RetentionStats(
            total_records=total,
            oldest_timestamp=oldest,
            newest_timestamp=newest,
            records_to_delete=to_delete,
        )

    async def purge_old_records(self, retention_days: int) -> int:
        """
        Delete records older than ``retention_days``.

        Returns:
            Number of records deleted.
        """
        cutoff = self.cutoff(retention_days)
        if cutoff is None:
            return 0

        deleted = 0
        purged: list[RecordKind] = []
        for kind in RecordKind:
            removed = await self.store.delete_before(kind, cutoff)
            if removed:
                purged.append(kind)
            deleted += removed

        if purged and self.on_change is not None:
            self.on_change(purged)

        if deleted and self.audit is not None:
            self.audit.record(
                AuditAction.DATA_PURGE,
                f"Purged {deleted} records older than {retention_days} days",
            )
        logger.info(f"Retention purge removed {deleted} records older than {retention_days} days")
        return deleted

    async def run_periodic(self, retention_days: int, interval_hours: float = 24) -> None:
        """Purge now and then every ``interval_hours`` until cancelled."""
        while True:
            try:
                await self.purge_old_records(retention_days)
            except Exception as e:
                logger.error(f"Scheduled retention purge failed: {e}")
            await asyncio.sleep(interval_hours * MS_PER_HOUR / 1000)

    async def delete_all_user_data(self) -> int:
        """
        Erase every record and every audit entry.

        Returns:
            Number of records deleted.
        """
        deleted = await self.store.clear_all()
        if self.on_change is not None:
            self.on_change(list(RecordKind))
        if self.audit is not None:
            await self.audit.clear()
            self.audit.record(AuditAction.DATA_CLEAR, "All user data deleted")
        logger.info(f"Deleted all user data ({deleted} records)")
        return deleted
