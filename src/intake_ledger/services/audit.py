"""
Audit trail buffer.

``record()`` never blocks and never raises: entries go into an in-memory
buffer and a single delayed flush writes everything buffered so far in one
batch. Flush and purge failures are logged and swallowed.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from enum import Enum

from intake_ledger.domain.records import AuditAction, AuditLogEntry
from intake_ledger.infrastructure.stores.base import AuditLogSink
from intake_ledger.utils.ids import generate_record_id
from intake_ledger.utils.parameters import AuditConfig
from intake_ledger.utils.timezone_utils import MS_PER_DAY, now_ms

logger = logging.getLogger(__name__)


class BufferState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"


class AuditTrail:
    """Batches audit entries and writes them to an ``AuditLogSink``."""

    def __init__(
        self,
        sink: AuditLogSink,
        config: AuditConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.sink = sink
        self.config = config or AuditConfig()
        self.clock = clock
        self._buffer: list[AuditLogEntry] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self.state = BufferState.IDLE

    @property
    def pending_count(self) -> int:
        return len(self._buffer)

    def record(self, action: AuditAction | str, details: object | None = None) -> None:
        """
        Buffer an audit entry and schedule a flush if none is pending.

        Args:
            action: Audited action.
            details: Optional free text (other values are converted with ``str``),
                truncated to the configured length.
        """
        timestamp = self.clock()
        if details is not None:
            details = str(details)[: self.config.max_details_length]
        try:
            entry = AuditLogEntry(
                id=generate_record_id(timestamp),
                timestamp=timestamp,
                action=AuditAction(action),
                details=details,
            )
        except ValueError as e:
            logger.error(f"Dropping malformed audit entry: {e}")
            return

        self._buffer.append(entry)
        if self.state == BufferState.IDLE:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: entries stay buffered until flush() or close().
            return
        self.state = BufferState.PENDING
        self._timer = loop.call_later(self.config.flush_delay_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = asyncio.get_running_loop().create_task(self.flush())

    async def flush(self) -> int:
        """
        Write every buffered entry now.

        Returns:
            Number of entries written (0 when the write failed).
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        batch, self._buffer = self._buffer, []
        if not batch:
            self.state = BufferState.IDLE
            return 0

        self.state = BufferState.FLUSHING
        written = 0
        try:
            await self.sink.add_audit_entries(batch)
            written = len(batch)
        except Exception as e:
            logger.error(f"Failed to flush {len(batch)} audit entries: {e}")
        finally:
            self.state = BufferState.IDLE
            if self._buffer:
                self._schedule_flush()
        return written

    async def purge(self, older_than_days: int | None = None) -> int:
        """
        Delete audit entries older than the retention period.

        Returns:
            Number of entries deleted (0 when the purge failed).
        """
        days = older_than_days if older_than_days is not None else self.config.retention_days
        cutoff = self.clock() - days * MS_PER_DAY
        try:
            deleted = await self.sink.delete_audit_entries_before(cutoff)
        except Exception as e:
            logger.error(f"Audit log purge failed: {e}")
            return 0
        if deleted:
            logger.info(f"Purged {deleted} audit entries older than {days} days")
        return deleted

    async def list_entries(
        self, start_ms: int | None = None, end_ms: int | None = None
    ) -> list[AuditLogEntry]:
        """Stored entries, newest first, after flushing the buffer."""
        await self.flush()
        return await self.sink.list_audit_entries(start_ms, end_ms)

    async def export_json(self) -> str:
        entries = await self.list_entries()
        return json.dumps([entry.model_dump() for entry in entries], indent=2)

    async def clear(self) -> int:
        """Drop buffered entries and delete every stored entry."""
        self._buffer.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = BufferState.IDLE
        return await self.sink.clear_audit_entries()

    async def close(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        await self.flush()
