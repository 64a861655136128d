"""
Record store capability interface.

Both backends (embedded SQLite and remote PostgreSQL) implement
``RecordStore``; the router picks one and callers never branch on which.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from intake_ledger.domain.paging import PageCursor
from intake_ledger.domain.records import (
    AuditLogEntry,
    IntakeType,
    LedgerRecord,
    LedgerSettings,
    RecordKind,
    apply_changes,
)
from intake_ledger.utils.exceptions import RecordNotFoundError

# Called with the record kinds a bulk operation wrote to a store.
ChangeListener = Callable[[Iterable[RecordKind]], None]


class RecordStore(ABC):
    """
    CRUD, range and keyset queries over every record kind.

    Implementations scope all operations to their owner (device or user) and
    never return backend-internal fields.
    """

    name: str = "store"

    @abstractmethod
    async def add_record(self, kind: RecordKind, record: LedgerRecord) -> LedgerRecord:
        """
        Insert a new record.

        Raises:
            DuplicateRecordError: If the id already exists.
            StorageError: On backend failure.
        """

    @abstractmethod
    async def insert_if_absent(self, kind: RecordKind, record: LedgerRecord) -> bool:
        """Atomically insert unless the id exists; return True when inserted."""

    @abstractmethod
    async def get_record(self, kind: RecordKind, record_id: str) -> LedgerRecord | None:
        """Fetch a record by id."""

    @abstractmethod
    async def _replace_record(self, kind: RecordKind, record: LedgerRecord) -> bool:
        """Overwrite the stored row for ``record.id``; return False if it vanished."""

    @abstractmethod
    async def delete_record(self, kind: RecordKind, record_id: str) -> None:
        """
        Delete a record by id.

        Raises:
            RecordNotFoundError: If no record has that id.
        """

    @abstractmethod
    async def list_in_window(
        self,
        kind: RecordKind,
        start_ms: int,
        end_ms: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        """Records with ``start_ms <= timestamp`` (and ``< end_ms`` when given), newest first."""

    @abstractmethod
    async def list_recent(
        self, kind: RecordKind, limit: int, intake_type: IntakeType | None = None
    ) -> list[LedgerRecord]:
        """The ``limit`` newest records."""

    @abstractmethod
    async def list_page(
        self,
        kind: RecordKind,
        before: PageCursor | None,
        limit: int,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        """Up to ``limit`` records strictly after ``before`` in (timestamp, id) descending order."""

    @abstractmethod
    async def list_all(self, kind: RecordKind) -> list[LedgerRecord]:
        """Every record of ``kind``, newest first."""

    @abstractmethod
    async def existing_ids(self, kind: RecordKind) -> set[str]:
        """Ids of every stored record of ``kind``."""

    @abstractmethod
    async def count(self, kind: RecordKind) -> int:
        """Number of stored records of ``kind``."""

    @abstractmethod
    async def delete_before(self, kind: RecordKind, cutoff_ms: int) -> int:
        """Delete records older than ``cutoff_ms``; return how many were removed."""

    @abstractmethod
    async def clear(self, kind: RecordKind) -> int:
        """Delete every record of ``kind``; return how many were removed."""

    @abstractmethod
    async def get_settings(self) -> LedgerSettings:
        """Settings singleton, defaults when none were saved."""

    @abstractmethod
    async def put_settings(self, settings: LedgerSettings) -> LedgerSettings:
        """Persist the settings singleton."""

    async def close(self) -> None:
        """Release backend resources."""

    async def update_record(
        self, kind: RecordKind, record_id: str, changes: Mapping[str, Any]
    ) -> LedgerRecord:
        """
        Apply field changes to an existing record.

        Args:
            kind: Record kind.
            record_id: Id of the record to change.
            changes: Field changes (snake_case or camelCase keys).

        Returns:
            The updated record.

        Raises:
            RecordNotFoundError: If no record has that id.
            ValidationError: If the changes are not allowed or invalid.
        """
        current = await self.get_record(kind, record_id)
        if current is None:
            raise RecordNotFoundError(kind.value, record_id)

        updated = apply_changes(kind, current, changes)
        if not await self._replace_record(kind, updated):
            raise RecordNotFoundError(kind.value, record_id)
        return updated

    async def clear_all(self) -> int:
        """Delete every record of every kind; return the total removed."""
        removed = 0
        for kind in RecordKind:
            removed += await self.clear(kind)
        return removed


class AuditLogSink(Protocol):
    """Destination for flushed audit entries."""

    async def add_audit_entries(self, entries: list[AuditLogEntry]) -> None: ...

    async def list_audit_entries(
        self, start_ms: int | None = None, end_ms: int | None = None
    ) -> list[AuditLogEntry]: ...

    async def delete_audit_entries_before(self, cutoff_ms: int) -> int: ...

    async def clear_audit_entries(self) -> int: ...
