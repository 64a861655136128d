"""
Local <-> remote storage migration.

Migration copies the full record set into the destination with merge
semantics, verifies every source id arrived, and only then clears the
source. Any failure before that point leaves the source untouched.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from pydantic import BaseModel

from intake_ledger.domain.records import AuditAction, RecordKind, StorageMode
from intake_ledger.infrastructure.stores.base import RecordStore
from intake_ledger.services.audit import AuditTrail
from intake_ledger.services.backup import BackupService, ImportMode
from intake_ledger.services.router import StorageContext, StorageRouter
from intake_ledger.utils.exceptions import IntakeLedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def read_with_timeout(operation: Awaitable[T], timeout: float, default: T) -> T:
    """
    Await a read-only operation, returning ``default`` if it takes too long.

    Only for diagnostic reads; writes are never abandoned once issued.
    """
    try:
        return await asyncio.wait_for(operation, timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Diagnostic read timed out after {timeout}s")
        return default


class MigrationResult(BaseModel):
    success: bool
    imported: int = 0
    skipped: int = 0
    source_cleared: bool = False
    error: str | None = None


class StorageCounts(BaseModel):
    local: dict[str, int]
    server: dict[str, int] | None = None


class MigrationService:
    """Moves records between the local and remote stores."""

    def __init__(
        self,
        router: StorageRouter,
        backup: BackupService,
        audit: AuditTrail | None = None,
    ) -> None:
        self.router = router
        self.backup = backup
        self.audit = audit

    async def migrate(
        self, source: RecordStore, destination: RecordStore, clear_source: bool = True
    ) -> MigrationResult:
        """
        Copy every record from ``source`` into ``destination``.

        Args:
            source: Store to read from.
            destination: Store to merge into.
            clear_source: Clear the source after a verified copy.

        Returns:
            Migration result; ``success`` is False if anything failed, in
            which case the source was not cleared.
        """
        logger.info(f"Migrating records from {source.name} to {destination.name} store")
        try:
            document = await self.backup.export_document(source, include_settings=False)
            result = await self.backup.import_document(destination, document, ImportMode.MERGE)
        except IntakeLedgerError as e:
            logger.error(f"Migration from {source.name} to {destination.name} failed: {e}")
            return MigrationResult(success=False, error=str(e))

        if result.imported_by_kind:
            self.router.notify_changed(result.imported_by_kind)

        if result.errors:
            logger.error(f"Migration left {len(result.errors)} records behind; source kept")
            return MigrationResult(
                success=False,
                imported=result.imported_count,
                skipped=result.skipped_count,
                error="; ".join(result.errors),
            )

        try:
            missing = await self._missing_ids(source, destination)
        except IntakeLedgerError as e:
            return MigrationResult(
                success=False,
                imported=result.imported_count,
                skipped=result.skipped_count,
                error=f"Verification failed: {e}",
            )
        if missing:
            return MigrationResult(
                success=False,
                imported=result.imported_count,
                skipped=result.skipped_count,
                error=f"{missing} records missing from {destination.name} store after copy",
            )

        cleared = False
        if clear_source:
            await source.clear_all()
            cleared = True
            self.router.notify_changed(RecordKind)

        if self.audit is not None:
            self.audit.record(
                AuditAction.STORAGE_MIGRATION,
                f"{source.name} -> {destination.name}: {result.imported_count} imported",
            )
        return MigrationResult(
            success=True,
            imported=result.imported_count,
            skipped=result.skipped_count,
            source_cleared=cleared,
        )

    async def _missing_ids(self, source: RecordStore, destination: RecordStore) -> int:
        missing = 0
        for kind in RecordKind:
            source_ids = await source.existing_ids(kind)
            missing += len(source_ids - await destination.existing_ids(kind))
        return missing

    async def local_to_remote(self, credential: str, clear_source: bool = True) -> MigrationResult:
        """Move local records to the remote store of the credential's user."""
        remote = self.router.select(StorageContext(StorageMode.SERVER, credential))
        return await self.migrate(self.router.local_store, remote, clear_source)

    async def remote_to_local(self, credential: str, clear_source: bool = True) -> MigrationResult:
        """Move the credential user's remote records to the local store."""
        remote = self.router.select(StorageContext(StorageMode.SERVER, credential))
        return await self.migrate(remote, self.router.local_store, clear_source)

    async def _counts(self, store: RecordStore) -> dict[str, int]:
        return {kind.value: await store.count(kind) for kind in RecordKind}

    async def storage_counts(
        self, credential: str | None = None, timeout: float = 5.0
    ) -> StorageCounts:
        """
        Record counts on both sides, for a migration preview.

        The remote side is None without a credential, on failure, or on timeout.
        """
        local = await self._counts(self.router.local_store)
        if not credential:
            return StorageCounts(local=local)

        try:
            remote = self.router.select(StorageContext(StorageMode.SERVER, credential))
            server = await read_with_timeout(self._counts(remote), timeout, None)
        except IntakeLedgerError as e:
            logger.warning(f"Could not read remote record counts: {e}")
            server = None
        return StorageCounts(local=local, server=server)
