"""
Runtime wiring.

Builds every store and service from one ``AppConfig`` so callers (RPC
handlers, jobs) share a single router, audit trail and totals cache.
"""

from collections.abc import Callable
from dataclasses import dataclass

from intake_ledger.infrastructure.auth import TokenVerifier
from intake_ledger.infrastructure.stores.local_store import LocalRecordStore
from intake_ledger.infrastructure.stores.remote_store import (
    RemoteConnector,
    RemoteStoreFactory,
    ensure_remote_schema,
)
from intake_ledger.services.aggregation import IntakeTotals
from intake_ledger.services.audit import AuditTrail
from intake_ledger.services.backup import BackupService
from intake_ledger.services.migration import MigrationService
from intake_ledger.services.pagination import CursorPager
from intake_ledger.services.retention import RetentionService
from intake_ledger.services.router import StorageContext, StorageRouter
from intake_ledger.utils.logging_config import get_logger, setup_logging
from intake_ledger.utils.parameters import AppConfig, ParameterLoader
from intake_ledger.utils.timezone_utils import now_ms

logger = get_logger(__name__)


@dataclass
class LedgerRuntime:
    """Every service of a running ledger."""

    config: AppConfig
    local_store: LocalRecordStore
    router: StorageRouter
    audit: AuditTrail
    totals: IntakeTotals
    backup: BackupService
    migration: MigrationService
    retention: RetentionService

    def default_context(self, credential: str | None = None) -> StorageContext:
        return StorageContext(self.config.storage.mode, credential)

    async def close(self) -> None:
        """Stop background refresh, flush the audit buffer and close the local store."""
        await self.totals.stop()
        await self.audit.close()
        await self.local_store.close()
        logger.info("Ledger runtime closed")


async def open_runtime(
    config: AppConfig,
    create_remote_schema: bool = False,
    clock: Callable[[], int] = now_ms,
) -> LedgerRuntime:
    """
    Open stores and build services.

    Args:
        config: Application configuration.
        create_remote_schema: Create remote tables if they are missing.
        clock: Source of the current instant in epoch milliseconds.

    Returns:
        Ready-to-use runtime.

    Raises:
        StorageError: If a configured store cannot be opened.
    """
    local_store = await LocalRecordStore.open(config.storage.local.path)
    audit = AuditTrail(local_store, config.audit, clock)

    remote_factory = None
    if config.storage.remote.dsn:
        connector = RemoteConnector(config.storage.remote)
        if create_remote_schema:
            await ensure_remote_schema(connector)
        remote_factory = RemoteStoreFactory(connector, TokenVerifier(config.auth))
    else:
        logger.info("No remote DSN configured; server mode is unavailable")

    router = StorageRouter(
        local_store,
        remote_factory,
        pager=CursorPager(config.pagination),
        aggregation_config=config.aggregation,
        audit=audit,
        clock=clock,
    )
    totals = IntakeTotals(router, config.aggregation, clock)
    totals.start()
    backup = BackupService(config.backup, audit, clock, on_change=router.notify_changed)

    runtime = LedgerRuntime(
        config=config,
        local_store=local_store,
        router=router,
        audit=audit,
        totals=totals,
        backup=backup,
        migration=MigrationService(router, backup, audit),
        retention=RetentionService(
            local_store, audit, clock, on_change=router.notify_changed
        ),
    )
    logger.info(f"Ledger runtime opened (default mode: {config.storage.mode.value})")
    return runtime


async def open_runtime_from_file(config_path: str = "config/config.yaml") -> LedgerRuntime:
    """Load configuration, set up logging and open the runtime."""
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "intake_ledger")
    return await open_runtime(param_loader.config)
