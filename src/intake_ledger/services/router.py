"""
Storage router.

Selects the local or remote ``RecordStore`` from an explicit
``StorageContext`` on every call. Server mode without a credential fails
closed with ``AuthenticationRequiredError`` before any backend is touched.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from intake_ledger.domain.paging import Page, PageCursor
from intake_ledger.domain.records import (
    AuditAction,
    IntakeType,
    LedgerRecord,
    LedgerSettings,
    RecordKind,
    StorageMode,
    build_record,
    describe_validation_error,
)
from intake_ledger.infrastructure.stores.base import RecordStore
from intake_ledger.infrastructure.stores.remote_store import RemoteStoreFactory
from intake_ledger.services import aggregation
from intake_ledger.services.audit import AuditTrail
from intake_ledger.services.pagination import CursorPager
from intake_ledger.utils.exceptions import (
    AuthenticationRequiredError,
    StorageError,
    ValidationError,
)
from intake_ledger.utils.parameters import AggregationConfig
from intake_ledger.utils.timezone_utils import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageContext:
    """Current storage mode plus the bearer credential used in server mode."""

    mode: StorageMode = StorageMode.LOCAL
    credential: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", StorageMode(self.mode))


# The context is None for bulk writes made directly against a store.
MutationListener = Callable[[RecordKind, StorageContext | None], None]


class StorageRouter:
    """One CRUD and aggregate surface over both record stores."""

    def __init__(
        self,
        local_store: RecordStore,
        remote_factory: RemoteStoreFactory | None = None,
        pager: CursorPager | None = None,
        aggregation_config: AggregationConfig | None = None,
        audit: AuditTrail | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.local_store = local_store
        self.remote_factory = remote_factory
        self.pager = pager or CursorPager()
        self.aggregation_config = aggregation_config or AggregationConfig()
        self.audit = audit
        self.clock = clock
        self._listeners: list[MutationListener] = []

    def add_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    def _notify(self, kind: RecordKind, context: StorageContext | None) -> None:
        for listener in self._listeners:
            try:
                listener(kind, context)
            except Exception as e:
                logger.error(f"Mutation listener failed for {kind.value}: {e}")

    def notify_changed(self, kinds: Iterable[RecordKind | str]) -> None:
        """Report records written outside the router (imports, migrations, purges)."""
        for kind in dict.fromkeys(RecordKind(k) for k in kinds):
            self._notify(kind, None)

    def select(self, context: StorageContext) -> RecordStore:
        """
        Return the store that serves ``context``.

        Raises:
            AuthenticationRequiredError: Server mode without a credential.
            AuthenticationError: The credential cannot be verified.
            StorageError: Server mode without a configured remote store.
        """
        if context.mode == StorageMode.LOCAL:
            return self.local_store
        if not context.credential:
            raise AuthenticationRequiredError()
        if self.remote_factory is None:
            raise StorageError("Remote store is not configured")
        return self.remote_factory.for_credential(context.credential)

    async def add_record(
        self,
        context: StorageContext,
        kind: RecordKind,
        payload: Mapping[str, Any] | LedgerRecord,
    ) -> LedgerRecord:
        store = self.select(context)
        record = await store.add_record(kind, build_record(kind, payload))
        self._notify(kind, context)
        return record

    async def update_record(
        self,
        context: StorageContext,
        kind: RecordKind,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> LedgerRecord:
        store = self.select(context)
        record = await store.update_record(kind, record_id, changes)
        self._notify(kind, context)
        return record

    async def delete_record(self, context: StorageContext, kind: RecordKind, record_id: str) -> None:
        store = self.select(context)
        await store.delete_record(kind, record_id)
        self._notify(kind, context)

    async def get_record(
        self, context: StorageContext, kind: RecordKind, record_id: str
    ) -> LedgerRecord | None:
        return await self.select(context).get_record(kind, record_id)

    async def list_in_window(
        self,
        context: StorageContext,
        kind: RecordKind,
        start_ms: int,
        end_ms: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        return await self.select(context).list_in_window(kind, start_ms, end_ms, intake_type)

    async def list_recent(
        self,
        context: StorageContext,
        kind: RecordKind,
        limit: int = 1,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        return await self.select(context).list_recent(kind, limit, intake_type)

    async def latest(self, context: StorageContext, kind: RecordKind) -> LedgerRecord | None:
        records = await self.list_recent(context, kind, 1)
        return records[0] if records else None

    async def list_by_cursor(
        self,
        context: StorageContext,
        kind: RecordKind,
        before: PageCursor | int | None = None,
        limit: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> Page:
        return await self.pager.page(self.select(context), kind, before, limit, intake_type)

    async def rolling_total(
        self, context: StorageContext, intake_type: IntakeType, now: int | None = None
    ) -> float:
        now = self.clock() if now is None else now
        hours = self.aggregation_config.rolling_window_hours
        records = await self.list_in_window(
            context,
            RecordKind.INTAKE,
            aggregation.rolling_window_start(now, hours),
            intake_type=intake_type,
        )
        return aggregation.rolling_total(records, intake_type, now, hours)

    async def daily_total(
        self,
        context: StorageContext,
        intake_type: IntakeType,
        day_start_hour: int | None = None,
        now: int | None = None,
    ) -> float:
        now = self.clock() if now is None else now
        if day_start_hour is None:
            day_start_hour = (await self.get_settings(context)).day_start_hour
        tz = self.aggregation_config.timezone
        records = await self.list_in_window(
            context,
            RecordKind.INTAKE,
            aggregation.day_start_timestamp(now, day_start_hour, tz),
            intake_type=intake_type,
        )
        return aggregation.daily_total(records, intake_type, now, day_start_hour, tz)

    async def get_settings(self, context: StorageContext) -> LedgerSettings:
        return await self.select(context).get_settings()

    async def update_settings(
        self, context: StorageContext, changes: Mapping[str, Any]
    ) -> LedgerSettings:
        """
        Merge ``changes`` into the stored settings and stamp ``updated_at``.

        Raises:
            ValidationError: If a field is unknown or a value is out of range.
        """
        names = {to_camel(name): name for name in LedgerSettings.model_fields}
        names.update({name: name for name in LedgerSettings.model_fields})
        normalized: dict[str, Any] = {}
        for key, value in changes.items():
            if key not in names or names[key] == "updated_at":
                raise ValidationError(f"Unknown setting: {key}")
            normalized[names[key]] = value

        store = self.select(context)
        current = await store.get_settings()
        merged = {**current.model_dump(), **normalized, "updated_at": self.clock()}
        try:
            settings = LedgerSettings.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid settings: {describe_validation_error(e)}") from e

        saved = await store.put_settings(settings)
        if self.audit is not None:
            changed = ", ".join(sorted(normalized)) or "none"
            self.audit.record(AuditAction.SETTINGS_CHANGE, f"Updated settings: {changed}")
        return saved

    async def put_settings(
        self, context: StorageContext, settings: LedgerSettings | Mapping[str, Any]
    ) -> LedgerSettings:
        """Replace the stored settings document wholesale and stamp ``updated_at``."""
        data = settings.model_dump() if isinstance(settings, LedgerSettings) else dict(settings)
        data["updated_at"] = self.clock()
        try:
            validated = LedgerSettings.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid settings: {describe_validation_error(e)}") from e

        saved = await self.select(context).put_settings(validated)
        if self.audit is not None:
            self.audit.record(AuditAction.SETTINGS_CHANGE, "Replaced settings")
        return saved
