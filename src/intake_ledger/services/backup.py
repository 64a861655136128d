"""
Backup export and import.

A backup is a versioned JSON document with one array per record kind plus an
optional sanitized settings snapshot. Import validates every record on its
own: malformed records are skipped and reported, and only a document that
cannot be parsed at all aborts the import before anything is written.
"""

import asyncio
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from intake_ledger.domain.records import (
    AuditAction,
    LedgerRecord,
    LedgerSettings,
    RecordKind,
    build_record,
    describe_validation_error,
)
from intake_ledger.infrastructure.stores.base import ChangeListener, RecordStore
from intake_ledger.services.audit import AuditTrail
from intake_ledger.utils.exceptions import BackupFormatError, IntakeLedgerError
from intake_ledger.utils.parameters import BackupConfig
from intake_ledger.utils.timezone_utils import (
    ms_to_datetime,
    now_ms,
    parse_iso_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

CURRENT_BACKUP_VERSION = 3
CORE_BACKUP_VERSION = 2

BACKUP_KEYS: dict[RecordKind, str] = {
    RecordKind.INTAKE: "intakeRecords",
    RecordKind.WEIGHT: "weightRecords",
    RecordKind.BLOOD_PRESSURE: "bloodPressureRecords",
    RecordKind.EATING: "eatingRecords",
    RecordKind.URINATION: "urinationRecords",
}


class ImportMode(str, Enum):
    """How imported records combine with existing ones."""

    MERGE = "merge"
    REPLACE = "replace"


class BackupDocument(BaseModel):
    """Portable backup document."""

    version: int = Field(ge=1, strict=True)
    exported_at: str
    app_version: str | None = None
    intake_records: list[Any] = Field(default_factory=list)
    weight_records: list[Any] = Field(default_factory=list)
    blood_pressure_records: list[Any] = Field(default_factory=list)
    eating_records: list[Any] = Field(default_factory=list)
    urination_records: list[Any] = Field(default_factory=list)
    settings: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    @field_validator("exported_at")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        parse_iso_timestamp(value)
        return value

    def records_for(self, kind: RecordKind) -> list[Any]:
        return getattr(self, f"{kind.value}_records")

    @property
    def record_count(self) -> int:
        return sum(len(self.records_for(kind)) for kind in RecordKind)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class ImportResult(BaseModel):
    """Outcome of an import: counts plus index-tagged messages for skipped records."""

    imported_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)
    imported_by_kind: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    @property
    def success(self) -> bool:
        return not self.errors

    def skip(self, message: str | None = None) -> None:
        self.skipped_count += 1
        if message:
            self.errors.append(message)

    def imported(self, kind: RecordKind) -> None:
        self.imported_count += 1
        self.imported_by_kind[kind.value] = self.imported_by_kind.get(kind.value, 0) + 1


class BackupStats(BaseModel):
    """Per-kind record counts and the covered time span."""

    counts: dict[str, int]
    total_count: int
    oldest_timestamp: int | None = None
    newest_timestamp: int | None = None


def _upgrade_legacy(raw: dict[str, Any], exported_at: str) -> dict[str, Any]:
    if "records" in raw and "intakeRecords" not in raw:
        logger.info("Upgrading legacy backup document with a bare records array")
        return {
            "version": raw.get("version") or 1,
            "exportedAt": raw.get("exportedAt") or exported_at,
            "intakeRecords": raw.get("records") or [],
            "weightRecords": [],
            "bloodPressureRecords": [],
        }
    return raw


def parse_document(
    source: BackupDocument | Mapping[str, Any] | str | bytes,
    exported_at: str | None = None,
) -> BackupDocument:
    """
    Parse and structurally validate a backup document.

    Args:
        source: JSON text, an already-decoded mapping, or a document.
        exported_at: Timestamp used when upgrading a legacy document.

    Returns:
        Validated document.

    Raises:
        BackupFormatError: If the JSON is invalid or the structure is wrong.
    """
    if isinstance(source, BackupDocument):
        return source

    if isinstance(source, (str, bytes)):
        try:
            raw = json.loads(source)
        except json.JSONDecodeError as e:
            raise BackupFormatError(f"Invalid JSON format: {e}") from e
    else:
        raw = source

    if not isinstance(raw, Mapping):
        raise BackupFormatError("Invalid backup file format: root must be an object")

    stamp = exported_at or utc_now_iso()
    try:
        return BackupDocument.model_validate(_upgrade_legacy(dict(raw), stamp))
    except PydanticValidationError as e:
        raise BackupFormatError(
            f"Invalid backup file format: {describe_validation_error(e)}"
        ) from e


def generate_backup_filename(day: date | None = None, prefix: str = "intake-ledger-backup") -> str:
    """Backup file name such as ``intake-ledger-backup-2024-06-01.json``."""
    day = day or datetime.now(timezone.utc).date()
    return f"{prefix}-{day.isoformat()}.json"


class BackupService:
    """Exports stores to backup documents and imports documents into stores."""

    def __init__(
        self,
        config: BackupConfig | None = None,
        audit: AuditTrail | None = None,
        clock: Callable[[], int] = now_ms,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.config = config or BackupConfig()
        self.audit = audit
        self.clock = clock
        self.on_change = on_change

    def _audit(self, action: AuditAction, details: str) -> None:
        if self.audit is not None:
            self.audit.record(action, details)

    def _now_iso(self) -> str:
        return ms_to_datetime(self.clock()).isoformat()

    async def export_document(
        self,
        store: RecordStore,
        kinds: Iterable[RecordKind] | None = None,
        include_settings: bool = True,
    ) -> BackupDocument:
        """
        Collect records from ``store`` into a backup document.

        Args:
            store: Source store.
            kinds: Record kinds to export; all kinds when None. Exporting only
                intake records produces the core (version 2) document.
            include_settings: Whether to attach the settings snapshot.

        Returns:
            Backup document.
        """
        selected = list(kinds) if kinds is not None else list(RecordKind)
        results = await asyncio.gather(*(store.list_all(kind) for kind in selected))

        payload: dict[str, Any] = {
            "exportedAt": self._now_iso(),
            "version": (
                CORE_BACKUP_VERSION if selected == [RecordKind.INTAKE] else CURRENT_BACKUP_VERSION
            ),
        }
        for kind, records in zip(selected, results):
            payload[BACKUP_KEYS[kind]] = [record.to_document() for record in records]
        if include_settings:
            payload["settings"] = (await store.get_settings()).to_document()

        document = BackupDocument.model_validate(payload)
        summary = ", ".join(f"{len(r)} {k.value}" for k, r in zip(selected, results))
        self._audit(AuditAction.DATA_EXPORT, f"Exported {summary} records")
        logger.info(f"Exported {document.record_count} records from {store.name} store")
        return document

    def _validate_records(
        self, document: BackupDocument, result: ImportResult
    ) -> list[tuple[RecordKind, LedgerRecord]]:
        valid: list[tuple[RecordKind, LedgerRecord]] = []
        for kind in RecordKind:
            key = BACKUP_KEYS[kind]
            for index, raw in enumerate(document.records_for(kind)):
                if not isinstance(raw, Mapping) or "id" not in raw or "timestamp" not in raw:
                    result.skip(f"{key}[{index}]: record must be an object with id and timestamp")
                    continue
                try:
                    valid.append((kind, build_record(kind, raw)))
                except IntakeLedgerError as e:
                    result.skip(f"{key}[{index}]: {e}")
        return valid

    async def import_document(
        self,
        store: RecordStore,
        source: BackupDocument | Mapping[str, Any] | str | bytes,
        mode: ImportMode | str = ImportMode.MERGE,
        restore_settings: bool = False,
    ) -> ImportResult:
        """
        Import a backup document into ``store``.

        Args:
            store: Destination store.
            source: Document, mapping or JSON text.
            mode: ``merge`` skips ids that already exist; ``replace`` clears
                every collection first.
            restore_settings: Also restore the settings snapshot if present.

        Returns:
            Import result with imported and skipped counts.

        Raises:
            BackupFormatError: If the document cannot be parsed.
            StorageError: If clearing the destination fails in replace mode.
        """
        mode = ImportMode(mode)
        document = parse_document(source, self._now_iso())
        result = ImportResult()
        valid = self._validate_records(document, result)

        if mode == ImportMode.REPLACE:
            cleared = await store.clear_all()
            logger.info(f"Cleared {cleared} records from {store.name} store before import")
            await self._insert_all(store, valid, result)
        else:
            await self._merge_all(store, valid, result)

        if restore_settings and document.settings:
            await self._restore_settings(store, document.settings, result)

        if self.on_change is not None:
            changed = list(RecordKind) if mode == ImportMode.REPLACE else [
                RecordKind(kind) for kind in result.imported_by_kind
            ]
            if changed:
                self.on_change(changed)

        self._audit(
            AuditAction.DATA_IMPORT,
            f"Imported {result.imported_count} records ({result.skipped_count} skipped)",
        )
        logger.info(
            f"Import ({mode.value}) into {store.name} store: "
            f"{result.imported_count} imported, {result.skipped_count} skipped"
        )
        return result

    async def _insert_all(
        self,
        store: RecordStore,
        records: list[tuple[RecordKind, LedgerRecord]],
        result: ImportResult,
    ) -> None:
        for kind, record in records:
            try:
                await store.add_record(kind, record)
            except IntakeLedgerError as e:
                result.skip(f"{BACKUP_KEYS[kind]} {record.id}: {e}")
                continue
            result.imported(kind)

    async def _merge_all(
        self,
        store: RecordStore,
        records: list[tuple[RecordKind, LedgerRecord]],
        result: ImportResult,
    ) -> None:
        existing: dict[RecordKind, set[str]] = {}
        for kind in RecordKind:
            existing[kind] = await store.existing_ids(kind)

        for kind, record in records:
            if record.id in existing[kind]:
                result.skip()
                continue
            try:
                inserted = await store.insert_if_absent(kind, record)
            except IntakeLedgerError as e:
                result.skip(f"{BACKUP_KEYS[kind]} {record.id}: {e}")
                continue
            existing[kind].add(record.id)
            if inserted:
                result.imported(kind)
            else:
                result.skip()

    async def _restore_settings(
        self, store: RecordStore, raw: dict[str, Any], result: ImportResult
    ) -> None:
        if isinstance(raw.get("state"), dict):
            raw = raw["state"]
        try:
            settings = LedgerSettings.model_validate({**raw, "updated_at": self.clock()})
            await store.put_settings(settings)
        except PydanticValidationError as e:
            result.errors.append(f"settings: {describe_validation_error(e)}")
        except IntakeLedgerError as e:
            result.errors.append(f"settings: {e}")

    async def export_json(self, store: RecordStore) -> str:
        return (await self.export_document(store)).to_json()

    def write_backup_file(
        self, document: BackupDocument, filename: str | None = None
    ) -> Path:
        """
        Write a document into the configured backup directory.

        Returns:
            Path of the written file.
        """
        backup_dir = Path(self.config.dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        if filename is None:
            exported_day = ms_to_datetime(self.clock()).date()
            filename = generate_backup_filename(exported_day, self.config.filename_prefix)

        path = backup_dir / filename
        path.write_text(document.to_json(), encoding="utf-8")
        logger.info(f"Wrote backup with {document.record_count} records to {path}")
        return path

    def read_backup_file(self, path: str | Path) -> BackupDocument:
        """
        Read and parse a backup file.

        Raises:
            BackupFormatError: If the file cannot be read or parsed.
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise BackupFormatError(f"Cannot read backup file {path}: {e}") from e
        return parse_document(text, self._now_iso())

    async def backup_stats(self, store: RecordStore) -> BackupStats:
        """Counts per kind plus the oldest and newest record timestamps."""
        counts: dict[str, int] = {}
        oldest: int | None = None
        newest: int | None = None
        for kind in RecordKind:
            records = await store.list_all(kind)
            counts[kind.value] = len(records)
            for record in records:
                oldest = record.timestamp if oldest is None else min(oldest, record.timestamp)
                newest = record.timestamp if newest is None else max(newest, record.timestamp)
        return BackupStats(
            counts=counts,
            total_count=sum(counts.values()),
            oldest_timestamp=oldest,
            newest_timestamp=newest,
        )
