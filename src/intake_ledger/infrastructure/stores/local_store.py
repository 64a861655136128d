"""
Embedded record store backed by SQLite through aiosqlite.

The database file is versioned with ``PRAGMA user_version``; opening an older
file applies the remaining additive migrations from ``schema.LOCAL_MIGRATIONS``.
The same connection also stores the audit log.
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from intake_ledger.domain.paging import PageCursor
from intake_ledger.domain.records import (
    AuditLogEntry,
    IntakeType,
    LedgerRecord,
    LedgerSettings,
    RecordKind,
    build_record,
)
from intake_ledger.infrastructure.stores.base import RecordStore
from intake_ledger.infrastructure.stores.schema import (
    LOCAL_MIGRATIONS,
    LOCAL_SCHEMA_VERSION,
    SETTINGS_COLUMNS,
    TABLES,
)
from intake_ledger.utils.exceptions import (
    DuplicateRecordError,
    RecordNotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


def _type_value(intake_type: IntakeType | str | None) -> str | None:
    if intake_type is None:
        return None
    return intake_type.value if isinstance(intake_type, IntakeType) else str(intake_type)


class LocalRecordStore(RecordStore):
    """Per-device record store on a single aiosqlite connection."""

    name = "local"

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = aiosqlite.Row

    @classmethod
    async def open(cls, path: str | Path = ":memory:") -> "LocalRecordStore":
        """
        Open (or create) the store and bring its schema up to date.

        Args:
            path: Database file path, or ``":memory:"``.

        Returns:
            Ready-to-use store.

        Raises:
            StorageError: If the database cannot be opened or migrated.
        """
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(str(path))
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to open local store at {path}: {e}") from e

        store = cls(conn)
        try:
            await store.migrate()
        except StorageError:
            await conn.close()
            raise
        return store

    async def schema_version(self) -> int:
        async with self._conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def migrate(self) -> int:
        """
        Apply pending schema migrations.

        Returns:
            Schema version after migrating.
        """
        try:
            version = await self.schema_version()
            for target, statements in LOCAL_MIGRATIONS:
                if target <= version:
                    continue
                for statement in statements:
                    await self._conn.execute(statement)
                await self._conn.execute(f"PRAGMA user_version = {target}")
                await self._conn.commit()
                logger.info(f"Local store schema migrated to version {target}")
                version = target
        except aiosqlite.Error as e:
            raise StorageError(f"Local store migration failed: {e}") from e

        if version != LOCAL_SCHEMA_VERSION:
            raise StorageError(
                f"Local store schema version {version} is newer than supported "
                f"version {LOCAL_SCHEMA_VERSION}"
            )
        return version

    async def close(self) -> None:
        await self._conn.close()

    # -- low level helpers -------------------------------------------------

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            async with self._conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Local store query failed: {e}") from e
        return [dict(row) for row in rows]

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            cursor = await self._conn.execute(sql, params)
            await self._conn.commit()
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise StorageError(f"Local store write failed: {e}") from e
        return cursor.rowcount

    def _records(self, kind: RecordKind, rows: list[dict[str, Any]]) -> list[LedgerRecord]:
        return [build_record(kind, row) for row in rows]

    def _select(self, kind: RecordKind) -> str:
        layout = TABLES[kind]
        return f"SELECT {layout.column_list} FROM {layout.table}"

    def _insert_sql(self, kind: RecordKind, verb: str = "INSERT") -> str:
        layout = TABLES[kind]
        placeholders = ", ".join("?" for _ in layout.columns)
        return f"{verb} INTO {layout.table} ({layout.column_list}) VALUES ({placeholders})"

    def _values(self, kind: RecordKind, record: LedgerRecord) -> tuple[Any, ...]:
        row = record.to_row()
        return tuple(row.get(column) for column in TABLES[kind].columns)

    # -- RecordStore -------------------------------------------------------

    async def add_record(self, kind: RecordKind, record: LedgerRecord) -> LedgerRecord:
        record = build_record(kind, record)
        try:
            await self._conn.execute(self._insert_sql(kind), self._values(kind, record))
            await self._conn.commit()
        except aiosqlite.IntegrityError as e:
            await self._conn.rollback()
            raise DuplicateRecordError(kind.value, record.id) from e
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise StorageError(f"Failed to add {kind.value} record: {e}") from e
        return record

    async def insert_if_absent(self, kind: RecordKind, record: LedgerRecord) -> bool:
        record = build_record(kind, record)
        changed = await self._write(
            self._insert_sql(kind, "INSERT OR IGNORE"), self._values(kind, record)
        )
        return changed > 0

    async def get_record(self, kind: RecordKind, record_id: str) -> LedgerRecord | None:
        rows = await self._fetch(f"{self._select(kind)} WHERE id = ?", (record_id,))
        return build_record(kind, rows[0]) if rows else None

    async def _replace_record(self, kind: RecordKind, record: LedgerRecord) -> bool:
        layout = TABLES[kind]
        columns = [column for column in layout.columns if column != "id"]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        row = record.to_row()
        params = [row.get(column) for column in columns] + [record.id]
        changed = await self._write(
            f"UPDATE {layout.table} SET {assignments} WHERE id = ?", params
        )
        return changed > 0

    async def delete_record(self, kind: RecordKind, record_id: str) -> None:
        changed = await self._write(
            f"DELETE FROM {TABLES[kind].table} WHERE id = ?", (record_id,)
        )
        if changed == 0:
            raise RecordNotFoundError(kind.value, record_id)

    def _type_filter(
        self, kind: RecordKind, intake_type: IntakeType | None
    ) -> tuple[str, list[Any]]:
        value = _type_value(intake_type)
        if value is None or not TABLES[kind].has_type:
            return "", []
        return " AND type = ?", [value]

    async def list_in_window(
        self,
        kind: RecordKind,
        start_ms: int,
        end_ms: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        sql = f"{self._select(kind)} WHERE timestamp >= ?"
        params: list[Any] = [start_ms]
        if end_ms is not None:
            sql += " AND timestamp < ?"
            params.append(end_ms)
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql += type_sql + " ORDER BY timestamp DESC, id DESC"
        return self._records(kind, await self._fetch(sql, params + type_params))

    async def list_recent(
        self, kind: RecordKind, limit: int, intake_type: IntakeType | None = None
    ) -> list[LedgerRecord]:
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql = f"{self._select(kind)} WHERE 1 = 1{type_sql} ORDER BY timestamp DESC, id DESC LIMIT ?"
        return self._records(kind, await self._fetch(sql, type_params + [limit]))

    async def list_page(
        self,
        kind: RecordKind,
        before: PageCursor | None,
        limit: int,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        sql = f"{self._select(kind)} WHERE 1 = 1"
        params: list[Any] = []
        if before is not None:
            if before.id is None:
                sql += " AND timestamp < ?"
                params.append(before.timestamp)
            else:
                sql += " AND (timestamp < ? OR (timestamp = ? AND id < ?))"
                params.extend([before.timestamp, before.timestamp, before.id])
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql += type_sql + " ORDER BY timestamp DESC, id DESC LIMIT ?"
        return self._records(kind, await self._fetch(sql, params + type_params + [limit]))

    async def list_all(self, kind: RecordKind) -> list[LedgerRecord]:
        sql = f"{self._select(kind)} ORDER BY timestamp DESC, id DESC"
        return self._records(kind, await self._fetch(sql))

    async def existing_ids(self, kind: RecordKind) -> set[str]:
        rows = await self._fetch(f"SELECT id FROM {TABLES[kind].table}")
        return {row["id"] for row in rows}

    async def count(self, kind: RecordKind) -> int:
        rows = await self._fetch(f"SELECT COUNT(*) AS n FROM {TABLES[kind].table}")
        return int(rows[0]["n"])

    async def delete_before(self, kind: RecordKind, cutoff_ms: int) -> int:
        return await self._write(
            f"DELETE FROM {TABLES[kind].table} WHERE timestamp < ?", (cutoff_ms,)
        )

    async def clear(self, kind: RecordKind) -> int:
        return await self._write(f"DELETE FROM {TABLES[kind].table}")

    async def get_settings(self) -> LedgerSettings:
        rows = await self._fetch(
            f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM settings WHERE singleton = 1"
        )
        if not rows:
            return LedgerSettings()
        return LedgerSettings.model_validate(rows[0])

    async def put_settings(self, settings: LedgerSettings) -> LedgerSettings:
        row = settings.model_dump()
        columns = ", ".join(SETTINGS_COLUMNS)
        placeholders = ", ".join("?" for _ in SETTINGS_COLUMNS)
        await self._write(
            f"INSERT OR REPLACE INTO settings (singleton, {columns}) VALUES (1, {placeholders})",
            [row[column] for column in SETTINGS_COLUMNS],
        )
        return settings

    # -- AuditLogSink ------------------------------------------------------

    async def add_audit_entries(self, entries: list[AuditLogEntry]) -> None:
        if not entries:
            return
        rows = [(e.id, e.timestamp, e.action, e.details) for e in entries]
        try:
            await self._conn.executemany(
                "INSERT OR IGNORE INTO audit_logs (id, timestamp, action, details) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise StorageError(f"Failed to write audit entries: {e}") from e

    async def list_audit_entries(
        self, start_ms: int | None = None, end_ms: int | None = None
    ) -> list[AuditLogEntry]:
        sql = "SELECT id, timestamp, action, details FROM audit_logs WHERE 1 = 1"
        params: list[Any] = []
        if start_ms is not None:
            sql += " AND timestamp >= ?"
            params.append(start_ms)
        if end_ms is not None:
            sql += " AND timestamp < ?"
            params.append(end_ms)
        sql += " ORDER BY timestamp DESC, id DESC"
        return [AuditLogEntry.model_validate(row) for row in await self._fetch(sql, params)]

    async def delete_audit_entries_before(self, cutoff_ms: int) -> int:
        return await self._write("DELETE FROM audit_logs WHERE timestamp < ?", (cutoff_ms,))

    async def clear_audit_entries(self) -> int:
        return await self._write("DELETE FROM audit_logs")
