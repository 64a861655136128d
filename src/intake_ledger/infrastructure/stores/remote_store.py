"""
Remote record store backed by PostgreSQL through async psycopg.

Every table carries a ``user_id`` column; each store instance is bound to one
verified user and scopes every statement to it. The column is stripped from
rows before they are turned into records, so it never leaves this module.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import psycopg
from psycopg.rows import dict_row

from intake_ledger.domain.paging import PageCursor
from intake_ledger.domain.records import (
    IntakeType,
    LedgerRecord,
    LedgerSettings,
    RecordKind,
    build_record,
)
from intake_ledger.infrastructure.auth import TokenVerifier
from intake_ledger.infrastructure.stores.base import RecordStore
from intake_ledger.infrastructure.stores.schema import REMOTE_SCHEMA, SETTINGS_COLUMNS, TABLES
from intake_ledger.utils.exceptions import (
    DuplicateRecordError,
    RecordNotFoundError,
    StorageError,
)
from intake_ledger.utils.parameters import RemoteStoreConfig

logger = logging.getLogger(__name__)

Connect = Callable[[], Awaitable[psycopg.AsyncConnection]]


def _strip_owner(row: dict[str, Any]) -> dict[str, Any]:
    row = dict(row)
    row.pop("user_id", None)
    return row


class RemoteConnector:
    """Opens a new async connection per unit of work."""

    def __init__(self, config: RemoteStoreConfig) -> None:
        if not config.dsn:
            raise StorageError("Remote store DSN is not configured")
        self._dsn = config.dsn
        self._timeout = config.connect_timeout

    async def __call__(self) -> psycopg.AsyncConnection:
        try:
            return await psycopg.AsyncConnection.connect(
                self._dsn, connect_timeout=self._timeout
            )
        except psycopg.Error as e:
            raise StorageError(f"Failed to connect to remote store: {e}") from e


async def ensure_remote_schema(connect: Connect) -> None:
    """Create remote tables and indexes when missing."""
    try:
        async with await connect() as conn:
            async with conn.cursor() as cur:
                for statement in REMOTE_SCHEMA:
                    await cur.execute(statement)
    except psycopg.Error as e:
        raise StorageError(f"Remote schema setup failed: {e}") from e
    logger.info("Remote store schema ensured")


class RemoteRecordStore(RecordStore):
    """Per-user record store over PostgreSQL."""

    name = "server"

    def __init__(self, connect: Connect, user_id: str) -> None:
        if not user_id:
            raise StorageError("Remote store requires a user id")
        self._connect = connect
        self.user_id = user_id

    async def _run(
        self, sql: str, params: Sequence[Any] = (), fetch: bool = False
    ) -> tuple[list[dict[str, Any]], int]:
        try:
            async with await self._connect() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(sql, params)
                    rows = await cur.fetchall() if fetch else []
                    return [_strip_owner(row) for row in rows], cur.rowcount
        except psycopg.errors.UniqueViolation:
            raise
        except psycopg.Error as e:
            raise StorageError(f"Remote store query failed: {e}") from e

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        rows, _ = await self._run(sql, params, fetch=True)
        return rows

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        _, rowcount = await self._run(sql, params)
        return rowcount

    def _records(self, kind: RecordKind, rows: list[dict[str, Any]]) -> list[LedgerRecord]:
        return [build_record(kind, row) for row in rows]

    def _select(self, kind: RecordKind) -> str:
        layout = TABLES[kind]
        return f"SELECT {layout.column_list} FROM {layout.table} WHERE user_id = %s"

    def _insert_sql(self, kind: RecordKind) -> str:
        layout = TABLES[kind]
        placeholders = ", ".join("%s" for _ in layout.columns)
        return (
            f"INSERT INTO {layout.table} (user_id, {layout.column_list}) "
            f"VALUES (%s, {placeholders})"
        )

    def _values(self, kind: RecordKind, record: LedgerRecord) -> list[Any]:
        row = record.to_row()
        return [self.user_id] + [row.get(column) for column in TABLES[kind].columns]

    def _type_filter(
        self, kind: RecordKind, intake_type: IntakeType | None
    ) -> tuple[str, list[Any]]:
        if intake_type is None or not TABLES[kind].has_type:
            return "", []
        return " AND type = %s", [IntakeType(intake_type).value]

    async def add_record(self, kind: RecordKind, record: LedgerRecord) -> LedgerRecord:
        record = build_record(kind, record)
        try:
            await self._write(self._insert_sql(kind), self._values(kind, record))
        except psycopg.errors.UniqueViolation as e:
            raise DuplicateRecordError(kind.value, record.id) from e
        return record

    async def insert_if_absent(self, kind: RecordKind, record: LedgerRecord) -> bool:
        record = build_record(kind, record)
        rows = await self._fetch(
            f"{self._insert_sql(kind)} ON CONFLICT (id) DO NOTHING RETURNING id",
            self._values(kind, record),
        )
        return bool(rows)

    async def get_record(self, kind: RecordKind, record_id: str) -> LedgerRecord | None:
        rows = await self._fetch(f"{self._select(kind)} AND id = %s", (self.user_id, record_id))
        return build_record(kind, rows[0]) if rows else None

    async def _replace_record(self, kind: RecordKind, record: LedgerRecord) -> bool:
        layout = TABLES[kind]
        columns = [column for column in layout.columns if column != "id"]
        assignments = ", ".join(f"{column} = %s" for column in columns)
        row = record.to_row()
        params = [row.get(column) for column in columns] + [record.id, self.user_id]
        changed = await self._write(
            f"UPDATE {layout.table} SET {assignments} WHERE id = %s AND user_id = %s", params
        )
        return changed > 0

    async def delete_record(self, kind: RecordKind, record_id: str) -> None:
        changed = await self._write(
            f"DELETE FROM {TABLES[kind].table} WHERE id = %s AND user_id = %s",
            (record_id, self.user_id),
        )
        if changed == 0:
            raise RecordNotFoundError(kind.value, record_id)

    async def list_in_window(
        self,
        kind: RecordKind,
        start_ms: int,
        end_ms: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        sql = f"{self._select(kind)} AND timestamp >= %s"
        params: list[Any] = [self.user_id, start_ms]
        if end_ms is not None:
            sql += " AND timestamp < %s"
            params.append(end_ms)
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql += type_sql + " ORDER BY timestamp DESC, id DESC"
        return self._records(kind, await self._fetch(sql, params + type_params))

    async def list_recent(
        self, kind: RecordKind, limit: int, intake_type: IntakeType | None = None
    ) -> list[LedgerRecord]:
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql = f"{self._select(kind)}{type_sql} ORDER BY timestamp DESC, id DESC LIMIT %s"
        return self._records(
            kind, await self._fetch(sql, [self.user_id] + type_params + [limit])
        )

    async def list_page(
        self,
        kind: RecordKind,
        before: PageCursor | None,
        limit: int,
        intake_type: IntakeType | None = None,
    ) -> list[LedgerRecord]:
        sql = self._select(kind)
        params: list[Any] = [self.user_id]
        if before is not None:
            if before.id is None:
                sql += " AND timestamp < %s"
                params.append(before.timestamp)
            else:
                sql += " AND (timestamp, id) < (%s, %s)"
                params.extend([before.timestamp, before.id])
        type_sql, type_params = self._type_filter(kind, intake_type)
        sql += type_sql + " ORDER BY timestamp DESC, id DESC LIMIT %s"
        return self._records(kind, await self._fetch(sql, params + type_params + [limit]))

    async def list_all(self, kind: RecordKind) -> list[LedgerRecord]:
        sql = f"{self._select(kind)} ORDER BY timestamp DESC, id DESC"
        return self._records(kind, await self._fetch(sql, (self.user_id,)))

    async def existing_ids(self, kind: RecordKind) -> set[str]:
        rows = await self._fetch(
            f"SELECT id FROM {TABLES[kind].table} WHERE user_id = %s", (self.user_id,)
        )
        return {row["id"] for row in rows}

    async def count(self, kind: RecordKind) -> int:
        rows = await self._fetch(
            f"SELECT COUNT(*) AS n FROM {TABLES[kind].table} WHERE user_id = %s",
            (self.user_id,),
        )
        return int(rows[0]["n"]) if rows else 0

    async def delete_before(self, kind: RecordKind, cutoff_ms: int) -> int:
        return await self._write(
            f"DELETE FROM {TABLES[kind].table} WHERE user_id = %s AND timestamp < %s",
            (self.user_id, cutoff_ms),
        )

    async def clear(self, kind: RecordKind) -> int:
        return await self._write(
            f"DELETE FROM {TABLES[kind].table} WHERE user_id = %s", (self.user_id,)
        )

    async def get_settings(self) -> LedgerSettings:
        rows = await self._fetch(
            f"SELECT user_id, {', '.join(SETTINGS_COLUMNS)} FROM user_settings WHERE user_id = %s",
            (self.user_id,),
        )
        if not rows:
            return LedgerSettings()
        return LedgerSettings.model_validate(rows[0])

    async def put_settings(self, settings: LedgerSettings) -> LedgerSettings:
        row = settings.model_dump()
        columns = ", ".join(SETTINGS_COLUMNS)
        placeholders = ", ".join("%s" for _ in SETTINGS_COLUMNS)
        updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in SETTINGS_COLUMNS)
        await self._write(
            f"INSERT INTO user_settings (user_id, {columns}) VALUES (%s, {placeholders}) "
            f"ON CONFLICT (user_id) DO UPDATE SET {updates}",
            [self.user_id] + [row[column] for column in SETTINGS_COLUMNS],
        )
        return settings


class RemoteStoreFactory:
    """Builds a user-scoped ``RemoteRecordStore`` from a bearer credential."""

    def __init__(self, connect: Connect, verifier: TokenVerifier) -> None:
        self._connect = connect
        self._verifier = verifier

    def for_user(self, user_id: str) -> RemoteRecordStore:
        return RemoteRecordStore(self._connect, user_id)

    def for_credential(self, credential: str) -> RemoteRecordStore:
        """
        Verify ``credential`` and return a store scoped to its user.

        Raises:
            AuthenticationError: If the credential cannot be verified.
        """
        return self.for_user(self._verifier.verify(credential))
