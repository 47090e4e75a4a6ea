import sqlite3
import aiosqlite
import datetime
import json
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import Iterable, List, Tuple

from pydantic import BaseModel


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "sync_operations": (
            """CREATE TABLE sync_operations (
                    operation_id TEXT PRIMARY KEY,
                    operation_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    queued_at TEXT NOT NULL
                );""",
            ["operation_id", "operation_type", "payload", "queued_at"],
        ),
    }

    def __init__(self, db_path: str = "offline_queue.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous repository helpers using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def executemany(self, query: str, rows: Iterable[Tuple]) -> None:
        async with self._async_connection() as conn:
            await conn.executemany(query, list(rows))
            await conn.commit()

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


class QueuedOperation(BaseModel):
    operation_id: str
    operation_type: str
    payload: dict
    queued_at: str

    def to_wire(self) -> dict:
        return {
            "operationId": self.operation_id,
            "operationType": self.operation_type,
            "payload": self.payload,
        }


class SyncOperationRepository(AsyncBaseRepository):
    """Mutations written while the backend was unreachable."""

    async def add(self, operation_type: str, payload: dict) -> QueuedOperation:
        operation = QueuedOperation(
            operation_id=str(uuid.uuid4()),
            operation_type=operation_type,
            payload=payload,
            queued_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        await self.execute(
            "INSERT INTO sync_operations (operation_id, operation_type, payload, queued_at) VALUES (?, ?, ?, ?);",
            (
                operation.operation_id,
                operation.operation_type,
                json.dumps(operation.payload),
                operation.queued_at,
            ),
        )
        return operation

    async def fetch_pending(self, limit: int | None = None) -> list[QueuedOperation]:
        query = (
            "SELECT operation_id, operation_type, payload, queued_at "
            "FROM sync_operations ORDER BY queued_at, rowid"
        )
        params: Tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        rows = await self.fetch_all(query + ";", params)
        return [
            QueuedOperation(
                operation_id=op_id,
                operation_type=op_type,
                payload=json.loads(payload),
                queued_at=queued_at,
            )
            for op_id, op_type, payload, queued_at in rows
        ]

    async def remove(self, operation_ids: Iterable[str]) -> None:
        ids = [(op_id,) for op_id in operation_ids]
        if not ids:
            return
        await self.executemany("DELETE FROM sync_operations WHERE operation_id = ?;", ids)

    async def count(self) -> int:
        rows = await self.fetch_all("SELECT COUNT(*) FROM sync_operations;")
        return int(rows[0][0]) if rows else 0

    async def delete_all(self) -> None:
        await self._delete_all("sync_operations")
