import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

from adapters.db.base import AdapterMetadata, DbAdapter, Row, RunResult, quote_literal
from sqlgate.errors.exceptions import BackendConnectionError, QueryError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SqliteConfig:
    path: str


class SQLiteAdapter(DbAdapter):
    name = "SQLite"
    dialect = "sqlite"

    def __init__(self, path: str):
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None
        # one connection, shared across worker threads one call at a time
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        log.info("Opening SQLite database at: %s", self.path)
        try:
            self._conn = await asyncio.to_thread(self._open)
        except sqlite3.Error as exc:
            log.error("SQLite connection error: %s", exc)
            raise BackendConnectionError(
                f"Failed to open SQLite database: {exc}"
            ) from exc
        log.info("SQLite database opened successfully")

    def _open(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: autocommit, every statement stands alone
        conn = sqlite3.connect(
            self.path, timeout=30, check_same_thread=False, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise BackendConnectionError("Database not initialized")
        return self._conn

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        conn = self._connection()

        def _fetch() -> List[Row]:
            cur = conn.execute(sql, tuple(params))
            try:
                return [dict(r) for r in cur.fetchall()]
            finally:
                cur.close()

        async with self._lock:
            try:
                rows = await asyncio.to_thread(_fetch)
            except sqlite3.Error as exc:
                raise QueryError(f"SQLite query error: {exc}") from exc
        log.debug("Query returned %d rows", len(rows))
        return rows

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        conn = self._connection()

        def _run() -> RunResult:
            cur = conn.execute(sql, tuple(params))
            try:
                return RunResult(
                    changes=max(cur.rowcount, 0), last_insert_id=cur.lastrowid or 0
                )
            finally:
                cur.close()

        async with self._lock:
            try:
                return await asyncio.to_thread(_run)
            except sqlite3.Error as exc:
                raise QueryError(f"SQLite query error: {exc}") from exc

    async def exec_batch(self, sql: str) -> None:
        conn = self._connection()
        async with self._lock:
            try:
                await asyncio.to_thread(conn.executescript, sql)
            except sqlite3.Error as exc:
                raise QueryError(f"SQLite batch error: {exc}") from exc

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        async with self._lock:
            await asyncio.to_thread(conn.close)
        log.info("SQLite database closed")

    def metadata(self) -> AdapterMetadata:
        return AdapterMetadata(name=self.name, type=self.dialect, path=self.path)

    def list_tables_statement(self) -> str:
        return (
            "SELECT name FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )

    def describe_table_statement(self, table_name: str) -> str:
        return (
            "SELECT name, type, notnull, pk, dflt_value, NULL AS comment "
            f"FROM pragma_table_info({quote_literal(table_name)})"
        )
