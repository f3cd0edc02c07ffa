from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from adapters.db.base import AdapterMetadata, DbAdapter, Row, RunResult, quote_literal
from adapters.db.placeholders import to_numbered_markers
from sqlgate.errors.exceptions import BackendConnectionError, QueryError

log = logging.getLogger(__name__)

_RETURNING_RE = re.compile(r"\breturning\b", re.IGNORECASE)


@dataclass(frozen=True)
class PostgresConfig:
    host: str
    database: str
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 5432
    ssl: Optional[bool] = None
    connection_timeout: int = 30000  # milliseconds


def _is_insert(sql: str) -> bool:
    return sql.strip().upper().startswith("INSERT")


class PostgresAdapter(DbAdapter):
    name = "PostgreSQL"
    dialect = "postgresql"

    def __init__(
        self,
        config: PostgresConfig,
        *,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        self.config = config
        self._connect = connect or psycopg.AsyncConnection.connect
        self._conn: Any = None

    def _connect_kwargs(self) -> dict[str, Any]:
        c = self.config
        kwargs: dict[str, Any] = {
            "host": c.host,
            "dbname": c.database,
            "port": c.port,
            "user": c.user,
            "password": c.password,
            "connect_timeout": max(1, math.ceil(c.connection_timeout / 1000)),
        }
        if c.ssl is not None:
            kwargs["sslmode"] = "require" if c.ssl else "disable"
        return {k: v for k, v in kwargs.items() if v is not None}

    async def init(self) -> None:
        c = self.config
        log.info("Connecting to PostgreSQL: %s, Database: %s", c.host, c.database)
        log.debug(
            "PostgreSQL connection details",
            extra={
                "host": c.host,
                "database": c.database,
                "port": c.port,
                "user": c.user,
                "connection_timeout_ms": c.connection_timeout,
                "ssl": bool(c.ssl),
            },
        )
        try:
            # raw cursor: the server sees $1, $2 placeholders as written
            self._conn = await self._connect(
                **self._connect_kwargs(),
                autocommit=True,
                row_factory=dict_row,
                cursor_factory=psycopg.AsyncRawCursor,
            )
        except Exception as exc:
            log.error("PostgreSQL connection error: %s", exc)
            raise BackendConnectionError(
                f"Failed to connect to PostgreSQL: {exc}"
            ) from exc
        log.info("PostgreSQL connection established successfully")

    def _connection(self) -> Any:
        if self._conn is None:
            raise BackendConnectionError("Database not initialized")
        return self._conn

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        conn = self._connection()
        try:
            async with conn.cursor() as cur:
                await cur.execute(to_numbered_markers(sql), list(params) or None)
                if cur.description is None:
                    return []
                return list(await cur.fetchall())
        except psycopg.Error as exc:
            raise QueryError(f"PostgreSQL query error: {exc}") from exc

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        conn = self._connection()
        prepared = to_numbered_markers(sql)
        args = list(params) or None
        try:
            if not _is_insert(sql):
                async with conn.cursor() as cur:
                    await cur.execute(prepared, args)
                    return RunResult(changes=max(cur.rowcount, 0))

            appended = not _RETURNING_RE.search(prepared)
            # RETURNING goes before any trailing ";"
            statement = prepared.strip().rstrip(";").rstrip()
            returning = f"{statement} RETURNING id" if appended else prepared
            try:
                async with conn.cursor() as cur:
                    await cur.execute(returning, args)
                    row = await cur.fetchone() if cur.description else None
                    last_id = (row or {}).get("id") or 0
                    return RunResult(changes=max(cur.rowcount, 0), last_insert_id=last_id)
            except psycopg.errors.UndefinedColumn:
                if not appended:
                    raise
            # Table has no "id" column; autocommit means the failed attempt
            # inserted nothing, so run the statement as written.
            log.debug("Table has no id column; inserting without RETURNING")
            async with conn.cursor() as cur:
                await cur.execute(prepared, args)
                return RunResult(changes=max(cur.rowcount, 0))
        except psycopg.Error as exc:
            raise QueryError(f"PostgreSQL query error: {exc}") from exc

    async def exec_batch(self, sql: str) -> None:
        conn = self._connection()
        try:
            # no parameters: simple query protocol, several statements allowed
            await conn.execute(sql)
        except psycopg.Error as exc:
            raise QueryError(f"PostgreSQL batch error: {exc}") from exc

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()
        log.info("PostgreSQL connection closed")

    def metadata(self) -> AdapterMetadata:
        return AdapterMetadata(
            name=self.name,
            type=self.dialect,
            server=self.config.host,
            database=self.config.database,
        )

    def list_tables_statement(self) -> str:
        return (
            "SELECT table_name AS name FROM information_schema.tables "
            "WHERE table_schema = 'public' ORDER BY table_name"
        )

    def describe_table_statement(self, table_name: str) -> str:
        return f"""
            SELECT
                c.column_name AS name,
                c.data_type AS type,
                CASE WHEN c.is_nullable = 'NO' THEN 1 ELSE 0 END AS notnull,
                CASE WHEN pk.constraint_name IS NOT NULL THEN 1 ELSE 0 END AS pk,
                c.column_default AS dflt_value,
                pgd.description AS comment
            FROM information_schema.columns c
            LEFT JOIN information_schema.key_column_usage kcu
                ON c.table_schema = kcu.table_schema
                AND c.table_name = kcu.table_name
                AND c.column_name = kcu.column_name
            LEFT JOIN information_schema.table_constraints pk
                ON kcu.constraint_name = pk.constraint_name
                AND kcu.table_schema = pk.table_schema
                AND pk.constraint_type = 'PRIMARY KEY'
            LEFT JOIN pg_catalog.pg_namespace pgn
                ON pgn.nspname = c.table_schema
            LEFT JOIN pg_catalog.pg_class pgc
                ON pgc.relname = c.table_name AND pgc.relnamespace = pgn.oid
            LEFT JOIN pg_catalog.pg_attribute pga
                ON pga.attrelid = pgc.oid AND pga.attname = c.column_name
            LEFT JOIN pg_catalog.pg_description pgd
                ON pgd.objoid = pgc.oid AND pgd.objsubid = pga.attnum
            WHERE c.table_name = {quote_literal(table_name)}
                AND c.table_schema = 'public'
            ORDER BY c.ordinal_position
        """
