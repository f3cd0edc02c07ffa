from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pymysql
from pymysql.constants import CLIENT
from pymysql.cursors import DictCursor

from adapters.db.base import AdapterMetadata, DbAdapter, Row, RunResult, quote_literal
from adapters.db.iam import RdsTokenSigner
from adapters.db.placeholders import to_format_markers
from sqlgate.errors.exceptions import BackendConnectionError, QueryError, ValidationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MysqlConfig:
    host: str
    database: str
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 3306
    # True, False, or a path to a CA bundle
    ssl: Union[bool, str, None] = None
    connection_timeout: int = 30000  # milliseconds
    aws_iam_auth: bool = False
    aws_region: Optional[str] = None


class MysqlAdapter(DbAdapter):
    name = "MySQL"
    dialect = "mysql"

    def __init__(
        self,
        config: MysqlConfig,
        *,
        connect: Optional[Callable[..., Any]] = None,
        signer: Optional[Callable[[str, int, str], str]] = None,
    ):
        if config.aws_iam_auth:
            if not config.aws_region:
                raise ValidationError("AWS IAM authentication requires an AWS region")
            if not config.user:
                raise ValidationError("AWS IAM authentication requires a user name")
        self.config = config
        self._connect = connect or pymysql.connect
        self._signer = signer
        self._conn: Any = None
        self._lock = asyncio.Lock()

    def _ssl_options(self) -> Optional[Dict[str, Any]]:
        ssl = self.config.ssl
        if isinstance(ssl, str) and ssl:
            return {"ca": ssl}
        if ssl is True or self.config.aws_iam_auth:
            # encrypted, certificate not verified against a local CA
            return {"check_hostname": False}
        return None

    def _connect_kwargs(self, password: Optional[str]) -> Dict[str, Any]:
        c = self.config
        kwargs: Dict[str, Any] = {
            "host": c.host,
            "port": c.port,
            "user": c.user,
            "password": password or "",
            "database": c.database,
            "connect_timeout": max(1, math.ceil(c.connection_timeout / 1000)),
            "autocommit": True,
            "cursorclass": DictCursor,
            "client_flag": CLIENT.MULTI_STATEMENTS,
        }
        ssl = self._ssl_options()
        if ssl is not None:
            kwargs["ssl"] = ssl
        return kwargs

    def _password(self) -> Optional[str]:
        c = self.config
        if not c.aws_iam_auth:
            return c.password
        log.info("Using AWS IAM authentication for user: %s", c.user)
        signer = self._signer or RdsTokenSigner(c.aws_region or "")
        return signer(c.host, c.port, c.user or "")

    async def init(self) -> None:
        c = self.config
        log.info("Connecting to MySQL: %s, Database: %s", c.host, c.database)
        log.debug("MySQL connection will use port: %s", c.port)
        try:
            password = await asyncio.to_thread(self._password)
            self._conn = await asyncio.to_thread(self._connect, **self._connect_kwargs(password))
        except BackendConnectionError:
            raise
        except Exception as exc:
            log.error("MySQL connection error: %s", exc)
            hint = " (check AWS credentials, IAM permissions and RDS configuration)" if c.aws_iam_auth else ""
            raise BackendConnectionError(f"Failed to connect to MySQL: {exc}{hint}") from exc
        log.info("MySQL connection established successfully")

    def _connection(self) -> Any:
        if self._conn is None:
            raise BackendConnectionError("Database not initialized")
        return self._conn

    @staticmethod
    def _prepare(sql: str, params: Sequence[Any]) -> tuple[str, Optional[tuple]]:
        # pymysql only %-interpolates when arguments are given
        if not params:
            return sql, None
        return to_format_markers(sql), tuple(params)

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        conn = self._connection()
        query, args = self._prepare(sql, params)

        def _fetch() -> List[Row]:
            with conn.cursor() as cur:
                cur.execute(query, args)
                return list(cur.fetchall() or [])

        async with self._lock:
            try:
                return await asyncio.to_thread(_fetch)
            except pymysql.MySQLError as exc:
                raise QueryError(f"MySQL query error: {exc}") from exc

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        conn = self._connection()
        query, args = self._prepare(sql, params)

        def _run() -> RunResult:
            with conn.cursor() as cur:
                cur.execute(query, args)
                return RunResult(
                    changes=max(cur.rowcount, 0), last_insert_id=cur.lastrowid or 0
                )

        async with self._lock:
            try:
                return await asyncio.to_thread(_run)
            except pymysql.MySQLError as exc:
                raise QueryError(f"MySQL query error: {exc}") from exc

    async def exec_batch(self, sql: str) -> None:
        conn = self._connection()

        def _run_all() -> None:
            with conn.cursor() as cur:
                cur.execute(sql)
                # later statements report their errors while advancing
                while cur.nextset():
                    pass

        async with self._lock:
            try:
                await asyncio.to_thread(_run_all)
            except pymysql.MySQLError as exc:
                raise QueryError(f"MySQL batch error: {exc}") from exc

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        async with self._lock:
            await asyncio.to_thread(conn.close)
        log.info("MySQL connection closed")

    def metadata(self) -> AdapterMetadata:
        return AdapterMetadata(
            name=self.name,
            type=self.dialect,
            server=self.config.host,
            database=self.config.database,
        )

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def list_tables_statement(self) -> str:
        return (
            "SELECT table_name AS name FROM information_schema.tables "
            f"WHERE table_schema = {quote_literal(self.config.database)} "
            "ORDER BY table_name"
        )

    def describe_table_statement(self, table_name: str) -> str:
        return f"""
            SELECT
                COLUMN_NAME AS name,
                DATA_TYPE AS type,
                CASE WHEN IS_NULLABLE = 'NO' THEN 1 ELSE 0 END AS notnull,
                CASE WHEN COLUMN_KEY = 'PRI' THEN 1 ELSE 0 END AS pk,
                COLUMN_DEFAULT AS dflt_value,
                COLUMN_COMMENT AS comment
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_NAME = {quote_literal(table_name)}
                AND TABLE_SCHEMA = {quote_literal(self.config.database)}
            ORDER BY ORDINAL_POSITION
        """
