from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine

from adapters.db.base import AdapterMetadata, DbAdapter, Row, RunResult, quote_literal
from adapters.db.placeholders import count_markers, translate
from adapters.db.resilience import ConnectionSupervisor, RetryPolicy
from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from sqlgate.errors.exceptions import AppError, QueryError, ValidationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SqlServerConfig:
    server: str
    database: str
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 1433
    trust_server_certificate: bool = True
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    connection_timeout: int = 30  # seconds
    pool_size: int = 5
    max_overflow: int = 10


EngineFactory = Callable[..., Engine]


def create_pooled_engine(
    url: URL, *, on_disconnect: Callable[[BaseException], None], **engine_kwargs: Any
) -> Engine:
    """Build a QueuePool engine whose disconnect faults are reported to `on_disconnect`."""
    engine = create_engine(url, **engine_kwargs)

    def _handle_error(context: Any) -> None:
        if context.is_disconnect:
            on_disconnect(context.original_exception)

    event.listen(engine, "handle_error", _handle_error)
    return engine


def sql_type_for(value: Any) -> str:
    """T-SQL type used to declare a bound parameter."""
    if isinstance(value, bool):
        return "BIT"
    if isinstance(value, int):
        return "BIGINT"
    if isinstance(value, float):
        return "FLOAT"
    if isinstance(value, Decimal):
        return "DECIMAL(38, 10)"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "VARBINARY(MAX)"
    if isinstance(value, dt.datetime):
        return "DATETIME2"
    if isinstance(value, dt.date):
        return "DATE"
    return "NVARCHAR(MAX)"


def _is_insert(sql: str) -> bool:
    return sql.strip().upper().startswith("INSERT")


def build_batch(sql: str, params: Sequence[Any], *, capture_identity: bool = False) -> str:
    """
    Wrap a statement so each `?` becomes a declared T-SQL variable.

    `SELECT * FROM t WHERE id = ?` with one int parameter becomes::

        SET NOCOUNT ON;
        DECLARE @param0 BIGINT = ?;
        SELECT * FROM t WHERE id = @param0;

    The driver still binds the values positionally, through the declarations.
    """
    statement = sql.strip().rstrip(";")
    if params:
        statement = translate(statement, "named")
        found = count_markers(statement, "named")
        if found != len(params):
            raise ValidationError(
                f"Statement has {found} parameter markers but {len(params)} values were given"
            )
    lines = ["SET NOCOUNT ON;"]
    if capture_identity:
        lines.append("DECLARE @insertedId BIGINT = 0;")
    lines.extend(f"DECLARE @param{i} {sql_type_for(v)} = ?;" for i, v in enumerate(params))
    lines.append(f"{statement};")
    if capture_identity:
        lines.append("SELECT @insertedId = SCOPE_IDENTITY();")
        lines.append("SELECT @insertedId AS insertedId;")
    return "\n".join(lines)


def _odbc_value(value: Any) -> str:
    text = str(value)
    if any(ch in text for ch in ";{}=") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


class SqlServerAdapter(DbAdapter):
    """
    SQL Server through a pooled SQLAlchemy engine over pyodbc.

    Every operation goes through a ConnectionSupervisor, which rebuilds the
    pool after network faults and retries the operation a bounded number of
    times. Logic errors (bad SQL, constraint violations) are never retried.
    """

    name = "SQL Server"
    dialect = "sqlserver"

    def __init__(
        self,
        config: SqlServerConfig,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        is_connection_error: Optional[Callable[[BaseException], bool]] = None,
        metrics: Optional[Metrics] = None,
        engine_factory: Optional[EngineFactory] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.config = config
        self.metrics = metrics or NoOpMetrics()
        self._engine_factory = engine_factory or create_pooled_engine
        supervisor_kwargs: dict[str, Any] = {}
        if sleep is not None:
            supervisor_kwargs["sleep"] = sleep
        self.supervisor: ConnectionSupervisor[Engine] = ConnectionSupervisor(
            open_handle=self._open_engine,
            close_handle=self._dispose_engine,
            policy=retry_policy,
            is_connection_error=is_connection_error,
            on_retry=self._on_retry,
            name=self.name,
            **supervisor_kwargs,
        )

    # --- connection lifecycle ---
    def odbc_connection_string(self) -> str:
        c = self.config
        parts = [
            ("DRIVER", "{" + c.odbc_driver + "}"),
            ("SERVER", f"{c.server},{c.port}"),
            ("DATABASE", _odbc_value(c.database)),
        ]
        if c.user and c.password:
            parts += [("UID", _odbc_value(c.user)), ("PWD", _odbc_value(c.password))]
        else:
            # no SQL login: integrated Windows authentication
            parts.append(("Trusted_Connection", "yes"))
        if c.trust_server_certificate:
            parts.append(("TrustServerCertificate", "yes"))
        return ";".join(f"{k}={v}" for k, v in parts)

    def _build_engine(self) -> Engine:
        url = URL.create("mssql+pyodbc", query={"odbc_connect": self.odbc_connection_string()})
        engine = self._engine_factory(
            url,
            on_disconnect=self.supervisor.mark_disconnected,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.connection_timeout,
            connect_args={"timeout": self.config.connection_timeout},
        )
        # fail fast on bad credentials or an unreachable server
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return engine

    async def _open_engine(self) -> Engine:
        c = self.config
        log.info("Connecting to SQL Server: %s, Database: %s", c.server, c.database)
        try:
            return await asyncio.to_thread(self._build_engine)
        except Exception:
            self.metrics.inc_connection_failure(backend=self.dialect)
            raise

    async def _dispose_engine(self, engine: Engine) -> None:
        await asyncio.to_thread(engine.dispose)

    def _on_retry(self, attempt: int, exc: BaseException) -> None:
        self.metrics.inc_connection_retry(backend=self.dialect)

    async def init(self) -> None:
        await self.supervisor.connect()

    async def close(self) -> None:
        await self.supervisor.close()

    # --- execution ---
    async def _run(self, batch: str, params: Sequence[Any]) -> List[Row]:
        args = tuple(params)

        def _execute(engine: Engine) -> List[Row]:
            with engine.begin() as conn:
                result = conn.exec_driver_sql(batch, args) if args else conn.exec_driver_sql(batch)
                if not result.returns_rows:
                    return []
                return [dict(row) for row in result.mappings()]

        async def _operation(engine: Engine) -> List[Row]:
            return await asyncio.to_thread(_execute, engine)

        try:
            return await self.supervisor.run(_operation)
        except AppError:
            raise
        except Exception as exc:
            raise QueryError(f"SQL Server query error: {exc}") from exc

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        batch = build_batch(sql, params) if params else sql
        return await self._run(batch, params)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        inserting = _is_insert(sql)
        rows = await self._run(build_batch(sql, params, capture_identity=inserting), params)
        if not inserting:
            # affected rows are not reported for UPDATE/DELETE
            return RunResult(changes=0)
        last_id = int((rows[0].get("insertedId") if rows else None) or 0)
        return RunResult(changes=1 if last_id > 0 else 0, last_insert_id=last_id)

    async def exec_batch(self, sql: str) -> None:
        await self._run(sql, ())

    # --- introspection ---
    def metadata(self) -> AdapterMetadata:
        return AdapterMetadata(
            name=self.name,
            type=self.dialect,
            server=self.config.server,
            database=self.config.database,
        )

    def quote_identifier(self, name: str) -> str:
        return "[" + name.replace("]", "]]") + "]"

    def list_tables_statement(self) -> str:
        return (
            "SELECT TABLE_NAME AS name FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME"
        )

    def describe_table_statement(self, table_name: str) -> str:
        return f"""
            SELECT
                c.COLUMN_NAME AS name,
                c.DATA_TYPE AS type,
                CASE WHEN c.IS_NULLABLE = 'NO' THEN 1 ELSE 0 END AS notnull,
                CASE WHEN pk.CONSTRAINT_TYPE = 'PRIMARY KEY' THEN 1 ELSE 0 END AS pk,
                c.COLUMN_DEFAULT AS dflt_value,
                CAST(ep.value AS NVARCHAR(MAX)) AS comment
            FROM INFORMATION_SCHEMA.COLUMNS c
            LEFT JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
                ON c.TABLE_NAME = kcu.TABLE_NAME
                AND c.TABLE_SCHEMA = kcu.TABLE_SCHEMA
                AND c.COLUMN_NAME = kcu.COLUMN_NAME
            LEFT JOIN INFORMATION_SCHEMA.TABLE_CONSTRAINTS pk
                ON kcu.CONSTRAINT_NAME = pk.CONSTRAINT_NAME
                AND pk.CONSTRAINT_TYPE = 'PRIMARY KEY'
            LEFT JOIN sys.extended_properties ep
                ON ep.major_id = OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME))
                AND ep.minor_id = COLUMNPROPERTY(ep.major_id, c.COLUMN_NAME, 'ColumnId')
                AND ep.class = 1
                AND ep.name = 'MS_Description'
            WHERE c.TABLE_NAME = {quote_literal(table_name)}
            ORDER BY c.ORDINAL_POSITION
        """
