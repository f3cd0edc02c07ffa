import asyncio
import datetime as dt
from decimal import Decimal

import pytest

from adapters.db.resilience import ConnectionState, RetryPolicy
from adapters.db.sqlserver_adapter import (
    SqlServerAdapter,
    SqlServerConfig,
    build_batch,
    sql_type_for,
)
from sqlgate.dispatcher import Dispatcher
from sqlgate.errors.exceptions import BackendConnectionError, QueryError, ValidationError


class FakeResult:
    def __init__(self, rows=None):
        self._rows = rows
        self.returns_rows = rows is not None

    def mappings(self):
        return list(self._rows or [])


class FakeConn:
    def __init__(self, engine, ping=False):
        self.engine = engine
        self.ping = ping

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def exec_driver_sql(self, sql, params=None):
        if self.ping:
            if self.engine.world.ping_errors:
                raise self.engine.world.ping_errors.pop(0)
            return FakeResult([{"": 1}])
        self.engine.world.executed.append((sql, params))
        outcome = self.engine.world.script.pop(0) if self.engine.world.script else None
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResult(outcome)


class FakeEngine:
    def __init__(self, world, url, kwargs):
        self.world = world
        self.url = url
        self.kwargs = kwargs
        self.disposed = False

    def connect(self):
        return FakeConn(self, ping=True)

    def begin(self):
        return FakeConn(self)

    def dispose(self):
        self.disposed = True


class FakeWorld:
    """Everything the fake engines share: scripted outcomes and call records."""

    def __init__(self, script=None, ping_errors=None):
        self.script = list(script or [])
        self.ping_errors = list(ping_errors or [])
        self.executed = []
        self.engines = []
        self.on_disconnect = None
        self.sleeps = []

    def engine_factory(self, url, *, on_disconnect, **kwargs):
        self.on_disconnect = on_disconnect
        engine = FakeEngine(self, url, kwargs)
        self.engines.append(engine)
        return engine

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


def make_adapter(world, metrics=None, **config):
    cfg = SqlServerConfig(server="sql.local", database="erp", user="sa", password="pw", **config)
    return SqlServerAdapter(
        cfg,
        retry_policy=RetryPolicy(),
        metrics=metrics,
        engine_factory=world.engine_factory,
        sleep=world.sleep,
    )


def test_sql_type_inference():
    assert sql_type_for(True) == "BIT"
    assert sql_type_for(7) == "BIGINT"
    assert sql_type_for(1.5) == "FLOAT"
    assert sql_type_for(Decimal("1.10")) == "DECIMAL(38, 10)"
    assert sql_type_for(b"\x00") == "VARBINARY(MAX)"
    assert sql_type_for(dt.datetime(2024, 1, 1, 12)) == "DATETIME2"
    assert sql_type_for(dt.date(2024, 1, 1)) == "DATE"
    assert sql_type_for("x") == "NVARCHAR(MAX)"
    assert sql_type_for(None) == "NVARCHAR(MAX)"


def test_batch_declares_one_variable_per_marker():
    batch = build_batch("SELECT * FROM t WHERE id = ? AND name = ?", [1, "a"])
    assert batch == (
        "SET NOCOUNT ON;\n"
        "DECLARE @param0 BIGINT = ?;\n"
        "DECLARE @param1 NVARCHAR(MAX) = ?;\n"
        "SELECT * FROM t WHERE id = @param0 AND name = @param1;"
    )


def test_marker_count_must_match_values():
    with pytest.raises(ValidationError) as ei:
        build_batch("SELECT * FROM t WHERE a = ? AND b = ?", [1])
    assert str(ei.value) == "Statement has 2 parameter markers but 1 values were given"


def test_query_all_binds_params_through_declarations():
    world = FakeWorld(script=[[{"id": 1, "name": "a"}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        return await adapter.query_all("SELECT id, name FROM t WHERE id = ?", [1])

    assert asyncio.run(scenario()) == [{"id": 1, "name": "a"}]
    sql, params = world.executed[0]
    assert "DECLARE @param0 BIGINT = ?;" in sql
    assert sql.endswith("WHERE id = @param0;")
    assert params == (1,)


def test_query_without_params_is_sent_as_is():
    world = FakeWorld(script=[[{"n": 1}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        return await adapter.query_all("SELECT 1 AS n")

    asyncio.run(scenario())
    assert world.executed == [("SELECT 1 AS n", None)]


def test_insert_reads_scope_identity():
    world = FakeWorld(script=[[{"insertedId": 5}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        return await adapter.execute("INSERT INTO t (v) VALUES (?)", ["a"])

    result = asyncio.run(scenario())
    assert (result.changes, result.last_insert_id) == (1, 5)
    sql, _ = world.executed[0]
    assert "DECLARE @insertedId BIGINT = 0;" in sql
    assert "SELECT @insertedId = SCOPE_IDENTITY();" in sql
    assert sql.rstrip().endswith("SELECT @insertedId AS insertedId;")


def test_identity_beyond_32_bits_is_returned_intact():
    world = FakeWorld(script=[[{"insertedId": Decimal("3000000000")}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        return await adapter.execute("INSERT INTO big (v) VALUES (?)", [1])

    result = asyncio.run(scenario())
    assert result.last_insert_id == 3_000_000_000
    assert type(result.last_insert_id) is int
    assert result.changes == 1


def test_insert_without_identity_reports_zero_changes():
    world = FakeWorld(script=[[{"insertedId": None}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        return await adapter.execute("INSERT INTO t (v) VALUES ('a')")

    result = asyncio.run(scenario())
    assert (result.changes, result.last_insert_id) == (0, 0)


def test_update_and_delete_always_report_zero_changes():
    world = FakeWorld(script=[None, None])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        updated = await adapter.execute("UPDATE t SET v = ? WHERE id > ?", ["b", 0])
        deleted = await adapter.execute("DELETE FROM t")
        return updated, deleted

    updated, deleted = asyncio.run(scenario())
    assert updated.changes == 0
    assert deleted.changes == 0


def test_write_query_through_dispatcher_reports_zero_affected_rows():
    world = FakeWorld(script=[None])
    dispatcher = Dispatcher(make_adapter(world))

    async def scenario():
        await dispatcher.start()
        return await dispatcher.dispatch("write_query", {"query": "UPDATE t SET v = 1", "confirm": True})

    resp = asyncio.run(scenario())
    assert resp.isError is False
    assert resp.payload() == {"affected_rows": 0}


def test_connection_fault_rebuilds_pool_and_retries(metrics):
    world = FakeWorld(
        script=[OSError("[08S01] TCP Provider: Communication link failure"), [{"n": 1}]]
    )
    adapter = make_adapter(world, metrics=metrics)

    async def scenario():
        await adapter.init()
        return await adapter.query_all("SELECT 1 AS n")

    assert asyncio.run(scenario()) == [{"n": 1}]
    assert len(world.engines) == 2
    assert world.engines[0].disposed is True
    assert world.sleeps == [1.0]
    assert metrics.retries == ["sqlserver"]


def test_logic_error_is_not_retried():
    world = FakeWorld(script=[RuntimeError("Invalid object name 'nope'.")])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        await adapter.query_all("SELECT * FROM nope")

    with pytest.raises(QueryError) as ei:
        asyncio.run(scenario())
    assert str(ei.value) == "SQL Server query error: Invalid object name 'nope'."
    assert len(world.executed) == 1
    assert world.sleeps == []


def test_init_failure_is_connection_error(metrics):
    world = FakeWorld(ping_errors=[RuntimeError("Login failed for user 'sa'.")])
    adapter = make_adapter(world, metrics=metrics)

    with pytest.raises(BackendConnectionError) as ei:
        asyncio.run(adapter.init())
    assert "Login failed" in str(ei.value)
    assert metrics.failures == ["sqlserver"]
    assert adapter.supervisor.state is ConnectionState.DISCONNECTED


def test_pool_fault_notification_triggers_reconnect():
    world = FakeWorld(script=[[{"n": 1}]])
    adapter = make_adapter(world)

    async def scenario():
        await adapter.init()
        world.on_disconnect(OSError("connection closed by server"))
        assert adapter.supervisor.state is ConnectionState.DISCONNECTED
        return await adapter.query_all("SELECT 1 AS n")

    assert asyncio.run(scenario()) == [{"n": 1}]
    assert len(world.engines) == 2


def test_engine_receives_pool_settings():
    world = FakeWorld()
    adapter = make_adapter(world, pool_size=3, max_overflow=4)
    asyncio.run(adapter.init())
    kwargs = world.engines[0].kwargs
    assert kwargs["pool_size"] == 3
    assert kwargs["max_overflow"] == 4
    assert kwargs["connect_args"] == {"timeout": 30}
    assert world.engines[0].url.drivername == "mssql+pyodbc"


def test_odbc_connection_string():
    with_login = make_adapter(FakeWorld(), port=1444).odbc_connection_string()
    assert "DRIVER={ODBC Driver 18 for SQL Server}" in with_login
    assert "SERVER=sql.local,1444" in with_login
    assert "UID=sa;PWD=pw" in with_login
    assert "TrustServerCertificate=yes" in with_login

    integrated = SqlServerAdapter(SqlServerConfig(server="s", database="d")).odbc_connection_string()
    assert "Trusted_Connection=yes" in integrated
    assert "UID=" not in integrated

    tricky = SqlServerAdapter(
        SqlServerConfig(server="s", database="d", user="u", password="p;w}d")
    ).odbc_connection_string()
    assert "PWD={p;w}}d}" in tricky


def test_close_is_idempotent():
    world = FakeWorld()
    adapter = make_adapter(world)

    async def scenario():
        await adapter.close()
        await adapter.init()
        await adapter.close()
        await adapter.close()

    asyncio.run(scenario())
    assert world.engines[0].disposed is True


def test_introspection_statements():
    adapter = make_adapter(FakeWorld())
    assert "TABLE_TYPE = 'BASE TABLE'" in adapter.list_tables_statement()
    describe = adapter.describe_table_statement("orders")
    assert "c.TABLE_NAME = 'orders'" in describe
    assert "MS_Description" in describe
    assert adapter.quote_identifier("a]b") == "[a]]b]"
    assert adapter.metadata().as_dict() == {
        "name": "SQL Server",
        "type": "sqlserver",
        "server": "sql.local",
        "database": "erp",
    }
