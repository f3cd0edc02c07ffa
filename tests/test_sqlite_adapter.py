import asyncio

import pytest

from adapters.db.base import RunResult
from adapters.db.sqlite_adapter import SQLiteAdapter
from sqlgate.errors.exceptions import BackendConnectionError, QueryError


def test_query_all_returns_dict_rows(db_path):
    async def scenario():
        adapter = SQLiteAdapter(str(db_path))
        await adapter.init()
        try:
            return await adapter.query_all("SELECT id, name FROM users WHERE id = ?", [1])
        finally:
            await adapter.close()

    assert asyncio.run(scenario()) == [{"id": 1, "name": "Alice"}]


def test_execute_reports_changes_and_last_insert_id(db_path):
    async def scenario():
        adapter = SQLiteAdapter(str(db_path))
        await adapter.init()
        try:
            inserted = await adapter.execute("INSERT INTO users(name) VALUES (?)", ["Carol"])
            updated = await adapter.execute("UPDATE users SET email = ?", ["x@example.com"])
            return inserted, updated
        finally:
            await adapter.close()

    inserted, updated = asyncio.run(scenario())
    assert inserted == RunResult(changes=1, last_insert_id=3)
    assert updated.changes == 3


def test_exec_batch_runs_several_statements(tmp_path):
    async def scenario():
        adapter = SQLiteAdapter(str(tmp_path / "batch.db"))
        await adapter.init()
        try:
            await adapter.exec_batch(
                "CREATE TABLE a(x INTEGER); CREATE TABLE b(y INTEGER); INSERT INTO a VALUES (1);"
            )
            return await adapter.query_all(adapter.list_tables_statement())
        finally:
            await adapter.close()

    assert [r["name"] for r in asyncio.run(scenario())] == ["a", "b"]


def test_bad_sql_raises_query_error_with_driver_message(db_path):
    async def scenario():
        adapter = SQLiteAdapter(str(db_path))
        await adapter.init()
        try:
            await adapter.query_all("SELECT * FROM missing_table")
        finally:
            await adapter.close()

    with pytest.raises(QueryError) as ei:
        asyncio.run(scenario())
    assert "no such table" in str(ei.value)


def test_operations_before_init_fail():
    adapter = SQLiteAdapter(":memory:")
    with pytest.raises(BackendConnectionError):
        asyncio.run(adapter.query_all("SELECT 1"))


def test_close_is_idempotent_and_safe_without_init(db_path):
    async def scenario():
        never_opened = SQLiteAdapter(str(db_path))
        await never_opened.close()

        adapter = SQLiteAdapter(str(db_path))
        await adapter.init()
        await adapter.close()
        await adapter.close()

    asyncio.run(scenario())


def test_init_creates_parent_directory(tmp_path):
    target = tmp_path / "nested" / "dir" / "app.db"

    async def scenario():
        adapter = SQLiteAdapter(str(target))
        await adapter.init()
        await adapter.close()

    asyncio.run(scenario())
    assert target.exists()


def test_describe_statement_uses_common_column_aliases(db_path):
    async def scenario():
        adapter = SQLiteAdapter(str(db_path))
        await adapter.init()
        try:
            return await adapter.query_all(adapter.describe_table_statement("users"))
        finally:
            await adapter.close()

    rows = asyncio.run(scenario())
    assert [r["name"] for r in rows] == ["id", "name", "email"]
    assert set(rows[0]) == {"name", "type", "notnull", "pk", "dflt_value", "comment"}
    assert rows[0]["pk"] == 1
    assert rows[1]["notnull"] == 1


def test_describe_statement_escapes_quotes():
    adapter = SQLiteAdapter(":memory:")
    assert "pragma_table_info('o''brien')" in adapter.describe_table_statement("o'brien")


def test_metadata_reports_path():
    meta = SQLiteAdapter("/tmp/x.db").metadata()
    assert meta.as_dict() == {"name": "SQLite", "type": "sqlite", "path": "/tmp/x.db"}
