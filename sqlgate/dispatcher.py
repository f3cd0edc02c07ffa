"""
Tool dispatcher.

Every call follows the same path:

1. look the tool up in the catalog (unknown -> UnknownCommandError)
2. check required arguments
3. check the statement class the tool is allowed to run
4. destructive tools: require confirm=true, else return a pending prompt
5. drop/describe: verify the table exists
6. run against the adapter and shape the result

Whatever goes wrong in 1-6 is rendered as an error envelope; `dispatch`
never raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from adapters.db.base import DbAdapter
from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from sqlgate import resources
from sqlgate.errors.exceptions import (
    AppError,
    TableNotFoundError,
    UnknownCommandError,
    ValidationError,
)
from sqlgate.formatting import (
    ToolResponse,
    error_response,
    success_response,
    text_response,
    to_csv,
)
from sqlgate.insights import InsightStore
from sqlgate.statements import is_alter_table, is_create_table, is_select, is_write
from sqlgate.tools import TOOLS, ToolDescriptor, get_tool

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationPending:
    """A destructive call made without confirm=true. Not an error."""

    message: str

    def as_payload(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


def _confirm_prompt(action: str) -> str:
    return f"Safety confirmation required. Set confirm=true to proceed with {action}."


CONFIRM_PROMPTS: Dict[str, str] = {
    "write_query": _confirm_prompt("executing the write query"),
    "create_table": _confirm_prompt("creating the table"),
    "alter_table": _confirm_prompt("altering the table"),
    "drop_table": _confirm_prompt("dropping the table"),
}

ERROR_PREFIXES: Dict[str, str] = {
    "read_query": "SQL Error: ",
    "write_query": "SQL Error: ",
    "create_table": "SQL Error: ",
    "alter_table": "SQL Error: ",
    "drop_table": "Error dropping table: ",
    "export_query": "Export Error: ",
    "list_tables": "Error listing tables: ",
    "describe_table": "Error describing table: ",
    "append_insight": "Failed to add insight: ",
    "list_insights": "Failed to list insights: ",
}

EXPORT_FORMATS = ("csv", "json")

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


def _str_arg(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value


def _confirmed(args: Mapping[str, Any]) -> bool:
    # strictly the boolean true; "true" or 1 do not count
    return args.get("confirm") is True


class Dispatcher:
    def __init__(self, adapter: DbAdapter, *, metrics: Optional[Metrics] = None):
        self.adapter = adapter
        self.metrics = metrics or NoOpMetrics()
        self.insights = InsightStore(adapter)
        self._handlers: Dict[str, Handler] = {
            "read_query": self._read_query,
            "write_query": self._write_query,
            "create_table": self._create_table,
            "alter_table": self._alter_table,
            "drop_table": self._drop_table,
            "export_query": self._export_query,
            "list_tables": self._list_tables,
            "describe_table": self._describe_table,
            "append_insight": self._append_insight,
            "list_insights": self._list_insights,
        }

    # --- lifecycle ---
    async def start(self) -> None:
        await self.adapter.init()

    async def aclose(self) -> None:
        await self.adapter.close()

    # --- catalog / resources ---
    def list_tools(self) -> List[ToolDescriptor]:
        return list(TOOLS.values())

    async def list_resources(self) -> List[Dict[str, str]]:
        return await resources.list_resources(self.adapter)

    async def read_resource(self, uri: str) -> str:
        return await resources.read_resource(self.adapter, uri)

    # --- dispatch ---
    async def dispatch(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> ToolResponse:
        t0 = time.perf_counter()
        tool = get_tool(name)
        if tool is None:
            log.warning("Unknown tool requested", extra={"tool": name})
            self.metrics.inc_tool_call(tool="unknown", outcome="error")
            return error_response(UnknownCommandError(f"Unknown tool: {name}"))

        args = dict(arguments or {})
        outcome = "ok"
        try:
            for key in tool.required:
                _str_arg(args, key)
            result = await self._handlers[name](args)
        except AppError as exc:
            outcome = "error"
            log.warning(
                "Tool %s failed: %s",
                name,
                exc,
                extra={"tool": name, "error_code": exc.code},
            )
            return error_response(ERROR_PREFIXES[name] + str(exc))
        except Exception as exc:
            outcome = "error"
            log.warning("Tool %s failed: %s", name, exc, extra={"tool": name}, exc_info=True)
            return error_response(ERROR_PREFIXES[name] + str(exc))
        finally:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            self.metrics.observe_tool_duration_ms(tool=name, dt_ms=dt_ms)
            if outcome == "error":
                self.metrics.inc_tool_call(tool=name, outcome="error")

        if isinstance(result, ConfirmationPending):
            log.info("Tool %s awaiting confirmation", name, extra={"tool": name})
            self.metrics.inc_tool_call(tool=name, outcome="pending")
            return success_response(result.as_payload())

        self.metrics.inc_tool_call(tool=name, outcome="ok")
        if isinstance(result, ToolResponse):
            return result
        return success_response(result)

    # --- handlers ---
    async def _read_query(self, args: Dict[str, Any]) -> Any:
        query = _str_arg(args, "query")
        if not is_select(query):
            raise ValidationError("Only SELECT queries are allowed with read_query")
        return await self.adapter.query_all(query)

    async def _write_query(self, args: Dict[str, Any]) -> Any:
        query = _str_arg(args, "query")
        if is_select(query):
            raise ValidationError("Use read_query for SELECT operations")
        if not is_write(query):
            raise ValidationError(
                "Only INSERT, UPDATE, DELETE or TRUNCATE operations are allowed with write_query"
            )
        if not _confirmed(args):
            return ConfirmationPending(CONFIRM_PROMPTS["write_query"])
        result = await self.adapter.execute(query)
        return {"affected_rows": result.changes}

    async def _create_table(self, args: Dict[str, Any]) -> Any:
        query = _str_arg(args, "query")
        if not is_create_table(query):
            raise ValidationError("Only CREATE TABLE statements are allowed")
        if not _confirmed(args):
            return ConfirmationPending(CONFIRM_PROMPTS["create_table"])
        await self.adapter.exec_batch(query)
        return {"success": True, "message": "Table created successfully"}

    async def _alter_table(self, args: Dict[str, Any]) -> Any:
        query = _str_arg(args, "query")
        if not is_alter_table(query):
            raise ValidationError("Only ALTER TABLE statements are allowed")
        if not _confirmed(args):
            return ConfirmationPending(CONFIRM_PROMPTS["alter_table"])
        await self.adapter.exec_batch(query)
        return {"success": True, "message": "Table altered successfully"}

    async def _drop_table(self, args: Dict[str, Any]) -> Any:
        table = _str_arg(args, "table_name")
        if not _confirmed(args):
            return ConfirmationPending(CONFIRM_PROMPTS["drop_table"])
        await self._require_table(table)
        await self.adapter.exec_batch(f"DROP TABLE {self.adapter.quote_identifier(table)}")
        log.info("Dropped table", extra={"table": table})
        return {"success": True, "message": f"Table '{table}' dropped successfully"}

    async def _export_query(self, args: Dict[str, Any]) -> Any:
        query = _str_arg(args, "query")
        fmt = _str_arg(args, "format").strip().lower()
        if not is_select(query):
            raise ValidationError("Only SELECT queries are allowed with export_query")
        if fmt not in EXPORT_FORMATS:
            raise ValidationError("Unsupported export format. Use 'csv' or 'json'")
        rows = await self.adapter.query_all(query)
        if fmt == "csv":
            return text_response(to_csv(rows))
        return rows

    async def _table_names(self) -> List[str]:
        rows = await self.adapter.query_all(self.adapter.list_tables_statement())
        return [row["name"] for row in rows]

    async def _require_table(self, table: str) -> None:
        if table not in await self._table_names():
            raise TableNotFoundError(f"Table '{table}' does not exist")

    async def _list_tables(self, args: Dict[str, Any]) -> Any:
        return await self._table_names()

    async def _describe_table(self, args: Dict[str, Any]) -> Any:
        table = _str_arg(args, "table_name")
        await self._require_table(table)
        rows = await self.adapter.query_all(self.adapter.describe_table_statement(table))
        return [
            {
                "name": row["name"],
                "type": row["type"],
                "notnull": bool(row.get("notnull")),
                "default_value": row.get("dflt_value"),
                "primary_key": bool(row.get("pk")),
                "comment": row.get("comment") or None,
            }
            for row in rows
        ]

    async def _append_insight(self, args: Dict[str, Any]) -> Any:
        # `confirm` is accepted but not required: appending is not destructive
        await self.insights.append(_str_arg(args, "insight"))
        return {"success": True, "message": "Insight added"}

    async def _list_insights(self, args: Dict[str, Any]) -> Any:
        return await self.insights.list()
