"""
Static tool catalog: name -> ToolDescriptor.

Dispatch handlers live in `sqlgate.dispatcher`; this module only declares
what each tool accepts, what it returns and how it should be annotated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Dict[str, Any]
    output_schema: Optional[Dict[str, Any]] = None
    read_only: bool = False
    destructive: bool = False
    idempotent: bool = False
    requires_confirm: bool = False
    required: tuple[str, ...] = field(default=())

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "outputSchema": self.output_schema,
            "annotations": {
                "readOnlyHint": self.read_only,
                "destructiveHint": self.destructive,
                "idempotentHint": self.idempotent,
            },
        }


def _object(properties: Dict[str, Any], required: tuple[str, ...] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


_STR = {"type": "string"}
_CONFIRM = {
    "type": "boolean",
    "description": "Must be true to execute; otherwise a confirmation prompt is returned",
}
_ROWS = {"type": "array", "items": {"type": "object"}}
_PENDING_OR_DONE = _object(
    {"success": {"type": "boolean"}, "message": {"type": "string"}}, ("success", "message")
)


def _tool(
    name: str,
    description: str,
    properties: Dict[str, Any],
    required: tuple[str, ...],
    output_schema: Optional[Dict[str, Any]],
    *,
    read_only: bool = False,
    destructive: bool = False,
    requires_confirm: bool = False,
) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        description=description,
        input_schema=_object(properties, required),
        output_schema=output_schema,
        read_only=read_only,
        destructive=destructive,
        # every read-only tool may be repeated without side effects
        idempotent=read_only,
        requires_confirm=requires_confirm,
        required=required,
    )


_CATALOG = [
    _tool(
        "read_query",
        "Execute a SELECT query to read data from the database",
        {"query": _STR},
        ("query",),
        _ROWS,
        read_only=True,
    ),
    _tool(
        "write_query",
        "Execute an INSERT, UPDATE, DELETE or TRUNCATE query (requires confirm=true)",
        {"query": _STR, "confirm": _CONFIRM},
        ("query",),
        {
            "anyOf": [
                _object({"affected_rows": {"type": "integer"}}, ("affected_rows",)),
                _PENDING_OR_DONE,
            ]
        },
        destructive=True,
        requires_confirm=True,
    ),
    _tool(
        "create_table",
        "Create a new table in the database (requires confirm=true)",
        {"query": _STR, "confirm": _CONFIRM},
        ("query",),
        _PENDING_OR_DONE,
        destructive=True,
        requires_confirm=True,
    ),
    _tool(
        "alter_table",
        "Modify an existing table schema: add columns, rename tables, etc. (requires confirm=true)",
        {"query": _STR, "confirm": _CONFIRM},
        ("query",),
        _PENDING_OR_DONE,
        destructive=True,
        requires_confirm=True,
    ),
    _tool(
        "drop_table",
        "Remove a table from the database (requires confirm=true)",
        {"table_name": _STR, "confirm": _CONFIRM},
        ("table_name",),
        _PENDING_OR_DONE,
        destructive=True,
        requires_confirm=True,
    ),
    _tool(
        "export_query",
        "Export query results as CSV or JSON",
        {"query": _STR, "format": {"type": "string", "enum": ["csv", "json"]}},
        ("query", "format"),
        {"anyOf": [{"type": "string"}, _ROWS]},
        read_only=True,
    ),
    _tool(
        "list_tables",
        "Get a list of all tables in the database",
        {},
        (),
        {"type": "array", "items": {"type": "string"}},
        read_only=True,
    ),
    _tool(
        "describe_table",
        "View schema information for a specific table",
        {"table_name": _STR},
        ("table_name",),
        {
            "type": "array",
            "items": _object(
                {
                    "name": _STR,
                    "type": _STR,
                    "notnull": {"type": "boolean"},
                    "default_value": {},
                    "primary_key": {"type": "boolean"},
                    "comment": {"type": ["string", "null"]},
                }
            ),
        },
        read_only=True,
    ),
    _tool(
        "append_insight",
        "Add a business insight to the memo",
        {"insight": _STR, "confirm": {"type": "boolean"}},
        ("insight",),
        _PENDING_OR_DONE,
    ),
    _tool(
        "list_insights",
        "List all business insights in the memo",
        {},
        (),
        _ROWS,
        read_only=True,
    ),
]

TOOLS: Mapping[str, ToolDescriptor] = MappingProxyType({t.name: t for t in _CATALOG})


def get_tool(name: str) -> Optional[ToolDescriptor]:
    return TOOLS.get(name)
