"""
Read-only schema resources: one synthetic URI per table.

    sqlite:///abs/path/app.db/users/schema
    postgresql://db.internal/shop/orders/schema
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import quote, unquote

from adapters.db.base import AdapterMetadata, DbAdapter
from sqlgate.errors.exceptions import ValidationError
from sqlgate.formatting import to_json

log = logging.getLogger(__name__)

SCHEMA_PATH = "schema"
MIME_TYPE = "application/json"


def schema_base_uri(meta: AdapterMetadata) -> str:
    if meta.type == "sqlite" and meta.path:
        return f"sqlite://{meta.path}"
    if meta.server and meta.database:
        return f"{meta.type}://{meta.server}/{meta.database}"
    return "db:///database"


def table_from_uri(uri: str) -> str:
    parts = (uri or "").rstrip("/").split("/")
    if len(parts) < 2 or parts[-1] != SCHEMA_PATH or not parts[-2]:
        raise ValidationError("Invalid resource URI")
    return unquote(parts[-2])


async def list_resources(adapter: DbAdapter) -> List[Dict[str, str]]:
    base = schema_base_uri(adapter.metadata())
    rows = await adapter.query_all(adapter.list_tables_statement())
    return [
        {
            "uri": f"{base}/{quote(str(row['name']), safe='')}/{SCHEMA_PATH}",
            "name": f'"{row["name"]}" database schema',
            "mimeType": MIME_TYPE,
        }
        for row in rows
    ]


async def read_resource(adapter: DbAdapter, uri: str) -> str:
    """JSON text listing `{column_name, data_type}` for the table the URI names."""
    table = table_from_uri(uri)
    rows = await adapter.query_all(adapter.describe_table_statement(table))
    log.debug("Read schema resource", extra={"table": table, "columns": len(rows)})
    columns: List[Dict[str, Any]] = [
        {"column_name": row["name"], "data_type": row["type"]} for row in rows
    ]
    return to_json(columns)
