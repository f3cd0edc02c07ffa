from __future__ import annotations

import logging
from typing import List

from adapters.db.base import DbAdapter, Row
from sqlgate.errors.exceptions import ValidationError

log = logging.getLogger(__name__)

INSIGHTS_TABLE = "mcp_insights"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {INSIGHTS_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    insight TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


class InsightStore:
    """Append-only memo of business insights, kept next to the data (SQLite only)."""

    def __init__(self, adapter: DbAdapter):
        self.adapter = adapter

    def _check_backend(self) -> None:
        if self.adapter.dialect != "sqlite":
            raise ValidationError("Insights are only supported on the SQLite backend")

    async def ensure_table(self) -> None:
        self._check_backend()
        await self.adapter.exec_batch(_CREATE_SQL)

    async def append(self, text: str) -> int:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Insight text must not be empty")
        await self.ensure_table()
        result = await self.adapter.execute(
            f"INSERT INTO {INSIGHTS_TABLE} (insight) VALUES (?)", [text]
        )
        log.info("Insight added", extra={"insight_id": result.last_insert_id})
        return result.last_insert_id

    async def list(self) -> List[Row]:
        self._check_backend()
        exists = await self.adapter.query_all(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            [INSIGHTS_TABLE],
        )
        if not exists:
            await self.ensure_table()
            return []
        return await self.adapter.query_all(
            f"SELECT * FROM {INSIGHTS_TABLE} ORDER BY created_at DESC, id DESC"
        )
