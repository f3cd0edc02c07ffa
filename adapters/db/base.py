from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

Row = Dict[str, Any]


@dataclass(frozen=True)
class RunResult:
    """Normalized outcome of a data-modifying statement."""

    changes: int
    last_insert_id: int = 0


@dataclass(frozen=True)
class AdapterMetadata:
    name: str
    type: str
    path: Optional[str] = None
    server: Optional[str] = None
    database: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def quote_literal(value: str) -> str:
    """Single-quote a value for the introspection templates."""
    return "'" + value.replace("'", "''") + "'"


class DbAdapter(ABC):
    """
    Uniform query contract implemented once per backend engine.

    Callers always write `?` as the positional marker; each adapter rewrites
    it into its driver's native syntax before sending the statement.
    """

    name: str
    dialect: str

    @abstractmethod
    async def init(self) -> None:
        """Open the connection (or pool). Raises BackendConnectionError."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources. Safe when never initialized or already closed."""

    @abstractmethod
    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run a row-returning statement. Raises QueryError."""

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        """Run a data-modifying statement. Raises QueryError."""

    @abstractmethod
    async def exec_batch(self, sql: str) -> None:
        """Run one or more statements without parameter binding (DDL)."""

    @abstractmethod
    def metadata(self) -> AdapterMetadata: ...

    @abstractmethod
    def list_tables_statement(self) -> str: ...

    @abstractmethod
    def describe_table_statement(self, table_name: str) -> str: ...

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'
