"""
Adapter factory: the single place that maps an engine tag to an adapter.
"""

from __future__ import annotations

import dataclasses
import os
from typing import Any, Mapping, Type, Union

from adapters.db.base import DbAdapter
from adapters.db.mysql_adapter import MysqlAdapter, MysqlConfig
from adapters.db.postgres_adapter import PostgresAdapter, PostgresConfig
from adapters.db.sqlite_adapter import SQLiteAdapter, SqliteConfig
from adapters.db.sqlserver_adapter import SqlServerAdapter, SqlServerConfig
from sqlgate.errors.exceptions import UnsupportedBackendError, ValidationError

AdapterConfig = Union[SqliteConfig, SqlServerConfig, PostgresConfig, MysqlConfig]

ENGINE_ALIASES: dict[str, str] = {
    "sqlite": "sqlite",
    "sqlserver": "sqlserver",
    "mssql": "sqlserver",
    "postgresql": "postgresql",
    "postgres": "postgresql",
    "mysql": "mysql",
}

CONFIG_TYPES: dict[str, Type[Any]] = {
    "sqlite": SqliteConfig,
    "sqlserver": SqlServerConfig,
    "postgresql": PostgresConfig,
    "mysql": MysqlConfig,
}

_INT_FIELDS = ("port", "connection_timeout", "pool_size", "max_overflow")


def normalize_engine(db_type: str) -> str:
    tag = ENGINE_ALIASES.get((db_type or "").strip().lower())
    if tag is None:
        raise UnsupportedBackendError(f"Unsupported database type: {db_type}")
    return tag


def build_config(db_type: str, connection_info: Any) -> AdapterConfig:
    """Coerce a config dataclass, a mapping or (for sqlite) a path into the engine's config."""
    tag = normalize_engine(db_type)
    config_type = CONFIG_TYPES[tag]

    if isinstance(connection_info, config_type):
        return connection_info
    if tag == "sqlite" and isinstance(connection_info, (str, os.PathLike)):
        connection_info = {"path": os.fspath(connection_info)}
    if not isinstance(connection_info, Mapping):
        raise ValidationError(
            f"Invalid connection info for {tag}: expected {config_type.__name__} or a mapping"
        )

    known = {f.name for f in dataclasses.fields(config_type)}
    unknown = sorted(set(connection_info) - known)
    if unknown:
        raise ValidationError(f"Unknown {tag} connection fields: {', '.join(unknown)}")

    values = {k: v for k, v in connection_info.items() if v is not None}
    for name in _INT_FIELDS:
        if name in values and not isinstance(values[name], int):
            try:
                values[name] = int(values[name])
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid {tag} {name}: {values[name]!r}") from None

    try:
        config = config_type(**values)
    except TypeError as exc:
        raise ValidationError(f"Invalid {tag} connection info: {exc}") from exc

    _require(tag, config)
    return config


def _require(tag: str, config: AdapterConfig) -> None:
    if isinstance(config, SqliteConfig):
        missing = [] if config.path else ["path"]
    elif isinstance(config, SqlServerConfig):
        missing = [n for n in ("server", "database") if not getattr(config, n)]
    else:
        missing = [n for n in ("host", "database") if not getattr(config, n)]
    if missing:
        raise ValidationError(f"Missing {tag} connection fields: {', '.join(missing)}")


def create_adapter(db_type: str, connection_info: Any, **options: Any) -> DbAdapter:
    """
    Build the adapter for `db_type`. The adapter is not initialized; call
    `await adapter.init()` before use. `options` go to the adapter constructor.
    """
    config = build_config(db_type, connection_info)
    if isinstance(config, SqliteConfig):
        return SQLiteAdapter(config.path, **options)
    if isinstance(config, SqlServerConfig):
        return SqlServerAdapter(config, **options)
    if isinstance(config, PostgresConfig):
        return PostgresAdapter(config, **options)
    return MysqlAdapter(config, **options)
