from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from typing import Any, Optional, Tuple, Union

from adapters.db.factory import AdapterConfig, normalize_engine
from adapters.db.mysql_adapter import MysqlConfig
from adapters.db.postgres_adapter import PostgresConfig
from adapters.db.resilience import RetryPolicy
from adapters.db.sqlite_adapter import SqliteConfig
from adapters.db.sqlserver_adapter import SqlServerConfig
from sqlgate.errors.exceptions import ValidationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

TRANSPORTS = ("stdio", "http")


def parse_bool(raw: Optional[str]) -> Optional[bool]:
    """'true'/'false' (and the usual aliases) -> bool; blank -> None."""
    if raw is None or str(raw).strip() == "":
        return None
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"Invalid boolean value: {raw!r}")


def parse_ssl(raw: Optional[str]) -> Union[bool, str, None]:
    """MySQL ssl setting: a boolean flag, or anything else as a CA bundle path."""
    if raw is None or str(raw).strip() == "":
        return None
    text = str(raw).strip()
    if text.lower() in _TRUE | _FALSE:
        return text.lower() in _TRUE
    return text


@dataclass
class Settings:
    """
    Centralized application configuration.

    Values are loaded from environment variables via Settings.from_env();
    the CLI layers its flags on top with with_overrides().
    """

    # --- backend selection ---
    db_type: str = "sqlite"
    db_path: str = ""

    # --- server backends ---
    db_server: str = ""
    db_host: str = ""
    db_name: str = ""
    db_user: str = ""
    db_password: str = ""
    db_port: Optional[int] = None
    db_ssl: str = ""
    db_connection_timeout: Optional[int] = None  # milliseconds

    # --- MySQL on RDS ---
    aws_iam_auth: bool = False
    aws_region: str = ""

    # --- SQL Server ---
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    trust_server_certificate: bool = True
    max_retries: int = 2
    retry_backoff_sec: float = 1.0

    # --- transport ---
    transport: str = "stdio"
    http_host: str = "127.0.0.1"
    http_port: int = 8000

    # comma-separated; empty disables X-API-Key checks on the HTTP transport
    api_keys_raw: str = ""

    log_level: str = "INFO"
    app_version: str = "dev"

    @classmethod
    def from_env(cls) -> "Settings":
        def getenv_int(name: str, default: Optional[int]) -> Optional[int]:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValidationError(f"{name} must be an integer, got {raw!r}") from None

        def getenv_float(name: str, default: float) -> float:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValidationError(f"{name} must be a number, got {raw!r}") from None

        def getenv_bool(name: str, default: bool) -> bool:
            value = parse_bool(os.getenv(name))
            return default if value is None else value

        return cls(
            db_type=os.getenv("SQLGATE_DB_TYPE", cls.db_type),
            db_path=os.getenv("SQLGATE_DB_PATH", cls.db_path),
            db_server=os.getenv("SQLGATE_DB_SERVER", cls.db_server),
            db_host=os.getenv("SQLGATE_DB_HOST", cls.db_host),
            db_name=os.getenv("SQLGATE_DB_NAME", cls.db_name),
            db_user=os.getenv("SQLGATE_DB_USER", cls.db_user),
            db_password=os.getenv("SQLGATE_DB_PASSWORD", cls.db_password),
            db_port=getenv_int("SQLGATE_DB_PORT", None),
            db_ssl=os.getenv("SQLGATE_DB_SSL", cls.db_ssl),
            db_connection_timeout=getenv_int("SQLGATE_DB_CONNECTION_TIMEOUT", None),
            aws_iam_auth=getenv_bool("SQLGATE_AWS_IAM_AUTH", cls.aws_iam_auth),
            aws_region=os.getenv("SQLGATE_AWS_REGION", cls.aws_region),
            odbc_driver=os.getenv("SQLGATE_ODBC_DRIVER", cls.odbc_driver),
            trust_server_certificate=getenv_bool(
                "SQLGATE_TRUST_SERVER_CERTIFICATE", cls.trust_server_certificate
            ),
            max_retries=getenv_int("SQLGATE_MAX_RETRIES", cls.max_retries) or 0,
            retry_backoff_sec=getenv_float("SQLGATE_RETRY_BACKOFF_SEC", cls.retry_backoff_sec),
            transport=os.getenv("SQLGATE_TRANSPORT", cls.transport),
            http_host=os.getenv("SQLGATE_HTTP_HOST", cls.http_host),
            http_port=getenv_int("SQLGATE_HTTP_PORT", cls.http_port) or cls.http_port,
            api_keys_raw=os.getenv("API_KEYS", cls.api_keys_raw),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            app_version=os.getenv("APP_VERSION", cls.app_version),
        )

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Copy with every non-None override applied; unknown names are rejected."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    # --- derived values ---
    @property
    def engine(self) -> str:
        return normalize_engine(self.db_type)

    def validate(self) -> "Settings":
        engine = self.engine
        if engine == "sqlite":
            if not self.db_path:
                raise ValidationError("SQLite mode requires a database path")
        elif engine == "sqlserver":
            if not (self.db_server or self.db_host) or not self.db_name:
                raise ValidationError("SQL Server mode requires --server and --database")
        else:
            label = "PostgreSQL" if engine == "postgresql" else "MySQL"
            if not self.db_host or not self.db_name:
                raise ValidationError(f"{label} mode requires --host and --database")
            if engine == "mysql" and self.aws_iam_auth:
                if not self.db_user:
                    raise ValidationError("AWS IAM authentication requires --user")
                if not self.aws_region:
                    raise ValidationError("AWS IAM authentication requires --aws-region")
        if self.db_port is not None and not 0 < self.db_port < 65536:
            raise ValidationError(f"Invalid port: {self.db_port}")
        if self.transport not in TRANSPORTS:
            raise ValidationError(f"Unknown transport: {self.transport}")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, backoff_base=self.retry_backoff_sec)

    def adapter_config(self) -> Tuple[str, AdapterConfig]:
        engine = self.engine
        user = self.db_user or None
        password = self.db_password or None

        if engine == "sqlite":
            return engine, SqliteConfig(path=self.db_path)

        if engine == "sqlserver":
            timeout_sec = (
                max(1, math.ceil(self.db_connection_timeout / 1000))
                if self.db_connection_timeout
                else 30
            )
            return engine, SqlServerConfig(
                server=self.db_server or self.db_host,
                database=self.db_name,
                user=user,
                password=password,
                port=self.db_port or 1433,
                trust_server_certificate=self.trust_server_certificate,
                odbc_driver=self.odbc_driver,
                connection_timeout=timeout_sec,
            )

        if engine == "postgresql":
            return engine, PostgresConfig(
                host=self.db_host,
                database=self.db_name,
                user=user,
                password=password,
                port=self.db_port or 5432,
                ssl=parse_bool(self.db_ssl),
                connection_timeout=self.db_connection_timeout or 30000,
            )

        ssl = parse_ssl(self.db_ssl)
        if self.aws_iam_auth and not isinstance(ssl, str):
            # IAM tokens are only accepted over TLS
            ssl = True
        return engine, MysqlConfig(
            host=self.db_host,
            database=self.db_name,
            user=user,
            password=password,
            port=self.db_port or 3306,
            ssl=ssl,
            connection_timeout=self.db_connection_timeout or 30000,
            aws_iam_auth=self.aws_iam_auth,
            aws_region=self.aws_region or None,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
