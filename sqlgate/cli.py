"""
Command-line entry point (`sqlgate`).

    sqlgate data/app.db
    sqlgate --sqlserver --server S --database D [--user U --password P --port N]
    sqlgate --postgresql --host H --database D [--user U --password P --port N --ssl true]
    sqlgate --mysql --host H --database D [--ssl true|false|/path/ca.pem]
    sqlgate --mysql --aws-iam-auth --host H --database D --user U --aws-region R

Flags override SQLGATE_* environment variables (and .env).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, Optional, Sequence

from app.bootstrap import build_dispatcher, load_environment
from app.settings import Settings, get_settings
from sqlgate.errors.exceptions import AppError, BackendConnectionError, ValidationError
from sqlgate.server import serve_stdio

log = logging.getLogger("sqlgate")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    # stdout is reserved for the MCP protocol
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlgate",
        description="SQL tool server for SQLite, SQL Server, PostgreSQL and MySQL",
    )
    parser.add_argument("database_path", nargs="?", help="SQLite database file")

    engine = parser.add_mutually_exclusive_group()
    engine.add_argument("--sqlserver", action="store_true", help="Connect to SQL Server")
    engine.add_argument(
        "--postgresql", "--postgres", dest="postgresql", action="store_true", help="Connect to PostgreSQL"
    )
    engine.add_argument("--mysql", action="store_true", help="Connect to MySQL")

    conn = parser.add_argument_group("connection")
    conn.add_argument("--server", help="SQL Server host name")
    conn.add_argument("--host", help="PostgreSQL / MySQL host name")
    conn.add_argument("--database", help="Database name")
    conn.add_argument("--user")
    conn.add_argument("--password")
    conn.add_argument("--port", help="TCP port (engine default when omitted)")
    conn.add_argument("--ssl", help="true / false; for MySQL also a CA bundle path")
    conn.add_argument("--connection-timeout", help="Connect timeout in milliseconds")
    conn.add_argument("--aws-iam-auth", action="store_true", default=None, help="MySQL: RDS IAM token auth")
    conn.add_argument("--aws-region", help="AWS region for IAM auth")

    serve = parser.add_argument_group("transport")
    serve.add_argument("--transport", choices=["stdio", "http"])
    serve.add_argument("--http-host")
    serve.add_argument("--http-port")
    serve.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return parser


def _int_arg(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {raw!r}") from None


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    if args.sqlserver:
        db_type: Optional[str] = "sqlserver"
    elif args.postgresql:
        db_type = "postgresql"
    elif args.mysql:
        db_type = "mysql"
    elif args.database_path:
        db_type = "sqlite"
    else:
        db_type = None

    return {
        "db_type": db_type,
        "db_path": args.database_path,
        "db_server": args.server,
        "db_host": args.host,
        "db_name": args.database,
        "db_user": args.user,
        "db_password": args.password,
        "db_port": _int_arg("--port", args.port),
        "db_ssl": args.ssl,
        "db_connection_timeout": _int_arg("--connection-timeout", args.connection_timeout),
        "aws_iam_auth": args.aws_iam_auth,
        "aws_region": args.aws_region,
        "transport": args.transport,
        "http_host": args.http_host,
        "http_port": _int_arg("--http-port", args.http_port),
        "log_level": args.log_level,
    }


def resolve_settings(argv: Optional[Sequence[str]] = None, base: Optional[Settings] = None) -> Settings:
    args = build_parser().parse_args(argv)
    settings = (base or get_settings()).with_overrides(**overrides_from_args(args))
    return settings.validate()


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_environment()
    try:
        settings = resolve_settings(argv)
    except AppError as exc:
        configure_logging()
        log.error("%s", exc)
        build_parser().print_usage(sys.stderr)
        return 1

    configure_logging(settings.log_level)

    if settings.transport == "http":
        from app.main import run_http

        run_http(settings)
        return 0

    try:
        dispatcher = build_dispatcher(settings)
        asyncio.run(serve_stdio(dispatcher, version=settings.app_version))
    except BackendConnectionError as exc:
        log.error("Failed to initialize database: %s", exc)
        return 1
    except AppError as exc:
        log.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
