from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from sqlgate.errors.codes import ErrorCode


@dataclass
class AppError(Exception):
    """Base class for every error raised above the driver boundary."""

    message: str
    http_status: int = 500
    code: str = ErrorCode.INTERNAL_ERROR.value
    retryable: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


# --- connection ---
@dataclass
class BackendConnectionError(AppError):
    """Connection or pool could not be established (never retried)."""

    http_status: int = 503
    code: str = ErrorCode.CONNECTION_ERROR.value


@dataclass
class ConnectTimeoutError(BackendConnectionError):
    """Waited too long for another caller's connection attempt."""

    code: str = ErrorCode.CONNECT_TIMEOUT.value
    retryable: bool = True


@dataclass
class TransientConnectionError(AppError):
    """Mid-operation network fault that survived the retry budget."""

    http_status: int = 503
    code: str = ErrorCode.TRANSIENT_CONNECTION.value
    retryable: bool = True


# --- query ---
@dataclass
class QueryError(AppError):
    http_status: int = 400
    code: str = ErrorCode.QUERY_ERROR.value


# --- request validation ---
@dataclass
class ValidationError(AppError):
    http_status: int = 422
    code: str = ErrorCode.VALIDATION_ERROR.value


@dataclass
class UnknownCommandError(ValidationError):
    http_status: int = 404
    code: str = ErrorCode.UNKNOWN_COMMAND.value


@dataclass
class UnsupportedBackendError(ValidationError):
    code: str = ErrorCode.UNSUPPORTED_BACKEND.value


# --- preconditions ---
@dataclass
class TableNotFoundError(AppError):
    http_status: int = 404
    code: str = ErrorCode.TABLE_NOT_FOUND.value
