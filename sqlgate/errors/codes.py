from enum import Enum


class ErrorCode(str, Enum):
    # --- Connection ---
    CONNECTION_ERROR = "connection_error"
    CONNECT_TIMEOUT = "connect_timeout"
    TRANSIENT_CONNECTION = "transient_connection"

    # --- Query ---
    QUERY_ERROR = "query_error"

    # --- Request validation ---
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_COMMAND = "unknown_command"
    UNSUPPORTED_BACKEND = "unsupported_backend"

    # --- Preconditions ---
    TABLE_NOT_FOUND = "table_not_found"

    # --- Internal ---
    INTERNAL_ERROR = "internal_error"
