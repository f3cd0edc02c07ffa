from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from sqlgate.dispatcher import Dispatcher
from sqlgate.errors.exceptions import BackendConnectionError

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_dispatcher(request: Request) -> Dispatcher:
    """The process-wide dispatcher, created by the app lifespan."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise BackendConnectionError("Database not initialized")
    return dispatcher


def require_api_key(request: Request, key: Optional[str] = Security(api_key_header)) -> None:
    """
    Simple API key check using the X-API-Key header.

    - Settings.api_keys_raw is a comma-separated list of keys.
    - If api_keys_raw is empty -> auth disabled (local mode).
    """
    settings = request.app.state.settings
    raw = settings.api_keys_raw or ""
    allowed = {k.strip() for k in raw.split(",") if k.strip()}
    if not allowed:
        return
    if not key or key not in allowed:
        raise HTTPException(status_code=401, detail="invalid API key")
