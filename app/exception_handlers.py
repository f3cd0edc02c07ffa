from __future__ import annotations

import logging
import uuid
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from sqlgate.errors.exceptions import AppError

log = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers for the FastAPI application."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        extra: Dict[str, Any] = exc.extra or {}

        log.warning(
            "Request failed: %s",
            exc.message,
            extra={"error_code": exc.code, "request_id": request_id},
        )
        payload = {
            "error": {
                "code": exc.code,
                "message": exc.message,
                "retryable": bool(exc.retryable),
                "request_id": request_id,
                "extra": extra,
            }
        }

        headers = {"X-Request-ID": request_id}
        if exc.retryable:
            headers["Retry-After"] = "2"

        return JSONResponse(status_code=exc.http_status, content=payload, headers=headers)

    @app.exception_handler(HTTPException)
    async def http_exception_to_error_contract(request: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            return JSONResponse(status_code=exc.status_code, content=exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
