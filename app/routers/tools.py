from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from app.dependencies import get_dispatcher, require_api_key
from app.schemas import ErrorResponse, ToolCallResponse, ToolListResponse
from sqlgate.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tools",
    dependencies=[Depends(require_api_key)],
    responses={503: {"model": ErrorResponse}},
)


@router.get("", response_model=ToolListResponse)
def list_tools(dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    return {"tools": [t.as_dict() for t in dispatcher.list_tools()]}


@router.post("/{name}", response_model=ToolCallResponse)
async def call_tool(
    name: str,
    arguments: Optional[Dict[str, Any]] = Body(default=None),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """
    Run one tool. Errors come back as an `isError` envelope with HTTP 200,
    exactly as an MCP client would see them.
    """
    response = await dispatcher.dispatch(name, arguments or {})
    logger.debug("Tool call finished", extra={"tool": name, "is_error": response.isError})
    return response.to_dict()
