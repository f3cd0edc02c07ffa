from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_dispatcher, require_api_key
from app.schemas import ErrorResponse, ReadResourceResponse, ResourceListResponse
from sqlgate.dispatcher import Dispatcher
from sqlgate.resources import MIME_TYPE

router = APIRouter(
    prefix="/resources",
    dependencies=[Depends(require_api_key)],
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)


@router.get("", response_model=ResourceListResponse)
async def list_resources(dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    return {"resources": await dispatcher.list_resources()}


@router.get("/read", response_model=ReadResourceResponse)
async def read_resource(
    uri: str = Query(..., description="Schema resource URI, e.g. sqlite:///data/app.db/users/schema"),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    text = await dispatcher.read_resource(uri)
    return {"contents": [{"uri": uri, "mimeType": MIME_TYPE, "text": text}]}
