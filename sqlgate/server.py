"""
MCP stdio transport.

stdout carries the protocol; all logging must go to stderr.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from sqlgate.dispatcher import Dispatcher
from sqlgate.formatting import ToolResponse
from sqlgate.resources import MIME_TYPE
from sqlgate.tools import ToolDescriptor

log = logging.getLogger(__name__)

SERVER_NAME = "sqlgate"


def to_mcp_tool(tool: ToolDescriptor) -> types.Tool:
    # output schemas stay in the catalog: results are text-only envelopes
    return types.Tool(
        name=tool.name,
        description=tool.description,
        inputSchema=tool.input_schema,
        annotations=types.ToolAnnotations(
            readOnlyHint=tool.read_only,
            destructiveHint=tool.destructive,
            idempotentHint=tool.idempotent,
        ),
    )


def to_call_tool_result(response: ToolResponse) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=c["text"]) for c in response.content],
        isError=response.isError,
    )


def build_server(dispatcher: Dispatcher, *, version: Optional[str] = None) -> Server:
    server: Server = Server(SERVER_NAME, version=version)

    @server.list_tools()
    async def _list_tools() -> List[types.Tool]:
        return [to_mcp_tool(t) for t in dispatcher.list_tools()]

    # the dispatcher validates arguments and renders its own error envelopes
    @server.call_tool(validate_input=False)
    async def _call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> types.CallToolResult:
        response = await dispatcher.dispatch(name, arguments or {})
        return to_call_tool_result(response)

    @server.list_resources()
    async def _list_resources() -> List[types.Resource]:
        return [
            types.Resource(uri=r["uri"], name=r["name"], mimeType=r["mimeType"])
            for r in await dispatcher.list_resources()
        ]

    @server.read_resource()
    async def _read_resource(uri: Any) -> Iterable[ReadResourceContents]:
        text = await dispatcher.read_resource(str(uri))
        return [ReadResourceContents(content=text, mime_type=MIME_TYPE)]

    return server


async def serve_stdio(dispatcher: Dispatcher, *, version: Optional[str] = None) -> None:
    """Initialize the adapter, serve MCP over stdio until EOF, then close."""
    await dispatcher.start()
    server = build_server(dispatcher, version=version)
    meta = dispatcher.adapter.metadata()
    log.info("Serving MCP over stdio", extra={"backend": meta.type})
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await dispatcher.aclose()
        log.info("MCP server stopped")
