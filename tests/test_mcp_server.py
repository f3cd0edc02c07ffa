import asyncio
import json

import mcp.types as types

from adapters.db.sqlite_adapter import SQLiteAdapter
from sqlgate.dispatcher import Dispatcher
from sqlgate.formatting import error_response, success_response
from sqlgate.server import build_server, to_call_tool_result, to_mcp_tool
from sqlgate.tools import get_tool


def test_tool_conversion_keeps_annotations():
    tool = to_mcp_tool(get_tool("drop_table"))
    assert tool.name == "drop_table"
    assert tool.inputSchema["required"] == ["table_name"]
    assert tool.annotations.destructiveHint is True
    assert tool.annotations.readOnlyHint is False
    assert tool.outputSchema is None


def test_call_result_conversion():
    ok = to_call_tool_result(success_response({"affected_rows": 3}))
    assert ok.isError is False
    assert json.loads(ok.content[0].text) == {"affected_rows": 3}

    failed = to_call_tool_result(error_response("SQL Error: boom"))
    assert failed.isError is True
    assert json.loads(failed.content[0].text) == {"error": "SQL Error: boom"}


def test_server_routes_requests_to_the_dispatcher(db_path):
    async def scenario():
        dispatcher = Dispatcher(SQLiteAdapter(str(db_path)))
        await dispatcher.start()
        server = build_server(dispatcher, version="test")
        try:
            listed = await server.request_handlers[types.ListToolsRequest](
                types.ListToolsRequest(method="tools/list")
            )
            called = await server.request_handlers[types.CallToolRequest](
                types.CallToolRequest(
                    method="tools/call",
                    params=types.CallToolRequestParams(
                        name="drop_table", arguments={"table_name": "users"}
                    ),
                )
            )
            return listed.root, called.root
        finally:
            await dispatcher.aclose()

    listed, called = asyncio.run(scenario())
    assert len(listed.tools) == 10
    assert called.isError is False
    assert json.loads(called.content[0].text)["success"] is False
