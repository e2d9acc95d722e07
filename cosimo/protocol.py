"""
JSON-RPC protocol layer for Cosimo MCP Server.

One method table (McpProtocol) shared by both transports. The line
transport below reads one JSON-RPC message per line and writes at most one
response line; the session transport lives in sessions.py / web.py.

Tool-level failures come back as successful JSON-RPC responses whose
result carries ``isError: true``; only malformed envelopes and unknown
methods produce JSON-RPC errors.
"""

import json
import sys
from collections.abc import AsyncIterable, Awaitable, Callable
from io import TextIOWrapper
from typing import Any, BinaryIO

import anyio
import structlog
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallToolResult,
    TextContent,
)

from .config import Settings, settings
from .models import Identity
from .tools import ToolDispatcher, tool_catalog
from .utils import canonical_json

logger = structlog.get_logger(__name__)

JSONRPC_VERSION = "2.0"


def success_response(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}


class McpProtocol:
    """MCP method table: initialize, notifications, ping, tools/list, tools/call."""

    def __init__(self, dispatcher: ToolDispatcher, config: Settings = settings):
        self.dispatcher = dispatcher
        self.config = config

    def server_info(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.config.protocol_version,
            "serverInfo": {"name": self.config.server_name, "version": self.config.server_version},
            "capabilities": {"tools": {}},
        }

    async def handle(self, message: Any, identity: Identity) -> dict[str, Any] | None:
        """Handle one decoded JSON-RPC message. Returns None for notifications."""
        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        if method == "initialize":
            return success_response(request_id, self.server_info())

        elif isinstance(method, str) and method.startswith("notifications/"):
            return None

        elif method == "ping":
            return success_response(request_id, {})

        elif method == "tools/list":
            return success_response(request_id, {"tools": tool_catalog()})

        elif method == "tools/call":
            result = await self._call_tool(params.get("name"), params.get("arguments"), identity)
            return success_response(request_id, result.model_dump(by_alias=True, exclude_none=True))

        if "id" not in message:
            # Notification for a method we do not know: nothing to answer
            return None
        return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _call_tool(self, name: Any, arguments: Any, identity: Identity) -> CallToolResult:
        try:
            return await self.dispatcher.call_tool(name, arguments or {}, identity)
        except Exception as e:
            # Unexpected failures must not end the session or the stdio loop
            logger.exception("tool_call_crashed", tool=name, user_id=identity.user_id)
            return CallToolResult(content=[TextContent(type="text", text=f"Error: {e}")], isError=True)

    async def handle_line(self, line: str, identity: Identity) -> str | None:
        """Handle one line of input. Returns the response line, if any."""
        try:
            message = json.loads(line)
        except (ValueError, RecursionError):
            return canonical_json(error_response(None, PARSE_ERROR, "Parse error"))

        response = await self.handle(message, identity)
        if response is None:
            return None
        return canonical_json(response)


# ============== Line transport ==============

def open_text_stream(binary: BinaryIO) -> anyio.AsyncFile[str]:
    """Wrap a binary stream for UTF-8 line I/O.

    Undecodable bytes are replaced, so a garbled line reaches handle_line
    and is answered with a parse error instead of ending the loop.
    """
    return anyio.wrap_file(TextIOWrapper(binary, encoding="utf-8", errors="replace"))


async def serve_lines(
    protocol: McpProtocol,
    identity: Identity,
    lines: AsyncIterable[str],
    write: Callable[[str], Awaitable[None]],
) -> None:
    """Serve requests from an async line source until it is exhausted.

    Requests are handled in order; a request in flight when the source ends
    finishes before this returns. No single line can end the loop.
    """
    async for line in lines:
        if not line.strip():
            continue
        try:
            reply = await protocol.handle_line(line, identity)
        except Exception:
            logger.exception("line_handling_failed", user_id=identity.user_id)
            reply = canonical_json(error_response(None, INTERNAL_ERROR, "Internal error"))
        if reply is not None:
            await write(reply + "\n")
    logger.info("line_transport_closed", user_id=identity.user_id)


async def run_stdio(protocol: McpProtocol, identity: Identity) -> None:
    """Serve the line transport on this process's stdin/stdout."""
    stdin = open_text_stream(sys.stdin.buffer)
    stdout = open_text_stream(sys.stdout.buffer)

    async def write(text: str) -> None:
        await stdout.write(text)
        await stdout.flush()

    await serve_lines(protocol, identity, stdin, write)
