"""
JSON-RPC 2.0 server loop over stdio.

Lifecycle:

    AWAITING_INITIALIZE --initialize--> READY --shutdown--> SHUTTING_DOWN --exit--> EXITED

The initialize response is written and flushed before the follow-up
`server/ready` and `notifications/tools/list_changed` notifications, which
are emitted by an explicit step rather than left to event-loop scheduling.
Requests are handled one at a time, in arrival order.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from enum import Enum
from typing import Any, BinaryIO

from ..errors import CatalogError
from .protocol import (
    CATALOG_ERROR,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_NOT_INITIALIZED,
    MessageReader,
    MessageWriter,
    jsonrpc_error,
    jsonrpc_notification,
    jsonrpc_result,
)
from .registry import HandlerRegistry

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

SERVER_INSTRUCTIONS = (
    "Use initialize -> tools/list -> tools/call { name, arguments }. "
    "Read with instructions/list, instructions/get, instructions/search and instructions/diff. "
    "Mutations may be blocked until bootstrap/request and bootstrap/confirmFinalize complete; "
    "check bootstrap/status first."
)

# Largest single line accepted from stdin.
STREAM_LIMIT = 64 * 1024 * 1024

_PRE_INIT_METHODS = frozenset({"initialize", "ping"})
_IGNORED_NOTIFICATIONS = frozenset({"initialized", "notifications/initialized", "$/cancelRequest"})


class ServerState(str, Enum):
    AWAITING_INITIALIZE = "awaiting_initialize"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    EXITED = "exited"


def _as_tool_text(obj: Any) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(obj, ensure_ascii=False, indent=2)}]}


def negotiate_protocol_version(requested: Any) -> str:
    if isinstance(requested, str) and requested.strip() in SUPPORTED_PROTOCOL_VERSIONS:
        return requested.strip()
    return SUPPORTED_PROTOCOL_VERSIONS[0]


class ProtocolServer:
    """One client session: reads requests, dispatches through a registry, writes responses."""

    def __init__(
        self,
        registry: HandlerRegistry,
        output: BinaryIO,
        *,
        server_info: dict[str, Any] | None = None,
    ):
        self.registry = registry
        self.writer = MessageWriter(output)
        self.server_info = server_info or {"name": "instruction-catalog", "version": "0.0.0"}
        self.state = ServerState.AWAITING_INITIALIZE
        self.exit_code: int | None = None
        self.protocol_version: str | None = None

    async def serve(self, stream: asyncio.StreamReader) -> int:
        """Run until `exit` or end of input. Returns the process exit code."""
        reader = MessageReader(stream)
        self.writer.reader = reader
        while self.state is not ServerState.EXITED:
            raw = await reader.read()
            if raw is None:
                logger.debug("input closed")
                break
            await self.handle_raw(raw)
        return self.exit_code if self.exit_code is not None else 0

    async def handle_raw(self, raw: bytes) -> None:
        try:
            message = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("unparseable message: %s", exc)
            self.writer.write(jsonrpc_error(PARSE_ERROR, "Parse error", request_id=None))
            return
        await self.handle_message(message)

    async def handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            self.writer.write(jsonrpc_error(INVALID_REQUEST, "Invalid Request", request_id=None))
            return

        request_id = message.get("id")
        method = message.get("method")

        if not isinstance(method, str):
            # Responses to anything we sent carry result/error and no method.
            if "result" in message or "error" in message:
                return
            self.writer.write(jsonrpc_error(INVALID_REQUEST, "Invalid Request", request_id=request_id))
            return

        # Notifications (no id) must not receive responses.
        if request_id is None:
            self._handle_notification(method)
            return

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            self.writer.write(jsonrpc_error(INVALID_PARAMS, "params must be an object", request_id=request_id))
            return

        if method == "initialize":
            response = self._initialize(params, request_id)
            self.writer.write(response)
            if "result" in response:
                self._notify_ready()
            return

        response = await self._dispatch(method, params, request_id)
        self.writer.write(response)

        if method == "exit":
            self._exit()

    def _handle_notification(self, method: str) -> None:
        if method == "exit":
            self._exit()
            return
        if method not in _IGNORED_NOTIFICATIONS:
            logger.debug("ignoring notification %s", method)

    def _exit(self) -> None:
        self.exit_code = 0 if self.state is ServerState.SHUTTING_DOWN else 1
        self.state = ServerState.EXITED

    def _initialize(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        if self.state is not ServerState.AWAITING_INITIALIZE:
            return jsonrpc_error(INVALID_REQUEST, "Server already initialized", request_id=request_id)
        self.protocol_version = negotiate_protocol_version(params.get("protocolVersion"))
        self.state = ServerState.READY
        client = params.get("clientInfo")
        if isinstance(client, dict):
            logger.info("initialize from %s %s", client.get("name"), client.get("version"))
        result = {
            "protocolVersion": self.protocol_version,
            "serverInfo": dict(self.server_info),
            "capabilities": {"tools": {"listChanged": True}},
            "instructions": SERVER_INSTRUCTIONS,
        }
        return jsonrpc_result(result, request_id=request_id)

    def _notify_ready(self) -> None:
        """Follow-up notifications, sent only after the initialize result is flushed."""
        self.writer.write(jsonrpc_notification("server/ready", {"version": self.server_info.get("version")}))
        self.writer.write(jsonrpc_notification("notifications/tools/list_changed"))

    async def _dispatch(self, method: str, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        if self.state is ServerState.AWAITING_INITIALIZE and method not in _PRE_INIT_METHODS:
            return jsonrpc_error(SERVER_NOT_INITIALIZED, "Server not initialized", request_id=request_id)
        if self.state is ServerState.SHUTTING_DOWN and method not in ("exit", "ping"):
            return jsonrpc_error(INVALID_REQUEST, "Server is shutting down", request_id=request_id)

        try:
            if method == "ping":
                return jsonrpc_result({}, request_id=request_id)

            if method == "shutdown":
                self.state = ServerState.SHUTTING_DOWN
                return jsonrpc_result(None, request_id=request_id)

            if method == "exit":
                return jsonrpc_result(None, request_id=request_id)

            if method == "tools/list":
                return jsonrpc_result({"tools": self.registry.tool_defs()}, request_id=request_id)

            if method == "tools/call":
                tool_name = params.get("name")
                arguments = params.get("arguments")
                if arguments is None:
                    arguments = {}
                if not isinstance(tool_name, str):
                    raise ValueError("tools/call requires name")
                if not isinstance(arguments, dict):
                    raise ValueError("tools/call arguments must be an object")
                if not self.registry.has(tool_name):
                    return jsonrpc_error(METHOD_NOT_FOUND, f"Unknown tool: {tool_name}", request_id=request_id)
                result = await self.registry.invoke(tool_name, arguments)
                return jsonrpc_result(_as_tool_text(result), request_id=request_id)

            if self.registry.has(method):
                result = await self.registry.invoke(method, params)
                return jsonrpc_result(result, request_id=request_id)

            return jsonrpc_error(METHOD_NOT_FOUND, f"Method not found: {method}", request_id=request_id)

        except ValueError as e:
            return jsonrpc_error(INVALID_PARAMS, str(e), request_id=request_id)
        except CatalogError as e:
            logger.warning("%s failed: %s", method, e)
            return jsonrpc_error(CATALOG_ERROR, str(e), request_id=request_id, data=e.to_dict())
        except Exception as e:
            logger.exception("unhandled error in %s", method)
            return jsonrpc_error(INTERNAL_ERROR, str(e), request_id=request_id)


async def _connect_stdin() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def run_stdio(registry: HandlerRegistry, *, server_info: dict[str, Any]) -> int:
    """Serve one session on this process's stdin/stdout."""
    server = ProtocolServer(registry, sys.stdout.buffer, server_info=server_info)
    stream = await _connect_stdin()
    return await server.serve(stream)
