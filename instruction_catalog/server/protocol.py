"""
JSON-RPC message helpers and stdio framing.

Clients vary on stdio framing. Most send newline-delimited JSON, some use
LSP-style Content-Length headers. The reader detects the framing from the
first message of the session and the writer answers in the same framing.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, BinaryIO

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_NOT_INITIALIZED = -32002
CATALOG_ERROR = -32000


def jsonrpc_error(code: int, message: str, *, request_id: Any, data: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def jsonrpc_result(result: Any, *, request_id: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


class Framing(str, Enum):
    LINE = "line"
    CONTENT_LENGTH = "content-length"


class MessageReader:
    """Reads one raw message body at a time from an asyncio stream."""

    def __init__(self, stream: asyncio.StreamReader):
        self.stream = stream
        self.framing: Framing | None = None

    async def read(self) -> bytes | None:
        """Next message body, or None at end of input. Blank lines are skipped."""
        while True:
            first = await self.stream.readline()
            if not first:
                return None
            if not first.strip():
                continue

            if first.lower().startswith(b"content-length:"):
                if self.framing is None:
                    self.framing = Framing.CONTENT_LENGTH
                headers: dict[str, str] = {}
                line = first
                while line and line.strip():
                    try:
                        k, v = line.decode("ascii", errors="ignore").split(":", 1)
                        headers[k.strip().lower()] = v.strip()
                    except ValueError:
                        pass
                    line = await self.stream.readline()
                try:
                    length = int(headers.get("content-length", "0"))
                except ValueError:
                    length = 0
                if length <= 0:
                    return b""
                try:
                    return await self.stream.readexactly(length)
                except asyncio.IncompleteReadError:
                    return None

            if self.framing is None:
                self.framing = Framing.LINE
            return first.strip()


class MessageWriter:
    """Writes and flushes one message per call, in the session's framing."""

    def __init__(self, stream: BinaryIO, reader: MessageReader | None = None):
        self.stream = stream
        self.reader = reader

    @property
    def framing(self) -> Framing:
        if self.reader is not None and self.reader.framing is not None:
            return self.reader.framing
        return Framing.LINE

    def write(self, message: dict[str, Any]) -> None:
        body = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        if self.framing is Framing.CONTENT_LENGTH:
            self.stream.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii"))
            self.stream.write(body)
        else:
            self.stream.write(body + b"\n")
        self.stream.flush()
