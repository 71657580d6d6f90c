"""
JSON-RPC 2.0 over stdio: framing, handler registry and the server state machine.
"""

from __future__ import annotations

from .handlers import build_registry
from .registry import HandlerRegistry, ToolSpec
from .server import ProtocolServer, ServerState, run_stdio

__all__ = [
    "HandlerRegistry",
    "ProtocolServer",
    "ServerState",
    "ToolSpec",
    "build_registry",
    "run_stdio",
]
