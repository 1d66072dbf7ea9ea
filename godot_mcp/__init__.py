"""MCP server and CLI bridging AI assistants to the Godot editor."""

from .config import Settings
from .connection import (
    ClosedWhilePending,
    CommandTimeout,
    ConnectFailure,
    ConnectionState,
    GodotConnection,
    GodotError,
    RemoteError,
    SendFailure,
)

__version__ = "0.1.0"

__all__ = [
    "ClosedWhilePending",
    "CommandTimeout",
    "ConnectFailure",
    "ConnectionState",
    "GodotConnection",
    "GodotError",
    "RemoteError",
    "SendFailure",
    "Settings",
]
