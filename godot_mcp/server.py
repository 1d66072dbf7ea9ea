#!/usr/bin/env python3
"""Godot MCP Server.

A single MCP server that exposes editor, runtime, debugger and asset tools
plus read-only project resources, all backed by one WebSocket connection to
the Godot editor plugin.

Run with: godot-mcp-server
Or configure as an MCP server:
{
    "mcpServers": {
        "godot": {
            "command": "python",
            "args": ["-m", "godot_mcp"],
            "env": {"GODOT_MCP_URL": "ws://127.0.0.1:9080"}
        }
    }
}
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from .asset_tools import register_asset_tools
from .config import Settings
from .connection import GodotConnection, GodotError
from .debugger_tools import register_debugger_tools
from .editor_tools import register_editor_tools
from .logging_config import configure_logging
from .resources import register_resources
from .runtime_tools import register_runtime_tools

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "You have access to tools and resources for controlling the Godot game engine "
    "through the Godot MCP editor plugin.\n\n"
    "Editor tools control the Godot Editor: running editor scripts, reloading the "
    "project or a scene, inspecting the edited scene tree and reading the Output, "
    "Errors, Stack Trace and Stack Frames panels. Runtime tools work on the running "
    "game through the remote debugger: the live scene tree, expression evaluation "
    "and simulated input (actions, mouse, keyboard, sequences). Debugger tools set "
    "breakpoints, control execution and read the call stack.\n\n"
    "Resources (godot://...) give read-only views of scenes, scripts, assets, the "
    "debug log and debugger state.\n\n"
    "If a tool reports it cannot connect, make sure the Godot editor is open with "
    "the MCP plugin enabled; the server reconnects on the next command."
)


async def _initial_connect(godot: GodotConnection) -> None:
    try:
        await godot.connect()
        logger.info("Successfully connected to Godot WebSocket server")
    except GodotError as e:
        logger.warning("Could not connect to Godot: %s", e)
        logger.warning("Will retry connection when commands are executed")


def create_server(godot: GodotConnection) -> FastMCP:
    """Build the MCP server with every tool group and resource bound to *godot*."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        connect_task = asyncio.get_running_loop().create_task(_initial_connect(godot))
        try:
            yield
        finally:
            logger.info("Shutting down Godot MCP server...")
            if not connect_task.done():
                connect_task.cancel()
            await godot.disconnect()

    mcp = FastMCP("godot-mcp", instructions=INSTRUCTIONS, lifespan=lifespan)

    # Register all tools
    register_editor_tools(mcp, godot)
    register_runtime_tools(mcp, godot)
    register_debugger_tools(mcp, godot)
    register_asset_tools(mcp, godot)
    register_resources(mcp, godot)
    return mcp


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="godot-mcp-server",
        description="MCP server bridging AI assistants to the Godot editor over WebSocket.",
    )
    parser.add_argument("--url", help="Godot WebSocket URL (env GODOT_MCP_URL)")
    parser.add_argument("--timeout", type=float, help="Per-command timeout in seconds (env GODOT_MCP_TIMEOUT)")
    parser.add_argument("--max-retries", type=int, help="Connect retries after the first attempt (env GODOT_MCP_MAX_RETRIES)")
    parser.add_argument("--retry-delay", type=float, help="Seconds between connect attempts (env GODOT_MCP_RETRY_DELAY)")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (env GODOT_MCP_LOG_LEVEL)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}") from e
    settings = settings.override(
        url=args.url,
        timeout=args.timeout,
        max_retries=args.max_retries,
        retry_delay=args.retry_delay,
        log_level=args.log_level,
    )
    configure_logging(settings.log_level)
    logger.info("Starting Godot MCP server (Godot at %s)", settings.url)

    mcp = create_server(settings.connection())
    mcp.run()


if __name__ == "__main__":
    main()
