"""Command line client for the Godot MCP server.

Spawns the server over stdio (or talks to an in-process FastMCP instance),
lists tools, prints tool help, calls a tool with flags mapped to parameters,
and installs the editor addon into a Godot project.

Usage:
    godot-mcp --list-tools
    godot-mcp --help <tool>
    godot-mcp <tool> [--flag value ...] [--params-json JSON]
    godot-mcp install-addon <path-to-godot-project> [--source DIR]
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastmcp import Client, FastMCP
from fastmcp.client.transports import StdioTransport
from mcp.shared.exceptions import McpError

logger = logging.getLogger(__name__)

ADDON_NAME = "godot_mcp"
DEFAULT_SERVER_ARGS = ["-m", "godot_mcp"]

USAGE = """\
Usage:
  godot-mcp --list-tools
  godot-mcp --help <tool>
  godot-mcp <tool> [--flag value] [--params-json JSON]
  godot-mcp install-addon <path-to-godot-project> [--source DIR]

Common flags:
  --raw             Print raw JSON responses
  --verbose         Show progress logs and client diagnostics
  --timeout <ms>    Timeout for each request to the server
  --server-cmd      Override server executable (default: current python)
  --server-args     Override server args (default: -m godot_mcp)"""


class CliError(Exception):
    """A user-facing CLI failure; the message is printed as is."""


@dataclass
class CliArgs:
    action: str  # list | help | call | install
    tool_name: str | None = None
    raw: bool = False
    verbose: bool = False
    install_target: str | None = None
    addon_source: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    params_json: dict[str, Any] | None = None
    timeout_ms: float | None = None
    server_command: str = sys.executable
    server_args: list[str] = field(default_factory=lambda: list(DEFAULT_SERVER_ARGS))

    @property
    def arguments(self) -> dict[str, Any]:
        """Tool arguments; --params-json replaces individual flags."""
        return self.params_json if self.params_json is not None else self.params


# --- Argument parsing ---


def kebab_to_snake(value: str) -> str:
    return value.replace("-", "_")


def parse_value(value: str) -> Any:
    """Interpret a flag value as bool, number, JSON, or plain string."""
    if value == "true":
        return True
    if value == "false":
        return False
    if value.strip():
        try:
            return int(value)
        except ValueError:
            pass
        try:
            number = float(value)
        except ValueError:
            pass
        else:
            if math.isfinite(number):
                return number
    try:
        return json.loads(value, parse_constant=_reject_constant)
    except ValueError:
        return value


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not valid JSON for the MCP wire.
    raise ValueError(f"non-finite number {name}")


def _require_value(flag: str, value: str | None, what: str) -> str:
    if value is None:
        raise CliError(f"--{flag} requires {what}")
    return value


def parse_args(argv: list[str]) -> CliArgs:
    if not argv:
        raise CliError(USAGE)

    args = list(argv)
    first = args[0]
    if first == "--list-tools":
        parsed = CliArgs(action="list")
        args = args[1:]
    elif first == "install-addon":
        if len(args) < 2:
            raise CliError("Missing target path for install-addon")
        parsed = CliArgs(action="install", install_target=args[1])
        args = args[2:]
    elif first == "--help":
        if len(args) < 2:
            raise CliError("Missing tool name for --help")
        parsed = CliArgs(action="help", tool_name=args[1])
        args = args[2:]
    elif first.startswith("--"):
        raise CliError(f"Tool name is required\n\n{USAGE}")
    else:
        parsed = CliArgs(action="call", tool_name=first)
        args = args[1:]

    i = 0
    while i < len(args):
        current = args[i]
        i += 1
        if not current.startswith("--"):
            continue
        key = current[2:]
        nxt = args[i] if i < len(args) else None

        if key == "raw":
            parsed.raw = True
        elif key == "verbose":
            parsed.verbose = True
        elif key == "timeout":
            value = _require_value(key, nxt, "a value (ms)")
            try:
                parsed.timeout_ms = float(value)
            except ValueError:
                raise CliError(f"--timeout must be a number of milliseconds, got {value!r}") from None
            i += 1
        elif key == "params-json":
            value = _require_value(key, nxt, "a JSON object")
            try:
                payload = json.loads(value, parse_constant=_reject_constant)
            except ValueError as e:
                raise CliError(f"Invalid JSON for --params-json: {e}") from None
            if not isinstance(payload, dict):
                raise CliError("--params-json must be a JSON object")
            parsed.params_json = payload
            i += 1
        elif key == "server-cmd":
            parsed.server_command = _require_value(key, nxt, "a value")
            i += 1
        elif key == "server-args":
            value = _require_value(key, nxt, "a value")
            try:
                server_args = json.loads(value)
            except ValueError:
                server_args = value
            if isinstance(server_args, list):
                parsed.server_args = [str(arg) for arg in server_args]
            else:
                parsed.server_args = [str(server_args)]
            i += 1
        elif key == "source" and parsed.action == "install":
            parsed.addon_source = _require_value(key, nxt, "a directory")
            i += 1
        elif nxt is None or nxt.startswith("--"):
            # A flag with no value is a boolean switch.
            parsed.params[kebab_to_snake(key)] = True
        else:
            parsed.params[kebab_to_snake(key)] = parse_value(nxt)
            i += 1

    return parsed


# --- Output ---


def _colorize(code: str, text: str) -> str:
    return f"\033[{code}m{text}\033[0m" if sys.stdout.isatty() else text


def green(text: str) -> str:
    return _colorize("32", text)


def cyan(text: str) -> str:
    return _colorize("36", text)


def print_tool_list(tools: list[Any]) -> None:
    if not tools:
        print("No tools available")
        return
    width = min(max([len(t.name) for t in tools] + [len("Tool")]) + 2, 40)
    print(f"{cyan('Tool'.ljust(width))}Description")
    for tool in tools:
        description = (tool.description or "").strip().splitlines()
        print(f"{green(tool.name.ljust(width))}{description[0] if description else ''}")


def print_tool_help(tool: Any) -> None:
    print(f"Tool: {tool.name}")
    if tool.description:
        print(f"Description: {tool.description}")

    properties = (tool.inputSchema or {}).get("properties") or {}
    if not properties:
        print("Parameters: none")
        return
    required = set((tool.inputSchema or {}).get("required") or [])
    print("Parameters:")
    for name, prop in properties.items():
        prop_type = prop.get("type") or ("object" if "anyOf" in prop or "$ref" in prop else "unknown")
        marker = " (required)" if name in required else ""
        description = f" - {prop['description']}" if prop.get("description") else ""
        print(f"  --{name.replace('_', '-')} ({prop_type}){marker}{description}")


def print_content(result: Any, raw: bool) -> None:
    if raw:
        print(json.dumps(result.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))
        return

    if not result.content:
        print("(no content)")
        return
    for item in result.content:
        if item.type == "text":
            print(f"- {item.text}")
        elif item.type == "image":
            print(f"- {cyan('[image]')} mime={item.mimeType or 'unknown'} ({len(item.data)} bytes)")
        elif item.type == "resource":
            print(f"- {cyan('[resource]')} {item.resource.model_dump_json()}")
        else:
            print(item.model_dump_json())


def missing_required(tool: Any, arguments: dict[str, Any]) -> list[str]:
    required = (tool.inputSchema or {}).get("required") or []
    return [key for key in required if arguments.get(key) is None]


# --- Addon install ---


def _addon_candidates() -> list[Path]:
    package_dir = Path(__file__).resolve().parent
    return [package_dir / "addons" / ADDON_NAME, package_dir.parent / "addons" / ADDON_NAME]


def install_addon(project_path: str | Path, source: str | Path | None = None) -> Path:
    """Copy the editor addon into ``<project>/addons/godot_mcp``.

    An existing install is removed first so stale files do not linger.
    Returns the installed addon directory.
    """
    project = Path(project_path).expanduser().resolve()
    if not (project / "project.godot").is_file():
        raise CliError(f"Not a Godot project (project.godot not found at {project})")

    candidates = [Path(source).expanduser().resolve()] if source is not None else _addon_candidates()
    source_addon = next((c for c in candidates if c.is_dir()), None)
    if source_addon is None:
        raise CliError(f"Source addon not found. Tried: {', '.join(str(c) for c in candidates)}")

    target = project / "addons" / ADDON_NAME
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        shutil.rmtree(target)
    shutil.copytree(source_addon, target)
    logger.debug("Copied %s to %s", source_addon, target)
    return target


# --- Running ---


def make_client(parsed: CliArgs, server: FastMCP | None = None) -> Client:
    timeout = parsed.timeout_ms / 1000 if parsed.timeout_ms else None
    if server is not None:
        return Client(server, timeout=timeout)
    transport = StdioTransport(
        command=parsed.server_command,
        args=parsed.server_args,
        env=dict(os.environ),
    )
    return Client(transport, timeout=timeout)


async def run(parsed: CliArgs, server: FastMCP | None = None) -> int:
    """Execute a parsed list/help/call action. Returns the exit code."""
    async with make_client(parsed, server) as client:
        tools = await client.list_tools()
        if parsed.action == "list":
            print_tool_list(tools)
            return 0

        target = next((t for t in tools if t.name == parsed.tool_name), None)
        if target is None:
            raise CliError(f"Tool not found: {parsed.tool_name}")

        if parsed.action == "help":
            print_tool_help(target)
            return 0

        arguments = parsed.arguments
        missing = missing_required(target, arguments)
        if missing:
            label = "parameter" if len(missing) == 1 else "parameters"
            raise CliError(f"Invalid parameters: missing required {label}: {', '.join(missing)}")

        async def on_progress(progress: float, total: float | None, message: str | None) -> None:
            text = f"progress {progress}/{total}" if total is not None else f"progress {progress}"
            print(f"[progress] {parsed.tool_name}: {text}", file=sys.stderr)

        result = await client.call_tool_mcp(
            parsed.tool_name,
            arguments,
            progress_handler=on_progress if parsed.verbose else None,
        )
        print_content(result, parsed.raw)
        return 1 if result.isError else 0


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    try:
        parsed = parse_args(argv)
    except CliError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(1) from None

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if parsed.action == "install":
        try:
            target = install_addon(parsed.install_target, parsed.addon_source)
        except (CliError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            raise SystemExit(1) from None
        print(f"Installed addon to {target}")
        return

    try:
        code = asyncio.run(run(parsed))
    except McpError as e:
        print(f"MCP error: {e}", file=sys.stderr)
        code = 1
    except (CliError, RuntimeError, OSError, asyncio.TimeoutError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main()
