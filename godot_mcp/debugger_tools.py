"""MCP tool definitions for the Godot script debugger.

Breakpoint management, execution control (pause, resume, step), call stack
and debugger state inspection, and opting in to debugger notifications.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from .connection import GodotConnection
from .utils import as_dict, call_godot, is_number

logger = logging.getLogger(__name__)

# Notifications Godot pushes once debugger events are enabled.
DEBUGGER_EVENTS = ("breakpoint_hit", "execution_paused", "execution_resumed")


def format_breakpoint_list(result: Any) -> str:
    breakpoints = as_dict(result).get("breakpoints")
    if not breakpoints:
        return "No breakpoints information available"

    lines = ["Current breakpoints:"]
    for script_path, line_numbers in as_dict(breakpoints).items():
        if isinstance(line_numbers, list) and line_numbers:
            lines.append(f"- {script_path}: {', '.join(f'line {n}' for n in line_numbers)}")
    if len(lines) == 1:
        lines.append("No breakpoints set")
    return "\n".join(lines)


def format_debugger_state(state: Any) -> str:
    state = as_dict(state)
    lines = ["Debugger State:", f"- Active: {'Yes' if state.get('debugger_active') else 'No'}"]

    sessions = state.get("active_sessions")
    if isinstance(sessions, list) and sessions:
        lines.append(f"- Active Sessions (IDs): {', '.join(str(s) for s in sessions)}")
        lines.append(f"- Session Count: {len(sessions)}")
        current = state.get("current_session_id")
        lines.append(f"- Current Session: {current if current is not None else 'None'}")
        lines.append(f"- Paused: {'Yes' if state.get('paused') else 'No'}")
        lines.append(f"- Total Breakpoints: {state.get('total_breakpoints') or 0}")
        line = state.get("current_line")
        if state.get("current_script") and is_number(line) and line >= 0:
            lines.append(f"- Current Location: {state['current_script']}:{line}")
    else:
        lines.append("- No active debug sessions")

    diagnostics = state.get("diagnostics")
    if isinstance(diagnostics, dict):
        session_objects = diagnostics.get("godot_session_objects")
        if isinstance(session_objects, list):
            summaries = []
            for info in session_objects:
                info = as_dict(info)
                active = "active" if info.get("active") else "inactive"
                paused = "paused" if info.get("breaked") else "running"
                summaries.append(f"#{info.get('id', '?')} ({active}, {paused})")
            count = diagnostics.get("godot_session_count") or 0
            lines.append(f"- Godot Sessions ({count}): {'; '.join(summaries) if summaries else 'none detected'}")
        tracked = diagnostics.get("tracked_sessions")
        if isinstance(tracked, list):
            lines.append(f"- Tracked Session IDs: {', '.join(str(t) for t in tracked) if tracked else 'none'}")

    return "\n".join(lines)


def format_call_stack(result: Any) -> str:
    result = as_dict(result)
    frames = result.get("frames") if isinstance(result.get("frames"), list) else []
    if not frames:
        return "Call stack is empty."

    lines = []
    for position, frame in enumerate(frames):
        frame = as_dict(frame)
        index = frame["index"] if is_number(frame.get("index")) else position
        fn = frame.get("function") if isinstance(frame.get("function"), str) and frame.get("function") else "(anonymous)"
        script = frame.get("script") if isinstance(frame.get("script"), str) and frame.get("script") else ""
        if not script and isinstance(frame.get("file"), str):
            script = frame["file"]
        line = frame["line"] if is_number(frame.get("line")) else -1

        location = script
        if line >= 0:
            location = f"{location}:{line}"
        if not location and isinstance(frame.get("location"), str) and frame.get("location"):
            location = frame["location"]
        lines.append(f"#{index} {fn} — {location or 'location unavailable'}")

    session = f" (session {result['session_id']})" if result.get("session_id") is not None else ""
    return "\n".join([f"Captured {len(frames)} frame(s){session}.", *lines])


def _log_debugger_event(event: str) -> Callable[[Any], None]:
    def listener(payload: Any) -> None:
        data = as_dict(payload)
        where = ""
        if data.get("script") or data.get("line") is not None:
            where = f" at {data.get('script', '?')}:{data.get('line', '?')}"
        logger.info("Debugger %s (session %s)%s", event, data.get("session_id", "?"), where)

    return listener


def register_debugger_tools(mcp: FastMCP, godot: GodotConnection) -> None:
    """Register all debugger tools with the MCP server."""

    event_listeners = {event: _log_debugger_event(event) for event in DEBUGGER_EVENTS}

    async def _simple(command: str, params: dict[str, Any], action: str) -> dict[str, Any]:
        result = as_dict(await call_godot(godot, command, params, action))
        if result.get("success") is False:
            raise ToolError(f"Failed to {action}: {result.get('message') or f'Failed to {action}'}")
        return result

    # --- Breakpoints ---

    @mcp.tool
    async def debugger_set_breakpoint(script_path: str, line: Annotated[int, Field(ge=0)]) -> str:
        """Set a breakpoint at a specific line in a script.

        Args:
            script_path: Path to the script file (absolute or relative to res://).
            line: Line number where to set the breakpoint.
        """
        await _simple("debugger_set_breakpoint", {"script_path": script_path, "line": line}, "set breakpoint")
        return f"Breakpoint set successfully at {script_path}:{line}"

    @mcp.tool
    async def debugger_remove_breakpoint(script_path: str, line: Annotated[int, Field(ge=0)]) -> str:
        """Remove a breakpoint at a specific line in a script.

        Args:
            script_path: Path to the script file (absolute or relative to res://).
            line: Line number of the breakpoint to remove.
        """
        await _simple("debugger_remove_breakpoint", {"script_path": script_path, "line": line}, "remove breakpoint")
        return f"Breakpoint removed successfully from {script_path}:{line}"

    @mcp.tool
    async def debugger_get_breakpoints() -> str:
        """Get all currently set breakpoints."""
        return format_breakpoint_list(await call_godot(godot, "debugger_get_breakpoints", {}, "get breakpoints"))

    @mcp.tool
    async def debugger_clear_all_breakpoints() -> str:
        """Clear all breakpoints."""
        await _simple("debugger_clear_all_breakpoints", {}, "clear breakpoints")
        return "All breakpoints cleared successfully"

    # --- Execution Control ---

    @mcp.tool
    async def debugger_pause_execution() -> str:
        """Pause execution of the running project."""
        await _simple("debugger_pause_execution", {}, "pause execution")
        return "Execution paused successfully"

    @mcp.tool
    async def debugger_resume_execution() -> str:
        """Resume execution of the paused project."""
        await _simple("debugger_resume_execution", {}, "resume execution")
        return "Execution resumed successfully"

    @mcp.tool
    async def debugger_step_over() -> str:
        """Step over the current line of code."""
        await _simple("debugger_step_over", {}, "step over")
        return "Step over executed successfully"

    @mcp.tool
    async def debugger_step_into() -> str:
        """Step into the current function call."""
        await _simple("debugger_step_into", {}, "step into")
        return "Step into executed successfully"

    # --- Inspection ---

    @mcp.tool
    async def debugger_get_call_stack(session_id: int | None = None) -> str:
        """Get the current call stack.

        Args:
            session_id: Debug session ID (uses the active session if omitted).
        """
        params = {"session_id": session_id} if session_id is not None else {}
        result = as_dict(await call_godot(godot, "debugger_get_call_stack", params, "get call stack"))
        if result.get("error"):
            raise ToolError(f"Failed to get call stack: {result['error']}")
        return format_call_stack(result)

    @mcp.tool
    async def debugger_get_current_state() -> str:
        """Get the current state of the debugger."""
        return format_debugger_state(
            await call_godot(godot, "debugger_get_current_state", {}, "get debugger state")
        )

    # --- Notifications ---

    @mcp.tool
    async def debugger_enable_events() -> str:
        """Enable debugger events for this client (required for breakpoint notifications)."""
        result = await _simple("debugger_enable_events", {}, "enable debugger events")
        for event, listener in event_listeners.items():
            if not godot.has_listener(event, listener):
                godot.on(event, listener)
        return (
            f"Debugger events enabled for client {result.get('client_id')}. "
            "You will now receive notifications for breakpoints and execution changes."
        )

    @mcp.tool
    async def debugger_disable_events() -> str:
        """Disable debugger events for this client."""
        result = await _simple("debugger_disable_events", {}, "disable debugger events")
        for event, listener in event_listeners.items():
            godot.off(event, listener)
        return f"Debugger events disabled for client {result.get('client_id')}"
