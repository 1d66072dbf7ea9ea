"""MCP tool definitions for Godot editor operations.

These tools control the Godot Editor itself: running editor scripts, reloading
the project or a scene, inspecting the edited scene tree and reading the
Output, Errors, Stack Trace and Stack Frames panels.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from .connection import GodotConnection
from .utils import (
    as_dict,
    call_godot,
    format_empty_debug_output,
    format_node,
    format_panel_header,
    format_stack_frames,
    format_timestamp,
    is_number,
    string_list,
)

logger = logging.getLogger(__name__)

DEBUG_OUTPUT_EVENT = "debug_output_frame"


def _panel_report(result: Any, panel_key: str, title: str) -> str:
    """Format a Stack Trace / Stack Frames panel capture."""
    result = as_dict(result)
    panel = as_dict(result.get(panel_key))
    diagnostics = as_dict(panel.get("diagnostics"))
    lines = string_list(panel.get("lines"))
    raw_frames = panel.get("frames")
    frames = [f for f in raw_frames if isinstance(f, dict)] if isinstance(raw_frames, list) else []
    line_count = panel["line_count"] if is_number(panel.get("line_count")) else len(lines)

    header = format_panel_header(diagnostics, line_count, len(frames), f"{title} panel captured successfully")
    session_id = result.get("session_id")
    if is_number(session_id) and session_id >= 0:
        header.append(f"Session ID: {session_id}")

    if lines:
        body = "\n".join(lines)
    elif isinstance(panel.get("text"), str) and panel["text"]:
        body = panel["text"]
    else:
        body = f"{title} tab is empty."

    return "\n".join([
        "\n".join(header),
        "",
        "Parsed Frames:",
        format_stack_frames(frames),
        "",
        f"{title} Panel:",
        body,
    ])


def _log_debug_frame(frame: Any) -> None:
    """Write a streamed Output panel frame to the server log."""
    frame = as_dict(frame)
    if frame.get("reset"):
        logger.info("[Godot Debug] Log reset.")
    lines = string_list(frame.get("lines"))
    chunk = frame.get("chunk") if isinstance(frame.get("chunk"), str) else ""
    if lines:
        for line in lines:
            logger.info("[Godot Debug] %s", line)
    elif chunk:
        logger.info("[Godot Debug] %s", chunk)


def register_editor_tools(mcp: FastMCP, godot: GodotConnection) -> None:
    """Register all editor tools with the MCP server."""

    # --- Scripting & Project ---

    @mcp.tool
    async def execute_editor_script(code: str) -> str:
        """Execute arbitrary GDScript code in the Godot editor.

        Args:
            code: GDScript code to execute in the editor context.
        """
        result = as_dict(await call_godot(godot, "execute_editor_script", {"code": code}, "execute script"))
        text = "Script executed successfully"
        output = result.get("output")
        if isinstance(output, list) and output:
            text += "\n\nOutput:\n" + "\n".join(str(line) for line in output)
        if result.get("result"):
            text += "\n\nResult:\n" + json.dumps(result["result"], indent=2)
        return text

    @mcp.tool
    async def reload_project(save: bool = True) -> str:
        """Restart the Godot editor to fully reload the project.

        This drops the connection to Godot until the editor is back up.

        Args:
            save: Whether to save all open scenes before restarting (default: true).
        """
        await call_godot(godot, "reload_project", {"save": save}, "reload project")
        mode = " (saving changes)" if save else " (without saving)"
        return f"Godot editor is restarting{mode}. The MCP connection will be temporarily lost."

    @mcp.tool
    async def reload_scene(scene_path: str | None = None) -> str:
        """Reload a scene from disk, discarding any unsaved changes.

        Args:
            scene_path: Resource path of the scene (e.g. 'res://scenes/main.tscn').
                        Reloads the currently open scene if omitted.
        """
        result = as_dict(await call_godot(godot, "reload_scene", {"scene_path": scene_path or ""}, "reload scene"))
        reloaded = result.get("scene_path") or scene_path or "current scene"
        return f"Scene reloaded from disk: {reloaded}"

    @mcp.tool
    async def rescan_filesystem() -> str:
        """Rescan the project filesystem to pick up files changed outside the editor."""
        await call_godot(godot, "rescan_filesystem", {}, "rescan filesystem")
        return "Filesystem rescan initiated. The editor will update to reflect any external file changes."

    # --- Scene Inspection ---

    @mcp.tool
    async def get_editor_scene_structure(
        include_properties: bool | None = None,
        include_scripts: bool | None = None,
        max_depth: Annotated[int | None, Field(ge=0, description="Limit traversal depth (0 = only root)")] = None,
    ) -> str:
        """Get the hierarchy of the scene currently open in the editor.

        Args:
            include_properties: Include common editor properties (position, rotation, etc.).
            include_scripts: Include attached script information.
            max_depth: Limit traversal depth (0 = only root).
        """
        params: dict[str, Any] = {}
        if include_properties is not None:
            params["include_properties"] = include_properties
        if include_scripts is not None:
            params["include_scripts"] = include_scripts
        if max_depth is not None:
            params["max_depth"] = max_depth

        result = as_dict(await call_godot(godot, "get_editor_scene_structure", params, "get scene structure"))
        if result.get("error"):
            return f"Scene structure unavailable: {result['error']}"
        structure = result.get("structure")
        if not structure:
            return "No scene is currently open or the scene is empty."
        return "\n".join([
            f"Current Scene: {result.get('path')}",
            f"Root Node: {result.get('root_node_name')} ({result.get('root_node_type')})",
            "",
            "Scene Tree:",
            format_node(structure),
        ])

    # --- Output & Errors ---

    @mcp.tool
    async def get_debug_output() -> str:
        """Get the contents of the Godot editor Output panel."""
        result = as_dict(await call_godot(godot, "get_debug_output", {}, "get debug output"))
        output = result.get("output") if isinstance(result.get("output"), str) else ""
        if not output:
            return format_empty_debug_output(as_dict(result.get("diagnostics")))
        return f"Debug Output:\n{output}"

    @mcp.tool
    async def get_editor_errors() -> str:
        """Read the Errors tab from the Godot editor bottom panel."""
        result = as_dict(await call_godot(godot, "get_editor_errors", {}, "read Errors tab"))
        text = result.get("text") if isinstance(result.get("text"), str) else ""
        lines = string_list(result.get("lines"))
        if is_number(result.get("line_count")):
            line_count = result["line_count"]
        elif lines:
            line_count = len(lines)
        else:
            line_count = len(text.split("\n")) if text else 0

        diagnostics = as_dict(result.get("diagnostics"))
        details = []
        if diagnostics.get("control_path"):
            details.append(f"Control path: {diagnostics['control_path']}")
        elif diagnostics.get("control_class"):
            details.append(f"Control class: {diagnostics['control_class']}")
        if is_number(diagnostics.get("timestamp")):
            details.append(f"Captured: {format_timestamp(diagnostics['timestamp'])}")
        if diagnostics.get("search_summary"):
            details.append(f"Search summary: {diagnostics['search_summary']}")

        if not text:
            if details:
                return "Errors tab is empty.\n" + "\n".join(details)
            return "Errors tab is empty."

        header = ["Errors Tab Contents", f"Lines: {line_count}"]
        if details:
            header.append(" | ".join(details))
        body = "\n".join(lines) if lines else text
        return "\n".join(header) + "\n\n" + body

    @mcp.tool
    async def clear_debug_output() -> str:
        """Clear the Godot editor Output panel and reset streaming state."""
        result = as_dict(await call_godot(godot, "clear_debug_output", {}, "clear debug output"))
        diagnostics = as_dict(result.get("diagnostics"))

        if not result.get("cleared"):
            message = result.get("message")
            reason = message if isinstance(message, str) and message else diagnostics.get("error") or "Unknown reason"
            return f"Failed to clear debug output: {reason}"

        method = result.get("method") if isinstance(result.get("method"), str) and result.get("method") else "unspecified method"
        attempts = diagnostics.get("attempts")
        attempts_text = ", ".join(str(a) for a in attempts) if isinstance(attempts, list) else "n/a"
        timestamp = format_timestamp(diagnostics["timestamp"]) if is_number(diagnostics.get("timestamp")) else "n/a"
        return "\n".join([
            "Debug Output panel cleared successfully.",
            f"Method: {method}",
            f"Attempts: {attempts_text}",
            f"Timestamp: {timestamp}",
        ])

    @mcp.tool
    async def stream_debug_output(action: Literal["start", "stop"] = "start") -> str:
        """Subscribe or unsubscribe from live streaming of the editor Output panel.

        Streamed lines are written to the server log (stderr).

        Args:
            action: 'start' to begin streaming or 'stop' to unsubscribe.
        """
        if action == "start":
            if not godot.has_listener(DEBUG_OUTPUT_EVENT, _log_debug_frame):
                godot.on(DEBUG_OUTPUT_EVENT, _log_debug_frame)
            await call_godot(godot, "subscribe_debug_output", {}, "subscribe to debug output")
            return "Subscribed to live debug output. New log lines will appear in the server log."
        godot.off(DEBUG_OUTPUT_EVENT, _log_debug_frame)
        await call_godot(godot, "unsubscribe_debug_output", {}, "unsubscribe from debug output")
        return "Unsubscribed from live debug output."

    # --- Debugger Panels ---

    @mcp.tool
    async def get_stack_trace_panel(session_id: int | None = None) -> str:
        """Capture the Godot debugger Stack Trace panel text and structured frames.

        Args:
            session_id: Debugger session ID to associate with the capture
                        (defaults to the active session).
        """
        params = {"session_id": session_id} if session_id is not None else {}
        result = await call_godot(godot, "get_stack_trace_panel", params, "capture stack trace panel")
        return _panel_report(result, "stack_trace_panel", "Stack Trace")

    @mcp.tool
    async def get_stack_frames_panel(session_id: int | None = None, refresh: bool | None = None) -> str:
        """Capture the Stack Frames panel contents (tree or text fallback) from the Godot editor.

        Args:
            session_id: Debugger session ID (defaults to the active session).
            refresh: Request a fresh stack dump from the debugger before capturing.
        """
        params: dict[str, Any] = {}
        if session_id is not None:
            params["session_id"] = session_id
        if refresh is not None:
            params["refresh"] = refresh
        result = await call_godot(godot, "get_stack_frames_panel", params, "capture stack frames panel")
        return _panel_report(result, "stack_frames_panel", "Stack Frames")
