"""Shared formatting helpers for MCP tool and resource output."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from fastmcp.exceptions import ToolError

from .connection import GodotConnection, GodotError

# Parsed stack frames shown per panel capture.
MAX_FRAMES_DISPLAY = 10
INDENT_SIZE = 2


async def call_godot(godot: GodotConnection, command: str, params: dict[str, Any] | None, action: str) -> Any:
    """Send *command* and turn connection errors into a ToolError.

    *action* completes the message "Failed to <action>: <reason>".
    """
    try:
        return await godot.send_command(command, params or {})
    except GodotError as e:
        raise ToolError(f"Failed to {action}: {e}") from e


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def string_list(value: Any) -> list[str]:
    """Return *value* as a list of strings, or [] if it is not a list."""
    if isinstance(value, list):
        return [str(item) for item in value]
    return []


def non_empty_str(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value else default


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_timestamp(ms: Any) -> str:
    """Format a millisecond epoch timestamp as ISO-8601 UTC."""
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_value(value: Any) -> str:
    """Render a runtime value the way it reads in GDScript-ish output."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, indent=2)
    except (TypeError, ValueError):
        return str(value)


def format_node(node: dict[str, Any], depth: int = 0, include_visibility: bool = False) -> str:
    """Render a scene node and its children as an indented tree."""
    indent = " " * (depth * INDENT_SIZE)
    output = f"{indent}{node.get('name', '?')} ({node.get('type', '?')})"

    visibility = node.get("visibility")
    if include_visibility and isinstance(visibility, dict):
        flags = []
        if visibility.get("has_visible_method"):
            flags.append("has-visible")
        if visibility.get("visible"):
            flags.append("visible")
        if visibility.get("visible_in_tree"):
            flags.append("visible-in-tree")
        if flags:
            output += f" [{', '.join(flags)}]"

    children = node.get("children") or []
    if children:
        output += "\n" + "\n".join(format_node(child, depth + 1, include_visibility) for child in children)
    return output


def summarize_stack_frame(frame: dict[str, Any]) -> str:
    """One-line summary of a parsed stack frame, e.g. ``[0] _ready — res://main.gd:4``."""
    index = frame.get("index")
    if isinstance(index, str) and index:
        try:
            index = int(index)
        except ValueError:
            index = None
    fn_name = non_empty_str(frame.get("function"), "(anonymous)")

    location = frame.get("location")
    if not (isinstance(location, str) and location):
        script = frame.get("script") if isinstance(frame.get("script"), str) else ""
        line = frame.get("line")
        if script and is_number(line):
            location = f"{script}:{line}"
        else:
            location = script or "location unavailable"

    if is_number(index):
        return f"[{index}] {fn_name} — {location}"
    return f"{fn_name} — {location}"


def format_stack_frames(frames: list[dict[str, Any]]) -> str:
    if not frames:
        return "No structured frames were parsed."
    return "\n".join(
        f"#{i}: {summarize_stack_frame(frame)}" for i, frame in enumerate(frames[:MAX_FRAMES_DISPLAY])
    )


def format_empty_debug_output(diagnostics: dict[str, Any]) -> str:
    """Explain why the Output panel capture came back empty."""
    return "\n".join([
        "No debug output available.",
        f"Capture source: {non_empty_str(diagnostics.get('source'), 'unknown')}",
        f"Detail: {non_empty_str(diagnostics.get('detail'), 'No additional detail from publisher.')}",
        f"Control class: {non_empty_str(diagnostics.get('control_class'), 'unset')}",
        f"Control path: {non_empty_str(diagnostics.get('control_path'), 'unset')}",
        f"Log file path: {non_empty_str(diagnostics.get('log_file_path'), 'not-found')}",
        f"Control search: {non_empty_str(diagnostics.get('control_search'), 'control search summary unavailable')}",
    ])


def format_panel_header(diagnostics: dict[str, Any], line_count: int, frame_count: int, success_message: str) -> list[str]:
    """Header lines shared by the Stack Trace and Stack Frames panel captures."""
    header = []
    if diagnostics.get("error"):
        header.append(f"{success_message}: {diagnostics['error']}")
    else:
        header.append(f"{success_message}.")

    header.append(f"Lines captured: {line_count}")
    header.append(f"Frames parsed: {frame_count}")

    if diagnostics.get("control_path"):
        header.append(f"Panel control: {diagnostics['control_path']}")
    elif diagnostics.get("control_class"):
        header.append(f"Panel type: {diagnostics['control_class']}")
    if diagnostics.get("tab_title"):
        header.append(f"Tab title: {diagnostics['tab_title']}")
    if diagnostics.get("fallback_source"):
        header.append(f"Fallback source: {diagnostics['fallback_source']}")
    if is_number(diagnostics.get("timestamp")):
        header.append(f"Captured: {format_timestamp(diagnostics['timestamp'])}")
    if diagnostics.get("search_summary"):
        header.append(f"Search summary: {diagnostics['search_summary']}")
    return header
