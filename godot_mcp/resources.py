"""MCP resources exposing read-only views of the Godot project and debugger.

Every resource issues one command to the editor and returns JSON (or plain
text for script sources and the debug log).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError

from .connection import GodotConnection, GodotError
from .utils import as_dict, format_empty_debug_output, string_list

logger = logging.getLogger(__name__)

ASSET_TYPES = ("images", "audio", "fonts", "models", "shaders", "resources", "all")
SCENE_EXTENSIONS = [".tscn", ".scn"]
SCRIPT_EXTENSIONS = [".gd", ".cs"]


def normalize_res_path(path: str) -> str:
    """Trim *path* and make sure it starts with ``res://``."""
    normalized = (path or "").strip()
    if not normalized:
        raise ResourceError("Script path must be provided.")
    if not normalized.startswith("res://"):
        normalized = f"res://{normalized}"
    return normalized


def organize_files(files: list[str]) -> dict[str, Any]:
    """Nest ``res://`` file paths into a directory tree keyed by path segment.

    Leaves map the file name to its full path.
    """
    tree: dict[str, Any] = {}
    for file in files:
        parts = file.split("/")
        current = tree
        # parts[0:2] are the "res:" and "" pieces of the scheme.
        for part in parts[1:-1]:
            if not part:
                continue
            node = current.setdefault(part, {})
            if not isinstance(node, dict):
                node = current[part] = {}
            current = node
        current[parts[-1]] = file
    return tree


def register_resources(mcp: FastMCP, godot: GodotConnection) -> None:
    """Register all Godot resources and resource templates."""

    async def _fetch(command: str, params: dict[str, Any], what: str) -> Any:
        try:
            return await godot.send_command(command, params)
        except GodotError as e:
            logger.error("Error fetching %s: %s", what, e)
            raise ResourceError(f"Failed to get {what}: {e}") from e

    # --- Scenes ---

    @mcp.resource("godot://scenes", name="Godot Scene List", mime_type="application/json")
    async def scene_list() -> str:
        """All scene files in the project."""
        result = as_dict(await _fetch("list_project_files", {"extensions": SCENE_EXTENSIONS}, "scene list"))
        scenes = string_list(result.get("files"))
        return json.dumps({"scenes": scenes, "count": len(scenes)})

    @mcp.resource("godot://scene/current", name="Godot Scene Structure", mime_type="application/json")
    async def scene_structure() -> str:
        """Structure of the scene open in the editor, with properties and scripts."""
        result = await _fetch(
            "get_editor_scene_structure",
            {"include_properties": True, "include_scripts": True},
            "scene structure",
        )
        return json.dumps(result)

    @mcp.resource("godot://scene/tree", name="Full Scene Tree", mime_type="application/json")
    async def full_scene_tree() -> str:
        """Complete node hierarchy of the scene open in the editor."""
        result = await _fetch(
            "get_editor_scene_structure",
            {"include_properties": True, "include_scripts": True},
            "full scene tree",
        )
        structure = as_dict(result).get("structure")
        return json.dumps(structure if structure is not None else result)

    # --- Scripts ---

    @mcp.resource("godot://scripts", name="Script List", mime_type="application/json")
    async def script_list() -> str:
        """All GDScript and C# scripts in the project."""
        result = as_dict(await _fetch("list_project_files", {"extensions": SCRIPT_EXTENSIONS}, "script list"))
        scripts = string_list(result.get("files"))
        return json.dumps({
            "scripts": scripts,
            "count": len(scripts),
            "gdscripts": [s for s in scripts if s.endswith(".gd")],
            "csharp_scripts": [s for s in scripts if s.endswith(".cs")],
        })

    @mcp.resource("godot://script/{path*}", name="Script Content By Path", mime_type="text/plain")
    async def script_by_path(path: str) -> str:
        """Source of a script, e.g. godot://script/scripts/player.gd."""
        normalized = normalize_res_path(path)
        result = await _fetch("get_script", {"path": normalized}, "script content")
        if not result or as_dict(result).get("script_found") is False:
            raise ResourceError(as_dict(result).get("error") or f"Script not found at {normalized}")
        content = as_dict(result).get("content")
        return content if isinstance(content, str) else ""

    @mcp.resource("godot://script-metadata/{path*}", name="Script Metadata By Path", mime_type="application/json")
    async def script_metadata(path: str) -> str:
        """Metadata (class, methods, signals) of a script."""
        normalized = normalize_res_path(path)
        result = await _fetch("get_script_metadata", {"path": normalized}, "script metadata")
        if not result:
            raise ResourceError(f"Metadata not available for {normalized}")
        if as_dict(result).get("error"):
            raise ResourceError(str(result["error"]))
        return json.dumps(result)

    # --- Assets ---

    @mcp.resource("godot://assets", name="Asset List", mime_type="application/json")
    async def asset_list() -> str:
        """Every project file, flat and organised by directory."""
        result = as_dict(await _fetch("list_project_files", {"extensions": []}, "asset list"))
        files = string_list(result.get("files"))
        return json.dumps({"count": len(files), "files": files, "organizedFiles": organize_files(files)})

    @mcp.resource("godot://assets/{type}", name="Typed Asset List", mime_type="application/json")
    async def assets_by_type(type: str) -> str:
        """Assets of one category: images, audio, fonts, models, shaders, resources or all."""
        asset_type = (type or "all").lower()
        if asset_type not in ASSET_TYPES:
            asset_type = "all"
        return json.dumps(await _fetch("list_assets_by_type", {"type": asset_type}, "assets by type"))

    # --- Debug Output ---

    @mcp.resource("godot://debug/log", name="Godot Debug Output", mime_type="text/plain")
    async def debug_output() -> str:
        """Contents of the editor Output panel."""
        result = as_dict(await _fetch("get_debug_output", {}, "debug output"))
        output = result.get("output")
        if not isinstance(output, str) or not output:
            return format_empty_debug_output(as_dict(result.get("diagnostics")))
        return output

    # --- Debugger ---

    @mcp.resource("godot://debugger/state", name="Debugger State", mime_type="application/json")
    async def debugger_state() -> str:
        """Breakpoints, sessions and execution status of the Godot debugger."""
        return json.dumps(await _fetch("debugger_get_current_state", {}, "debugger state"))

    @mcp.resource("godot://debugger/breakpoints", name="Debugger Breakpoints", mime_type="application/json")
    async def debugger_breakpoints() -> str:
        """All breakpoints currently set in the debugger."""
        return json.dumps(await _fetch("debugger_get_breakpoints", {}, "debugger breakpoints"))

    @mcp.resource("godot://debugger/call-stack", name="Debugger Call Stack", mime_type="application/json")
    async def debugger_call_stack() -> str:
        """Call stack of the active debug session."""
        return json.dumps(await _fetch("debugger_get_call_stack", {}, "debugger call stack"))

    @mcp.resource(
        "godot://debugger/call-stack/{session_id}",
        name="Debugger Call Stack For Session",
        mime_type="application/json",
    )
    async def debugger_session_call_stack(session_id: str) -> str:
        """Call stack of a specific debug session."""
        session: Any = int(session_id) if session_id.isdigit() else session_id
        return json.dumps(await _fetch("debugger_get_call_stack", {"session_id": session}, "debugger call stack"))

    @mcp.resource("godot://debugger/session/{session_id}", name="Debugger Session", mime_type="application/json")
    async def debugger_session(session_id: str) -> str:
        """Summary of one active debugger session."""
        state = as_dict(await _fetch("debugger_get_current_state", {}, "debugger session info"))
        sessions = state.get("active_sessions") or []
        if session_id not in [str(s) for s in sessions]:
            raise ResourceError(f"Session {session_id} not found or not active")
        return json.dumps({
            "sessionId": session_id,
            "isActive": str(state.get("current_session_id")) == session_id,
            "paused": state.get("paused"),
            "currentScript": state.get("current_script"),
            "currentLine": state.get("current_line"),
        })
