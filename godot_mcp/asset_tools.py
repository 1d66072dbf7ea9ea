"""MCP tool definitions for browsing project assets."""

from __future__ import annotations

from fastmcp import FastMCP

from .connection import GodotConnection
from .utils import as_dict, call_godot, string_list


def register_asset_tools(mcp: FastMCP, godot: GodotConnection) -> None:
    """Register asset listing tools with the MCP server."""

    @mcp.tool
    async def list_assets_by_type(type: str) -> str:
        """List all assets of a specific type in the project.

        Args:
            type: Asset category. One of "scripts" (.gd), "scenes" (.tscn),
                  "images" (.png, .jpg, ...), "audio" (.ogg, .mp3, .wav),
                  "fonts" (.ttf, .otf), "models" (.glb, .gltf, .obj, .fbx),
                  "shaders" (.gdshader), "resources" (.tres, .res) or "all".
        """
        result = as_dict(await call_godot(godot, "list_assets_by_type", {"type": type}, "list assets"))
        count = result.get("count") or 0
        asset_type = result.get("assetType") or type
        if count == 0:
            return f"No {asset_type} assets found in the project."
        files = string_list(result.get("files"))
        return "\n".join([
            f"Found {count} {asset_type} assets in the project.",
            "",
            "Assets:",
            "- " + "\n- ".join(files),
        ])

    @mcp.tool
    async def list_project_files(extensions: list[str] | None = None) -> str:
        """List files in the project matching the given extensions.

        Args:
            extensions: File extensions to filter by (e.g. [".tscn", ".gd"]). All files if omitted.
        """
        extensions = extensions or []
        result = as_dict(await call_godot(godot, "list_project_files", {"extensions": extensions}, "list project files"))
        files = string_list(result.get("files"))
        label = ", ".join(extensions) if extensions else "all"
        if not files:
            return f"No files with extensions {label} found in the project."
        return "\n".join([
            f"Found {len(files)} files with extensions {label} in the project.",
            "",
            "Files:",
            "- " + "\n- ".join(files),
        ])
