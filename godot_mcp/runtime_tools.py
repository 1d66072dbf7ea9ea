"""MCP tool definitions for the running game.

These tools reach the game through the editor's remote debugger: inspecting
the live scene tree, evaluating expressions, and simulating input (actions,
mouse, keyboard and timed sequences). Only useful while the project is running.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import BaseModel, Field

from .connection import GodotConnection
from .utils import as_dict, call_godot, format_node, format_value, string_list

MouseButton = Literal["left", "right", "middle"]

# Input actions listed by get_input_actions before truncating.
MAX_ACTIONS_DISPLAY = 20


class KeyModifiers(BaseModel):
    shift: bool | None = Field(default=None, description="Hold Shift")
    ctrl: bool | None = Field(default=None, description="Hold Ctrl")
    alt: bool | None = Field(default=None, description="Hold Alt")
    meta: bool | None = Field(default=None, description="Hold Meta/Command")


class SequenceStep(BaseModel):
    """One step of simulate_input_sequence."""

    type: Literal["press", "release", "tap", "wait", "click"] = Field(description="Type of input step")
    action: str | None = Field(default=None, description="Action name for press/release/tap steps")
    duration_ms: int | None = Field(default=None, description="Duration for tap steps or wait steps")
    strength: float | None = Field(default=None, ge=0, le=1, description="Action strength for press steps")
    x: float | None = Field(default=None, description="X coordinate for click steps")
    y: float | None = Field(default=None, description="Y coordinate for click steps")
    button: MouseButton | None = Field(default=None, description="Mouse button for click steps")


def _point(value: Any) -> tuple[Any, Any]:
    if isinstance(value, list) and len(value) >= 2:
        return value[0], value[1]
    return None, None


def format_input_result(result: Any) -> str:
    """Describe the outcome of an input simulation command."""
    result = as_dict(result)
    if not result.get("success"):
        return f"Input simulation failed: {result.get('error') or 'Unknown error'}"

    kind = result.get("type")
    action = result.get("action")
    if kind == "press":
        return f'Action "{action}" pressed.'
    if kind == "release":
        return f'Action "{action}" released.'
    if kind == "tap":
        return f'Action "{action}" tapped for {result.get("duration_ms")}ms.'
    if kind == "mouse_click":
        x, y = _point(result.get("position"))
        return f"Mouse clicked at ({x}, {y})."
    if kind == "mouse_move":
        x, y = _point(result.get("position"))
        return f"Mouse moved to ({x}, {y})."
    if kind == "drag":
        sx, sy = _point(result.get("start"))
        ex, ey = _point(result.get("end"))
        return (
            f"Dragged from ({sx}, {sy}) to ({ex}, {ey}).\n"
            f"Duration: {result.get('duration_ms')}ms, Steps: {result.get('steps')}"
        )
    if kind == "key_press":
        return f'Key "{result.get("key")}" pressed for {result.get("duration_ms")}ms.'
    if kind == "sequence":
        parts = [f"Input sequence completed: {result.get('steps_executed')} steps executed."]
        errors = string_list(result.get("errors"))
        if errors:
            parts.append(f"Warnings: {', '.join(errors)}")
        return "\n".join(parts)
    if kind == "input_actions":
        parts = [f"Found {result.get('count')} input actions:"]
        actions = result.get("actions") or []
        for entry in actions[:MAX_ACTIONS_DISPLAY]:
            entry = as_dict(entry)
            events = string_list(entry.get("events"))
            parts.append(f"  - {entry.get('name')}: {', '.join(events) if events else 'No bindings'}")
        if len(actions) > MAX_ACTIONS_DISPLAY:
            parts.append(f"  ... and {len(actions) - MAX_ACTIONS_DISPLAY} more")
        return "\n".join(parts)
    return "Input simulation completed successfully."


def _optional(params: dict[str, Any], **values: Any) -> dict[str, Any]:
    """Add every value that was actually supplied to *params*."""
    params.update({k: v for k, v in values.items() if v is not None})
    return params


def register_runtime_tools(mcp: FastMCP, godot: GodotConnection) -> None:
    """Register all running-game tools with the MCP server."""

    async def _simulate(command: str, params: dict[str, Any], action: str) -> str:
        return format_input_result(await call_godot(godot, command, params, action))

    # --- Live Inspection ---

    @mcp.tool
    async def get_runtime_scene_structure(
        include_properties: bool | None = None,
        include_scripts: bool | None = None,
        max_depth: Annotated[int | None, Field(ge=0)] = None,
        timeout_ms: Annotated[int | None, Field(ge=100, le=5000)] = None,
    ) -> str:
        """Inspect the live scene tree of the running game via the debugger.

        Args:
            include_properties: Include common properties (position, rotation, etc.) when available.
            include_scripts: Include script information when available.
            max_depth: Limit traversal depth (0 = only root).
            timeout_ms: How long to wait for a live scene snapshot (100-5000 ms).
        """
        params = _optional(
            {},
            include_properties=include_properties,
            include_scripts=include_scripts,
            max_depth=max_depth,
            timeout_ms=timeout_ms,
        )
        result = as_dict(await call_godot(godot, "get_runtime_scene_structure", params, "get runtime scene structure"))
        if result.get("error"):
            return f"Runtime scene structure unavailable: {result['error']}"
        structure = result.get("structure")
        if not isinstance(structure, dict) or not structure:
            return "Runtime scene data is unavailable. Ensure the project is running with the debugger attached."

        root_name = result.get("root_node_name") or structure.get("name") or "Root"
        root_type = result.get("root_node_type") or structure.get("type") or "Node"
        return "\n".join([
            f"Runtime Scene Path: {result.get('scene_path') or 'Unknown scene'}",
            f"Root Node: {root_name} ({root_type})",
            "",
            "Live Scene Tree:",
            format_node(structure, 0, include_visibility=True),
        ])

    @mcp.tool
    async def evaluate_runtime_expression(
        expression: Annotated[str, Field(min_length=1)],
        context_path: str | None = None,
        capture_prints: bool | None = None,
        timeout_ms: Annotated[int | None, Field(ge=100, le=5000)] = None,
    ) -> str:
        """Evaluate a GDScript expression inside the running game via the remote debugger.

        Args:
            expression: Expression to evaluate, executed with the context node as self.
            context_path: Node path (e.g. '/root/Main/Player') to use as the evaluation context.
            capture_prints: Include print output from the expression (default true).
            timeout_ms: How long to wait for the result (100-5000 ms).
        """
        params = _optional(
            {"expression": expression},
            context_path=context_path,
            capture_prints=capture_prints,
            timeout_ms=timeout_ms,
        )
        result = await call_godot(godot, "evaluate_runtime", params, "evaluate expression")
        if not result:
            return "Runtime evaluation did not return a result."
        result = as_dict(result)
        if result.get("error"):
            return f"Runtime evaluation failed: {result['error']}"

        success = result.get("success") is not False
        sections = [
            "Runtime evaluation succeeded." if success else "Runtime evaluation completed with errors.",
            f"Result: {format_value(result.get('result'))}",
        ]
        output = string_list(result.get("output"))
        if output:
            sections.append("Print Output:")
            sections.append("\n".join(output))
        return "\n".join(sections)

    # --- Input Actions ---

    @mcp.tool
    async def simulate_action_press(
        action: str,
        strength: Annotated[float | None, Field(ge=0, le=1)] = None,
    ) -> str:
        """Press and hold an input action (ui_left, ui_accept, jump, ...) in the running game.

        The action stays pressed until released with simulate_action_release.

        Args:
            action: The action name (e.g. 'ui_accept', 'ui_left', 'jump', 'attack').
            strength: Action strength from 0 to 1 (default 1.0). Useful for analog inputs.
        """
        params = _optional({"action": action}, strength=strength)
        return await _simulate("simulate_action_press", params, "press action")

    @mcp.tool
    async def simulate_action_release(action: str) -> str:
        """Release a previously pressed input action in the running game.

        Args:
            action: The action name to release.
        """
        return await _simulate("simulate_action_release", {"action": action}, "release action")

    @mcp.tool
    async def simulate_action_tap(
        action: str,
        duration_ms: Annotated[int | None, Field(ge=16, le=2000)] = None,
    ) -> str:
        """Briefly press and release an input action, like pressing a button.

        Args:
            action: The action name (e.g. 'ui_accept', 'jump').
            duration_ms: How long to hold the action in milliseconds (default 100).
        """
        params = _optional({"action": action}, duration_ms=duration_ms)
        return await _simulate("simulate_action_tap", params, "tap action")

    @mcp.tool
    async def get_input_actions() -> str:
        """List the input actions defined in the project, to discover what can be simulated."""
        return await _simulate("get_input_actions", {}, "get input actions")

    # --- Mouse ---

    @mcp.tool
    async def simulate_mouse_click(
        x: float,
        y: float,
        button: MouseButton | None = None,
        double_click: bool | None = None,
    ) -> str:
        """Simulate a mouse click at a screen position in the running game.

        Args:
            x: X coordinate in screen/viewport space.
            y: Y coordinate in screen/viewport space.
            button: Mouse button to click (default 'left').
            double_click: Whether to perform a double-click (default false).
        """
        params = _optional({"x": x, "y": y}, button=button, double_click=double_click)
        return await _simulate("simulate_mouse_click", params, "simulate mouse click")

    @mcp.tool
    async def simulate_mouse_move(x: float, y: float) -> str:
        """Move the mouse cursor to a screen position in the running game.

        Args:
            x: X coordinate in screen/viewport space.
            y: Y coordinate in screen/viewport space.
        """
        return await _simulate("simulate_mouse_move", {"x": x, "y": y}, "move mouse")

    @mcp.tool
    async def simulate_drag(
        start_x: float,
        start_y: float,
        end_x: float,
        end_y: float,
        duration_ms: Annotated[int | None, Field(ge=50, le=5000)] = None,
        steps: Annotated[int | None, Field(ge=2, le=100)] = None,
        button: MouseButton | None = None,
    ) -> str:
        """Simulate a drag from one position to another (drag-and-drop interactions).

        Args:
            start_x: Starting X coordinate.
            start_y: Starting Y coordinate.
            end_x: Ending X coordinate.
            end_y: Ending Y coordinate.
            duration_ms: Total drag duration in milliseconds (default 200).
            steps: Number of intermediate mouse positions (default 10).
            button: Mouse button used for dragging (default 'left').
        """
        params = _optional(
            {"start_x": start_x, "start_y": start_y, "end_x": end_x, "end_y": end_y},
            duration_ms=duration_ms,
            steps=steps,
            button=button,
        )
        return await _simulate("simulate_drag", params, "simulate drag")

    # --- Keyboard & Sequences ---

    @mcp.tool
    async def simulate_key_press(
        key: str,
        duration_ms: Annotated[int | None, Field(ge=16, le=2000)] = None,
        modifiers: KeyModifiers | None = None,
    ) -> str:
        """Simulate pressing a keyboard key in the running game.

        Args:
            key: Key to press (e.g. 'SPACE', 'ENTER', 'A', '1', 'F1', 'ESCAPE', 'UP').
            duration_ms: How long to hold the key in milliseconds (default 100).
            modifiers: Modifier keys (shift, ctrl, alt, meta) held during the press.
        """
        params = _optional(
            {"key": key},
            duration_ms=duration_ms,
            modifiers=modifiers.model_dump(exclude_none=True) if modifiers is not None else None,
        )
        return await _simulate("simulate_key_press", params, "simulate key press")

    @mcp.tool
    async def simulate_input_sequence(sequence: list[SequenceStep]) -> str:
        """Execute a sequence of input steps with precise timing.

        Useful for combos, multi-step interactions or automated testing.

        Args:
            sequence: Input steps executed in order.
        """
        steps = [step.model_dump(exclude_none=True) for step in sequence]
        return await _simulate("simulate_input_sequence", {"sequence": steps}, "execute input sequence")
