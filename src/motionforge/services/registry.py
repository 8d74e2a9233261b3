"""
Registry for MotionForge MCP tools.

Tool modules decorate their handlers with ``@motionforge_tool``; the server
walks ``get_registered_tools()`` at startup and hands each entry to FastMCP.
"""
from typing import Any, Callable

_tool_registry: list[dict[str, Any]] = []


def motionforge_tool(
    name: str,
    description: str | None = None,
    **kwargs: Any,
) -> Callable:
    """Register a function as an MCP tool.

    Args:
        name: Wire name of the tool, e.g. ``mf.plan.apply``.
        description: Tool description shown to clients.
        **kwargs: Extra options forwarded to ``FastMCP.tool`` (annotations, tags).
    """
    def decorator(func: Callable) -> Callable:
        _tool_registry.append({
            "func": func,
            "name": name,
            "description": description,
            "kwargs": kwargs,
        })
        return func

    return decorator


def get_registered_tools() -> list[dict[str, Any]]:
    return _tool_registry.copy()
