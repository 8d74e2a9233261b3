"""
Session, project load/commit and command bus tools.

A project is loaded staged by default; ``mf.project.commit`` swaps it in
atomically and clears undo history.
"""
from typing import Annotated, Any

from fastmcp import Context
from mcp.types import ToolAnnotations

from motionforge.services.registry import motionforge_tool
from motionforge.services.tools.handlers import invoke
from motionforge.services.tools.schemas import tool_description


@motionforge_tool(
    name="mf.ping",
    description=tool_description("mf.ping"),
    annotations=ToolAnnotations(title="Ping", readOnlyHint=True),
)
async def ping(
    ctx: Context,
    nonce: Annotated[str | None, "Opaque value echoed back in the response"] = None,
) -> dict[str, Any]:
    return invoke("mf.ping", nonce=nonce)


@motionforge_tool(
    name="mf.capabilities",
    description=tool_description("mf.capabilities"),
    annotations=ToolAnnotations(title="Capabilities", readOnlyHint=True),
)
async def capabilities(ctx: Context) -> dict[str, Any]:
    return invoke("mf.capabilities")


@motionforge_tool(
    name="mf.project.loadJson",
    description=tool_description("mf.project.loadJson"),
    annotations=ToolAnnotations(title="Load Project JSON"),
)
async def project_load_json(
    ctx: Context,
    json: Annotated[str, "Project JSON text (versions 1-4 are migrated to the latest)"],
    staged: Annotated[bool, "Stage the load instead of replacing the current project"] = True,
) -> dict[str, Any]:
    return invoke("mf.project.loadJson", json=json, staged=staged)


@motionforge_tool(
    name="mf.project.commit",
    description=tool_description("mf.project.commit"),
    annotations=ToolAnnotations(title="Commit Staged Project", destructiveHint=True),
)
async def project_commit(ctx: Context) -> dict[str, Any]:
    return invoke("mf.project.commit")


@motionforge_tool(
    name="mf.project.discard",
    description=tool_description("mf.project.discard"),
    annotations=ToolAnnotations(title="Discard Staged Project"),
)
async def project_discard(ctx: Context) -> dict[str, Any]:
    return invoke("mf.project.discard")


@motionforge_tool(
    name="mf.state.snapshot",
    description=tool_description("mf.state.snapshot"),
    annotations=ToolAnnotations(title="State Snapshot", readOnlyHint=True),
)
async def state_snapshot(ctx: Context) -> dict[str, Any]:
    return invoke("mf.state.snapshot")


@motionforge_tool(
    name="mf.command.execute",
    description=tool_description("mf.command.execute"),
    annotations=ToolAnnotations(title="Execute Command", destructiveHint=True),
)
async def command_execute(
    ctx: Context,
    action: Annotated[str, "Command bus action, e.g. 'scene.addPrimitive' or 'history.undo'"],
    input: Annotated[dict[str, Any] | None, "Action payload (camelCase keys)"] = None,
) -> dict[str, Any]:
    return invoke("mf.command.execute", action=action, input=input)


@motionforge_tool(
    name="mf.export.projectJson",
    description=tool_description("mf.export.projectJson"),
    annotations=ToolAnnotations(title="Export Project JSON", readOnlyHint=True),
)
async def export_project_json(ctx: Context) -> dict[str, Any]:
    return invoke("mf.export.projectJson")
