"""Natural-language plan tools: generate, preview, apply and discard."""
from typing import Annotated, Any

from fastmcp import Context
from mcp.types import ToolAnnotations

from motionforge.services.registry import motionforge_tool
from motionforge.services.tools.handlers import invoke
from motionforge.services.tools.schemas import tool_description


@motionforge_tool(
    name="mf.plan.generate",
    description=tool_description("mf.plan.generate"),
    annotations=ToolAnnotations(title="Generate Plan", readOnlyHint=True),
)
async def plan_generate(
    ctx: Context,
    goal: Annotated[str, "What to animate, e.g. 'bounce the cube'"],
    constraints: Annotated[
        dict[str, Any] | None,
        "Optional durationSec, fps, style, loop, targetObjects and camera.enabled",
    ] = None,
) -> dict[str, Any]:
    return invoke("mf.plan.generate", goal=goal, constraints=constraints)


@motionforge_tool(
    name="mf.plan.previewDiff",
    description=tool_description("mf.plan.previewDiff"),
    annotations=ToolAnnotations(title="Preview Plan Diff", readOnlyHint=True),
)
async def plan_preview_diff(
    ctx: Context,
    plan_id: Annotated[str, "Plan id returned by mf.plan.generate or mf.script.compile"],
) -> dict[str, Any]:
    return invoke("mf.plan.previewDiff", plan_id=plan_id)


@motionforge_tool(
    name="mf.plan.apply",
    description=tool_description("mf.plan.apply"),
    annotations=ToolAnnotations(title="Apply Plan", destructiveHint=True),
)
async def plan_apply(
    ctx: Context,
    plan_id: Annotated[str, "Plan id to apply"],
    confirm: Annotated[bool, "Required true when the plan is flagged as needing confirmation"],
) -> dict[str, Any]:
    return invoke("mf.plan.apply", plan_id=plan_id, confirm=confirm)


@motionforge_tool(
    name="mf.plan.discard",
    description=tool_description("mf.plan.discard"),
    annotations=ToolAnnotations(title="Discard Plan"),
)
async def plan_discard(
    ctx: Context,
    plan_id: Annotated[str, "Plan id to forget"],
) -> dict[str, Any]:
    return invoke("mf.plan.discard", plan_id=plan_id)
