"""
MotionForge Script tools.

Scripts are line-oriented (``select``, ``duration``, ``key``, ``bounce`` ...).
Validation reports ``line:N`` paths; compile and run register a plan whose id
is stable for the same script and base project.
"""
from typing import Annotated, Any, Literal

from fastmcp import Context
from mcp.types import ToolAnnotations

from motionforge.services.registry import motionforge_tool
from motionforge.services.tools.handlers import invoke
from motionforge.services.tools.schemas import tool_description


@motionforge_tool(
    name="mf.script.validate",
    description=tool_description("mf.script.validate"),
    annotations=ToolAnnotations(title="Validate Script", readOnlyHint=True),
)
async def script_validate(
    ctx: Context,
    script: Annotated[str, "MotionForge Script source"],
) -> dict[str, Any]:
    return invoke("mf.script.validate", script=script)


@motionforge_tool(
    name="mf.script.compile",
    description=tool_description("mf.script.compile"),
    annotations=ToolAnnotations(title="Compile Script", readOnlyHint=True),
)
async def script_compile(
    ctx: Context,
    script: Annotated[str, "MotionForge Script source"],
    defaults: Annotated[dict[str, Any] | None, "Fallback fps and durationSec"] = None,
    staged: Annotated[bool | None, "Compile against the staged project instead of the current one"] = None,
) -> dict[str, Any]:
    return invoke("mf.script.compile", script=script, defaults=defaults, staged=staged)


@motionforge_tool(
    name="mf.script.run",
    description=tool_description("mf.script.run"),
    annotations=ToolAnnotations(title="Run Script", destructiveHint=True),
)
async def script_run(
    ctx: Context,
    script: Annotated[str, "MotionForge Script source"],
    apply_mode: Annotated[Literal["previewOnly", "apply"], "previewOnly returns the diff without mutating"],
    confirm: Annotated[bool, "Confirm large or looping edits"] = False,
    staged: Annotated[bool, "Run against the staged project"] = False,
) -> dict[str, Any]:
    return invoke("mf.script.run", script=script, apply_mode=apply_mode, confirm=confirm, staged=staged)


@motionforge_tool(
    name="mf.script.examples",
    description=tool_description("mf.script.examples"),
    annotations=ToolAnnotations(title="Script Examples", readOnlyHint=True),
)
async def script_examples(ctx: Context) -> dict[str, Any]:
    return invoke("mf.script.examples")


@motionforge_tool(
    name="mf.skill.generateScript",
    description=tool_description("mf.skill.generateScript"),
    annotations=ToolAnnotations(title="Generate Script From Goal", readOnlyHint=True),
)
async def skill_generate_script(
    ctx: Context,
    goal: Annotated[str, "Goal text, e.g. 'idle loop' or 'camera dolly'"],
    constraints: Annotated[dict[str, Any] | None, "Optional durationSec, fps and style"] = None,
    target: Annotated[dict[str, Any] | None, "Optional select: object id or name to animate"] = None,
) -> dict[str, Any]:
    return invoke("mf.skill.generateScript", goal=goal, constraints=constraints, target=target)
