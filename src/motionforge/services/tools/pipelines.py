"""
Goal-to-bundle pipeline tools.

Both tools stage the input project, script each take, and only commit and
export when ``confirm`` is true. A ``proof.json`` is written either way.
"""
from typing import Annotated, Any

from fastmcp import Context
from mcp.types import ToolAnnotations

from motionforge.services.registry import motionforge_tool
from motionforge.services.tools.handlers import invoke
from motionforge.services.tools.schemas import tool_description


@motionforge_tool(
    name="mf.pipeline.makeBundle",
    description=tool_description("mf.pipeline.makeBundle"),
    annotations=ToolAnnotations(title="Make Bundle", destructiveHint=True),
)
async def pipeline_make_bundle(
    ctx: Context,
    goal: Annotated[str, "Goal text; 'idle then wave' style goals derive one take per phrase"],
    out_dir: Annotated[str, "Output directory for project.json, bundle, manifest and proof.json"],
    confirm: Annotated[bool, "Apply, commit and export; false writes a preview-only proof"],
    in_json: Annotated[str | None, "Input project JSON (defaults to the current project)"] = None,
    in_bundle_base64: Annotated[str | None, "Input bundle zip, base64-encoded"] = None,
    takes: Annotated[list[dict[str, Any]] | None, "Explicit takes: name, startTime, endTime"] = None,
    constraints: Annotated[dict[str, Any] | None, "Optional durationSec, style and fps"] = None,
    target: Annotated[dict[str, Any] | None, "Optional select and bindPath"] = None,
    unity: Annotated[bool | None, "Guarantee Unity bindPaths on the exported project"] = None,
) -> dict[str, Any]:
    return invoke(
        "mf.pipeline.makeBundle",
        goal=goal,
        out_dir=out_dir,
        confirm=confirm,
        in_json=in_json,
        in_bundle_base64=in_bundle_base64,
        takes=takes,
        constraints=constraints,
        target=target,
        unity=unity,
    )


@motionforge_tool(
    name="mf.unity.recipe.makeBundle",
    description=tool_description("mf.unity.recipe.makeBundle"),
    annotations=ToolAnnotations(title="Unity Recipe Bundle", destructiveHint=True),
)
async def unity_recipe_make_bundle(
    ctx: Context,
    goal: Annotated[str, "Goal text"],
    target: Annotated[dict[str, Any], "select (object id or name) and optional bindPath"],
    out_dir: Annotated[str, "Output directory"],
    confirm: Annotated[bool, "Apply, commit and export"],
    constraints: Annotated[dict[str, Any] | None, "Optional durationSec, style and fps"] = None,
) -> dict[str, Any]:
    return invoke(
        "mf.unity.recipe.makeBundle",
        goal=goal,
        target=target,
        out_dir=out_dir,
        confirm=confirm,
        constraints=constraints,
    )
