"""Bundle and Unity package export, plus size-guarded file IO."""
from typing import Annotated, Any

from fastmcp import Context
from mcp.types import ToolAnnotations

from motionforge.services.registry import motionforge_tool
from motionforge.services.tools.handlers import invoke
from motionforge.services.tools.schemas import tool_description


@motionforge_tool(
    name="mf.export.bundle",
    description=tool_description("mf.export.bundle"),
    annotations=ToolAnnotations(title="Export Bundle"),
)
async def export_bundle(
    ctx: Context,
    out_dir: Annotated[str, "Directory that receives motionforge-bundle.zip"],
) -> dict[str, Any]:
    return invoke("mf.export.bundle", out_dir=out_dir)


@motionforge_tool(
    name="mf.export.unityPackage",
    description=tool_description("mf.export.unityPackage"),
    annotations=ToolAnnotations(title="Export Unity Package"),
)
async def export_unity_package(
    ctx: Context,
    out_dir: Annotated[str, "Directory that receives motionforge-unity-package.zip"],
    options: Annotated[dict[str, Any] | None, "Optional scale, yUp and includeProjectJson"] = None,
) -> dict[str, Any]:
    return invoke("mf.export.unityPackage", out_dir=out_dir, options=options)


@motionforge_tool(
    name="mf.io.readFileBase64",
    description=tool_description("mf.io.readFileBase64"),
    annotations=ToolAnnotations(title="Read File (base64)", readOnlyHint=True),
)
async def io_read_file_base64(
    ctx: Context,
    path: Annotated[str, "File to read"],
    max_bytes: Annotated[int | None, "Refuse files larger than this (default 256 KiB, max 1 MiB)"] = None,
) -> dict[str, Any]:
    return invoke("mf.io.readFileBase64", path=path, max_bytes=max_bytes)


@motionforge_tool(
    name="mf.io.writeFile",
    description=tool_description("mf.io.writeFile"),
    annotations=ToolAnnotations(title="Write File", destructiveHint=True),
)
async def io_write_file(
    ctx: Context,
    path: Annotated[str, "Destination path"],
    base64: Annotated[str, "File content, base64-encoded"],
) -> dict[str, Any]:
    return invoke("mf.io.writeFile", path=path, base64=base64)
