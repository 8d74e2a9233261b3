"""
MotionForge MCP server.

Builds a FastMCP server exposing every registered ``mf.*`` tool over stdio.
Logs go to stderr so they never corrupt the stdio protocol stream.
"""
from __future__ import annotations

import importlib
import logging

import click
from fastmcp import FastMCP

from motionforge.config import SERVER_NAME, cfg
from motionforge.logging_config import configure_logging
from motionforge.services.registry import get_registered_tools
from motionforge.transport.param_normalizer_middleware import ParamNormalizerMiddleware

logger = logging.getLogger("motionforge-mcp")

TOOL_MODULES = (
    "motionforge.services.tools.project",
    "motionforge.services.tools.plans",
    "motionforge.services.tools.scripts",
    "motionforge.services.tools.exports",
    "motionforge.services.tools.pipelines",
)

INSTRUCTIONS = """MotionForge headless animation runtime.

Typical flow: mf.project.loadJson (staged) -> mf.project.commit ->
mf.plan.generate or mf.script.compile -> mf.plan.previewDiff ->
mf.plan.apply (confirm=true) -> mf.export.bundle.
mf.pipeline.makeBundle runs the whole flow and writes proof.json."""


def register_all_tools(mcp: FastMCP) -> int:
    """Import every tool module and register its tools on ``mcp``."""
    for module in TOOL_MODULES:
        importlib.import_module(module)
    tools = get_registered_tools()
    for entry in tools:
        mcp.tool(name=entry["name"], description=entry["description"], **entry["kwargs"])(entry["func"])
    logger.info("Registered %d MotionForge tools", len(tools))
    return len(tools)


def create_server() -> FastMCP:
    mcp = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS)
    mcp.add_middleware(ParamNormalizerMiddleware())
    register_all_tools(mcp)
    return mcp


@click.command("motionforge-mcp")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override MF_MCP_LOG_LEVEL.",
)
def main(log_level: str | None):
    """Start the MotionForge MCP server.

    \b
    Examples:
        motionforge-mcp
        motionforge-mcp --log-level DEBUG
    """
    configure_logging(log_level)
    logger.info("Starting %s %s (stdio)", SERVER_NAME, cfg.version)
    create_server().run()


if __name__ == "__main__":
    main()
