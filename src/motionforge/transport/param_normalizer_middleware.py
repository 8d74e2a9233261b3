"""
Middleware for normalizing camelCase tool arguments to snake_case.

MotionForge clients speak camelCase (``applyMode``, ``outDir``) while the
registered tool functions take snake_case parameters. Normalizing before
FastMCP's pydantic validation lets either convention through.
"""
import logging

from fastmcp.server.middleware import Middleware, MiddlewareContext

from motionforge.services.tools.param_normalizer import normalize_arguments

logger = logging.getLogger("motionforge-mcp")


class ParamNormalizerMiddleware(Middleware):
    """
    Rewrites tool call arguments before validation:
        mf.script.run(applyMode="apply")  ->  mf.script.run(apply_mode="apply")
    """

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        message = context.message
        arguments = getattr(message, "arguments", None)
        if arguments:
            normalized = normalize_arguments(arguments)
            if normalized != arguments:
                logger.debug("Normalized tool arguments: %s -> %s", list(arguments), list(normalized))
                context = context.copy(message=message.model_copy(update={"arguments": normalized}))
        return await call_next(context)
