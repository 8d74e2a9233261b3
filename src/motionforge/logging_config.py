"""Logging setup for the CLI and server entry points.

Everything goes to stderr; stdout is reserved for JSON output and the stdio
MCP stream.
"""
from __future__ import annotations

import logging
import sys

from motionforge.config import cfg

LOGGER_NAMES = ("motionforge-mcp", "motionforge")


def configure_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s"))
    for name in LOGGER_NAMES:
        target = logging.getLogger(name)
        target.handlers[:] = [handler]
        target.setLevel((level or cfg.log_level).upper())
        target.propagate = False
