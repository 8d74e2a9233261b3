"""Centralized configuration for the MotionForge MCP server and CLI.

Loads settings from a .env file (if present) in the working directory, then
falls back to environment variables, then to hardcoded defaults.

Usage in other modules:
    from motionforge.config import cfg

    limit   = cfg.max_json_bytes
    out_dir = cfg.output_dir
"""
from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# .env loader
# ---------------------------------------------------------------------------


def _load_dotenv(directory: Path | None = None) -> None:
    """Parse a .env file and inject values into os.environ.

    Only sets a variable if it is NOT already present in the environment,
    so real env vars always win.
    """
    env_file = (directory or Path.cwd()) / ".env"
    if not env_file.is_file():
        return
    for line in env_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and key not in os.environ:
            os.environ[key] = value


_load_dotenv()


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------

SERVER_NAME = "motionforge-mcp"
SERVER_VERSION = "0.1.0"

_DEFAULT_MAX_JSON_BYTES = 25 * 1024 * 1024
_DEFAULT_MAX_ASSET_BYTES = 5 * 1024 * 1024


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


class _Config:
    """Read-only configuration object. All values resolve at access time so
    they pick up any later changes to os.environ."""

    # ── Limits ───────────────────────────────────────────────────────

    @property
    def max_json_bytes(self) -> int:
        return _int_env("MF_MCP_MAX_JSON_BYTES", _DEFAULT_MAX_JSON_BYTES)

    @property
    def max_asset_bytes(self) -> int:
        return _int_env("MF_MCP_MAX_ASSET_BYTES", _DEFAULT_MAX_ASSET_BYTES)

    # ── Paths ────────────────────────────────────────────────────────

    @property
    def output_dir(self) -> Path:
        return Path(os.environ.get("MF_MCP_OUTPUT_DIR", ".motionforge/exports"))

    # ── Build info ───────────────────────────────────────────────────

    @property
    def commit(self) -> str | None:
        """Short commit hash of the running build, if known."""
        sha = os.environ.get("GITHUB_SHA", "").strip()
        return sha[:7] if sha else None

    @property
    def version(self) -> str:
        return SERVER_VERSION

    @property
    def source_date_epoch(self) -> int | None:
        """Fixed export timestamp (seconds) for reproducible bundles."""
        raw = os.environ.get("SOURCE_DATE_EPOCH", "").strip()
        return int(raw) if raw.isdigit() else None

    # ── Logging ──────────────────────────────────────────────────────

    @property
    def log_level(self) -> str:
        return os.environ.get("MF_MCP_LOG_LEVEL", "INFO").upper()


cfg = _Config()
