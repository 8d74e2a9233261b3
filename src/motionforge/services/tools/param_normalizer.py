"""
Parameter normalization for MotionForge tools.

Tool payloads travel as camelCase on the wire (``durationSec``, ``applyMode``)
while the Python handlers take snake_case keyword arguments. These helpers let
callers use either convention.
"""
import asyncio
import functools
import logging
import re
from typing import Any, Callable

logger = logging.getLogger("motionforge-mcp")


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case.

    Examples:
        applyMode -> apply_mode
        inBundleBase64 -> in_bundle_base64
        HTMLParser -> html_parser
        already_snake -> already_snake
    """
    s1 = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    s2 = re.sub(r'([a-z\d])([A-Z])', r'\1_\2', s1)
    return s2.lower()


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase; camelCase input is returned unchanged."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def normalize_arguments(arguments: dict | None) -> dict | None:
    """Rename top-level camelCase keys to snake_case.

    When both spellings of a key are present the snake_case value wins.
    Nested dicts are left alone.
    """
    if arguments is None:
        return None

    normalized: dict[str, Any] = {}
    explicit: set[str] = set()
    for key, value in arguments.items():
        snake_key = camel_to_snake(key)
        if snake_key == key:
            explicit.add(key)
            normalized[key] = value
            continue
        if snake_key in explicit:
            logger.debug("Skipping camelCase '%s' as snake_case '%s' already provided", key, snake_key)
            continue
        normalized[snake_key] = value
    return normalized


def camelize_keys(payload: dict | None) -> dict:
    """Rename top-level snake_case keys to camelCase, keeping camelCase on conflict."""
    if not payload:
        return {}
    out: dict[str, Any] = {}
    for key, value in payload.items():
        camel_key = snake_to_camel(key)
        if camel_key != key and camel_key in payload:
            continue
        out[camel_key] = value
    return out


def normalize_params(func: Callable) -> Callable:
    """Decorator that normalizes camelCase keyword arguments to snake_case.

    Handles both sync and async functions:
        run_script(applyMode="apply")  ==  run_script(apply_mode="apply")
    """
    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await func(*args, **normalize_arguments(kwargs))
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **normalize_arguments(kwargs))
    return wrapper
