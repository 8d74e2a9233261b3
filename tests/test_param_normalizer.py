"""Tests for parameter normalization utility."""
import pytest

from motionforge.services.tools.param_normalizer import (
    camel_to_snake,
    camelize_keys,
    normalize_arguments,
    normalize_params,
    snake_to_camel,
)


class TestNormalizeArguments:
    """Tests for normalize_arguments (middleware version)."""

    def test_camel_case_to_snake_case(self):
        """camelCase arguments are normalized to snake_case."""
        result = normalize_arguments({
            "planId": "h1234abcd",
            "applyMode": "previewOnly",
            "outDir": "./out"
        })
        assert result == {
            "plan_id": "h1234abcd",
            "apply_mode": "previewOnly",
            "out_dir": "./out"
        }

    def test_snake_case_unchanged(self):
        """snake_case arguments pass through unchanged."""
        result = normalize_arguments({"plan_id": "h1", "confirm": True})
        assert result == {"plan_id": "h1", "confirm": True}

    def test_conflict_prefers_snake_case(self):
        """When both conventions are provided, snake_case wins."""
        result = normalize_arguments({
            "outDir": "./camel",
            "out_dir": "./snake"
        })
        assert result == {"out_dir": "./snake"}

    def test_nested_dicts_untouched(self):
        """Only top-level keys are renamed."""
        result = normalize_arguments({"constraints": {"durationSec": 1}})
        assert result == {"constraints": {"durationSec": 1}}

    def test_none_returns_none(self):
        assert normalize_arguments(None) is None

    def test_empty_dict(self):
        assert normalize_arguments({}) == {}


class TestCamelToSnake:
    """Tests for camel_to_snake conversion."""

    def test_standard_camel_case(self):
        assert camel_to_snake("applyMode") == "apply_mode"
        assert camel_to_snake("inBundleBase64") == "in_bundle_base64"
        assert camel_to_snake("maxBytes") == "max_bytes"

    def test_already_snake_case(self):
        assert camel_to_snake("plan_id") == "plan_id"
        assert camel_to_snake("goal") == "goal"

    def test_consecutive_capitals(self):
        assert camel_to_snake("HTMLParser") == "html_parser"
        assert camel_to_snake("parseJSON") == "parse_json"


class TestCamelize:
    """snake_case to camelCase for command bus payloads."""

    def test_snake_to_camel(self):
        assert snake_to_camel("duration_seconds") == "durationSeconds"
        assert snake_to_camel("object_id") == "objectId"
        assert snake_to_camel("durationSeconds") == "durationSeconds"

    def test_camelize_keys(self):
        assert camelize_keys({"duration_seconds": 3}) == {"durationSeconds": 3}

    def test_camelize_conflict_keeps_camel(self):
        result = camelize_keys({"object_id": "a", "objectId": "b"})
        assert result == {"objectId": "b"}

    def test_camelize_empty(self):
        assert camelize_keys(None) == {}


class TestNormalizeParamsSync:
    """normalize_params with sync functions."""

    def test_sync_function_camel_case_params(self):
        received_kwargs = {}

        @normalize_params
        def sync_tool(**kwargs):
            received_kwargs.update(kwargs)
            return "ok"

        assert sync_tool(planId="h1", applyMode="apply") == "ok"
        assert received_kwargs == {"plan_id": "h1", "apply_mode": "apply"}

    def test_sync_function_conflict_prefers_snake_case(self):
        received_kwargs = {}

        @normalize_params
        def sync_tool(**kwargs):
            received_kwargs.update(kwargs)
            return "ok"

        sync_tool(outDir="a", out_dir="b")
        assert received_kwargs["out_dir"] == "b"


class TestNormalizeParamsAsync:
    """normalize_params with async functions."""

    @pytest.mark.asyncio
    async def test_async_function_camel_case_params(self):
        received_kwargs = {}

        @normalize_params
        async def async_tool(**kwargs):
            received_kwargs.update(kwargs)
            return "ok"

        result = await async_tool(maxBytes=10, path="a.bin")

        assert result == "ok"
        assert received_kwargs == {"max_bytes": 10, "path": "a.bin"}


class TestParamNormalizerMiddleware:
    """The middleware rewrites arguments before the tool runs."""

    @pytest.mark.asyncio
    async def test_rewrites_camel_case_arguments(self):
        from fastmcp.server.middleware import MiddlewareContext
        from mcp.types import CallToolRequestParams

        from motionforge.transport.param_normalizer_middleware import ParamNormalizerMiddleware

        seen = {}

        async def call_next(context):
            seen["arguments"] = context.message.arguments
            return "done"

        context = MiddlewareContext(
            message=CallToolRequestParams(name="mf.script.run", arguments={"applyMode": "apply", "script": "x"}),
        )

        result = await ParamNormalizerMiddleware().on_call_tool(context, call_next)

        assert result == "done"
        assert seen["arguments"] == {"apply_mode": "apply", "script": "x"}
