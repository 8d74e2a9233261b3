"""
Synchronous implementations of the mf.* tools.

``ToolHandlers`` owns one ``MotionForgeRuntime`` plus the in-memory plan
registry. Every tool takes a JSON-like payload and returns a JSON-like dict
with an ``ok`` flag; failures carry ``error: {code, message}``. The FastMCP
wrappers, the make-bundle pipeline and the CLI all go through ``call``.
"""
from __future__ import annotations

import base64
import binascii
import functools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from motionforge.agent import (
    PlannerError,
    RuntimeApplyAdapter,
    apply_plan_steps_atomic,
    generate_plan,
    generate_script_from_goal,
    simulate_plan_diff,
)
from motionforge.config import SERVER_VERSION, cfg
from motionforge.models import PlanSafety, PlanStep, WireModel
from motionforge.pipeline import MakeBundleInput, Tooling, run_make_bundle_pipeline
from motionforge.pipeline.hashing import sha256_hex_from_string, short_hash
from motionforge.runtime import MotionForgeRuntime, RuntimeCommandError, as_runtime_error
from motionforge.script import compile_script_to_plan, validate_script
from motionforge.services.tools.param_normalizer import camelize_keys
from motionforge.services.tools.schemas import TOOL_DEFINITIONS, TOOL_INPUTS

logger = logging.getLogger("motionforge-mcp")

SCRIPT_EXAMPLES: tuple[dict[str, str], ...] = (
    {
        "name": "bounce",
        "description": "Quick bounce with squash/stretch helper.",
        "script": 'select "obj_cube"\nduration 1\nlabel "Bounce"\nbounce amplitude 1.2 at 0..1',
    },
    {
        "name": "recoil",
        "description": "Kick-back and recover helper.",
        "script": 'select "obj_cube"\nduration 0.4\nlabel "Recoil"\nrecoil distance 0.25 at 0..0.4',
    },
    {
        "name": "anticipation-hit",
        "description": "Anticipation, impact, and settle using explicit keys.",
        "script": "\n".join([
            'select "obj_cube"',
            "duration 1.2",
            'label "Anticipation Hit"',
            "key position x at 0 = 0 ease easeOut",
            "key position x at 0.35 = -0.35 ease easeIn",
            "key position x at 0.6 = 1.2 ease step",
            "key position x at 1.2 = 0 ease easeOut",
        ]),
    },
    {
        "name": "idle-loop",
        "description": "Subtle breathing loop with position and scale.",
        "script": "\n".join([
            'select "obj_cube"',
            "duration 2",
            "fps 30",
            'label "Idle Loop"',
            "key position y at 0 = 0 ease easeInOut",
            "key position y at 1 = 0.06 ease easeInOut",
            "key position y at 2 = 0 ease easeInOut",
            "key scale y at 0 = 1 ease easeInOut",
            "key scale y at 1 = 1.03 ease easeInOut",
            "key scale y at 2 = 1 ease easeInOut",
            "loop on",
        ]),
    },
    {
        "name": "turn-in-place",
        "description": "Rotate around Y by 90 degrees.",
        "script": "\n".join([
            'select "obj_cube"',
            "duration 1",
            'label "Turn"',
            "key rotation y at 0 = 0 deg ease easeInOut",
            "key rotation y at 1 = 90 deg ease easeInOut",
        ]),
    },
    {
        "name": "camera-dolly",
        "description": "Simple camera dolly move on z axis.",
        "script": "\n".join([
            'select "obj_camera"',
            "duration 3",
            'label "Camera Dolly"',
            "key position z at 0 = 6 ease easeInOut",
            "key position z at 3 = 2.5 ease easeInOut",
        ]),
    },
)


def failure(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message}, **extra}


def resolve_error(error: BaseException, fallback_code: str, fallback_message: str) -> dict[str, Any]:
    resolved = as_runtime_error(error, fallback_code, fallback_message)
    return failure(resolved.code, resolved.message)


def format_validation_error(exc: ValidationError) -> str:
    messages = []
    for item in exc.errors():
        loc = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return "; ".join(messages)


def _wire(value: Any) -> Any:
    if isinstance(value, WireModel):
        return value.to_wire()
    if isinstance(value, list):
        return [_wire(item) for item in value]
    return value


def _guarded(fallback_code: str, fallback_message: str):
    """Turn exceptions raised by a tool body into ``{ok: False, error}``."""
    def decorator(func: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
        @functools.wraps(func)
        def wrapper(self: "ToolHandlers", payload: Any) -> dict[str, Any]:
            try:
                return func(self, payload)
            except RuntimeCommandError as exc:
                return failure(exc.code, exc.message)
            except Exception as exc:
                logger.exception("Tool body failed (%s)", fallback_code)
                return resolve_error(exc, fallback_code, fallback_message)
        return wrapper
    return decorator


@dataclass
class PlanRecord:
    plan_id: str
    scope: str
    summary: dict[str, Any]
    steps: list[PlanStep]
    safety: PlanSafety
    base_project_json: str
    base_project_hash: str


class ToolHandlers:
    """Dispatch table for every mf.* tool over a single runtime."""

    def __init__(
        self,
        runtime: MotionForgeRuntime | None = None,
        version: str = SERVER_VERSION,
        commit: str | None = None,
        max_asset_bytes: int | None = None,
        output_dir: str | Path | None = None,
    ):
        self.runtime = runtime or MotionForgeRuntime()
        self.version = version
        self.commit = commit
        self.max_asset_bytes = max_asset_bytes or cfg.max_asset_bytes
        self.output_dir = Path(output_dir) if output_dir else cfg.output_dir
        self.plans: dict[str, PlanRecord] = {}
        self._tools: dict[str, Callable[[Any], dict[str, Any]]] = {
            "mf.ping": self.ping,
            "mf.capabilities": self.capabilities,
            "mf.project.loadJson": self.project_load_json,
            "mf.project.commit": self.project_commit,
            "mf.project.discard": self.project_discard,
            "mf.state.snapshot": self.state_snapshot,
            "mf.command.execute": self.command_execute,
            "mf.plan.generate": self.plan_generate,
            "mf.plan.previewDiff": self.plan_preview_diff,
            "mf.plan.apply": self.plan_apply,
            "mf.plan.discard": self.plan_discard,
            "mf.script.compile": self.script_compile,
            "mf.script.run": self.script_run,
            "mf.script.validate": self.script_validate,
            "mf.script.examples": self.script_examples,
            "mf.skill.generateScript": self.skill_generate_script,
            "mf.export.bundle": self.export_bundle,
            "mf.export.unityPackage": self.export_unity_package,
            "mf.export.projectJson": self.export_project_json,
            "mf.io.readFileBase64": self.io_read_file_base64,
            "mf.io.writeFile": self.io_write_file,
            "mf.pipeline.makeBundle": self.pipeline_make_bundle,
            "mf.unity.recipe.makeBundle": self.unity_recipe_make_bundle,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def call(self, name: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Validate ``payload`` against the tool's input model and run it."""
        handler = self._tools.get(name)
        if handler is None:
            return failure("MF_ERR_UNKNOWN_TOOL", f'Unknown tool "{name}".')
        try:
            params = TOOL_INPUTS[name].model_validate(payload or {})
        except ValidationError as exc:
            return failure("MF_ERR_INVALID_INPUT", format_validation_error(exc))
        logger.debug("Calling %s", name)
        return handler(params)

    # ── Plan registry ────────────────────────────────────────────────

    def _staged_project_json(self) -> str:
        staged = self.runtime.staged_project_json()
        if staged is None:
            raise RuntimeCommandError("MF_ERR_NO_STAGED_PROJECT", "No staged project is available.")
        return staged

    def _scope_project_json(self, scope: str) -> str:
        if scope == "staged":
            return self._staged_project_json()
        return self.runtime.export_project_json()

    def _runtime_from(self, project_json: str) -> MotionForgeRuntime:
        scoped = MotionForgeRuntime(max_json_bytes=self.runtime.max_json_bytes)
        scoped.load_project_json(project_json, staged=False)
        return scoped

    def _create_plan(
        self,
        scope: str,
        seed: dict[str, Any],
        summary: dict[str, Any],
        steps: list[PlanStep],
        safety: PlanSafety,
        base_project_json: str,
    ) -> PlanRecord:
        plan_id = "h" + short_hash({
            **seed,
            "scope": scope,
            "baseProjectJson": base_project_json,
            "steps": [step.to_wire() for step in steps],
        })
        record = PlanRecord(
            plan_id=plan_id,
            scope=scope,
            summary=summary,
            steps=steps,
            safety=safety,
            base_project_json=base_project_json,
            base_project_hash=sha256_hex_from_string(base_project_json),
        )
        self.plans[plan_id] = record
        return record

    def _get_plan(self, plan_id: str) -> PlanRecord:
        record = self.plans.get(plan_id)
        if record is None:
            raise RuntimeCommandError("MF_ERR_PLAN_NOT_FOUND", f'Unknown planId "{plan_id}".')
        return record

    def _preview(self, record: PlanRecord) -> dict[str, Any]:
        return simulate_plan_diff(self._runtime_from(record.base_project_json), record.steps).to_wire()

    def _apply(self, record: PlanRecord, confirm: bool):
        if record.safety.requires_confirm and not confirm:
            raise RuntimeCommandError("MF_ERR_CONFIRM_REQUIRED", "Plan requires confirm=true before apply.")
        current_hash = sha256_hex_from_string(self._scope_project_json(record.scope))
        if current_hash != record.base_project_hash:
            raise RuntimeCommandError("MF_ERR_PLAN_STALE", "Current project changed since plan generation.")

        if record.scope == "staged":
            staged_runtime = self._runtime_from(record.base_project_json)
            applied = apply_plan_steps_atomic(RuntimeApplyAdapter(staged_runtime), record.steps)
            if applied.ok:
                self.runtime.load_project_json(staged_runtime.export_project_json(), staged=True)
            return applied
        return apply_plan_steps_atomic(RuntimeApplyAdapter(self.runtime), record.steps)

    def _compile(self, script: str, defaults: dict[str, Any] | None, staged: bool) -> dict[str, Any]:
        scope = "staged" if staged else "current"
        base_project_json = self._scope_project_json(scope)
        snapshot = self._runtime_from(base_project_json).snapshot()
        compiled = compile_script_to_plan(script, {
            "defaults": defaults or {},
            "availableObjects": [{"id": o["id"], "name": o["name"]} for o in snapshot["scene"]["objects"]],
            "selectedObjectId": snapshot["selection"]["objectId"],
        })
        if not compiled.ok:
            return {
                "ok": False,
                "errors": _wire(compiled.errors),
                "warnings": list(compiled.warnings),
            }
        record = self._create_plan(
            scope=scope,
            seed={"script": script, "defaults": defaults or {}},
            summary=compiled.summary.to_wire(),
            steps=compiled.steps,
            safety=compiled.safety,
            base_project_json=base_project_json,
        )
        return {
            "ok": True,
            "planId": record.plan_id,
            "ast": compiled.ast.to_wire(),
            "summary": compiled.summary.to_wire(),
            "warnings": list(compiled.warnings),
        }

    def _out_dir(self, raw: str) -> Path:
        """Relative export directories land under the configured output directory."""
        path = Path(raw).expanduser()
        return path if path.is_absolute() else self.output_dir / path

    def _scene_objects(self) -> list[dict[str, str]]:
        return [{"id": o["id"], "name": o["name"]} for o in self.runtime.snapshot()["scene"]["objects"]]

    # ── Session ──────────────────────────────────────────────────────

    def ping(self, params) -> dict[str, Any]:
        return {"ok": True, "version": self.version, "commit": self.commit, "nonce": params.nonce}

    def capabilities(self, params) -> dict[str, Any]:
        return {
            "ok": True,
            "tools": [
                {"name": d.name, "description": d.description, "output": d.output} for d in TOOL_DEFINITIONS
            ],
            "actions": self.runtime.get_capabilities()["actions"],
        }

    # ── Project ──────────────────────────────────────────────────────

    @_guarded("MF_ERR_LOAD_JSON", "Failed to load project JSON.")
    def project_load_json(self, params) -> dict[str, Any]:
        return {"ok": True, **self.runtime.load_project_json(params.json_text, staged=params.staged)}

    @_guarded("MF_ERR_COMMIT", "Failed to commit staged project.")
    def project_commit(self, params) -> dict[str, Any]:
        return self.runtime.commit_staged_load()

    def project_discard(self, params) -> dict[str, Any]:
        return self.runtime.discard_staged_load()

    def state_snapshot(self, params) -> dict[str, Any]:
        return {"ok": True, **self.runtime.snapshot()}

    @_guarded("MF_ERR_COMMAND_EXECUTE", "Command execution failed.")
    def command_execute(self, params) -> dict[str, Any]:
        payload = params.input if isinstance(params.input, dict) else {}
        executed = self.runtime.execute(params.action, camelize_keys(payload))
        return {"ok": True, **executed.to_dict()}

    # ── Plans ────────────────────────────────────────────────────────

    def plan_generate(self, params) -> dict[str, Any]:
        try:
            objects = self._scene_objects()
            generated = generate_plan(
                {"goal": params.goal, "constraints": params.constraints},
                {"objects": objects, "selectedObjectId": self.runtime.snapshot()["selection"]["objectId"]},
            )
            constraints = params.constraints.to_wire() if params.constraints else {}
            record = self._create_plan(
                scope="current",
                seed={"goal": params.goal, "constraints": constraints},
                summary=generated.summary.to_wire(),
                steps=generated.steps,
                safety=generated.safety,
                base_project_json=self.runtime.export_project_json(),
            )
        except PlannerError as exc:
            return failure(exc.code, exc.message, suggestions=list(exc.suggestions))
        except RuntimeCommandError as exc:
            return failure(exc.code, exc.message)
        except Exception as exc:
            logger.exception("Plan generation failed")
            return resolve_error(exc, "MF_ERR_PLAN_GENERATE", "Plan generation failed.")
        return {
            "ok": True,
            "planId": record.plan_id,
            "summary": record.summary,
            "steps": _wire(record.steps),
            "safety": record.safety.to_wire(),
        }

    @_guarded("MF_ERR_PLAN_PREVIEW", "Plan preview failed.")
    def plan_preview_diff(self, params) -> dict[str, Any]:
        return {"ok": True, "diff": self._preview(self._get_plan(params.plan_id))}

    @_guarded("MF_ERR_PLAN_APPLY", "Plan apply failed.")
    def plan_apply(self, params) -> dict[str, Any]:
        applied = self._apply(self._get_plan(params.plan_id), params.confirm)
        if not applied.ok:
            resolved = as_runtime_error(applied.error, "MF_ERR_PLAN_APPLY_FAILED", "Plan apply failed.")
            return failure("MF_ERR_PLAN_APPLY_FAILED", resolved.message, stepId=applied.failed_step_id)
        self.plans.pop(params.plan_id, None)
        return {
            "ok": True,
            "events": _wire(applied.events),
            "result": {"commandsExecuted": applied.commands_executed},
        }

    def plan_discard(self, params) -> dict[str, Any]:
        self.plans.pop(params.plan_id, None)
        return {"ok": True}

    # ── Scripts ──────────────────────────────────────────────────────

    @_guarded("MF_ERR_SCRIPT_VALIDATE", "Script validation failed.")
    def script_validate(self, params) -> dict[str, Any]:
        validation = validate_script(params.script, {"availableObjects": self._scene_objects()})
        return {
            "ok": validation.ok,
            "errors": _wire(validation.errors) if not validation.ok else [],
            "warnings": _wire(validation.warnings),
        }

    @_guarded("MF_ERR_SCRIPT_COMPILE", "Script compile failed.")
    def script_compile(self, params) -> dict[str, Any]:
        defaults = params.defaults.model_dump(by_alias=True, exclude_none=True) if params.defaults else None
        return self._compile(params.script, defaults, bool(params.staged))

    @_guarded("MF_ERR_SCRIPT_RUN", "Script run failed.")
    def script_run(self, params) -> dict[str, Any]:
        compiled = self._compile(params.script, None, params.staged)
        if not compiled["ok"]:
            return failure(
                "MF_ERR_SCRIPT_COMPILE",
                "Script compile failed.",
                warnings=compiled["warnings"],
                errors=compiled["errors"],
            )

        plan_id = compiled["planId"]
        record = self._get_plan(plan_id)
        diff = self._preview(record)
        if params.apply_mode == "previewOnly":
            return {"ok": True, "planId": plan_id, "diff": diff, "warnings": compiled["warnings"]}

        applied = self._apply(record, params.confirm)
        if not applied.ok:
            resolved = as_runtime_error(applied.error, "MF_ERR_PLAN_APPLY_FAILED", "Plan apply failed.")
            return failure(
                resolved.code,
                resolved.message,
                planId=plan_id,
                diff=diff,
                warnings=compiled["warnings"],
                stepId=applied.failed_step_id,
            )
        self.plans.pop(plan_id, None)
        return {
            "ok": True,
            "planId": plan_id,
            "diff": diff,
            "events": _wire(applied.events),
            "warnings": compiled["warnings"],
            "result": {"commandsExecuted": applied.commands_executed},
        }

    def script_examples(self, params) -> dict[str, Any]:
        return {"ok": True, "examples": [dict(example) for example in SCRIPT_EXAMPLES]}

    @_guarded("MF_ERR_SKILL_GENERATE_SCRIPT", "Skill script generation failed.")
    def skill_generate_script(self, params) -> dict[str, Any]:
        constraints = params.constraints
        return generate_script_from_goal(
            params.goal,
            duration_sec=constraints.duration_sec if constraints else None,
            fps=constraints.fps if constraints else None,
            style=constraints.style if constraints else None,
            target_select=params.target.select if params.target else None,
        )

    # ── Export and IO ────────────────────────────────────────────────

    @_guarded("MF_ERR_EXPORT_BUNDLE", "Bundle export failed.")
    def export_bundle(self, params) -> dict[str, Any]:
        return self.runtime.export_bundle(self._out_dir(params.out_dir))

    @_guarded("MF_ERR_EXPORT_UNITY_PACKAGE", "Unity package export failed.")
    def export_unity_package(self, params) -> dict[str, Any]:
        options = params.options
        return self.runtime.export_unity_package(
            self._out_dir(params.out_dir),
            scale=options.scale if options and options.scale is not None else 1,
            y_up=options.y_up if options and options.y_up is not None else True,
            include_project_json=(
                options.include_project_json if options and options.include_project_json is not None else True
            ),
        )

    def export_project_json(self, params) -> dict[str, Any]:
        return {"ok": True, "json": self.runtime.export_project_json()}

    @_guarded("MF_ERR_IO_READ", "Failed to read file.")
    def io_read_file_base64(self, params) -> dict[str, Any]:
        data = Path(params.path).read_bytes()
        if len(data) > min(params.max_bytes, self.max_asset_bytes):
            return failure("MF_ERR_IO_MAX_BYTES", f"File exceeds max allowed bytes ({len(data)}).")
        return {
            "ok": True,
            "path": params.path,
            "bytes": len(data),
            "base64": base64.b64encode(data).decode("ascii"),
        }

    @_guarded("MF_ERR_IO_WRITE", "Failed to write file.")
    def io_write_file(self, params) -> dict[str, Any]:
        try:
            data = base64.b64decode(params.base64, validate=True)
        except binascii.Error as exc:
            raise RuntimeCommandError("MF_ERR_INVALID_INPUT", f"base64 payload is invalid: {exc}") from exc
        if len(data) > self.max_asset_bytes:
            return failure("MF_ERR_IO_MAX_BYTES", f"Payload exceeds max allowed bytes ({len(data)}).")
        Path(params.path).write_bytes(data)
        return {"ok": True, "path": params.path, "bytes": len(data)}

    # ── Pipelines ────────────────────────────────────────────────────

    def _pipeline_tool(self, name: str, payload: dict[str, Any]) -> dict[str, Any]:
        if name not in self._tools:
            raise RuntimeCommandError("MF_ERR_UNKNOWN_TOOL", f'Unknown tool "{name}" in pipeline.')
        return self.call(name, payload)

    def _run_pipeline(self, request: MakeBundleInput) -> dict[str, Any]:
        out = run_make_bundle_pipeline(
            self._pipeline_tool,
            request,
            Tooling(mcp_version=self.version, commit=self.commit),
        )
        response = {
            "ok": out.ok,
            "previewOnly": out.preview_only,
            "outZipPath": out.out_zip_path,
            "manifestPath": out.manifest_path,
            "proofPath": out.proof_path,
            "warnings": list(out.warnings),
        }
        if not out.ok:
            errors = _wire(out.errors)
            response["errors"] = errors
            response["error"] = errors[0] if errors else {
                "code": "MF_ERR_PIPELINE_MAKE_BUNDLE",
                "message": "Pipeline failed.",
            }
        return response

    @_guarded("MF_ERR_PIPELINE_MAKE_BUNDLE", "Pipeline make-bundle failed.")
    def pipeline_make_bundle(self, params) -> dict[str, Any]:
        return self._run_pipeline(MakeBundleInput(
            goal=params.goal,
            out_dir=params.out_dir,
            confirm=params.confirm,
            staged=True,
            unity=bool(params.unity),
            in_json=params.in_json,
            in_bundle_base64=params.in_bundle_base64,
            takes=params.takes,
            constraints=params.constraints,
            target=params.target.model_dump() if params.target else None,
        ))

    @_guarded("MF_ERR_UNITY_RECIPE_MAKE_BUNDLE", "Unity recipe make-bundle failed.")
    def unity_recipe_make_bundle(self, params) -> dict[str, Any]:
        return self._run_pipeline(MakeBundleInput(
            goal=params.goal,
            out_dir=params.out_dir,
            confirm=params.confirm,
            staged=True,
            unity=True,
            constraints=params.constraints,
            target=params.target.model_dump(),
        ))


_handlers: ToolHandlers | None = None


def get_tool_handlers() -> ToolHandlers:
    """Process-wide handlers used by the MCP server."""
    global _handlers
    if _handlers is None:
        _handlers = ToolHandlers(version=cfg.version, commit=cfg.commit)
    return _handlers


def invoke(name: str, **params: Any) -> dict[str, Any]:
    """Call ``name`` on the shared handlers, dropping parameters left as None."""
    payload = {key: value for key, value in params.items() if value is not None}
    return get_tool_handlers().call(name, payload)
