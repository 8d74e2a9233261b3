"""Compile validated scripts into deterministic runtime plans."""
from __future__ import annotations

import math
import re
from typing import Any

from pydantic import Field

from motionforge.models import (
    Diagnostic,
    KeyframeRecord,
    KeyframeRef,
    PlanCommand,
    PlanSafety,
    PlanStep,
    ScriptContext,
    Take,
    WireModel,
)
from motionforge.script.ast import (
    BounceHelperStatement,
    DeleteKeyStatement,
    DurationStatement,
    FpsStatement,
    KeyStatement,
    LabelStatement,
    LoopStatement,
    RecoilHelperStatement,
    ScriptAst,
    SelectStatement,
    TakeStatement,
)
from motionforge.script.validator import coerce_context, validate_script

DEFAULT_DURATION_SEC = 2
DEFAULT_FPS = 30
LARGE_EDIT_THRESHOLD = 20


class CompiledAstSummary(WireModel):
    statements: int
    kinds: dict[str, int] = Field(default_factory=dict)
    selected_target: str | None = None
    duration_sec: float
    fps: float


class CompiledPlanSummary(WireModel):
    commands: int
    objects_touched: list[str] = Field(default_factory=list)
    duration_sec: float


class CompiledScriptPlan(WireModel):
    ok: bool
    ast: CompiledAstSummary
    summary: CompiledPlanSummary
    steps: list[PlanStep] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    safety: PlanSafety = Field(default_factory=PlanSafety)
    errors: list[Diagnostic] = Field(default_factory=list)


def deg_to_rad(value: float) -> float:
    return value * math.pi / 180


def slugify_take_name(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")
    return cleaned or "segment"


def resolve_target_object_id(ast: ScriptAst, context: ScriptContext) -> str | None:
    """Last select by id or name, then runtime selection, then smallest id."""
    selected = None
    for statement in ast.statements:
        if isinstance(statement, SelectStatement):
            selected = statement.target
    objects = context.available_objects
    if selected:
        for obj in objects:
            if obj.id == selected or obj.name == selected:
                return obj.id
    if context.selected_object_id:
        return context.selected_object_id
    if objects:
        return sorted(obj.id for obj in objects)[0]
    return None


def _bounce_records(object_id: str, statement: BounceHelperStatement) -> list[KeyframeRecord]:
    span = statement.end_time - statement.start_time
    t0 = statement.start_time
    t1 = t0 + span * 0.25
    t2 = t0 + span * 0.5
    t3 = t0 + span * 0.8
    t4 = statement.end_time
    a = statement.amplitude
    rows = [
        ("position.y", t0, 0, "easeOut"),
        ("position.y", t1, 0.6 * a, "easeOut"),
        ("position.y", t2, a, "easeInOut"),
        ("position.y", t3, 0.2 * a, "easeInOut"),
        ("position.y", t4, 0, "easeInOut"),
        ("scale.y", t0, 1, "easeOut"),
        ("scale.y", t1, 0.82, "easeInOut"),
        ("scale.y", t2, 1.2, "easeOut"),
        ("scale.y", t4, 1, "easeInOut"),
        ("scale.x", t0, 1, "easeOut"),
        ("scale.x", t1, 1.12, "easeInOut"),
        ("scale.x", t2, 0.92, "easeOut"),
        ("scale.x", t4, 1, "easeInOut"),
    ]
    return [
        KeyframeRecord(object_id=object_id, property_path=p, time=t, value=v, interpolation=i)
        for p, t, v, i in rows
    ]


def _recoil_records(object_id: str, statement: RecoilHelperStatement) -> list[KeyframeRecord]:
    span = statement.end_time - statement.start_time
    t0 = statement.start_time
    t1 = t0 + span * 0.2
    t2 = statement.end_time
    d = statement.distance
    kick = deg_to_rad(-8 * max(0.5, d))
    rows = [
        ("position.z", t0, 0, "easeOut"),
        ("position.z", t1, -d, "step"),
        ("position.z", t2, 0, "easeOut"),
        ("rotation.x", t0, 0, "easeOut"),
        ("rotation.x", t1, kick, "step"),
        ("rotation.x", t2, 0, "easeOut"),
    ]
    return [
        KeyframeRecord(object_id=object_id, property_path=p, time=t, value=v, interpolation=i)
        for p, t, v, i in rows
    ]


def _record_sort_key(record) -> tuple:
    return (record.object_id, record.property_path, record.time)


def compile_script_to_plan(
    script: str,
    context: ScriptContext | dict[str, Any] | None = None,
) -> CompiledScriptPlan:
    """Validate and compile ``script``.

    Never returns a partial plan: on any error ``steps`` is empty.
    """
    ctx = coerce_context(context)
    validated = validate_script(script, ctx)
    statements = validated.ast.statements

    kinds: dict[str, int] = {}
    for statement in statements:
        kinds[statement.kind] = kinds.get(statement.kind, 0) + 1

    target = resolve_target_object_id(validated.ast, ctx)
    duration_sec = ctx.defaults.duration_sec if ctx.defaults.duration_sec is not None else DEFAULT_DURATION_SEC
    fps = ctx.defaults.fps if ctx.defaults.fps is not None else DEFAULT_FPS
    label_prefix = "Script"

    warnings = [f"{w.path} {w.message}" for w in validated.warnings]
    inserts: list[KeyframeRecord] = []
    deletes: list[KeyframeRef] = []
    takes: list[Take] = []
    take_counter = 1

    for statement in statements:
        line_path = f"line:{statement.location.line}"
        if isinstance(statement, DurationStatement):
            duration_sec = statement.seconds
        elif isinstance(statement, FpsStatement):
            fps = statement.fps
        elif isinstance(statement, LabelStatement):
            label_prefix = statement.value
        elif isinstance(statement, LoopStatement):
            warnings.append(f"{line_path} Loop metadata is not currently persisted in runtime.")
        elif isinstance(statement, TakeStatement):
            takes.append(
                Take(
                    id=f"take_{take_counter:02d}_{slugify_take_name(statement.name)}",
                    name=statement.name,
                    start_time=statement.start_time,
                    end_time=statement.end_time,
                )
            )
            take_counter += 1
        elif target is None:
            continue
        elif isinstance(statement, KeyStatement):
            value = deg_to_rad(statement.value) if statement.group == "rotation" else statement.value
            inserts.append(
                KeyframeRecord(
                    object_id=target,
                    property_path=f"{statement.group}.{statement.axis}",
                    time=statement.time,
                    value=value,
                    interpolation=statement.interpolation,
                )
            )
            if statement.group == "rotation" and statement.value_unit != "deg":
                warnings.append(f"{line_path} Rotation key interpreted as degrees.")
        elif isinstance(statement, DeleteKeyStatement):
            deletes.append(
                KeyframeRef(
                    object_id=target,
                    property_path=f"{statement.group}.{statement.axis}",
                    time=statement.time,
                )
            )
        elif isinstance(statement, BounceHelperStatement):
            inserts.extend(_bounce_records(target, statement))
        elif isinstance(statement, RecoilHelperStatement):
            inserts.extend(_recoil_records(target, statement))

    errors = list(validated.errors)
    if target is None:
        errors.append(
            Diagnostic(
                code="MF_SCRIPT_NO_TARGET_OBJECT",
                message="Unable to resolve target object for key statements.",
                path="script",
            )
        )

    ast_summary = CompiledAstSummary(
        statements=len(statements),
        kinds=kinds,
        selected_target=target,
        duration_sec=duration_sec,
        fps=fps,
    )
    touched = [target] if target else []

    if errors:
        return CompiledScriptPlan(
            ok=False,
            ast=ast_summary,
            summary=CompiledPlanSummary(commands=0, objects_touched=touched, duration_sec=duration_sec),
            warnings=warnings,
            errors=errors,
        )

    inserts.sort(key=_record_sort_key)
    deletes.sort(key=_record_sort_key)
    takes.sort(key=lambda take: (take.start_time, take.id))

    steps = [
        PlanStep(
            id="inspect-scene",
            label=f"{label_prefix}: Inspect",
            type="inspect",
            command=PlanCommand(action="mf.state.snapshot", input={}),
            rationale="Capture deterministic baseline before script mutations.",
        ),
        PlanStep(
            id="set-duration",
            label=f"{label_prefix}: Duration",
            type="mutate",
            command=PlanCommand(action="animation.setDuration", input={"durationSeconds": duration_sec}),
            rationale="Align clip duration with script directive/default.",
        ),
    ]
    if inserts:
        steps.append(
            PlanStep(
                id="insert-keys",
                label=f"{label_prefix}: Key Insert",
                type="mutate",
                command=PlanCommand(
                    action="animation.insertRecords",
                    input={
                        "source": "script-compile",
                        "fps": fps,
                        "records": [record.to_wire() for record in inserts],
                    },
                ),
                rationale="Insert compiled keyframes deterministically.",
            )
        )
    if deletes:
        steps.append(
            PlanStep(
                id="delete-keys",
                label=f"{label_prefix}: Key Delete",
                type="mutate",
                command=PlanCommand(
                    action="animation.removeKeys",
                    input={"keys": [ref.to_wire() for ref in deletes]},
                ),
                rationale="Delete requested keyframes.",
            )
        )
    if takes:
        steps.append(
            PlanStep(
                id="set-takes",
                label=f"{label_prefix}: Takes",
                type="mutate",
                command=PlanCommand(
                    action="animation.setTakes",
                    input={"takes": [take.to_wire() for take in takes]},
                ),
                rationale="Persist take ranges for downstream multi-clip export/import.",
            )
        )

    reasons: list[str] = []
    if deletes:
        reasons.append("Script deletes keyframes.")
    if len(inserts) + len(deletes) > LARGE_EDIT_THRESHOLD:
        reasons.append("Script touches more than 20 key edits.")

    return CompiledScriptPlan(
        ok=True,
        ast=ast_summary,
        summary=CompiledPlanSummary(
            commands=sum(1 for step in steps if step.type == "mutate"),
            objects_touched=touched,
            duration_sec=duration_sec,
        ),
        steps=steps,
        warnings=warnings,
        safety=PlanSafety(requires_confirm=bool(reasons), reasons=reasons),
    )
