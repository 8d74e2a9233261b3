"""Deterministic recipe planner.

``generate_plan`` maps a free-text goal onto one entry of the recipe table and
produces a fixed three-step plan. Identical input and snapshot always give an
equal plan; nothing here reads the clock, the environment or a random source.
"""
from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field

from motionforge.agent.recipes import RecipeDefinition, RecipeId, detect_recipe, recipe_suggestions
from motionforge.models import (
    KeyframeRecord,
    ObjectRef,
    PlanCommand,
    PlanSafety,
    PlanStep,
    WireModel,
)

Style = Literal["snappy", "realistic", "cartoony", "cinematic"]

_STYLE_AMPLITUDE: dict[str, float] = {
    "snappy": 1.2,
    "realistic": 0.8,
    "cartoony": 1.5,
    "cinematic": 0.65,
}

# (property, time ratio, constant value, amplitude-scaled value, interpolation)
_KeyRow = tuple[str, float, float, float, str]

_HALF_PI = math.pi / 2

_RECIPE_KEYS: dict[str, tuple[float, tuple[_KeyRow, ...]]] = {
    "bounce": (1.0, (
        ("position.y", 0, 0, 0, "easeOut"),
        ("position.y", 0.22, 0, 0.9, "easeOut"),
        ("position.y", 0.46, 0, 1.6, "easeInOut"),
        ("position.y", 0.7, 0, 0.35, "easeInOut"),
        ("position.y", 1, 0, 0, "easeInOut"),
        ("scale.y", 0, 1, 0, "easeOut"),
        ("scale.y", 0.18, 0.78, 0, "easeInOut"),
        ("scale.y", 0.46, 1.24, 0, "easeOut"),
        ("scale.y", 1, 1, 0, "easeInOut"),
        ("scale.x", 0, 1, 0, "easeOut"),
        ("scale.x", 0.18, 1.12, 0, "easeInOut"),
        ("scale.x", 0.46, 0.9, 0, "easeOut"),
        ("scale.x", 1, 1, 0, "easeInOut"),
        ("scale.z", 0, 1, 0, "easeOut"),
        ("scale.z", 0.18, 1.12, 0, "easeInOut"),
        ("scale.z", 0.46, 0.9, 0, "easeOut"),
        ("scale.z", 1, 1, 0, "easeInOut"),
    )),
    "anticipation-and-hit": (1.0, (
        ("position.z", 0, 0, 0, "easeOut"),
        ("position.z", 0.22, 0, -0.35, "easeInOut"),
        ("position.z", 0.48, 0, 0.5, "easeInOut"),
        ("position.z", 0.72, 0, -0.12, "easeInOut"),
        ("position.z", 1, 0, 0, "easeOut"),
        ("rotation.x", 0, 0, 0, "easeOut"),
        ("rotation.x", 0.22, 0, -0.18, "easeInOut"),
        ("rotation.x", 0.48, 0, 0.24, "easeInOut"),
        ("rotation.x", 1, 0, 0, "easeInOut"),
    )),
    "idle-loop": (0.5, (
        ("position.y", 0, 0, 0, "easeInOut"),
        ("position.y", 0.25, 0, 0.08, "easeInOut"),
        ("position.y", 0.5, 0, 0, "easeInOut"),
        ("position.y", 0.75, 0, -0.05, "easeInOut"),
        ("position.y", 1, 0, 0, "easeInOut"),
        ("rotation.y", 0, 0, 0, "easeInOut"),
        ("rotation.y", 0.5, 0, 0.06, "easeInOut"),
        ("rotation.y", 1, 0, 0, "easeInOut"),
    )),
    "camera-dolly": (1.0, (
        ("position.z", 0, 6, 0, "easeInOut"),
        ("position.z", 1, 1.2, 2.2, "easeInOut"),
        ("position.x", 0, 0, 0, "easeInOut"),
        ("position.x", 1, 0, 0.5, "easeInOut"),
    )),
    "turn-in-place": (1.0, (
        ("rotation.y", 0, 0, 0, "easeInOut"),
        ("rotation.y", 1, _HALF_PI, 0, "easeInOut"),
    )),
    "recoil": (1.0, (
        ("position.z", 0, 0, 0, "easeOut"),
        ("position.z", 0.22, 0, -0.4, "step"),
        ("position.z", 1, 0, 0, "easeOut"),
        ("rotation.x", 0, 0, 0, "easeOut"),
        ("rotation.x", 0.22, 0, -0.2, "step"),
        ("rotation.x", 1, 0, 0, "easeOut"),
    )),
}


class PlannerError(Exception):
    """Planner refusal with a stable code and optional goal suggestions."""

    def __init__(self, code: str, message: str, suggestions: list[str] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {"code": self.code, "message": self.message}
        if self.suggestions:
            out["suggestions"] = self.suggestions
        return out


class CameraConstraint(WireModel):
    enabled: bool = True


class PlanConstraints(WireModel):
    duration_sec: float | None = None
    fps: float | None = None
    style: Style | None = None
    loop: bool | None = None
    target_objects: list[str] | None = None
    camera: CameraConstraint | None = None


class PlannerInput(WireModel):
    goal: str
    constraints: PlanConstraints | None = None


class PlannerStateSnapshot(WireModel):
    objects: list[ObjectRef] = Field(default_factory=list)
    selected_object_id: str | None = None


class ValidationIssue(BaseModel):
    code: str
    message: str


class PlanSummary(WireModel):
    duration_sec: float
    objects_touched: list[str]
    keyframes_to_add: int
    commands: int


class GeneratedPlan(WireModel):
    recipe_id: RecipeId
    summary: PlanSummary
    steps: list[PlanStep]
    safety: PlanSafety


def validate_constraints(constraints: PlanConstraints | None) -> list[ValidationIssue]:
    """Collect constraint problems in fixed order: duration, then fps."""
    if constraints is None:
        return []
    issues: list[ValidationIssue] = []
    duration = constraints.duration_sec
    if duration is not None and (not math.isfinite(duration) or duration <= 0):
        issues.append(ValidationIssue(
            code="MF_ERR_INVALID_DURATION",
            message="constraints.durationSec must be a positive number.",
        ))
    fps = constraints.fps
    if fps is not None and (not math.isfinite(fps) or fps <= 0):
        issues.append(ValidationIssue(
            code="MF_ERR_INVALID_FPS",
            message="constraints.fps must be a positive number.",
        ))
    return issues


def clamp_duration(duration_sec: float) -> float:
    return max(0.1, min(30.0, round(duration_sec, 3)))


def _at(duration_sec: float, ratio: float) -> float:
    return round(duration_sec * ratio, 4)


def _resolve_targets(
    snapshot: PlannerStateSnapshot,
    recipe_id: str,
    constraints: PlanConstraints | None,
) -> list[str]:
    if constraints is not None and constraints.target_objects:
        known = {item.id for item in snapshot.objects}
        unique = sorted({obj_id for obj_id in constraints.target_objects if obj_id in known})
        if not unique:
            raise PlannerError("MF_ERR_NO_TARGET_OBJECT", "No targetObjects matched current scene objects.")
        return unique

    if recipe_id == "camera-dolly":
        for item in snapshot.objects:
            if "camera" in item.name.lower():
                return [item.id]

    if snapshot.selected_object_id:
        return [snapshot.selected_object_id]
    if not snapshot.objects:
        raise PlannerError("MF_ERR_EMPTY_SCENE", "No objects available to animate.")
    return [snapshot.objects[0].id]


def build_recipe_records(recipe_id: str, object_ids: list[str], duration_sec: float, style: str) -> list[KeyframeRecord]:
    factor, rows = _RECIPE_KEYS[recipe_id]
    amp = _STYLE_AMPLITUDE.get(style, 1.0) * factor
    records = []
    for object_id in object_ids:
        for prop, ratio, constant, scaled, interpolation in rows:
            records.append(KeyframeRecord(
                object_id=object_id,
                property_path=prop,
                time=_at(duration_sec, ratio),
                value=constant + scaled * amp if scaled else constant,
                interpolation=interpolation,
            ))
    return records


def _plan_steps(duration_sec: float, records: list[KeyframeRecord]) -> list[PlanStep]:
    return [
        PlanStep(
            id="inspect-scene",
            label="Inspect Scene Snapshot",
            type="inspect",
            command=PlanCommand(action="mf.state.snapshot", input={}),
            rationale="Confirms targets before mutating animation tracks.",
        ),
        PlanStep(
            id="set-duration",
            label="Set Clip Duration",
            type="mutate",
            command=PlanCommand(action="animation.setDuration", input={"durationSeconds": duration_sec}),
            rationale="Aligns clip timing with recipe length.",
        ),
        PlanStep(
            id="insert-keys",
            label="Insert Recipe Keyframes",
            type="mutate",
            command=PlanCommand(
                action="animation.insertRecords",
                input={"source": "agent-plan", "records": [record.to_wire() for record in records]},
            ),
            rationale="Applies deterministic recipe keyframes across selected channels.",
        ),
    ]


def _safety(recipe: RecipeDefinition, records: list, object_ids: list[str], loop: bool) -> PlanSafety:
    reasons = []
    if len(records) >= 24:
        reasons.append("Large keyframe insertion batch.")
    if len(object_ids) > 1:
        reasons.append("Plan touches multiple objects.")
    if loop and not recipe.loop_friendly:
        reasons.append("Loop requested for non-loop-native recipe.")
    return PlanSafety(requires_confirm=bool(reasons), reasons=reasons)


def generate_plan(
    planner_input: PlannerInput | dict,
    snapshot: PlannerStateSnapshot | dict,
) -> GeneratedPlan:
    """Build the plan for ``planner_input.goal`` against ``snapshot``.

    Raises:
        PlannerError: unsupported goal, invalid constraints, no usable target,
            or a camera recipe while the camera is disabled.
    """
    if isinstance(planner_input, dict):
        planner_input = PlannerInput.model_validate(planner_input)
    if isinstance(snapshot, dict):
        snapshot = PlannerStateSnapshot.model_validate(snapshot)

    recipe = detect_recipe(planner_input.goal)
    if recipe is None:
        raise PlannerError(
            "MF_ERR_UNSUPPORTED_GOAL",
            "Goal is not matched by a supported deterministic recipe.",
            recipe_suggestions(),
        )

    constraints = planner_input.constraints
    issues = validate_constraints(constraints)
    if issues:
        raise PlannerError("MF_ERR_INVALID_CONSTRAINTS", " ".join(issue.message for issue in issues))

    style = (constraints.style if constraints else None) or "realistic"
    requested = constraints.duration_sec if constraints else None
    duration_sec = clamp_duration(requested if requested is not None else recipe.default_duration_sec)
    requested_loop = constraints.loop if constraints else None
    loop = bool(requested_loop if requested_loop is not None else recipe.loop_friendly)
    object_ids = _resolve_targets(snapshot, recipe.id, constraints)

    if recipe.id == "camera-dolly" and constraints and constraints.camera and not constraints.camera.enabled:
        raise PlannerError("MF_ERR_CAMERA_DISABLED", "camera constraints disabled camera recipe execution.")

    records = build_recipe_records(recipe.id, object_ids, duration_sec, style)
    steps = _plan_steps(duration_sec, records)
    return GeneratedPlan(
        recipe_id=recipe.id,
        summary=PlanSummary(
            duration_sec=duration_sec,
            objects_touched=object_ids,
            keyframes_to_add=len(records),
            commands=sum(1 for step in steps if step.type == "mutate"),
        ),
        steps=steps,
        safety=_safety(recipe, records, object_ids, loop),
    )
