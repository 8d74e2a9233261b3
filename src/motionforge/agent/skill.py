"""Generate MotionForge scripts from a free-text goal using the recipe table."""
from __future__ import annotations

from typing import Any, Literal

from motionforge.agent.planner import clamp_duration
from motionforge.agent.recipes import RECIPE_DEFINITIONS, detect_recipe
from motionforge.pipeline.make_bundle import format_number

SkillStyle = Literal["snappy", "smooth", "heavy", "floaty"]

DEFAULT_TARGET = "obj_cube"
DEFAULT_CAMERA_TARGET = "obj_camera"

_STYLE_FACTOR = {"snappy": 1.15, "smooth": 0.9, "heavy": 0.8, "floaty": 1.25}

_RECIPE_LABELS = {
    "bounce": "Bounce",
    "anticipation-and-hit": "Anticipation Hit",
    "idle-loop": "Idle Loop",
    "camera-dolly": "Camera Dolly",
    "turn-in-place": "Turn In Place",
    "recoil": "Recoil",
}


def _recipe_lines(recipe_id: str, duration: float, factor: float) -> list[str]:
    d = format_number(duration)
    if recipe_id == "bounce":
        return [f"bounce amplitude {format_number(1.2 * factor)} at 0..{d}"]
    if recipe_id == "recoil":
        return [f"recoil distance {format_number(0.25 * factor)} at 0..{d}"]
    if recipe_id == "turn-in-place":
        return [
            "key rotation y at 0 = 0 deg ease easeInOut",
            f"key rotation y at {d} = 90 deg ease easeInOut",
        ]
    if recipe_id == "camera-dolly":
        return [
            "key position z at 0 = 6 ease easeInOut",
            f"key position z at {d} = {format_number(2.8 - (factor - 1) * 0.6)} ease easeInOut",
        ]
    if recipe_id == "anticipation-and-hit":
        return [
            "key position x at 0 = 0 ease easeOut",
            f"key position x at {format_number(duration * 0.3)} = {format_number(-0.3 * factor)} ease easeIn",
            f"key position x at {format_number(duration * 0.52)} = {format_number(1.1 * factor)} ease step",
            f"key position x at {d} = 0 ease easeOut",
        ]
    # idle-loop
    return [
        "key position y at 0 = 0 ease easeInOut",
        f"key position y at {format_number(duration * 0.5)} = {format_number(0.06 * factor)} ease easeInOut",
        f"key position y at {d} = 0 ease easeInOut",
        "loop on",
    ]


def build_script_lines(
    recipe_id: str,
    duration_sec: float,
    style: str = "smooth",
    fps: float | None = None,
    target_select: str | None = None,
) -> list[str]:
    target = target_select or (DEFAULT_CAMERA_TARGET if recipe_id == "camera-dolly" else DEFAULT_TARGET)
    label = _RECIPE_LABELS[recipe_id]
    lines = [f'select "{target}"', f"duration {format_number(duration_sec)}", f'label "{label}"']
    if fps is not None:
        lines.append(f"fps {format_number(fps)}")
    lines.extend(_recipe_lines(recipe_id, duration_sec, _STYLE_FACTOR.get(style, 0.9)))
    lines.append(f'take "{label}" from 0 to {format_number(duration_sec)}')
    return lines


def supported_goals() -> list[str]:
    return sorted(recipe.trigger_phrases[0] for recipe in RECIPE_DEFINITIONS)


def generate_script_from_goal(
    goal: str,
    duration_sec: float | None = None,
    fps: float | None = None,
    style: str | None = None,
    target_select: str | None = None,
) -> dict[str, Any]:
    """Return ``{"ok": True, "script", "matchedPreset", "warnings"}`` or an
    ``MF_ERR_UNKNOWN_GOAL`` failure listing the supported goals."""
    recipe = detect_recipe(goal)
    if recipe is None:
        return {
            "ok": False,
            "error": {
                "code": "MF_ERR_UNKNOWN_GOAL",
                "message": "Goal does not match a supported deterministic skill preset.",
            },
            "supportedGoals": supported_goals(),
        }

    warnings = []
    duration = clamp_duration(duration_sec if duration_sec is not None else recipe.default_duration_sec)
    if fps is not None and (fps < 1 or fps > 240):
        warnings.append("fps outside recommended range [1..240]; compiler validation may reject this value.")

    lines = build_script_lines(recipe.id, duration, style or "smooth", fps, target_select)
    return {"ok": True, "script": "\n".join(lines), "matchedPreset": recipe.id, "warnings": warnings}
