"""Tests for the recipe planner, preview diff, atomic apply and script skill."""
import json

import pytest

from motionforge.agent import (
    PlannerError,
    RuntimeApplyAdapter,
    apply_plan_steps_atomic,
    build_project_diff,
    generate_plan,
    generate_script_from_goal,
    list_recipe_triggers,
    recipe_suggestions,
    simulate_plan_diff,
    validate_constraints,
)
from motionforge.agent.planner import PlanConstraints, clamp_duration
from motionforge.agent.recipes import detect_recipe
from motionforge.models import PlanCommand, PlanStep
from motionforge.script import validate_script

SNAPSHOT = {
    "objects": [
        {"id": "obj_cube", "name": "Cube"},
        {"id": "obj_sphere", "name": "Sphere"},
    ],
    "selectedObjectId": None,
}


def mutate(step_id, action, payload):
    return PlanStep(
        id=step_id,
        label=step_id,
        type="mutate",
        command=PlanCommand(action=action, input=payload),
        rationale="test",
    )


class TestRecipes:
    """Goal phrase matching."""

    @pytest.mark.parametrize("goal,recipe_id", [
        ("make it bounce", "bounce"),
        ("Hover Idle please", "idle-loop"),
        ("slow camera dolly", "camera-dolly"),
        ("turn 90 degrees", "turn-in-place"),
        ("add a kickback", "recoil"),
        ("anticipation then hit", "anticipation-and-hit"),
    ])
    def test_detect_recipe(self, goal, recipe_id):
        assert detect_recipe(goal).id == recipe_id

    def test_unknown_goal(self):
        assert detect_recipe("juggle three balls") is None

    def test_suggestions_one_per_recipe(self):
        assert recipe_suggestions() == [
            "bounce", "anticipation-and-hit", "idle-loop", "camera-dolly", "turn-in-place", "recoil",
        ]
        assert list_recipe_triggers()[0] == {"id": "bounce", "triggerPhrases": ["bounce", "squash stretch bounce"]}


class TestGeneratePlan:
    """Deterministic recipe plans."""

    def test_bounce_plan_shape(self):
        plan = generate_plan({"goal": "bounce"}, SNAPSHOT)

        assert plan.recipe_id == "bounce"
        assert [step.id for step in plan.steps] == ["inspect-scene", "set-duration", "insert-keys"]
        assert plan.summary.duration_sec == 1
        assert plan.summary.objects_touched == ["obj_cube"]
        assert plan.summary.keyframes_to_add == 17
        assert plan.summary.commands == 2
        assert plan.safety.requires_confirm is False

    def test_plan_is_deterministic(self):
        first = generate_plan({"goal": "idle loop"}, SNAPSHOT)
        second = generate_plan({"goal": "idle loop"}, SNAPSHOT)
        assert first.to_wire() == second.to_wire()

    def test_style_scales_amplitude(self):
        snappy = generate_plan({"goal": "recoil", "constraints": {"style": "snappy"}}, SNAPSHOT)
        realistic = generate_plan({"goal": "recoil"}, SNAPSHOT)

        def kick(plan):
            records = plan.steps[2].command.input["records"]
            return [r["value"] for r in records if r["propertyPath"] == "position.z"][1]

        assert kick(snappy) == pytest.approx(-0.4 * 1.2)
        assert kick(realistic) == pytest.approx(-0.4 * 0.8)

    def test_selection_wins_over_first_object(self):
        plan = generate_plan({"goal": "bounce"}, {**SNAPSHOT, "selectedObjectId": "obj_sphere"})
        assert plan.summary.objects_touched == ["obj_sphere"]

    def test_camera_dolly_prefers_camera_named_object(self):
        snapshot = {"objects": [{"id": "obj_1", "name": "Box"}, {"id": "obj_2", "name": "Main Camera"}]}
        plan = generate_plan({"goal": "camera dolly"}, snapshot)
        assert plan.summary.objects_touched == ["obj_2"]

    def test_multiple_targets_require_confirm(self):
        plan = generate_plan(
            {"goal": "bounce", "constraints": {"targetObjects": ["obj_sphere", "obj_cube", "obj_ghost"]}},
            SNAPSHOT,
        )
        assert plan.summary.objects_touched == ["obj_cube", "obj_sphere"]
        assert plan.safety.requires_confirm is True
        assert "Large keyframe insertion batch." in plan.safety.reasons
        assert "Plan touches multiple objects." in plan.safety.reasons

    def test_loop_on_non_loop_recipe_requires_confirm(self):
        plan = generate_plan({"goal": "recoil", "constraints": {"loop": True}}, SNAPSHOT)
        assert plan.safety.reasons == ["Loop requested for non-loop-native recipe."]

    def test_duration_is_clamped(self):
        plan = generate_plan({"goal": "bounce", "constraints": {"durationSec": 90}}, SNAPSHOT)
        assert plan.summary.duration_sec == 30
        assert clamp_duration(0.01) == 0.1

    def test_unsupported_goal(self):
        with pytest.raises(PlannerError) as exc_info:
            generate_plan({"goal": "juggle"}, SNAPSHOT)
        assert exc_info.value.code == "MF_ERR_UNSUPPORTED_GOAL"
        assert "bounce" in exc_info.value.suggestions

    def test_invalid_constraints(self):
        with pytest.raises(PlannerError) as exc_info:
            generate_plan({"goal": "bounce", "constraints": {"durationSec": -1, "fps": 0}}, SNAPSHOT)
        assert exc_info.value.code == "MF_ERR_INVALID_CONSTRAINTS"
        assert "durationSec" in exc_info.value.message
        assert "fps" in exc_info.value.message

    def test_validate_constraints_order(self):
        issues = validate_constraints(PlanConstraints(duration_sec=0, fps=-5))
        assert [issue.code for issue in issues] == ["MF_ERR_INVALID_DURATION", "MF_ERR_INVALID_FPS"]

    def test_unmatched_target_objects(self):
        with pytest.raises(PlannerError) as exc_info:
            generate_plan({"goal": "bounce", "constraints": {"targetObjects": ["nope"]}}, SNAPSHOT)
        assert exc_info.value.code == "MF_ERR_NO_TARGET_OBJECT"

    def test_empty_scene(self):
        with pytest.raises(PlannerError) as exc_info:
            generate_plan({"goal": "bounce"}, {"objects": []})
        assert exc_info.value.code == "MF_ERR_EMPTY_SCENE"

    def test_camera_disabled(self):
        with pytest.raises(PlannerError) as exc_info:
            generate_plan({"goal": "camera dolly", "constraints": {"camera": {"enabled": False}}}, SNAPSHOT)
        assert exc_info.value.code == "MF_ERR_CAMERA_DISABLED"


class TestPreviewDiff:
    """Diffs between project exports."""

    def test_simulation_does_not_touch_live_runtime(self, runtime):
        before = runtime.export_project_json()
        plan = generate_plan({"goal": "bounce"}, SNAPSHOT)

        diff = simulate_plan_diff(runtime, plan.steps)

        assert runtime.export_project_json() == before
        assert len(diff.animation) == 1
        row = diff.animation[0]
        assert row.object_id == "obj_cube"
        assert row.tracks == ["position.y", "scale.x", "scale.y", "scale.z"]
        assert row.keyframes_added == 17
        assert row.keyframes_deleted == 0
        assert diff.objects == []
        assert diff.materials == []

    def test_object_and_material_changes(self, sample_project):
        after = json.loads(json.dumps(sample_project))
        after["objects"][1]["position"] = [9, 9, 9]
        after["objects"][1]["color"] = 0

        diff = build_project_diff(json.dumps(sample_project), json.dumps(after))

        assert [(o.id, o.changes) for o in diff.objects] == [("obj_sphere", ["position"])]
        assert [(m.object_id, m.changes) for m in diff.materials] == [("obj_sphere", ["baseColor"])]

    def test_moved_keyframe_counts(self, sample_project):
        def with_key(time):
            project = json.loads(json.dumps(sample_project))
            project["animation"]["tracks"] = [{
                "objectId": "obj_cube",
                "property": "position.x",
                "keyframes": [{"time": time, "value": 1, "interpolation": "linear"}],
            }]
            return json.dumps(project)

        diff = build_project_diff(with_key(0.5), with_key(1.0))
        row = diff.animation[0]
        assert (row.keyframes_added, row.keyframes_deleted, row.keyframes_moved) == (1, 1, 1)

    def test_integral_floats_match_ints(self, sample_project):
        def with_value(value):
            project = json.loads(json.dumps(sample_project))
            project["animation"]["tracks"] = [{
                "objectId": "obj_cube",
                "property": "position.x",
                "keyframes": [{"time": 1, "value": value}],
            }]
            return json.dumps(project)

        assert build_project_diff(with_value(1), with_value(1.0)).animation == []


class TestAtomicApply:
    """All-or-nothing plan execution."""

    def test_failure_restores_runtime(self, runtime):
        before = runtime.export_project_json()
        steps = [
            mutate("set-duration", "animation.setDuration", {"durationSeconds": 4}),
            mutate("broken", "scene.doesNotExist", {}),
        ]

        result = apply_plan_steps_atomic(RuntimeApplyAdapter(runtime), steps)

        assert result.ok is False
        assert result.failed_step_id == "broken"
        assert result.commands_executed == 1
        assert getattr(result.error, "code", None) == "MF_ERR_UNKNOWN_ACTION"
        assert runtime.export_project_json() == before

    def test_success_collects_events(self, runtime):
        plan = generate_plan({"goal": "turn in place"}, SNAPSHOT)

        result = apply_plan_steps_atomic(RuntimeApplyAdapter(runtime), plan.steps)

        assert result.ok is True
        assert result.commands_executed == 2
        types = [event.type for event in result.events]
        assert types[0] == "animation.durationChanged"
        assert types.count("keyframe.added") == 2
        assert runtime.snapshot()["animation"]["keyframeCount"] == 2


class TestSkill:
    """Goal to script generation."""

    def test_bounce_script(self):
        out = generate_script_from_goal("bounce", duration_sec=1, style="snappy")
        assert out["ok"] is True
        assert out["matchedPreset"] == "bounce"
        assert out["script"].splitlines() == [
            'select "obj_cube"',
            "duration 1",
            'label "Bounce"',
            "bounce amplitude 1.38 at 0..1",
            'take "Bounce" from 0 to 1',
        ]

    def test_camera_recipe_default_target(self):
        out = generate_script_from_goal("camera dolly")
        assert out["script"].startswith('select "obj_camera"\nduration 3')

    def test_target_and_fps(self):
        out = generate_script_from_goal("idle loop", fps=24, target_select="Sphere")
        lines = out["script"].splitlines()
        assert lines[0] == 'select "Sphere"'
        assert "fps 24" in lines
        assert "loop on" in lines

    def test_generated_scripts_validate(self):
        for goal in ("bounce", "recoil", "turn in place", "camera dolly", "anticipation", "idle loop"):
            script = generate_script_from_goal(goal)["script"]
            assert validate_script(script).ok is True, goal

    def test_fps_warning(self):
        out = generate_script_from_goal("recoil", fps=500)
        assert out["warnings"] == [
            "fps outside recommended range [1..240]; compiler validation may reject this value."
        ]

    def test_unknown_goal(self):
        out = generate_script_from_goal("juggle")
        assert out["ok"] is False
        assert out["error"]["code"] == "MF_ERR_UNKNOWN_GOAL"
        assert out["supportedGoals"] == sorted(out["supportedGoals"])

    def test_number_formatting_is_shared_with_take_rebasing(self):
        from motionforge.agent import skill
        from motionforge.pipeline import make_bundle

        assert skill.format_number is make_bundle.format_number
        assert "recoil distance 0.2875 at 0..0.4" in generate_script_from_goal(
            "recoil", duration_sec=0.4, style="snappy"
        )["script"]
