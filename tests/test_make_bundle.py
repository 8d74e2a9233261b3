"""Tests for the goal-to-bundle pipeline and its helpers."""
import base64
import io
import json
import zipfile

import pytest

from motionforge.models import Take
from motionforge.pipeline import (
    derive_takes_from_goal,
    ensure_unity_bind_paths,
    run_make_bundle_pipeline,
    sha256_hex_from_string,
    stable_json_stringify,
)
from motionforge.pipeline.hashing import short_hash
from motionforge.pipeline.make_bundle import (
    TakeInput,
    build_take_script,
    format_number,
    normalize_take_inputs,
    project_json_from_bundle_base64,
    rebase_script_for_take,
    summarize_diff,
)
from motionforge.services.tools.handlers import ToolHandlers

TOOLING = {"mcpVersion": "0.0.0-test"}


class TestHashing:

    def test_stable_json_sorts_nested_keys(self):
        assert stable_json_stringify({"b": 1, "a": {"d": 2, "c": [{"z": 1, "y": 2}]}}) == (
            '{\n  "a": {\n    "c": [\n      {\n        "y": 2,\n        "z": 1\n      }\n    ],\n'
            '    "d": 2\n  },\n  "b": 1\n}'
        )

    def test_short_hash_ignores_key_order(self):
        assert short_hash({"a": 1, "b": 2}) == short_hash({"b": 2, "a": 1})
        assert len(short_hash({"a": 1})) == 8

    def test_sha256(self):
        assert sha256_hex_from_string("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestTakes:
    """Take derivation and normalization."""

    def test_derive_from_goal(self):
        takes = derive_takes_from_goal("idle loop then recoil", 2)
        assert [(t.id, t.start_time, t.end_time) for t in takes] == [
            ("take_idle", 0, 2),
            ("take_recoil", 2, 2.4),
        ]

    def test_derive_main_fallback(self):
        assert derive_takes_from_goal("bounce", 3) == [Take(id="take_main", name="Main", start_time=0, end_time=3)]

    def test_normalize_inputs(self):
        takes = normalize_take_inputs([
            TakeInput(name="Recoil", start_time=2, end_time=2.4),
            TakeInput(name="Idle", start_time=0, end_time=2),
            TakeInput(name="idle", start_time=2.4, end_time=3),
            TakeInput(name="Broken", start_time=1, end_time=1),
        ])
        assert [t.id for t in takes] == ["take_idle", "take_recoil", "take_idle_2"]

    def test_build_take_script(self):
        script = build_take_script("obj_cube", 2.4, [Take(id="take_idle", name="Idle", start_time=0, end_time=2)])
        assert script.splitlines() == [
            'select "obj_cube"',
            "duration 2.4",
            'label "Set Takes"',
            'take "Idle" from 0 to 2',
        ]


class TestRebase:
    """Shifting take-local scripts onto the full clip."""

    def test_rebase_keys_and_helpers(self):
        script = "\n".join([
            'select "obj_camera"',
            "duration 0.4",
            'label "Recoil"',
            "recoil distance 0.25 at 0..0.4",
            "key position x at 0.1 = 1 ease step",
            "delete key position y at 0.2",
            'take "Recoil" from 0 to 0.4',
        ])
        take = Take(id="take_recoil", name="Recoil", start_time=2, end_time=2.4)

        assert rebase_script_for_take(script, take, 2.4, "obj_cube").splitlines() == [
            'select "obj_cube"',
            "duration 2.4",
            'label "Recoil"',
            "recoil distance 0.25 at 2..2.4",
            "key position x at 2.1 = 1 ease step",
            "delete key position y at 2.2",
        ]

    def test_rebase_inserts_missing_header(self):
        take = Take(id="take_main", name="Main", start_time=0, end_time=1)
        lines = rebase_script_for_take("key scale y at 0.5 = 2", take, 1, "obj_cube").splitlines()
        assert lines == ['select "obj_cube"', "duration 1", "key scale y at 0.5 = 2"]

    def test_format_number(self):
        assert format_number(2.0) == "2"
        assert format_number(0.1 + 0.2) == "0.3"
        assert format_number(1.23456) == "1.2346"


class TestUnityBindPaths:

    def test_fill_missing_bind_paths(self):
        project = {
            "version": 4,
            "objects": [{"id": "obj_1", "name": "Hero Rig"}],
            "animation": {"durationSeconds": 1, "tracks": [{"objectId": "obj_1", "property": "position.x"}]},
        }
        out, warnings = ensure_unity_bind_paths(json.dumps(project))
        fixed = json.loads(out)

        assert fixed["objects"][0]["bindPath"] == "Hero Rig"
        assert fixed["animation"]["tracks"][0]["bindPath"] == "Hero Rig"
        assert warnings == [
            'Filled missing bindPath for objects[0] as "Hero Rig".',
            'Filled missing bindPath for animation.tracks[0] as "Hero Rig".',
        ]

    def test_explicit_target_override(self):
        project = {"objects": [{"id": "obj_1", "name": "Cube"}]}
        out, _ = ensure_unity_bind_paths(json.dumps(project), "obj_1", "/Root//Cube/")
        assert json.loads(out)["objects"][0]["bindPath"] == "Root/Cube"

    def test_existing_paths_are_normalized_without_warning(self):
        project = {"objects": [{"id": "obj_1", "name": "Cube", "bindPath": "A\\B"}]}
        out, warnings = ensure_unity_bind_paths(json.dumps(project))
        assert json.loads(out)["objects"][0]["bindPath"] == "A/B"
        assert warnings == []


def test_summarize_diff_ignores_malformed_rows():
    counts = summarize_diff({"animation": [
        {"tracks": ["position.x", "position.y"], "keyframesAdded": 3, "keyframesMoved": 1, "keyframesDeleted": 0},
        "junk",
        {"tracks": "nope", "keyframesAdded": True},
    ]})
    assert (counts.keyframes_added, counts.keyframes_moved, counts.tracks_touched) == (3, 1, 2)


def test_bundle_base64_errors():
    with pytest.raises(ValueError, match="not valid base64"):
        project_json_from_bundle_base64("@@@")
    empty_zip = io.BytesIO()
    with zipfile.ZipFile(empty_zip, "w"):
        pass
    with pytest.raises(ValueError, match="missing project.json"):
        project_json_from_bundle_base64(base64.b64encode(empty_zip.getvalue()).decode("ascii"))


class TestPipeline:
    """End-to-end runs against real tool handlers."""

    def run(self, tmp_path, out_name, **request):
        handlers = ToolHandlers(version="0.0.0-test", output_dir=tmp_path)
        out_dir = tmp_path / out_name
        result = run_make_bundle_pipeline(handlers.call, {"outDir": str(out_dir), **request}, TOOLING)
        return handlers, result, out_dir

    def test_preview_only_writes_proof(self, tmp_path, sample_project_json):
        handlers, result, out_dir = self.run(tmp_path, "preview", goal="bounce", inJson=sample_project_json)

        assert result.ok is False
        assert result.preview_only is True
        assert result.errors[0].code == "MF_ERR_CONFIRM_REQUIRED"
        assert result.out_zip_path is None
        proof = json.loads((out_dir / "proof.json").read_text(encoding="utf-8"))
        assert proof["previewOnly"] is True
        assert proof["inputHash"] == sha256_hex_from_string(sample_project_json)
        assert proof["takes"][0]["id"] == "take_main"
        assert proof["diffSummary"]["totals"]["keyframesAdded"] == 13
        assert not (out_dir / "motionforge-bundle.zip").exists()
        assert handlers.runtime.has_staged is False

    def test_preview_proofs_are_byte_identical(self, tmp_path, sample_project_json):
        _, _, first = self.run(tmp_path, "same", goal="idle loop", inJson=sample_project_json)
        first_bytes = (first / "proof.json").read_bytes()
        _, _, second = self.run(tmp_path, "same", goal="idle loop", inJson=sample_project_json)
        assert (second / "proof.json").read_bytes() == first_bytes

    def test_confirmed_run_exports_bundle(self, tmp_path, sample_project_json, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "0")
        handlers, result, out_dir = self.run(
            tmp_path, "confirmed", goal="bounce", inJson=sample_project_json, confirm=True,
        )

        assert result.ok is True, result.errors
        assert result.preview_only is False
        assert (out_dir / "motionforge-bundle.zip").is_file()
        assert (out_dir / "motionforge-manifest.json").is_file()
        proof = json.loads((out_dir / "proof.json").read_text(encoding="utf-8"))
        assert proof["previewOnly"] is False
        assert proof["bundleHash"]
        assert proof["errors"] == []
        project = json.loads((out_dir / "project.json").read_text(encoding="utf-8"))
        assert [t["id"] for t in project["animation"]["takes"]] == ["take_01_main"]
        assert handlers.runtime.snapshot()["animation"]["keyframeCount"] == 13

    def test_multi_take_run(self, tmp_path, sample_project_json):
        _, result, out_dir = self.run(
            tmp_path, "takes",
            goal="idle loop then recoil",
            inJson=sample_project_json,
            confirm=True,
        )
        assert result.ok is True, result.errors
        project = json.loads((out_dir / "project.json").read_text(encoding="utf-8"))
        assert project["animation"]["durationSeconds"] == 2.4
        assert [t["name"] for t in project["animation"]["takes"]] == ["Idle", "Recoil"]
        proof = json.loads((out_dir / "proof.json").read_text(encoding="utf-8"))
        assert [row["take"] for row in proof["diffSummary"]["scripts"]] == ["Idle", "Recoil"]

    def test_bundle_input_round_trips(self, tmp_path, sample_project_json):
        _, first, first_dir = self.run(tmp_path, "first", goal="bounce", inJson=sample_project_json, confirm=True)
        encoded = base64.b64encode((first_dir / "motionforge-bundle.zip").read_bytes()).decode("ascii")

        _, second, _ = self.run(tmp_path, "second", goal="turn in place", inBundleBase64=encoded)

        assert second.errors[0].code == "MF_ERR_CONFIRM_REQUIRED"

    def test_unity_mode_reports_filled_bind_paths(self, tmp_path, sample_project_json):
        _, result, out_dir = self.run(
            tmp_path, "unity",
            goal="bounce",
            inJson=sample_project_json,
            confirm=True,
            unity=True,
            target={"select": "Sphere"},
        )
        assert result.ok is True, result.errors
        project = json.loads((out_dir / "project.json").read_text(encoding="utf-8"))
        tracks = project["animation"]["tracks"]
        assert {t["objectId"] for t in tracks} == {"obj_sphere"}
        assert all(t["bindPath"] == "Sphere" for t in tracks)

    def test_invalid_bundle(self, tmp_path):
        _, result, out_dir = self.run(tmp_path, "bad", goal="bounce", inBundleBase64="@@@", confirm=True)
        assert result.errors[0].code == "MF_ERR_INVALID_BUNDLE"
        assert not (out_dir / "proof.json").exists()

    def test_empty_project_has_no_objects(self, tmp_path):
        _, result, out_dir = self.run(tmp_path, "empty", goal="bounce", confirm=True)
        assert result.errors[0].code == "MF_ERR_NO_OBJECTS"
        assert (out_dir / "proof.json").is_file()

    def test_unknown_goal(self, tmp_path, sample_project_json):
        _, result, _ = self.run(tmp_path, "unknown", goal="juggle", inJson=sample_project_json, confirm=True)
        assert result.errors[0].code == "MF_ERR_UNKNOWN_GOAL"


class TestPipelineTools:
    """mf.pipeline.makeBundle and mf.unity.recipe.makeBundle."""

    def test_make_bundle_tool(self, handlers, sample_project_json, tmp_path):
        result = handlers.call("mf.pipeline.makeBundle", {
            "goal": "recoil",
            "outDir": str(tmp_path / "tool"),
            "confirm": False,
            "inJson": sample_project_json,
        })
        assert result["ok"] is False
        assert result["previewOnly"] is True
        assert result["error"]["code"] == "MF_ERR_CONFIRM_REQUIRED"
        assert result["proofPath"].endswith("proof.json")

    def test_unity_recipe_tool(self, loaded_handlers, tmp_path):
        result = loaded_handlers.call("mf.unity.recipe.makeBundle", {
            "goal": "turn in place",
            "target": {"select": "Cube", "bindPath": "Rig/Cube"},
            "outDir": str(tmp_path / "unity"),
            "confirm": True,
        })
        assert result["ok"] is True, result
        project = json.loads((tmp_path / "unity" / "project.json").read_text(encoding="utf-8"))
        assert {t["objectId"] for t in project["animation"]["tracks"]} == {"obj_cube"}
