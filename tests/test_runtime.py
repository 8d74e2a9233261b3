"""Tests for the headless runtime: command bus, history, staged loads and exports."""
import json
import zipfile

import pytest

from motionforge.runtime import MotionForgeRuntime, RuntimeCommandError, as_runtime_error
from motionforge.runtime.runtime import RuntimeCommand


def error_code(exc_info):
    return exc_info.value.code


class TestEmptyRuntime:
    """A fresh runtime holds an empty v4 project."""

    def test_snapshot(self):
        snapshot = MotionForgeRuntime().snapshot()
        assert snapshot["version"] == 4
        assert snapshot["scene"]["objects"] == []
        assert snapshot["selection"] == {"objectId": None}
        assert snapshot["animation"]["durationSeconds"] == 5
        assert snapshot["dirty"] is False

    def test_capabilities_include_history(self):
        actions = MotionForgeRuntime().get_capabilities()["actions"]
        assert "scene.addPrimitive" in actions
        assert actions[-2:] == ["history.undo", "history.redo"]


class TestCommands:
    """Scene and animation commands."""

    def test_add_primitive_ids_and_names(self):
        rt = MotionForgeRuntime()
        first = rt.execute("scene.addPrimitive", {"type": "box"})
        second = rt.execute("scene.addPrimitive", {"type": "box"})

        assert first.result == {"objectId": "obj_1"}
        assert second.result == {"objectId": "obj_2"}
        names = [o["name"] for o in rt.snapshot()["scene"]["objects"]]
        assert names == ["Cube", "Cube 2"]
        assert rt.snapshot()["selection"]["objectId"] == "obj_2"
        assert [e.type for e in first.events] == ["scene.objectAdded", "selection.changed", "project.dirtyChanged"]

    def test_event_sequence_increases(self):
        rt = MotionForgeRuntime()
        first = rt.execute("scene.addPrimitive", {"type": "sphere"})
        second = rt.execute("scene.addPrimitive", {"type": "cone"})
        seqs = [e.seq for e in first.events + second.events]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == len(seqs)

    def test_add_primitive_rejects_unknown_type(self):
        rt = MotionForgeRuntime()
        with pytest.raises(RuntimeCommandError) as exc_info:
            rt.execute("scene.addPrimitive", {"type": "torus"})
        assert error_code(exc_info) == "MF_ERR_INVALID_INPUT"

    @pytest.mark.parametrize("bad_type", [[], {}, ["box"], 3, None])
    def test_add_primitive_rejects_non_string_type(self, bad_type):
        rt = MotionForgeRuntime()
        with pytest.raises(RuntimeCommandError) as exc_info:
            rt.execute("scene.addPrimitive", {"type": bad_type})
        assert error_code(exc_info) == "MF_ERR_INVALID_INPUT"

    def test_rejected_insert_records_keeps_event_sequence_contiguous(self, runtime):
        added = runtime.execute("scene.addPrimitive", {"type": "box"})
        last_seq = added.events[-1].seq

        with pytest.raises(RuntimeCommandError):
            runtime.execute("animation.insertRecords", {"records": [
                {"objectId": "obj_cube", "propertyPath": "position.x", "time": 0.5, "value": 1},
                {"objectId": "obj_cube", "propertyPath": "opacity", "time": 0.5, "value": 1},
            ]})

        changed = runtime.execute("animation.setDuration", {"durationSeconds": 3})
        assert changed.events[0].seq == last_seq + 1
        assert runtime.snapshot()["animation"]["keyframeCount"] == 0

    def test_select_by_name_ambiguous(self):
        rt = MotionForgeRuntime()
        rt.execute("scene.addPrimitive", {"type": "box"})
        rt.execute("scene.addPrimitive", {"type": "box"})
        rt.execute("hierarchy.renameMany", {"changes": [{"objectId": "obj_2", "name": "Cube"}]})

        with pytest.raises(RuntimeCommandError) as exc_info:
            rt.execute("scene.selectByName", {"name": "Cube"})
        assert error_code(exc_info) == "MF_ERR_AMBIGUOUS_NAME"

    def test_select_by_name_case_insensitive_fallback(self, runtime):
        out = runtime.execute("scene.selectByName", {"name": "sphere"})
        assert out.result == {"objectId": "obj_sphere"}

    @pytest.mark.parametrize("action", ["scene.deleteSelected", "scene.clearUserObjects"])
    def test_destructive_commands_require_confirm(self, runtime, action):
        runtime.execute("scene.selectById", {"id": "obj_cube"})
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute(action, {})
        assert error_code(exc_info) == "MF_ERR_CONFIRM_REQUIRED"
        assert len(runtime.snapshot()["scene"]["objects"]) == 2

    def test_delete_removes_children_and_tracks(self, runtime):
        runtime.execute("scene.parent", {"childId": "obj_sphere", "parentId": "obj_cube"})
        runtime.execute("animation.insertRecords", {"records": [
            {"objectId": "obj_sphere", "propertyPath": "position.x", "time": 0, "value": 1},
        ]})
        runtime.execute("scene.selectById", {"id": "obj_cube"})

        out = runtime.execute("scene.deleteSelected", {"confirm": True})

        assert out.result == {"removedIds": ["obj_cube", "obj_sphere"]}
        snapshot = runtime.snapshot()
        assert snapshot["scene"]["objects"] == []
        assert snapshot["animation"]["trackCount"] == 0
        assert snapshot["selection"]["objectId"] is None

    def test_parent_cycle_rejected(self, runtime):
        runtime.execute("scene.parent", {"childId": "obj_sphere", "parentId": "obj_cube"})
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("scene.parent", {"childId": "obj_cube", "parentId": "obj_sphere"})
        assert error_code(exc_info) == "MF_ERR_INVALID_INPUT"

    def test_insert_records_replaces_same_time(self, runtime):
        record = {"objectId": "obj_cube", "propertyPath": "position.x", "time": 1, "value": 1}
        runtime.execute("animation.insertRecords", {"records": [record]})
        runtime.execute("animation.insertRecords", {"records": [{**record, "value": 3}]})

        project = json.loads(runtime.export_project_json())
        track = project["animation"]["tracks"][0]
        assert track["bindPath"] == "Cube"
        assert track["keyframes"] == [{"time": 1, "value": 3, "interpolation": "linear"}]

    def test_insert_records_rejects_bad_property(self, runtime):
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("animation.insertRecords", {"records": [
                {"objectId": "obj_cube", "propertyPath": "opacity", "time": 0, "value": 1},
            ]})
        assert error_code(exc_info) == "MF_ERR_INVALID_INPUT"

    def test_set_takes_drops_invalid_rows(self, runtime):
        out = runtime.execute("animation.setTakes", {"takes": [
            {"id": "take_b", "name": "B", "startTime": 1, "endTime": 2},
            {"id": "take_a", "name": "A", "startTime": 0, "endTime": 1},
            {"id": "take_a", "name": "Dup", "startTime": 0, "endTime": 1},
            {"id": "take_c", "name": "Late", "startTime": 1, "endTime": 9},
        ]})
        assert [t["id"] for t in out.result["takes"]] == ["take_a", "take_b"]

    def test_material_set_requires_object(self, runtime):
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("material.set", {"objectId": "missing", "metallic": 0.5})
        assert error_code(exc_info) == "MF_ERR_NO_SELECTION"

    def test_unknown_action(self, runtime):
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("scene.explode", {})
        assert error_code(exc_info) == "MF_ERR_UNKNOWN_ACTION"

    def test_v5_actions_not_implemented(self, runtime):
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("scene.addCamera", {})
        assert error_code(exc_info) == "MF_ERR_NOT_IMPLEMENTED"

    def test_duplicate_selected_copies_tracks(self, runtime):
        runtime.execute("animation.insertRecords", {"records": [
            {"objectId": "obj_cube", "propertyPath": "position.x", "time": 0.5, "value": 1},
        ]})
        runtime.execute("selection.set", {"objectId": "obj_cube"})

        out = runtime.execute("scene.duplicateSelected", {})

        new_id = out.result["objectId"]
        project = json.loads(runtime.export_project_json())
        source = next(o for o in project["objects"] if o["id"] == "obj_cube")
        copy = next(o for o in project["objects"] if o["id"] == new_id)
        assert copy["name"] == "Cube 2"
        assert copy["position"] == pytest.approx([source["position"][0] + 0.6, source["position"][1], source["position"][2] + 0.6])
        assert sorted(t["objectId"] for t in project["animation"]["tracks"]) == sorted(["obj_cube", new_id])
        assert runtime.snapshot()["selection"]["objectId"] == new_id

    def test_move_then_remove_keys(self, runtime):
        runtime.execute("animation.insertRecords", {"records": [
            {"objectId": "obj_cube", "propertyPath": "position.x", "time": 0.5, "value": 1},
        ]})

        moved = runtime.execute("animation.moveKeys", {
            "keys": [{"objectId": "obj_cube", "propertyPath": "position.x", "time": 0.5}],
            "deltaTime": 0.25,
        })
        assert moved.result == {"movedCount": 1}
        assert moved.events[0].type == "keyframe.moved"

        removed = runtime.execute("animation.removeKeys", {
            "keys": [{"objectId": "obj_cube", "propertyPath": "position.x", "time": 0.75}],
        })
        assert removed.result == {"removedCount": 1}
        assert runtime.snapshot()["animation"]["keyframeCount"] == 0

    def test_move_keys_requires_delta(self, runtime):
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("animation.moveKeys", {"keys": []})
        assert error_code(exc_info) == "MF_ERR_INVALID_INPUT"


class TestHistory:
    """Undo and redo swap whole states."""

    def test_undo_redo(self):
        rt = MotionForgeRuntime()
        rt.execute("scene.addPrimitive", {"type": "box"})

        rt.execute("history.undo")
        assert rt.snapshot()["scene"]["objects"] == []

        rt.execute("history.redo")
        assert [o["id"] for o in rt.snapshot()["scene"]["objects"]] == ["obj_1"]

    def test_empty_stacks(self):
        rt = MotionForgeRuntime()
        with pytest.raises(RuntimeCommandError) as exc_info:
            rt.execute("history.undo")
        assert error_code(exc_info) == "MF_ERR_NOTHING_TO_UNDO"
        with pytest.raises(RuntimeCommandError) as exc_info:
            rt.execute("history.redo")
        assert error_code(exc_info) == "MF_ERR_NOTHING_TO_REDO"

    def test_failed_command_leaves_state_and_history(self, runtime):
        before = runtime.export_project_json()
        with pytest.raises(RuntimeCommandError):
            runtime.execute("scene.selectById", {"id": "ghost"})
        assert runtime.export_project_json() == before
        with pytest.raises(RuntimeCommandError):
            runtime.execute("history.undo")

    def test_non_coded_error_restores_state(self, runtime):
        def explode(ctx, payload):
            ctx.state.data["objects"].clear()
            ctx.state.selected_object_id = "obj_cube"
            raise ValueError("boom")

        runtime._bus.register(RuntimeCommand(id="test.explode", run=explode))
        before_json = runtime.export_project_json()
        before_snapshot = runtime.snapshot()

        with pytest.raises(ValueError):
            runtime.execute("test.explode", {})

        assert runtime.export_project_json() == before_json
        assert runtime.snapshot() == before_snapshot
        with pytest.raises(RuntimeCommandError) as exc_info:
            runtime.execute("history.undo")
        assert error_code(exc_info) == "MF_ERR_NOTHING_TO_UNDO"

    def test_add_parent_select_duplicate_delete_symmetry(self, runtime):
        pre_json, pre_snapshot = runtime.export_project_json(), runtime.snapshot()

        runtime.execute("scene.addPrimitive", {"type": "box"})
        runtime.execute("scene.parent", {"childId": "obj_1", "parentId": "obj_cube"})
        runtime.execute("scene.selectById", {"id": "obj_cube"})
        duplicated = runtime.execute("scene.duplicateSelected", {})
        runtime.execute("scene.deleteSelected", {"confirm": True})
        post_json, post_snapshot = runtime.export_project_json(), runtime.snapshot()
        assert duplicated.result == {"objectId": "obj_2"}

        # one history entry per state-changing action
        for _ in range(5):
            runtime.execute("history.undo")
        assert runtime.export_project_json() == pre_json
        assert runtime.snapshot() == pre_snapshot
        with pytest.raises(RuntimeCommandError):
            runtime.execute("history.undo")

        for _ in range(5):
            runtime.execute("history.redo")
        assert runtime.export_project_json() == post_json
        assert runtime.snapshot() == post_snapshot
        with pytest.raises(RuntimeCommandError):
            runtime.execute("history.redo")

    def test_new_command_clears_redo(self):
        rt = MotionForgeRuntime()
        rt.execute("scene.addPrimitive", {"type": "box"})
        rt.execute("history.undo")
        rt.execute("scene.addPrimitive", {"type": "sphere"})
        with pytest.raises(RuntimeCommandError):
            rt.execute("history.redo")


class TestLoading:
    """Project parsing, migration and staged loads."""

    def test_staged_load_then_commit(self, sample_project_json):
        rt = MotionForgeRuntime()
        loaded = rt.load_project_json(sample_project_json)

        assert loaded["projectId"].startswith("mf_")
        assert loaded["summary"]["objects"] == 2
        assert rt.snapshot()["scene"]["objects"] == []
        assert rt.has_staged is True

        assert rt.commit_staged_load() == {"ok": True}
        assert len(rt.snapshot()["scene"]["objects"]) == 2
        assert rt.has_staged is False

    def test_commit_without_staged(self):
        with pytest.raises(RuntimeCommandError) as exc_info:
            MotionForgeRuntime().commit_staged_load()
        assert error_code(exc_info) == "MF_ERR_NO_STAGED_PROJECT"
        assert exc_info.value.message == "No staged project is available to commit."

    def test_discard(self, sample_project_json):
        rt = MotionForgeRuntime()
        rt.load_project_json(sample_project_json)
        assert rt.discard_staged_load() == {"ok": True}
        assert rt.staged_project_json() is None

    def test_project_id_is_content_hash(self, sample_project_json):
        first = MotionForgeRuntime().load_project_json(sample_project_json)
        second = MotionForgeRuntime().load_project_json(sample_project_json)
        assert first["projectId"] == second["projectId"]

    def test_legacy_project_is_migrated(self, legacy_project_json):
        rt = MotionForgeRuntime()
        summary = rt.load_project_json(legacy_project_json, staged=False)["summary"]
        project = json.loads(rt.export_project_json())

        assert summary["version"] == 4
        assert project["objects"][0]["bindPath"] == "Cube"

    def test_main_take_is_synthesized(self, runtime):
        project = json.loads(runtime.export_project_json())
        assert project["animation"]["takes"] == [
            {"id": "take_main", "name": "Main", "startTime": 0, "endTime": 2},
        ]

    @pytest.mark.parametrize("text,code", [
        ("{not json", "MF_ERR_INVALID_JSON"),
        ('{"version": 4, "objects": "nope"}', "MF_ERR_INVALID_PROJECT"),
        ('{"version": 99, "objects": []}', "MF_ERR_INVALID_PROJECT"),
    ])
    def test_parse_errors(self, text, code):
        with pytest.raises(RuntimeCommandError) as exc_info:
            MotionForgeRuntime().load_project_json(text)
        assert error_code(exc_info) == code

    def test_max_json_bytes(self, sample_project_json):
        with pytest.raises(RuntimeCommandError) as exc_info:
            MotionForgeRuntime(max_json_bytes=16).load_project_json(sample_project_json)
        assert error_code(exc_info) == "MF_ERR_MAX_JSON_BYTES"

    def test_failed_load_keeps_staged_project(self, sample_project_json):
        rt = MotionForgeRuntime()
        rt.load_project_json(sample_project_json)
        with pytest.raises(RuntimeCommandError):
            rt.load_project_json("[]")
        assert rt.has_staged is True

    def test_clone_is_independent(self, runtime):
        runtime.execute("scene.selectById", {"id": "obj_sphere"})
        other = runtime.clone()
        other.execute("animation.setDuration", {"durationSeconds": 4})

        assert other.snapshot()["selection"]["objectId"] == "obj_sphere"
        assert runtime.snapshot()["animation"]["durationSeconds"] == 2


class TestExports:
    """Bundle and Unity package archives."""

    def test_export_bundle(self, runtime, tmp_path, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "0")
        out = runtime.export_bundle(tmp_path)

        assert out["ok"] is True
        assert out["path"] == str(tmp_path / "motionforge-bundle.zip")
        with zipfile.ZipFile(out["path"]) as archive:
            assert sorted(archive.namelist()) == ["motionforge-manifest.json", "project.json"]
            manifest = json.loads(archive.read("motionforge-manifest.json"))
            project = archive.read("project.json").decode("utf-8")

        assert manifest["exportedAt"] == "1970-01-01T00:00:00.000Z"
        assert manifest["projectVersion"] == 4
        assert manifest["takes"][0]["id"] == "take_main"
        assert project == runtime.export_project_json()

    def test_bundle_bytes_are_reproducible(self, runtime, tmp_path, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
        first = (tmp_path / "a")
        second = (tmp_path / "b")
        runtime.export_bundle(first)
        runtime.export_bundle(second)
        assert (first / "motionforge-bundle.zip").read_bytes() == (second / "motionforge-bundle.zip").read_bytes()

    def test_export_unity_package(self, runtime, tmp_path):
        out = runtime.export_unity_package(tmp_path, scale=0.01, y_up=False)

        with zipfile.ZipFile(out["path"]) as archive:
            assert sorted(archive.namelist()) == ["README_UNITY.txt", "project.json"]
            readme = archive.read("README_UNITY.txt").decode("utf-8")
        assert "Options: scale=0.01, yUp=false, includeProjectJson=true" in readme
        assert any("glTF animation export is not implemented" in w for w in out["warnings"])

    def test_unity_package_without_project_json(self, runtime, tmp_path):
        out = runtime.export_unity_package(tmp_path, include_project_json=False)
        with zipfile.ZipFile(out["path"]) as archive:
            assert archive.namelist() == ["README_UNITY.txt"]


def test_as_runtime_error_keeps_codes():
    coded = RuntimeCommandError("MF_ERR_X", "boom")
    assert as_runtime_error(coded, "MF_ERR_FALLBACK", "fallback") is coded
    plain = as_runtime_error(ValueError("bad"), "MF_ERR_FALLBACK", "fallback")
    assert (plain.code, plain.message) == ("MF_ERR_FALLBACK", "bad")
    assert isinstance(plain, RuntimeError)
