"""Preview diffs between two project JSON exports."""
from __future__ import annotations

import json
from typing import Any, Protocol

from pydantic import Field

from motionforge.models import PlanStep, WireModel


class ObjectDiff(WireModel):
    id: str
    name: str
    changes: list[str]


class AnimationDiff(WireModel):
    object_id: str
    tracks: list[str]
    keyframes_added: int
    keyframes_moved: int
    keyframes_deleted: int


class MaterialDiff(WireModel):
    object_id: str
    changes: list[str]


class PlanPreviewDiff(WireModel):
    objects: list[ObjectDiff] = Field(default_factory=list)
    animation: list[AnimationDiff] = Field(default_factory=list)
    materials: list[MaterialDiff] = Field(default_factory=list)


class PlanRuntimeLike(Protocol):
    def clone(self) -> "PlanRuntimeLike": ...

    def execute(self, action: str, payload: Any) -> Any: ...

    def export_project_json(self) -> str: ...


def create_empty_diff() -> PlanPreviewDiff:
    return PlanPreviewDiff()


def _num(value: Any) -> str:
    # 1 and 1.0 must produce the same token
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _keyframe_token(prop: str, keyframe: dict[str, Any]) -> str:
    interpolation = keyframe.get("interpolation") or "linear"
    return f"{prop}|{_num(keyframe['time'])}|{_num(keyframe['value'])}|{interpolation}"


def _compare_objects(before: dict, after: dict) -> list[ObjectDiff]:
    previous = {obj["id"]: obj for obj in before.get("objects") or []}
    result = []
    for obj in after.get("objects") or []:
        prev = previous.get(obj["id"])
        if prev is None:
            continue
        changes = [
            field_name
            for field_name in ("name", "position", "rotation", "scale")
            if prev.get(field_name) != obj.get(field_name)
        ]
        if changes:
            result.append(ObjectDiff(id=obj["id"], name=obj["name"], changes=changes))
    return sorted(result, key=lambda item: item.id)


def _compare_materials(before: dict, after: dict) -> list[MaterialDiff]:
    previous = {obj["id"]: obj for obj in before.get("objects") or []}
    result = []
    for obj in after.get("objects") or []:
        prev = previous.get(obj["id"])
        if prev is None:
            continue
        changes = []
        if prev.get("color") != obj.get("color"):
            changes.append("baseColor")
        if prev.get("metallic") != obj.get("metallic"):
            changes.append("metallic")
        if prev.get("roughness") != obj.get("roughness"):
            changes.append("roughness")
        if changes:
            result.append(MaterialDiff(object_id=obj["id"], changes=changes))
    return sorted(result, key=lambda item: item.object_id)


def _track_map(project: dict) -> dict[str, dict]:
    tracks = (project.get("animation") or {}).get("tracks") or []
    return {f"{track['objectId']}|{track['property']}": track for track in tracks}


def _compare_animation(before: dict, after: dict) -> list[AnimationDiff]:
    before_tracks = _track_map(before)
    after_tracks = _track_map(after)
    by_object: dict[str, dict[str, Any]] = {}

    for track_key in sorted(set(before_tracks) | set(after_tracks)):
        object_id, _, prop = track_key.partition("|")
        if not object_id or not prop:
            continue
        before_keys = (before_tracks.get(track_key) or {}).get("keyframes") or []
        after_keys = (after_tracks.get(track_key) or {}).get("keyframes") or []
        before_tokens = {_keyframe_token(prop, kf) for kf in before_keys}
        after_tokens = {_keyframe_token(prop, kf) for kf in after_keys}

        added = len(after_tokens - before_tokens)
        deleted = len(before_tokens - after_tokens)
        moved = min(added, deleted, max(len(before_keys), len(after_keys)))
        if not (added or deleted or moved):
            continue
        entry = by_object.setdefault(object_id, {"tracks": set(), "added": 0, "deleted": 0, "moved": 0})
        entry["tracks"].add(prop)
        entry["added"] += added
        entry["deleted"] += deleted
        entry["moved"] += moved

    return [
        AnimationDiff(
            object_id=object_id,
            tracks=sorted(entry["tracks"]),
            keyframes_added=entry["added"],
            keyframes_moved=entry["moved"],
            keyframes_deleted=entry["deleted"],
        )
        for object_id, entry in sorted(by_object.items())
    ]


def build_project_diff(before_project_json: str, after_project_json: str) -> PlanPreviewDiff:
    before = json.loads(before_project_json)
    after = json.loads(after_project_json)
    return PlanPreviewDiff(
        objects=_compare_objects(before, after),
        animation=_compare_animation(before, after),
        materials=_compare_materials(before, after),
    )


def simulate_plan_diff(runtime: PlanRuntimeLike, steps: list[PlanStep]) -> PlanPreviewDiff:
    """Run mutate steps on a clone of ``runtime`` and diff the clone's exports.

    The live runtime is never executed against.
    """
    preview = runtime.clone()
    before_json = preview.export_project_json()
    for step in steps:
        if step.type != "mutate":
            continue
        preview.execute(step.command.action, step.command.input)
    return build_project_diff(before_json, preview.export_project_json())
