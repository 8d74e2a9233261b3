"""Headless MotionForge runtime: command bus, undo/redo history and exports.

All state lives in :class:`RuntimeState`. Every command runs against the live
state and the runtime records a deep-copied before/after pair whenever the
state fingerprint changed, so undo and redo swap whole states.
"""
from __future__ import annotations

import base64
import copy
import dataclasses
import io
import json
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from motionforge.config import cfg
from motionforge.models import KeyframeRef
from motionforge.pipeline.hashing import sha256_hex_from_string, stable_json_stringify
from motionforge.runtime.clip import (
    count_keyframes,
    create_empty_clip,
    get_or_create_track,
    insert_keyframe,
    move_keyframes,
    normalize_clip,
    remove_keyframes,
    stable_track_sort,
)
from motionforge.runtime.errors import RuntimeCommandError
from motionforge.runtime.events import RuntimeEvent, RuntimeEventLog
from motionforge.runtime.project import (
    INTERPOLATIONS,
    LATEST_PROJECT_VERSION,
    TRACK_PROPERTIES,
    ProjectValidationError,
    is_number,
    migrate_project_to_latest,
    validate_project_data,
)

logger = logging.getLogger(__name__)

BUNDLE_FILE_NAME = "motionforge-bundle.zip"
UNITY_PACKAGE_FILE_NAME = "motionforge-unity-package.zip"
PROJECT_ENTRY = "project.json"
MANIFEST_ENTRY = "motionforge-manifest.json"

# Fixed zip entry timestamp so identical projects produce identical archives.
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_DEFAULT_COLORS = {"box": 0x4488FF, "sphere": 0x44CC66, "cone": 0xCC6644}
_BASE_NAMES = {"box": "Cube", "sphere": "Sphere", "cone": "Cone"}
_OBJ_ID_RE = re.compile(r"^obj_(\d+)$")
_MISSING = object()


# ---------------------------------------------------------------------------
# State containers
# ---------------------------------------------------------------------------

@dataclass
class RuntimeState:
    data: dict[str, Any]
    selected_object_id: str | None = None
    dirty: bool = False
    hierarchy: dict[str, str | None] = field(default_factory=dict)


@dataclass
class UndoEntry:
    label: str
    before: RuntimeState
    after: RuntimeState


@dataclass
class RestorePoint:
    current: RuntimeState
    staged: RuntimeState | None
    undo_stack: list[UndoEntry]
    redo_stack: list[UndoEntry]


@dataclass
class CommandResult:
    result: dict[str, Any] | None
    events: list[RuntimeEvent]

    def to_dict(self) -> dict[str, Any]:
        return {"result": self.result, "events": [event.to_wire() for event in self.events]}


@dataclass
class CommandContext:
    state: RuntimeState
    emit: Callable[[str, dict[str, Any]], RuntimeEvent]


@dataclass
class RuntimeCommand:
    id: str
    run: Callable[[CommandContext, dict[str, Any]], CommandResult]
    is_enabled: Callable[[CommandContext, dict[str, Any]], None] | None = None


def create_empty_state() -> RuntimeState:
    return RuntimeState(
        data={
            "version": LATEST_PROJECT_VERSION,
            "objects": [],
            "animation": create_empty_clip(5),
        }
    )


def state_fingerprint(state: RuntimeState) -> str:
    return stable_json_stringify(dataclasses.asdict(state))


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

def _by_id(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda row: row["id"])


def normalize_project_data(data: dict[str, Any]) -> dict[str, Any]:
    """Canonical ordering; unknown top-level keys are dropped."""
    out: dict[str, Any] = {"version": data["version"], "objects": _by_id(data["objects"])}
    if data.get("assets"):
        out["assets"] = _by_id(data["assets"])
    if data.get("modelInstances"):
        out["modelInstances"] = _by_id(data["modelInstances"])
    if data.get("camera"):
        out["camera"] = data["camera"]
    if data.get("animation"):
        out["animation"] = stable_track_sort(data["animation"])
    return out


def summarize_project(data: dict[str, Any]) -> dict[str, Any]:
    clip = data.get("animation")
    return {
        "version": data["version"],
        "objects": len(data["objects"]) + len(data.get("modelInstances") or []),
        "assets": len(data.get("assets") or []),
        "tracks": len(clip["tracks"]) if clip else 0,
        "keyframes": count_keyframes(clip),
        "durationSeconds": clip["durationSeconds"] if clip else 0,
        "payloadBytes": len(stable_json_stringify(data).encode("utf-8")),
    }


def compute_project_id(data: dict[str, Any]) -> str:
    return "mf_" + sha256_hex_from_string(stable_json_stringify(data))[:8]


def parse_project(text: str, max_json_bytes: int) -> dict[str, Any]:
    if len(text.encode("utf-8")) > max_json_bytes:
        raise RuntimeCommandError("MF_ERR_MAX_JSON_BYTES", "Project JSON exceeds max import size.")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        raise RuntimeCommandError("MF_ERR_INVALID_JSON", "Input is not valid JSON.")
    migrated, _ = migrate_project_to_latest(parsed)
    try:
        validate_project_data(migrated)
    except ProjectValidationError as exc:
        raise RuntimeCommandError("MF_ERR_INVALID_PROJECT", str(exc))
    return normalize_project_data(migrated)


def _all_nodes(state: RuntimeState) -> list[dict[str, Any]]:
    return list(state.data["objects"]) + list(state.data.get("modelInstances") or [])


def _find_node(state: RuntimeState, object_id: str) -> dict[str, Any] | None:
    for node in _all_nodes(state):
        if node["id"] == object_id:
            return node
    return None


def _object_exists(state: RuntimeState, object_id: str) -> bool:
    return _find_node(state, object_id) is not None


def _resolve_bind_path(state: RuntimeState, object_id: str) -> str:
    node = _find_node(state, object_id)
    if node is None:
        return object_id
    bind_path = node.get("bindPath")
    if isinstance(bind_path, str) and bind_path:
        return bind_path
    return node["name"] or object_id


def _parse_tuple3(value: Any, fallback: list[float]) -> list[float]:
    if isinstance(value, list) and len(value) == 3 and all(is_number(v) for v in value):
        return list(value)
    return list(fallback)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _next_object_id(state: RuntimeState) -> str:
    used = {row["id"] for row in state.data["objects"]}
    highest = 0
    for object_id in used:
        match = _OBJ_ID_RE.match(object_id)
        if match:
            highest = max(highest, int(match.group(1)))
    candidate = highest + 1
    while f"obj_{candidate}" in used:
        candidate += 1
    return f"obj_{candidate}"


def _unique_name(state: RuntimeState, base_name: str) -> str:
    names = [node["name"] for node in _all_nodes(state)]
    if base_name not in names:
        return base_name
    index = 2
    while f"{base_name} {index}" in names:
        index += 1
    return f"{base_name} {index}"


def _is_hierarchy_cycle(hierarchy: dict[str, str | None], child_id: str, parent_id: str) -> bool:
    cursor: str | None = parent_id
    while cursor:
        if cursor == child_id:
            return True
        cursor = hierarchy.get(cursor)
    return False


def _clip_of(state: RuntimeState) -> dict[str, Any]:
    clip = state.data.get("animation")
    return copy.deepcopy(clip) if clip else create_empty_clip(5)


def _store_clip(state: RuntimeState, clip: dict[str, Any]) -> None:
    normalize_clip(clip)
    state.data["animation"] = stable_track_sort(clip)


def _parse_track_property(value: Any) -> str:
    if not isinstance(value, str) or value not in TRACK_PROPERTIES:
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", f'Unsupported propertyPath "{value}".')
    return value


def _parse_interpolation(value: Any) -> str:
    return value if isinstance(value, str) and value in INTERPOLATIONS else "linear"


def _parse_key_refs(rows: list[Any]) -> list[KeyframeRef]:
    refs = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        if not isinstance(row.get("objectId"), str) or not is_number(row.get("time")):
            continue
        refs.append(
            KeyframeRef(
                object_id=row["objectId"],
                property_path=_parse_track_property(row.get("propertyPath")),
                time=row["time"],
            )
        )
    return refs


def _mark_dirty(ctx: CommandContext, events: list[RuntimeEvent]) -> None:
    if not ctx.state.dirty:
        ctx.state.dirty = True
        events.append(ctx.emit("project.dirtyChanged", {"dirty": True}))


def _select(ctx: CommandContext, object_id: str | None, events: list[RuntimeEvent]) -> None:
    if ctx.state.selected_object_id != object_id:
        ctx.state.selected_object_id = object_id
        events.append(ctx.emit("selection.changed", {"objectId": object_id}))


def _bundle_file_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", name)


def _asset_file_name(asset: dict[str, Any]) -> str:
    source = asset["source"]
    source_name = source["fileName"] if source["mode"] == "embedded" else asset["name"]
    return f"{_bundle_file_name(asset['id'])}-{_bundle_file_name(source_name) or 'asset.bin'}"


def _write_zip(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, payload in files.items():
            info = zipfile.ZipInfo(name, date_time=_ZIP_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, payload)
    return buffer.getvalue()


def _iso_now() -> str:
    epoch = cfg.source_date_epoch
    moment = datetime.fromtimestamp(epoch, timezone.utc) if epoch is not None else datetime.now(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _cmd_selection_set(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    object_id = payload.get("objectId", _MISSING)
    if object_id is not None and not isinstance(object_id, str):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "objectId must be string or null.")
    events: list[RuntimeEvent] = []
    _select(ctx, object_id, events)
    return CommandResult({"selectedObjectId": ctx.state.selected_object_id}, events)


def _cmd_select_by_id(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    object_id = payload.get("id")
    if not isinstance(object_id, str) or not object_id:
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.selectById requires id.")
    if not _object_exists(ctx.state, object_id):
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", f'Object "{object_id}" was not found.')
    events: list[RuntimeEvent] = []
    _select(ctx, object_id, events)
    return CommandResult({"objectId": object_id}, events)


def _cmd_select_by_name(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.selectByName requires name.")
    wanted = name.strip()
    nodes = _all_nodes(ctx.state)
    matches = [node for node in nodes if node["name"] == wanted]
    if not matches:
        matches = [node for node in nodes if node["name"].lower() == wanted.lower()]
    if not matches:
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", f'Object name "{name}" was not found.')
    if len(matches) > 1:
        ids = ", ".join(node["id"] for node in matches)
        raise RuntimeCommandError("MF_ERR_AMBIGUOUS_NAME", f'Multiple objects match "{name}": {ids}')
    target_id = matches[0]["id"]
    events: list[RuntimeEvent] = []
    _select(ctx, target_id, events)
    return CommandResult({"objectId": target_id}, events)


def _cmd_add_primitive(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    geometry = payload.get("type")
    if not isinstance(geometry, str) or geometry not in _DEFAULT_COLORS:
        raise RuntimeCommandError(
            "MF_ERR_INVALID_INPUT", "scene.addPrimitive type must be one of box|sphere|cone."
        )
    at = payload.get("at") if isinstance(payload.get("at"), dict) else {}
    material = payload.get("material") if isinstance(payload.get("material"), dict) else {}

    index = len(ctx.state.data["objects"])
    column, row = index % 6, index // 6
    default_position = [(column - 2.5) * 0.6, 0.5, row * 0.6]
    object_id = _next_object_id(ctx.state)
    requested_name = payload.get("name")
    base_name = (
        requested_name.strip()
        if isinstance(requested_name, str) and requested_name.strip()
        else _BASE_NAMES[geometry]
    )
    color = material.get("color") if is_number(material.get("color")) else _DEFAULT_COLORS[geometry]
    metallic = material.get("metallic")
    roughness = material.get("roughness")
    obj = {
        "id": object_id,
        "name": _unique_name(ctx.state, base_name),
        "geometryType": geometry,
        "color": int(_clamp(round(color), 0, 0xFFFFFF)),
        "metallic": _clamp(metallic, 0, 1) if is_number(metallic) else 0,
        "roughness": _clamp(roughness, 0, 1) if is_number(roughness) else 1,
        "position": _parse_tuple3(at.get("position"), default_position),
        "rotation": _parse_tuple3(at.get("rotation"), [0, 0, 0]),
        "scale": _parse_tuple3(at.get("scale"), [1, 1, 1]),
    }
    ctx.state.data["objects"] = _by_id(ctx.state.data["objects"] + [obj])
    ctx.state.hierarchy[object_id] = None

    events = [ctx.emit("scene.objectAdded", {"objectId": object_id, "kind": "mesh", "geometryType": geometry})]
    _select(ctx, object_id, events)
    _mark_dirty(ctx, events)
    return CommandResult({"objectId": object_id}, events)


def _cmd_duplicate_selected(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    selected_id = ctx.state.selected_object_id
    if not selected_id:
        raise RuntimeCommandError("MF_ERR_NO_SELECTION", "scene.duplicateSelected requires a selected object.")
    source = _find_node(ctx.state, selected_id)
    if source is None:
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", f'Selected object "{selected_id}" was not found.')
    offset = _parse_tuple3(payload.get("offset"), [0.6, 0, 0.6])
    object_id = _next_object_id(ctx.state)

    duplicate = copy.deepcopy(source)
    duplicate["id"] = object_id
    duplicate["name"] = _unique_name(ctx.state, source["name"])
    duplicate["position"] = [source["position"][i] + offset[i] for i in range(3)]
    if "geometryType" in source:
        ctx.state.data["objects"] = _by_id(ctx.state.data["objects"] + [duplicate])
    else:
        ctx.state.data["modelInstances"] = _by_id(list(ctx.state.data.get("modelInstances") or []) + [duplicate])

    ctx.state.hierarchy[object_id] = ctx.state.hierarchy.get(selected_id)

    clip = _clip_of(ctx.state)
    copies = []
    for track in clip["tracks"]:
        if track["objectId"] != selected_id:
            continue
        dup = copy.deepcopy(track)
        dup["objectId"] = object_id
        if dup.get("bindPath"):
            dup["bindPath"] = dup["bindPath"].replace(selected_id, object_id, 1)
        copies.append(dup)
    clip["tracks"].extend(copies)
    _store_clip(ctx.state, clip)

    events = [ctx.emit("scene.objectAdded", {"objectId": object_id, "sourceObjectId": selected_id})]
    _select(ctx, object_id, events)
    _mark_dirty(ctx, events)
    return CommandResult({"objectId": object_id}, events)


def _remove_nodes(state: RuntimeState, removed: set[str]) -> None:
    state.data["objects"] = _by_id([o for o in state.data["objects"] if o["id"] not in removed])
    state.data["modelInstances"] = _by_id(
        [m for m in (state.data.get("modelInstances") or []) if m["id"] not in removed]
    )
    clip = _clip_of(state)
    clip["tracks"] = [track for track in clip["tracks"] if track["objectId"] not in removed]
    _store_clip(state, clip)


def _cmd_delete_selected(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    if payload.get("confirm") is not True:
        raise RuntimeCommandError("MF_ERR_CONFIRM_REQUIRED", "scene.deleteSelected requires confirm=true.")
    target_id = payload["objectId"] if isinstance(payload.get("objectId"), str) else ctx.state.selected_object_id
    if not target_id:
        raise RuntimeCommandError("MF_ERR_NO_SELECTION", "scene.deleteSelected requires a selected object.")
    if not _object_exists(ctx.state, target_id):
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", f'Object "{target_id}" was not found.')

    removed = {target_id}
    changed = True
    while changed:
        changed = False
        for child_id, parent_id in ctx.state.hierarchy.items():
            if parent_id and parent_id in removed and child_id not in removed:
                removed.add(child_id)
                changed = True

    _remove_nodes(ctx.state, removed)
    for removed_id in removed:
        ctx.state.hierarchy.pop(removed_id, None)
    for node_id, parent_id in list(ctx.state.hierarchy.items()):
        if parent_id and parent_id in removed:
            ctx.state.hierarchy[node_id] = None

    removed_ids = sorted(removed)
    events = [ctx.emit("scene.objectDeleted", {"objectIds": removed_ids})]
    if ctx.state.selected_object_id in removed:
        _select(ctx, None, events)
    _mark_dirty(ctx, events)
    return CommandResult({"removedIds": removed_ids}, events)


def _cmd_clear_user_objects(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    if payload.get("confirm") is not True:
        raise RuntimeCommandError("MF_ERR_CONFIRM_REQUIRED", "scene.clearUserObjects requires confirm=true.")
    removed = {node["id"] for node in _all_nodes(ctx.state)}
    _remove_nodes(ctx.state, removed)
    ctx.state.hierarchy = {}

    events = [ctx.emit("scene.objectsCleared", {"removedCount": len(removed)})]
    _select(ctx, None, events)
    _mark_dirty(ctx, events)
    return CommandResult({"removedCount": len(removed)}, events)


def _cmd_parent(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    child_id, parent_id = payload.get("childId"), payload.get("parentId")
    if not isinstance(child_id, str) or not isinstance(parent_id, str):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.parent requires childId and parentId.")
    if not _object_exists(ctx.state, child_id) or not _object_exists(ctx.state, parent_id):
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", "scene.parent childId/parentId must exist.")
    if child_id == parent_id:
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.parent childId cannot equal parentId.")
    if _is_hierarchy_cycle(ctx.state.hierarchy, child_id, parent_id):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.parent would create a hierarchy cycle.")
    result = {"childId": child_id, "parentId": parent_id}
    if ctx.state.hierarchy.get(child_id) == parent_id:
        return CommandResult(result, [])
    ctx.state.hierarchy[child_id] = parent_id
    events = [ctx.emit("scene.parentChanged", result)]
    _mark_dirty(ctx, events)
    return CommandResult(result, events)


def _cmd_unparent(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    child_id = payload.get("childId")
    if not isinstance(child_id, str):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "scene.unparent requires childId.")
    if not _object_exists(ctx.state, child_id):
        raise RuntimeCommandError("MF_ERR_NOT_FOUND", f'Object "{child_id}" was not found.')
    result = {"childId": child_id, "parentId": None}
    if ctx.state.hierarchy.get(child_id) is None:
        return CommandResult(result, [])
    ctx.state.hierarchy[child_id] = None
    events = [ctx.emit("scene.parentChanged", result)]
    _mark_dirty(ctx, events)
    return CommandResult(result, events)


def _not_implemented(action: str) -> Callable[[CommandContext, dict[str, Any]], CommandResult]:
    def run(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
        raise RuntimeCommandError("MF_ERR_NOT_IMPLEMENTED", f"{action} requires project format v5 support.")
    return run


def _cmd_rename_many(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    changes = payload.get("changes")
    if not isinstance(changes, list):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "changes must be an array.")
    by_id = {obj["id"]: obj for obj in ctx.state.data["objects"]}
    events: list[RuntimeEvent] = []
    renamed = 0
    for row in changes:
        if not isinstance(row, dict):
            continue
        object_id, name = row.get("objectId"), row.get("name")
        if not isinstance(object_id, str) or not isinstance(name, str):
            continue
        target = by_id.get(object_id)
        if target is None or target["name"] == name:
            continue
        target["name"] = name
        renamed += 1
        events.append(ctx.emit("object.renamed", {"objectId": object_id, "name": name}))
    if renamed:
        _mark_dirty(ctx, events)
    return CommandResult({"renamed": renamed}, events)


def _material_enabled(ctx: CommandContext, payload: dict[str, Any]) -> None:
    object_id = payload.get("objectId")
    if not isinstance(object_id, str):
        raise RuntimeCommandError("MF_ERR_NO_SELECTION", "material.set requires an objectId.")
    if not any(obj["id"] == object_id for obj in ctx.state.data["objects"]):
        raise RuntimeCommandError("MF_ERR_NO_SELECTION", f'Object "{object_id}" was not found.')


def _cmd_material_set(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    obj = next(o for o in ctx.state.data["objects"] if o["id"] == payload["objectId"])
    changes: dict[str, Any] = {}
    if is_number(payload.get("baseColor")):
        obj["color"] = int(_clamp(round(payload["baseColor"]), 0, 0xFFFFFF))
        changes["baseColor"] = obj["color"]
    if is_number(payload.get("metallic")):
        obj["metallic"] = _clamp(payload["metallic"], 0, 1)
        changes["metallic"] = obj["metallic"]
    if is_number(payload.get("roughness")):
        obj["roughness"] = _clamp(payload["roughness"], 0, 1)
        changes["roughness"] = obj["roughness"]
    events: list[RuntimeEvent] = []
    if changes:
        events.append(ctx.emit("object.materialChanged", {"objectId": obj["id"], **changes}))
        _mark_dirty(ctx, events)
    return CommandResult({"objectId": obj["id"], **changes}, events)


def _cmd_insert_records(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    records = payload.get("records")
    if not isinstance(records, list):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "records must be an array.")
    rows = []
    for row in records:
        if not isinstance(row, dict) or not isinstance(row.get("objectId"), str):
            continue
        if not is_number(row.get("time")) or not is_number(row.get("value")):
            continue
        rows.append((row, _parse_track_property(row.get("propertyPath"))))

    clip = _clip_of(ctx.state)
    events: list[RuntimeEvent] = []
    inserted = 0
    for row, prop in rows:
        track = get_or_create_track(clip, row["objectId"], prop)
        if not track.get("bindPath"):
            track["bindPath"] = _resolve_bind_path(ctx.state, row["objectId"])
        insert_keyframe(
            track,
            {"time": row["time"], "value": row["value"], "interpolation": _parse_interpolation(row.get("interpolation"))},
        )
        inserted += 1
        events.append(
            ctx.emit("keyframe.added", {"objectId": row["objectId"], "propertyPath": prop, "time": row["time"]})
        )
    _store_clip(ctx.state, clip)
    if inserted:
        _mark_dirty(ctx, events)
    return CommandResult({"insertedCount": inserted}, events)


def _cmd_remove_keys(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    keys = payload.get("keys")
    if not isinstance(keys, list):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "keys must be an array.")
    refs = _parse_key_refs(keys)
    clip = _clip_of(ctx.state)
    remove_keyframes(clip, refs)
    _store_clip(ctx.state, clip)
    events = [
        ctx.emit("keyframe.deleted", {"objectId": r.object_id, "propertyPath": r.property_path, "time": r.time})
        for r in refs
    ]
    if events:
        _mark_dirty(ctx, events)
    return CommandResult({"removedCount": len(refs)}, events)


def _cmd_move_keys(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    keys, delta = payload.get("keys"), payload.get("deltaTime")
    if not isinstance(keys, list) or not is_number(delta):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "keys[] and finite deltaTime are required.")
    refs = _parse_key_refs(keys)
    clip = _clip_of(ctx.state)
    moved = move_keyframes(clip, refs, delta)
    _store_clip(ctx.state, clip)
    events = [
        ctx.emit("keyframe.moved", {"objectId": r.object_id, "propertyPath": r.property_path, "time": r.time})
        for r in moved
    ]
    if events:
        _mark_dirty(ctx, events)
    return CommandResult({"movedCount": len(moved)}, events)


def _cmd_set_duration(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    duration = payload.get("durationSeconds")
    if not is_number(duration) or duration <= 0:
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "durationSeconds must be a finite number > 0.")
    clip = _clip_of(ctx.state)
    clip["durationSeconds"] = duration
    _store_clip(ctx.state, clip)
    events = [ctx.emit("animation.durationChanged", {"durationSeconds": duration})]
    _mark_dirty(ctx, events)
    return CommandResult({"durationSeconds": duration}, events)


def _cmd_set_takes(ctx: CommandContext, payload: dict[str, Any]) -> CommandResult:
    rows = payload.get("takes")
    if not isinstance(rows, list):
        raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "takes must be an array.")
    clip = _clip_of(ctx.state)
    duration = clip["durationSeconds"]
    takes = []
    seen: set[str] = set()
    for row in rows:
        if not isinstance(row, dict):
            continue
        take_id, name = row.get("id"), row.get("name")
        if not isinstance(take_id, str) or not take_id or take_id in seen:
            continue
        if not isinstance(name, str) or not name:
            continue
        start, end = row.get("startTime"), row.get("endTime")
        if not is_number(start) or not is_number(end):
            continue
        if start < 0 or end > duration or end <= start:
            continue
        seen.add(take_id)
        takes.append({"id": take_id, "name": name, "startTime": start, "endTime": end})
    takes.sort(key=lambda t: (t["startTime"], t["id"]))
    clip["takes"] = takes
    _store_clip(ctx.state, clip)
    stored = ctx.state.data["animation"].get("takes") or []
    events = [ctx.emit("animation.takesChanged", {"takesCount": len(stored)})]
    _mark_dirty(ctx, events)
    return CommandResult({"takes": copy.deepcopy(stored)}, events)


class RuntimeCommandBus:
    def __init__(self):
        self._commands: dict[str, RuntimeCommand] = {}

    def register(self, command: RuntimeCommand) -> None:
        self._commands[command.id] = command

    def list(self) -> list[str]:
        return sorted(self._commands)

    def execute(self, ctx: CommandContext, action: str, payload: dict[str, Any]) -> CommandResult:
        command = self._commands.get(action)
        if command is None:
            raise RuntimeCommandError("MF_ERR_UNKNOWN_ACTION", f'Unknown action "{action}".')
        if command.is_enabled is not None:
            command.is_enabled(ctx, payload)
        return command.run(ctx, payload)


def build_command_bus() -> RuntimeCommandBus:
    bus = RuntimeCommandBus()
    for action, run in (
        ("selection.set", _cmd_selection_set),
        ("scene.selectById", _cmd_select_by_id),
        ("scene.selectByName", _cmd_select_by_name),
        ("scene.addPrimitive", _cmd_add_primitive),
        ("scene.duplicateSelected", _cmd_duplicate_selected),
        ("scene.deleteSelected", _cmd_delete_selected),
        ("scene.clearUserObjects", _cmd_clear_user_objects),
        ("scene.parent", _cmd_parent),
        ("scene.unparent", _cmd_unparent),
        ("scene.group", _not_implemented("scene.group")),
        ("scene.ungroup", _not_implemented("scene.ungroup")),
        ("scene.addCamera", _not_implemented("scene.addCamera")),
        ("scene.addLight", _not_implemented("scene.addLight")),
        ("hierarchy.renameMany", _cmd_rename_many),
        ("animation.insertRecords", _cmd_insert_records),
        ("animation.removeKeys", _cmd_remove_keys),
        ("animation.moveKeys", _cmd_move_keys),
        ("animation.setDuration", _cmd_set_duration),
        ("animation.setTakes", _cmd_set_takes),
    ):
        bus.register(RuntimeCommand(id=action, run=run))
    bus.register(RuntimeCommand(id="material.set", run=_cmd_material_set, is_enabled=_material_enabled))
    return bus


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------

class MotionForgeRuntime:
    """One editable project plus an optional staged import."""

    def __init__(self, max_json_bytes: int | None = None):
        self.max_json_bytes = max_json_bytes or cfg.max_json_bytes
        self._current = create_empty_state()
        self._staged: RuntimeState | None = None
        self._undo: list[UndoEntry] = []
        self._redo: list[UndoEntry] = []
        self._events = RuntimeEventLog(0)
        self._bus = build_command_bus()

    # ── History ──────────────────────────────────────────────────────

    def _emit(self, event_type: str, payload: dict[str, Any]) -> RuntimeEvent:
        return self._events.next(event_type, payload)

    def _clear_history(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def _undo_step(self) -> CommandResult:
        if not self._undo:
            raise RuntimeCommandError("MF_ERR_NOTHING_TO_UNDO", "Undo stack is empty.")
        entry = self._undo.pop()
        self._current = copy.deepcopy(entry.before)
        self._redo.append(copy.deepcopy(entry))
        return CommandResult({"label": entry.label}, [self._emit("history.undo", {"label": entry.label})])

    def _redo_step(self) -> CommandResult:
        if not self._redo:
            raise RuntimeCommandError("MF_ERR_NOTHING_TO_REDO", "Redo stack is empty.")
        entry = self._redo.pop()
        self._current = copy.deepcopy(entry.after)
        self._undo.append(copy.deepcopy(entry))
        return CommandResult({"label": entry.label}, [self._emit("history.redo", {"label": entry.label})])

    # ── Commands ─────────────────────────────────────────────────────

    def get_capabilities(self) -> dict[str, list[str]]:
        return {"actions": self._bus.list() + ["history.undo", "history.redo"]}

    def execute(self, action: str, payload: dict[str, Any] | None = None) -> CommandResult:
        if action == "history.undo":
            return self._undo_step()
        if action == "history.redo":
            return self._redo_step()

        before = copy.deepcopy(self._current)
        before_print = state_fingerprint(before)
        ctx = CommandContext(state=self._current, emit=self._emit)
        try:
            out = self._bus.execute(ctx, action, payload if isinstance(payload, dict) else {})
        except Exception:
            self._current = before
            raise
        after = copy.deepcopy(self._current)
        if state_fingerprint(after) != before_print:
            self._undo.append(UndoEntry(label=action, before=before, after=after))
            self._redo.clear()
        return out

    # ── Loading ──────────────────────────────────────────────────────

    def load_project_json(self, text: str, staged: bool = True) -> dict[str, Any]:
        data = parse_project(text, self.max_json_bytes)
        hierarchy: dict[str, str | None] = {node["id"]: None for node in data["objects"]}
        hierarchy.update({node["id"]: None for node in data.get("modelInstances") or []})
        state = RuntimeState(data=data, hierarchy=hierarchy)
        if staged:
            self._staged = copy.deepcopy(state)
        else:
            self._current = copy.deepcopy(state)
            self._staged = None
            self._clear_history()
        summary = summarize_project(data)
        logger.info(
            "Loaded project v%s (%d objects, %d keyframes, staged=%s)",
            summary["version"], summary["objects"], summary["keyframes"], staged,
        )
        return {"projectId": compute_project_id(data), "summary": summary}

    @property
    def has_staged(self) -> bool:
        return self._staged is not None

    def commit_staged_load(self) -> dict[str, bool]:
        if self._staged is None:
            raise RuntimeCommandError("MF_ERR_NO_STAGED_PROJECT", "No staged project is available to commit.")
        self._current = copy.deepcopy(self._staged)
        self._staged = None
        self._clear_history()
        return {"ok": True}

    def discard_staged_load(self) -> dict[str, bool]:
        self._staged = None
        return {"ok": True}

    # ── Inspection ───────────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        state = self._current
        data = state.data
        clip = data.get("animation")
        assets = _by_id(data.get("assets") or [])
        return {
            "scene": {
                "selectedObjectId": state.selected_object_id,
                "objects": [
                    {
                        "id": obj["id"],
                        "name": obj["name"],
                        "geometryType": obj["geometryType"],
                        "parentId": state.hierarchy.get(obj["id"]),
                    }
                    for obj in _by_id(data["objects"])
                ],
                "modelInstances": [
                    {
                        "id": inst["id"],
                        "name": inst["name"],
                        "assetId": inst["assetId"],
                        "parentId": state.hierarchy.get(inst["id"]),
                    }
                    for inst in _by_id(data.get("modelInstances") or [])
                ],
            },
            "selection": {"objectId": state.selected_object_id},
            "assets": {
                "count": len(assets),
                "items": [
                    {
                        "id": a["id"],
                        "name": a["name"],
                        "type": a["type"],
                        "sourceMode": a["source"]["mode"],
                        "size": a["size"],
                    }
                    for a in assets
                ],
            },
            "animation": {
                "durationSeconds": clip["durationSeconds"] if clip else 0,
                "trackCount": len(clip["tracks"]) if clip else 0,
                "keyframeCount": count_keyframes(clip),
                "takesCount": len(clip.get("takes") or []) if clip else 0,
            },
            "dirty": state.dirty,
            "version": data["version"],
        }

    def clone(self) -> "MotionForgeRuntime":
        """Independent runtime holding a copy of the current project."""
        other = MotionForgeRuntime(max_json_bytes=self.max_json_bytes)
        other.load_project_json(self.export_project_json(), staged=False)
        other._current.selected_object_id = self._current.selected_object_id
        other._current.dirty = self._current.dirty
        return other

    def capture_restore_point(self) -> RestorePoint:
        return RestorePoint(
            current=copy.deepcopy(self._current),
            staged=copy.deepcopy(self._staged),
            undo_stack=copy.deepcopy(self._undo),
            redo_stack=copy.deepcopy(self._redo),
        )

    def restore_restore_point(self, point: RestorePoint) -> None:
        self._current = copy.deepcopy(point.current)
        self._staged = copy.deepcopy(point.staged)
        self._undo = copy.deepcopy(point.undo_stack)
        self._redo = copy.deepcopy(point.redo_stack)

    def staged_project_json(self) -> str | None:
        return stable_json_stringify(self._staged.data) if self._staged else None

    # ── Export ───────────────────────────────────────────────────────

    def export_project_json(self) -> str:
        return stable_json_stringify(self._current.data)

    def _asset_files(self, data: dict[str, Any], warnings: list[str]) -> dict[str, bytes]:
        files: dict[str, bytes] = {}
        for asset in _by_id(data.get("assets") or []):
            name = _asset_file_name(asset)
            source = asset["source"]
            if source["mode"] == "embedded":
                files[f"assets/{name}"] = base64.b64decode(source["data"])
            else:
                warnings.append(f'Asset "{asset["id"]}" is external and referenced by path.')
                files[f"assets/{name}.external.txt"] = (
                    f"External asset reference: {source['path']}".encode("utf-8")
                )
        return files

    def _write_archive(self, out_dir: str | Path, file_name: str, files: dict[str, bytes], warnings: list[str]):
        payload = _write_zip(files)
        target_dir = Path(out_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / file_name
        path.write_bytes(payload)
        logger.info("Wrote %s (%d bytes)", path, len(payload))
        return {"ok": True, "path": str(path), "bytes": len(payload), "warnings": warnings}

    def export_bundle(self, out_dir: str | Path) -> dict[str, Any]:
        if not out_dir:
            raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "outDir is required.")
        data = self._current.data
        warnings: list[str] = []
        instances = _by_id(data.get("modelInstances") or [])
        clip = data.get("animation")
        duration = clip["durationSeconds"] if clip else 0
        takes = sorted((clip or {}).get("takes") or [], key=lambda t: (t["startTime"], t["id"]))
        if not takes and duration > 0:
            takes = [{"id": "take_main", "name": "Main", "startTime": 0, "endTime": duration}]
        manifest = {
            "version": 1,
            "exportedAt": _iso_now(),
            "projectVersion": data["version"],
            "primaryModelAssetId": instances[0]["assetId"] if instances else None,
            "takes": takes,
            "clipNaming": {"pattern": "<ProjectName>_<TakeName>", "fallbackTakeName": "Main"},
        }
        files = {
            PROJECT_ENTRY: stable_json_stringify(data).encode("utf-8"),
            MANIFEST_ENTRY: stable_json_stringify(manifest).encode("utf-8"),
        }
        files.update(self._asset_files(data, warnings))
        return self._write_archive(out_dir, BUNDLE_FILE_NAME, files, warnings)

    def export_unity_package(
        self,
        out_dir: str | Path,
        scale: float = 1,
        y_up: bool = True,
        include_project_json: bool = True,
    ) -> dict[str, Any]:
        """Interchange zip of project.json plus source assets for Unity importers."""
        if not out_dir:
            raise RuntimeCommandError("MF_ERR_INVALID_INPUT", "outDir is required.")
        data = self._current.data
        warnings: list[str] = []
        files: dict[str, bytes] = {}
        if include_project_json:
            files[PROJECT_ENTRY] = stable_json_stringify(data).encode("utf-8")
        files.update(self._asset_files(data, warnings))
        warnings.append(
            "glTF animation export is not implemented yet; using project.json + assets interchange package."
        )
        files["README_UNITY.txt"] = _unity_readme(scale, y_up, include_project_json, warnings).encode("utf-8")
        return self._write_archive(out_dir, UNITY_PACKAGE_FILE_NAME, files, warnings)


def _unity_readme(scale: float, y_up: bool, include_project_json: bool, warnings: list[str]) -> str:
    lines = [
        "MotionForge Unity Interchange Package",
        "",
        "Contents:",
        "- project.json: MotionForge project data",
        "- assets/: embedded source assets from project",
        "",
        "Import workflow:",
        "1. Unzip package in your Unity project workspace.",
        "2. Inspect project.json and assets to map objects into your importer pipeline.",
        "3. Convert transforms/keyframes using your Unity-side import script.",
        "",
        f"Options: scale={scale}, yUp={str(y_up).lower()}, includeProjectJson={str(include_project_json).lower()}",
        "",
        "Known limitations:",
        "- glTF animation export is not implemented in headless MCP runtime.",
        "- Use project.json + assets as interchange source for now.",
    ]
    if warnings:
        lines += ["", "Warnings:"] + [f"- {warning}" for warning in warnings]
    return "\n".join(lines)


def read_zip_entry(payload: bytes, name: str) -> bytes | None:
    """Return one entry of an in-memory zip, or None when absent."""
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        if name not in archive.namelist():
            return None
        return archive.read(name)
