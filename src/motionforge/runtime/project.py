"""Project JSON schema validation and version migrations (v1 through v4)."""
from __future__ import annotations

import copy
import logging
import math
import re
from typing import Any

logger = logging.getLogger(__name__)

LATEST_PROJECT_VERSION = 4
SUPPORTED_VERSIONS = frozenset({1, 2, 3, 4})
GEOMETRY_TYPES = frozenset({"box", "sphere", "cone"})
ASSET_TYPES = frozenset({"gltf"})
TRACK_PROPERTIES = frozenset(
    f"{group}.{axis}" for group in ("position", "rotation", "scale") for axis in ("x", "y", "z")
)
INTERPOLATIONS = frozenset({"linear", "step", "easeIn", "easeOut", "easeInOut"})

_BIND_SEGMENT_RE = re.compile(r"^[a-zA-Z0-9._-]+$")


class ProjectValidationError(ValueError):
    """First schema violation found in a project payload."""


# ---------------------------------------------------------------------------
# Type predicates
# ---------------------------------------------------------------------------

def is_number(value: Any) -> bool:
    """Finite int or float; bools excluded."""
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_vec3(value: Any) -> bool:
    return isinstance(value, list) and len(value) == 3 and all(is_number(v) for v in value)


def is_unit_number(value: Any) -> bool:
    return is_number(value) and 0 <= value <= 1


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def is_valid_bind_path(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    path = value.strip()
    if not path or path.startswith("/") or path.endswith("/") or "//" in path:
        return False
    return all(segment and _BIND_SEGMENT_RE.match(segment) for segment in path.split("/"))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_project_data(data: Any) -> None:
    """Raise ProjectValidationError describing the first violation."""
    if not isinstance(data, dict):
        raise ProjectValidationError("project root must be an object")

    version = data.get("version")
    if not is_number(version):
        raise ProjectValidationError("version must be a finite number at path version")
    if version not in SUPPORTED_VERSIONS:
        raise ProjectValidationError("unsupported project version at path version")
    if version < 3 and ("assets" in data or "modelInstances" in data):
        raise ProjectValidationError("assets/modelInstances are only supported in version 3+")

    objects = data.get("objects")
    if not isinstance(objects, list):
        raise ProjectValidationError("objects must be an array")
    for i, obj in enumerate(objects):
        _validate_object(obj, i, version)

    if "assets" in data:
        _validate_assets(data["assets"])

    if "modelInstances" in data:
        asset_ids = {
            asset["id"]
            for asset in (data.get("assets") if isinstance(data.get("assets"), list) else [])
            if isinstance(asset, dict) and isinstance(asset.get("id"), str)
        }
        _validate_model_instances(data["modelInstances"], asset_ids, version)

    if "camera" in data:
        camera = data["camera"]
        if not isinstance(camera, dict):
            raise ProjectValidationError("camera must be an object")
        if not is_vec3(camera.get("position")):
            raise ProjectValidationError("camera.position must be a vec3")
        if not is_vec3(camera.get("target")):
            raise ProjectValidationError("camera.target must be a vec3")
        fov = camera.get("fov")
        if not is_number(fov) or fov <= 1 or fov >= 179:
            raise ProjectValidationError("camera.fov must be a finite number between 1 and 179")

    if "animation" in data:
        _validate_animation(data["animation"])


def _validate_object(obj: Any, i: int, version: int) -> None:
    where = f"objects[{i}]"
    if not isinstance(obj, dict):
        raise ProjectValidationError(f"{where} must be an object")
    if not isinstance(obj.get("id"), str):
        raise ProjectValidationError(f"{where}.id must be a string")
    if not isinstance(obj.get("name"), str):
        raise ProjectValidationError(f"{where}.name must be a string")
    if version >= 4 and not isinstance(obj.get("bindPath"), str):
        raise ProjectValidationError(f"{where}.bindPath must be a string")
    if "bindPath" in obj and not is_valid_bind_path(obj["bindPath"]):
        raise ProjectValidationError(f"{where}.bindPath is invalid")
    if obj.get("geometryType") not in GEOMETRY_TYPES:
        raise ProjectValidationError(f"{where}.geometryType is invalid")
    if not is_number(obj.get("color")):
        raise ProjectValidationError(f"{where}.color must be a finite number")
    for field in ("position", "rotation", "scale"):
        if not is_vec3(obj.get(field)):
            raise ProjectValidationError(f"{where}.{field} must be a vec3")
    for field in ("metallic", "roughness"):
        if field in obj and not is_unit_number(obj[field]):
            raise ProjectValidationError(f"{where}.{field} must be a number within [0, 1]")


def _validate_assets(assets: Any) -> None:
    if not isinstance(assets, list):
        raise ProjectValidationError("assets must be an array")
    for i, asset in enumerate(assets):
        where = f"assets[{i}]"
        if not isinstance(asset, dict):
            raise ProjectValidationError(f"{where} must be an object")
        if not _non_empty_str(asset.get("id")):
            raise ProjectValidationError(f"{where}.id must be a non-empty string")
        if not _non_empty_str(asset.get("name")):
            raise ProjectValidationError(f"{where}.name must be a non-empty string")
        if asset.get("type") not in ASSET_TYPES:
            raise ProjectValidationError(f"{where}.type is invalid")
        size = asset.get("size")
        if not is_number(size) or size < 0:
            raise ProjectValidationError(f"{where}.size must be a finite number >= 0")
        source = asset.get("source")
        if not isinstance(source, dict):
            raise ProjectValidationError(f"{where}.source must be an object")
        mode = source.get("mode")
        if mode == "embedded":
            if not _non_empty_str(source.get("data")):
                raise ProjectValidationError(f"{where}.source.data must be a non-empty string")
            if not _non_empty_str(source.get("fileName")):
                raise ProjectValidationError(f"{where}.source.fileName must be a non-empty string")
        elif mode == "external":
            if not _non_empty_str(source.get("path")):
                raise ProjectValidationError(f"{where}.source.path must be a non-empty string")
        else:
            raise ProjectValidationError(f"{where}.source.mode is invalid")


def _validate_model_instances(instances: Any, asset_ids: set[str], version: int) -> None:
    if not isinstance(instances, list):
        raise ProjectValidationError("modelInstances must be an array")
    for i, inst in enumerate(instances):
        where = f"modelInstances[{i}]"
        if not isinstance(inst, dict):
            raise ProjectValidationError(f"{where} must be an object")
        if not _non_empty_str(inst.get("id")):
            raise ProjectValidationError(f"{where}.id must be a non-empty string")
        if not _non_empty_str(inst.get("name")):
            raise ProjectValidationError(f"{where}.name must be a non-empty string")
        if "bindPath" in inst and not is_valid_bind_path(inst["bindPath"]):
            raise ProjectValidationError(f"{where}.bindPath is invalid")
        if version >= 4 and not isinstance(inst.get("bindPath"), str):
            raise ProjectValidationError(f"{where}.bindPath must be a non-empty string")
        if not _non_empty_str(inst.get("assetId")):
            raise ProjectValidationError(f"{where}.assetId must be a non-empty string")
        if inst["assetId"] not in asset_ids:
            raise ProjectValidationError(f"{where}.assetId must reference an existing asset")
        for field in ("position", "rotation", "scale"):
            if not is_vec3(inst.get(field)):
                raise ProjectValidationError(f"{where}.{field} must be a vec3")

        if "materialOverrides" not in inst:
            continue
        overrides = inst["materialOverrides"]
        if not isinstance(overrides, list):
            raise ProjectValidationError(f"{where}.materialOverrides must be an array")
        for j, override in enumerate(overrides):
            at = f"{where}.materialOverrides[{j}]"
            if not isinstance(override, dict):
                raise ProjectValidationError(f"{at} must be an object")
            if not _non_empty_str(override.get("nodePath")):
                raise ProjectValidationError(f"{at}.nodePath must be a non-empty string")
            if not is_number(override.get("color")):
                raise ProjectValidationError(f"{at}.color must be a finite number")
            if not is_unit_number(override.get("metallic")):
                raise ProjectValidationError(f"{at}.metallic must be a number within [0, 1]")
            if not is_unit_number(override.get("roughness")):
                raise ProjectValidationError(f"{at}.roughness must be a number within [0, 1]")


def _validate_animation(anim: Any) -> None:
    if not isinstance(anim, dict):
        raise ProjectValidationError("animation must be an object")
    duration = anim.get("durationSeconds")
    if not is_number(duration):
        raise ProjectValidationError("animation.durationSeconds must be a finite number")
    if duration <= 0 or duration > 3600:
        raise ProjectValidationError("animation.durationSeconds must be > 0 and <= 3600")
    tracks = anim.get("tracks")
    if not isinstance(tracks, list):
        raise ProjectValidationError("animation.tracks must be an array")

    if "takes" in anim:
        takes = anim["takes"]
        if not isinstance(takes, list):
            raise ProjectValidationError("animation.takes must be an array")
        seen: set[str] = set()
        for i, take in enumerate(takes):
            where = f"animation.takes[{i}]"
            if not isinstance(take, dict):
                raise ProjectValidationError(f"{where} must be an object")
            if not _non_empty_str(take.get("id")):
                raise ProjectValidationError(f"{where}.id must be a non-empty string")
            if take["id"] in seen:
                raise ProjectValidationError(f"{where}.id must be unique")
            seen.add(take["id"])
            if not _non_empty_str(take.get("name")):
                raise ProjectValidationError(f"{where}.name must be a non-empty string")
            for field in ("startTime", "endTime"):
                if not is_number(take.get(field)):
                    raise ProjectValidationError(f"{where}.{field} must be a finite number")
            if take["startTime"] < 0 or take["endTime"] > duration or take["endTime"] <= take["startTime"]:
                raise ProjectValidationError(
                    f"{where} range must satisfy 0 <= startTime < endTime <= durationSeconds"
                )

    for i, track in enumerate(tracks):
        where = f"animation.tracks[{i}]"
        if not isinstance(track, dict):
            raise ProjectValidationError(f"{where} must be an object")
        if not isinstance(track.get("objectId"), str):
            raise ProjectValidationError(f"{where}.objectId must be a string")
        if track.get("property") not in TRACK_PROPERTIES:
            raise ProjectValidationError(f"{where}.property is invalid")
        keyframes = track.get("keyframes")
        if not isinstance(keyframes, list):
            raise ProjectValidationError(f"{where}.keyframes must be an array")
        for j, kf in enumerate(keyframes):
            at = f"{where}.keyframes[{j}]"
            if not isinstance(kf, dict):
                raise ProjectValidationError(f"{at} must be an object")
            if not is_number(kf.get("time")):
                raise ProjectValidationError(f"{at}.time must be a finite number")
            if kf["time"] < 0 or kf["time"] > duration:
                raise ProjectValidationError(f"{at}.time must be within [0, durationSeconds]")
            if not is_number(kf.get("value")):
                raise ProjectValidationError(f"{at}.value must be a finite number")
            if kf.get("interpolation") not in INTERPOLATIONS:
                raise ProjectValidationError(f"{at}.interpolation is invalid")
        if "bindPath" in track and not is_valid_bind_path(track["bindPath"]):
            raise ProjectValidationError(f"{where}.bindPath is invalid")


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

def sanitize_bind_path_segment(raw: str) -> str:
    cleaned = raw.strip().replace("\\", "/").replace("/", "_")
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned or "Object"


def normalize_bind_path(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    normalized = re.sub(r"/+", "/", trimmed.replace("\\", "/")).strip("/")
    return normalized or None


def _with_unique_suffix(base: str, used: set[str]) -> str:
    candidate = base
    index = 2
    while candidate in used:
        candidate = f"{base}_{index}"
        index += 1
    used.add(candidate)
    return candidate


def _synthesize_top_level_bind_paths(rows: list[Any], used: set[str]) -> list[Any]:
    out = []
    for item in rows:
        if not isinstance(item, dict):
            out.append(item)
            continue
        row = dict(item)
        id_part = row["id"] if _non_empty_str(row.get("id")) else "object"
        name_part = row["name"] if _non_empty_str(row.get("name")) else id_part
        base = normalize_bind_path(row.get("bindPath")) or sanitize_bind_path_segment(name_part)
        row["bindPath"] = _with_unique_suffix(base, used)
        out.append(row)
    return out


def _synthesize_track_bind_paths(project: dict[str, Any]) -> dict[str, Any]:
    animation = project.get("animation")
    if not isinstance(animation, dict) or not isinstance(animation.get("tracks"), list):
        return project

    binding_by_id: dict[str, str] = {}
    for key in ("objects", "modelInstances"):
        rows = project.get(key)
        if not isinstance(rows, list):
            continue
        for row in rows:
            if isinstance(row, dict) and isinstance(row.get("id"), str) and isinstance(row.get("bindPath"), str):
                binding_by_id[row["id"]] = row["bindPath"]

    tracks = []
    for track in animation["tracks"]:
        if not isinstance(track, dict):
            tracks.append(track)
            continue
        row = dict(track)
        explicit = normalize_bind_path(row.get("bindPath"))
        if explicit:
            row["bindPath"] = explicit
        elif isinstance(row.get("objectId"), str) and binding_by_id.get(row["objectId"]):
            row["bindPath"] = binding_by_id[row["objectId"]]
        tracks.append(row)
    return {**project, "animation": {**animation, "tracks": tracks}}


def _has_valid_take(takes: Any) -> bool:
    if not isinstance(takes, list):
        return False
    return any(
        isinstance(take, dict)
        and _non_empty_str(take.get("id"))
        and _non_empty_str(take.get("name"))
        and is_number(take.get("startTime"))
        and is_number(take.get("endTime"))
        and take["endTime"] > take["startTime"]
        for take in takes
    )


def _synthesize_main_take(project: dict[str, Any]) -> dict[str, Any]:
    animation = project.get("animation")
    if not isinstance(animation, dict):
        return project
    raw = animation.get("durationSeconds")
    duration = max(0, raw) if is_number(raw) else 0
    if duration <= 0 or _has_valid_take(animation.get("takes")):
        return project
    main = {"id": "take_main", "name": "Main", "startTime": 0, "endTime": duration}
    return {**project, "animation": {**animation, "takes": [main]}}


def synthesize_bind_paths(project: dict[str, Any]) -> dict[str, Any]:
    """Fill missing bind paths on objects, model instances and tracks."""
    used: set[str] = set()
    nxt = dict(project)
    for key in ("objects", "modelInstances"):
        if isinstance(project.get(key), list):
            nxt[key] = _synthesize_top_level_bind_paths(project[key], used)
    return _synthesize_main_take(_synthesize_track_bind_paths(nxt))


def migrate_project_to_latest(data: Any) -> tuple[Any, list[str]]:
    """Return ``(migrated, applied)`` where ``applied`` lists steps like ``v1->v2``.

    Input that is not an object, or lacks a numeric version, is returned as
    is so validation can report it.
    """
    if not isinstance(data, dict):
        return data, []
    working = copy.deepcopy(data)
    applied: list[str] = []
    if not is_number(working.get("version")):
        return working, applied

    while is_number(working.get("version")) and working["version"] < LATEST_PROJECT_VERSION:
        version = working["version"]
        if version == 1:
            working = {**working, "version": 2}
            applied.append("v1->v2")
        elif version == 2:
            working = {**working, "version": 3}
            applied.append("v2->v3")
        elif version == 3:
            working = synthesize_bind_paths({**working, "version": 4})
            applied.append("v3->v4")
        else:
            break

    if is_number(working.get("version")) and working["version"] >= LATEST_PROJECT_VERSION:
        working = synthesize_bind_paths(working)

    if applied:
        logger.debug("Migrated project: %s", ", ".join(applied))
    return working, applied
