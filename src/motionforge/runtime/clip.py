"""In-place keyframe operations on clip dicts.

A clip is the ``animation`` section of project JSON::

    {"durationSeconds": 2, "tracks": [...], "takes": [...]}

Tracks are ``{"objectId", "property", "keyframes", "bindPath"?}`` and keyframes
are ``{"time", "value", "interpolation"}``.
"""
from __future__ import annotations

from typing import Any, Iterable

from motionforge.models import KeyframeRef

TIME_EPSILON = 1e-6

Clip = dict[str, Any]
Track = dict[str, Any]


def create_empty_clip(duration: float = 5) -> Clip:
    return {"durationSeconds": duration, "tracks": []}


def _same_time(a: float, b: float) -> bool:
    return abs(a - b) < TIME_EPSILON


def _round_time(value: float) -> float:
    return round(value * 1_000_000) / 1_000_000


def _find_track(clip: Clip, object_id: str, prop: str) -> Track | None:
    for track in clip["tracks"]:
        if track["objectId"] == object_id and track["property"] == prop:
            return track
    return None


def _find_keyframe_index(track: Track, time: float) -> int:
    for index, keyframe in enumerate(track["keyframes"]):
        if _same_time(keyframe["time"], time):
            return index
    return -1


def insert_keyframe(track: Track, keyframe: dict[str, Any]) -> None:
    """Insert sorted by time, replacing a keyframe at the same time."""
    index = _find_keyframe_index(track, keyframe["time"])
    if index >= 0:
        track["keyframes"][index] = keyframe
        return
    track["keyframes"].append(keyframe)
    track["keyframes"].sort(key=lambda k: k["time"])


def get_or_create_track(clip: Clip, object_id: str, prop: str) -> Track:
    track = _find_track(clip, object_id, prop)
    if track is None:
        track = {"objectId": object_id, "property": prop, "keyframes": []}
        clip["tracks"].append(track)
    return track


def normalize_clip(clip: Clip) -> None:
    """Clamp and sort keyframes, drop empty tracks and sanitize takes."""
    duration = clip["durationSeconds"]
    for track in clip["tracks"]:
        for keyframe in track["keyframes"]:
            keyframe["time"] = max(0, min(keyframe["time"], duration))
        track["keyframes"].sort(key=lambda k: k["time"])
    clip["tracks"] = [track for track in clip["tracks"] if track["keyframes"]]

    if isinstance(clip.get("takes"), list):
        seen: set[str] = set()
        takes = []
        for take in clip["takes"]:
            take_id = take.get("id")
            if not isinstance(take_id, str) or not take_id or take_id in seen:
                continue
            seen.add(take_id)
            start = max(0, min(take["startTime"], duration))
            end = max(start, min(take["endTime"], duration))
            takes.append({**take, "startTime": start, "endTime": end})
        takes = [take for take in takes if take["endTime"] > take["startTime"]]
        takes.sort(key=lambda t: (t["startTime"], t["id"]))
        clip["takes"] = takes


def count_keyframes(clip: Clip | None) -> int:
    if not clip:
        return 0
    return sum(len(track["keyframes"]) for track in clip["tracks"])


def _dedupe_refs(refs: Iterable[KeyframeRef]) -> list[KeyframeRef]:
    seen: set[str] = set()
    unique = []
    for ref in refs:
        token = f"{ref.object_id}|{ref.property_path}|{ref.time:.6f}"
        if token in seen:
            continue
        seen.add(token)
        unique.append(ref)
    return unique


def remove_keyframes(clip: Clip, refs: list[KeyframeRef]) -> None:
    if not refs:
        return
    for ref in _dedupe_refs(refs):
        track = _find_track(clip, ref.object_id, ref.property_path)
        if track is None:
            continue
        index = _find_keyframe_index(track, ref.time)
        if index >= 0:
            del track["keyframes"][index]
    normalize_clip(clip)


def move_keyframes(clip: Clip, refs: list[KeyframeRef], delta_time: float) -> list[KeyframeRef]:
    """Shift keyframes by ``delta_time``, clamped to the clip range.

    Returns refs pointing at the keyframes' new times.
    """
    if not refs or delta_time == 0:
        return refs

    captured: list[tuple[Track, KeyframeRef, dict[str, Any]]] = []
    removals: dict[int, tuple[Track, list[int]]] = {}
    for ref in _dedupe_refs(refs):
        track = _find_track(clip, ref.object_id, ref.property_path)
        if track is None:
            continue
        index = _find_keyframe_index(track, ref.time)
        if index < 0:
            continue
        captured.append((track, ref, track["keyframes"][index]))
        removals.setdefault(id(track), (track, []))[1].append(index)

    for track, indices in removals.values():
        for index in sorted(set(indices), reverse=True):
            del track["keyframes"][index]

    moved: list[KeyframeRef] = []
    duration = clip["durationSeconds"]
    for track, ref, keyframe in captured:
        next_time = _round_time(max(0, min(duration, ref.time + delta_time)))
        insert_keyframe(
            track,
            {"time": next_time, "value": keyframe["value"], "interpolation": keyframe["interpolation"]},
        )
        moved.append(KeyframeRef(object_id=ref.object_id, property_path=ref.property_path, time=next_time))

    normalize_clip(clip)
    return moved


def stable_track_sort(clip: Clip) -> Clip:
    """Return a copy with tracks ordered by (objectId, property) and keyframes by time."""
    tracks = [
        {**track, "keyframes": sorted(track["keyframes"], key=lambda k: k["time"])}
        for track in clip["tracks"]
    ]
    tracks.sort(key=lambda t: (t["objectId"], t["property"]))
    out: Clip = {"durationSeconds": clip["durationSeconds"], "tracks": tracks}
    if "takes" in clip and clip["takes"] is not None:
        out["takes"] = sorted(clip["takes"], key=lambda t: (t["startTime"], t["id"]))
    return out
