"""Runtime event records and the per-runtime sequence counter."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from motionforge.models import WireModel

RuntimeEventType = Literal[
    "selection.changed",
    "object.renamed",
    "object.materialChanged",
    "keyframe.added",
    "keyframe.deleted",
    "keyframe.moved",
    "animation.durationChanged",
    "animation.takesChanged",
    "project.dirtyChanged",
    "history.undo",
    "history.redo",
    "scene.objectAdded",
    "scene.objectDeleted",
    "scene.objectsCleared",
    "scene.parentChanged",
]


class RuntimeEvent(WireModel):
    seq: int
    type: RuntimeEventType
    payload: dict[str, Any] = Field(default_factory=dict)


class RuntimeEventLog:
    """Hands out events with strictly increasing ``seq`` values."""

    def __init__(self, start_at: int = 0):
        self._seq = start_at

    @property
    def last_seq(self) -> int:
        return self._seq

    def next(self, event_type: str, payload: dict[str, Any]) -> RuntimeEvent:
        self._seq += 1
        return RuntimeEvent(seq=self._seq, type=event_type, payload=payload)
