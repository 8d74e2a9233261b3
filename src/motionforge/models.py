"""Pydantic data models shared across the script, agent and runtime layers.

All models serialize with camelCase aliases so dumped payloads match the
wire format consumed by MCP clients and written into proof documents.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Axis = Literal["x", "y", "z"]
TrackGroup = Literal["position", "rotation", "scale"]
Interpolation = Literal["linear", "easeIn", "easeOut", "easeInOut", "step"]
StepType = Literal["inspect", "mutate"]

INTERPOLATIONS: tuple[str, ...] = ("linear", "easeIn", "easeOut", "easeInOut", "step")
TRACK_PROPERTIES: tuple[str, ...] = tuple(
    f"{group}.{axis}" for group in ("position", "rotation", "scale") for axis in ("x", "y", "z")
)


class WireModel(BaseModel):
    """Base model dumped with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SourceLocation(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    line: int
    column: int = 1


class Diagnostic(WireModel):
    """A validation error or warning; never raised."""
    code: str
    message: str
    path: str


class ParseDiagnostic(Diagnostic):
    location: SourceLocation


class KeyframeRecord(WireModel):
    """One keyframe to insert. Rotation values are radians."""
    object_id: str
    property_path: str
    time: float
    value: float
    interpolation: Interpolation = "linear"


class KeyframeRef(WireModel):
    object_id: str
    property_path: str
    time: float


class Take(WireModel):
    """Named time range of the clip."""
    id: str
    name: str
    start_time: float
    end_time: float


class PlanCommand(WireModel):
    action: str
    input: dict[str, Any] = Field(default_factory=dict)


class PlanStep(WireModel):
    id: str
    label: str
    type: StepType
    command: PlanCommand
    rationale: str


class PlanSafety(WireModel):
    requires_confirm: bool = False
    reasons: list[str] = Field(default_factory=list)


class ObjectRef(WireModel):
    id: str
    name: str


class ValidationDefaults(WireModel):
    fps: float | None = None
    duration_sec: float | None = None


class ScriptContext(WireModel):
    """Scene facts a script is validated and compiled against."""
    defaults: ValidationDefaults = Field(default_factory=ValidationDefaults)
    available_objects: list[ObjectRef] = Field(default_factory=list)
    selected_object_id: str | None = None
