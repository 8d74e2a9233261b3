"""Statement types produced by the script parser."""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from motionforge.models import (
    Axis,
    Interpolation,
    ParseDiagnostic,
    SourceLocation,
    TrackGroup,
    WireModel,
)


class _Statement(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    location: SourceLocation


class SelectStatement(_Statement):
    kind: Literal["select"] = "select"
    target: str


class DurationStatement(_Statement):
    kind: Literal["duration"] = "duration"
    seconds: float


class FpsStatement(_Statement):
    kind: Literal["fps"] = "fps"
    fps: float


class LoopStatement(_Statement):
    kind: Literal["loop"] = "loop"
    enabled: bool


class LabelStatement(_Statement):
    kind: Literal["label"] = "label"
    value: str


class TakeStatement(_Statement):
    kind: Literal["take"] = "take"
    name: str
    start_time: float
    end_time: float


class KeyStatement(_Statement):
    kind: Literal["key"] = "key"
    group: TrackGroup
    axis: Axis
    time: float
    value: float
    value_unit: Literal["number", "deg"] = "number"
    interpolation: Interpolation = "linear"


class DeleteKeyStatement(_Statement):
    kind: Literal["deleteKey"] = "deleteKey"
    group: TrackGroup
    axis: Axis
    time: float


class BounceHelperStatement(_Statement):
    kind: Literal["helper.bounce"] = "helper.bounce"
    amplitude: float
    start_time: float
    end_time: float


class RecoilHelperStatement(_Statement):
    kind: Literal["helper.recoil"] = "helper.recoil"
    distance: float
    start_time: float
    end_time: float


ScriptStatement = Annotated[
    Union[
        SelectStatement,
        DurationStatement,
        FpsStatement,
        LoopStatement,
        LabelStatement,
        TakeStatement,
        KeyStatement,
        DeleteKeyStatement,
        BounceHelperStatement,
        RecoilHelperStatement,
    ],
    Field(discriminator="kind"),
]

# Statements that edit keyframes or take metadata.
MUTATING_KINDS = frozenset({"key", "deleteKey", "helper.bounce", "helper.recoil", "take"})


class ScriptAst(WireModel):
    type: Literal["MotionForgeScript"] = "MotionForgeScript"
    statements: list[ScriptStatement] = Field(default_factory=list)


class ParseScriptResult(WireModel):
    ok: bool
    ast: ScriptAst
    errors: list[ParseDiagnostic] = Field(default_factory=list)
