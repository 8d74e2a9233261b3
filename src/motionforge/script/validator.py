"""Semantic validation of parsed scripts.

Checks run in a single pass over the statements, so range checks see the
duration in effect at that line: a ``duration`` declared after a ``key``
does not retroactively validate it.
"""
from __future__ import annotations

import math
from typing import Any

from pydantic import Field

from motionforge.models import Diagnostic, ScriptContext, WireModel
from motionforge.script.ast import (
    BounceHelperStatement,
    DeleteKeyStatement,
    DurationStatement,
    FpsStatement,
    KeyStatement,
    RecoilHelperStatement,
    ScriptAst,
    SelectStatement,
    TakeStatement,
)
from motionforge.script.parser import parse_script

MAX_DURATION_SEC = 600
MAX_FPS = 240


class ScriptValidationResult(WireModel):
    ok: bool
    ast: ScriptAst
    errors: list[Diagnostic] = Field(default_factory=list)
    warnings: list[Diagnostic] = Field(default_factory=list)


def coerce_context(context: ScriptContext | dict[str, Any] | None) -> ScriptContext:
    if context is None:
        return ScriptContext()
    if isinstance(context, ScriptContext):
        return context
    return ScriptContext.model_validate(context)


def _finite(value: float) -> bool:
    return math.isfinite(value)


class _Walker:
    """Running state for one validation pass."""

    def __init__(self, context: ScriptContext):
        self.context = context
        self.duration_sec = context.defaults.duration_sec
        self.fps = context.defaults.fps
        self.last_select: str | None = None
        self.select_count = 0
        self.mutate_count = 0
        self.seen_take_names: set[str] = set()
        self.errors: list[Diagnostic] = []

    def error(self, path: str, code: str, message: str) -> None:
        self.errors.append(Diagnostic(code=code, message=message, path=path))

    def out_of_range(self, time: float) -> bool:
        return self.duration_sec is not None and time > self.duration_sec

    def visit(self, statement) -> None:
        path = f"line:{statement.location.line}"

        if isinstance(statement, SelectStatement):
            self.select_count += 1
            self.last_select = statement.target
            objects = self.context.available_objects
            if objects and not any(
                obj.id == statement.target or obj.name == statement.target for obj in objects
            ):
                self.error(path, "MF_SCRIPT_UNKNOWN_OBJECT", f'Unknown object reference "{statement.target}".')

        elif isinstance(statement, DurationStatement):
            self.duration_sec = statement.seconds
            if not _finite(statement.seconds) or statement.seconds <= 0:
                self.error(path, "MF_SCRIPT_INVALID_DURATION", "Duration must be a positive finite number.")
            elif statement.seconds > MAX_DURATION_SEC:
                self.error(path, "MF_SCRIPT_DURATION_RANGE", "Duration exceeds max allowed (600s).")

        elif isinstance(statement, FpsStatement):
            self.fps = statement.fps
            if not _finite(statement.fps) or statement.fps <= 0:
                self.error(path, "MF_SCRIPT_INVALID_FPS", "FPS must be a positive finite number.")
            elif statement.fps > MAX_FPS:
                self.error(path, "MF_SCRIPT_FPS_RANGE", "FPS exceeds max allowed (240).")

        elif isinstance(statement, KeyStatement):
            self.mutate_count += 1
            if not _finite(statement.time) or statement.time < 0:
                self.error(path, "MF_SCRIPT_INVALID_TIME", "Keyframe time must be a finite number >= 0.")
            if not _finite(statement.value):
                self.error(path, "MF_SCRIPT_INVALID_VALUE", "Keyframe value must be finite.")
            if self.out_of_range(statement.time):
                self.error(path, "MF_SCRIPT_TIME_OUT_OF_RANGE", "Keyframe time exceeds clip duration.")

        elif isinstance(statement, DeleteKeyStatement):
            self.mutate_count += 1
            if not _finite(statement.time) or statement.time < 0:
                self.error(path, "MF_SCRIPT_INVALID_TIME", "Delete-key time must be a finite number >= 0.")
            if self.out_of_range(statement.time):
                self.error(path, "MF_SCRIPT_TIME_OUT_OF_RANGE", "Delete-key time exceeds clip duration.")

        elif isinstance(statement, (BounceHelperStatement, RecoilHelperStatement)):
            self.mutate_count += 1
            magnitude = (
                statement.amplitude if isinstance(statement, BounceHelperStatement) else statement.distance
            )
            if not _finite(magnitude):
                self.error(path, "MF_SCRIPT_INVALID_VALUE", "Helper parameter must be finite.")
            if statement.start_time < 0 or statement.end_time < 0:
                self.error(path, "MF_SCRIPT_INVALID_TIME", "Helper range times must be >= 0.")
            if statement.end_time <= statement.start_time:
                self.error(path, "MF_SCRIPT_RANGE_ORDER", "Helper end time must be greater than start time.")
            if self.out_of_range(statement.end_time):
                self.error(path, "MF_SCRIPT_TIME_OUT_OF_RANGE", "Helper range exceeds clip duration.")

        elif isinstance(statement, TakeStatement):
            self.mutate_count += 1
            key = statement.name.strip().lower()
            if not key:
                self.error(path, "MF_SCRIPT_TAKE_NAME", "Take name must be non-empty.")
            if key in self.seen_take_names:
                self.error(path, "MF_SCRIPT_TAKE_DUPLICATE", "Take name must be unique.")
            self.seen_take_names.add(key)
            if not _finite(statement.start_time) or not _finite(statement.end_time):
                self.error(path, "MF_SCRIPT_INVALID_TIME", "Take range times must be finite numbers.")
                return
            if statement.start_time < 0 or statement.end_time <= statement.start_time:
                self.error(
                    path, "MF_SCRIPT_RANGE_ORDER", "Take range must satisfy start >= 0 and end > start."
                )
            if self.out_of_range(statement.end_time):
                self.error(path, "MF_SCRIPT_TIME_OUT_OF_RANGE", "Take range exceeds clip duration.")

    def warnings(self) -> list[Diagnostic]:
        out: list[Diagnostic] = []

        def warn(code: str, message: str) -> None:
            out.append(Diagnostic(code=code, message=message, path="script"))

        if self.select_count > 1:
            warn("MF_SCRIPT_MULTI_SELECT", "Multiple select statements found; last select wins.")
        if not self.last_select:
            warn(
                "MF_SCRIPT_NO_SELECT",
                "No select statement found; compiler will resolve target from runtime selection/default.",
            )
        if self.duration_sec is None:
            warn("MF_SCRIPT_NO_DURATION", "No duration statement; default duration will be used.")
        if self.fps is None:
            warn("MF_SCRIPT_NO_FPS", "No fps statement; default fps will be used.")
        if self.mutate_count == 0:
            warn("MF_SCRIPT_NO_MUTATIONS", "Script has no mutating statements.")
        return out


def validate_script(
    script: str,
    context: ScriptContext | dict[str, Any] | None = None,
) -> ScriptValidationResult:
    """Parse and validate ``script`` against the scene ``context``."""
    parsed = parse_script(script)
    if not parsed.ok:
        return ScriptValidationResult(
            ok=False,
            ast=parsed.ast,
            errors=[Diagnostic(code=e.code, message=e.message, path=e.path) for e in parsed.errors],
        )

    walker = _Walker(coerce_context(context))
    for statement in parsed.ast.statements:
        walker.visit(statement)

    return ScriptValidationResult(
        ok=not walker.errors,
        ast=parsed.ast,
        errors=walker.errors,
        warnings=walker.warnings(),
    )
