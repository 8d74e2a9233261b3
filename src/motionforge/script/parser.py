"""Line-oriented parser for the MotionForge animation script.

Each non-blank line holds exactly one statement. Lines starting with ``#``
or ``//`` are comments. Unrecognized lines are reported as diagnostics and
parsing continues, so a single call surfaces every bad line at once.
"""
from __future__ import annotations

import re
from typing import Callable

from motionforge.models import ParseDiagnostic, SourceLocation
from motionforge.script.ast import (
    BounceHelperStatement,
    DeleteKeyStatement,
    DurationStatement,
    FpsStatement,
    KeyStatement,
    LabelStatement,
    LoopStatement,
    ParseScriptResult,
    RecoilHelperStatement,
    ScriptAst,
    SelectStatement,
    TakeStatement,
)

NUMBER = r"[-+]?(?:\d+\.?\d*|\d*\.?\d+)"
_GROUP = r"(position|rotation|scale)"
_AXIS = r"(x|y|z)"

SELECT_RE = re.compile(r'^select\s+"([^"]+)"\s*$')
DURATION_RE = re.compile(rf"^duration\s+({NUMBER})\s*$")
FPS_RE = re.compile(rf"^fps\s+({NUMBER})\s*$")
LOOP_RE = re.compile(r"^loop\s+(on|off)\s*$")
LABEL_RE = re.compile(r'^label\s+"([^"]+)"\s*$')
TAKE_RE = re.compile(rf'^take\s+"([^"]+)"\s+from\s+({NUMBER})\s+to\s+({NUMBER})\s*$')
KEY_RE = re.compile(
    rf"^key\s+{_GROUP}\s+{_AXIS}\s+at\s+({NUMBER})\s*=\s*({NUMBER})"
    r"(?:\s*(deg))?(?:\s+ease\s+(linear|easeIn|easeOut|easeInOut|step))?\s*$"
)
DELETE_KEY_RE = re.compile(rf"^delete\s+key\s+{_GROUP}\s+{_AXIS}\s+at\s+({NUMBER})\s*$")
BOUNCE_RE = re.compile(rf"^bounce\s+amplitude\s+({NUMBER})\s+at\s+({NUMBER})\.\.({NUMBER})\s*$")
RECOIL_RE = re.compile(rf"^recoil\s+distance\s+({NUMBER})\s+at\s+({NUMBER})\.\.({NUMBER})\s*$")

UNSUPPORTED_STATEMENT = "MF_SCRIPT_PARSE_UNSUPPORTED_STATEMENT"


def _select(m: re.Match, loc: SourceLocation):
    return SelectStatement(target=m.group(1), location=loc)


def _duration(m: re.Match, loc: SourceLocation):
    return DurationStatement(seconds=float(m.group(1)), location=loc)


def _fps(m: re.Match, loc: SourceLocation):
    return FpsStatement(fps=float(m.group(1)), location=loc)


def _loop(m: re.Match, loc: SourceLocation):
    return LoopStatement(enabled=m.group(1) == "on", location=loc)


def _label(m: re.Match, loc: SourceLocation):
    return LabelStatement(value=m.group(1), location=loc)


def _take(m: re.Match, loc: SourceLocation):
    return TakeStatement(
        name=m.group(1),
        start_time=float(m.group(2)),
        end_time=float(m.group(3)),
        location=loc,
    )


def _key(m: re.Match, loc: SourceLocation):
    return KeyStatement(
        group=m.group(1),
        axis=m.group(2),
        time=float(m.group(3)),
        value=float(m.group(4)),
        value_unit="deg" if m.group(5) else "number",
        interpolation=m.group(6) or "linear",
        location=loc,
    )


def _delete_key(m: re.Match, loc: SourceLocation):
    return DeleteKeyStatement(
        group=m.group(1), axis=m.group(2), time=float(m.group(3)), location=loc
    )


def _bounce(m: re.Match, loc: SourceLocation):
    return BounceHelperStatement(
        amplitude=float(m.group(1)),
        start_time=float(m.group(2)),
        end_time=float(m.group(3)),
        location=loc,
    )


def _recoil(m: re.Match, loc: SourceLocation):
    return RecoilHelperStatement(
        distance=float(m.group(1)),
        start_time=float(m.group(2)),
        end_time=float(m.group(3)),
        location=loc,
    )


# Order matters: the first pattern that matches wins.
_RULES: tuple[tuple[re.Pattern, Callable], ...] = (
    (SELECT_RE, _select),
    (DURATION_RE, _duration),
    (FPS_RE, _fps),
    (LOOP_RE, _loop),
    (LABEL_RE, _label),
    (TAKE_RE, _take),
    (KEY_RE, _key),
    (DELETE_KEY_RE, _delete_key),
    (BOUNCE_RE, _bounce),
    (RECOIL_RE, _recoil),
)


def is_skippable_line(line: str) -> bool:
    """True for blank and comment lines."""
    return not line or line.startswith("#") or line.startswith("//")


def parse_line(text: str, line_number: int):
    """Parse one raw line.

    Returns a statement, a ParseDiagnostic, or None for blank/comment lines.
    """
    trimmed = text.strip()
    if is_skippable_line(trimmed):
        return None
    loc = SourceLocation(line=line_number, column=1)
    for pattern, build in _RULES:
        match = pattern.match(trimmed)
        if match:
            return build(match, loc)
    return ParseDiagnostic(
        code=UNSUPPORTED_STATEMENT,
        message="Unsupported script statement.",
        path=f"line:{line_number}",
        location=loc,
    )


def split_lines(script: str) -> list[str]:
    return re.split(r"\r?\n", script)


def parse_script(script: str) -> ParseScriptResult:
    """Parse script text into an AST, collecting one diagnostic per bad line."""
    statements = []
    errors: list[ParseDiagnostic] = []
    for index, line in enumerate(split_lines(script)):
        result = parse_line(line, index + 1)
        if result is None:
            continue
        if isinstance(result, ParseDiagnostic):
            errors.append(result)
        else:
            statements.append(result)
    return ParseScriptResult(
        ok=not errors,
        ast=ScriptAst(statements=statements),
        errors=errors,
    )
