"""make-bundle: goal -> scripted takes -> bundle + proof."""
from __future__ import annotations

import base64
import re
import sys
from pathlib import Path
from typing import Any

import click

from motionforge.config import cfg
from motionforge.cli.utils.output import format_output, print_error
from motionforge.pipeline import MakeBundleInput, Tooling, run_make_bundle_pipeline
from motionforge.services.tools.handlers import ToolHandlers

EXIT_FAILURE = 1
EXIT_CONFIRM_REQUIRED = 2

_NUM = r"[-+]?(?:\d+\.?\d*|\d*\.?\d+)"
_TAKE_SEGMENT_RE = re.compile(rf"^([^:]+):({_NUM})\.\.({_NUM})$")


def parse_takes_spec(value: str) -> list[dict[str, Any]]:
    """Parse ``"Idle:0..2,Recoil:2..2.4"`` into take inputs.

    Raises:
        ValueError: a segment is not ``Name:start..end``.
    """
    takes = []
    for item in (part.strip() for part in value.split(",")):
        if not item:
            continue
        match = _TAKE_SEGMENT_RE.match(item)
        if not match:
            raise ValueError(f'Invalid take segment "{item}". Expected Name:start..end')
        takes.append({
            "name": match.group(1).strip(),
            "startTime": float(match.group(2)),
            "endTime": float(match.group(3)),
        })
    return takes


def read_input_file(path: Path) -> dict[str, str]:
    data = path.read_bytes()
    if path.suffix.lower() == ".zip":
        return {"in_bundle_base64": base64.b64encode(data).decode("ascii")}
    return {"in_json": data.decode("utf-8")}


def _usage_failure(message: str) -> None:
    print_error(message)
    sys.exit(EXIT_FAILURE)


@click.command("make-bundle")
@click.option(
    "--goal",
    default=None,
    help="Deterministic goal phrase, e.g. \"idle loop then recoil\"."
)
@click.option(
    "--out", "out_dir",
    default=None,
    help="Output directory."
)
@click.option(
    "--in", "in_path",
    default=None,
    help="Input project.json or motionforge-bundle.zip (defaults to an empty project)."
)
@click.option(
    "--takes",
    default=None,
    help="Take ranges, e.g. \"Idle:0..2,Recoil:2..2.4\"."
)
@click.option(
    "--confirm",
    is_flag=True,
    help="Required to apply and commit mutations."
)
@click.option(
    "--staged/--no-staged",
    default=True,
    help="Use staged load/apply mode (default: staged)."
)
@click.option(
    "--unity",
    is_flag=True,
    help="Guarantee Unity bindPaths on every animated object."
)
@click.option(
    "--target",
    default=None,
    help="Object id or name to animate (defaults to the first animatable object)."
)
def make_bundle(
    goal: str | None,
    out_dir: str | None,
    in_path: str | None,
    takes: str | None,
    confirm: bool,
    staged: bool,
    unity: bool,
    target: str | None,
):
    """Script takes for GOAL, then export a bundle with proof.json.

    Without --confirm only a preview-only proof is written and the command
    exits with status 2.

    \b
    Examples:
        motionforge make-bundle --goal "idle loop then recoil" --out ./out --in ./project.json --confirm
        motionforge make-bundle --goal "bounce" --out ./out --takes "Bounce:0..1"
    """
    if not goal or not goal.strip():
        _usage_failure("--goal is required.")
    if not out_dir:
        _usage_failure("--out is required.")

    take_inputs = None
    if takes:
        try:
            take_inputs = parse_takes_spec(takes)
        except ValueError as e:
            _usage_failure(str(e))

    file_input: dict[str, str] = {}
    if in_path:
        try:
            file_input = read_input_file(Path(in_path).resolve())
        except (OSError, UnicodeDecodeError) as e:
            print_error(f"Failed to read input file: {e}")
            sys.exit(EXIT_FAILURE)

    handlers = ToolHandlers(version=cfg.version, commit=cfg.commit)
    result = run_make_bundle_pipeline(
        handlers.call,
        MakeBundleInput(
            goal=goal.strip(),
            out_dir=str(Path(out_dir).resolve()),
            confirm=confirm,
            staged=staged,
            unity=unity,
            takes=take_inputs,
            target={"select": target} if target else None,
            **file_input,
        ),
        Tooling(mcp_version=cfg.version, commit=cfg.commit),
    )

    click.echo(format_output({
        "ok": result.ok,
        "previewOnly": result.preview_only,
        "outZipPath": result.out_zip_path,
        "manifestPath": result.manifest_path,
        "proofPath": result.proof_path,
        "warnings": result.warnings,
        "errors": [error.to_wire() for error in result.errors],
    }))

    if not result.ok:
        if result.errors:
            first = result.errors[0]
            print_error(f"{first.code}: {first.message}")
            if first.code == "MF_ERR_CONFIRM_REQUIRED":
                sys.exit(EXIT_CONFIRM_REQUIRED)
        sys.exit(EXIT_FAILURE)
