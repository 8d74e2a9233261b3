"""Output helpers shared by CLI commands."""
from typing import Any

import click

from motionforge.pipeline.hashing import stable_json_stringify


def format_output(payload: Any) -> str:
    """Deterministic JSON: sorted keys, two-space indent."""
    return stable_json_stringify(payload)


def print_error(message: str) -> None:
    click.echo(message, err=True)


def print_success(message: str) -> None:
    click.secho(message, fg="green", err=True)
