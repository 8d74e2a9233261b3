"""Script CLI commands."""
import sys
from pathlib import Path

import click

from motionforge.cli.utils.output import format_output, print_error, print_success
from motionforge.services.tools.handlers import SCRIPT_EXAMPLES, ToolHandlers


@click.group()
def script():
    """MotionForge Script operations - validate, compile, examples."""
    pass


def _load_project(handlers: ToolHandlers, project: str | None) -> None:
    if not project:
        return
    loaded = handlers.call("mf.project.loadJson", {
        "json": Path(project).read_text(encoding="utf-8"),
        "staged": False,
    })
    if not loaded["ok"]:
        print_error(f"{loaded['error']['code']}: {loaded['error']['message']}")
        sys.exit(1)


@script.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--project", "-p",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Project JSON whose objects the script may select."
)
def validate(path: str, project: str | None):
    """Validate a script file and print its diagnostics.

    \b
    Examples:
        motionforge script validate bounce.mfs
        motionforge script validate bounce.mfs --project project.json
    """
    handlers = ToolHandlers()
    _load_project(handlers, project)
    result = handlers.call("mf.script.validate", {"script": Path(path).read_text(encoding="utf-8")})
    click.echo(format_output(result))
    if not result["ok"]:
        sys.exit(1)
    print_success("Script is valid")


@script.command("compile")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--project", "-p",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Project JSON to compile against."
)
def compile_script(path: str, project: str | None):
    """Compile a script file into a plan summary.

    \b
    Examples:
        motionforge script compile recoil.mfs -p project.json
    """
    handlers = ToolHandlers()
    _load_project(handlers, project)
    result = handlers.call("mf.script.compile", {"script": Path(path).read_text(encoding="utf-8")})
    click.echo(format_output(result))
    if not result["ok"]:
        sys.exit(1)


@script.command("examples")
def examples():
    """Print the built-in script examples.

    \b
    Examples:
        motionforge script examples
    """
    click.echo(format_output({"examples": list(SCRIPT_EXAMPLES)}))
