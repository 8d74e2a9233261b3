"""Entry point for the ``motionforge`` command."""
import click

from motionforge.cli.commands.bundle import make_bundle
from motionforge.cli.commands.script import script
from motionforge.config import cfg
from motionforge.logging_config import configure_logging


class MotionForgeGroup(click.Group):
    """Usage errors exit with status 1; status 2 is reserved for confirm-required."""

    def make_context(self, *args, **kwargs):
        try:
            return super().make_context(*args, **kwargs)
        except click.UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = 1
            raise


@click.group(cls=MotionForgeGroup)
@click.version_option(cfg.version, prog_name="motionforge")
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Log progress to stderr."
)
def cli(verbose: bool):
    """MotionForge - deterministic animation bundles from goals and scripts."""
    configure_logging("DEBUG" if verbose else "WARNING")


@cli.command("serve")
def serve():
    """Run the MCP server over stdio.

    \b
    Examples:
        motionforge serve
    """
    from motionforge.server import create_server

    configure_logging()
    create_server().run()


cli.add_command(make_bundle)
cli.add_command(script)


if __name__ == "__main__":
    cli()
