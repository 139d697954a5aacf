"""Root CLI group and version flag."""

import signal

import click

from conduit import __version__
from conduit.commands.models import models
from conduit.commands.run import run
from conduit.commands.status import status

# Writing JSON lines into a closed pipe (e.g. `| head`) should not raise.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_DFL)


@click.group()
@click.version_option(version=__version__, prog_name="conduit")
def cli() -> None:
    """Conduit — one canonical event stream over Claude, Codex and Cursor."""


cli.add_command(run)
cli.add_command(models)
cli.add_command(status)
