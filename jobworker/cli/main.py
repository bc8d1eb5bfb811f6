#!/usr/bin/env python3
"""
jobworker command line.

  jobworker worker    take one job off the queue, run it, publish the result
  jobworker run       run a job directory locally, no queue involved
  jobworker queue     enqueue jobs, show queue statistics

`worker` logs JSON lines (see jobworker.logging_setup); the other commands
are meant for a terminal and log through rich.
"""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler

from jobworker import __version__
from jobworker.cli.queue import queue
from jobworker.cli.worker import run, worker

console = Console()

INTERACTIVE_COMMANDS = ("run", "queue")


def setup_console_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )


@click.group()
@click.version_option(version=__version__, prog_name="jobworker")
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, verbose):
    """Queue-driven shell job worker."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    if ctx.invoked_subcommand in INTERACTIVE_COMMANDS:
        setup_console_logging(verbose)


cli.add_command(worker)
cli.add_command(run)
cli.add_command(queue)


def main():
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        if '-v' in sys.argv or '--verbose' in sys.argv:
            raise
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
