# Copyright (c) Syntropy Systems
"""Main CLI entry point for reprise."""

import typer

from reprise.cli.init_cmd import init
from reprise.cli.list_cmd import list_scenarios
from reprise.cli.run import run

app = typer.Typer(
    name="reprise",
    help=(
        "Generate, run and retry test scenarios with bounded concurrency "
        "and per-scenario timeouts."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(run)
_ = app.command(name="list")(list_scenarios)


if __name__ == "__main__":
    app()
