"""Operator CLI - dry-run tooling for the Cassandra operator."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from operator_cassandra.cli.check import check
from operator_cassandra.cli.plan import plan
from operator_cassandra.config import settings

app = typer.Typer(
    name="operator-cassandra",
    help="Rack-aware Cassandra datacenter operator",
    no_args_is_help=True,
)

app.command("plan")(plan)
app.command("check")(check)


@app.callback()
def configure(
    log_level: str = typer.Option(
        settings.log_level, "--log-level", "-l", help="Logging level (DEBUG, INFO, ...)"
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
