"""Main Typer application instance."""

import typer

from gpm.commands import checks, init, ship
from gpm.core.logging import configure_logging

app = typer.Typer(
    name="gpm",
    help="Ship feature branches: verify, open a PR, wait for CI checks, merge and clean up",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging on stderr"
    ),
):
    """Configure logging before any command runs."""
    configure_logging(verbose)


# Register commands
app.command(name="ship")(ship.command)
app.command(name="checks")(checks.command)
app.command(name="init")(init.command)


def main():
    """Entry point for pip-installed command."""
    app()


if __name__ == "__main__":
    main()
