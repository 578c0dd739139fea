"""Logging setup for the gpm CLI.

Logs always go to stderr through a rich handler so stdout stays reserved for
command output (and, in JSON mode, for the single result document).
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging.

    Args:
        verbose: DEBUG level when True, WARNING otherwise
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=verbose,
                rich_tracebacks=True,
            )
        ],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
