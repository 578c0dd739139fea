"""Helpers shared by the commands that talk to GitHub."""

from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape

from gpm.ci.github import parse_repo_slug
from gpm.ship.git_operations import GitError, GitOperations
from gpm.ship.models import ClassifiedError, ErrorKind, ExecutionSummary, ShipOutcome
from gpm.ship.output import OutputFormatter, result_document
from gpm.ship.tracker import ExecutionTracker


def fail(
    console: Console,
    message: str,
    hint: Optional[str] = None,
    formatter: Optional[OutputFormatter] = None,
    kind: ErrorKind = ErrorKind.UNKNOWN,
    summary: Optional[ExecutionSummary] = None,
) -> NoReturn:
    """Report a command-level error and exit with code 1.

    In JSON mode the error is written as the run's single JSON document, in
    the ship result shape: ``data`` carries null PR fields and the execution
    record (``summary``, or an empty one when no step ran).
    """
    if formatter is not None and formatter.json_mode:
        outcome = ShipOutcome(
            success=False,
            error=ClassifiedError(kind=kind, raw_message=message, suggestion=hint),
        )
        formatter.write_json(
            result_document(summary or ExecutionTracker().finish(), outcome, formatter.warnings)
        )
    else:
        console.print(f"[red]ERROR:[/red] {escape(message)}")
        if hint:
            console.print(f"[yellow]Hint:[/yellow] {escape(hint)}")
    raise typer.Exit(code=1)


def repository_slug(git: GitOperations) -> tuple[str, str]:
    """Return (owner, repo) for the origin remote.

    Raises:
        GitError: If there is no origin remote
        ValueError: If origin is not a GitHub URL
    """
    try:
        remote = git.remote_url()
    except GitError as e:
        raise GitError("No 'origin' remote configured") from e
    return parse_repo_slug(remote)
