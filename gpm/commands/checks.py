"""Checks command implementation.

Shows the CI check status of a pull request, optionally waiting for the
checks to resolve.
"""

import typer
from rich.console import Console
from rich.markup import escape

from gpm.ci.github import GitHubAPIError, GitHubClient
from gpm.ci.models import AggregateState, CheckResult, Outcome, WaitOptions
from gpm.ci.poller import CIPoller
from gpm.commands.common import fail, repository_slug
from gpm.commands.ship import build_ship_config
from gpm.core.config import Config, ConfigError, get_token
from gpm.core.context import ProjectContext
from gpm.ship.errors import ErrorClassifier
from gpm.ship.git_operations import GitError, GitOperations
from gpm.ship.models import ErrorKind
from gpm.ship.output import OutputFormatter

console = Console()


def command(
    pr_number: int = typer.Argument(..., help="Pull request number"),
    wait: bool = typer.Option(
        False, "--wait", "-w", help="Poll until the checks succeed, fail or time out"
    ),
    files: bool = typer.Option(
        False, "--files", help="Only list files affected by failing checks"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print a JSON document"),
):
    """Show CI check status for a pull request.

    Exits 1 when any check failed (or, with --wait, when the wait timed out).
    """
    formatter = OutputFormatter(console=console, json_mode=json_output)

    try:
        token = get_token()
        if not token:
            fail(
                console,
                "GitHub token not found",
                "Set the GITHUB_TOKEN or GH_TOKEN environment variable",
                formatter,
                ErrorKind.AUTH_FAILURE,
            )

        context = ProjectContext()
        try:
            ship_config = build_ship_config(Config(context.project_root))
            owner, repo = repository_slug(GitOperations(str(context.project_root)))
        except (ConfigError, GitError, ValueError) as e:
            fail(console, str(e), formatter=formatter)

        with GitHubClient(token, owner, repo) as github:
            poller = CIPoller(github.fetch_check_aggregate, repository=github.slug)
            pr = github.get_pull_request(pr_number)

            if not json_output:
                console.print(f"\n[bold]CI Check Status - PR #{pr.number}[/bold]\n")

            if wait:
                result = poller.wait_for_checks(
                    pr.head_sha,
                    WaitOptions(
                        timeout=ship_config.ci_timeout,
                        grace_period=ship_config.grace_period,
                        strategy=ship_config.poll_strategy,
                        fail_fast=ship_config.fail_fast,
                        max_fetch_retries=ship_config.max_fetch_retries,
                        retry_flaky=ship_config.retry_flaky,
                        max_flaky_retries=ship_config.max_flaky_retries,
                        on_progress=formatter.render_progress,
                    ),
                )
                failed = result.outcome != Outcome.SUCCESS
            else:
                aggregate = poller.get_check_status(pr.head_sha)
                result = CheckResult(
                    outcome=(
                        Outcome.FAILURE
                        if aggregate.state == AggregateState.FAILURE
                        else Outcome.SUCCESS
                    ),
                    aggregate=aggregate,
                    duration_ms=0,
                    no_checks_configured=aggregate.total == 0,
                    failures=poller.describe_failures(aggregate),
                )
                failed = aggregate.state == AggregateState.FAILURE

        if files and not json_output:
            affected = sorted({path for f in result.failures for path in f.affected_files})
            console.print("[bold]Affected files:[/bold]")
            if not affected:
                console.print("[dim]No affected files found[/dim]")
            for path in affected:
                console.print(f"  - {escape(path)}")
        else:
            document = formatter.render_check_summary(result)
            if json_output:
                formatter.write_json(
                    {
                        "success": not failed,
                        "data": {
                            "prNumber": pr.number,
                            "outcome": result.outcome.value,
                            "checks": document,
                        },
                    }
                )

        if failed:
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except GitHubAPIError as e:
        error = ErrorClassifier().classify_error(e)
        fail(
            console,
            error.raw_message,
            "Check the PR number and that your token can read this repository",
            formatter,
            error.kind,
        )
    except Exception as e:
        fail(
            console,
            f"Unexpected error: {e}",
            "This may be a bug. Re-run with --verbose for details.",
            formatter,
        )
