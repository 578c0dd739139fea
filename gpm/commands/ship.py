"""Ship command implementation.

This module provides the CLI command that verifies, pushes, opens a pull
request, waits for CI and merges the current branch.
"""

from typing import Optional

import typer
from rich.console import Console

from gpm.ci.github import GitHubClient
from gpm.ci.models import PollStrategy
from gpm.ci.poller import CIPoller
from gpm.commands.common import fail, repository_slug
from gpm.core.config import Config, ConfigError, get_token
from gpm.core.context import ProjectContext
from gpm.ship.git_operations import GitError, GitOperations
from gpm.ship.models import ErrorKind, ExecutionSummary, ShipConfig
from gpm.ship.orchestrator import ShipOrchestrator
from gpm.ship.output import OutputFormatter
from gpm.ship.scanners import DisabledScanner, SecurityScanner, VerificationRunner

console = Console()


def build_ship_config(
    config: Config,
    skip_verify: bool = False,
    skip_security: bool = False,
    skip_ci: bool = False,
    wait: Optional[bool] = None,
    fail_fast: Optional[bool] = None,
    retry_flaky: Optional[bool] = None,
    delete_branch: Optional[bool] = None,
    draft: bool = False,
    title: Optional[str] = None,
    merge_method: Optional[str] = None,
    json_output: bool = False,
) -> ShipConfig:
    """Combine .gpm.yml values with CLI flags; flags given explicitly win.

    Raises:
        ValueError: If the poll settings are invalid
    """

    def pick(flag, key):
        return config.get(key) if flag is None else flag

    return ShipConfig(
        skip_verify=skip_verify,
        skip_security=skip_security,
        skip_ci=skip_ci,
        wait_for_checks=bool(pick(wait, "ci.wait_for_checks")),
        fail_fast=bool(pick(fail_fast, "ci.fail_fast")),
        delete_branch=bool(pick(delete_branch, "ship.delete_branch")),
        draft=draft,
        title=title,
        merge_method=pick(merge_method, "ship.merge_method"),
        json_output=json_output,
        ci_timeout=float(config.get("ci.timeout")) * 60,
        grace_period=float(config.get("ci.grace_period")),
        poll_strategy=PollStrategy(
            kind=config.get("ci.poll.strategy"),
            initial_interval=float(config.get("ci.poll.initial_interval")),
            max_interval=float(config.get("ci.poll.max_interval")),
            multiplier=float(config.get("ci.poll.multiplier")),
        ),
        max_fetch_retries=int(config.get("ci.max_fetch_retries")),
        retry_flaky=bool(pick(retry_flaky, "ci.retry_flaky")),
        max_flaky_retries=int(config.get("ci.max_flaky_retries")),
    )


def _summary_of(orchestrator: Optional[ShipOrchestrator]) -> Optional[ExecutionSummary]:
    return orchestrator.tracker.finish() if orchestrator is not None else None


def command(
    skip_verify: bool = typer.Option(
        False, "--skip-verify", help="Skip local verification checks"
    ),
    skip_security: bool = typer.Option(
        False, "--skip-security", help="Skip secret and dependency scanning"
    ),
    skip_ci: bool = typer.Option(False, "--skip-ci", help="Merge without waiting for CI"),
    wait: Optional[bool] = typer.Option(
        None, "--wait/--no-wait", help="Wait for CI checks (default: ci.wait_for_checks)"
    ),
    fail_fast: Optional[bool] = typer.Option(
        None,
        "--fail-fast/--no-fail-fast",
        help="Stop at the first failing check (default: ci.fail_fast)",
    ),
    retry_flaky: Optional[bool] = typer.Option(
        None,
        "--retry-flaky/--no-retry-flaky",
        help="Poll again when failing checks look flaky (default: ci.retry_flaky)",
    ),
    delete_branch: Optional[bool] = typer.Option(
        None,
        "--delete-branch/--no-delete-branch",
        help="Delete the branch after merging (default: ship.delete_branch)",
    ),
    draft: bool = typer.Option(False, "--draft", help="Create the pull request as a draft"),
    title: Optional[str] = typer.Option(
        None, "--title", "-t", help="Pull request title (default: derived from branch)"
    ),
    merge_method: Optional[str] = typer.Option(
        None, "--merge-method", help="merge, squash or rebase (default: ship.merge_method)"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print a single JSON result document"
    ),
):
    """Ship the current branch: verify, push, open a PR, wait for CI, merge.

    Exits 0 when the pull request was merged and 1 on any failure.
    """
    formatter = OutputFormatter(console=console, json_mode=json_output)
    orchestrator: Optional[ShipOrchestrator] = None

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
            config = Config(context.project_root)
            ship_config = build_ship_config(
                config,
                skip_verify=skip_verify,
                skip_security=skip_security,
                skip_ci=skip_ci,
                wait=wait,
                fail_fast=fail_fast,
                retry_flaky=retry_flaky,
                delete_branch=delete_branch,
                draft=draft,
                title=title,
                merge_method=merge_method,
                json_output=json_output,
            )
        except (ConfigError, ValueError) as e:
            fail(console, f"Invalid configuration: {e}", "Check .gpm.yml or run 'gpm init --show'", formatter)

        git = GitOperations(str(context.project_root))
        try:
            owner, repo = repository_slug(git)
        except (GitError, ValueError) as e:
            fail(
                console,
                str(e),
                "Run gpm inside a git repository whose origin is on GitHub",
                formatter,
            )

        if not json_output:
            console.print(f"\n[bold]Shipping[/bold] [dim]{owner}/{repo}[/dim]\n")

        template = context.find_pr_template(config.get("pr.template_path"))
        pr_body = template.read_text() if template else ""

        if config.get("security.enabled"):
            security = SecurityScanner(context.project_root)
        else:
            security = DisabledScanner("security.enabled disabled")

        with GitHubClient(token, owner, repo) as github:
            orchestrator = ShipOrchestrator(
                config=ship_config,
                git=git,
                github=github,
                poller=CIPoller(github.fetch_check_aggregate, repository=github.slug),
                verifier=VerificationRunner(
                    context.project_root, command=config.get("verify.command")
                ),
                security=security,
                formatter=formatter,
                pr_body=pr_body,
            )
            result = orchestrator.run()

        if not result.outcome.success:
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except KeyboardInterrupt:
        fail(console, "Interrupted", formatter=formatter, summary=_summary_of(orchestrator))
    except Exception as e:
        fail(
            console,
            f"Unexpected error: {e}",
            "This may be a bug. Re-run with --verbose for details.",
            formatter,
            summary=_summary_of(orchestrator),
        )
