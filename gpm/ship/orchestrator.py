"""Ship workflow orchestration.

This module provides the ShipOrchestrator class that drives a feature branch
from local verification to a merged pull request:

    preflight -> verification -> security -> push -> create-pr -> wait-ci
    -> merge -> cleanup

Every phase is recorded in the ExecutionTracker as completed, skipped or
failed. The first fatal failure is classified, annotated with a suggestion,
recorded on its step, and stops the run. Exceptions outside the workflow
error types are logged with their traceback and recorded as UNKNOWN. ``run()``
always finishes the tracker and renders the result; only interrupts such as
KeyboardInterrupt escape it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import httpx

from gpm.ci.github import GitHubAPIError, GitHubClient, PullRequest
from gpm.ci.models import CheckResult, Outcome, WaitOptions
from gpm.ci.poller import CIPoller
from gpm.ship.errors import (
    CheckFailureError,
    CITimeoutError,
    ErrorClassifier,
    MergeError,
    PreflightError,
    SecurityScanError,
    VerificationError,
    WorkflowError,
)
from gpm.ship.git_operations import GitError, GitOperations
from gpm.ship.models import ClassifiedError, ShipConfig, ShipOutcome, ShipResult
from gpm.ship.output import NO_CHECKS_CONFIGURED, OutputFormatter
from gpm.ship.scanners import Scanner, ScannerError, ScanResult
from gpm.ship.suggestions import SuggestionEngine
from gpm.ship.tracker import ExecutionTracker
from gpm.utils import generate_pr_title

logger = logging.getLogger(__name__)

WORKFLOW_ERRORS = (
    WorkflowError,
    GitError,
    GitHubAPIError,
    ScannerError,
    httpx.HTTPError,
    OSError,
)

EXISTING_PR = "existing PR"
UNEXPECTED_HINT = "This may be a bug. Re-run with --verbose for details."


class PhaseFailed(Exception):
    """Internal signal: a phase failed and its step is already recorded."""

    def __init__(self, error: ClassifiedError):
        super().__init__(error.raw_message)
        self.error = error


@dataclass
class _RunState:
    """What the run has learned so far; becomes the ShipOutcome."""

    branch: Optional[str] = None
    default_branch: Optional[str] = None
    pr: Optional[PullRequest] = None
    merged: bool = False
    branch_deleted: bool = False
    no_checks_configured: bool = False

    def outcome(self, success: bool, error: Optional[ClassifiedError] = None) -> ShipOutcome:
        return ShipOutcome(
            success=success,
            branch=self.branch,
            default_branch=self.default_branch,
            pr_number=self.pr.number if self.pr else None,
            pr_url=self.pr.url if self.pr else None,
            merged=self.merged,
            branch_deleted=self.branch_deleted,
            no_checks_configured=self.no_checks_configured,
            error=error,
        )


class ShipOrchestrator:
    """Runs the ship workflow for the current branch.

    All collaborators are injected; the orchestrator reads no flags or
    environment variables itself, only the ShipConfig it is given.
    """

    def __init__(
        self,
        config: ShipConfig,
        git: GitOperations,
        github: GitHubClient,
        poller: CIPoller,
        verifier: Scanner,
        security: Scanner,
        formatter: OutputFormatter,
        tracker: Optional[ExecutionTracker] = None,
        classifier: Optional[ErrorClassifier] = None,
        suggestions: Optional[SuggestionEngine] = None,
        pr_body: str = "",
    ):
        self.config = config
        self.git = git
        self.github = github
        self.poller = poller
        self.verifier = verifier
        self.security = security
        self.formatter = formatter
        self.tracker = tracker or ExecutionTracker()
        self.classifier = classifier or ErrorClassifier()
        self.suggestions = suggestions or SuggestionEngine()
        self.pr_body = pr_body

    def run(self) -> ShipResult:
        """Execute the workflow and return its outcome and execution summary."""
        state = _RunState()
        try:
            self._ship(state)
            outcome = state.outcome(success=True)
        except PhaseFailed as e:
            logger.info(f"Ship stopped: {e.error.kind.value}: {e.error.raw_message}")
            outcome = state.outcome(success=False, error=e.error)
        finally:
            summary = self.tracker.finish()

        self.formatter.render_result(summary, outcome)
        return ShipResult(outcome=outcome, summary=summary)

    def _ship(self, state: _RunState) -> None:
        self._preflight(state)
        self._scan("verification", self.verifier, self.config.skip_verify, "--skip-verify")
        self._scan("security", self.security, self.config.skip_security, "--skip-security")
        self._open_pull_request(state)
        self._wait_for_ci(state)
        self._merge(state)
        self._cleanup(state)

    @contextmanager
    def _step(self, name: str, **context: Any) -> Iterator[None]:
        """Track one phase; any error fails the step and stops the run."""
        handle = self.tracker.start_step(name)
        try:
            yield
        except Exception as e:
            if not isinstance(e, WORKFLOW_ERRORS):
                logger.exception(f"Unexpected error during {name}")
            error = self._classify(e, name, context)
            self.formatter.render_step(self.tracker.fail_step(handle, error.raw_message, error.kind))
            raise PhaseFailed(error) from e
        self.formatter.render_step(self.tracker.complete_step(handle))

    def _skip(self, name: str, reason: str) -> None:
        logger.info(f"Skipping {name}: {reason}")
        self.formatter.render_step(self.tracker.skip_step(name, reason))

    def _classify(
        self, exc: BaseException, operation: str, context: dict[str, Any]
    ) -> ClassifiedError:
        kind = self.classifier.classify(exc)
        hints: dict[str, Any] = {"operation": operation, **context}
        if isinstance(exc, CheckFailureError):
            hints["failed_checks"] = [f.check_name for f in exc.failures]
        if isinstance(exc, CITimeoutError):
            hints["timeout_minutes"] = exc.timeout / 60
        suggestion = self.suggestions.suggest(kind, hints)
        if isinstance(exc, WORKFLOW_ERRORS):
            return self.classifier.classify_error(exc, suggestion)
        return ClassifiedError(
            kind=kind,
            raw_message=f"Unexpected {exc.__class__.__name__} during {operation}: {exc}",
            suggestion=suggestion or UNEXPECTED_HINT,
        )

    def _preflight(self, state: _RunState) -> None:
        """Check branch and working tree; recorded as a step only on failure."""
        try:
            state.branch = self.git.current_branch()
            state.default_branch = self.git.default_branch()
            if state.branch == state.default_branch:
                raise PreflightError(
                    f"Cannot ship from the default branch '{state.default_branch}'; "
                    "create a feature branch first"
                )
            if not self.git.is_clean():
                raise PreflightError(
                    "Working directory has uncommitted changes; commit or stash them first"
                )
        except Exception:
            with self._step("preflight"):
                raise
        logger.info(f"Shipping {state.branch} into {state.default_branch}")

    def _scan(self, name: str, scanner: Scanner, skip: bool, flag: str) -> None:
        if skip:
            self._skip(name, flag)
            return
        reason = scanner.skip_reason()
        if reason is not None:
            self._skip(name, reason)
            return

        result: Optional[ScanResult] = None
        with self._step(name, flag=flag):
            result = scanner.run()
            if not result.ok:
                blockers = "; ".join(result.blockers) or "scan failed"
                error_type = VerificationError if name == "verification" else SecurityScanError
                raise error_type(
                    f"{name.capitalize()} failed: {blockers}",
                    {"output": result.output, "warnings": list(result.warnings)},
                )
        for warning in result.warnings:
            self.formatter.render_warning(warning)

    def _open_pull_request(self, state: _RunState) -> None:
        try:
            existing = self.github.find_pull_request_for_branch(state.branch)
        except Exception:
            with self._step("create-pr"):
                raise

        if existing is not None:
            logger.info(f"Found existing PR #{existing.number}")
            state.pr = existing
            self._skip("push", EXISTING_PR)
            self._skip("create-pr", EXISTING_PR)
            return

        with self._step("push"):
            self.git.push_branch(state.branch)

        with self._step("create-pr"):
            state.pr = self.github.create_pull_request(
                title=self.config.title or generate_pr_title(state.branch),
                head=state.branch,
                base=state.default_branch,
                body=self.pr_body,
                draft=self.config.draft,
            )

    def _wait_for_ci(self, state: _RunState) -> None:
        if self.config.skip_ci:
            self._skip("wait-ci", "--skip-ci")
            return
        if not self.config.wait_for_checks:
            self._skip("wait-ci", "ci.wait_for_checks disabled")
            return

        options = WaitOptions(
            timeout=self.config.ci_timeout,
            grace_period=self.config.grace_period,
            strategy=self.config.poll_strategy,
            fail_fast=self.config.fail_fast,
            max_fetch_retries=self.config.max_fetch_retries,
            retry_flaky=self.config.retry_flaky,
            max_flaky_retries=self.config.max_flaky_retries,
            on_progress=self.formatter.render_progress,
        )
        result: Optional[CheckResult] = None
        with self._step("wait-ci", pr_url=state.pr.url):
            ref = state.pr.head_sha or self.git.head_commit()
            result = self.poller.wait_for_checks(ref, options)
            if not result.no_checks_configured:
                self.formatter.render_check_summary(result)
            self._raise_for_ci(result)

        if result.no_checks_configured:
            state.no_checks_configured = True
            self.formatter.render_warning(f"{NO_CHECKS_CONFIGURED}; proceeding with merge")

    def _raise_for_ci(self, result: CheckResult) -> None:
        if result.outcome == Outcome.FAILURE:
            names = ", ".join(f.check_name for f in result.failures)
            raise CheckFailureError(
                f"{len(result.failures)} CI check(s) failed: {names}",
                result.failures,
                result.aggregate,
            )
        if result.outcome == Outcome.TIMED_OUT:
            raise CITimeoutError(
                f"CI checks did not complete within {self.config.ci_timeout / 60:g} minutes",
                self.config.ci_timeout,
                result.aggregate,
            )

    def _merge(self, state: _RunState) -> None:
        with self._step("merge"):
            merged = self.github.merge_pull_request(
                state.pr.number, self.config.merge_method, state.pr.head_sha or None
            )
            if not merged:
                raise MergeError(f"GitHub did not merge PR #{state.pr.number}")
            state.merged = True
        logger.info(f"Merged PR #{state.pr.number}")

    def _cleanup(self, state: _RunState) -> None:
        if not self.config.delete_branch:
            self._skip("cleanup", "--no-delete-branch")
            return

        with self._step("cleanup"):
            self.github.delete_branch(state.branch)
            self.git.checkout(state.default_branch)
            self.git.pull()
            self.git.delete_branch(state.branch)
            state.branch_deleted = True
