"""Unit tests for ShipOrchestrator with mocked collaborators."""

import io
import json
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from gpm.ci.github import GitHubAPIError, PullRequest
from gpm.ci.models import (
    CheckAggregate,
    CheckErrorType,
    CheckResult,
    FailureDetail,
    Outcome,
)
from gpm.ship.git_operations import GitError
from gpm.ship.models import ErrorKind, ShipConfig, StepStatus
from gpm.ship.orchestrator import ShipOrchestrator
from gpm.ship.output import OutputFormatter
from gpm.ship.scanners import ScanResult

PR = PullRequest(
    number=123,
    url="https://github.com/octo/widgets/pull/123",
    head_ref="feature/login",
    head_sha="deadbeef",
)

PASSED = CheckResult(
    outcome=Outcome.SUCCESS,
    aggregate=CheckAggregate(total=2, passed=2),
    duration_ms=15000,
)

NO_CHECKS = CheckResult(
    outcome=Outcome.SUCCESS,
    aggregate=CheckAggregate(),
    duration_ms=20000,
    no_checks_configured=True,
)


def make_scanner(result=None, skip_reason=None):
    scanner = MagicMock()
    scanner.skip_reason.return_value = skip_reason
    scanner.run.return_value = result or ScanResult(ok=True)
    return scanner


@pytest.fixture
def git():
    git = MagicMock()
    git.current_branch.return_value = "feature/login"
    git.default_branch.return_value = "main"
    git.is_clean.return_value = True
    return git


@pytest.fixture
def github():
    github = MagicMock()
    github.find_pull_request_for_branch.return_value = None
    github.create_pull_request.return_value = PR
    github.merge_pull_request.return_value = True
    return github


@pytest.fixture
def poller():
    poller = MagicMock()
    poller.wait_for_checks.return_value = PASSED
    return poller


@pytest.fixture
def stream():
    return io.StringIO()


def make_orchestrator(git, github, poller, stream, config=None, verifier=None, security=None):
    formatter = OutputFormatter(
        console=Console(file=io.StringIO(), color_system=None),
        json_mode=True,
        stream=stream,
    )
    return ShipOrchestrator(
        config=config or ShipConfig(),
        git=git,
        github=github,
        poller=poller,
        verifier=verifier or make_scanner(),
        security=security or make_scanner(),
        formatter=formatter,
    )


def statuses(result):
    return [(step.name, step.status) for step in result.summary.steps]


class TestHappyPath:
    """Test a full successful run."""

    def test_all_phases_complete(self, git, github, poller, stream):
        """Should run every phase in order and merge."""
        result = make_orchestrator(git, github, poller, stream).run()

        assert result.outcome.success is True
        assert result.outcome.merged is True
        assert result.outcome.branch_deleted is True
        assert statuses(result) == [
            ("verification", StepStatus.COMPLETED),
            ("security", StepStatus.COMPLETED),
            ("push", StepStatus.COMPLETED),
            ("create-pr", StepStatus.COMPLETED),
            ("wait-ci", StepStatus.COMPLETED),
            ("merge", StepStatus.COMPLETED),
            ("cleanup", StepStatus.COMPLETED),
        ]
        git.push_branch.assert_called_once_with("feature/login")
        github.create_pull_request.assert_called_once_with(
            title="Login", head="feature/login", base="main", body="", draft=False
        )
        github.merge_pull_request.assert_called_once_with(123, "merge", "deadbeef")
        git.checkout.assert_called_once_with("main")
        git.delete_branch.assert_called_once_with("feature/login")

    def test_single_json_document(self, git, github, poller, stream):
        """Should write exactly one JSON document."""
        make_orchestrator(git, github, poller, stream).run()

        document = json.loads(stream.getvalue())
        assert document["success"] is True
        assert document["data"]["prNumber"] == 123
        assert "error" not in document

    def test_explicit_title(self, git, github, poller, stream):
        """Should use the configured title instead of the branch name."""
        make_orchestrator(git, github, poller, stream, config=ShipConfig(title="Add login")).run()

        assert github.create_pull_request.call_args.kwargs["title"] == "Add login"

    def test_poller_gets_head_sha_and_options(self, git, github, poller, stream):
        """Should poll the PR head with options built from config."""
        config = ShipConfig(
            ci_timeout=600, grace_period=10, fail_fast=False, retry_flaky=True, max_flaky_retries=2
        )
        make_orchestrator(git, github, poller, stream, config=config).run()

        ref, options = poller.wait_for_checks.call_args[0]
        assert ref == "deadbeef"
        assert options.timeout == 600
        assert options.grace_period == 10
        assert options.fail_fast is False
        assert options.retry_flaky is True
        assert options.max_flaky_retries == 2
        assert options.on_progress is not None


class TestSkips:
    """Test skip reasons recorded on steps."""

    def test_skip_flags(self, git, github, poller, stream):
        """Should record each skip flag as the step reason."""
        config = ShipConfig(
            skip_verify=True, skip_security=True, skip_ci=True, delete_branch=False
        )
        result = make_orchestrator(git, github, poller, stream, config=config).run()

        reasons = {s.name: s.reason for s in result.summary.steps if s.status == StepStatus.SKIPPED}
        assert reasons == {
            "verification": "--skip-verify",
            "security": "--skip-security",
            "wait-ci": "--skip-ci",
            "cleanup": "--no-delete-branch",
        }
        poller.wait_for_checks.assert_not_called()
        assert result.outcome.success is True

    def test_missing_tools_are_skipped(self, git, github, poller, stream):
        """Should skip scanners that report a skip reason."""
        verifier = make_scanner(skip_reason="no verification script")
        security = make_scanner(skip_reason="no security tools available")

        result = make_orchestrator(
            git, github, poller, stream, verifier=verifier, security=security
        ).run()

        assert result.summary.step("verification").reason == "no verification script"
        assert result.summary.step("security").reason == "no security tools available"
        verifier.run.assert_not_called()

    def test_wait_disabled_in_config(self, git, github, poller, stream):
        """Should skip wait-ci when config disables waiting."""
        config = ShipConfig(wait_for_checks=False)
        result = make_orchestrator(git, github, poller, stream, config=config).run()

        assert result.summary.step("wait-ci").reason == "ci.wait_for_checks disabled"

    def test_existing_pr(self, git, github, poller, stream):
        """Should reuse an existing PR and skip push and create-pr."""
        github.find_pull_request_for_branch.return_value = PR

        result = make_orchestrator(git, github, poller, stream).run()

        assert result.summary.step("push").status == StepStatus.SKIPPED
        assert result.summary.step("push").reason == "existing PR"
        assert result.summary.step("create-pr").reason == "existing PR"
        git.push_branch.assert_not_called()
        github.create_pull_request.assert_not_called()
        assert result.outcome.merged is True


class TestNoChecks:
    """Test repositories without CI."""

    def test_no_checks_configured_merges(self, git, github, poller, stream):
        """Should complete wait-ci and merge when no checks are configured."""
        poller.wait_for_checks.return_value = NO_CHECKS

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("wait-ci")
        assert step.status == StepStatus.COMPLETED
        assert step.error_kind is None
        assert result.outcome.merged is True
        assert result.outcome.no_checks_configured is True


class TestFailures:
    """Test failure classification and early stop."""

    def test_preflight_recorded_only_on_failure(self, git, github, poller, stream):
        """Should not record preflight on success but record it on failure."""
        result = make_orchestrator(git, github, poller, stream).run()
        assert result.summary.step("preflight") is None

        git.is_clean.return_value = False
        result = make_orchestrator(git, github, poller, io.StringIO()).run()

        step = result.summary.step("preflight")
        assert step.status == StepStatus.FAILED
        assert "uncommitted changes" in step.reason
        assert [s.name for s in result.summary.steps] == ["preflight"]
        assert result.outcome.error.suggestion is not None

    def test_default_branch_refused(self, git, github, poller, stream):
        """Should refuse to ship the default branch."""
        git.current_branch.return_value = "main"

        result = make_orchestrator(git, github, poller, stream).run()

        assert result.outcome.success is False
        assert "default branch" in result.outcome.error.raw_message

    def test_verification_failure(self, git, github, poller, stream):
        """Should stop at verification and classify it."""
        verifier = make_scanner(ScanResult(ok=False, blockers=("3 tests failed",)))

        result = make_orchestrator(git, github, poller, stream, verifier=verifier).run()

        step = result.summary.step("verification")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.VERIFICATION_FAILURE
        assert result.outcome.error.kind == ErrorKind.VERIFICATION_FAILURE
        assert "--skip-verify" in result.outcome.error.suggestion
        git.push_branch.assert_not_called()

    def test_security_failure(self, git, github, poller, stream):
        """Should stop at security with security_failure."""
        security = make_scanner(ScanResult(ok=False, blockers=("Found 1 potential secret(s)",)))

        result = make_orchestrator(git, github, poller, stream, security=security).run()

        assert result.summary.step("security").error_kind == ErrorKind.SECURITY_FAILURE
        assert result.summary.step("push") is None

    def test_push_auth_failure(self, git, github, poller, stream):
        """Should classify a git authentication failure on push."""
        git.push_branch.side_effect = GitError(
            "Git command failed: git push -u origin feature/login\n"
            "stderr: fatal: Authentication failed for 'https://github.com/octo/widgets'"
        )

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("push")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.AUTH_FAILURE
        assert result.summary.step("create-pr") is None

        document = json.loads(stream.getvalue())
        assert document["success"] is False
        assert document["error"]["kind"] == "auth_failure"

    def test_pr_lookup_failure_recorded_as_create_pr(self, git, github, poller, stream):
        """Should record a failed PR lookup on the create-pr step."""
        github.find_pull_request_for_branch.side_effect = GitHubAPIError(
            "Server error", status_code=502
        )

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("create-pr")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.NETWORK_FAILURE

    def test_check_failure(self, git, github, poller, stream):
        """Should fail wait-ci with check_failure and name the failing checks."""
        poller.wait_for_checks.return_value = CheckResult(
            outcome=Outcome.FAILURE,
            aggregate=CheckAggregate(total=2, passed=1, failed=1),
            duration_ms=5000,
            failures=(FailureDetail("lint", CheckErrorType.LINTING_ERROR, "3 errors"),),
        )

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("wait-ci")
        assert step.error_kind == ErrorKind.CHECK_FAILURE
        assert "lint" in result.outcome.error.suggestion
        github.merge_pull_request.assert_not_called()
        assert result.outcome.pr_number == 123

    def test_timeout(self, git, github, poller, stream):
        """Should fail wait-ci with timeout."""
        poller.wait_for_checks.return_value = CheckResult(
            outcome=Outcome.TIMED_OUT,
            aggregate=CheckAggregate(total=1, pending=1),
            duration_ms=1800000,
        )

        result = make_orchestrator(git, github, poller, stream).run()

        assert result.summary.step("wait-ci").error_kind == ErrorKind.TIMEOUT
        assert "30 minutes" in result.outcome.error.suggestion

    def test_merge_refused(self, git, github, poller, stream):
        """Should fail merge with unknown when GitHub does not merge."""
        github.merge_pull_request.return_value = False

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("merge")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.UNKNOWN
        assert result.outcome.merged is False
        assert "branch protection" in result.outcome.error.suggestion
        assert result.summary.step("cleanup") is None

    def test_unexpected_error_recorded_as_unknown(self, git, github, poller, stream):
        """Should fail the step as unknown and still emit the full document."""
        poller.wait_for_checks.side_effect = AttributeError("bug")

        result = make_orchestrator(git, github, poller, stream).run()

        assert result.outcome.success is False
        assert result.outcome.error.kind == ErrorKind.UNKNOWN
        assert result.outcome.error.raw_message == "Unexpected AttributeError during wait-ci: bug"
        assert "--verbose" in result.outcome.error.suggestion
        step = result.summary.step("wait-ci")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.UNKNOWN
        github.merge_pull_request.assert_not_called()

        document = json.loads(stream.getvalue())
        assert document["success"] is False
        assert document["error"]["kind"] == "unknown"
        assert document["data"]["merged"] is False
        names = [s["name"] for s in document["data"]["execution"]["steps"]]
        assert names[-1] == "wait-ci"

    def test_malformed_payload_during_pr_creation(self, git, github, poller, stream):
        """Should record a KeyError from a bad GitHub payload on create-pr."""
        github.create_pull_request.side_effect = KeyError("number")

        result = make_orchestrator(git, github, poller, stream).run()

        step = result.summary.step("create-pr")
        assert step.status == StepStatus.FAILED
        assert step.error_kind == ErrorKind.UNKNOWN
        assert step.reason == "Unexpected KeyError during create-pr: 'number'"
        assert result.summary.step("push").status == StepStatus.COMPLETED
        assert "data" in json.loads(stream.getvalue())

    def test_interrupt_propagates_but_finishes(self, git, github, poller, stream):
        """Should finish the tracker when the run is interrupted."""
        orchestrator = make_orchestrator(git, github, poller, stream)
        poller.wait_for_checks.side_effect = KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            orchestrator.run()

        summary = orchestrator.tracker.finish()
        step = summary.step("wait-ci")
        assert step.status == StepStatus.FAILED
        assert step.reason == "interrupted"
        assert stream.getvalue() == ""
