"""Unit tests for the ship command."""

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from gpm.app import app
from gpm.ci.github import PullRequest
from gpm.commands.ship import build_ship_config
from gpm.core.config import Config

runner = CliRunner()

PR = PullRequest(
    number=123,
    url="https://github.com/octo/widgets/pull/123",
    head_ref="feature/login",
    head_sha="deadbeef",
)


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A git project directory used as the working directory."""
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITHUB_TOKEN", "test-token")
    return tmp_path


@pytest.fixture
def git():
    git = MagicMock()
    git.remote_url.return_value = "git@github.com:octo/widgets.git"
    git.current_branch.return_value = "feature/login"
    git.default_branch.return_value = "main"
    git.is_clean.return_value = True
    return git


@pytest.fixture
def github():
    github = MagicMock()
    github.slug = "octo/widgets"
    github.find_pull_request_for_branch.return_value = None
    github.create_pull_request.return_value = PR
    github.merge_pull_request.return_value = True
    return github


class TestBuildShipConfig:
    """Test combining .gpm.yml values with CLI flags."""

    def test_config_values(self, tmp_path):
        """Should take values from config when no flag is given."""
        (tmp_path / ".gpm.yml").write_text(
            "ci:\n  timeout: 10\n  fail_fast: false\n  retry_flaky: true\n"
            "  max_flaky_retries: 5\n  poll:\n    strategy: fixed\n"
            "ship:\n  merge_method: squash\n"
        )

        ship_config = build_ship_config(Config(tmp_path))

        assert ship_config.ci_timeout == 600.0
        assert ship_config.fail_fast is False
        assert ship_config.merge_method == "squash"
        assert ship_config.poll_strategy.kind == "fixed"
        assert ship_config.grace_period == 20.0
        assert ship_config.retry_flaky is True
        assert ship_config.max_flaky_retries == 5

    def test_flags_override_config(self, tmp_path):
        """Should let explicit flags win over config values."""
        ship_config = build_ship_config(
            Config(tmp_path),
            wait=False,
            fail_fast=False,
            delete_branch=False,
            merge_method="rebase",
        )

        assert ship_config.wait_for_checks is False
        assert ship_config.fail_fast is False
        assert ship_config.delete_branch is False
        assert ship_config.merge_method == "rebase"

    def test_invalid_poll_strategy(self, tmp_path):
        """Should raise ValueError for an unknown poll strategy."""
        (tmp_path / ".gpm.yml").write_text("ci:\n  poll:\n    strategy: random\n")

        with pytest.raises(ValueError, match="poll strategy"):
            build_ship_config(Config(tmp_path))


class TestShipCommand:
    """Test the ship CLI command."""

    def test_missing_token(self, project, monkeypatch):
        """Should exit 1 with an auth error when no token is set."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)

        result = runner.invoke(app, ["ship"])

        assert result.exit_code == 1
        assert "GitHub token not found" in result.stdout

    def test_missing_token_json(self, project, monkeypatch):
        """Should write a single JSON error document in JSON mode."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)

        result = runner.invoke(app, ["ship", "--json"])

        assert result.exit_code == 1
        document = json.loads(result.stdout)
        assert document["success"] is False
        assert document["error"]["kind"] == "auth_failure"
        assert document["data"]["merged"] is False
        assert document["data"]["prNumber"] is None
        assert document["data"]["execution"]["steps"] == []

    def test_invalid_config(self, project):
        """Should exit 1 when .gpm.yml is invalid."""
        (project / ".gpm.yml").write_text("ship:\n  merge_method: octopus\n")

        result = runner.invoke(app, ["ship", "--json"])

        assert result.exit_code == 1
        document = json.loads(result.stdout)
        assert "Invalid configuration" in document["error"]["message"]

    @patch("gpm.commands.ship.GitOperations")
    def test_non_github_remote(self, mock_git_class, project, git):
        """Should exit 1 when origin is not a GitHub repository."""
        git.remote_url.return_value = "https://gitlab.com/octo/widgets.git"
        mock_git_class.return_value = git

        result = runner.invoke(app, ["ship", "--json"])

        assert result.exit_code == 1
        assert "Could not parse" in json.loads(result.stdout)["error"]["message"]

    @patch("gpm.commands.ship.ShipOrchestrator")
    @patch("gpm.commands.ship.GitHubClient")
    @patch("gpm.commands.ship.GitOperations")
    def test_flags_reach_orchestrator(
        self, mock_git_class, mock_client_class, mock_orchestrator_class, project, git
    ):
        """Should build the ship config from flags and pass it through."""
        mock_git_class.return_value = git
        mock_orchestrator_class.return_value.run.return_value.outcome.success = True

        result = runner.invoke(
            app,
            [
                "ship",
                "--skip-verify",
                "--no-fail-fast",
                "--retry-flaky",
                "--no-delete-branch",
                "--merge-method",
                "squash",
                "--title",
                "Add login",
                "--draft",
            ],
        )

        assert result.exit_code == 0
        mock_client_class.assert_called_once_with("test-token", "octo", "widgets")
        ship_config = mock_orchestrator_class.call_args.kwargs["config"]
        assert ship_config.skip_verify is True
        assert ship_config.fail_fast is False
        assert ship_config.delete_branch is False
        assert ship_config.merge_method == "squash"
        assert ship_config.retry_flaky is True
        assert ship_config.title == "Add login"
        assert ship_config.draft is True

    @patch("gpm.commands.ship.ShipOrchestrator")
    @patch("gpm.commands.ship.GitHubClient")
    @patch("gpm.commands.ship.GitOperations")
    def test_failed_run_exits_1(
        self, mock_git_class, mock_client_class, mock_orchestrator_class, project, git
    ):
        """Should exit 1 when the workflow did not succeed."""
        mock_git_class.return_value = git
        mock_orchestrator_class.return_value.run.return_value.outcome.success = False

        result = runner.invoke(app, ["ship"])

        assert result.exit_code == 1

    @patch("gpm.commands.ship.ShipOrchestrator")
    @patch("gpm.commands.ship.GitHubClient")
    @patch("gpm.commands.ship.GitOperations")
    def test_pr_template_used_as_body(
        self, mock_git_class, mock_client_class, mock_orchestrator_class, project, git
    ):
        """Should pass the PR template contents as the PR body."""
        (project / ".github").mkdir()
        (project / ".github" / "pull_request_template.md").write_text("## Summary\n")
        mock_git_class.return_value = git
        mock_orchestrator_class.return_value.run.return_value.outcome.success = True

        runner.invoke(app, ["ship"])

        assert mock_orchestrator_class.call_args.kwargs["pr_body"] == "## Summary\n"

    @patch("gpm.commands.ship.GitHubClient")
    @patch("gpm.commands.ship.GitOperations")
    def test_ship_without_ci(self, mock_git_class, mock_client_class, project, git, github):
        """Should push, open, merge and clean up when CI is skipped."""
        mock_git_class.return_value = git
        mock_client_class.return_value.__enter__.return_value = github

        result = runner.invoke(app, ["ship", "--skip-security", "--skip-ci", "--json"])

        assert result.exit_code == 0
        document = json.loads(result.stdout)
        assert document["success"] is True
        assert document["data"]["merged"] is True
        assert document["data"]["prNumber"] == 123
        steps = {s["name"]: s for s in document["data"]["execution"]["steps"]}
        assert steps["verification"]["reason"] == "no verification script"
        assert steps["security"]["reason"] == "--skip-security"
        assert steps["wait-ci"]["reason"] == "--skip-ci"
        assert steps["cleanup"]["status"] == "completed"
        git.push_branch.assert_called_once_with("feature/login")

    @patch("gpm.commands.ship.GitHubClient")
    @patch("gpm.commands.ship.GitOperations")
    def test_security_disabled_in_config(
        self, mock_git_class, mock_client_class, project, git, github
    ):
        """Should skip security when security.enabled is false."""
        (project / ".gpm.yml").write_text("security:\n  enabled: false\n")
        mock_git_class.return_value = git
        mock_client_class.return_value.__enter__.return_value = github

        result = runner.invoke(app, ["ship", "--skip-ci", "--json"])

        steps = {s["name"]: s for s in json.loads(result.stdout)["data"]["execution"]["steps"]}
        assert steps["security"]["reason"] == "security.enabled disabled"
