"""Git operations wrapper using subprocess for the ship workflow.

This module provides a GitOperations class that wraps the git porcelain the
ship orchestrator needs: branch and cleanliness inspection, push, checkout,
pull and local branch deletion.
"""

from __future__ import annotations

import subprocess
from typing import List, Optional


class GitError(Exception):
    """Exception raised when git operations fail."""

    pass


class GitOperations:
    """Wrapper for git subprocess commands with proper error handling."""

    def __init__(self, repo_path: Optional[str] = None):
        """Initialize GitOperations.

        Args:
            repo_path: Path to git repository. If None, uses current directory.
        """
        self.repo_path = repo_path

    def _run_git_command(
        self, args: List[str], check: bool = True, capture_output: bool = True
    ) -> subprocess.CompletedProcess:
        """Run a git command with proper error handling.

        Args:
            args: Git command arguments (e.g., ["git", "status"])
            check: Whether to raise exception on non-zero exit code
            capture_output: Whether to capture stdout/stderr

        Returns:
            CompletedProcess object with command results

        Raises:
            GitError: If command fails and check=True
        """
        try:
            result = subprocess.run(
                args,
                cwd=self.repo_path,
                capture_output=capture_output,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise GitError(f"Git executable not found: {e}") from e
        except OSError as e:
            raise GitError(f"Unexpected error running git command: {e}") from e

        if check and result.returncode != 0:
            raise GitError(
                f"Git command failed: {' '.join(args)}\n"
                f"Exit code: {result.returncode}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    def current_branch(self) -> str:
        """Return the checked-out branch name.

        Raises:
            GitError: If HEAD is detached or git fails
        """
        result = self._run_git_command(["git", "branch", "--show-current"])
        branch = result.stdout.strip()
        if not branch:
            raise GitError("HEAD is detached; check out a branch first")
        return branch

    def is_clean(self) -> bool:
        """Check whether the working tree has no uncommitted changes."""
        result = self._run_git_command(["git", "status", "--porcelain"])
        return not result.stdout.strip()

    def head_commit(self) -> str:
        result = self._run_git_command(["git", "rev-parse", "HEAD"])
        return result.stdout.strip()

    def default_branch(self) -> str:
        """Determine the remote's default branch.

        Reads refs/remotes/origin/HEAD, falling back to a local main or master
        branch, and finally to "main".
        """
        result = self._run_git_command(
            ["git", "symbolic-ref", "refs/remotes/origin/HEAD"], check=False
        )
        ref = result.stdout.strip()
        if result.returncode == 0 and ref.startswith("refs/remotes/origin/"):
            return ref[len("refs/remotes/origin/"):]

        branches = self._run_git_command(
            ["git", "branch", "--format=%(refname:short)"], check=False
        ).stdout.split()
        for candidate in ("main", "master"):
            if candidate in branches:
                return candidate
        return "main"

    def remote_url(self, remote: str = "origin") -> str:
        result = self._run_git_command(["git", "remote", "get-url", remote])
        return result.stdout.strip()

    def push_branch(self, branch_name: str) -> None:
        """Push branch to remote with upstream tracking.

        This operation is idempotent - if the branch is already pushed and
        up-to-date, it succeeds silently.

        Args:
            branch_name: Name of the branch to push

        Raises:
            GitError: If push fails
        """
        self._run_git_command(["git", "push", "-u", "origin", branch_name])

    def checkout(self, branch_name: str) -> None:
        self._run_git_command(["git", "checkout", branch_name])

    def pull(self) -> None:
        self._run_git_command(["git", "pull", "--ff-only"])

    def delete_branch(self, branch_name: str) -> None:
        """Force-delete a local branch.

        This operation is idempotent - if the branch doesn't exist, it succeeds
        silently.

        Raises:
            GitError: If deletion fails (except for non-existent branch)
        """
        result = self._run_git_command(
            ["git", "branch", "-D", branch_name], check=False
        )
        if result.returncode != 0 and "not found" not in result.stderr:
            raise GitError(
                f"Failed to delete local branch '{branch_name}': {result.stderr}"
            )
