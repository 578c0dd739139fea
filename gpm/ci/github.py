"""GitHub REST API client using httpx.

Covers the narrow slice of the API the ship workflow needs: pull-request
lookup, creation and merge, branch deletion, and check-status queries for a
commit. Every HTTP or transport failure surfaces as ``GitHubAPIError``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from gpm.ci.models import CheckAggregate, CheckRun

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class GitHubAPIError(Exception):
    """Exception raised when a GitHub API call fails.

    Attributes:
        status_code: HTTP status, or None when the request never got a response
        network: True for transport-level failures (DNS, connection, timeout)
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, network: bool = False
    ):
        super().__init__(message)
        self.status_code = status_code
        self.network = network


@dataclass(frozen=True)
class PullRequest:
    """The parts of a pull request the workflow uses."""

    number: int
    url: str
    head_ref: str = ""
    head_sha: str = ""
    state: str = "open"
    merged: bool = False
    mergeable: Optional[bool] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PullRequest:
        head = data.get("head") or {}
        return cls(
            number=data["number"],
            url=data.get("html_url", ""),
            head_ref=head.get("ref", ""),
            head_sha=head.get("sha", ""),
            state=data.get("state", "open"),
            merged=bool(data.get("merged", False)),
            mergeable=data.get("mergeable"),
        )


def parse_repo_slug(remote_url: str) -> tuple[str, str]:
    """Extract (owner, repo) from a GitHub remote URL.

    Handles ``git@github.com:owner/repo.git``, ``https://github.com/owner/repo``
    and ``ssh://git@github.com/owner/repo.git`` forms.

    Raises:
        ValueError: If the URL is not a recognizable GitHub remote
    """
    match = re.search(r"github\.com[:/]+([^/]+)/([^/]+?)(?:\.git)?/?$", remote_url.strip())
    if not match:
        raise ValueError(f"Could not parse GitHub remote URL: {remote_url}")
    return match.group(1), match.group(2)


class GitHubClient:
    """Thin synchronous GitHub client for one repository."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            token: GitHub token (GITHUB_TOKEN or GH_TOKEN)
            owner: Repository owner
            repo: Repository name
            base_url: API root, overridable for GitHub Enterprise
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject MockTransport)
        """
        self.owner = owner
        self.repo = repo
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "gpm",
            },
        )

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and convert failures into GitHubAPIError."""
        logger.debug(f"GitHub {method} {path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise GitHubAPIError(
                f"Network error calling GitHub ({method} {path}): {e}", network=True
            ) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise GitHubAPIError(
                f"GitHub API error {response.status_code} ({method} {path}): {detail}",
                status_code=response.status_code,
            )
        return response

    def _repo_path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.repo}{suffix}"

    def get_pull_request(self, number: int) -> PullRequest:
        response = self._request("GET", self._repo_path(f"/pulls/{number}"))
        return PullRequest.from_api(response.json())

    def find_pull_request_for_branch(self, branch: str) -> Optional[PullRequest]:
        """Return the open pull request whose head is ``branch``, if any."""
        response = self._request(
            "GET",
            self._repo_path("/pulls"),
            params={"state": "open", "head": f"{self.owner}:{branch}"},
        )
        for data in response.json():
            pr = PullRequest.from_api(data)
            if pr.head_ref == branch:
                return pr
        return None

    def create_pull_request(
        self, title: str, head: str, base: str, body: str = "", draft: bool = False
    ) -> PullRequest:
        response = self._request(
            "POST",
            self._repo_path("/pulls"),
            json={"title": title, "head": head, "base": base, "body": body, "draft": draft},
        )
        pr = PullRequest.from_api(response.json())
        logger.info(f"Created pull request #{pr.number}: {pr.url}")
        return pr

    def merge_pull_request(
        self, number: int, method: str = "merge", sha: Optional[str] = None
    ) -> bool:
        """Merge a pull request.

        Returns:
            True if GitHub reports the pull request as merged
        """
        payload: dict[str, Any] = {"merge_method": method}
        if sha:
            payload["sha"] = sha
        response = self._request(
            "PUT", self._repo_path(f"/pulls/{number}/merge"), json=payload
        )
        return bool(response.json().get("merged", False))

    def delete_branch(self, branch: str) -> bool:
        """Delete a remote branch.

        This operation is idempotent - a branch that no longer exists is not
        an error.

        Returns:
            True if the branch was deleted, False if it was already gone
        """
        try:
            self._request("DELETE", self._repo_path(f"/git/refs/heads/{branch}"))
        except GitHubAPIError as e:
            if e.status_code in (404, 422):
                logger.info(f"Remote branch already deleted: {branch}")
                return False
            raise
        return True

    def list_check_runs(self, ref: str) -> list[dict[str, Any]]:
        response = self._request(
            "GET",
            self._repo_path(f"/commits/{ref}/check-runs"),
            params={"per_page": 100},
        )
        return response.json().get("check_runs", [])

    def list_commit_statuses(self, ref: str) -> list[dict[str, Any]]:
        response = self._request("GET", self._repo_path(f"/commits/{ref}/status"))
        return response.json().get("statuses", [])

    def fetch_check_aggregate(self, ref: str) -> CheckAggregate:
        """Tally check runs and commit statuses for a commit."""
        checks = [CheckRun.from_check_run(run) for run in self.list_check_runs(ref)]
        checks.extend(
            CheckRun.from_commit_status(status)
            for status in self.list_commit_statuses(ref)
        )
        return CheckAggregate.from_checks(checks)
