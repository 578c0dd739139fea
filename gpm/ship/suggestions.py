"""Remediation text for classified failures.

Pure lookup and templating: no I/O, no side effects. A missing suggestion is
a valid answer and is returned as None.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from gpm.ci.models import CheckErrorType
from gpm.ship.models import ErrorKind


class SuggestionEngine:
    """Maps error kinds (and failing CI check types) to actionable advice."""

    def suggest(
        self, kind: ErrorKind, context: Optional[Mapping[str, Any]] = None
    ) -> Optional[str]:
        """Return remediation text for an error kind.

        Args:
            kind: Classified error kind
            context: Optional fields used in templates: ``failed_checks``
                (list of names), ``timeout_minutes``, ``flag`` (the CLI flag
                that bypasses the failing phase), ``operation``, ``pr_url``

        Returns:
            Suggestion string, or None when there is nothing useful to say
        """
        context = context or {}

        if kind == ErrorKind.AUTH_FAILURE:
            return (
                "Set GITHUB_TOKEN or GH_TOKEN to a token with 'repo' scope "
                "and check your git credentials"
            )

        if kind == ErrorKind.NETWORK_FAILURE:
            return "Check your network connection and GitHub status, then re-run the command"

        if kind == ErrorKind.CHECK_FAILURE:
            failed = context.get("failed_checks") or []
            where = f" at {context['pr_url']}" if context.get("pr_url") else ""
            if failed:
                names = ", ".join(failed)
                return f"Fix the failing checks ({names}){where}, push, and ship again"
            return f"Review the failed checks{where}, push a fix, and ship again"

        if kind == ErrorKind.VERIFICATION_FAILURE:
            return _with_flag(
                "Fix the verification errors locally and commit the changes",
                context.get("flag", "--skip-verify"),
            )

        if kind == ErrorKind.SECURITY_FAILURE:
            return _with_flag(
                "Remove committed secrets and update vulnerable dependencies",
                context.get("flag", "--skip-security"),
            )

        if kind == ErrorKind.TIMEOUT:
            minutes = context.get("timeout_minutes")
            if minutes:
                return (
                    f"CI did not finish within {minutes:g} minutes; raise ci.timeout "
                    "in .gpm.yml or check for stuck jobs"
                )
            return "Raise ci.timeout in .gpm.yml or check for stuck CI jobs"

        operation = context.get("operation")
        if operation == "merge":
            return "Check branch protection rules, required reviews and merge conflicts"
        if operation == "preflight":
            return "Ship from a feature branch with a clean working tree (commit or stash changes)"
        if operation == "cleanup":
            return "The PR is merged; delete the branch and switch to the default branch manually"

        return None

    def suggest_for_check(
        self,
        check_type: CheckErrorType,
        affected_files: Sequence[str] = (),
        summary: str = "",
    ) -> Optional[str]:
        """Return a command likely to reproduce or fix a failing CI check."""
        files = " ".join(affected_files)
        has_python = any(f.endswith(".py") for f in affected_files)
        has_node = any(f.endswith((".ts", ".tsx", ".js", ".jsx")) for f in affected_files)

        if check_type == CheckErrorType.TEST_FAILURE:
            if has_python:
                return f"pytest {files} -v"
            if has_node:
                return f"npm test -- {files}"
            return "Run the test suite locally with verbose output"

        if check_type == CheckErrorType.LINTING_ERROR:
            if has_python:
                return f"ruff check --fix {files}"
            return "npm run lint -- --fix"

        if check_type == CheckErrorType.TYPE_ERROR:
            return f"mypy {files}" if has_python else "npm run typecheck"

        if check_type == CheckErrorType.FORMAT_ERROR:
            return f"black {files}" if has_python else "npm run format"

        if check_type == CheckErrorType.BUILD_ERROR:
            return "Run the build locally and fix compilation errors"

        if check_type == CheckErrorType.SECURITY_ISSUE:
            text = summary.lower()
            if "secret" in text:
                return "Review and remove secrets from code"
            if "dependency" in text or "vulnerab" in text:
                return "Update vulnerable dependencies (pip-audit --fix or npm audit fix)"
            if "codeql" in text:
                return "Review CodeQL findings at the check details URL"
            return "Review security scan findings"

        return None


def _with_flag(message: str, flag: Optional[str]) -> str:
    if flag:
        return f"{message} (or re-run with {flag} to bypass)"
    return message
