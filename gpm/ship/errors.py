"""Workflow exceptions and the error classifiers.

``ErrorClassifier`` maps any raw failure (exception or message) onto the
closed ``ErrorKind`` taxonomy. ``CheckClassifier`` maps a failing CI check
onto a ``CheckErrorType`` so the suggestion engine can propose a fix.

Both are deterministic and total: unrecognized input maps to UNKNOWN, and
classification never raises.
"""

from __future__ import annotations

import subprocess
from typing import Any, Optional, Sequence

import httpx

from gpm.ci.github import GitHubAPIError
from gpm.ci.models import CheckAggregate, CheckErrorType, CheckRun, FailureDetail
from gpm.ship.git_operations import GitError
from gpm.ship.models import ClassifiedError, ErrorKind


class WorkflowError(Exception):
    """Base class for failures raised by ship workflow phases."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class PreflightError(WorkflowError):
    """Raised when the repository is not in a shippable state."""


class VerificationError(WorkflowError):
    """Raised when the local verification script fails."""


class SecurityScanError(WorkflowError):
    """Raised when the security scan reports blockers."""


class CheckFailureError(WorkflowError):
    """Raised when one or more CI checks failed."""

    def __init__(
        self,
        message: str,
        failures: Sequence[FailureDetail] = (),
        aggregate: Optional[CheckAggregate] = None,
    ):
        super().__init__(message, {"failedChecks": [f.check_name for f in failures]})
        self.failures = tuple(failures)
        self.aggregate = aggregate


class CITimeoutError(WorkflowError):
    """Raised when CI checks did not resolve before the deadline."""

    def __init__(
        self, message: str, timeout: float, aggregate: Optional[CheckAggregate] = None
    ):
        super().__init__(message, {"timeout": timeout})
        self.timeout = timeout
        self.aggregate = aggregate


class MergeError(WorkflowError):
    """Raised when GitHub refuses to merge the pull request."""


AUTH_MARKERS = (
    "authentication failed",
    "bad credentials",
    "permission denied",
    "could not read username",
    "requires authentication",
    "invalid username or password",
)

NETWORK_MARKERS = (
    "could not resolve host",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "timed out",
    "temporary failure in name resolution",
    "econnreset",
)

# Failure text of checks that may pass when re-run.
RETRYABLE_CHECK_MARKERS = ("flaky", "timeout", *NETWORK_MARKERS)

TYPED_KINDS: tuple[tuple[type, ErrorKind], ...] = (
    (VerificationError, ErrorKind.VERIFICATION_FAILURE),
    (SecurityScanError, ErrorKind.SECURITY_FAILURE),
    (CheckFailureError, ErrorKind.CHECK_FAILURE),
    (CITimeoutError, ErrorKind.TIMEOUT),
)


class ErrorClassifier:
    """Maps raw failures to an ErrorKind.

    Precedence: typed workflow exceptions, then HTTP status codes, then
    transport exceptions, then message substrings. The first rule that
    matches wins, so a given input always yields the same kind.
    """

    def classify(self, raw: BaseException | str) -> ErrorKind:
        if isinstance(raw, BaseException):
            for error_type, kind in TYPED_KINDS:
                if isinstance(raw, error_type):
                    return kind

            if isinstance(raw, GitHubAPIError):
                kind = self._classify_status(raw.status_code, str(raw))
                if kind is not None:
                    return kind
                if raw.network:
                    return ErrorKind.NETWORK_FAILURE

            if isinstance(raw, (httpx.TransportError, ConnectionError, TimeoutError)):
                return ErrorKind.NETWORK_FAILURE

        return self._classify_message(self._message_of(raw))

    def classify_error(
        self, raw: BaseException | str, suggestion: Optional[str] = None
    ) -> ClassifiedError:
        """Classify and wrap the raw failure, preserving its message."""
        return ClassifiedError(
            kind=self.classify(raw),
            raw_message=self._message_of(raw),
            suggestion=suggestion,
        )

    def _classify_status(self, status: Optional[int], message: str) -> Optional[ErrorKind]:
        if status is None:
            return None
        if status == 401:
            return ErrorKind.AUTH_FAILURE
        if status == 403:
            if "rate limit" in message.lower():
                return ErrorKind.NETWORK_FAILURE
            return ErrorKind.AUTH_FAILURE
        if status in (408, 429) or status >= 500:
            return ErrorKind.NETWORK_FAILURE
        return None

    def _classify_message(self, message: str) -> ErrorKind:
        text = message.lower()
        if any(marker in text for marker in AUTH_MARKERS):
            return ErrorKind.AUTH_FAILURE
        if any(marker in text for marker in NETWORK_MARKERS):
            return ErrorKind.NETWORK_FAILURE
        return ErrorKind.UNKNOWN

    @staticmethod
    def _message_of(raw: BaseException | str) -> str:
        if isinstance(raw, subprocess.CalledProcessError):
            output = raw.stderr or raw.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            return f"{raw} {output}".strip()
        if isinstance(raw, BaseException):
            return str(raw) or raw.__class__.__name__
        return str(raw)

    def is_transient(self, raw: BaseException) -> bool:
        """True if the failure is worth retrying (network-class errors)."""
        return self.classify(raw) == ErrorKind.NETWORK_FAILURE


# Checked in order; "tsc" appears in both type and build keywords and the
# earlier type rule wins.
CHECK_KEYWORDS: tuple[tuple[CheckErrorType, tuple[str, ...]], ...] = (
    (CheckErrorType.TEST_FAILURE, ("test", "spec", "pytest", "jest", "mocha", "unittest", "vitest")),
    (CheckErrorType.LINTING_ERROR, ("lint", "eslint", "pylint", "flake8", "ruff")),
    (CheckErrorType.TYPE_ERROR, ("type", "typecheck", "mypy", "typescript", "tsc")),
    (CheckErrorType.SECURITY_ISSUE, ("security", "codeql", "secret", "vuln", "dependency")),
    (CheckErrorType.BUILD_ERROR, ("build", "compile", "webpack", "babel", "rollup", "vite")),
    (CheckErrorType.FORMAT_ERROR, ("format", "prettier", "black", "autopep8")),
)


class CheckClassifier:
    """Classifies a failing CI check by keywords in its name and output."""

    def classify(self, check: CheckRun) -> CheckErrorType:
        haystacks = (check.name.lower(), check.summary.lower(), check.title.lower())
        for check_type, keywords in CHECK_KEYWORDS:
            if any(kw in text for kw in keywords for text in haystacks):
                return check_type
        return CheckErrorType.UNKNOWN

    def is_retryable(self, check: CheckRun) -> bool:
        """True if the check looks like it failed for reasons outside the code."""
        if check.conclusion == "timed_out":
            return True
        text = " ".join((check.title, check.summary)).lower()
        return any(marker in text for marker in RETRYABLE_CHECK_MARKERS)


__all__ = [
    "CITimeoutError",
    "CheckClassifier",
    "CheckFailureError",
    "ErrorClassifier",
    "GitError",
    "GitHubAPIError",
    "MergeError",
    "PreflightError",
    "SecurityScanError",
    "VerificationError",
    "WorkflowError",
]
