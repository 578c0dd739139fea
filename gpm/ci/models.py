"""Data models for CI check polling.

Checks are normalized from two GitHub sources (check runs and legacy commit
statuses) into ``CheckRun`` values, tallied into a ``CheckAggregate`` on every
poll tick, and resolved by the poller into a ``CheckResult``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

PASSING_CONCLUSIONS = frozenset({"success", "neutral", "skipped"})
FAILING_CONCLUSIONS = frozenset(
    {"failure", "timed_out", "cancelled", "action_required", "startup_failure", "stale"}
)


class AggregateState(str, Enum):
    """Derived state of a check aggregate."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    UNKNOWN_EMPTY = "unknown-empty"


class PollState(str, Enum):
    """Poller state machine states."""

    POLLING = "POLLING"
    ZERO_CHECKS_GRACE = "ZERO_CHECKS_GRACE"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    TIMED_OUT = "TIMED_OUT"


class Outcome(str, Enum):
    """Terminal outcome of a CI wait."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


class CheckErrorType(str, Enum):
    """Kind of problem a failing CI check reports."""

    TEST_FAILURE = "test_failure"
    LINTING_ERROR = "linting_error"
    TYPE_ERROR = "type_error"
    SECURITY_ISSUE = "security_issue"
    BUILD_ERROR = "build_error"
    FORMAT_ERROR = "format_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CheckRun:
    """A single CI check reported against a commit."""

    name: str
    status: str = "completed"
    conclusion: Optional[str] = None
    url: Optional[str] = None
    title: str = ""
    summary: str = ""
    text: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status != "completed"

    @property
    def is_failed(self) -> bool:
        return not self.is_pending and self.conclusion in FAILING_CONCLUSIONS

    @property
    def is_passed(self) -> bool:
        return not self.is_pending and not self.is_failed

    @classmethod
    def from_check_run(cls, data: dict[str, Any]) -> CheckRun:
        """Build from a GitHub check-run payload."""
        output = data.get("output") or {}
        return cls(
            name=data.get("name", ""),
            status=data.get("status") or "queued",
            conclusion=data.get("conclusion"),
            url=data.get("html_url") or data.get("details_url"),
            title=output.get("title") or "",
            summary=output.get("summary") or "",
            text=output.get("text") or "",
        )

    @classmethod
    def from_commit_status(cls, data: dict[str, Any]) -> CheckRun:
        """Build from a GitHub commit-status payload."""
        state = data.get("state", "pending")
        if state == "pending":
            status, conclusion = "in_progress", None
        elif state == "success":
            status, conclusion = "completed", "success"
        else:
            # "failure" and "error"
            status, conclusion = "completed", "failure"
        return cls(
            name=data.get("context", ""),
            status=status,
            conclusion=conclusion,
            url=data.get("target_url"),
            summary=data.get("description") or "",
        )


@dataclass(frozen=True)
class CheckAggregate:
    """Pass/fail/pending tally across all checks for one commit.

    ``skipped`` counts passed checks that concluded as skipped or neutral; it
    is not a separate bucket, so ``passed + failed + pending == total``.
    """

    total: int = 0
    passed: int = 0
    failed: int = 0
    pending: int = 0
    skipped: int = 0
    checks: tuple[CheckRun, ...] = ()

    def __post_init__(self) -> None:
        if min(self.total, self.passed, self.failed, self.pending, self.skipped) < 0:
            raise ValueError("Check counts must be non-negative")
        if self.passed + self.failed + self.pending != self.total:
            raise ValueError(
                f"Inconsistent check counts: passed={self.passed} failed={self.failed} "
                f"pending={self.pending} total={self.total}"
            )

    @property
    def state(self) -> AggregateState:
        if self.total == 0:
            return AggregateState.UNKNOWN_EMPTY
        if self.failed > 0:
            return AggregateState.FAILURE
        if self.pending > 0:
            return AggregateState.PENDING
        return AggregateState.SUCCESS

    @property
    def failed_checks(self) -> tuple[CheckRun, ...]:
        return tuple(check for check in self.checks if check.is_failed)

    @property
    def passed_names(self) -> frozenset[str]:
        return frozenset(check.name for check in self.checks if check.is_passed)

    @property
    def failed_names(self) -> frozenset[str]:
        return frozenset(check.name for check in self.failed_checks)

    @classmethod
    def from_checks(cls, checks: Iterable[CheckRun]) -> CheckAggregate:
        checks = tuple(checks)
        return cls(
            total=len(checks),
            passed=sum(1 for c in checks if c.is_passed),
            failed=sum(1 for c in checks if c.is_failed),
            pending=sum(1 for c in checks if c.is_pending),
            skipped=sum(
                1 for c in checks if c.is_passed and c.conclusion in ("skipped", "neutral")
            ),
            checks=checks,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "pending": self.pending,
            "skipped": self.skipped,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Progress emitted by the poller on every tick."""

    elapsed_ms: int
    total: int
    passed: int
    failed: int
    pending: int
    no_checks_yet: bool = False
    new_failures: tuple[str, ...] = ()
    new_passes: tuple[str, ...] = ()


@dataclass(frozen=True)
class FailureDetail:
    """Actionable information about one failing check."""

    check_name: str
    check_type: CheckErrorType
    summary: str
    affected_files: tuple[str, ...] = ()
    suggested_fix: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkName": self.check_name,
            "checkType": self.check_type.value,
            "summary": self.summary,
            "affectedFiles": list(self.affected_files),
            "suggestedFix": self.suggested_fix,
            "url": self.url,
        }


@dataclass(frozen=True)
class PollStrategy:
    """Interval schedule between poll ticks, in seconds."""

    kind: str = "exponential"
    initial_interval: float = 5.0
    max_interval: float = 30.0
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.kind not in ("exponential", "fixed"):
            raise ValueError(f"Invalid poll strategy: {self.kind}. Use 'exponential' or 'fixed'")
        if self.initial_interval <= 0 or self.max_interval < self.initial_interval:
            raise ValueError("Poll intervals must satisfy 0 < initial_interval <= max_interval")
        if self.multiplier < 1:
            raise ValueError("Poll multiplier must be >= 1")

    def next_interval(self, current: float) -> float:
        if self.kind == "fixed":
            return self.initial_interval
        return min(current * self.multiplier, self.max_interval)


@dataclass
class WaitOptions:
    """Options for a single ``wait_for_checks`` call."""

    timeout: float = 30 * 60.0
    grace_period: float = 20.0
    strategy: PollStrategy = field(default_factory=PollStrategy)
    fail_fast: bool = True
    max_fetch_retries: int = 3
    fetch_retry_delay: float = 1.0
    retry_flaky: bool = False
    max_flaky_retries: int = 3
    flaky_retry_delay: float = 5.0
    on_progress: Optional[Callable[[ProgressEvent], None]] = None


@dataclass(frozen=True)
class CheckResult:
    """Resolved state of a CI wait."""

    outcome: Outcome
    aggregate: Optional[CheckAggregate]
    duration_ms: int
    no_checks_configured: bool = False
    failures: tuple[FailureDetail, ...] = ()
    ticks: int = 0
    flaky_retries: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == Outcome.SUCCESS
