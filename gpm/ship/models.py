"""Data models for the ship workflow.

This module holds the execution record (steps and summary), the closed error
taxonomy, and the configuration/outcome values exchanged between the ship
orchestrator, the output formatter and the CLI commands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from gpm.ci.models import PollStrategy


class StepStatus(str, Enum):
    """Terminal statuses of an execution step."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Closed taxonomy of workflow failures."""

    AUTH_FAILURE = "auth_failure"
    NETWORK_FAILURE = "network_failure"
    CHECK_FAILURE = "check_failure"
    VERIFICATION_FAILURE = "verification_failure"
    SECURITY_FAILURE = "security_failure"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass
class ExecutionStep:
    """A single workflow phase in the execution log.

    ``status`` is None while the step is in progress. Once a terminal status
    is set the tracker never touches the step again.
    """

    name: str
    status: Optional[StepStatus] = None
    duration_ms: Optional[int] = None
    reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stable JSON shape (optional keys omitted)."""
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value if self.status else None,
        }
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        if self.reason is not None:
            data["reason"] = self.reason
        if self.error_kind is not None:
            data["errorKind"] = self.error_kind.value
        return data


@dataclass(frozen=True)
class ExecutionSummary:
    """Frozen execution record emitted once at workflow end."""

    steps: tuple[ExecutionStep, ...]
    total_duration_ms: int
    started_at: str
    completed_at: str

    def step(self, name: str) -> Optional[ExecutionStep]:
        """Return the first step with the given name, if any."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "totalDurationMs": self.total_duration_ms,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped onto the error taxonomy."""

    kind: ErrorKind
    raw_message: str
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.raw_message,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class ShipConfig:
    """Explicit configuration for one ship run.

    Built from ``.gpm.yml`` defaults overridden by CLI flags; the orchestrator
    reads nothing else from the environment.
    """

    skip_verify: bool = False
    skip_security: bool = False
    skip_ci: bool = False
    wait_for_checks: bool = True
    fail_fast: bool = True
    delete_branch: bool = True
    draft: bool = False
    title: Optional[str] = None
    merge_method: str = "merge"
    json_output: bool = False
    ci_timeout: float = 30 * 60.0
    grace_period: float = 20.0
    poll_strategy: PollStrategy = field(default_factory=PollStrategy)
    max_fetch_retries: int = 3
    retry_flaky: bool = False
    max_flaky_retries: int = 3


@dataclass(frozen=True)
class ShipOutcome:
    """What happened to the pull request."""

    success: bool
    branch: Optional[str] = None
    default_branch: Optional[str] = None
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    merged: bool = False
    branch_deleted: bool = False
    no_checks_configured: bool = False
    error: Optional[ClassifiedError] = None


@dataclass(frozen=True)
class ShipResult:
    """Outcome plus the frozen execution summary."""

    outcome: ShipOutcome
    summary: ExecutionSummary
