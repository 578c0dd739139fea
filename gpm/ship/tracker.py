"""Execution tracking for the ship workflow.

The tracker owns an append-only log of ``ExecutionStep`` records. Each phase
is started, then completed, skipped or failed exactly once; ``finish()``
freezes the log into an ``ExecutionSummary``.

Durations and the total use a monotonic clock; start/end timestamps use the
wall clock. Both are injectable so tests can drive time deterministically.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Optional

from gpm.ship.models import ErrorKind, ExecutionStep, ExecutionSummary, StepStatus

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _iso(moment: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision and a Z suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class StepHandle:
    """Opaque reference to an in-progress step."""

    index: int
    name: str
    started: float


class ExecutionTracker:
    """Records workflow steps in chronological start order."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ):
        """Initialize the tracker and stamp the start time.

        Args:
            clock: Monotonic seconds, used for durations
            now: Wall clock returning aware datetimes, used for timestamps
        """
        self._clock = clock
        self._now = now
        self._steps: list[ExecutionStep] = []
        self._step_starts: dict[int, float] = {}
        self._started = clock()
        self._started_at = now()
        self._summary: Optional[ExecutionSummary] = None

    @property
    def steps(self) -> tuple[ExecutionStep, ...]:
        return tuple(self._steps)

    def _elapsed_ms(self, since: float) -> int:
        return max(0, int((self._clock() - since) * 1000))

    def _ensure_open(self) -> None:
        if self._summary is not None:
            raise ValueError("Execution already finished")

    def _in_progress(self, handle: StepHandle) -> ExecutionStep:
        step = self._steps[handle.index]
        if step.is_terminal:
            raise ValueError(
                f"Step '{handle.name}' already finalized as {step.status.value}"
            )
        return step

    def start_step(self, name: str) -> StepHandle:
        """Append an in-progress step and return its handle."""
        self._ensure_open()
        started = self._clock()
        self._steps.append(ExecutionStep(name=name))
        self._step_starts[len(self._steps) - 1] = started
        logger.debug(f"Step started: {name}")
        return StepHandle(index=len(self._steps) - 1, name=name, started=started)

    def complete_step(self, handle: StepHandle) -> ExecutionStep:
        """Mark a started step completed.

        Raises:
            ValueError: If the step is already terminal
        """
        step = self._in_progress(handle)
        step.status = StepStatus.COMPLETED
        step.duration_ms = self._elapsed_ms(handle.started)
        logger.debug(f"Step completed: {step.name} ({step.duration_ms}ms)")
        return step

    def skip_step(self, name: str, reason: str) -> ExecutionStep:
        """Append a skipped step. Skipped steps carry no duration."""
        self._ensure_open()
        if not reason:
            raise ValueError("A skipped step requires a reason")
        step = ExecutionStep(name=name, status=StepStatus.SKIPPED, reason=reason)
        self._steps.append(step)
        logger.debug(f"Step skipped: {name} ({reason})")
        return step

    def fail_step(
        self, handle: StepHandle, reason: str, kind: Optional[ErrorKind] = None
    ) -> ExecutionStep:
        """Mark a started step failed.

        Raises:
            ValueError: If the step is already terminal
        """
        step = self._in_progress(handle)
        step.status = StepStatus.FAILED
        step.duration_ms = self._elapsed_ms(handle.started)
        step.reason = reason or "failed"
        step.error_kind = kind
        logger.debug(f"Step failed: {step.name} ({step.reason})")
        return step

    def finish(self) -> ExecutionSummary:
        """Freeze the log into a summary.

        Idempotent: later calls return the same summary. Steps still in
        progress are failed with reason ``interrupted``.
        """
        if self._summary is not None:
            return self._summary

        for index, step in enumerate(self._steps):
            if not step.is_terminal:
                step.status = StepStatus.FAILED
                step.reason = INTERRUPTED
                step.duration_ms = self._elapsed_ms(self._step_starts[index])
                logger.warning(f"Step interrupted: {step.name}")

        self._summary = ExecutionSummary(
            steps=tuple(self._steps),
            total_duration_ms=self._elapsed_ms(self._started),
            started_at=_iso(self._started_at),
            completed_at=_iso(self._now()),
        )
        return self._summary
