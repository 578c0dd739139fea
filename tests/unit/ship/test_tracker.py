"""Unit tests for ExecutionTracker."""

from datetime import UTC, datetime, timedelta

import pytest

from gpm.ship.models import ErrorKind, StepStatus
from gpm.ship.tracker import ExecutionTracker


class FakeClocks:
    """Monotonic and wall clocks advanced together."""

    def __init__(self):
        self.mono = 100.0
        self.wall = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

    def monotonic(self) -> float:
        return self.mono

    def now(self) -> datetime:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.mono += seconds
        self.wall += timedelta(seconds=seconds)


@pytest.fixture
def clocks():
    return FakeClocks()


@pytest.fixture
def tracker(clocks):
    return ExecutionTracker(clock=clocks.monotonic, now=clocks.now)


class TestStepLifecycle:
    """Test start/complete/skip/fail transitions."""

    def test_complete_step_records_duration(self, tracker, clocks):
        """Should set status and duration when a step completes."""
        handle = tracker.start_step("push")
        clocks.advance(1.25)
        step = tracker.complete_step(handle)

        assert step.status == StepStatus.COMPLETED
        assert step.duration_ms == 1250
        assert step.reason is None

    def test_skip_step_has_reason_and_no_duration(self, tracker):
        """Should append skipped steps without a duration."""
        step = tracker.skip_step("verification", "--skip-verify")

        assert step.status == StepStatus.SKIPPED
        assert step.duration_ms is None
        assert step.to_dict() == {
            "name": "verification",
            "status": "skipped",
            "reason": "--skip-verify",
        }

    def test_skip_requires_reason(self, tracker):
        """Should reject a skip without a reason."""
        with pytest.raises(ValueError):
            tracker.skip_step("verification", "")

    def test_fail_step_records_kind(self, tracker, clocks):
        """Should record reason and error kind on failure."""
        handle = tracker.start_step("wait-ci")
        clocks.advance(3)
        step = tracker.fail_step(handle, "2 CI check(s) failed", ErrorKind.CHECK_FAILURE)

        assert step.to_dict() == {
            "name": "wait-ci",
            "status": "failed",
            "durationMs": 3000,
            "reason": "2 CI check(s) failed",
            "errorKind": "check_failure",
        }

    def test_double_finalize_raises(self, tracker):
        """Should refuse to finalize a step twice."""
        handle = tracker.start_step("merge")
        tracker.complete_step(handle)

        with pytest.raises(ValueError, match="already finalized"):
            tracker.complete_step(handle)
        with pytest.raises(ValueError, match="already finalized"):
            tracker.fail_step(handle, "late failure")

    def test_interleaved_steps_keep_start_order(self, tracker, clocks):
        """Should keep append order even when steps finish out of order."""
        first = tracker.start_step("security")
        second = tracker.start_step("verification")
        clocks.advance(1)
        tracker.complete_step(second)
        tracker.complete_step(first)

        assert [step.name for step in tracker.steps] == ["security", "verification"]


class TestFinish:
    """Test summary creation."""

    def test_summary_preserves_order_and_bounds_total(self, tracker, clocks):
        """Should preserve call order and have total >= sum of durations."""
        tracker.skip_step("verification", "--skip-verify")
        for name, seconds in (("push", 0.4567), ("create-pr", 1.2), ("wait-ci", 20.0009)):
            handle = tracker.start_step(name)
            clocks.advance(seconds)
            tracker.complete_step(handle)
            clocks.advance(0.01)

        summary = tracker.finish()

        assert [step.name for step in summary.steps] == [
            "verification",
            "push",
            "create-pr",
            "wait-ci",
        ]
        durations = [s.duration_ms for s in summary.steps if s.duration_ms is not None]
        assert summary.total_duration_ms >= sum(durations)

    def test_timestamps_are_utc_iso(self, tracker, clocks):
        """Should stamp start and end as ISO-8601 UTC with a Z suffix."""
        clocks.advance(2)
        summary = tracker.finish()

        assert summary.started_at == "2024-05-01T12:00:00.000Z"
        assert summary.completed_at == "2024-05-01T12:00:02.000Z"
        assert summary.total_duration_ms == 2000

    def test_finish_is_idempotent(self, tracker, clocks):
        """Should return the same summary on repeated calls."""
        first = tracker.finish()
        clocks.advance(5)
        assert tracker.finish() is first

    def test_in_progress_steps_are_interrupted(self, tracker, clocks):
        """Should fail steps still running at finish with reason interrupted."""
        tracker.start_step("wait-ci")
        clocks.advance(4)
        summary = tracker.finish()

        step = summary.step("wait-ci")
        assert step.status == StepStatus.FAILED
        assert step.reason == "interrupted"
        assert step.duration_ms == 4000
        assert all(s.is_terminal for s in summary.steps)

    def test_no_steps_after_finish(self, tracker):
        """Should reject new steps once the summary is frozen."""
        tracker.finish()
        with pytest.raises(ValueError, match="already finished"):
            tracker.start_step("merge")

    def test_to_dict_shape(self, tracker):
        """Should serialize with camelCase keys."""
        tracker.skip_step("cleanup", "--no-delete-branch")
        data = tracker.finish().to_dict()

        assert set(data) == {"steps", "totalDurationMs", "startedAt", "completedAt"}
        assert data["steps"] == [
            {"name": "cleanup", "status": "skipped", "reason": "--no-delete-branch"}
        ]
