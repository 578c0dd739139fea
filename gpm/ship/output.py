"""Rendering of ship progress and results.

Human mode prints incremental lines through a rich Console. JSON mode prints
nothing until the final document, then writes exactly one JSON object to
stdout so callers (scripts, agents) can parse the whole stream.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Optional, Sequence, TextIO, Union

from rich.console import Console
from rich.markup import escape

from gpm.ci.models import (
    CheckAggregate,
    CheckErrorType,
    CheckResult,
    FailureDetail,
    ProgressEvent,
)
from gpm.ship.models import ExecutionStep, ExecutionSummary, ShipOutcome, StepStatus

NO_CHECKS_CONFIGURED = "No CI checks configured"
NO_CHECKS_YET = "No CI checks registered yet"

STEP_ICONS = {
    StepStatus.COMPLETED: "[green]✓[/green]",
    StepStatus.SKIPPED: "[yellow]⊘[/yellow]",
    StepStatus.FAILED: "[red]✗[/red]",
}

CHECK_ICONS = {
    CheckErrorType.TEST_FAILURE: "🧪",
    CheckErrorType.LINTING_ERROR: "📝",
    CheckErrorType.TYPE_ERROR: "🔤",
    CheckErrorType.SECURITY_ISSUE: "🔒",
    CheckErrorType.BUILD_ERROR: "🔨",
    CheckErrorType.FORMAT_ERROR: "✨",
}

MAX_FILES_SHOWN = 5


def _clock_text(elapsed_ms: int) -> str:
    seconds = elapsed_ms // 1000
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def result_document(
    summary: ExecutionSummary, outcome: ShipOutcome, warnings: Sequence[str] = ()
) -> dict[str, Any]:
    """Build the stable ship result document.

    ``error`` is present only on failure, ``warnings`` only when there are any.
    """
    document: dict[str, Any] = {
        "success": outcome.success,
        "data": {
            "merged": outcome.merged,
            "prNumber": outcome.pr_number,
            "prUrl": outcome.pr_url,
            "branch": outcome.branch,
            "defaultBranch": outcome.default_branch,
            "branchDeleted": outcome.branch_deleted,
            "execution": summary.to_dict(),
        },
    }
    if not outcome.success and outcome.error is not None:
        document["error"] = outcome.error.to_dict()
    if warnings:
        document["warnings"] = list(warnings)
    return document


class OutputFormatter:
    """Renders tracker steps, poller progress and final results.

    Attributes:
        json_mode: When True, only the final document is written
        warnings: Warnings received in JSON mode, included in the document
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        json_mode: bool = False,
        stream: Optional[TextIO] = None,
    ):
        self.console = console or Console()
        self.json_mode = json_mode
        self._stream = stream
        self._last_progress: Optional[tuple] = None
        self._document_written = False
        self.warnings: list[str] = []

    def render_progress(self, event: ProgressEvent) -> None:
        """Print one poll tick; repeated identical ticks are shown once."""
        if self.json_mode:
            return

        key = (event.total, event.passed, event.failed, event.pending, event.no_checks_yet)
        if key == self._last_progress and not event.new_failures and not event.new_passes:
            return
        self._last_progress = key

        stamp = f"[dim]\\[{_clock_text(event.elapsed_ms)}][/dim]"
        if event.no_checks_yet:
            self.console.print(f"{stamp} [yellow]⏳ {NO_CHECKS_YET}[/yellow]")
            return

        done = event.passed + event.failed
        self.console.print(f"{stamp} {done}/{event.total} checks completed")
        for name in event.new_passes:
            self.console.print(f"  [green]✓[/green] {escape(name)}")
        for name in event.new_failures:
            self.console.print(f"  [red]✗[/red] {escape(name)}")
        if event.pending > 0:
            self.console.print(f"  [dim]⏳ {event.pending} in progress...[/dim]")

    def render_step(self, step: ExecutionStep) -> None:
        if self.json_mode or step.status is None:
            return
        line = f"{STEP_ICONS[step.status]} {escape(step.name)}"
        if step.duration_ms is not None:
            line += f" [dim]({step.duration_ms / 1000:.1f}s)[/dim]"
        if step.reason:
            line += f" [dim]- {escape(step.reason)}[/dim]"
        self.console.print(line)

    def render_warning(self, message: str) -> None:
        if self.json_mode:
            self.warnings.append(message)
            return
        self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def render_result(
        self, summary: ExecutionSummary, outcome: ShipOutcome
    ) -> dict[str, Any]:
        """Render the final result and return the result document.

        Raises:
            RuntimeError: In JSON mode, if a document was already written
        """
        document = result_document(summary, outcome, self.warnings)
        if self.json_mode:
            self.write_json(document)
            return document

        self.console.print()
        if outcome.success:
            if outcome.no_checks_configured:
                self.console.print(f"[yellow]⚠ {NO_CHECKS_CONFIGURED}[/yellow]")
            if outcome.merged:
                self.console.print(
                    f"[green]✓ Shipped:[/green] PR #{outcome.pr_number} merged into "
                    f"{escape(outcome.default_branch or '')}"
                )
            else:
                self.console.print("[green]✓ Ship workflow completed[/green]")
            if outcome.pr_url:
                self.console.print(f"[dim]{escape(outcome.pr_url)}[/dim]")
        else:
            error = outcome.error
            if error is not None:
                self.console.print(
                    f"[red]ERROR:[/red] ({error.kind.value}) {escape(error.raw_message)}"
                )
                if error.suggestion:
                    self.console.print(f"[yellow]Hint:[/yellow] {escape(error.suggestion)}")
            else:
                self.console.print("[red]✗ Ship workflow failed[/red]")

        self.console.print(
            f"[dim]Total: {summary.total_duration_ms / 1000:.1f}s across "
            f"{len(summary.steps)} steps[/dim]"
        )
        return document

    def render_check_summary(
        self,
        result: Union[CheckResult, CheckAggregate],
        failures: Optional[Sequence[FailureDetail]] = None,
    ) -> dict[str, Any]:
        """Render a CI check summary and return it as a document.

        Accepts either a resolved poller result or a one-off aggregate (with
        its failure details passed separately). Prints nothing in JSON mode.
        """
        if isinstance(result, CheckResult):
            aggregate = result.aggregate or CheckAggregate()
            no_checks = result.no_checks_configured or aggregate.total == 0
            failures = result.failures if failures is None else failures
        else:
            aggregate = result
            no_checks = aggregate.total == 0
            failures = failures or ()

        document = {
            **aggregate.to_dict(),
            "noChecksConfigured": no_checks,
            "failures": [failure.to_dict() for failure in failures],
        }
        if self.json_mode:
            return document

        if no_checks:
            self.console.print(f"[yellow]⚠ {NO_CHECKS_CONFIGURED}[/yellow]")
            return document

        if aggregate.failed > 0:
            self.console.print(
                f"[red]🔴 CI Checks Failed ({aggregate.failed}/{aggregate.total})[/red]"
            )
        elif aggregate.pending > 0:
            self.console.print(
                f"[yellow]⏳ CI Checks In Progress ({aggregate.total - aggregate.pending}/"
                f"{aggregate.total} completed)[/yellow]"
            )
        else:
            self.console.print(
                f"[green]✅ All CI Checks Passed ({aggregate.passed}/{aggregate.total})[/green]"
            )

        for failure in failures:
            icon = CHECK_ICONS.get(failure.check_type, "❌")
            self.console.print(
                f"  {icon} [bold]{escape(failure.check_name)}[/bold] ({failure.check_type.value})"
            )
            self.console.print(f"     Summary: {escape(failure.summary)}")
            if failure.affected_files:
                self.console.print("     Files affected:")
                for path in failure.affected_files[:MAX_FILES_SHOWN]:
                    self.console.print(f"       - {escape(path)}")
                extra = len(failure.affected_files) - MAX_FILES_SHOWN
                if extra > 0:
                    self.console.print(f"       ... and {extra} more")
            if failure.suggested_fix:
                self.console.print(
                    f"     Suggested fix: [cyan]{escape(failure.suggested_fix)}[/cyan]"
                )
            if failure.url:
                self.console.print(f"     Details: {escape(failure.url)}")

        if aggregate.passed:
            self.console.print(f"  [green]✓[/green] {aggregate.passed} check(s) passed")
        if aggregate.pending:
            self.console.print(f"  [dim]⏳ {aggregate.pending} check(s) in progress[/dim]")
        return document

    def write_json(self, document: dict[str, Any]) -> None:
        """Write the single JSON document for this run to stdout."""
        if self._document_written:
            raise RuntimeError("JSON result already written")
        self._document_written = True
        stream = self._stream or sys.stdout
        stream.write(json.dumps(document, indent=2) + "\n")
        stream.flush()
