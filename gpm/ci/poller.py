"""CI check poller.

``CIPoller.wait_for_checks`` drives a small state machine over repeated
check-status queries for one commit:

    POLLING -> SUCCESS | FAILURE | ZERO_CHECKS_GRACE | TIMED_OUT
    ZERO_CHECKS_GRACE -> POLLING (checks appeared) | SUCCESS (window elapsed)

With ``retry_flaky`` set, a failure whose failing checks all look retryable
(timeouts, network errors, "flaky" in their output) is polled again after a
delay, up to ``max_flaky_retries`` times, before it resolves FAILURE.

The loop is cooperative: fetch, evaluate, emit progress, sleep. Exactly one
status query is outstanding at a time, and the only clock the loop consults
is the injected one, so tests can replay any timeline with a fake clock and a
recording sleep.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from gpm.ci.cache import CheckStatusCache, make_key
from gpm.ci.github import GitHubAPIError
from gpm.ci.models import (
    CheckAggregate,
    CheckResult,
    FailureDetail,
    Outcome,
    PollState,
    ProgressEvent,
    WaitOptions,
)
from gpm.ship.errors import CheckClassifier, ErrorClassifier
from gpm.ship.suggestions import SuggestionEngine
from gpm.utils import extract_files

logger = logging.getLogger(__name__)

FETCH_ERRORS = (GitHubAPIError, httpx.TransportError, OSError)


class CIPoller:
    """Waits for the CI checks of a commit to reach a terminal state."""

    def __init__(
        self,
        fetch_aggregate: Callable[[str], CheckAggregate],
        repository: str = "",
        cache: Optional[CheckStatusCache] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        classifier: Optional[ErrorClassifier] = None,
        check_classifier: Optional[CheckClassifier] = None,
        suggestions: Optional[SuggestionEngine] = None,
    ):
        """Initialize the poller.

        Args:
            fetch_aggregate: Status query, usually GitHubClient.fetch_check_aggregate
            repository: "owner/repo", part of the cache key
            cache: Status cache; a 2s TTL cache on the same clock by default
            clock: Monotonic seconds
            sleep: Blocking sleep, replaced by a recorder in tests
            classifier: Decides which fetch errors are transient
            check_classifier: Classifies failing checks for reporting
            suggestions: Proposes fix commands for failing checks
        """
        self._fetch_aggregate = fetch_aggregate
        self.repository = repository
        self._clock = clock
        self._sleep = sleep
        self.cache = cache if cache is not None else CheckStatusCache(clock=clock)
        self._classifier = classifier or ErrorClassifier()
        self._check_classifier = check_classifier or CheckClassifier()
        self._suggestions = suggestions or SuggestionEngine()

    def get_check_status(self, ref: str) -> CheckAggregate:
        """Fetch the current aggregate once, bypassing the cache."""
        return self._fetch_aggregate(ref)

    def _fetch(self, ref: str, options: WaitOptions) -> CheckAggregate:
        """Fetch through the cache, retrying transient failures a few times."""
        key = make_key(self.repository, ref, "checks")
        attempt = 0
        while True:
            try:
                return self.cache.get(key, lambda: self._fetch_aggregate(ref))
            except FETCH_ERRORS as e:
                attempt += 1
                if attempt > options.max_fetch_retries or not self._classifier.is_transient(e):
                    raise
                logger.warning(
                    f"Check status query failed (attempt {attempt}/"
                    f"{options.max_fetch_retries}), retrying: {e}"
                )
                self._sleep(options.fetch_retry_delay)

    def _only_retryable_failures(self, aggregate: CheckAggregate) -> bool:
        failed = aggregate.failed_checks
        return bool(failed) and all(self._check_classifier.is_retryable(c) for c in failed)

    def describe_failures(self, aggregate: CheckAggregate) -> tuple[FailureDetail, ...]:
        """Build actionable details for every failing check in the aggregate."""
        details = []
        for check in aggregate.failed_checks:
            check_type = self._check_classifier.classify(check)
            files = tuple(extract_files("\n".join((check.summary, check.text))))
            details.append(
                FailureDetail(
                    check_name=check.name,
                    check_type=check_type,
                    summary=check.title or check.summary or f"Check {check.conclusion}",
                    affected_files=files,
                    suggested_fix=self._suggestions.suggest_for_check(
                        check_type, files, check.summary
                    ),
                    url=check.url,
                )
            )
        return tuple(details)

    def wait_for_checks(
        self, ref: str, options: Optional[WaitOptions] = None
    ) -> CheckResult:
        """Poll until the checks for ``ref`` succeed, fail or time out.

        Args:
            ref: Commit SHA (or ref) whose checks to watch
            options: Timeout, grace window, backoff, fail-fast, flaky retries
                and the progress callback

        Returns:
            CheckResult with the terminal outcome and the last aggregate

        Raises:
            GitHubAPIError: If a status query fails with a non-transient error
                or transient retries are exhausted
        """
        options = options or WaitOptions()
        strategy = options.strategy
        start = self._clock()
        deadline = start + options.timeout
        interval = strategy.initial_interval
        state = PollState.POLLING
        grace_started: Optional[float] = None
        previous: Optional[CheckAggregate] = None
        ticks = 0
        flaky_retries = 0

        def resolve(outcome: Outcome, aggregate: CheckAggregate, **extra) -> CheckResult:
            elapsed_ms = int((self._clock() - start) * 1000)
            logger.info(
                f"CI wait for {ref[:12]} resolved {outcome.value} after "
                f"{elapsed_ms}ms ({ticks} ticks)"
            )
            return CheckResult(
                outcome=outcome,
                aggregate=aggregate,
                duration_ms=elapsed_ms,
                ticks=ticks,
                flaky_retries=flaky_retries,
                **extra,
            )

        while True:
            aggregate = self._fetch(ref, options)
            ticks += 1
            now = self._clock()
            self._emit(options, aggregate, previous, now - start)

            if aggregate.total == 0:
                if state != PollState.ZERO_CHECKS_GRACE:
                    state = PollState.ZERO_CHECKS_GRACE
                    grace_started = now
                    logger.info(
                        f"No checks registered yet, waiting up to "
                        f"{options.grace_period:g}s for them to appear"
                    )
                if now - grace_started >= options.grace_period:
                    return resolve(Outcome.SUCCESS, aggregate, no_checks_configured=True)
            else:
                if state == PollState.ZERO_CHECKS_GRACE:
                    logger.info(f"{aggregate.total} checks registered, resuming polling")
                state = PollState.POLLING
                grace_started = None

                if aggregate.failed > 0 and (options.fail_fast or aggregate.pending == 0):
                    if (
                        options.retry_flaky
                        and flaky_retries < options.max_flaky_retries
                        and now < deadline
                        and self._only_retryable_failures(aggregate)
                    ):
                        flaky_retries += 1
                        logger.warning(
                            f"Retryable check failure detected (attempt {flaky_retries}/"
                            f"{options.max_flaky_retries}), polling again in "
                            f"{options.flaky_retry_delay:g}s"
                        )
                        self.cache.invalidate(make_key(self.repository, ref, "checks"))
                        self._sleep(min(options.flaky_retry_delay, deadline - now))
                        previous = aggregate
                        continue
                    return resolve(
                        Outcome.FAILURE,
                        aggregate,
                        failures=self.describe_failures(aggregate),
                    )
                if aggregate.pending == 0:
                    return resolve(Outcome.SUCCESS, aggregate)

            if now >= deadline:
                return resolve(
                    Outcome.TIMED_OUT,
                    aggregate,
                    failures=self.describe_failures(aggregate),
                )

            if previous is not None and aggregate.pending < previous.pending:
                interval = strategy.initial_interval

            delay = min(interval, deadline - now)
            if grace_started is not None:
                delay = min(delay, grace_started + options.grace_period - now)
            logger.debug(
                f"Checks pending={aggregate.pending} passed={aggregate.passed} "
                f"failed={aggregate.failed}; next poll in {delay:.1f}s"
            )
            self._sleep(delay)

            interval = strategy.next_interval(interval)
            previous = aggregate

    def _emit(
        self,
        options: WaitOptions,
        aggregate: CheckAggregate,
        previous: Optional[CheckAggregate],
        elapsed: float,
    ) -> None:
        if options.on_progress is None:
            return
        seen_failed = previous.failed_names if previous else frozenset()
        seen_passed = previous.passed_names if previous else frozenset()
        options.on_progress(
            ProgressEvent(
                elapsed_ms=int(elapsed * 1000),
                total=aggregate.total,
                passed=aggregate.passed,
                failed=aggregate.failed,
                pending=aggregate.pending,
                no_checks_yet=aggregate.total == 0,
                new_failures=tuple(sorted(aggregate.failed_names - seen_failed)),
                new_passes=tuple(sorted(aggregate.passed_names - seen_passed)),
            )
        )
