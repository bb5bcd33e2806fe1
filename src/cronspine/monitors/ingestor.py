"""Check-in ingestor - apply client check-ins to monitor and run state.

Manifesto:
    Check-ins arrive concurrently, out of order, possibly duplicated, from
    many nodes. The ingestor holds no state of its own: each call reads the
    monitor, plans a mutation, and commits it with the store's CAS. Losing
    the CAS just means re-reading and planning again, which is always safe
    because run start and run close are first-writer-wins.

Flow::

    ingest(checkin, config?)
      │
      ├── 1. upsert config (or require an existing monitor)
      ├── 2. rate limiter ── reject ──► RateLimitedError (nothing stored)
      ├── 3. in_progress ──► open the run at the nearest expected time
      │      ok / error  ──► close the run found by id, else the latest
      │                      open run, else open-and-close a heartbeat run
      ├── 4. CAS (re-read + re-plan on conflict, bounded + jittered)
      └── 5. emit Degraded / Recovered to the alert sink after commit

Tags:
    cronspine, ingest, check-ins, state-machine, compare-and-swap

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from cronspine.core.errors import (
    ConflictError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)
from cronspine.core.events import AlertSink, LoggingAlertSink, deliver
from cronspine.core.logging import get_logger
from cronspine.core.rate_limit import KeyedSlidingWindowLimiter
from cronspine.core.retry import ExponentialBackoff, RetryContext, RetryStrategy, deadline_after
from cronspine.core.settings import CronSpineSettings
from cronspine.monitors.models import (
    CheckIn,
    CheckInOutcome,
    CheckInRecord,
    CheckInStatus,
    IngestResult,
    Monitor,
    MonitorConfig,
    Mutation,
    Run,
    RunStatus,
)
from cronspine.monitors.schedule import nearest_expected
from cronspine.monitors.store import MonitorStore
from cronspine.monitors.thresholds import ThresholdResult, apply_outcome

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _Plan:
    """What one attempt decided to do."""

    outcome: CheckInOutcome
    run: Run | None
    mutation: Mutation | None = None
    threshold: ThresholdResult | None = None
    check_in_id: str | None = None


class CheckInIngestor:
    """Validates check-ins and advances the run state machine.

    Example:
        >>> ingestor = CheckInIngestor(MonitorStore(conn), KeyedSlidingWindowLimiter())
        >>> result = ingestor.ingest(
        ...     CheckIn("nightly-report", "production", CheckInStatus.IN_PROGRESS,
        ...             timestamp=now, check_in_id="run-1"),
        ...     config=MonitorConfig(schedule=CrontabSchedule("0 2 * * *")),
        ... )
        >>> result.outcome
        <CheckInOutcome.STARTED: 'started'>
    """

    def __init__(
        self,
        store: MonitorStore,
        rate_limiter: KeyedSlidingWindowLimiter,
        alert_sink: AlertSink | None = None,
        *,
        retry_strategy: RetryStrategy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.rate_limiter = rate_limiter
        self.alert_sink: AlertSink = alert_sink if alert_sink is not None else LoggingAlertSink()
        self.retry_strategy = retry_strategy if retry_strategy is not None else ExponentialBackoff()
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        store: MonitorStore,
        settings: CronSpineSettings,
        rate_limiter: KeyedSlidingWindowLimiter | None = None,
        alert_sink: AlertSink | None = None,
    ) -> CheckInIngestor:
        """Build an ingestor with the configured quota and CAS retry policy."""
        limiter = rate_limiter if rate_limiter is not None else KeyedSlidingWindowLimiter(
            max_requests=settings.rate_limit_max_checkins,
            window_seconds=settings.rate_limit_window_seconds,
        )
        strategy = ExponentialBackoff(
            max_attempts=settings.cas_max_attempts,
            base_delay=settings.cas_base_delay_seconds,
            max_delay=settings.cas_max_delay_seconds,
        )
        return cls(store, limiter, alert_sink, retry_strategy=strategy)

    # === Public API ===

    def ingest(
        self,
        checkin: CheckIn,
        config: MonitorConfig | None = None,
        deadline_seconds: float | None = None,
    ) -> IngestResult:
        """Apply one check-in.

        Args:
            checkin: The client event
            config: Optional monitor config to upsert first
            deadline_seconds: Caller deadline; mutations already committed
                when it expires are kept

        Raises:
            ValidationError: malformed check-in or config
            MonitorNotFoundError: no config and the monitor does not exist
            RateLimitedError: quota for (slug, environment) is spent
            ConflictError: CAS still losing after the retry budget
            StoreUnavailableError: store still failing after the retry budget
            DeadlineExceededError: deadline passed before the check-in landed
        """
        checkin = self._validate(checkin)
        received_at = self.clock()
        log = logger.bind(
            slug=checkin.slug,
            environment=checkin.environment,
            status=checkin.status.value,
            check_in_id=checkin.check_in_id,
        )

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            log.debug(
                "checkin_retry",
                attempt=attempt,
                error_type=type(error).__name__,
                delay_s=round(delay, 3),
            )

        deadline = deadline_after(deadline_seconds)

        def _context() -> RetryContext:
            return RetryContext(self.retry_strategy, deadline=deadline, on_retry=_on_retry, sleep=self.sleep)

        ctx = _context()
        try:
            if config is not None:
                ctx.run(self.store.upsert, checkin.slug, checkin.environment, config, received_at)
            else:
                ctx.run(self.store.require, checkin.slug, checkin.environment)

            key = (checkin.slug, checkin.environment)
            if not self.rate_limiter.acquire(key):
                retry_after = self.rate_limiter.retry_after(key)
                log.warning("checkin_rate_limited", retry_after=retry_after)
                raise RateLimitedError(
                    f"Check-in quota exceeded for {checkin.slug}/{checkin.environment}",
                    retry_after=retry_after,
                ).with_context(slug=checkin.slug, environment=checkin.environment)

            ctx = _context()
            result = ctx.run(self._apply, checkin, received_at)
        except (ConflictError, StoreUnavailableError) as e:
            e.with_context(slug=checkin.slug, environment=checkin.environment, attempts=ctx.attempts)
            log.error("checkin_failed", attempts=ctx.attempts, **e.to_dict())
            raise

        result.attempts = ctx.attempts
        log.info(
            "checkin_applied",
            outcome=result.outcome.value,
            run_expected_at=result.run.expected_at.isoformat() if result.run else None,
            attempts=ctx.attempts,
        )

        if result.transition is not None:
            deliver(self.alert_sink, result.transition)
        return result

    # === Planning ===

    def _validate(self, checkin: CheckIn) -> CheckIn:
        if not checkin.slug:
            raise ValidationError("slug must not be empty", field_name="slug")
        if not checkin.environment:
            raise ValidationError("environment must not be empty", field_name="environment")
        if checkin.timestamp.tzinfo is None:
            raise ValidationError("timestamp must be timezone-aware", field_name="timestamp")
        if checkin.duration_seconds is not None and checkin.duration_seconds < 0:
            raise ValidationError("duration_seconds must be >= 0", field_name="duration_seconds")
        if checkin.status is CheckInStatus.IN_PROGRESS and not checkin.check_in_id:
            return replace(checkin, check_in_id=uuid4().hex)
        return checkin

    def _apply(self, checkin: CheckIn, received_at: datetime) -> IngestResult:
        """One read-plan-write attempt. Raises ConflictError if it lost the CAS."""
        monitor = self.store.require(checkin.slug, checkin.environment)

        if checkin.status is CheckInStatus.IN_PROGRESS:
            plan = self._plan_start(monitor, checkin, received_at)
        else:
            plan = self._plan_finish(monitor, checkin, received_at)

        check_in_id = plan.check_in_id or checkin.check_in_id or (plan.run.run_id if plan.run else "")

        if plan.mutation is None:
            self.store.append_checkin(self._record(checkin, plan.outcome, received_at, plan.run))
            return IngestResult(
                check_in_id=check_in_id,
                outcome=plan.outcome,
                monitor=monitor,
                run=plan.run,
            )

        written = self.store.cas(checkin.slug, checkin.environment, monitor.version, plan.mutation)
        transition = plan.threshold.event(checkin.timestamp) if plan.threshold else None
        return IngestResult(
            check_in_id=check_in_id,
            outcome=plan.outcome,
            monitor=written,
            run=plan.run,
            transition=transition,
        )

    def _plan_start(self, monitor: Monitor, checkin: CheckIn, received_at: datetime) -> _Plan:
        expected = nearest_expected(monitor.schedule, checkin.timestamp)
        existing = self.store.get_run(monitor.slug, monitor.environment, expected)

        if existing is not None:
            # First writer already owns started_at / run_id
            outcome = CheckInOutcome.LATE if existing.is_terminal else CheckInOutcome.DUPLICATE
            return _Plan(outcome=outcome, run=existing)

        run = Run(
            slug=monitor.slug,
            environment=monitor.environment,
            expected_at=expected,
            run_id=checkin.check_in_id,  # type: ignore[arg-type]
            checkin_margin=monitor.checkin_margin,
            max_runtime=monitor.max_runtime,
            created_at=received_at,
            started_at=checkin.timestamp,
        )
        updated = replace(monitor, last_run_id=run.run_id, updated_at=received_at)
        record = self._record(checkin, CheckInOutcome.STARTED, received_at, run)
        return _Plan(
            outcome=CheckInOutcome.STARTED,
            run=run,
            mutation=Mutation(monitor=updated, runs=[run], checkins=[record]),
        )

    def _plan_finish(self, monitor: Monitor, checkin: CheckIn, received_at: datetime) -> _Plan:
        slug, environment = monitor.slug, monitor.environment
        terminal = RunStatus.OK if checkin.status is CheckInStatus.OK else RunStatus.ERROR

        run: Run | None = None
        if checkin.check_in_id:
            run = self.store.find_run_by_checkin_id(slug, environment, checkin.check_in_id)
        if run is None:
            run = self.store.latest_open_run(slug, environment)

        if run is not None and run.is_terminal:
            # First terminal write wins; keep the late check-in for audit only
            return _Plan(outcome=CheckInOutcome.LATE, run=run)

        if run is not None:
            outcome = CheckInOutcome.CLOSED
            duration = checkin.duration_seconds
            if duration is None and run.started_at is not None:
                duration = max(0.0, (checkin.timestamp - run.started_at).total_seconds())
            closed = replace(
                run,
                finished_at=checkin.timestamp,
                terminal_status=terminal,
                duration_seconds=duration,
            )
        else:
            started_at = checkin.timestamp
            if checkin.duration_seconds is not None:
                started_at = checkin.timestamp - timedelta(seconds=checkin.duration_seconds)

            # The occurrence is the one the job started for, not the one nearest its finish
            expected = nearest_expected(monitor.schedule, started_at)
            existing = self.store.get_run(slug, environment, expected)
            if existing is not None:
                return _Plan(outcome=CheckInOutcome.LATE, run=existing)

            outcome = CheckInOutcome.HEARTBEAT
            closed = Run(
                slug=slug,
                environment=environment,
                expected_at=expected,
                run_id=checkin.check_in_id or uuid4().hex,
                checkin_margin=monitor.checkin_margin,
                max_runtime=monitor.max_runtime,
                created_at=received_at,
                started_at=started_at,
                finished_at=checkin.timestamp,
                terminal_status=terminal,
                duration_seconds=checkin.duration_seconds,
            )

        threshold = apply_outcome(monitor, terminal, checkin.timestamp)
        updated = replace(threshold.monitor, last_run_id=closed.run_id, updated_at=received_at)
        record = self._record(checkin, outcome, received_at, closed)
        return _Plan(
            outcome=outcome,
            run=closed,
            mutation=Mutation(monitor=updated, runs=[closed], checkins=[record]),
            threshold=threshold,
            check_in_id=checkin.check_in_id or closed.run_id,
        )

    @staticmethod
    def _record(
        checkin: CheckIn,
        outcome: CheckInOutcome,
        received_at: datetime,
        run: Run | None,
    ) -> CheckInRecord:
        return CheckInRecord(
            checkin=checkin,
            outcome=outcome,
            received_at=received_at,
            run_expected_at=run.expected_at if run else None,
        )


__all__ = ["CheckInIngestor"]
