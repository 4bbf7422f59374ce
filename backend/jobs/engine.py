"""Job engine: scheduling, single-flight execution, conflicts, chaining, cancellation.

Scheduling rules per descriptor:

- interval only: repeating timer, first tick one interval after start()
- runOnStartup only: one run after ``delay`` (default 0)
- both: one run after ``delay``; the repeating timer starts when that run
  terminates, whatever its outcome
- delay alone schedules nothing (manual and chained runs only)

Every execution holds a per-name gate for its whole body. The gate and the
conflict check are taken under one lock, so a job never overlaps itself or
a job it conflicts with (in either direction). postExecute steps run after
the gate is released, sequentially, and only when the job succeeded.
"""

import functools
import logging
import threading
import time
from dataclasses import dataclass

import metrics
from cancellation import CancellationToken
from clock import Clock, get_clock
from error_handler import (
    ConfigurationError,
    EngineAlreadyStartedError,
    EngineNotInitializedError,
    JobCancelledError,
    StorageUnavailableError,
)
from job_history import JobHistoryBackend, JobRecord, JobState
from jobs.context import ExecutionContext
from jobs.outcomes import (
    AbortOutcome,
    AlreadyRunning,
    BlockedBy,
    Cancelled,
    Failed,
    NotFound,
    Ran,
    RunOutcome,
)
from jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 30.0


@dataclass
class _Execution:
    ctx: ExecutionContext
    started_at: float
    thread_name: str
    finished: bool = False  # body returned; abort no longer applies


class JobEngine:
    """Runs the registered jobs. One instance per process."""

    def __init__(self, bodies: dict, *, clock: Clock = None,
                 stop_grace: float = DEFAULT_STOP_GRACE_SECONDS):
        """
        Args:
            bodies: job name -> callable taking an ExecutionContext and
                    returning a JSON-serialisable result.
            clock: time source (real clock by default).
            stop_grace: default seconds stop() waits for running jobs.
        """
        self._bodies = dict(bodies)
        self._clock = clock or get_clock()
        self._stop_grace = stop_grace

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._registry: JobRegistry | None = None
        self._history: JobHistoryBackend | None = None
        self._running: dict[str, _Execution] = {}
        self._pending_startup_intervals: dict[str, float] = {}
        self._active_timers: dict = {}
        self._startup_timers: dict = {}
        self._started = False
        self._stopping = False

    # ---- lifecycle ----

    def initialize(self, registry: JobRegistry, history: JobHistoryBackend) -> int:
        """Bind registry and history and clear stale 'running' records.

        Returns:
            Number of records rewritten from running to cancelled.

        Raises:
            ConfigurationError: a descriptor has no job body.
            StorageUnavailableError: history cannot be queried.
        """
        missing = [d.name for d in registry if d.name not in self._bodies]
        if missing:
            raise ConfigurationError(
                f"No implementation for job(s): {', '.join(missing)}",
                context={"jobs": missing},
            )
        try:
            reset = history.reset_running_to_cancelled()
        except StorageUnavailableError:
            raise
        except Exception as e:
            raise StorageUnavailableError(f"Job history unavailable: {e}") from e

        with self._lock:
            self._registry = registry
            self._history = history
        if reset:
            logger.warning("Marked %d interrupted job(s) as cancelled", reset)
        logger.info("Job engine initialized with %d jobs", len(registry))
        return reset

    def start(self) -> None:
        """Arm startup runs and interval timers."""
        with self._lock:
            if self._registry is None:
                raise EngineNotInitializedError("Job engine used before initialize()")
            if self._started:
                raise EngineAlreadyStartedError("Job engine already started")
            self._started = True
            self._stopping = False

            scheduled = []
            for descriptor in self._registry:
                name = descriptor.name
                if descriptor.run_on_startup:
                    if descriptor.interval:
                        self._pending_startup_intervals[name] = descriptor.interval
                    self._startup_timers[name] = self._clock.call_later(
                        descriptor.delay or 0.0,
                        functools.partial(self._startup_run, name),
                        name=name,
                    )
                    scheduled.append(name)
                elif descriptor.interval:
                    self._active_timers[name] = self._clock.call_every(
                        descriptor.interval,
                        functools.partial(self._tick, name),
                        name=name,
                    )
                    scheduled.append(name)
        logger.info("Job engine started, scheduled: %s", ", ".join(scheduled) or "none")

    def stop(self, grace: float = None) -> list[str]:
        """Cancel timers and running jobs, wait up to grace seconds.

        Returns:
            Names of jobs still running when the grace period ran out.
        """
        grace = self._stop_grace if grace is None else grace
        with self._lock:
            self._stopping = True
            self._started = False
            timers = list(self._active_timers.values()) + list(self._startup_timers.values())
            self._active_timers.clear()
            self._startup_timers.clear()
            self._pending_startup_intervals.clear()
            executions = list(self._running.values())

        for handle in timers:
            handle.cancel()
        for execution in executions:
            execution.ctx.token.cancel("engine stopping")

        # Condition waits are wall-clock, whatever clock drives the timers
        deadline = time.monotonic() + grace
        with self._idle:
            while self._running:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._idle.wait(remaining)
            leftovers = list(self._running)

        for name in leftovers:
            logger.warning("Job %s did not stop within %.1fs, abandoning it", name, grace)
            self._persist(name, JobState.CANCELLED, last_error="engine stopped")
        logger.info("Job engine stopped")
        return leftovers

    # ---- queries ----

    def is_running(self, name: str) -> bool:
        with self._lock:
            return name in self._running

    def running_jobs(self) -> list[str]:
        with self._lock:
            return sorted(self._running)

    def get_job_status(self, name: str) -> JobRecord | None:
        """Persisted record for a job (idle if it never ran); None if unknown."""
        registry = self._require_registry()
        if name not in registry:
            return None
        record = self._history.get_last(name)
        if record is None:
            record = JobRecord(name=name)
        return record

    def supports_provider_scope(self, name: str) -> bool:
        """True if the job body can be limited to a single provider."""
        return bool(getattr(self._bodies.get(name), "provider_scoped", False))

    def list_jobs(self) -> list[dict]:
        registry = self._require_registry()
        records = {r.name: r for r in self._history.list_all()}
        running = set(self.running_jobs())
        jobs = []
        for descriptor in registry:
            record = records.get(descriptor.name) or JobRecord(name=descriptor.name)
            entry = descriptor.to_dict()
            entry.update(record.to_dict())
            entry["running"] = descriptor.name in running
            jobs.append(entry)
        return jobs

    # ---- execution ----

    def run_job(self, name: str, *, triggered_by: str = "manual",
                parent: ExecutionContext = None, provider_id: str = None) -> RunOutcome:
        """Run a job synchronously on the calling thread.

        provider_id limits provider-scoped jobs to one provider; chained
        steps inherit it from their parent.
        """
        registry = self._require_registry()
        descriptor = registry.get(name)
        if descriptor is None:
            logger.warning("Run requested for unknown job %s", name)
            return NotFound(name)

        if parent is not None and (name == parent.name or name in parent.chain_path):
            logger.warning("Job %s skipped: already part of chain %s",
                           name, " -> ".join((*parent.chain_path, parent.name)))
            return BlockedBy(name, (parent.name,))

        now = self._clock.monotonic()
        with self._lock:
            if self._stopping:
                return Cancelled(name, "engine stopping")
            if name in self._running:
                return AlreadyRunning(name)
            blockers = self._blockers(name)
            if blockers:
                return BlockedBy(name, blockers)

            deadline = parent.deadline if parent is not None else None
            if provider_id is None and parent is not None:
                provider_id = parent.provider_id
            if descriptor.timeout:
                own = now + descriptor.timeout
                deadline = own if deadline is None else min(deadline, own)
            ctx = ExecutionContext(
                name=name,
                token=CancellationToken(),
                triggered_by=triggered_by,
                deadline=deadline,
                chain_path=(*parent.chain_path, parent.name) if parent is not None else (),
                runner=self.run_job,
                clock=self._clock,
                provider_id=provider_id,
            )
            execution = _Execution(ctx, now, threading.current_thread().name)
            self._running[name] = execution

        timeout_handle = None
        if deadline is not None:
            timeout_handle = self._clock.call_later(
                deadline - now, functools.partial(ctx.token.cancel, "timeout"),
                name=f"{name}-timeout",
            )

        try:
            self._persist(name, JobState.RUNNING, triggered_by=triggered_by)
            if provider_id:
                logger.info("Job %s started (triggered_by=%s, provider=%s)",
                            name, triggered_by, provider_id)
            else:
                logger.info("Job %s started (triggered_by=%s)", name, triggered_by)
            outcome = self._execute(name, ctx, now)
            with self._lock:
                execution.finished = True
                # An abort that landed after the body's last check still wins
                if isinstance(outcome, Ran) and ctx.cancelled:
                    outcome = Cancelled(name, ctx.token.reason or "cancelled")
            self._record_outcome(outcome)
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            with self._idle:
                self._running.pop(name, None)
                self._idle.notify_all()

        if isinstance(outcome, Ran) and descriptor.post_execute:
            self._run_chain(descriptor.post_execute, ctx)
        return outcome

    def abort_job(self, name: str) -> AbortOutcome:
        registry = self._require_registry()
        if name not in registry:
            return AbortOutcome.NOT_FOUND
        with self._lock:
            execution = self._running.get(name)
            if execution is None or execution.finished:
                return AbortOutcome.NOT_RUNNING
            execution.ctx.token.cancel("aborted")
        self._persist(name, JobState.CANCELLED)
        logger.info("Job %s abort requested", name)
        return AbortOutcome.OK

    # ---- internals ----

    def _require_registry(self) -> JobRegistry:
        if self._registry is None:
            raise EngineNotInitializedError("Job engine used before initialize()")
        return self._registry

    def _blockers(self, name: str) -> tuple[str, ...]:
        """Running jobs that conflict with name. Caller holds the lock."""
        own = self._registry.get(name).conflicts
        blockers = set()
        for other in self._running:
            if other in own or name in self._registry.get(other).conflicts:
                blockers.add(other)
        return tuple(sorted(blockers))

    def _execute(self, name: str, ctx: ExecutionContext, started: float) -> RunOutcome:
        body = self._bodies[name]
        try:
            result = body(ctx)
        except JobCancelledError:
            return Cancelled(name, ctx.token.reason or "cancelled")
        except Exception as e:
            if ctx.cancelled:
                return Cancelled(name, ctx.token.reason or "cancelled")
            logger.exception("Job %s failed", name)
            return Failed(name, e, self._clock.monotonic() - started)
        if ctx.cancelled:
            return Cancelled(name, ctx.token.reason or "cancelled")
        return Ran(name, result, self._clock.monotonic() - started)

    def _record_outcome(self, outcome: RunOutcome) -> None:
        name = outcome.name
        if isinstance(outcome, Ran):
            self._persist(
                name, JobState.COMPLETED, increment_count=True,
                last_execution=self._clock.now_iso(),
                last_result=outcome.result,
                last_error=None,
            )
            metrics.record_job_execution(name, "success", outcome.duration)
            logger.info("Job %s completed in %.2fs", name, outcome.duration)
        elif isinstance(outcome, Failed):
            error = str(outcome.error) or outcome.error.__class__.__name__
            self._persist(name, JobState.FAILED, last_result={"error": error}, last_error=error)
            metrics.record_job_execution(name, "failure", outcome.duration)
        elif isinstance(outcome, Cancelled):
            self._persist(name, JobState.CANCELLED, last_error=f"cancelled: {outcome.reason}")
            metrics.record_job_execution(name, "cancelled", 0.0)
            logger.info("Job %s cancelled (%s)", name, outcome.reason)

    def _run_chain(self, steps, parent: ExecutionContext) -> None:
        for step in steps:
            with self._lock:
                if self._stopping:
                    logger.info("Chain after %s interrupted: engine stopping", parent.name)
                    return
            outcome = self.run_job(step, triggered_by=parent.triggered_by, parent=parent)
            if isinstance(outcome, (AlreadyRunning, BlockedBy)):
                logger.info("Chain step %s after %s skipped: %s", step, parent.name, outcome.status)
            elif isinstance(outcome, Failed):
                logger.warning("Chain step %s after %s failed: %s", step, parent.name, outcome.error)

    def _startup_run(self, name: str) -> None:
        try:
            self._log_skipped(self.run_job(name, triggered_by="startup"))
        finally:
            with self._lock:
                self._startup_timers.pop(name, None)
                period = self._pending_startup_intervals.pop(name, None)
                if period is not None and self._started and not self._stopping:
                    self._active_timers[name] = self._clock.call_every(
                        period, functools.partial(self._tick, name), name=name,
                    )
                    logger.debug("Job %s interval armed (%.0fs) after startup run", name, period)

    def _tick(self, name: str) -> None:
        # Ticks run the job on their own thread so a long body never delays
        # the timer; overlapping ticks are skipped by the gate in run_job.
        threading.Thread(
            target=self._scheduled_run, args=(name,), name=f"job-{name}", daemon=True,
        ).start()

    def _scheduled_run(self, name: str) -> None:
        self._log_skipped(self.run_job(name, triggered_by="interval"))

    def _log_skipped(self, outcome: RunOutcome) -> None:
        if isinstance(outcome, AlreadyRunning):
            logger.info("Scheduled run of %s skipped: already running", outcome.name)
        elif isinstance(outcome, BlockedBy):
            logger.info("Scheduled run of %s skipped: blocked by %s",
                        outcome.name, ", ".join(outcome.blockers))

    def _persist(self, name: str, state: JobState, **fields) -> None:
        try:
            self._history.upsert(name, state, **fields)
        except Exception as e:
            logger.error("Failed to persist %s status for job %s: %s", state.value, name, e)
