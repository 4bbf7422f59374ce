"""Execution context handed to every job body."""

from dataclasses import dataclass, field
from typing import Callable

from cancellation import CancellationToken
from clock import Clock, get_clock

# Loop bodies call checkpoint(i) on every item; the token is consulted every
# CHECK_EVERY items.
CHECK_EVERY = 100


@dataclass
class ExecutionContext:
    """Per-execution state: cancellation, deadline, attribution, chain path and provider scope.

    runner is the owning engine's run_job, bound at construction, so a job
    body can start other jobs without importing the engine.
    """

    name: str
    token: CancellationToken
    triggered_by: str = "manual"
    deadline: float | None = None  # clock.monotonic() value
    chain_path: tuple[str, ...] = ()
    runner: Callable | None = None
    clock: Clock = field(default_factory=get_clock)
    provider_id: str | None = None  # limits provider-scoped jobs to one provider

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def check_cancelled(self) -> None:
        """Raise JobCancelledError if the execution was aborted."""
        self.token.raise_if_cancelled()

    def checkpoint(self, index: int) -> None:
        if index % CHECK_EVERY == 0:
            self.token.raise_if_cancelled()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock.monotonic())

    def run_job(self, name: str):
        """Run another job as a child of this execution. Returns its RunOutcome."""
        if self.runner is None:
            raise RuntimeError("ExecutionContext has no runner bound")
        return self.runner(name, triggered_by=self.triggered_by, parent=self)
