from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from enum import Enum

from trivia.tasks.errors import PermanentTaskError
from trivia.tasks.types import Task

# (n, error, task) -> delay before the next attempt. `n` is the number of
# times the task has been retried so far, counting the retry being scheduled.
RetryDelayFunc = Callable[[int, BaseException, Task], timedelta]


def linear_backoff(step: timedelta = timedelta(seconds=1)) -> RetryDelayFunc:
    """n * step, no jitter."""

    def _delay(n: int, error: BaseException, task: Task) -> timedelta:
        return step * max(n, 0)

    return _delay


def exponential_backoff(
    base: timedelta = timedelta(seconds=1),
    cap: timedelta = timedelta(minutes=10),
) -> RetryDelayFunc:
    """base * 2**(n-1), capped."""

    def _delay(n: int, error: BaseException, task: Task) -> timedelta:
        if n <= 0:
            return timedelta(0)
        return min(base * (2 ** (n - 1)), cap)

    return _delay


def no_delay(n: int, error: BaseException, task: Task) -> timedelta:
    return timedelta(0)


def retry_delay_from_settings(settings) -> RetryDelayFunc:
    step = timedelta(seconds=settings.retry_delay_seconds)
    if settings.retry_backoff == "linear":
        return linear_backoff(step)
    if settings.retry_backoff == "exponential":
        return exponential_backoff(step, timedelta(seconds=settings.retry_max_delay_seconds))
    raise ValueError(f"unknown retry_backoff {settings.retry_backoff!r}; expected linear | exponential")


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    # Permanent error: dropped without consuming retries.
    DISCARDED = "discarded"
    # Transient error with no retries left: dead-lettered.
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptOutcome.RETRY


def resolve_attempt(task: Task, error: BaseException | None) -> AttemptOutcome:
    """Decide what happens to `task` after one attempt ended with `error`.

    Received -> Decoding -> {PermanentFailure | Executing}
    Executing -> {Success | TransientFailure}
    TransientFailure -> Retry while task.retried < task.max_retry, else PermanentFailure.
    """

    if error is None:
        return AttemptOutcome.SUCCESS
    if isinstance(error, PermanentTaskError):
        return AttemptOutcome.DISCARDED
    if task.retried < task.max_retry:
        return AttemptOutcome.RETRY
    return AttemptOutcome.EXHAUSTED
