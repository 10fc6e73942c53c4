from __future__ import annotations


class TaskError(Exception):
    """Base class for task pipeline errors."""


class PermanentTaskError(TaskError):
    """Retrying will not help; the task is discarded."""


class PayloadError(PermanentTaskError):
    """Payload does not match the schema registered for its task type."""


class UnknownTaskTypeError(PermanentTaskError):
    def __init__(self, task_type: str) -> None:
        super().__init__(f"unknown task type: {task_type!r}")
        self.task_type = task_type


class TransientTaskError(TaskError):
    """The attempt failed but a later attempt may succeed."""


class EnqueueError(TaskError):
    """The broker could not accept the task.

    Raised by the client only; the client never retries an enqueue itself.
    """


def skip_retry(reason: str) -> PermanentTaskError:
    """Build the error a handler raises to mark its failure as permanent.

    Usage inside a handler::

        raise skip_retry("user 42 no longer exists")
    """

    return PermanentTaskError(reason)
