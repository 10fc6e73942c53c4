from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum


# Task type identifiers. These strings are part of the wire contract.
TYPE_EMAIL_VERIFICATION = "email:verification"
TYPE_QUIZ_SUBMISSION = "quiz:submission"
TYPE_USER_STATISTICS_UPDATE = "user:statistics_update"
TYPE_QUIZ_ANALYTICS = "quiz:analytics"
TYPE_IMAGE_UPLOAD = "image:upload"

TASK_TYPES: tuple[str, ...] = (
    TYPE_EMAIL_VERIFICATION,
    TYPE_QUIZ_SUBMISSION,
    TYPE_USER_STATISTICS_UPDATE,
    TYPE_QUIZ_ANALYTICS,
    TYPE_IMAGE_UPLOAD,
)


class QueueName(str, Enum):
    CRITICAL = "critical"
    DEFAULT = "default"
    LOW = "low"


DEFAULT_QUEUE_WEIGHTS: dict[str, int] = {
    QueueName.CRITICAL.value: 6,
    QueueName.DEFAULT.value: 3,
    QueueName.LOW.value: 1,
}


def parse_queue(queue: str | QueueName) -> QueueName:
    try:
        return QueueName(queue)
    except ValueError:
        raise ValueError(
            f"invalid queue {queue!r}; expected one of {[q.value for q in QueueName]}"
        ) from None


def new_task_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Task:
    """A unit of asynchronous work as seen by the broker and the processor.

    `payload` holds the JSON encoded payload bytes; it is decoded against the
    schema registered for `type` only at dispatch time. `retried` is the number
    of earlier deliveries of this same task (0 on the first attempt).
    """

    type: str
    payload: bytes
    queue: QueueName = QueueName.DEFAULT
    max_retry: int = 3
    timeout: timedelta = timedelta(minutes=30)
    id: str = field(default_factory=new_task_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retried: int = 0

    @property
    def attempt(self) -> int:
        return self.retried + 1

    def next_attempt(self) -> "Task":
        return replace(self, retried=self.retried + 1)
