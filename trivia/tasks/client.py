from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import BaseModel, ValidationError

from trivia.tasks.broker import Broker
from trivia.tasks.errors import PayloadError
from trivia.tasks.payloads import (
    EmailVerificationPayload,
    ImageUploadPayload,
    QuizAnalyticsPayload,
    QuizSubmissionPayload,
    UserStatisticsUpdatePayload,
    encode_payload,
)
from trivia.tasks.types import (
    TYPE_EMAIL_VERIFICATION,
    TYPE_IMAGE_UPLOAD,
    TYPE_QUIZ_ANALYTICS,
    TYPE_QUIZ_SUBMISSION,
    TYPE_USER_STATISTICS_UPDATE,
    QueueName,
    Task,
    parse_queue,
)

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_payload(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model(**fields)
    except ValidationError as e:
        raise PayloadError(f"invalid {model.__name__}: {e}") from e


class TaskClient:
    """Serializes typed payloads and submits them to the broker.

    The client does not retry a failed enqueue: broker errors surface as
    EnqueueError and the caller decides. Services enqueue only after their
    own transaction has committed.
    """

    def __init__(
        self,
        broker: Broker,
        *,
        default_timeout: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._broker = broker
        self._default_timeout = default_timeout
        self._clock = clock

    @property
    def broker(self) -> Broker:
        return self._broker

    def enqueue(
        self,
        task_type: str,
        payload: BaseModel,
        *,
        queue: str | QueueName = QueueName.DEFAULT,
        max_retry: int = 3,
        timeout: timedelta | None = None,
    ) -> str:
        task = self._build(task_type, payload, queue=queue, max_retry=max_retry, timeout=timeout)
        self._broker.publish(task)
        log.info("task enqueued", task_id=task.id, type=task.type, queue=task.queue.value)
        return task.id

    def enqueue_delayed(
        self,
        task_type: str,
        payload: BaseModel,
        delay: timedelta,
        *,
        queue: str | QueueName = QueueName.DEFAULT,
        max_retry: int = 3,
        timeout: timedelta | None = None,
    ) -> str:
        """Enqueue a task that becomes eligible for dispatch after `delay`."""

        if delay < timedelta(0):
            raise ValueError("delay must be >= 0")

        task = self._build(task_type, payload, queue=queue, max_retry=max_retry, timeout=timeout)
        eta = task.created_at + delay
        self._broker.publish(task, eta=eta)
        log.info(
            "task scheduled",
            task_id=task.id,
            type=task.type,
            queue=task.queue.value,
            eta=eta.isoformat(),
        )
        return task.id

    def _build(
        self,
        task_type: str,
        payload: BaseModel,
        *,
        queue: str | QueueName,
        max_retry: int,
        timeout: timedelta | None,
    ) -> Task:
        q = parse_queue(queue)
        if max_retry < 0:
            raise ValueError("max_retry must be >= 0")
        timeout = self._default_timeout if timeout is None else timeout
        if timeout <= timedelta(0):
            raise ValueError("timeout must be > 0")

        data = encode_payload(task_type, payload)
        return Task(
            type=task_type,
            payload=data,
            queue=q,
            max_retry=max_retry,
            timeout=timeout,
            created_at=self._clock(),
        )

    # -- typed helpers with the per-type delivery policy --

    def enqueue_email_verification(self, user_id: int, email: str, token: str) -> str:
        return self.enqueue(
            TYPE_EMAIL_VERIFICATION,
            _build_payload(EmailVerificationPayload, user_id=user_id, email=email, token=token),
            queue=QueueName.DEFAULT,
            max_retry=3,
            timeout=timedelta(minutes=5),
        )

    def enqueue_quiz_submission(
        self,
        user_id: int,
        quiz_id: int,
        answers: dict[str, str],
        submitted_at: datetime,
    ) -> str:
        return self.enqueue(
            TYPE_QUIZ_SUBMISSION,
            _build_payload(
                QuizSubmissionPayload,
                user_id=user_id,
                quiz_id=quiz_id,
                answers=answers,
                submitted_at=submitted_at,
            ),
            queue=QueueName.DEFAULT,
            max_retry=5,
            timeout=timedelta(minutes=10),
        )

    def enqueue_user_statistics_update(self, user_id: int, action: str, data: dict | None = None) -> str:
        return self.enqueue(
            TYPE_USER_STATISTICS_UPDATE,
            _build_payload(UserStatisticsUpdatePayload, user_id=user_id, action=action, data=data or {}),
            queue=QueueName.LOW,
            max_retry=3,
            timeout=timedelta(minutes=5),
        )

    def enqueue_quiz_analytics(self, quiz_id: int, event_type: str, data: dict | None = None) -> str:
        return self.enqueue(
            TYPE_QUIZ_ANALYTICS,
            _build_payload(QuizAnalyticsPayload, quiz_id=quiz_id, event_type=event_type, data=data or {}),
            queue=QueueName.LOW,
            max_retry=3,
            timeout=timedelta(minutes=5),
        )

    def enqueue_image_upload(self, user_id: int, image_url: str, image_type: str) -> str:
        return self.enqueue(
            TYPE_IMAGE_UPLOAD,
            _build_payload(ImageUploadPayload, user_id=user_id, image_url=image_url, type=image_type),
            queue=QueueName.DEFAULT,
            max_retry=3,
            timeout=timedelta(minutes=15),
        )

    def enqueue_critical(self, task_type: str, payload: BaseModel) -> str:
        return self.enqueue(
            task_type,
            payload,
            queue=QueueName.CRITICAL,
            max_retry=5,
            timeout=timedelta(minutes=30),
        )
