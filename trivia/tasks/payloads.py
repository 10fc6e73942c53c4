"""Task payload schemas.

Every task type has exactly one payload model. The JSON field names of these
models are the wire contract between the enqueuing side and the workers:
renaming a field breaks tasks that are already sitting in a queue.

Two payloads carry a free-form ``data`` object. It is kept as a flat
key/value association of JSON scalars, and each ``action`` / ``event_type``
documents which keys it may carry (see ``STATISTICS_ACTION_KEYS`` and
``ANALYTICS_EVENT_KEYS``). Validation happens on both ends: when the client
serializes and when the processor decodes.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from trivia.tasks.errors import PayloadError, UnknownTaskTypeError
from trivia.tasks.types import (
    TYPE_EMAIL_VERIFICATION,
    TYPE_IMAGE_UPLOAD,
    TYPE_QUIZ_ANALYTICS,
    TYPE_QUIZ_SUBMISSION,
    TYPE_USER_STATISTICS_UPDATE,
)

JSONScalar = Union[str, int, float, bool, None]


# action -> allowed data keys
STATISTICS_ACTION_KEYS: dict[str, frozenset[str]] = {
    "quiz_completed": frozenset({"quiz_id", "attempt_id", "score"}),
    "daily_batch_update": frozenset({"type", "date"}),
    "recalculate": frozenset(),
}

# event_type -> allowed data keys
ANALYTICS_EVENT_KEYS: dict[str, frozenset[str]] = {
    "quiz_created": frozenset({"created_by"}),
    "quiz_completed": frozenset({"attempt_id", "user_id", "score"}),
    "weekly_batch_analytics": frozenset({"type", "week_start", "week_end"}),
}


def _check_keys(kind: str, name: str, data: dict, namespace: dict[str, frozenset[str]]) -> None:
    allowed = namespace.get(name)
    if allowed is None:
        raise ValueError(f"unknown {kind} {name!r}; expected one of {sorted(namespace)}")
    unexpected = sorted(set(data) - allowed)
    if unexpected:
        raise ValueError(f"{kind} {name!r} does not accept data keys: {', '.join(unexpected)}")


class EmailVerificationPayload(BaseModel):
    user_id: int = Field(gt=0)
    email: str = Field(min_length=3, max_length=255)
    token: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _email_has_at(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class QuizSubmissionPayload(BaseModel):
    user_id: int = Field(gt=0)
    quiz_id: int = Field(gt=0)
    answers: dict[str, str]
    submitted_at: datetime

    @field_validator("submitted_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are treated as UTC so that the wire format is always RFC 3339.
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class UserStatisticsUpdatePayload(BaseModel):
    """Statistics recompute request.

    ``user_id == 0`` means "every user" (used by the daily batch job).
    """

    user_id: int = Field(ge=0)
    action: str
    data: dict[str, JSONScalar] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_data_keys(self) -> "UserStatisticsUpdatePayload":
        _check_keys("action", self.action, self.data, STATISTICS_ACTION_KEYS)
        return self


class QuizAnalyticsPayload(BaseModel):
    """Quiz analytics event. ``quiz_id == 0`` means "every quiz"."""

    quiz_id: int = Field(ge=0)
    event_type: str
    data: dict[str, JSONScalar] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_data_keys(self) -> "QuizAnalyticsPayload":
        _check_keys("event_type", self.event_type, self.data, ANALYTICS_EVENT_KEYS)
        return self


class ImageUploadPayload(BaseModel):
    user_id: int = Field(gt=0)
    image_url: str
    type: Literal["avatar", "quiz_image"]

    @field_validator("image_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("image_url must be an absolute http(s) URL")
        return v


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    TYPE_EMAIL_VERIFICATION: EmailVerificationPayload,
    TYPE_QUIZ_SUBMISSION: QuizSubmissionPayload,
    TYPE_USER_STATISTICS_UPDATE: UserStatisticsUpdatePayload,
    TYPE_QUIZ_ANALYTICS: QuizAnalyticsPayload,
    TYPE_IMAGE_UPLOAD: ImageUploadPayload,
}


def payload_model_for(task_type: str) -> type[BaseModel]:
    try:
        return PAYLOAD_MODELS[task_type]
    except KeyError:
        raise UnknownTaskTypeError(task_type) from None


def encode_payload(task_type: str, payload: BaseModel) -> bytes:
    """Serialize `payload` for `task_type`.

    The payload must be an instance of the model registered for the type;
    anything else is a caller bug and raises PayloadError.
    """

    model = payload_model_for(task_type)
    if type(payload) is not model:
        raise PayloadError(
            f"{task_type} expects {model.__name__}, got {type(payload).__name__}"
        )

    try:
        # Round-trip through validation so hand-built (model_construct) payloads
        # cannot put data on the wire that the worker would reject.
        checked = model.model_validate(payload.model_dump())
        return checked.model_dump_json().encode("utf-8")
    except (ValidationError, ValueError, TypeError) as e:
        raise PayloadError(f"failed to serialize {task_type} payload: {e}") from e


def decode_payload(task_type: str, data: bytes | str) -> BaseModel:
    model = payload_model_for(task_type)
    try:
        return model.model_validate_json(data)
    except ValidationError as e:
        raise PayloadError(f"failed to decode {task_type} payload: {e}") from e
