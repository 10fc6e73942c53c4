import json
from datetime import datetime, timezone

import pytest

from trivia.tasks.errors import PayloadError, PermanentTaskError, UnknownTaskTypeError
from trivia.tasks.payloads import (
    PAYLOAD_MODELS,
    EmailVerificationPayload,
    ImageUploadPayload,
    QuizAnalyticsPayload,
    QuizSubmissionPayload,
    UserStatisticsUpdatePayload,
    decode_payload,
    encode_payload,
    payload_model_for,
)
from trivia.tasks.types import (
    TASK_TYPES,
    TYPE_EMAIL_VERIFICATION,
    TYPE_IMAGE_UPLOAD,
    TYPE_QUIZ_ANALYTICS,
    TYPE_QUIZ_SUBMISSION,
    TYPE_USER_STATISTICS_UPDATE,
)


def test_every_task_type_has_exactly_one_payload_model():
    assert set(PAYLOAD_MODELS) == set(TASK_TYPES)
    assert payload_model_for(TYPE_QUIZ_SUBMISSION) is QuizSubmissionPayload


def test_unknown_task_type_is_permanent():
    with pytest.raises(UnknownTaskTypeError) as exc:
        payload_model_for("quiz:delete")
    assert exc.value.task_type == "quiz:delete"
    assert isinstance(exc.value, PermanentTaskError)


def test_wire_field_names_are_stable():
    data = encode_payload(
        TYPE_EMAIL_VERIFICATION,
        EmailVerificationPayload(user_id=7, email="a@b.c", token="tok"),
    )
    assert json.loads(data) == {"user_id": 7, "email": "a@b.c", "token": "tok"}

    data = encode_payload(
        TYPE_IMAGE_UPLOAD,
        ImageUploadPayload(user_id=7, image_url="https://cdn.example.com/a.png", type="avatar"),
    )
    assert json.loads(data) == {"user_id": 7, "image_url": "https://cdn.example.com/a.png", "type": "avatar"}


def test_encode_rejects_payload_of_another_type():
    with pytest.raises(PayloadError):
        encode_payload(
            TYPE_QUIZ_SUBMISSION,
            EmailVerificationPayload(user_id=1, email="a@b.c", token="t"),
        )


def test_encode_revalidates_constructed_payloads():
    bogus = UserStatisticsUpdatePayload.model_construct(user_id=-5, action="recalculate", data={})
    with pytest.raises(PayloadError):
        encode_payload(TYPE_USER_STATISTICS_UPDATE, bogus)


def test_decode_malformed_json_is_payload_error():
    with pytest.raises(PayloadError):
        decode_payload(TYPE_QUIZ_SUBMISSION, b"{not json")


def test_decode_missing_field_is_payload_error():
    with pytest.raises(PayloadError):
        decode_payload(TYPE_EMAIL_VERIFICATION, b'{"user_id": 1, "email": "a@b.c"}')


def test_submitted_at_without_zone_is_read_as_utc():
    p = decode_payload(
        TYPE_QUIZ_SUBMISSION,
        b'{"user_id": 1, "quiz_id": 2, "answers": {"q1": "Venti"}, "submitted_at": "2026-03-01T12:30:00"}',
    )
    assert p.submitted_at == datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def test_statistics_data_keys_depend_on_action():
    ok = UserStatisticsUpdatePayload(
        user_id=3,
        action="quiz_completed",
        data={"quiz_id": 1, "attempt_id": 9, "score": 30},
    )
    assert ok.data["score"] == 30

    with pytest.raises(ValueError):
        UserStatisticsUpdatePayload(user_id=3, action="quiz_completed", data={"bonus": 1})

    with pytest.raises(ValueError):
        UserStatisticsUpdatePayload(user_id=3, action="reset_everything", data={})


def test_analytics_data_keys_depend_on_event_type():
    QuizAnalyticsPayload(
        quiz_id=0,
        event_type="weekly_batch_analytics",
        data={"type": "weekly_analytics", "week_start": "2026-02-22", "week_end": "2026-03-01"},
    )

    with pytest.raises(ValueError):
        QuizAnalyticsPayload(quiz_id=1, event_type="quiz_created", data={"attempt_id": 1})


def test_data_values_must_be_scalars():
    with pytest.raises(ValueError):
        QuizAnalyticsPayload(quiz_id=1, event_type="quiz_created", data={"created_by": [1, 2]})


@pytest.mark.parametrize(
    "url",
    ["ftp://cdn.example.com/a.png", "/relative/path.png", "https://"],
)
def test_image_url_must_be_absolute_http(url):
    with pytest.raises(ValueError):
        ImageUploadPayload(user_id=1, image_url=url, type="avatar")


def test_image_type_is_closed_set():
    with pytest.raises(ValueError):
        ImageUploadPayload(user_id=1, image_url="https://cdn.example.com/a.png", type="banner")


def test_batch_ids_allow_zero_but_not_negative():
    QuizAnalyticsPayload(quiz_id=0, event_type="weekly_batch_analytics", data={})
    with pytest.raises(ValueError):
        QuizAnalyticsPayload(quiz_id=-1, event_type="weekly_batch_analytics", data={})
    with pytest.raises(ValueError):
        EmailVerificationPayload(user_id=0, email="a@b.c", token="t")
