import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from trivia.tasks.errors import (
    PayloadError,
    TransientTaskError,
    UnknownTaskTypeError,
    skip_retry,
)
from trivia.tasks.payloads import QuizSubmissionPayload, encode_payload
from trivia.tasks.processor import Processor
from trivia.tasks.retry import AttemptOutcome
from trivia.tasks.types import TYPE_QUIZ_SUBMISSION, Task


def _submission() -> QuizSubmissionPayload:
    return QuizSubmissionPayload(
        user_id=4,
        quiz_id=9,
        answers={"q1": "Venti", "q2": "true"},
        submitted_at=datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc),
    )


def _task(payload: bytes | None = None, **kwargs) -> Task:
    if payload is None:
        payload = encode_payload(TYPE_QUIZ_SUBMISSION, _submission())
    return Task(type=TYPE_QUIZ_SUBMISSION, payload=payload, **kwargs)


class _Recorder:
    def __init__(self, fail_with: BaseException | None = None, sleep: float = 0.0):
        self.calls = []
        self.fail_with = fail_with
        self.sleep = sleep

    async def __call__(self, ctx, payload):
        self.calls.append((ctx, payload))
        if self.sleep:
            await asyncio.sleep(self.sleep)
        if self.fail_with is not None:
            raise self.fail_with


def test_dispatch_calls_handler_once_with_equal_payload():
    handler = _Recorder()
    processor = Processor({TYPE_QUIZ_SUBMISSION: handler})

    result = asyncio.run(processor.process(_task()))

    assert result.outcome is AttemptOutcome.SUCCESS
    assert result.error is None
    assert len(handler.calls) == 1
    ctx, payload = handler.calls[0]
    assert payload == _submission()
    assert ctx.task_type == TYPE_QUIZ_SUBMISSION
    assert ctx.attempt == 1
    assert not ctx.is_last_attempt


def test_context_deadline_follows_task_timeout():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    handler = _Recorder()
    processor = Processor({TYPE_QUIZ_SUBMISSION: handler}, clock=lambda: now)

    asyncio.run(processor.process(_task(timeout=timedelta(minutes=10))))

    ctx, _ = handler.calls[0]
    assert ctx.deadline == now + timedelta(minutes=10)
    assert ctx.remaining() == timedelta(minutes=10)


@pytest.mark.parametrize(
    "payload",
    [
        b"{broken",
        b'{"user_id": 4}',
        b'{"user_id": "four", "quiz_id": 9, "answers": {}, "submitted_at": "2026-03-01T12:30:00Z"}',
    ],
)
def test_malformed_payload_is_permanent_and_skips_handler(payload):
    handler = _Recorder()
    processor = Processor({TYPE_QUIZ_SUBMISSION: handler})

    with pytest.raises(PayloadError):
        asyncio.run(processor.dispatch(_task(payload)))

    result = asyncio.run(processor.process(_task(payload)))
    assert result.outcome is AttemptOutcome.DISCARDED
    assert handler.calls == []


def test_unknown_task_type_is_discarded():
    processor = Processor()
    task = Task(type="quiz:delete", payload=b"{}")

    with pytest.raises(UnknownTaskTypeError):
        asyncio.run(processor.dispatch(task))
    assert asyncio.run(processor.process(task)).outcome is AttemptOutcome.DISCARDED


def test_register_rejects_types_without_payload_schema():
    processor = Processor()
    with pytest.raises(UnknownTaskTypeError):
        processor.register("quiz:delete", _Recorder())
    assert processor.task_types == []


def test_handler_error_is_transient_by_default():
    processor = Processor({TYPE_QUIZ_SUBMISSION: _Recorder(fail_with=RuntimeError("db down"))})

    with pytest.raises(TransientTaskError):
        asyncio.run(processor.dispatch(_task()))

    result = asyncio.run(processor.process(_task(max_retry=2)))
    assert result.outcome is AttemptOutcome.RETRY
    assert isinstance(result.error, TransientTaskError)
    assert isinstance(result.error.__cause__, RuntimeError)


def test_handler_crash_does_not_escape_processor():
    processor = Processor({TYPE_QUIZ_SUBMISSION: _Recorder(fail_with=ZeroDivisionError())})
    result = asyncio.run(processor.process(_task()))
    assert result.outcome is AttemptOutcome.RETRY


def test_handler_can_mark_failure_permanent():
    handler = _Recorder(fail_with=skip_retry("quiz 9 was deleted"))
    processor = Processor({TYPE_QUIZ_SUBMISSION: handler})

    result = asyncio.run(processor.process(_task(max_retry=5)))

    assert result.outcome is AttemptOutcome.DISCARDED
    assert "quiz 9" in str(result.error)


def test_timeout_is_transient():
    handler = _Recorder(sleep=1.0)
    processor = Processor({TYPE_QUIZ_SUBMISSION: handler})

    result = asyncio.run(processor.process(_task(timeout=timedelta(milliseconds=50), max_retry=1)))

    assert result.outcome is AttemptOutcome.RETRY
    assert "timeout" in str(result.error)


def test_last_attempt_failure_is_exhausted():
    processor = Processor({TYPE_QUIZ_SUBMISSION: _Recorder(fail_with=RuntimeError("nope"))})
    result = asyncio.run(processor.process(_task(max_retry=2, retried=2)))
    assert result.outcome is AttemptOutcome.EXHAUSTED
