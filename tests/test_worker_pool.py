import asyncio
import random
from collections import Counter

import pytest

from trivia.tasks.broker import MemoryBroker
from trivia.tasks.client import TaskClient
from trivia.tasks.payloads import QuizAnalyticsPayload
from trivia.tasks.processor import Processor
from trivia.tasks.retry import AttemptOutcome, no_delay
from trivia.tasks.types import TYPE_QUIZ_ANALYTICS, QueueName, Task
from trivia.tasks.worker import WorkerPool


def _payload(n: int) -> QuizAnalyticsPayload:
    return QuizAnalyticsPayload(quiz_id=n, event_type="quiz_created", data={"created_by": n})


def test_hundred_tasks_across_queues_complete_exactly_once():
    broker = MemoryBroker(rng=random.Random(1))
    client = TaskClient(broker)
    seen: Counter = Counter()

    async def handler(ctx, payload):
        seen[payload.quiz_id] += 1
        await asyncio.sleep(0.002)

    processor = Processor({TYPE_QUIZ_ANALYTICS: handler})
    queues = [QueueName.CRITICAL, QueueName.DEFAULT, QueueName.LOW]
    ids = [client.enqueue(TYPE_QUIZ_ANALYTICS, _payload(n), queue=queues[n % 3]) for n in range(1, 101)]

    async def _run():
        pool = WorkerPool(broker, processor, concurrency=10, retry_delay=no_delay, poll_interval=0.005)
        pool.start()
        await pool.drain(timeout=10)
        await pool.shutdown(grace=1)
        return pool

    pool = asyncio.run(_run())

    assert sorted(broker.completed) == sorted(ids)
    assert len(set(broker.completed)) == 100
    assert all(count == 1 for count in seen.values()) and len(seen) == 100
    assert broker.archived == []
    assert 1 < pool.max_in_flight <= 10
    assert pool.outcomes == Counter({AttemptOutcome.SUCCESS: 100})


def test_weighted_fetch_prefers_critical():
    broker = MemoryBroker(rng=random.Random(7))
    for q in QueueName:
        for _ in range(300):
            broker.publish(Task(type=TYPE_QUIZ_ANALYTICS, payload=b"{}", queue=q))

    first = Counter(broker.fetch().queue for _ in range(300))

    assert first[QueueName.CRITICAL] > first[QueueName.DEFAULT] > first[QueueName.LOW] > 0


def test_queue_with_zero_weight_is_not_consumed():
    broker = MemoryBroker(weights={"critical": 1, "default": 1, "low": 0})
    broker.publish(Task(type=TYPE_QUIZ_ANALYTICS, payload=b"{}", queue=QueueName.LOW))
    assert broker.fetch() is None


def test_fifo_within_a_queue():
    broker = MemoryBroker()
    tasks = [Task(type=TYPE_QUIZ_ANALYTICS, payload=b"{}") for _ in range(5)]
    for t in tasks:
        broker.publish(t)
    assert [broker.fetch().id for _ in tasks] == [t.id for t in tasks]


def test_shutdown_requeues_interrupted_tasks():
    broker = MemoryBroker()
    client = TaskClient(broker)

    async def _run():
        running = asyncio.Event()

        async def slow(ctx, payload):
            running.set()
            await asyncio.sleep(10)

        pool = WorkerPool(broker, Processor({TYPE_QUIZ_ANALYTICS: slow}), concurrency=1, poll_interval=0.005)
        task_id = client.enqueue(TYPE_QUIZ_ANALYTICS, _payload(1))
        pool.start()
        await asyncio.wait_for(running.wait(), timeout=2)
        assert pool.in_flight == 1

        await pool.shutdown(grace=0.05)
        return pool, task_id

    pool, task_id = asyncio.run(_run())

    assert not pool.running
    assert broker.completed == []
    assert broker.pending() == 1
    requeued = broker.fetch()
    assert requeued.id == task_id
    assert requeued.retried == 0


def test_shutdown_waits_for_short_in_flight_tasks():
    broker = MemoryBroker()
    client = TaskClient(broker)

    async def quick(ctx, payload):
        await asyncio.sleep(0.05)

    async def _run():
        pool = WorkerPool(broker, Processor({TYPE_QUIZ_ANALYTICS: quick}), concurrency=1, poll_interval=0.005)
        client.enqueue(TYPE_QUIZ_ANALYTICS, _payload(1))
        pool.start()
        await asyncio.sleep(0.02)
        await pool.shutdown(grace=2)

    asyncio.run(_run())

    assert len(broker.completed) == 1
    assert broker.pending() == 0


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        WorkerPool(MemoryBroker(), Processor(), concurrency=0)


def test_pool_processes_again_after_restart():
    broker = MemoryBroker()
    client = TaskClient(broker)
    seen = []

    async def handler(ctx, payload):
        seen.append(payload.quiz_id)

    async def _run():
        pool = WorkerPool(broker, Processor({TYPE_QUIZ_ANALYTICS: handler}), concurrency=2, poll_interval=0.005)
        pool.start()
        client.enqueue(TYPE_QUIZ_ANALYTICS, _payload(1))
        await pool.drain(timeout=2)
        await pool.shutdown(grace=1)
        assert not pool.running

        pool.start()
        assert pool.running
        client.enqueue(TYPE_QUIZ_ANALYTICS, _payload(2))
        await pool.drain(timeout=2)
        await pool.shutdown(grace=1)

    asyncio.run(_run())

    assert seen == [1, 2]
    assert len(broker.completed) == 2
