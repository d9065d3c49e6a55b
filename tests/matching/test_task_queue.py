"""Tests for the persisted re-dispatch task queue."""

import pytest

from captain_dispatch.core.retry import RetryConfig
from captain_dispatch.matching.task_queue import LEASE_SECONDS, DispatchTaskQueue


@pytest.fixture
def queue_session(session_factory):
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def queue(queue_session, clock):
    return DispatchTaskQueue(
        queue_session, clock, RetryConfig(max_attempts=5, base_delay=1.0)
    )


@pytest.mark.unit
class TestDispatchTaskQueue:
    def test_task_is_due_after_delay(self, queue, clock):
        task = queue.enqueue("ride-1", "all_declined", delay_seconds=0.5)

        assert queue.claim_due(10) == []

        clock.advance(seconds=0.5)
        [claimed] = queue.claim_due(10)
        assert claimed.id == task.id
        assert claimed.attempts == 1

    def test_claim_is_a_lease(self, queue, clock):
        queue.enqueue("ride-1", "all_declined", delay_seconds=0)
        assert len(queue.claim_due(10)) == 1

        clock.advance(seconds=LEASE_SECONDS - 1)
        assert queue.claim_due(10) == []

        clock.advance(seconds=2)
        [reclaimed] = queue.claim_due(10)
        assert reclaimed.attempts == 2

    def test_completed_task_is_not_claimed_again(self, queue, clock):
        queue.enqueue("ride-1", "all_declined", delay_seconds=0)
        [task] = queue.claim_due(10)

        queue.complete(task)
        clock.advance(seconds=LEASE_SECONDS + 1)

        assert queue.claim_due(10) == []
        assert queue.get(task.id).status == "done"

    def test_failures_back_off_exponentially(self, queue, clock):
        task = queue.enqueue("ride-1", "captain_no_response", delay_seconds=0)

        delays = []
        for _ in range(4):
            [claimed] = queue.claim_due(10)
            assert queue.fail(claimed, "boom") == "queued"
            retry_at = queue.get(task.id).run_after
            delays.append((retry_at - clock.now).total_seconds())
            clock.now = retry_at

        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_task_fails_after_max_attempts(self, queue, clock):
        task = queue.enqueue("ride-1", "captain_no_response", delay_seconds=0)

        statuses = []
        for _ in range(5):
            [claimed] = queue.claim_due(10)
            statuses.append(queue.fail(claimed, "still broken"))
            clock.advance(seconds=60)

        assert statuses == ["queued"] * 4 + ["failed"]
        stored = queue.get(task.id)
        assert stored.status == "failed"
        assert stored.last_error == "still broken"
        assert queue.claim_due(10) == []

    def test_claims_respect_limit(self, queue):
        for i in range(3):
            queue.enqueue(f"ride-{i}", "all_declined", delay_seconds=0)

        assert len(queue.claim_due(2)) == 2
        assert len(queue.claim_due(2)) == 1
