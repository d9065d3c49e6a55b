"""Persisted queue of deferred re-dispatch work."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.retry import RetryConfig
from ..db.repositories.task_repository import DispatchTaskRepository
from ..db.schema import DispatchTask as DispatchTaskRow
from ..db.utils import Clock, utc_now

logger = logging.getLogger(__name__)

TaskStatus = Literal["queued", "done", "failed"]

LEASE_SECONDS = 30


class DispatchTask(BaseModel):
    id: str
    ride_id: str
    reason: str
    run_after: datetime
    attempts: int = 0
    status: TaskStatus = "queued"
    last_error: str | None = None


class DispatchTaskQueue:
    """Deferred dispatches, drained by the maintenance worker.

    A claim is a lease: the task stays queued with run_after pushed forward,
    so a worker that dies mid-task leaves it due again once the lease ends.
    Failures are retried with the RetryConfig backoff until attempts run out.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock = utc_now,
        retry_config: RetryConfig | None = None,
    ):
        self.tasks = DispatchTaskRepository(session)
        self.clock = clock
        self.retry_config = retry_config or RetryConfig(max_attempts=5, base_delay=1.0)

    def enqueue(self, ride_id: str, reason: str, delay_seconds: float) -> DispatchTask:
        row = DispatchTaskRow(
            id=str(uuid.uuid4()),
            ride_id=ride_id,
            reason=reason,
            run_after=self.clock() + timedelta(seconds=delay_seconds),
            attempts=0,
            status="queued",
        )
        self.tasks.add(row)
        logger.debug(f"Queued re-dispatch of ride {ride_id} ({reason}) in {delay_seconds}s")
        return self._to_domain(row)

    def claim_due(self, limit: int) -> list[DispatchTask]:
        now = self.clock()
        lease_until = now + timedelta(seconds=LEASE_SECONDS)
        claimed = []
        for row in self.tasks.list_due(now, limit):
            if self.tasks.claim(row.id, row.attempts, lease_until):
                task = self._to_domain(row)
                claimed.append(task.model_copy(update={"attempts": row.attempts + 1}))
        return claimed

    def complete(self, task: DispatchTask) -> None:
        self.tasks.finish(task.id, "done")

    def fail(self, task: DispatchTask, error: str) -> TaskStatus:
        """Schedule a retry with backoff, or mark failed once attempts are exhausted."""
        if self.retry_config.exhausted(task.attempts):
            logger.error(f"Dispatch task {task.id} for ride {task.ride_id} failed: {error}")
            self.tasks.finish(task.id, "failed", last_error=error)
            return "failed"
        delay = self.retry_config.delay_for(task.attempts - 1)
        self.tasks.finish(
            task.id,
            "queued",
            last_error=error,
            run_after=self.clock() + timedelta(seconds=delay),
        )
        return "queued"

    def get(self, task_id: str) -> DispatchTask | None:
        row = self.tasks.get(task_id)
        return self._to_domain(row) if row is not None else None

    def _to_domain(self, row: DispatchTaskRow) -> DispatchTask:
        return DispatchTask(
            id=row.id,
            ride_id=row.ride_id,
            reason=row.reason,
            run_after=row.run_after,
            attempts=row.attempts,
            status=row.status,  # type: ignore[arg-type]
            last_error=row.last_error,
        )
