"""Deferred dispatch task persistence."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..schema import DispatchTask


class DispatchTaskRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, task: DispatchTask) -> None:
        self.session.add(task)
        self.session.flush()

    def get(self, task_id: str) -> DispatchTask | None:
        return self.session.get(DispatchTask, task_id, populate_existing=True)

    def list_due(self, now: datetime, limit: int) -> list[DispatchTask]:
        stmt = (
            select(DispatchTask)
            .where(DispatchTask.status == "queued", DispatchTask.run_after <= now)
            .order_by(DispatchTask.run_after)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars().all())

    def claim(self, task_id: str, observed_attempts: int, lease_until: datetime) -> bool:
        """Take a lease on a queued task. A worker that dies leaves it due again after the lease."""
        stmt = (
            update(DispatchTask)
            .where(
                DispatchTask.id == task_id,
                DispatchTask.status == "queued",
                DispatchTask.attempts == observed_attempts,
            )
            .values(attempts=observed_attempts + 1, run_after=lease_until)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def finish(
        self,
        task_id: str,
        status: str,
        last_error: str | None = None,
        run_after: datetime | None = None,
    ) -> None:
        values: dict[str, object] = {"status": status, "last_error": last_error}
        if run_after is not None:
            values["run_after"] = run_after
        self.session.execute(
            update(DispatchTask)
            .where(DispatchTask.id == task_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def has_queued_for_ride(self, ride_id: str) -> bool:
        stmt = select(DispatchTask.id).where(
            DispatchTask.ride_id == ride_id, DispatchTask.status == "queued"
        )
        return self.session.execute(stmt).first() is not None
