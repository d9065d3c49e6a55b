"""Savepoint helper for partial rollback inside a unit of work."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def savepoint(session: Session) -> Generator[Session]:
    """Context manager for nested transaction (savepoint).

    On exception, rolls back only to the savepoint without affecting the
    outer transaction. Used for the inline re-dispatch after a
    reassignment: a failed dispatch must not undo the reassignment itself.
    """
    nested = session.begin_nested()
    try:
        yield session
        nested.commit()
    except Exception:
        nested.rollback()
        raise
