"""Side effects that run only once the surrounding transaction has committed."""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_CALLBACKS_KEY = "after_commit_callbacks"


def defer(session: Session, callback: Callable[[], None]) -> None:
    """Queue a callback to run after the session's next successful commit."""
    session.info.setdefault(_CALLBACKS_KEY, []).append(callback)


def pending_callbacks(session: Session) -> int:
    return len(session.info.get(_CALLBACKS_KEY, []))


def _run_callbacks(session: Session) -> None:
    callbacks = session.info.pop(_CALLBACKS_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.exception("After-commit callback failed")


def _discard_callbacks(session: Session) -> None:
    dropped = session.info.pop(_CALLBACKS_KEY, [])
    if dropped:
        logger.debug(f"Discarded {len(dropped)} side effects after rollback")


def install_outbox(session_factory: sessionmaker[Any]) -> None:
    """Attach the after-commit hooks to every session the factory creates."""
    event.listen(session_factory, "after_commit", _run_callbacks)
    event.listen(session_factory, "after_rollback", _discard_callbacks)
