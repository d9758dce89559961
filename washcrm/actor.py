"""
Current actor identity for completed_by / approved_by fields.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

from washcrm.config import config

_current_actor: ContextVar[Optional[str]] = ContextVar('washcrm_current_actor', default=None)


def current_actor_id() -> Optional[str]:
    """Actor set by the caller, else DEFAULT_ACTOR_ID (may be None)."""
    return _current_actor.get() or config.DEFAULT_ACTOR_ID


@contextmanager
def acting_as(actor_id: Optional[str]):
    """
    Run a block on behalf of an actor.

    Usage:
        with acting_as('user-7'):
            plan_reminders(offer_id, completed_at)
    """
    token = _current_actor.set(actor_id)
    try:
        yield actor_id
    finally:
        _current_actor.reset(token)
