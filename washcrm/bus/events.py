"""
Event Bus - engine notifications.

Engine modules announce state changes here (amount approved, offer completed,
reminders planned, task completed, secondary write failed). Listeners such as
an SMS sender or an audit trail subscribe without the engine importing them.
Handlers run synchronously inside emit(); a failing handler is logged and
never fails the operation that emitted.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]


class EventBus:
    """In-process publish/subscribe keyed by event name."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, event_name: str, handler: Handler):
        """Subscribe handler to event_name. Handlers receive the event_data dict."""
        self._handlers[event_name].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)!s} to '{event_name}'")

    def emit(self, event_name: str, event_data: Optional[Dict[str, Any]] = None):
        """Call every handler of event_name in subscription order."""
        event_data = event_data if event_data is not None else {}
        logger.debug(f"Emitting '{event_name}': {event_data}")

        for handler in list(self._handlers.get(event_name, ())):
            try:
                handler(event_data)
            except Exception:
                logger.exception(f"Handler {getattr(handler, '__name__', handler)!s} failed for '{event_name}'")

    def clear(self):
        """Drop all subscriptions (tests, CLI re-entry)."""
        self._handlers.clear()


# Singleton instance
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Offer settlement
EVENT_OFFER_AMOUNT_APPROVED = 'offer_amount_approved'
EVENT_OFFER_AMOUNT_EDITED = 'offer_amount_edited'
EVENT_OFFER_COMPLETED = 'offer_completed'

# Reminder planner
EVENT_REMINDERS_PLANNED = 'reminders_planned'
EVENT_REMINDER_DELETED = 'reminder_deleted'
EVENT_REMINDERS_DELETED = 'reminders_deleted'
EVENT_REMINDER_CANCELLED = 'reminder_cancelled'

# Follow-up tasks
EVENT_TASK_COMPLETED = 'task_completed'
EVENT_FOLLOWUP_RESCHEDULED = 'followup_rescheduled'

# Outbox
EVENT_SECONDARY_WRITE_FAILED = 'secondary_write_failed'
