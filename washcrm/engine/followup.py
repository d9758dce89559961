"""
Follow-up Task Manager - the staff work queue of customer phone follow-ups.

A FollowUpEvent is the recurring anchor per customer and service. When its
next_reminder_date arrives a FollowUpTask is created (outside this module).
Completing the task closes it and moves the event's next_reminder_date to
now + default_interval_months calendar months. That reschedule is a
best-effort secondary write: the task stays completed even if it fails.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from washcrm.bus.events import bus, EVENT_TASK_COMPLETED, EVENT_FOLLOWUP_RESCHEDULED
from washcrm.clock import shop_now, shop_today, to_shop_time
from washcrm.engine import store
from washcrm.engine.outbox import Outbox
from washcrm.errors import NotFoundError
from washcrm.models import FollowUpTask, TaskCompletionResult, TaskQueueEntry

logger = logging.getLogger(__name__)

TASK_PENDING = 'pending'
TASK_COMPLETED = 'completed'

URGENCY_OVERDUE = 'overdue'
URGENCY_TODAY = 'today'
URGENCY_UPCOMING = 'upcoming'


def next_reminder_date(now: datetime, interval_months: int) -> date:
    """Calendar-month addition on the shop calendar; Jan 31 + 1 month -> Feb 28/29."""
    return (to_shop_time(now) + relativedelta(months=interval_months)).date()


def classify_due(due_date: date, today: date) -> str:
    if due_date < today:
        return URGENCY_OVERDUE
    if due_date == today:
        return URGENCY_TODAY
    return URGENCY_UPCOMING


def list_pending_tasks(today: Optional[date] = None, instance_id: Optional[str] = None) -> List[TaskQueueEntry]:
    """Pending tasks, oldest due date first, each tagged overdue/today/upcoming."""
    today = today or shop_today()
    tasks = sorted(store.get_pending_tasks(instance_id=instance_id),
                   key=lambda t: t.due_date or date.max)
    return [
        TaskQueueEntry(
            task=task,
            urgency=classify_due(task.due_date, today) if task.due_date else URGENCY_UPCOMING,
            days_overdue=(today - task.due_date).days if task.due_date else 0,
        )
        for task in tasks
    ]


def _reschedule_event(task: FollowUpTask, next_date: date) -> date:
    if not store.update_followup_event(task.event_id, {'next_reminder_date': next_date}):
        raise NotFoundError(f"Follow-up event {task.event_id} not found")
    return next_date


def complete_task(task_id: str, notes: Optional[str] = None,
                  now: Optional[datetime] = None) -> TaskCompletionResult:
    """
    Close a pending task and push its event forward by the service interval.

    Empty or missing notes keep whatever notes the task already had.
    Raises NotFoundError for an unknown task and PersistenceError when the
    task itself cannot be written. A failed reschedule only adds a warning.
    Completing a task that is already completed changes nothing and returns
    already_completed=True.
    """
    now = now or shop_now()

    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Follow-up task {task_id} not found")
    if task.status == TASK_COMPLETED:
        logger.info(f"complete_task | task {task_id} already completed at {task.completed_at}, skipping")
        return TaskCompletionResult(task=task, already_completed=True)

    final_notes = notes if notes else task.notes
    if not store.update_task(task_id, {
        'status': TASK_COMPLETED,
        'completed_at': now,
        'notes': final_notes,
    }):
        raise NotFoundError(f"Follow-up task {task_id} not found")

    task.status = TASK_COMPLETED
    task.completed_at = now
    task.notes = final_notes
    logger.info(f"Completed follow-up task {task_id} for {task.customer_name}")
    bus.emit(EVENT_TASK_COMPLETED, {'task_id': task_id, 'event_id': task.event_id})

    service = task.event.service if task.event else None
    if service is None or not service.default_interval_months:
        logger.debug(f"complete_task | task {task_id} has no service interval, event not rescheduled")
        return TaskCompletionResult(task=task)

    next_date = next_reminder_date(now, service.default_interval_months)

    outbox = Outbox()
    outbox.add('reschedule_event', _reschedule_event, task, next_date)
    results, warnings = outbox.flush()

    if warnings:
        return TaskCompletionResult(task=task, warnings=warnings)

    task.event.next_reminder_date = next_date
    logger.info(f"Rescheduled follow-up event {task.event_id} to {next_date}")
    bus.emit(EVENT_FOLLOWUP_RESCHEDULED, {'event_id': task.event_id, 'next_reminder_date': next_date})
    return TaskCompletionResult(task=task, next_reminder_date=results['reschedule_event'])
