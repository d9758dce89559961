"""
Reminder Planner - schedule customer reminders when an offer is completed.

Completing an offer is a primary transition (status, completed_at,
completed_by) followed by a best-effort reminder batch. Every product bought
in a selected option that carries a reminder template yields one reminder per
template entry, dated DAYS_PER_MONTH x months after completion.

DAYS_PER_MONTH = 30.44 is the average month length. Reminder dates are NOT
calendar-month arithmetic: 6 months after 2026-01-31 00:00 is
(2026-01-31 00:00 + 182.64 days).date() == 2026-08-01. Follow-up tasks use calendar
months instead (see washcrm.engine.followup); the two are independent.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from washcrm.actor import current_actor_id
from washcrm.bus.events import (
    bus, EVENT_OFFER_COMPLETED, EVENT_REMINDERS_PLANNED, EVENT_REMINDER_DELETED,
    EVENT_REMINDERS_DELETED, EVENT_REMINDER_CANCELLED,
)
from washcrm.clock import shop_now, shop_today, to_shop_time
from washcrm.engine import store
from washcrm.engine.offers import load_offer
from washcrm.engine.outbox import Outbox
from washcrm.errors import NotFoundError
from washcrm.models import Offer, OfferOption, OfferReminder, Product, ReminderPlanResult

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.44

STATUS_COMPLETED = 'completed'

REMINDER_SCHEDULED = 'scheduled'
REMINDER_CANCELLED = 'cancelled'


def reminder_date(completed_at: datetime, months: int) -> date:
    """completed_at + months x 30.44 days, as a date on the shop calendar."""
    return (to_shop_time(completed_at) + timedelta(days=months * DAYS_PER_MONTH)).date()


def build_reminders(offer: Offer, options: List[OfferOption], completed_at: datetime) -> List[OfferReminder]:
    """
    Materialize reminders for the selected options of a completed offer.

    Products are de-duplicated by product id: the first item that references
    a product decides its display name (custom_name, else product name).
    Items without a product, or whose product has no template entries, are
    ignored.
    """
    plan: Dict[str, tuple] = {}

    for option in options:
        if not option.is_selected:
            continue
        for item in option.items:
            product: Optional[Product] = item.product
            if product is None or product.id is None:
                continue
            template = product.reminder_template
            if template is None or not template.items:
                continue
            if product.id in plan:
                continue
            plan[product.id] = (item.custom_name or product.name, template)

    reminders = []
    for product_id, (service_name, template) in plan.items():
        for entry in template.items:
            reminders.append(OfferReminder(
                offer_id=offer.id,
                product_id=product_id,
                instance_id=offer.instance_id,
                customer_name=offer.customer_name,
                customer_phone=offer.customer_phone,
                service_name=service_name,
                scheduled_date=reminder_date(completed_at, entry.months),
                months_after=entry.months,
                is_paid=entry.is_paid,
                service_type=entry.service_type,
                sms_template=template.sms_template,
                status=REMINDER_SCHEDULED,
            ))

    logger.debug(f"build_reminders | offer={offer.id} products={len(plan)} reminders={len(reminders)}")
    return reminders


def _create_reminders(offer: Offer, completed_at: datetime) -> int:
    options = store.get_offer_options(offer.id, selected_only=True)
    reminders = build_reminders(offer, options, completed_at)
    if not reminders:
        return 0
    return store.insert_reminders(offer.id, reminders)


def plan_reminders(offer_id: str, completed_at: Optional[datetime] = None,
                   actor_id: Optional[str] = None) -> ReminderPlanResult:
    """
    Mark an offer completed and schedule its reminders.

    The completion is written first and always sticks. The reminder batch runs
    through the outbox: if it fails the result carries a warning and the offer
    stays completed. Calling this for an offer that is already completed does
    nothing and returns already_completed=True.

    Raises NotFoundError if the offer does not exist and PersistenceError if
    the completion itself cannot be written.
    """
    completed_at = completed_at or shop_now()
    offer = load_offer(offer_id)

    if offer.status == STATUS_COMPLETED:
        logger.info(f"plan_reminders | offer {offer_id} already completed at {offer.completed_at}, skipping")
        return ReminderPlanResult(offer_id=offer_id, already_completed=True)

    actor = actor_id or current_actor_id()
    updated = store.update_offer(offer_id, {
        'status': STATUS_COMPLETED,
        'completed_at': completed_at,
        'completed_by': actor,
    })
    if not updated:
        raise NotFoundError(f"Offer {offer_id} not found")

    offer.status = STATUS_COMPLETED
    offer.completed_at = completed_at
    offer.completed_by = actor
    logger.info(f"Offer {offer_id} marked completed at {completed_at} by {actor}")
    bus.emit(EVENT_OFFER_COMPLETED, {'offer_id': offer_id, 'completed_at': completed_at})

    outbox = Outbox()
    outbox.add('create_reminders', _create_reminders, offer, completed_at)
    results, warnings = outbox.flush()

    count = results.get('create_reminders', 0)
    if not warnings:
        logger.info(f"Planned {count} reminders for offer {offer_id}")
        bus.emit(EVENT_REMINDERS_PLANNED, {'offer_id': offer_id, 'count': count})

    return ReminderPlanResult(offer_id=offer_id, count=count, warnings=warnings)


# =============================================================================
# REMINDER MAINTENANCE
# =============================================================================

def list_offer_reminders(offer_id: str) -> List[OfferReminder]:
    return store.get_reminders(offer_id)


def list_due_reminders(today: Optional[date] = None, instance_id: Optional[str] = None) -> List[OfferReminder]:
    """Scheduled reminders due on or before today, for the SMS sender."""
    return store.get_due_reminders(today or shop_today(), instance_id=instance_id)


def delete_reminder(reminder_id: str) -> bool:
    """Delete a single reminder. The offer's completed status is untouched."""
    deleted = store.delete_reminders(reminder_id=reminder_id)
    if deleted:
        bus.emit(EVENT_REMINDER_DELETED, {'reminder_id': reminder_id})
    return deleted > 0


def delete_offer_reminders(offer_id: str) -> int:
    """Delete every reminder of an offer. The offer's completed status is untouched."""
    deleted = store.delete_reminders(offer_id=offer_id)
    if deleted:
        bus.emit(EVENT_REMINDERS_DELETED, {'offer_id': offer_id, 'count': deleted})
    return deleted


def cancel_reminder(reminder_id: str, reason: Optional[str] = None,
                    now: Optional[datetime] = None) -> bool:
    """Keep the reminder for history but stop it from being sent."""
    updated = store.update_reminder(reminder_id, {
        'status': REMINDER_CANCELLED,
        'cancelled_at': now or datetime.now(timezone.utc),
        'cancelled_reason': reason,
    })
    if updated:
        logger.info(f"Cancelled reminder {reminder_id}: {reason or '(no reason)'}")
        bus.emit(EVENT_REMINDER_CANCELLED, {'reminder_id': reminder_id, 'reason': reason})
    return updated
