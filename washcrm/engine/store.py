"""
Store - PostgreSQL persistence for offers, reminders and follow-up tasks.
Rows come back from RealDictCursor as dicts and are mapped onto the dataclasses
in washcrm.models. Every psycopg2 error is re-raised as PersistenceError.
"""

import functools
import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg2
import psycopg2.extensions

from washcrm.config import config
from washcrm.db.connection import get_db_cursor
from washcrm.errors import PersistenceError
from washcrm.models import (
    FollowUpEvent, FollowUpService, FollowUpTask, Offer, OfferOption,
    OfferOptionItem, OfferReminder, Product, ReminderTemplate, TemplateItem,
)

logger = logging.getLogger(__name__)

# Allowlists for dynamic UPDATE queries; column names never come from user input directly
_OFFER_COLUMNS = {
    'status', 'completed_at', 'completed_by', 'admin_approved_net',
    'admin_approved_gross', 'approved_at', 'approved_by',
}
_REMINDER_COLUMNS = {'status', 'cancelled_at', 'cancelled_reason'}
_TASK_COLUMNS = {'status', 'completed_at', 'notes'}
_EVENT_COLUMNS = {'next_reminder_date', 'notes', 'status'}

_OFFER_SELECT = """
    SELECT id, offer_number, instance_id, customer_data, status, vat_rate,
           total_net, total_gross, admin_approved_net, admin_approved_gross,
           approved_at, approved_by, selected_state, completed_at, completed_by,
           created_at, updated_at
    FROM offers
"""

_TASK_SELECT = """
    SELECT t.id, t.event_id, t.title, t.customer_name, t.customer_phone,
           t.due_date, t.status, t.notes, t.completed_at,
           e.customer_name AS event_customer_name,
           e.customer_phone AS event_customer_phone,
           e.followup_service_id, e.next_reminder_date,
           s.name AS service_name, s.default_interval_months
    FROM followup_tasks t
    LEFT JOIN followup_events e ON e.id = t.event_id
    LEFT JOIN followup_services s ON s.id = e.followup_service_id
"""


def _validate_columns(updates: Dict[str, Any], allowed: set, entity: str) -> None:
    """Raise ValueError if any key in updates is not an allowed column name."""
    invalid = set(updates.keys()) - allowed
    if invalid:
        raise ValueError(f"Invalid {entity} fields: {invalid}")


def _persistence(func):
    """Re-raise driver errors as PersistenceError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except psycopg2.extensions.QueryCanceledError as e:
            # statement_timeout: the write may or may not have committed
            raise PersistenceError(f"{func.__name__} timed out, outcome unknown; re-query before retrying: {e}") from e
        except psycopg2.Error as e:
            raise PersistenceError(f"{func.__name__} failed: {e}") from e
    return wrapper


def _update(table: str, row_id: Any, updates: Dict[str, Any], allowed: set, entity: str,
            touch_updated_at: bool = True) -> bool:
    if not updates:
        return False

    _validate_columns(updates, allowed, entity)

    # Keys are validated against the allowlist above
    set_clause = ', '.join(f"{key} = %({key})s" for key in updates.keys())
    if touch_updated_at:
        set_clause += ', updated_at = NOW()'

    params = dict(updates)
    params['row_id'] = row_id

    with get_db_cursor() as cur:
        cur.execute(f"""
            UPDATE {table}
            SET {set_clause}
            WHERE id = %(row_id)s
        """, params)
        updated = cur.rowcount > 0

    if updated:
        logger.info(f"Updated {entity} {row_id}: {list(updates.keys())}")
    return updated


# =============================================================================
# ROW MAPPING
# =============================================================================

def _template_items(raw) -> List[TemplateItem]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    return [
        TemplateItem(
            months=int(entry.get('months') or 0),
            is_paid=bool(entry.get('is_paid')),
            service_type=entry.get('service_type') or 'service',
        )
        for entry in raw
    ]


def _offer_from_row(row: Dict[str, Any]) -> Offer:
    data = dict(row)
    if isinstance(data.get('customer_data'), str):
        data['customer_data'] = json.loads(data['customer_data'])
    data['customer_data'] = data.get('customer_data') or {}
    if data.get('vat_rate') is None:
        data['vat_rate'] = Decimal(config.DEFAULT_VAT_RATE)
    return Offer(**data)


def _item_from_row(row: Dict[str, Any]) -> OfferOptionItem:
    product = None
    if row.get('product_id'):
        template = None
        if row.get('reminder_template_id'):
            template = ReminderTemplate(
                id=row['reminder_template_id'],
                name=row.get('template_name') or '',
                sms_template=row.get('sms_template') or '',
                items=_template_items(row.get('template_items')),
            )
        product = Product(
            id=row['product_id'],
            name=row.get('product_name') or '',
            reminder_template_id=row.get('reminder_template_id'),
            reminder_template=template,
        )
    return OfferOptionItem(
        id=row['id'],
        option_id=row['option_id'],
        product_id=row.get('product_id'),
        custom_name=row.get('custom_name'),
        unit_price=row.get('unit_price') or 0,
        quantity=row.get('quantity') or 1,
        discount_percent=row.get('discount_percent') or 0,
        is_optional=bool(row.get('is_optional')),
        sort_order=row.get('sort_order') or 0,
        product=product,
    )


def _task_from_row(row: Dict[str, Any]) -> FollowUpTask:
    service = None
    if row.get('followup_service_id'):
        service = FollowUpService(
            id=row['followup_service_id'],
            name=row.get('service_name') or '',
            default_interval_months=row.get('default_interval_months'),
        )
    event = None
    if row.get('event_id'):
        event = FollowUpEvent(
            id=row['event_id'],
            customer_name=row.get('event_customer_name') or '',
            customer_phone=row.get('event_customer_phone') or '',
            followup_service_id=row.get('followup_service_id'),
            next_reminder_date=row.get('next_reminder_date'),
            service=service,
        )
    return FollowUpTask(
        id=row['id'],
        event_id=row.get('event_id'),
        title=row.get('title') or '',
        customer_name=row.get('customer_name') or '',
        customer_phone=row.get('customer_phone') or '',
        due_date=row.get('due_date'),
        status=row.get('status') or 'pending',
        notes=row.get('notes'),
        completed_at=row.get('completed_at'),
        event=event,
    )


# =============================================================================
# OFFERS
# =============================================================================

@_persistence
def get_offer(offer_id: str, with_options: bool = False) -> Optional[Offer]:
    """Get offer by ID, optionally with its options and items."""
    with get_db_cursor() as cur:
        cur.execute(_OFFER_SELECT + " WHERE id = %s", (offer_id,))
        row = cur.fetchone()

    if not row:
        logger.debug(f"get_offer: offer_id={offer_id} not found")
        return None

    offer = _offer_from_row(row)
    if with_options:
        offer.offer_options = get_offer_options(offer_id)
    return offer


@_persistence
def get_offer_options(offer_id: str, selected_only: bool = False) -> List[OfferOption]:
    """
    Options of an offer with nested items, each item's product and that
    product's reminder template.
    """
    selected_clause = "AND o.is_selected = TRUE" if selected_only else ""

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT o.id, o.offer_id, o.name, o.scope_id, o.is_upsell,
                   o.is_selected, o.subtotal_net, o.sort_order
            FROM offer_options o
            WHERE o.offer_id = %(offer_id)s {selected_clause}
            ORDER BY o.sort_order ASC
        """, {'offer_id': offer_id})
        option_rows = cur.fetchall()

        cur.execute(f"""
            SELECT i.id, i.option_id, i.product_id, i.custom_name, i.unit_price,
                   i.quantity, i.discount_percent, i.is_optional, i.sort_order,
                   p.name AS product_name, p.reminder_template_id,
                   t.name AS template_name, t.sms_template, t.items AS template_items
            FROM offer_option_items i
            JOIN offer_options o ON o.id = i.option_id
            LEFT JOIN unified_services p ON p.id = i.product_id
            LEFT JOIN reminder_templates t ON t.id = p.reminder_template_id
            WHERE o.offer_id = %(offer_id)s {selected_clause}
            ORDER BY i.sort_order ASC
        """, {'offer_id': offer_id})
        item_rows = cur.fetchall()

    options = [OfferOption(**row) for row in option_rows]
    by_id = {option.id: option for option in options}
    for row in item_rows:
        option = by_id.get(row['option_id'])
        if option is not None:
            option.items.append(_item_from_row(row))

    logger.debug(f"get_offer_options: offer_id={offer_id} → {len(options)} options, {len(item_rows)} items")
    return options


@_persistence
def update_offer(offer_id: str, updates: Dict[str, Any]) -> bool:
    """
    Update offer fields in a single statement.
    Returns: True if updated, False if not found
    """
    return _update('offers', offer_id, updates, _OFFER_COLUMNS, 'offer')


# =============================================================================
# REMINDERS
# =============================================================================

@_persistence
def insert_reminders(offer_id: str, reminders: List[OfferReminder]) -> int:
    """Insert a batch of reminders for an offer in one transaction. Returns count."""
    if not reminders:
        return 0

    with get_db_cursor() as cur:
        for reminder in reminders:
            params = dict(reminder.__dict__)
            params['offer_id'] = offer_id
            cur.execute("""
                INSERT INTO offer_reminders (
                    offer_id, product_id, instance_id, customer_name, customer_phone,
                    service_name, scheduled_date, months_after, is_paid, service_type,
                    sms_template, status, created_at
                ) VALUES (
                    %(offer_id)s, %(product_id)s, %(instance_id)s, %(customer_name)s,
                    %(customer_phone)s, %(service_name)s, %(scheduled_date)s,
                    %(months_after)s, %(is_paid)s, %(service_type)s, %(sms_template)s,
                    %(status)s, NOW()
                )
            """, params)

    logger.info(f"Inserted {len(reminders)} reminders for offer {offer_id}")
    return len(reminders)


@_persistence
def get_reminders(offer_id: str) -> List[OfferReminder]:
    """All reminders of an offer, soonest first."""
    with get_db_cursor() as cur:
        cur.execute("""
            SELECT id, offer_id, product_id, instance_id, customer_name, customer_phone,
                   service_name, scheduled_date, months_after, is_paid, service_type,
                   sms_template, status, cancelled_at, cancelled_reason, created_at
            FROM offer_reminders
            WHERE offer_id = %s
            ORDER BY scheduled_date ASC
        """, (offer_id,))
        rows = cur.fetchall()

    logger.debug(f"get_reminders: offer_id={offer_id} → {len(rows)} reminders")
    return [OfferReminder(**row) for row in rows]


@_persistence
def count_reminders(offer_id: str) -> int:
    with get_db_cursor() as cur:
        cur.execute("SELECT COUNT(*) AS n FROM offer_reminders WHERE offer_id = %s", (offer_id,))
        return cur.fetchone()['n']


@_persistence
def get_due_reminders(today: date, instance_id: Optional[str] = None) -> List[OfferReminder]:
    """Scheduled reminders whose date has arrived."""
    conditions = ["status = 'scheduled'", "scheduled_date <= %(today)s"]
    params: Dict[str, Any] = {'today': today}

    if instance_id:
        conditions.append("instance_id = %(instance_id)s")
        params['instance_id'] = instance_id

    where_clause = " AND ".join(conditions)

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT id, offer_id, product_id, instance_id, customer_name, customer_phone,
                   service_name, scheduled_date, months_after, is_paid, service_type,
                   sms_template, status, cancelled_at, cancelled_reason, created_at
            FROM offer_reminders
            WHERE {where_clause}
            ORDER BY scheduled_date ASC
        """, params)
        rows = cur.fetchall()

    logger.debug(f"get_due_reminders: {len(rows)} due on or before {today}")
    return [OfferReminder(**row) for row in rows]


@_persistence
def update_reminder(reminder_id: str, updates: Dict[str, Any]) -> bool:
    return _update('offer_reminders', reminder_id, updates, _REMINDER_COLUMNS, 'reminder',
                   touch_updated_at=False)


@_persistence
def delete_reminders(offer_id: Optional[str] = None, reminder_id: Optional[str] = None) -> int:
    """
    Delete one reminder (reminder_id) or every reminder of an offer (offer_id).
    Returns number of rows deleted. Never touches the offer itself.
    """
    if (offer_id is None) == (reminder_id is None):
        raise ValueError("Pass exactly one of offer_id or reminder_id")

    with get_db_cursor() as cur:
        if reminder_id is not None:
            cur.execute("DELETE FROM offer_reminders WHERE id = %s", (reminder_id,))
        else:
            cur.execute("DELETE FROM offer_reminders WHERE offer_id = %s", (offer_id,))
        deleted = cur.rowcount

    logger.info(f"Deleted {deleted} reminder(s) (offer_id={offer_id}, reminder_id={reminder_id})")
    return deleted


# =============================================================================
# FOLLOW-UP TASKS
# =============================================================================

@_persistence
def get_task(task_id: str) -> Optional[FollowUpTask]:
    """Get task by ID with its event and the event's service."""
    with get_db_cursor() as cur:
        cur.execute(_TASK_SELECT + " WHERE t.id = %s", (task_id,))
        row = cur.fetchone()

    if row:
        return _task_from_row(row)
    logger.debug(f"get_task: task_id={task_id} not found")
    return None


@_persistence
def get_pending_tasks(instance_id: Optional[str] = None) -> List[FollowUpTask]:
    """Pending tasks ordered by due date, oldest first."""
    conditions = ["t.status = 'pending'"]
    params: Dict[str, Any] = {}

    if instance_id:
        conditions.append("t.instance_id = %(instance_id)s")
        params['instance_id'] = instance_id

    where_clause = " AND ".join(conditions)

    with get_db_cursor() as cur:
        cur.execute(_TASK_SELECT + f"""
            WHERE {where_clause}
            ORDER BY t.due_date ASC
        """, params)
        rows = cur.fetchall()

    logger.debug(f"get_pending_tasks: {len(rows)} pending")
    return [_task_from_row(row) for row in rows]


@_persistence
def update_task(task_id: str, updates: Dict[str, Any]) -> bool:
    return _update('followup_tasks', task_id, updates, _TASK_COLUMNS, 'task')


@_persistence
def update_followup_event(event_id: str, updates: Dict[str, Any]) -> bool:
    return _update('followup_events', event_id, updates, _EVENT_COLUMNS, 'followup event')
