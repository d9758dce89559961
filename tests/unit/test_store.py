"""
Unit tests for the Store (washcrm/engine/store.py).

Strategy: patch washcrm.engine.store.get_db_cursor with a contextmanager that
yields a MagicMock cursor. Rows returned by the cursor are plain dicts, as
RealDictCursor returns them.
"""

import pytest
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg2

from washcrm.engine.store import (
    _validate_columns,
    _OFFER_COLUMNS,
    _TASK_COLUMNS,
    count_reminders,
    delete_reminders,
    get_due_reminders,
    get_offer,
    get_offer_options,
    get_pending_tasks,
    get_reminders,
    get_task,
    insert_reminders,
    update_followup_event,
    update_offer,
    update_reminder,
    update_task,
)
from washcrm.errors import PersistenceError
from washcrm.models import FollowUpTask, Offer, OfferReminder


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

OFFER_ROW = {
    'id': 'off-1', 'offer_number': 'OF/2026/001', 'instance_id': 'inst-1',
    'customer_data': {'name': 'Jan Kowalski', 'phone': '+48600100200'},
    'status': 'accepted', 'vat_rate': Decimal('23'),
    'total_net': Decimal('1000.00'), 'total_gross': Decimal('1230.00'),
    'admin_approved_net': None, 'admin_approved_gross': None,
    'approved_at': None, 'approved_by': None, 'selected_state': None,
    'completed_at': None, 'completed_by': None, 'created_at': None, 'updated_at': None,
}

OPTION_ROW = {
    'id': 'opt-1', 'offer_id': 'off-1', 'name': 'PPF full front', 'scope_id': 'scope-ppf',
    'is_upsell': False, 'is_selected': True, 'subtotal_net': Decimal('1000.00'), 'sort_order': 0,
}

ITEM_ROW = {
    'id': 'item-1', 'option_id': 'opt-1', 'product_id': 'prod-ppf', 'custom_name': None,
    'unit_price': Decimal('1000.00'), 'quantity': Decimal('1'), 'discount_percent': Decimal('0'),
    'is_optional': False, 'sort_order': 0,
    'product_name': 'PPF foil', 'reminder_template_id': 'tpl-1',
    'template_name': 'PPF care', 'sms_template': 'Time for your PPF check, {name}',
    'template_items': [{'months': 6, 'is_paid': False, 'service_type': 'inspection'},
                       {'months': 12, 'is_paid': True, 'service_type': 'service'}],
}

REMINDER_ROW = {
    'id': 'rem-1', 'offer_id': 'off-1', 'product_id': 'prod-ppf', 'instance_id': 'inst-1',
    'customer_name': 'Jan Kowalski', 'customer_phone': '+48600100200',
    'service_name': 'PPF foil', 'scheduled_date': date(2026, 8, 1), 'months_after': 6,
    'is_paid': False, 'service_type': 'inspection', 'sms_template': '',
    'status': 'scheduled', 'cancelled_at': None, 'cancelled_reason': None, 'created_at': None,
}

TASK_ROW = {
    'id': 'task-1', 'event_id': 'evt-1', 'title': 'Call about ceramic coating',
    'customer_name': 'Anna Nowak', 'customer_phone': '+48600300400',
    'due_date': date(2026, 3, 1), 'status': 'pending', 'notes': 'prefers mornings',
    'completed_at': None,
    'event_customer_name': 'Anna Nowak', 'event_customer_phone': '+48600300400',
    'followup_service_id': 'svc-1', 'next_reminder_date': date(2026, 3, 1),
    'service_name': 'Ceramic coating', 'default_interval_months': 6,
}


def make_cursor(fetchone=None, fetchall=None, rowcount=1):
    """Build a MagicMock cursor with preset return values."""
    cur = MagicMock()
    cur.fetchone.return_value = fetchone
    cur.fetchall.return_value = fetchall if fetchall is not None else []
    cur.rowcount = rowcount
    return cur


def cursor_patch(cur):
    """Return a patch context manager that replaces get_db_cursor with one yielding cur."""
    @contextmanager
    def _mock_ctx():
        yield cur

    return patch('washcrm.engine.store.get_db_cursor', _mock_ctx)


def failing_cursor_patch(error):
    @contextmanager
    def _mock_ctx():
        raise error
        yield

    return patch('washcrm.engine.store.get_db_cursor', _mock_ctx)


# ---------------------------------------------------------------------------
# _validate_columns
# ---------------------------------------------------------------------------

def test_validate_columns_valid_passes():
    _validate_columns({'status': 'completed', 'completed_at': None}, _OFFER_COLUMNS, 'offer')


def test_validate_columns_invalid_raises():
    with pytest.raises(ValueError, match='offer'):
        _validate_columns({'status': 'x', 'total_net': 1}, _OFFER_COLUMNS, 'offer')


def test_validate_columns_task_rejects_due_date():
    with pytest.raises(ValueError, match='task'):
        _validate_columns({'due_date': date.today()}, _TASK_COLUMNS, 'task')


# ---------------------------------------------------------------------------
# Driver errors
# ---------------------------------------------------------------------------

def test_driver_error_becomes_persistence_error():
    with failing_cursor_patch(psycopg2.OperationalError('connection refused')):
        with pytest.raises(PersistenceError, match='get_offer'):
            get_offer('off-1')


def test_persistence_error_is_not_secondary_by_default():
    with failing_cursor_patch(psycopg2.OperationalError('boom')):
        with pytest.raises(PersistenceError) as exc_info:
            update_task('task-1', {'status': 'completed'})
    assert exc_info.value.secondary is False


def test_statement_timeout_reports_unknown_outcome():
    with failing_cursor_patch(psycopg2.extensions.QueryCanceledError('canceling statement due to statement timeout')):
        with pytest.raises(PersistenceError, match='outcome unknown'):
            update_offer('off-1', {'status': 'completed'})


def test_value_error_is_not_wrapped():
    with pytest.raises(ValueError):
        update_offer('off-1', {'evil_col': 'x'})


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

def test_get_offer_maps_row():
    cur = make_cursor(fetchone=OFFER_ROW)
    with cursor_patch(cur):
        offer = get_offer('off-1')
    assert isinstance(offer, Offer)
    assert offer.offer_number == 'OF/2026/001'
    assert offer.customer_name == 'Jan Kowalski'
    assert offer.offer_options == []


def test_get_offer_decodes_customer_data_string():
    row = dict(OFFER_ROW, customer_data='{"name": "Ewa", "phone": "123"}')
    cur = make_cursor(fetchone=row)
    with cursor_patch(cur):
        offer = get_offer('off-1')
    assert offer.customer_phone == '123'


def test_get_offer_missing_vat_rate_uses_default():
    cur = make_cursor(fetchone=dict(OFFER_ROW, vat_rate=None))
    with cursor_patch(cur), patch('washcrm.engine.store.config') as mock_config:
        mock_config.DEFAULT_VAT_RATE = '8'
        offer = get_offer('off-1')
    assert offer.vat_rate == Decimal('8')


def test_get_offer_not_found_returns_none():
    cur = make_cursor(fetchone=None)
    with cursor_patch(cur):
        assert get_offer('missing') is None


def test_get_offer_options_nests_items_and_templates():
    cur = make_cursor()
    cur.fetchall.side_effect = [[OPTION_ROW], [ITEM_ROW]]
    with cursor_patch(cur):
        options = get_offer_options('off-1')

    assert len(options) == 1
    item = options[0].items[0]
    assert item.product.name == 'PPF foil'
    template = item.product.reminder_template
    assert template.sms_template.startswith('Time for')
    assert [e.months for e in template.items] == [6, 12]
    assert template.items[1].is_paid is True


def test_get_offer_options_item_without_product():
    row = dict(ITEM_ROW, product_id=None, product_name=None, reminder_template_id=None)
    cur = make_cursor()
    cur.fetchall.side_effect = [[OPTION_ROW], [row]]
    with cursor_patch(cur):
        options = get_offer_options('off-1')
    assert options[0].items[0].product is None


def test_get_offer_options_null_quantity_counts_as_one():
    row = dict(ITEM_ROW, quantity=None)
    cur = make_cursor()
    cur.fetchall.side_effect = [[OPTION_ROW], [row]]
    with cursor_patch(cur):
        options = get_offer_options('off-1')
    assert options[0].items[0].quantity == 1


def test_get_offer_options_template_items_as_json_string():
    row = dict(ITEM_ROW, template_items='[{"months": 3}]')
    cur = make_cursor()
    cur.fetchall.side_effect = [[OPTION_ROW], [row]]
    with cursor_patch(cur):
        options = get_offer_options('off-1')
    entry = options[0].items[0].product.reminder_template.items[0]
    assert entry.months == 3
    assert entry.is_paid is False
    assert entry.service_type == 'service'


def test_get_offer_options_selected_only_filters():
    cur = make_cursor()
    cur.fetchall.side_effect = [[], []]
    with cursor_patch(cur):
        get_offer_options('off-1', selected_only=True)
    for c in cur.execute.call_args_list:
        assert 'is_selected = TRUE' in c[0][0]


def test_get_offer_with_options_loads_options():
    cur = make_cursor(fetchone=OFFER_ROW)
    cur.fetchall.side_effect = [[OPTION_ROW], [ITEM_ROW]]
    with cursor_patch(cur):
        offer = get_offer('off-1', with_options=True)
    assert offer.offer_options[0].name == 'PPF full front'


def test_update_offer_empty_dict_returns_false():
    with patch('washcrm.engine.store.get_db_cursor') as mock_ctx:
        result = update_offer('off-1', {})
    assert result is False
    mock_ctx.assert_not_called()


def test_update_offer_writes_both_amounts_in_one_statement():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur):
        result = update_offer('off-1', {'admin_approved_net': Decimal('100.00'),
                                        'admin_approved_gross': Decimal('123.00')})
    assert result is True
    cur.execute.assert_called_once()
    sql, params = cur.execute.call_args[0]
    assert 'admin_approved_net' in sql and 'admin_approved_gross' in sql
    assert 'updated_at = NOW()' in sql
    assert params['row_id'] == 'off-1'


def test_update_offer_not_found_returns_false():
    cur = make_cursor(rowcount=0)
    with cursor_patch(cur):
        assert update_offer('missing', {'status': 'completed'}) is False


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------

def test_insert_reminders_inserts_each_row():
    reminders = [OfferReminder(service_name='A', scheduled_date=date(2026, 8, 1)),
                 OfferReminder(service_name='B', scheduled_date=date(2027, 1, 31))]
    cur = make_cursor()
    with cursor_patch(cur):
        count = insert_reminders('off-1', reminders)
    assert count == 2
    assert cur.execute.call_count == 2
    sql, params = cur.execute.call_args[0]
    assert 'INSERT INTO offer_reminders' in sql
    assert params['offer_id'] == 'off-1'


def test_insert_reminders_empty_skips_db():
    with patch('washcrm.engine.store.get_db_cursor') as mock_ctx:
        assert insert_reminders('off-1', []) == 0
    mock_ctx.assert_not_called()


def test_get_reminders_maps_rows():
    cur = make_cursor(fetchall=[REMINDER_ROW])
    with cursor_patch(cur):
        rows = get_reminders('off-1')
    assert rows[0].scheduled_date == date(2026, 8, 1)
    assert rows[0].months_after == 6


def test_count_reminders():
    cur = make_cursor(fetchone={'n': 3})
    with cursor_patch(cur):
        assert count_reminders('off-1') == 3


def test_get_due_reminders_filters_by_instance():
    cur = make_cursor(fetchall=[])
    with cursor_patch(cur):
        get_due_reminders(date(2026, 8, 1), instance_id='inst-1')
    sql, params = cur.execute.call_args[0]
    assert 'instance_id = %(instance_id)s' in sql
    assert params == {'today': date(2026, 8, 1), 'instance_id': 'inst-1'}


def test_update_reminder_does_not_touch_updated_at():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur):
        update_reminder('rem-1', {'status': 'cancelled'})
    assert 'updated_at' not in cur.execute.call_args[0][0]


def test_update_reminder_rejects_schedule_change():
    with pytest.raises(ValueError):
        update_reminder('rem-1', {'scheduled_date': date.today()})


def test_delete_reminders_requires_exactly_one_key():
    with pytest.raises(ValueError):
        delete_reminders()
    with pytest.raises(ValueError):
        delete_reminders(offer_id='off-1', reminder_id='rem-1')


def test_delete_single_reminder():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur):
        assert delete_reminders(reminder_id='rem-1') == 1
    sql, params = cur.execute.call_args[0]
    assert 'WHERE id = %s' in sql
    assert params == ('rem-1',)


def test_delete_offer_reminders_never_updates_offer():
    cur = make_cursor(rowcount=4)
    with cursor_patch(cur):
        assert delete_reminders(offer_id='off-1') == 4
    cur.execute.assert_called_once()
    assert 'UPDATE' not in cur.execute.call_args[0][0]


# ---------------------------------------------------------------------------
# Follow-up tasks
# ---------------------------------------------------------------------------

def test_get_task_maps_event_and_service():
    cur = make_cursor(fetchone=TASK_ROW)
    with cursor_patch(cur):
        task = get_task('task-1')
    assert isinstance(task, FollowUpTask)
    assert task.notes == 'prefers mornings'
    assert task.event.id == 'evt-1'
    assert task.event.service.default_interval_months == 6


def test_get_task_without_service():
    row = dict(TASK_ROW, followup_service_id=None, service_name=None, default_interval_months=None)
    cur = make_cursor(fetchone=row)
    with cursor_patch(cur):
        task = get_task('task-1')
    assert task.event is not None
    assert task.event.service is None


def test_get_task_not_found_returns_none():
    cur = make_cursor(fetchone=None)
    with cursor_patch(cur):
        assert get_task('missing') is None


def test_get_pending_tasks():
    cur = make_cursor(fetchall=[TASK_ROW])
    with cursor_patch(cur):
        tasks = get_pending_tasks()
    assert [t.id for t in tasks] == ['task-1']
    assert "t.status = 'pending'" in cur.execute.call_args[0][0]


def test_update_task_success():
    cur = make_cursor(rowcount=1)
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    with cursor_patch(cur):
        assert update_task('task-1', {'status': 'completed', 'completed_at': now}) is True


def test_update_followup_event_rejects_unknown_column():
    with pytest.raises(ValueError, match='followup event'):
        update_followup_event('evt-1', {'customer_phone': 'x'})
