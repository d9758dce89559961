#!/usr/bin/env python3
"""
Wash CRM Terminal CLI
Operator commands for offer settlement, reminders and follow-up tasks.
"""

import logging
import click

from washcrm.actor import acting_as
from washcrm.clock import shop_now
from washcrm.engine import followup, offers, reminders
from washcrm.engine.money import display_amounts
from washcrm.engine.offers import MODE_APPROVE, MODE_EDIT
from washcrm.errors import WashCrmError
from washcrm.logging_config import configure_logging, log_call

_URGENCY_LABELS = {
    followup.URGENCY_OVERDUE: 'OVERDUE',
    followup.URGENCY_TODAY: 'today',
    followup.URGENCY_UPCOMING: '',
}


def _fail(command: str, error: WashCrmError):
    logging.getLogger("washcrm").warning(f"{command} | {type(error).__name__}: {error}")
    click.echo(f"Error: {error}", err=True)


def _echo_warnings(warnings):
    for w in warnings:
        click.echo(f"  ⚠ {w.job} did not complete: {w.message}", err=True)


@click.group()
@click.option('--actor', envvar='WASHCRM_ACTOR', help='User ID recorded as approver / completer')
@click.pass_context
def cli(ctx, actor):
    """Wash CRM - Offer settlement, reminders and follow-ups"""
    configure_logging()
    ctx.with_resource(acting_as(actor))


# =============================================================================
# OFFER COMMANDS
# =============================================================================

@cli.group('offers')
def offers_group():
    """Offer amounts, selections and completion"""
    pass


@offers_group.command('show')
@click.argument('offer_id')
@log_call
def offers_show(offer_id):
    """Show offer summary and the amount in force"""
    try:
        offer = offers.load_offer(offer_id)
    except WashCrmError as e:
        _fail('offers_show', e)
        return

    amounts = display_amounts(offer)

    click.echo(f"\n{'='*60}")
    click.echo(f"OFFER {offer.offer_number or offer.id}: {offer.customer_name or '(no name)'}")
    click.echo(f"{'='*60}")
    click.echo(f"Status:      {offer.status}")
    click.echo(f"VAT:         {offer.vat_rate}%")
    if amounts:
        label = "approved" if offer.admin_approved_net is not None else "calculated"
        click.echo(f"Net:         {amounts.net} ({label})")
        click.echo(f"Gross:       {amounts.gross}")
    else:
        click.echo("Amount:      (not set)")
    if offer.approved_at:
        click.echo(f"Approved:    {offer.approved_at} by {offer.approved_by or 'unknown'}")
    if offer.completed_at:
        click.echo(f"Completed:   {offer.completed_at} by {offer.completed_by or 'unknown'}")
    click.echo()


@offers_group.command('selection')
@click.argument('offer_id')
@log_call
def offers_selection(offer_id):
    """Show what the customer selected"""
    try:
        selection = offers.get_offer_selection(offer_id)
    except WashCrmError as e:
        _fail('offers_selection', e)
        return

    if selection is None:
        click.echo("Customer has not made a selection yet.")
        return

    click.echo(f"\n{'Item':<40} {'Net':>12}")
    click.echo("-" * 53)
    for line in selection.lines:
        click.echo(f"{line.name[:38]:<40} {line.price:>12.2f}")
    if not selection.lines:
        click.echo("(no line details)")
    click.echo("-" * 53)
    click.echo(f"{'Total net':<40} {selection.total_net:>12.2f}")
    click.echo(f"{'Total gross':<40} {selection.total_gross:>12.2f}")


def _confirm_amount(offer_id, net, gross, mode, last_edited):
    try:
        amounts = offers.confirm_offer_amount(offer_id, net, gross, mode=mode, last_edited=last_edited)
    except WashCrmError as e:
        _fail(f'offers_{mode}', e)
        return
    click.echo(f"✓ Offer {offer_id}: net {amounts.net}, gross {amounts.gross}")


@offers_group.command('approve')
@click.argument('offer_id')
@click.option('--net', help='Net amount')
@click.option('--gross', help='Gross amount')
@click.option('--last-edited', type=click.Choice(['net', 'gross']),
              help='Amount that wins when both are given (default: net)')
@log_call
def offers_approve(offer_id, net, gross, last_edited):
    """Approve an offer at a net or gross amount"""
    _confirm_amount(offer_id, net, gross, MODE_APPROVE, last_edited)


@offers_group.command('edit-amount')
@click.argument('offer_id')
@click.option('--net', help='Net amount')
@click.option('--gross', help='Gross amount')
@click.option('--last-edited', type=click.Choice(['net', 'gross']),
              help='Amount that wins when both are given (default: net)')
@log_call
def offers_edit_amount(offer_id, net, gross, last_edited):
    """Change the approved amount without re-approving"""
    _confirm_amount(offer_id, net, gross, MODE_EDIT, last_edited)


@offers_group.command('complete')
@click.argument('offer_id')
@click.option('--date', 'completed_on', type=click.DateTime(formats=['%Y-%m-%d']),
              help='Completion date (default: now)')
@log_call
def offers_complete(offer_id, completed_on):
    """Mark an offer completed and schedule its reminders"""
    completed_at = completed_on or shop_now()
    try:
        result = reminders.plan_reminders(offer_id, completed_at)
    except WashCrmError as e:
        _fail('offers_complete', e)
        return

    if result.already_completed:
        click.echo(f"Offer {offer_id} was already completed. No reminders created.")
        return

    click.echo(f"✓ Offer {offer_id} completed. {result.count} reminder(s) scheduled.")
    _echo_warnings(result.warnings)


# =============================================================================
# REMINDER COMMANDS
# =============================================================================

@cli.group('reminders')
def reminders_group():
    """Scheduled customer reminders"""
    pass


def _print_reminders(rows):
    click.echo(f"{'ID':<38} {'Date':<12} {'Service':<25} {'Paid':<5} {'Status':<10}")
    click.echo("-" * 92)
    for r in rows:
        click.echo(
            f"{str(r.id):<38} {str(r.scheduled_date):<12} {r.service_name[:23]:<25} "
            f"{'yes' if r.is_paid else 'no':<5} {r.status:<10}"
        )


@reminders_group.command('list')
@click.argument('offer_id')
@log_call
def reminders_list(offer_id):
    """List reminders of an offer"""
    rows = reminders.list_offer_reminders(offer_id)
    if not rows:
        click.echo("No reminders for this offer.")
        return
    click.echo(f"\n{len(rows)} reminder(s):\n")
    _print_reminders(rows)


@reminders_group.command('due')
@log_call
def reminders_due():
    """List reminders due today or earlier"""
    rows = reminders.list_due_reminders()
    if not rows:
        click.echo("No reminders due.")
        return
    click.echo(f"\n{len(rows)} reminder(s) due:\n")
    _print_reminders(rows)


@reminders_group.command('delete')
@click.argument('reminder_id')
@log_call
def reminders_delete(reminder_id):
    """Delete a single reminder"""
    if reminders.delete_reminder(reminder_id):
        click.echo(f"✓ Deleted reminder {reminder_id}")
    else:
        click.echo(f"Reminder {reminder_id} not found.", err=True)


@reminders_group.command('delete-all')
@click.argument('offer_id')
@click.confirmation_option(prompt='Delete every reminder of this offer?')
@log_call
def reminders_delete_all(offer_id):
    """Delete every reminder of an offer"""
    count = reminders.delete_offer_reminders(offer_id)
    click.echo(f"✓ Deleted {count} reminder(s)")


@reminders_group.command('cancel')
@click.argument('reminder_id')
@click.option('--reason', help='Why the reminder is cancelled')
@log_call
def reminders_cancel(reminder_id, reason):
    """Cancel a reminder but keep it on record"""
    if reminders.cancel_reminder(reminder_id, reason):
        click.echo(f"✓ Cancelled reminder {reminder_id}")
    else:
        click.echo(f"Reminder {reminder_id} not found.", err=True)


# =============================================================================
# FOLLOW-UP COMMANDS
# =============================================================================

@cli.group('tasks')
def tasks_group():
    """Follow-up phone tasks"""
    pass


@tasks_group.command('list')
@log_call
def tasks_list():
    """Pending follow-up tasks, oldest first"""
    entries = followup.list_pending_tasks()
    if not entries:
        click.echo("No tasks to do. ✓")
        return

    click.echo(f"\n{len(entries)} pending task(s):\n")
    click.echo(f"{'ID':<38} {'Due':<12} {'Customer':<25} {'Phone':<15} {'':<8}")
    click.echo("-" * 100)
    for entry in entries:
        t = entry.task
        click.echo(
            f"{str(t.id):<38} {str(t.due_date):<12} {t.customer_name[:23]:<25} "
            f"{t.customer_phone[:13]:<15} {_URGENCY_LABELS[entry.urgency]:<8}"
        )


@tasks_group.command('complete')
@click.argument('task_id')
@click.option('--notes', help='Call notes (existing notes kept if omitted)')
@log_call
def tasks_complete(task_id, notes):
    """Complete a task and schedule the next follow-up"""
    try:
        result = followup.complete_task(task_id, notes=notes)
    except WashCrmError as e:
        _fail('tasks_complete', e)
        return

    if result.already_completed:
        click.echo(f"Task {task_id} was already completed. Nothing changed.")
        return

    click.echo(f"✓ Task {task_id} completed")
    if result.next_reminder_date:
        click.echo(f"  Next follow-up: {result.next_reminder_date}")
    _echo_warnings(result.warnings)


if __name__ == '__main__':
    cli()
