"""
Offer service - admin price approval and the customer's resolved selection.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from washcrm.actor import current_actor_id
from washcrm.bus.events import bus, EVENT_OFFER_AMOUNT_APPROVED, EVENT_OFFER_AMOUNT_EDITED
from washcrm.engine import store
from washcrm.engine.money import resolve_amounts, validate_amounts
from washcrm.engine.selection import resolve
from washcrm.errors import NotFoundError
from washcrm.models import AmountPair, Offer, ResolvedSelection

logger = logging.getLogger(__name__)

MODE_APPROVE = 'approve'
MODE_EDIT = 'edit'


def load_offer(offer_id: str, with_options: bool = False) -> Offer:
    """Get an offer or raise NotFoundError."""
    offer = store.get_offer(offer_id, with_options=with_options)
    if offer is None:
        raise NotFoundError(f"Offer {offer_id} not found")
    return offer


def confirm_offer_amount(offer_id: str, net_raw, gross_raw, mode: str = MODE_APPROVE,
                         last_edited: Optional[str] = None,
                         now: Optional[datetime] = None) -> AmountPair:
    """
    Store the admin-approved net/gross pair for an offer.

    Both amounts are written in the same UPDATE. In approve mode the approval
    timestamp and actor are written too. Invalid amounts raise ValidationError
    before anything is read or written.
    """
    if mode not in (MODE_APPROVE, MODE_EDIT):
        raise ValueError(f"Unknown mode {mode!r}")

    validate_amounts(net_raw, gross_raw)

    offer = load_offer(offer_id)
    amounts = resolve_amounts(net_raw, gross_raw, offer.vat_rate, last_edited=last_edited)

    updates = {
        'admin_approved_net': amounts.net,
        'admin_approved_gross': amounts.gross,
    }
    if mode == MODE_APPROVE:
        updates['approved_at'] = now or datetime.now(timezone.utc)
        updates['approved_by'] = current_actor_id()

    if not store.update_offer(offer_id, updates):
        raise NotFoundError(f"Offer {offer_id} not found")

    logger.info(f"Offer {offer_id} amount {mode}d: net={amounts.net} gross={amounts.gross}")
    event = EVENT_OFFER_AMOUNT_APPROVED if mode == MODE_APPROVE else EVENT_OFFER_AMOUNT_EDITED
    bus.emit(event, {'offer_id': offer_id, 'net': amounts.net, 'gross': amounts.gross})

    return amounts


def get_offer_selection(offer_id: str) -> Optional[ResolvedSelection]:
    """Resolved customer selection, or None when the customer never chose."""
    offer = load_offer(offer_id, with_options=True)
    return resolve(offer)
