"""
Money Reconciler - net/gross conversion at a fixed VAT rate.

Pure functions, no database access. Amounts are Decimal and rounded to two
places with ROUND_HALF_UP (half away from zero), so 0.005 -> 0.01 and
-0.005 -> -0.01.

The admin price dialog keeps net and gross as two independently editable
strings (PriceDraft). Editing one recomputes the other; on confirm both must
resolve to numbers and at least one must be greater than zero.
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from washcrm.errors import ValidationError
from washcrm.models import AmountPair, Offer

logger = logging.getLogger(__name__)

_CENT = Decimal('0.01')
_HUNDRED = Decimal('100')

Number = Union[Decimal, int, float, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # float goes through str so 0.1 stays 0.1
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Round to two decimals, half away from zero."""
    return _to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def vat_multiplier(vat_rate: Number) -> Decimal:
    """1 + vat_rate/100, e.g. 23 -> 1.23"""
    return Decimal('1') + _to_decimal(vat_rate) / _HUNDRED


def net_to_gross(net: Number, vat_rate: Number) -> Decimal:
    return round2(_to_decimal(net) * vat_multiplier(vat_rate))


def gross_to_net(gross: Number, vat_rate: Number) -> Decimal:
    return round2(_to_decimal(gross) / vat_multiplier(vat_rate))


def parse_amount(raw) -> Optional[Decimal]:
    """
    Parse a user-typed amount. Returns None for empty, unparsable or
    non-finite input. Accepts a comma as decimal separator.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (Decimal, int, float)):
        value = _to_decimal(raw)
    else:
        text = str(raw).strip().replace(',', '.')
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    if not value.is_finite():
        return None
    return value


def _format(value: Optional[Decimal]) -> str:
    return '' if value is None else str(value)


# =============================================================================
# EDITING STATE
# =============================================================================

@dataclass(frozen=True)
class PriceDraft:
    """Net/gross as typed by the admin, plus which one was edited last."""
    net: str = ''
    gross: str = ''
    last_edited: Optional[str] = None


def initial_draft(offer: Offer) -> PriceDraft:
    """Precedence per field: admin_approved_* > total_* > empty."""
    net = offer.admin_approved_net if offer.admin_approved_net is not None else offer.total_net
    gross = offer.admin_approved_gross if offer.admin_approved_gross is not None else offer.total_gross
    return PriceDraft(net=_format(net), gross=_format(gross))


def edit_net(draft: PriceDraft, raw: str, vat_rate: Number) -> PriceDraft:
    """Net was edited: recompute gross when raw is a number >= 0."""
    value = parse_amount(raw)
    if value is not None and value >= 0:
        return PriceDraft(net=raw, gross=str(net_to_gross(value, vat_rate)), last_edited='net')
    if not str(raw or '').strip():
        return PriceDraft(net=raw or '', gross='', last_edited='net')
    return replace(draft, net=raw, last_edited='net')


def edit_gross(draft: PriceDraft, raw: str, vat_rate: Number) -> PriceDraft:
    """Gross was edited: recompute net when raw is a number >= 0."""
    value = parse_amount(raw)
    if value is not None and value >= 0:
        return PriceDraft(net=str(gross_to_net(value, vat_rate)), gross=raw, last_edited='gross')
    if not str(raw or '').strip():
        return PriceDraft(net='', gross=raw or '', last_edited='gross')
    return replace(draft, gross=raw, last_edited='gross')


# =============================================================================
# VALIDATION
# =============================================================================

def validate_amounts(net_raw, gross_raw) -> None:
    """
    Raise ValidationError unless at least one amount parses to a number > 0,
    or when either amount is negative.
    """
    net = parse_amount(net_raw)
    gross = parse_amount(gross_raw)

    if (net is None or net <= 0) and (gross is None or gross <= 0):
        logger.debug(f"validate_amounts | rejected net={net_raw!r} gross={gross_raw!r}")
        raise ValidationError("Enter a net or gross amount greater than zero")
    if (net is not None and net < 0) or (gross is not None and gross < 0):
        raise ValidationError("Amounts cannot be negative")


def resolve_amounts(net_raw, gross_raw, vat_rate: Number,
                    last_edited: Optional[str] = None) -> AmountPair:
    """
    Turn the two raw fields into a consistent, storable pair.

    The field edited last wins and the other is recomputed from it, so the
    stored pair always satisfies gross == round2(net x multiplier) or
    net == round2(gross / multiplier). Without last_edited, net wins. A
    missing or zero field is always the derived one.
    """
    validate_amounts(net_raw, gross_raw)
    net = parse_amount(net_raw)
    gross = parse_amount(gross_raw)

    gross_usable = gross is not None and gross > 0
    net_usable = net is not None and net > 0

    if gross_usable and (last_edited == 'gross' or not net_usable):
        net = gross_to_net(gross, vat_rate)
    else:
        gross = net_to_gross(net, vat_rate)

    return AmountPair(net=round2(net), gross=round2(gross))


def display_amounts(offer: Offer) -> Optional[AmountPair]:
    """Approved pair when set, else the system totals, else None."""
    if offer.admin_approved_net is not None and offer.admin_approved_gross is not None:
        return AmountPair(net=offer.admin_approved_net, gross=offer.admin_approved_gross)
    if offer.total_net is not None and offer.total_gross is not None:
        return AmountPair(net=offer.total_net, gross=offer.total_gross)
    return None
