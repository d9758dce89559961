"""
Selection Resolver - what did the customer actually buy?

The offer's selected_state is a snapshot written when the customer finalized
their choices:

    {
        "selectedItemInOption":  {"<option_id or scope_id>": "<item_id>", ...},
        "selectedVariants":      {"<scope_id>": "<option_id>", ...},
        "selectedUpsells":       {"<option_id>": true, ...},
        "selectedOptionalItems": {"<item_id>": true, ...},
        "totalNet": 1234.5,
        "totalGross": 1518.44
    }

parse_snapshot() turns it into a SelectionSnapshot of ItemInOptionChoice /
VariantChoice / UpsellChoice / ItemOverride entries, rejecting malformed
payloads. Snapshots written by the current offer page record the variant pick
as selectedItemInOption and leave selectedVariants empty; older ones use
selectedVariants only.
resolve() matches the snapshot against the current catalog. The catalog may
have changed since the snapshot was taken, so ids that no longer resolve are
skipped. The snapshot's stored totals are authoritative; the lines are
best-effort detail.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from washcrm.engine.money import parse_amount, round2, vat_multiplier
from washcrm.errors import ValidationError
from washcrm.models import (
    Choice, ItemInOptionChoice, ItemOverride, Offer, OfferOption, OfferOptionItem,
    ResolvedLine, ResolvedSelection, SelectionSnapshot, UpsellChoice, VariantChoice,
)

logger = logging.getLogger(__name__)

GENERIC_ITEM_LABEL = 'Add-on'

_HUNDRED = Decimal('100')


# =============================================================================
# PARSING
# =============================================================================

def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"selected_state.{key} must be an object, got {type(value).__name__}")
    return value


def _flag(key: str, entry_id: str, value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"selected_state.{key}[{entry_id!r}] must be true/false, got {value!r}")
    return value


def _stored_total(payload: Dict[str, Any], key: str) -> Optional[Decimal]:
    raw = payload.get(key)
    if raw is None:
        return None
    value = parse_amount(raw)
    if value is None:
        raise ValidationError(f"selected_state.{key} is not a number: {raw!r}")
    return value


def parse_snapshot(raw) -> Optional[SelectionSnapshot]:
    """
    Validate a raw selected_state. Returns None when the customer never chose.
    Raises ValidationError for payloads that are not shaped like a snapshot.
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ValidationError(f"selected_state is not valid JSON: {e}") from e
        if raw is None:
            return None
    if not isinstance(raw, dict):
        raise ValidationError(f"selected_state must be an object, got {type(raw).__name__}")

    choices: List[Choice] = []

    for key, item_id in _section(raw, 'selectedItemInOption').items():
        if item_id is not None and not isinstance(item_id, str):
            raise ValidationError(f"selected_state.selectedItemInOption[{key!r}] must be an item id")
        choices.append(ItemInOptionChoice(key=key, item_id=item_id or None))

    for scope_id, option_id in _section(raw, 'selectedVariants').items():
        if option_id is not None and not isinstance(option_id, str):
            raise ValidationError(f"selected_state.selectedVariants[{scope_id!r}] must be an option id")
        choices.append(VariantChoice(scope_id=scope_id, option_id=option_id or None))

    for option_id, accepted in _section(raw, 'selectedUpsells').items():
        choices.append(UpsellChoice(option_id=option_id, accepted=_flag('selectedUpsells', option_id, accepted)))

    for item_id, included in _section(raw, 'selectedOptionalItems').items():
        choices.append(ItemOverride(item_id=item_id, included=_flag('selectedOptionalItems', item_id, included)))

    return SelectionSnapshot(
        choices=tuple(choices),
        total_net=_stored_total(raw, 'totalNet'),
        total_gross=_stored_total(raw, 'totalGross'),
    )


# =============================================================================
# PRICING
# =============================================================================

def item_price(item: OfferOptionItem) -> Decimal:
    """unit_price x quantity x (1 - discount_percent/100); a missing quantity counts as 1"""
    discount = Decimal(str(item.discount_percent or 0))
    return (
        Decimal(str(item.unit_price or 0))
        * Decimal(str(item.quantity or 1))
        * (Decimal('1') - discount / _HUNDRED)
    )


def option_value(option: OfferOption) -> Decimal:
    """Sum of item prices; the cached subtotal_net only if that sum is zero."""
    total = sum((item_price(item) for item in option.items), Decimal('0'))
    if total == 0:
        return Decimal(str(option.subtotal_net or 0))
    return total


def item_label(item: OfferOptionItem) -> str:
    return item.custom_name or GENERIC_ITEM_LABEL


# =============================================================================
# RESOLUTION
# =============================================================================

def _find_chosen_item(options: List[OfferOption],
                      choice: ItemInOptionChoice) -> Optional[Tuple[OfferOption, OfferOptionItem]]:
    """First option, in catalog order, matching the key by id or scope that holds the item."""
    for option in options:
        if choice.key not in (option.id, option.scope_id):
            continue
        for item in option.items:
            if item.id == choice.item_id:
                return option, item
    return None


def resolve(offer: Offer) -> Optional[ResolvedSelection]:
    """
    Flatten the offer's selection snapshot into purchased lines and totals.

    Returns None when the offer has no snapshot at all, so callers can tell
    "never chose" apart from "chose nothing extra". The offer is not modified.

    Order:
      1. chosen item per option or scope -> one line per item, then chosen
         variant per scope -> one line per option
      2. accepted upsells -> one line per picked item, else one option line
      3. remaining picked items of options not covered above, de-duplicated
         by display name
    """
    snapshot = parse_snapshot(offer.selected_state)
    if snapshot is None:
        return None

    options_by_id = {option.id: option for option in offer.offer_options}
    included = set(snapshot.included_item_ids())

    lines: List[ResolvedLine] = []
    covered: Set[str] = set()
    emitted_names: Set[str] = set()

    def emit(line: ResolvedLine) -> None:
        lines.append(line)
        emitted_names.add(line.name)

    for choice in snapshot.items_in_options():
        if not choice.item_id:
            continue
        found = _find_chosen_item(offer.offer_options, choice)
        if found is None:
            logger.debug(f"resolve | offer={offer.id} item {choice.item_id} in {choice.key} no longer exists")
            continue
        option, item = found
        covered.add(option.id)
        emit(ResolvedLine(name=item.custom_name or option.name or GENERIC_ITEM_LABEL,
                          price=item_price(item), option_id=option.id, item_id=item.id))

    for choice in snapshot.variants():
        if not choice.option_id:
            continue
        option = options_by_id.get(choice.option_id)
        if option is None:
            logger.debug(f"resolve | offer={offer.id} variant option {choice.option_id} no longer exists")
            continue
        if option.id in covered:
            continue
        covered.add(option.id)
        emit(ResolvedLine(name=option.name, price=option_value(option), option_id=option.id))

    for choice in snapshot.upsells():
        if not choice.accepted:
            continue
        option = options_by_id.get(choice.option_id)
        if option is None or not option.is_upsell:
            logger.debug(f"resolve | offer={offer.id} upsell option {choice.option_id} missing or not an upsell")
            continue
        if option.id in covered:
            continue
        covered.add(option.id)

        picked = [item for item in option.items if item.id in included]
        if picked:
            for item in picked:
                emit(ResolvedLine(name=item_label(item), price=item_price(item),
                                  option_id=option.id, item_id=item.id))
        else:
            emit(ResolvedLine(name=option.name, price=option_value(option), option_id=option.id))

    known_items = set()
    for option in offer.offer_options:
        for item in option.items:
            known_items.add(item.id)
            if option.id in covered or item.id not in included:
                continue
            name = item_label(item)
            if name in emitted_names:
                continue
            emit(ResolvedLine(name=name, price=item_price(item), option_id=option.id, item_id=item.id))

    missing = included - known_items
    if missing:
        logger.debug(f"resolve | offer={offer.id} skipped {len(missing)} item ids no longer in catalog")

    if snapshot.total_net is not None:
        total_net = snapshot.total_net
    else:
        total_net = sum((line.price for line in lines), Decimal('0'))

    if snapshot.total_gross is not None:
        total_gross = snapshot.total_gross
    else:
        total_gross = round2(total_net * vat_multiplier(offer.vat_rate))

    return ResolvedSelection(lines=lines, total_net=total_net, total_gross=total_gross)
