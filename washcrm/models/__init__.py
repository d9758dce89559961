"""
Data Models
Dataclasses for all entities. These are pure Python objects, no database logic.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union


# =============================================================================
# CATALOG / OFFER
# =============================================================================

@dataclass
class TemplateItem:
    """One entry of a reminder template: contact the customer N months later."""
    months: int = 0
    is_paid: bool = False
    service_type: str = 'service'


@dataclass
class ReminderTemplate:
    """Named list of reminder entries attached to a product"""
    id: Optional[str] = None
    name: str = ''
    sms_template: str = ''
    items: List[TemplateItem] = field(default_factory=list)


@dataclass
class Product:
    """Catalog product (only the fields the engine reads)"""
    id: Optional[str] = None
    name: str = ''
    reminder_template_id: Optional[str] = None
    reminder_template: Optional[ReminderTemplate] = None


@dataclass
class OfferOptionItem:
    """Line item inside an offer option"""
    id: Optional[str] = None
    option_id: Optional[str] = None
    product_id: Optional[str] = None
    custom_name: Optional[str] = None
    unit_price: Decimal = Decimal('0')
    quantity: Decimal = Decimal('1')
    discount_percent: Decimal = Decimal('0')
    is_optional: bool = False
    sort_order: int = 0
    product: Optional[Product] = None


@dataclass
class OfferOption:
    """Selectable bundle: a variant inside a scope, or a standalone upsell"""
    id: Optional[str] = None
    offer_id: Optional[str] = None
    name: str = ''
    scope_id: Optional[str] = None
    is_upsell: bool = False
    is_selected: bool = False
    subtotal_net: Decimal = Decimal('0')
    sort_order: int = 0
    items: List[OfferOptionItem] = field(default_factory=list)


@dataclass
class Offer:
    """Commercial proposal sent to a customer"""
    id: Optional[str] = None
    offer_number: str = ''
    instance_id: Optional[str] = None
    customer_data: Dict[str, Any] = field(default_factory=dict)
    status: str = 'draft'
    vat_rate: Decimal = Decimal('23')
    total_net: Optional[Decimal] = None
    total_gross: Optional[Decimal] = None
    admin_approved_net: Optional[Decimal] = None
    admin_approved_gross: Optional[Decimal] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    selected_state: Optional[Union[Dict[str, Any], str]] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    offer_options: List[OfferOption] = field(default_factory=list)

    @property
    def customer_name(self) -> str:
        return (self.customer_data or {}).get('name') or ''

    @property
    def customer_phone(self) -> str:
        return (self.customer_data or {}).get('phone') or ''


@dataclass
class OfferReminder:
    """One materialized future customer contact, owned by an offer"""
    id: Optional[str] = None
    offer_id: Optional[str] = None
    product_id: Optional[str] = None
    instance_id: Optional[str] = None
    customer_name: str = ''
    customer_phone: str = ''
    service_name: str = ''
    scheduled_date: Optional[date] = None
    months_after: int = 0
    is_paid: bool = False
    service_type: str = 'service'
    sms_template: str = ''
    status: str = 'scheduled'
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None


# =============================================================================
# FOLLOW-UP
# =============================================================================

@dataclass
class FollowUpService:
    """Service a customer is followed up for, with its recurrence interval"""
    id: Optional[str] = None
    name: str = ''
    default_interval_months: Optional[int] = None


@dataclass
class FollowUpEvent:
    """Recurring anchor per customer x service"""
    id: Optional[str] = None
    customer_name: str = ''
    customer_phone: str = ''
    followup_service_id: Optional[str] = None
    next_reminder_date: Optional[date] = None
    service: Optional[FollowUpService] = None


@dataclass
class FollowUpTask:
    """One due contact instance of a follow-up event"""
    id: Optional[str] = None
    event_id: Optional[str] = None
    title: str = ''
    customer_name: str = ''
    customer_phone: str = ''
    due_date: Optional[date] = None
    status: str = 'pending'
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    event: Optional[FollowUpEvent] = None


# =============================================================================
# SELECTION SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class VariantChoice:
    """Customer picked option_id within a scope"""
    scope_id: str
    option_id: Optional[str]


@dataclass(frozen=True)
class ItemInOptionChoice:
    """Customer picked item_id inside an option; key is the option id or its scope id"""
    key: str
    item_id: Optional[str]


@dataclass(frozen=True)
class UpsellChoice:
    """Customer accepted or declined an upsell option"""
    option_id: str
    accepted: bool


@dataclass(frozen=True)
class ItemOverride:
    """Fine-grained inclusion of one item"""
    item_id: str
    included: bool


Choice = Union[ItemInOptionChoice, VariantChoice, UpsellChoice, ItemOverride]


@dataclass(frozen=True)
class SelectionSnapshot:
    """Parsed selected_state of an offer"""
    choices: Tuple[Choice, ...] = ()
    total_net: Optional[Decimal] = None
    total_gross: Optional[Decimal] = None

    def items_in_options(self) -> List[ItemInOptionChoice]:
        return [c for c in self.choices if isinstance(c, ItemInOptionChoice)]

    def variants(self) -> List[VariantChoice]:
        return [c for c in self.choices if isinstance(c, VariantChoice)]

    def upsells(self) -> List[UpsellChoice]:
        return [c for c in self.choices if isinstance(c, UpsellChoice)]

    def included_item_ids(self) -> List[str]:
        return [c.item_id for c in self.choices if isinstance(c, ItemOverride) and c.included]


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class AmountPair:
    net: Decimal
    gross: Decimal


@dataclass(frozen=True)
class ResolvedLine:
    name: str
    price: Decimal
    option_id: Optional[str] = None
    item_id: Optional[str] = None


@dataclass
class ResolvedSelection:
    """What the customer actually bought, derived from the snapshot"""
    lines: List[ResolvedLine] = field(default_factory=list)
    total_net: Decimal = Decimal('0')
    total_gross: Decimal = Decimal('0')


@dataclass(frozen=True)
class SecondaryWriteWarning:
    """A best-effort write that failed after the primary transition committed"""
    job: str
    message: str


@dataclass
class ReminderPlanResult:
    offer_id: str
    count: int = 0
    already_completed: bool = False
    warnings: List[SecondaryWriteWarning] = field(default_factory=list)


@dataclass
class TaskCompletionResult:
    task: FollowUpTask
    next_reminder_date: Optional[date] = None
    warnings: List[SecondaryWriteWarning] = field(default_factory=list)
    already_completed: bool = False


@dataclass(frozen=True)
class TaskQueueEntry:
    task: FollowUpTask
    urgency: str
    days_overdue: int
