"""
Payment-processor webhook envelopes.

Verified payloads are parsed into one of these models before any handler
runs. The `type` field selects the variant; types we do not act on become
UnhandledEvent and are acknowledged without side effects.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    created: int = 0  # unix seconds; monotonically increasing per subscription


class PaymentError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[str] = None


class PaymentIntentObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    last_payment_error: Optional[PaymentError] = None


class _PaymentIntentData(BaseModel):
    object: PaymentIntentObject


class PaymentIntentEvent(_Envelope):
    type: Literal["payment_intent.succeeded", "payment_intent.payment_failed"]
    data: _PaymentIntentData

    @property
    def payment_intent(self) -> PaymentIntentObject:
        return self.data.object


class _Price(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None


class _SubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Optional[_Price] = None


class _SubscriptionItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: List[_SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    customer: Optional[str] = None
    status: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    items: Optional[_SubscriptionItems] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None

    @property
    def price_id(self) -> Optional[str]:
        if self.items and self.items.data and self.items.data[0].price:
            return self.items.data[0].price.id
        return None


class _SubscriptionData(BaseModel):
    object: SubscriptionObject


class SubscriptionEvent(_Envelope):
    type: Literal[
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ]
    data: _SubscriptionData

    @property
    def subscription(self) -> SubscriptionObject:
        return self.data.object


class InvoiceObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    subscription: Optional[str] = None
    amount_paid: Optional[int] = None
    amount_due: Optional[int] = None
    currency: Optional[str] = None


class _InvoiceData(BaseModel):
    object: InvoiceObject


class InvoiceEvent(_Envelope):
    type: Literal["invoice.payment_succeeded", "invoice.payment_failed"]
    data: _InvoiceData

    @property
    def invoice(self) -> InvoiceObject:
        return self.data.object


class UnhandledEvent(_Envelope):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


HandledEvent = Annotated[
    Union[PaymentIntentEvent, SubscriptionEvent, InvoiceEvent],
    Field(discriminator="type"),
]
WebhookEvent = Union[PaymentIntentEvent, SubscriptionEvent, InvoiceEvent, UnhandledEvent]

HANDLED_EVENT_TYPES = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
})

_handled_adapter: TypeAdapter = TypeAdapter(HandledEvent)


def parse_webhook_event(payload: Dict[str, Any]) -> WebhookEvent:
    """
    Parse a verified webhook payload into its typed variant.

    Raises:
        pydantic.ValidationError: A recognised type with a malformed body
    """
    if payload.get("type") in HANDLED_EVENT_TYPES:
        return _handled_adapter.validate_python(payload)
    return UnhandledEvent.model_validate(payload)
