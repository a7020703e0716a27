from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# Orders counted as revenue by the analytics reducers
REVENUE_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.PAID})

# Targets a caller may request through the status-update callable
CALLER_TARGET_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.COMPLETED, OrderStatus.CANCELLED})

ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PAID,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PAID,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PAID: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class LineItem(BaseModel):
    """One ordered product. Shape only; business rules live in the lifecycle."""
    product_id: str
    quantity: int
    price: float


class OrderTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: float
    tax: float
    total: float


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    payment_method: Optional[str] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    failure_reason: Optional[str] = None
    payment_intent_id: Optional[str] = None
    inventory_reserved: bool = False
    status_history: Dict[str, datetime] = Field(default_factory=dict)
    created_at: datetime
    processing_started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
