"""
Order API routes.

- POST /api/orders: Create an order for the caller (runs the creation trigger)
- GET  /api/orders/{order_id}: Fetch an order (owner or admin)
- POST /api/orders/update-status: Caller-requested status change
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from orderflow.api.deps import get_db, get_dispatcher
from orderflow.core.auth import Caller, get_caller, get_optional_caller
from orderflow.core.database import Database
from orderflow.core.errors import PermissionDeniedError
from orderflow.features.notifications.dispatcher import Dispatcher
from orderflow.features.orders.service import create_order, get_order, update_order_status

router = APIRouter(prefix="/orders", tags=["orders"])


class LineItemIn(BaseModel):
    product_id: str
    quantity: int
    price: float


class CreateOrderRequest(BaseModel):
    items: List[LineItemIn] = Field(default_factory=list)
    payment_method: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    # Optional so missing fields surface as the service's invalid-argument message
    order_id: Optional[str] = None
    status: Optional[str] = None


@router.post("")
def create(
    body: CreateOrderRequest,
    caller: Caller = Depends(get_caller),
    db: Database = Depends(get_db),
    dispatcher: Optional[Dispatcher] = Depends(get_dispatcher),
):
    """
    Create an order and process it immediately.

    Validation failures leave the order pending and come back as
    {"success": false, "errors": [...]} with status 200, like the trigger.
    """
    result = create_order(
        db,
        user_id=caller.uid,
        items=[item.model_dump() for item in body.items],
        payment_method=body.payment_method,
        dispatcher=dispatcher,
    )
    return {
        "success": result.success,
        "order_id": result.order_id,
        "status": result.status,
        "totals": result.totals.model_dump() if result.totals else None,
        "errors": result.errors,
    }


@router.get("/{order_id}")
def read(order_id: str, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    order = get_order(db, order_id)
    if order.user_id != caller.uid and not caller.is_admin:
        raise PermissionDeniedError("You do not have permission to view this order.")
    return {"success": True, "order": order.model_dump(mode="json")}


@router.post("/update-status")
def update_status(
    body: UpdateStatusRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
    dispatcher: Optional[Dispatcher] = Depends(get_dispatcher),
):
    return update_order_status(db, caller, body.order_id, body.status, dispatcher=dispatcher)
