"""
Order lifecycle.

process_new_order runs once per created order (the creation trigger);
update_order_status backs the callable endpoint. Every status write is a
compare-and-set on the status that was read, and every shared counter is an
in-SQL increment, so concurrent callers never lose updates.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow.core.auth import Caller
from orderflow.core.config import settings
from orderflow.core.database import Database, inventory, orders, users, utc_now
from orderflow.core.errors import (
    AppError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from orderflow.core.logging import log_event
from orderflow.features.notifications.dispatcher import Dispatcher
from orderflow.features.notifications.messages import new_order_notifications, status_change_notifications
from orderflow.features.orders.validators import compute_order_totals, validate_order_data
from orderflow.models.order import (
    CALLER_TARGET_STATUSES,
    TERMINAL_STATUSES,
    LineItem,
    Order,
    OrderStatus,
    OrderTotals,
    can_transition,
)

logger = logging.getLogger("orderflow.orders")


@dataclass
class ProcessResult:
    success: bool
    order_id: str
    status: Optional[str] = None
    totals: Optional[OrderTotals] = None
    errors: List[str] = field(default_factory=list)


def _row_to_order(row) -> Order:
    data = dict(row._mapping)
    data["status_history"] = data.get("status_history") or {}
    return Order.model_validate(data)


def _load_user(session: Session, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    row = session.execute(
        select(users.c.id, users.c.email, users.c.display_name, users.c.fcm_token).where(users.c.id == user_id)
    ).first()
    return dict(row._mapping) if row else None


def _adjust_inventory(session: Session, items: Sequence[LineItem], direction: int, now: datetime) -> int:
    """Move stock by direction * quantity for every item that has an inventory row."""
    adjusted = 0
    for item in items:
        result = session.execute(
            update(inventory)
            .where(inventory.c.product_id == item.product_id)
            .values(stock=inventory.c.stock + direction * item.quantity, updated_at=now)
        )
        if result.rowcount:
            adjusted += 1
        else:
            logger.info("inventory.missing", extra={"product_id": item.product_id})
    return adjusted


def _with_history(history: Optional[Dict[str, Any]], status: OrderStatus, now: datetime) -> Dict[str, Any]:
    out = dict(history or {})
    out[status.value] = now.isoformat()
    return out


def get_order(db: Database, order_id: str) -> Order:
    with db.session() as session:
        row = session.execute(select(orders).where(orders.c.id == order_id)).first()
    if row is None:
        raise NotFoundError(f"Order {order_id} not found.")
    return _row_to_order(row)


def create_order(
    db: Database,
    *,
    user_id: str,
    items: Sequence[Dict[str, Any]],
    payment_method: Optional[str] = None,
    dispatcher: Optional[Dispatcher] = None,
    now: Optional[datetime] = None,
) -> ProcessResult:
    """Insert a pending order, then run the creation trigger on it."""
    now = now or utc_now()
    order_id = uuid4().hex
    with db.session() as session:
        session.execute(
            insert(orders).values(
                id=order_id,
                user_id=user_id,
                items=[dict(i) for i in items],
                payment_method=payment_method,
                status=OrderStatus.PENDING.value,
                inventory_reserved=False,
                status_history={OrderStatus.PENDING.value: now.isoformat()},
                created_at=now,
                updated_at=now,
            )
        )
    log_event("info", "order.created", user_id=user_id, order_id=order_id)
    return process_new_order(db, order_id, dispatcher=dispatcher, now=now)


def process_new_order(
    db: Database,
    order_id: str,
    *,
    dispatcher: Optional[Dispatcher] = None,
    tax_rate: Optional[float] = None,
    now: Optional[datetime] = None,
) -> ProcessResult:
    """
    Validate, price and reserve a pending order.

    Invalid orders are left exactly as they were. For valid ones the status
    move, stock decrements, totals and user counters commit together.
    Notifications go out only after the commit.
    """
    now = now or utc_now()
    rate = settings.TAX_RATE if tax_rate is None else tax_rate

    with db.session() as session:
        row = session.execute(select(orders).where(orders.c.id == order_id)).first()
        if row is None:
            raise NotFoundError(f"Order {order_id} not found.")
        data = row._mapping

        if data["status"] != OrderStatus.PENDING.value:
            log_event(
                "info",
                "order.process_skipped",
                order_id=order_id,
                extra={"status": data["status"]},
            )
            return ProcessResult(
                success=False,
                order_id=order_id,
                status=data["status"],
                errors=[f"Order is {data['status']}, expected pending"],
            )

        errors = validate_order_data(data)
        if errors:
            log_event(
                "warning",
                "order.validation_failed",
                user_id=data["user_id"],
                order_id=order_id,
                error_code="invalid-argument",
                extra={"errors": "; ".join(errors)},
            )
            return ProcessResult(success=False, order_id=order_id, status=data["status"], errors=errors)

        user = _load_user(session, data["user_id"])
        if user is None:
            log_event(
                "warning",
                "order.user_missing",
                user_id=data["user_id"],
                order_id=order_id,
                error_code="invalid-argument",
            )
            return ProcessResult(
                success=False,
                order_id=order_id,
                status=data["status"],
                errors=["User not found"],
            )

        items = [LineItem.model_validate(i) for i in data["items"]]
        totals = compute_order_totals(items, rate)

        moved = session.execute(
            update(orders)
            .where(orders.c.id == order_id, orders.c.status == OrderStatus.PENDING.value)
            .values(
                status=OrderStatus.PROCESSING.value,
                subtotal=totals.subtotal,
                tax=totals.tax,
                total=totals.total,
                inventory_reserved=True,
                status_history=_with_history(data["status_history"], OrderStatus.PROCESSING, now),
                processing_started_at=now,
                processed_at=now,
                updated_at=now,
            )
        )
        if moved.rowcount == 0:
            return ProcessResult(
                success=False,
                order_id=order_id,
                errors=["Order was processed concurrently"],
            )

        _adjust_inventory(session, items, -1, now)

        session.execute(
            update(users)
            .where(users.c.id == data["user_id"])
            .values(
                order_count=users.c.order_count + 1,
                total_spent=users.c.total_spent + totals.total,
                last_order_at=now,
                updated_at=now,
            )
        )

    log_event(
        "info",
        "order.processed",
        user_id=data["user_id"],
        order_id=order_id,
        extra={"total": totals.total, "items": len(items)},
    )
    if dispatcher is not None:
        dispatcher.dispatch(new_order_notifications(order_id, user, settings.ADMIN_ORDER_TOPIC, totals.total))

    return ProcessResult(success=True, order_id=order_id, status=OrderStatus.PROCESSING.value, totals=totals)


def update_order_status(
    db: Database,
    caller: Optional[Caller],
    order_id: Optional[str],
    status: Optional[str],
    *,
    dispatcher: Optional[Dispatcher] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Apply a caller-requested status change.

    Raises:
        UnauthenticatedError: No caller
        InvalidArgumentError: Missing fields, unknown target, disallowed
            transition, or the status changed underneath us
        NotFoundError: Unknown order
        PermissionDeniedError: Caller is neither owner nor admin
        InternalError: Database failure
    """
    if caller is None:
        raise UnauthenticatedError("You must be logged in to perform this action.")
    if not order_id or not status:
        raise InvalidArgumentError("Order ID and status are required.")
    try:
        target = OrderStatus(status)
    except ValueError:
        raise InvalidArgumentError(f"Invalid status: {status}")
    if target not in CALLER_TARGET_STATUSES:
        raise InvalidArgumentError(f"Invalid status: {status}")

    now = now or utc_now()
    try:
        with db.session() as session:
            row = session.execute(select(orders).where(orders.c.id == order_id)).first()
            if row is None:
                raise NotFoundError(f"Order {order_id} not found.")
            data = row._mapping

            if data["user_id"] != caller.uid and not caller.is_admin:
                raise PermissionDeniedError("You do not have permission to update this order.")

            current = OrderStatus(data["status"])
            if current in TERMINAL_STATUSES:
                raise InvalidArgumentError(f"Order is already {current.value} and cannot change.")
            if not can_transition(current, target):
                raise InvalidArgumentError(f"Cannot move order from {current.value} to {target.value}.")

            values: Dict[str, Any] = {
                "status": target.value,
                "status_history": _with_history(data["status_history"], target, now),
                "updated_at": now,
            }
            release_stock = target == OrderStatus.CANCELLED and data["inventory_reserved"]
            if release_stock:
                values["inventory_reserved"] = False
            if target == OrderStatus.COMPLETED:
                values["completed_at"] = now

            result = session.execute(
                update(orders)
                .where(orders.c.id == order_id, orders.c.status == current.value)
                .values(**values)
            )
            if result.rowcount == 0:
                raise InvalidArgumentError("Order status changed concurrently; reload and retry.")

            if release_stock:
                _adjust_inventory(session, [LineItem.model_validate(i) for i in data["items"]], 1, now)

            if target == OrderStatus.COMPLETED and data["user_id"]:
                session.execute(
                    update(users)
                    .where(users.c.id == data["user_id"])
                    .values(completed_order_count=users.c.completed_order_count + 1, updated_at=now)
                )

            user = _load_user(session, data["user_id"])
    except AppError:
        raise
    except SQLAlchemyError as e:
        logger.exception("order.status_update_failed", extra={"order_id": order_id})
        raise InternalError("Failed to update order status.") from e

    log_event(
        "info",
        "order.status_changed",
        user_id=caller.uid,
        order_id=order_id,
        extra={"from_status": current.value, "to_status": target.value},
    )
    if dispatcher is not None:
        dispatcher.dispatch(status_change_notifications(order_id, target.value, user))

    return {"success": True, "order_id": order_id, "status": target.value}
