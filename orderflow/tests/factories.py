"""Row builders and test doubles shared by the test modules."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import insert

from orderflow.core.database import Database, inventory, orders, users
from orderflow.features.notifications.dispatcher import Notification

FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class RecordingChannel:
    """Channel double that remembers what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Notification] = []

    def send(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("gateway unavailable")
        self.sent.append(notification)


def auth_headers(uid: str, admin: bool = False) -> Dict[str, str]:
    headers = {"X-User-Id": uid}
    if admin:
        headers["X-User-Role"] = "admin"
    return headers


def make_user(
    db: Database,
    uid: str,
    *,
    role: str = "customer",
    email: Optional[str] = None,
    fcm_token: Optional[str] = None,
    created_at: datetime = FIXED_NOW,
) -> None:
    with db.session() as session:
        session.execute(
            insert(users).values(
                id=uid,
                display_name=uid.title(),
                email=email,
                role=role,
                fcm_token=fcm_token,
                order_count=0,
                total_spent=0.0,
                completed_order_count=0,
                created_at=created_at,
            )
        )


def make_order(
    db: Database,
    order_id: str,
    *,
    user_id: Optional[str] = "alice",
    items: Optional[List[Dict[str, Any]]] = None,
    status: str = "pending",
    total: Optional[float] = None,
    inventory_reserved: bool = False,
    created_at: datetime = FIXED_NOW,
) -> None:
    with db.session() as session:
        session.execute(
            insert(orders).values(
                id=order_id,
                user_id=user_id,
                items=items if items is not None else [{"product_id": "burger", "quantity": 2, "price": 10.0}],
                status=status,
                total=total,
                inventory_reserved=inventory_reserved,
                status_history={status: created_at.isoformat()},
                created_at=created_at,
                updated_at=created_at,
            )
        )


def set_stock(db: Database, product_id: str, stock: int) -> None:
    with db.session() as session:
        session.execute(insert(inventory).values(product_id=product_id, stock=stock, updated_at=FIXED_NOW))
