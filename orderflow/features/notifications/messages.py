"""Notification catalogue for order lifecycle transitions."""
from typing import Any, List, Mapping, Optional

from orderflow.features.notifications.dispatcher import Notification

STATUS_TITLES = {
    "confirmed": "Order Confirmed",
    "paid": "Payment Received",
    "completed": "Order Completed",
    "cancelled": "Order Cancelled",
    "payment_failed": "Payment Failed",
}

STATUS_BODIES = {
    "confirmed": "Your order #{order_id} has been confirmed and is being prepared.",
    "paid": "Payment for order #{order_id} was received.",
    "completed": "Your order #{order_id} is complete. Enjoy your meal!",
    "cancelled": "Your order #{order_id} has been cancelled.",
    "payment_failed": "Payment for order #{order_id} failed. Please update your payment method.",
}


def new_order_notifications(
    order_id: str,
    user: Optional[Mapping[str, Any]],
    admin_topic: str,
    total: Optional[float] = None,
) -> List[Notification]:
    data = {"order_id": order_id, "type": "new_order"}
    out = [
        Notification(
            channel="push",
            topic=admin_topic,
            title="New Order Received",
            body=f"Order #{order_id} has been received.",
            order_id=order_id,
            data=data,
        )
    ]
    if not user:
        return out

    if user.get("fcm_token"):
        out.append(
            Notification(
                channel="push",
                token=user["fcm_token"],
                title="Order Confirmation",
                body=f"Your order #{order_id} has been received and is being processed.",
                order_id=order_id,
                data={"order_id": order_id, "type": "order_confirmation"},
            )
        )
    if user.get("email"):
        name = user.get("display_name") or "there"
        total_line = f"<p>Total: ${total:.2f}</p>" if total is not None else ""
        out.append(
            Notification(
                channel="email",
                email=user["email"],
                title=f"Order Confirmation - #{order_id}",
                body=f"Hi {name}, your order #{order_id} has been received.",
                html=f"<h2>Thanks for your order, {name}!</h2><p>Order #{order_id} has been received.</p>{total_line}",
                order_id=order_id,
            )
        )
    return out


def status_change_notifications(order_id: str, status: str, user: Optional[Mapping[str, Any]]) -> List[Notification]:
    title = STATUS_TITLES.get(status)
    if not title or not user or not user.get("fcm_token"):
        return []
    return [
        Notification(
            channel="push",
            token=user["fcm_token"],
            title=title,
            body=STATUS_BODIES[status].format(order_id=order_id),
            order_id=order_id,
            data={"order_id": order_id, "status": status, "type": "status_update"},
        )
    ]
