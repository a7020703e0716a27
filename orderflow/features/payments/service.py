"""
Payment webhook processing.

1. Verify signature and parse (provider); failures mutate nothing
2. Deduplicate by event id in payment_events
3. Apply the event in one transaction and mark it processed
4. On failure, record the error on the event row and re-raise so the
   processor retries; a retried event with a recorded error is reapplied
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.core.config import Settings
from orderflow.core.database import (
    Database,
    as_utc,
    invoice_logs,
    orders,
    payment_events,
    payment_logs,
    subscriptions,
    users,
    utc_now,
)
from orderflow.core.errors import InternalError
from orderflow.core.logging import log_event
from orderflow.features.payments.provider import PaymentProvider, PaymentProviderError
from orderflow.features.payments.stripe_provider import StripeProvider
from orderflow.models.order import OrderStatus, can_transition
from orderflow.models.payments import (
    InvoiceEvent,
    PaymentIntentEvent,
    SubscriptionEvent,
    WebhookEvent,
)

logger = logging.getLogger("orderflow.payments")


def get_provider(cfg: Settings) -> Optional[PaymentProvider]:
    """Stripe provider, or None when webhooks are not configured."""
    if not cfg.STRIPE_WEBHOOK_SECRET:
        return None
    try:
        return StripeProvider(cfg.STRIPE_WEBHOOK_SECRET, cfg.STRIPE_SECRET_KEY)
    except PaymentProviderError:
        return None


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, timezone.utc)


def _claim_event(db: Database, event: WebhookEvent, payload_hash: str, now: datetime) -> bool:
    """Record the delivery. False means it was already handled (or is in flight)."""
    with db.session() as session:
        existing = session.execute(
            select(payment_events.c.processed, payment_events.c.error).where(
                payment_events.c.event_id == event.id
            )
        ).first()
        if existing is not None:
            # Only a delivery whose earlier attempt failed is applied again
            return not existing.processed and existing.error is not None

    try:
        with db.session() as session:
            session.execute(
                insert(payment_events).values(
                    event_id=event.id,
                    event_type=event.type,
                    payload_hash=payload_hash,
                    processed=False,
                    created_at=now,
                )
            )
    except IntegrityError:
        # Another worker inserted this event first
        return False
    return True


def _apply_payment_intent(session: Session, event: PaymentIntentEvent, now: datetime) -> str:
    intent = event.payment_intent
    order_id = intent.metadata.get("orderId") or intent.metadata.get("order_id")
    if not order_id:
        log_event("warning", "payment.unmapped", event_type=event.type, extra={"payment_intent_id": intent.id})
        return "dropped"

    row = session.execute(
        select(orders.c.status, orders.c.status_history).where(orders.c.id == order_id)
    ).first()
    if row is None:
        log_event("warning", "payment.order_missing", order_id=order_id, event_type=event.type)
        return "dropped"

    succeeded = event.type == "payment_intent.succeeded"
    target = OrderStatus.PAID if succeeded else OrderStatus.PAYMENT_FAILED
    failure = None if succeeded else (
        intent.last_payment_error.message if intent.last_payment_error and intent.last_payment_error.message else None
    ) or "Unknown error"

    session.execute(
        insert(payment_logs).values(
            log_type="payment_succeeded" if succeeded else "payment_failed",
            order_id=order_id,
            payment_intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            error=failure,
            timestamp=now,
        )
    )

    current = OrderStatus(row.status)
    if current == target:
        return "noop"
    if not can_transition(current, target):
        log_event(
            "warning",
            "payment.transition_rejected",
            order_id=order_id,
            event_type=event.type,
            extra={"from_status": current.value, "to_status": target.value},
        )
        return "rejected"

    history = dict(row.status_history or {})
    history[target.value] = now.isoformat()
    values: Dict[str, Any] = {
        "status": target.value,
        "payment_intent_id": intent.id,
        "status_history": history,
        "updated_at": now,
    }
    if succeeded:
        values["paid_at"] = now
    else:
        values["failure_reason"] = failure

    result = session.execute(
        update(orders)
        .where(orders.c.id == order_id, orders.c.status == current.value)
        .values(**values)
    )
    if result.rowcount == 0:
        raise InternalError(f"Order {order_id} changed while applying {event.type}")

    log_event("info", "payment.applied", order_id=order_id, event_type=event.type, extra={"status": target.value})
    return "applied"


def _apply_subscription(
    session: Session,
    event: SubscriptionEvent,
    provider: Optional[PaymentProvider],
    now: datetime,
) -> str:
    sub = event.subscription
    event_at = _from_timestamp(event.created) or now

    existing = session.execute(
        select(subscriptions.c.user_id, subscriptions.c.last_event_at).where(subscriptions.c.id == sub.id)
    ).first()

    last_seen = as_utc(existing.last_event_at) if existing is not None else None
    if last_seen is not None and last_seen > event_at:
        log_event(
            "info",
            "subscription.stale_event_ignored",
            event_type=event.type,
            extra={"subscription_id": sub.id, "event_at": event_at.isoformat(), "last_event_at": last_seen.isoformat()},
        )
        return "stale"

    user_id = sub.metadata.get("userId") or sub.metadata.get("user_id")
    if not user_id and existing is not None:
        user_id = existing.user_id
    if not user_id and sub.customer and provider is not None:
        user_id = provider.customer_user_id(sub.customer)

    deleted = event.type == "customer.subscription.deleted"
    status = "canceled" if deleted else sub.status
    values: Dict[str, Any] = {
        "user_id": user_id,
        "customer_id": sub.customer,
        "status": status,
        "price_id": sub.price_id,
        "current_period_start": _from_timestamp(sub.current_period_start),
        "current_period_end": _from_timestamp(sub.current_period_end),
        "last_event_at": event_at,
        "updated_at": now,
    }
    if deleted:
        values["canceled_at"] = now

    if existing is None:
        session.execute(insert(subscriptions).values(id=sub.id, created_at=now, **values))
    else:
        result = session.execute(
            update(subscriptions)
            .where(
                subscriptions.c.id == sub.id,
                or_(subscriptions.c.last_event_at.is_(None), subscriptions.c.last_event_at <= event_at),
            )
            .values(**values)
        )
        if result.rowcount == 0:
            return "stale"

    if user_id:
        session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(subscription_id=sub.id, subscription_status=status, updated_at=now)
        )
    else:
        log_event("warning", "subscription.owner_unknown", event_type=event.type, extra={"subscription_id": sub.id})

    log_event("info", "subscription.applied", user_id=user_id, event_type=event.type, extra={"status": status})
    return "applied"


def _apply_invoice(session: Session, event: InvoiceEvent, now: datetime) -> str:
    invoice = event.invoice
    succeeded = event.type == "invoice.payment_succeeded"
    session.execute(
        insert(invoice_logs).values(
            log_type="payment_succeeded" if succeeded else "payment_failed",
            invoice_id=invoice.id,
            subscription_id=invoice.subscription,
            amount=invoice.amount_paid if succeeded else invoice.amount_due,
            currency=invoice.currency,
            timestamp=now,
        )
    )
    return "logged"


def apply_event(
    session: Session,
    event: WebhookEvent,
    provider: Optional[PaymentProvider] = None,
    now: Optional[datetime] = None,
) -> str:
    """Apply one verified event inside the caller's transaction. Returns the outcome."""
    now = now or utc_now()
    if isinstance(event, PaymentIntentEvent):
        return _apply_payment_intent(session, event, now)
    if isinstance(event, SubscriptionEvent):
        return _apply_subscription(session, event, provider, now)
    if isinstance(event, InvoiceEvent):
        return _apply_invoice(session, event, now)
    log_event("info", "payment.unhandled_event", event_type=event.type)
    return "ignored"


def process_webhook(
    db: Database,
    provider: PaymentProvider,
    headers: Dict[str, str],
    body: bytes,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Verify, deduplicate and apply a webhook delivery.

    Returns:
        {"received": True, "event_id", "event_type", "outcome"}

    Raises:
        PaymentWebhookError: Signature or payload rejected (nothing mutated)
        Exception: Anything raised while applying; recorded on the event row
    """
    now = now or utc_now()
    event = provider.verify_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    if not _claim_event(db, event, payload_hash, now):
        log_event("info", "payment.duplicate_event", event_type=event.type, extra={"event_id": event.id})
        return {"received": True, "event_id": event.id, "event_type": event.type, "outcome": "duplicate"}

    try:
        with db.session() as session:
            outcome = apply_event(session, event, provider, now)
            session.execute(
                update(payment_events)
                .where(payment_events.c.event_id == event.id)
                .values(processed=True, processed_at=now, error=None)
            )
    except Exception as e:
        logger.exception("payment.event_failed", extra={"event_id": event.id, "event_type": event.type})
        with db.session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.event_id == event.id)
                .values(error=str(e) or e.__class__.__name__)
            )
        raise

    return {"received": True, "event_id": event.id, "event_type": event.type, "outcome": outcome}
