"""
Payment webhook handling.

Signatures are computed with the real Stripe scheme so verification runs
through stripe.WebhookSignature.verify_header; only the customer lookup is mocked.
"""
import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from orderflow.core.database import (
    invoice_logs,
    orders,
    payment_events,
    payment_logs,
    subscriptions,
    users,
)
from orderflow.features.payments.provider import PaymentWebhookError
from orderflow.features.payments.service import process_webhook
from orderflow.features.payments.stripe_provider import StripeProvider
from orderflow.tests.factories import make_order, make_user

SECRET = "whsec_test_secret"
WEBHOOK = "/api/payments/webhook"


def sign(body: bytes, secret: str = SECRET, timestamp: int = None) -> str:
    ts = timestamp or int(time.time())
    signed = f"{ts}.{body.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def envelope(event_id: str, event_type: str, obj: dict, created: int = 1_700_000_000) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}).encode("utf-8")


def post(client, body: bytes, signature: str = None):
    return client.post(
        WEBHOOK,
        content=body,
        headers={"stripe-signature": signature or sign(body), "content-type": "application/json"},
    )


def count(db, table) -> int:
    with db.session() as session:
        return session.execute(select(func.count()).select_from(table)).scalar_one()


def order_row(db, order_id):
    with db.session() as session:
        return session.execute(select(orders).where(orders.c.id == order_id)).first()


def subscription_row(db, sub_id):
    with db.session() as session:
        return session.execute(select(subscriptions).where(subscriptions.c.id == sub_id)).first()


def intent(order_id=None, **extra):
    obj = {"id": "pi_1", "amount": 2160, "currency": "usd", "metadata": {}}
    if order_id:
        obj["metadata"]["orderId"] = order_id
    obj.update(extra)
    return obj


def subscription(sub_id="sub_1", status="active", user_id="alice", customer="cus_1"):
    metadata = {"userId": user_id} if user_id else {}
    return {
        "id": sub_id,
        "customer": customer,
        "status": status,
        "metadata": metadata,
        "items": {"data": [{"price": {"id": "price_basic"}}]},
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_702_592_000,
    }


def test_invalid_signature_is_rejected_without_mutation(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="processing")
    body = envelope("evt_1", "payment_intent.succeeded", intent("o1"))

    response = post(client, body, signature=sign(body, secret="whsec_wrong"))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid-argument"
    assert order_row(db, "o1").status == "processing"
    assert count(db, payment_events) == 0
    assert count(db, payment_logs) == 0


def test_missing_signature_header_is_rejected(client, db):
    body = envelope("evt_1", "payment_intent.succeeded", intent("o1"))

    response = client.post(WEBHOOK, content=body)

    assert response.status_code == 400
    assert count(db, payment_events) == 0


def test_webhooks_unavailable_without_secret(cfg, db):
    from orderflow.main import create_app

    app = create_app(cfg.model_copy(update={"STRIPE_WEBHOOK_SECRET": None}), db=db)
    body = envelope("evt_1", "payment_intent.succeeded", intent("o1"))

    response = TestClient(app).post(WEBHOOK, content=body, headers={"stripe-signature": sign(body)})

    assert response.status_code == 503


def test_payment_succeeded_marks_order_paid(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="processing")
    body = envelope("evt_1", "payment_intent.succeeded", intent("o1"))

    response = post(client, body)

    assert response.status_code == 200
    assert response.json()["received"] is True
    row = order_row(db, "o1")
    assert row.status == "paid"
    assert row.payment_intent_id == "pi_1"
    assert row.paid_at is not None
    with db.session() as session:
        log = session.execute(select(payment_logs)).one()
    assert (log.log_type, log.order_id, log.amount) == ("payment_succeeded", "o1", 2160)


def test_payment_failed_records_reason(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="confirmed")
    body = envelope(
        "evt_2",
        "payment_intent.payment_failed",
        intent("o1", last_payment_error={"message": "Card declined"}),
    )

    assert post(client, body).status_code == 200

    row = order_row(db, "o1")
    assert row.status == "payment_failed"
    assert row.failure_reason == "Card declined"


def test_payment_failed_without_message_uses_default_reason(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="processing")

    assert post(client, envelope("evt_3", "payment_intent.payment_failed", intent("o1"))).status_code == 200

    assert order_row(db, "o1").failure_reason == "Unknown error"


def test_duplicate_delivery_is_applied_once(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="processing")
    body = envelope("evt_dup", "payment_intent.succeeded", intent("o1"))

    first = post(client, body)
    second = post(client, body)

    assert first.json()["outcome"] == "applied"
    assert second.json()["outcome"] == "duplicate"
    assert count(db, payment_logs) == 1
    assert count(db, payment_events) == 1


@pytest.mark.parametrize("metadata_order", [None, "missing-order"])
def test_unmapped_payment_is_dropped_with_200(client, db, metadata_order):
    body = envelope("evt_4", "payment_intent.succeeded", intent(metadata_order))

    response = post(client, body)

    assert response.status_code == 200
    assert response.json()["outcome"] == "dropped"
    assert count(db, payment_logs) == 0


def test_payment_for_terminal_order_does_not_change_status(client, db):
    make_user(db, "alice")
    make_order(db, "o1", status="cancelled")

    response = post(client, envelope("evt_5", "payment_intent.succeeded", intent("o1")))

    assert response.status_code == 200
    assert response.json()["outcome"] == "rejected"
    assert order_row(db, "o1").status == "cancelled"
    assert count(db, payment_logs) == 1


def test_unrecognised_event_is_acknowledged(client, db):
    response = post(client, envelope("evt_6", "charge.refunded", {"id": "ch_1"}))

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


def test_malformed_recognised_event_is_rejected(client, db):
    body = json.dumps({"id": "evt_7", "type": "customer.subscription.updated", "data": {"object": {}}}).encode()

    response = post(client, body)

    assert response.status_code == 400
    assert count(db, payment_events) == 0


def test_subscription_created_sets_user_status(client, db):
    make_user(db, "alice")

    assert post(client, envelope("evt_s1", "customer.subscription.created", subscription())).status_code == 200

    row = subscription_row(db, "sub_1")
    assert (row.user_id, row.status, row.price_id, row.customer_id) == ("alice", "active", "price_basic", "cus_1")
    with db.session() as session:
        user = session.execute(select(users).where(users.c.id == "alice")).first()
    assert (user.subscription_id, user.subscription_status) == ("sub_1", "active")


def test_older_subscription_event_cannot_overwrite_newer(client, db):
    make_user(db, "alice")
    newer = envelope("evt_new", "customer.subscription.updated", subscription(status="past_due"), created=1_700_000_200)
    older = envelope("evt_old", "customer.subscription.updated", subscription(status="active"), created=1_700_000_100)

    post(client, newer)
    response = post(client, older)

    assert response.json()["outcome"] == "stale"
    assert subscription_row(db, "sub_1").status == "past_due"
    with db.session() as session:
        status = session.execute(select(users.c.subscription_status).where(users.c.id == "alice")).scalar()
    assert status == "past_due"


def test_subscription_deleted_marks_canceled(client, db):
    make_user(db, "alice")
    post(client, envelope("evt_a", "customer.subscription.created", subscription(), created=1_700_000_000))

    post(client, envelope("evt_b", "customer.subscription.deleted", subscription(status="canceled"), created=1_700_000_500))

    row = subscription_row(db, "sub_1")
    assert row.status == "canceled"
    assert row.canceled_at is not None


def test_subscription_owner_falls_back_to_stored_row(client, db):
    make_user(db, "alice")
    post(client, envelope("evt_a", "customer.subscription.created", subscription(), created=1_700_000_000))

    post(client, envelope("evt_b", "customer.subscription.updated", subscription(status="unpaid", user_id=None), created=1_700_000_100))

    with db.session() as session:
        status = session.execute(select(users.c.subscription_status).where(users.c.id == "alice")).scalar()
    assert status == "unpaid"


def test_subscription_owner_resolved_from_customer_metadata(db):
    make_user(db, "alice")
    provider = StripeProvider(SECRET, secret_key="sk_test_123")
    body = envelope("evt_c", "customer.subscription.created", subscription(user_id=None, customer="cus_9"))

    with patch("orderflow.features.payments.stripe_provider.stripe.Customer.retrieve") as retrieve:
        retrieve.return_value = {"metadata": {"userId": "alice"}}
        result = process_webhook(db, provider, {"stripe-signature": sign(body)}, body)

    retrieve.assert_called_once_with("cus_9")
    assert result["outcome"] == "applied"
    assert subscription_row(db, "sub_1").user_id == "alice"


def test_invoice_events_are_logged(client, db):
    body = envelope(
        "evt_i",
        "invoice.payment_succeeded",
        {"id": "in_1", "subscription": "sub_1", "amount_paid": 999, "amount_due": 999, "currency": "usd"},
    )

    assert post(client, body).status_code == 200

    with db.session() as session:
        log = session.execute(select(invoice_logs)).one()
    assert (log.log_type, log.invoice_id, log.amount) == ("payment_succeeded", "in_1", 999)


def test_failed_apply_is_recorded_and_retried(db, monkeypatch):
    make_user(db, "alice")
    make_order(db, "o1", status="processing")
    provider = StripeProvider(SECRET)
    body = envelope("evt_r", "payment_intent.succeeded", intent("o1"))
    headers = {"stripe-signature": sign(body)}

    from orderflow.features.payments import service as payment_service

    real_apply = payment_service.apply_event

    def boom(*args, **kwargs):
        raise RuntimeError("database hiccup")

    monkeypatch.setattr(payment_service, "apply_event", boom)
    with pytest.raises(RuntimeError):
        process_webhook(db, provider, headers, body)

    with db.session() as session:
        event = session.execute(select(payment_events)).one()
    assert event.processed is False
    assert event.error == "database hiccup"
    assert order_row(db, "o1").status == "processing"

    monkeypatch.setattr(payment_service, "apply_event", real_apply)
    result = process_webhook(db, provider, headers, body)

    assert result["outcome"] == "applied"
    assert order_row(db, "o1").status == "paid"


def test_internal_failure_returns_500(client, db, monkeypatch):
    from orderflow.features.payments import service as payment_service

    def boom(*args, **kwargs):
        raise RuntimeError("database hiccup")

    monkeypatch.setattr(payment_service, "apply_event", boom)
    body = envelope("evt_x", "invoice.payment_failed", {"id": "in_2"})

    server = TestClient(client.app, raise_server_exceptions=False)
    response = server.post(WEBHOOK, content=body, headers={"stripe-signature": sign(body)})

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "internal"


def test_provider_rejects_non_object_payload():
    provider = StripeProvider(SECRET)
    body = b"[1, 2, 3]"

    with pytest.raises(PaymentWebhookError):
        provider.verify_webhook({"stripe-signature": sign(body)}, body)
