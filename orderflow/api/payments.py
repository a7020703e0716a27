"""
Payment webhook route.

POST /api/payments/webhook: Stripe callbacks. Raw body is required for
signature verification, so the handler reads it directly instead of
declaring a body model.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from orderflow.api.deps import get_db, get_settings
from orderflow.core.config import Settings
from orderflow.core.database import Database
from orderflow.core.errors import InvalidArgumentError
from orderflow.features.payments.provider import PaymentWebhookError
from orderflow.features.payments.service import get_provider, process_webhook

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    """
    Returns:
        {"received": true} for handled, dropped, duplicate and unrecognised events

    Errors:
        400: Invalid signature or payload (nothing is written)
        503: Webhook secret not configured
        500: Failure while applying the event (the processor will retry)
    """
    provider = getattr(request.app.state, "payment_provider", None) or get_provider(cfg)
    if provider is None:
        raise HTTPException(status_code=503, detail="Payment webhooks are not configured")

    body = await request.body()
    try:
        result = await run_in_threadpool(process_webhook, db, provider, dict(request.headers), body)
    except PaymentWebhookError as e:
        raise InvalidArgumentError(str(e))
    return {"received": True, "event_id": result["event_id"], "outcome": result["outcome"]}
