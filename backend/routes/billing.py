"""Billing routes: checkout sessions and the payment-provider webhook."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from backend.auth import get_current_user
from backend.dependencies import Services, get_db, get_services
from backend.models import CheckoutRequest, CheckoutResponse
from backend.models_db import Account
from backend.services.billing_sync import SyncOutcome, decode_event, notify_subscription_change, start_checkout

router = APIRouter()


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Create a Stripe checkout session for a plan upgrade."""
    session_id, url = await start_checkout(
        services.payments, services.prices, current_user, body.plan, services.settings.frontend_url,
    )
    return CheckoutResponse(session_id=session_id, url=url)


@router.post("/billing/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Handle Stripe webhook events. Re-delivered events are acknowledged without effect."""
    payload = await request.body()
    event = services.payments.construct_event(payload, stripe_signature)
    result = services.synchronizer.apply(db, decode_event(event), payload)

    if result.outcome == SyncOutcome.APPLIED:
        if result.account_id:
            services.feed.publish("accounts", result.account_id, result.account_id)
        await notify_subscription_change(services.mailer, result)
    return {"received": True, "outcome": result.outcome.value}
