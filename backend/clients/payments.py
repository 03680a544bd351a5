"""Stripe payment gateway: checkout sessions and webhook verification."""

import asyncio
import json
import logging
from typing import Optional

import stripe

from backend.errors import ConfigurationError, SignatureInvalidError, UpstreamError

logger = logging.getLogger(__name__)


class PaymentGateway:
    """Thin wrapper over the Stripe SDK.

    The API key is passed per request rather than set on the ``stripe``
    module, so several gateways (or test doubles) can coexist.
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str], timeout: float = 10.0):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout

    async def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> tuple[str, Optional[str]]:
        """Create a subscription checkout session and return (session id, url)."""
        if not self._secret_key:
            raise ConfigurationError("Stripe not configured")

        params = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": metadata.get("account_id"),
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(stripe.checkout.Session.create, api_key=self._secret_key, **params),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise UpstreamError("Payment provider timed out. Please try again.")
        except stripe.StripeError as e:
            logger.error("Stripe checkout session creation failed: %s", e)
            raise UpstreamError("Payment provider error")
        return session.id, getattr(session, "url", None)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify the webhook signature and return the decoded event.

        Raises:
            SignatureInvalidError: Missing/invalid signature or unreadable payload.
        """
        if not self._webhook_secret:
            raise ConfigurationError("Stripe webhook secret not configured")
        if not signature:
            raise SignatureInvalidError("Missing Stripe signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError:
            raise SignatureInvalidError("Invalid signature")
        except ValueError:
            raise SignatureInvalidError("Invalid payload")
        # Signature covers the raw bytes, so decoding them directly is safe
        return json.loads(payload)
