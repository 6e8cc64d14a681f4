"""
Stripe implementation of PaymentProvider.

The Stripe SDK is synchronous, so network calls run in a worker thread to
keep the event loop free.
"""

import asyncio
import json
from typing import Optional

import stripe

from rental_booking.core.config import get_settings
from rental_booking.core.logging import get_logger
from rental_booking.services.interfaces.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
    ProviderEvent,
    WebhookSignatureError,
)

logger = get_logger(__name__)


class StripePaymentProvider(PaymentProvider):
    def __init__(self, api_key: str, webhook_secret: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> "StripePaymentProvider":
        settings = get_settings()
        return cls(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if not signature:
            raise WebhookSignatureError("Missing signature")
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(str(e)) from e

        # Verified; read the plain JSON so handlers get ordinary dicts.
        body = json.loads(payload)
        return ProviderEvent(
            id=body["id"],
            type=body["type"],
            data_object=body.get("data", {}).get("object", {}),
        )

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        line_items = []
        for item in request.line_items:
            price_data = {
                "currency": request.currency,
                "unit_amount": item.amount_cents,
                "product_data": {"name": item.name},
            }
            if item.recurring_monthly:
                price_data["recurring"] = {"interval": "month"}
            line_items.append({"price_data": price_data, "quantity": 1})

        metadata = {"booking_id": request.booking_id, **request.metadata}
        params = {
            "mode": "subscription",
            "line_items": line_items,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email
        if request.description:
            params["subscription_data"]["description"] = request.description

        session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.api_key, **params)
        logger.info("checkout_session_created", booking_id=request.booking_id, session_id=session.id)
        return CheckoutSession(id=session.id, url=session.url)

    async def annotate_invoice(self, invoice_id: str, description: str) -> None:
        await asyncio.to_thread(
            stripe.Invoice.modify, invoice_id, api_key=self.api_key, description=description
        )
        logger.info("invoice_annotated", invoice_id=invoice_id)
