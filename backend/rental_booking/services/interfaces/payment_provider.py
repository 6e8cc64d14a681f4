"""
Payment provider interface.

The booking core only needs three things from a provider: verified webhook
events, a checkout redirect URL and a way to label the first invoice.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


class WebhookSignatureError(Exception):
    """Webhook body or signature failed verification."""


@dataclass(frozen=True)
class ProviderEvent:
    id: str
    type: str
    data_object: dict[str, Any]


@dataclass(frozen=True)
class CheckoutLineItem:
    name: str
    amount_cents: int
    recurring_monthly: bool = False


@dataclass(frozen=True)
class CheckoutRequest:
    booking_id: str
    line_items: list[CheckoutLineItem]
    success_url: str
    cancel_url: str
    currency: str = "usd"
    customer_email: Optional[str] = None
    description: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class PaymentProvider(ABC):
    """
    Implementations:
    - StripePaymentProvider: production
    - test doubles in the test suite
    """

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        """Verify `payload` against `signature`; raises WebhookSignatureError."""
        pass

    @abstractmethod
    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        pass

    @abstractmethod
    async def annotate_invoice(self, invoice_id: str, description: str) -> None:
        pass
