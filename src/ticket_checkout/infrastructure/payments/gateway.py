# src/ticket_checkout/infrastructure/payments/gateway.py

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class GatewayLineItem:
    name: str
    unit_amount: int
    quantity: int

    @property
    def amount(self) -> int:
        return self.unit_amount * self.quantity


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    payload_hash: str
    session_id: str | None = None
    payment_id: str | None = None
    metadata: dict = field(default_factory=dict)


class PaymentGateway(Protocol):
    """
    Hosted payment provider as seen by the checkout engine.
    Implementations raise PaymentProviderError for provider failures
    and WebhookSignatureError for deliveries that fail verification.
    """

    provider_name: str
    completed_event_type: str
    signature_header: str
    event_id_header: str

    def create_checkout_session(
        self,
        line_items: list[GatewayLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        currency: str,
        reference_id: str | None = None,
    ) -> CheckoutSession:
        ...

    def verify_and_parse(
        self,
        raw_body: bytes,
        signature: str,
        secret: str,
        event_id: str | None = None,
    ) -> WebhookEvent:
        ...

    def refund(self, payment_id: str, amount_minor: int) -> str:
        ...
