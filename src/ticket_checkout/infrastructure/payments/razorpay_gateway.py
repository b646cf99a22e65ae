# src/ticket_checkout/infrastructure/payments/razorpay_gateway.py

import hashlib
import json
import logging

import razorpay
import requests

from ticket_checkout.config import Settings
from ticket_checkout.domain.exceptions import PaymentProviderError, WebhookSignatureError
from ticket_checkout.infrastructure.payments.gateway import (
    CheckoutSession,
    GatewayLineItem,
    WebhookEvent,
)


logger = logging.getLogger(__name__)

# Razorpay rejects notes with more than 15 keys or values over 256 chars.
NOTES_MAX_KEYS = 15
NOTES_MAX_VALUE_LENGTH = 256

_PROVIDER_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.RequestException,
)


def hash_webhook_payload(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


class RazorpayGateway:
    """
    Hosted checkout through Razorpay Payment Links.

    A payment link is the hosted session: its id is the session id, its
    short_url the redirect target, and its notes carry the order metadata.
    Payment links have no separate cancel redirect; abandoned links expire
    on the provider side, so cancel_url is only echoed in the notes.
    """

    provider_name = "RAZORPAY"
    completed_event_type = "payment_link.paid"
    signature_header = "X-Razorpay-Signature"
    event_id_header = "X-Razorpay-Event-Id"

    def __init__(self, key_id: str, key_secret: str, client: razorpay.Client | None = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayGateway":
        return cls(settings.razorpay_key_id, settings.razorpay_key_secret)

    def _razorpay_client(self) -> razorpay.Client:
        if self._client is not None:
            return self._client
        if not self.key_id or not self.key_secret:
            raise PaymentProviderError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_checkout_session(
        self,
        line_items: list[GatewayLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        currency: str,
        reference_id: str | None = None,
    ) -> CheckoutSession:
        if not line_items:
            raise PaymentProviderError("Cannot open a payment session without line items")

        notes = self._build_notes({**metadata, "cancel_url": cancel_url})
        payload = {
            "amount": sum(item.amount for item in line_items),
            "currency": currency,
            "description": ", ".join(
                f"{item.name} x{item.quantity}" for item in line_items
            )[:2048],
            "notes": notes,
            "callback_url": success_url,
            "callback_method": "get",
        }
        if reference_id:
            payload["reference_id"] = reference_id

        client = self._razorpay_client()
        try:
            link = client.payment_link.create(payload)
        except _PROVIDER_ERRORS as exc:
            raise PaymentProviderError(f"Razorpay error: {exc}") from exc

        link_id = link.get("id")
        url = link.get("short_url")
        if not link_id or not url:
            raise PaymentProviderError("Razorpay returned a payment link without id or url")
        return CheckoutSession(id=link_id, url=url)

    def verify_and_parse(
        self,
        raw_body: bytes,
        signature: str,
        secret: str,
        event_id: str | None = None,
    ) -> WebhookEvent:
        if not secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing signature")

        try:
            body_text = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WebhookSignatureError("Webhook body is not valid UTF-8") from exc

        # Signature verification only needs the utility helper, not API keys.
        utility_client = self._client or razorpay.Client(auth=(self.key_id, self.key_secret))
        try:
            utility_client.utility.verify_webhook_signature(body_text, signature, secret)
        except (razorpay.errors.SignatureVerificationError, TypeError) as exc:
            raise WebhookSignatureError("Invalid signature") from exc

        try:
            body = json.loads(body_text)
        except ValueError as exc:
            raise WebhookSignatureError("Signed webhook body is not JSON") from exc
        if not isinstance(body, dict):
            raise WebhookSignatureError("Signed webhook body is not a JSON object")

        payload_hash = hash_webhook_payload(raw_body)
        payload = body.get("payload") or {}
        link = _entity(payload, "payment_link")
        payment = _entity(payload, "payment")

        # Empty notes arrive as [] rather than {}.
        notes = link.get("notes") or payment.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}

        return WebhookEvent(
            id=event_id or payload_hash,
            type=str(body.get("event") or ""),
            payload_hash=payload_hash,
            session_id=link.get("id"),
            payment_id=payment.get("id"),
            metadata={str(key): value for key, value in notes.items()},
        )

    def refund(self, payment_id: str, amount_minor: int) -> str:
        client = self._razorpay_client()
        try:
            refund = client.payment.refund(payment_id, {"amount": amount_minor})
        except _PROVIDER_ERRORS as exc:
            raise PaymentProviderError(f"Razorpay refund error: {exc}") from exc
        return str(refund.get("id", ""))

    @staticmethod
    def _build_notes(metadata: dict[str, str]) -> dict[str, str]:
        notes: dict[str, str] = {}
        for key, value in metadata.items():
            if len(notes) >= NOTES_MAX_KEYS:
                logger.warning("Dropping payment link note %s: key limit reached", key)
                continue
            text = str(value)
            if len(text) > NOTES_MAX_VALUE_LENGTH:
                logger.warning(
                    "Dropping payment link note %s: %s chars exceeds %s",
                    key,
                    len(text),
                    NOTES_MAX_VALUE_LENGTH,
                )
                continue
            notes[key] = text
        return notes


def _entity(payload: dict, name: str) -> dict:
    wrapper = payload.get(name) if isinstance(payload, dict) else None
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}
