"""Stripe payment gateway adapter built on the official ``stripe`` SDK."""

import json

import stripe
import structlog

from sales.errors import MalformedEventError, SignatureVerificationError
from sales.gateway.port import GatewayError, PaymentGateway, RefundResult

logger = structlog.get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway. One instance is built at startup and shared."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("StripeGateway requires a secret API key")
        self.api_key = api_key

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> dict:
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError(str(exc)) from exc
        except ValueError as exc:
            raise MalformedEventError(f"Invalid payload: {exc}") from exc

        # The body is authentic; decode it once into plain data
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise MalformedEventError(f"Invalid payload: {exc}") from exc

    def retrieve_checkout_session(self, session_id: str, expand: list[str] | None = None) -> dict:
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=expand or [], api_key=self.api_key)
        except stripe.StripeError as exc:
            raise GatewayError(f"Could not retrieve checkout session {session_id}: {exc}") from exc
        return json.loads(str(session))

    def create_refund(
        self,
        payment_reference: str,
        reason: str,
        metadata: dict,
        idempotency_key: str,
    ) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                reason=reason,
                metadata=metadata,
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed", payment_intent_id=payment_reference, error=str(exc))
            return RefundResult(success=False, failure_reason=getattr(exc, "user_message", None) or str(exc))

        return RefundResult(success=True, gateway_refund_id=refund.id, gateway_status=refund.status)
