"""Payment gateway port (abstract interface).

The dispatcher talks to the payment provider only through this contract, so
the Stripe adapter can be swapped for the fake one in development and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class GatewayError(Exception):
    """A call to the payment provider failed."""


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> dict:
        """Check the signature of a webhook body and return the decoded event.

        Raises SignatureVerificationError when the signature does not match and
        MalformedEventError when the body is not a JSON event.
        """
        ...

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str, expand: list[str] | None = None) -> dict:
        """Fetch a checkout session. Raises GatewayError on failure."""
        ...

    @abstractmethod
    def create_refund(
        self,
        payment_reference: str,
        reason: str,
        metadata: dict,
        idempotency_key: str,
    ) -> RefundResult:
        """Refund the full captured amount of a payment intent."""
        ...
