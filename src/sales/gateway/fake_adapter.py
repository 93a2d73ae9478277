"""Configurable fake payment gateway for development and testing.

Signs and verifies webhook bodies the way Stripe does (an HMAC-SHA256 of
``"{timestamp}.{body}"`` carried as ``t=...,v1=...``), so the whole
verification path runs without network access.
"""

import hashlib
import hmac
import json
import time
from uuid import uuid4

from sales.errors import MalformedEventError, SignatureVerificationError
from sales.gateway.port import GatewayError, PaymentGateway, RefundResult


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Refund declined"
        self.sessions: dict[str, dict] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Refund declined") -> None:
        """Configure refund behaviour at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def add_session(self, session: dict) -> None:
        """Make a checkout session retrievable by id."""
        self.sessions[session["id"]] = session

    @staticmethod
    def sign(payload: bytes | str, secret: str, timestamp: int | None = None) -> str:
        """Build a signature header for ``payload``."""
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> dict:
        self.calls.append({"method": "verify_webhook", "signature": signature})

        parts = dict(part.split("=", 1) for part in (signature or "").split(",") if "=" in part)
        if "t" not in parts or "v1" not in parts:
            raise SignatureVerificationError("Unable to extract timestamp and signature from header")

        expected = self.sign(payload, secret, timestamp=int(parts["t"])) if parts["t"].isdigit() else ""
        if not expected or not hmac.compare_digest(expected.split("v1=", 1)[1], parts["v1"]):
            raise SignatureVerificationError("No signature found matching the expected signature for payload")

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise MalformedEventError(f"Invalid payload: {exc}") from exc
        if not isinstance(event, dict):
            raise MalformedEventError("Invalid payload: expected a JSON object")
        return event

    def retrieve_checkout_session(self, session_id: str, expand: list[str] | None = None) -> dict:
        self.calls.append({"method": "retrieve_checkout_session", "session_id": session_id, "expand": expand})
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout session: {session_id}")
        return self.sessions[session_id]

    def create_refund(
        self,
        payment_reference: str,
        reason: str,
        metadata: dict,
        idempotency_key: str,
    ) -> RefundResult:
        call = {
            "method": "create_refund",
            "payment_reference": payment_reference,
            "reason": reason,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        self.calls.append(call)

        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"re_fake_{uuid4().hex[:12]}",
                gateway_status="pending",
            )
        return RefundResult(success=False, failure_reason=self.failure_reason)

    def refund_calls(self) -> list[dict]:
        return [call for call in self.calls if call["method"] == "create_refund"]
