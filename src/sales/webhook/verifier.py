"""Event verifier — authenticates a webhook body and decodes it once."""

from sales.errors import SignatureVerificationError
from sales.gateway.port import PaymentGateway
from sales.webhook.events import ProviderEvent, decode_event


class EventVerifier:
    def __init__(self, gateway: PaymentGateway, secret: str):
        self.gateway = gateway
        self.secret = secret

    def verify(self, raw_body: bytes, signature: str | None) -> ProviderEvent:
        if not signature:
            raise SignatureVerificationError("Missing signature header")
        return decode_event(self.gateway.verify_webhook(raw_body, signature, self.secret))
