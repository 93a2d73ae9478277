"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- StripeGateway when PAYMENT_GATEWAY=stripe
"""

from sales.config import get_settings
from sales.gateway.fake_adapter import FakeGateway
from sales.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, building it from settings on first use."""
    global _current_gateway
    if _current_gateway is None:
        settings = get_settings()
        if settings.payment_gateway == "stripe":
            from sales.gateway.stripe_adapter import StripeGateway

            _current_gateway = StripeGateway(api_key=settings.stripe_secret_key)
        else:
            _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the default gateway."""
    global _current_gateway
    _current_gateway = None
