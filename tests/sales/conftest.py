import json
import time
from uuid import uuid4

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session")
def sales_bed():
    from sales.domain import sales

    bed = DomainFixture(sales)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(sales_bed):
    with sales_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def settings():
    from sales.config import Settings, reset_settings, set_settings

    settings = Settings(
        stripe_webhook_secret=WEBHOOK_SECRET,
        base_url="https://shop.test",
        admin_email="admin@shop.test",
        side_effect_timeout_seconds=2.0,
    )
    set_settings(settings)
    yield settings
    reset_settings()


@pytest.fixture()
def gateway():
    from sales.gateway import reset_gateway, set_gateway
    from sales.gateway.fake_adapter import FakeGateway

    gateway = FakeGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture()
def notifier():
    from sales.notifier.fake_adapter import FakeNotifier

    return FakeNotifier()


@pytest.fixture()
def cache():
    from sales.notifier.fake_adapter import FakeCache

    return FakeCache()


@pytest.fixture()
def dispatcher(gateway, notifier, cache, settings):
    from sales.webhook.dispatcher import WebhookDispatcher

    dispatcher = WebhookDispatcher(gateway, notifier, cache, settings)
    yield dispatcher
    dispatcher.effects.shutdown()


class Shop:
    """Seeds orders, variants and carts the way checkout initiation leaves them."""

    def variant(self, inventory=1, sku=None, product_id=None, is_active=True):
        from sales.inventory.variant import ProductVariant

        variant = ProductVariant(
            product_id=product_id or f"prod-{uuid4().hex[:8]}",
            sku=sku or f"SKU-{uuid4().hex[:6].upper()}",
            inventory=inventory,
            is_active=is_active,
        )
        current_domain.repository_for(ProductVariant).add(variant)
        return variant

    def order(
        self,
        lines,
        total=5000,
        user_id="user-001",
        customer_email="jane@example.com",
        payment_intent_id=None,
        reserve=True,
    ):
        """Create a pending order for ``lines`` of (variant, quantity).

        With ``reserve`` the quantities are taken from stock first, as checkout
        initiation does before any webhook arrives.
        """
        from sales.inventory.variant import ProductVariant
        from sales.order.order import Order, ShippingAddress

        variant_repo = current_domain.repository_for(ProductVariant)
        if reserve:
            for variant, quantity in lines:
                fresh = variant_repo.get(variant.id)
                fresh.adjust_inventory(-quantity, reason="checkout_reservation")
                variant_repo.add(fresh)

        order = Order.create(
            order_number=f"ORD-{uuid4().hex[:8].upper()}",
            items=[
                {
                    "product_id": variant.product_id,
                    "variant_id": variant.id,
                    "sku": variant.sku,
                    "title": "Gold Leaf Earrings",
                    "color": "Gold",
                    "material": "Brass",
                    "quantity": quantity,
                    "unit_price": total // max(1, sum(q for _, q in lines)),
                }
                for variant, quantity in lines
            ],
            total=total,
            customer_email=customer_email,
            customer_name="Jane Doe",
            user_id=user_id,
            shipping_address=ShippingAddress(
                first_name="Jane",
                last_name="Doe",
                address_line1="12 rue des Lilas",
                postal_code="75011",
                city="Paris",
                country="FR",
            ),
        )
        if payment_intent_id:
            order.payment_intent_id = payment_intent_id
        current_domain.repository_for(Order).add(order)
        return order

    def cart(self, variant, user_id=None, session_id=None, quantity=1):
        from sales.cart.cart import Cart

        cart = Cart.create(user_id=user_id, session_id=session_id)
        cart.add_item(variant.id, quantity)
        current_domain.repository_for(Cart).add(cart)
        return cart

    def refresh(self, aggregate):
        return current_domain.repository_for(type(aggregate)).get(aggregate.id)


class StripeEvents:
    """Builds Stripe-shaped event envelopes and signs them."""

    def __init__(self, secret=WEBHOOK_SECRET):
        self.secret = secret

    def envelope(self, event_type, obj, created=None, event_id=None):
        return {
            "id": event_id or f"evt_{uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()) if created is None else created,
            "data": {"object": obj},
        }

    def checkout_completed(self, order, payment_intent_id="pi_test_001", **overrides):
        obj = {
            "id": f"cs_test_{uuid4().hex[:10]}",
            "object": "checkout.session",
            "client_reference_id": str(order.id),
            "metadata": {"order_id": str(order.id)},
            "payment_status": "paid",
            "payment_intent": payment_intent_id,
            "customer": "cus_test_001",
            "customer_email": order.customer_email,
            "total_details": {"amount_shipping": 490},
            "shipping_cost": {"shipping_rate": "shr_test_001"},
        }
        obj.update(overrides)
        return self.envelope("checkout.session.completed", obj)

    def checkout_expired(self, order):
        obj = {
            "id": f"cs_test_{uuid4().hex[:10]}",
            "object": "checkout.session",
            "metadata": {"order_id": str(order.id)},
            "status": "expired",
        }
        return self.envelope("checkout.session.expired", obj)

    def payment_succeeded(self, order, payment_intent_id="pi_test_001"):
        obj = {
            "id": payment_intent_id,
            "object": "payment_intent",
            "metadata": {"order_id": str(order.id)},
            "amount_received": order.total,
            "status": "succeeded",
            "customer": "cus_test_001",
        }
        return self.envelope("payment_intent.succeeded", obj)

    def payment_failed(self, order, payment_intent_id="pi_test_001", amount_received=0):
        obj = {
            "id": payment_intent_id,
            "object": "payment_intent",
            "metadata": {"order_id": str(order.id)},
            "amount_received": amount_received,
            "status": "requires_payment_method",
            "last_payment_error": {
                "code": "card_declined",
                "decline_code": "insufficient_funds",
                "message": "Your card has insufficient funds.",
            },
        }
        return self.envelope("payment_intent.payment_failed", obj)

    def payment_canceled(self, order, payment_intent_id="pi_test_001", amount_received=0, status="canceled"):
        obj = {
            "id": payment_intent_id,
            "object": "payment_intent",
            "metadata": {"order_id": str(order.id)},
            "amount_received": amount_received,
            "status": status,
            "cancellation_reason": "abandoned",
        }
        return self.envelope("payment_intent.canceled", obj)

    def charge_refunded(self, payment_intent_id, amount_refunded, refunds, currency="eur"):
        obj = {
            "id": f"ch_test_{uuid4().hex[:10]}",
            "object": "charge",
            "payment_intent": payment_intent_id,
            "amount_refunded": amount_refunded,
            "currency": currency,
            "refunds": {"object": "list", "data": refunds},
        }
        return self.envelope("charge.refunded", obj)

    def async_payment_succeeded(self, order, payment_intent_id="pi_test_001"):
        event = self.checkout_completed(order, payment_intent_id=payment_intent_id)
        event["type"] = "checkout.session.async_payment_succeeded"
        return event

    def async_payment_failed(self, order, payment_intent_id="pi_test_001"):
        obj = {
            "id": f"cs_test_{uuid4().hex[:10]}",
            "object": "checkout.session",
            "client_reference_id": str(order.id),
            "metadata": {"order_id": str(order.id)},
            "payment_status": "unpaid",
            "payment_intent": payment_intent_id,
        }
        return self.envelope("checkout.session.async_payment_failed", obj)

    def refund(self, event_type, refund_id, status, local_refund_id=None, failure_reason=None, amount=5000):
        obj = {
            "id": refund_id,
            "object": "refund",
            "amount": amount,
            "currency": "eur",
            "payment_intent": "pi_test_001",
            "status": status,
            "metadata": {"refund_id": local_refund_id} if local_refund_id else {},
        }
        if failure_reason:
            obj["failure_reason"] = failure_reason
        return self.envelope(event_type, obj)

    def dispute(self, event_type, payment_intent_id, status="needs_response", reason="fraudulent", amount=5000):
        obj = {
            "id": f"dp_test_{uuid4().hex[:10]}",
            "object": "dispute",
            "amount": amount,
            "currency": "eur",
            "payment_intent": payment_intent_id,
            "reason": reason,
            "status": status,
            "evidence_details": {"due_by": 1767225600},
        }
        return self.envelope(event_type, obj)

    def sign(self, event):
        from sales.gateway.fake_adapter import FakeGateway

        body = json.dumps(event).encode("utf-8")
        return body, FakeGateway.sign(body, self.secret)


@pytest.fixture()
def shop():
    return Shop()


@pytest.fixture()
def events():
    return StripeEvents()


@pytest.fixture()
def deliver(dispatcher, events):
    """Sign an event and hand it to the dispatcher, returning the acknowledgement."""

    def _deliver(event):
        body, signature = events.sign(event)
        return dispatcher.handle(body, signature)

    return _deliver
