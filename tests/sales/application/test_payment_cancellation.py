"""FailPayment, CancelPayment and ExpireCheckout processed directly through the domain."""

from protean import current_domain
from sales.effects.outcome import EffectKind
from sales.order.cancellation import CancelPayment, ExpireCheckout, FailPayment
from sales.order.confirmation import ConfirmPayment
from sales.order.order import OrderStatus, PaymentStatus


def _fail(order, **kwargs):
    values = {"order_id": order.id, "payment_intent_id": "pi_test_001"}
    values.update(kwargs)
    return current_domain.process(FailPayment(**values), asynchronous=False)


def _pay(order):
    current_domain.process(ConfirmPayment(order_id=order.id, payment_intent_id="pi_test_001"), asynchronous=False)


class TestFailPayment:
    def test_restores_stock_and_cancels(self, shop):
        variant = shop.variant(inventory=3)
        order = shop.order([(variant, 2)])
        assert shop.refresh(variant).inventory == 1

        outcome = _fail(
            order,
            failure_code="card_declined",
            decline_code="insufficient_funds",
            failure_message="Your card has insufficient funds.",
        )

        assert outcome.applied
        assert outcome.compensation is None
        assert shop.refresh(variant).inventory == 3

        order = shop.refresh(order)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.payment_failure_code == "card_declined"
        assert order.payment_decline_code == "insufficient_funds"

    def test_restores_each_variant_of_a_multi_line_order(self, shop):
        ring = shop.variant(inventory=2)
        necklace = shop.variant(inventory=5)
        order = shop.order([(ring, 1), (necklace, 3)])

        _fail(order)

        assert shop.refresh(ring).inventory == 2
        assert shop.refresh(necklace).inventory == 5

    def test_restore_does_not_relist(self, shop):
        variant = shop.variant(inventory=1)
        order = shop.order([(variant, 1)])
        delisted = shop.refresh(variant)
        delisted.deactivate()
        current_domain.repository_for(type(delisted)).add(delisted)

        _fail(order)

        variant = shop.refresh(variant)
        assert variant.inventory == 1
        assert variant.is_active is False

    def test_second_failure_does_not_restore_twice(self, shop):
        variant = shop.variant(inventory=3)
        order = shop.order([(variant, 2)])
        _fail(order)

        outcome = _fail(order)

        assert outcome.status == "already_processed"
        assert shop.refresh(variant).inventory == 3

    def test_captured_funds_request_compensation(self, shop):
        variant = shop.variant(inventory=3)
        order = shop.order([(variant, 1)], total=7900)

        outcome = _fail(order, amount_received=7900)

        assert outcome.compensation is not None
        assert outcome.compensation.payment_intent_id == "pi_test_001"
        assert outcome.compensation.amount == 7900
        assert outcome.compensation.reason == "payment_failed"

    def test_paid_order_is_cancelled_and_compensated(self, shop):
        variant = shop.variant(inventory=3)
        order = shop.order([(variant, 1)])
        _pay(order)

        outcome = _fail(order, amount_received=5000)

        assert outcome.applied
        assert outcome.compensation is not None
        assert shop.refresh(order).payment_status == PaymentStatus.FAILED.value
        assert shop.refresh(variant).inventory == 3
        tags = outcome.effects[0].payload["tags"]
        assert "dashboard-kpis" in tags

    def test_invalidates_stock_tags(self, shop):
        variant = shop.variant(inventory=3)
        order = shop.order([(variant, 1)])

        outcome = _fail(order)

        effect = outcome.effects[0]
        assert effect.kind == EffectKind.INVALIDATE_CACHE
        assert f"sku-stock-{variant.id}" in effect.payload["tags"]
        assert f"order-{order.id}" in effect.payload["tags"]


class TestCancelPayment:
    def test_restores_stock_and_cancels(self, shop):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 2)])

        outcome = current_domain.process(
            CancelPayment(order_id=order.id, payment_intent_id="pi_test_001", intent_status="canceled"),
            asynchronous=False,
        )

        assert outcome.applied
        assert outcome.compensation is None
        assert shop.refresh(variant).inventory == 2
        assert shop.refresh(order).status == OrderStatus.CANCELLED.value

    def test_canceled_intent_with_funds_requests_compensation(self, shop):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])

        outcome = current_domain.process(
            CancelPayment(
                order_id=order.id,
                payment_intent_id="pi_test_001",
                intent_status="canceled",
                amount_received=5000,
            ),
            asynchronous=False,
        )

        assert outcome.compensation is not None
        assert outcome.compensation.reason == "payment_canceled"

    def test_funds_on_intent_in_other_state_are_not_refunded(self, shop):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])

        outcome = current_domain.process(
            CancelPayment(
                order_id=order.id,
                payment_intent_id="pi_test_001",
                intent_status="requires_capture",
                amount_received=5000,
            ),
            asynchronous=False,
        )

        assert outcome.compensation is None


class TestExpireCheckout:
    def test_restores_stock_and_cancels(self, shop):
        variant = shop.variant(inventory=1)
        order = shop.order([(variant, 1)])

        outcome = current_domain.process(ExpireCheckout(order_id=order.id), asynchronous=False)

        assert outcome.applied
        assert outcome.compensation is None
        assert shop.refresh(variant).inventory == 1
        order = shop.refresh(order)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert f"product-{variant.product_id}" in outcome.effects[0].payload["tags"]

    def test_paid_order_is_left_alone(self, shop):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        _pay(order)

        outcome = current_domain.process(ExpireCheckout(order_id=order.id), asynchronous=False)

        assert outcome.status == "already_processed"
        assert shop.refresh(order).payment_status == PaymentStatus.PAID.value
        assert shop.refresh(variant).inventory == 1

    def test_unknown_order_is_skipped(self):
        outcome = current_domain.process(ExpireCheckout(order_id="missing-order"), asynchronous=False)
        assert outcome.status == "order_not_found"
