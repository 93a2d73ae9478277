"""Webhook dispatcher: verification, anti-replay, ledger and failure handling."""

import time

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError
from sales.config import Settings
from sales.gateway.fake_adapter import FakeGateway
from sales.inventory.variant import ProductVariant
from sales.order.order import PaymentStatus
from sales.webhook.dispatcher import WebhookDispatcher
from sales.webhook.ledger import DeliveryStatus, WebhookEvent


def _ledger(event):
    return current_domain.repository_for(WebhookEvent).get(event["id"])


class TestSignatureVerification:
    def test_valid_signature_is_accepted(self, shop, events, deliver):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])

        ack = deliver(events.payment_succeeded(order))

        assert ack.status_code == 200
        assert ack.body == {"received": True, "status": "processed"}

    def test_tampered_body_is_rejected(self, shop, events, dispatcher):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        body, signature = events.sign(events.payment_succeeded(order))

        ack = dispatcher.handle(body.replace(b"pi_test_001", b"pi_test_999"), signature)

        assert ack.status_code == 400
        assert ack.body["error"].startswith("Webhook Error:")
        assert shop.refresh(order).payment_status == PaymentStatus.PENDING.value

    def test_wrong_secret_is_rejected(self, shop, events, dispatcher):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.payment_succeeded(order)
        body, _ = events.sign(event)

        ack = dispatcher.handle(body, FakeGateway.sign(body, "whsec_other"))

        assert ack.status_code == 400

    def test_missing_signature_is_rejected(self, events, dispatcher):
        body, _ = events.sign(events.envelope("customer.created", {"id": "cus_1"}))

        ack = dispatcher.handle(body, None)

        assert ack.status_code == 400
        assert "signature" in ack.body["error"].lower()

    def test_garbled_header_is_rejected(self, events, dispatcher):
        body, _ = events.sign(events.envelope("customer.created", {"id": "cus_1"}))
        assert dispatcher.handle(body, "not-a-signature").status_code == 400

    def test_authentic_but_malformed_body_is_rejected(self, dispatcher):
        body = b'{"id": "evt_1", "type": "payment_intent.succeeded"}'
        ack = dispatcher.handle(body, FakeGateway.sign(body, "whsec_test_secret"))
        assert ack.status_code == 400

    def test_missing_secret_is_a_server_error(self, gateway, notifier, cache, events):
        dispatcher = WebhookDispatcher(gateway, notifier, cache, Settings(stripe_webhook_secret=""))
        body, signature = events.sign(events.envelope("customer.created", {"id": "cus_1"}))
        try:
            ack = dispatcher.handle(body, signature)
        finally:
            dispatcher.effects.shutdown()

        assert ack.status_code == 500
        assert ack.body == {"error": "Webhook secret not configured"}


class TestAntiReplay:
    def test_stale_event_is_rejected(self, shop, events, deliver):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.payment_succeeded(order)
        event["created"] = int(time.time()) - 301

        ack = deliver(event)

        assert ack.status_code == 400
        assert "too old" in ack.body["error"]
        assert shop.refresh(order).payment_status == PaymentStatus.PENDING.value

    def test_event_inside_window_is_accepted(self, shop, events, deliver):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.payment_succeeded(order)
        event["created"] = int(time.time()) - 60

        assert deliver(event).status_code == 200

    def test_window_follows_clock(self, shop, events, gateway, notifier, cache, settings):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.payment_succeeded(order)
        body, signature = events.sign(event)
        dispatcher = WebhookDispatcher(gateway, notifier, cache, settings, clock=lambda: event["created"] + 1000)
        try:
            ack = dispatcher.handle(body, signature)
        finally:
            dispatcher.effects.shutdown()

        assert ack.status_code == 400


class TestUnknownEvents:
    def test_unknown_type_is_acknowledged(self, events, deliver):
        event = events.envelope("customer.subscription.created", {"id": "sub_1"})

        ack = deliver(event)

        assert ack.status_code == 200
        assert ack.body["status"] == "ignored"

    def test_unknown_type_is_not_recorded(self, events, deliver):
        event = events.envelope("invoice.paid", {"id": "in_1"})
        deliver(event)

        with pytest.raises(ObjectNotFoundError):
            _ledger(event)


class TestProcessedEventLedger:
    def test_delivery_is_completed(self, shop, events, deliver):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.payment_succeeded(order)

        deliver(event)

        entry = _ledger(event)
        assert entry.status == DeliveryStatus.COMPLETED.value
        assert entry.event_type == "payment_intent.succeeded"
        assert entry.processed_at is not None

    def test_redelivery_is_a_duplicate(self, shop, events, deliver, notifier):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.checkout_completed(order)
        deliver(event)

        ack = deliver(event)

        assert ack.status_code == 200
        assert ack.body["status"] == "duplicate"
        assert len(notifier.sent_of("order_confirmation")) == 1

    def test_skipped_delivery_is_completed(self, shop, events, deliver):
        variant = shop.variant(inventory=2)
        order = shop.order([(variant, 1)])
        event = events.checkout_completed(order, payment_status="unpaid")

        deliver(event)

        assert _ledger(event).status == DeliveryStatus.COMPLETED.value
        assert shop.refresh(order).payment_status == PaymentStatus.PENDING.value


class TestTransitionFailure:
    def _broken_order(self, shop):
        ghost = ProductVariant(product_id="prod-gone", sku="GONE-1", inventory=0)
        return shop.order([(ghost, 1)], reserve=False)

    def test_failure_answers_server_error(self, shop, events, deliver):
        order = self._broken_order(shop)

        ack = deliver(events.checkout_completed(order))

        assert ack.status_code == 500
        assert ack.body == {"error": "Webhook handler failed"}
        assert shop.refresh(order).payment_status == PaymentStatus.PENDING.value

    def test_failure_is_recorded_on_the_ledger(self, shop, events, deliver):
        order = self._broken_order(shop)
        event = events.checkout_completed(order)

        deliver(event)

        entry = _ledger(event)
        assert entry.status == DeliveryStatus.FAILED.value
        assert entry.attempts == 1
        assert entry.error_message

    def test_retries_are_counted_and_alerted(self, shop, events, deliver, notifier):
        order = self._broken_order(shop)
        event = events.checkout_completed(order)

        deliver(event)
        deliver(event)
        assert notifier.sent_of("admin_webhook_failed") == []

        deliver(event)

        assert _ledger(event).attempts == 3
        alerts = notifier.sent_of("admin_webhook_failed")
        assert len(alerts) == 1
        assert alerts[0]["event_id"] == event["id"]
        assert alerts[0]["attempts"] == 3

    def test_no_side_effects_on_failure(self, shop, events, deliver, notifier, cache):
        order = self._broken_order(shop)

        deliver(events.checkout_completed(order))

        assert notifier.sent == []
        assert cache.invalidated == []

    def test_late_success_without_stock_left_is_a_server_error(self, shop, events, deliver):
        variant = shop.variant(inventory=1)
        order = shop.order([(variant, 1)])
        deliver(events.payment_failed(order))
        # The released unit is sold again before the late success arrives
        shop.order([(variant, 1)])

        ack = deliver(events.payment_succeeded(order))

        assert ack.status_code == 500
        assert shop.refresh(order).payment_status == PaymentStatus.FAILED.value
        assert shop.refresh(variant).inventory == 0
