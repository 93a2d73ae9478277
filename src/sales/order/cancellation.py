"""Payment failure, cancellation and checkout expiry — commands and handler.

All four (failure, cancellation, expiry and a failed asynchronous checkout
payment) release the stock reserved at checkout and cancel the order in one
Unit of Work. Failure and cancellation may additionally request a
compensating refund when the provider reports captured funds; expiry never
does, since nothing was ever captured. A failed asynchronous payment also
invites the customer to order again.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from sales.config import get_settings
from sales.domain import sales
from sales.effects import tags
from sales.effects.outcome import CompensatingRefund, EffectKind, SideEffect, TransitionOutcome
from sales.inventory import stock
from sales.order import payloads
from sales.order.guard import EventKind, should_process, should_restore_stock
from sales.order.order import Order, PaymentStatus
from sales.webhook.ledger import complete_delivery

logger = structlog.get_logger(__name__)


@sales.command(part_of="Order")
class FailPayment:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    amount_received = Integer(default=0, min_value=0)
    failure_code = String(max_length=100)
    decline_code = String(max_length=100)
    failure_message = String(max_length=500)


@sales.command(part_of="Order")
class CancelPayment:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    amount_received = Integer(default=0, min_value=0)
    intent_status = String(max_length=50)
    cancellation_reason = String(max_length=500)


@sales.command(part_of="Order")
class ExpireCheckout:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    checkout_session_id = String(max_length=255)


@sales.command(part_of="Order")
class FailAsyncPayment:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    checkout_session_id = String(max_length=255)
    payment_intent_id = String(max_length=255)


@sales.command_handler(part_of=Order)
class CancellationHandler:
    @handle(FailPayment)
    def fail_payment(self, command):
        released = self._release(
            command,
            EventKind.PAYMENT_FAILED,
            reason="payment_failed",
            payment_intent_id=command.payment_intent_id,
            failure_code=command.failure_code,
            decline_code=command.decline_code,
            failure_message=command.failure_message,
        )
        if isinstance(released, TransitionOutcome):
            return released

        order, restored, previous = released
        compensation = None
        if (command.amount_received or 0) > 0:
            compensation = _compensation(order, command.payment_intent_id, "payment_failed")

        return TransitionOutcome(
            "applied",
            str(order.id),
            (_release_tags(order, restored, previous),),
            compensation,
        )

    @handle(CancelPayment)
    def cancel_payment(self, command):
        released = self._release(
            command,
            EventKind.PAYMENT_CANCELED,
            reason="payment_canceled",
            payment_intent_id=command.payment_intent_id,
            failure_message=command.cancellation_reason,
        )
        if isinstance(released, TransitionOutcome):
            return released

        order, restored, previous = released
        compensation = None
        if command.intent_status == "canceled" and (command.amount_received or 0) > 0:
            compensation = _compensation(order, command.payment_intent_id, "payment_canceled")

        return TransitionOutcome(
            "applied",
            str(order.id),
            (_release_tags(order, restored, previous),),
            compensation,
        )

    @handle(ExpireCheckout)
    def expire_checkout(self, command):
        released = self._release(command, EventKind.CHECKOUT_EXPIRED, reason="checkout_expired")
        if isinstance(released, TransitionOutcome):
            return released

        order, restored, _ = released
        product_tags = [tags.product(record["product_id"]) for record in restored]
        effect = SideEffect.invalidate(
            [*product_tags, tags.ORDERS_LIST, tags.ADMIN_BADGES, tags.order_detail(order.id)]
        )
        return TransitionOutcome("applied", str(order.id), (effect,))

    @handle(FailAsyncPayment)
    def fail_async_payment(self, command):
        released = self._release(
            command,
            EventKind.ASYNC_PAYMENT_FAILED,
            reason="async_payment_failed",
            payment_intent_id=command.payment_intent_id,
            failure_message="Asynchronous payment failed",
        )
        if isinstance(released, TransitionOutcome):
            return released

        order, restored, previous = released
        effects = [_release_tags(order, restored, previous)]
        if order.customer_email:
            effects.append(
                SideEffect(EffectKind.PAYMENT_FAILED_EMAIL, payloads.payment_failed(order, get_settings().base_url))
            )
        return TransitionOutcome("applied", str(order.id), tuple(effects))

    def _release(self, command, kind, reason, payment_intent_id=None, **failure):
        """Restore stock and cancel the order.

        Returns ``(order, restored, previous_payment_status)``, or a
        TransitionOutcome when there is nothing to do.
        """
        repo = current_domain.repository_for(Order)
        try:
            order = repo.get(command.order_id)
        except ObjectNotFoundError:
            logger.warning("Order referenced by payment event not found", order_id=str(command.order_id))
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("order_not_found", str(command.order_id))

        if not should_process(order.payment_status, kind):
            logger.info(
                "Order already resolved, skipping",
                order_id=str(order.id),
                payment_status=order.payment_status,
                event_kind=kind.value,
            )
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("already_processed", str(order.id))

        previous = order.payment_status
        if previous == PaymentStatus.PAID.value:
            logger.warning(
                "Payment reversal received for a paid order, cancelling",
                order_id=str(order.id),
                event_kind=kind.value,
            )

        variants = {}
        restored = []
        if should_restore_stock(previous):
            quantities = order.quantities_by_variant()
            variants = stock.load_variants(quantities)
            restored = stock.restore(variants, quantities, reason=reason, order_id=str(order.id))

        order.cancel_for_payment(reason, payment_intent_id=payment_intent_id, **failure)

        repo.add(order)
        stock.persist(variants.values())
        complete_delivery(command.event_id)

        logger.info(
            "Order cancelled after payment event",
            order_id=str(order.id),
            reason=reason,
            previous_payment_status=previous,
            variants_restored=len(restored),
        )
        return order, restored, previous


def _compensation(order, payment_intent_id, reason) -> CompensatingRefund:
    return CompensatingRefund(
        order_id=str(order.id),
        order_number=order.order_number,
        payment_intent_id=payment_intent_id or order.payment_intent_id,
        amount=order.total,
        currency=order.currency,
        reason=reason,
        customer_email=order.customer_email,
    )


def _release_tags(order, restored, previous_payment_status) -> SideEffect:
    cache_tags = [
        *[tags.sku_stock(record["variant_id"]) for record in restored],
        tags.ORDERS_LIST,
        tags.ADMIN_BADGES,
        tags.order_detail(order.id),
    ]
    if previous_payment_status == PaymentStatus.PAID.value:
        cache_tags.append(tags.DASHBOARD_KPIS)
    return SideEffect.invalidate(cache_tags)
