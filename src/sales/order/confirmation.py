"""Payment confirmation — commands and handler.

Two success signals confirm an order:
- ConfirmCheckout: a completed checkout session. Authoritative for shipping
  cost and method; re-validates reserved stock, delists sold-out variants
  and empties the buyer's cart.
- ConfirmPayment: a succeeded payment intent outside the checkout flow.
  Marks the order paid and nothing more.

Either may arrive after the order was cancelled for a failed or expired
payment. The money is real, so the order reopens and takes back the stock
its cancellation released; running out of stock in between is a hard error.
An order that failed after it had been paid stays closed: its captured funds
were handed back by the compensation path.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from sales.cart.cart import Cart
from sales.config import get_settings
from sales.domain import sales
from sales.effects import tags
from sales.effects.outcome import EffectKind, SideEffect, TransitionOutcome
from sales.inventory import stock
from sales.order import payloads
from sales.order.guard import EventKind, should_process, should_retake_stock
from sales.order.order import Order, PaymentStatus
from sales.webhook.ledger import complete_delivery

logger = structlog.get_logger(__name__)


@sales.command(part_of="Order")
class ConfirmCheckout:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    checkout_session_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    provider_customer_id = String(max_length=255)
    customer_email = String(max_length=255)  # As reported by the provider
    shipping_cost = Integer(min_value=0)
    shipping_method = String(max_length=100)
    shipping_carrier = String(max_length=100)
    guest_session_id = String(max_length=255)


@sales.command(part_of="Order")
class ConfirmPayment:
    order_id = Identifier(required=True)
    event_id = String(max_length=255)
    payment_intent_id = String(required=True, max_length=255)
    provider_customer_id = String(max_length=255)


def _load_order(order_id, event_id):
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        logger.warning("Order referenced by payment event not found", order_id=str(order_id))
        complete_delivery(event_id)
        return None


def _clear_carts(user_id, guest_session_id) -> int:
    repo = current_domain.repository_for(Cart)
    if user_id:
        carts = repo.for_user(user_id)
    elif guest_session_id:
        carts = repo.for_session(guest_session_id)
    else:
        return 0

    cleared = 0
    for cart in carts:
        if cart.clear():
            repo.add(cart)
            cleared += 1
    return cleared


def _accepts_success(order, kind) -> bool:
    if not should_process(order.payment_status, kind):
        return False
    # A failure that followed a payment triggered the compensation path
    return not (order.payment_status == PaymentStatus.FAILED.value and order.paid_at is not None)


@sales.command_handler(part_of=Order)
class ConfirmationHandler:
    @handle(ConfirmCheckout)
    def confirm_checkout(self, command):
        order = _load_order(command.order_id, command.event_id)
        if order is None:
            return TransitionOutcome.skipped("order_not_found", str(command.order_id))

        if not _accepts_success(order, EventKind.CHECKOUT_COMPLETED):
            logger.info("Checkout already confirmed, skipping", order_id=str(order.id))
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("already_processed", str(order.id))

        # Validate everything before the first mutation
        reopened = should_retake_stock(order.payment_status)
        if reopened:
            variants = stock.retake(order.quantities_by_variant(), reason="payment_recovered", order_id=str(order.id))
        else:
            variants = stock.revalidate(order.quantities_by_variant())

        order.mark_paid(
            payment_intent_id=command.payment_intent_id,
            checkout_session_id=command.checkout_session_id,
            provider_customer_id=command.provider_customer_id,
            shipping_cost=command.shipping_cost,
            shipping_method=command.shipping_method,
            shipping_carrier=command.shipping_carrier,
        )
        flagged = order.flag_email_mismatch(command.customer_email)
        if flagged:
            logger.warning(
                "Payer email differs from order email",
                order_id=str(order.id),
                order_email=order.customer_email,
                provider_email=command.customer_email,
            )

        delisted = stock.delist_depleted(variants)
        cleared = _clear_carts(order.user_id, command.guest_session_id)

        current_domain.repository_for(Order).add(order)
        # Reopening touched every counter, a plain confirmation only the delisted ones
        touched = list(variants.values()) if reopened else delisted
        stock.persist(touched)
        complete_delivery(command.event_id)

        logger.info(
            "Checkout confirmed",
            order_id=str(order.id),
            order_number=order.order_number,
            reopened=reopened,
            delisted=len(delisted),
            carts_cleared=cleared,
        )

        settings = get_settings()
        cache_tags = [
            *tags.cart_tags(order.user_id, command.guest_session_id),
            tags.ORDERS_LIST,
            tags.ADMIN_BADGES,
            tags.DASHBOARD_KPIS,
            *[tags.sku_stock(variant.id) for variant in touched],
        ]
        if order.user_id:
            cache_tags.append(tags.user_orders(order.user_id))
        if flagged:
            cache_tags.append(tags.order_notes(order.id))

        effects = [SideEffect.invalidate(cache_tags)]
        recipient = order.customer_email or command.customer_email
        if recipient:
            effects.append(
                SideEffect(
                    EffectKind.ORDER_CONFIRMATION_EMAIL,
                    payloads.order_confirmation(order, settings.base_url, recipient=recipient),
                )
            )
        else:
            logger.warning("No customer email, skipping order confirmation", order_id=str(order.id))
        effects.append(
            SideEffect(EffectKind.ADMIN_NEW_ORDER_EMAIL, payloads.admin_new_order(order, settings.dashboard_url))
        )

        return TransitionOutcome("applied", str(order.id), tuple(effects))

    @handle(ConfirmPayment)
    def confirm_payment(self, command):
        order = _load_order(command.order_id, command.event_id)
        if order is None:
            return TransitionOutcome.skipped("order_not_found", str(command.order_id))

        if not _accepts_success(order, EventKind.PAYMENT_SUCCEEDED):
            logger.info("Payment already recorded, skipping", order_id=str(order.id))
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("already_processed", str(order.id))

        touched = []
        reopened = should_retake_stock(order.payment_status)
        if reopened:
            variants = stock.retake(order.quantities_by_variant(), reason="payment_recovered", order_id=str(order.id))
            stock.delist_depleted(variants)
            touched = list(variants.values())

        order.mark_paid(
            payment_intent_id=command.payment_intent_id,
            provider_customer_id=command.provider_customer_id,
        )
        current_domain.repository_for(Order).add(order)
        stock.persist(touched)
        complete_delivery(command.event_id)

        logger.info(
            "Payment confirmed",
            order_id=str(order.id),
            payment_intent_id=command.payment_intent_id,
            reopened=reopened,
        )

        effects = (
            SideEffect.invalidate(
                [
                    *[tags.sku_stock(variant.id) for variant in touched],
                    tags.ORDERS_LIST,
                    tags.ADMIN_BADGES,
                    tags.order_detail(order.id),
                ]
            ),
        )
        return TransitionOutcome("applied", str(order.id), effects)
