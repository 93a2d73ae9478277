"""Domain events for the Order aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from sales.domain import sales


@sales.event(part_of="Order")
class OrderPaid:
    """Payment for the order was confirmed by the provider."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    order_number = String(required=True)
    payment_intent_id = String()
    checkout_session_id = String()
    total = Integer(required=True)
    shipping_cost = Integer()
    paid_at = DateTime(required=True)
    reopened = Boolean(default=False)  # Paid after an earlier failure or expiry


@sales.event(part_of="Order")
class OrderPaymentFailed:
    """The order was cancelled because its payment failed, was canceled or expired."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String(required=True)
    previous_payment_status = String(required=True)
    failure_code = String()
    failure_message = String(max_length=500)
    cancelled_at = DateTime(required=True)


@sales.event(part_of="Order")
class OrderRefunded:
    """The provider reported refunds covering the full order total."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    order_number = String(required=True)
    amount_refunded = Integer(required=True)
    refunded_at = DateTime(required=True)


@sales.event(part_of="Order")
class OrderFlaggedForReview:
    """A note was attached to the order for manual review."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    note = Text(required=True)
