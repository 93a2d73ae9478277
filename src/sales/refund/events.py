"""Domain events for the Refund aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from sales.domain import sales


@sales.event(part_of="Refund")
class RefundRecorded:
    """A refund was observed for the first time."""

    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider_refund_id = String()
    amount = Integer(required=True)
    currency = String(required=True)
    origin = String(required=True)  # automatic, provider


@sales.event(part_of="Refund")
class RefundCompleted:
    """The provider confirmed the money went back to the customer."""

    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider_refund_id = String(required=True)
    amount = Integer(required=True)
    completed_at = DateTime(required=True)


@sales.event(part_of="Refund")
class RefundFailed:
    """The provider could not return the money."""

    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider_refund_id = String()
    amount = Integer(required=True)
    failure_reason = String()
    failed_at = DateTime(required=True)


@sales.event(part_of="Refund")
class RefundCancelled:
    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    cancelled_at = DateTime(required=True)
