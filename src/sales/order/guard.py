"""Idempotency guard — decides whether a webhook transition still applies.

The order's current ``payment_status`` is the idempotency token: an event
whose implied transition is already reflected in the order is a no-op.
Every transition re-reads the order inside its Unit of Work before asking.
"""

from enum import Enum

from sales.order.order import PaymentStatus


class EventKind(Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"
    CHECKOUT_EXPIRED = "checkout_expired"
    ASYNC_PAYMENT_FAILED = "async_payment_failed"
    CHARGE_REFUNDED = "charge_refunded"
    DISPUTE_LOST = "dispute_lost"


_SUCCESS_KINDS = {EventKind.CHECKOUT_COMPLETED, EventKind.PAYMENT_SUCCEEDED}
_FAILURE_KINDS = {EventKind.PAYMENT_FAILED, EventKind.PAYMENT_CANCELED}
_UNPAID_KINDS = {EventKind.CHECKOUT_EXPIRED, EventKind.ASYNC_PAYMENT_FAILED}
_MONEY_RETURNED_KINDS = {EventKind.CHARGE_REFUNDED, EventKind.DISPUTE_LOST}

# Stock is reserved while the order is pending or paid and released once payment failed
_STOCK_HELD = {PaymentStatus.PENDING, PaymentStatus.PAID}


def should_process(payment_status: str, kind: EventKind) -> bool:
    status = PaymentStatus(payment_status)

    if kind in _SUCCESS_KINDS:
        # A success after a failure or expiry reopens the order; refunds are final
        return status in (PaymentStatus.PENDING, PaymentStatus.FAILED)
    if kind in _UNPAID_KINDS:
        # Never undo a success or failure that arrived first
        return status == PaymentStatus.PENDING
    if kind in _FAILURE_KINDS:
        return status in _STOCK_HELD
    if kind in _MONEY_RETURNED_KINDS:
        # Money goes back only once it was taken
        return status in (PaymentStatus.PAID, PaymentStatus.FAILED)
    return False


def should_restore_stock(payment_status: str) -> bool:
    return PaymentStatus(payment_status) in _STOCK_HELD


def should_retake_stock(payment_status: str) -> bool:
    """A success on a failed order must take back the stock its failure released."""
    return PaymentStatus(payment_status) == PaymentStatus.FAILED
