"""Values returned by webhook transitions.

Transitions never talk to the outside world. They describe what should
happen once their Unit of Work has committed, and the dispatcher carries it
out: compensating refunds first, then best-effort notifications and cache
invalidation.
"""

from dataclasses import dataclass, field
from enum import Enum


class EffectKind(Enum):
    INVALIDATE_CACHE = "invalidate_cache"
    ORDER_CONFIRMATION_EMAIL = "order_confirmation_email"
    ADMIN_NEW_ORDER_EMAIL = "admin_new_order_email"
    REFUND_CONFIRMATION_EMAIL = "refund_confirmation_email"
    ADMIN_REFUND_FAILED_ALERT = "admin_refund_failed_alert"
    ADMIN_WEBHOOK_FAILED_ALERT = "admin_webhook_failed_alert"
    PAYMENT_FAILED_EMAIL = "payment_failed_email"
    ADMIN_DISPUTE_ALERT = "admin_dispute_alert"


@dataclass(frozen=True)
class SideEffect:
    kind: EffectKind
    payload: dict = field(default_factory=dict)

    @classmethod
    def invalidate(cls, tags) -> "SideEffect":
        # Preserve order, drop duplicates
        return cls(EffectKind.INVALIDATE_CACHE, {"tags": list(dict.fromkeys(tags))})


@dataclass(frozen=True)
class CompensatingRefund:
    """A request to hand captured funds back for an order that will not ship."""

    order_id: str
    order_number: str
    payment_intent_id: str | None
    amount: int
    currency: str
    reason: str  # payment_failed, payment_canceled
    customer_email: str | None = None


@dataclass(frozen=True)
class TransitionOutcome:
    status: str  # applied, already_processed, skipped, order_not_found
    order_id: str | None = None
    effects: tuple[SideEffect, ...] = ()
    compensation: CompensatingRefund | None = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"

    @classmethod
    def skipped(cls, status, order_id=None) -> "TransitionOutcome":
        return cls(status=status, order_id=order_id)
