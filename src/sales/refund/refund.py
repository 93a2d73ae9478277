"""Refund aggregate (CQRS) — the local record of money returned to a customer.

A refund is recorded either proactively, when an automatic refund is issued
to compensate a failed or canceled payment, or reactively, when the provider
reports a refund that originated elsewhere (e.g. its dashboard). There is at
most one Refund per provider refund id.

Status moves from Pending to exactly one of Completed, Failed or Cancelled.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from sales.domain import sales
from sales.refund.events import RefundCancelled, RefundCompleted, RefundFailed, RefundRecorded


class RefundStatus(Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class RefundOrigin(Enum):
    AUTOMATIC = "automatic"
    PROVIDER = "provider"


@sales.aggregate
class Refund:
    order_id = Identifier(required=True)
    provider_refund_id = String(max_length=255, unique=True)  # Nullable until linked
    amount = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="EUR")
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    reason = String(max_length=100)
    failure_reason = String(max_length=255)
    note = Text()
    created_at = DateTime()
    updated_at = DateTime()
    processed_at = DateTime()

    @classmethod
    def record(
        cls,
        order_id,
        amount,
        currency="EUR",
        provider_refund_id=None,
        reason=None,
        note=None,
        origin=RefundOrigin.AUTOMATIC,
    ):
        now = datetime.now(UTC)
        refund = cls(
            order_id=order_id,
            amount=amount,
            currency=(currency or "EUR").upper(),
            provider_refund_id=provider_refund_id,
            reason=reason,
            note=note,
            created_at=now,
            updated_at=now,
        )
        refund.raise_(
            RefundRecorded(
                refund_id=str(refund.id),
                order_id=str(order_id),
                provider_refund_id=provider_refund_id,
                amount=amount,
                currency=refund.currency,
                origin=origin.value,
            )
        )
        return refund

    def link_provider_refund(self, provider_refund_id):
        if self.provider_refund_id and self.provider_refund_id != provider_refund_id:
            raise ValidationError(
                {"provider_refund_id": [f"Refund is already linked to {self.provider_refund_id}"]}
            )
        self.provider_refund_id = provider_refund_id
        self.updated_at = datetime.now(UTC)

    def complete(self):
        """Mark the refund completed. Completing twice is a no-op."""
        if RefundStatus(self.status) == RefundStatus.COMPLETED:
            return
        if not self.provider_refund_id:
            raise ValidationError({"provider_refund_id": ["Only refunds known to the provider can complete"]})

        now = datetime.now(UTC)
        self.status = RefundStatus.COMPLETED.value
        self.processed_at = now
        self.updated_at = now
        self.raise_(
            RefundCompleted(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                provider_refund_id=self.provider_refund_id,
                amount=self.amount,
                completed_at=now,
            )
        )

    def fail(self, failure_reason=None):
        """Record that the provider could not return the money. Failing twice is a no-op."""
        status = RefundStatus(self.status)
        if status == RefundStatus.FAILED:
            return
        if status != RefundStatus.PENDING:
            raise ValidationError({"status": [f"A {status.value.lower()} refund cannot fail"]})

        now = datetime.now(UTC)
        self.status = RefundStatus.FAILED.value
        self.failure_reason = failure_reason or "unknown"
        self.updated_at = now
        self.raise_(
            RefundFailed(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                provider_refund_id=self.provider_refund_id,
                amount=self.amount,
                failure_reason=self.failure_reason,
                failed_at=now,
            )
        )

    def cancel(self):
        status = RefundStatus(self.status)
        if status == RefundStatus.CANCELLED:
            return
        if status != RefundStatus.PENDING:
            raise ValidationError({"status": [f"A {status.value.lower()} refund cannot be cancelled"]})

        now = datetime.now(UTC)
        self.status = RefundStatus.CANCELLED.value
        self.updated_at = now
        self.raise_(RefundCancelled(refund_id=str(self.id), order_id=str(self.order_id), cancelled_at=now))


@sales.repository(part_of=Refund)
class RefundRepository:
    def find_by_provider_id(self, provider_refund_id) -> Refund | None:
        results = self._dao.query.filter(provider_refund_id=provider_refund_id).all().items
        return results[0] if results else None

    def for_order(self, order_id) -> list[Refund]:
        return self._dao.query.filter(order_id=str(order_id)).all().items
