"""Compensation dispatcher — automatic refunds for orders that will not ship.

Runs after the cancelling transition has committed. A refund is a
convenience, not a guarantee: when the provider call fails the admin is
alerted with everything needed to refund by hand, and the cancellation and
stock restoration stand regardless.
"""

from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from sales.config import Settings
from sales.effects.notifier import SideEffectNotifier
from sales.effects.outcome import CompensatingRefund, EffectKind
from sales.gateway.port import PaymentGateway, RefundResult
from sales.refund.reconciliation import RecordAutomaticRefund

logger = structlog.get_logger(__name__)

_ALERT_REASONS = {"payment_failed", "payment_canceled"}


@dataclass(frozen=True)
class RefundOutcome:
    success: bool
    provider_refund_id: str | None = None
    error: str | None = None


def idempotency_key(reason: str, payment_intent_id: str) -> str:
    """Same reason and intent always yield the same key, so provider retries never refund twice."""
    return f"auto-refund-{reason.replace('_', '-')}-{payment_intent_id}"


class CompensationDispatcher:
    def __init__(self, gateway: PaymentGateway, effects: SideEffectNotifier, settings: Settings):
        self.gateway = gateway
        self.effects = effects
        self.settings = settings

    def maybe_refund(self, request: CompensatingRefund) -> RefundOutcome:
        if not request.payment_intent_id:
            error = "No payment reference recorded for captured funds"
            self._alert(request, error)
            return RefundOutcome(success=False, error=error)

        try:
            result = self.gateway.create_refund(
                request.payment_intent_id,
                reason="requested_by_customer",
                metadata={"order_id": request.order_id, "reason": request.reason},
                idempotency_key=idempotency_key(request.reason, request.payment_intent_id),
            )
        except Exception as exc:
            result = RefundResult(success=False, failure_reason=str(exc))

        if not result.success:
            logger.error(
                "Automatic refund failed",
                order_id=request.order_id,
                payment_intent_id=request.payment_intent_id,
                error=result.failure_reason,
            )
            self._alert(request, result.failure_reason)
            return RefundOutcome(success=False, error=result.failure_reason)

        logger.info(
            "Automatic refund issued",
            order_id=request.order_id,
            provider_refund_id=result.gateway_refund_id,
            amount=request.amount,
        )
        self._record(request, result.gateway_refund_id)
        return RefundOutcome(success=True, provider_refund_id=result.gateway_refund_id)

    def _record(self, request: CompensatingRefund, provider_refund_id: str | None) -> None:
        if not provider_refund_id:
            return
        try:
            current_domain.process(
                RecordAutomaticRefund(
                    order_id=request.order_id,
                    provider_refund_id=provider_refund_id,
                    amount=request.amount,
                    currency=request.currency,
                    reason=request.reason,
                ),
                asynchronous=False,
            )
        except Exception:
            # The provider's charge.refunded notification will create the record instead
            logger.exception("Could not record automatic refund", order_id=request.order_id)

    def _alert(self, request: CompensatingRefund, error: str | None) -> None:
        self.effects.notify(
            EffectKind.ADMIN_REFUND_FAILED_ALERT,
            {
                "order_number": request.order_number,
                "order_id": request.order_id,
                "customer_email": request.customer_email,
                "amount": request.amount,
                "currency": request.currency,
                "reason": request.reason if request.reason in _ALERT_REASONS else "other",
                "error_message": error or "Unknown error",
                "payment_intent_id": request.payment_intent_id,
                "dashboard_url": f"{self.settings.dashboard_url}/{request.order_id}",
            },
        )
