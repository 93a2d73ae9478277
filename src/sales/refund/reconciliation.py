"""Refund reconciliation — commands and handler.

ReconcileChargeRefunds syncs the refunds the provider reports on a charge
into local Refund records and marks the order refunded once the refunded
amount covers its total. SyncRefundStatus follows a single refund through
its own lifecycle notifications. RecordAutomaticRefund stores the refund
issued by the compensation path so the later provider notification can
complete it.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from sales.config import get_settings
from sales.domain import sales
from sales.effects import tags
from sales.effects.outcome import EffectKind, SideEffect, TransitionOutcome
from sales.order import payloads
from sales.order.guard import EventKind, should_process
from sales.order.order import Order
from sales.refund.refund import Refund, RefundOrigin, RefundStatus
from sales.webhook.ledger import complete_delivery

logger = structlog.get_logger(__name__)

EXTERNAL_REFUND_NOTE = "Refund issued from the Stripe Dashboard"


@sales.command(part_of="Refund")
class ReconcileChargeRefunds:
    event_id = String(max_length=255)
    payment_intent_id = String(required=True, max_length=255)
    charge_id = String(max_length=255)
    amount_refunded = Integer(default=0, min_value=0)
    currency = String(max_length=3)
    refunds = Text()  # JSON list of {id, amount, currency, status, reason, refund_id}


@sales.command(part_of="Refund")
class SyncRefundStatus:
    event_id = String(max_length=255)
    provider_refund_id = String(required=True, max_length=255)
    refund_id = Identifier()  # Local id carried in the provider's metadata
    status = String(max_length=50)
    failure_reason = String(max_length=255)


@sales.command(part_of="Refund")
class RecordAutomaticRefund:
    order_id = Identifier(required=True)
    provider_refund_id = String(required=True, max_length=255)
    amount = Integer(required=True, min_value=0)
    currency = String(max_length=3)
    reason = String(max_length=100)


def _store_new(repo, refund: Refund) -> Refund:
    """Persist a freshly recorded refund, or return the one already holding its provider id."""
    try:
        repo.add(refund)
    except ValidationError:
        existing = repo.find_by_provider_id(refund.provider_refund_id)
        if existing is None:
            raise
        logger.info(
            "Refund already recorded",
            refund_id=str(existing.id),
            provider_refund_id=refund.provider_refund_id,
        )
        return existing
    return refund


@sales.command_handler(part_of=Refund)
class RefundReconciliationHandler:
    @handle(ReconcileChargeRefunds)
    def reconcile(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.find_by_payment_intent(command.payment_intent_id)
        if order is None:
            logger.warning("No order for refunded charge", payment_intent_id=command.payment_intent_id)
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("order_not_found")

        refund_repo = current_domain.repository_for(Refund)
        completed_now = 0
        for data in json.loads(command.refunds or "[]"):
            refund = self._match(refund_repo, order, data)
            if refund is None:
                refund = _store_new(
                    refund_repo,
                    Refund.record(
                        order_id=order.id,
                        amount=data.get("amount") or 0,
                        currency=data.get("currency") or command.currency or "EUR",
                        provider_refund_id=data["id"],
                        reason=data.get("reason"),
                        note=EXTERNAL_REFUND_NOTE,
                        origin=RefundOrigin.PROVIDER,
                    ),
                )
                logger.info(
                    "Recorded refund made outside the store",
                    order_id=str(order.id),
                    provider_refund_id=data["id"],
                )

            if data.get("status") == "succeeded" and refund.status != RefundStatus.COMPLETED.value:
                refund.complete()
                completed_now += 1
                refund_repo.add(refund)

        amount_refunded = command.amount_refunded or 0
        fully_refunded = order.is_fully_refunded_by(amount_refunded)
        if fully_refunded and should_process(order.payment_status, EventKind.CHARGE_REFUNDED):
            order.mark_refunded(amount_refunded)
            order_repo.add(order)

        complete_delivery(command.event_id)

        logger.info(
            "Charge refunds reconciled",
            order_id=str(order.id),
            amount_refunded=amount_refunded,
            fully_refunded=fully_refunded,
        )

        effects = [
            SideEffect.invalidate([tags.ORDERS_LIST, tags.REFUNDS_LIST, tags.ADMIN_BADGES, tags.order_detail(order.id)])
        ]
        if completed_now and order.customer_email:
            effects.append(
                SideEffect(
                    EffectKind.REFUND_CONFIRMATION_EMAIL,
                    payloads.refund_confirmation(order, amount_refunded, (command.currency or order.currency).upper()),
                )
            )
        return TransitionOutcome("applied", str(order.id), tuple(effects))

    def _match(self, refund_repo, order, data) -> Refund | None:
        """Find the local record for a provider refund, linking a pending one if named in its metadata."""
        refund = refund_repo.find_by_provider_id(data["id"])
        if refund is not None or not data.get("refund_id"):
            return refund

        try:
            refund = refund_repo.get(data["refund_id"])
        except ObjectNotFoundError:
            logger.warning("Refund named in provider metadata not found", refund_id=data["refund_id"])
            return None

        if str(refund.order_id) != str(order.id):
            logger.warning(
                "Refund named in provider metadata belongs to another order",
                refund_id=data["refund_id"],
                order_id=str(order.id),
            )
            return None

        refund.link_provider_refund(data["id"])
        refund_repo.add(refund)
        return refund

    @handle(SyncRefundStatus)
    def sync_refund_status(self, command):
        repo = current_domain.repository_for(Refund)
        refund = repo.find_by_provider_id(command.provider_refund_id)
        if refund is None and command.refund_id:
            try:
                refund = repo.get(command.refund_id)
            except ObjectNotFoundError:
                refund = None
            if refund is not None:
                refund.link_provider_refund(command.provider_refund_id)

        if refund is None:
            # Dashboard refunds are recorded by the charge notification instead
            logger.info("Refund not known locally, skipping", provider_refund_id=command.provider_refund_id)
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("refund_not_found")

        previous = refund.status
        if command.status == "succeeded":
            refund.complete()
        elif command.status == "failed":
            refund.fail(command.failure_reason)
        elif command.status == "canceled":
            refund.cancel()

        repo.add(refund)
        complete_delivery(command.event_id)

        logger.info(
            "Refund status synced",
            refund_id=str(refund.id),
            provider_refund_id=command.provider_refund_id,
            provider_status=command.status,
            previous_status=previous,
            status=refund.status,
        )

        effects = [SideEffect.invalidate([tags.REFUNDS_LIST, tags.order_detail(refund.order_id)])]
        if refund.status == RefundStatus.FAILED.value and previous != RefundStatus.FAILED.value:
            try:
                order = current_domain.repository_for(Order).get(refund.order_id)
            except ObjectNotFoundError:
                logger.warning("Order of failed refund not found", order_id=str(refund.order_id))
            else:
                effects.append(
                    SideEffect(
                        EffectKind.ADMIN_REFUND_FAILED_ALERT,
                        payloads.admin_refund_failed(
                            order, refund, command.failure_reason, get_settings().dashboard_url
                        ),
                    )
                )
        return TransitionOutcome("applied", str(refund.order_id), tuple(effects))

    @handle(RecordAutomaticRefund)
    def record_automatic_refund(self, command):
        repo = current_domain.repository_for(Refund)
        existing = repo.find_by_provider_id(command.provider_refund_id)
        if existing is not None:
            return str(existing.id)

        refund = _store_new(
            repo,
            Refund.record(
                order_id=command.order_id,
                amount=command.amount,
                currency=command.currency or "EUR",
                provider_refund_id=command.provider_refund_id,
                reason=command.reason,
                note=f"Automatic refund after {command.reason}" if command.reason else None,
                origin=RefundOrigin.AUTOMATIC,
            ),
        )
        return str(refund.id)
