"""Chargeback disputes — commands and handler.

Opening and closing a dispute each leave a note on the order for the admin
and raise an alert. A lost dispute means the provider already debited the
amount, so the order is marked refunded. Notes double as the replay guard:
a dispute whose note is already on the order is skipped.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Integer, String
from protean.utils.globals import current_domain

from sales.config import get_settings
from sales.domain import sales
from sales.effects import tags
from sales.effects.outcome import EffectKind, SideEffect, TransitionOutcome
from sales.order import payloads
from sales.order.guard import EventKind, should_process
from sales.order.order import Order
from sales.webhook.ledger import complete_delivery

logger = structlog.get_logger(__name__)

REASON_LABELS = {
    "duplicate": "Duplicate payment",
    "fraudulent": "Fraudulent",
    "subscription_canceled": "Subscription cancelled",
    "product_unacceptable": "Product not as described",
    "product_not_received": "Product not received",
    "unrecognized": "Unrecognized transaction",
    "credit_not_processed": "Refund not processed",
    "general": "General dispute",
}


@sales.command(part_of="Order")
class OpenDispute:
    event_id = String(max_length=255)
    dispute_id = String(required=True, max_length=255)
    payment_intent_id = String(required=True, max_length=255)
    amount = Integer(default=0, min_value=0)
    reason = String(max_length=100)
    due_by = Integer()  # Unix seconds


@sales.command(part_of="Order")
class CloseDispute:
    event_id = String(max_length=255)
    dispute_id = String(required=True, max_length=255)
    payment_intent_id = String(required=True, max_length=255)
    amount = Integer(default=0, min_value=0)
    status = String(max_length=50)  # won, lost, warning_closed


def opened_note_prefix(dispute_id) -> str:
    return f"[DISPUTE OPENED] Stripe dispute {dispute_id}"


def closed_note_prefix(dispute_id) -> str:
    return f"[DISPUTE CLOSED] Stripe dispute {dispute_id}"


@sales.command_handler(part_of=Order)
class DisputeHandler:
    @handle(OpenDispute)
    def open_dispute(self, command):
        order = self._load(command)
        if order is None:
            return TransitionOutcome.skipped("order_not_found")

        prefix = opened_note_prefix(command.dispute_id)
        if order.has_note(prefix):
            logger.info("Dispute already noted, skipping", dispute_id=command.dispute_id)
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("already_processed", str(order.id))

        reason = REASON_LABELS.get(command.reason, command.reason or "Unknown")
        due_by = datetime.fromtimestamp(command.due_by, UTC) if command.due_by else None
        order.add_note(
            f"{prefix}. Reason: {reason}. Disputed amount: {command.amount} minor units. "
            f"Respond by: {due_by.date().isoformat() if due_by else 'N/A'}."
        )
        current_domain.repository_for(Order).add(order)
        complete_delivery(command.event_id)

        logger.warning(
            "Dispute opened",
            order_id=str(order.id),
            dispute_id=command.dispute_id,
            reason=command.reason,
            amount=command.amount,
        )
        return TransitionOutcome(
            "applied",
            str(order.id),
            (
                SideEffect(
                    EffectKind.ADMIN_DISPUTE_ALERT,
                    payloads.admin_dispute(
                        order, command.dispute_id, command.amount, reason, get_settings().dashboard_url, due_by
                    ),
                ),
                SideEffect.invalidate([tags.ORDERS_LIST, tags.order_notes(order.id), tags.ADMIN_BADGES]),
            ),
        )

    @handle(CloseDispute)
    def close_dispute(self, command):
        order = self._load(command)
        if order is None:
            return TransitionOutcome.skipped("order_not_found")

        prefix = closed_note_prefix(command.dispute_id)
        if order.has_note(prefix):
            logger.info("Dispute closure already noted, skipping", dispute_id=command.dispute_id)
            complete_delivery(command.event_id)
            return TransitionOutcome.skipped("already_processed", str(order.id))

        won = command.status == "won"
        if won:
            order.add_note(f"{prefix} closed: won.")
        else:
            order.add_note(f"{prefix} closed: lost. The amount was debited by the provider.")
            if should_process(order.payment_status, EventKind.DISPUTE_LOST):
                order.mark_refunded(command.amount)
        current_domain.repository_for(Order).add(order)
        complete_delivery(command.event_id)

        logger.info("Dispute closed", order_id=str(order.id), dispute_id=command.dispute_id, won=won)

        outcome = "Dispute closed, won" if won else "Dispute closed, lost (amount debited)"
        cache_tags = [tags.ORDERS_LIST, tags.order_notes(order.id), tags.ADMIN_BADGES]
        if not won:
            cache_tags.append(tags.DASHBOARD_KPIS)
        return TransitionOutcome(
            "applied",
            str(order.id),
            (
                SideEffect(
                    EffectKind.ADMIN_DISPUTE_ALERT,
                    payloads.admin_dispute(
                        order, command.dispute_id, command.amount, outcome, get_settings().dashboard_url
                    ),
                ),
                SideEffect.invalidate(cache_tags),
            ),
        )

    def _load(self, command) -> Order | None:
        order = current_domain.repository_for(Order).find_by_payment_intent(command.payment_intent_id)
        if order is None:
            logger.warning(
                "No order for disputed payment",
                dispute_id=command.dispute_id,
                payment_intent_id=command.payment_intent_id,
            )
            complete_delivery(command.event_id)
        return order
