"""Event router — maps each typed provider event to its transition command.

Correlation problems (no order reference, unpaid asynchronous checkouts)
are resolved here, before any transaction is opened, and acknowledged as
skipped. Everything else becomes exactly one command processed
synchronously inside its own Unit of Work.
"""

import json

import structlog
from protean.utils.globals import current_domain

from sales.effects.outcome import TransitionOutcome
from sales.gateway.port import GatewayError, PaymentGateway
from sales.order.cancellation import CancelPayment, ExpireCheckout, FailAsyncPayment, FailPayment
from sales.order.confirmation import ConfirmCheckout, ConfirmPayment
from sales.order.dispute import CloseDispute, OpenDispute
from sales.refund.reconciliation import ReconcileChargeRefunds, SyncRefundStatus
from sales.webhook.events import (
    AsyncPaymentFailed,
    AsyncPaymentSucceeded,
    ChargeRefunded,
    CheckoutCompleted,
    CheckoutExpired,
    DisputeClosed,
    DisputeCreated,
    PaymentCanceled,
    PaymentFailed,
    PaymentSucceeded,
    ProviderEvent,
    RefundUpdated,
)
from sales.webhook.ledger import CompleteDelivery, RecordDeliveryFailure

logger = structlog.get_logger(__name__)

SHIPPING_EXPAND = ["shipping_cost.shipping_rate"]


class EventRouter:
    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway
        self._routes = {
            CheckoutCompleted: self._checkout_completed,
            CheckoutExpired: self._checkout_expired,
            PaymentSucceeded: self._payment_succeeded,
            PaymentFailed: self._payment_failed,
            PaymentCanceled: self._payment_canceled,
            ChargeRefunded: self._charge_refunded,
            AsyncPaymentSucceeded: self._checkout_completed,
            AsyncPaymentFailed: self._async_payment_failed,
            RefundUpdated: self._refund_updated,
            DisputeCreated: self._dispute_created,
            DisputeClosed: self._dispute_closed,
        }

    def route(self, event: ProviderEvent) -> TransitionOutcome:
        handler = self._routes.get(type(event))
        if handler is None:
            return self._skip(event, "ignored")
        return handler(event)

    def _process(self, command):
        return current_domain.process(command, asynchronous=False)

    def _skip(self, event, status, order_id=None) -> TransitionOutcome:
        self._process(CompleteDelivery(event_id=event.event_id))
        return TransitionOutcome.skipped(status, order_id)

    def _missing_order(self, event) -> TransitionOutcome:
        logger.warning("Payment event carries no order reference", kind=event.kind)
        return self._skip(event, "order_not_found")

    # -------------------------------------------------------------------
    # Success signals
    # -------------------------------------------------------------------
    def _checkout_completed(self, event: CheckoutCompleted) -> TransitionOutcome:
        if event.payment_status == "unpaid":
            logger.info("Checkout completed but payment still settling", session_id=event.session_id)
            return self._skip(event, "awaiting_payment", event.order_id)
        if not event.order_id:
            return self._missing_order(event)

        shipping_cost, shipping_method, shipping_carrier = self._shipping_details(event)
        return self._process(
            ConfirmCheckout(
                order_id=event.order_id,
                event_id=event.event_id,
                checkout_session_id=event.session_id,
                payment_intent_id=event.payment_intent_id,
                provider_customer_id=event.customer_id,
                customer_email=event.customer_email,
                shipping_cost=shipping_cost,
                shipping_method=shipping_method,
                shipping_carrier=shipping_carrier,
                guest_session_id=event.guest_session_id,
            )
        )

    def _shipping_details(self, event: CheckoutCompleted):
        """Re-fetch the session for authoritative shipping data, falling back to the event payload."""
        try:
            session = self.gateway.retrieve_checkout_session(event.session_id, expand=SHIPPING_EXPAND)
        except GatewayError as exc:
            logger.warning("Could not re-fetch checkout session", session_id=event.session_id, error=str(exc))
            return event.amount_shipping, event.shipping_method, event.shipping_carrier

        amount = (session.get("total_details") or {}).get("amount_shipping")
        rate = (session.get("shipping_cost") or {}).get("shipping_rate")
        rate = rate if isinstance(rate, dict) else {}
        return (
            amount if amount is not None else event.amount_shipping,
            rate.get("display_name") or event.shipping_method,
            (rate.get("metadata") or {}).get("carrier") or event.shipping_carrier,
        )

    def _payment_succeeded(self, event: PaymentSucceeded) -> TransitionOutcome:
        if not event.order_id:
            return self._missing_order(event)
        return self._process(
            ConfirmPayment(
                order_id=event.order_id,
                event_id=event.event_id,
                payment_intent_id=event.payment_intent_id,
                provider_customer_id=event.customer_id,
            )
        )

    # -------------------------------------------------------------------
    # Failure signals
    # -------------------------------------------------------------------
    def _payment_failed(self, event: PaymentFailed) -> TransitionOutcome:
        if not event.order_id:
            return self._missing_order(event)
        return self._process(
            FailPayment(
                order_id=event.order_id,
                event_id=event.event_id,
                payment_intent_id=event.payment_intent_id,
                amount_received=event.amount_received,
                failure_code=event.failure_code,
                decline_code=event.decline_code,
                failure_message=event.failure_message,
            )
        )

    def _payment_canceled(self, event: PaymentCanceled) -> TransitionOutcome:
        if not event.order_id:
            return self._missing_order(event)
        return self._process(
            CancelPayment(
                order_id=event.order_id,
                event_id=event.event_id,
                payment_intent_id=event.payment_intent_id,
                amount_received=event.amount_received,
                intent_status=event.status,
                cancellation_reason=event.cancellation_reason,
            )
        )

    def _checkout_expired(self, event: CheckoutExpired) -> TransitionOutcome:
        if not event.order_id:
            return self._missing_order(event)
        return self._process(
            ExpireCheckout(
                order_id=event.order_id,
                event_id=event.event_id,
                checkout_session_id=event.session_id,
            )
        )

    def _async_payment_failed(self, event: AsyncPaymentFailed) -> TransitionOutcome:
        if not event.order_id:
            return self._missing_order(event)
        return self._process(
            FailAsyncPayment(
                order_id=event.order_id,
                event_id=event.event_id,
                checkout_session_id=event.session_id,
                payment_intent_id=event.payment_intent_id,
            )
        )

    # -------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------
    def _charge_refunded(self, event: ChargeRefunded) -> TransitionOutcome:
        if not event.payment_intent_id:
            logger.warning("Refunded charge has no payment intent", charge_id=event.charge_id)
            return self._skip(event, "order_not_found")

        try:
            return self._process(
                ReconcileChargeRefunds(
                    event_id=event.event_id,
                    payment_intent_id=event.payment_intent_id,
                    charge_id=event.charge_id,
                    amount_refunded=event.amount_refunded,
                    currency=event.currency.upper() if event.currency else None,
                    refunds=json.dumps([refund.model_dump() for refund in event.refunds]),
                )
            )
        except Exception as exc:
            # Audit-only path: never ask the provider to retry, keep the failure on the ledger
            logger.exception("Refund reconciliation failed", charge_id=event.charge_id)
            self._process(RecordDeliveryFailure(event_id=event.event_id, error_message=str(exc)))
            return TransitionOutcome.skipped("reconciliation_failed")

    def _refund_updated(self, event: RefundUpdated) -> TransitionOutcome:
        try:
            return self._process(
                SyncRefundStatus(
                    event_id=event.event_id,
                    provider_refund_id=event.provider_refund_id,
                    refund_id=event.refund_id,
                    status=event.status,
                    failure_reason=event.failure_reason,
                )
            )
        except Exception as exc:
            logger.exception("Refund status sync failed", provider_refund_id=event.provider_refund_id)
            self._process(RecordDeliveryFailure(event_id=event.event_id, error_message=str(exc)))
            return TransitionOutcome.skipped("reconciliation_failed")

    # -------------------------------------------------------------------
    # Disputes
    # -------------------------------------------------------------------
    def _dispute_created(self, event: DisputeCreated) -> TransitionOutcome:
        if not event.payment_intent_id:
            logger.warning("Dispute has no payment intent", dispute_id=event.dispute_id)
            return self._skip(event, "order_not_found")
        return self._process(
            OpenDispute(
                event_id=event.event_id,
                dispute_id=event.dispute_id,
                payment_intent_id=event.payment_intent_id,
                amount=event.amount,
                reason=event.reason,
                due_by=event.due_by,
            )
        )

    def _dispute_closed(self, event: DisputeClosed) -> TransitionOutcome:
        if not event.payment_intent_id:
            logger.warning("Dispute has no payment intent", dispute_id=event.dispute_id)
            return self._skip(event, "order_not_found")
        return self._process(
            CloseDispute(
                event_id=event.event_id,
                dispute_id=event.dispute_id,
                payment_intent_id=event.payment_intent_id,
                amount=event.amount,
                status=event.status,
            )
        )
