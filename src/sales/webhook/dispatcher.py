"""Webhook dispatcher — the entry point for payment-provider deliveries.

Order of work for one delivery:
    1. verify the signature and decode the event
    2. reject events older than the anti-replay window
    3. open the delivery on the processed-event ledger (duplicates stop here)
    4. route to exactly one transition (one Unit of Work)
    5. after commit: compensating refund, then notifications and cache signals
    6. acknowledge

Only a failing transition answers with a server error, which makes the
provider retry. Everything after the commit is best effort.
"""

import time
from dataclasses import dataclass, field

import structlog
from protean.utils.globals import current_domain

from sales.config import Settings, get_settings
from sales.effects.notifier import SideEffectNotifier
from sales.effects.outcome import EffectKind
from sales.errors import SignatureVerificationError, StaleEventError, WebhookError
from sales.gateway.port import PaymentGateway
from sales.notifier.port import CacheInvalidatorPort, NotifierPort
from sales.utils.logging import bind_delivery, clear_delivery
from sales.webhook.compensation import CompensationDispatcher
from sales.webhook.events import ProviderEvent, UnknownEvent
from sales.webhook.ledger import DeliveryStatus, RecordDelivery, RecordDeliveryFailure
from sales.webhook.router import EventRouter
from sales.webhook.verifier import EventVerifier

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Acknowledgement:
    status_code: int
    body: dict = field(default_factory=dict)

    @classmethod
    def received(cls, status) -> "Acknowledgement":
        return cls(200, {"received": True, "status": status})

    @classmethod
    def error(cls, status_code, message) -> "Acknowledgement":
        return cls(status_code, {"error": message})


class WebhookDispatcher:
    def __init__(
        self,
        gateway: PaymentGateway,
        notifier: NotifierPort,
        cache: CacheInvalidatorPort,
        settings: Settings,
        clock=time.time,
    ):
        self.settings = settings
        self.verifier = EventVerifier(gateway, settings.stripe_webhook_secret)
        self.router = EventRouter(gateway)
        self.effects = SideEffectNotifier(notifier, cache, timeout_seconds=settings.side_effect_timeout_seconds)
        self.compensation = CompensationDispatcher(gateway, self.effects, settings)
        self._clock = clock

    def handle(self, raw_body: bytes, signature: str | None) -> Acknowledgement:
        if not self.settings.stripe_webhook_secret:
            logger.error("Webhook secret not configured")
            return Acknowledgement.error(500, "Webhook secret not configured")

        try:
            event = self.verifier.verify(raw_body, signature)
            self._check_freshness(event)
        except WebhookError as exc:
            logger.warning(
                "Webhook rejected",
                reason=str(exc),
                error_type=type(exc).__name__,
                security=isinstance(exc, (SignatureVerificationError, StaleEventError)),
            )
            return Acknowledgement.error(exc.status_code, f"Webhook Error: {exc}")

        if isinstance(event, UnknownEvent):
            logger.info("Ignoring unhandled event type", event_type=event.event_type, event_id=event.event_id)
            return Acknowledgement.received("ignored")

        bind_delivery(event.event_id, event.event_type)
        try:
            return self._dispatch(event)
        finally:
            clear_delivery()

    def _check_freshness(self, event: ProviderEvent) -> None:
        age = int(self._clock()) - event.created
        if age > self.settings.webhook_tolerance_seconds:
            raise StaleEventError(f"Event too old ({age}s), rejected by anti-replay protection")

    def _dispatch(self, event: ProviderEvent) -> Acknowledgement:
        try:
            delivery = current_domain.process(
                RecordDelivery(event_id=event.event_id, event_type=event.event_type),
                asynchronous=False,
            )
        except Exception:
            logger.exception("Could not record webhook delivery")
            return Acknowledgement.error(500, "Webhook handler failed")

        if delivery["status"] == DeliveryStatus.COMPLETED.value:
            logger.info("Event already processed, skipping")
            return Acknowledgement.received("duplicate")

        try:
            outcome = self.router.route(event)
        except Exception as exc:
            logger.exception("Webhook transition failed", attempts=delivery["attempts"])
            self._record_failure(event, exc, delivery["attempts"])
            return Acknowledgement.error(500, "Webhook handler failed")

        logger.info("Webhook processed", outcome=outcome.status, order_id=outcome.order_id)

        if outcome.compensation is not None:
            self.compensation.maybe_refund(outcome.compensation)
        self.effects.notify_all(outcome.effects)

        return Acknowledgement.received("processed")

    def _record_failure(self, event: ProviderEvent, exc: Exception, attempts: int) -> None:
        try:
            current_domain.process(
                RecordDeliveryFailure(event_id=event.event_id, error_message=str(exc)),
                asynchronous=False,
            )
        except Exception:
            logger.exception("Could not record webhook failure")

        if attempts >= self.settings.webhook_alert_threshold:
            self.effects.notify(
                EffectKind.ADMIN_WEBHOOK_FAILED_ALERT,
                {
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "attempts": attempts,
                    "error": str(exc),
                },
            )


_current_dispatcher: WebhookDispatcher | None = None


def get_dispatcher() -> WebhookDispatcher:
    """Return the process-wide dispatcher, wiring it from the configured adapters on first use."""
    global _current_dispatcher
    if _current_dispatcher is None:
        from sales.gateway import get_gateway
        from sales.notifier import get_cache, get_notifier

        _current_dispatcher = WebhookDispatcher(get_gateway(), get_notifier(), get_cache(), get_settings())
    return _current_dispatcher


def set_dispatcher(dispatcher: WebhookDispatcher) -> None:
    global _current_dispatcher
    _current_dispatcher = dispatcher


def reset_dispatcher() -> None:
    global _current_dispatcher
    _current_dispatcher = None
