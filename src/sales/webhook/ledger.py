"""Processed-event ledger — one record per provider event id.

State-based idempotency on the order covers replays of the same kind of
event. The ledger additionally makes each provider event id apply at most
once: transitions mark their delivery completed inside the same Unit of Work
as their state change, so the checkpoint and the mutation commit together.

Delivery lifecycle:
    PROCESSING → COMPLETED
    PROCESSING → FAILED → PROCESSING (provider retry)
"""

from datetime import UTC, datetime
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Integer, String, Text
from protean.utils.globals import current_domain

from sales.domain import sales

logger = structlog.get_logger(__name__)


class DeliveryStatus(Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


@sales.aggregate
class WebhookEvent:
    event_id = String(identifier=True, max_length=255)
    event_type = String(required=True, max_length=100)
    status = String(choices=DeliveryStatus, default=DeliveryStatus.PROCESSING.value)
    attempts = Integer(default=1, min_value=0)
    error_message = Text()
    received_at = DateTime()
    processed_at = DateTime()

    @classmethod
    def receive(cls, event_id, event_type):
        return cls(
            event_id=event_id,
            event_type=event_type,
            status=DeliveryStatus.PROCESSING.value,
            attempts=1,
            received_at=datetime.now(UTC),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == DeliveryStatus.COMPLETED.value

    def retry(self):
        if self.is_completed:
            raise ValidationError({"status": [f"Event {self.event_id} was already processed"]})
        self.attempts += 1
        self.status = DeliveryStatus.PROCESSING.value
        self.error_message = None

    def complete(self):
        self.status = DeliveryStatus.COMPLETED.value
        self.error_message = None
        self.processed_at = datetime.now(UTC)

    def fail(self, error_message):
        self.status = DeliveryStatus.FAILED.value
        self.error_message = error_message[:2000] if error_message else None
        self.processed_at = datetime.now(UTC)


@sales.command(part_of="WebhookEvent")
class RecordDelivery:
    event_id = String(required=True, max_length=255)
    event_type = String(required=True, max_length=100)


@sales.command(part_of="WebhookEvent")
class CompleteDelivery:
    event_id = String(required=True, max_length=255)


@sales.command(part_of="WebhookEvent")
class RecordDeliveryFailure:
    event_id = String(required=True, max_length=255)
    error_message = Text()


@sales.command_handler(part_of=WebhookEvent)
class WebhookEventHandler:
    @handle(RecordDelivery)
    def record_delivery(self, command):
        """Open (or reopen) a delivery. Returns its status and attempt count."""
        repo = current_domain.repository_for(WebhookEvent)
        try:
            entry = repo.get(command.event_id)
        except ObjectNotFoundError:
            entry = WebhookEvent.receive(command.event_id, command.event_type)
        else:
            if entry.is_completed:
                return {"status": entry.status, "attempts": entry.attempts}
            entry.retry()

        repo.add(entry)
        return {"status": entry.status, "attempts": entry.attempts}

    @handle(CompleteDelivery)
    def complete(self, command):
        complete_delivery(command.event_id)

    @handle(RecordDeliveryFailure)
    def record_failure(self, command):
        repo = current_domain.repository_for(WebhookEvent)
        entry = repo.get(command.event_id)
        entry.fail(command.error_message)
        repo.add(entry)
        return entry.attempts


def complete_delivery(event_id) -> None:
    """Mark a delivery completed as part of the caller's Unit of Work.

    Commands processed outside a webhook delivery carry no event id.
    """
    if not event_id:
        return

    repo = current_domain.repository_for(WebhookEvent)
    try:
        entry = repo.get(event_id)
    except ObjectNotFoundError:
        logger.debug("No ledger entry to complete", event_id=event_id)
        return

    entry.complete()
    repo.add(entry)
