"""Error taxonomy for webhook reconciliation.

Permanent errors (bad signature, malformed or replayed payloads) are answered
with a client error so the provider stops retrying. Data-integrity errors
abort the transition and are answered with a server error so the provider
retries while someone looks into it.
"""

from protean.exceptions import ValidationError


class WebhookError(Exception):
    """Base class for webhook delivery errors."""

    status_code = 400


class SignatureVerificationError(WebhookError):
    """The signature header is missing or does not match the body."""


class MalformedEventError(WebhookError):
    """The body is authentic but could not be decoded into an event."""


class StaleEventError(WebhookError):
    """The event is older than the anti-replay window."""


class VariantUnavailableError(ValidationError):
    """A paid order references a variant that vanished, was delisted or is oversold."""
