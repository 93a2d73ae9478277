"""HTTP adapters posting notification requests and cache revalidation signals.

Both use a shared ``httpx.Client`` with explicit timeouts so a slow mail or
cache service cannot hold a worker thread indefinitely.
"""

import httpx
import structlog

from sales.notifier.port import CacheInvalidatorPort, NotifierPort

logger = structlog.get_logger(__name__)


def _client(
    timeout_seconds: float,
    headers: dict | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(timeout_seconds, connect=min(2.0, timeout_seconds)),
        headers=headers or {},
        transport=transport,
    )


class HttpNotifier(NotifierPort):
    """POSTs ``{"template": ..., "payload": ...}`` to the mail service."""

    def __init__(
        self,
        base_url: str,
        admin_email: str,
        timeout_seconds: float = 3.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_email = admin_email
        self.client = _client(timeout_seconds, transport=transport)

    def _send(self, template: str, to: str, payload: dict) -> None:
        response = self.client.post(
            f"{self.base_url}/notifications",
            json={"template": template, "to": to, "payload": payload},
        )
        response.raise_for_status()
        logger.debug("Notification requested", template=template, status_code=response.status_code)

    def send_customer_order_confirmation(self, payload):
        self._send("order-confirmation", payload["to"], payload)

    def send_admin_new_order(self, payload):
        self._send("admin-new-order", self.admin_email, payload)

    def send_admin_refund_failed_alert(self, payload):
        self._send("admin-refund-failed", self.admin_email, payload)

    def send_admin_webhook_failed_alert(self, payload):
        self._send("admin-webhook-failed", self.admin_email, payload)

    def send_refund_confirmation(self, payload):
        self._send("refund-confirmation", payload["to"], payload)

    def send_payment_failed(self, payload):
        self._send("payment-failed", payload["to"], payload)

    def send_admin_dispute_alert(self, payload):
        self._send("admin-dispute", self.admin_email, payload)

    def close(self):
        self.client.close()


class HttpCacheInvalidator(CacheInvalidatorPort):
    """Calls the storefront's tag revalidation endpoint."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout_seconds: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self.client = _client(timeout_seconds, headers, transport)

    def invalidate(self, tags):
        if not tags:
            return
        response = self.client.post(self.url, json={"tags": list(tags)})
        response.raise_for_status()

    def close(self):
        self.client.close()
