"""Fake notifier and cache adapters — record requests for test assertions."""

import threading

from sales.notifier.port import CacheInvalidatorPort, NotifierPort


class FakeNotifier(NotifierPort):
    """Notifier that records every request in memory."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"
        self.failing_kinds: set[str] = set()
        self._lock = threading.Lock()

    def configure(self, should_succeed=True, failure_reason="Notification delivery failed", failing_kinds=()):
        """Fail every send, or only the kinds listed in ``failing_kinds``."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.failing_kinds = set(failing_kinds)

    def _record(self, kind, payload):
        if not self.should_succeed or kind in self.failing_kinds:
            raise RuntimeError(self.failure_reason)
        with self._lock:
            self.sent.append((kind, payload))

    def send_customer_order_confirmation(self, payload):
        self._record("order_confirmation", payload)

    def send_admin_new_order(self, payload):
        self._record("admin_new_order", payload)

    def send_admin_refund_failed_alert(self, payload):
        self._record("admin_refund_failed", payload)

    def send_admin_webhook_failed_alert(self, payload):
        self._record("admin_webhook_failed", payload)

    def send_refund_confirmation(self, payload):
        self._record("refund_confirmation", payload)

    def send_payment_failed(self, payload):
        self._record("payment_failed", payload)

    def send_admin_dispute_alert(self, payload):
        self._record("admin_dispute", payload)

    def sent_of(self, kind) -> list[dict]:
        return [payload for sent_kind, payload in self.sent if sent_kind == kind]

    def reset(self):
        self.sent.clear()
        self.configure()


class FakeCache(CacheInvalidatorPort):
    def __init__(self):
        self.invalidated: list[str] = []
        self._lock = threading.Lock()

    def invalidate(self, tags):
        with self._lock:
            self.invalidated.extend(tags)

    def reset(self):
        self.invalidated.clear()
