"""Notification and cache-invalidation ports.

Rendering and delivering the messages is the job of the storefront's mail
service; this context only requests that a message be sent with a payload.
"""

from abc import ABC, abstractmethod


class NotifierPort(ABC):
    """Abstract interface for customer and admin notifications."""

    @abstractmethod
    def send_customer_order_confirmation(self, payload: dict) -> None: ...

    @abstractmethod
    def send_admin_new_order(self, payload: dict) -> None: ...

    @abstractmethod
    def send_admin_refund_failed_alert(self, payload: dict) -> None: ...

    @abstractmethod
    def send_admin_webhook_failed_alert(self, payload: dict) -> None: ...

    @abstractmethod
    def send_refund_confirmation(self, payload: dict) -> None: ...

    @abstractmethod
    def send_payment_failed(self, payload: dict) -> None: ...

    @abstractmethod
    def send_admin_dispute_alert(self, payload: dict) -> None: ...


class CacheInvalidatorPort(ABC):
    @abstractmethod
    def invalidate(self, tags: list[str]) -> None:
        """Expire every cached entry carrying one of ``tags``."""
        ...
