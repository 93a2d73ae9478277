"""Notifier and cache adapter registry.

Uses the in-memory fakes unless NOTIFIER_URL / CACHE_REVALIDATE_URL are set.
"""

from sales.config import get_settings
from sales.notifier.port import CacheInvalidatorPort, NotifierPort

_notifier: NotifierPort | None = None
_cache: CacheInvalidatorPort | None = None


def get_notifier() -> NotifierPort:
    global _notifier
    if _notifier is None:
        settings = get_settings()
        if settings.notifier_url:
            from sales.notifier.http_adapter import HttpNotifier

            _notifier = HttpNotifier(
                settings.notifier_url,
                admin_email=settings.admin_email,
                timeout_seconds=settings.side_effect_timeout_seconds,
            )
        else:
            from sales.notifier.fake_adapter import FakeNotifier

            _notifier = FakeNotifier()
    return _notifier


def get_cache() -> CacheInvalidatorPort:
    global _cache
    if _cache is None:
        settings = get_settings()
        if settings.cache_revalidate_url:
            from sales.notifier.http_adapter import HttpCacheInvalidator

            _cache = HttpCacheInvalidator(
                settings.cache_revalidate_url,
                token=settings.cache_revalidate_token,
                timeout_seconds=settings.side_effect_timeout_seconds,
            )
        else:
            from sales.notifier.fake_adapter import FakeCache

            _cache = FakeCache()
    return _cache


def reset_adapters():
    """Reset adapter singletons (useful for testing)."""
    global _notifier, _cache
    _notifier = None
    _cache = None
