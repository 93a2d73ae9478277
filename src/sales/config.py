"""Runtime settings for the webhook reconciliation core.

Values come from the environment once at process start; the dispatcher and
its collaborators receive the resulting ``Settings`` instead of reading
``os.environ`` on every request.
"""

import os

from pydantic import BaseModel, Field


class Settings(BaseModel):
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    payment_gateway: str = "fake"  # fake | stripe

    # Events older than this are rejected (anti-replay)
    webhook_tolerance_seconds: int = Field(default=300, ge=0)
    # Admin is alerted once a delivery has failed this many times
    webhook_alert_threshold: int = Field(default=3, ge=1)
    # Total wall-clock limit for post-commit notifications and cache signals
    side_effect_timeout_seconds: float = Field(default=4.0, gt=0)

    base_url: str = "http://localhost:3000"
    admin_email: str = "admin@localhost"

    notifier_url: str | None = None
    cache_revalidate_url: str | None = None
    cache_revalidate_token: str | None = None

    @property
    def dashboard_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/admin/orders"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY", ""),
            "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            "payment_gateway": os.getenv("PAYMENT_GATEWAY", "fake").lower(),
            "base_url": os.getenv("BASE_URL", "http://localhost:3000"),
            "admin_email": os.getenv("ADMIN_EMAIL", "admin@localhost"),
            "notifier_url": os.getenv("NOTIFIER_URL") or None,
            "cache_revalidate_url": os.getenv("CACHE_REVALIDATE_URL") or None,
            "cache_revalidate_token": os.getenv("CACHE_REVALIDATE_TOKEN") or None,
        }
        for key, env_var in (
            ("webhook_tolerance_seconds", "WEBHOOK_TOLERANCE_SECONDS"),
            ("webhook_alert_threshold", "WEBHOOK_ALERT_THRESHOLD"),
            ("side_effect_timeout_seconds", "SIDE_EFFECT_TIMEOUT_SECONDS"),
        ):
            if os.getenv(env_var):
                values[key] = os.environ[env_var]
        return cls(**values)


_current_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = Settings.from_env()
    return _current_settings


def set_settings(settings: Settings) -> None:
    """Override the active settings (useful for tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    global _current_settings
    _current_settings = None
