"""Side-effect notifier — best-effort delivery of post-commit effects.

Every effect runs on a shared thread pool. The caller waits for all of them
at most ``timeout_seconds`` in total; anything still running after that is
logged and left to finish in the background. A failing effect is logged and
never affects the others or the webhook acknowledgement.
"""

from concurrent.futures import ThreadPoolExecutor, wait

import structlog

from sales.effects.outcome import EffectKind, SideEffect
from sales.notifier.port import CacheInvalidatorPort, NotifierPort

logger = structlog.get_logger(__name__)


class SideEffectNotifier:
    def __init__(
        self,
        notifier: NotifierPort,
        cache: CacheInvalidatorPort,
        timeout_seconds: float = 4.0,
        max_workers: int = 8,
    ):
        self.notifier = notifier
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook-effect")
        self._handlers = {
            EffectKind.INVALIDATE_CACHE: lambda payload: self.cache.invalidate(payload["tags"]),
            EffectKind.ORDER_CONFIRMATION_EMAIL: self.notifier.send_customer_order_confirmation,
            EffectKind.ADMIN_NEW_ORDER_EMAIL: self.notifier.send_admin_new_order,
            EffectKind.REFUND_CONFIRMATION_EMAIL: self.notifier.send_refund_confirmation,
            EffectKind.ADMIN_REFUND_FAILED_ALERT: self.notifier.send_admin_refund_failed_alert,
            EffectKind.ADMIN_WEBHOOK_FAILED_ALERT: self.notifier.send_admin_webhook_failed_alert,
            EffectKind.PAYMENT_FAILED_EMAIL: self.notifier.send_payment_failed,
            EffectKind.ADMIN_DISPUTE_ALERT: self.notifier.send_admin_dispute_alert,
        }

    def notify(self, kind: EffectKind, payload: dict) -> None:
        self.notify_all([SideEffect(kind, payload)])

    def notify_all(self, effects) -> int:
        """Run ``effects`` concurrently. Returns how many completed successfully."""
        effects = list(effects)
        if not effects:
            return 0

        futures = {self._executor.submit(self._handlers[effect.kind], effect.payload): effect for effect in effects}
        done, not_done = wait(futures, timeout=self.timeout_seconds)

        succeeded = 0
        for future in done:
            effect = futures[future]
            exc = future.exception()
            if exc is None:
                succeeded += 1
            else:
                logger.error("Side effect failed", effect=effect.kind.value, error=str(exc))

        for future in not_done:
            logger.warning(
                "Side effect timed out, continuing in background",
                effect=futures[future].kind.value,
                timeout_seconds=self.timeout_seconds,
            )

        return succeeded

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
