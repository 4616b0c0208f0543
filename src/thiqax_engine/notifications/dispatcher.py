"""Delivery of notification intents with retry and an outbox for stragglers."""

from typing import Dict, List, Optional, Sequence

from thiqax_engine.core.errors import UpstreamUnavailableError
from thiqax_engine.core.models import NotificationIntent
from thiqax_engine.stores.base import NotificationDispatcher
from thiqax_engine.utils.logging import get_logger
from thiqax_engine.utils.retry import bounded, retry_async

logger = get_logger(__name__)


class InMemoryNotificationDispatcher:
    """
    Dispatcher that records deliveries in a ledger keyed by dedupe key.

    A repeated dedupe key is acknowledged but not delivered again.
    """

    def __init__(self):
        self.delivered: List[NotificationIntent] = []
        self.ledger: Dict[str, NotificationIntent] = {}
        self.suppressed = 0
        self.logger = logger.bind(component="notification_dispatcher")

    async def send(self, intent: NotificationIntent) -> None:
        if intent.dedupe_key in self.ledger:
            self.suppressed += 1
            self.logger.debug("Duplicate notification suppressed", dedupe_key=intent.dedupe_key)
            return
        self.ledger[intent.dedupe_key] = intent
        self.delivered.append(intent)
        self.logger.info(
            "Notification delivered",
            recipient=intent.recipient,
            type=intent.type.value,
            dedupe_key=intent.dedupe_key
        )


class NotificationOutbox:
    """Intents whose delivery failed after retries, kept for a later flush."""

    def __init__(self):
        self._pending: Dict[str, NotificationIntent] = {}

    def add(self, intent: NotificationIntent) -> None:
        self._pending.setdefault(intent.dedupe_key, intent)

    def discard(self, intent: NotificationIntent) -> None:
        self._pending.pop(intent.dedupe_key, None)

    def pending(self) -> List[NotificationIntent]:
        return list(self._pending.values())

    def __len__(self) -> int:
        return len(self._pending)


async def deliver(
    dispatcher: NotificationDispatcher,
    intents: Sequence[NotificationIntent],
    outbox: Optional[NotificationOutbox] = None,
    *,
    timeout: Optional[float] = None,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0
) -> List[NotificationIntent]:
    """
    Send each intent, retrying transient failures with backoff.

    Returns the intents that could not be delivered. They are parked in
    ``outbox`` when one is given, otherwise the last error is raised.
    """
    failed = []
    for intent in intents:
        try:
            await retry_async(
                lambda: bounded(dispatcher.send(intent), timeout, "notification.send"),
                operation="notification.send",
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                dedupe_key=intent.dedupe_key
            )
        except UpstreamUnavailableError:
            if outbox is None:
                raise
            outbox.add(intent)
            failed.append(intent)
            logger.warning(
                "Notification parked in outbox",
                dedupe_key=intent.dedupe_key,
                recipient=intent.recipient
            )
            continue
        if outbox is not None:
            outbox.discard(intent)
    return failed
