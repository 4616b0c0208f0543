"""Notification intent derivation and delivery."""

from .derivation import for_expiring_documents, for_transition
from .dispatcher import InMemoryNotificationDispatcher, NotificationOutbox, deliver

__all__ = [
    "for_expiring_documents",
    "for_transition",
    "InMemoryNotificationDispatcher",
    "NotificationOutbox",
    "deliver",
]
