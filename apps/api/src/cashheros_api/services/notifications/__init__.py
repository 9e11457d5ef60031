"""Notification service package."""

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .notifier import AccountNotifier, NotificationEvent

__all__ = [
    "AccountNotifier",
    "EmailBackend",
    "InMemoryEmailBackend",
    "NotificationEvent",
    "SMTPEmailBackend",
]
